"""Reader for Obsidian Longform projects (a vault of linked Markdown notes).

The index note carries a YAML header::

    ---
    longform:
      format: scenes
      title: My Novel
      sceneFolder: Scenes
      scenes:
        - Prologue
        - Act One
        - - Arrival
          - The Letter
      ignoredFiles: []
    ---

Every listed name must resolve to ``<sceneFolder>/<name>.md``. A top-level
entry followed by a nested list becomes a chapter holding the nested
scenes; runs of un-nested entries share an implicit chapter.

Scene notes supply fields from YAML frontmatter, then from a
``<!-- kindling: key=value ... -->`` comment, then from Dataview
``key:: value`` lines. Text after ``<!-- kindling: beats -->`` is a bullet
list of beats (indented lines under a bullet are that beat's prose); other
body text is the scene prose.

Reference notes come from two places: names linked from scene fields
(``characters: [[Mara]]``), and vault notes whose type, folder or tags mark
them as references. Their type is decided by ``kindling_sync.classifier``.
"""

from __future__ import annotations

import fnmatch
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from kindling_sync.classifier import classify
from kindling_sync.errors import (
    InvalidStructureError,
    NotFoundError,
    PreconditionError,
)
from kindling_sync.file_handler import (
    PlainScalarLoader,
    load_frontmatter,
    read_file_with_encoding,
    read_utf8_strict,
    split_frontmatter,
    validate_source_path,
)
from kindling_sync.models import (
    Classification,
    ClassificationBasis,
    ParsedBeat,
    ParsedChapter,
    ParsedProject,
    ParsedReference,
    ParsedScene,
    ReferenceType,
    SceneStatus,
    SceneType,
    SourceFormat,
)
from kindling_sync.readers.base import ProgressCallback, attribute_value

logger = logging.getLogger(__name__)

DEFAULT_CHAPTER_SOURCE_ID = "longform:default"
BEATS_MARKER = "<!-- kindling: beats -->"

_COMMENT_RE = re.compile(r"^<!--\s*kindling:(.*?)-->$", re.IGNORECASE)
_COMMENT_PAIR_RE = re.compile(r'(\w+)=("(?:[^"\\]|\\.)*"|\S+)')
_INLINE_FIELD_RE = re.compile(r"^\s*([A-Za-z][\w \-]*?)::\s*(.*?)\s*$")
_WIKILINK_RE = re.compile(r"\[\[([^\]|#]+)(?:#[^\]|]*)?(?:\|[^\]]*)?\]\]")
_BULLET_RE = re.compile(r"^[-*](?:\s+(.*))?$")

# Scene field aliases -> canonical field name
_SCENE_FIELDS: dict[str, str] = {
    "status": "status",
    "scene_status": "status",
    "synopsis": "synopsis",
    "summary": "synopsis",
    "scene_type": "scene_type",
    "pov": "characters",
    "character": "characters",
    "characters": "characters",
    "setting": "locations",
    "location": "locations",
    "locations": "locations",
    "item": "items",
    "items": "items",
    "objective": "objectives",
    "objectives": "objectives",
    "organization": "organizations",
    "organizations": "organizations",
    "faction": "organizations",
    "factions": "organizations",
}

_REFERENCE_FIELDS: dict[str, ReferenceType] = {
    "characters": ReferenceType.CHARACTERS,
    "locations": ReferenceType.LOCATIONS,
    "items": ReferenceType.ITEMS,
    "objectives": ReferenceType.OBJECTIVES,
    "organizations": ReferenceType.ORGANIZATIONS,
}

# Frontmatter keys on reference notes that are not user attributes
_NOTE_META_KEYS = frozenset(
    {"type", "category", "tags", "tag", "aliases", "alias", "description",
     "summary", "cssclass", "cssclasses", "publish"}
)

# (path, frontmatter, body) of a vault note, keyed by casefolded stem
_NoteInfo = tuple[Path, dict, str | None]


def _field_key(raw: str) -> str | None:
    key = raw.strip().lower().replace("-", "_").replace(" ", "_")
    return _SCENE_FIELDS.get(key)


def _link_names(value: Any) -> list[str]:
    """Reference names from a field value (wikilinks, lists or CSV)."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        names: list[str] = []
        for item in value:
            names.extend(_link_names(item))
        return names
    text = str(value)
    links = _WIKILINK_RE.findall(text)
    if links:
        return [Path(link.strip()).stem for link in links if link.strip()]
    return [part.strip() for part in text.split(",") if part.strip()]


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return re.sub(r"\\(.)", r"\1", value[1:-1])
    return value


def parse_kindling_comment(line: str) -> dict[str, str] | None:
    """Parse ``<!-- kindling: a=b c="d e" -->``; None if not such a line."""
    match = _COMMENT_RE.match(line.strip())
    if match is None:
        return None
    payload = match.group(1).strip()
    if payload.lower() == "beats":
        return None
    return {
        key.lower(): _unquote(value)
        for key, value in _COMMENT_PAIR_RE.findall(payload)
    }


def _block(lines: list[str]) -> str | None:
    text = "\n".join(lines).strip()
    return text or None


@dataclass
class _SceneNote:
    fields: dict[str, Any] = field(default_factory=dict)
    prose: str | None = None
    beats: list[tuple[str, str | None]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.prose or self.beats or self.fields.get("synopsis"))


@dataclass
class _Entry:
    name: str
    children: list[str] = field(default_factory=list)


class LongformReader:
    """Parse a Longform index note (or a vault holding exactly one)."""

    format = SourceFormat.LONGFORM

    def parse(
        self,
        path: str | Path,
        progress: ProgressCallback | None = None,
    ) -> ParsedProject:
        resolved = validate_source_path(path, allow_dir=True)
        if resolved.is_dir():
            index_path = self.find_index(resolved)
        else:
            index_path = resolved

        header = self._read_header(index_path)
        index_dir = index_path.parent
        scene_dir = self._scene_dir(index_dir, header.get("sceneFolder"))
        entries = self._entries(header.get("scenes"), index_path)
        ignored = [str(p) for p in header.get("ignoredFiles") or []]

        scene_paths = self._resolve_scene_paths(entries, scene_dir, index_path)
        notes = self._candidate_notes(
            index_dir, index_path, set(scene_paths.values()), ignored
        )
        total = len(scene_paths) + len(notes)
        done = 0

        scene_notes: dict[str, _SceneNote] = {}
        for name, scene_path in scene_paths.items():
            scene_notes[name] = self._read_scene(scene_path)
            done += 1
            if progress is not None:
                progress(done, total, scene_path.name)

        references, by_name = self._reference_notes(
            notes, index_dir, progress, done, total
        )
        chapters = self._build_chapters(
            entries, scene_paths, scene_notes, index_dir, references, by_name
        )

        title = header.get("title")
        return ParsedProject(
            title=str(title).strip() if title else index_path.stem,
            source_format=self.format,
            source_path=str(path),
            chapters=chapters,
            references=references,
        )

    # ------------------------------------------------------------------
    # Index discovery and header
    # ------------------------------------------------------------------

    def find_index(self, vault: Path) -> Path:
        """Locate the single Longform index note under *vault*.

        Raises:
            InvalidStructureError: If no note declares a ``longform`` header.
            PreconditionError: If more than one note does.
        """
        candidates: list[Path] = []
        for note in self._markdown_files(vault):
            try:
                raw, _ = split_frontmatter(read_file_with_encoding(note)[0])
                meta = load_frontmatter(raw)
            except (yaml.YAMLError, ValueError):
                continue
            if "longform" in meta:
                candidates.append(note)

        if not candidates:
            raise InvalidStructureError(
                f"No Longform index found in {vault}: no note has a "
                f"'longform' header",
                path=str(vault),
            )
        if len(candidates) > 1:
            listing = ", ".join(
                str(c.relative_to(vault)) for c in candidates
            )
            raise PreconditionError(
                f"Vault {vault} contains {len(candidates)} Longform indexes "
                f"({listing}); pass the index note explicitly"
            )
        logger.debug("Using Longform index %s", candidates[0])
        return candidates[0]

    @staticmethod
    def _read_header(index_path: Path) -> dict[str, Any]:
        text = read_utf8_strict(index_path)
        raw, _ = split_frontmatter(text)
        if raw is None:
            raise InvalidStructureError(
                f"{index_path.name}: missing YAML header with a 'longform' "
                f"section",
                path=str(index_path),
            )
        try:
            meta = load_frontmatter(raw, loader=PlainScalarLoader)
        except (yaml.YAMLError, ValueError) as exc:
            raise InvalidStructureError(
                f"{index_path.name}: unreadable YAML header: {exc}",
                path=str(index_path),
            ) from exc

        header = meta.get("longform")
        if not isinstance(header, dict):
            raise InvalidStructureError(
                f"{index_path.name}: header is missing the 'longform' section",
                path=str(index_path),
            )
        fmt = str(header.get("format") or "").strip().lower()
        if fmt != "scenes":
            raise InvalidStructureError(
                f"{index_path.name}: Longform header is missing the required "
                f"'format: scenes' marker (only multi-scene projects are "
                f"supported)",
                path=str(index_path),
            )
        if "scenes" not in header:
            raise InvalidStructureError(
                f"{index_path.name}: Longform header is missing the "
                f"'scenes' list",
                path=str(index_path),
            )
        return header

    @staticmethod
    def _scene_dir(index_dir: Path, raw_folder: Any) -> Path:
        folder = str(raw_folder or "/").strip().replace("\\", "/").strip("/")
        if folder in ("", "."):
            return index_dir
        return index_dir / folder

    @staticmethod
    def _entries(value: Any, index_path: Path) -> list[_Entry]:
        """Top-level entries, each with the flattened names nested under it."""
        if not isinstance(value, list):
            raise InvalidStructureError(
                f"{index_path.name}: longform.scenes must be a list",
                path=str(index_path),
            )

        def scene_name(item: Any) -> str:
            if isinstance(item, bool):
                return "true" if item else "false"
            if isinstance(item, (str, int, float)):
                return str(item)
            raise InvalidStructureError(
                f"{index_path.name}: scene names must be strings",
                path=str(index_path),
            )

        def flatten(items: list) -> list[str]:
            names: list[str] = []
            for item in items:
                if isinstance(item, list):
                    names.extend(flatten(item))
                else:
                    names.append(scene_name(item))
            return names

        entries: list[_Entry] = []
        for item in value:
            if isinstance(item, list):
                nested = flatten(item)
                if entries:
                    entries[-1].children.extend(nested)
                else:
                    entries.extend(_Entry(name=n) for n in nested)
            else:
                entries.append(_Entry(name=scene_name(item)))
        return entries

    @staticmethod
    def _resolve_scene_paths(
        entries: list[_Entry], scene_dir: Path, index_path: Path
    ) -> dict[str, Path]:
        paths: dict[str, Path] = {}
        for entry in entries:
            for name in [entry.name, *entry.children]:
                file_name = name
                if not name.lower().endswith(".md"):
                    file_name = f"{name}.md"
                scene_path = scene_dir / file_name
                if not scene_path.is_file():
                    raise NotFoundError(
                        f"Scene '{name}' listed in {index_path.name} was not "
                        f"found at {scene_path}"
                    )
                paths[name] = scene_path
        return paths

    # ------------------------------------------------------------------
    # Scene notes
    # ------------------------------------------------------------------

    def _read_scene(self, path: Path) -> _SceneNote:
        text, _ = read_file_with_encoding(path)
        raw, body = split_frontmatter(text)
        try:
            meta = load_frontmatter(raw)
        except (yaml.YAMLError, ValueError) as exc:
            logger.warning("Ignoring frontmatter of %s: %s", path.name, exc)
            meta = {}

        note = _SceneNote()
        for key, value in meta.items():
            canonical = _field_key(str(key))
            if canonical and value is not None:
                note.fields.setdefault(canonical, value)

        comment: dict[str, str] | None = None
        inline: dict[str, str] = {}
        body_lines: list[str] = []
        beat_lines: list[str] = []
        in_beats = False
        for line in body.splitlines():
            stripped = line.strip()
            if not in_beats and stripped.lower() == BEATS_MARKER:
                in_beats = True
                continue
            if in_beats:
                beat_lines.append(line)
                continue
            if comment is None:
                parsed = parse_kindling_comment(stripped)
                if parsed is not None:
                    comment = parsed
                    continue
            field_match = _INLINE_FIELD_RE.match(line)
            if field_match and _field_key(field_match.group(1)):
                inline.setdefault(
                    _field_key(field_match.group(1)), field_match.group(2)
                )
                continue
            body_lines.append(line)

        for source in (comment or {}, inline):
            for key, value in source.items():
                canonical = _field_key(key)
                if canonical and value:
                    note.fields.setdefault(canonical, value)

        note.prose = _block(body_lines)
        note.beats = self._beats(beat_lines)
        return note

    @staticmethod
    def _beats(lines: list[str]) -> list[tuple[str, str | None]]:
        beats: list[tuple[str, str | None]] = []
        current: str | None = None
        prose: list[str] = []
        for line in lines:
            bullet = _BULLET_RE.match(line)
            if bullet:
                if current is not None:
                    beats.append((current, _block(prose)))
                prose = []
                current = (bullet.group(1) or "").strip() or None
            elif current is not None:
                prose.append(line.strip())
        if current is not None:
            beats.append((current, _block(prose)))
        return beats

    # ------------------------------------------------------------------
    # Reference notes
    # ------------------------------------------------------------------

    @staticmethod
    def _markdown_files(root: Path) -> list[Path]:
        files = []
        for path in sorted(root.rglob("*.md")):
            rel_parts = path.relative_to(root).parts
            if any(part.startswith(".") for part in rel_parts):
                continue
            files.append(path)
        return files

    def _candidate_notes(
        self,
        index_dir: Path,
        index_path: Path,
        scene_paths: set[Path],
        ignored: list[str],
    ) -> list[Path]:
        notes = []
        for path in self._markdown_files(index_dir):
            if path == index_path or path in scene_paths:
                continue
            rel = path.relative_to(index_dir).as_posix()
            if any(
                fnmatch.fnmatch(rel, pattern)
                or fnmatch.fnmatch(path.name, pattern)
                for pattern in ignored
            ):
                continue
            notes.append(path)
        return notes

    def _reference_notes(
        self,
        notes: list[Path],
        index_dir: Path,
        progress: ProgressCallback | None,
        done: int,
        total: int,
    ) -> tuple[list[ParsedReference], dict[str, _NoteInfo]]:
        """Read vault notes that may be references.

        Returns the notes that classify as references on their own
        (declared type, folder or tag), plus a name index of every note so
        scene links can be resolved to note files.
        """
        references: list[ParsedReference] = []
        by_name: dict[str, _NoteInfo] = {}
        for path in notes:
            text, _ = read_file_with_encoding(path)
            raw, body = split_frontmatter(text)
            try:
                meta = load_frontmatter(raw)
            except (yaml.YAMLError, ValueError):
                meta = {}
            body_text = body.strip() or None
            by_name.setdefault(path.stem.casefold(), (path, meta, body_text))

            classification = classify(
                declared=meta.get("type") or meta.get("category"),
                folder=path.parent.relative_to(index_dir).as_posix(),
                tags=self._tags(meta, body),
            )
            if classification.basis != ClassificationBasis.DEFAULT:
                references.append(
                    self._note_reference(
                        path, meta, body_text, index_dir, classification
                    )
                )
            done += 1
            if progress is not None:
                progress(done, total, path.name)
        return references, by_name

    @staticmethod
    def _tags(meta: dict, body: str) -> list[str]:
        tags: list[str] = []
        for key in ("tags", "tag"):
            value = meta.get(key)
            if isinstance(value, str):
                tags.extend(t.strip() for t in re.split(r"[,\s]+", value) if t.strip())
            elif isinstance(value, list):
                tags.extend(str(t) for t in value if t)
        tags.extend(re.findall(r"(?:^|\s)#([\w/\-]+)", body))
        return tags

    @staticmethod
    def _note_reference(
        path: Path,
        meta: dict,
        body: str | None,
        index_dir: Path,
        classification: Classification,
    ) -> ParsedReference:
        attributes: dict[str, str] = {}
        if body:
            attributes["notes"] = body
        for key, value in meta.items():
            if str(key).lower() in _NOTE_META_KEYS:
                continue
            rendered = attribute_value(value)
            if rendered:
                attributes[str(key)] = rendered
        description = meta.get("description") or meta.get("summary")
        return ParsedReference(
            source_id=f"longform:ref:{path.relative_to(index_dir).as_posix()}",
            reference_type=classification.reference_type,
            name=str(meta.get("name") or path.stem).strip(),
            description=str(description).strip() if description else None,
            attributes=attributes,
            classification=classification,
        )

    def _linked_reference(
        self,
        name: str,
        hint: ReferenceType,
        index_dir: Path,
        references: list[ParsedReference],
        by_name: dict[str, _NoteInfo],
    ) -> str:
        """Resolve a scene-linked name to a reference, creating it if needed."""
        note = by_name.get(name.casefold())
        if note is not None:
            path, meta, body = note
            source_id = f"longform:ref:{path.relative_to(index_dir).as_posix()}"
            if not any(r.source_id == source_id for r in references):
                classification = classify(
                    declared=meta.get("type") or meta.get("category"),
                    folder=path.parent.relative_to(index_dir).as_posix(),
                    tags=self._tags(meta, body or ""),
                    hint=hint,
                )
                references.append(
                    self._note_reference(
                        path, meta, body, index_dir, classification
                    )
                )
            return source_id

        source_id = f"longform:ref:name:{hint.value}:{name.casefold()}"
        if not any(r.source_id == source_id for r in references):
            references.append(
                ParsedReference(
                    source_id=source_id,
                    reference_type=hint,
                    name=name,
                    classification=classify(hint=hint),
                )
            )
        return source_id

    # ------------------------------------------------------------------
    # Tree assembly
    # ------------------------------------------------------------------

    def _build_chapters(
        self,
        entries: list[_Entry],
        scene_paths: dict[str, Path],
        scene_notes: dict[str, _SceneNote],
        index_dir: Path,
        references: list[ParsedReference],
        by_name: dict[str, _NoteInfo],
    ) -> list[ParsedChapter]:
        def make_scene(name: str) -> ParsedScene:
            return self._scene(
                name,
                scene_paths[name],
                scene_notes[name],
                index_dir,
                references,
                by_name,
            )

        chapters: list[ParsedChapter] = []
        implicit: ParsedChapter | None = None
        implicit_count = 0
        for entry in entries:
            if entry.children:
                header_path = scene_paths[entry.name]
                header_sid = header_path.relative_to(index_dir).as_posix()
                chapter = ParsedChapter(
                    source_id=f"longform:chapter:{header_sid}",
                    title=entry.name,
                    position=len(chapters),
                )
                if not scene_notes[entry.name].is_empty:
                    chapter.scenes.append(make_scene(entry.name))
                for child in entry.children:
                    chapter.scenes.append(make_scene(child))
                chapters.append(chapter)
                implicit = None
                continue

            if implicit is None:
                implicit_count += 1
                source_id = DEFAULT_CHAPTER_SOURCE_ID
                if implicit_count > 1:
                    source_id = f"{DEFAULT_CHAPTER_SOURCE_ID}:{implicit_count}"
                implicit = ParsedChapter(
                    source_id=source_id, title="", position=len(chapters)
                )
                chapters.append(implicit)
            implicit.scenes.append(make_scene(entry.name))

        if not chapters:
            chapters.append(
                ParsedChapter(source_id=DEFAULT_CHAPTER_SOURCE_ID, title="")
            )
        for chapter in chapters:
            for position, scene in enumerate(chapter.scenes):
                scene.position = position
        return chapters

    def _scene(
        self,
        name: str,
        path: Path,
        note: _SceneNote,
        index_dir: Path,
        references: list[ParsedReference],
        by_name: dict[str, _NoteInfo],
    ) -> ParsedScene:
        source_id = path.relative_to(index_dir).as_posix()
        fields = note.fields

        reference_ids: list[str] = []
        for field_name, ref_type in _REFERENCE_FIELDS.items():
            for linked in _link_names(fields.get(field_name)):
                ref_id = self._linked_reference(
                    linked, ref_type, index_dir, references, by_name
                )
                if ref_id not in reference_ids:
                    reference_ids.append(ref_id)

        synopsis = fields.get("synopsis")
        status = fields.get("status")
        return ParsedScene(
            source_id=source_id,
            title=name,
            synopsis=str(synopsis).strip() if synopsis else None,
            prose=note.prose,
            scene_type=SceneType.parse(
                str(fields["scene_type"]) if "scene_type" in fields else None
            ),
            scene_status=SceneStatus.parse(str(status) if status else None),
            beats=[
                ParsedBeat(
                    source_id=f"{source_id}#beat{index}",
                    content=content,
                    prose=prose,
                    position=index,
                )
                for index, (content, prose) in enumerate(note.beats)
            ],
            reference_ids=reference_ids,
        )
