"""Reader for yWriter 6/7 project files (``.yw6`` / ``.yw7`` XML).

Mapping:

- ``CHAPTER`` (normal type only, sorted by ``SortOrder``) -> chapter;
  ``SectionStart`` marks a part.
- ``SCENE`` listed by the chapter -> scene. Unused scenes are skipped.
  ``Status`` and the scene type are kept.
- ``Goal`` / ``Conflict`` / ``Outcome`` -> up to three beats (reaction scenes
  use Response / Dilemma / Decision labels).
- ``SceneContent`` -> prose of the first beat, or of a "Scene Content" beat
  when the scene has no structured beats.
- ``CHARACTER`` / ``LOCATION`` / ``ITEM`` -> references.

Source ids are prefixed yWriter ids: ``yw:ch:<id>``, ``yw:sc:<id>``,
``yw:sc:<id>:goal``, ``yw:cr:<id>``, ``yw:lc:<id>``, ``yw:it:<id>``.
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from pathlib import Path

from kindling_sync.errors import (
    FormatError,
    InvalidStructureError,
    UnsupportedVersionError,
)
from kindling_sync.file_handler import validate_source_path
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
from kindling_sync.readers.base import ProgressCallback, optional_text

logger = logging.getLogger(__name__)

_SUPPORTED_ROOTS = ("YWRITER7", "YWRITER6")

# yWriter status codes: 1 Outline, 2 Draft, 3 1st Edit, 4 2nd Edit, 5 Done
_STATUS_MAP = {
    "1": SceneStatus.DRAFT,
    "2": SceneStatus.DRAFT,
    "3": SceneStatus.REVISED,
    "4": SceneStatus.REVISED,
    "5": SceneStatus.FINAL,
}

_SCENE_TYPE_MAP = {
    "0": SceneType.NORMAL,
    "1": SceneType.NOTES,
    "2": SceneType.TODO,
    "3": SceneType.UNUSED,
}

_MARKUP_RE = re.compile(r"\[/?[ibus]\]", re.IGNORECASE)
_XML_DECL_RE = re.compile(r"^\s*<\?xml[^>]*\?>")


def convert_ywriter_markup(text: str) -> str:
    """Convert yWriter ``[i]``/``[b]`` markup and paragraphs to HTML."""
    converted = (
        text.replace("[i]", "<em>")
        .replace("[/i]", "</em>")
        .replace("[b]", "<strong>")
        .replace("[/b]", "</strong>")
    )
    paragraphs = [p.strip() for p in converted.split("\n\n") if p.strip()]
    return "\n".join(
        f"<p>{p.replace(chr(10), '<br>')}</p>" for p in paragraphs
    )


def strip_ywriter_markup(text: str | None) -> str | None:
    if text is None:
        return None
    return optional_text(_MARKUP_RE.sub("", text))


def _text(element: ET.Element | None, tag: str) -> str | None:
    if element is None:
        return None
    child = element.find(tag)
    if child is None or child.text is None:
        return None
    return child.text


def _id_list(element: ET.Element, container: str, tag: str) -> list[str]:
    """Ids from ``<Container><Tag>1</Tag>...`` or ``<Container>1;2</Container>``."""
    node = element.find(container)
    if node is None:
        return []
    ids = [
        c.text.strip()
        for c in node.findall(tag)
        if c.text and c.text.strip()
    ]
    if not ids and node.text:
        ids = [p.strip() for p in node.text.split(";") if p.strip()]
    return ids


def _is_flag(element: ET.Element, tag: str) -> bool:
    node = element.find(tag)
    if node is None:
        return False
    # yWriter writes "-1" for true; empty elements also mean true
    return (node.text or "-1").strip() in ("-1", "1", "true", "True")


class YWriterReader:
    """Parse a yWriter XML project into a ``ParsedProject``."""

    format = SourceFormat.YWRITER

    def parse(
        self,
        path: str | Path,
        progress: ProgressCallback | None = None,
    ) -> ParsedProject:
        resolved = validate_source_path(path)
        root = self._load(resolved)

        project_el = root.find("PROJECT")
        references = self._parse_references(root)
        known_refs = {r.source_id for r in references}
        scenes: dict[str, ET.Element] = {}
        for scene_el in root.iter("SCENE"):
            scene_id = (_text(scene_el, "ID") or "").strip()
            if scene_id:
                scenes[scene_id] = scene_el
        chapters = self._parse_chapters(root, scenes, known_refs)

        project = ParsedProject(
            title=optional_text(_text(project_el, "Title")) or resolved.stem,
            source_format=self.format,
            source_path=str(path),
            author=optional_text(
                _text(project_el, "AuthorName") or _text(project_el, "Author")
            ),
            description=self._project_description(root, project_el),
            word_target=self._word_target(project_el),
            chapters=chapters,
            references=references,
        )
        logger.debug(
            "Parsed yWriter file %s: %s", resolved.name, project.counts()
        )
        if progress is not None:
            progress(1, 1, resolved.name)
        return project

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load(self, path: Path) -> ET.Element:
        raw = path.read_bytes()
        try:
            root = ET.fromstring(raw)
        except ET.ParseError as first_error:
            root = self._load_decoded(raw, path, first_error)

        tag = root.tag.upper()
        if tag.startswith("YWRITER") and tag not in _SUPPORTED_ROOTS:
            raise UnsupportedVersionError(
                f"{path.name}: {root.tag} files are not supported "
                f"(expected {' or '.join(_SUPPORTED_ROOTS)})",
                path=str(path),
            )
        if tag not in _SUPPORTED_ROOTS:
            raise InvalidStructureError(
                f"{path.name}: <{root.tag}> is not a yWriter project",
                path=str(path),
            )
        return root

    @staticmethod
    def _load_decoded(
        raw: bytes, path: Path, first_error: ET.ParseError
    ) -> ET.Element:
        """Second attempt: decode by BOM ourselves and drop the declaration."""
        if raw[:2] in (b"\xff\xfe", b"\xfe\xff"):
            encoding = "utf-16"
        else:
            encoding = "utf-8-sig"
        try:
            text = raw.decode(encoding)
        except UnicodeDecodeError as exc:
            raise FormatError(
                f"{path.name}: cannot decode file as {encoding}: {exc}",
                path=str(path),
            ) from exc
        try:
            return ET.fromstring(_XML_DECL_RE.sub("", text, count=1))
        except ET.ParseError:
            raise InvalidStructureError(
                f"{path.name}: malformed XML: {first_error}", path=str(path)
            ) from first_error

    # ------------------------------------------------------------------
    # Project metadata
    # ------------------------------------------------------------------

    @staticmethod
    def _word_target(project_el: ET.Element | None) -> int | None:
        value = _text(project_el, "WordTarget")
        if value is None:
            return None
        try:
            return int(value.strip())
        except ValueError:
            return None

    @staticmethod
    def _project_description(
        root: ET.Element, project_el: ET.Element | None
    ) -> str | None:
        parts: list[str] = []
        desc = strip_ywriter_markup(_text(project_el, "Desc"))
        if desc:
            parts.append(desc)

        notes = []
        for note_el in root.iter("PROJECTNOTE"):
            order = _text(note_el, "SortOrder") or "0"
            block = "\n".join(
                p
                for p in (
                    optional_text(_text(note_el, "Title")),
                    strip_ywriter_markup(_text(note_el, "Desc")),
                )
                if p
            )
            if block:
                rank = int(order) if order.strip().isdigit() else 0
                notes.append((rank, block))
        if notes:
            notes.sort(key=lambda n: n[0])
            parts.append("Project Notes:")
            parts.extend(block for _, block in notes)
        return "\n\n".join(parts) or None

    # ------------------------------------------------------------------
    # Chapters and scenes
    # ------------------------------------------------------------------

    def _parse_chapters(
        self,
        root: ET.Element,
        scenes: dict[str, ET.Element],
        known_refs: set[str | None],
    ) -> list[ParsedChapter]:
        raw_chapters: list[tuple[int, int, ET.Element]] = []
        for doc_order, chapter_el in enumerate(root.iter("CHAPTER")):
            if not self._is_normal_chapter(chapter_el):
                logger.debug(
                    "Skipping non-normal chapter %r",
                    _text(chapter_el, "Title"),
                )
                continue
            sort_raw = (_text(chapter_el, "SortOrder") or "").strip()
            if sort_raw.lstrip("-").isdigit():
                sort_order = int(sort_raw)
            else:
                sort_order = doc_order
            raw_chapters.append((sort_order, doc_order, chapter_el))
        raw_chapters.sort(key=lambda c: (c[0], c[1]))

        chapters: list[ParsedChapter] = []
        for _, _, chapter_el in raw_chapters:
            chapter_id = (_text(chapter_el, "ID") or "").strip()
            chapter = ParsedChapter(
                source_id=f"yw:ch:{chapter_id}" if chapter_id else None,
                title=optional_text(_text(chapter_el, "Title")) or "",
                position=len(chapters),
                is_part=chapter_el.find("SectionStart") is not None,
            )
            for scene_id in _id_list(chapter_el, "Scenes", "ScID"):
                scene_el = scenes.get(scene_id)
                if scene_el is None:
                    logger.warning(
                        "Chapter %s lists missing scene %s", chapter_id, scene_id
                    )
                    continue
                scene = self._parse_scene(scene_id, scene_el, known_refs)
                if scene is None:
                    continue
                scene.position = len(chapter.scenes)
                chapter.scenes.append(scene)
            chapters.append(chapter)
        return chapters

    @staticmethod
    def _is_normal_chapter(chapter_el: ET.Element) -> bool:
        if _is_flag(chapter_el, "Unused"):
            return False
        for tag in ("ChapterType", "Type"):
            value = _text(chapter_el, tag)
            if value is not None and value.strip() not in ("", "0"):
                return False
        return True

    @staticmethod
    def _scene_type(scene_el: ET.Element) -> SceneType:
        if _is_flag(scene_el, "Unused"):
            return SceneType.UNUSED
        for path in ("ScType", "Fields/Field_SceneType"):
            value = _text(scene_el, path)
            if value is not None and value.strip() in _SCENE_TYPE_MAP:
                return _SCENE_TYPE_MAP[value.strip()]
        return SceneType.NORMAL

    def _parse_scene(
        self,
        scene_id: str,
        scene_el: ET.Element,
        known_refs: set[str | None],
    ) -> ParsedScene | None:
        scene_type = self._scene_type(scene_el)
        if scene_type == SceneType.UNUSED:
            logger.debug("Skipping unused scene %s", scene_id)
            return None

        source_id = f"yw:sc:{scene_id}"
        if _is_flag(scene_el, "ReactionScene"):
            labels = ("Response", "Dilemma", "Decision")
        else:
            labels = ("Goal", "Conflict", "Outcome")

        beats: list[ParsedBeat] = []
        for tag, label, suffix in zip(
            ("Goal", "Conflict", "Outcome"),
            labels,
            ("goal", "conflict", "outcome"),
        ):
            value = strip_ywriter_markup(_text(scene_el, tag))
            if value:
                beats.append(
                    ParsedBeat(
                        source_id=f"{source_id}:{suffix}",
                        content=f"{label}: {value}",
                        position=len(beats),
                    )
                )

        content = _text(scene_el, "SceneContent")
        if content and content.strip():
            prose = convert_ywriter_markup(content)
            if beats:
                beats[0].prose = prose
            else:
                beats.append(
                    ParsedBeat(
                        source_id=f"{source_id}:prose",
                        content="Scene Content",
                        prose=prose,
                    )
                )

        ref_ids = (
            [f"yw:cr:{i}" for i in _id_list(scene_el, "Characters", "CharID")]
            + [f"yw:lc:{i}" for i in _id_list(scene_el, "Locations", "LocID")]
            + [f"yw:it:{i}" for i in _id_list(scene_el, "Items", "ItemID")]
        )

        status_raw = (_text(scene_el, "Status") or "").strip()
        return ParsedScene(
            source_id=source_id,
            title=optional_text(_text(scene_el, "Title")) or "",
            synopsis=strip_ywriter_markup(_text(scene_el, "Desc")),
            scene_type=scene_type,
            scene_status=_STATUS_MAP.get(status_raw),
            beats=beats,
            reference_ids=[r for r in ref_ids if r in known_refs],
        )

    # ------------------------------------------------------------------
    # References
    # ------------------------------------------------------------------

    def _parse_references(self, root: ET.Element) -> list[ParsedReference]:
        references: list[ParsedReference] = []
        for el in root.iter("CHARACTER"):
            ref_id = (_text(el, "ID") or "").strip()
            attributes = self._attributes(
                el,
                {
                    "Bio": "bio",
                    "Goals": "goals",
                    "Notes": "notes",
                    "AKA": "aka",
                },
            )
            short_name = optional_text(_text(el, "Title"))
            if _text(el, "FullName") and short_name:
                attributes["short_name"] = short_name
            if _is_flag(el, "Major"):
                attributes["major"] = "Yes"
            references.append(
                self._reference(
                    f"yw:cr:{ref_id}",
                    ReferenceType.CHARACTERS,
                    _text(el, "FullName") or _text(el, "Title"),
                    _text(el, "Desc"),
                    attributes,
                )
            )
        for tag, ref_type, prefix in (
            ("LOCATION", ReferenceType.LOCATIONS, "lc"),
            ("ITEM", ReferenceType.ITEMS, "it"),
        ):
            for el in root.iter(tag):
                ref_id = (_text(el, "ID") or "").strip()
                references.append(
                    self._reference(
                        f"yw:{prefix}:{ref_id}",
                        ref_type,
                        _text(el, "Title"),
                        _text(el, "Desc"),
                        self._attributes(el, {"Aka": "aka", "AKA": "aka"}),
                    )
                )
        return references

    @staticmethod
    def _attributes(el: ET.Element, mapping: dict[str, str]) -> dict[str, str]:
        attributes: dict[str, str] = {}
        for tag, key in mapping.items():
            value = strip_ywriter_markup(_text(el, tag))
            if value and key not in attributes:
                attributes[key] = value
        return attributes

    @staticmethod
    def _reference(
        source_id: str,
        ref_type: ReferenceType,
        name: str | None,
        description: str | None,
        attributes: dict[str, str],
    ) -> ParsedReference:
        return ParsedReference(
            source_id=source_id,
            reference_type=ref_type,
            name=optional_text(name) or "",
            description=strip_ywriter_markup(description),
            attributes=attributes,
            classification=Classification(
                reference_type=ref_type,
                basis=ClassificationBasis.DECLARED,
                confidence=1.0,
            ),
        )
