"""Reader for Plottr ``.pltr`` exports (JSON).

Layout consumed:

- ``beats``: per-book containers (``{"1": {"index": {...}, "heap": {...}}}``,
  the ``series`` container is ignored). Beats become chapters in depth-first
  order; a beat that has child beats becomes a part chapter.
- ``cards``: grouped by ``beatId``, ordered by ``(positionWithinLine,
  position)``; each card becomes a scene whose description is both the
  synopsis and a single beat.
- ``characters`` / ``places``: references. Keys the app does not model
  become attributes; ``notes`` is flattened into the ``notes`` attribute.

Source ids reuse Plottr's numeric ids: ``plottr:beat:<id>``,
``plottr:card:<id>``, ``plottr:character:<id>``, ``plottr:place:<id>``.
"""

from __future__ import annotations

import json
import logging
import re
from collections import defaultdict
from pathlib import Path
from typing import Any

from kindling_sync.errors import (
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
    SourceFormat,
)
from kindling_sync.readers.base import ProgressCallback, attribute_value

logger = logging.getLogger(__name__)

# Keys on characters/places that are structural, not user attributes
_KNOWN_ENTITY_KEYS = frozenset(
    {
        "id",
        "name",
        "description",
        "notes",
        "color",
        "cards",
        "noteIds",
        "templates",
        "tags",
        "categoryId",
        "imageId",
        "bookIds",
    }
)

_MIN_SUPPORTED_YEAR = 2020


def _id(value: Any) -> str:
    if value is None:
        return "null"
    return str(value)


def _number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def flatten_rich_text(value: Any) -> str | None:
    """Flatten Plottr's Slate rich text to plain text.

    Plain strings pass through. Block nodes become lines; leaf ``text``
    values inside one block are concatenated.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        value = [value]
    if not isinstance(value, list):
        return None

    lines: list[str] = []
    for node in value:
        lines.extend(_block_lines(node))
    text = "\n".join(lines).strip()
    return text or None


def _block_lines(node: Any) -> list[str]:
    if isinstance(node, str):
        return [node]
    if not isinstance(node, dict):
        return []
    if "text" in node and "children" not in node:
        return [str(node.get("text") or "")]
    children = node.get("children") or []
    if any(isinstance(c, dict) and "children" in c for c in children):
        lines: list[str] = []
        for child in children:
            lines.extend(_block_lines(child))
        return lines
    return ["".join(_inline_text(c) for c in children)]


def _inline_text(node: Any) -> str:
    if isinstance(node, str):
        return node
    if not isinstance(node, dict):
        return ""
    if "text" in node:
        return str(node.get("text") or "")
    return "".join(_inline_text(c) for c in node.get("children") or [])


def _entity_attribute(value: Any) -> str | None:
    if isinstance(value, (list, dict)) and _looks_like_rich_text(value):
        return flatten_rich_text(value)
    return attribute_value(value)


def _looks_like_rich_text(value: Any) -> bool:
    nodes = value if isinstance(value, list) else [value]
    return any(
        isinstance(n, dict) and ("children" in n or "text" in n)
        for n in nodes
    )


class PlottrReader:
    """Parse a Plottr JSON export into a ``ParsedProject``."""

    format = SourceFormat.PLOTTR

    def parse(
        self,
        path: str | Path,
        progress: ProgressCallback | None = None,
    ) -> ParsedProject:
        resolved = validate_source_path(path)
        data = self._load(resolved)

        chapters, beat_index = self._parse_chapters(data, resolved)
        references = self._parse_references(data)
        known_refs = {r.source_id for r in references}
        self._attach_cards(data, beat_index, known_refs)

        project = ParsedProject(
            title=self._project_title(data, resolved),
            source_format=self.format,
            source_path=str(path),
            chapters=chapters,
            references=references,
        )
        logger.debug(
            "Parsed Plottr file %s: %s", resolved.name, project.counts()
        )
        if progress is not None:
            progress(1, 1, resolved.name)
        return project

    # ------------------------------------------------------------------
    # Loading and validation
    # ------------------------------------------------------------------

    def _load(self, path: Path) -> dict:
        try:
            data = json.loads(path.read_bytes())
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise InvalidStructureError(
                f"{path.name} is not valid Plottr JSON: {exc}", path=str(path)
            ) from exc
        if not isinstance(data, dict):
            raise InvalidStructureError(
                f"{path.name}: top level must be a JSON object",
                path=str(path),
            )

        if "beats" not in data:
            version = (data.get("file") or {}).get("version")
            year = self._version_year(version)
            if "chapters" in data or (
                year is not None and year < _MIN_SUPPORTED_YEAR
            ):
                raise UnsupportedVersionError(
                    f"{path.name}: Plottr {version or 'legacy'} files "
                    f"(chapters layout) are not supported; resave with "
                    f"Plottr {_MIN_SUPPORTED_YEAR} or newer",
                    path=str(path),
                )
            raise InvalidStructureError(
                f"{path.name}: missing 'beats' section", path=str(path)
            )
        return data

    @staticmethod
    def _version_year(version: Any) -> int | None:
        if not isinstance(version, str):
            return None
        match = re.match(r"\s*(\d+)", version)
        return int(match.group(1)) if match else None

    @staticmethod
    def _project_title(data: dict, path: Path) -> str:
        series = data.get("series")
        if isinstance(series, dict):
            name = series.get("name")
            if isinstance(name, str) and name.strip():
                return name.strip()
        return path.stem

    # ------------------------------------------------------------------
    # Beats -> chapters
    # ------------------------------------------------------------------

    def _parse_chapters(
        self, data: dict, path: Path
    ) -> tuple[list[ParsedChapter], dict[str, ParsedChapter]]:
        beats_value = data.get("beats")
        if isinstance(beats_value, list):
            index = {
                _id(b.get("id")): b
                for b in beats_value
                if isinstance(b, dict)
            }
            books = [{"index": index}]
        elif isinstance(beats_value, dict):
            books = [
                book
                for key, book in beats_value.items()
                if key != "series" and isinstance(book, dict)
            ]
        else:
            raise InvalidStructureError(
                f"{path.name}: 'beats' must be an object or a list",
                path=str(path),
            )

        chapters: list[ParsedChapter] = []
        beat_index: dict[str, ParsedChapter] = {}
        for book in books:
            for beat, has_children in self._ordered_beats(book):
                beat_id = _id(beat.get("id"))
                title = beat.get("title")
                if not isinstance(title, str) or title.strip() in ("", "auto"):
                    title = ""
                chapter = ParsedChapter(
                    source_id=f"plottr:beat:{beat_id}",
                    title=title.strip(),
                    position=len(chapters),
                    is_part=has_children,
                )
                chapters.append(chapter)
                beat_index[beat_id] = chapter
        return chapters, beat_index

    @staticmethod
    def _ordered_beats(book: dict) -> list[tuple[dict, bool]]:
        """Depth-first beat order for one book, flagging beats with children."""
        index = book.get("index") or {}
        heap = book.get("heap") or {}
        beats = {
            _id(b.get("id")): b
            for b in index.values()
            if isinstance(b, dict)
        }

        kids: dict[str | None, list[str]] = defaultdict(list)
        for beat_id in beats:
            parent = heap.get(beat_id)
            parent_key = _id(parent) if parent is not None else None
            if parent_key not in beats:
                parent_key = None
            kids[parent_key].append(beat_id)
        for siblings in kids.values():
            siblings.sort(
                key=lambda b: (_number(beats[b].get("position")), b)
            )

        ordered: list[tuple[dict, bool]] = []

        def walk(parent: str | None) -> None:
            for beat_id in kids.get(parent, []):
                ordered.append((beats[beat_id], bool(kids.get(beat_id))))
                walk(beat_id)

        walk(None)
        return ordered

    # ------------------------------------------------------------------
    # Cards -> scenes
    # ------------------------------------------------------------------

    def _attach_cards(
        self,
        data: dict,
        beat_index: dict[str, ParsedChapter],
        known_refs: set[str | None],
    ) -> None:
        line_order = {
            _id(line.get("id")): _number(line.get("position"))
            for line in data.get("lines") or []
            if isinstance(line, dict)
        }

        grouped: dict[str, list[dict]] = defaultdict(list)
        for card in data.get("cards") or []:
            if not isinstance(card, dict):
                continue
            beat_id = _id(card.get("beatId"))
            if beat_id not in beat_index:
                logger.debug(
                    "Skipping card %s: beat %s not found",
                    card.get("id"),
                    beat_id,
                )
                continue
            grouped[beat_id].append(card)

        for beat_id, cards in grouped.items():
            cards.sort(
                key=lambda c: (
                    _number(c.get("positionWithinLine")),
                    _number(c.get("position")),
                    line_order.get(_id(c.get("lineId")), 0.0),
                    _id(c.get("id")),
                )
            )
            chapter = beat_index[beat_id]
            for card in cards:
                chapter.scenes.append(
                    self._card_to_scene(card, len(chapter.scenes), known_refs)
                )

    @staticmethod
    def _card_to_scene(
        card: dict, position: int, known_refs: set[str | None]
    ) -> ParsedScene:
        card_id = _id(card.get("id"))
        synopsis = flatten_rich_text(card.get("description"))
        title = card.get("title")

        beats: list[ParsedBeat] = []
        if synopsis and synopsis.strip():
            beats.append(
                ParsedBeat(
                    source_id=f"plottr:card:{card_id}:description",
                    content=synopsis,
                )
            )

        ref_ids: list[str] = []
        for char_id in card.get("characters") or []:
            ref_ids.append(f"plottr:character:{_id(char_id)}")
        for place_id in card.get("places") or []:
            ref_ids.append(f"plottr:place:{_id(place_id)}")

        return ParsedScene(
            source_id=f"plottr:card:{card_id}",
            title=title.strip() if isinstance(title, str) else "",
            synopsis=synopsis,
            position=position,
            beats=beats,
            reference_ids=[r for r in ref_ids if r in known_refs],
        )

    # ------------------------------------------------------------------
    # Characters / places -> references
    # ------------------------------------------------------------------

    def _parse_references(self, data: dict) -> list[ParsedReference]:
        references: list[ParsedReference] = []
        for key, ref_type, prefix in (
            ("characters", ReferenceType.CHARACTERS, "character"),
            ("places", ReferenceType.LOCATIONS, "place"),
        ):
            for entity in data.get(key) or []:
                if isinstance(entity, dict):
                    references.append(
                        self._entity_to_reference(entity, ref_type, prefix)
                    )
        return references

    @staticmethod
    def _entity_to_reference(
        entity: dict, ref_type: ReferenceType, prefix: str
    ) -> ParsedReference:
        attributes: dict[str, str] = {}
        notes = flatten_rich_text(entity.get("notes"))
        if notes:
            attributes["notes"] = notes
        for key, value in entity.items():
            if key in _KNOWN_ENTITY_KEYS:
                continue
            rendered = _entity_attribute(value)
            if rendered:
                attributes[key] = rendered

        name = entity.get("name")
        return ParsedReference(
            source_id=f"plottr:{prefix}:{_id(entity.get('id'))}",
            reference_type=ref_type,
            name=name.strip() if isinstance(name, str) else "",
            description=_entity_attribute(entity.get("description")),
            attributes=attributes,
            classification=Classification(
                reference_type=ref_type,
                basis=ClassificationBasis.DECLARED,
                confidence=1.0,
            ),
        )
