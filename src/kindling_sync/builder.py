"""Canonical Model Builder: one normalization pass over any reader's output.

Readers are allowed to be sloppy about titles, positions and duplicates;
after ``build_project`` every tree has the same guarantees:

- chapter, scene and beat positions are contiguous from 0 per parent;
- empty titles become "Chapter N" / "Scene N";
- beats with no content are dropped;
- source ids are unique per level across the project;
- each reference appears once, with its scene links pointing at
  references that exist.
"""

from __future__ import annotations

import logging

from kindling_sync.models import ParsedProject, ParsedReference

logger = logging.getLogger(__name__)

UNTITLED_REFERENCE = "Untitled"


def default_chapter_title(position: int) -> str:
    return f"Chapter {position + 1}"


def default_scene_title(position: int) -> str:
    return f"Scene {position + 1}"


class _UniqueIds:
    """Hands out source ids, suffixing repeats with ``~2``, ``~3``..."""

    def __init__(self, level: str) -> None:
        self.level = level
        self._seen: dict[str, int] = {}

    def claim(self, source_id: str | None) -> str | None:
        if source_id is None:
            return None
        count = self._seen.get(source_id, 0) + 1
        self._seen[source_id] = count
        if count == 1:
            return source_id
        unique = f"{source_id}~{count}"
        logger.debug(
            "Duplicate %s source id %s renamed to %s",
            self.level,
            source_id,
            unique,
        )
        return unique


def build_project(parsed: ParsedProject) -> ParsedProject:
    """Return a normalized copy of *parsed*; the input is left untouched."""
    project = parsed.model_copy(deep=True)
    project.title = project.title.strip() or "Untitled"

    references = _dedupe_references(project.references)
    project.references = references
    known_refs = {r.source_id for r in references if r.source_id}

    chapter_ids = _UniqueIds("chapter")
    scene_ids = _UniqueIds("scene")
    beat_ids = _UniqueIds("beat")

    for c_pos, chapter in enumerate(project.chapters):
        chapter.position = c_pos
        chapter.title = chapter.title.strip() or default_chapter_title(c_pos)
        chapter.source_id = chapter_ids.claim(chapter.source_id)

        for s_pos, scene in enumerate(chapter.scenes):
            scene.position = s_pos
            scene.title = scene.title.strip() or default_scene_title(s_pos)
            scene.source_id = scene_ids.claim(scene.source_id)
            if scene.synopsis is not None:
                scene.synopsis = scene.synopsis.strip() or None
            if scene.prose is not None and not scene.prose.strip():
                scene.prose = None

            linked: list[str] = []
            for ref_id in scene.reference_ids:
                if ref_id in known_refs and ref_id not in linked:
                    linked.append(ref_id)
            scene.reference_ids = linked

            beats = [b for b in scene.beats if b.content.strip()]
            for b_pos, beat in enumerate(beats):
                beat.position = b_pos
                beat.content = beat.content.strip()
                beat.source_id = beat_ids.claim(beat.source_id)
                if beat.prose is not None and not beat.prose.strip():
                    beat.prose = None
            scene.beats = beats

    return project


def _dedupe_references(
    references: list[ParsedReference],
) -> list[ParsedReference]:
    """Merge references seen more than once, keeping first-seen order.

    References match on source id, or on (type, name) when they have none.
    The first occurrence wins; later ones only fill in a missing
    description, missing attributes and a more confident classification.
    """
    merged: dict[tuple, ParsedReference] = {}
    for ref in references:
        ref.name = ref.name.strip() or UNTITLED_REFERENCE
        if ref.source_id:
            key: tuple = ("id", ref.source_id)
        else:
            key = ("name", ref.reference_type, ref.name.casefold())

        existing = merged.get(key)
        if existing is None:
            merged[key] = ref
            continue

        logger.debug("Merging duplicate reference %r", ref.name)
        if not existing.description and ref.description:
            existing.description = ref.description
        for attr, value in ref.attributes.items():
            existing.attributes.setdefault(attr, value)
        if ref.classification is not None and (
            existing.classification is None
            or ref.classification.confidence
            > existing.classification.confidence
        ):
            existing.classification = ref.classification
            existing.reference_type = ref.classification.reference_type
    return list(merged.values())
