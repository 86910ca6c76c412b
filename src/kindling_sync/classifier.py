"""Heuristic typing of reference notes whose kind is not spelled out.

Order of precedence, strongest first:

1. an explicit declared ``type`` / ``category`` on the note;
2. the field that linked the note from a scene (``characters:``, ``setting:``);
3. the name of a containing folder;
4. a tag such as ``#character`` or ``type/location``;
5. the generic ``items`` type.

The result is advisory. ``needs_reclassification`` tells the caller when
enough references were guessed that a manual review step is worth offering;
``reclassify_references`` applies the user's corrections to persisted rows.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from kindling_sync.errors import NotFoundError
from kindling_sync.models import (
    Classification,
    ClassificationBasis,
    Reference,
    ReferenceType,
)

if TYPE_CHECKING:
    from kindling_sync.store.base import ProjectStore

logger = logging.getLogger(__name__)

_ALIASES: dict[str, ReferenceType] = {}
for _type, _words in {
    ReferenceType.CHARACTERS: (
        "character", "characters", "char", "chars", "person", "people",
        "cast", "pov", "npc", "npcs",
    ),
    ReferenceType.LOCATIONS: (
        "location", "locations", "place", "places", "setting", "settings",
        "world", "worldbuilding",
    ),
    ReferenceType.ITEMS: (
        "item", "items", "object", "objects", "prop", "props", "artifact",
        "artifacts", "thing", "things",
    ),
    ReferenceType.OBJECTIVES: (
        "objective", "objectives", "goal", "goals", "quest", "quests",
        "mission", "missions",
    ),
    ReferenceType.ORGANIZATIONS: (
        "organization", "organizations", "organisation", "organisations",
        "org", "orgs", "faction", "factions", "group", "groups", "guild",
        "guilds",
    ),
}.items():
    for _word in _words:
        _ALIASES[_word] = _type

CONFIDENCE: dict[ClassificationBasis, float] = {
    ClassificationBasis.DECLARED: 1.0,
    ClassificationBasis.FIELD: 0.9,
    ClassificationBasis.FOLDER: 0.75,
    ClassificationBasis.TAG: 0.6,
    ClassificationBasis.DEFAULT: 0.2,
}

# Classifications below this confidence count as guesses
GUESS_THRESHOLD = 0.7


def normalize_reference_type(value: object) -> ReferenceType | None:
    """Map a free-form type word ("Character", "places") to a type."""
    if isinstance(value, ReferenceType):
        return value
    if not isinstance(value, str):
        return None
    key = value.strip().strip("#").strip().lower().replace(" ", "")
    return _ALIASES.get(key)


def type_from_folder(folder: str | PurePosixPath | None) -> ReferenceType | None:
    """Nearest folder component that names a reference type."""
    if folder is None:
        return None
    for part in reversed(PurePosixPath(str(folder).replace("\\", "/")).parts):
        found = normalize_reference_type(part)
        if found is not None:
            return found
    return None


def type_from_tags(tags: Iterable[str]) -> ReferenceType | None:
    """First tag whose segments (``type/character``) name a reference type."""
    for tag in tags:
        if not isinstance(tag, str):
            continue
        for segment in reversed(tag.strip().lstrip("#").split("/")):
            found = normalize_reference_type(segment)
            if found is not None:
                return found
    return None


def classify(
    declared: object = None,
    folder: str | PurePosixPath | None = None,
    tags: Iterable[str] = (),
    hint: ReferenceType | None = None,
) -> Classification:
    """Pick a reference type from the available signals.

    Args:
        declared: Value of an explicit ``type``/``category`` key.
        folder: Note's folder, relative to the vault root.
        tags: Note tags, with or without the leading ``#``.
        hint: Type implied by the scene field that linked the note.

    Returns:
        Classification with the winning basis and its confidence.
    """
    candidates = (
        (normalize_reference_type(declared), ClassificationBasis.DECLARED),
        (hint, ClassificationBasis.FIELD),
        (type_from_folder(folder), ClassificationBasis.FOLDER),
        (type_from_tags(tags), ClassificationBasis.TAG),
    )
    for ref_type, basis in candidates:
        if ref_type is not None:
            return Classification(
                reference_type=ref_type,
                basis=basis,
                confidence=CONFIDENCE[basis],
            )
    return Classification(
        reference_type=ReferenceType.ITEMS,
        basis=ClassificationBasis.DEFAULT,
        confidence=CONFIDENCE[ClassificationBasis.DEFAULT],
    )


def needs_reclassification(
    classifications: Iterable[Classification | None],
    threshold: float = 0.25,
) -> bool:
    """True when the share of guessed classifications reaches *threshold*.

    ``None`` entries (references typed by their source format) count as
    certain.
    """
    total = 0
    guessed = 0
    for item in classifications:
        total += 1
        if item is not None and item.confidence < GUESS_THRESHOLD:
            guessed += 1
    if total == 0 or guessed == 0:
        return False
    return guessed / total >= threshold


def reclassify_references(
    store: ProjectStore,
    project_id: str,
    mapping: Mapping[str, ReferenceType | str],
) -> list[Reference]:
    """Rewrite the type of persisted references.

    Args:
        store: Persistence gateway.
        project_id: Project owning the references.
        mapping: Reference id -> new type (enum or type word).

    Returns:
        The updated references.

    Raises:
        NotFoundError: If a reference id does not belong to the project.
        ValueError: If a type word is not recognised.
    """
    existing = {r.id: r for r in store.get_references(project_id)}
    resolved: dict[str, ReferenceType] = {}
    for ref_id, raw_type in mapping.items():
        if ref_id not in existing:
            raise NotFoundError(
                f"Reference {ref_id} not found in project {project_id}"
            )
        new_type = normalize_reference_type(raw_type)
        if new_type is None:
            raise ValueError(f"Unknown reference type: {raw_type!r}")
        resolved[ref_id] = new_type

    with store.write_lock(project_id):
        for ref_id, new_type in resolved.items():
            if existing[ref_id].reference_type == new_type:
                continue
            logger.info(
                "Reclassifying reference %r: %s -> %s",
                existing[ref_id].name,
                existing[ref_id].reference_type.value,
                new_type.value,
            )
            store.update_field("reference", ref_id, "reference_type", new_type.value)

    refreshed = {r.id: r for r in store.get_references(project_id)}
    return [refreshed[ref_id] for ref_id in resolved]
