"""Pydantic models for the reimport sync engine.

Defines the data contracts shared by the diff engine, merge applier and
reporter:

- ``ItemType``: Level of the outline an addition or change targets.
- ``SyncAddition``: A fresh item with no persisted counterpart.
- ``SyncChange``: One differing field on a matched item.
- ``SyncPreview``: Everything a sync would do, in depth-first order.
- ``SkippedItem``: An accepted item the applier had to leave alone.
- ``ReimportSummary``: What an apply or reimport actually did.
- ``ImportResult``: Outcome of an initial import.

Preview models are frozen. ``ReimportSummary`` is filled in while a merge
runs, so it stays mutable.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class ItemType(str, Enum):
    """Outline level of a sync candidate."""

    CHAPTER = "chapter"
    SCENE = "scene"
    BEAT = "beat"


class SyncAddition(BaseModel):
    """A fresh item that does not exist in the store yet.

    Attributes:
        id: ``"{item_type}-{source_id}"``.
        item_type: Outline level.
        title: Display title (beat content is truncated).
        parent_title: Title of the chapter or scene it goes under; the
            persisted title when the parent exists, else the fresh one.
        source_id: Source identifier of the new item.
        parent_source_id: Source identifier of its parent, if any.
    """

    id: str
    item_type: ItemType
    title: str
    parent_title: str | None = None
    source_id: str
    parent_source_id: str | None = None

    model_config = {"frozen": True}


class SyncChange(BaseModel):
    """A single field that differs between source and store.

    Attributes:
        id: ``"{item_type}-{field}-{db_id}"``.
        item_type: Outline level.
        field: ``title``, ``synopsis`` or ``content``.
        item_title: Persisted title of the item, for display.
        current_value: Value in the store.
        new_value: Value in the fresh parse.
        db_id: Persisted id of the item.
    """

    id: str
    item_type: ItemType
    field: str
    item_title: str
    current_value: str | None = None
    new_value: str | None = None
    db_id: str

    model_config = {"frozen": True}


class SyncPreview(BaseModel):
    """Proposed additions and changes for one project.

    Attributes:
        project_id: Project the preview was computed for.
        additions: New items, depth-first.
        changes: Field changes, depth-first.
    """

    project_id: str | None = None
    additions: list[SyncAddition] = Field(default_factory=list)
    changes: list[SyncChange] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def is_empty(self) -> bool:
        return not self.additions and not self.changes

    @property
    def addition_ids(self) -> list[str]:
        return [a.id for a in self.additions]

    @property
    def change_ids(self) -> list[str]:
        return [c.id for c in self.changes]


class SkippedItem(BaseModel):
    """An accepted addition or change that was not applied."""

    item_id: str
    reason: str

    model_config = {"frozen": True}


class ReimportSummary(BaseModel):
    """Counts of what a merge applied.

    Attributes:
        chapters_added: New chapters inserted.
        chapters_updated: Chapter fields overwritten.
        scenes_added: New scenes inserted.
        scenes_updated: Scene fields overwritten.
        beats_added: New beats inserted.
        beats_updated: Beat fields overwritten.
        prose_preserved: Matched scenes and beats whose authored prose was
            kept as is.
        skipped: Accepted items left alone, with the reason.
    """

    chapters_added: int = 0
    chapters_updated: int = 0
    scenes_added: int = 0
    scenes_updated: int = 0
    beats_added: int = 0
    beats_updated: int = 0
    prose_preserved: int = 0
    skipped: list[SkippedItem] = Field(default_factory=list)

    @property
    def total_added(self) -> int:
        return self.chapters_added + self.scenes_added + self.beats_added

    @property
    def total_updated(self) -> int:
        return self.chapters_updated + self.scenes_updated + self.beats_updated

    def record_added(self, item_type: ItemType) -> None:
        field = f"{item_type.value}s_added"
        setattr(self, field, getattr(self, field) + 1)

    def record_updated(self, item_type: ItemType) -> None:
        field = f"{item_type.value}s_updated"
        setattr(self, field, getattr(self, field) + 1)


class ImportResult(BaseModel):
    """Outcome of an initial import.

    Attributes:
        project_id: Id of the created project.
        counts: Chapters, scenes, beats and references persisted.
        needs_reclassification: True when enough references had their type
            guessed that the user should review them.
        guessed_references: Number of references typed by a weak heuristic.
    """

    project_id: str
    counts: dict[str, int] = Field(default_factory=dict)
    needs_reclassification: bool = False
    guessed_references: int = 0

    model_config = {"frozen": True}
