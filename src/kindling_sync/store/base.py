"""Persistence gateway interface used by the importer, engine and applier."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Any, Literal

from kindling_sync.models import (
    Beat,
    Chapter,
    ParsedBeat,
    ParsedChapter,
    ParsedProject,
    ParsedReference,
    ParsedScene,
    Project,
    ProjectSnapshot,
    Reference,
    Scene,
)

from .locks import ProjectLockRegistry

ItemKind = Literal["chapter", "scene", "beat", "reference"]


class ProjectStore(ABC):
    """Abstract persistence gateway.

    Every method is its own transaction. Readers return rows ordered by
    position (chapters, then scenes in chapter order, then beats in scene
    order), archived rows included. Inserts take a target position and shift
    later siblings down by one.

    Writers that span several calls (a merge) hold ``write_lock`` for the
    project around the whole batch.
    """

    def __init__(self, locks: ProjectLockRegistry | None = None) -> None:
        self.locks = locks or ProjectLockRegistry()

    def write_lock(
        self, project_id: str, timeout: float | None = None
    ) -> AbstractContextManager[None]:
        """Serialize writes to one project."""
        return self.locks.acquire(project_id, timeout=timeout)

    # -- reads --------------------------------------------------------------

    @abstractmethod
    def list_projects(self) -> list[Project]: ...

    @abstractmethod
    def get_project(self, project_id: str) -> Project:
        """Raises ``NotFoundError`` for an unknown id."""

    @abstractmethod
    def get_chapters(self, project_id: str) -> list[Chapter]: ...

    @abstractmethod
    def get_scenes(self, project_id: str) -> list[Scene]: ...

    @abstractmethod
    def get_beats(self, project_id: str) -> list[Beat]: ...

    @abstractmethod
    def get_references(self, project_id: str) -> list[Reference]: ...

    @abstractmethod
    def get_chapter(self, chapter_id: str) -> Chapter | None: ...

    @abstractmethod
    def get_scene(self, scene_id: str) -> Scene | None: ...

    @abstractmethod
    def get_beat(self, beat_id: str) -> Beat | None: ...

    @abstractmethod
    def get_scene_reference_ids(self, scene_id: str) -> list[str]: ...

    @abstractmethod
    def snapshot(self, project_id: str) -> ProjectSnapshot:
        """Project, chapters, scenes and beats read in one transaction."""

    # -- writes -------------------------------------------------------------

    @abstractmethod
    def create_project(self, parsed: ParsedProject) -> str:
        """Persist a whole parsed tree atomically and return the project id."""

    @abstractmethod
    def insert_chapter(
        self, project_id: str, chapter: ParsedChapter, position: int
    ) -> str: ...

    @abstractmethod
    def insert_scene(
        self, chapter_id: str, scene: ParsedScene, position: int
    ) -> str: ...

    @abstractmethod
    def insert_beat(self, scene_id: str, beat: ParsedBeat, position: int) -> str: ...

    @abstractmethod
    def insert_reference(
        self, project_id: str, reference: ParsedReference, position: int
    ) -> str: ...

    @abstractmethod
    def link_scene_reference(self, scene_id: str, reference_id: str) -> None: ...

    @abstractmethod
    def update_field(
        self, item_type: ItemKind, item_id: str, field: str, value: Any
    ) -> None:
        """Overwrite one column of one row.

        Raises:
            ValueError: If *field* is not writable for *item_type*.
            NotFoundError: If no such row exists.
        """
