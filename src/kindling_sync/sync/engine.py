"""Diff engine: compare a fresh parse against the persisted project.

``compute_preview`` is pure. It reads nothing and writes nothing beyond its
two arguments:

1. Persisted chapters, scenes and beats are indexed by ``source_id``.
2. A fresh item with no persisted counterpart becomes a ``SyncAddition``
   tagged with its parent's title.
3. A fresh item matching a persisted item that is neither locked nor
   archived (itself or through an ancestor) is compared on title, synopsis
   and beat content only. Each difference becomes a ``SyncChange``.
4. Persisted items missing from the fresh parse are left alone. Nothing is
   ever proposed for deletion.

Output follows the fresh tree depth-first: chapter, its scenes, their beats.
"""

from __future__ import annotations

import logging

from kindling_sync.models import (
    Beat,
    Chapter,
    ParsedProject,
    ProjectSnapshot,
    Scene,
)
from kindling_sync.sync.models import (
    ItemType,
    SyncAddition,
    SyncChange,
    SyncPreview,
)

logger = logging.getLogger(__name__)

BEAT_TITLE_LENGTH = 50


def beat_title(content: str) -> str:
    """Beat content shortened for display."""
    content = " ".join(content.split())
    if len(content) <= BEAT_TITLE_LENGTH:
        return content
    return content[:BEAT_TITLE_LENGTH] + "..."


def addition_id(item_type: ItemType, source_id: str) -> str:
    return f"{item_type.value}-{source_id}"


def change_id(item_type: ItemType, field: str, db_id: str) -> str:
    return f"{item_type.value}-{field}-{db_id}"


class _PersistedIndex:
    """Lookups over a snapshot: by source id, and blocked-ness by id."""

    def __init__(self, snapshot: ProjectSnapshot) -> None:
        self.chapters: dict[str, Chapter] = {}
        self.scenes: dict[str, Scene] = {}
        self.beats: dict[str, Beat] = {}
        self._chapters_by_id = {c.id: c for c in snapshot.chapters}
        self._scenes_by_id = {s.id: s for s in snapshot.scenes}

        for chapter in snapshot.chapters:
            if chapter.source_id:
                self.chapters.setdefault(chapter.source_id, chapter)
        for scene in snapshot.scenes:
            if scene.source_id:
                self.scenes.setdefault(scene.source_id, scene)
        for beat in snapshot.beats:
            if beat.source_id:
                self.beats.setdefault(beat.source_id, beat)

    def chapter_blocked(self, chapter_id: str) -> bool:
        chapter = self._chapters_by_id.get(chapter_id)
        return chapter is None or chapter.locked or chapter.archived

    def scene_blocked(self, scene_id: str) -> bool:
        scene = self._scenes_by_id.get(scene_id)
        if scene is None or scene.locked or scene.archived:
            return True
        return self.chapter_blocked(scene.chapter_id)


class _PreviewBuilder:
    def __init__(self) -> None:
        self.additions: list[SyncAddition] = []
        self.changes: list[SyncChange] = []

    def add(
        self,
        item_type: ItemType,
        source_id: str,
        title: str,
        parent_title: str | None,
        parent_source_id: str | None,
    ) -> None:
        self.additions.append(
            SyncAddition(
                id=addition_id(item_type, source_id),
                item_type=item_type,
                title=title,
                parent_title=parent_title,
                source_id=source_id,
                parent_source_id=parent_source_id,
            )
        )

    def compare(
        self,
        item_type: ItemType,
        db_id: str,
        item_title: str,
        field: str,
        current: str | None,
        new: str | None,
    ) -> None:
        if (current or "") == (new or ""):
            return
        self.changes.append(
            SyncChange(
                id=change_id(item_type, field, db_id),
                item_type=item_type,
                field=field,
                item_title=item_title,
                current_value=current,
                new_value=new,
                db_id=db_id,
            )
        )


def compute_preview(
    parsed: ParsedProject,
    snapshot: ProjectSnapshot,
) -> SyncPreview:
    """Diff a normalized fresh parse against a persisted snapshot.

    Args:
        parsed: Output of ``build_project`` for the re-read source.
        snapshot: Consistent read of the persisted project.

    Returns:
        The proposed additions and changes, depth-first.
    """
    index = _PersistedIndex(snapshot)
    out = _PreviewBuilder()

    for chapter in parsed.chapters:
        if not chapter.source_id:
            logger.debug("Chapter %r has no source id, skipped", chapter.title)
            continue

        p_chapter = index.chapters.get(chapter.source_id)
        if p_chapter is None:
            out.add(ItemType.CHAPTER, chapter.source_id, chapter.title, None, None)
            chapter_title = chapter.title
            chapter_blocked = False
        else:
            chapter_title = p_chapter.title
            chapter_blocked = index.chapter_blocked(p_chapter.id)
            if not chapter_blocked:
                out.compare(
                    ItemType.CHAPTER,
                    p_chapter.id,
                    p_chapter.title,
                    "title",
                    p_chapter.title,
                    chapter.title,
                )

        for scene in chapter.scenes:
            if not scene.source_id:
                logger.debug("Scene %r has no source id, skipped", scene.title)
                continue

            p_scene = index.scenes.get(scene.source_id)
            if p_scene is None:
                if chapter_blocked:
                    logger.debug(
                        "Not proposing scene %s under locked or archived chapter %r",
                        scene.source_id,
                        chapter_title,
                    )
                    continue
                out.add(
                    ItemType.SCENE,
                    scene.source_id,
                    scene.title,
                    chapter_title,
                    chapter.source_id,
                )
                scene_title = scene.title
                scene_blocked = False
            else:
                scene_title = p_scene.title
                scene_blocked = index.scene_blocked(p_scene.id)
                if not scene_blocked:
                    out.compare(
                        ItemType.SCENE,
                        p_scene.id,
                        p_scene.title,
                        "title",
                        p_scene.title,
                        scene.title,
                    )
                    out.compare(
                        ItemType.SCENE,
                        p_scene.id,
                        p_scene.title,
                        "synopsis",
                        p_scene.synopsis,
                        scene.synopsis,
                    )

            for beat in scene.beats:
                if not beat.source_id:
                    continue

                p_beat = index.beats.get(beat.source_id)
                if p_beat is None:
                    if scene_blocked:
                        continue
                    out.add(
                        ItemType.BEAT,
                        beat.source_id,
                        beat_title(beat.content),
                        scene_title,
                        scene.source_id,
                    )
                elif not index.scene_blocked(p_beat.scene_id):
                    out.compare(
                        ItemType.BEAT,
                        p_beat.id,
                        beat_title(p_beat.content),
                        "content",
                        p_beat.content,
                        beat.content,
                    )

    logger.debug(
        "Preview for %s: %d additions, %d changes",
        snapshot.project.id,
        len(out.additions),
        len(out.changes),
    )
    return SyncPreview(
        project_id=snapshot.project.id,
        additions=out.additions,
        changes=out.changes,
    )
