"""Merge applier: write the accepted part of a sync preview to the store.

Key rules:

* Only ids present in the preview are applied, in preview order (additions
  first, then changes). Anything else is a no-op.
* Every target is re-read just before it is written. A preview is advisory,
  so an item that has since been locked, archived or deleted, or whose
  parent has, is skipped with a ``PartialApplyWarning`` and listed in
  ``ReimportSummary.skipped``.
* A new item goes right after its nearest preceding source sibling that
  exists in the store, or first when there is none. The store shifts the
  later siblings.
* A change overwrites only its one field. Prose is never written.
* The first ``StoreError`` stops the batch. Items already written stay
  written, and the error carries the partial summary.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from kindling_sync.errors import PartialApplyWarning, StoreError
from kindling_sync.models import (
    ParsedBeat,
    ParsedChapter,
    ParsedProject,
    ParsedScene,
    ProjectSnapshot,
)
from kindling_sync.store.base import ProjectStore
from kindling_sync.sync.models import (
    ItemType,
    ReimportSummary,
    SkippedItem,
    SyncAddition,
    SyncChange,
    SyncPreview,
)

logger = logging.getLogger(__name__)


@dataclass
class _FreshNode:
    """A fresh item with its parent and the siblings that precede it."""

    item: ParsedChapter | ParsedScene | ParsedBeat
    parent_source_id: str | None = None
    preceding: list[str] = field(default_factory=list)


def _index_fresh(parsed: ParsedProject) -> dict[tuple[ItemType, str], _FreshNode]:
    nodes: dict[tuple[ItemType, str], _FreshNode] = {}
    chapter_sids: list[str] = []
    for chapter in parsed.chapters:
        if not chapter.source_id:
            continue
        nodes[(ItemType.CHAPTER, chapter.source_id)] = _FreshNode(
            chapter, None, list(chapter_sids)
        )
        chapter_sids.append(chapter.source_id)

        scene_sids: list[str] = []
        for scene in chapter.scenes:
            if not scene.source_id:
                continue
            nodes[(ItemType.SCENE, scene.source_id)] = _FreshNode(
                scene, chapter.source_id, list(scene_sids)
            )
            scene_sids.append(scene.source_id)

            beat_sids: list[str] = []
            for beat in scene.beats:
                if not beat.source_id:
                    continue
                nodes[(ItemType.BEAT, beat.source_id)] = _FreshNode(
                    beat, scene.source_id, list(beat_sids)
                )
                beat_sids.append(beat.source_id)
    return nodes


class MergeApplier:
    """Apply accepted additions and changes to one project.

    Args:
        store: Persistence gateway to write through.
    """

    def __init__(self, store: ProjectStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def apply(
        self,
        project_id: str,
        preview: SyncPreview,
        parsed: ParsedProject,
        accepted_change_ids: Iterable[str],
        accepted_addition_ids: Iterable[str],
    ) -> ReimportSummary:
        """Apply the accepted subset of *preview*.

        Args:
            project_id: Project to write to.
            preview: Preview computed from *parsed*.
            parsed: The normalized fresh parse the preview came from.
            accepted_change_ids: Change ids the user accepted.
            accepted_addition_ids: Addition ids the user accepted.

        Returns:
            What was added, updated, preserved and skipped.

        Raises:
            StoreError: On the first persistence failure, with
                ``partial_summary`` set.
        """
        changes = set(accepted_change_ids)
        additions = set(accepted_addition_ids)

        unknown = (changes - set(preview.change_ids)) | (
            additions - set(preview.addition_ids)
        )
        for item_id in sorted(unknown):
            logger.debug("Accepted id %s is not in the preview, ignoring", item_id)

        summary = ReimportSummary()
        with self.store.write_lock(project_id):
            try:
                snapshot = self.store.snapshot(project_id)
                run = _MergeRun(self.store, project_id, parsed, snapshot, summary)
                for addition in preview.additions:
                    if addition.id in additions:
                        run.apply_addition(addition)
                for change in preview.changes:
                    if change.id in changes:
                        run.apply_change(change)
                summary.prose_preserved = _count_preserved_prose(parsed, snapshot)
            except StoreError as exc:
                logger.error(
                    "Merge into project %s stopped after %d additions and "
                    "%d updates: %s",
                    project_id,
                    summary.total_added,
                    summary.total_updated,
                    exc,
                )
                exc.partial_summary = summary
                raise

        logger.info(
            "Merged project %s: %d added, %d updated, %d skipped",
            project_id,
            summary.total_added,
            summary.total_updated,
            len(summary.skipped),
        )
        return summary


def _count_preserved_prose(parsed: ParsedProject, snapshot: ProjectSnapshot) -> int:
    scene_sids = {s.source_id for c in parsed.chapters for s in c.scenes}
    beat_sids = {
        b.source_id for c in parsed.chapters for s in c.scenes for b in s.beats
    }
    kept = sum(
        1 for s in snapshot.scenes if s.source_id in scene_sids and s.prose
    )
    kept += sum(1 for b in snapshot.beats if b.source_id in beat_sids and b.prose)
    return kept


class _MergeRun:
    """State for one apply call: source id to db id maps, kept current."""

    def __init__(
        self,
        store: ProjectStore,
        project_id: str,
        parsed: ParsedProject,
        snapshot: ProjectSnapshot,
        summary: ReimportSummary,
    ) -> None:
        self.store = store
        self.project_id = project_id
        self.summary = summary
        self.fresh = _index_fresh(parsed)
        self.db_ids: dict[ItemType, dict[str, str]] = {
            ItemType.CHAPTER: {},
            ItemType.SCENE: {},
            ItemType.BEAT: {},
        }
        for item_type, rows in (
            (ItemType.CHAPTER, snapshot.chapters),
            (ItemType.SCENE, snapshot.scenes),
            (ItemType.BEAT, snapshot.beats),
        ):
            for row in rows:
                if row.source_id:
                    self.db_ids[item_type].setdefault(row.source_id, row.id)
        self._reference_ids: dict[str, str] | None = None

    def skip(self, item_id: str, reason: str) -> None:
        warning = PartialApplyWarning(item_id, reason)
        logger.warning("%s", warning)
        self.summary.skipped.append(SkippedItem(item_id=item_id, reason=reason))

    # ------------------------------------------------------------------
    # Re-validation
    # ------------------------------------------------------------------

    def chapter_problem(self, chapter_id: str) -> str | None:
        chapter = self.store.get_chapter(chapter_id)
        if chapter is None or chapter.project_id != self.project_id:
            return "chapter was deleted"
        if chapter.locked:
            return "chapter is locked"
        if chapter.archived:
            return "chapter is archived"
        return None

    def scene_problem(self, scene_id: str) -> str | None:
        scene = self.store.get_scene(scene_id)
        if scene is None:
            return "scene was deleted"
        if scene.locked:
            return "scene is locked"
        if scene.archived:
            return "scene is archived"
        return self.chapter_problem(scene.chapter_id)

    def beat_problem(self, beat_id: str) -> str | None:
        beat = self.store.get_beat(beat_id)
        if beat is None:
            return "beat was deleted"
        return self.scene_problem(beat.scene_id)

    # ------------------------------------------------------------------
    # Additions
    # ------------------------------------------------------------------

    def _position_after(
        self, item_type: ItemType, node: _FreshNode, parent_id: str | None
    ) -> int:
        """Slot right after the nearest preceding sibling already stored."""
        known = self.db_ids[item_type]
        for sibling_sid in reversed(node.preceding):
            db_id = known.get(sibling_sid)
            if db_id is None:
                continue
            if item_type is ItemType.CHAPTER:
                row = self.store.get_chapter(db_id)
                if row is not None and row.project_id == self.project_id:
                    return row.position + 1
            elif item_type is ItemType.SCENE:
                row = self.store.get_scene(db_id)
                if row is not None and row.chapter_id == parent_id:
                    return row.position + 1
            else:
                row = self.store.get_beat(db_id)
                if row is not None and row.scene_id == parent_id:
                    return row.position + 1
        return 0

    def apply_addition(self, addition: SyncAddition) -> None:
        item_type = addition.item_type
        if addition.source_id in self.db_ids[item_type]:
            logger.debug("Addition %s already applied", addition.id)
            return

        node = self.fresh.get((item_type, addition.source_id))
        if node is None:
            self.skip(addition.id, "item is no longer in the source")
            return

        if item_type is ItemType.CHAPTER:
            position = self._position_after(item_type, node, None)
            new_id = self.store.insert_chapter(self.project_id, node.item, position)
        else:
            parent_type = (
                ItemType.CHAPTER if item_type is ItemType.SCENE else ItemType.SCENE
            )
            parent_id = self.db_ids[parent_type].get(node.parent_source_id or "")
            if parent_id is None:
                self.skip(
                    addition.id, f"parent {parent_type.value} is not in the project"
                )
                return
            problem = (
                self.chapter_problem(parent_id)
                if parent_type is ItemType.CHAPTER
                else self.scene_problem(parent_id)
            )
            if problem:
                self.skip(addition.id, problem)
                return

            position = self._position_after(item_type, node, parent_id)
            if item_type is ItemType.SCENE:
                new_id = self.store.insert_scene(parent_id, node.item, position)
                self._link_references(new_id, node.item)
            else:
                new_id = self.store.insert_beat(parent_id, node.item, position)

        self.db_ids[item_type][addition.source_id] = new_id
        self.summary.record_added(item_type)
        logger.debug(
            "Added %s %r at position %d", item_type.value, addition.title, position
        )

    def _link_references(self, scene_id: str, scene: ParsedScene) -> None:
        if not scene.reference_ids:
            return
        if self._reference_ids is None:
            self._reference_ids = {
                r.source_id: r.id
                for r in self.store.get_references(self.project_id)
                if r.source_id
            }
        for ref_sid in scene.reference_ids:
            ref_id = self._reference_ids.get(ref_sid)
            if ref_id is not None:
                self.store.link_scene_reference(scene_id, ref_id)

    # ------------------------------------------------------------------
    # Changes
    # ------------------------------------------------------------------

    def apply_change(self, change: SyncChange) -> None:
        if change.item_type is ItemType.CHAPTER:
            current = self.store.get_chapter(change.db_id)
            problem = self.chapter_problem(change.db_id)
        elif change.item_type is ItemType.SCENE:
            current = self.store.get_scene(change.db_id)
            problem = self.scene_problem(change.db_id)
        else:
            current = self.store.get_beat(change.db_id)
            problem = self.beat_problem(change.db_id)

        if problem:
            self.skip(change.id, problem)
            return

        if (getattr(current, change.field, None) or "") == (change.new_value or ""):
            logger.debug("Change %s already applied", change.id)
            return

        self.store.update_field(
            change.item_type.value, change.db_id, change.field, change.new_value
        )
        self.summary.record_updated(change.item_type)
        logger.debug(
            "Updated %s %r: %s", change.item_type.value, change.item_title, change.field
        )
