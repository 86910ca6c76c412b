"""Sync preview and summary formatting.

Provides human-readable and machine-readable output:

- ``format_sync_preview`` -- proposed additions and changes, numbered.
- ``format_reimport_summary`` -- what an apply or reimport did.
- ``format_change_diff`` -- unified diff of one change, for long values.
- ``format_project_tree`` -- outline of a persisted project.
- ``preview_to_json`` / ``summary_to_json`` -- structured dicts for JSON.
"""

from __future__ import annotations

import difflib
from collections import defaultdict
from typing import TYPE_CHECKING

from .engine import beat_title

if TYPE_CHECKING:
    from kindling_sync.models import ProjectSnapshot, Reference

    from .models import ReimportSummary, SyncChange, SyncPreview

# Values longer than this are shown as a diff rather than inline
INLINE_VALUE_LIMIT = 60

# ------------------------------------------------------------------
# Human-readable preview
# ------------------------------------------------------------------


def _inline(value: str | None) -> str:
    if not value:
        return "(empty)"
    return repr(value)


def format_sync_preview(preview: SyncPreview) -> str:
    """Format a sync preview for review.

    Each line starts with the id to pass back to ``apply``.

    Args:
        preview: The computed preview.

    Returns:
        Multi-line formatted string.
    """
    if preview.is_empty:
        return "No changes: project is in sync with its source."

    lines: list[str] = []
    lines.append(
        f"{len(preview.additions)} additions, {len(preview.changes)} changes"
    )
    lines.append("")

    if preview.additions:
        lines.append("Additions:")
        for a in preview.additions:
            where = f" (in {a.parent_title!r})" if a.parent_title else ""
            lines.append(f"  [{a.id}] {a.item_type.value}: {a.title!r}{where}")
        lines.append("")

    if preview.changes:
        lines.append("Changes:")
        for c in preview.changes:
            lines.append(
                f"  [{c.id}] {c.item_type.value} {c.item_title!r}, {c.field}:"
            )
            long_value = max(
                len(c.current_value or ""), len(c.new_value or "")
            ) > INLINE_VALUE_LIMIT
            if long_value:
                for diff_line in format_change_diff(c).splitlines():
                    lines.append(f"    {diff_line}")
            else:
                lines.append(
                    f"    {_inline(c.current_value)} -> {_inline(c.new_value)}"
                )
        lines.append("")

    return "\n".join(lines).rstrip()


def format_change_diff(change: SyncChange) -> str:
    """Unified diff between a change's current and proposed value.

    Args:
        change: The change to show.

    Returns:
        Diff text, or a placeholder when the values only differ in being
        missing versus empty.
    """
    old_lines = (change.current_value or "").splitlines(keepends=True)
    new_lines = (change.new_value or "").splitlines(keepends=True)
    diff = "".join(
        difflib.unified_diff(
            old_lines,
            new_lines,
            fromfile=f"current {change.field}",
            tofile=f"source {change.field}",
            lineterm="\n",
        )
    )
    return diff.rstrip() if diff else "(no textual differences)"


# ------------------------------------------------------------------
# Human-readable summary
# ------------------------------------------------------------------


def format_reimport_summary(summary: ReimportSummary) -> str:
    """Format a merge summary as human-readable text.

    Args:
        summary: Summary returned by the merge applier.

    Returns:
        Multi-line formatted string.
    """
    lines = [
        f"Added {summary.total_added} items, updated {summary.total_updated} fields",
        f"  Chapters: {summary.chapters_added} added, "
        f"{summary.chapters_updated} updated",
        f"  Scenes:   {summary.scenes_added} added, {summary.scenes_updated} updated",
        f"  Beats:    {summary.beats_added} added, {summary.beats_updated} updated",
        f"  Prose preserved: {summary.prose_preserved}",
    ]
    if summary.skipped:
        lines.append("")
        lines.append(f"Skipped {len(summary.skipped)}:")
        for item in summary.skipped:
            lines.append(f"  {item.item_id}: {item.reason}")
    return "\n".join(lines)


# ------------------------------------------------------------------
# Project tree
# ------------------------------------------------------------------


def _flags(item: object) -> str:
    marks = [
        name
        for name in ("locked", "archived")
        if getattr(item, name, False)
    ]
    return f" [{', '.join(marks)}]" if marks else ""


def format_project_tree(
    snapshot: ProjectSnapshot,
    references: list[Reference] | None = None,
) -> str:
    """Outline of a persisted project with lock and archive markers.

    Args:
        snapshot: The project's chapters, scenes and beats.
        references: Optional references, listed by type at the end.

    Returns:
        Multi-line formatted string.
    """
    project = snapshot.project
    lines = [f"{project.name} ({project.source_format.value})"]
    if project.source_path:
        lines.append(f"Source: {project.source_path}")
    lines.append("")

    scenes_by_chapter: dict[str, list] = defaultdict(list)
    for scene in snapshot.scenes:
        scenes_by_chapter[scene.chapter_id].append(scene)
    beats_by_scene: dict[str, list] = defaultdict(list)
    for beat in snapshot.beats:
        beats_by_scene[beat.scene_id].append(beat)

    for chapter in snapshot.chapters:
        kind = "Part" if chapter.is_part else "Chapter"
        lines.append(f"{kind}: {chapter.title}{_flags(chapter)}")
        for scene in scenes_by_chapter[chapter.id]:
            prose = " (prose)" if scene.prose else ""
            lines.append(f"  Scene: {scene.title}{_flags(scene)}{prose}")
            for beat in beats_by_scene[scene.id]:
                lines.append(f"    - {beat_title(beat.content)}")

    if references:
        lines.append("")
        lines.append("References:")
        grouped: dict[str, list[str]] = defaultdict(list)
        for ref in references:
            grouped[ref.reference_type.value].append(f"{ref.name} [{ref.id}]")
        for ref_type, names in grouped.items():
            lines.append(f"  {ref_type}:")
            for name in names:
                lines.append(f"    {name}")

    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def preview_to_json(preview: SyncPreview) -> dict:
    """Convert a preview to a structured dict for JSON serialisation."""
    return {
        "project_id": preview.project_id,
        "counts": {
            "additions": len(preview.additions),
            "changes": len(preview.changes),
        },
        "additions": [a.model_dump(mode="json") for a in preview.additions],
        "changes": [c.model_dump(mode="json") for c in preview.changes],
    }


def summary_to_json(summary: ReimportSummary) -> dict:
    """Convert a merge summary to a structured dict for JSON serialisation."""
    data = summary.model_dump(mode="json")
    data["total_added"] = summary.total_added
    data["total_updated"] = summary.total_updated
    return data
