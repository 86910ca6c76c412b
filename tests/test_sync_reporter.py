"""Tests for sync/reporter.py -- preview and summary formatting.

Covers:
- format_sync_preview() for empty, short and long values
- format_change_diff()
- format_reimport_summary() with and without skipped items
- format_project_tree()
- JSON helpers
"""

import json

from kindling_sync.models import (
    Beat,
    Chapter,
    Project,
    ProjectSnapshot,
    Reference,
    ReferenceType,
    Scene,
    SourceFormat,
)
from kindling_sync.sync.models import (
    ItemType,
    ReimportSummary,
    SkippedItem,
    SyncAddition,
    SyncChange,
    SyncPreview,
)
from kindling_sync.sync.reporter import (
    INLINE_VALUE_LIMIT,
    format_change_diff,
    format_project_tree,
    format_reimport_summary,
    format_sync_preview,
    preview_to_json,
    summary_to_json,
)


def _change(current, new, field="title"):
    return SyncChange(
        id=f"scene-{field}-s1",
        item_type=ItemType.SCENE,
        field=field,
        item_title="Scene A",
        current_value=current,
        new_value=new,
        db_id="s1",
    )


def _addition():
    return SyncAddition(
        id="scene-md:ch0:sc1",
        item_type=ItemType.SCENE,
        title="Scene B",
        parent_title="Act One",
        source_id="md:ch0:sc1",
        parent_source_id="md:ch0",
    )


class TestFormatSyncPreview:
    """Human-readable preview."""

    def test_empty(self):
        preview = SyncPreview(project_id="p1")
        assert format_sync_preview(preview) == (
            "No changes: project is in sync with its source."
        )

    def test_ids_listed(self):
        preview = SyncPreview(
            project_id="p1",
            additions=[_addition()],
            changes=[_change("Scene A", "Scene A!")],
        )
        text = format_sync_preview(preview)

        assert text.startswith("1 additions, 1 changes")
        assert "[scene-md:ch0:sc1] scene: 'Scene B' (in 'Act One')" in text
        assert "[scene-title-s1] scene 'Scene A', title:" in text
        assert "'Scene A' -> 'Scene A!'" in text

    def test_empty_value_placeholder(self):
        preview = SyncPreview(
            project_id="p1", changes=[_change(None, "New", field="synopsis")]
        )
        assert "(empty) -> 'New'" in format_sync_preview(preview)

    def test_long_value_shown_as_diff(self):
        long_old = "a" * INLINE_VALUE_LIMIT + "\nsame"
        long_new = "b" * INLINE_VALUE_LIMIT + "\nsame"
        preview = SyncPreview(
            project_id="p1",
            changes=[_change(long_old, long_new, field="synopsis")],
        )
        text = format_sync_preview(preview)

        assert "--- current synopsis" in text
        assert "+++ source synopsis" in text
        assert "-" + "a" * INLINE_VALUE_LIMIT in text


class TestFormatChangeDiff:
    """Unified diff of one change."""

    def test_diff_lines(self):
        diff = format_change_diff(_change("one\ntwo\n", "one\nthree\n"))

        assert "-two" in diff
        assert "+three" in diff

    def test_none_versus_empty(self):
        assert format_change_diff(_change(None, "")) == "(no textual differences)"


class TestFormatReimportSummary:
    """Merge summary text."""

    def test_counts(self):
        summary = ReimportSummary(
            scenes_added=2, beats_updated=3, prose_preserved=4
        )
        text = format_reimport_summary(summary)

        assert text.startswith("Added 2 items, updated 3 fields")
        assert "Scenes:   2 added, 0 updated" in text
        assert "Prose preserved: 4" in text
        assert "Skipped" not in text

    def test_skipped_listed(self):
        summary = ReimportSummary(
            skipped=[SkippedItem(item_id="scene-title-s1", reason="scene is locked")]
        )
        text = format_reimport_summary(summary)

        assert "Skipped 1:" in text
        assert "scene-title-s1: scene is locked" in text


class TestFormatProjectTree:
    """Outline of a persisted project."""

    def _snapshot(self):
        project = Project(
            id="p1",
            name="Harbor",
            source_format=SourceFormat.MARKDOWN,
            source_path="/tmp/h.md",
            created_at="2024-01-01T00:00:00+00:00",
            modified_at="2024-01-01T00:00:00+00:00",
        )
        return ProjectSnapshot(
            project=project,
            chapters=[
                Chapter(id="c1", project_id="p1", title="One", position=0, locked=True),
                Chapter(id="c2", project_id="p1", title="Two", position=1, is_part=True),
            ],
            scenes=[
                Scene(id="s1", chapter_id="c1", title="Arrival", position=0, prose="x"),
                Scene(id="s2", chapter_id="c2", title="Night", position=0, archived=True),
            ],
            beats=[Beat(id="b1", scene_id="s1", content="Goal: pier", position=0)],
        )

    def test_tree(self):
        text = format_project_tree(self._snapshot())
        lines = text.splitlines()

        assert lines[0] == "Harbor (markdown)"
        assert "Source: /tmp/h.md" in lines
        assert "Chapter: One [locked]" in lines
        assert "  Scene: Arrival (prose)" in lines
        assert "    - Goal: pier" in lines
        assert "Part: Two" in lines
        assert "  Scene: Night [archived]" in lines

    def test_references(self):
        refs = [
            Reference(
                id="r1",
                project_id="p1",
                reference_type=ReferenceType.CHARACTERS,
                name="Mara",
            )
        ]
        text = format_project_tree(self._snapshot(), refs)

        assert "References:" in text
        assert "  characters:" in text
        assert "    Mara [r1]" in text


class TestJson:
    """Structured output is JSON-serialisable."""

    def test_preview_to_json(self):
        preview = SyncPreview(
            project_id="p1",
            additions=[_addition()],
            changes=[_change("a", "b")],
        )
        data = preview_to_json(preview)

        assert data["counts"] == {"additions": 1, "changes": 1}
        assert data["additions"][0]["item_type"] == "scene"
        json.dumps(data)

    def test_summary_to_json(self):
        summary = ReimportSummary(chapters_added=1, scenes_updated=2)
        data = summary_to_json(summary)

        assert data["total_added"] == 1
        assert data["total_updated"] == 2
        assert data["skipped"] == []
        json.dumps(data)
