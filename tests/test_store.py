"""Tests for store/sqlite.py -- the SQLite persistence gateway.

Covers:
- create_project() writes the whole tree in one go
- Ordered reads and snapshots
- Positional inserts shift later siblings
- update_field() whitelist and bool handling
- Missing projects and items
- Write locks
"""

import pytest

from kindling_sync.errors import NotFoundError, StoreError
from kindling_sync.models import (
    ParsedBeat,
    ParsedChapter,
    ParsedProject,
    ParsedReference,
    ParsedScene,
    ReferenceType,
    SceneStatus,
    SourceFormat,
)
from kindling_sync.store.locks import ProjectLockRegistry
from kindling_sync.store.sqlite import SQLiteProjectStore


def _parsed():
    return ParsedProject(
        title="Harbor",
        source_format=SourceFormat.YWRITER,
        source_path="/tmp/harbor.yw7",
        author="J. Doe",
        word_target=1000,
        chapters=[
            ParsedChapter(
                source_id="c1",
                title="One",
                scenes=[
                    ParsedScene(
                        source_id="s1",
                        title="Arrival",
                        synopsis="Lands.",
                        prose="<p>Text</p>",
                        scene_status=SceneStatus.DRAFT,
                        beats=[
                            ParsedBeat(source_id="b1", content="Goal: pier"),
                            ParsedBeat(source_id="b2", content="Conflict: fog", prose="x"),
                        ],
                        reference_ids=["r1", "r2", "unknown"],
                    ),
                    ParsedScene(source_id="s2", title="Night"),
                ],
            ),
            ParsedChapter(source_id="c2", title="Two", is_part=True),
        ],
        references=[
            ParsedReference(
                source_id="r1",
                name="Mara",
                reference_type=ReferenceType.CHARACTERS,
                attributes={"age": "32"},
            ),
            ParsedReference(
                source_id="r2", name="Pier", reference_type=ReferenceType.LOCATIONS
            ),
            ParsedReference(
                source_id="r3", name="Tomas", reference_type=ReferenceType.CHARACTERS
            ),
        ],
    )


@pytest.fixture
def project_id(store):
    return store.create_project(_parsed())


class TestCreateProject:
    """Initial persistence of a parsed tree."""

    def test_project_row(self, store, project_id):
        project = store.get_project(project_id)

        assert project.name == "Harbor"
        assert project.source_format == SourceFormat.YWRITER
        assert project.source_path == "/tmp/harbor.yw7"
        assert project.author == "J. Doe"
        assert project.word_target == 1000

    def test_tree_in_order(self, store, project_id):
        chapters = store.get_chapters(project_id)
        scenes = store.get_scenes(project_id)
        beats = store.get_beats(project_id)

        assert [c.title for c in chapters] == ["One", "Two"]
        assert chapters[1].is_part is True
        assert [s.title for s in scenes] == ["Arrival", "Night"]
        assert scenes[0].scene_status == SceneStatus.DRAFT
        assert scenes[0].prose == "<p>Text</p>"
        assert [b.content for b in beats] == ["Goal: pier", "Conflict: fog"]
        assert beats[1].prose == "x"
        assert all(not c.locked and not c.archived for c in chapters)

    def test_references_positioned_per_type(self, store, project_id):
        refs = store.get_references(project_id)
        by_name = {r.name: r for r in refs}

        assert by_name["Mara"].position == 0
        assert by_name["Tomas"].position == 1
        assert by_name["Pier"].position == 0
        assert by_name["Mara"].attributes == {"age": "32"}

    def test_scene_links(self, store, project_id):
        scene = store.get_scenes(project_id)[0]
        refs = {r.id: r.name for r in store.get_references(project_id)}
        linked = [refs[r] for r in store.get_scene_reference_ids(scene.id)]

        assert sorted(linked) == ["Mara", "Pier"]

    def test_empty_source_path_stored_as_none(self, store):
        parsed = _parsed()
        parsed.source_path = ""
        project = store.get_project(store.create_project(parsed))
        assert project.source_path is None

    def test_list_projects(self, store, project_id):
        assert [p.id for p in store.list_projects()] == [project_id]


class TestReads:
    """Missing ids."""

    def test_missing_project(self, store):
        with pytest.raises(NotFoundError):
            store.get_project("nope")
        with pytest.raises(NotFoundError):
            store.get_chapters("nope")
        with pytest.raises(NotFoundError):
            store.snapshot("nope")

    def test_missing_items_are_none(self, store):
        assert store.get_chapter("nope") is None
        assert store.get_scene("nope") is None
        assert store.get_beat("nope") is None

    def test_snapshot(self, store, project_id):
        snapshot = store.snapshot(project_id)

        assert snapshot.project.id == project_id
        assert len(snapshot.chapters) == 2
        assert len(snapshot.scenes) == 2
        assert len(snapshot.beats) == 2


class TestInserts:
    """Positional inserts."""

    def test_insert_scene_shifts_siblings(self, store, project_id):
        chapter = store.get_chapters(project_id)[0]
        new_id = store.insert_scene(
            chapter.id, ParsedScene(source_id="s9", title="Middle"), 1
        )

        scenes = store.get_scenes(project_id)
        assert [s.title for s in scenes] == ["Arrival", "Middle", "Night"]
        assert [s.position for s in scenes] == [0, 1, 2]
        assert store.get_scene(new_id).source_id == "s9"

    def test_position_clamped(self, store, project_id):
        store.insert_chapter(project_id, ParsedChapter(source_id="c9", title="Last"), 99)
        chapters = store.get_chapters(project_id)

        assert chapters[-1].title == "Last"
        assert chapters[-1].position == 2

    def test_insert_beat_first(self, store, project_id):
        scene = store.get_scenes(project_id)[0]
        store.insert_beat(scene.id, ParsedBeat(source_id="b0", content="Opening"), 0)

        beats = [b for b in store.get_beats(project_id) if b.scene_id == scene.id]
        assert [b.content for b in beats] == ["Opening", "Goal: pier", "Conflict: fog"]

    def test_insert_under_missing_parent(self, store):
        with pytest.raises(NotFoundError):
            store.insert_scene("nope", ParsedScene(title="x"), 0)

    def test_insert_reference_and_link(self, store, project_id):
        ref_id = store.insert_reference(
            project_id,
            ParsedReference(name="Lantern", reference_type=ReferenceType.ITEMS),
            0,
        )
        scene = store.get_scenes(project_id)[1]
        store.link_scene_reference(scene.id, ref_id)
        store.link_scene_reference(scene.id, ref_id)

        assert store.get_scene_reference_ids(scene.id) == [ref_id]

    def test_link_across_projects_rejected(self, store, project_id):
        other = store.create_project(_parsed())
        ref_id = store.get_references(other)[0].id
        scene = store.get_scenes(project_id)[0]

        with pytest.raises(NotFoundError):
            store.link_scene_reference(scene.id, ref_id)

    def test_insert_touches_modified_at(self, store, project_id):
        before = store.get_project(project_id).modified_at
        store.insert_chapter(project_id, ParsedChapter(title="New"), 0)
        assert store.get_project(project_id).modified_at >= before


class TestUpdateField:
    """Single-field writes."""

    def test_update_title(self, store, project_id):
        scene = store.get_scenes(project_id)[0]
        store.update_field("scene", scene.id, "title", "Arrival!")

        updated = store.get_scene(scene.id)
        assert updated.title == "Arrival!"
        assert updated.synopsis == "Lands."
        assert updated.prose == "<p>Text</p>"

    def test_bool_field(self, store, project_id):
        chapter = store.get_chapters(project_id)[0]
        store.update_field("chapter", chapter.id, "locked", True)
        assert store.get_chapter(chapter.id).locked is True

    def test_enum_value(self, store, project_id):
        ref = store.get_references(project_id)[0]
        store.update_field("reference", ref.id, "reference_type", ReferenceType.ITEMS)

        refs = {r.id: r for r in store.get_references(project_id)}
        assert refs[ref.id].reference_type == ReferenceType.ITEMS

    def test_set_to_none(self, store, project_id):
        scene = store.get_scenes(project_id)[0]
        store.update_field("scene", scene.id, "synopsis", None)
        assert store.get_scene(scene.id).synopsis is None

    def test_unknown_field(self, store, project_id):
        scene = store.get_scenes(project_id)[0]
        with pytest.raises(ValueError, match="not writable"):
            store.update_field("scene", scene.id, "source_id", "x")

    def test_unknown_type(self, store):
        with pytest.raises(ValueError, match="Unknown item type"):
            store.update_field("project", "x", "name", "y")

    def test_missing_item(self, store):
        with pytest.raises(NotFoundError):
            store.update_field("beat", "nope", "content", "y")


class TestStoreSetup:
    """Opening the database."""

    def test_reopen_keeps_data(self, tmp_path, store, project_id):
        again = SQLiteProjectStore(tmp_path / "kindling.db")
        assert again.get_project(project_id).name == "Harbor"

    def test_creates_parent_directory(self, tmp_path):
        SQLiteProjectStore(tmp_path / "nested" / "dir" / "k.db")
        assert (tmp_path / "nested" / "dir" / "k.db").exists()

    def test_unopenable_path(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(StoreError):
            SQLiteProjectStore(blocker / "k.db")

    def test_shared_lock_registry(self, tmp_path):
        locks = ProjectLockRegistry()
        first = SQLiteProjectStore(tmp_path / "k.db", locks=locks)
        second = SQLiteProjectStore(tmp_path / "k.db", locks=locks)

        with first.write_lock("p1"):
            assert second.locks.is_held("p1")
