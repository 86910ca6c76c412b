"""Tests for readers/plottr.py -- Plottr JSON exports.

Covers:
- Beats to chapters (ordering, nesting, part flag)
- Cards to scenes (ordering, synopsis, description beat)
- Characters and places to references, with attributes
- Rich text flattening
- Legacy and malformed files
- Repeat parses and import-then-preview are stable
"""

import pytest

from kindling_sync.errors import InvalidStructureError, UnsupportedVersionError
from kindling_sync.models import ClassificationBasis, ReferenceType, SourceFormat
from kindling_sync.readers.plottr import PlottrReader, flatten_rich_text


def _plottr_file(**overrides):
    data = {
        "file": {"version": "2023.2.1"},
        "series": {"name": "The Saga"},
        "beats": {
            "series": {"index": {}, "heap": {}},
            "1": {
                "index": {
                    "10": {"id": 10, "title": "Beginning", "position": 0},
                    "11": {"id": 11, "title": "auto", "position": 1},
                    "12": {"id": 12, "title": "Inciting", "position": 0},
                },
                "heap": {"12": 10},
            },
        },
        "lines": [{"id": 1, "position": 0}],
        "cards": [
            {
                "id": 100,
                "beatId": 12,
                "lineId": 1,
                "title": "Second card",
                "positionWithinLine": 1,
                "description": "Later.",
            },
            {
                "id": 101,
                "beatId": 12,
                "lineId": 1,
                "title": "First card",
                "positionWithinLine": 0,
                "description": [
                    {"type": "paragraph", "children": [{"text": "She "}, {"text": "runs."}]}
                ],
                "characters": [1],
                "places": [7, 99],
            },
            {"id": 102, "beatId": 555, "title": "Orphan"},
        ],
        "characters": [
            {
                "id": 1,
                "name": "Mara",
                "description": "The lead",
                "notes": [{"type": "paragraph", "children": [{"text": "Left-handed"}]}],
                "age": 32,
                "color": "red",
            }
        ],
        "places": [{"id": 7, "name": "Harbor"}],
    }
    data.update(overrides)
    return data


@pytest.fixture
def reader():
    return PlottrReader()


class TestChapters:
    """Beats become chapters in depth-first order."""

    def test_depth_first_order_and_part_flag(self, reader, write_plottr):
        project = reader.parse(write_plottr(_plottr_file()))

        ids = [c.source_id for c in project.chapters]
        assert ids == ["plottr:beat:10", "plottr:beat:12", "plottr:beat:11"]
        assert project.chapters[0].is_part is True
        assert project.chapters[1].is_part is False

    def test_auto_title_becomes_empty(self, reader, write_plottr):
        project = reader.parse(write_plottr(_plottr_file()))
        assert project.chapters[2].title == ""

    def test_project_title_from_series(self, reader, write_plottr):
        project = reader.parse(write_plottr(_plottr_file()))

        assert project.title == "The Saga"
        assert project.source_format == SourceFormat.PLOTTR

    def test_project_title_falls_back_to_stem(self, reader, write_plottr):
        data = _plottr_file()
        del data["series"]
        project = reader.parse(write_plottr(data, name="draft.pltr"))
        assert project.title == "draft"

    def test_beats_as_list(self, reader, write_plottr):
        data = _plottr_file(beats=[{"id": 1, "title": "Only", "position": 0}], cards=[])
        project = reader.parse(write_plottr(data))
        assert [c.title for c in project.chapters] == ["Only"]


class TestScenes:
    """Cards become scenes."""

    def test_cards_ordered_within_beat(self, reader, write_plottr):
        project = reader.parse(write_plottr(_plottr_file()))
        scenes = project.chapters[1].scenes

        assert [s.title for s in scenes] == ["First card", "Second card"]
        assert [s.source_id for s in scenes] == ["plottr:card:101", "plottr:card:100"]

    def test_description_is_synopsis_and_beat(self, reader, write_plottr):
        project = reader.parse(write_plottr(_plottr_file()))
        scene = project.chapters[1].scenes[0]

        assert scene.synopsis == "She runs."
        assert len(scene.beats) == 1
        assert scene.beats[0].content == "She runs."
        assert scene.beats[0].source_id == "plottr:card:101:description"

    def test_card_with_unknown_beat_dropped(self, reader, write_plottr):
        project = reader.parse(write_plottr(_plottr_file()))
        titles = [s.title for c in project.chapters for s in c.scenes]
        assert "Orphan" not in titles

    def test_only_known_references_linked(self, reader, write_plottr):
        project = reader.parse(write_plottr(_plottr_file()))
        scene = project.chapters[1].scenes[0]
        assert scene.reference_ids == ["plottr:character:1", "plottr:place:7"]


class TestReferences:
    """Characters and places become typed references."""

    def test_reference_types_and_names(self, reader, write_plottr):
        project = reader.parse(write_plottr(_plottr_file()))
        by_id = {r.source_id: r for r in project.references}

        mara = by_id["plottr:character:1"]
        assert mara.reference_type == ReferenceType.CHARACTERS
        assert mara.name == "Mara"
        assert mara.description == "The lead"
        assert by_id["plottr:place:7"].reference_type == ReferenceType.LOCATIONS

    def test_attributes_skip_structural_keys(self, reader, write_plottr):
        project = reader.parse(write_plottr(_plottr_file()))
        mara = project.references[0]

        assert mara.attributes == {"notes": "Left-handed", "age": "32"}

    def test_classification_is_declared(self, reader, write_plottr):
        project = reader.parse(write_plottr(_plottr_file()))
        classification = project.references[0].classification

        assert classification.basis == ClassificationBasis.DECLARED
        assert classification.confidence == 1.0


class TestErrors:
    """Malformed and legacy files."""

    def test_not_json(self, reader, tmp_path):
        path = tmp_path / "bad.pltr"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(InvalidStructureError):
            reader.parse(path)

    def test_top_level_not_object(self, reader, tmp_path):
        path = tmp_path / "list.pltr"
        path.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(InvalidStructureError):
            reader.parse(path)

    def test_legacy_chapters_layout(self, reader, write_plottr):
        data = {"file": {"version": "2019.12.1"}, "chapters": []}
        with pytest.raises(UnsupportedVersionError):
            reader.parse(write_plottr(data))

    def test_missing_beats(self, reader, write_plottr):
        data = {"file": {"version": "2022.1.0"}, "cards": []}
        with pytest.raises(InvalidStructureError, match="beats"):
            reader.parse(write_plottr(data))


class TestFlattenRichText:
    """flatten_rich_text() turns Slate nodes into plain lines."""

    def test_plain_string_passthrough(self):
        assert flatten_rich_text("hello") == "hello"

    def test_none(self):
        assert flatten_rich_text(None) is None

    def test_paragraphs_become_lines(self):
        value = [
            {"type": "paragraph", "children": [{"text": "One"}]},
            {"type": "paragraph", "children": [{"text": "Two "}, {"text": "too", "bold": True}]},
        ]
        assert flatten_rich_text(value) == "One\nTwo too"

    def test_nested_blocks(self):
        value = [
            {
                "type": "bulleted-list",
                "children": [
                    {"type": "list-item", "children": [{"text": "a"}]},
                    {"type": "list-item", "children": [{"text": "b"}]},
                ],
            }
        ]
        assert flatten_rich_text(value) == "a\nb"

    def test_empty_rich_text_is_none(self):
        assert flatten_rich_text([{"type": "paragraph", "children": [{"text": ""}]}]) is None


class TestRepeatParse:
    """Parsing an unchanged file twice yields the same tree."""

    def test_same_ids_titles_and_order(self, reader, write_plottr):
        path = write_plottr(_plottr_file())

        first = reader.parse(path)
        second = reader.parse(path)

        assert [
            (c.source_id, c.title, [(s.source_id, s.title) for s in c.scenes])
            for c in first.chapters
        ] == [
            (c.source_id, c.title, [(s.source_id, s.title) for s in c.scenes])
            for c in second.chapters
        ]
        assert [r.source_id for r in first.references] == [
            r.source_id for r in second.references
        ]
        assert first == second

    def test_import_then_preview_is_empty(self, service, write_plottr):
        path = write_plottr(_plottr_file())
        result = service.import_project(path, "plottr")

        preview = service.get_sync_preview(result.project_id)

        assert preview.is_empty
