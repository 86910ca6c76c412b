"""Tests for classifier.py -- reference type heuristics.

Covers:
- Precedence: declared > field > folder > tag > default
- Type word normalization
- needs_reclassification() threshold
- reclassify_references() against a real store
"""

import pytest

from kindling_sync.classifier import (
    CONFIDENCE,
    classify,
    needs_reclassification,
    normalize_reference_type,
    reclassify_references,
    type_from_folder,
    type_from_tags,
)
from kindling_sync.errors import NotFoundError
from kindling_sync.models import (
    Classification,
    ClassificationBasis,
    ParsedProject,
    ParsedReference,
    ReferenceType,
    SourceFormat,
)


class TestNormalize:
    """Free-form type words."""

    @pytest.mark.parametrize(
        "word,expected",
        [
            ("Character", ReferenceType.CHARACTERS),
            ("places", ReferenceType.LOCATIONS),
            ("#prop", ReferenceType.ITEMS),
            ("Quest", ReferenceType.OBJECTIVES),
            ("Organisation", ReferenceType.ORGANIZATIONS),
            (ReferenceType.ITEMS, ReferenceType.ITEMS),
        ],
    )
    def test_known_words(self, word, expected):
        assert normalize_reference_type(word) == expected

    def test_unknown(self):
        assert normalize_reference_type("recipe") is None
        assert normalize_reference_type(42) is None

    def test_nearest_folder_wins(self):
        assert type_from_folder("World/Characters") == ReferenceType.CHARACTERS
        assert type_from_folder("Characters/Drafts") == ReferenceType.CHARACTERS
        assert type_from_folder("Notes") is None

    def test_nested_tag(self):
        assert type_from_tags(["#draft", "type/location"]) == ReferenceType.LOCATIONS
        assert type_from_tags(["misc"]) is None


class TestClassify:
    """Signal precedence."""

    def test_declared_beats_everything(self):
        result = classify(
            declared="item",
            folder="Characters",
            tags=["#location"],
            hint=ReferenceType.OBJECTIVES,
        )
        assert result.reference_type == ReferenceType.ITEMS
        assert result.basis == ClassificationBasis.DECLARED
        assert result.confidence == CONFIDENCE[ClassificationBasis.DECLARED]

    def test_field_hint_beats_folder(self):
        result = classify(folder="Characters", hint=ReferenceType.LOCATIONS)
        assert result.basis == ClassificationBasis.FIELD

    def test_folder_beats_tag(self):
        result = classify(folder="Places", tags=["character"])
        assert result.reference_type == ReferenceType.LOCATIONS
        assert result.basis == ClassificationBasis.FOLDER

    def test_tag(self):
        result = classify(tags=["faction"])
        assert result.reference_type == ReferenceType.ORGANIZATIONS
        assert result.basis == ClassificationBasis.TAG

    def test_default_is_items(self):
        result = classify()
        assert result.reference_type == ReferenceType.ITEMS
        assert result.basis == ClassificationBasis.DEFAULT
        assert result.confidence < 0.5


class TestNeedsReclassification:
    """Share of guessed types versus the threshold."""

    def _guess(self):
        return classify(tags=["character"])

    def _sure(self):
        return classify(declared="character")

    def test_empty(self):
        assert needs_reclassification([]) is False

    def test_none_counts_as_certain(self):
        assert needs_reclassification([None, None, self._guess()], 0.5) is False

    def test_at_threshold(self):
        items = [self._guess(), self._sure(), self._sure(), self._sure()]
        assert needs_reclassification(items, 0.25) is True

    def test_below_threshold(self):
        items = [self._guess()] + [self._sure()] * 4
        assert needs_reclassification(items, 0.25) is False

    def test_no_guesses(self):
        assert needs_reclassification([self._sure()], 0.0) is False


class TestReclassifyReferences:
    """Persisted reference types are rewritten."""

    @pytest.fixture
    def project_id(self, store):
        parsed = ParsedProject(
            title="Book",
            source_format=SourceFormat.LONGFORM,
            source_path="/tmp/vault",
            references=[
                ParsedReference(
                    source_id="r1",
                    name="Pier",
                    reference_type=ReferenceType.ITEMS,
                    classification=Classification(
                        reference_type=ReferenceType.ITEMS,
                        basis=ClassificationBasis.DEFAULT,
                        confidence=0.2,
                    ),
                )
            ],
        )
        return store.create_project(parsed)

    def test_type_updated(self, store, project_id):
        ref = store.get_references(project_id)[0]
        updated = reclassify_references(store, project_id, {ref.id: "locations"})

        assert updated[0].reference_type == ReferenceType.LOCATIONS
        assert store.get_references(project_id)[0].reference_type == ReferenceType.LOCATIONS

    def test_unknown_reference(self, store, project_id):
        with pytest.raises(NotFoundError):
            reclassify_references(store, project_id, {"nope": "locations"})

    def test_unknown_type_word(self, store, project_id):
        ref = store.get_references(project_id)[0]
        with pytest.raises(ValueError, match="Unknown reference type"):
            reclassify_references(store, project_id, {ref.id: "recipes"})
        assert store.get_references(project_id)[0].reference_type == ReferenceType.ITEMS
