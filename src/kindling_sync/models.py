"""Pydantic models for the canonical project tree and its persisted form.

Two families live here:

- ``Parsed*``: the ephemeral tree a reader produces for one import or
  reimport call. Mutable, since the builder normalizes it in place on a copy.
- ``Project``/``Chapter``/``Scene``/``Beat``/``Reference``: rows as the
  persistence gateway returns them. Frozen.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class SourceFormat(str, Enum):
    """Source formats with a dedicated reader."""

    PLOTTR = "plottr"
    MARKDOWN = "markdown"
    YWRITER = "ywriter"
    LONGFORM = "longform"


class ReferenceType(str, Enum):
    """Kinds of named story entities."""

    CHARACTERS = "characters"
    LOCATIONS = "locations"
    ITEMS = "items"
    OBJECTIVES = "objectives"
    ORGANIZATIONS = "organizations"


class SceneType(str, Enum):
    NORMAL = "normal"
    NOTES = "notes"
    TODO = "todo"
    UNUSED = "unused"

    @classmethod
    def parse(cls, value: str | None) -> SceneType:
        """Lenient parse; anything unknown is a normal scene."""
        if value:
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.NORMAL


class SceneStatus(str, Enum):
    DRAFT = "draft"
    REVISED = "revised"
    FINAL = "final"

    @classmethod
    def parse(cls, value: str | None) -> SceneStatus | None:
        """Lenient parse accepting a few common synonyms."""
        if not value:
            return None
        key = value.strip().lower()
        aliases = {
            "draft": cls.DRAFT,
            "drafted": cls.DRAFT,
            "outline": cls.DRAFT,
            "in progress": cls.DRAFT,
            "revised": cls.REVISED,
            "revision": cls.REVISED,
            "edited": cls.REVISED,
            "final": cls.FINAL,
            "done": cls.FINAL,
            "complete": cls.FINAL,
        }
        return aliases.get(key)


class ClassificationBasis(str, Enum):
    """Which heuristic decided a reference's type."""

    DECLARED = "declared"
    FIELD = "field"
    FOLDER = "folder"
    TAG = "tag"
    DEFAULT = "default"


class Classification(BaseModel):
    """Advisory reference type with a confidence signal.

    Attributes:
        reference_type: The proposed type.
        basis: Heuristic that produced it.
        confidence: 0.0-1.0, higher is more trustworthy.
    """

    reference_type: ReferenceType
    basis: ClassificationBasis
    confidence: float

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Parsed (canonical) tree
# ---------------------------------------------------------------------------


class ParsedBeat(BaseModel):
    source_id: str | None = None
    content: str = ""
    prose: str | None = None
    position: int = 0


class ParsedScene(BaseModel):
    source_id: str | None = None
    title: str = ""
    synopsis: str | None = None
    prose: str | None = None
    position: int = 0
    scene_type: SceneType = SceneType.NORMAL
    scene_status: SceneStatus | None = None
    beats: list[ParsedBeat] = Field(default_factory=list)
    reference_ids: list[str] = Field(default_factory=list)


class ParsedChapter(BaseModel):
    source_id: str | None = None
    title: str = ""
    position: int = 0
    is_part: bool = False
    scenes: list[ParsedScene] = Field(default_factory=list)


class ParsedReference(BaseModel):
    source_id: str | None = None
    reference_type: ReferenceType = ReferenceType.ITEMS
    name: str = ""
    description: str | None = None
    attributes: dict[str, str] = Field(default_factory=dict)
    classification: Classification | None = None


class ParsedProject(BaseModel):
    """Canonical project tree produced by one reader call.

    Attributes:
        title: Project title (falls back to the source file stem).
        source_format: Reader that produced the tree.
        source_path: Path that was parsed, as given by the caller.
        chapters: Ordered chapters, each owning scenes and beats.
        references: Typed references in source order.
    """

    title: str
    source_format: SourceFormat
    source_path: str
    author: str | None = None
    description: str | None = None
    word_target: int | None = None
    chapters: list[ParsedChapter] = Field(default_factory=list)
    references: list[ParsedReference] = Field(default_factory=list)

    def references_by_type(self) -> dict[ReferenceType, list[ParsedReference]]:
        """Group references by type, keeping source order within each."""
        grouped: dict[ReferenceType, list[ParsedReference]] = {
            t: [] for t in ReferenceType
        }
        for ref in self.references:
            grouped[ref.reference_type].append(ref)
        return grouped

    def counts(self) -> dict[str, int]:
        scenes = [s for c in self.chapters for s in c.scenes]
        return {
            "chapters": len(self.chapters),
            "scenes": len(scenes),
            "beats": sum(len(s.beats) for s in scenes),
            "references": len(self.references),
        }


# ---------------------------------------------------------------------------
# Persisted rows
# ---------------------------------------------------------------------------


class Project(BaseModel):
    id: str
    name: str
    source_format: SourceFormat
    source_path: str | None = None
    author: str | None = None
    description: str | None = None
    word_target: int | None = None
    created_at: str
    modified_at: str

    model_config = {"frozen": True}


class Chapter(BaseModel):
    id: str
    project_id: str
    title: str
    position: int
    is_part: bool = False
    locked: bool = False
    archived: bool = False
    source_id: str | None = None

    model_config = {"frozen": True}


class Scene(BaseModel):
    id: str
    chapter_id: str
    title: str
    synopsis: str | None = None
    prose: str | None = None
    position: int
    locked: bool = False
    archived: bool = False
    source_id: str | None = None
    scene_type: SceneType = SceneType.NORMAL
    scene_status: SceneStatus | None = None

    model_config = {"frozen": True}


class Beat(BaseModel):
    id: str
    scene_id: str
    content: str
    prose: str | None = None
    position: int
    source_id: str | None = None

    model_config = {"frozen": True}


class Reference(BaseModel):
    id: str
    project_id: str
    reference_type: ReferenceType
    name: str
    description: str | None = None
    attributes: dict[str, str] = Field(default_factory=dict)
    source_id: str | None = None
    position: int = 0

    model_config = {"frozen": True}


class ProjectSnapshot(BaseModel):
    """Consistent read of one persisted project, as the diff engine sees it."""

    project: Project
    chapters: list[Chapter] = Field(default_factory=list)
    scenes: list[Scene] = Field(default_factory=list)
    beats: list[Beat] = Field(default_factory=list)

    model_config = {"frozen": True}
