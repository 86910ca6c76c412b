"""SQLite implementation of the persistence gateway.

The schema is fixed; a fresh database gets it applied on open. There are no
migrations.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from kindling_sync.errors import NotFoundError, StoreError
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

from .base import ItemKind, ProjectStore
from .locks import ProjectLockRegistry

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    source_format TEXT NOT NULL,
    source_path TEXT,
    author TEXT,
    description TEXT,
    word_target INTEGER,
    created_at TEXT NOT NULL,
    modified_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chapters (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    position INTEGER NOT NULL,
    is_part INTEGER NOT NULL DEFAULT 0,
    locked INTEGER NOT NULL DEFAULT 0,
    archived INTEGER NOT NULL DEFAULT 0,
    source_id TEXT
);

CREATE TABLE IF NOT EXISTS scenes (
    id TEXT PRIMARY KEY,
    chapter_id TEXT NOT NULL REFERENCES chapters(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    synopsis TEXT,
    prose TEXT,
    position INTEGER NOT NULL,
    locked INTEGER NOT NULL DEFAULT 0,
    archived INTEGER NOT NULL DEFAULT 0,
    source_id TEXT,
    scene_type TEXT NOT NULL DEFAULT 'normal',
    scene_status TEXT
);

CREATE TABLE IF NOT EXISTS beats (
    id TEXT PRIMARY KEY,
    scene_id TEXT NOT NULL REFERENCES scenes(id) ON DELETE CASCADE,
    content TEXT NOT NULL,
    prose TEXT,
    position INTEGER NOT NULL,
    source_id TEXT
);

CREATE TABLE IF NOT EXISTS reference_items (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    reference_type TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT,
    attributes TEXT NOT NULL DEFAULT '{}',
    source_id TEXT,
    position INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS scene_references (
    scene_id TEXT NOT NULL REFERENCES scenes(id) ON DELETE CASCADE,
    reference_id TEXT NOT NULL REFERENCES reference_items(id) ON DELETE CASCADE,
    PRIMARY KEY (scene_id, reference_id)
);

CREATE INDEX IF NOT EXISTS idx_chapters_project ON chapters(project_id, position);
CREATE INDEX IF NOT EXISTS idx_scenes_chapter ON scenes(chapter_id, position);
CREATE INDEX IF NOT EXISTS idx_beats_scene ON beats(scene_id, position);
CREATE INDEX IF NOT EXISTS idx_references_project ON reference_items(project_id, position);
"""

# item type -> (table, writable columns)
_WRITABLE: dict[str, tuple[str, frozenset[str]]] = {
    "chapter": ("chapters", frozenset({"title", "is_part", "locked", "archived"})),
    "scene": (
        "scenes",
        frozenset(
            {
                "title",
                "synopsis",
                "prose",
                "locked",
                "archived",
                "scene_type",
                "scene_status",
            }
        ),
    ),
    "beat": ("beats", frozenset({"content", "prose"})),
    "reference": (
        "reference_items",
        frozenset({"name", "description", "reference_type"}),
    ),
}

# item type -> SQL returning the owning project id for a row id
_OWNER_SQL: dict[str, str] = {
    "chapter": "SELECT project_id FROM chapters WHERE id = ?",
    "scene": (
        "SELECT c.project_id FROM scenes s "
        "JOIN chapters c ON c.id = s.chapter_id WHERE s.id = ?"
    ),
    "beat": (
        "SELECT c.project_id FROM beats b "
        "JOIN scenes s ON s.id = b.scene_id "
        "JOIN chapters c ON c.id = s.chapter_id WHERE b.id = ?"
    ),
    "reference": "SELECT project_id FROM reference_items WHERE id = ?",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _new_id() -> str:
    return str(uuid.uuid4())


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


class SQLiteProjectStore(ProjectStore):
    """Project store backed by a single SQLite file in WAL mode."""

    def __init__(
        self,
        db_path: str | Path,
        busy_timeout_ms: int = 10000,
        locks: ProjectLockRegistry | None = None,
    ) -> None:
        """
        Open (and if needed create) the database.

        Args:
            db_path: Path to the SQLite database file.
            busy_timeout_ms: How long a connection waits on a locked database.
            locks: Shared lock registry, when several stores point at one file.

        Raises:
            StoreError: If the file cannot be created or the schema applied.
        """
        super().__init__(locks)
        self.db_path = Path(db_path).expanduser()
        self.busy_timeout_ms = busy_timeout_ms
        self._initialize()

    def _initialize(self) -> None:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Cannot create database directory: {e}") from e

        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA_SQL)
        logger.debug("Project store ready at %s", self.db_path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Connection scoped to one transaction: commit on success."""
        try:
            conn = sqlite3.connect(
                self.db_path,
                timeout=self.busy_timeout_ms / 1000,
                check_same_thread=False,
            )
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database {self.db_path}: {e}") from e

        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(f"Database error: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _project(row: sqlite3.Row) -> Project:
        return Project(**dict(row))

    @staticmethod
    def _chapter(row: sqlite3.Row) -> Chapter:
        return Chapter(**dict(row))

    @staticmethod
    def _scene(row: sqlite3.Row) -> Scene:
        return Scene(**dict(row))

    @staticmethod
    def _beat(row: sqlite3.Row) -> Beat:
        return Beat(**dict(row))

    @staticmethod
    def _reference(row: sqlite3.Row) -> Reference:
        data = dict(row)
        data["attributes"] = json.loads(data["attributes"] or "{}")
        return Reference(**data)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_projects(self) -> list[Project]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM projects ORDER BY created_at, name"
            ).fetchall()
        return [self._project(r) for r in rows]

    def get_project(self, project_id: str) -> Project:
        with self._connect() as conn:
            return self._get_project(conn, project_id)

    def _get_project(self, conn: sqlite3.Connection, project_id: str) -> Project:
        row = conn.execute(
            "SELECT * FROM projects WHERE id = ?", (project_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Project not found: {project_id}")
        return self._project(row)

    def _select_chapters(
        self, conn: sqlite3.Connection, project_id: str
    ) -> list[Chapter]:
        rows = conn.execute(
            "SELECT * FROM chapters WHERE project_id = ? ORDER BY position",
            (project_id,),
        ).fetchall()
        return [self._chapter(r) for r in rows]

    def _select_scenes(self, conn: sqlite3.Connection, project_id: str) -> list[Scene]:
        rows = conn.execute(
            "SELECT s.* FROM scenes s JOIN chapters c ON c.id = s.chapter_id "
            "WHERE c.project_id = ? ORDER BY c.position, s.position",
            (project_id,),
        ).fetchall()
        return [self._scene(r) for r in rows]

    def _select_beats(self, conn: sqlite3.Connection, project_id: str) -> list[Beat]:
        rows = conn.execute(
            "SELECT b.* FROM beats b "
            "JOIN scenes s ON s.id = b.scene_id "
            "JOIN chapters c ON c.id = s.chapter_id "
            "WHERE c.project_id = ? ORDER BY c.position, s.position, b.position",
            (project_id,),
        ).fetchall()
        return [self._beat(r) for r in rows]

    def get_chapters(self, project_id: str) -> list[Chapter]:
        with self._connect() as conn:
            self._get_project(conn, project_id)
            return self._select_chapters(conn, project_id)

    def get_scenes(self, project_id: str) -> list[Scene]:
        with self._connect() as conn:
            self._get_project(conn, project_id)
            return self._select_scenes(conn, project_id)

    def get_beats(self, project_id: str) -> list[Beat]:
        with self._connect() as conn:
            self._get_project(conn, project_id)
            return self._select_beats(conn, project_id)

    def get_references(self, project_id: str) -> list[Reference]:
        with self._connect() as conn:
            self._get_project(conn, project_id)
            rows = conn.execute(
                "SELECT * FROM reference_items WHERE project_id = ? "
                "ORDER BY reference_type, position",
                (project_id,),
            ).fetchall()
        return [self._reference(r) for r in rows]

    def get_chapter(self, chapter_id: str) -> Chapter | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM chapters WHERE id = ?", (chapter_id,)
            ).fetchone()
        return self._chapter(row) if row else None

    def get_scene(self, scene_id: str) -> Scene | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM scenes WHERE id = ?", (scene_id,)
            ).fetchone()
        return self._scene(row) if row else None

    def get_beat(self, beat_id: str) -> Beat | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM beats WHERE id = ?", (beat_id,)
            ).fetchone()
        return self._beat(row) if row else None

    def get_scene_reference_ids(self, scene_id: str) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT sr.reference_id FROM scene_references sr "
                "JOIN reference_items r ON r.id = sr.reference_id "
                "WHERE sr.scene_id = ? ORDER BY r.reference_type, r.position",
                (scene_id,),
            ).fetchall()
        return [r["reference_id"] for r in rows]

    def snapshot(self, project_id: str) -> ProjectSnapshot:
        with self._connect() as conn:
            conn.execute("BEGIN")
            project = self._get_project(conn, project_id)
            return ProjectSnapshot(
                project=project,
                chapters=self._select_chapters(conn, project_id),
                scenes=self._select_scenes(conn, project_id),
                beats=self._select_beats(conn, project_id),
            )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _touch(self, conn: sqlite3.Connection, project_id: str) -> None:
        conn.execute(
            "UPDATE projects SET modified_at = ? WHERE id = ?", (_now(), project_id)
        )

    def _owner(self, conn: sqlite3.Connection, item_type: str, item_id: str) -> str:
        row = conn.execute(_OWNER_SQL[item_type], (item_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"{item_type.capitalize()} not found: {item_id}")
        return row[0]

    @staticmethod
    def _make_room(
        conn: sqlite3.Connection,
        table: str,
        parent_col: str,
        parent_id: str,
        position: int,
    ) -> int:
        """Shift siblings at or after *position* and return the clamped slot."""
        count = conn.execute(
            f"SELECT COUNT(*) FROM {table} WHERE {parent_col} = ?", (parent_id,)
        ).fetchone()[0]
        position = max(0, min(position, count))
        conn.execute(
            f"UPDATE {table} SET position = position + 1 "
            f"WHERE {parent_col} = ? AND position >= ?",
            (parent_id, position),
        )
        return position

    def _insert_chapter_row(
        self,
        conn: sqlite3.Connection,
        project_id: str,
        chapter: ParsedChapter,
        position: int,
    ) -> str:
        chapter_id = _new_id()
        conn.execute(
            "INSERT INTO chapters (id, project_id, title, position, is_part, source_id) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                chapter_id,
                project_id,
                chapter.title,
                position,
                int(chapter.is_part),
                chapter.source_id,
            ),
        )
        return chapter_id

    def _insert_scene_row(
        self,
        conn: sqlite3.Connection,
        chapter_id: str,
        scene: ParsedScene,
        position: int,
    ) -> str:
        scene_id = _new_id()
        conn.execute(
            "INSERT INTO scenes (id, chapter_id, title, synopsis, prose, position, "
            "source_id, scene_type, scene_status) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                scene_id,
                chapter_id,
                scene.title,
                scene.synopsis,
                scene.prose,
                position,
                scene.source_id,
                _enum_value(scene.scene_type),
                _enum_value(scene.scene_status),
            ),
        )
        return scene_id

    def _insert_beat_row(
        self,
        conn: sqlite3.Connection,
        scene_id: str,
        beat: ParsedBeat,
        position: int,
    ) -> str:
        beat_id = _new_id()
        conn.execute(
            "INSERT INTO beats (id, scene_id, content, prose, position, source_id) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (beat_id, scene_id, beat.content, beat.prose, position, beat.source_id),
        )
        return beat_id

    def _insert_reference_row(
        self,
        conn: sqlite3.Connection,
        project_id: str,
        reference: ParsedReference,
        position: int,
    ) -> str:
        reference_id = _new_id()
        conn.execute(
            "INSERT INTO reference_items (id, project_id, reference_type, name, "
            "description, attributes, source_id, position) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                reference_id,
                project_id,
                _enum_value(reference.reference_type),
                reference.name,
                reference.description,
                json.dumps(reference.attributes, ensure_ascii=False),
                reference.source_id,
                position,
            ),
        )
        return reference_id

    def create_project(self, parsed: ParsedProject) -> str:
        project_id = _new_id()
        now = _now()
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO projects (id, name, source_format, source_path, author, "
                "description, word_target, created_at, modified_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    project_id,
                    parsed.title,
                    _enum_value(parsed.source_format),
                    parsed.source_path or None,
                    parsed.author,
                    parsed.description,
                    parsed.word_target,
                    now,
                    now,
                ),
            )

            ref_ids: dict[str, str] = {}
            for refs in parsed.references_by_type().values():
                for position, ref in enumerate(refs):
                    db_id = self._insert_reference_row(conn, project_id, ref, position)
                    if ref.source_id:
                        ref_ids[ref.source_id] = db_id

            for c_pos, chapter in enumerate(parsed.chapters):
                chapter_id = self._insert_chapter_row(conn, project_id, chapter, c_pos)
                for s_pos, scene in enumerate(chapter.scenes):
                    scene_id = self._insert_scene_row(conn, chapter_id, scene, s_pos)
                    for b_pos, beat in enumerate(scene.beats):
                        self._insert_beat_row(conn, scene_id, beat, b_pos)
                    for source_ref in scene.reference_ids:
                        if source_ref in ref_ids:
                            conn.execute(
                                "INSERT OR IGNORE INTO scene_references "
                                "(scene_id, reference_id) VALUES (?, ?)",
                                (scene_id, ref_ids[source_ref]),
                            )

        logger.info("Created project %s (%r)", project_id, parsed.title)
        return project_id

    def insert_chapter(
        self, project_id: str, chapter: ParsedChapter, position: int
    ) -> str:
        with self._connect() as conn:
            self._get_project(conn, project_id)
            slot = self._make_room(conn, "chapters", "project_id", project_id, position)
            chapter_id = self._insert_chapter_row(conn, project_id, chapter, slot)
            self._touch(conn, project_id)
        return chapter_id

    def insert_scene(self, chapter_id: str, scene: ParsedScene, position: int) -> str:
        with self._connect() as conn:
            project_id = self._owner(conn, "chapter", chapter_id)
            slot = self._make_room(conn, "scenes", "chapter_id", chapter_id, position)
            scene_id = self._insert_scene_row(conn, chapter_id, scene, slot)
            self._touch(conn, project_id)
        return scene_id

    def insert_beat(self, scene_id: str, beat: ParsedBeat, position: int) -> str:
        with self._connect() as conn:
            project_id = self._owner(conn, "scene", scene_id)
            slot = self._make_room(conn, "beats", "scene_id", scene_id, position)
            beat_id = self._insert_beat_row(conn, scene_id, beat, slot)
            self._touch(conn, project_id)
        return beat_id

    def insert_reference(
        self, project_id: str, reference: ParsedReference, position: int
    ) -> str:
        with self._connect() as conn:
            self._get_project(conn, project_id)
            count = conn.execute(
                "SELECT COUNT(*) FROM reference_items "
                "WHERE project_id = ? AND reference_type = ?",
                (project_id, _enum_value(reference.reference_type)),
            ).fetchone()[0]
            slot = max(0, min(position, count))
            conn.execute(
                "UPDATE reference_items SET position = position + 1 "
                "WHERE project_id = ? AND reference_type = ? AND position >= ?",
                (project_id, _enum_value(reference.reference_type), slot),
            )
            reference_id = self._insert_reference_row(conn, project_id, reference, slot)
            self._touch(conn, project_id)
        return reference_id

    def link_scene_reference(self, scene_id: str, reference_id: str) -> None:
        with self._connect() as conn:
            scene_project = self._owner(conn, "scene", scene_id)
            ref_project = self._owner(conn, "reference", reference_id)
            if scene_project != ref_project:
                raise NotFoundError(
                    f"Reference {reference_id} not found in project {scene_project}"
                )
            conn.execute(
                "INSERT OR IGNORE INTO scene_references (scene_id, reference_id) "
                "VALUES (?, ?)",
                (scene_id, reference_id),
            )

    def update_field(
        self, item_type: ItemKind, item_id: str, field: str, value: Any
    ) -> None:
        if item_type not in _WRITABLE:
            raise ValueError(f"Unknown item type: {item_type!r}")
        table, columns = _WRITABLE[item_type]
        if field not in columns:
            raise ValueError(f"Field {field!r} is not writable on {item_type}")

        value = _enum_value(value)
        if isinstance(value, bool):
            value = int(value)

        with self._connect() as conn:
            project_id = self._owner(conn, item_type, item_id)
            conn.execute(
                f"UPDATE {table} SET {field} = ? WHERE id = ?", (value, item_id)
            )
            self._touch(conn, project_id)
        logger.debug("Updated %s %s: %s", item_type, item_id, field)
