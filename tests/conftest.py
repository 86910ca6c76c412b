"""Shared pytest fixtures for kindling-sync tests."""

import json
import textwrap
from pathlib import Path

import pytest

from kindling_sync.builder import build_project
from kindling_sync.config import Config
from kindling_sync.errors import StoreError
from kindling_sync.importer import import_project
from kindling_sync.models import SourceFormat
from kindling_sync.service import SyncService
from kindling_sync.store.sqlite import SQLiteProjectStore

ACT_ONE_MD = """\
# Act One

## Scene A

- do thing
"""


@pytest.fixture
def store(tmp_path):
    """Fresh SQLite store in a temporary directory."""
    return SQLiteProjectStore(tmp_path / "kindling.db")


@pytest.fixture
def service(store, tmp_path):
    """SyncService over the temporary store."""
    return SyncService(
        store, Config(db_path=str(tmp_path / "kindling.db"))
    )


@pytest.fixture
def write_markdown(tmp_path):
    """Factory fixture: write dedented Markdown to a file and return its path."""

    def _write(text: str, name: str = "outline.md") -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(text), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def write_plottr(tmp_path):
    """Factory fixture: dump a dict as a .pltr file and return its path."""

    def _write(data: dict, name: str = "story.pltr") -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def imported_markdown(store, write_markdown):
    """Import ACT_ONE_MD; returns (project_id, source_path)."""
    path = write_markdown(ACT_ONE_MD)
    result = import_project(store, path, SourceFormat.MARKDOWN)
    return result.project_id, path


@pytest.fixture
def parse_markdown():
    """Parse Markdown text and normalize it, as a reimport would."""
    from kindling_sync.readers.markdown import MarkdownReader

    def _parse(text: str):
        return build_project(
            MarkdownReader().parse_text(textwrap.dedent(text), "outline")
        )

    return _parse


class FailingStore(SQLiteProjectStore):
    """SQLite store whose inserts start failing after ``fail_after`` calls."""

    def __init__(self, db_path, fail_after: int) -> None:
        super().__init__(db_path)
        self.fail_after = fail_after
        self.insert_calls = 0

    def _maybe_fail(self) -> None:
        self.insert_calls += 1
        if self.insert_calls > self.fail_after:
            raise StoreError("disk full")

    def insert_chapter(self, project_id, chapter, position):
        self._maybe_fail()
        return super().insert_chapter(project_id, chapter, position)

    def insert_scene(self, chapter_id, scene, position):
        self._maybe_fail()
        return super().insert_scene(chapter_id, scene, position)

    def insert_beat(self, scene_id, beat, position):
        self._maybe_fail()
        return super().insert_beat(scene_id, beat, position)


@pytest.fixture
def failing_store(tmp_path):
    """Factory fixture for a FailingStore sharing a temp database."""

    def _create(fail_after: int) -> FailingStore:
        return FailingStore(tmp_path / "kindling.db", fail_after)

    return _create
