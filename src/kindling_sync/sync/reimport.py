"""Reimport orchestration: re-read a project's source and diff or merge it."""

from __future__ import annotations

import logging

from kindling_sync.builder import build_project
from kindling_sync.errors import PreconditionError
from kindling_sync.models import ParsedProject
from kindling_sync.readers import ProgressCallback, get_reader
from kindling_sync.store.base import ProjectStore
from kindling_sync.sync.engine import compute_preview
from kindling_sync.sync.merger import MergeApplier
from kindling_sync.sync.models import ReimportSummary, SyncPreview

logger = logging.getLogger(__name__)


def prepare_sync(
    store: ProjectStore,
    project_id: str,
    progress: ProgressCallback | None = None,
) -> tuple[ParsedProject, SyncPreview]:
    """Re-parse the project's source and diff it against the store.

    Nothing is written.

    Raises:
        NotFoundError: Unknown project, or the source file is gone.
        PreconditionError: The project has no known source path.
        FormatError: The source no longer parses.
    """
    project = store.get_project(project_id)
    if not project.source_path:
        raise PreconditionError(
            f"Project {project.name!r} has no source path to sync from"
        )

    logger.info(
        "Re-reading %s source for %r from %s",
        project.source_format.value,
        project.name,
        project.source_path,
    )
    reader = get_reader(project.source_format)
    parsed = build_project(reader.parse(project.source_path, progress))
    preview = compute_preview(parsed, store.snapshot(project_id))
    return parsed, preview


def reimport(
    store: ProjectStore,
    project_id: str,
    progress: ProgressCallback | None = None,
) -> ReimportSummary:
    """One-shot reimport: accept every proposed addition and change."""
    parsed, preview = prepare_sync(store, project_id, progress)
    if preview.is_empty:
        logger.info("Project %s is already up to date", project_id)
    return MergeApplier(store).apply(
        project_id,
        preview,
        parsed,
        accepted_change_ids=preview.change_ids,
        accepted_addition_ids=preview.addition_ids,
    )
