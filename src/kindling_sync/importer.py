"""Initial import: read a source and persist it as a new project."""

from __future__ import annotations

import logging
from pathlib import Path

from kindling_sync.builder import build_project
from kindling_sync.classifier import GUESS_THRESHOLD, needs_reclassification
from kindling_sync.models import SourceFormat
from kindling_sync.readers import ProgressCallback, get_reader
from kindling_sync.store.base import ProjectStore
from kindling_sync.sync.models import ImportResult

logger = logging.getLogger(__name__)


def import_project(
    store: ProjectStore,
    path: str | Path,
    source_format: SourceFormat | str,
    *,
    review_threshold: float = 0.25,
    progress: ProgressCallback | None = None,
) -> ImportResult:
    """Parse *path* and create a project from it in one transaction.

    A reader or store failure leaves no project behind.

    Args:
        store: Persistence gateway.
        path: Source file, or vault directory for Longform.
        source_format: Which reader to use.
        review_threshold: Share of guessed reference types at which the
            result asks for a reclassification step.
        progress: Optional progress callback passed to the reader.

    Returns:
        ImportResult with the new project id and item counts.
    """
    reader = get_reader(source_format)
    parsed = build_project(reader.parse(path, progress))
    parsed.source_path = str(Path(path).expanduser().resolve())

    classifications = [ref.classification for ref in parsed.references]
    guessed = sum(
        1 for c in classifications if c is not None and c.confidence < GUESS_THRESHOLD
    )
    review = needs_reclassification(classifications, review_threshold)

    project_id = store.create_project(parsed)
    counts = parsed.counts()
    logger.info(
        "Imported %r: %d chapters, %d scenes, %d beats, %d references",
        parsed.title,
        counts["chapters"],
        counts["scenes"],
        counts["beats"],
        counts["references"],
    )
    if review:
        logger.info(
            "%d of %d reference types were guessed; review suggested",
            guessed,
            len(classifications),
        )
    return ImportResult(
        project_id=project_id,
        counts=counts,
        needs_reclassification=review,
        guessed_references=guessed,
    )
