"""Per-operation entry points for callers: the CLI or a host application.

Every operation exists twice: a blocking method and an ``*_async`` twin
that runs the blocking one in a worker thread, so an event loop driving a
UI never waits on file or database I/O.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path

from kindling_sync import classifier, importer
from kindling_sync.config import Config
from kindling_sync.core.async_utils import map_bounded, run_sync
from kindling_sync.models import Reference, ReferenceType, SourceFormat
from kindling_sync.readers import ProgressCallback
from kindling_sync.store.base import ProjectStore
from kindling_sync.store.sqlite import SQLiteProjectStore
from kindling_sync.sync.merger import MergeApplier
from kindling_sync.sync.models import ImportResult, ReimportSummary, SyncPreview
from kindling_sync.sync.reimport import prepare_sync, reimport

logger = logging.getLogger(__name__)


class SyncService:
    """Import, preview, apply and reimport against one store.

    Args:
        store: Persistence gateway.
        config: Runtime settings; defaults are used when omitted.
    """

    def __init__(self, store: ProjectStore, config: Config | None = None) -> None:
        self.store = store
        self.config = config or Config()

    @classmethod
    def from_config(cls, config: Config) -> SyncService:
        """Open the SQLite store named in *config*."""
        store = SQLiteProjectStore(
            config.db_path, busy_timeout_ms=config.busy_timeout_ms
        )
        return cls(store, config)

    # ------------------------------------------------------------------
    # Blocking API
    # ------------------------------------------------------------------

    def import_project(
        self,
        path: str | Path,
        source_format: SourceFormat | str,
        progress: ProgressCallback | None = None,
    ) -> ImportResult:
        """Create a new project from a source file or vault."""
        return importer.import_project(
            self.store,
            path,
            source_format,
            review_threshold=self.config.review_threshold,
            progress=progress,
        )

    def get_sync_preview(
        self,
        project_id: str,
        progress: ProgressCallback | None = None,
    ) -> SyncPreview:
        """What a sync would add and change. Writes nothing."""
        _, preview = prepare_sync(self.store, project_id, progress)
        return preview

    def apply_sync(
        self,
        project_id: str,
        accepted_change_ids: Iterable[str],
        accepted_addition_ids: Iterable[str],
        progress: ProgressCallback | None = None,
    ) -> ReimportSummary:
        """Apply the accepted ids from an earlier preview.

        The source is read again and the preview recomputed, so ids that no
        longer apply are ignored.
        """
        parsed, preview = prepare_sync(self.store, project_id, progress)
        return MergeApplier(self.store).apply(
            project_id,
            preview,
            parsed,
            accepted_change_ids=accepted_change_ids,
            accepted_addition_ids=accepted_addition_ids,
        )

    def reimport_project(
        self,
        project_id: str,
        progress: ProgressCallback | None = None,
    ) -> ReimportSummary:
        """Apply every proposed addition and change in one step."""
        return reimport(self.store, project_id, progress)

    def reclassify_references(
        self,
        project_id: str,
        mapping: Mapping[str, ReferenceType | str],
    ) -> list[Reference]:
        """Set the type of persisted references by id."""
        return classifier.reclassify_references(self.store, project_id, mapping)

    # ------------------------------------------------------------------
    # Async API
    # ------------------------------------------------------------------

    async def import_project_async(
        self,
        path: str | Path,
        source_format: SourceFormat | str,
        progress: ProgressCallback | None = None,
    ) -> ImportResult:
        return await run_sync(self.import_project, path, source_format, progress)

    async def get_sync_preview_async(self, project_id: str) -> SyncPreview:
        return await run_sync(self.get_sync_preview, project_id)

    async def apply_sync_async(
        self,
        project_id: str,
        accepted_change_ids: Iterable[str],
        accepted_addition_ids: Iterable[str],
    ) -> ReimportSummary:
        return await run_sync(
            self.apply_sync,
            project_id,
            list(accepted_change_ids),
            list(accepted_addition_ids),
        )

    async def reimport_project_async(self, project_id: str) -> ReimportSummary:
        return await run_sync(self.reimport_project, project_id)

    async def reclassify_references_async(
        self,
        project_id: str,
        mapping: Mapping[str, ReferenceType | str],
    ) -> list[Reference]:
        return await run_sync(self.reclassify_references, project_id, dict(mapping))

    async def reimport_many_async(
        self, project_ids: Sequence[str]
    ) -> list[ReimportSummary]:
        """Reimport several projects concurrently.

        At most ``config.max_parallel`` run at once. Results are in input
        order; the first failure propagates.
        """
        logger.info("Reimporting %d projects", len(project_ids))
        return await map_bounded(
            self.reimport_project, project_ids, self.config.max_parallel
        )
