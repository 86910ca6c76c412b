"""Exception taxonomy shared by readers, the sync engine and the store.

- ``FormatError``: malformed or unsupported source artifact.
- ``NotFoundError``: missing file, project or referenced scene.
- ``PreconditionError``: operation cannot start (no source path, ambiguous vault).
- ``PartialApplyWarning``: one accepted item could not be applied. Logged
  and recorded in the merge summary, never raised.
- ``StoreError``: persistence failure, fatal to the in-flight operation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .sync.models import ReimportSummary


class KindlingSyncError(Exception):
    """Base class for all kindling-sync errors."""


class FormatError(KindlingSyncError):
    """Source artifact cannot be turned into a project."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class InvalidStructureError(FormatError):
    """Source is readable but its structure is wrong or incomplete."""


class UnsupportedVersionError(FormatError):
    """Source was written by a tool version this reader does not handle."""


class NotFoundError(KindlingSyncError):
    """A file, project or item that should exist does not."""


class SourceNotFoundError(NotFoundError, FormatError):
    """Reader input path does not exist."""

    def __init__(self, path: str) -> None:
        FormatError.__init__(self, f"Source not found: {path}", path=path)


class PreconditionError(KindlingSyncError):
    """Operation was requested in a state where it cannot run."""


class StoreError(KindlingSyncError):
    """Persistence gateway failed.

    When raised in the middle of a merge, ``partial_summary`` holds what was
    committed before the failure.
    """

    def __init__(
        self,
        message: str,
        partial_summary: ReimportSummary | None = None,
    ) -> None:
        super().__init__(message)
        self.partial_summary = partial_summary


class PartialApplyWarning(KindlingSyncError):
    """An accepted item was skipped at apply time."""

    def __init__(self, item_id: str, reason: str) -> None:
        super().__init__(f"Skipped {item_id}: {reason}")
        self.item_id = item_id
        self.reason = reason
