"""Reimport sync: diff a fresh parse against the store and merge it."""

from .engine import compute_preview
from .merger import MergeApplier
from .models import (
    ImportResult,
    ItemType,
    ReimportSummary,
    SkippedItem,
    SyncAddition,
    SyncChange,
    SyncPreview,
)
from .reimport import prepare_sync, reimport

__all__ = [
    "ImportResult",
    "ItemType",
    "MergeApplier",
    "ReimportSummary",
    "SkippedItem",
    "SyncAddition",
    "SyncChange",
    "SyncPreview",
    "compute_preview",
    "prepare_sync",
    "reimport",
]
