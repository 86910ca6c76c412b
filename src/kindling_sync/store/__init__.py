"""Persistence gateway: interface, SQLite implementation and write locks."""

from .base import ItemKind, ProjectStore
from .locks import LockStats, ProjectLockRegistry
from .sqlite import SQLiteProjectStore

__all__ = [
    "ItemKind",
    "LockStats",
    "ProjectLockRegistry",
    "ProjectStore",
    "SQLiteProjectStore",
]
