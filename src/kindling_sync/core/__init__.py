"""Core helpers shared between the CLI and the service facade."""

from .async_utils import map_bounded, run_sync

__all__ = ["map_bounded", "run_sync"]
