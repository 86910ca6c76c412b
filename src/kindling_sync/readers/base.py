"""Reader interface and small helpers shared by the format readers."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Callable, Protocol

from kindling_sync.models import ParsedProject, SourceFormat

ProgressCallback = Callable[[int, int, str], None]
"""``progress(done, total, label)``; called by readers that scan many files."""


class SourceReader(Protocol):
    """One reader per source format.

    ``parse`` raises ``FormatError`` subclasses (``SourceNotFoundError``,
    ``InvalidStructureError``, ``UnsupportedVersionError``) and never
    returns a partial project.
    """

    format: SourceFormat

    def parse(
        self,
        path: str | Path,
        progress: ProgressCallback | None = None,
    ) -> ParsedProject: ...


_WS_RE = re.compile(r"[ \t]+")


def clean_text(value: str | None) -> str:
    """Collapse runs of spaces and tabs, trim each line, drop outer blank lines."""
    if not value:
        return ""
    lines = [_WS_RE.sub(" ", line).strip() for line in value.splitlines()]
    return "\n".join(lines).strip()


def optional_text(value: str | None) -> str | None:
    """``clean_text`` that maps empty results to None."""
    text = clean_text(value)
    return text or None


def attribute_value(value: object) -> str | None:
    """Render a scalar source value as an attribute string.

    Booleans become "Yes"/"No". Lists are comma-joined. Returns None for
    values with no useful text.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (list, tuple)):
        parts = [attribute_value(v) for v in value]
        joined = ", ".join(p for p in parts if p)
        return joined or None
    return str(value)
