"""Source readers, one per supported outline format.

The caller always names the format; there is no content sniffing.

Usage::

    from kindling_sync.readers import get_reader
    from kindling_sync.models import SourceFormat

    parsed = get_reader(SourceFormat.MARKDOWN).parse("outline.md")
"""

from kindling_sync.models import SourceFormat

from .base import ProgressCallback, SourceReader
from .longform import LongformReader
from .markdown import MarkdownReader
from .plottr import PlottrReader
from .ywriter import YWriterReader

_READERS: dict[SourceFormat, type] = {
    SourceFormat.PLOTTR: PlottrReader,
    SourceFormat.MARKDOWN: MarkdownReader,
    SourceFormat.YWRITER: YWriterReader,
    SourceFormat.LONGFORM: LongformReader,
}


def get_reader(source_format: SourceFormat | str) -> SourceReader:
    """Return a fresh reader for *source_format*.

    Raises:
        ValueError: If the format name is unknown.
    """
    try:
        fmt = SourceFormat(source_format)
    except ValueError:
        known = ", ".join(f.value for f in SourceFormat)
        raise ValueError(
            f"Unknown source format {source_format!r} (expected one of: {known})"
        ) from None
    return _READERS[fmt]()


__all__ = [
    "LongformReader",
    "MarkdownReader",
    "PlottrReader",
    "ProgressCallback",
    "SourceReader",
    "YWriterReader",
    "get_reader",
]
