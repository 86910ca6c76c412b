"""File handler module: source path validation, encoding-aware reads, frontmatter.

All readers go through here for file I/O so encoding detection and
"missing file" errors behave the same for every format.
"""

import re
from pathlib import Path
from typing import Any

import yaml
from charset_normalizer import from_bytes

from kindling_sync.errors import FormatError, SourceNotFoundError

# =============================================================================
# Path Validation
# =============================================================================


def validate_source_path(
    path_str: str | Path, *, allow_dir: bool = False
) -> Path:
    """Validate and resolve a reader input path.

    Args:
        path_str: Path to an existing file (or directory when allowed).
        allow_dir: Accept a directory as well as a file.

    Returns:
        Resolved Path object.

    Raises:
        SourceNotFoundError: If the path does not exist.
        FormatError: If the path is a directory and directories are not
            accepted, or is neither a file nor a directory.
    """
    path = Path(path_str).expanduser()
    resolved = path.resolve()
    if not resolved.exists():
        raise SourceNotFoundError(str(path_str))
    if resolved.is_dir():
        if not allow_dir:
            raise FormatError(
                f"Expected a file but got a directory: {path_str}",
                path=str(path_str),
            )
        return resolved
    if not resolved.is_file():
        raise FormatError(
            f"Path is not a regular file: {path_str}", path=str(path_str)
        )
    return resolved


# =============================================================================
# File Read
# =============================================================================


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a file with automatic encoding detection.

    UTF-8 (with or without BOM) is tried first; anything else goes through
    charset-normalizer. Defaults to UTF-8 for empty files or when detection
    fails.

    Args:
        path: Path to the file to read.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    raw = path.read_bytes()
    if not raw:
        return ("", "utf-8")

    try:
        return (raw.decode("utf-8-sig"), "utf-8")
    except UnicodeDecodeError:
        pass

    result = from_bytes(raw).best()
    if result is None:
        encoding = "utf-8"
        content = raw.decode(encoding, errors="replace")
    else:
        encoding = result.encoding
        if encoding == "ascii":
            encoding = "utf-8"
        content = str(result)
    return (content, encoding)


def read_utf8_strict(path: Path) -> str:
    """Read a file that must be UTF-8.

    Raises:
        FormatError: If the bytes are not valid UTF-8.
    """
    raw = path.read_bytes()
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise FormatError(
            f"{path.name} is not valid UTF-8 (byte {exc.start})",
            path=str(path),
        ) from exc


# =============================================================================
# Frontmatter
# =============================================================================

_FRONTMATTER_RE = re.compile(
    r"\A---[ \t]*\r?\n(.*?)(?:\r?\n)?^(?:---|\.\.\.)[ \t]*(?:\r?\n|\Z)",
    re.DOTALL | re.MULTILINE,
)


def split_frontmatter(text: str) -> tuple[str | None, str]:
    """Split a leading YAML frontmatter block from a markdown document.

    Returns:
        Tuple of (raw_yaml or None, body). The body is the full text when
        there is no frontmatter.
    """
    text = text.lstrip("\ufeff")
    match = _FRONTMATTER_RE.match(text)
    if match is None:
        return (None, text)
    return (match.group(1), text[match.end():])


class PlainScalarLoader(yaml.SafeLoader):
    """SafeLoader that reads YAML 1.1 booleans and dates as plain strings.

    Only ``true`` and ``false`` (lower, title or upper case) stay booleans,
    as in YAML 1.2.
    ``yes``, ``no``, ``on``, ``off`` and ``2024-05-01`` are kept as text, so
    note names that happen to look like them survive unchanged.
    """


_BOOL_TAG = "tag:yaml.org,2002:bool"
_TIMESTAMP_TAG = "tag:yaml.org,2002:timestamp"

PlainScalarLoader.yaml_implicit_resolvers = {
    first: [
        (tag, pattern)
        for tag, pattern in resolvers
        if tag not in (_BOOL_TAG, _TIMESTAMP_TAG)
    ]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
PlainScalarLoader.add_implicit_resolver(
    _BOOL_TAG,
    re.compile(r"^(?:true|True|TRUE|false|False|FALSE)$"),
    list("tTfF"),
)


def load_frontmatter(
    raw: str | None, loader: type[yaml.SafeLoader] = yaml.SafeLoader
) -> dict[str, Any]:
    """Parse a frontmatter block into a dict.

    Args:
        raw: The block without its ``---`` fences.
        loader: YAML loader class, e.g. ``PlainScalarLoader``.

    Raises:
        yaml.YAMLError: If the block is not valid YAML.
        ValueError: If the block parses to something other than a mapping.
    """
    if raw is None or not raw.strip():
        return {}
    data = yaml.load(raw, Loader=loader)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(
            f"Frontmatter must be a mapping, got {type(data).__name__}"
        )
    return data
