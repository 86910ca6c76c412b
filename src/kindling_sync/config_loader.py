"""
YAML config discovery and loading for kindling-sync.

Config files are found by convention, may pull in other files with
``!include``, and may reference the environment as ``${VAR:-default}``.
When several files exist they are merged shallowly, with the
project-level file winning over the global one.

Usage:
    from kindling_sync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "KINDLING_SYNC_CONFIG"
PROJECT_CONFIG = Path(".kindling_sync") / "config.yml"
GLOBAL_CONFIG = Path(".config") / "kindling_sync" / "config.yml"

# ---------------------------------------------------------------------------
# Environment interpolation
# ---------------------------------------------------------------------------

# ${VAR} or ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` in *value*.

    An unset or empty VAR expands to its default, or to "" without one.
    An unterminated ``${`` is left as is.
    """

    def _expand(match: re.Match) -> str:
        current = os.environ.get(match.group(1))
        if current:
            return current
        return match.group(2) or ""

    return _ENV_VAR_PATTERN.sub(_expand, value)


def _interpolate_tree(node: Any) -> Any:
    if isinstance(node, str):
        return interpolate_env_vars(node)
    if isinstance(node, dict):
        return {key: _interpolate_tree(val) for key, val in node.items()}
    if isinstance(node, list):
        return [_interpolate_tree(item) for item in node]
    return node


# ---------------------------------------------------------------------------
# !include
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """SafeLoader with an ``!include`` tag.

    A private subclass, so registering the tag leaves ``yaml.SafeLoader``
    untouched. Each load carries the chain of files being included, which
    is how cycles are caught.
    """


def _include_constructor(loader: ConfigLoader, node: yaml.ScalarNode) -> Any:
    """``!include other.yml``, relative to the including file."""
    target = Path(loader.construct_scalar(node))
    if not target.is_absolute():
        target = Path(loader.name).resolve().parent / target
    target = target.resolve()

    chain: list[Path] = getattr(loader, "_include_stack", [])
    if target in chain:
        cycle = " -> ".join(str(p) for p in [*chain, target])
        raise ValueError(f"Circular include detected: {cycle}")
    if not target.exists():
        raise FileNotFoundError(
            f"Include file not found: {target} "
            f"(referenced from {Path(loader.name).resolve()})"
        )

    return _load_yaml_with_includes(target, _include_stack=[*chain, target])


ConfigLoader.add_constructor("!include", _include_constructor)


def _load_yaml_with_includes(
    path: Path,
    *,
    _include_stack: list[Path] | None = None,
) -> Any:
    path = path.resolve()
    with open(path, "r", encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader._include_stack = _include_stack or [path]  # type: ignore[attr-defined]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Existing config files, highest precedence first.

    Search order:
        1. The file named by ``KINDLING_SYNC_CONFIG``.
        2. ``.kindling_sync/config.yml`` in the working directory.
        3. ``~/.config/kindling_sync/config.yml``.
    """
    candidates: list[Path] = []

    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())
    candidates.append(Path.cwd() / PROJECT_CONFIG)
    candidates.append(Path.home() / GLOBAL_CONFIG)

    return [p for p in candidates if p.exists()]


_STARTER_CONFIG = """\
# kindling-sync configuration
#
# Values may reference the environment: ${VAR} or ${VAR:-default}.
# Environment variables KINDLING_DB_PATH, KINDLING_REVIEW_THRESHOLD and
# KINDLING_MAX_PARALLEL override the matching settings below.
#
# store:
#   db_path: ~/.local/share/kindling_sync/kindling.db
#   busy_timeout_ms: 10000
#
# importer:
#   max_parallel: 4
#
# classifier:
#   review_threshold: 0.25
#
# logging:
#   level: INFO
#   file: null
"""


def resolve_config_path() -> Path:
    """The config file in effect, or the project-level default path.

    Nothing is created; see ``ensure_config``.
    """
    existing = discover_config_files()
    if existing:
        return existing[0]
    return Path.cwd() / PROJECT_CONFIG


def ensure_config(target: Path | None = None) -> Path:
    """Return the active config file, writing a commented starter if none exists.

    Args:
        target: Where to write the starter file. Defaults to
            ``resolve_config_path()``.
    """
    existing = discover_config_files()
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    config_path = target or resolve_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", config_path)
    return config_path


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def load_hierarchical_config() -> dict[str, Any]:
    """Load every discovered config file and merge them.

    Files are applied from lowest to highest precedence. A later file's
    top-level sections replace earlier ones whole. Environment references
    are expanded after the merge.

    Returns:
        Merged mapping; empty when no config file exists.
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        try:
            data = _load_yaml_with_includes(path)
        except Exception:
            logger.exception("Failed to load config file %s", path)
            raise

        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Config file %s is not a mapping (%s), skipping",
                path,
                type(data).__name__,
            )

    return _interpolate_tree(merged)
