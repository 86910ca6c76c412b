"""Runtime configuration for kindling-sync.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    KINDLING_DB_PATH: SQLite database file (optional)
    KINDLING_REVIEW_THRESHOLD: Share of guessed reference types that
        triggers a reclassification prompt, 0.0-1.0 (optional, default: 0.25)
    KINDLING_MAX_PARALLEL: Max concurrent reimports in batch mode
        (optional, default: 4)
    KINDLING_DEBUG: Enable debug logging (optional, default: false)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .config_schema import DEFAULT_DB_PATH

logger = logging.getLogger(__name__)


@dataclass
class Config:
    db_path: str = DEFAULT_DB_PATH
    busy_timeout_ms: int = 10000
    review_threshold: float = 0.25
    max_parallel: int = 4
    debug: bool = False
    log_level: str = "INFO"
    log_file: str | None = None


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Also expands ``~`` in ``db_path``.

    Raises:
        ValueError: If the database path is empty or a number is out of range.
    """
    config.db_path = config.db_path.strip()
    if not config.db_path:
        raise ValueError(
            "Database path cannot be empty. Set KINDLING_DB_PATH or pass --db."
        )
    config.db_path = str(Path(config.db_path).expanduser())

    if not 0.0 <= config.review_threshold <= 1.0:
        raise ValueError(
            f"Invalid review threshold {config.review_threshold}: "
            "must be between 0.0 and 1.0"
        )
    if not 1 <= config.max_parallel <= 64:
        raise ValueError(
            f"Invalid max_parallel {config.max_parallel}: "
            "must be between 1 and 64"
        )
    if config.busy_timeout_ms < 0:
        raise ValueError("busy_timeout_ms cannot be negative")


def get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def load_config(
    db_path: str | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` first so that
    .env values are visible through ``os.getenv()``.

    Args:
        db_path: Override database path (``--db``).
        debug: Enable debug logging (``--debug``).
        yaml_fallbacks: Flattened YAML values, see
            ``config_schema.to_fallbacks``.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If an environment value is malformed or out of range.
    """
    fb = yaml_fallbacks or {}

    final_db_path = (
        db_path or os.getenv("KINDLING_DB_PATH") or fb.get("db_path") or DEFAULT_DB_PATH
    )

    if debug:
        final_debug = True
    else:
        env_debug = get_bool_env("KINDLING_DEBUG")
        final_debug = env_debug if env_debug is not None else bool(fb.get("debug", False))

    threshold_raw = os.getenv("KINDLING_REVIEW_THRESHOLD")
    if threshold_raw is not None:
        try:
            final_threshold = float(threshold_raw)
        except ValueError:
            raise ValueError(
                f"Invalid KINDLING_REVIEW_THRESHOLD '{threshold_raw}': "
                "must be a number between 0.0 and 1.0"
            ) from None
    else:
        final_threshold = float(fb.get("review_threshold", 0.25))

    parallel_raw = os.getenv("KINDLING_MAX_PARALLEL")
    if parallel_raw is not None:
        try:
            final_parallel = int(parallel_raw)
        except ValueError:
            raise ValueError(
                f"Invalid KINDLING_MAX_PARALLEL '{parallel_raw}': "
                "must be a number between 1 and 64"
            ) from None
    else:
        final_parallel = int(fb.get("max_parallel", 4))

    config = Config(
        db_path=final_db_path,
        busy_timeout_ms=int(fb.get("busy_timeout_ms", 10000)),
        review_threshold=final_threshold,
        max_parallel=final_parallel,
        debug=final_debug,
        log_level=str(fb.get("log_level") or "INFO"),
        log_file=fb.get("log_file"),
    )

    validate_config(config)
    return config
