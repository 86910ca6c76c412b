"""Unified configuration schema for kindling_sync.

Pydantic models for the YAML config, one section per concern, plus the
adapter that flattens them into fallbacks for ``load_config``.

Usage:
    from kindling_sync.config_schema import build_config, to_fallbacks

    unified = build_config(load_hierarchical_config())
    config = load_config(yaml_fallbacks=to_fallbacks(unified))
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "~/.local/share/kindling_sync/kindling.db"


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class StoreConfig(BaseModel):
    """Where and how projects are persisted."""

    db_path: str = Field(
        default=DEFAULT_DB_PATH, description="SQLite database file"
    )
    busy_timeout_ms: int = Field(
        default=10000,
        ge=0,
        description="How long to wait on a locked database, in milliseconds",
    )

    model_config = {"frozen": True}


class ImporterConfig(BaseModel):
    """Import and reimport behaviour."""

    max_parallel: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Maximum concurrent reimports in batch mode (1-64)",
    )

    model_config = {"frozen": True}


class ClassifierConfig(BaseModel):
    """Reference classification review."""

    review_threshold: float = Field(
        default=0.25,
        ge=0.0,
        le=1.0,
        description=(
            "Share of guessed reference types at which an import suggests "
            "manual reclassification"
        ),
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """All config sections. ``UnifiedConfig()`` is a valid zero-config."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    importer: ImporterConfig = Field(default_factory=ImporterConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Validate the merged YAML mapping into a ``UnifiedConfig``.

    Missing sections get defaults.

    Raises:
        pydantic.ValidationError: If a value is out of range or mistyped.
    """
    if not raw_data:
        return UnifiedConfig()
    return UnifiedConfig(**raw_data)


def to_fallbacks(unified: UnifiedConfig) -> dict:
    """Flatten a ``UnifiedConfig`` into the YAML fallbacks ``load_config`` takes."""
    return {
        "db_path": unified.store.db_path,
        "busy_timeout_ms": unified.store.busy_timeout_ms,
        "max_parallel": unified.importer.max_parallel,
        "review_threshold": unified.classifier.review_threshold,
        "log_level": unified.logging.level,
        "log_file": unified.logging.file,
    }
