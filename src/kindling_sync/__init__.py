"""kindling-sync: import story outlines and keep them in sync with their source."""

__version__ = "0.4.0"
