"""Shared schema keys to avoid magic strings across docwatch modules."""

from __future__ import annotations

# Reconciliation record keys (JSON output)
K_PATH = "path"
K_LINE = "line"
K_BASE_NAME = "base_name"
K_SOURCE = "source"
K_SAVED_HASH = "saved_hash"
K_CURRENT_HASH = "current_hash"
K_MATCHES = "matches"
K_SUCCESS = "success"

# Report keys
K_RECORDS = "records"
K_ERRORS = "errors"
K_COUNTS = "counts"
K_ERROR = "error"
K_SOURCES = "sources"
