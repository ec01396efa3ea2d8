"""docwatch defaults (annotation tag, request headers, env names, file types).

Centralizes static defaults so the fetch and reconcile modules have no
embedded magic strings. Callers can inject their own FetchConfig/CheckConfig
to override any of them.
"""

from __future__ import annotations

# Annotation
TAG_NAME = "ExternalDocSource"
FINGERPRINT_DIGEST_CHARS = 6
FILTER_SEPARATOR = "-"
FILTER_JOINER = ","

# Request headers
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)
DEFAULT_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
DEFAULT_ACCEPT_LANGUAGE = "en-US,en;q=0.9"
FALLBACK_IMPERSONATE = "chrome"

# Policy defaults
DEFAULT_TIMEOUT = 20.0
DEFAULT_CONCURRENCY = 16
CACHE_KEY_CHARS = 16

# Environment variables
ENV_TIMEOUT = "DOCWATCH_TIMEOUT"
ENV_CONCURRENCY = "DOCWATCH_CONCURRENCY"
ENV_USER_AGENT = "DOCWATCH_USER_AGENT"
ENV_ACCEPT_LANGUAGE = "DOCWATCH_ACCEPT_LANGUAGE"
ENV_DISABLE_FALLBACK = "DOCWATCH_DISABLE_FALLBACK"
ENV_CACHE_DIR = "DOCWATCH_CACHE_DIR"
ENV_UPDATE_FILES = "DOCWATCH_UPDATE_FILES"

# Content types hashed as text; anything else is rejected by the fetcher
TEXT_CONTENT_MARKERS = ("xml", "json", "javascript", "ecmascript")

SNAPSHOT_EXTENSIONS = {
    "text/html": ".html",
    "application/xhtml+xml": ".html",
    "text/plain": ".txt",
    "text/markdown": ".md",
    "application/json": ".json",
    "text/xml": ".xml",
    "application/xml": ".xml",
    "text/css": ".css",
    "application/javascript": ".js",
    "text/javascript": ".js",
}
DEFAULT_SNAPSHOT_EXTENSION = ".txt"
