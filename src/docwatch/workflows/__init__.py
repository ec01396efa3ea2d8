"""High-level exports for the docwatch workflows."""

from .annotations import TagOccurrence, extract_occurrences
from .checker import CheckConfig, CheckReport, CheckSession, check_globs, run_check
from .filters import BASE_FILTERS, FilterRegistry, apply_filters
from .fingerprint import FingerprintCache, FingerprintRecord, cache_key
from .page_fetch import FetchConfig, FetchedPage, PageFetcher
from .reconcile import ReconciliationRecord, Reconciler, parse_stored_filters, rewrite_annotations

__all__ = [
    "TagOccurrence",
    "extract_occurrences",
    "CheckConfig",
    "CheckReport",
    "CheckSession",
    "check_globs",
    "run_check",
    "BASE_FILTERS",
    "FilterRegistry",
    "apply_filters",
    "FingerprintCache",
    "FingerprintRecord",
    "cache_key",
    "FetchConfig",
    "FetchedPage",
    "PageFetcher",
    "ReconciliationRecord",
    "Reconciler",
    "parse_stored_filters",
    "rewrite_annotations",
]
