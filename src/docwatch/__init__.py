"""Detect changes in external documentation referenced from source comments."""

from .errors import AnnotationParseError, DocwatchError, FetchError, FilterError

__all__ = [
    "AnnotationParseError",
    "DocwatchError",
    "FetchError",
    "FilterError",
]
