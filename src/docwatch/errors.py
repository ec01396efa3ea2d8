"""Exception types raised across docwatch."""

from __future__ import annotations

from typing import List, Optional, Sequence


class DocwatchError(Exception):
    """Base class for docwatch failures."""


class FetchError(DocwatchError):
    """A URL could not be retrieved as text (network, status, or payload type)."""

    def __init__(self, message: str, *, url: str = "", status: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class FilterError(DocwatchError):
    """A content filter raised while transforming page text.

    Carries the content as it stood before the failing filter and the names
    of the filters that had already altered it.
    """

    def __init__(
        self,
        message: str,
        *,
        filter_name: str,
        content: str,
        applied: Sequence[str] = (),
    ) -> None:
        super().__init__(message)
        self.filter_name = filter_name
        self.content = content
        self.applied: List[str] = list(applied)


class AnnotationParseError(DocwatchError):
    """Source text could not be read or holds a malformed annotation."""

    def __init__(self, message: str, *, path: str = "", line: Optional[int] = None) -> None:
        super().__init__(message)
        self.path = path
        self.line = line


__all__ = [
    "DocwatchError",
    "FetchError",
    "FilterError",
    "AnnotationParseError",
]
