"""Find ``@ExternalDocSource`` annotations in source text.

Annotations live on a single comment line::

    /**
     * @ExternalDocSource {3fa9c1-body} https://docs.example.com/api
     */
    # @ExternalDocSource {} https://docs.example.com/cli

The braces hold the stored fingerprint; they may be empty (or omitted) for an
annotation that has never been checked.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import List, Optional

from ..errors import AnnotationParseError
from .docwatch_config import TAG_NAME

__all__ = ["TagOccurrence", "extract_occurrences", "decode_source"]

_TAG_LINE_RE = re.compile(
    rf"^[ \t]*(?:/\*\*?|\*|#|//)[ \t]*@{re.escape(TAG_NAME)}(?=\s|$)(?P<rest>.*)$"
)
_COMMENT_CLOSE_RE = re.compile(r"\s*\*/\s*$")


@dataclass(frozen=True)
class TagOccurrence:
    """One annotation: where it is, which URL it names, what it last recorded."""

    path: str
    line: Optional[int]
    source: str
    stored: str

    @property
    def base_name(self) -> str:
        return os.path.basename(self.path)


def decode_source(data: bytes, path: str = "") -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise AnnotationParseError(f"File content is not readable: {exc}", path=path) from exc


def _parse_rest(rest: str, path: str, line_no: int) -> TagOccurrence:
    body = _COMMENT_CLOSE_RE.sub("", rest).strip()
    stored = ""
    if body.startswith("{"):
        end = body.find("}")
        if end < 0:
            raise AnnotationParseError(
                f"{path}:{line_no}: unterminated '{{' in @{TAG_NAME} annotation",
                path=path,
                line=line_no,
            )
        stored = body[1:end].strip()
        body = body[end + 1 :].strip()
    parts = body.split()
    if not parts:
        raise AnnotationParseError(
            f"{path}:{line_no}: @{TAG_NAME} annotation has no URL",
            path=path,
            line=line_no,
        )
    return TagOccurrence(path=path, line=line_no, source=parts[0], stored=stored)


def extract_occurrences(content: str, path: str = "") -> List[TagOccurrence]:
    """Return every annotation in ``content`` in file order.

    Raises :class:`AnnotationParseError` for an annotation without a URL or
    with an unterminated ``{``.
    """

    occurrences: List[TagOccurrence] = []
    for index, line in enumerate(content.splitlines(), start=1):
        match = _TAG_LINE_RE.match(line)
        if match is None:
            continue
        occurrences.append(_parse_rest(match.group("rest"), path, index))
    return occurrences
