"""Compare stored annotation fingerprints with current ones and rewrite them."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..core.keys import (
    K_BASE_NAME,
    K_CURRENT_HASH,
    K_LINE,
    K_MATCHES,
    K_PATH,
    K_SAVED_HASH,
    K_SOURCE,
    K_SUCCESS,
)
from .annotations import TagOccurrence
from .docwatch_config import FILTER_JOINER, FILTER_SEPARATOR, TAG_NAME
from .fingerprint import FingerprintCache

logger = logging.getLogger(__name__)

__all__ = [
    "ReconciliationRecord",
    "Reconciler",
    "parse_stored_filters",
    "rewrite_annotations",
]

_FILTER_NAME_RE = re.compile(r"^[A-Za-z0-9_.]+$")


@dataclass(frozen=True)
class ReconciliationRecord:
    path: str
    line: Optional[int]
    base_name: str
    source: str
    saved_hash: str
    current_hash: str
    matches: bool
    success: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            K_PATH: self.path,
            K_LINE: self.line,
            K_BASE_NAME: self.base_name,
            K_SOURCE: self.source,
            K_SAVED_HASH: self.saved_hash,
            K_CURRENT_HASH: self.current_hash,
            K_MATCHES: self.matches,
            K_SUCCESS: self.success,
        }


def parse_stored_filters(stored: str) -> List[str]:
    """Filter names encoded after the first ``-`` of a stored fingerprint.

    ``"3fa9c1-body,nonce"`` gives ``["body", "nonce"]``; a value without a
    separator gives ``[]``. Tokens that cannot be filter names are dropped,
    so a garbled suffix degrades to fewer (or no) filters.
    """

    if not stored or FILTER_SEPARATOR not in stored:
        return []
    _, _, suffix = stored.partition(FILTER_SEPARATOR)
    names: List[str] = []
    for token in suffix.split(FILTER_JOINER):
        name = token.strip()
        if name and _FILTER_NAME_RE.match(name):
            names.append(name)
    return names


def _annotation_pattern(source: str) -> "re.Pattern[str]":
    return re.compile(
        rf"(?P<lead>(?:\*|#|//)[ \t]*)@{re.escape(TAG_NAME)}(?=\s)[^\n]*?(?<=\s)"
        rf"{re.escape(source)}(?=\s|\*/|$)(?P<rest>[^\n]*)$",
        re.IGNORECASE | re.MULTILINE,
    )


def _replace_annotation(line: str, record: ReconciliationRecord) -> str:
    pattern = _annotation_pattern(record.source)

    def _sub(match: "re.Match[str]") -> str:
        rest = match.group("rest")
        closing = " */" if rest.rstrip().endswith("*/") else ""
        eol = "\r" if rest.endswith("\r") else ""
        return f"{match.group('lead')}@{TAG_NAME} {{{record.current_hash}}} {record.source}{closing}{eol}"

    return pattern.sub(_sub, line)


def rewrite_annotations(content: str, records: Sequence[ReconciliationRecord]) -> str:
    """Return ``content`` with each stale annotation carrying its current fingerprint.

    Records that failed to fetch leave their annotation untouched; records
    that already match are skipped. A record with a line number rewrites only
    that line; one without rewrites every annotation line naming its URL.
    """

    lines = content.splitlines(keepends=True)
    updated = content
    changed = False
    for record in records:
        if not record.success or record.matches:
            continue
        if record.line is not None and 1 <= record.line <= len(lines):
            index = record.line - 1
            replaced = _replace_annotation(lines[index], record)
            if replaced != lines[index]:
                lines[index] = replaced
                changed = True
            continue
        whole = "".join(lines)
        replaced = _replace_annotation(whole, record)
        if replaced != whole:
            lines = replaced.splitlines(keepends=True)
            changed = True
    if changed:
        updated = "".join(lines)
    return updated


class Reconciler:
    """Resolve annotations against a :class:`FingerprintCache`."""

    def __init__(self, cache: FingerprintCache, *, update_files: bool = True) -> None:
        self.cache = cache
        self.update_files = update_files

    async def check_occurrence(self, occurrence: TagOccurrence) -> ReconciliationRecord:
        filters = parse_stored_filters(occurrence.stored)
        result = await self.cache.get_fingerprint(occurrence.source, filters)
        matches = result.success and occurrence.stored == result.fingerprint
        if not matches:
            logger.info(
                "%s:%s %s stored=%r current=%r",
                occurrence.path,
                occurrence.line,
                occurrence.source,
                occurrence.stored,
                result.fingerprint,
            )
        return ReconciliationRecord(
            path=occurrence.path,
            line=occurrence.line,
            base_name=occurrence.base_name,
            source=occurrence.source,
            saved_hash=occurrence.stored,
            current_hash=result.fingerprint,
            matches=matches,
            success=result.success,
        )

    async def reconcile(
        self,
        occurrences: Sequence[TagOccurrence],
        content: str,
    ) -> Tuple[List[ReconciliationRecord], str]:
        """Check ``occurrences`` concurrently and return records plus updated text.

        The returned text equals ``content`` when rewriting is disabled or
        nothing needed updating.
        """

        records = list(await asyncio.gather(*(self.check_occurrence(occ) for occ in occurrences)))
        if not self.update_files:
            return records, content
        return records, rewrite_annotations(content, records)
