"""Fingerprints of filtered page content, cached per (url, filter-set).

A fingerprint is the first six hex characters of the SHA-256 of the filtered
page text, suffixed with ``-name,name`` for the filters that changed it::

    3fa9c1            no filter altered the page
    3fa9c1-body,nonce body and nonce both altered it

The cache holds one :class:`asyncio.Task` per key for the life of the
session. Concurrent callers for the same key await the same task, so each
(url, filter-set) pair is fetched at most once. Failures resolve to records
with ``success=False`` instead of raising, so one unreachable page cannot
abort a batch.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..errors import FilterError
from .docwatch_config import (
    CACHE_KEY_CHARS,
    DEFAULT_SNAPSHOT_EXTENSION,
    FILTER_JOINER,
    FILTER_SEPARATOR,
    FINGERPRINT_DIGEST_CHARS,
    SNAPSHOT_EXTENSIONS,
)
from .docwatch_utils import redact_url
from .filters import FilterFunction, FilterRegistry, apply_filters
from .page_fetch import FetchedPage

logger = logging.getLogger(__name__)

FetchFunc = Callable[[str], Awaitable[FetchedPage]]

BAD_URL_PREFIX = "BAD URL: "
UNHASHABLE_PREFIX = "Unable to hash page: "

__all__ = [
    "FetchFunc",
    "FingerprintRecord",
    "FingerprintCache",
    "cache_key",
    "digest_content",
    "format_fingerprint",
    "fingerprint_content",
    "snapshot_extension",
]


@dataclass(frozen=True)
class FingerprintRecord:
    """Outcome of fingerprinting one (url, filter-set) pair."""

    url: str
    fingerprint: str
    filters_applied: Tuple[str, ...] = ()
    content: str = field(default="", repr=False)
    success: bool = True
    error: Optional[str] = None
    content_type: str = ""
    snapshot_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "url": self.url,
            "fingerprint": self.fingerprint,
            "filters_applied": list(self.filters_applied),
            "success": self.success,
            "content_type": self.content_type,
        }
        if self.error:
            payload["error"] = self.error
        if self.snapshot_path:
            payload["snapshot_path"] = self.snapshot_path
        return payload


def cache_key(url: str, filter_names: Sequence[str]) -> str:
    """Stable key for a url checked under an ordered list of filters."""

    raw = f"{url}\n{FILTER_JOINER.join(filter_names)}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:CACHE_KEY_CHARS]


def digest_content(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:FINGERPRINT_DIGEST_CHARS]


def format_fingerprint(digest: str, applied: Sequence[str]) -> str:
    if not applied:
        return digest
    return f"{digest}{FILTER_SEPARATOR}{FILTER_JOINER.join(applied)}"


def fingerprint_content(
    content: str,
    filter_names: Sequence[str],
    registry: Mapping[str, FilterFunction],
) -> Tuple[str, str, List[str]]:
    """Filter ``content`` and return ``(fingerprint, filtered, applied)``."""

    filtered, applied = apply_filters(content, filter_names, registry)
    return format_fingerprint(digest_content(filtered), applied), filtered, applied


def snapshot_extension(content_type: str) -> str:
    ct = (content_type or "").split(";")[0].strip().lower()
    if ct in SNAPSHOT_EXTENSIONS:
        return SNAPSHOT_EXTENSIONS[ct]
    guessed = mimetypes.guess_extension(ct) if ct else None
    return guessed or DEFAULT_SNAPSHOT_EXTENSION


class FingerprintCache:
    """Session-scoped fingerprint cache with in-flight fetch deduplication."""

    def __init__(
        self,
        fetch: FetchFunc,
        registry: Optional[Mapping[str, FilterFunction]] = None,
        snapshot_dir: Optional[Path] = None,
    ) -> None:
        self._fetch = fetch
        self.registry: Mapping[str, FilterFunction] = registry if registry is not None else FilterRegistry()
        self.snapshot_dir = Path(snapshot_dir) if snapshot_dir is not None else None
        self._entries: Dict[str, "asyncio.Task[FingerprintRecord]"] = {}
        # Guards the check-then-insert of a new key
        self._lock = asyncio.Lock()
        self.fetch_count = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    async def get_fingerprint(self, url: str, filter_names: Sequence[str] = ()) -> FingerprintRecord:
        names = list(filter_names)
        key = cache_key(url, names)
        async with self._lock:
            task = self._entries.get(key)
            if task is None:
                task = asyncio.ensure_future(self._resolve(url, names))
                self._entries[key] = task
        # Shielded so a cancelled waiter does not cancel the shared fetch.
        return await asyncio.shield(task)

    def resolved_records(self) -> List[FingerprintRecord]:
        return [task.result() for task in self._entries.values() if task.done() and not task.cancelled()]

    async def _resolve(self, url: str, names: List[str]) -> FingerprintRecord:
        self.fetch_count += 1
        try:
            page = await self._fetch(url)
        except Exception as exc:
            logger.warning("Could not fetch %s: %s", redact_url(url), exc)
            return FingerprintRecord(url=url, fingerprint=f"{BAD_URL_PREFIX}{exc}", success=False, error=str(exc))

        try:
            fingerprint, filtered, applied = fingerprint_content(page.text, names, self.registry)
        except FilterError as exc:
            logger.warning("Filtering failed for %s: %s", redact_url(url), exc)
            return FingerprintRecord(
                url=url,
                fingerprint=f"{UNHASHABLE_PREFIX}{exc}",
                filters_applied=tuple(exc.applied),
                content=exc.content,
                success=False,
                error=str(exc),
                content_type=page.content_type,
            )
        except (TypeError, ValueError, AttributeError) as exc:
            logger.warning("Hashing failed for %s: %s", redact_url(url), exc)
            return FingerprintRecord(
                url=url,
                fingerprint=f"{UNHASHABLE_PREFIX}{exc}",
                content=page.text,
                success=False,
                error=str(exc),
                content_type=page.content_type,
            )

        snapshot = self._write_snapshot(fingerprint, filtered, page.content_type)
        logger.debug("Fingerprinted %s as %s via %s", redact_url(url), fingerprint, page.method)
        return FingerprintRecord(
            url=url,
            fingerprint=fingerprint,
            filters_applied=tuple(applied),
            content=filtered,
            success=True,
            content_type=page.content_type,
            snapshot_path=str(snapshot) if snapshot else None,
        )

    def _write_snapshot(self, fingerprint: str, content: str, content_type: str) -> Optional[Path]:
        if self.snapshot_dir is None:
            return None
        target = self.snapshot_dir / f"{fingerprint}{snapshot_extension(content_type)}"
        try:
            self.snapshot_dir.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not write snapshot %s: %s", target, exc)
            return None
        return target
