"""Batch driver: expand globs, reconcile each file, write updated files once."""

from __future__ import annotations

import asyncio
import glob
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..core.keys import K_COUNTS, K_ERROR, K_ERRORS, K_PATH, K_RECORDS, K_SOURCES
from ..errors import AnnotationParseError
from .annotations import decode_source, extract_occurrences
from .docwatch_config import ENV_CACHE_DIR, ENV_UPDATE_FILES
from .docwatch_utils import env_bool, env_str
from .filters import FilterFunction, FilterRegistry, default_registry
from .fingerprint import FetchFunc, FingerprintCache, FingerprintRecord
from .page_fetch import FetchConfig, PageFetcher
from .reconcile import ReconciliationRecord, Reconciler

logger = logging.getLogger(__name__)

__all__ = [
    "CheckConfig",
    "CheckReport",
    "CheckSession",
    "expand_globs",
    "check_globs",
    "run_check",
]


@dataclass
class CheckConfig:
    """Knobs for one checking run."""

    update_files: bool = True
    snapshot_dir: Optional[Path] = None
    fetch: FetchConfig = field(default_factory=FetchConfig)

    @classmethod
    def from_env(cls) -> "CheckConfig":
        cache_dir = env_str(ENV_CACHE_DIR)
        return cls(
            update_files=env_bool(ENV_UPDATE_FILES, "1"),
            snapshot_dir=Path(cache_dir) if cache_dir else None,
            fetch=FetchConfig.from_env(),
        )


@dataclass
class CheckReport:
    records: List[ReconciliationRecord] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)
    files_scanned: int = 0
    files_updated: List[str] = field(default_factory=list)
    fetches: int = 0
    sources: List[FingerprintRecord] = field(default_factory=list)

    @property
    def mismatches(self) -> List[ReconciliationRecord]:
        return [record for record in self.records if not record.matches]

    @property
    def ok(self) -> bool:
        return not self.errors and not self.mismatches

    def counts(self) -> Dict[str, int]:
        return {
            "files": self.files_scanned,
            "annotations": len(self.records),
            "matched": sum(1 for record in self.records if record.matches),
            "changed": sum(1 for record in self.records if record.success and not record.matches),
            "failed": sum(1 for record in self.records if not record.success),
            "file_errors": len(self.errors),
            "files_updated": len(self.files_updated),
            "fetches": self.fetches,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            K_COUNTS: self.counts(),
            K_RECORDS: [record.to_dict() for record in self.records],
            K_ERRORS: list(self.errors),
            "files_updated": list(self.files_updated),
            K_SOURCES: [source.to_dict() for source in self.sources],
        }


def expand_globs(patterns: Iterable[str]) -> List[Path]:
    """Return the files matched by ``patterns`` (``**`` recursive), sorted and unique."""

    seen: Dict[str, Path] = {}
    for pattern in patterns:
        matches = glob.glob(pattern, recursive=True)
        if not matches:
            logger.debug("Pattern %r matched nothing", pattern)
        for match in matches:
            path = Path(match)
            if not path.is_file():
                continue
            seen.setdefault(str(path.resolve()), path)
    return [seen[key] for key in sorted(seen)]


class CheckSession:
    """Owns the filter registry, fetcher, and fingerprint cache for one run.

    ``fetch`` replaces the network fetcher (tests, offline mirrors); the
    session still closes its own :class:`PageFetcher` on exit.
    """

    def __init__(
        self,
        config: Optional[CheckConfig] = None,
        *,
        filters: Optional[Mapping[str, FilterFunction]] = None,
        fetch: Optional[FetchFunc] = None,
    ) -> None:
        self.config = config or CheckConfig()
        self.registry: FilterRegistry = default_registry(filters)
        self.fetcher = PageFetcher(self.config.fetch)
        self.cache = FingerprintCache(
            fetch or self.fetcher.fetch,
            self.registry,
            snapshot_dir=self.config.snapshot_dir,
        )
        self.reconciler = Reconciler(self.cache, update_files=self.config.update_files)

    async def __aenter__(self) -> "CheckSession":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.fetcher.aclose()

    async def check_file(self, path: Path) -> Tuple[List[ReconciliationRecord], bool]:
        """Reconcile one file. Returns its records and whether it was rewritten.

        Raises :class:`AnnotationParseError` for unreadable or malformed
        content and :class:`OSError` for I/O failures.
        """

        path = Path(path)
        original = decode_source(path.read_bytes(), str(path))
        occurrences = extract_occurrences(original, str(path))
        if not occurrences:
            return [], False
        records, updated = await self.reconciler.reconcile(occurrences, original)
        if not self.config.update_files or updated == original:
            return records, False
        path.write_bytes(updated.encode("utf-8"))
        logger.info("Updated %d annotation(s) in %s", sum(1 for r in records if r.success and not r.matches), path)
        return records, True

    async def _check_one(self, path: Path, report: CheckReport) -> None:
        try:
            records, updated = await self.check_file(path)
        except AnnotationParseError as exc:
            logger.error("Skipping %s: %s", path, exc)
            report.errors.append({K_PATH: str(path), K_ERROR: str(exc)})
            return
        except OSError as exc:
            logger.error("Could not read or write %s: %s", path, exc)
            report.errors.append({K_PATH: str(path), K_ERROR: str(exc)})
            return
        report.records.extend(records)
        if updated:
            report.files_updated.append(str(path))

    async def check_paths(self, paths: Sequence[Path]) -> CheckReport:
        report = CheckReport(files_scanned=len(paths))
        await asyncio.gather(*(self._check_one(Path(path), report) for path in paths))
        report.records.sort(key=lambda record: (record.path, record.line or 0))
        report.files_updated.sort()
        report.errors.sort(key=lambda item: item[K_PATH])
        report.fetches = self.cache.fetch_count
        report.sources = sorted(
            self.cache.resolved_records(),
            key=lambda source: (source.url, source.filters_applied, source.fingerprint),
        )
        return report

    async def check_globs(self, patterns: Iterable[str]) -> CheckReport:
        return await self.check_paths(expand_globs(patterns))


async def check_globs(
    patterns: Iterable[str],
    config: Optional[CheckConfig] = None,
    *,
    filters: Optional[Mapping[str, FilterFunction]] = None,
    fetch: Optional[FetchFunc] = None,
) -> CheckReport:
    async with CheckSession(config, filters=filters, fetch=fetch) as session:
        return await session.check_globs(patterns)


def run_check(
    patterns: Iterable[str],
    config: Optional[CheckConfig] = None,
    *,
    filters: Optional[Mapping[str, FilterFunction]] = None,
    fetch: Optional[FetchFunc] = None,
) -> CheckReport:
    """Synchronous entry point around :func:`check_globs`."""

    return asyncio.run(check_globs(patterns, config, filters=filters, fetch=fetch))
