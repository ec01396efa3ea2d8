from __future__ import annotations

import os
from datetime import datetime, timezone
from importlib import metadata
from pathlib import Path
from typing import Any, Dict, List, Optional

from .docwatch_config import ENV_CACHE_DIR, ENV_DISABLE_FALLBACK, ENV_TIMEOUT
from .docwatch_utils import collect_environment_warnings, env_bool
from .filters import FilterRegistry


def _package_version(name: str) -> Optional[str]:
    try:
        return metadata.version(name)
    except metadata.PackageNotFoundError:
        return None


def _check_writable(path: Path) -> bool:
    candidate = path
    while not candidate.exists():
        if candidate.parent == candidate:
            return False
        candidate = candidate.parent
    return candidate.is_dir() and os.access(candidate, os.W_OK)


def build_doctor_report(*, cache_dir: Optional[Path] = None) -> Dict[str, Any]:
    report: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "ok": True,
        "checks": [],
        "environment_warnings": collect_environment_warnings(),
    }

    def add_check(
        name: str,
        status: bool,
        *,
        detail: Optional[str] = None,
        remedy: Optional[str] = None,
        level: str = "warn",
    ) -> None:
        entry = {
            "name": name,
            "status": "ok" if status else "missing",
            "level": level,
            "detail": detail,
        }
        if remedy:
            entry["remedy"] = remedy
        report["checks"].append(entry)
        if not status and level == "warn":
            report["ok"] = False

    for dist in ("aiohttp", "curl_cffi", "charset-normalizer"):
        version = _package_version(dist)
        add_check(
            dist,
            version is not None,
            detail=f"version {version}" if version else "not installed",
            remedy=f"pip install {dist}",
        )

    fallback_disabled = env_bool(ENV_DISABLE_FALLBACK)
    add_check(
        "curl_cffi fallback",
        not fallback_disabled,
        detail="disabled by environment" if fallback_disabled else "enabled",
        remedy=f"Unset {ENV_DISABLE_FALLBACK} to retry bot-blocked pages.",
        level="info",
    )

    timeout = os.getenv(ENV_TIMEOUT)
    add_check(ENV_TIMEOUT, True, detail=timeout or "default", level="info")

    raw_dir = cache_dir or (Path(os.environ[ENV_CACHE_DIR]) if os.getenv(ENV_CACHE_DIR) else None)
    if raw_dir is None:
        add_check(ENV_CACHE_DIR, True, detail="snapshots disabled", level="info")
    else:
        add_check(
            ENV_CACHE_DIR,
            _check_writable(raw_dir),
            detail=str(raw_dir),
            remedy=f"Create the directory or point {ENV_CACHE_DIR} at a writable location.",
        )

    add_check("filters", True, detail=", ".join(FilterRegistry().names()), level="info")
    return report


def format_doctor_report(report: Dict[str, Any]) -> str:
    lines: List[str] = []
    lines.append("docwatch doctor")
    lines.append(f"Generated: {report.get('generated_at')}")
    lines.append("")
    for check in report.get("checks", []):
        name = check.get("name", "check")
        status = check.get("status", "unknown")
        level = check.get("level", "info")
        detail = check.get("detail")
        lines.append(f"- [{level}] {name}: {status}")
        if detail:
            lines.append(f"  detail: {detail}")
        remedy = check.get("remedy")
        if remedy and status != "ok":
            lines.append(f"  remedy: {remedy}")
    warnings = report.get("environment_warnings") or []
    if warnings:
        lines.append("")
        lines.append("Environment warnings:")
        for warning in warnings:
            code = warning.get("code", "warning")
            message = warning.get("message", "")
            remedy = warning.get("remedy", "")
            lines.append(f"- {code}: {message}")
            if remedy:
                lines.append(f"  remedy: {remedy}")
    return "\n".join(lines).rstrip() + "\n"
