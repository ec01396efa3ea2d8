"""Shared helper functions used by the docwatch workflow."""

from __future__ import annotations

import os
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse, urlunparse

from .docwatch_config import ENV_DISABLE_FALLBACK, ENV_TIMEOUT


def env_bool(name: str, default: str = "0") -> bool:
    raw = os.getenv(name, default)
    return str(raw).strip().lower() not in {"0", "false", "no", "off", ""}


def env_int(name: str, default: int = 0) -> int:
    try:
        raw = os.getenv(name, "")
        return int(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def env_float(name: str, default: float) -> float:
    try:
        raw = os.getenv(name, "")
        return float(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def redact_url(url: str) -> str:
    """Drop credentials and query strings so URLs are safe to log."""

    try:
        parsed = urlparse(url)
    except ValueError:
        return url
    netloc = parsed.hostname or parsed.netloc
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc, query="", fragment=""))


def collect_environment_warnings() -> List[Dict[str, Any]]:
    """Return advisory warnings about the runtime environment."""

    warnings: List[Dict[str, Any]] = []
    if env_bool(ENV_DISABLE_FALLBACK):
        warnings.append(
            {
                "code": "fallback_disabled",
                "message": "curl_cffi fallback is disabled; bot-protected pages will fail.",
                "remedy": "Unset DOCWATCH_DISABLE_FALLBACK.",
            }
        )
    raw_timeout = os.getenv(ENV_TIMEOUT, "")
    if raw_timeout.strip():
        try:
            if float(raw_timeout) <= 0:
                raise ValueError(raw_timeout)
        except ValueError:
            warnings.append(
                {
                    "code": "timeout_invalid",
                    "message": f"DOCWATCH_TIMEOUT={raw_timeout!r} is not a positive number; default used.",
                    "remedy": "Set DOCWATCH_TIMEOUT to seconds, e.g. 20.",
                }
            )
    return warnings


def sanity_check() -> None:
    assert redact_url("https://u:p@example.com:8443/a?b=1#c") == "https://example.com:8443/a"


sanity_check()

__all__ = [
    "env_bool",
    "env_int",
    "env_float",
    "env_str",
    "redact_url",
    "collect_environment_warnings",
    "sanity_check",
]
