from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

import aiohttp
from charset_normalizer import from_bytes
from curl_cffi import CurlError
from curl_cffi.requests import AsyncSession as CurlAsyncSession

from ..errors import FetchError
from .docwatch_config import (
    DEFAULT_ACCEPT,
    DEFAULT_ACCEPT_LANGUAGE,
    DEFAULT_CONCURRENCY,
    DEFAULT_TIMEOUT,
    DEFAULT_USER_AGENT,
    ENV_ACCEPT_LANGUAGE,
    ENV_CONCURRENCY,
    ENV_DISABLE_FALLBACK,
    ENV_TIMEOUT,
    ENV_USER_AGENT,
    FALLBACK_IMPERSONATE,
    TEXT_CONTENT_MARKERS,
)
from .docwatch_utils import env_bool, env_float, env_int, env_str, redact_url

logger = logging.getLogger(__name__)

__all__ = [
    "FetchConfig",
    "FetchedPage",
    "PageFetcher",
    "decode_bytes_auto",
    "is_text_content_type",
]


@dataclass
class FetchConfig:
    """Configuration parameters for fetching annotated documentation pages."""

    timeout: float = DEFAULT_TIMEOUT
    concurrency: int = DEFAULT_CONCURRENCY
    user_agent: str = DEFAULT_USER_AGENT
    accept: str = DEFAULT_ACCEPT
    accept_language: str = DEFAULT_ACCEPT_LANGUAGE
    enable_fallback: bool = True
    impersonate: str = FALLBACK_IMPERSONATE

    @classmethod
    def from_env(cls) -> "FetchConfig":
        timeout = env_float(ENV_TIMEOUT, DEFAULT_TIMEOUT)
        concurrency = env_int(ENV_CONCURRENCY, DEFAULT_CONCURRENCY)
        return cls(
            timeout=timeout if timeout > 0 else DEFAULT_TIMEOUT,
            concurrency=concurrency if concurrency > 0 else DEFAULT_CONCURRENCY,
            user_agent=env_str(ENV_USER_AGENT, DEFAULT_USER_AGENT) or DEFAULT_USER_AGENT,
            accept_language=env_str(ENV_ACCEPT_LANGUAGE, DEFAULT_ACCEPT_LANGUAGE) or DEFAULT_ACCEPT_LANGUAGE,
            enable_fallback=not env_bool(ENV_DISABLE_FALLBACK),
        )

    def headers(self) -> Dict[str, str]:
        return {
            "User-Agent": self.user_agent,
            "Accept": self.accept,
            "Accept-Language": self.accept_language,
        }


@dataclass
class FetchedPage:
    """Text payload of a successful fetch."""

    url: str
    status: int
    content_type: str
    text: str
    method: str
    fetched_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


def decode_bytes_auto(body: bytes, headers: Optional[Mapping[str, str]] = None) -> str:
    """Decode HTTP bytes using charset header hints with charset-normalizer fallback."""

    enc = None
    if headers:
        ct = headers.get("content-type", "")
        match = re.search(r"charset=([^\s;]+)", ct, re.I)
        if match:
            enc = match.group(1).strip(' "\'').lower()
    if enc:
        try:
            return body.decode(enc, errors="replace")
        except LookupError:
            pass
    if not body:
        return ""
    result = from_bytes(body).best()
    if result is None:
        return body.decode("utf-8", errors="replace")
    return str(result)


def is_text_content_type(content_type: str) -> bool:
    ct = (content_type or "").split(";")[0].strip().lower()
    if not ct:
        return False
    if ct.startswith("text/"):
        return True
    return any(marker in ct for marker in TEXT_CONTENT_MARKERS)


def _lower_headers(headers: Any) -> Dict[str, str]:
    return {str(key).lower(): str(value) for key, value in headers.items()}


def _looks_binary(body: bytes) -> bool:
    return b"\x00" in body[:4096]


def _build_page(
    url: str,
    status: int,
    headers: Mapping[str, str],
    body: bytes,
    method: str,
) -> FetchedPage:
    if not 200 <= status < 300:
        raise FetchError(f"Request failed with status code {status}", url=url, status=status)
    raw_type = headers.get("content-type", "")
    content_type = raw_type.split(";")[0].strip().lower()
    if content_type:
        if not is_text_content_type(content_type):
            raise FetchError(f"Non-text response ({content_type})", url=url, status=status)
    elif _looks_binary(body):
        raise FetchError("Non-text response (binary body without content type)", url=url, status=status)
    else:
        content_type = "text/plain"
    return FetchedPage(
        url=url,
        status=status,
        content_type=content_type,
        text=decode_bytes_auto(body, headers),
        method=method,
    )


class PageFetcher:
    """Fetch page text with aiohttp, retrying bot-blocked pages through curl_cffi.

    The curl_cffi session impersonates a real browser TLS/HTTP2 fingerprint,
    which gets through most JS-challenge gateways that reject aiohttp.
    Sessions are created lazily on the running loop; call :meth:`aclose` (or
    use ``async with``) when done.
    """

    def __init__(self, config: Optional[FetchConfig] = None) -> None:
        self.config = config or FetchConfig()
        self._session: Optional[aiohttp.ClientSession] = None
        self._fallback_session: Optional[CurlAsyncSession] = None
        self._semaphore = asyncio.Semaphore(max(1, self.config.concurrency))

    async def __aenter__(self) -> "PageFetcher":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
        if self._fallback_session is not None:
            await self._fallback_session.close()
            self._fallback_session = None

    async def fetch(self, url: str) -> FetchedPage:
        """Return the text of ``url`` or raise :class:`FetchError`."""

        async with self._semaphore:
            try:
                return await self._fetch_primary(url)
            except FetchError as primary_exc:
                if not self.config.enable_fallback:
                    raise FetchError(
                        f"Failed to fetch url: {primary_exc}",
                        url=url,
                        status=primary_exc.status,
                    ) from primary_exc
                logger.info(
                    "Primary fetch failed for %s (%s); retrying with curl_cffi",
                    redact_url(url),
                    primary_exc,
                )
                try:
                    page = await self._fetch_fallback(url)
                except FetchError as fallback_exc:
                    logger.warning("Fallback fetch failed for %s: %s", redact_url(url), fallback_exc)
                    raise FetchError(
                        f"Failed to fetch url: {primary_exc}; fallback: {fallback_exc}",
                        url=url,
                        status=fallback_exc.status or primary_exc.status,
                    ) from fallback_exc
                logger.info("Fetched %s via curl_cffi fallback", redact_url(url))
                return page

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers=self.config.headers(),
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            )
        return self._session

    def _ensure_fallback_session(self) -> CurlAsyncSession:
        if self._fallback_session is None:
            self._fallback_session = CurlAsyncSession(
                headers=self.config.headers(),
                impersonate=self.config.impersonate,
                timeout=self.config.timeout,
            )
        return self._fallback_session

    async def _fetch_primary(self, url: str) -> FetchedPage:
        session = await self._ensure_session()
        try:
            async with session.get(url, allow_redirects=True) as resp:
                status = resp.status
                headers = _lower_headers(resp.headers)
                body = await resp.read()
        except asyncio.TimeoutError as exc:
            raise FetchError(f"Timed out after {self.config.timeout}s", url=url) from exc
        except (aiohttp.ClientError, ValueError) as exc:
            raise FetchError(f"{type(exc).__name__}: {exc}", url=url) from exc
        return _build_page(url, status, headers, body, method="aiohttp")

    async def _fetch_fallback(self, url: str) -> FetchedPage:
        session = self._ensure_fallback_session()
        try:
            resp = await session.get(url, allow_redirects=True)
        except asyncio.TimeoutError as exc:
            raise FetchError(f"Timed out after {self.config.timeout}s", url=url) from exc
        except CurlError as exc:
            raise FetchError(f"{type(exc).__name__}: {exc}", url=url) from exc
        return _build_page(url, resp.status_code, _lower_headers(resp.headers), resp.content, method="curl_cffi")
