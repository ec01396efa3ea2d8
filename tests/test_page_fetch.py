import asyncio

import pytest
from aiohttp import test_utils, web

from docwatch.errors import FetchError
from docwatch.workflows import page_fetch
from docwatch.workflows.page_fetch import (
    FetchConfig,
    FetchedPage,
    PageFetcher,
    decode_bytes_auto,
    is_text_content_type,
)

URL = "https://docs.example.com/api"


def _app() -> web.Application:
    async def html(request):
        return web.Response(text="<html><body>Hi</body></html>", content_type="text/html")

    async def data(request):
        return web.json_response({"title": "API"})

    async def missing(request):
        return web.Response(status=404, text="gone")

    async def image(request):
        return web.Response(body=b"\x89PNG\r\n\x1a\n\x00\x00", content_type="image/png")

    app = web.Application()
    app.router.add_get("/page", html)
    app.router.add_get("/data", data)
    app.router.add_get("/missing", missing)
    app.router.add_get("/image", image)
    return app


def _serve(scenario):
    async def runner():
        server = test_utils.TestServer(_app())
        await server.start_server()
        try:
            async with PageFetcher(FetchConfig(timeout=5, enable_fallback=False)) as fetcher:
                return await scenario(fetcher, server)
        finally:
            await server.close()

    return asyncio.run(runner())


def test_fetches_html_from_local_server():
    async def scenario(fetcher, server):
        return await fetcher.fetch(str(server.make_url("/page")))

    page = _serve(scenario)

    assert page.status == 200
    assert page.content_type == "text/html"
    assert page.text == "<html><body>Hi</body></html>"
    assert page.method == "aiohttp"


def test_json_counts_as_text():
    async def scenario(fetcher, server):
        return await fetcher.fetch(str(server.make_url("/data")))

    page = _serve(scenario)

    assert page.content_type == "application/json"
    assert '"title"' in page.text


def test_error_status_raises_without_fallback():
    async def scenario(fetcher, server):
        with pytest.raises(FetchError) as excinfo:
            await fetcher.fetch(str(server.make_url("/missing")))
        return excinfo.value

    err = _serve(scenario)

    assert "Request failed with status code 404" in str(err)
    assert err.status == 404


def test_binary_content_rejected():
    async def scenario(fetcher, server):
        with pytest.raises(FetchError) as excinfo:
            await fetcher.fetch(str(server.make_url("/image")))
        return excinfo.value

    err = _serve(scenario)

    assert "Non-text response (image/png)" in str(err)


def test_fallback_used_when_primary_fails(monkeypatch):
    calls = []

    async def primary(self, url):
        calls.append("primary")
        raise FetchError("Request failed with status code 403", url=url, status=403)

    async def fallback(self, url):
        calls.append("fallback")
        return FetchedPage(url=url, status=200, content_type="text/html", text="ok", method="curl_cffi")

    monkeypatch.setattr(PageFetcher, "_fetch_primary", primary)
    monkeypatch.setattr(PageFetcher, "_fetch_fallback", fallback)

    page = asyncio.run(PageFetcher(FetchConfig()).fetch(URL))

    assert calls == ["primary", "fallback"]
    assert page.method == "curl_cffi"
    assert page.text == "ok"


def test_both_fetchers_failing_raises_combined_error(monkeypatch):
    async def primary(self, url):
        raise FetchError("Request failed with status code 403", url=url, status=403)

    async def fallback(self, url):
        raise FetchError("Request failed with status code 503", url=url, status=503)

    monkeypatch.setattr(PageFetcher, "_fetch_primary", primary)
    monkeypatch.setattr(PageFetcher, "_fetch_fallback", fallback)

    with pytest.raises(FetchError) as excinfo:
        asyncio.run(PageFetcher(FetchConfig()).fetch(URL))

    message = str(excinfo.value)
    assert message.startswith("Failed to fetch url: ")
    assert "403" in message and "503" in message
    assert excinfo.value.status == 503


def test_disabled_fallback_is_not_attempted(monkeypatch):
    async def primary(self, url):
        raise FetchError("boom", url=url)

    async def fallback(self, url):  # pragma: no cover - must not run
        raise AssertionError("fallback should be disabled")

    monkeypatch.setattr(PageFetcher, "_fetch_primary", primary)
    monkeypatch.setattr(PageFetcher, "_fetch_fallback", fallback)

    with pytest.raises(FetchError, match="Failed to fetch url: boom"):
        asyncio.run(PageFetcher(FetchConfig(enable_fallback=False)).fetch(URL))


class _TimingOutSession:
    closed = False

    def get(self, url, **kwargs):
        raise asyncio.TimeoutError()


def test_primary_timeout_becomes_fetch_error():
    fetcher = PageFetcher(FetchConfig(timeout=1.5))
    fetcher._session = _TimingOutSession()

    with pytest.raises(FetchError, match=r"Timed out after 1\.5s"):
        asyncio.run(fetcher._fetch_primary(URL))


def test_build_page_rules():
    plain = page_fetch._build_page(URL, 200, {}, b"plain words", "aiohttp")
    assert plain.content_type == "text/plain"
    assert plain.text == "plain words"

    with pytest.raises(FetchError, match="status code 301"):
        page_fetch._build_page(URL, 301, {"content-type": "text/html"}, b"", "aiohttp")
    with pytest.raises(FetchError, match="binary body"):
        page_fetch._build_page(URL, 200, {}, b"\x00\x01\x02", "aiohttp")
    with pytest.raises(FetchError, match="application/pdf"):
        page_fetch._build_page(URL, 200, {"content-type": "application/pdf"}, b"%PDF", "aiohttp")


@pytest.mark.parametrize(
    "content_type, expected",
    [
        ("text/html; charset=utf-8", True),
        ("text/markdown", True),
        ("application/json", True),
        ("application/xhtml+xml", True),
        ("application/javascript", True),
        ("image/png", False),
        ("application/octet-stream", False),
        ("", False),
    ],
)
def test_is_text_content_type(content_type, expected):
    assert is_text_content_type(content_type) is expected


def test_decode_bytes_auto_honours_charset_header():
    body = "café".encode("latin-1")
    assert decode_bytes_auto(body, {"content-type": "text/html; charset=ISO-8859-1"}) == "café"
    assert decode_bytes_auto(b"", {}) == ""


def test_fetch_config_from_env(monkeypatch):
    monkeypatch.setenv("DOCWATCH_TIMEOUT", "5")
    monkeypatch.setenv("DOCWATCH_CONCURRENCY", "0")
    monkeypatch.setenv("DOCWATCH_DISABLE_FALLBACK", "1")
    monkeypatch.setenv("DOCWATCH_USER_AGENT", "docwatch-test/1.0")
    monkeypatch.delenv("DOCWATCH_ACCEPT_LANGUAGE", raising=False)

    config = FetchConfig.from_env()

    assert config.timeout == 5.0
    assert config.concurrency == 16
    assert config.enable_fallback is False
    assert config.headers()["User-Agent"] == "docwatch-test/1.0"
    assert config.headers()["Accept-Language"] == "en-US,en;q=0.9"


def test_fetch_config_ignores_invalid_timeout(monkeypatch):
    monkeypatch.setenv("DOCWATCH_TIMEOUT", "soon")
    monkeypatch.delenv("DOCWATCH_DISABLE_FALLBACK", raising=False)

    config = FetchConfig.from_env()

    assert config.timeout == 20.0
    assert config.enable_fallback is True
