"""Content filters that make page fingerprints stable between fetches.

Each filter removes something that changes on every page load without the
documentation itself changing (nonces, cache-busting asset URLs, build
versions, timestamps). Filters are pure ``str -> str`` functions and must be
idempotent: ``f(f(s)) == f(s)``. A filter that does not find what it is
looking for returns its input unchanged.
"""

from __future__ import annotations

import html
import logging
import re
from typing import Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from ..errors import FilterError

logger = logging.getLogger(__name__)

FilterFunction = Callable[[str], str]

__all__ = [
    "FilterFunction",
    "FilterRegistry",
    "BASE_FILTERS",
    "apply_filters",
    "default_registry",
    "body_filter",
    "nonce_filter",
    "readmeio_filter",
    "cloudflare_filter",
    "zendesk_filter",
    "datadog_filter",
]


def _until_stable(step: Callable[[str], str], content: str) -> str:
    # Every step only deletes text, and a deletion can splice a new match
    # together; repeat until a step changes nothing.
    current = content
    while True:
        stepped = step(current)
        if stepped == current:
            return current
        current = stepped


def _strip_to_fixed_point(pattern: re.Pattern[str], content: str) -> str:
    return _until_stable(lambda text: pattern.sub("", text), content)


_BODY_RE = re.compile(r"<body\b.*?</body[^>]*>", re.IGNORECASE | re.DOTALL)


def body_filter(content: str) -> str:
    """Keep only the first ``<body>...</body>`` region."""

    match = _BODY_RE.search(content)
    if match is None:
        return content
    return match.group(0)


_NONCE_MARKER = r"(?:nonce|csrfmiddlewaretoken|csrf[-_]?token)"
_NONCE_ELEMENT_RE = re.compile(
    rf"<(script|style)\b[^>]*\b{_NONCE_MARKER}\b[^>]*>.*?</\1\s*>",
    re.IGNORECASE | re.DOTALL,
)
_NONCE_TAG_RE = re.compile(rf"<[^<>]*\b{_NONCE_MARKER}\b[^<>]*>", re.IGNORECASE)


def _nonce_step(content: str) -> str:
    return _NONCE_TAG_RE.sub("", _NONCE_ELEMENT_RE.sub("", content))


def nonce_filter(content: str) -> str:
    """Drop tags carrying per-load nonce or CSRF token attributes.

    Inline ``<script>``/``<style>`` elements go with their contents; any other
    tag (hidden inputs, meta tokens) is removed on its own.
    """

    return _until_stable(_nonce_step, content)


_README_PROPS_RE = re.compile(
    r"<script[^>]*?data-initial-props=\"(.*?)\"[^>]*></script",
    re.IGNORECASE | re.DOTALL,
)
_README_UPDATED_RE = re.compile(r"\"(?:slug)?updatedAt\"[^,\n]*,", re.IGNORECASE)


def readmeio_filter(content: str) -> str:
    """Reduce a readme.io page to its embedded API definition JSON.

    readme.io ships the OAS document entity-encoded in ``data-initial-props``;
    its ``updatedAt``/``slugUpdatedAt`` fields move without content changes.
    """

    match = _README_PROPS_RE.search(content)
    if match is None:
        return content
    decoded = html.unescape(match.group(1))
    return _README_UPDATED_RE.sub("", decoded)


_CLOUDFLARE_RE = re.compile(
    r"<script\b[^>]*>(?:(?!</script).)*?challenge-platform.*?</script\s*>",
    re.IGNORECASE | re.DOTALL,
)


def cloudflare_filter(content: str) -> str:
    """Remove Cloudflare's injected challenge-platform script."""

    return _strip_to_fixed_point(_CLOUDFLARE_RE, content)


_ZENDESK_VERSION_RE = re.compile(r"<!-- (v\d+) -->", re.IGNORECASE)
_ZENDESK_ASSET_RE = re.compile(
    r"<(?:script|link)\b[^>]*?zdassets\.com/hc/\w*assets/[^>]*>(?:\s*</script\s*>)?",
    re.IGNORECASE,
)


def _zendesk_step(content: str) -> str:
    match = _ZENDESK_VERSION_RE.search(content)
    if match is None:
        return content
    version = re.compile(re.escape(match.group(1)), re.IGNORECASE)
    return _ZENDESK_ASSET_RE.sub("", version.sub("", content))


def zendesk_filter(content: str) -> str:
    """Strip Zendesk Help Center build versions and cache-busting asset tags.

    Zendesk prints a version in a leading comment and reuses it in asset
    URLs; the asset CDN paths also carry random-looking identifiers. Pages
    without a version comment pass through.
    """

    return _until_stable(_zendesk_step, content)


# The version value stays on one line; only the gap after DD_RUM may span lines.
_DATADOG_VERSION_RE = re.compile(r"DD_RUM[\s\S]*?version: '([^'\n]*)'", re.IGNORECASE)


def _datadog_step(content: str) -> str:
    match = _DATADOG_VERSION_RE.search(content)
    if match is None or not match.group(1):
        return content
    version = re.compile(re.escape(match.group(1)), re.IGNORECASE)
    return version.sub("", content)


def datadog_filter(content: str) -> str:
    """Strip the application version passed to the Datadog RUM SDK."""

    return _until_stable(_datadog_step, content)


BASE_FILTERS: Dict[str, FilterFunction] = {
    "body": body_filter,
    "nonce": nonce_filter,
    "readmeio": readmeio_filter,
    "cloudflare": cloudflare_filter,
    "zendesk": zendesk_filter,
    "datadog": datadog_filter,
}


class FilterRegistry(Mapping[str, FilterFunction]):
    """Named filter functions available to a checking session.

    Registries are owned by a session rather than living at module scope, so
    tests and embedders can run with different filter sets side by side.
    """

    def __init__(self, filters: Optional[Mapping[str, FilterFunction]] = None) -> None:
        self._filters: Dict[str, FilterFunction] = dict(BASE_FILTERS if filters is None else filters)

    def __getitem__(self, name: str) -> FilterFunction:
        return self._filters[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._filters)

    def __len__(self) -> int:
        return len(self._filters)

    def register(self, name: str, func: FilterFunction) -> None:
        if not name or not callable(func):
            raise ValueError(f"Invalid filter registration: {name!r}")
        self._filters[name] = func

    def override(self, filters: Mapping[str, FilterFunction]) -> "FilterRegistry":
        """Return a new registry with ``filters`` replacing same-named entries."""

        merged = dict(self._filters)
        merged.update(filters)
        return FilterRegistry(merged)

    def names(self) -> List[str]:
        return list(self._filters)


def default_registry(overrides: Optional[Mapping[str, FilterFunction]] = None) -> FilterRegistry:
    registry = FilterRegistry()
    if overrides:
        registry = registry.override(overrides)
    return registry


def apply_filters(
    content: str,
    names: Iterable[str],
    registry: Mapping[str, FilterFunction],
) -> Tuple[str, List[str]]:
    """Run ``names`` over ``content`` in order.

    Returns the filtered content and the names of the filters that changed
    it. Names missing from ``registry`` are skipped. A filter that raises is
    reported as :class:`FilterError` with the content and applied list as they
    stood before it ran.
    """

    applied: List[str] = []
    current = content
    for name in names:
        func = registry.get(name)
        if func is None:
            logger.debug("Skipping unknown filter %r", name)
            continue
        try:
            filtered = func(current)
        except Exception as exc:
            raise FilterError(
                f"filter {name!r} failed: {exc}",
                filter_name=name,
                content=current,
                applied=applied,
            ) from exc
        if filtered != current:
            applied.append(name)
            current = filtered
    return current, applied

