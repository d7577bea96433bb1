"""Scan caching and batched selector queries.

Optional: the session falls back to plain per-selector queries when
no :class:`ScanCache` is supplied.
"""

from __future__ import annotations

from typing import Awaitable, Callable, TypeVar

from cookie_marshal.dom import element
from cookie_marshal.utils import cache, logger

log = logger.create_logger("Scan-Cache")

T = TypeVar("T")


async def batch_query(
    root: element.PageDocument | element.PageElement,
    selectors: tuple[str, ...] | list[str],
) -> dict[str, list[element.PageElement]]:
    """Run every selector, mapping each to its matches.

    Invalid selectors (or ones the page refuses) map to an empty list.
    """
    results: dict[str, list[element.PageElement]] = {}
    for selector in selectors:
        try:
            results[selector] = await root.query_all(selector)
        except Exception as exc:
            log.debug("Selector failed", {"selector": selector, "error": str(exc)})
            results[selector] = []
    return results


class ScanCache:
    """TTL cache for expensive scan results, keyed by page state."""

    def __init__(self, ttl: float = 30.0) -> None:
        self._cache: cache.TTLCache[object] = cache.TTLCache(ttl)

    async def cached_scan(self, key: str, producer: Callable[[], Awaitable[T]]) -> T:
        cached = self._cache.get(key)
        if cached is not None:
            return cached  # type: ignore[return-value]
        value = await producer()
        self._cache.set(key, value)
        return value

    async def batch_query(
        self,
        root: element.PageDocument | element.PageElement,
        selectors: tuple[str, ...] | list[str],
    ) -> dict[str, list[element.PageElement]]:
        return await batch_query(root, selectors)

    def invalidate(self, key: str) -> None:
        self._cache.pop(key)

    def clear(self) -> None:
        self._cache.clear()

    @property
    def hit_rate(self) -> float:
        total = self._cache.hits + self._cache.misses
        return self._cache.hits / total if total else 0.0
