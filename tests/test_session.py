"""Tests for the page session lifecycle."""

from __future__ import annotations

import asyncio
import pathlib
from typing import Callable

import pytest

from cookie_marshal import config, history
from cookie_marshal.dom import query_cache
from cookie_marshal.learning import optimizer as q_optimizer
from cookie_marshal.session import AgentSession
from cookie_marshal.storage import JsonFileStorage, MemoryStorage
from tests.conftest import FakeDocument, FakeElement, bottom_bar, button


def _reject_bar(body: FakeElement) -> FakeElement:
    bar = bottom_bar("We use cookies to improve your experience")
    bar.append(button("Accept All"))
    bar.append(button("Reject All", remove=bar))
    return body.append(bar)


async def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    for _ in range(int(timeout / 0.01)):
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()


class TestSessionLifecycle:
    @pytest.mark.asyncio
    async def test_start_rejects_existing_banner(
        self,
        settings: config.AgentSettings,
        body: FakeElement,
        document: FakeDocument,
    ) -> None:
        bar = _reject_bar(body)
        session = AgentSession(document, settings=settings, enable_learning=False)
        results = await session.start()

        assert len(results) == 1
        assert results[0].success
        assert not bar.connected
        assert document.callback is not None
        summary = session.summary()
        assert summary["bannersFound"] == 1
        assert summary["bannersSucceeded"] == 1
        await session.close()

    @pytest.mark.asyncio
    async def test_mutation_triggers_rescan(
        self,
        settings: config.AgentSettings,
        body: FakeElement,
        document: FakeDocument,
    ) -> None:
        session = AgentSession(document, settings=settings, enable_learning=False)
        assert await session.start() == []

        bar = _reject_bar(body)
        await document.mutate()
        assert await _wait_for(lambda: bool(session.results))
        assert session.results[0].success
        assert not bar.connected
        await session.close()

    @pytest.mark.asyncio
    async def test_mutation_burst_is_one_scan(
        self,
        settings: config.AgentSettings,
        body: FakeElement,
        document: FakeDocument,
    ) -> None:
        session = AgentSession(document, settings=settings.model_copy(update={"mutation_scan_delay": 0.05}), enable_learning=False)
        await session.start()
        for _ in range(5):
            await document.mutate()
        assert await _wait_for(lambda: session.stats.scans == 2)
        await asyncio.sleep(0.1)
        assert session.stats.scans == 2
        await session.close()

    @pytest.mark.asyncio
    async def test_scans_are_throttled(
        self,
        settings: config.AgentSettings,
        document: FakeDocument,
    ) -> None:
        session = AgentSession(document, settings=settings.model_copy(update={"min_scan_interval": 60.0}), enable_learning=False)
        await session.start()
        assert await session.scan() == []
        assert session.stats.scans == 1
        await session.scan(force=True)
        assert session.stats.scans == 2
        await session.close()

    @pytest.mark.asyncio
    async def test_failed_banner_is_not_retried(
        self,
        settings: config.AgentSettings,
        body: FakeElement,
        document: FakeDocument,
    ) -> None:
        bar = body.append(bottom_bar("We use cookies to improve your experience"))
        accept = bar.append(button("Accept All"))
        session = AgentSession(document, settings=settings, enable_learning=False)

        first = await session.start()
        assert len(first) == 1 and not first[0].success
        assert await session.scan(force=True) == []
        assert session.summary()["bannersProcessed"] == 1
        assert accept.clicks == 0
        await session.close()

    @pytest.mark.asyncio
    async def test_close_unsubscribes_and_persists(
        self,
        settings: config.AgentSettings,
        body: FakeElement,
        document: FakeDocument,
    ) -> None:
        _reject_bar(body)
        backend = MemoryStorage()
        session = AgentSession(document, settings=settings, storage=backend)
        await session.start()
        await session.close()

        assert document.unsubscribed
        assert session.processed == set()
        keys = backend.keys()
        assert history.KEY_PREFIX + "example.com" in keys
        assert q_optimizer.STORAGE_KEY in keys

    @pytest.mark.asyncio
    async def test_history_survives_sessions(
        self,
        settings: config.AgentSettings,
        body: FakeElement,
        document: FakeDocument,
    ) -> None:
        backend = MemoryStorage()
        _reject_bar(body)
        first = AgentSession(document, settings=settings, storage=backend, enable_learning=False)
        await first.start()
        await first.close()

        second = AgentSession(FakeDocument(FakeElement("body")), settings=settings, storage=backend, enable_learning=False)
        await second.start()
        assert "reject all" in second.history.learned_phrases("example.com")
        await second.close()

    @pytest.mark.asyncio
    async def test_declared_language(self, settings: config.AgentSettings, body: FakeElement) -> None:
        session = AgentSession(FakeDocument(body, lang="de-DE"), settings=settings, enable_learning=False)
        await session.start()
        assert session.language == "de"
        await session.close()

    @pytest.mark.asyncio
    async def test_scan_cache_is_used(
        self,
        settings: config.AgentSettings,
        body: FakeElement,
        document: FakeDocument,
    ) -> None:
        _reject_bar(body)
        scan_cache = query_cache.ScanCache(ttl=30.0)
        session = AgentSession(document, settings=settings, scan_cache=scan_cache, enable_learning=False)
        results = await session.start()
        assert results and results[0].success
        await session.scan(force=True)
        assert scan_cache.hit_rate > 0.0
        await session.close()

    @pytest.mark.asyncio
    async def test_banner_right_after_scan_is_postponed_not_dropped(
        self,
        settings: config.AgentSettings,
        body: FakeElement,
        document: FakeDocument,
    ) -> None:
        paced = settings.model_copy(update={"mutation_scan_delay": 0.3, "min_scan_interval": 0.5})
        session = AgentSession(document, settings=paced, enable_learning=False)
        assert await session.start() == []

        bar = _reject_bar(body)
        await document.mutate()
        assert await _wait_for(lambda: bool(session.results), timeout=2.0)
        assert session.results[0].success
        assert not bar.connected
        assert session.stats.scans == 2
        await session.close()

    @pytest.mark.asyncio
    async def test_undecodable_history_file_does_not_break_start(
        self,
        settings: config.AgentSettings,
        body: FakeElement,
        document: FakeDocument,
        tmp_path: pathlib.Path,
    ) -> None:
        backend = JsonFileStorage(tmp_path)
        backend.path_for(history.KEY_PREFIX + "example.com").write_bytes(b'{"domain": "\xff\xfe"}')
        _reject_bar(body)
        session = AgentSession(document, settings=settings, storage=backend, enable_learning=False)

        results = await session.start()
        assert results and results[0].success
        await session.close()
