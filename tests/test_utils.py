"""Tests for the logging, timing, cache, debounce and error helpers."""

from __future__ import annotations

import asyncio
from unittest import mock

import pytest

from cookie_marshal.utils import cache, debounce, errors, logger, timing


# ── errors ──────────────────────────────────────────────────────


class TestErrors:
    def test_message_from_exception(self) -> None:
        assert errors.get_error_message(ValueError("bad value")) == "bad value"

    def test_message_from_empty_exception(self) -> None:
        assert errors.get_error_message(RuntimeError()) == "RuntimeError"

    def test_message_from_non_exception(self) -> None:
        assert errors.get_error_message("oops") == "Unknown error"

    @pytest.mark.parametrize(
        ("error", "reason"),
        [
            (errors.ActionTimeoutError("slow"), "action-timeout"),
            (errors.ActionIneffectiveError("still there"), "action-ineffective"),
            (errors.PersistenceError("disk"), "persistence-failure"),
            (errors.StrategyExhaustedError("none left", reason="no-reject-button"), "no-reject-button"),
            (TimeoutError(), "action-timeout"),
            (KeyError("x"), "error"),
        ],
    )
    def test_reason(self, error: Exception, reason: str) -> None:
        assert errors.get_error_reason(error) == reason


# ── timing ──────────────────────────────────────────────────────


class TestWithTimeout:
    @pytest.mark.asyncio
    async def test_returns_result(self) -> None:
        async def quick() -> int:
            return 42

        assert await timing.with_timeout(quick(), 1.0) == 42

    @pytest.mark.asyncio
    async def test_raises_with_context_reason(self) -> None:
        with pytest.raises(errors.ActionTimeoutError) as info:
            await timing.with_timeout(asyncio.sleep(5), 0.01, context="preference-center")
        assert info.value.reason == "preference-center-timeout"

    @pytest.mark.asyncio
    async def test_default_reason(self) -> None:
        with pytest.raises(errors.ActionTimeoutError) as info:
            await timing.with_timeout(asyncio.sleep(5), 0.01)
        assert info.value.reason == "action-timeout"


class TestPollUntil:
    @pytest.mark.asyncio
    async def test_returns_true_when_condition_met(self) -> None:
        calls = 0

        async def check() -> bool:
            nonlocal calls
            calls += 1
            return calls >= 3

        assert await timing.poll_until(check, interval=0.001, timeout=1.0)
        assert calls == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_timeout(self) -> None:
        async def never() -> bool:
            return False

        assert not await timing.poll_until(never, interval=0.01, timeout=0.05)

    @pytest.mark.asyncio
    async def test_failing_check_counts_as_negative(self) -> None:
        async def broken() -> bool:
            raise RuntimeError("detached")

        assert not await timing.poll_until(broken, interval=0.01, timeout=0.05)

    @pytest.mark.asyncio
    async def test_hanging_check_is_bounded(self) -> None:
        async def hangs() -> bool:
            await asyncio.sleep(10)
            return True

        assert not await asyncio.wait_for(timing.poll_until(hangs, interval=0.01, timeout=0.05), timeout=1.0)


# ── cache ───────────────────────────────────────────────────────


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestTTLCache:
    def test_expiry(self) -> None:
        clock = _Clock()
        ttl: cache.TTLCache[str] = cache.TTLCache(10.0, clock=clock)
        ttl.set("example.com", "profile")
        clock.now = 5.0
        assert ttl.get("example.com") == "profile"
        clock.now = 11.0
        assert ttl.get("example.com") is None
        assert len(ttl) == 0

    def test_hit_and_miss_counts(self) -> None:
        ttl: cache.TTLCache[int] = cache.TTLCache(10.0, clock=_Clock())
        ttl.set("a", 1)
        ttl.get("a")
        ttl.get("b")
        assert (ttl.hits, ttl.misses) == (1, 1)

    def test_prune(self) -> None:
        clock = _Clock()
        ttl: cache.TTLCache[int] = cache.TTLCache(10.0, clock=clock)
        ttl.set("old", 1)
        clock.now = 8.0
        ttl.set("new", 2)
        clock.now = 12.0
        assert ttl.prune() == 1
        assert "new" in ttl
        assert "old" not in ttl

    def test_pop_and_clear(self) -> None:
        ttl: cache.TTLCache[int] = cache.TTLCache(10.0, clock=_Clock())
        ttl.set("a", 1)
        assert ttl.pop("a") == 1
        assert ttl.pop("a") is None
        ttl.set("b", 2)
        ttl.get("b")
        ttl.clear()
        assert len(ttl) == 0
        assert ttl.hits == 0


# ── debounce ────────────────────────────────────────────────────


class TestDebouncer:
    @pytest.mark.asyncio
    async def test_collapses_bursts(self) -> None:
        writes: list[int] = []
        debouncer = debounce.Debouncer(0.02)

        for i in range(5):

            async def write(i: int = i) -> None:
                writes.append(i)

            debouncer.schedule("history:example.com", write)

        await asyncio.sleep(0.08)
        assert writes == [4]
        assert debouncer.pending_keys == []

    @pytest.mark.asyncio
    async def test_flush_runs_pending_now(self) -> None:
        writes: list[str] = []
        debouncer = debounce.Debouncer(60.0)

        async def write() -> None:
            writes.append("saved")

        debouncer.schedule("k", write)
        await debouncer.flush()
        assert writes == ["saved"]
        assert debouncer.pending_keys == []

    @pytest.mark.asyncio
    async def test_failed_write_is_logged_not_raised(self) -> None:
        debouncer = debounce.Debouncer(60.0)

        async def write() -> None:
            raise errors.PersistenceError("disk full")

        debouncer.schedule("k", write)
        await debouncer.flush()


# ── logger ──────────────────────────────────────────────────────


class TestLogger:
    def test_session_lines_are_tagged_and_returned(self) -> None:
        log = logger.create_logger("Probe")
        logger.begin_session("www.example.com")
        log.info("Banner found", {"confidence": 0.9, "framework": "onetrust"})
        lines = logger.end_session()
        assert any("[Probe@www.example.com]" in line and 'framework="onetrust"' in line for line in lines)
        assert all("\033[" not in line for line in lines)
        assert logger.get_log_buffer() == []

    def test_debug_is_buffered_below_threshold(self, capsys: pytest.CaptureFixture[str]) -> None:
        log = logger.create_logger("Probe")
        logger.begin_session("example.com")
        with mock.patch.dict("os.environ", {"COOKIE_MARSHAL_LOG_LEVEL": "info"}):
            log.debug("Selector skipped")
        assert "Selector skipped" not in capsys.readouterr().err
        assert any("Selector skipped" in line for line in logger.end_session())

    def test_timed_block_logs_duration_when_it_raises(self) -> None:
        log = logger.create_logger("Probe")
        logger.begin_session("example.com")
        with pytest.raises(RuntimeError):
            with log.timed("banner-1", "Strategy rule-only"):
                raise RuntimeError("boom")
        assert any("Strategy rule-only took" in line for line in logger.end_session())

    def test_unknown_timer_returns_zero(self) -> None:
        logger.begin_session("example.com")
        assert logger.create_logger("Probe").end_timer("never") == 0.0
        assert any('Timer "never" was not started' in line for line in logger.end_session())

    @pytest.mark.parametrize(("ms", "text"), [(850, "850ms"), (1250, "1.25s"), (123000, "2m 3.0s")])
    def test_format_duration(self, ms: float, text: str) -> None:
        assert logger.format_duration(ms) == text
