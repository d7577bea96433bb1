"""
Bounded waiting helpers.

Every asynchronous step in the agent (click verification, the
preference-center wait, the parallel strategy race) goes through
one of these helpers so that it terminates within its configured
bound even when the page never answers.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, TypeVar

from cookie_marshal.utils import errors, logger

log = logger.create_logger("Timing")

T = TypeVar("T")


async def with_timeout(
    awaitable: Awaitable[T],
    seconds: float,
    *,
    context: str | None = None,
) -> T:
    """Await *awaitable* for at most *seconds*.

    The awaited task is cancelled when the bound is hit and an
    :class:`~cookie_marshal.utils.errors.ActionTimeoutError` is
    raised in its place.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except TimeoutError as exc:
        log.debug("Step timed out", {"context": context, "timeoutSeconds": seconds})
        raise errors.ActionTimeoutError(
            f"{context or 'step'} exceeded {seconds:.2f}s",
            reason=f"{context}-timeout" if context else "action-timeout",
        ) from exc


async def poll_until(
    check: Callable[[], Awaitable[bool]],
    *,
    interval: float,
    timeout: float,
    context: str | None = None,
) -> bool:
    """Call *check* every *interval* seconds until it returns ``True``.

    Returns ``False`` once *timeout* seconds have elapsed without a
    positive check.  A check that raises counts as a negative result;
    the error is logged at debug level and polling continues.
    """
    deadline = time.monotonic() + timeout
    attempt = 0

    while True:
        attempt += 1
        try:
            if await asyncio.wait_for(check(), timeout=max(deadline - time.monotonic(), 0.01)):
                return True
        except TimeoutError:
            pass
        except Exception as exc:
            log.debug(
                "Poll check failed",
                {"context": context, "attempt": attempt, "error": errors.get_error_message(exc)},
            )

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            log.debug("Polling gave up", {"context": context, "attempts": attempt})
            return False
        await asyncio.sleep(min(interval, remaining))


def elapsed_ms(start: float) -> float:
    """Milliseconds since a ``time.monotonic()`` reading."""
    return (time.monotonic() - start) * 1000
