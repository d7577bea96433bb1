"""
Error taxonomy and helpers for consistent error message extraction.

Components never let these escape to the page: they are raised
inside a step and converted into a ``reason`` on the result object
by the coordinator or the negotiation state machine.
"""

from __future__ import annotations

from typing import Literal

ErrorKind = Literal[
    "detection-miss",
    "low-confidence",
    "action-timeout",
    "action-ineffective",
    "strategy-exhausted",
    "persistence-failure",
]


class ConsentAgentError(Exception):
    """Base class for faults raised inside the agent."""

    kind: ErrorKind = "strategy-exhausted"

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason or self.kind


class ActionTimeoutError(ConsentAgentError):
    """A click or await step exceeded its bound."""

    kind: ErrorKind = "action-timeout"


class ActionIneffectiveError(ConsentAgentError):
    """The action fired but the banner is still present."""

    kind: ErrorKind = "action-ineffective"


class StrategyExhaustedError(ConsentAgentError):
    """Every configured strategy or step failed."""

    kind: ErrorKind = "strategy-exhausted"


class PersistenceError(ConsentAgentError):
    """Storage read or write failed."""

    kind: ErrorKind = "persistence-failure"


def get_error_message(error: BaseException | object) -> str:
    """
    Safely extract an error message from an unknown error type.
    """
    if isinstance(error, Exception):
        return str(error) or type(error).__name__
    return "Unknown error"


def get_error_reason(error: BaseException | object) -> str:
    """Map an exception to the ``reason`` string reported on results."""
    if isinstance(error, ConsentAgentError):
        return error.reason
    if isinstance(error, TimeoutError):
        return "action-timeout"
    return "error"
