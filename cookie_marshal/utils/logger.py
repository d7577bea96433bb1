"""
Structured, colourful console logging for consent sessions.

Every line carries a timestamp, a level symbol, the module context and,
while a session is active, the domain being negotiated.  Lines go to
stderr with ANSI colours and into an ANSI-stripped buffer that
``end_session`` hands back for post-mortem inspection.  When
``WRITE_TO_FILE=true`` each session also gets its own file under
``.logs/``.

Session state (domain, timers, buffer, file handle) lives in one
``contextvars.ContextVar`` so sessions driving different pages on the
same event loop keep separate logs.

Verbosity is set with ``COOKIE_MARSHAL_LOG_LEVEL`` (``debug``,
``info``, ``warn`` or ``error``; default ``info``).  Lines below the
threshold are still buffered.
"""

from __future__ import annotations

import contextlib
import contextvars
import dataclasses
import enum
import io
import os
import pathlib
import re
import sys
import time
from collections.abc import Iterator
from datetime import UTC, datetime

import pydantic

_MAX_BUFFER_LINES = 2000

_ANSI_RE = re.compile(r"\033\[[0-9;]*m")

_LEVEL_RANK = {"debug": 10, "timing": 20, "info": 20, "success": 20, "warn": 30, "error": 40}


@dataclasses.dataclass
class _SessionLog:
    domain: str = ""
    timers: dict[str, tuple[float, str]] = dataclasses.field(default_factory=dict)
    lines: list[str] = dataclasses.field(default_factory=list)
    stream: io.TextIOWrapper | None = None


_session_var: contextvars.ContextVar[_SessionLog] = contextvars.ContextVar("_session_var")


def _current() -> _SessionLog:
    try:
        return _session_var.get()
    except LookupError:
        state = _SessionLog()
        _session_var.set(state)
        return state


def _threshold() -> int:
    level = os.environ.get("COOKIE_MARSHAL_LOG_LEVEL", "info").lower()
    return _LEVEL_RANK.get(level, _LEVEL_RANK["info"])


# ============================================================================
# Session lifecycle
# ============================================================================


def _open_session_file(domain: str, started: datetime) -> io.TextIOWrapper | None:
    if os.environ.get("WRITE_TO_FILE", "").lower() != "true":
        return None

    logs_dir = pathlib.Path.cwd() / ".logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    safe_domain = "".join(c if c.isalnum() or c in ".-" else "_" for c in domain.removeprefix("www."))[:50]
    path = logs_dir / f"consent_{safe_domain or 'page'}_{started.strftime('%Y-%m-%d_%H-%M-%S')}.log"

    try:
        stream = open(path, "a", encoding="utf-8")  # noqa: SIM115
    except OSError as exc:
        print(f"\033[31m✗ [Logger] Cannot open session log {path.name}: {exc}\033[0m", file=sys.stderr)
        return None

    stream.write(f"{'=' * 72}\n  Consent session: {domain}\n  Started: {started.isoformat()}\n{'=' * 72}\n")
    return stream


def begin_session(domain: str) -> None:
    """Start a fresh log session for *domain*, closing any previous one."""
    end_session()
    _session_var.set(_SessionLog(domain=domain, stream=_open_session_file(domain, datetime.now(UTC))))


def end_session() -> list[str]:
    """Close the active session and return its buffered lines."""
    state = _current()
    if state.stream is not None:
        try:
            state.stream.close()
        except OSError:
            print("\033[33m⚠ [Logger] Session log did not close cleanly\033[0m", file=sys.stderr)
    lines = list(state.lines)
    _session_var.set(_SessionLog())
    return lines


def get_log_buffer() -> list[str]:
    """Return a copy of the active session's lines (ANSI-stripped)."""
    return list(_current().lines)


def _emit(line: str, *, visible: bool = True) -> None:
    state = _current()
    plain = _ANSI_RE.sub("", line)
    state.lines.append(plain)
    if len(state.lines) > _MAX_BUFFER_LINES:
        del state.lines[: len(state.lines) - _MAX_BUFFER_LINES]
    if not visible:
        return
    print(line, file=sys.stderr)
    if state.stream is not None:
        state.stream.write(plain + "\n")
        state.stream.flush()


# ============================================================================
# Formatting
# ============================================================================

_colours = {
    "reset": "\033[0m",
    "bright": "\033[1m",
    "dim": "\033[2m",
    "cyan": "\033[36m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "red": "\033[31m",
    "magenta": "\033[35m",
    "blue": "\033[34m",
    "gray": "\033[90m",
}

_level_style = {
    "info": ("cyan", "ℹ"),
    "success": ("green", "✓"),
    "warn": ("yellow", "⚠"),
    "error": ("red", "✗"),
    "debug": ("gray", "•"),
    "timing": ("magenta", "⏱"),
}


def _timestamp() -> str:
    now = datetime.now(UTC)
    return now.strftime("%H:%M:%S.") + f"{now.microsecond // 1000:03d}"


def format_duration(ms: float) -> str:
    """Format milliseconds as ``850ms``, ``1.25s`` or ``2m 3.0s``."""
    if ms < 1000:
        return f"{int(ms)}ms"
    if ms < 60000:
        return f"{ms / 1000:.2f}s"
    return f"{int(ms // 60000)}m {(ms % 60000) / 1000:.1f}s"


def _paint(colour: str, text: str) -> str:
    return f"{_colours[colour]}{text}{_colours['reset']}"


def format_value(value: object) -> str:
    """Compact, coloured rendering of one structured-data value."""
    if value is None:
        return _paint("dim", "None")
    if isinstance(value, bool):
        return _paint("green", "True") if value else _paint("red", "False")
    if isinstance(value, enum.Enum):
        return _paint("magenta", str(value.value))
    if isinstance(value, float):
        return _paint("yellow", f"{value:.3f}")
    if isinstance(value, int):
        return _paint("yellow", str(value))
    if isinstance(value, str):
        shown = value if len(value) <= 120 else value[:117] + "..."
        return _paint("green", f'"{shown}"')
    if isinstance(value, pydantic.BaseModel):
        return _paint("cyan", f"<{type(value).__name__}>")
    if isinstance(value, (list, tuple, set, frozenset)):
        return _paint("cyan", f"[{len(value)} items]")
    if isinstance(value, dict):
        return _paint("cyan", f"{{{len(value)} keys}}")
    return str(value)


# ============================================================================
# Logger
# ============================================================================


class Logger:
    """Structured logger bound to one module context."""

    def __init__(self, context: str) -> None:
        self._context = context

    @property
    def context(self) -> str:
        return self._context

    def _log(self, level: str, message: str, data: dict[str, object] | None = None) -> None:
        colour, symbol = _level_style[level]
        domain = _current().domain
        where = f"{self._context}@{domain}" if domain else self._context
        line = f"{_paint('gray', f'[{_timestamp()}]')} {_paint(colour, symbol)} {_paint('bright', f'[{where}]')} {message}"
        if data:
            line += " " + " ".join(f"{_paint('dim', f'{k}=')}{format_value(v)}" for k, v in data.items())
        _emit(line, visible=_LEVEL_RANK[level] >= _threshold())

    def info(self, message: str, data: dict[str, object] | None = None) -> None:
        self._log("info", message, data)

    def success(self, message: str, data: dict[str, object] | None = None) -> None:
        self._log("success", message, data)

    def warn(self, message: str, data: dict[str, object] | None = None) -> None:
        self._log("warn", message, data)

    def error(self, message: str, data: dict[str, object] | None = None) -> None:
        self._log("error", message, data)

    def debug(self, message: str, data: dict[str, object] | None = None) -> None:
        self._log("debug", message, data)

    def start_timer(self, label: str) -> None:
        """Start a named timer scoped to this logger's context."""
        _current().timers[f"{self._context}:{label}"] = (time.monotonic() * 1000, _timestamp())

    def end_timer(self, label: str, message: str | None = None) -> float:
        """Stop a named timer, log its duration and return it in ms.

        Returns 0.0 (with a warning) when the timer was never started.
        """
        entry = _current().timers.pop(f"{self._context}:{label}", None)
        if entry is None:
            self.warn(f'Timer "{label}" was not started')
            return 0.0
        started_ms, started_at = entry
        duration = time.monotonic() * 1000 - started_ms
        self._log(
            "timing",
            f"{message or label} {_paint('dim', 'took')} {_paint('magenta', format_duration(duration))} "
            f"{_paint('dim', f'(started {started_at})')}",
        )
        return duration

    @contextlib.contextmanager
    def timed(self, label: str, message: str | None = None) -> Iterator[None]:
        """Time the enclosed block, logging even when it raises."""
        self.start_timer(label)
        try:
            yield
        finally:
            self.end_timer(label, message)

    def section(self, title: str) -> None:
        """Emit a prominent divider, used once per session."""
        rule = _paint("blue", "─" * 60)
        for line in ("", rule, _paint("blue", _paint("bright", f"  {title}")), rule, ""):
            _emit(line)

    def subsection(self, title: str) -> None:
        """Emit a light divider, used once per banner."""
        _emit(f"{_paint('blue', '──')} {_paint('bright', title)} {_paint('blue', '─' * max(4, 56 - len(title)))}")


def create_logger(context: str) -> Logger:
    """Create a logger for one module, e.g. ``create_logger("Coordinator")``."""
    return Logger(context)
