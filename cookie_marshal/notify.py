"""Fire-and-forget user notifications.

The agent reports each processed banner through a :class:`Notifier`.
The default :class:`LogNotifier` writes to the structured logger;
embedders can plug in anything with the same ``notify`` signature.
"""

from __future__ import annotations

from typing import Literal, Protocol

from cookie_marshal.utils import logger

log = logger.create_logger("Notify")

NotificationKind = Literal["success", "error"]


class Notifier(Protocol):
    def notify(self, kind: NotificationKind, message: str, detail: dict[str, object] | None = None) -> None: ...


class LogNotifier:
    """Notifier that writes to the logger."""

    def __init__(self) -> None:
        self.sent: int = 0

    def notify(self, kind: NotificationKind, message: str, detail: dict[str, object] | None = None) -> None:
        self.sent += 1
        if kind == "success":
            log.success(message, detail)
        else:
            log.error(message, detail)
