"""Protocols for the live page tree the agent operates on.

The agent never owns the page.  It reads nodes through
:class:`PageElement` snapshots and issues clicks, toggles and
selections through the same handle.  The production binding is
:mod:`cookie_marshal.dom.playwright_dom`; the test-suite ships an
in-memory tree implementing the same protocols.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Protocol, runtime_checkable

from cookie_marshal.models import page

# Clickable descendants of a banner.
ACTION_SELECTOR = (
    'button, a[role="button"], input[type="button"], input[type="submit"], [role="button"], [onclick]'
)

MutationCallback = Callable[[], Awaitable[None]]


@runtime_checkable
class PageElement(Protocol):
    """Async handle to one node of the host page."""

    @property
    def key(self) -> str:
        """Identity that stays stable for the lifetime of the node."""
        ...

    async def snapshot(self) -> page.ElementSnapshot: ...

    async def action_elements(self) -> list[PageElement]: ...

    async def query_all(self, selector: str) -> list[PageElement]: ...

    async def is_visible(self) -> bool: ...

    async def is_connected(self) -> bool: ...

    async def click(self) -> bool:
        """Activate the node.  Returns ``False`` when the click was refused or failed."""
        ...

    async def set_checked(self, checked: bool) -> bool: ...

    async def select_option(self, label: str) -> bool: ...

    async def option_labels(self) -> list[str]: ...

    async def label_text(self) -> str:
        """Text describing a form control: aria-label, ``<label>``, or container text."""
        ...


@runtime_checkable
class PageDocument(Protocol):
    """Async handle to the whole page."""

    @property
    def hostname(self) -> str: ...

    async def viewport(self) -> page.Viewport: ...

    async def language(self) -> str | None: ...

    async def query_all(self, selector: str) -> list[PageElement]: ...

    async def page_stats(self) -> page.PageContext: ...

    async def subscribe(self, callback: MutationCallback) -> None:
        """Invoke *callback* whenever the subtree changes."""
        ...

    async def unsubscribe(self) -> None: ...


async def safe_snapshot(element: PageElement) -> page.ElementSnapshot | None:
    """Snapshot *element*, returning ``None`` when the node went away."""
    try:
        return await element.snapshot()
    except Exception:
        return None
