"""Shared fixtures and an in-memory page tree for the test suite.

:class:`FakeElement` and :class:`FakeDocument` implement the
``PageElement`` / ``PageDocument`` protocols over a tiny tree with a
minimal CSS selector matcher (tag, ``#id``, ``.class``, attribute
tests with ``=``/``*=`` and the ``i`` flag, ``:not(...)``, descendant
combinators and selector lists).
"""

from __future__ import annotations

import itertools
import re
from typing import Callable

import pytest

from cookie_marshal import config
from cookie_marshal.dom import element
from cookie_marshal.models import page

_ids = itertools.count(1)

_ATTR_RE = re.compile(r"""\[\s*([\w:-]+)\s*(?:(\*?=)\s*["']?([^"'\]]*?)["']?\s*(i)?\s*)?\]""")
_TOKEN_RE = re.compile(r"""#[\w-]+|\.[\w-]+|\[[^\]]*\]|:not\((?:[^()]*)\)|^[a-zA-Z][\w-]*|\*""")


def _compound_matches(el: FakeElement, compound: str) -> bool:
    compound = compound.strip()
    pos = 0
    tokens: list[str] = []
    for m in _TOKEN_RE.finditer(compound):
        if m.start() != pos:
            return False
        tokens.append(m.group(0))
        pos = m.end()
    if pos != len(compound):
        return False

    for tok in tokens:
        if tok == "*":
            continue
        if tok.startswith("#"):
            if el.attrs.get("id") != tok[1:]:
                return False
        elif tok.startswith("."):
            if tok[1:] not in el.attrs.get("class", "").split():
                return False
        elif tok.startswith("["):
            m = _ATTR_RE.fullmatch(tok)
            if m is None:
                raise ValueError(f"Unsupported selector token: {tok}")
            name, op, value, flag = m.groups()
            if name not in el.attrs:
                return False
            actual = el.attrs[name]
            if op:
                if flag:
                    actual, value = actual.lower(), value.lower()
                if op == "=" and actual != value:
                    return False
                if op == "*=" and value not in actual:
                    return False
        elif tok.startswith(":not("):
            if _compound_matches(el, tok[5:-1]):
                return False
        elif el.tag != tok.lower():
            return False
    return True


def _split_compounds(part: str) -> list[str]:
    """Split on whitespace that is outside ``[...]`` and ``(...)``."""
    compounds: list[str] = []
    current = ""
    depth = 0
    for ch in part:
        if ch in "[(":
            depth += 1
        elif ch in "])":
            depth -= 1
        if ch.isspace() and depth == 0:
            if current:
                compounds.append(current)
            current = ""
        else:
            current += ch
    if current:
        compounds.append(current)
    return compounds


def _selector_matches(el: FakeElement, selector: str) -> bool:
    for part in selector.split(","):
        compounds = _split_compounds(part)
        if not compounds or not _compound_matches(el, compounds[-1]):
            continue
        remaining = compounds[:-1]
        node = el.parent
        while remaining and node is not None:
            if _compound_matches(node, remaining[-1]):
                remaining.pop()
            node = node.parent
        if not remaining:
            return True
    return False


class FakeElement:
    """One node of the in-memory tree."""

    def __init__(
        self,
        tag: str = "div",
        text: str = "",
        *,
        attrs: dict[str, str] | None = None,
        children: list[FakeElement] | None = None,
        rect: page.Rect | None = None,
        style: page.ComputedStyle | None = None,
        checked: bool | None = None,
        disabled: bool = False,
        options: list[str] | None = None,
        label: str | None = None,
        on_click: Callable[[FakeElement], None] | None = None,
    ) -> None:
        self.tag = tag
        self.own_text = text
        self.attrs = dict(attrs or {})
        self.parent: FakeElement | None = None
        self.children: list[FakeElement] = []
        self.rect = rect or page.Rect(width=120, height=40)
        self.style = style or page.ComputedStyle()
        self.checked = checked
        self.disabled = disabled
        self.options = options or []
        self.selected: str | None = None
        self.label = label
        self.on_click = on_click
        self.clicks = 0
        self.connected = True
        self.hidden = False
        self._key = f"fake:{next(_ids)}"
        for child in children or []:
            self.append(child)

    # ── Tree helpers ────────────────────────────────────────────

    def append(self, child: FakeElement) -> FakeElement:
        child.parent = self
        self.children.append(child)
        return child

    def remove(self) -> None:
        if self.parent is not None:
            self.parent.children.remove(self)
            self.parent = None
        for node in self.walk():
            node.connected = False

    def walk(self) -> list[FakeElement]:
        nodes = [self]
        for child in self.children:
            nodes.extend(child.walk())
        return nodes

    def full_text(self) -> str:
        parts = [self.own_text, *(c.full_text() for c in self.children)]
        return " ".join(p for p in parts if p).strip()

    def depth(self) -> int:
        return 1 + max((c.depth() for c in self.children), default=-1)

    # ── PageElement ─────────────────────────────────────────────

    @property
    def key(self) -> str:
        return self._key

    async def snapshot(self) -> page.ElementSnapshot:
        if not self.connected:
            raise RuntimeError("detached")
        ancestors: list[str] = []
        node = self.parent
        while node is not None and len(ancestors) < 3:
            ancestors.append(f"{node.attrs.get('class', '')} {node.attrs.get('id', '')}".strip())
            node = node.parent
        descendants = self.walk()[1:]
        return page.ElementSnapshot(
            tag=self.tag,
            element_id=self.attrs.get("id", ""),
            class_name=self.attrs.get("class", ""),
            role=self.attrs.get("role", ""),
            aria_label=self.attrs.get("aria-label", ""),
            title=self.attrs.get("title", ""),
            text=self.full_text(),
            input_type=self.attrs.get("type", ""),
            href=self.attrs.get("href"),
            attribute_names=list(self.attrs),
            rect=self.rect,
            style=self.style if not self.hidden else self.style.model_copy(update={"display": "none"}),
            ancestor_names=ancestors,
            descendant_count=len(descendants),
            max_depth=self.depth(),
            iframe_count=sum(1 for d in descendants if d.tag == "iframe"),
            in_form=False,
            checked=self.checked,
            disabled=self.disabled,
        )

    async def query_all(self, selector: str) -> list[element.PageElement]:
        return [n for n in self.walk()[1:] if _selector_matches(n, selector)]

    async def action_elements(self) -> list[element.PageElement]:
        return await self.query_all(element.ACTION_SELECTOR)

    async def is_visible(self) -> bool:
        node: FakeElement | None = self
        while node is not None:
            if node.hidden or node.style.display == "none":
                return False
            node = node.parent
        return self.connected

    async def is_connected(self) -> bool:
        return self.connected

    async def click(self) -> bool:
        if not self.connected or self.disabled:
            return False
        self.clicks += 1
        if self.on_click is not None:
            self.on_click(self)
        return True

    async def set_checked(self, checked: bool) -> bool:
        self.checked = checked
        return True

    async def select_option(self, label: str) -> bool:
        if label not in self.options:
            return False
        self.selected = label
        return True

    async def option_labels(self) -> list[str]:
        return list(self.options)

    async def label_text(self) -> str:
        if self.label is not None:
            return self.label
        if "aria-label" in self.attrs:
            return self.attrs["aria-label"]
        return self.parent.full_text() if self.parent else ""


class FakeDocument:
    """Whole-page handle over a :class:`FakeElement` root."""

    def __init__(
        self,
        root: FakeElement | None = None,
        *,
        hostname: str = "example.com",
        lang: str | None = "en",
        viewport: page.Viewport | None = None,
    ) -> None:
        self.root = root or FakeElement("body", rect=page.Rect(width=1280, height=720))
        self._hostname = hostname
        self.lang = lang
        self._viewport = viewport or page.Viewport()
        self.callback: element.MutationCallback | None = None
        self.unsubscribed = False

    @property
    def hostname(self) -> str:
        return self._hostname

    async def viewport(self) -> page.Viewport:
        return self._viewport

    async def language(self) -> str | None:
        return self.lang

    async def query_all(self, selector: str) -> list[element.PageElement]:
        return [n for n in self.root.walk()[1:] if _selector_matches(n, selector)]

    async def page_stats(self) -> page.PageContext:
        nodes = self.root.walk()
        return page.PageContext(
            hostname=self._hostname,
            element_count=len(nodes),
            iframe_count=sum(1 for n in nodes if n.tag == "iframe"),
            dynamic_marker_count=sum(1 for n in nodes if "onclick" in n.attrs),
            viewport=self._viewport,
        )

    async def subscribe(self, callback: element.MutationCallback) -> None:
        self.callback = callback
        self.unsubscribed = False

    async def unsubscribe(self) -> None:
        self.callback = None
        self.unsubscribed = True

    async def mutate(self) -> None:
        if self.callback is not None:
            await self.callback()


# ── Builders ────────────────────────────────────────────────────


def button(text: str, *, remove: FakeElement | None = None, **attrs: str) -> FakeElement:
    """A ``<button>``; clicking it detaches *remove* when given."""
    on_click = (lambda _el: remove.remove()) if remove is not None else None
    return FakeElement("button", text, attrs=attrs, on_click=on_click)


def bottom_bar(text: str, *, attrs: dict[str, str] | None = None) -> FakeElement:
    """A fixed, full-width bar pinned to the bottom of a 1280x720 viewport."""
    return FakeElement(
        "div",
        text,
        attrs=attrs or {"class": "cookie-bar"},
        rect=page.Rect(x=0, y=560, width=1280, height=160),
        style=page.ComputedStyle(position="fixed", z_index=9999),
    )


def dismiss_on_click(btn: FakeElement, target: FakeElement) -> FakeElement:
    btn.on_click = lambda _el: target.remove()
    return btn


@pytest.fixture()
def settings() -> config.AgentSettings:
    """Settings with short waits so timeout paths finish quickly."""
    return config.AgentSettings(
        _env_file=None,
        click_verify_timeout=0.2,
        click_verify_interval=0.01,
        preference_poll_interval=0.01,
        preference_timeout=0.2,
        mutation_delay=0.0,
        negotiation_timeout=5.0,
        banner_timeout=10.0,
        persist_debounce=0.01,
        mutation_scan_delay=0.01,
        min_scan_interval=0.0,
        parallel_timeout=1.0,
        learning_timeout=1.0,
    )


@pytest.fixture()
def body() -> FakeElement:
    return FakeElement("body", attrs={"class": "page"}, rect=page.Rect(width=1280, height=720))


@pytest.fixture()
def document(body: FakeElement) -> FakeDocument:
    return FakeDocument(body)
