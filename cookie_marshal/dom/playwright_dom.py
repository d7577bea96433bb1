"""
Playwright binding for the page-tree protocols.

:class:`PlaywrightDocument` covers the main frame plus any
consent-manager iframes (see :func:`constants.is_consent_frame`).
Each :class:`PlaywrightElement` wraps an ``ElementHandle`` with a key
that stays stable for the node's lifetime, assigned in-page through a
``WeakMap``.

Clicks refuse anchors whose ``href`` would navigate away, and a click
that changes the page URL anyway is undone with ``go_back`` and
reported as failed.
"""

from __future__ import annotations

import asyncio
from urllib import parse

from playwright import async_api

from cookie_marshal.consent import constants
from cookie_marshal.dom import element
from cookie_marshal.models import page
from cookie_marshal.utils import errors, logger

log = logger.create_logger("Playwright-DOM")

_CLICK_TIMEOUT_MS = 3000
_BINDING_NAME = "__cookieMarshalMutation"

_KEY_JS = r"""
el => {
    const w = window;
    w.__cookieMarshalKeys = w.__cookieMarshalKeys || new WeakMap();
    w.__cookieMarshalNext = w.__cookieMarshalNext || 1;
    let k = w.__cookieMarshalKeys.get(el);
    if (!k) {
        k = w.__cookieMarshalNext++;
        w.__cookieMarshalKeys.set(el, k);
    }
    return k;
}
"""

_SNAPSHOT_JS = r"""
el => {
    const r = el.getBoundingClientRect();
    const cs = getComputedStyle(el);
    const z = parseInt(cs.zIndex, 10);
    const naming = n => ((typeof n.className === 'string' ? n.className : (n.getAttribute('class') || '')) + ' ' + (n.id || '')).trim();

    const ancestors = [];
    let p = el.parentElement;
    for (let i = 0; i < 3 && p; i++, p = p.parentElement) {
        ancestors.push(naming(p));
    }

    let maxDepth = 0;
    const walk = (node, depth) => {
        if (depth > maxDepth) maxDepth = depth;
        if (depth >= 30) return;
        for (const c of node.children) walk(c, depth + 1);
    };
    walk(el, 0);

    let checked = null;
    if (el.type === 'checkbox' || el.type === 'radio') {
        checked = el.checked;
    } else if (el.hasAttribute('aria-checked')) {
        checked = el.getAttribute('aria-checked') === 'true';
    } else if (el.hasAttribute('aria-pressed')) {
        checked = el.getAttribute('aria-pressed') === 'true';
    }

    return {
        tag: el.tagName.toLowerCase(),
        element_id: el.id || '',
        class_name: typeof el.className === 'string' ? el.className : (el.getAttribute('class') || ''),
        role: el.getAttribute('role') || '',
        aria_label: el.getAttribute('aria-label') || '',
        title: el.getAttribute('title') || '',
        text: (el.innerText || el.textContent || el.value || '').trim().slice(0, 5000),
        input_type: el.getAttribute('type') || '',
        href: el.getAttribute('href'),
        attribute_names: el.getAttributeNames(),
        rect: {x: r.x, y: r.y, width: r.width, height: r.height},
        style: {
            display: cs.display,
            visibility: cs.visibility,
            opacity: parseFloat(cs.opacity) || 0,
            position: cs.position,
            z_index: isNaN(z) ? 0 : z,
        },
        ancestor_names: ancestors,
        descendant_count: el.getElementsByTagName('*').length,
        max_depth: maxDepth,
        iframe_count: el.getElementsByTagName('iframe').length,
        in_form: !!el.closest('form'),
        checked: checked,
        disabled: !!el.disabled || el.getAttribute('aria-disabled') === 'true',
    };
}
"""

_LABEL_JS = r"""
el => {
    const aria = el.getAttribute('aria-label');
    if (aria) return aria;
    const by = el.getAttribute('aria-labelledby');
    if (by) {
        const t = by.split(/\s+/)
            .map(id => document.getElementById(id))
            .filter(Boolean)
            .map(n => n.textContent)
            .join(' ')
            .trim();
        if (t) return t;
    }
    if (el.labels && el.labels.length) {
        return Array.from(el.labels).map(l => l.textContent).join(' ').trim();
    }
    const row = el.closest('[data-category], [class*="category" i], [class*="purpose" i], li, tr, fieldset, [role="group"]')
        || el.parentElement;
    return row ? (row.innerText || row.textContent || '').trim().slice(0, 300) : '';
}
"""

_SAFE_TO_CLICK_JS = r"""
el => {
    const tag = el.tagName.toLowerCase();

    // <button> elements don't navigate.
    if (tag === 'button' || el.type === 'submit' || el.type === 'button') {
        return true;
    }

    // Inline onclick handler → JS-driven action.
    if (el.hasAttribute('onclick')) {
        return true;
    }

    // role="button" without an href is JS-driven.
    if (el.getAttribute('role') === 'button' && !el.hasAttribute('href')) {
        return true;
    }

    const href = el.getAttribute('href');
    if (href === null || href === undefined) {
        return true;
    }

    // Safe href values: "#", "#foo", "javascript:void(0)", etc.
    const trimmed = href.trim();
    if (
        trimmed === '' ||
        trimmed.startsWith('#') ||
        /^javascript:\s*(void\s*\(?\s*0?\s*\)?)?\s*;?\s*$/i.test(trimmed)
    ) {
        return true;
    }

    return false;
}
"""

_OPTIONS_JS = "el => Array.from(el.options || []).map(o => (o.textContent || '').trim())"

_PAGE_STATS_JS = r"""
() => ({
    element_count: document.getElementsByTagName('*').length,
    iframe_count: document.getElementsByTagName('iframe').length,
    dynamic_marker_count: document.querySelectorAll(
        '[onclick], [data-action], [ng-click], [data-reactroot], [ng-version], [data-v-app], [data-cb-action]'
    ).length,
})
"""

_OBSERVER_JS = r"""
() => {
    if (window.__cookieMarshalObserver) return;
    let pending = false;
    const observer = new MutationObserver(() => {
        if (pending) return;
        pending = true;
        setTimeout(() => {
            pending = false;
            if (window.__cookieMarshalMutation) window.__cookieMarshalMutation();
        }, 100);
    });
    const start = () => observer.observe(document.documentElement, {
        childList: true,
        subtree: true,
        attributes: true,
        attributeFilter: ['class', 'style', 'hidden', 'aria-hidden', 'open'],
    });
    if (document.documentElement) start();
    else document.addEventListener('DOMContentLoaded', start);
    window.__cookieMarshalObserver = observer;
}
"""

_DISCONNECT_JS = "() => { if (window.__cookieMarshalObserver) { window.__cookieMarshalObserver.disconnect(); delete window.__cookieMarshalObserver; } }"


async def _did_navigate_away(pw_page: async_api.Page, original_url: str) -> bool:
    """Check if clicking caused a page navigation and go back if so.

    Consent buttons virtually never navigate: they use
    ``javascript:void(0)``, ``href="#"``, or JS event handlers.  If
    the URL changed, we almost certainly clicked a real link.
    """
    try:
        await asyncio.sleep(0.3)
        current_url = pw_page.url
        if current_url != original_url:
            log.warn(
                "Click caused navigation, going back",
                {"from": original_url[:80], "to": current_url[:80]},
            )
            await pw_page.go_back(wait_until="domcontentloaded", timeout=5000)
            return True
    except async_api.Error as e:
        log.warn("Navigation check failed", {"error": str(e)})
    return False


class PlaywrightElement:
    """:class:`~cookie_marshal.dom.element.PageElement` over an ``ElementHandle``."""

    def __init__(self, document: PlaywrightDocument, handle: async_api.ElementHandle, key: str) -> None:
        self._document = document
        self._handle = handle
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    @property
    def handle(self) -> async_api.ElementHandle:
        return self._handle

    async def snapshot(self) -> page.ElementSnapshot:
        data = await self._handle.evaluate(_SNAPSHOT_JS)
        return page.ElementSnapshot.model_validate(data)

    async def query_all(self, selector: str) -> list[element.PageElement]:
        handles = await self._handle.query_selector_all(selector)
        return await self._document.wrap_all(handles)

    async def action_elements(self) -> list[element.PageElement]:
        return await self.query_all(element.ACTION_SELECTOR)

    async def is_visible(self) -> bool:
        try:
            return await self._handle.is_visible()
        except async_api.Error:
            return False

    async def is_connected(self) -> bool:
        try:
            return bool(await self._handle.evaluate("el => el.isConnected"))
        except async_api.Error:
            return False

    async def _is_safe_to_click(self) -> bool | None:
        """``True`` safe, ``False`` would navigate, ``None`` undetermined."""
        try:
            return bool(await self._handle.evaluate(_SAFE_TO_CLICK_JS))
        except async_api.Error:
            log.debug("Could not evaluate element safety")
            return None

    async def click(self) -> bool:
        if await self._is_safe_to_click() is False:
            log.debug("Skipping element with navigating href", {"key": self._key})
            return False
        pw_page = self._document.page
        original_url = pw_page.url
        try:
            await self._handle.click(timeout=_CLICK_TIMEOUT_MS)
        except async_api.Error as exc:
            log.debug("Click failed", {"key": self._key, "error": errors.get_error_message(exc)})
            return False
        return not await _did_navigate_away(pw_page, original_url)

    async def set_checked(self, checked: bool) -> bool:
        try:
            tag = await self._handle.evaluate("el => el.tagName.toLowerCase()")
            if tag == "input":
                await self._handle.set_checked(checked, timeout=_CLICK_TIMEOUT_MS)
                return True
            # ARIA switches: click when the state differs.
            current = (await self.snapshot()).checked
            if current is None or current == checked:
                return current == checked
            await self._handle.click(timeout=_CLICK_TIMEOUT_MS)
            return True
        except async_api.Error as exc:
            log.debug("Toggle failed", {"key": self._key, "error": errors.get_error_message(exc)})
            return False

    async def select_option(self, label: str) -> bool:
        try:
            selected = await self._handle.select_option(label=label, timeout=_CLICK_TIMEOUT_MS)
        except async_api.Error as exc:
            log.debug("Select failed", {"key": self._key, "error": errors.get_error_message(exc)})
            return False
        return bool(selected)

    async def option_labels(self) -> list[str]:
        try:
            return list(await self._handle.evaluate(_OPTIONS_JS))
        except async_api.Error:
            return []

    async def label_text(self) -> str:
        return str(await self._handle.evaluate(_LABEL_JS) or "")


class PlaywrightDocument:
    """:class:`~cookie_marshal.dom.element.PageDocument` over a Playwright ``Page``."""

    def __init__(self, pw_page: async_api.Page) -> None:
        self.page = pw_page
        self._frame_ids: dict[async_api.Frame, int] = {}
        self._callback: element.MutationCallback | None = None
        self._binding_installed = False

    @property
    def hostname(self) -> str:
        try:
            return parse.urlparse(self.page.url).hostname or ""
        except ValueError:
            return ""

    def _frame_id(self, frame: async_api.Frame) -> int:
        if frame not in self._frame_ids:
            self._frame_ids[frame] = len(self._frame_ids)
        return self._frame_ids[frame]

    def frames(self) -> list[async_api.Frame]:
        """The main frame followed by every consent-manager iframe."""
        main = self.page.main_frame
        return [main, *(f for f in self.page.frames if constants.is_consent_frame(f, main))]

    async def wrap(self, handle: async_api.ElementHandle) -> PlaywrightElement | None:
        try:
            frame = await handle.owner_frame()
            node_id = await handle.evaluate(_KEY_JS)
        except async_api.Error:
            return None
        frame_id = self._frame_id(frame) if frame is not None else 0
        return PlaywrightElement(self, handle, f"{frame_id}:{node_id}")

    async def wrap_all(self, handles: list[async_api.ElementHandle]) -> list[element.PageElement]:
        wrapped: list[element.PageElement] = []
        for handle in handles:
            el = await self.wrap(handle)
            if el is not None:
                wrapped.append(el)
        return wrapped

    async def viewport(self) -> page.Viewport:
        size = self.page.viewport_size
        if size:
            return page.Viewport(width=size["width"], height=size["height"])
        data = await self.page.evaluate("() => ({width: window.innerWidth, height: window.innerHeight})")
        return page.Viewport.model_validate(data)

    async def language(self) -> str | None:
        lang = await self.page.evaluate("() => document.documentElement.lang || null")
        return str(lang) if lang else None

    async def query_all(self, selector: str) -> list[element.PageElement]:
        results: list[element.PageElement] = []
        for frame in self.frames():
            try:
                handles = await frame.query_selector_all(selector)
            except async_api.Error as exc:
                log.debug("Frame query failed", {"url": frame.url[:80], "error": errors.get_error_message(exc)})
                continue
            results.extend(await self.wrap_all(handles))
        return results

    async def page_stats(self) -> page.PageContext:
        data = await self.page.evaluate(_PAGE_STATS_JS)
        return page.PageContext(
            hostname=self.hostname,
            element_count=data["element_count"],
            iframe_count=data["iframe_count"],
            dynamic_marker_count=data["dynamic_marker_count"],
            viewport=await self.viewport(),
        )

    async def _on_binding(self, source: dict[str, object]) -> None:
        callback = self._callback
        if callback is None:
            return
        try:
            await callback()
        except Exception as exc:
            log.warn("Mutation callback failed", {"error": errors.get_error_message(exc)})

    async def subscribe(self, callback: element.MutationCallback) -> None:
        self._callback = callback
        if not self._binding_installed:
            await self.page.expose_binding(_BINDING_NAME, self._on_binding)
            await self.page.add_init_script(f"({_OBSERVER_JS})()")
            self._binding_installed = True
        await self.page.evaluate(_OBSERVER_JS)

    async def unsubscribe(self) -> None:
        self._callback = None
        try:
            await self.page.evaluate(_DISCONNECT_JS)
        except async_api.Error as exc:
            log.debug("Observer disconnect failed", {"error": errors.get_error_message(exc)})
