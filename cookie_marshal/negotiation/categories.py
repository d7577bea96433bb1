"""Category configuration inside an open preference center.

Each discovered control is paired with its label and classified:

- essential (necessary, security, functional, localized): never touched,
- non-essential (marketing, analytics, tracking, ...): switched off,
- anything else: left alone.

Mutations are separated by ``mutation_delay`` so reactive UIs can
re-render between them.
"""

from __future__ import annotations

import asyncio

from cookie_marshal import config
from cookie_marshal.consent import classifier as element_classifier
from cookie_marshal.consent import keywords
from cookie_marshal.dom import element
from cookie_marshal.models import consent
from cookie_marshal.utils import errors, logger

log = logger.create_logger("Categories")

CATEGORY_BUTTON_SELECTORS: tuple[str, ...] = (
    '[data-category] button',
    '[class*="category" i] button',
    '[class*="purpose" i] button',
)


def decide(label: str) -> consent.FlowDecision:
    """Essential wins over non-essential; unknown labels are left alone."""
    if keywords.is_essential_label(label):
        return "preserve-if-essential"
    if keywords.is_non_essential_label(label):
        return "disable-if-non-essential"
    return "unknown"


def pick_reject_option(options: list[str]) -> str | None:
    """First dropdown option whose label means "off"."""
    for option in options:
        if keywords.contains_any(option.lower(), keywords.REJECT_OPTION_LABELS):
            return option
    return None


class CategoryConfigurator:
    """Turns off non-essential categories under one container."""

    def __init__(
        self,
        classifier: element_classifier.ElementClassifier,
        settings: config.AgentSettings | None = None,
    ) -> None:
        self.classifier = classifier
        self.settings = settings or classifier.settings

    async def _controls(
        self,
        root: element.PageElement | element.PageDocument,
        selectors: tuple[str, ...],
    ) -> list[element.PageElement]:
        found: list[element.PageElement] = []
        seen: set[str] = set()
        for selector in selectors:
            try:
                matches = await root.query_all(selector)
            except Exception as exc:
                log.debug("Control query failed", {"selector": selector, "error": str(exc)})
                continue
            for match in matches:
                if match.key not in seen:
                    seen.add(match.key)
                    found.append(match)
        return found

    async def configure(
        self,
        root: element.PageElement | element.PageDocument,
        toggle_selectors: tuple[str, ...],
    ) -> list[consent.ConsentFlowStep]:
        """Visit every toggle, checkbox, dropdown and category button."""
        steps: list[consent.ConsentFlowStep] = []

        for control in await self._controls(root, toggle_selectors):
            step = await self._configure_control(control)
            if step is None:
                continue
            steps.append(step)
            if step.applied:
                await asyncio.sleep(self.settings.mutation_delay)

        for button in await self._controls(root, CATEGORY_BUTTON_SELECTORS):
            step = await self._configure_category_button(button)
            if step is None:
                continue
            steps.append(step)
            if step.applied:
                await asyncio.sleep(self.settings.mutation_delay)

        disabled = sum(1 for s in steps if s.applied)
        preserved = sum(1 for s in steps if s.decision == "preserve-if-essential")
        log.info("Categories configured", {"controls": len(steps), "disabled": disabled, "preserved": preserved})
        return steps

    async def _configure_control(self, control: element.PageElement) -> consent.ConsentFlowStep | None:
        snap = await element.safe_snapshot(control)
        if snap is None:
            return None
        try:
            label = (await control.label_text()).strip()
        except Exception as exc:
            log.debug("Label lookup failed", {"error": errors.get_error_message(exc)})
            return None

        is_dropdown = snap.tag.lower() == "select"
        kind: consent.FlowStepKind
        if is_dropdown:
            kind = "dropdown"
        elif snap.role.lower() == "switch" or "switch" in snap.naming or "toggle" in snap.naming:
            kind = "toggle-switch"
        else:
            kind = "checkbox"

        decision = decide(label)
        step = consent.ConsentFlowStep(kind=kind, label=label[:120], decision=decision)
        if decision != "disable-if-non-essential" or snap.disabled:
            return step

        try:
            if is_dropdown:
                option = pick_reject_option(await control.option_labels())
                if option is not None:
                    step.applied = await control.select_option(option)
            elif snap.checked:
                step.applied = await control.set_checked(False)
        except Exception as exc:
            log.warn("Category mutation failed", {"label": label[:60], "error": errors.get_error_message(exc)})
        return step

    async def _configure_category_button(self, button: element.PageElement) -> consent.ConsentFlowStep | None:
        snap = await element.safe_snapshot(button)
        if snap is None or not snap.is_rendered:
            return None
        try:
            label = (await button.label_text()).strip()
        except Exception as exc:
            log.debug("Label lookup failed", {"error": errors.get_error_message(exc)})
            return None
        decision = decide(label)
        step = consent.ConsentFlowStep(kind="category-button", label=label[:120], decision=decision)
        if decision != "disable-if-non-essential":
            return step
        if not self.classifier.is_safe_to_click(self.classifier.score_action(snap)):
            return step
        try:
            step.applied = await button.click()
        except Exception as exc:
            log.warn("Category button click failed", {"label": label[:60], "error": errors.get_error_message(exc)})
        return step
