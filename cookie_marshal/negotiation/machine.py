"""
Negotiation state machine.

Drives one banner through::

    BannerFound -> DirectRejectAttempted -> Success
                                         -> PreferenceSearch [-> ProgressiveFlow]
                                            -> PreferenceOpened -> CategoryConfiguration
                                            -> SavePreferences -> Success | Failure

Framework profiles swap in known selectors at each state without
changing the transitions.  Every wait is bounded and the whole run
is capped by ``negotiation_timeout``; an unmet guard ends in
``Failure`` with a reason instead of raising.
"""

from __future__ import annotations

import asyncio
import dataclasses

from cookie_marshal import config
from cookie_marshal.consent import keywords, rule_agent
from cookie_marshal.dom import element
from cookie_marshal.models import processing
from cookie_marshal.negotiation import categories, frameworks
from cookie_marshal.utils import errors, logger, timing

log = logger.create_logger("Negotiation")

State = processing.NegotiationState

# Confidence reported for a completed preference-center flow, where
# the final state is not always observable.
PREFERENCE_FLOW_CONFIDENCE = 0.75

_NON_CONTAINER_TAGS = frozenset({"button", "a", "input", "label", "span", "option"})


@dataclasses.dataclass
class _Run:
    candidate: processing.BannerCandidate
    document: element.PageDocument
    profile: frameworks.FrameworkProfile
    trail: list[processing.NegotiationState] = dataclasses.field(default_factory=list)
    clicks: int = 0

    def enter(self, state: processing.NegotiationState) -> None:
        self.trail.append(state)
        log.debug("Negotiation state", {"state": state.value, "banner": self.candidate.key})


def is_manage_label(label: str) -> bool:
    return keywords.contains_any(label, keywords.MANAGE_PREFERENCES_LABELS) and not is_accept_all_label(label)


def is_save_label(label: str) -> bool:
    return keywords.contains_any(label, keywords.SAVE_PREFERENCES_LABELS) and not is_accept_all_label(label)


def is_accept_all_label(label: str) -> bool:
    return keywords.contains_any(label, keywords.ACCEPT_ALL_LABELS)


class NegotiationStateMachine:
    """Multi-step reject flow over one banner."""

    def __init__(
        self,
        agent: rule_agent.RuleBasedAgent,
        configurator: categories.CategoryConfigurator | None = None,
        settings: config.AgentSettings | None = None,
    ) -> None:
        self.agent = agent
        self.classifier = agent.classifier
        self.settings = settings or agent.settings
        self.configurator = configurator or categories.CategoryConfigurator(self.classifier, self.settings)

    async def run(
        self,
        candidate: processing.BannerCandidate,
        document: element.PageDocument,
    ) -> processing.NegotiationResult:
        """Negotiate *candidate* to a terminal state.  Never raises."""
        run = _Run(candidate=candidate, document=document, profile=frameworks.profile_for(candidate.framework))
        try:
            return await timing.with_timeout(self._negotiate(run), self.settings.negotiation_timeout, context="negotiation")
        except errors.ActionTimeoutError:
            log.warn("Negotiation timed out", {"banner": candidate.key, "trail": [s.value for s in run.trail]})
            return self._failure(run, "timeout")
        except Exception as exc:
            log.error("Negotiation failed", {"banner": candidate.key, "error": errors.get_error_message(exc)})
            return self._failure(run, "error")

    # ── States ──────────────────────────────────────────────────

    async def _negotiate(self, run: _Run) -> processing.NegotiationResult:
        run.enter(State.BANNER_FOUND)

        run.enter(State.DIRECT_REJECT_ATTEMPTED)
        direct = await self.agent.attempt_direct(run.candidate, run.document)
        run.clicks += direct.attempts
        if direct.success:
            return self._success(run, direct.method, direct.confidence, direct.button_text)

        run.enter(State.PREFERENCE_SEARCH)
        manage = await self._find_manage(run)
        if manage is None:
            run.enter(State.PROGRESSIVE_FLOW)
            outcome = await self._progressive(run)
            if isinstance(outcome, processing.NegotiationResult):
                return outcome
            manage = outcome
        if manage is None:
            return self._failure(run, "no-preference-center")

        if not await self._click(run, manage):
            return self._failure(run, "action-ineffective")

        run.enter(State.PREFERENCE_OPENED)
        container = await self._await_preferences(run, exclude=manage.key)
        if container is None:
            return self._failure(run, "preference-timeout")

        # Many preference centers offer their own "Reject all".
        for action in await self._scored_actions(container):
            if self.classifier.is_safe_to_click(action.reject_score) and await self.agent.click_action(action):
                run.clicks += 1
                return self._success(run, "preference-reject-all", action.reject_score, action.text)

        run.enter(State.CATEGORY_CONFIGURATION)
        steps = await self.configurator.configure(container, run.profile.toggle_selectors or frameworks.GENERIC_TOGGLE_SELECTORS)
        if not steps:
            steps = await self.configurator.configure(run.document, run.profile.toggle_selectors or frameworks.GENERIC_TOGGLE_SELECTORS)

        run.enter(State.SAVE_PREFERENCES)
        save = await self._find_save(run, container)
        if save is None:
            result = self._failure(run, "no-save-button")
            result.steps = steps
            return result
        if not await self._click(run, save.element):
            result = self._failure(run, "action-ineffective")
            result.steps = steps
            return result

        result = self._success(run, "preference-center", PREFERENCE_FLOW_CONFIDENCE, save.text)
        result.steps = steps
        return result

    async def _find_manage(self, run: _Run) -> element.PageElement | None:
        for selector in run.profile.manage_selectors:
            for scored in await self._scored_query(run.document, selector):
                return scored.element
        for action in run.candidate.actions:
            if is_manage_label(action.text):
                log.debug("Preference entry found", {"text": action.text[:60]})
                return action.element
        return None

    async def _progressive(self, run: _Run) -> processing.NegotiationResult | element.PageElement | None:
        """Click through "Continue/Next" wizards looking for a way out."""
        clicked: set[str] = set()
        for step in range(self.settings.progressive_max_steps):
            actions = await self._scored_actions(run.candidate.element) or await self._scored_actions(run.document)
            forward = next(
                (
                    a
                    for a in actions
                    if a.element.key not in clicked
                    and keywords.contains_any(a.text, keywords.PROGRESSIVE_LABELS)
                    and not self.classifier.is_accept_like(a.snapshot)
                    and not is_accept_all_label(a.text)
                ),
                None,
            )
            if forward is None:
                return None
            clicked.add(forward.element.key)
            if not await self._click(run, forward.element):
                return None
            log.debug("Progressive step", {"step": step + 1, "text": forward.text[:60]})
            await asyncio.sleep(self.settings.mutation_delay)

            # After each step the next screen may live anywhere in the page.
            page_actions = await self._scored_actions(run.document)
            for action in sorted(page_actions, key=lambda a: a.reject_score, reverse=True):
                if self.classifier.is_safe_to_click(action.reject_score):
                    run.clicks += 1
                    if await self.agent.click_and_verify(action, run.candidate.element):
                        return self._success(run, "progressive-flow", action.reject_score, action.text)
                    break
            for action in page_actions:
                if is_manage_label(action.text):
                    return action.element
        return None

    async def _await_preferences(self, run: _Run, *, exclude: str) -> element.PageElement | None:
        found: list[element.PageElement] = []

        async def indicator_visible() -> bool:
            for selector in run.profile.preference_selectors:
                try:
                    matches = await run.document.query_all(selector)
                except Exception as exc:
                    log.debug("Indicator query failed", {"selector": selector, "error": str(exc)})
                    continue
                for match in matches:
                    if match.key == exclude:
                        continue
                    snap = await element.safe_snapshot(match)
                    if snap is not None and snap.is_rendered and snap.tag.lower() not in _NON_CONTAINER_TAGS:
                        found.append(match)
                        return True
            return False

        opened = await timing.poll_until(
            indicator_visible,
            interval=self.settings.preference_poll_interval,
            timeout=self.settings.preference_timeout,
            context="preference-center",
        )
        if not opened:
            log.warn("Preference center did not open", {"banner": run.candidate.key})
            return None
        return found[-1]

    async def _find_save(self, run: _Run, container: element.PageElement) -> processing.ActionElement | None:
        for selector in run.profile.save_selectors:
            for scored in await self._scored_query(run.document, selector):
                if not is_accept_all_label(scored.text):
                    return scored
        for root in (container, run.document):
            for action in await self._scored_actions(root):
                if is_save_label(action.text):
                    return action
        return None

    # ── Helpers ─────────────────────────────────────────────────

    async def _scored_actions(self, root: element.PageElement | element.PageDocument) -> list[processing.ActionElement]:
        try:
            if isinstance(root, element.PageElement):
                nodes = await root.action_elements()
            else:
                nodes = await root.query_all(element.ACTION_SELECTOR)
        except Exception as exc:
            log.debug("Action query failed", {"error": errors.get_error_message(exc)})
            return []
        return await self.classifier.score_elements(nodes)

    async def _scored_query(self, root: element.PageDocument, selector: str) -> list[processing.ActionElement]:
        try:
            return await self.classifier.score_elements(await root.query_all(selector))
        except Exception as exc:
            log.debug("Selector query failed", {"selector": selector, "error": errors.get_error_message(exc)})
            return []

    async def _click(self, run: _Run, target: element.PageElement) -> bool:
        try:
            clicked = await timing.with_timeout(target.click(), self.settings.rule_step_timeout, context="click")
        except errors.ActionTimeoutError:
            return False
        if clicked:
            run.clicks += 1
            await asyncio.sleep(self.settings.mutation_delay)
        return clicked

    def _success(self, run: _Run, method: str, confidence: float, button_text: str | None) -> processing.NegotiationResult:
        run.enter(State.SUCCESS)
        log.success("Negotiation succeeded", {"method": method, "clicks": run.clicks})
        return processing.NegotiationResult(
            success=True,
            state=State.SUCCESS,
            method=method,
            confidence=confidence,
            button_text=button_text,
            clicks=run.clicks,
            trail=list(run.trail),
        )

    def _failure(self, run: _Run, reason: str) -> processing.NegotiationResult:
        run.enter(State.FAILURE)
        log.warn("Negotiation failed", {"reason": reason, "banner": run.candidate.key})
        return processing.NegotiationResult(
            success=False,
            state=State.FAILURE,
            method="negotiation",
            reason=reason,
            clicks=run.clicks,
            trail=list(run.trail),
        )
