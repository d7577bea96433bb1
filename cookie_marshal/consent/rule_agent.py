"""
Rule-based dismissal strategies.

Every click goes through :meth:`RuleBasedAgent.click_and_verify`,
which refuses elements whose reject score does not clear the
safe-click threshold, bounds the click itself, and then polls
briefly for the banner to disappear.

Strategies, in the order ``attempt_direct`` runs them:

1. direct reject: the best-scoring safe action,
2. framework-specific selectors for recognised products,
3. multi-button: every remaining safe action, best first,
4. single-button: a lone control that is not accept-like.
"""

from __future__ import annotations

from cookie_marshal import config
from cookie_marshal.consent import classifier as element_classifier
from cookie_marshal.dom import element
from cookie_marshal.models import consent, processing
from cookie_marshal.negotiation import frameworks
from cookie_marshal.utils import errors, logger, timing

log = logger.create_logger("Rule-Agent")


class RuleBasedAgent:
    """Deterministic reject-button strategies over one banner."""

    def __init__(
        self,
        classifier: element_classifier.ElementClassifier,
        settings: config.AgentSettings | None = None,
    ) -> None:
        self.classifier = classifier
        self.settings = settings or classifier.settings

    # ── Primitives ──────────────────────────────────────────────

    async def is_gone(self, node: element.PageElement) -> bool:
        """True once *node* is detached or no longer visible."""
        if not await node.is_connected():
            return True
        return not await node.is_visible()

    async def click_action(self, action: processing.ActionElement) -> bool:
        """Click *action* if it scores as a safe reject.  No verification."""
        if not self.classifier.is_safe_to_click(action.reject_score):
            log.debug("Refusing unsafe click", {"text": action.text[:60], "score": action.reject_score})
            return False
        try:
            return await timing.with_timeout(action.element.click(), self.settings.rule_step_timeout, context="click")
        except errors.ActionTimeoutError:
            log.warn("Click timed out", {"text": action.text[:60]})
            return False
        except Exception as exc:
            log.warn("Click failed", {"text": action.text[:60], "error": errors.get_error_message(exc)})
            return False

    async def click_and_verify(self, action: processing.ActionElement, banner: element.PageElement) -> bool:
        """Click a safe reject action and wait for *banner* to go away."""
        if not await self.click_action(action):
            return False
        gone = await timing.poll_until(
            lambda: self.is_gone(banner),
            interval=self.settings.click_verify_interval,
            timeout=self.settings.click_verify_timeout,
            context="click-verify",
        )
        if gone:
            log.success("Banner dismissed", {"button": action.text[:60], "score": action.reject_score})
        else:
            log.debug("Banner still visible after click", {"button": action.text[:60]})
        return gone

    # ── Evaluation (no side effects) ────────────────────────────

    async def _framework_actions(
        self,
        candidate: processing.BannerCandidate,
        document: element.PageDocument | None,
    ) -> list[processing.ActionElement]:
        profile = frameworks.profile_for(candidate.framework)
        found: list[processing.ActionElement] = []
        seen: set[str] = set()
        for selector in profile.reject_selectors:
            roots: list[element.PageElement | element.PageDocument] = [candidate.element]
            if document is not None:
                roots.append(document)
            for root in roots:
                try:
                    matches = await root.query_all(selector)
                except Exception as exc:
                    log.debug("Selector query failed", {"selector": selector, "error": str(exc)})
                    continue
                for scored in await self.classifier.score_elements(matches):
                    if scored.element.key not in seen:
                        seen.add(scored.element.key)
                        found.append(scored)
        return sorted(found, key=lambda a: a.reject_score, reverse=True)

    async def evaluate(
        self,
        candidate: processing.BannerCandidate,
        document: element.PageDocument | None = None,
    ) -> processing.RulePlan:
        """What the rule path would click, and how confident it is."""
        safe = candidate.safe_actions(self.settings.safe_click_threshold)
        if safe:
            return processing.RulePlan(confidence=safe[0].reject_score, action=safe[0], strategy="direct-reject")
        for action in await self._framework_actions(candidate, document):
            if self.classifier.is_safe_to_click(action.reject_score):
                return processing.RulePlan(confidence=action.reject_score, action=action, strategy="framework-specific")
        best = max((a.reject_score for a in candidate.actions), default=0.0)
        return processing.RulePlan(confidence=best, action=None, strategy="none")

    # ── Strategies ──────────────────────────────────────────────

    async def try_direct(self, candidate: processing.BannerCandidate) -> processing.ProcessingResult | None:
        safe = candidate.safe_actions(self.settings.safe_click_threshold)
        if not safe:
            return None
        best = safe[0]
        if await self.click_and_verify(best, candidate.element):
            return self._success("direct-reject", best, attempts=1)
        return processing.ProcessingResult.failed("direct-reject", "action-ineffective", attempts=1)

    async def try_framework(
        self,
        candidate: processing.BannerCandidate,
        document: element.PageDocument | None,
    ) -> processing.ProcessingResult | None:
        if candidate.framework is None or candidate.framework not in frameworks.PROFILES:
            return None
        attempts = 0
        for action in await self._framework_actions(candidate, document):
            if not self.classifier.is_safe_to_click(action.reject_score):
                continue
            attempts += 1
            if await self.click_and_verify(action, candidate.element):
                return self._success("framework-specific", action, attempts=attempts)
        if attempts:
            return processing.ProcessingResult.failed("framework-specific", "action-ineffective", attempts=attempts)
        return None

    async def try_multiple_buttons(
        self,
        candidate: processing.BannerCandidate,
        *,
        skip: set[str] | None = None,
    ) -> processing.ProcessingResult | None:
        """Click every safe candidate in score order until one works."""
        skip = skip or set()
        attempts = 0
        for action in candidate.safe_actions(self.settings.safe_click_threshold):
            if action.element.key in skip:
                continue
            if await self.is_gone(candidate.element):
                break
            attempts += 1
            if await self.click_and_verify(action, candidate.element):
                return self._success("multi-button", action, attempts=attempts)
        if attempts:
            return processing.ProcessingResult.failed("multi-button", "action-ineffective", attempts=attempts)
        return None

    async def try_single_button(self, candidate: processing.BannerCandidate) -> processing.ProcessingResult | None:
        """Re-read the banner's controls and click a lone safe, non-accept one."""
        try:
            live = await self.classifier.score_elements(await candidate.element.action_elements())
        except Exception as exc:
            log.debug("Single-button lookup failed", {"error": errors.get_error_message(exc)})
            return None
        if len(live) != 1:
            return None
        only = live[0]
        if self.classifier.is_accept_like(only.snapshot) or not self.classifier.is_safe_to_click(only.reject_score):
            return None
        if await self.click_and_verify(only, candidate.element):
            return self._success("single-button", only, attempts=1)
        return processing.ProcessingResult.failed("single-button", "action-ineffective", attempts=1)

    async def attempt_direct(
        self,
        candidate: processing.BannerCandidate,
        document: element.PageDocument | None = None,
    ) -> processing.ProcessingResult:
        """Run the direct strategies in order, stopping at the first success."""
        attempts = 0
        tried: set[str] = set()

        result = await self.try_direct(candidate)
        if result is not None:
            attempts += result.attempts
            if result.success:
                return result
            safe = candidate.safe_actions(self.settings.safe_click_threshold)
            tried.add(safe[0].element.key)

        for step in (
            lambda: self.try_framework(candidate, document),
            lambda: self.try_multiple_buttons(candidate, skip=tried),
            lambda: self.try_single_button(candidate),
        ):
            if await self.is_gone(candidate.element):
                break
            result = await step()
            if result is None:
                continue
            attempts += result.attempts
            if result.success:
                result.attempts = attempts
                return result

        return processing.ProcessingResult.failed(
            "direct-reject",
            "action-ineffective" if attempts else "no-reject-button",
            attempts=attempts,
        )

    async def execute_guided(
        self,
        candidate: processing.BannerCandidate,
        analysis: consent.LearningAnalysis,
        document: element.PageDocument | None = None,
    ) -> processing.ProcessingResult:
        """Carry out the learning path's recommended action."""
        action = analysis.recommended_action
        result: processing.ProcessingResult | None = None

        if action in ("learning-text-analysis", "hybrid") and analysis.best_button_index is not None:
            best = candidate.actions[analysis.best_button_index]
            if await self.click_and_verify(best, candidate.element):
                result = self._success("text-analysis", best, attempts=1)
            if result is None and action == "hybrid":
                result = await self.attempt_direct(candidate, document)
        elif action == "aggressive-multi-click":
            result = await self.try_multiple_buttons(candidate)
        elif action == "conservative-minimal-click":
            result = await self.try_single_button(candidate) or await self.try_direct(candidate)
        else:
            result = await self.attempt_direct(candidate, document)

        if result is None:
            result = processing.ProcessingResult.failed(action, "no-reject-button")
        result.path = "learning"
        result.method = f"learning:{result.method}"
        result.confidence = analysis.confidence
        return result

    def _success(self, method: str, action: processing.ActionElement, *, attempts: int) -> processing.ProcessingResult:
        return processing.ProcessingResult(
            success=True,
            method=method,
            confidence=action.reject_score,
            button_text=action.text,
            attempts=attempts,
        )
