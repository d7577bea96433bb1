"""
Strategy coordinator.

Per banner: assess complexity, select a strategy, execute it, record
the outcome.  The coordinator is the top of the dependency graph:
it calls down into the estimator, the negotiation machine, the rule
agent and the learning engine, and nothing calls back into it.

Strategy selection:

- learning unavailable or uninitialized: rule-only
- low complexity: rule-only, or rule-primary-with-fallback when the
  domain's history is harder than neutral
- medium complexity: parallel evaluation with arbitration
- high complexity: learning-primary with rule fallback

Parallel evaluation only *evaluates* both paths concurrently (no
clicks), so the loser is cancelled without side effects and only the
winning plan is executed.

:meth:`StrategyCoordinator.process` never raises.
"""

from __future__ import annotations

import asyncio
import dataclasses
import time
from typing import Literal

from cookie_marshal import complexity, config, history, notify
from cookie_marshal.consent import rule_agent
from cookie_marshal.dom import element
from cookie_marshal.learning import engine as learning_engine
from cookie_marshal.learning import optimizer as q_optimizer
from cookie_marshal.models import consent, page, processing
from cookie_marshal.negotiation import machine as negotiation
from cookie_marshal.utils import errors, logger, timing

log = logger.create_logger("Coordinator")

Winner = Literal["rule", "learning"]


def choose_best(rule_confidence: float, learning_confidence: float, margin: float) -> Winner:
    """Learning wins only when it beats the rule path by more than *margin*."""
    if learning_confidence - rule_confidence > margin:
        return "learning"
    return "rule"


@dataclasses.dataclass
class CoordinatorStats:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    rule_wins: int = 0
    learning_wins: int = 0
    parallel_fallbacks: int = 0
    total_time_ms: float = 0.0

    @property
    def average_time_ms(self) -> float:
        return self.total_time_ms / self.processed if self.processed else 0.0


class StrategyCoordinator:
    """Chooses and runs the processing strategy for each banner."""

    def __init__(
        self,
        *,
        estimator: complexity.ComplexityEstimator,
        machine: negotiation.NegotiationStateMachine,
        history_store: history.DomainHistoryStore,
        learning: learning_engine.LearningEngine | None = None,
        notifier: notify.Notifier | None = None,
        settings: config.AgentSettings | None = None,
        processed: set[str] | None = None,
    ) -> None:
        self.settings = settings or config.get_settings()
        self.estimator = estimator
        self.machine = machine
        self.agent: rule_agent.RuleBasedAgent = machine.agent
        self.history = history_store
        self.learning = learning
        self.notifier = notifier
        self.processed: set[str] = processed if processed is not None else set()
        self.stats = CoordinatorStats()

    @property
    def learning_ready(self) -> bool:
        return self.learning is not None and self.learning.initialized

    # ── Selection ───────────────────────────────────────────────

    def select_strategy(self, profile: consent.ComplexityProfile) -> consent.StrategyDecision:
        if not self.learning_ready:
            return consent.StrategyDecision(strategy="rule-only", confidence=1.0 - profile.score, reason="learning-unavailable")

        if profile.level == "low":
            if self.history.historical_difficulty(profile.domain) > complexity.NEUTRAL_HISTORY:
                return consent.StrategyDecision(
                    strategy="rule-primary-with-fallback",
                    confidence=1.0 - profile.score,
                    fallback="learning-primary-with-fallback",
                    reason="low-complexity-difficult-history",
                )
            return consent.StrategyDecision(strategy="rule-only", confidence=1.0 - profile.score, reason="low-complexity")

        if profile.level == "medium":
            return consent.StrategyDecision(
                strategy="parallel-evaluation",
                confidence=0.5,
                fallback="rule-only",
                timeout=self.settings.parallel_timeout,
                reason="medium-complexity",
            )

        return consent.StrategyDecision(
            strategy="learning-primary-with-fallback",
            confidence=profile.score,
            fallback="rule-only",
            reason="high-complexity",
        )

    # ── Paths ───────────────────────────────────────────────────

    async def _rule_path(
        self,
        candidate: processing.BannerCandidate,
        document: element.PageDocument,
    ) -> processing.ProcessingResult:
        outcome = await self.machine.run(candidate, document)
        return processing.ProcessingResult(
            success=outcome.success,
            method=outcome.method,
            path="rule-based",
            confidence=outcome.confidence,
            reason=outcome.reason,
            button_text=outcome.button_text,
            attempts=outcome.clicks,
            steps=outcome.steps,
        )

    async def _analyze(
        self,
        candidate: processing.BannerCandidate,
        state: q_optimizer.QState,
    ) -> consent.LearningAnalysis:
        if self.learning is None:
            raise errors.StrategyExhaustedError("learning path unavailable", reason="learning-unavailable")
        return await timing.with_timeout(
            self.learning.analyze(candidate, state),
            self.settings.learning_timeout,
            context="learning",
        )

    async def _learning_path(
        self,
        candidate: processing.BannerCandidate,
        document: element.PageDocument,
        state: q_optimizer.QState,
        analysis: consent.LearningAnalysis | None = None,
    ) -> tuple[processing.ProcessingResult, str]:
        if analysis is None:
            try:
                analysis = await self._analyze(candidate, state)
            except Exception as exc:
                reason = errors.get_error_reason(exc)
                log.warn("Learning analysis unavailable", {"reason": reason})
                return processing.ProcessingResult.failed("learning", reason, path="learning"), "learning-text-analysis"
        result = await self.agent.execute_guided(candidate, analysis, document)
        return result, analysis.recommended_action

    async def _execute(
        self,
        decision: consent.StrategyDecision,
        candidate: processing.BannerCandidate,
        document: element.PageDocument,
        state: q_optimizer.QState,
    ) -> tuple[processing.ProcessingResult, str]:
        if decision.strategy == "rule-only":
            return await self._rule_path(candidate, document), "rule-based-primary"

        if decision.strategy == "rule-primary-with-fallback":
            rule = await self._rule_path(candidate, document)
            if rule.success and rule.confidence > self.settings.rule_confidence_minimum:
                return rule, "rule-based-primary"
            learned, action = await self._learning_path(candidate, document, state)
            if learned.confidence > rule.confidence and (learned.success or not rule.success):
                return learned, action
            return rule, "rule-based-primary"

        if decision.strategy == "learning-primary-with-fallback":
            learned, action = await self._learning_path(candidate, document, state)
            if learned.success:
                return learned, action
            log.info("Learning path failed, falling back to rules", {"reason": learned.reason})
            return await self._rule_path(candidate, document), "rule-based-fallback"

        return await self._parallel(decision, candidate, document, state)

    async def _parallel(
        self,
        decision: consent.StrategyDecision,
        candidate: processing.BannerCandidate,
        document: element.PageDocument,
        state: q_optimizer.QState,
    ) -> tuple[processing.ProcessingResult, str]:
        timeout = decision.timeout or self.settings.parallel_timeout
        try:
            plan, analysis = await timing.with_timeout(
                asyncio.gather(self.agent.evaluate(candidate, document), self._analyze(candidate, state)),
                timeout,
                context="parallel",
            )
        except Exception as exc:
            # Both evaluations are side-effect free; gather cancels the survivor.
            self.stats.parallel_fallbacks += 1
            log.warn("Parallel evaluation failed, using rules", {"reason": errors.get_error_reason(exc)})
            return await self._rule_path(candidate, document), "rule-based-fallback"

        winner = choose_best(plan.confidence, analysis.confidence, self.settings.arbitration_margin)
        log.info(
            "Parallel arbitration",
            {"winner": winner, "ruleConfidence": plan.confidence, "learningConfidence": analysis.confidence},
        )
        if winner == "rule":
            self.stats.rule_wins += 1
            return await self._rule_path(candidate, document), "rule-based-primary"

        self.stats.learning_wins += 1
        learned, action = await self._learning_path(candidate, document, state, analysis)
        if learned.success:
            return learned, action
        return await self._rule_path(candidate, document), "rule-based-fallback"

    # ── Entry point ─────────────────────────────────────────────

    async def process(
        self,
        candidate: processing.BannerCandidate,
        document: element.PageDocument,
        context: page.PageContext,
        *,
        language: str = "en",
    ) -> processing.CoordinatorResult:
        """Process one banner.  Idempotent per candidate key."""
        if candidate.key in self.processed:
            log.debug("Banner already processed", {"key": candidate.key})
            return processing.CoordinatorResult(success=False, method="skipped", reason="already-processed")
        self.processed.add(candidate.key)

        start = time.monotonic()
        domain = context.hostname
        profile: consent.ComplexityProfile | None = None
        decision: consent.StrategyDecision | None = None
        state = q_optimizer.state_for(candidate, context.viewport, language)
        action = "rule-based-primary"

        log.subsection(f"Banner {candidate.key}")
        try:
            profile = self.estimator.estimate(candidate, context, self.history.get(domain))
            decision = self.select_strategy(profile)
            log.info("Strategy selected", {"strategy": decision.strategy, "level": profile.level, "reason": decision.reason})
            with log.timed(candidate.key, f"Strategy {decision.strategy}"):
                result, action = await timing.with_timeout(
                    self._execute(decision, candidate, document, state),
                    self.settings.banner_timeout,
                    context="banner",
                )
        except Exception as exc:
            log.error("Banner processing failed", {"key": candidate.key, "error": errors.get_error_message(exc)})
            result = processing.ProcessingResult.failed("error", errors.get_error_reason(exc))

        duration = timing.elapsed_ms(start)
        outcome = consent.ProcessingOutcome(
            success=result.success,
            method=result.method,
            path=result.path,
            confidence=result.confidence,
            duration_ms=duration,
            button_text=result.button_text,
            attempts=max(result.attempts, 1),
            reason=result.reason,
        )
        await self._record(domain, candidate, state, action, outcome)

        self.stats.processed += 1
        self.stats.total_time_ms += duration
        if result.success:
            self.stats.succeeded += 1
        else:
            self.stats.failed += 1
        self._notify(domain, result, decision)

        return processing.CoordinatorResult(
            success=result.success,
            method=result.method,
            confidence=result.confidence,
            reason=None if result.success else result.reason or "strategy-exhausted",
            strategy=decision.strategy if decision else None,
            complexity=profile,
            duration_ms=duration,
            button_text=result.button_text,
        )

    async def _record(
        self,
        domain: str,
        candidate: processing.BannerCandidate,
        state: q_optimizer.QState,
        action: str,
        outcome: consent.ProcessingOutcome,
    ) -> None:
        try:
            self.history.record(domain, outcome)
            if outcome.success:
                self.history.learn(domain, outcome.button_text, candidate.snapshot.text)
        except Exception as exc:
            log.warn("Outcome recording failed", {"domain": domain, "error": errors.get_error_message(exc)})

        if not self.learning_ready or self.learning is None or self.learning.optimizer is None:
            return
        try:
            await timing.with_timeout(
                self.learning.optimizer.record_experience(state, action, outcome),
                self.settings.optimizer_call_timeout,
                context="optimizer",
            )
        except Exception as exc:
            log.warn("Experience not recorded", {"reason": errors.get_error_reason(exc)})

    def _notify(
        self,
        domain: str,
        result: processing.ProcessingResult,
        decision: consent.StrategyDecision | None,
    ) -> None:
        if self.notifier is None:
            return
        detail: dict[str, object] = {
            "domain": domain,
            "method": result.method,
            "strategy": decision.strategy if decision else None,
        }
        try:
            if result.success:
                self.notifier.notify("success", "Cookie banner rejected", {**detail, "button": result.button_text})
            else:
                # The banner is left as-is; no destructive fallback.
                self.notifier.notify("error", "Could not reject cookie banner", {**detail, "reason": result.reason})
        except Exception as exc:
            log.debug("Notifier failed", {"error": errors.get_error_message(exc)})

    def stats_summary(self) -> dict[str, object]:
        s = self.stats
        return {
            "processed": s.processed,
            "succeeded": s.succeeded,
            "failed": s.failed,
            "ruleWins": s.rule_wins,
            "learningWins": s.learning_wins,
            "parallelFallbacks": s.parallel_fallbacks,
            "averageTimeMs": s.average_time_ms,
        }
