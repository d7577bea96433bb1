"""Tests for strategy selection, arbitration and outcome recording."""

from __future__ import annotations

import asyncio

import pytest

from cookie_marshal import complexity, config, coordinator, history, notify
from cookie_marshal.consent import classifier as element_classifier
from cookie_marshal.consent import rule_agent
from cookie_marshal.learning import engine as learning_engine
from cookie_marshal.learning import optimizer as q_optimizer
from cookie_marshal.models import consent, page, processing
from cookie_marshal.negotiation import machine
from tests.conftest import FakeDocument, FakeElement, bottom_bar, button

VIEWPORT = page.Viewport(width=1280, height=720)


def _coordinator(settings: config.AgentSettings, *, learning: bool = False) -> coordinator.StrategyCoordinator:
    classifier = element_classifier.ElementClassifier(settings)
    agent = rule_agent.RuleBasedAgent(classifier, settings)
    engine = None
    if learning:
        greedy = settings.model_copy(update={"epsilon": 0.0})
        engine = learning_engine.LearningEngine(q_optimizer.QLearningOptimizer(settings=greedy), settings)
    return coordinator.StrategyCoordinator(
        estimator=complexity.ComplexityEstimator(settings),
        machine=machine.NegotiationStateMachine(agent, settings=settings),
        history_store=history.DomainHistoryStore(settings=settings),
        learning=engine,
        notifier=notify.LogNotifier(),
        settings=settings,
    )


def _profile(level: consent.ComplexityLevel, score: float = 0.5, domain: str = "example.com") -> consent.ComplexityProfile:
    return consent.ComplexityProfile(
        domain=domain,
        score=score,
        level=level,
        recommendation=complexity.ComplexityEstimator.recommendation_for(level),
        factors=consent.ComplexityFactors(),
    )


async def _reject_banner(
    coord: coordinator.StrategyCoordinator,
    body: FakeElement,
    *,
    dismiss: bool = True,
) -> processing.BannerCandidate:
    bar = body.append(bottom_bar("We use cookies to improve your experience"))
    bar.append(button("Accept All"))
    bar.append(button("Reject All", remove=bar if dismiss else None))
    candidate = await coord.agent.classifier.build_candidate(bar, VIEWPORT)
    assert candidate is not None
    return candidate


# ── Arbitration ─────────────────────────────────────────────────


class TestChooseBest:
    @pytest.mark.parametrize(
        ("rule", "learning", "expected"),
        [
            (0.5, 0.8, "learning"),
            (0.5, 0.7, "rule"),
            (0.0, 0.21, "learning"),
            (0.9, 0.1, "rule"),
            (0.9, 1.0, "rule"),
        ],
    )
    def test_margin(self, rule: float, learning: float, expected: str) -> None:
        assert coordinator.choose_best(rule, learning, 0.2) == expected


# ── Strategy selection ──────────────────────────────────────────


class TestSelectStrategy:
    def test_rule_only_without_learning(self, settings: config.AgentSettings) -> None:
        coord = _coordinator(settings)
        for level in ("low", "medium", "high"):
            assert coord.select_strategy(_profile(level)).strategy == "rule-only"

    @pytest.mark.asyncio
    async def test_uninitialised_learning_is_rule_only(self, settings: config.AgentSettings) -> None:
        coord = _coordinator(settings, learning=True)
        assert not coord.learning_ready
        assert coord.select_strategy(_profile("high")).strategy == "rule-only"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("level", "strategy"),
        [
            ("low", "rule-only"),
            ("medium", "parallel-evaluation"),
            ("high", "learning-primary-with-fallback"),
        ],
    )
    async def test_by_level(self, settings: config.AgentSettings, level: consent.ComplexityLevel, strategy: str) -> None:
        coord = _coordinator(settings, learning=True)
        assert coord.learning is not None
        await coord.learning.initialize()
        assert coord.select_strategy(_profile(level)).strategy == strategy

    @pytest.mark.asyncio
    async def test_parallel_carries_timeout(self, settings: config.AgentSettings) -> None:
        coord = _coordinator(settings, learning=True)
        assert coord.learning is not None
        await coord.learning.initialize()
        decision = coord.select_strategy(_profile("medium"))
        assert decision.timeout == settings.parallel_timeout
        assert decision.fallback == "rule-only"

    @pytest.mark.asyncio
    async def test_low_with_difficult_history(self, settings: config.AgentSettings) -> None:
        coord = _coordinator(settings, learning=True)
        assert coord.learning is not None
        await coord.learning.initialize()
        for _ in range(3):
            coord.history.record("example.com", consent.ProcessingOutcome(success=False, method="direct-reject"))
        decision = coord.select_strategy(_profile("low", 0.1))
        assert decision.strategy == "rule-primary-with-fallback"


# ── Processing ──────────────────────────────────────────────────


class TestProcess:
    @pytest.mark.asyncio
    async def test_rejects_and_records(
        self,
        settings: config.AgentSettings,
        body: FakeElement,
        document: FakeDocument,
    ) -> None:
        coord = _coordinator(settings)
        candidate = await _reject_banner(coord, body)
        result = await coord.process(candidate, document, await document.page_stats())

        assert result.success
        assert result.method == "direct-reject"
        assert result.strategy == "rule-only"
        assert result.complexity is not None
        assert result.reason is None
        outcomes = coord.history.get("example.com").outcomes
        assert len(outcomes) == 1 and outcomes[0].success
        assert "reject all" in coord.history.learned_phrases("example.com")
        assert isinstance(coord.notifier, notify.LogNotifier)
        assert coord.notifier.sent == 1

    @pytest.mark.asyncio
    async def test_is_idempotent_per_banner(
        self,
        settings: config.AgentSettings,
        body: FakeElement,
        document: FakeDocument,
    ) -> None:
        coord = _coordinator(settings)
        candidate = await _reject_banner(coord, body, dismiss=False)
        context = await document.page_stats()
        await coord.process(candidate, document, context)
        again = await coord.process(candidate, document, context)
        assert again.method == "skipped"
        assert again.reason == "already-processed"
        assert len(coord.history.get("example.com").outcomes) == 1
        assert coord.stats.processed == 1

    @pytest.mark.asyncio
    async def test_never_raises(
        self,
        settings: config.AgentSettings,
        body: FakeElement,
        document: FakeDocument,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        coord = _coordinator(settings)
        candidate = await _reject_banner(coord, body)

        def explode(*_args: object, **_kwargs: object) -> consent.ComplexityProfile:
            raise RuntimeError("estimator broke")

        monkeypatch.setattr(coord.estimator, "estimate", explode)
        result = await coord.process(candidate, document, await document.page_stats())
        assert not result.success
        assert result.reason == "error"
        assert coord.stats.failed == 1
        assert coord.history.get("example.com").outcomes[0].reason == "error"

    @pytest.mark.asyncio
    async def test_failure_leaves_banner_alone(
        self,
        settings: config.AgentSettings,
        body: FakeElement,
        document: FakeDocument,
    ) -> None:
        coord = _coordinator(settings)
        bar = body.append(bottom_bar("We use cookies to improve your experience"))
        accept = bar.append(button("Accept All"))
        candidate = await coord.agent.classifier.build_candidate(bar, VIEWPORT)
        assert candidate is not None
        result = await coord.process(candidate, document, await document.page_stats())
        assert not result.success
        assert result.reason == "no-preference-center"
        assert accept.clicks == 0
        assert bar.connected

    @pytest.mark.asyncio
    async def test_learning_records_experience(
        self,
        settings: config.AgentSettings,
        body: FakeElement,
        document: FakeDocument,
    ) -> None:
        coord = _coordinator(settings, learning=True)
        assert coord.learning is not None and coord.learning.optimizer is not None
        await coord.learning.initialize()
        candidate = await _reject_banner(coord, body)
        result = await coord.process(candidate, document, await document.page_stats())
        assert result.success
        assert coord.learning.optimizer.total_experiences == 1

    @pytest.mark.asyncio
    async def test_high_complexity_uses_learning_path(
        self,
        settings: config.AgentSettings,
        body: FakeElement,
        document: FakeDocument,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        coord = _coordinator(settings, learning=True)
        assert coord.learning is not None
        await coord.learning.initialize()
        monkeypatch.setattr(coord.estimator, "estimate", lambda *_a, **_k: _profile("high", 0.8))
        candidate = await _reject_banner(coord, body)
        result = await coord.process(candidate, document, await document.page_stats())
        assert result.success
        assert result.strategy == "learning-primary-with-fallback"
        assert result.method.startswith("learning:")

    @pytest.mark.asyncio
    async def test_high_complexity_falls_back_to_rules(
        self,
        settings: config.AgentSettings,
        body: FakeElement,
        document: FakeDocument,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        coord = _coordinator(settings, learning=True)
        assert coord.learning is not None
        await coord.learning.initialize()

        async def broken(*_args: object) -> consent.LearningAnalysis:
            raise RuntimeError("model unavailable")

        monkeypatch.setattr(coord.estimator, "estimate", lambda *_a, **_k: _profile("high", 0.8))
        monkeypatch.setattr(coord.learning, "analyze", broken)
        candidate = await _reject_banner(coord, body)
        result = await coord.process(candidate, document, await document.page_stats())
        assert result.success
        assert result.method == "direct-reject"

    @pytest.mark.asyncio
    async def test_parallel_rule_wins(
        self,
        settings: config.AgentSettings,
        body: FakeElement,
        document: FakeDocument,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        coord = _coordinator(settings, learning=True)
        assert coord.learning is not None
        await coord.learning.initialize()
        monkeypatch.setattr(coord.estimator, "estimate", lambda *_a, **_k: _profile("medium"))
        candidate = await _reject_banner(coord, body)
        result = await coord.process(candidate, document, await document.page_stats())
        assert result.success
        assert result.strategy == "parallel-evaluation"
        assert coord.stats.rule_wins == 1
        assert result.method == "direct-reject"

    @pytest.mark.asyncio
    async def test_parallel_learning_wins(
        self,
        settings: config.AgentSettings,
        body: FakeElement,
        document: FakeDocument,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        coord = _coordinator(settings, learning=True)
        assert coord.learning is not None
        await coord.learning.initialize()
        candidate = await _reject_banner(coord, body)
        reject_index = next(i for i, a in enumerate(candidate.actions) if a.text == "reject all")

        async def weak_plan(*_args: object) -> processing.RulePlan:
            return processing.RulePlan(confidence=0.4)

        async def strong_analysis(*_args: object) -> consent.LearningAnalysis:
            return consent.LearningAnalysis(
                state="none_bottom_2_en",
                recommended_action="learning-text-analysis",
                confidence=0.9,
                best_button_index=reject_index,
            )

        monkeypatch.setattr(coord.estimator, "estimate", lambda *_a, **_k: _profile("medium"))
        monkeypatch.setattr(coord.agent, "evaluate", weak_plan)
        monkeypatch.setattr(coord.learning, "analyze", strong_analysis)
        result = await coord.process(candidate, document, await document.page_stats())

        assert result.success
        assert result.strategy == "parallel-evaluation"
        assert result.method == "learning:text-analysis"
        assert coord.stats.learning_wins == 1
        assert coord.stats.rule_wins == 0
        assert not await candidate.element.is_connected()

    @pytest.mark.asyncio
    async def test_parallel_learning_win_that_fails_falls_back_to_rules(
        self,
        settings: config.AgentSettings,
        body: FakeElement,
        document: FakeDocument,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        coord = _coordinator(settings, learning=True)
        assert coord.learning is not None
        await coord.learning.initialize()
        candidate = await _reject_banner(coord, body)
        accept_index = next(i for i, a in enumerate(candidate.actions) if a.text == "accept all")

        async def weak_plan(*_args: object) -> processing.RulePlan:
            return processing.RulePlan(confidence=0.4)

        async def misguided_analysis(*_args: object) -> consent.LearningAnalysis:
            return consent.LearningAnalysis(
                state="none_bottom_2_en",
                recommended_action="learning-text-analysis",
                confidence=0.9,
                best_button_index=accept_index,
            )

        monkeypatch.setattr(coord.estimator, "estimate", lambda *_a, **_k: _profile("medium"))
        monkeypatch.setattr(coord.agent, "evaluate", weak_plan)
        monkeypatch.setattr(coord.learning, "analyze", misguided_analysis)
        result = await coord.process(candidate, document, await document.page_stats())

        assert coord.stats.learning_wins == 1
        assert result.success
        assert result.method == "direct-reject"
        assert not await candidate.element.is_connected()

    @pytest.mark.asyncio
    async def test_parallel_timeout_falls_back(
        self,
        settings: config.AgentSettings,
        body: FakeElement,
        document: FakeDocument,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        fast = settings.model_copy(update={"parallel_timeout": 0.05})
        coord = _coordinator(fast, learning=True)
        assert coord.learning is not None
        await coord.learning.initialize()

        async def stalled(*_args: object) -> consent.LearningAnalysis:
            await asyncio.sleep(5)
            raise AssertionError("not reached")

        monkeypatch.setattr(coord.estimator, "estimate", lambda *_a, **_k: _profile("medium"))
        monkeypatch.setattr(coord.learning, "analyze", stalled)
        candidate = await _reject_banner(coord, body)
        result = await coord.process(candidate, document, await document.page_stats())
        assert result.success
        assert coord.stats.parallel_fallbacks == 1

    @pytest.mark.asyncio
    async def test_stats_summary(self, settings: config.AgentSettings, body: FakeElement, document: FakeDocument) -> None:
        coord = _coordinator(settings)
        await coord.process(await _reject_banner(coord, body), document, await document.page_stats())
        summary = coord.stats_summary()
        assert summary["processed"] == 1
        assert summary["succeeded"] == 1
        assert summary["averageTimeMs"] >= 0.0
