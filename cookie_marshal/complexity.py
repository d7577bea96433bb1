"""
Complexity estimator.

Scores a banner, its page and the domain's recent history into a
0-1 difficulty value and a discrete level that the strategy
coordinator maps to a processing strategy.  Profiles are cached per
domain for ``complexity_cache_ttl`` seconds.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta

from cookie_marshal import config
from cookie_marshal.consent import constants, keywords
from cookie_marshal.models import consent, page, processing
from cookie_marshal.utils import cache, logger

log = logger.create_logger("Complexity")

WEIGHTS: dict[str, float] = {
    "banner_size": 0.15,
    "buttons": 0.25,
    "text": 0.15,
    "dom": 0.15,
    "framework": 0.15,
    "history": 0.15,
}

NEUTRAL_HISTORY = 0.5

TECHNICAL_TERMS: tuple[str, ...] = (
    "legitimate interest", "vendor", "vendors", "partners", "processing", "purposes", "iab", "tcf",
    "personal data", "profiling", "device identifiers", "precise geolocation", "storage",
    "cookies", "measurement", "audience", "data controller",
)

_WORD_RE = re.compile(r"\w+", re.UNICODE)


def _ratio(value: float, scale: float) -> float:
    return min(value / scale, 1.0) if scale > 0 else 0.0


def historical_difficulty(
    outcomes: list[consent.ProcessingOutcome],
    *,
    window_days: int = 7,
    now: datetime | None = None,
) -> float:
    """1 minus a blend of recent success rate and inverse attempts-to-success.

    Only outcomes from the last *window_days* count.  Returns the
    neutral 0.5 when there are none.
    """
    now = now or datetime.now(UTC)
    cutoff = now - timedelta(days=window_days)
    recent = [o for o in outcomes if o.timestamp >= cutoff]
    if not recent:
        return NEUTRAL_HISTORY

    successes = [o for o in recent if o.success]
    success_rate = len(successes) / len(recent)
    if successes:
        avg_attempts = sum(max(o.attempts, 1) for o in successes) / len(successes)
        efficiency = 1.0 / avg_attempts
    else:
        efficiency = 0.0
    return max(0.0, min(1.0, 1.0 - (0.7 * success_rate + 0.3 * efficiency)))


def banner_size_factor(snapshot: page.ElementSnapshot) -> float:
    return (
        _ratio(snapshot.rect.area, 500_000)
        + _ratio(snapshot.descendant_count, 100)
        + _ratio(snapshot.max_depth, 10)
    ) / 3


def button_factor(actions: list[page.ElementSnapshot]) -> float:
    """Count, long-label share, script-driven share and hidden share, averaged."""
    if not actions:
        return 0.0
    n = len(actions)
    long_text = sum(1 for a in actions if len(a.text.strip()) > 50) / n
    dynamic = sum(1 for a in actions if any(m in a.attribute_names for m in constants.DYNAMIC_ATTRIBUTE_MARKERS)) / n
    hidden = sum(1 for a in actions if not a.is_rendered) / n
    return (_ratio(n, 10) + long_text + dynamic + hidden) / 4


def text_factor(text: str) -> float:
    """Word volume, language mixing and technical vocabulary, averaged."""
    lowered = text.lower()
    words = len(_WORD_RE.findall(lowered))
    mixing = 0.5 if len(keywords.languages_present(lowered)) > 1 else 0.0
    technical = sum(1 for term in TECHNICAL_TERMS if keywords.contains_phrase(lowered, term))
    return (_ratio(words, 200) + mixing + _ratio(technical, 20)) / 3


def dom_factor(context: page.PageContext) -> float:
    return (
        _ratio(context.element_count, 2000)
        + _ratio(context.iframe_count, 10)
        + _ratio(context.dynamic_marker_count, 100)
    ) / 3


def framework_factor(framework: str | None) -> float:
    if framework is None:
        return constants.UNKNOWN_FRAMEWORK_DIFFICULTY
    return constants.FRAMEWORK_DIFFICULTY.get(framework, constants.UNKNOWN_FRAMEWORK_DIFFICULTY)


class ComplexityEstimator:
    """Weighted difficulty score with a per-domain TTL cache."""

    def __init__(self, settings: config.AgentSettings | None = None) -> None:
        self.settings = settings or config.get_settings()
        self._cache: cache.TTLCache[consent.ComplexityProfile] = cache.TTLCache(self.settings.complexity_cache_ttl)

    def level_for(self, score: float) -> consent.ComplexityLevel:
        if score < self.settings.low_complexity_threshold:
            return "low"
        if score >= self.settings.high_complexity_threshold:
            return "high"
        return "medium"

    @staticmethod
    def recommendation_for(level: consent.ComplexityLevel) -> consent.StrategyRecommendation:
        return {"low": "rule-based", "medium": "hybrid", "high": "ai-primary"}[level]

    def estimate(
        self,
        candidate: processing.BannerCandidate,
        context: page.PageContext,
        history: consent.DomainHistory | None = None,
        *,
        use_cache: bool = True,
    ) -> consent.ComplexityProfile:
        domain = context.hostname
        if use_cache and domain:
            cached = self._cache.get(domain)
            if cached is not None:
                log.debug("Complexity cache hit", {"domain": domain, "level": cached.level})
                return cached

        factors = consent.ComplexityFactors(
            banner_size=banner_size_factor(candidate.snapshot),
            buttons=button_factor([a.snapshot for a in candidate.actions]),
            text=text_factor(candidate.snapshot.text),
            dom=dom_factor(context),
            framework=framework_factor(candidate.framework),
            history=historical_difficulty(
                history.outcomes if history else [],
                window_days=self.settings.history_window_days,
            ),
        )
        score = sum(getattr(factors, name) * weight for name, weight in WEIGHTS.items())
        score = max(0.0, min(1.0, score))
        level = self.level_for(score)
        profile = consent.ComplexityProfile(
            domain=domain,
            score=score,
            level=level,
            recommendation=self.recommendation_for(level),
            factors=factors,
            framework=candidate.framework,
        )
        if domain:
            self._cache.set(domain, profile)
        log.info(
            "Complexity estimated",
            {"domain": domain, "score": score, "level": level, "framework": candidate.framework},
        )
        return profile

    def invalidate(self, domain: str) -> None:
        self._cache.pop(domain)

    def clear(self) -> None:
        self._cache.clear()
