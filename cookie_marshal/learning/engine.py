"""
Learning-augmented banner analysis.

Combines three signals into one confidence for the learning path:

- a vocabulary text classifier over the banner's buttons (0.4),
- a heuristic success predictor over banner geometry and style (0.3),
- the Q-learning optimizer's recommendation confidence (0.3).

Analysis is side-effect free.  Executing the recommended action is
left to the coordinator, which never clicks anything that does not
clear the reject threshold.
"""

from __future__ import annotations

import asyncio

from cookie_marshal import config
from cookie_marshal.consent import keywords
from cookie_marshal.learning import optimizer as q_optimizer
from cookie_marshal.models import consent, page, processing
from cookie_marshal.utils import errors, logger

log = logger.create_logger("Learning")

TEXT_WEIGHT = 0.4
PREDICTOR_WEIGHT = 0.3
OPTIMIZER_WEIGHT = 0.3

# Vocabulary weights for the text classifier.
VOCABULARY: dict[str, tuple[float, tuple[str, ...]]] = {
    "reject": (10.0, ("reject", "decline", "deny", "refuse", "disagree", "opt out", "no thanks")),
    "necessary": (8.0, ("necessary", "essential", "required only", "only required", "strictly")),
    "manage": (6.0, ("manage", "customize", "customise", "preferences", "settings", "options")),
    "accept": (-5.0, ("accept", "agree", "allow", "ok", "got it", "enable all")),
}
CONTEXT_WORDS: tuple[str, ...] = ("cookie", "cookies", "privacy", "tracking")
CONTEXT_MULTIPLIER = 1.2


def classify_text(text: str, language: str = "en") -> tuple[float, float]:
    """Score *text* for reject intent.

    Returns ``(score, confidence)`` where confidence is
    ``min(|score| / 10, 1)``.
    """
    lowered = " ".join(text.lower().split())
    score = 0.0
    for weight, words in VOCABULARY.values():
        if keywords.contains_any(lowered, words):
            score += weight
    localized = keywords.LANGUAGE_PATTERNS.get(language)
    if localized and language != "en":
        if keywords.contains_any(lowered, localized["reject"]):
            score += VOCABULARY["reject"][0]
        if keywords.contains_any(lowered, localized["necessary"]):
            score += VOCABULARY["necessary"][0]
        if keywords.contains_any(lowered, localized["consent"]) and score <= 0:
            score += VOCABULARY["accept"][0]
    if keywords.contains_any(lowered, CONTEXT_WORDS):
        score *= CONTEXT_MULTIPLIER
    return score, min(abs(score) / 10, 1.0)


def predict_success(snapshot: page.ElementSnapshot, action_count: int) -> float:
    """Heuristic probability that a banner can be dismissed cleanly."""
    p = 0.5
    if snapshot.rect.area > 100_000:
        p += 0.2
    if snapshot.style.z_index > 1000:
        p += 0.1
    if snapshot.style.z_index > 10000:
        p += 0.1
    if action_count >= 2:
        p += 0.2
    elif action_count == 1:
        p -= 0.1
    if snapshot.style.position == "fixed":
        p += 0.1
    return max(0.0, min(1.0, p))


class LearningEngine:
    """The learning path's analysis half."""

    def __init__(
        self,
        optimizer: q_optimizer.QLearningOptimizer | None = None,
        settings: config.AgentSettings | None = None,
    ) -> None:
        self.settings = settings or config.get_settings()
        self.optimizer = optimizer

    @property
    def initialized(self) -> bool:
        return self.optimizer is not None and self.optimizer.initialized

    async def initialize(self) -> None:
        if self.optimizer is not None and not self.optimizer.initialized:
            await self.optimizer.load()

    def _recommend(self, state: q_optimizer.QState) -> q_optimizer.Recommendation | None:
        if self.optimizer is None:
            return None
        try:
            return self.optimizer.recommend(state)
        except Exception as exc:
            log.warn("Optimizer recommendation failed", {"error": errors.get_error_message(exc)})
            return None

    async def analyze(
        self,
        candidate: processing.BannerCandidate,
        state: q_optimizer.QState,
    ) -> consent.LearningAnalysis:
        """Score every button and combine with the optimizer's view."""
        best_index: int | None = None
        best_score = 0.0
        best_confidence = 0.0
        for index, action in enumerate(candidate.actions):
            score, confidence = classify_text(action.text, state.language)
            if score > best_score:
                best_index, best_score, best_confidence = index, score, confidence
            # Yield between buttons so a timeout can interrupt large banners.
            await asyncio.sleep(0)

        predicted = predict_success(candidate.snapshot, len(candidate.actions))
        recommendation = self._recommend(state)
        optimizer_confidence = recommendation.confidence if recommendation else 0.0
        action: str = recommendation.action if recommendation else "learning-text-analysis"

        confidence = (
            TEXT_WEIGHT * best_confidence
            + PREDICTOR_WEIGHT * predicted
            + OPTIMIZER_WEIGHT * optimizer_confidence
        )
        analysis = consent.LearningAnalysis(
            state=state.signature,
            recommended_action=action,
            confidence=max(0.0, min(1.0, confidence)),
            text_confidence=best_confidence,
            predicted_success=predicted,
            optimizer_confidence=optimizer_confidence,
            exploration=bool(recommendation and recommendation.exploration),
            best_button_index=best_index,
            best_button_text=candidate.actions[best_index].text if best_index is not None else None,
        )
        log.debug(
            "Learning analysis",
            {"state": state.signature, "action": action, "confidence": analysis.confidence, "button": analysis.best_button_text},
        )
        return analysis
