"""
Q-learning optimizer.

Maintains a value table over (state signature, action) pairs.
``recommend`` is epsilon-greedy over a fixed action vocabulary;
``record_experience`` applies ``Q <- Q + alpha * (reward - Q)`` and
persists the table every ``save_every`` experiences.

A state signature is ``framework_position_buttons_language``, for
example ``onetrust_bottom_2_en``.
"""

from __future__ import annotations

import dataclasses
import random
from typing import Literal

from cookie_marshal import config
from cookie_marshal.models import consent, page, processing
from cookie_marshal.storage import Storage
from cookie_marshal.utils import errors, logger

log = logger.create_logger("Q-Learning")

QAction = Literal[
    "rule-based-primary",
    "rule-based-fallback",
    "learning-text-analysis",
    "aggressive-multi-click",
    "conservative-minimal-click",
    "hybrid",
]

ACTIONS: tuple[QAction, ...] = (
    "rule-based-primary",
    "rule-based-fallback",
    "learning-text-analysis",
    "aggressive-multi-click",
    "conservative-minimal-click",
    "hybrid",
)

STORAGE_KEY = "cookie-marshal:q-learning"

SUCCESS_REWARD = 10.0
FAILURE_REWARD = -5.0
CONFIDENCE_BONUS = 3.0
RULE_EFFICIENCY_BONUS = 2.0
SLOW_PENALTY = 1.0
SLOW_THRESHOLD_MS = 1000.0

EXPLORATION_CONFIDENCE = 0.3


@dataclasses.dataclass(frozen=True)
class QState:
    """Compact situation signature for the value table."""

    framework: str
    position: str
    buttons: str
    language: str

    @property
    def signature(self) -> str:
        return f"{self.framework}_{self.position}_{self.buttons}_{self.language}"


@dataclasses.dataclass
class Recommendation:
    action: QAction
    confidence: float
    exploration: bool = False


def button_bucket(count: int) -> str:
    if count >= 5:
        return "5+"
    if count >= 3:
        return "3-4"
    return str(count)


def banner_position(rect: page.Rect, viewport: page.Viewport) -> str:
    """Top, bottom, center (full width) or side."""
    if rect.top <= viewport.height * 0.2:
        return "top"
    if rect.bottom >= viewport.height * 0.8:
        return "bottom"
    if rect.width >= viewport.width * 0.9:
        return "center"
    return "side"


def state_for(candidate: processing.BannerCandidate, viewport: page.Viewport, language: str) -> QState:
    return QState(
        framework=candidate.framework or "unknown",
        position=banner_position(candidate.snapshot.rect, viewport),
        buttons=button_bucket(len(candidate.actions)),
        language=language or "en",
    )


def compute_reward(outcome: consent.ProcessingOutcome) -> float:
    """Bounded reward in [-6, +15] for one outcome."""
    reward = SUCCESS_REWARD if outcome.success else FAILURE_REWARD
    reward += max(0.0, min(1.0, outcome.confidence)) * CONFIDENCE_BONUS
    if outcome.success and outcome.path == "rule-based":
        reward += RULE_EFFICIENCY_BONUS
    if outcome.duration_ms > SLOW_THRESHOLD_MS:
        reward -= SLOW_PENALTY
    return reward


class QLearningOptimizer:
    """Epsilon-greedy Q-table persisted through the storage collaborator."""

    def __init__(
        self,
        storage: Storage | None = None,
        settings: config.AgentSettings | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.settings = settings or config.get_settings()
        self.storage = storage
        self.rng = rng or random.Random()
        self.q_table: dict[str, dict[str, float]] = {}
        self.experiences: list[consent.Experience] = []
        self.total_experiences = 0
        self.initialized = False
        self._unsaved = 0

    async def load(self) -> None:
        """Load the persisted table.  The optimizer is usable either way."""
        if self.storage is not None:
            try:
                raw = await self.storage.get(STORAGE_KEY)
                if raw is not None:
                    snapshot = consent.QTableSnapshot.model_validate(raw)
                    self.q_table = snapshot.values
                    self.experiences = snapshot.experiences[-self.settings.max_experiences :]
                    self.total_experiences = snapshot.total_experiences
                    log.info("Q-table loaded", {"states": len(self.q_table), "experiences": len(self.experiences)})
            except (errors.PersistenceError, ValueError) as exc:
                log.warn("Q-table load failed, starting empty", {"error": str(exc)})
        self.initialized = True

    def value(self, state: str, action: str) -> float:
        return self.q_table.get(state, {}).get(action, 0.0)

    def recommend(self, state: QState) -> Recommendation:
        if self.rng.random() < self.settings.epsilon:
            action = self.rng.choice(ACTIONS)
            log.debug("Exploring", {"state": state.signature, "action": action})
            return Recommendation(action=action, confidence=EXPLORATION_CONFIDENCE, exploration=True)

        values = self.q_table.get(state.signature, {})
        best_action: QAction = ACTIONS[0]
        best_value = values.get(best_action, 0.0)
        for action in ACTIONS[1:]:
            v = values.get(action, 0.0)
            if v > best_value:
                best_action, best_value = action, v
        confidence = max(0.4, min(0.9, best_value / 10))
        return Recommendation(action=best_action, confidence=confidence)

    async def record_experience(self, state: QState, action: str, outcome: consent.ProcessingOutcome) -> float:
        """Update the table from *outcome* and return the new value."""
        reward = compute_reward(outcome)
        signature = state.signature
        row = self.q_table.setdefault(signature, {})
        current = row.get(action, 0.0)
        updated = current + self.settings.learning_rate * (reward - current)
        row[action] = updated

        self.experiences.append(
            consent.Experience(
                state=signature,
                action=action,
                reward=reward,
                success=outcome.success,
                confidence=outcome.confidence,
                duration_ms=outcome.duration_ms,
            )
        )
        if len(self.experiences) > self.settings.max_experiences:
            del self.experiences[: len(self.experiences) - self.settings.max_experiences]
        self.total_experiences += 1
        self._unsaved += 1

        log.debug("Q-value updated", {"state": signature, "action": action, "reward": reward, "value": updated})

        if self._unsaved >= self.settings.save_every:
            await self.save()
        return updated

    async def save(self) -> bool:
        if self.storage is None:
            return False
        snapshot = consent.QTableSnapshot(
            values=self.q_table,
            experiences=self.experiences,
            total_experiences=self.total_experiences,
        )
        try:
            await self.storage.set(STORAGE_KEY, snapshot.model_dump(mode="json"))
        except errors.PersistenceError as exc:
            log.warn("Q-table save failed", {"error": str(exc)})
            return False
        self._unsaved = 0
        return True

    def stats(self) -> dict[str, object]:
        recent = self.experiences[-100:]
        success_rate = sum(1 for e in recent if e.success) / len(recent) if recent else 0.0
        action_totals: dict[str, float] = {}
        for row in self.q_table.values():
            for action, v in row.items():
                action_totals[action] = action_totals.get(action, 0.0) + v
        top_actions = sorted(action_totals, key=lambda a: action_totals[a], reverse=True)[:3]
        return {
            "states": len(self.q_table),
            "experiences": len(self.experiences),
            "totalExperiences": self.total_experiences,
            "recentSuccessRate": success_rate,
            "topActions": top_actions,
            "epsilon": self.settings.epsilon,
        }
