"""Pydantic models for banner classification, complexity and outcomes."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

import pydantic

ComplexityLevel = Literal["low", "medium", "high"]

# Strategy recommendation derived from the complexity level.
StrategyRecommendation = Literal["rule-based", "hybrid", "ai-primary"]

StrategyKind = Literal[
    "rule-only",
    "rule-primary-with-fallback",
    "learning-primary-with-fallback",
    "parallel-evaluation",
]

ProcessingPath = Literal["rule-based", "learning"]

FlowStepKind = Literal["toggle-switch", "checkbox", "dropdown", "category-button", "save-button"]

FlowDecision = Literal["disable-if-non-essential", "preserve-if-essential", "unknown"]


def _utc_now() -> datetime:
    return datetime.now(UTC)


class FrameworkFingerprint(pydantic.BaseModel):
    """A recognised consent-management product."""

    name: str
    confidence: float = pydantic.Field(default=1.0, ge=0.0, le=1.0)


class BannerClassification(pydantic.BaseModel):
    """Verdict of the element classifier on one node."""

    is_banner: bool
    confidence: float = pydantic.Field(default=0.0, ge=0.0, le=1.0)
    context_score: float = pydantic.Field(default=0.0, ge=0.0, le=1.0)
    framework: FrameworkFingerprint | None = None
    # Why the node was rejected (or "framework"/"content" when accepted)
    reason: str = ""

    @classmethod
    def rejected(cls, reason: str, confidence: float = 0.0, context_score: float = 0.0) -> BannerClassification:
        """Return a negative verdict carrying *reason*."""
        return cls(is_banner=False, confidence=confidence, context_score=context_score, reason=reason)


class ComplexityFactors(pydantic.BaseModel):
    """Normalised 0-1 inputs to the complexity score."""

    banner_size: float = 0.0
    buttons: float = 0.0
    text: float = 0.0
    dom: float = 0.0
    framework: float = 0.5
    history: float = 0.5


class ComplexityProfile(pydantic.BaseModel):
    """Difficulty estimate for one domain's banner."""

    domain: str
    score: float = pydantic.Field(ge=0.0, le=1.0)
    level: ComplexityLevel
    recommendation: StrategyRecommendation
    factors: ComplexityFactors
    framework: str | None = None


class StrategyDecision(pydantic.BaseModel):
    """The processing strategy the coordinator will execute."""

    strategy: StrategyKind
    confidence: float = 0.0
    fallback: StrategyKind | None = None
    timeout: float | None = None
    reason: str = ""


class ProcessingOutcome(pydantic.BaseModel):
    """One recorded banner-processing attempt."""

    success: bool
    method: str
    path: ProcessingPath = "rule-based"
    confidence: float = 0.0
    duration_ms: float = 0.0
    button_text: str | None = None
    attempts: int = 1
    reason: str | None = None
    timestamp: datetime = pydantic.Field(default_factory=_utc_now)


class DomainHistory(pydantic.BaseModel):
    """Rolling per-domain outcome log plus learned banner phrases."""

    domain: str
    outcomes: list[ProcessingOutcome] = pydantic.Field(default_factory=list)
    learned_phrases: list[str] = pydantic.Field(default_factory=list)


class Experience(pydantic.BaseModel):
    """One (state, action, reward) sample fed to the Q-table."""

    state: str
    action: str
    reward: float
    success: bool
    confidence: float = 0.0
    duration_ms: float = 0.0
    timestamp: datetime = pydantic.Field(default_factory=_utc_now)


class QTableSnapshot(pydantic.BaseModel):
    """Persisted shape of the learning optimizer."""

    values: dict[str, dict[str, float]] = pydantic.Field(default_factory=dict)
    experiences: list[Experience] = pydantic.Field(default_factory=list)
    total_experiences: int = 0


class ConsentFlowStep(pydantic.BaseModel):
    """One control visited while configuring a preference center."""

    kind: FlowStepKind
    label: str = ""
    decision: FlowDecision = "unknown"
    # True when a mutation (click, uncheck, select) was issued
    applied: bool = False


class LearningAnalysis(pydantic.BaseModel):
    """Output of the learning-augmented evaluation of a banner."""

    state: str
    recommended_action: str
    confidence: float = pydantic.Field(default=0.0, ge=0.0, le=1.0)
    text_confidence: float = 0.0
    predicted_success: float = 0.0
    optimizer_confidence: float = 0.0
    exploration: bool = False
    best_button_index: int | None = None
    best_button_text: str | None = None
