"""Runtime result types that hold live element handles.

These are plain dataclasses rather than pydantic models: they carry
references into the host page and are never serialised.
"""

from __future__ import annotations

import dataclasses
import enum

from cookie_marshal.dom import element
from cookie_marshal.models import consent, page


@dataclasses.dataclass
class ActionElement:
    """A clickable descendant of a banner with its reject score."""

    element: element.PageElement
    snapshot: page.ElementSnapshot
    reject_score: float = 0.0
    accept_penalty: float = 0.0

    @property
    def text(self) -> str:
        return self.snapshot.label


@dataclasses.dataclass
class BannerCandidate:
    """A node hypothesised to be a consent prompt."""

    element: element.PageElement
    snapshot: page.ElementSnapshot
    classification: consent.BannerClassification
    actions: list[ActionElement] = dataclasses.field(default_factory=list)

    @property
    def key(self) -> str:
        return self.element.key

    @property
    def framework(self) -> str | None:
        fingerprint = self.classification.framework
        return fingerprint.name if fingerprint else None

    def safe_actions(self, threshold: float) -> list[ActionElement]:
        """Actions scoring above *threshold*, best first."""
        eligible = [a for a in self.actions if a.reject_score > threshold]
        return sorted(eligible, key=lambda a: a.reject_score, reverse=True)


@dataclasses.dataclass
class RulePlan:
    """Side-effect-free evaluation of the rule path."""

    confidence: float
    action: ActionElement | None = None
    strategy: str = "direct-reject"


@dataclasses.dataclass
class ProcessingResult:
    """What one path (rule or learning) did with a banner."""

    success: bool
    method: str
    path: consent.ProcessingPath = "rule-based"
    confidence: float = 0.0
    reason: str | None = None
    button_text: str | None = None
    attempts: int = 0
    duration_ms: float = 0.0
    steps: list[consent.ConsentFlowStep] = dataclasses.field(default_factory=list)

    @classmethod
    def failed(cls, method: str, reason: str, *, path: consent.ProcessingPath = "rule-based", attempts: int = 0) -> ProcessingResult:
        return cls(success=False, method=method, path=path, reason=reason, attempts=attempts)


@dataclasses.dataclass
class CoordinatorResult:
    """Final answer for one banner, returned to the session."""

    success: bool
    method: str
    confidence: float = 0.0
    reason: str | None = None
    strategy: consent.StrategyKind | None = None
    complexity: consent.ComplexityProfile | None = None
    duration_ms: float = 0.0
    button_text: str | None = None


class NegotiationState(str, enum.Enum):
    """States of the multi-step negotiation machine."""

    BANNER_FOUND = "banner-found"
    DIRECT_REJECT_ATTEMPTED = "direct-reject-attempted"
    PREFERENCE_SEARCH = "preference-search"
    PROGRESSIVE_FLOW = "progressive-flow"
    PREFERENCE_OPENED = "preference-opened"
    CATEGORY_CONFIGURATION = "category-configuration"
    SAVE_PREFERENCES = "save-preferences"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclasses.dataclass
class NegotiationResult:
    """Terminal state of one negotiation run."""

    success: bool
    state: NegotiationState
    method: str = ""
    reason: str | None = None
    confidence: float = 0.0
    button_text: str | None = None
    clicks: int = 0
    steps: list[consent.ConsentFlowStep] = dataclasses.field(default_factory=list)
    trail: list[NegotiationState] = dataclasses.field(default_factory=list)
