"""
Element classifier: "is this a consent banner" and "is this a
reject-intent action".

Everything here scores :class:`~cookie_marshal.models.page.ElementSnapshot`
objects and is pure and synchronous.  :meth:`ElementClassifier.build_candidate`
is the only coroutine; it takes the snapshots from the live page and
then defers to the pure scorers.

Banner acceptance order:

1. Visible and at least the minimum size.
2. Framework fingerprint on class/id: accepted at confidence 1.0.
3. Exclusion (page chrome, commerce, auth, media, social, tooling):
   rejected, whatever keywords the node carries.
4. Content confidence from weighted keyword evidence must reach
   the banner threshold.
5. Positional/contextual score must reach the context threshold.
6. The node must offer at least one actionable control.
"""

from __future__ import annotations

import re

from cookie_marshal import config
from cookie_marshal.consent import constants, keywords
from cookie_marshal.dom import element
from cookie_marshal.models import consent, page, processing
from cookie_marshal.utils import logger

log = logger.create_logger("Classifier")

# ── Content evidence ────────────────────────────────────────────

PRIMARY_KEYWORDS: tuple[str, ...] = tuple(
    sorted(
        {w for groups in keywords.LANGUAGE_PATTERNS.values() for g in ("cookie", "privacy") for w in groups[g]}
        | {"consent", "gdpr", "cookie", "cookies"}
    )
)

SECONDARY_KEYWORDS: tuple[str, ...] = (
    "accept", "reject", "decline", "agree", "allow", "manage", "preferences", "settings",
    "tracking", "track", "partners", "personalised", "personalized", "advertising", "analytics",
    "akzeptieren", "ablehnen", "accepter", "refuser", "aceptar", "rechazar", "accetta", "rifiuta",
    "accepteren", "weigeren", "aceitar", "rejeitar", "akceptuj", "odrzuć",
)

BANNER_PHRASES: tuple[str, ...] = (
    "we use cookies", "this website uses", "this site uses", "uses cookies", "use of cookies",
    "by continuing to", "by clicking", "we and our partners", "we value your privacy",
    "your privacy choices", "cookie notice", "cookie consent",
    "wir verwenden cookies", "diese website verwendet", "nous utilisons des cookies",
    "ce site utilise", "utilizamos cookies", "este sitio utiliza", "utilizziamo i cookie",
    "questo sito utilizza", "wij gebruiken cookies", "deze website gebruikt",
    "este site utiliza", "używamy plików cookie", "ta strona używa",
)

LEGAL_TERMS: tuple[str, ...] = (
    "gdpr", "ccpa", "dsgvo", "rgpd", "rodo", "eprivacy", "legitimate interest", "data protection",
    "privacy policy", "cookie policy", "personal data", "data controller", "tcf",
)

PRIMARY_WEIGHT = 0.4
SECONDARY_WEIGHT = 0.2
PHRASE_WEIGHT = 0.2
LEGAL_WEIGHT = 0.1
LEARNED_WEIGHT = 0.2

# ── Action scoring ──────────────────────────────────────────────

VERY_HIGH_REJECT: tuple[str, ...] = (
    "reject all", "reject all cookies", "decline all", "deny all", "refuse all",
    "reject non-essential", "reject optional cookies", "necessary only", "only necessary",
    "necessary cookies only", "only necessary cookies", "essential only", "only essential",
    "essential cookies only", "accept only necessary", "accept necessary only",
    "use necessary cookies only", "allow necessary only", "strictly necessary only",
    "alle ablehnen", "nur notwendige", "nur essenzielle", "tout refuser", "refuser tout",
    "rechazar todo", "rechazar todas", "rifiuta tutto", "rifiuta tutti", "alles weigeren",
    "alle weigeren", "rejeitar tudo", "recusar tudo", "odrzuć wszystkie",
)

HIGH_REJECT: tuple[str, ...] = (
    "reject", "decline", "deny", "refuse", "disagree", "do not accept", "don't accept",
    "no thanks", "no, thanks", "opt out", "opt-out", "continue without accepting",
    "ablehnen", "verweigern", "refuser", "continuer sans accepter", "rechazar", "denegar",
    "rifiuta", "rifiutare", "weigeren", "afwijzen", "rejeitar", "recusar", "odrzuć",
)

MEDIUM_REJECT: tuple[str, ...] = ("dismiss", "close", "not now", "maybe later", "skip", "schließen", "fermer", "cerrar", "chiudi")

ACCEPT_WORDS: tuple[str, ...] = (
    "accept", "agree", "allow", "ok", "okay", "got it", "i understand", "enable", "yes",
    "akzeptieren", "zustimmen", "einverstanden", "accepter", "j'accepte", "d'accord",
    "aceptar", "acepto", "accetta", "accetto", "accepteren", "akkoord", "aceitar", "aceito",
    "akceptuj", "zgadzam się",
)

AMBIGUOUS_WORDS: tuple[str, ...] = ("continue", "confirm", "save", "submit", "proceed", "next", "apply")

COOKIE_CONTEXT_WORDS: tuple[str, ...] = ("cookie", "cookies", "privacy", "tracking", "non-essential", "optional")

# Words that may surround a reject phrase without changing its meaning.
FILLER_WORDS: frozenset[str] = frozenset(
    {
        "i", "we", "please", "just", "now", "thanks", "thank", "you", "for",
        "ich", "bitte", "danke", "je", "merci", "yo", "gracias", "io", "grazie",
        "ik", "bedankt", "eu", "obrigado", "dziękuję",
    }
)

_WORD_RE = re.compile(r"\w+")
_REJECT_NAMING_RE = re.compile(r"reject|decline|deny|refuse|disagree|necessary|essential|opt-?out")
_ACCEPT_NAMING_RE = re.compile(r"accept|agree|allow|consent-all|allowall")

VERY_HIGH_SCORE = 0.9
HIGH_SCORE = 0.7
MEDIUM_SCORE = 0.4
BONUS = 0.1
ACCEPT_TEXT_PENALTY = 0.5
ACCEPT_NAMING_PENALTY = 0.3
AMBIGUOUS_PENALTY = 0.2
KEYWORD_BONUS_SCALE = 0.02


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class ElementClassifier:
    """Weighted multi-signal classifier for banners and their buttons."""

    def __init__(
        self,
        settings: config.AgentSettings | None = None,
        keyword_source: keywords.KeywordSource | None = None,
    ) -> None:
        self.settings = settings or config.get_settings()
        self.keywords = keyword_source

    # ── Banner ──────────────────────────────────────────────────

    def detect_framework(self, snapshot: page.ElementSnapshot) -> consent.FrameworkFingerprint | None:
        """Match class/id against known consent-management products."""
        naming = snapshot.naming
        if not naming:
            return None
        for name, identifiers in constants.FRAMEWORK_IDENTIFIERS.items():
            if any(ident in naming for ident in identifiers):
                return consent.FrameworkFingerprint(name=name, confidence=1.0)
        return None

    def exclusion_category(self, snapshot: page.ElementSnapshot) -> str | None:
        """Return the exclusion category that matches *snapshot*, if any."""
        if snapshot.tag.lower() in constants.EXCLUDED_TAGS:
            return "page-chrome"
        if snapshot.role.lower() in constants.EXCLUDED_ROLES:
            return "navigation"
        naming = snapshot.naming
        if any(fragment in naming for fragment in constants.EXCLUDED_NAMING):
            return "widget-naming"
        text = snapshot.text.lower()
        for category, phrases in constants.EXCLUSION_PHRASES.items():
            if keywords.contains_any(text, phrases):
                return category
        return None

    def content_confidence(self, text: str, learned_phrases: list[str] | tuple[str, ...] = ()) -> float:
        """Weighted keyword evidence that *text* belongs to a consent banner."""
        lowered = text.lower()
        score = 0.0
        primary = keywords.contains_any(lowered, PRIMARY_KEYWORDS)
        if not primary and self.keywords is not None:
            primary = self.keywords.is_consent_text(lowered)
        if primary:
            score += PRIMARY_WEIGHT
        if keywords.contains_any(lowered, SECONDARY_KEYWORDS):
            score += SECONDARY_WEIGHT
        if any(phrase in lowered for phrase in BANNER_PHRASES):
            score += PHRASE_WEIGHT
        if keywords.contains_any(lowered, LEGAL_TERMS):
            score += LEGAL_WEIGHT
        if learned_phrases and any(p and p in lowered for p in learned_phrases):
            score += LEARNED_WEIGHT
        return _clamp(score)

    def context_score(self, snapshot: page.ElementSnapshot, viewport: page.Viewport) -> float:
        """Partial credit for banner-like placement and container naming."""
        rect = snapshot.rect
        vw, vh = viewport.width, viewport.height
        score = 0.0

        if snapshot.style.position in ("fixed", "sticky"):
            score += 0.3
        if snapshot.style.z_index > 100:
            score += 0.2

        full_width = rect.width >= vw * 0.9
        at_edge = rect.top <= vh * 0.2 or rect.bottom >= vh * 0.8
        centre_x = rect.left + rect.width / 2
        centre_y = rect.top + rect.height / 2
        centred = abs(centre_x - vw / 2) <= vw * 0.1 and abs(centre_y - vh / 2) <= vh * 0.15

        if full_width and at_edge:
            score += 0.3
        elif centred and not full_width:
            score += 0.3
        elif rect.height >= vh * 0.5 and rect.width <= vw * 0.4 and (rect.left <= 0 or rect.right >= vw):
            score += 0.2

        names = [snapshot.naming, *(n.lower() for n in snapshot.ancestor_names[:3])]
        if any(frag in name for name in names for frag in constants.CONSENT_CONTAINER_NAMING):
            score += 0.2

        return _clamp(score)

    def classify_banner(
        self,
        snapshot: page.ElementSnapshot,
        viewport: page.Viewport,
        *,
        action_count: int | None = None,
        learned_phrases: list[str] | tuple[str, ...] = (),
    ) -> consent.BannerClassification:
        """Decide whether *snapshot* is a consent banner.

        ``action_count`` is the number of clickable descendants;
        ``None`` skips the actionable-controls check.
        """
        s = self.settings
        if not snapshot.is_rendered:
            return consent.BannerClassification.rejected("hidden")
        if snapshot.rect.width < s.min_banner_width or snapshot.rect.height < s.min_banner_height:
            return consent.BannerClassification.rejected("too-small")

        fingerprint = self.detect_framework(snapshot)
        if fingerprint is not None:
            return consent.BannerClassification(
                is_banner=True,
                confidence=1.0,
                context_score=self.context_score(snapshot, viewport),
                framework=fingerprint,
                reason="framework",
            )

        excluded = self.exclusion_category(snapshot)
        if excluded is not None:
            return consent.BannerClassification.rejected(f"excluded:{excluded}")

        confidence = self.content_confidence(snapshot.label, learned_phrases)
        if confidence < s.banner_confidence_threshold:
            return consent.BannerClassification.rejected("low-confidence", confidence)

        context = self.context_score(snapshot, viewport)
        if context < s.context_score_threshold:
            return consent.BannerClassification.rejected("low-context", confidence, context)

        if action_count is not None and action_count == 0:
            return consent.BannerClassification.rejected("no-actions", confidence, context)

        return consent.BannerClassification(
            is_banner=True,
            confidence=confidence,
            context_score=context,
            reason="content",
        )

    # ── Actions ─────────────────────────────────────────────────

    def _score_parts(self, snapshot: page.ElementSnapshot) -> tuple[float, float]:
        """Return (positive evidence, accept penalty) before clamping."""
        text = " ".join(snapshot.label.split())
        naming = snapshot.naming

        matched: list[str] = []
        tier = 0.0
        for phrases, value in ((VERY_HIGH_REJECT, VERY_HIGH_SCORE), (HIGH_REJECT, HIGH_SCORE), (MEDIUM_REJECT, MEDIUM_SCORE)):
            hits = [p for p in phrases if keywords.contains_phrase(text, p)]
            if hits:
                matched.extend(hits)
                tier = max(tier, value)

        remainder = text
        for phrase in sorted(matched, key=len, reverse=True):
            remainder = keywords.strip_phrase(remainder, phrase)

        positive = tier
        # "I do not accept", "No thanks, please": the phrase is the whole label.
        if tier and all(w in FILLER_WORDS for w in _WORD_RE.findall(remainder)):
            positive += BONUS
        if tier >= HIGH_SCORE and keywords.contains_any(text, COOKIE_CONTEXT_WORDS):
            positive += BONUS
        reject_naming = bool(_REJECT_NAMING_RE.search(naming))
        if reject_naming:
            positive += BONUS
        if self.keywords is not None:
            positive += self.keywords.reject_score_bonus(text) * KEYWORD_BONUS_SCALE

        penalty = 0.0
        if keywords.contains_any(remainder, ACCEPT_WORDS):
            penalty += ACCEPT_TEXT_PENALTY
        if not reject_naming and _ACCEPT_NAMING_RE.search(naming):
            penalty += ACCEPT_NAMING_PENALTY
        if not tier and keywords.contains_any(text, AMBIGUOUS_WORDS):
            penalty += AMBIGUOUS_PENALTY
        return positive, penalty

    def score_action(self, snapshot: page.ElementSnapshot) -> float:
        """Reject-intent score in [0, 1] for one clickable element."""
        if snapshot.disabled:
            return 0.0
        positive, penalty = self._score_parts(snapshot)
        return _clamp(positive - penalty)

    def accept_penalty(self, snapshot: page.ElementSnapshot) -> float:
        return self._score_parts(snapshot)[1]

    def is_safe_to_click(self, score: float) -> bool:
        return score > self.settings.safe_click_threshold

    def is_accept_like(self, snapshot: page.ElementSnapshot) -> bool:
        """True when the element reads as an accept/agree control."""
        text = snapshot.label
        return keywords.contains_any(text, ACCEPT_WORDS) and self.score_action(snapshot) <= MEDIUM_SCORE

    # ── Live page ───────────────────────────────────────────────

    async def score_elements(self, elements: list[element.PageElement]) -> list[processing.ActionElement]:
        """Snapshot and score every element that is still attached."""
        scored: list[processing.ActionElement] = []
        for el in elements:
            snap = await element.safe_snapshot(el)
            if snap is None or not snap.is_rendered:
                continue
            positive, penalty = self._score_parts(snap)
            score = 0.0 if snap.disabled else _clamp(positive - penalty)
            scored.append(processing.ActionElement(element=el, snapshot=snap, reject_score=score, accept_penalty=penalty))
        return scored

    async def build_candidate(
        self,
        node: element.PageElement,
        viewport: page.Viewport,
        *,
        learned_phrases: list[str] | tuple[str, ...] = (),
    ) -> processing.BannerCandidate | None:
        """Classify a live node, returning a candidate only when it is a banner."""
        snap = await element.safe_snapshot(node)
        if snap is None:
            return None

        # Cheap checks first: most candidate nodes fail on geometry.
        pre = self.classify_banner(snap, viewport, learned_phrases=learned_phrases)
        if not pre.is_banner:
            log.debug("Candidate rejected", {"key": node.key, "reason": pre.reason, "confidence": pre.confidence})
            return None

        try:
            actions = await self.score_elements(await node.action_elements())
        except Exception as exc:
            log.debug("Action lookup failed", {"key": node.key, "error": str(exc)})
            return None

        verdict = self.classify_banner(snap, viewport, action_count=len(actions), learned_phrases=learned_phrases)
        if not verdict.is_banner:
            log.debug("Candidate rejected", {"key": node.key, "reason": verdict.reason})
            return None

        log.info(
            "Consent banner detected",
            {
                "key": node.key,
                "framework": verdict.framework.name if verdict.framework else None,
                "confidence": verdict.confidence,
                "actions": len(actions),
            },
        )
        return processing.BannerCandidate(element=node, snapshot=snap, classification=verdict, actions=actions)
