"""
Domain history store.

Keeps the most recent processing outcomes per domain (capped at
``history_cap``) together with phrases learned from successful
dismissals.  The complexity estimator reads the historical
difficulty; the classifier reads the learned phrases.

Histories live in memory for the session and are persisted through
the storage collaborator with debounced writes.  Storage is optional
and every storage failure is logged and ignored.
"""

from __future__ import annotations

import re

from cookie_marshal import complexity, config
from cookie_marshal.consent import constants
from cookie_marshal.models import consent
from cookie_marshal.storage import Storage
from cookie_marshal.utils import debounce, errors, logger

log = logger.create_logger("History")

KEY_PREFIX = "cookie-marshal:history:"

CONTEXT_WORD_MARKERS: tuple[str, ...] = ("cookie", "consent", "privacy", "gdpr", "tracking")
MAX_CONTEXT_WORDS = 3

_WORD_RE = re.compile(r"[\w'-]+", re.UNICODE)


def _normalise_domain(domain: str) -> str:
    return domain.lower().removeprefix("www.")


def extract_context_words(text: str) -> list[str]:
    """Up to three consent-context words (longer than 3 chars) from banner text."""
    found: list[str] = []
    for word in _WORD_RE.findall(text.lower()):
        if len(word) > 3 and any(m in word for m in CONTEXT_WORD_MARKERS) and word not in found:
            found.append(word)
            if len(found) == MAX_CONTEXT_WORDS:
                break
    return found


class DomainHistoryStore:
    """Per-domain outcome log with debounced persistence."""

    def __init__(
        self,
        storage: Storage | None = None,
        settings: config.AgentSettings | None = None,
        debouncer: debounce.Debouncer | None = None,
    ) -> None:
        self.settings = settings or config.get_settings()
        self.storage = storage
        self.debouncer = debouncer or debounce.Debouncer(self.settings.persist_debounce)
        self._histories: dict[str, consent.DomainHistory] = {}
        self._loaded: set[str] = set()

    def get(self, domain: str) -> consent.DomainHistory:
        domain = _normalise_domain(domain)
        history = self._histories.get(domain)
        if history is None:
            history = consent.DomainHistory(domain=domain)
            self._histories[domain] = history
        return history

    async def load(self, domain: str) -> consent.DomainHistory:
        """Load *domain*'s history from storage once per session."""
        domain = _normalise_domain(domain)
        if domain in self._loaded or self.storage is None:
            return self.get(domain)
        self._loaded.add(domain)

        try:
            raw = await self.storage.get(KEY_PREFIX + domain)
        except Exception as exc:
            log.warn(
                "History load failed, continuing in memory",
                {"domain": domain, "error": errors.get_error_message(exc)},
            )
            return self.get(domain)

        if raw is None:
            return self.get(domain)
        try:
            stored = consent.DomainHistory.model_validate(raw)
        except ValueError as exc:
            log.warn("Stored history is malformed, ignoring", {"domain": domain, "error": str(exc)})
            return self.get(domain)

        current = self.get(domain)
        current.outcomes = (stored.outcomes + current.outcomes)[-self.settings.history_cap :]
        current.learned_phrases = list(dict.fromkeys(stored.learned_phrases + current.learned_phrases))[
            -self.settings.learned_pattern_cap :
        ]
        log.info("History loaded", {"domain": domain, "outcomes": len(current.outcomes)})
        return current

    def record(self, domain: str, outcome: consent.ProcessingOutcome) -> None:
        """Append *outcome*, keeping the most recent ``history_cap`` entries."""
        history = self.get(domain)
        history.outcomes.append(outcome)
        if len(history.outcomes) > self.settings.history_cap:
            del history.outcomes[: len(history.outcomes) - self.settings.history_cap]
        self._schedule_save(history.domain)

    def learn(self, domain: str, button_text: str | None, banner_text: str) -> list[str]:
        """Remember the clicked reject label and banner context words."""
        history = self.get(domain)
        phrases: list[str] = []
        if button_text:
            label = " ".join(button_text.lower().split())
            # Accept labels are never fed back as banner evidence.
            if label and constants.REJECT_BUTTON_RE.search(label):
                phrases.append(label)
        phrases.extend(extract_context_words(banner_text))
        if not phrases:
            return []

        merged = [p for p in history.learned_phrases if p not in phrases] + phrases
        history.learned_phrases = merged[-self.settings.learned_pattern_cap :]
        self._schedule_save(history.domain)
        log.debug("Learned phrases", {"domain": history.domain, "phrases": phrases})
        return phrases

    def learned_phrases(self, domain: str) -> list[str]:
        return list(self.get(domain).learned_phrases)

    def historical_difficulty(self, domain: str) -> float:
        return complexity.historical_difficulty(
            self.get(domain).outcomes,
            window_days=self.settings.history_window_days,
        )

    def _schedule_save(self, domain: str) -> None:
        if self.storage is None:
            return
        self.debouncer.schedule(KEY_PREFIX + domain, lambda: self.save(domain))

    async def save(self, domain: str) -> bool:
        """Write *domain*'s history now.  Returns ``False`` on failure."""
        if self.storage is None:
            return False
        history = self.get(domain)
        try:
            await self.storage.set(KEY_PREFIX + history.domain, history.model_dump(mode="json"))
        except errors.PersistenceError as exc:
            log.warn("History save failed", {"domain": history.domain, "error": str(exc)})
            return False
        return True

    async def flush(self) -> None:
        await self.debouncer.flush()

    def clear(self) -> None:
        self._histories.clear()
        self._loaded.clear()
