"""
Agent session: one page, from start to teardown.

The session owns every piece of mutable per-page state (the
processed-set, caches, the persistence debouncer and the mutation
subscription) and wires the components together::

    ElementClassifier -> RuleBasedAgent -> NegotiationStateMachine
    ComplexityEstimator, DomainHistoryStore, LearningEngine
    -> StrategyCoordinator

``start()`` loads persisted state, subscribes to page mutations and
runs an immediate scan.  Mutations trigger rate-limited re-scans.
``close()`` unsubscribes, flushes persistence and clears state.
"""

from __future__ import annotations

import asyncio
import dataclasses
import time

from cookie_marshal import complexity, config, coordinator, history, notify
from cookie_marshal.consent import classifier as element_classifier
from cookie_marshal.consent import constants, keywords, rule_agent
from cookie_marshal.dom import element, query_cache
from cookie_marshal.learning import engine as learning_engine
from cookie_marshal.learning import optimizer as q_optimizer
from cookie_marshal.models import page, processing
from cookie_marshal.negotiation import machine as negotiation
from cookie_marshal.storage import Storage
from cookie_marshal.utils import debounce, errors, logger

log = logger.create_logger("Session")


@dataclasses.dataclass
class SessionStats:
    scans: int = 0
    banners_found: int = 0
    banners_processed: int = 0
    succeeded: int = 0
    failed: int = 0


class AgentSession:
    """Detects and rejects consent banners on one page."""

    def __init__(
        self,
        document: element.PageDocument,
        *,
        settings: config.AgentSettings | None = None,
        storage: Storage | None = None,
        notifier: notify.Notifier | None = None,
        scan_cache: query_cache.ScanCache | None = None,
        enable_learning: bool = True,
        optimizer: q_optimizer.QLearningOptimizer | None = None,
    ) -> None:
        self.document = document
        self.settings = settings or config.get_settings()
        self.storage = storage
        self.notifier = notifier if notifier is not None else notify.LogNotifier()
        self.scan_cache = scan_cache
        self.debouncer = debounce.Debouncer(self.settings.persist_debounce)
        self.processed: set[str] = set()
        self.stats = SessionStats()
        self.results: list[processing.CoordinatorResult] = []
        self.log_lines: list[str] = []
        self.language = "en"
        self._declared_language_code: str | None = None

        self.classifier = element_classifier.ElementClassifier(self.settings)
        self.agent = rule_agent.RuleBasedAgent(self.classifier, self.settings)
        self.machine = negotiation.NegotiationStateMachine(self.agent, settings=self.settings)
        self.estimator = complexity.ComplexityEstimator(self.settings)
        self.history = history.DomainHistoryStore(storage, self.settings, self.debouncer)
        if enable_learning:
            self.optimizer = optimizer or q_optimizer.QLearningOptimizer(storage, self.settings)
            self.learning: learning_engine.LearningEngine | None = learning_engine.LearningEngine(self.optimizer, self.settings)
        else:
            self.optimizer = None
            self.learning = None
        self.coordinator = coordinator.StrategyCoordinator(
            estimator=self.estimator,
            machine=self.machine,
            history_store=self.history,
            learning=self.learning,
            notifier=self.notifier,
            settings=self.settings,
            processed=self.processed,
        )

        self._generation = 0
        self._last_scan = 0.0
        self._scan_lock = asyncio.Lock()
        self._pending_scan: asyncio.Task[None] | None = None
        self._started = False

    # ── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> list[processing.CoordinatorResult]:
        """Load persisted state, subscribe to mutations and scan once."""
        hostname = self.document.hostname
        logger.begin_session(hostname)
        log.section(f"Consent session: {hostname}")

        self._declared_language_code = await self._declared_language()
        self.language = keywords.detect_language("", self._declared_language_code)
        self.classifier.keywords = keywords.MultiLanguageKeywords(self.language)

        await self.history.load(hostname)
        if self.learning is not None:
            try:
                await self.learning.initialize()
            except Exception as exc:
                log.warn("Learning initialisation failed, rules only", {"error": errors.get_error_message(exc)})

        await self.document.subscribe(self._on_mutation)
        self._started = True
        return await self.scan(force=True)

    async def close(self) -> None:
        """Unsubscribe, flush persistence and clear per-page state."""
        if self._pending_scan is not None and not self._pending_scan.done():
            self._pending_scan.cancel()
        self._pending_scan = None
        if self._started:
            try:
                await self.document.unsubscribe()
            except Exception as exc:
                log.debug("Unsubscribe failed", {"error": errors.get_error_message(exc)})
        self._started = False

        await self.debouncer.flush()
        if self.optimizer is not None:
            await self.optimizer.save()

        log.info("Session closed", self.summary())
        self.processed.clear()
        self.estimator.clear()
        if self.scan_cache is not None:
            self.scan_cache.clear()
        self.log_lines = logger.end_session()

    async def _declared_language(self) -> str | None:
        try:
            return await self.document.language()
        except Exception as exc:
            log.debug("Language lookup failed", {"error": errors.get_error_message(exc)})
            return None

    # ── Scanning ────────────────────────────────────────────────

    async def _on_mutation(self) -> None:
        """Schedule one delayed re-scan per burst of mutations."""
        self._generation += 1
        if self._pending_scan is not None and not self._pending_scan.done():
            return
        self._pending_scan = asyncio.get_running_loop().create_task(self._delayed_scan())

    async def _delayed_scan(self) -> None:
        """Re-scan after a burst settles, postponing rather than dropping
        the scan when the last one was too recent.

        Mutations that arrive while the scan runs get one more pass.
        """
        while True:
            await asyncio.sleep(self.settings.mutation_scan_delay)
            remaining = self.settings.min_scan_interval - (time.monotonic() - self._last_scan)
            if remaining > 0:
                log.debug("Re-scan postponed", {"waitS": round(remaining, 3)})
                await asyncio.sleep(remaining)
            generation = self._generation
            try:
                await self.scan(force=True)
            except Exception as exc:
                log.error("Re-scan failed", {"error": errors.get_error_message(exc)})
            if self._generation == generation or not self._started:
                return

    async def _query_candidates(self) -> list[element.PageElement]:
        selectors = constants.BANNER_CANDIDATE_SELECTORS
        scan_cache = self.scan_cache
        if scan_cache is not None:
            key = f"{self.document.hostname}:{self._generation}"
            batches = await scan_cache.cached_scan(key, lambda: scan_cache.batch_query(self.document, selectors))
        else:
            batches = await query_cache.batch_query(self.document, selectors)

        seen: set[str] = set()
        nodes: list[element.PageElement] = []
        for matches in batches.values():
            for node in matches:
                if node.key not in seen:
                    seen.add(node.key)
                    nodes.append(node)
        return nodes

    async def scan(self, *, force: bool = False) -> list[processing.CoordinatorResult]:
        """Find banners and process each one not yet handled."""
        now = time.monotonic()
        if not force and now - self._last_scan < self.settings.min_scan_interval:
            log.debug("Scan throttled")
            return []

        async with self._scan_lock:
            self._last_scan = time.monotonic()
            self.stats.scans += 1
            results: list[processing.CoordinatorResult] = []
            try:
                viewport = await self.document.viewport()
                nodes = await self._query_candidates()
            except Exception as exc:
                log.error("Scan failed", {"error": errors.get_error_message(exc)})
                return results

            learned = self.history.learned_phrases(self.document.hostname)
            context: page.PageContext | None = None
            for node in nodes:
                if node.key in self.processed:
                    continue
                # An earlier banner's dismissal may have removed this node.
                if not await node.is_connected():
                    continue
                candidate = await self.classifier.build_candidate(node, viewport, learned_phrases=learned)
                if candidate is None:
                    continue
                self.stats.banners_found += 1
                if context is None:
                    context = await self._page_context(viewport)
                language = keywords.detect_language(candidate.snapshot.text, self._declared_language_code)
                result = await self.coordinator.process(candidate, self.document, context, language=language)
                if result.method == "skipped":
                    continue
                self.stats.banners_processed += 1
                if result.success:
                    self.stats.succeeded += 1
                else:
                    self.stats.failed += 1
                results.append(result)
            self.results.extend(results)
            return results

    async def _page_context(self, viewport: page.Viewport) -> page.PageContext:
        try:
            context = await self.document.page_stats()
        except Exception as exc:
            log.debug("Page stats unavailable", {"error": errors.get_error_message(exc)})
            context = page.PageContext()
        return context.model_copy(
            update={"hostname": self.document.hostname, "viewport": viewport, "language": self.language}
        )

    def summary(self) -> dict[str, object]:
        s = self.stats
        data: dict[str, object] = {
            "scans": s.scans,
            "bannersFound": s.banners_found,
            "bannersProcessed": s.banners_processed,
            "bannersSucceeded": s.succeeded,
            "bannersFailed": s.failed,
        }
        data.update(self.coordinator.stats_summary())
        if self.optimizer is not None:
            data["optimizer"] = self.optimizer.stats()
        return data
