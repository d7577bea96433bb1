"""
Agent configuration.

Centralises every threshold, weight-independent constant and
timeout used by the classifier, coordinator, learning optimizer and
negotiation state machine.

Uses ``pydantic_settings.BaseSettings`` for automatic environment
variable binding (prefix ``COOKIE_MARSHAL_``, optional ``.env``
file), type coercion, and validation.
"""

from __future__ import annotations

import functools
import pathlib

import pydantic
import pydantic_settings

from cookie_marshal.utils import logger

log = logger.create_logger("Agent-Config")


class AgentSettings(pydantic_settings.BaseSettings):
    """Tunable defaults for one agent session.

    Attributes are grouped by the component that reads them.  All
    durations are in seconds.
    """

    model_config = pydantic_settings.SettingsConfigDict(
        env_prefix="COOKIE_MARSHAL_",
        env_file=".env",
        extra="ignore",
    )

    # ── Element classifier ─────────────────────────────────────
    banner_confidence_threshold: float = pydantic.Field(default=0.7, ge=0.0, le=1.0)
    context_score_threshold: float = pydantic.Field(default=0.5, ge=0.0, le=1.0)
    safe_click_threshold: float = pydantic.Field(default=0.7, ge=0.0, le=1.0)
    min_banner_width: float = 200.0
    min_banner_height: float = 50.0

    # ── Complexity estimator ───────────────────────────────────
    low_complexity_threshold: float = 0.3
    high_complexity_threshold: float = 0.7
    complexity_cache_ttl: float = 3600.0
    history_window_days: int = 7

    # ── Strategy coordinator ───────────────────────────────────
    rule_confidence_minimum: float = 0.6
    arbitration_margin: float = 0.2
    parallel_timeout: float = 2.0
    learning_timeout: float = 2.0
    banner_timeout: float = 30.0
    rule_step_timeout: float = 3.0

    # ── Learning optimizer ─────────────────────────────────────
    epsilon: float = pydantic.Field(default=0.1, ge=0.0, le=1.0)
    learning_rate: float = pydantic.Field(default=0.1, gt=0.0, le=1.0)
    max_experiences: int = 1000
    save_every: int = 10
    optimizer_call_timeout: float = 0.5

    # ── Domain history store ───────────────────────────────────
    history_cap: int = 50
    learned_pattern_cap: int = 20

    # ── Negotiation state machine ──────────────────────────────
    click_verify_timeout: float = 1.0
    click_verify_interval: float = 0.1
    preference_poll_interval: float = 0.5
    preference_timeout: float = 10.0
    mutation_delay: float = 0.15
    progressive_max_steps: int = 3
    negotiation_timeout: float = 20.0

    # ── Session ────────────────────────────────────────────────
    min_scan_interval: float = 0.5
    mutation_scan_delay: float = 0.3
    scan_cache_ttl: float = 30.0
    persist_debounce: float = 0.5
    storage_dir: pathlib.Path = pathlib.Path(".cache")

    @pydantic.model_validator(mode="after")
    def _check_thresholds(self) -> AgentSettings:
        """Complexity thresholds must be ordered."""
        if self.low_complexity_threshold >= self.high_complexity_threshold:
            raise ValueError("low_complexity_threshold must be below high_complexity_threshold")
        return self


@functools.lru_cache(maxsize=1)
def get_settings() -> AgentSettings:
    """Return the process-wide settings, read once from the environment."""
    settings = AgentSettings()
    log.debug(
        "Settings loaded",
        {
            "storageDir": str(settings.storage_dir),
            "parallelTimeout": settings.parallel_timeout,
            "epsilon": settings.epsilon,
        },
    )
    return settings
