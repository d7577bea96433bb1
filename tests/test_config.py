"""Tests for cookie_marshal.config: environment binding and validation."""

from __future__ import annotations

import pathlib
from unittest import mock

import pydantic
import pytest

from cookie_marshal import config


class TestAgentSettings:
    def test_defaults(self) -> None:
        with mock.patch.dict("os.environ", {}, clear=True):
            cfg = config.AgentSettings(_env_file=None)
        assert cfg.banner_confidence_threshold == 0.7
        assert cfg.safe_click_threshold == 0.7
        assert cfg.low_complexity_threshold == 0.3
        assert cfg.high_complexity_threshold == 0.7
        assert cfg.epsilon == 0.1
        assert cfg.learning_rate == 0.1
        assert cfg.history_cap == 50
        assert cfg.storage_dir == pathlib.Path(".cache")

    def test_env_override(self) -> None:
        env = {
            "COOKIE_MARSHAL_EPSILON": "0.25",
            "COOKIE_MARSHAL_PARALLEL_TIMEOUT": "3.5",
            "COOKIE_MARSHAL_STORAGE_DIR": "/tmp/marshal",
        }
        with mock.patch.dict("os.environ", env, clear=True):
            cfg = config.AgentSettings(_env_file=None)
        assert cfg.epsilon == 0.25
        assert cfg.parallel_timeout == 3.5
        assert cfg.storage_dir == pathlib.Path("/tmp/marshal")

    def test_unprefixed_env_is_ignored(self) -> None:
        with mock.patch.dict("os.environ", {"EPSILON": "0.9"}, clear=True):
            cfg = config.AgentSettings(_env_file=None)
        assert cfg.epsilon == 0.1

    def test_env_file(self, tmp_path: pathlib.Path) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("COOKIE_MARSHAL_HISTORY_CAP=12\n", encoding="utf-8")
        with mock.patch.dict("os.environ", {}, clear=True):
            cfg = config.AgentSettings(_env_file=env_file)
        assert cfg.history_cap == 12

    @pytest.mark.parametrize("epsilon", ["-0.1", "1.5"])
    def test_epsilon_is_bounded(self, epsilon: str) -> None:
        with mock.patch.dict("os.environ", {"COOKIE_MARSHAL_EPSILON": epsilon}, clear=True):
            with pytest.raises(pydantic.ValidationError):
                config.AgentSettings(_env_file=None)

    def test_thresholds_must_be_ordered(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            config.AgentSettings(_env_file=None, low_complexity_threshold=0.8, high_complexity_threshold=0.5)


class TestGetSettings:
    def test_is_cached(self) -> None:
        config.get_settings.cache_clear()
        try:
            with mock.patch.dict("os.environ", {}, clear=True):
                first = config.get_settings()
            assert config.get_settings() is first
        finally:
            config.get_settings.cache_clear()
