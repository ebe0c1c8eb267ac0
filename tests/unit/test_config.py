"""Tests for configuration models and YAML loading."""

import logging
import os

import pytest
from pydantic import ValidationError

from maestro.core.config import (
    ExecutionConfig,
    LoggingConfig,
    MaestroConfig,
    RecoveryConfig,
    WatchdogConfig,
    _expand_env_vars,
    clear_config_cache,
    load_config,
)
from maestro.errors import ConfigurationError


@pytest.fixture(autouse=True)
def _fresh_cache():
    clear_config_cache()
    yield
    clear_config_cache()


class TestDefaults:
    def test_execution_defaults(self):
        config = ExecutionConfig()

        assert config.max_retries == 3
        assert config.task_timeout_ms == 300_000
        assert config.review_required is True
        assert config.confidence_threshold == 0.6
        assert config.recovery == RecoveryConfig()
        assert config.watchdog.max_handoff_cycles == 3

    def test_watchdog_defaults(self):
        config = WatchdogConfig()

        assert config.enabled
        assert config.activity_timeout_ms == 120_000
        assert config.check_interval_ms == 10_000
        assert config.llm_request_grace_period_ms == 300_000

    def test_logging_level_normalized(self):
        assert LoggingConfig(level="debug").level == "DEBUG"


class TestValidation:
    def test_max_retries_must_be_positive(self):
        with pytest.raises(ValidationError, match="max_retries"):
            ExecutionConfig(max_retries=0)

    @pytest.mark.parametrize("threshold", [-0.1, 1.5])
    def test_threshold_range(self, threshold):
        with pytest.raises(ValidationError, match="confidence_threshold"):
            ExecutionConfig(confidence_threshold=threshold)

    def test_threshold_bounds_inclusive(self):
        assert ExecutionConfig(confidence_threshold=0.0).confidence_threshold == 0.0
        assert ExecutionConfig(confidence_threshold=1.0).confidence_threshold == 1.0

    def test_handoff_cycles_must_be_positive(self):
        with pytest.raises(ValidationError):
            WatchdogConfig(max_handoff_cycles=0)

    def test_short_grace_period_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="maestro.core.config"):
            WatchdogConfig(activity_timeout_ms=10_000, llm_request_grace_period_ms=5_000)

        assert "shorter than" in caplog.text


class TestLoadConfig:
    def test_missing_file_returns_defaults(self, tmp_path):
        config = load_config(tmp_path / "nope.yaml")

        assert isinstance(config, MaestroConfig)
        assert config.execution.max_retries == 3

    def test_loads_nested_sections(self, tmp_path):
        path = tmp_path / "maestro.yaml"
        path.write_text(
            "project_name: demo\n"
            "execution:\n"
            "  max_retries: 5\n"
            "  confidence_threshold: 0.75\n"
            "  watchdog:\n"
            "    max_handoff_cycles: 4\n"
            "  recovery:\n"
            "    enabled: false\n"
            "logging:\n"
            "  level: warning\n"
        )

        config = load_config(path)

        assert config.project_name == "demo"
        assert config.execution.max_retries == 5
        assert config.execution.confidence_threshold == 0.75
        assert config.execution.watchdog.max_handoff_cycles == 4
        assert config.execution.recovery.enabled is False
        assert config.logging.level == "WARNING"

    def test_env_var_expansion(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DEMO_PROJECT", "from-env")
        path = tmp_path / "maestro.yaml"
        path.write_text("project_name: ${DEMO_PROJECT}\n")

        assert load_config(path).project_name == "from-env"

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "maestro.yaml"
        path.write_text("execution: [unclosed\n")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_config(path)

    def test_non_mapping_root(self, tmp_path):
        path = tmp_path / "maestro.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigurationError, match="must be a mapping"):
            load_config(path)

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "maestro.yaml"
        path.write_text("")

        assert load_config(path).project_name == "maestro"

    def test_cached_until_file_changes(self, tmp_path):
        path = tmp_path / "maestro.yaml"
        path.write_text("project_name: first\n")

        first = load_config(path)
        assert load_config(path) is first

        path.write_text("project_name: second\n")
        stat = path.stat()
        os.utime(path, (stat.st_atime, stat.st_mtime + 5))

        assert load_config(path).project_name == "second"

    def test_clear_cache_forces_reload(self, tmp_path):
        path = tmp_path / "maestro.yaml"
        path.write_text("project_name: first\n")

        first = load_config(path)
        clear_config_cache()

        assert load_config(path) is not first


class TestExpandEnvVars:
    def test_nested_structures(self, monkeypatch):
        monkeypatch.setenv("DEMO_VALUE", "x")

        data = {"a": ["${DEMO_VALUE}", "plain"], "b": {"c": "${DEMO_VALUE}"}, "n": 3}

        assert _expand_env_vars(data) == {"a": ["x", "plain"], "b": {"c": "x"}, "n": 3}

    def test_unset_variable_kept_literal(self, monkeypatch, caplog):
        monkeypatch.delenv("DEMO_MISSING", raising=False)

        with caplog.at_level(logging.WARNING, logger="maestro.core.config"):
            result = _expand_env_vars({"key": "${DEMO_MISSING}"})

        assert result == {"key": "${DEMO_MISSING}"}
        assert "config path: key" in caplog.text
