"""
🧪 Unit Tests for Configuration and Logging
File: tests/unit/test_config_logging.py

Tests addp/config.py and addp/logger.py:
- Defaults, dot-notation access and updates
- ADDP_ environment overrides
- Journal themes
- Operation logging and timings

Run with: pytest tests/unit/test_config_logging.py -v
"""

import logging

import pytest

from addp.config import ConfigManager, resolve_config, theme_journal
from addp.exceptions import ConfigurationError
from addp.logger import PerformanceLogger, get_logger

pytestmark = pytest.mark.unit


class TestConfigManager:
    def test_defaults(self, config):
        assert config.get("pvalue.digits") == 1
        assert config.get("pvalue.header") == "**p-value**"
        assert config.get("tests.expected_count_min") == 5
        assert config.get("tests.survival") == "logrank"
        assert config.get("survival.ties") == "efron"
        assert config.get("performance.num_threads") == 4

    def test_missing_key_returns_default(self, config):
        assert config.get("pvalue.nope") is None
        assert config.get("nope.nope", "fallback") == "fallback"

    def test_update_existing_key(self, config):
        config.update("pvalue.digits", 3)
        assert config.get("pvalue.digits") == 3

    def test_update_unknown_key_raises(self, config):
        with pytest.raises(KeyError):
            config.update("pvalue.colour", "red")
        with pytest.raises(KeyError):
            config.update("nosection.key", 1)

    def test_get_section_is_a_copy(self, config):
        section = config.get_section("tests")
        section["expected_count_min"] = 100
        assert config.get("tests.expected_count_min") == 5

    def test_copy_is_independent(self, config):
        clone = config.copy()
        clone.update("pvalue.digits", 2)
        assert config.get("pvalue.digits") == 1
        assert clone.get("pvalue.digits") == 2

    def test_config_dict_is_not_mutated(self):
        source = ConfigManager(load_env=False).to_dict()
        manager = ConfigManager(source, load_env=False)
        manager.update("pvalue.digits", 3)
        assert source["pvalue"]["digits"] == 1

    def test_validate(self, config):
        valid, errors = config.validate()
        assert valid and errors == []

        config.update("pvalue.digits", 4)
        config.update("performance.num_threads", 0)
        valid, errors = config.validate()
        assert not valid
        assert len(errors) == 2


class TestEnvOverrides:
    def test_env_value_is_parsed(self, monkeypatch):
        monkeypatch.setenv("ADDP_PVALUE_DIGITS", "2")
        monkeypatch.setenv("ADDP_TESTS_EXPECTED_COUNT_MIN", "10")
        config = ConfigManager()
        assert config.get("pvalue.digits") == 2
        assert config.get("tests.expected_count_min") == 10

    def test_string_value_kept(self, monkeypatch):
        monkeypatch.setenv("ADDP_SURVIVAL_TIES", "breslow")
        assert ConfigManager().get("survival.ties") == "breslow"

    def test_unknown_key_warns(self, monkeypatch):
        monkeypatch.setenv("ADDP_PVALUE_COLOUR", "red")
        with pytest.warns(UserWarning, match="ADDP_PVALUE_COLOUR"):
            config = ConfigManager()
        assert config.get("pvalue.colour") is None

    def test_load_env_false_ignores_environment(self, monkeypatch):
        monkeypatch.setenv("ADDP_PVALUE_DIGITS", "3")
        assert ConfigManager(load_env=False).get("pvalue.digits") == 1


class TestThemes:
    def test_jama_uses_two_digits(self, config):
        jama = theme_journal("JAMA", base=config)
        assert jama.get("pvalue.digits") == 2
        assert config.get("pvalue.digits") == 1

    def test_unknown_journal(self):
        with pytest.raises(ValueError, match="Unsupported journal"):
            theme_journal("lancet")

    def test_resolve_config(self, config):
        assert resolve_config(config) is config
        assert isinstance(resolve_config(None), ConfigManager)
        with pytest.raises(TypeError):
            resolve_config({"pvalue": {}})

    def test_resolve_config_rejects_invalid_settings(self, config):
        config.update("pvalue.digits", 4)
        with pytest.raises(ConfigurationError, match="pvalue.digits") as exc:
            resolve_config(config)
        assert exc.value.argument == "config"


class TestLogger:
    @pytest.fixture
    def captured(self, caplog):
        """Attach caplog to the package logger, which does not propagate."""
        package_logger = logging.getLogger("addp")
        package_logger.addHandler(caplog.handler)
        previous = package_logger.level
        package_logger.setLevel(logging.DEBUG)
        yield caplog
        package_logger.setLevel(previous)
        package_logger.removeHandler(caplog.handler)

    def test_log_operation_format(self, captured):
        get_logger("addp.tests").log_operation("add_p.summary_table", "resolving", included=3)
        assert "[add_p.summary_table] RESOLVING | included=3" in captured.text

    def test_failed_operation_logs_error(self, captured):
        get_logger("addp.tests").log_operation("add_p.cross_table", "failed", error="boom")
        errors = [r for r in captured.records if r.levelno == logging.ERROR]
        assert len(errors) == 1
        assert "boom" in errors[0].getMessage()

    def test_track_time_records_timing(self, captured):
        log = get_logger("addp.tests")
        with log.track_time("unit.timing"):
            pass
        assert "unit.timing" in log.get_timings()

    def test_loggers_are_cached(self):
        assert get_logger("addp.tests") is get_logger("addp.tests")

    def test_log_operation_joins_details(self, captured):
        get_logger("addp.tests").log_operation("add_p.survival_table", "testing", tests=2, quiet=True)
        assert "[add_p.survival_table] TESTING | tests=2 | quiet=True" in captured.text

    def test_state_transitions_are_debug_by_default(self, captured):
        get_logger("addp.tests").log_operation("add_p.summary_table", "resolving")
        records = [r for r in captured.records if "RESOLVING" in r.getMessage()]
        assert [r.levelno for r in records] == [logging.DEBUG]

    def test_timings_are_bounded(self):
        perf = PerformanceLogger(logging.getLogger("addp.tests.performance"), history=3)
        for _ in range(5):
            with perf.track_time("unit.bounded"):
                pass
        assert len(perf.get_timings("unit.bounded")["unit.bounded"]) == 3
