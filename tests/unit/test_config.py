"""
Unit tests for configuration models and the environment-driven ConfigManager.
"""
import pytest
from pydantic import ValidationError

from bess_converter.core.config import (
    AppConfig,
    ConfigManager,
    ErrorHandlingStrategy,
    FileNotFoundPolicy,
    LoggingConfig,
    ParseErrorPolicy,
    PipelineConfig,
    Project1Config,
    Project2Config,
    ValidationConfig,
    ValidationErrorPolicy
)
from bess_converter.core.exceptions import ConfigurationError


class TestConfigModels:
    """Test configuration model defaults and validators."""

    def test_project_defaults(self):
        project1 = Project1Config()
        project2 = Project2Config()

        assert project1.encoding == "utf-8-sig"
        assert project1.time_format == "%m/%d/%Y %H:%M"
        assert project1.cell_count == 240
        assert project2.time_format == "%Y-%m-%d %H:%M:%S"
        assert project2.cell_count == 216

    def test_validation_ranges(self):
        ranges = ValidationConfig()

        assert ranges.voltage_range == (2.5, 4.2)
        assert ranges.temperature_range == (-40.0, 80.0)
        assert ranges.soc_range == (0.0, 100.0)
        assert ranges.soh_range == (0.0, 100.0)

    def test_inverted_range_rejected(self):
        with pytest.raises(ValidationError):
            ValidationConfig(voltage_range=(4.2, 2.5))

    def test_strategy_defaults(self):
        strategy = ErrorHandlingStrategy()

        assert strategy.on_file_not_found == FileNotFoundPolicy.WARN
        assert strategy.on_parse_error == ParseErrorPolicy.SKIP_ROW
        assert strategy.on_validation_error == ValidationErrorPolicy.MARK_INVALID
        assert strategy.max_errors_per_file == 100
        assert strategy.continue_on_error is True
        assert strategy.max_retries == 3
        assert strategy.retry_delay == 1.0

    def test_strategy_accepts_policy_strings(self):
        strategy = ErrorHandlingStrategy(on_parse_error="skip-file", on_validation_error="skip-data")

        assert strategy.on_parse_error == ParseErrorPolicy.SKIP_FILE
        assert strategy.on_validation_error == ValidationErrorPolicy.SKIP_DATA

    @pytest.mark.parametrize("field, value", [
        ("max_retries", -1),
        ("max_errors_per_file", -5),
        ("retry_delay", -0.5),
        ("on_parse_error", "ignore"),
    ])
    def test_strategy_rejects_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            ErrorHandlingStrategy(**{field: value})

    def test_cell_count_must_be_positive(self):
        with pytest.raises(ValidationError):
            Project1Config(cell_count=0)

    def test_pipeline_workers(self):
        assert PipelineConfig().max_workers == 4
        with pytest.raises(ValidationError):
            PipelineConfig(max_workers=0)

    def test_log_level_normalized(self):
        assert LoggingConfig(level="debug").level == "DEBUG"
        with pytest.raises(ValidationError):
            LoggingConfig(level="verbose")

    def test_app_config_sections_are_independent(self):
        first = AppConfig()
        second = AppConfig()
        first.pipeline.max_workers = 8

        assert second.pipeline.max_workers == 4


class TestConfigManager:
    """Test ConfigManager environment overrides."""

    def test_defaults_without_environment(self, monkeypatch):
        for name in ("BESS_MAX_WORKERS", "BESS_ON_PARSE_ERROR", "BESS_LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)

        config = ConfigManager().load_config()

        assert config.pipeline.max_workers == 4
        assert config.error_handling.on_parse_error == ParseErrorPolicy.SKIP_ROW

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("BESS_LOG_LEVEL", "debug")
        monkeypatch.setenv("BESS_MAX_WORKERS", "2")
        monkeypatch.setenv("BESS_PROJECT1_CELL_COUNT", "120")
        monkeypatch.setenv("BESS_ON_PARSE_ERROR", "abort")
        monkeypatch.setenv("BESS_MAX_RETRIES", "5")
        monkeypatch.setenv("BESS_RETRY_DELAY", "0.25")
        monkeypatch.setenv("BESS_CONTINUE_ON_ERROR", "false")

        config = ConfigManager().load_config()

        assert config.logging.level == "DEBUG"
        assert config.pipeline.max_workers == 2
        assert config.project1.cell_count == 120
        assert config.error_handling.on_parse_error == ParseErrorPolicy.ABORT
        assert config.error_handling.max_retries == 5
        assert config.error_handling.retry_delay == 0.25
        assert config.error_handling.continue_on_error is False

    def test_invalid_environment_value(self, monkeypatch):
        monkeypatch.setenv("BESS_ON_VALIDATION_ERROR", "explode")

        with pytest.raises(ConfigurationError):
            ConfigManager().load_config()

    def test_invalid_cell_count(self, monkeypatch):
        monkeypatch.setenv("BESS_PROJECT2_CELL_COUNT", "0")

        with pytest.raises(ConfigurationError):
            ConfigManager().load_config()

    @pytest.mark.parametrize("name, value", [
        ("BESS_MAX_WORKERS", "0"),
        ("BESS_MAX_WORKERS", "many"),
        ("BESS_LOG_LEVEL", "chatty"),
    ])
    def test_invalid_pipeline_and_logging_values(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)

        with pytest.raises(ConfigurationError):
            ConfigManager().load_config()

    def test_config_is_cached_until_reload(self, monkeypatch):
        monkeypatch.delenv("BESS_MAX_WORKERS", raising=False)
        manager = ConfigManager()
        first = manager.get_config()

        assert manager.get_config() is first

        monkeypatch.setenv("BESS_MAX_WORKERS", "3")
        reloaded = manager.reload_config()

        assert reloaded is not first
        assert reloaded.pipeline.max_workers == 3
