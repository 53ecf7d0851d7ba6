"""
Configuration management for the BESS converter.
Defaults live in pydantic models; environment variables (and a .env file)
override them at load time.
"""

import os
from enum import Enum
from typing import Optional, Tuple
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ConfigurationError

# Load environment variables from .env file
load_dotenv()


class FileNotFoundPolicy(str, Enum):
    """What to do when a scanned file has disappeared"""
    SKIP = "skip"
    WARN = "warn"
    ERROR = "error"


class ParseErrorPolicy(str, Enum):
    """What to do when a row cannot be parsed"""
    SKIP_ROW = "skip-row"
    SKIP_FILE = "skip-file"
    ABORT = "abort"


class ValidationErrorPolicy(str, Enum):
    """What to do when a value falls outside its expected range"""
    MARK_INVALID = "mark-invalid"
    SKIP_DATA = "skip-data"
    ABORT = "abort"


class Project1Config(BaseModel):
    """Project1 (system/BankNN) CSV layout"""
    encoding: str = "utf-8-sig"
    time_format: str = "%m/%d/%Y %H:%M"
    cell_count: int = 240

    @field_validator('cell_count')
    @classmethod
    def validate_cell_count(cls, v):
        if v <= 0:
            raise ValueError("cell_count must be positive")
        return v


class Project2Config(BaseModel):
    """Project2 (group/data-type) CSV layout"""
    encoding: str = "utf-8-sig"
    time_format: str = "%Y-%m-%d %H:%M:%S"
    cell_count: int = 216

    @field_validator('cell_count')
    @classmethod
    def validate_cell_count(cls, v):
        if v <= 0:
            raise ValueError("cell_count must be positive")
        return v


class ValidationConfig(BaseModel):
    """Expected ranges for per-cell readings"""
    voltage_range: Tuple[float, float] = (2.5, 4.2)
    temperature_range: Tuple[float, float] = (-40.0, 80.0)
    soc_range: Tuple[float, float] = (0.0, 100.0)
    soh_range: Tuple[float, float] = (0.0, 100.0)

    @field_validator('voltage_range', 'temperature_range', 'soc_range', 'soh_range')
    @classmethod
    def validate_range(cls, v):
        low, high = v
        if low > high:
            raise ValueError(f"Range lower bound {low} exceeds upper bound {high}")
        return v


class ErrorHandlingStrategy(BaseModel):
    """Error handling policy read by every ErrorHandler decision"""
    on_file_not_found: FileNotFoundPolicy = FileNotFoundPolicy.WARN
    on_parse_error: ParseErrorPolicy = ParseErrorPolicy.SKIP_ROW
    on_validation_error: ValidationErrorPolicy = ValidationErrorPolicy.MARK_INVALID
    max_errors_per_file: int = 100
    continue_on_error: bool = True
    max_retries: int = 3
    retry_delay: float = 1.0  # seconds

    @field_validator('max_errors_per_file', 'max_retries')
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("Value must be non-negative")
        return v

    @field_validator('retry_delay')
    @classmethod
    def validate_retry_delay(cls, v):
        if v < 0:
            raise ValueError("retry_delay must be non-negative")
        return v


class PipelineConfig(BaseModel):
    """Batch conversion settings"""
    max_workers: int = 4
    report_dir: Optional[str] = None

    @field_validator('max_workers')
    @classmethod
    def validate_max_workers(cls, v):
        if v < 1:
            raise ValueError("max_workers must be at least 1")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration"""
    level: str = "INFO"
    format: str = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {extra[component]} | {message}"
    file_path: Optional[str] = None
    rotation: str = "10 MB"
    retention: str = "7 days"

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        allowed = ['TRACE', 'DEBUG', 'INFO', 'SUCCESS', 'WARNING', 'ERROR', 'CRITICAL']
        v = v.upper()
        if v not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v


class AppConfig(BaseModel):
    """Main application configuration"""
    app_name: str = "BESS Converter"
    version: str = "0.1.0"
    environment: str = "development"

    project1: Project1Config = Field(default_factory=Project1Config)
    project2: Project2Config = Field(default_factory=Project2Config)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    error_handling: ErrorHandlingStrategy = Field(default_factory=ErrorHandlingStrategy)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class ConfigManager:
    """Configuration manager for loading app settings from environment variables"""

    def __init__(self):
        self._config: Optional[AppConfig] = None

    def load_config(self) -> AppConfig:
        """Load configuration from environment variables with sensible defaults"""
        if self._config is None:
            self._config = AppConfig()
            try:
                self._override_from_env()
            except (ValueError, ValidationError) as e:
                self._config = None
                raise ConfigurationError(f"Invalid BESS_* environment setting: {e}") from e
        return self._config

    def _override_from_env(self) -> None:
        """Override configuration values from environment variables"""
        if not self._config:
            return

        # App overrides
        if os.getenv('BESS_ENV'):
            self._config.environment = os.getenv('BESS_ENV', self._config.environment)

        # Logging overrides
        if os.getenv('BESS_LOG_LEVEL'):
            self._config.logging = LoggingConfig.model_validate(
                {**self._config.logging.model_dump(), 'level': os.getenv('BESS_LOG_LEVEL')}
            )
        if os.getenv('BESS_LOG_FILE'):
            self._config.logging.file_path = os.getenv('BESS_LOG_FILE')

        # Project layout overrides
        if os.getenv('BESS_PROJECT1_ENCODING'):
            self._config.project1.encoding = os.getenv('BESS_PROJECT1_ENCODING', self._config.project1.encoding)
        if os.getenv('BESS_PROJECT1_CELL_COUNT'):
            self._config.project1 = Project1Config.model_validate(
                {**self._config.project1.model_dump(), 'cell_count': int(os.getenv('BESS_PROJECT1_CELL_COUNT'))}
            )
        if os.getenv('BESS_PROJECT2_ENCODING'):
            self._config.project2.encoding = os.getenv('BESS_PROJECT2_ENCODING', self._config.project2.encoding)
        if os.getenv('BESS_PROJECT2_CELL_COUNT'):
            self._config.project2 = Project2Config.model_validate(
                {**self._config.project2.model_dump(), 'cell_count': int(os.getenv('BESS_PROJECT2_CELL_COUNT'))}
            )

        # Pipeline overrides
        if os.getenv('BESS_MAX_WORKERS'):
            self._config.pipeline = PipelineConfig.model_validate(
                {**self._config.pipeline.model_dump(), 'max_workers': int(os.getenv('BESS_MAX_WORKERS'))}
            )
        if os.getenv('BESS_REPORT_DIR'):
            self._config.pipeline.report_dir = os.getenv('BESS_REPORT_DIR')

        # Error handling overrides
        strategy_overrides = {}
        if os.getenv('BESS_ON_FILE_NOT_FOUND'):
            strategy_overrides['on_file_not_found'] = os.getenv('BESS_ON_FILE_NOT_FOUND')
        if os.getenv('BESS_ON_PARSE_ERROR'):
            strategy_overrides['on_parse_error'] = os.getenv('BESS_ON_PARSE_ERROR')
        if os.getenv('BESS_ON_VALIDATION_ERROR'):
            strategy_overrides['on_validation_error'] = os.getenv('BESS_ON_VALIDATION_ERROR')
        if os.getenv('BESS_MAX_ERRORS_PER_FILE'):
            strategy_overrides['max_errors_per_file'] = int(os.getenv('BESS_MAX_ERRORS_PER_FILE'))
        if os.getenv('BESS_CONTINUE_ON_ERROR'):
            strategy_overrides['continue_on_error'] = os.getenv('BESS_CONTINUE_ON_ERROR', 'true').lower() == 'true'
        if os.getenv('BESS_MAX_RETRIES'):
            strategy_overrides['max_retries'] = int(os.getenv('BESS_MAX_RETRIES'))
        if os.getenv('BESS_RETRY_DELAY'):
            strategy_overrides['retry_delay'] = float(os.getenv('BESS_RETRY_DELAY'))
        if strategy_overrides:
            # Re-validate so enum strings from the environment are coerced
            self._config.error_handling = ErrorHandlingStrategy.model_validate(
                {**self._config.error_handling.model_dump(), **strategy_overrides}
            )

    def get_config(self) -> AppConfig:
        """Get current configuration"""
        return self.load_config()

    def reload_config(self) -> AppConfig:
        """Reload configuration from environment variables"""
        self._config = None
        return self.load_config()


# Global configuration instance
config_manager = ConfigManager()


def get_config() -> AppConfig:
    """Get the global configuration instance"""
    return config_manager.get_config()


def reload_config() -> AppConfig:
    """Reload the global configuration"""
    return config_manager.reload_config()
