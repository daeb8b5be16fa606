from enum import StrEnum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogFormat(StrEnum):
    JSON = "json"
    CONSOLE = "console"


class LogLevel(StrEnum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ExportSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="METRICS_EXPORT_")

    # Timer digests are recorded in nanoseconds, quantiles are exported in seconds.
    duration_factor: float = Field(default=1.0 / 1e9, gt=0)


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    export: ExportSettings = Field(default_factory=ExportSettings)

    log_level: LogLevel = LogLevel.INFO
    log_format: LogFormat = LogFormat.JSON
    environment: str = "development"


def get_settings() -> AppSettings:
    return AppSettings()
