"""Environment configuration for chromeframe.

Only ambient settings (logging) come from the environment. Everything that
decides how the browser is launched is passed explicitly via LaunchOptions.
"""

import logging
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class EnvConfig(BaseSettings):
    """Environment variable configuration using pydantic-settings."""

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=True,
        extra='allow',
    )

    # Logging
    CHROMEFRAME_LOGGING_LEVEL: str = Field(default='info')
    CDP_LOGGING_LEVEL: str = Field(default='WARNING')
    CHROMEFRAME_DEBUG_LOG_FILE: str | None = Field(default=None)
    CHROMEFRAME_INFO_LOG_FILE: str | None = Field(default=None)
    CHROMEFRAME_SETUP_LOGGING: bool = Field(default=True)


class Config:
    """Configuration class backed by the environment.

    Re-reads the process environment (falling back to ``.env``) on every
    access, so tests and embedding applications can change settings at
    runtime. Process environment variables win over ``.env`` entries.
    """

    _instance: 'Config | None' = None

    def __new__(cls) -> 'Config':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def LOGGING_LEVEL(self) -> str:
        return self.env().CHROMEFRAME_LOGGING_LEVEL.lower()

    @property
    def CDP_LOGGING_LEVEL(self) -> str:
        return self.env().CDP_LOGGING_LEVEL.upper()

    @property
    def DEBUG_LOG_FILE(self) -> Path | None:
        value = self.env().CHROMEFRAME_DEBUG_LOG_FILE
        return Path(value).expanduser().resolve() if value else None

    @property
    def INFO_LOG_FILE(self) -> Path | None:
        value = self.env().CHROMEFRAME_INFO_LOG_FILE
        return Path(value).expanduser().resolve() if value else None

    @property
    def SETUP_LOGGING(self) -> bool:
        return self.env().CHROMEFRAME_SETUP_LOGGING

    def env(self) -> EnvConfig:
        """Snapshot of the environment (and .env file) as a typed model."""
        return EnvConfig()


CONFIG = Config()
