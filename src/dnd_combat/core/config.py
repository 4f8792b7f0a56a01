"""Configuration management for the D&D combat engine.

Settings are loaded with pydantic-settings from environment variables and
an optional ``.env`` file. Nested settings use their own prefixes.

Example:
    >>> from dnd_combat.core.config import get_settings
    >>> settings = get_settings()
    >>> settings.engine.round_advance_mode
    'checkpoint'

Environment Variables:
    DND_COMBAT_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    DND_COMBAT_JSON_LOGS: Emit JSON log lines instead of console output
    DND_COMBAT_ENGINE_ROUND_ADVANCE_MODE: "checkpoint" or "auto"
    DND_COMBAT_ENGINE_SECONDS_PER_ROUND: Wall-clock length of a round for effect expiry
    DND_COMBAT_STORAGE_BACKEND: "memory" or "sqlite"
    DND_COMBAT_STORAGE_DATABASE_PATH: Path to the SQLite database file
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dnd_combat.core.exceptions import ConfigurationError


class RoundAdvanceMode(StrEnum):
    """What happens after the last combatant in the order acts.

    CHECKPOINT pauses with a pending round until someone explicitly
    continues it. AUTO starts the next round immediately.
    """

    CHECKPOINT = "checkpoint"
    AUTO = "auto"


class EngineSettings(BaseSettings):
    """Configuration for turn engine behavior.

    Attributes:
        round_advance_mode: Round wrap behavior after the last turn.
        seconds_per_round: Length of a round used to compute effect expiry.
        combat_log_limit: Keep only the newest N log entries (None keeps all).
        dice_seed: Seed for the default dice roller (None for random).
    """

    model_config = SettingsConfigDict(
        env_prefix="DND_COMBAT_ENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    round_advance_mode: RoundAdvanceMode = Field(
        default=RoundAdvanceMode.CHECKPOINT,
        description="Round wrap behavior",
    )
    seconds_per_round: float = Field(
        default=6.0,
        gt=0,
        le=3600,
        description="Seconds per combat round",
    )
    combat_log_limit: int | None = Field(
        default=None,
        ge=1,
        description="Maximum retained combat log entries",
    )
    dice_seed: int | None = Field(
        default=None,
        description="Seed for reproducible dice rolls",
    )


class StorageSettings(BaseSettings):
    """Configuration for encounter persistence.

    Attributes:
        backend: Repository adapter to use.
        database_path: Path to the SQLite database file.
    """

    model_config = SettingsConfigDict(
        env_prefix="DND_COMBAT_STORAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    backend: Literal["memory", "sqlite"] = Field(
        default="memory",
        description="Encounter repository backend",
    )
    database_path: Path = Field(
        default=Path("data/dnd_combat.db"),
        description="Path to SQLite database",
    )

    @field_validator("database_path", mode="after")
    @classmethod
    def validate_database_path(cls, value: Path) -> Path:
        """Reject paths that point at an existing directory.

        Raises:
            ConfigurationError: If the path is a directory.
        """
        if value.is_dir():
            raise ConfigurationError(
                f"database_path must be a file, got directory {value}",
                config_key="database_path",
            )
        return value


class Settings(BaseSettings):
    """Main application settings aggregating all configuration domains.

    Attributes:
        app_name: Application name.
        app_version: Application version string.
        debug: Enable debug mode.
        log_level: Application logging level.
        json_logs: Render logs as JSON lines.
        engine: Turn engine settings.
        storage: Persistence settings.
    """

    model_config = SettingsConfigDict(
        env_prefix="DND_COMBAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    app_name: str = Field(
        default="D&D Combat Engine",
        description="Application name",
    )
    app_version: str = Field(
        default="0.1.0",
        description="Application version",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    json_logs: bool = Field(
        default=False,
        description="Emit JSON formatted logs",
    )

    engine: EngineSettings = Field(default_factory=EngineSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    @property
    def is_production(self) -> bool:
        """Check if running in production mode.

        Returns:
            True if not in debug mode.
        """
        return not self.debug


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The application Settings instance.

    Raises:
        ConfigurationError: If configuration is missing or invalid.
    """
    try:
        return Settings()
    except ConfigurationError:
        raise
    except Exception as exc:
        raise ConfigurationError(
            f"Failed to load application settings: {exc}",
            details={"original_error": str(exc)},
        ) from exc


def clear_settings_cache() -> None:
    """Clear the settings cache, forcing a reload on next access.

    Example:
        >>> clear_settings_cache()
        >>> settings = get_settings()  # Reloads from environment
    """
    get_settings.cache_clear()


__all__ = [
    "RoundAdvanceMode",
    "EngineSettings",
    "StorageSettings",
    "Settings",
    "get_settings",
    "clear_settings_cache",
]
