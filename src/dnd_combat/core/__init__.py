"""Core module providing configuration, logging, and base exceptions.

Exports:
    Exceptions:
        DndCombatError: Base exception for all engine errors.
        NotFoundError, ValidationError, DiceRollError: Input and lookup errors.
        InvalidStateError, CombatError, PermissionDeniedError: Engine errors.

    Configuration:
        Settings: Main application settings class.
        get_settings: Get the settings singleton.
        clear_settings_cache: Force settings reload.

    Logging:
        configure_logging: Set up application logging.
        get_logger: Get a configured logger instance.
"""

from __future__ import annotations

from dnd_combat.core.config import (
    EngineSettings,
    RoundAdvanceMode,
    Settings,
    StorageSettings,
    clear_settings_cache,
    get_settings,
)
from dnd_combat.core.exceptions import (
    CombatError,
    ConfigurationError,
    DiceRollError,
    DndCombatError,
    GameEngineError,
    InvalidStateError,
    NotFoundError,
    OperationCancelledError,
    PermissionDeniedError,
    StorageError,
    ValidationError,
)
from dnd_combat.core.logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    log_context,
)


__all__ = [
    # Base exception
    "DndCombatError",
    # Lookup & validation exceptions
    "NotFoundError",
    "ValidationError",
    "DiceRollError",
    # Game engine exceptions
    "GameEngineError",
    "InvalidStateError",
    "CombatError",
    "PermissionDeniedError",
    "OperationCancelledError",
    # Configuration & storage exceptions
    "ConfigurationError",
    "StorageError",
    # Configuration
    "Settings",
    "EngineSettings",
    "StorageSettings",
    "RoundAdvanceMode",
    "get_settings",
    "clear_settings_cache",
    # Logging
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "log_context",
]
