"""Custom exception hierarchy for the D&D combat engine.

Every error raised by the engine, the effect system, or the storage
adapters inherits from DndCombatError, so callers (a chat-bot front end,
for instance) can catch a single base class at their boundary while still
reading structured context from ``details``.

Example:
    >>> from dnd_combat.core.exceptions import NotFoundError
    >>> raise NotFoundError("Encounter not found", resource="encounter", resource_id="enc-1")
"""

from __future__ import annotations

from typing import Any


class DndCombatError(Exception):
    """Base exception for all combat engine errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary containing additional error context.
    """

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        """Initialize the base exception.

        Args:
            message: Human-readable error description.
            details: Optional dictionary containing additional error context.
        """
        self.message = message
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the exception message with optional details.

        Returns:
            Formatted error message including any provided details.
        """
        if self.details:
            detail_str = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
            return f"{self.message} [{detail_str}]"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, details={self.details!r})"


# =============================================================================
# Lookup & Validation Exceptions
# =============================================================================


class NotFoundError(DndCombatError):
    """Raised when an encounter, combatant, character or session is unknown."""

    def __init__(
        self,
        message: str,
        *,
        resource: str | None = None,
        resource_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize not-found error with resource context.

        Args:
            message: Human-readable error description.
            resource: Kind of resource that was looked up (e.g. "encounter").
            resource_id: Identifier that could not be resolved.
            details: Optional dictionary containing additional error context.
        """
        combined_details = details or {}
        if resource:
            combined_details["resource"] = resource
        if resource_id:
            combined_details["resource_id"] = resource_id
        super().__init__(message, details=combined_details)


class ValidationError(DndCombatError):
    """Raised when input data is rejected.

    This covers negative damage or healing amounts, malformed modifier
    values, and empty identifiers.
    """

    def __init__(
        self,
        message: str,
        *,
        field_name: str | None = None,
        invalid_value: Any | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize validation error with field context.

        Args:
            message: Human-readable error description.
            field_name: Name of the field that failed validation.
            invalid_value: The value that failed validation.
            details: Optional dictionary containing additional error context.
        """
        combined_details = details or {}
        if field_name:
            combined_details["field_name"] = field_name
        if invalid_value is not None:
            combined_details["invalid_value"] = invalid_value
        super().__init__(message, details=combined_details)


class DiceRollError(ValidationError):
    """Raised when a dice roll cannot be produced.

    Invalid dice notation, non-positive dice sizes, and an exhausted
    scripted roller all end up here. A failed roll is never replaced with
    a made-up number.
    """

    def __init__(
        self,
        message: str,
        *,
        expression: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize dice roll error with expression context.

        Args:
            message: Human-readable error description.
            expression: The dice expression that caused the error.
            details: Optional dictionary containing additional error context.
        """
        combined_details = details or {}
        if expression:
            combined_details["expression"] = expression
        super().__init__(message, details=combined_details)


# =============================================================================
# Game Engine Domain Exceptions
# =============================================================================


class GameEngineError(DndCombatError):
    """Base exception for all turn engine errors."""


class InvalidStateError(GameEngineError):
    """Raised when an operation is not allowed in the encounter's state.

    Examples are rolling initiative twice, starting an encounter that is
    already active, or continuing a round that is not pending.
    """

    def __init__(
        self,
        message: str,
        *,
        current_state: str | None = None,
        expected_states: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize invalid state error with state context.

        Args:
            message: Human-readable error description.
            current_state: The current state identifier.
            expected_states: List of valid states that were expected.
            details: Optional dictionary containing additional error context.
        """
        combined_details = details or {}
        if current_state:
            combined_details["current_state"] = current_state
        if expected_states:
            combined_details["expected_states"] = expected_states
        super().__init__(message, details=combined_details)


class CombatError(GameEngineError):
    """Raised when a combat action cannot be carried out.

    This includes spending an action twice in one turn or attacking with
    a combatant that has no usable attack.
    """

    def __init__(
        self,
        message: str,
        *,
        combatant_id: str | None = None,
        round_number: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize combat error with combat context.

        Args:
            message: Human-readable error description.
            combatant_id: Identifier of the combatant involved.
            round_number: Current combat round when error occurred.
            details: Optional dictionary containing additional error context.
        """
        combined_details = details or {}
        if combatant_id:
            combined_details["combatant_id"] = combatant_id
        if round_number is not None:
            combined_details["round_number"] = round_number
        super().__init__(message, details=combined_details)


class PermissionDeniedError(GameEngineError):
    """Raised when an actor may not perform an operation on an encounter."""

    def __init__(
        self,
        message: str,
        *,
        actor_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        combined_details = details or {}
        if actor_id:
            combined_details["actor_id"] = actor_id
        super().__init__(message, details=combined_details)


class OperationCancelledError(GameEngineError):
    """Raised when a caller cancels an operation before it starts."""


# =============================================================================
# Configuration & Storage Exceptions
# =============================================================================


class ConfigurationError(DndCombatError):
    """Raised when application configuration is invalid."""

    def __init__(
        self,
        message: str,
        *,
        config_key: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize configuration error with config key context.

        Args:
            message: Human-readable error description.
            config_key: The configuration key that caused the error.
            details: Optional dictionary containing additional error context.
        """
        combined_details = details or {}
        if config_key:
            combined_details["config_key"] = config_key
        super().__init__(message, details=combined_details)


class StorageError(DndCombatError):
    """Raised when a repository cannot read or write encounter data."""


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
]
