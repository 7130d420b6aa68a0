"""
Input validation for the Excalidraw MCP server tool parameters.

Provides reusable validators that produce clear error messages for all
parameters received from LLM callers.
"""

from __future__ import annotations

from typing import Any


# ---------------------------------------------------------------------------
# Validation result
# ---------------------------------------------------------------------------

class ValidationError(Exception):
    """Raised when input validation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


# ---------------------------------------------------------------------------
# Primitive validators
# ---------------------------------------------------------------------------

def validate_non_empty_string(value: Any, field_name: str) -> str:
    """Ensure *value* is a non-empty string after stripping whitespace."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"'{field_name}' must be a non-empty string.")
    return value.strip()


def validate_string(value: Any, field_name: str, *, allow_empty: bool = True) -> str:
    """Ensure *value* is a string (optionally non-empty)."""
    if not isinstance(value, str):
        raise ValidationError(f"'{field_name}' must be a string, got {type(value).__name__}.")
    if not allow_empty and not value.strip():
        raise ValidationError(f"'{field_name}' must not be empty.")
    return value


def validate_number(
    value: Any,
    field_name: str,
    *,
    min_val: float | None = None,
    max_val: float | None = None,
) -> float:
    """Validate a numeric value and optional range."""
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise ValidationError(
            f"'{field_name}' must be a number, got {type(value).__name__}."
        )
    val = float(value)
    if min_val is not None and val < min_val:
        raise ValidationError(
            f"'{field_name}' must be >= {min_val}, got {val}."
        )
    if max_val is not None and val > max_val:
        raise ValidationError(
            f"'{field_name}' must be <= {max_val}, got {val}."
        )
    return val


def validate_enum(value: Any, field_name: str, allowed: set[str]) -> str:
    """Validate that a string value is one of the allowed choices (case-insensitive)."""
    if not isinstance(value, str):
        raise ValidationError(
            f"'{field_name}' must be a string, got {type(value).__name__}."
        )
    normalized = value.strip().upper()
    if normalized not in {a.upper() for a in allowed}:
        choices = ", ".join(sorted(allowed))
        raise ValidationError(
            f"'{field_name}' must be one of [{choices}], got '{value}'."
        )
    return normalized


# ---------------------------------------------------------------------------
# Composite / domain validators
# ---------------------------------------------------------------------------

_VALID_DIRECTIONS = {"TB", "BT", "LR", "RL"}
_VALID_STRATEGIES = {"FLOWCHART", "ARCHITECTURE", "MINDMAP", "TIMELINE"}

_DIAGRAM_ACTIONS = {"PARSE", "LAYOUT", "RENDER", "SCENE"}
_STREAM_ACTIONS = {"OPEN", "FEED", "POLL", "FLUSH", "CLOSE", "LIST"}


def validate_action(value: Any, tool_name: str, allowed: set[str]) -> str:
    """Validate the action parameter for a tool."""
    if not isinstance(value, str) or not value.strip():
        choices = ", ".join(sorted(a.lower() for a in allowed))
        raise ValidationError(
            f"'{tool_name}' requires an 'action' parameter. Valid actions: {choices}."
        )
    normalized = value.strip().upper()
    if normalized not in allowed:
        choices = ", ".join(sorted(a.lower() for a in allowed))
        raise ValidationError(
            f"Unknown {tool_name} action '{value}'. Valid actions: {choices}."
        )
    return value.strip().lower()


def validate_direction(value: Any) -> str:
    """Validate a layout direction (TB, BT, LR, RL)."""
    return validate_enum(value, "direction", _VALID_DIRECTIONS)


def validate_strategy(value: Any) -> str:
    """Validate a layout strategy name; returns it lower-cased."""
    return validate_enum(value, "strategy", _VALID_STRATEGIES).lower()


def validate_spacing(value: Any, field_name: str) -> float:
    """Validate spacing parameters (must be > 0)."""
    return validate_number(value, field_name, min_val=1)


def validate_margin(value: Any) -> float:
    """Validate an outer margin (>= 0)."""
    return validate_number(value, "margin", min_val=0)


def validate_debounce_ms(value: Any) -> float:
    """Validate a debounce window in milliseconds (0..10000)."""
    return validate_number(value, "debounce_ms", min_val=0, max_val=10_000)
