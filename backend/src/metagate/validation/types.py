"""Result types for request-boundary validation.

Validation failures are data, not exceptions: callers receive a
:class:`ValidationOutcome` and must check ``errors`` explicitly.
"""

from dataclasses import dataclass, field
from typing import Any


class Reason:
    """Machine-readable failure reasons."""

    REQUIRED = "required"
    UNKNOWN_FIELD = "unknown_field"
    IMMUTABLE = "immutable"
    INVALID_TYPE = "invalid_type"
    INVALID_ENUM = "invalid_enum"
    TOO_SHORT = "too_short"
    TOO_LONG = "too_long"
    BELOW_MIN = "below_min"
    ABOVE_MAX = "above_max"
    PATTERN_MISMATCH = "pattern_mismatch"
    INVALID_PAYLOAD = "invalid_payload"
    INVALID_OPERATION = "invalid_operation"


@dataclass(frozen=True)
class FieldError:
    """A single field-level validation failure.

    Attributes:
        field: Field name, or None for payload-level errors
        reason: One of the :class:`Reason` codes
        message: Human-readable message
        allowed: The valid set, for enum violations
    """

    field: str | None
    reason: str
    message: str = ""
    allowed: tuple[str, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"field": self.field, "reason": self.reason}
        if self.message:
            result["message"] = self.message
        if self.allowed is not None:
            result["allowed"] = list(self.allowed)
        return result


@dataclass
class ValidationOutcome:
    """Result of validating a payload.

    Attributes:
        value: The coerced payload (system-managed fields removed). Only
            meaningful when ``errors`` is empty.
        errors: Every offending field, in declared-field order followed by
            unknown fields in payload order
    """

    value: dict[str, Any] = field(default_factory=dict)
    errors: list[FieldError] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "value": self.value,
            "errors": [e.to_dict() for e in self.errors],
        }
