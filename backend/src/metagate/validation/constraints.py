"""Field-level constraint checks.

Applied to a value after it has been coerced to the field's type:
- enum membership (reports the valid set)
- string length bounds (min_length / max_length)
- numeric bounds (min / max) for integer and decimal fields
- regex pattern for string fields
"""

import re
from dataclasses import dataclass, field
from typing import Any

from metagate.registry.types import FieldSpec
from metagate.validation.types import FieldError, Reason

NUMERIC_TYPES = ("integer", "decimal")
TEXT_TYPES = ("string", "enum")


@dataclass
class FieldConstraints:
    """Compiled constraints for a single field."""

    spec: FieldSpec
    _pattern: re.Pattern | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        # Patterns are checked at registration, so compiling cannot fail here
        if self.spec.pattern:
            self._pattern = re.compile(self.spec.pattern)

    def check(self, value: Any) -> list[FieldError]:
        """Check a coerced, non-null value. Returns every violation found."""
        spec = self.spec
        errors: list[FieldError] = []

        if spec.type == "enum":
            allowed = spec.enum or ()
            if value not in allowed:
                errors.append(FieldError(
                    field=spec.name,
                    reason=Reason.INVALID_ENUM,
                    message=f"'{value}' is not a valid option for {spec.name}; "
                            f"expected one of: {', '.join(allowed)}",
                    allowed=tuple(allowed),
                ))
                return errors

        if spec.type in TEXT_TYPES and isinstance(value, str):
            errors.extend(self._check_length(value))
            pattern_error = self._check_pattern(value)
            if pattern_error:
                errors.append(pattern_error)

        if spec.type in NUMERIC_TYPES:
            errors.extend(self._check_bounds(value))

        return errors

    def _check_length(self, value: str) -> list[FieldError]:
        spec = self.spec
        errors = []
        length = len(value)

        if spec.min_length is not None and length < spec.min_length:
            errors.append(FieldError(
                field=spec.name,
                reason=Reason.TOO_SHORT,
                message=f"{spec.name} must be at least {spec.min_length} characters",
            ))

        if spec.max_length is not None and length > spec.max_length:
            errors.append(FieldError(
                field=spec.name,
                reason=Reason.TOO_LONG,
                message=f"{spec.name} must be at most {spec.max_length} characters",
            ))

        return errors

    def _check_bounds(self, value: Any) -> list[FieldError]:
        spec = self.spec
        errors = []

        if spec.min is not None and value < spec.min:
            errors.append(FieldError(
                field=spec.name,
                reason=Reason.BELOW_MIN,
                message=f"{spec.name} must be at least {spec.min}",
            ))

        if spec.max is not None and value > spec.max:
            errors.append(FieldError(
                field=spec.name,
                reason=Reason.ABOVE_MAX,
                message=f"{spec.name} must be at most {spec.max}",
            ))

        return errors

    def _check_pattern(self, value: str) -> FieldError | None:
        if self._pattern is None or self._pattern.fullmatch(value):
            return None
        return FieldError(
            field=self.spec.name,
            reason=Reason.PATTERN_MISMATCH,
            message=f"{self.spec.name} format is invalid",
        )
