"""Boundary coercion: raw request values to typed field values.

Every coercer either returns a value of the field's Python type or raises
:class:`CoercionError`. A malformed value is never passed through.
Coercers are idempotent: feeding a coerced value back in returns it
unchanged.
"""

import re
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

_INTEGER_PATTERN = re.compile(r"^[+-]?\d+$")

_TRUE_STRINGS = {"true", "1", "yes"}
_FALSE_STRINGS = {"false", "0", "no"}


class CoercionError(ValueError):
    """A value could not be converted to the field's type."""


def coerce_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    raise CoercionError("must be a string")


def coerce_integer(value: Any) -> int:
    # bool is an int subclass; True is not a valid integer input
    if isinstance(value, bool):
        raise CoercionError("must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, Decimal) and value.is_finite() and value == value.to_integral_value():
        return int(value)
    if isinstance(value, str) and _INTEGER_PATTERN.match(value.strip()):
        try:
            return int(value.strip())
        except ValueError:
            # digit strings past the interpreter's int conversion limit
            raise CoercionError("must be an integer") from None
    raise CoercionError("must be an integer")


def coerce_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise CoercionError("must be a decimal number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        # via str so 0.1 becomes Decimal("0.1"), not its binary expansion
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise CoercionError("must be a decimal number") from None
    else:
        raise CoercionError("must be a decimal number")

    if not result.is_finite():
        raise CoercionError("must be a finite decimal number")
    return result


def coerce_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise CoercionError("must be a boolean")


def coerce_uuid(value: Any) -> str:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, str):
        try:
            return str(uuid.UUID(value.strip()))
        except ValueError:
            pass
    raise CoercionError("must be a valid UUID")


def coerce_timestamp(value: Any) -> datetime:
    """ISO 8601 string or datetime to a timezone-aware datetime (naive → UTC)."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        raw = value.strip()
        if raw.endswith(("Z", "z")):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            raise CoercionError("must be an ISO 8601 timestamp") from None
    else:
        raise CoercionError("must be an ISO 8601 timestamp")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def coerce_enum(value: Any) -> str:
    # Membership is checked by the constraint layer so the error can list the valid set
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    raise CoercionError("must be a string")


COERCERS: dict[str, Callable[[Any], Any]] = {
    "string": coerce_string,
    "integer": coerce_integer,
    "decimal": coerce_decimal,
    "boolean": coerce_boolean,
    "uuid": coerce_uuid,
    "timestamp": coerce_timestamp,
    "enum": coerce_enum,
}


def coerce(field_type: str, value: Any) -> Any:
    """Coerce a raw value to the Python type for ``field_type``.

    Raises:
        CoercionError: If the value cannot be converted.
        KeyError: If the field type is unknown (a registration bug).
    """
    return COERCERS[field_type](value)
