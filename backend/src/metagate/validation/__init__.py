"""Request-boundary validation compiled from entity metadata.

Usage:
    from metagate.validation import SchemaBuilder

    builder = SchemaBuilder(registry).build_all()
    outcome = builder.validate("work_order", "create", {"title": "Fix pump"})
    if not outcome.valid:
        return [e.to_dict() for e in outcome.errors]
"""

from metagate.validation.coercion import CoercionError, coerce
from metagate.validation.constraints import FieldConstraints
from metagate.validation.schema import CompiledSchema, SchemaBuilder
from metagate.validation.types import FieldError, Reason, ValidationOutcome

__all__ = [
    "CoercionError",
    "CompiledSchema",
    "FieldConstraints",
    "FieldError",
    "Reason",
    "SchemaBuilder",
    "ValidationOutcome",
    "coerce",
]
