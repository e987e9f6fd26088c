"""Lookup tables derived from entity metadata."""

from metagate.derive.constants import (
    AUDITED_OPERATIONS,
    DerivedConstants,
    derive_constants,
    field_to_openapi,
)

__all__ = [
    "AUDITED_OPERATIONS",
    "DerivedConstants",
    "derive_constants",
    "field_to_openapi",
]
