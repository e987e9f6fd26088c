"""Shared vocabulary: operations, field types, and the request context."""

from metagate.core.context import Identity, RequestContext
from metagate.core.types import (
    CRUD_OPERATIONS,
    FIELD_TYPES,
    FieldType,
    Operation,
    get_field_type,
    is_supported_type,
    parse_operation,
)

__all__ = [
    "CRUD_OPERATIONS",
    "FIELD_TYPES",
    "FieldType",
    "Identity",
    "Operation",
    "RequestContext",
    "get_field_type",
    "is_supported_type",
    "parse_operation",
]
