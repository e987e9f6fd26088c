"""Field type registry and the operation vocabulary."""

from dataclasses import dataclass
from enum import Enum


class Operation(str, Enum):
    """An operation a role may perform on a resource."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


CRUD_OPERATIONS: tuple[Operation, ...] = (
    Operation.CREATE,
    Operation.READ,
    Operation.UPDATE,
    Operation.DELETE,
)


def parse_operation(value: "str | Operation") -> Operation | None:
    """Return the Operation for a name, or None if it is not one."""
    if isinstance(value, Operation):
        return value
    try:
        return Operation(str(value).strip().lower())
    except ValueError:
        return None


@dataclass(frozen=True)
class FieldType:
    """How a field type is described in a generated JSON schema."""

    name: str
    json_type: str
    json_format: str | None = None


FIELD_TYPES: dict[str, FieldType] = {
    ft.name: ft
    for ft in (
        FieldType("string", "string"),
        FieldType("integer", "integer"),
        FieldType("boolean", "boolean"),
        FieldType("enum", "string"),
        FieldType("uuid", "string", "uuid"),
        FieldType("timestamp", "string", "date-time"),
        FieldType("decimal", "number", "decimal"),
    )
}


def is_supported_type(type_name: str) -> bool:
    return type_name in FIELD_TYPES


def get_field_type(type_name: str) -> FieldType:
    """Get a field type definition.

    Raises:
        KeyError: If the type is not supported. Unlike display metadata,
            an unknown type here is never silently treated as a string.
    """
    return FIELD_TYPES[type_name]
