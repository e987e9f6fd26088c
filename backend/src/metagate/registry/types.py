"""Entity descriptor types.

Every naming property of an entity (table name, RLS resource, display
names, identity field) is explicit data. Nothing here is ever derived from
a filename or a pluralization rule.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class NameConstructionType(str, Enum):
    """How an entity's human-readable name is produced.

    DIRECT: a single field holds the name (e.g. role.name)
    COMPOSED: built from several fields (e.g. first_name + last_name)
    GENERATED: a system-generated identifier with a prefix (e.g. WO-2024-0001)
    """

    DIRECT = "DIRECT"
    COMPOSED = "COMPOSED"
    GENERATED = "GENERATED"


# fieldAccess value meaning "no role may do this"
NO_ROLE = "none"


class RelationshipKind(str, Enum):
    BELONGS_TO = "belongs_to"
    HAS_MANY = "has_many"


@dataclass(frozen=True)
class FieldSpec:
    """Declared shape of a single entity field.

    Attributes:
        name: Field (column) name
        type: One of the supported field types (see metagate.core.types)
        required: Must be supplied on create
        enum: Allowed values for enum fields
        min_length / max_length: String length bounds
        min / max: Numeric bounds (integer and decimal fields)
        pattern: Regex the value must fully match (string fields)
        system_managed: Set only by the system; stripped from client input
    """

    name: str
    type: str
    required: bool = False
    enum: tuple[str, ...] | None = None
    min_length: int | None = None
    max_length: int | None = None
    min: float | None = None
    max: float | None = None
    pattern: str | None = None
    system_managed: bool = False
    description: str = ""
    default: Any = None


@dataclass(frozen=True)
class Relationship:
    name: str
    kind: RelationshipKind
    target: str  # Related entity key
    foreign_key: str
    description: str = ""


@dataclass(frozen=True)
class AccessRules:
    """Explicit grants and denies, keyed by role name.

    A grant on a role is inherited by every higher-priority role. A deny
    applies only to the exact role + resource + operation it names.
    """

    grants: dict[str, frozenset[str]] = field(default_factory=dict)
    denies: dict[str, frozenset[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class RlsFilterConfig:
    """Field overrides for the named row policies."""

    own_record_field: str = "id"
    owner_field: str = "customer_id"
    assigned_field: str = "assigned_technician_id"

    def referenced_fields(self) -> dict[str, str]:
        return {
            "own_record_field": self.own_record_field,
            "owner_field": self.owner_field,
            "assigned_field": self.assigned_field,
        }


@dataclass(frozen=True)
class EntityDescriptor:
    entity_key: str
    table_name: str
    rls_resource: str
    display_name: str
    display_name_plural: str
    primary_key: str
    identity_field: str
    name_construction_type: NameConstructionType
    fields: dict[str, FieldSpec]
    required_fields: tuple[str, ...] = ()
    immutable_fields: tuple[str, ...] = ()
    relationships: tuple[Relationship, ...] = ()
    identifier_prefix: str | None = None
    display_fields: tuple[str, ...] = ()
    description: str = ""
    access: AccessRules = field(default_factory=AccessRules)
    # role -> named row policies, ANDed together
    row_policies: dict[str, tuple[str, ...]] = field(default_factory=dict)
    rls_filter: RlsFilterConfig = field(default_factory=RlsFilterConfig)
    # field -> operation -> lowest role allowed (or NO_ROLE); unlisted fields are unrestricted
    field_access: dict[str, dict[str, str]] = field(default_factory=dict)

    def get_field(self, name: str) -> FieldSpec | None:
        return self.fields.get(name)

    def is_required(self, name: str) -> bool:
        spec = self.fields.get(name)
        return bool(spec and (spec.required or name in self.required_fields))

    def is_immutable(self, name: str) -> bool:
        return name in self.immutable_fields

    @property
    def system_managed_fields(self) -> tuple[str, ...]:
        return tuple(name for name, spec in self.fields.items() if spec.system_managed)

    @property
    def client_fields(self) -> tuple[str, ...]:
        """Fields a client may ever supply, in declared order."""
        return tuple(name for name, spec in self.fields.items() if not spec.system_managed)
