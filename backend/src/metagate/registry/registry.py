"""Entity metadata registry.

Holds one EntityDescriptor per entity key. Descriptors are checked when
they are registered so that a broken definition stops the boot (or the
reload) instead of surfacing as a per-request failure.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator

from metagate.core.types import is_supported_type
from metagate.errors import ConfigurationError, EntityNotFoundError
from metagate.registry.types import (
    EntityDescriptor,
    NameConstructionType,
    RelationshipKind,
)

logger = logging.getLogger(__name__)

# Naming properties that must be present on every descriptor
REQUIRED_NAMING_FIELDS = (
    "entity_key",
    "table_name",
    "rls_resource",
    "display_name",
    "display_name_plural",
    "primary_key",
    "identity_field",
)

_PREFIX_PATTERN = re.compile(r"^[A-Z][A-Z0-9]{0,4}$")


def validate_descriptor(descriptor: EntityDescriptor) -> list[str]:
    """Return every problem found in a single descriptor (empty list if valid).

    Cross-entity checks (collisions, relationship targets) live on the
    registry because they need the other descriptors.
    """
    problems: list[str] = []

    for attr in REQUIRED_NAMING_FIELDS:
        value = getattr(descriptor, attr, None)
        if not isinstance(value, str) or not value.strip():
            problems.append(f"missing required naming property '{attr}'")

    if not isinstance(descriptor.name_construction_type, NameConstructionType):
        problems.append(
            f"name_construction_type must be one of "
            f"{', '.join(t.value for t in NameConstructionType)}"
        )

    if not descriptor.fields:
        problems.append("no fields declared")

    for name, spec in descriptor.fields.items():
        if spec.name != name:
            problems.append(f"field '{name}' is declared under a different name '{spec.name}'")
        if not is_supported_type(spec.type):
            problems.append(f"field '{name}' has unsupported type '{spec.type}'")
        if spec.type == "enum" and not spec.enum:
            problems.append(f"enum field '{name}' has no values")
        if spec.enum is not None and spec.type != "enum":
            problems.append(f"field '{name}' declares enum values but is of type '{spec.type}'")
        if spec.pattern is not None:
            try:
                re.compile(spec.pattern)
            except re.error as exc:
                problems.append(f"field '{name}' has invalid pattern: {exc}")
        if (
            spec.min_length is not None
            and spec.max_length is not None
            and spec.min_length > spec.max_length
        ):
            problems.append(f"field '{name}' has min_length greater than max_length")
        if spec.min is not None and spec.max is not None and spec.min > spec.max:
            problems.append(f"field '{name}' has min greater than max")
        if spec.system_managed and descriptor.is_required(name):
            problems.append(f"field '{name}' is both required and system-managed")

    def check_ref(label: str, field_name: str | None) -> None:
        if field_name and field_name not in descriptor.fields:
            problems.append(f"{label} references unknown field '{field_name}'")

    check_ref("primary_key", descriptor.primary_key)
    check_ref("identity_field", descriptor.identity_field)
    for name in descriptor.required_fields:
        check_ref("required_fields", name)
    for name in descriptor.immutable_fields:
        check_ref("immutable_fields", name)
    for name in descriptor.display_fields:
        check_ref("display_fields", name)
    for relationship in descriptor.relationships:
        if relationship.kind == RelationshipKind.BELONGS_TO:
            check_ref(f"relationship '{relationship.name}'", relationship.foreign_key)
    for name in descriptor.field_access:
        check_ref("field_access", name)
    for role, policies in descriptor.row_policies.items():
        if not policies:
            problems.append(f"row policy for role '{role}' lists no policies")
    for label, field_name in descriptor.rls_filter.referenced_fields().items():
        # Only fields actually used by a declared policy must exist
        if _rls_field_in_use(descriptor, label):
            check_ref(f"rls_filter.{label}", field_name)

    if descriptor.name_construction_type == NameConstructionType.GENERATED:
        prefix = descriptor.identifier_prefix
        if not prefix:
            problems.append("GENERATED entity has no identifier_prefix")
        elif not _PREFIX_PATTERN.match(prefix):
            problems.append(
                f"identifier_prefix '{prefix}' must be 1-5 uppercase alphanumeric characters"
            )

    return problems


_POLICY_FIELD_USE = {
    "own_record_field": "own_record_only",
    "owner_field": "own_records",
    "assigned_field": "assigned_records",
}


def _rls_field_in_use(descriptor: EntityDescriptor, label: str) -> bool:
    policy_name = _POLICY_FIELD_USE[label]
    return any(policy_name in policies for policies in descriptor.row_policies.values())


class EntityRegistry:
    """Registry of entity descriptors for one epoch.

    Populated at boot (or while building a reload candidate), then frozen.
    A frozen registry is never mutated again; a reload builds a new one.
    """

    def __init__(self, descriptors: Iterable[EntityDescriptor] = ()):
        self._entities: dict[str, EntityDescriptor] = {}
        self._by_table: dict[str, str] = {}
        self._by_resource: dict[str, str] = {}
        self._by_prefix: dict[str, str] = {}
        self._frozen = False
        for descriptor in descriptors:
            self.register(descriptor)

    def register(self, descriptor: EntityDescriptor) -> None:
        """Register a descriptor.

        Raises:
            ConfigurationError: If the descriptor is malformed, collides with
                an existing entry, or the registry is frozen.
        """
        key = getattr(descriptor, "entity_key", None) or "<unnamed>"
        if self._frozen:
            raise ConfigurationError(
                f"Cannot register '{key}': registry is frozen", entity=key
            )

        problems = validate_descriptor(descriptor)

        if descriptor.entity_key in self._entities:
            problems.append(f"entity_key '{descriptor.entity_key}' is already registered")
        owner = self._by_table.get(descriptor.table_name)
        if owner:
            problems.append(f"table_name '{descriptor.table_name}' is already used by '{owner}'")
        owner = self._by_resource.get(descriptor.rls_resource)
        if owner:
            problems.append(
                f"rls_resource '{descriptor.rls_resource}' is already used by '{owner}'"
            )
        if descriptor.identifier_prefix:
            owner = self._by_prefix.get(descriptor.identifier_prefix)
            if owner:
                problems.append(
                    f"identifier_prefix '{descriptor.identifier_prefix}' "
                    f"is already used by '{owner}'"
                )

        if problems:
            raise ConfigurationError(
                f"Invalid entity descriptor '{key}'", entity=key, problems=problems
            )

        self._entities[descriptor.entity_key] = descriptor
        self._by_table[descriptor.table_name] = descriptor.entity_key
        self._by_resource[descriptor.rls_resource] = descriptor.entity_key
        if descriptor.identifier_prefix:
            self._by_prefix[descriptor.identifier_prefix] = descriptor.entity_key
        logger.debug("Registered entity '%s' (table %s)", key, descriptor.table_name)

    def check_references(self) -> None:
        """Verify that every relationship targets a registered entity.

        Raises:
            ConfigurationError: Naming the first entity with dangling references.
        """
        for descriptor in self._entities.values():
            problems = [
                f"relationship '{rel.name}' targets unknown entity '{rel.target}'"
                for rel in descriptor.relationships
                if rel.target not in self._entities
            ]
            if problems:
                raise ConfigurationError(
                    f"Invalid entity descriptor '{descriptor.entity_key}'",
                    entity=descriptor.entity_key,
                    problems=problems,
                )

    def freeze(self) -> EntityRegistry:
        """Check cross-references and freeze the registry. Returns self."""
        self.check_references()
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, entity_key: str) -> EntityDescriptor:
        """Get a descriptor by entity key.

        Raises:
            EntityNotFoundError: If the entity is not registered.
        """
        try:
            return self._entities[entity_key]
        except KeyError:
            raise EntityNotFoundError(entity_key) from None

    def by_resource(self, rls_resource: str) -> EntityDescriptor | None:
        key = self._by_resource.get(rls_resource)
        return self._entities[key] if key else None

    def all(self) -> list[EntityDescriptor]:
        """All descriptors in registration order."""
        return list(self._entities.values())

    def keys(self) -> list[str]:
        return list(self._entities.keys())

    def __contains__(self, entity_key: object) -> bool:
        return entity_key in self._entities

    def __iter__(self) -> Iterator[EntityDescriptor]:
        return iter(self.all())

    def __len__(self) -> int:
        return len(self._entities)
