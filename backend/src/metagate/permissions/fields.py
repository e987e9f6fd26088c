"""Field-level access.

An entity's ``fieldAccess`` block names, per field and operation, the
lowest role allowed to touch that field. The grant accumulates upward:
every role at or above that priority may. ``none`` closes the operation
for everyone. Fields without a rule follow the entity-level decision only.

The table is resolved once per epoch against that epoch's role hierarchy.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any

from metagate.core.types import CRUD_OPERATIONS, Operation, parse_operation
from metagate.errors import ConfigurationError
from metagate.registry.types import NO_ROLE, EntityDescriptor
from metagate.roles.types import RoleHierarchy

logger = logging.getLogger(__name__)


def _allowed_roles(minimum: str, roles: RoleHierarchy) -> frozenset[str]:
    if minimum == NO_ROLE:
        return frozenset()
    return frozenset(r.name for r in roles.roles if roles.at_least(r.name, minimum))


class EntityFieldAccess:
    """Resolved field rules for one entity: field -> operation -> roles."""

    def __init__(
        self,
        entity_key: str,
        fields: tuple[str, ...],
        rules: Mapping[str, Mapping[str, frozenset[str]]],
    ):
        self.entity_key = entity_key
        self.fields = fields
        self._rules = MappingProxyType({
            name: MappingProxyType(dict(ops)) for name, ops in rules.items()
        })

    @property
    def restricted(self) -> tuple[str, ...]:
        return tuple(self._rules)

    def can(self, role: str | None, field_name: str, operation: Operation | str) -> bool:
        rule = self._rules.get(field_name)
        if rule is None:
            return True
        op = parse_operation(operation)
        if not role or op is None:
            return False
        return role.strip().lower() in rule.get(op.value, frozenset())

    def fields_for(self, role: str | None, operation: Operation | str) -> tuple[str, ...]:
        """Declared fields the role may use for an operation, in declared order."""
        return tuple(name for name in self.fields if self.can(role, name, operation))

    def denied(
        self,
        role: str | None,
        field_names: Iterable[str],
        operation: Operation | str,
    ) -> list[str]:
        """The given fields the role may not use for the operation."""
        return [name for name in field_names if not self.can(role, name, operation)]

    def filter_record(self, role: str | None, record: Mapping[str, Any]) -> dict[str, Any]:
        """Drop the keys of ``record`` the role may not read."""
        return {key: value for key, value in record.items() if self.can(role, key, Operation.READ)}

    def to_dict(self) -> dict[str, dict[str, list[str]]]:
        return {
            name: {op: sorted(roles) for op, roles in ops.items()}
            for name, ops in self._rules.items()
        }


class FieldAccessTable:
    """Field rules for every entity of one epoch."""

    def __init__(self, entities: Mapping[str, EntityFieldAccess]):
        self._entities = MappingProxyType(dict(entities))

    @classmethod
    def build(
        cls,
        descriptors: Iterable[EntityDescriptor],
        roles: RoleHierarchy,
    ) -> FieldAccessTable:
        """Resolve every fieldAccess block against the role hierarchy.

        Raises:
            ConfigurationError: A rule names a role that is not in the hierarchy.
        """
        entities: dict[str, EntityFieldAccess] = {}
        for descriptor in descriptors:
            problems = []
            rules: dict[str, dict[str, frozenset[str]]] = {}
            for field_name, ops in descriptor.field_access.items():
                rules[field_name] = {}
                for op in CRUD_OPERATIONS:
                    minimum = ops.get(op.value, NO_ROLE)
                    if minimum != NO_ROLE and minimum not in roles:
                        problems.append(
                            f"fieldAccess.{field_name}.{op.value} names unknown role '{minimum}'"
                        )
                        continue
                    rules[field_name][op.value] = _allowed_roles(minimum, roles)
            if problems:
                raise ConfigurationError(
                    f"Invalid field access for '{descriptor.entity_key}'",
                    entity=descriptor.entity_key,
                    problems=problems,
                )
            entities[descriptor.entity_key] = EntityFieldAccess(
                descriptor.entity_key, tuple(descriptor.fields), rules
            )

        logger.debug(
            "Resolved field access for %d entities (%d restricted fields)",
            len(entities),
            sum(len(e.restricted) for e in entities.values()),
        )
        return cls(entities)

    def for_entity(self, entity_key: str) -> EntityFieldAccess:
        return self._entities[entity_key]

    def to_dict(self) -> dict[str, dict[str, dict[str, list[str]]]]:
        return {
            key: access.to_dict()
            for key, access in self._entities.items()
            if access.restricted
        }
