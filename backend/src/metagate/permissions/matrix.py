"""Precomputed permission matrix.

For every resource, role and operation the matrix holds the final
allow/deny decision and the reason for it. It is built once per epoch
from the explicit grants and denies declared in entity metadata and the
role hierarchy of the same epoch.

Resolution for (role, resource, operation):
1. An explicit deny on exactly that triple wins.
2. Otherwise walk the role list downward from the requested role
   (the role itself first); the nearest role with an explicit grant
   for the operation allows it.
3. Otherwise deny.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from metagate.core.types import CRUD_OPERATIONS, Operation
from metagate.errors import ConfigurationError
from metagate.registry.types import AccessRules, EntityDescriptor
from metagate.roles.types import RoleHierarchy

logger = logging.getLogger(__name__)

AUDIT_LOGS_RESOURCE = "audit_logs"
ADMIN_RESOURCE = "admin"


class DecisionReason:
    EXPLICIT_GRANT = "explicit_grant"
    INHERITED_GRANT = "inherited_grant"
    EXPLICIT_DENY = "explicit_deny"
    NO_GRANT = "no_grant"
    UNKNOWN_ROLE = "unknown_role"
    UNKNOWN_RESOURCE = "unknown_resource"
    UNKNOWN_OPERATION = "unknown_operation"
    FIELD_DENIED = "field_denied"


@dataclass(frozen=True)
class PermissionDecision:
    """An allow/deny answer and the internal reason behind it.

    The reason is for audit records and logs only; callers never show it
    to the requester.
    """

    allowed: bool
    reason: str
    granted_by: str | None = None

    def __bool__(self) -> bool:
        return self.allowed


@dataclass(frozen=True)
class ResourceAccess:
    """Access rules for one resource, tagged with where they came from."""

    resource: str
    rules: AccessRules
    owner: str  # entity key, or the resource name for synthetic resources


def synthetic_resources(roles: RoleHierarchy) -> list[ResourceAccess]:
    """Resources with no entity behind them.

    ``audit_logs`` is readable only by the highest-priority role. ``admin``
    (epoch inspection is a read, a reload is an update) belongs to that
    role too.
    """
    highest = roles.highest.name
    return [
        ResourceAccess(
            resource=AUDIT_LOGS_RESOURCE,
            rules=AccessRules(grants={highest: frozenset({Operation.READ.value})}),
            owner=AUDIT_LOGS_RESOURCE,
        ),
        ResourceAccess(
            resource=ADMIN_RESOURCE,
            rules=AccessRules(
                grants={highest: frozenset({Operation.READ.value, Operation.UPDATE.value})}
            ),
            owner=ADMIN_RESOURCE,
        ),
    ]


def _check_rules(access: ResourceAccess, roles: RoleHierarchy) -> list[str]:
    problems = []
    for block_name, block in (("grants", access.rules.grants), ("denies", access.rules.denies)):
        for role, ops in block.items():
            if role not in roles:
                problems.append(f"access.{block_name} names unknown role '{role}'")
            for op in ops:
                if op not in {o.value for o in CRUD_OPERATIONS}:
                    problems.append(f"access.{block_name}.{role} names unknown operation '{op}'")
    return problems


def _resolve(
    rules: AccessRules,
    roles: RoleHierarchy,
    role: str,
    operation: str,
) -> PermissionDecision:
    if operation in rules.denies.get(role, frozenset()):
        return PermissionDecision(False, DecisionReason.EXPLICIT_DENY)

    for candidate in roles.descending_from(role):
        if operation in rules.grants.get(candidate.name, frozenset()):
            reason = (
                DecisionReason.EXPLICIT_GRANT
                if candidate.name == role
                else DecisionReason.INHERITED_GRANT
            )
            return PermissionDecision(True, reason, granted_by=candidate.name)

    return PermissionDecision(False, DecisionReason.NO_GRANT)


class PermissionMatrix:
    """resource -> role -> operation -> PermissionDecision, frozen after build."""

    def __init__(self, entries: Mapping[str, Mapping[str, Mapping[str, PermissionDecision]]]):
        self._entries = MappingProxyType({
            resource: MappingProxyType({
                role: MappingProxyType(dict(ops)) for role, ops in by_role.items()
            })
            for resource, by_role in entries.items()
        })

    def lookup(self, role: str, resource: str, operation: str) -> PermissionDecision:
        by_role = self._entries.get(resource)
        if by_role is None:
            return PermissionDecision(False, DecisionReason.UNKNOWN_RESOURCE)
        by_op = by_role.get(role)
        if by_op is None:
            return PermissionDecision(False, DecisionReason.UNKNOWN_ROLE)
        decision = by_op.get(operation)
        if decision is None:
            return PermissionDecision(False, DecisionReason.UNKNOWN_OPERATION)
        return decision

    @property
    def resources(self) -> list[str]:
        return list(self._entries.keys())

    def allowed_operations(self, role: str, resource: str) -> list[str]:
        by_op = self._entries.get(resource, {}).get(role, {})
        return [op for op, decision in by_op.items() if decision.allowed]

    def to_dict(self) -> dict[str, dict[str, list[str]]]:
        """resource -> role -> allowed operations, for admin inspection."""
        return {
            resource: {role: self.allowed_operations(role, resource) for role in by_role}
            for resource, by_role in self._entries.items()
        }


def build_matrix(
    descriptors: Iterable[EntityDescriptor],
    roles: RoleHierarchy,
) -> PermissionMatrix:
    """Precompute every (resource, role, operation) decision.

    Raises:
        ConfigurationError: A grant or deny names a role that is not in the
            hierarchy, or an operation that does not exist.
    """
    accesses = [
        ResourceAccess(resource=d.rls_resource, rules=d.access, owner=d.entity_key)
        for d in descriptors
    ]
    accesses.extend(synthetic_resources(roles))

    entries: dict[str, dict[str, dict[str, PermissionDecision]]] = {}
    for access in accesses:
        problems = _check_rules(access, roles)
        if problems:
            raise ConfigurationError(
                f"Invalid access rules for '{access.owner}'",
                entity=access.owner,
                problems=problems,
            )
        entries[access.resource] = {
            role: {
                op.value: _resolve(access.rules, roles, role, op.value)
                for op in CRUD_OPERATIONS
            }
            for role in roles.names()
        }

    logger.debug(
        "Built permission matrix for %d resources and %d roles",
        len(entries),
        len(roles.roles),
    )
    return PermissionMatrix(entries)
