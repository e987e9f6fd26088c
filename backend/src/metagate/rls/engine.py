"""Row-level policy engine.

Resolves the filter predicate for a role on a resource. The policy table
is built once per epoch; a role with no declared policy for a resource
sees no rows.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from types import MappingProxyType

from metagate.core.context import RequestContext
from metagate.errors import ConfigurationError
from metagate.permissions.matrix import synthetic_resources
from metagate.registry.types import EntityDescriptor, RlsFilterConfig
from metagate.roles.types import RoleHierarchy
from metagate.rls.policies import POLICIES, is_known_policy
from metagate.rls.predicates import MATCH_NONE, Predicate, all_of

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourcePolicies:
    """Row policies for one resource."""

    resource: str
    by_role: MappingProxyType
    rls_filter: RlsFilterConfig


def _check_policies(descriptor: EntityDescriptor, roles: RoleHierarchy) -> list[str]:
    problems = []
    for role, names in descriptor.row_policies.items():
        if role not in roles:
            problems.append(f"row policy names unknown role '{role}'")
        for name in names:
            if not is_known_policy(name):
                problems.append(f"row policy for role '{role}' names unknown policy '{name}'")
    return problems


class RowPolicyEngine:
    """Answers ``filter_for(role, resource, context)`` for one epoch."""

    def __init__(self, table: dict[str, ResourcePolicies]):
        self._table = MappingProxyType(dict(table))

    @classmethod
    def build(
        cls,
        descriptors: Iterable[EntityDescriptor],
        roles: RoleHierarchy,
    ) -> RowPolicyEngine:
        """Build the policy table.

        Raises:
            ConfigurationError: A row policy names an unknown role or policy.
        """
        table: dict[str, ResourcePolicies] = {}
        for descriptor in descriptors:
            problems = _check_policies(descriptor, roles)
            if problems:
                raise ConfigurationError(
                    f"Invalid row policies for '{descriptor.entity_key}'",
                    entity=descriptor.entity_key,
                    problems=problems,
                )
            table[descriptor.rls_resource] = ResourcePolicies(
                resource=descriptor.rls_resource,
                by_role=MappingProxyType(
                    {role: tuple(names) for role, names in descriptor.row_policies.items()}
                ),
                rls_filter=descriptor.rls_filter,
            )

        for synthetic in synthetic_resources(roles):
            table[synthetic.resource] = ResourcePolicies(
                resource=synthetic.resource,
                by_role=MappingProxyType({roles.highest.name: ("all_records",)}),
                rls_filter=RlsFilterConfig(),
            )
        return cls(table)

    def policies_for(self, role: str | None, resource: str | None) -> tuple[str, ...]:
        entry = self._table.get(resource) if resource else None
        if entry is None or not role:
            return ()
        return entry.by_role.get(role.strip().lower(), ())

    def filter_for(
        self,
        role: str | None,
        resource: str | None,
        context: RequestContext,
    ) -> Predicate:
        """Predicate restricting the rows ``role`` may see or mutate.

        Multiple policies are intersected. No policy, an unknown role or an
        unknown resource yields match-none.
        """
        names = self.policies_for(role, resource)
        if not names:
            logger.debug("No row policy for role %s on %s; matching no rows", role, resource)
            return MATCH_NONE
        config = self._table[resource].rls_filter
        return all_of(POLICIES[name](config, context) for name in names)

    def to_dict(self) -> dict[str, dict[str, list[str]]]:
        return {
            resource: {role: list(names) for role, names in entry.by_role.items()}
            for resource, entry in self._table.items()
        }
