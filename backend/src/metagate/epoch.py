"""Epoch snapshots of metadata and role state.

An :class:`Epoch` bundles everything a request needs: the entity
registry, the role hierarchy, the derived constants, the permission
matrix, the field access rules, the compiled validators and the row
policy table. It is built completely before it is published and is never
mutated afterwards.

:class:`EpochManager` owns the current epoch. Readers take
``manager.current`` with a plain attribute read and use that one object
for the whole request. ``reload()`` builds a candidate off to the side
and publishes it with a single assignment; a failed reload leaves the
previous epoch in place.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from metagate.config import Settings
from metagate.core.context import RequestContext
from metagate.core.types import Operation
from metagate.derive.constants import DerivedConstants, derive_constants
from metagate.errors import ConfigurationError
from metagate.permissions.evaluator import PermissionEvaluator
from metagate.permissions.fields import FieldAccessTable
from metagate.permissions.matrix import build_matrix
from metagate.registry.loader import MetadataLoader
from metagate.registry.registry import EntityRegistry
from metagate.registry.types import EntityDescriptor
from metagate.rls.engine import RowPolicyEngine
from metagate.rls.predicates import Predicate
from metagate.roles.cache import RoleHierarchyCache
from metagate.roles.sources import SqlRoleSource
from metagate.roles.types import RoleHierarchy
from metagate.validation.schema import SchemaBuilder
from metagate.validation.types import ValidationOutcome

logger = logging.getLogger(__name__)


class RegistryLoader(Protocol):
    def load_registry(self) -> EntityRegistry:
        """Return a new, frozen registry."""
        ...


@dataclass(frozen=True)
class Epoch:
    """One immutable, internally consistent view of metadata and roles."""

    number: int
    registry: EntityRegistry
    roles: RoleHierarchy
    constants: DerivedConstants
    schemas: SchemaBuilder
    permissions: PermissionEvaluator
    row_policies: RowPolicyEngine
    field_access: FieldAccessTable
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def get(self, entity_key: str) -> EntityDescriptor:
        return self.registry.get(entity_key)

    def validate(
        self,
        entity_key: str,
        operation: Operation | str,
        payload: Any,
    ) -> ValidationOutcome:
        return self.schemas.validate(entity_key, operation, payload)

    def can(self, role: str | None, resource: str | None, operation: Operation | str | None) -> bool:
        return self.permissions.can(role, resource, operation)

    def filter_for(
        self,
        role: str | None,
        resource: str | None,
        context: RequestContext,
    ) -> Predicate:
        return self.row_policies.filter_for(role, resource, context)

    def readable_fields(self, role: str | None, entity_key: str) -> tuple[str, ...]:
        """Fields of an entity the role may read, in declared order."""
        descriptor = self.get(entity_key)
        access = self.field_access.for_entity(descriptor.entity_key)
        return access.fields_for(role, Operation.READ)

    def summary(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "created_at": self.created_at.isoformat(),
            "entities": self.registry.keys(),
            "roles": self.roles.to_dict(),
        }


def build_epoch(number: int, registry: EntityRegistry, roles: RoleHierarchy) -> Epoch:
    """Derive every per-epoch table from a registry and a role set.

    Raises:
        ConfigurationError: Anything derived from the inputs is inconsistent
            (missing naming properties, unknown roles or policies, ...).
    """
    descriptors = registry.all()
    return Epoch(
        number=number,
        registry=registry,
        roles=roles,
        constants=derive_constants(descriptors),
        schemas=SchemaBuilder(registry).build_all(),
        permissions=PermissionEvaluator(build_matrix(descriptors, roles)),
        row_policies=RowPolicyEngine.build(descriptors, roles),
        field_access=FieldAccessTable.build(descriptors, roles),
    )


class EpochManager:
    """Holds the current epoch and performs administrative reloads."""

    def __init__(self, loader: RegistryLoader, role_cache: RoleHierarchyCache):
        self._loader = loader
        self._role_cache = role_cache
        self._current: Epoch | None = None
        self._reload_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> EpochManager:
        """Wire the YAML loader and the persisted role source from settings."""
        return cls(
            loader=MetadataLoader(settings.metadata_path),
            role_cache=RoleHierarchyCache(
                SqlRoleSource(settings.sqlalchemy_url),
                production=settings.is_production,
                allow_fallback=settings.allow_fallback_roles,
            ),
        )

    @property
    def current(self) -> Epoch:
        epoch = self._current
        if epoch is None:
            raise ConfigurationError("No epoch has been loaded; call boot() first")
        return epoch

    @property
    def role_cache(self) -> RoleHierarchyCache:
        return self._role_cache

    def boot(self) -> Epoch:
        """Build and publish the first epoch.

        Raises:
            ConfigurationError: Fatal; the process must not serve requests.
        """
        with self._reload_lock:
            roles = self._role_cache.boot()
            epoch = build_epoch(1, self._loader.load_registry(), roles)
            self._current = epoch
        logger.info(
            "Epoch %d active: %d entities, roles %s (%s)",
            epoch.number,
            len(epoch.registry),
            " -> ".join(roles.names()),
            roles.source,
        )
        return epoch

    def reload(self) -> Epoch:
        """Rebuild metadata and roles and swap the epoch atomically.

        Raises:
            ConfigurationError: The candidate is invalid; the previous epoch
                stays active.
        """
        with self._reload_lock:
            previous = self._current
            number = previous.number + 1 if previous else 1
            try:
                registry = self._loader.load_registry()
                if self._role_cache.has_source:
                    roles = self._role_cache.fetch()
                else:
                    roles = self._role_cache.snapshot
                epoch = build_epoch(number, registry, roles)
            except ConfigurationError as exc:
                logger.error(
                    "Reload rejected; epoch %s stays active: %s",
                    previous.number if previous else None,
                    exc,
                )
                raise

            self._role_cache.publish(roles)
            self._current = epoch

        logger.info("Epoch %d active after reload", epoch.number)
        return epoch
