"""Role hierarchy: descriptors, sources, and the epoch-scoped cache."""

from metagate.roles.cache import RoleHierarchyCache
from metagate.roles.sources import (
    RoleSource,
    RoleSourceUnavailable,
    SqlRoleSource,
    StaticRoleSource,
)
from metagate.roles.types import FALLBACK_ROLES, RoleDescriptor, RoleHierarchy

__all__ = [
    "FALLBACK_ROLES",
    "RoleDescriptor",
    "RoleHierarchy",
    "RoleHierarchyCache",
    "RoleSource",
    "RoleSourceUnavailable",
    "SqlRoleSource",
    "StaticRoleSource",
]
