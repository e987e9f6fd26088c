"""Role descriptors and the immutable priority-ordered hierarchy."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from metagate.errors import ConfigurationError


@dataclass(frozen=True)
class RoleDescriptor:
    """A role and its priority. Higher priority = more privileged."""

    name: str
    priority: int
    description: str = ""


@dataclass(frozen=True)
class RoleHierarchy:
    """One immutable snapshot of the role set.

    Build with :meth:`from_roles`; never mutated afterwards.

    Attributes:
        roles: Roles sorted by ascending priority
        source: Where the roles came from ("source" or "fallback")
    """

    roles: tuple[RoleDescriptor, ...]
    source: str = "source"
    _priorities: dict[str, int] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_roles(cls, roles: Iterable[RoleDescriptor], source: str = "source") -> RoleHierarchy:
        """Validate and index a role set.

        Raises:
            ConfigurationError: Empty set, blank or duplicate names,
                non-positive or duplicate priorities.
        """
        problems: list[str] = []
        normalised: list[RoleDescriptor] = []
        seen_names: set[str] = set()
        seen_priorities: dict[int, str] = {}

        for role in roles:
            name = (role.name or "").strip().lower()
            if not name:
                problems.append("role with empty name")
                continue
            if name in seen_names:
                problems.append(f"duplicate role name '{name}'")
                continue
            if not isinstance(role.priority, int) or isinstance(role.priority, bool) or role.priority < 1:
                problems.append(f"role '{name}' has invalid priority {role.priority!r}")
                continue
            if role.priority in seen_priorities:
                problems.append(
                    f"duplicate priority {role.priority} for '{name}' and "
                    f"'{seen_priorities[role.priority]}'; each role must have a unique priority"
                )
                continue
            seen_names.add(name)
            seen_priorities[role.priority] = name
            normalised.append(
                RoleDescriptor(
                    name=name,
                    priority=role.priority,
                    description=role.description or f"{name} role",
                )
            )

        if not normalised and not problems:
            problems.append("at least one role must be defined")
        if problems:
            raise ConfigurationError("Invalid role set", entity="roles", problems=problems)

        ordered = tuple(sorted(normalised, key=lambda r: r.priority))
        return cls(
            roles=ordered,
            source=source,
            _priorities={r.name: r.priority for r in ordered},
        )

    def priority_of(self, role: str | None) -> int | None:
        """Priority for a role name (case-insensitive), None if unknown."""
        if not role or not isinstance(role, str):
            return None
        return self._priorities.get(role.strip().lower())

    def at_least(self, role: str | None, threshold: str | None) -> bool:
        """True if ``role`` is ``threshold`` or more privileged. Unknown → False."""
        role_priority = self.priority_of(role)
        threshold_priority = self.priority_of(threshold)
        if role_priority is None or threshold_priority is None:
            return False
        return role_priority >= threshold_priority

    def __contains__(self, role: object) -> bool:
        return isinstance(role, str) and self.priority_of(role) is not None

    def names(self) -> list[str]:
        """Role names, lowest priority first."""
        return [r.name for r in self.roles]

    def descending_from(self, role: str) -> list[RoleDescriptor]:
        """The role itself followed by every lower-priority role, nearest first.

        Returns an empty list for an unknown role.
        """
        priority = self.priority_of(role)
        if priority is None:
            return []
        return [r for r in reversed(self.roles) if r.priority <= priority]

    @property
    def highest(self) -> RoleDescriptor:
        return self.roles[-1]

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "roles": [
                {"name": r.name, "priority": r.priority, "description": r.description}
                for r in self.roles
            ],
        }


# Built-in role set for degraded boot when the role table is unreachable.
# Must match the seed data of the persisted roles table.
FALLBACK_ROLES: tuple[RoleDescriptor, ...] = (
    RoleDescriptor("customer", 1, "External customer - own records only"),
    RoleDescriptor("technician", 2, "Field technician - assigned work only"),
    RoleDescriptor("dispatcher", 3, "Dispatcher - schedules and assigns work"),
    RoleDescriptor("manager", 4, "Manager - full operational access"),
    RoleDescriptor("admin", 5, "Administrator - full system access"),
)
