"""Per-request identity and context types.

Both are immutable. The pipeline attaches the entity to the context once,
and every later stage reads the resource from it instead of re-deriving
it from the URL.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any


@dataclass(frozen=True)
class Identity:
    """Identity resolved by the (external) authentication layer.

    Attributes:
        role: The caller's role name
        user_id: The caller's user ID, if the identity carries one
        extra: Additional claims, passed through untouched
    """

    role: str
    user_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RequestContext:
    """Everything the access pipeline knows about one request.

    Attributes:
        identity: The resolved caller
        entity_key: Entity the request targets, once attached
        resource: RLS resource of that entity, once attached
        ip_address / user_agent / request_id: Carried into audit records
    """

    identity: Identity
    entity_key: str | None = None
    resource: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None

    @property
    def role(self) -> str:
        return self.identity.role

    @property
    def user_id(self) -> str | None:
        return self.identity.user_id

    def with_entity(self, entity_key: str, resource: str) -> RequestContext:
        return replace(self, entity_key=entity_key, resource=resource)

    def with_resource(self, resource: str) -> RequestContext:
        """Attach a resource that has no entity behind it (e.g. audit_logs)."""
        return replace(self, entity_key=None, resource=resource)
