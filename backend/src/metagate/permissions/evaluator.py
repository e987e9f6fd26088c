"""Role-based permission checks against the epoch's permission matrix."""

from __future__ import annotations

from metagate.core.context import RequestContext
from metagate.core.types import Operation, parse_operation
from metagate.permissions.matrix import DecisionReason, PermissionDecision, PermissionMatrix


def _normalise_role(role: str | None) -> str | None:
    if not role or not isinstance(role, str):
        return None
    return role.strip().lower()


class PermissionEvaluator:
    """Answers ``can(role, resource, operation)`` for one epoch.

    Fail-closed: an unknown role, resource or operation is a deny.
    """

    def __init__(self, matrix: PermissionMatrix):
        self._matrix = matrix

    @property
    def matrix(self) -> PermissionMatrix:
        return self._matrix

    def decide(
        self,
        role: str | None,
        resource: str | None,
        operation: Operation | str | None,
    ) -> PermissionDecision:
        """Full decision including the internal reason."""
        op = parse_operation(operation) if operation is not None else None
        if op is None:
            return PermissionDecision(False, DecisionReason.UNKNOWN_OPERATION)
        role_name = _normalise_role(role)
        if role_name is None:
            return PermissionDecision(False, DecisionReason.UNKNOWN_ROLE)
        if not resource:
            return PermissionDecision(False, DecisionReason.UNKNOWN_RESOURCE)
        return self._matrix.lookup(role_name, resource, op.value)

    def can(
        self,
        role: str | None,
        resource: str | None,
        operation: Operation | str | None,
    ) -> bool:
        return self.decide(role, resource, operation).allowed

    def authorize(self, ctx: RequestContext, operation: Operation | str) -> PermissionDecision:
        """Check the resource already attached to the request context."""
        return self.decide(ctx.role, ctx.resource, operation)
