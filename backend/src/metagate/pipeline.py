"""Per-request access pipeline.

attach entity -> validate -> authorize (entity, then fields) -> row filter -> audit

The pipeline reads the current epoch once and uses it for every stage of
the request, so a concurrent reload can never mix two metadata versions
within one request.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from metagate.audit.emitter import AuditEmitter
from metagate.audit.types import AuditDecision, AuditRecord
from metagate.core.context import RequestContext
from metagate.core.types import Operation, parse_operation
from metagate.epoch import Epoch, EpochManager
from metagate.errors import AccessDenied, EntityNotFoundError
from metagate.permissions.matrix import DecisionReason, PermissionDecision
from metagate.rls.predicates import Predicate
from metagate.validation.types import FieldError, ValidationOutcome

logger = logging.getLogger(__name__)

DENIED_ACTION = "access_denied"

# Schedules an audit record for persistence (e.g. BackgroundTasks.add_task)
AuditScheduler = Callable[[AuditRecord], None]


@dataclass(frozen=True)
class AccessResult:
    """Everything storage needs to execute an authorized request.

    When validation fails, ``decision`` and ``predicate`` are None and
    ``errors`` lists every offending field.
    """

    epoch: Epoch
    context: RequestContext
    operation: Operation | None
    validation: ValidationOutcome
    decision: PermissionDecision | None = None
    predicate: Predicate | None = None

    @property
    def ok(self) -> bool:
        return self.validation.valid and bool(self.decision)

    @property
    def errors(self) -> list[FieldError]:
        return self.validation.errors

    @property
    def payload(self) -> dict[str, Any]:
        return self.validation.value

    @property
    def readable_fields(self) -> tuple[str, ...]:
        return self.epoch.readable_fields(self.context.role, self.context.entity_key)

    def filter_response(
        self, data: Mapping[str, Any] | Iterable[Mapping[str, Any]]
    ) -> dict[str, Any] | list[dict[str, Any]]:
        """Strip fields the caller may not read from one record or a list of them."""
        access = self.epoch.field_access.for_entity(self.context.entity_key)
        if isinstance(data, Mapping):
            return access.filter_record(self.context.role, data)
        return [access.filter_record(self.context.role, record) for record in data]


def _actor(ctx: RequestContext) -> str:
    return ctx.user_id or f"role:{ctx.role}"


class AccessPipeline:
    def __init__(self, epochs: EpochManager, emitter: AuditEmitter):
        self._epochs = epochs
        self._emitter = emitter

    @property
    def emitter(self) -> AuditEmitter:
        return self._emitter

    @property
    def epochs(self) -> EpochManager:
        return self._epochs

    def attach(self, epoch: Epoch, ctx: RequestContext, entity: str) -> RequestContext:
        """Resolve a URL segment or entity key and attach it to the context.

        Raises:
            EntityNotFoundError: No entity answers to ``entity``.
        """
        entity_key = epoch.constants.resolve_path(entity)
        if entity_key is None:
            raise EntityNotFoundError(entity)
        descriptor = epoch.get(entity_key)
        return ctx.with_entity(descriptor.entity_key, descriptor.rls_resource)

    def check(
        self,
        ctx: RequestContext,
        entity: str,
        operation: Operation | str,
        payload: Any = None,
        *,
        resource_id: str | None = None,
        schedule: AuditScheduler | None = None,
    ) -> AccessResult:
        """Run one request through validation, permission and row filtering.

        Args:
            ctx: Request context carrying the caller's identity
            entity: Entity key or URL segment
            operation: create, read, update or delete
            payload: Body (create/update) or query filters (read/delete)
            resource_id: Target row, when the request names one
            schedule: Where to send audit records; defaults to writing them
                synchronously through the emitter

        Returns:
            An AccessResult. Check ``errors`` for validation failures.

        Raises:
            EntityNotFoundError: Unknown entity.
            AccessDenied: The role may not perform the operation. The
                reason is in the audit record only.
        """
        epoch = self._epochs.current
        ctx = self.attach(epoch, ctx, entity)

        op = parse_operation(operation)
        outcome = epoch.validate(ctx.entity_key, operation, payload if payload is not None else {})
        if not outcome.valid:
            return AccessResult(epoch=epoch, context=ctx, operation=op, validation=outcome)

        decision = epoch.permissions.authorize(ctx, op)
        if decision.allowed:
            field_denial = self._check_fields(epoch, ctx, op, payload, outcome)
            if field_denial is not None:
                decision = field_denial
        self._audit_decision(epoch, ctx, op, decision, resource_id, schedule)
        if not decision.allowed:
            raise AccessDenied()

        predicate = epoch.filter_for(ctx.role, ctx.resource, ctx)
        return AccessResult(
            epoch=epoch,
            context=ctx,
            operation=op,
            validation=outcome,
            decision=decision,
            predicate=predicate,
        )

    def authorize_resource(
        self,
        ctx: RequestContext,
        resource: str,
        operation: Operation | str,
        *,
        schedule: AuditScheduler | None = None,
    ) -> Predicate:
        """Authorize access to a resource with no entity behind it (e.g. audit_logs).

        Raises:
            AccessDenied: The role may not perform the operation.
        """
        epoch = self._epochs.current
        ctx = ctx.with_resource(resource)
        op = parse_operation(operation)
        decision = epoch.permissions.authorize(ctx, operation)
        self._audit_decision(epoch, ctx, op, decision, None, schedule)
        if not decision.allowed:
            raise AccessDenied()
        return epoch.filter_for(ctx.role, resource, ctx)

    def record_outcome(
        self,
        result: AccessResult,
        *,
        resource_id: str | None = None,
        old_value: dict[str, Any] | None = None,
        new_value: dict[str, Any] | None = None,
        schedule: AuditScheduler | None = None,
    ) -> None:
        """Audit a completed mutation with its before/after snapshots."""
        self.record_event(
            result.context,
            self._action(result.epoch, result.context, result.operation),
            reason="completed",
            resource_id=resource_id,
            old_value=old_value,
            new_value=new_value,
            schedule=schedule,
        )

    def record_event(
        self,
        ctx: RequestContext,
        action: str,
        *,
        reason: str,
        resource_id: str | None = None,
        old_value: dict[str, Any] | None = None,
        new_value: dict[str, Any] | None = None,
        schedule: AuditScheduler | None = None,
    ) -> None:
        """Audit an allowed action that is not a plain entity mutation (e.g. a reload)."""
        self._emit(
            AuditRecord(
                actor=_actor(ctx),
                action=action,
                resource=ctx.resource or "",
                decision=AuditDecision.ALLOW,
                resource_id=resource_id,
                role=ctx.role,
                reason=reason,
                old_value=old_value,
                new_value=new_value,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
                request_id=ctx.request_id,
            ),
            schedule,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _action(self, epoch: Epoch, ctx: RequestContext, op: Operation | None) -> str:
        op_name = op.value if op else "unknown"
        if ctx.entity_key:
            return epoch.constants.audit_action(ctx.entity_key, op_name) or f"{ctx.entity_key}_{op_name}"
        return f"{ctx.resource}_{op_name}"

    def _check_fields(
        self,
        epoch: Epoch,
        ctx: RequestContext,
        op: Operation,
        payload: Any,
        outcome: ValidationOutcome,
    ) -> PermissionDecision | None:
        """A deny naming the supplied fields the role may not use, or None."""
        if not isinstance(payload, Mapping):
            return None
        supplied = [name for name in payload if name in outcome.value]
        blocked = epoch.field_access.for_entity(ctx.entity_key).denied(ctx.role, supplied, op)
        if not blocked:
            return None
        return PermissionDecision(False, f"{DecisionReason.FIELD_DENIED}:{','.join(blocked)}")

    def _audit_decision(
        self,
        epoch: Epoch,
        ctx: RequestContext,
        op: Operation | None,
        decision: PermissionDecision,
        resource_id: str | None,
        schedule: AuditScheduler | None,
    ) -> None:
        if decision.allowed:
            action = self._action(epoch, ctx, op)
        else:
            action = DENIED_ACTION
            logger.info(
                "Access denied: role=%s resource=%s operation=%s reason=%s",
                ctx.role,
                ctx.resource,
                op.value if op else None,
                decision.reason,
            )
        reason = decision.reason
        if decision.granted_by:
            reason = f"{reason}:{decision.granted_by}"
        self._emit(
            AuditRecord(
                actor=_actor(ctx),
                action=action,
                resource=ctx.resource or "",
                decision=AuditDecision.ALLOW if decision.allowed else AuditDecision.DENY,
                resource_id=resource_id,
                role=ctx.role,
                reason=f"{op.value if op else 'unknown'}:{reason}",
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
                request_id=ctx.request_id,
            ),
            schedule,
        )

    def _emit(self, record: AuditRecord, schedule: AuditScheduler | None) -> None:
        if schedule is not None:
            schedule(record)
        else:
            self._emitter.record(record)
