"""Administrative endpoints: epoch reload and inspection, audit trail."""

import logging
from datetime import datetime
from typing import Any, Callable

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pydantic import BaseModel

from metagate.api.dependencies import AuditBuffer, request_context
from metagate.audit.types import AuditDecision, AuditQuery
from metagate.core.context import RequestContext
from metagate.core.types import Operation
from metagate.errors import AccessDenied, ConfigurationError
from metagate.permissions.matrix import ADMIN_RESOURCE, AUDIT_LOGS_RESOURCE
from metagate.pipeline import AccessPipeline

logger = logging.getLogger(__name__)

RELOAD_ACTION = "epoch_reload"


class ReloadResponse(BaseModel):
    success: bool
    epoch: int
    error: str | None = None
    problems: list[str] = []


class EpochResponse(BaseModel):
    number: int
    created_at: str
    entities: list[str]
    roles: dict[str, Any]
    role_status: dict[str, bool]
    permissions: dict[str, dict[str, list[str]]]
    row_policies: dict[str, dict[str, list[str]]]
    field_access: dict[str, dict[str, dict[str, list[str]]]]


class AuditRecordResponse(BaseModel):
    id: str
    actor: str
    action: str
    resource: str
    resource_id: str | None = None
    decision: str
    role: str | None = None
    reason: str | None = None
    old_value: dict[str, Any] | None = None
    new_value: dict[str, Any] | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None
    timestamp: str


class AuditListResponse(BaseModel):
    data: list[AuditRecordResponse]
    count: int
    stats: dict[str, int]


def create_admin_router(get_pipeline: Callable[[], AccessPipeline]) -> APIRouter:
    """Create the admin router with an injected pipeline."""
    router = APIRouter(prefix="/admin", tags=["admin"])

    def admin_access(operation: Operation) -> Callable:
        """Dependency authorizing an admin endpoint; the decision is audited either way."""

        async def dependency(
            background_tasks: BackgroundTasks,
            ctx: RequestContext = Depends(request_context),
        ) -> RequestContext:
            pipeline = get_pipeline()
            audit = AuditBuffer(pipeline.emitter)
            try:
                pipeline.authorize_resource(ctx, ADMIN_RESOURCE, operation, schedule=audit)
            except AccessDenied as exc:
                await audit.flush()
                raise HTTPException(status_code=403, detail=str(exc)) from None
            audit.defer(background_tasks)
            return ctx.with_resource(ADMIN_RESOURCE)

        return dependency

    @router.post("/reload", response_model=ReloadResponse)
    async def reload_epoch(
        background_tasks: BackgroundTasks,
        ctx: RequestContext = Depends(admin_access(Operation.UPDATE)),
    ) -> ReloadResponse:
        pipeline = get_pipeline()
        epochs = pipeline.epochs
        previous = epochs.current.number
        logger.info("Reload requested by %s", ctx.user_id or ctx.role)
        try:
            epoch = epochs.reload()
        except ConfigurationError as exc:
            response = ReloadResponse(
                success=False,
                epoch=previous,
                error=str(exc).splitlines()[0],
                problems=exc.problems,
            )
            reason = "rejected"
        else:
            response = ReloadResponse(success=True, epoch=epoch.number)
            reason = "completed"

        audit = AuditBuffer(pipeline.emitter)
        pipeline.record_event(
            ctx,
            RELOAD_ACTION,
            reason=reason,
            old_value={"epoch": previous},
            new_value=response.model_dump(),
            schedule=audit,
        )
        audit.defer(background_tasks)
        return response

    @router.get("/epoch", response_model=EpochResponse)
    async def get_epoch(
        ctx: RequestContext = Depends(admin_access(Operation.READ)),
    ) -> EpochResponse:
        epochs = get_pipeline().epochs
        epoch = epochs.current
        summary = epoch.summary()
        return EpochResponse(
            number=summary["number"],
            created_at=summary["created_at"],
            entities=summary["entities"],
            roles=summary["roles"],
            role_status=epochs.role_cache.status(),
            permissions=epoch.permissions.matrix.to_dict(),
            row_policies=epoch.row_policies.to_dict(),
            field_access=epoch.field_access.to_dict(),
        )

    @router.get("/constants")
    async def get_constants(
        ctx: RequestContext = Depends(admin_access(Operation.READ)),
    ) -> dict[str, Any]:
        return get_pipeline().epochs.current.constants.to_dict()

    @router.get("/audit", response_model=AuditListResponse)
    async def list_audit(
        background_tasks: BackgroundTasks,
        ctx: RequestContext = Depends(request_context),
        actor: str | None = None,
        action: str | None = None,
        resource: str | None = None,
        resource_id: str | None = None,
        decision: AuditDecision | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = Query(default=100, ge=1, le=1000),
    ) -> AuditListResponse:
        pipeline = get_pipeline()
        audit = AuditBuffer(pipeline.emitter)
        try:
            pipeline.authorize_resource(ctx, AUDIT_LOGS_RESOURCE, "read", schedule=audit)
        except AccessDenied as exc:
            await audit.flush()
            raise HTTPException(status_code=403, detail=str(exc)) from None
        audit.defer(background_tasks)

        records = pipeline.emitter.query(AuditQuery(
            actor=actor,
            action=action,
            resource=resource,
            resource_id=resource_id,
            decision=decision,
            since=since,
            until=until,
            limit=limit,
        ))
        data = [AuditRecordResponse(**record.to_dict()) for record in records]
        return AuditListResponse(data=data, count=len(data), stats=pipeline.emitter.stats)

    return router
