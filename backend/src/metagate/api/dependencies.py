"""FastAPI dependencies for entity access.

Authentication happens upstream: whatever verifies the caller stores an
:class:`Identity` on ``request.state.identity``. These dependencies turn
that identity into a request context, attach the target entity, and run
the access pipeline.
"""

import json
import uuid
from typing import Any, Callable

from fastapi import BackgroundTasks, HTTPException, Request

from metagate.audit.emitter import AuditEmitter
from metagate.audit.types import AuditRecord
from metagate.core.context import Identity, RequestContext
from metagate.core.types import Operation
from metagate.errors import AccessDenied, EntityNotFoundError
from metagate.pipeline import AccessPipeline, AccessResult

REQUEST_ID_HEADER = "X-Request-ID"
WRITE_OPERATIONS = (Operation.CREATE, Operation.UPDATE)


def get_identity(request: Request) -> Identity | None:
    """Soft dependency: the caller's identity, or None."""
    return getattr(request.state, "identity", None)


def require_identity(request: Request) -> Identity:
    """Dependency that requires an identity.

    Raises:
        HTTPException 401 if the request carries no identity
    """
    identity = get_identity(request)
    if identity is None:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


def request_context(request: Request) -> RequestContext:
    """Build the request context for an authenticated caller."""
    identity = require_identity(request)
    return RequestContext(
        identity=identity,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        request_id=request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex,
    )


def entity_context(
    get_pipeline: Callable[[], AccessPipeline],
) -> Callable[[Request, str], RequestContext]:
    """Create a dependency that attaches the ``{entity}`` path segment.

    Example:
        @router.get("/api/{entity}/schema")
        async def schema(ctx: RequestContext = Depends(entity_context(get_pipeline))):
            ...
    """

    def dependency(request: Request, entity: str) -> RequestContext:
        ctx = request_context(request)
        pipeline = get_pipeline()
        epoch = pipeline.epochs.current
        try:
            return pipeline.attach(epoch, ctx, entity)
        except EntityNotFoundError:
            raise HTTPException(status_code=404, detail=f"Unknown entity: {entity}") from None

    return dependency


class AuditBuffer:
    """Collects a request's audit records until the outcome is known.

    An HTTPException discards the route's background tasks, so records for
    a rejected request are written before the error response goes out.
    Records for a successful request are written after the response.
    """

    def __init__(self, emitter: AuditEmitter):
        self._emitter = emitter
        self.records: list[AuditRecord] = []

    def __call__(self, record: AuditRecord) -> None:
        self.records.append(record)

    def defer(self, background_tasks: BackgroundTasks) -> None:
        for record in self.records:
            background_tasks.add_task(self._emitter.record, record)
        self.records = []

    async def flush(self) -> None:
        for record in self.records:
            await self._emitter.record_later(record)
        self.records = []


async def _read_payload(request: Request, operation: Operation) -> Any:
    if operation in WRITE_OPERATIONS:
        body = await request.body()
        if not body:
            return {}
        try:
            return json.loads(body)
        except ValueError:
            # Reported by validation as an invalid payload
            return body.decode("utf-8", errors="replace")
    return dict(request.query_params)


def require_access(
    get_pipeline: Callable[[], AccessPipeline],
    operation: Operation | str,
) -> Callable:
    """Create a dependency that validates, authorizes and filters one request.

    Audit records are written after the response through BackgroundTasks,
    or before it when the request is denied.

    Returns:
        A FastAPI dependency yielding an :class:`AccessResult`

    Raises (from the dependency):
        HTTPException 401 if unauthenticated
        HTTPException 404 for an unknown entity
        HTTPException 422 listing every invalid field
        HTTPException 403 "Access denied" with no further detail
    """
    op = Operation(operation)

    async def dependency(
        request: Request,
        entity: str,
        background_tasks: BackgroundTasks,
    ) -> AccessResult:
        ctx = request_context(request)
        pipeline = get_pipeline()
        payload = await _read_payload(request, op)
        audit = AuditBuffer(pipeline.emitter)

        try:
            result = pipeline.check(
                ctx,
                entity,
                op,
                payload,
                resource_id=request.path_params.get("record_id"),
                schedule=audit,
            )
        except EntityNotFoundError:
            raise HTTPException(status_code=404, detail=f"Unknown entity: {entity}") from None
        except AccessDenied as exc:
            await audit.flush()
            raise HTTPException(status_code=403, detail=str(exc)) from None

        audit.defer(background_tasks)

        if not result.validation.valid:
            raise HTTPException(
                status_code=422,
                detail={"errors": [e.to_dict() for e in result.errors]},
            )
        return result

    return dependency
