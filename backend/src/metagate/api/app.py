"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable

from fastapi import Depends, FastAPI, Request

from metagate.api.admin import create_admin_router
from metagate.api.dependencies import entity_context
from metagate.audit import AuditEmitter, JsonlFallbackSink, SqlAuditStore
from metagate.config import Settings
from metagate.core.context import Identity, RequestContext
from metagate.epoch import EpochManager
from metagate.pipeline import AccessPipeline
from metagate.registry.validator import validate_metadata_dir

logger = logging.getLogger(__name__)

IdentityResolver = Callable[[Request], Identity | None]


def _ensure_sqlite_dir(url: str) -> None:
    if url.startswith("sqlite:///"):
        sqlite_path = url.replace("sqlite:///", "")
        if sqlite_path and sqlite_path != ":memory:":
            Path(sqlite_path).parent.mkdir(parents=True, exist_ok=True)


def build_pipeline(settings: Settings) -> AccessPipeline:
    """Boot the first epoch and wire the audit trail from settings.

    Raises:
        ConfigurationError: Metadata or roles are unusable; do not serve.
    """
    issues = validate_metadata_dir(settings.metadata_path)
    for issue in issues:
        if issue.severity == "error":
            logger.error("Metadata schema error: %s", issue)
        else:
            logger.warning("Metadata schema warning: %s", issue)

    _ensure_sqlite_dir(settings.sqlalchemy_url)
    epochs = EpochManager.from_settings(settings)
    epochs.boot()

    emitter = AuditEmitter(
        primary=SqlAuditStore(settings.sqlalchemy_url),
        fallback=JsonlFallbackSink(settings.audit_fallback_path),
    )
    return AccessPipeline(epochs, emitter)


def create_app(
    settings: Settings | None = None,
    *,
    pipeline: AccessPipeline | None = None,
    identity_resolver: IdentityResolver | None = None,
) -> FastAPI:
    """Create the API.

    Args:
        settings: Settings to boot from (defaults to ``Settings.from_env()``)
        pipeline: A ready pipeline; skips booting from settings
        identity_resolver: Maps a request to the caller's identity. The
            upstream authentication layer may instead set
            ``request.state.identity`` itself.
    """
    state: dict[str, AccessPipeline] = {}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if pipeline is not None:
            state["pipeline"] = pipeline
        else:
            state["pipeline"] = build_pipeline(settings or Settings.from_env())
        yield

    def get_pipeline() -> AccessPipeline:
        return state["pipeline"]

    app = FastAPI(title="metagate", lifespan=lifespan)

    if identity_resolver is not None:
        @app.middleware("http")
        async def identity_middleware(request: Request, call_next):
            request.state.identity = identity_resolver(request)
            return await call_next(request)

    app.include_router(create_admin_router(get_pipeline))

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        epochs = get_pipeline().epochs
        return {
            "status": "ok",
            "epoch": epochs.current.number,
            "roles": epochs.role_cache.status(),
            "audit": get_pipeline().emitter.stats,
        }

    @app.get("/api/entities/{entity}/schema")
    async def entity_schema(
        ctx: RequestContext = Depends(entity_context(get_pipeline)),
    ) -> dict[str, Any]:
        constants = get_pipeline().epochs.current.constants
        return {
            "entity": ctx.entity_key,
            "resource": ctx.resource,
            "path": constants.url_paths[ctx.entity_key],
            "schema": dict(constants.field_schemas[ctx.entity_key]),
        }

    return app
