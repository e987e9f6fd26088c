"""FastAPI integration: dependencies, admin router and app factory."""

from metagate.api.admin import create_admin_router
from metagate.api.app import build_pipeline, create_app
from metagate.api.dependencies import (
    AuditBuffer,
    entity_context,
    get_identity,
    request_context,
    require_access,
    require_identity,
)

__all__ = [
    "AuditBuffer",
    "build_pipeline",
    "create_admin_router",
    "create_app",
    "entity_context",
    "get_identity",
    "request_context",
    "require_access",
    "require_identity",
]
