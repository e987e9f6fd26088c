"""Audit trail: write-once records with a primary store and a fallback sink."""

from metagate.audit.emitter import AuditEmitter
from metagate.audit.fallback import JsonlFallbackSink
from metagate.audit.store import AuditSink, SqlAuditStore
from metagate.audit.types import (
    AuditDecision,
    AuditOutcome,
    AuditQuery,
    AuditRecord,
    AuditWriteResult,
)

__all__ = [
    "AuditDecision",
    "AuditEmitter",
    "AuditOutcome",
    "AuditQuery",
    "AuditRecord",
    "AuditSink",
    "AuditWriteResult",
    "JsonlFallbackSink",
    "SqlAuditStore",
]
