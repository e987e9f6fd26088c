"""Audit emitter.

Writes every access decision and mutation to the primary store. When the
primary store fails, the record goes to the fallback sink and a
monitoring signal is raised. When both fail, the full record is written
to the log at CRITICAL. The caller is never interrupted by an audit
failure and never gets a silent drop.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable, Iterator
from typing import Any

from metagate.audit.store import AuditSink
from metagate.audit.types import (
    AuditOutcome,
    AuditQuery,
    AuditRecord,
    AuditWriteResult,
)

logger = logging.getLogger(__name__)

FailureCallback = Callable[[AuditRecord, Exception], None]


def _describe(record: AuditRecord) -> str:
    """Full record text for the log; falls back to repr when it will not serialize."""
    try:
        return record.to_json()
    except (TypeError, ValueError):
        return repr(record)


class AuditEmitter:
    """Routes audit records to the primary store, then the fallback sink.

    Args:
        primary: Primary store (normally a SqlAuditStore)
        fallback: Fallback sink (normally a JsonlFallbackSink)
        on_failure: Called with (record, error) whenever the primary store
            fails; use it to page or bump an external metric
    """

    def __init__(
        self,
        primary: AuditSink,
        fallback: AuditSink | None = None,
        on_failure: FailureCallback | None = None,
    ):
        self._primary = primary
        self._fallback = fallback
        self._on_failure = on_failure
        self._stats = {outcome.value: 0 for outcome in AuditOutcome}
        self._stats["primary_failures"] = 0
        self._stats_lock = threading.Lock()

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self._stats[key] += 1

    def _signal(self, record: AuditRecord, exc: Exception) -> None:
        self._count("primary_failures")
        logger.error(
            "Primary audit store failed for record %s (%s %s): %s",
            record.id,
            record.action,
            record.resource,
            exc,
        )
        if self._on_failure is not None:
            try:
                self._on_failure(record, exc)
            except Exception:
                logger.exception("Audit failure callback raised")

    def record(self, record: AuditRecord) -> AuditWriteResult:
        """Persist a record. Never raises."""
        try:
            self._primary.write(record)
        except Exception as exc:
            self._signal(record, exc)
            primary_error = str(exc)
        else:
            self._count(AuditOutcome.PRIMARY.value)
            return AuditWriteResult(AuditOutcome.PRIMARY, record.id)

        if self._fallback is not None:
            try:
                self._fallback.write(record)
            except Exception as exc:
                logger.error("Fallback audit sink failed for record %s: %s", record.id, exc)
            else:
                self._count(AuditOutcome.FALLBACK.value)
                return AuditWriteResult(AuditOutcome.FALLBACK, record.id, error=primary_error)

        self._count(AuditOutcome.DROPPED_LOGGED.value)
        logger.critical("AUDIT RECORD NOT PERSISTED: %s", _describe(record))
        return AuditWriteResult(AuditOutcome.DROPPED_LOGGED, record.id, error=primary_error)

    async def record_later(self, record: AuditRecord) -> AuditWriteResult:
        """Persist a record on a worker thread, off the request's critical path."""
        return await asyncio.to_thread(self.record, record)

    def query(self, filters: AuditQuery | None = None) -> Iterator[AuditRecord]:
        """Stream records from the primary store, newest first."""
        query = getattr(self._primary, "query", None)
        if query is None:
            raise TypeError(f"{type(self._primary).__name__} does not support queries")
        return query(filters or AuditQuery())

    @property
    def stats(self) -> dict[str, Any]:
        with self._stats_lock:
            return dict(self._stats)
