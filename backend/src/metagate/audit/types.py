"""Audit record types."""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, date, datetime, time
from enum import Enum
from typing import Any


class AuditDecision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


class AuditOutcome(str, Enum):
    """Where an audit record ended up."""

    PRIMARY = "primary"
    FALLBACK = "fallback"
    DROPPED_LOGGED = "dropped_logged"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return value.hex()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    # Decimal, UUID and anything else a row snapshot may carry
    return str(value)


def dumps(value: Any) -> str:
    return json.dumps(value, default=_json_default, sort_keys=True)


@dataclass(frozen=True)
class AuditRecord:
    """One write-once audit entry.

    Attributes:
        actor: User ID of the caller (or a role name when there is none)
        action: What was attempted, e.g. ``work_order_update`` or ``access_denied``
        resource: The RLS resource touched
        decision: allow or deny
        resource_id: Primary key of the affected row, if any
        role: The caller's role at the time of the request
        reason: Internal reason for the decision (never shown to the caller)
        old_value / new_value: Row snapshots around a mutation
        ip_address / user_agent / request_id: Request context
    """

    actor: str
    action: str
    resource: str
    decision: AuditDecision
    resource_id: str | None = None
    role: str | None = None
    reason: str | None = None
    old_value: dict[str, Any] | None = None
    new_value: dict[str, Any] | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["decision"] = self.decision.value
        data["timestamp"] = self.timestamp.astimezone(UTC).isoformat()
        return data

    def to_json(self) -> str:
        return dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditRecord:
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            id=data["id"],
            actor=data["actor"],
            action=data["action"],
            resource=data["resource"],
            decision=AuditDecision(data["decision"]),
            resource_id=data.get("resource_id"),
            role=data.get("role"),
            reason=data.get("reason"),
            old_value=data.get("old_value"),
            new_value=data.get("new_value"),
            ip_address=data.get("ip_address"),
            user_agent=data.get("user_agent"),
            request_id=data.get("request_id"),
            timestamp=timestamp or _utcnow(),
        )


@dataclass(frozen=True)
class AuditWriteResult:
    outcome: AuditOutcome
    record_id: str
    error: str | None = None

    @property
    def persisted(self) -> bool:
        return self.outcome != AuditOutcome.DROPPED_LOGGED


@dataclass(frozen=True)
class AuditQuery:
    """Filters for reading the audit trail. Results are newest first."""

    actor: str | None = None
    action: str | None = None
    resource: str | None = None
    resource_id: str | None = None
    decision: AuditDecision | None = None
    since: datetime | None = None
    until: datetime | None = None
    limit: int | None = 100
