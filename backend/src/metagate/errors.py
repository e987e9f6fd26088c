"""Exception taxonomy for metagate.

Only conditions where the system cannot proceed are exceptions. Validation
failures are returned as data (FieldError) and permission denials are a
boolean from ``can()``.
"""

from __future__ import annotations


class MetagateError(Exception):
    """Base class for all metagate exceptions."""


class ConfigurationError(MetagateError):
    """Malformed or missing descriptor / role data.

    Fatal to the process at first boot; fatal only to the reload attempt
    once an epoch is already active.

    Attributes:
        entity: The offending entity key (or role / resource name), if known
        problems: Individual problems found, one line each
    """

    def __init__(
        self,
        message: str,
        entity: str | None = None,
        problems: list[str] | None = None,
    ):
        self.entity = entity
        self.problems = list(problems or [])
        if self.problems:
            detail = "\n".join(f"  - {p}" for p in self.problems)
            message = f"{message}\n{detail}"
        super().__init__(message)


class EntityNotFoundError(MetagateError, KeyError):
    """Raised by the registry when an entity key is not registered."""

    def __init__(self, entity_key: str):
        self.entity_key = entity_key
        super().__init__(f"Entity '{entity_key}' is not registered")

    def __str__(self) -> str:
        return self.args[0]


class AccessDenied(MetagateError):
    """Raised by the request pipeline when a permission check fails.

    The message is deliberately generic; the reason is only recorded in
    the audit trail.
    """

    def __init__(self) -> None:
        super().__init__("Access denied")


class AuditPersistenceFailure(MetagateError):
    """Raised by an audit sink when a record could not be written.

    The audit emitter recovers from this locally; it never reaches the
    original caller.
    """
