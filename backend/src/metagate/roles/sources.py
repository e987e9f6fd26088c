"""Role sources: where the role hierarchy is read from.

The persisted ``roles`` table is the source of truth in production. The
table is owned by the application schema; this module only reads it (and
can seed it for development databases).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Protocol

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from metagate.errors import MetagateError
from metagate.roles.types import RoleDescriptor

logger = logging.getLogger(__name__)


class RoleSourceUnavailable(MetagateError):
    """The role source could not be read (connection refused, missing table, ...)."""


class RoleSource(Protocol):
    """Protocol for anything that can supply the current role set."""

    def fetch_roles(self) -> list[RoleDescriptor]:
        """Return all active roles.

        Raises:
            RoleSourceUnavailable: If the source cannot be read.
        """
        ...


class StaticRoleSource:
    """A fixed, in-memory role set (tests, embedded use)."""

    def __init__(self, roles: Iterable[RoleDescriptor]):
        self._roles = list(roles)

    def fetch_roles(self) -> list[RoleDescriptor]:
        return list(self._roles)


class SqlRoleSource:
    """Reads active roles from the ``roles`` table. Dialect-neutral via SQLAlchemy Core."""

    def __init__(self, database_url: str | None = None, *, engine: Engine | None = None):
        """Initialize the source.

        Args:
            database_url: SQLAlchemy-compatible database URL.
            engine: An existing engine (takes precedence over the URL).
        """
        if engine is None and database_url is None:
            raise ValueError("SqlRoleSource needs a database_url or an engine")
        self._engine = engine if engine is not None else create_engine(database_url)

    def fetch_roles(self) -> list[RoleDescriptor]:
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(text("""
                    SELECT name, priority, description
                    FROM roles
                    WHERE is_active = :active
                    ORDER BY priority ASC
                """), {"active": True}).mappings().all()
        except SQLAlchemyError as exc:
            logger.error("Failed to read roles table: %s", exc)
            raise RoleSourceUnavailable(f"Role table unavailable: {exc}") from exc

        return [
            RoleDescriptor(
                name=row["name"],
                priority=int(row["priority"]),
                description=row["description"] or "",
            )
            for row in rows
        ]

    def seed(self, roles: Iterable[RoleDescriptor]) -> None:
        """Create the roles table if missing and insert the given roles.

        Intended for development and test databases.
        """
        with self._engine.begin() as conn:
            conn.execute(text("""
                CREATE TABLE IF NOT EXISTS roles (
                    name        TEXT PRIMARY KEY,
                    priority    INTEGER NOT NULL UNIQUE,
                    description TEXT,
                    is_active   BOOLEAN NOT NULL DEFAULT TRUE
                )
            """))
            for role in roles:
                conn.execute(
                    text("""
                        INSERT INTO roles (name, priority, description, is_active)
                        VALUES (:name, :priority, :description, :active)
                    """),
                    {
                        "name": role.name,
                        "priority": role.priority,
                        "description": role.description,
                        "active": True,
                    },
                )
