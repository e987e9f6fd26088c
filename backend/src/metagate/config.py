"""Runtime settings resolved from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

ENVIRONMENTS = ("production", "development", "test")


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Operational settings.

    Entity and role descriptors are data, not flags. The only operational
    controls here are where to find that data, where audit records go, and
    whether the built-in fallback role set may be used.
    """

    environment: str = "development"
    database_url: str = "sqlite:///metagate.db"
    metadata_path: Path = Path("metadata")
    audit_fallback_path: Path = Path("data") / "audit-fallback.jsonl"
    allow_fallback_roles: bool = True

    @classmethod
    def from_env(cls, base_path: Path | None = None) -> Settings:
        """Create settings from environment variables.

        Resolution order for the database URL:
        1. DATABASE_URL env var
        2. METAGATE_DB_PATH env var (converted to a sqlite:/// URL)
        3. Default: sqlite:///{base_path}/data/metagate.db
        """
        base = base_path or Path.cwd()

        environment = os.environ.get("METAGATE_ENV", "development").strip().lower()
        if environment not in ENVIRONMENTS:
            raise ValueError(
                f"METAGATE_ENV must be one of {', '.join(ENVIRONMENTS)}, got '{environment}'"
            )

        url = os.environ.get("DATABASE_URL")
        if not url:
            db_path = os.environ.get("METAGATE_DB_PATH")
            if db_path:
                url = f"sqlite:///{db_path}"
            else:
                url = f"sqlite:///{base / 'data' / 'metagate.db'}"

        metadata_path = Path(os.environ.get("METAGATE_METADATA_PATH", base / "metadata"))
        fallback_path = Path(
            os.environ.get(
                "METAGATE_AUDIT_FALLBACK_PATH", base / "data" / "audit-fallback.jsonl"
            )
        )

        # Production runs refuse the built-in role set unless explicitly allowed
        allow_fallback = _env_flag(
            "METAGATE_ALLOW_FALLBACK_ROLES", default=environment != "production"
        )

        return cls(
            environment=environment,
            database_url=url,
            metadata_path=metadata_path,
            audit_fallback_path=fallback_path,
            allow_fallback_roles=allow_fallback,
        )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def sqlalchemy_url(self) -> str:
        """URL suitable for SQLAlchemy engine creation (psycopg v3 driver for PostgreSQL)."""
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace("postgresql://", "postgresql+psycopg://", 1)
        return self.database_url
