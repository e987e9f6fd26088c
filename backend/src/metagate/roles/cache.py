"""Role hierarchy cache.

Loads the role set once per epoch and answers ordering queries. Readers
take a plain reference to the current :class:`RoleHierarchy` snapshot; a
reload builds a new snapshot off to the side and publishes it with a
single assignment, so a reader sees either the old set or the new one,
never a mix.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable

from metagate.errors import ConfigurationError
from metagate.roles.sources import RoleSource, RoleSourceUnavailable
from metagate.roles.types import FALLBACK_ROLES, RoleDescriptor, RoleHierarchy

logger = logging.getLogger(__name__)


class RoleHierarchyCache:
    """Process-wide role hierarchy with explicit reload.

    Args:
        source: Where roles are read from at boot and on reload
        production: Whether this is a production-classified run
        allow_fallback: Whether the built-in role set may be used when the
            source is unavailable at boot
        fallback_roles: The built-in role set
    """

    def __init__(
        self,
        source: RoleSource | None = None,
        *,
        production: bool = False,
        allow_fallback: bool = True,
        fallback_roles: Iterable[RoleDescriptor] = FALLBACK_ROLES,
    ):
        self._source = source
        self._production = production
        self._allow_fallback = allow_fallback
        self._fallback_roles = tuple(fallback_roles)
        self._snapshot: RoleHierarchy | None = None
        self._reload_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self, roles: Iterable[RoleDescriptor], source: str = "source") -> RoleHierarchy:
        """Build a snapshot from an explicit role list and publish it."""
        snapshot = RoleHierarchy.from_roles(roles, source=source)
        self.publish(snapshot)
        return snapshot

    def boot(self) -> RoleHierarchy:
        """Initial load from the source, falling back to the built-in set if allowed.

        Raises:
            ConfigurationError: The source is unavailable and fallback is not
                allowed, or the source returned a malformed role set.
        """
        if self._source is None:
            return self._use_fallback("no role source configured")

        try:
            roles = self._source.fetch_roles()
        except RoleSourceUnavailable as exc:
            return self._use_fallback(str(exc))

        snapshot = self.load(roles, source="source")
        logger.info(
            "Role hierarchy initialized from source: %s",
            " -> ".join(snapshot.names()),
        )
        return snapshot

    def fetch(self) -> RoleHierarchy:
        """Read and validate the source without publishing the result.

        Used by the epoch manager to build a complete reload candidate. A
        cache running on the fallback set keeps it while the source is
        still unavailable.

        Raises:
            ConfigurationError: Source unavailable or role set malformed.
        """
        if self._source is None:
            raise ConfigurationError("Cannot reload roles: no role source configured")
        try:
            roles = self._source.fetch_roles()
        except RoleSourceUnavailable as exc:
            current = self._snapshot
            if current is not None and current.source == "fallback":
                logger.warning("Role source still unavailable (%s); keeping FALLBACK role set", exc)
                return current
            raise ConfigurationError(f"Cannot reload roles: {exc}") from exc
        return RoleHierarchy.from_roles(roles, source="source")

    def reload(self) -> RoleHierarchy:
        """Re-read the source and swap the snapshot. The old snapshot stays on failure."""
        with self._reload_lock:
            snapshot = self.fetch()
            self.publish(snapshot)
        logger.info("Role hierarchy reloaded: %s", " -> ".join(snapshot.names()))
        return snapshot

    def publish(self, snapshot: RoleHierarchy) -> None:
        self._snapshot = snapshot

    def _use_fallback(self, reason: str) -> RoleHierarchy:
        if not self._allow_fallback:
            logger.critical(
                "Role source unavailable (%s) and fallback roles are disabled; refusing to start",
                reason,
            )
            raise ConfigurationError(f"Role source unavailable and fallback disabled: {reason}")

        snapshot = self.load(self._fallback_roles, source="fallback")
        if self._production:
            logger.critical(
                "DEGRADED BOOT: using built-in FALLBACK role set in production (%s). "
                "Role priorities are not coming from the roles table.",
                reason,
            )
        else:
            logger.warning("Using built-in FALLBACK role set (%s)", reason)
        return snapshot

    # ------------------------------------------------------------------
    # Queries (always against the current snapshot)
    # ------------------------------------------------------------------

    @property
    def has_source(self) -> bool:
        return self._source is not None

    @property
    def snapshot(self) -> RoleHierarchy:
        snapshot = self._snapshot
        if snapshot is None:
            raise ConfigurationError("Role hierarchy has not been loaded")
        return snapshot

    def priority_of(self, role: str | None) -> int | None:
        return self.snapshot.priority_of(role)

    def at_least(self, role: str | None, threshold: str | None) -> bool:
        return self.snapshot.at_least(role, threshold)

    def ordered(self) -> list[str]:
        return self.snapshot.names()

    def status(self) -> dict[str, bool]:
        snapshot = self._snapshot
        return {
            "ready": snapshot is not None,
            "from_source": snapshot is not None and snapshot.source == "source",
            "fallback": snapshot is not None and snapshot.source == "fallback",
        }
