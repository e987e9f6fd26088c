"""Tests for epoch snapshots and administrative reload."""

import logging
import shutil
from pathlib import Path

import pytest

from metagate.core.context import Identity, RequestContext
from metagate.epoch import EpochManager, build_epoch
from metagate.errors import ConfigurationError, EntityNotFoundError
from metagate.registry import MetadataLoader
from metagate.rls import MATCH_NONE, FieldEquals
from metagate.roles import (
    FALLBACK_ROLES,
    RoleDescriptor,
    RoleHierarchy,
    RoleHierarchyCache,
    RoleSourceUnavailable,
)


_METADATA_DIR = Path(__file__).resolve().parents[2] / "metadata"

EXTRA_ENTITY = """\
entity: site
tableName: sites
rlsResource: sites
displayName: Site
displayNamePlural: Sites
primaryKey: id
identityField: name
nameConstructionType: DIRECT
fields:
  - name: id
    type: uuid
    systemManaged: true
  - name: name
    type: string
    validation:
      required: true
access:
  grants:
    dispatcher: [read]
rowPolicies:
  dispatcher: [all_records]
"""


class SwitchableSource:
    def __init__(self, roles):
        self.roles = roles

    def fetch_roles(self):
        if isinstance(self.roles, Exception):
            raise self.roles
        return list(self.roles)


@pytest.fixture
def metadata_dir(tmp_path):
    target = tmp_path / "metadata"
    shutil.copytree(_METADATA_DIR, target)
    return target


@pytest.fixture
def source():
    return SwitchableSource(FALLBACK_ROLES)


@pytest.fixture
def manager(metadata_dir, source):
    epochs = EpochManager(MetadataLoader(metadata_dir), RoleHierarchyCache(source))
    epochs.boot()
    return epochs


def make_context(role: str, user_id: str | None = "user-1") -> RequestContext:
    return RequestContext(identity=Identity(role=role, user_id=user_id))


def add_entity(metadata_dir: Path, name: str, text: str) -> None:
    (metadata_dir / "entities" / f"{name}.yaml").write_text(text, encoding="utf-8")


class TestBoot:
    def test_current_before_boot(self, metadata_dir, source):
        epochs = EpochManager(MetadataLoader(metadata_dir), RoleHierarchyCache(source))
        with pytest.raises(ConfigurationError, match="boot"):
            epochs.current

    def test_boot_publishes_first_epoch(self, manager):
        epoch = manager.current
        assert epoch.number == 1
        assert epoch.roles.names() == ["customer", "technician", "dispatcher", "manager", "admin"]
        assert epoch.get("work_order").table_name == "work_orders"

    def test_epoch_answers_every_question(self, manager):
        epoch = manager.current
        assert epoch.can("admin", "work_orders", "read")
        assert not epoch.can("technician", "invoices", "read")
        assert epoch.validate("work_order", "create", {}).errors[0].field == "title"
        ctx = make_context("technician", "tech-1")
        assert epoch.filter_for("technician", "work_orders", ctx) == FieldEquals(
            "assigned_technician_id", "tech-1"
        )

    def test_boot_fails_on_broken_metadata(self, metadata_dir, source):
        add_entity(metadata_dir, "zz_broken", EXTRA_ENTITY.replace("dispatcher: [read]", "auditor: [read]"))
        epochs = EpochManager(MetadataLoader(metadata_dir), RoleHierarchyCache(source))
        with pytest.raises(ConfigurationError, match="auditor"):
            epochs.boot()

    def test_boot_with_fallback_roles(self, metadata_dir, caplog):
        epochs = EpochManager(
            MetadataLoader(metadata_dir),
            RoleHierarchyCache(SwitchableSource(RoleSourceUnavailable("no roles table"))),
        )
        with caplog.at_level(logging.WARNING):
            epoch = epochs.boot()
        assert epoch.roles.source == "fallback"
        assert epochs.role_cache.status()["fallback"] is True

    def test_summary(self, manager):
        summary = manager.current.summary()
        assert summary["number"] == 1
        assert "work_order" in summary["entities"]
        assert summary["roles"]["source"] == "source"


class TestReload:
    def test_reload_swaps_epoch(self, manager, metadata_dir):
        before = manager.current
        add_entity(metadata_dir, "site", EXTRA_ENTITY)

        after = manager.reload()

        assert manager.current is after
        assert after.number == 2
        assert after.can("dispatcher", "sites", "read")
        # A reader holding the old epoch keeps a consistent view
        assert not before.can("dispatcher", "sites", "read")
        with pytest.raises(EntityNotFoundError):
            before.get("site")

    def test_reload_picks_up_new_roles(self, manager, source):
        source.roles = list(FALLBACK_ROLES) + [RoleDescriptor("owner", 9)]
        epoch = manager.reload()

        assert epoch.roles.highest.name == "owner"
        assert epoch.can("owner", "audit_logs", "read")
        assert not epoch.can("admin", "audit_logs", "read")
        assert manager.role_cache.ordered()[-1] == "owner"

    def test_failed_reload_keeps_previous_epoch(self, manager, metadata_dir, caplog):
        before = manager.current
        ctx = make_context("customer", "cust-1")
        add_entity(metadata_dir, "site", EXTRA_ENTITY.replace("dispatcher: [read]", "auditor: [read]"))

        with caplog.at_level(logging.ERROR, logger="metagate.epoch"):
            with pytest.raises(ConfigurationError, match="unknown role 'auditor'"):
                manager.reload()

        assert manager.current is before
        assert manager.current.can("customer", "work_orders", "read")
        assert manager.current.filter_for("customer", "work_orders", ctx) == FieldEquals(
            "customer_id", "cust-1"
        )
        assert manager.current.validate("work_order", "update", {"status": "assigned"}).valid
        assert any("Reload rejected" in r.getMessage() for r in caplog.records)

    def test_rejected_roles_are_not_published(self, manager, source):
        before_roles = manager.role_cache.snapshot
        # Dropping a role that metadata still references
        source.roles = [r for r in FALLBACK_ROLES if r.name != "technician"]

        with pytest.raises(ConfigurationError, match="technician"):
            manager.reload()

        assert manager.role_cache.snapshot is before_roles
        assert manager.current.roles is before_roles

    def test_malformed_role_set(self, manager, source):
        before = manager.current
        source.roles = [RoleDescriptor("customer", 1), RoleDescriptor("admin", 1)]
        with pytest.raises(ConfigurationError, match="duplicate priority"):
            manager.reload()
        assert manager.current is before

    def test_unavailable_role_source(self, manager, source):
        before = manager.current
        source.roles = RoleSourceUnavailable("connection refused")
        with pytest.raises(ConfigurationError, match="connection refused"):
            manager.reload()
        assert manager.current is before

    def test_fallback_roles_survive_reload_while_source_is_down(self, metadata_dir):
        epochs = EpochManager(
            MetadataLoader(metadata_dir),
            RoleHierarchyCache(SwitchableSource(RoleSourceUnavailable("no roles table"))),
        )
        epochs.boot()
        epoch = epochs.reload()
        assert epoch.number == 2
        assert epoch.roles.source == "fallback"

    def test_reload_without_role_source(self, metadata_dir):
        epochs = EpochManager(MetadataLoader(metadata_dir), RoleHierarchyCache(None))
        first = epochs.boot()
        second = epochs.reload()
        assert second.roles is first.roles


class TestBuildEpoch:
    def test_technician_has_no_invoice_rows(self, metadata_dir):
        registry = MetadataLoader(metadata_dir).load_registry()
        epoch = build_epoch(7, registry, RoleHierarchy.from_roles(FALLBACK_ROLES))
        assert epoch.number == 7
        assert epoch.filter_for("technician", "invoices", make_context("technician")) is MATCH_NONE

    def test_field_rules_are_resolved(self, metadata_dir):
        registry = MetadataLoader(metadata_dir).load_registry()
        epoch = build_epoch(1, registry, RoleHierarchy.from_roles(FALLBACK_ROLES))
        readable = epoch.readable_fields("customer", "work_order")
        assert "assigned_technician_id" in readable
        assert "customer_id" not in readable
        assert "customer_id" in epoch.readable_fields("manager", "work_order")


class TestFieldAccessReload:
    def test_unknown_role_in_field_rules_keeps_previous_epoch(self, manager, metadata_dir):
        before = manager.current
        add_entity(
            metadata_dir,
            "site",
            EXTRA_ENTITY + "fieldAccess:\n  name:\n    read: auditor\n",
        )

        with pytest.raises(ConfigurationError, match="Invalid field access for 'site'"):
            manager.reload()
        assert manager.current is before

    def test_new_field_rules_take_effect_on_reload(self, manager, metadata_dir):
        add_entity(
            metadata_dir,
            "site",
            EXTRA_ENTITY + "fieldAccess:\n  name:\n    read: manager\n",
        )
        epoch = manager.reload()
        assert epoch.readable_fields("dispatcher", "site") == ("id",)
        assert epoch.readable_fields("admin", "site") == ("id", "name")
