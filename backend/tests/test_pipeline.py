"""Tests for the per-request access pipeline."""

from pathlib import Path

import pytest

from metagate.audit import AuditDecision, AuditEmitter
from metagate.core.context import Identity, RequestContext
from metagate.core.types import Operation
from metagate.epoch import EpochManager
from metagate.errors import AccessDenied, EntityNotFoundError
from metagate.pipeline import AccessPipeline
from metagate.registry import MetadataLoader
from metagate.rls import MATCH_ALL, MATCH_NONE, FieldEquals
from metagate.roles import FALLBACK_ROLES, RoleHierarchyCache, StaticRoleSource
from metagate.validation import Reason


_METADATA_DIR = Path(__file__).resolve().parents[2] / "metadata"

CUSTOMER_ID = "0b7d6f5e-3c0a-4f55-9d6c-2f1e8a9b7c10"


class ListSink:
    def __init__(self):
        self.records = []

    def write(self, record):
        self.records.append(record)


@pytest.fixture
def sink():
    return ListSink()


@pytest.fixture
def pipeline(sink):
    epochs = EpochManager(
        MetadataLoader(_METADATA_DIR),
        RoleHierarchyCache(StaticRoleSource(FALLBACK_ROLES)),
    )
    epochs.boot()
    return AccessPipeline(epochs, AuditEmitter(sink))


def make_context(role: str, user_id: str | None = "user-1") -> RequestContext:
    return RequestContext(
        identity=Identity(role=role, user_id=user_id),
        ip_address="10.0.0.7",
        user_agent="pytest",
        request_id="req-1",
    )


class TestAllowed:
    def test_read_returns_row_filter(self, pipeline, sink):
        result = pipeline.check(make_context("technician", "tech-1"), "work_order", "read")

        assert result.ok
        assert result.context.entity_key == "work_order"
        assert result.context.resource == "work_orders"
        assert result.predicate == FieldEquals("assigned_technician_id", "tech-1")

        [record] = sink.records
        assert record.decision == AuditDecision.ALLOW
        assert record.action == "work_order_read"
        assert record.actor == "tech-1"
        assert record.reason == "read:explicit_grant:technician"
        assert record.request_id == "req-1"
        assert record.ip_address == "10.0.0.7"

    def test_inherited_grant_is_recorded(self, pipeline, sink):
        pipeline.check(make_context("dispatcher"), "work_order", "read")
        assert sink.records[0].reason == "read:inherited_grant:technician"

    def test_create_uses_validated_payload(self, pipeline, sink):
        result = pipeline.check(
            make_context("dispatcher"),
            "work_order",
            Operation.CREATE,
            {"title": "Replace filter", "customer_id": CUSTOMER_ID.upper(), "id": "spoofed"},
        )

        assert result.ok
        assert result.payload == {
            "title": "Replace filter",
            "status": "pending",
            "priority": "normal",
            "customer_id": CUSTOMER_ID,
        }
        assert result.predicate is MATCH_ALL
        assert sink.records[0].action == "work_order_create"

    def test_url_segment_resolves_entity(self, pipeline):
        result = pipeline.check(make_context("admin"), "work-orders", "read")
        assert result.context.entity_key == "work_order"

    def test_actor_falls_back_to_role(self, pipeline, sink):
        pipeline.check(make_context("admin", user_id=None), "work_order", "read")
        assert sink.records[0].actor == "role:admin"

    def test_missing_user_id_sees_no_rows(self, pipeline):
        result = pipeline.check(make_context("customer", user_id=None), "work_order", "read")
        assert result.ok
        assert result.predicate is MATCH_NONE

    def test_read_filters_are_validated(self, pipeline):
        result = pipeline.check(
            make_context("admin"), "work_order", "read", {"status": "assigned"}
        )
        assert result.payload == {"status": "assigned"}


class TestDenied:
    def test_explicit_deny(self, pipeline, sink):
        with pytest.raises(AccessDenied) as exc_info:
            pipeline.check(make_context("technician"), "invoice", "read")

        assert str(exc_info.value) == "Access denied"
        [record] = sink.records
        assert record.decision == AuditDecision.DENY
        assert record.action == "access_denied"
        assert record.resource == "invoices"
        assert record.reason == "read:explicit_deny"

    def test_no_grant(self, pipeline, sink):
        with pytest.raises(AccessDenied):
            pipeline.check(
                make_context("customer"),
                "work_order",
                "create",
                {"title": "x", "customer_id": CUSTOMER_ID},
            )
        assert sink.records[0].reason == "create:no_grant"

    def test_unknown_role(self, pipeline, sink):
        with pytest.raises(AccessDenied):
            pipeline.check(make_context("contractor"), "work_order", "read")
        assert sink.records[0].reason == "read:unknown_role"

    def test_unknown_entity_is_not_found(self, pipeline, sink):
        with pytest.raises(EntityNotFoundError):
            pipeline.check(make_context("admin"), "payroll", "read")
        assert sink.records == []


class TestValidationFirst:
    def test_invalid_payload_is_returned_as_data(self, pipeline, sink):
        result = pipeline.check(
            make_context("dispatcher"), "work_order", "create", {"priority": "whenever"}
        )

        assert not result.ok
        assert result.decision is None
        assert result.predicate is None
        assert [(e.field, e.reason) for e in result.errors] == [
            ("title", Reason.REQUIRED),
            ("priority", Reason.INVALID_ENUM),
            ("customer_id", Reason.REQUIRED),
        ]
        assert sink.records == []

    def test_invalid_payload_from_unauthorized_role(self, pipeline, sink):
        result = pipeline.check(make_context("customer"), "work_order", "create", {})
        assert not result.ok
        assert sink.records == []

    def test_unknown_operation(self, pipeline):
        result = pipeline.check(make_context("admin"), "work_order", "publish", {})
        assert result.operation is None
        assert [e.reason for e in result.errors] == [Reason.INVALID_OPERATION]

    def test_immutable_field_on_update(self, pipeline):
        result = pipeline.check(
            make_context("manager"), "invoice", "update", {"customer_id": CUSTOMER_ID}
        )
        assert [(e.field, e.reason) for e in result.errors] == [("customer_id", Reason.IMMUTABLE)]


class TestFieldAccess:
    def test_technician_cannot_reassign(self, pipeline, sink):
        with pytest.raises(AccessDenied):
            pipeline.check(
                make_context("technician", "tech-1"),
                "work_order",
                "update",
                {"status": "assigned", "assigned_technician_id": CUSTOMER_ID},
            )

        [record] = sink.records
        assert record.decision == AuditDecision.DENY
        assert record.action == "access_denied"
        assert record.reason == "update:field_denied:assigned_technician_id"

    def test_dispatcher_can_reassign(self, pipeline, sink):
        result = pipeline.check(
            make_context("dispatcher"),
            "work_order",
            "update",
            {"assigned_technician_id": CUSTOMER_ID},
        )
        assert result.ok
        assert sink.records[0].reason == "update:inherited_grant:technician"

    def test_read_filter_on_hidden_field_is_denied(self, pipeline, sink):
        with pytest.raises(AccessDenied):
            pipeline.check(
                make_context("customer", "cust-1"),
                "work_order",
                "read",
                {"estimated_hours": "2"},
            )
        assert sink.records[0].reason == "read:field_denied:estimated_hours"

    def test_defaults_do_not_count_as_supplied(self, pipeline):
        result = pipeline.check(
            make_context("dispatcher"),
            "work_order",
            "create",
            {"title": "Inspect", "customer_id": CUSTOMER_ID},
        )
        assert result.ok
        assert result.payload["status"] == "pending"

    def test_readable_fields(self, pipeline):
        customer = pipeline.check(make_context("customer", "cust-1"), "work_order", "read")
        technician = pipeline.check(make_context("technician", "tech-1"), "work_order", "read")

        assert "customer_id" not in customer.readable_fields
        assert "estimated_hours" not in customer.readable_fields
        assert "assigned_technician_id" in customer.readable_fields
        assert {"customer_id", "estimated_hours"} <= set(technician.readable_fields)

    def test_filter_response(self, pipeline):
        result = pipeline.check(make_context("customer", "cust-1"), "work_order", "read")
        row = {
            "id": "wo-1",
            "title": "Fix pump",
            "customer_id": "cust-1",
            "estimated_hours": "2.5",
        }

        assert result.filter_response(row) == {"id": "wo-1", "title": "Fix pump"}
        assert result.filter_response([row, row]) == [{"id": "wo-1", "title": "Fix pump"}] * 2


class TestAuditRouting:
    def test_schedule_receives_records(self, pipeline, sink):
        scheduled = []
        pipeline.check(make_context("admin"), "work_order", "read", schedule=scheduled.append)
        assert len(scheduled) == 1
        assert sink.records == []

    def test_resource_id_is_recorded(self, pipeline, sink):
        pipeline.check(make_context("manager"), "work_order", "delete", resource_id="wo-42")
        assert sink.records[0].resource_id == "wo-42"

    def test_record_outcome(self, pipeline, sink):
        result = pipeline.check(
            make_context("technician", "tech-1"), "work_order", "update", {"status": "completed"}
        )
        pipeline.record_outcome(
            result,
            resource_id="wo-1",
            old_value={"status": "in_progress"},
            new_value={"status": "completed"},
        )

        record = sink.records[-1]
        assert record.action == "work_order_update"
        assert record.old_value == {"status": "in_progress"}
        assert record.new_value == {"status": "completed"}
        assert record.resource_id == "wo-1"


class TestSyntheticResources:
    def test_highest_role_reads_audit_logs(self, pipeline, sink):
        predicate = pipeline.authorize_resource(make_context("admin"), "audit_logs", "read")
        assert predicate is MATCH_ALL
        assert sink.records[0].action == "audit_logs_read"

    def test_lower_role_is_denied(self, pipeline, sink):
        with pytest.raises(AccessDenied):
            pipeline.authorize_resource(make_context("manager"), "audit_logs", "read")
        assert sink.records[0].decision == AuditDecision.DENY

    @pytest.mark.parametrize("operation", ["read", "update"])
    def test_admin_resource(self, pipeline, sink, operation):
        pipeline.authorize_resource(make_context("admin"), "admin", operation)
        with pytest.raises(AccessDenied):
            pipeline.authorize_resource(make_context("manager"), "admin", operation)
        assert [r.decision for r in sink.records] == [AuditDecision.ALLOW, AuditDecision.DENY]

    def test_record_event(self, pipeline, sink):
        ctx = make_context("admin").with_resource("admin")
        pipeline.record_event(
            ctx, "epoch_reload", reason="completed", old_value={"epoch": 1}, new_value={"epoch": 2}
        )
        [record] = sink.records
        assert (record.action, record.resource) == ("epoch_reload", "admin")
        assert record.reason == "completed"
        assert record.decision == AuditDecision.ALLOW
        assert record.request_id == "req-1"


class TestEpochConsistency:
    def test_result_keeps_the_epoch_it_ran_against(self, pipeline):
        result = pipeline.check(make_context("admin"), "work_order", "read")
        pipeline.epochs.reload()
        assert result.epoch.number == 1
        assert pipeline.epochs.current.number == 2
