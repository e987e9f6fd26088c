"""Tests for the compiled validation schemas."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from metagate.core.types import Operation
from metagate.errors import ConfigurationError, EntityNotFoundError
from metagate.registry import EntityDescriptor, EntityRegistry, FieldSpec, NameConstructionType
from metagate.validation import Reason, SchemaBuilder


CUSTOMER_ID = "3f0c7a43-8a4c-4c37-9c6b-0d9d6f0a1b22"


def make_work_order(**overrides) -> EntityDescriptor:
    fields = [
        FieldSpec("id", "uuid", system_managed=True),
        FieldSpec("title", "string", required=True, min_length=1, max_length=20),
        FieldSpec("status", "enum", enum=("pending", "assigned", "completed")),
        FieldSpec("customer_id", "uuid"),
        FieldSpec("estimated_hours", "decimal", min=0, max=100),
        FieldSpec("visits", "integer", min=0),
        FieldSpec("billable", "boolean"),
        FieldSpec("scheduled_start", "timestamp"),
        FieldSpec("created_at", "timestamp", system_managed=True),
    ]
    defaults = dict(
        entity_key="work_order",
        table_name="work_orders",
        rls_resource="work_orders",
        display_name="Work Order",
        display_name_plural="Work Orders",
        primary_key="id",
        identity_field="title",
        name_construction_type=NameConstructionType.DIRECT,
        fields={f.name: f for f in fields},
        immutable_fields=("customer_id",),
    )
    defaults.update(overrides)
    return EntityDescriptor(**defaults)


@pytest.fixture
def builder():
    return SchemaBuilder(EntityRegistry([make_work_order()]).freeze()).build_all()


def reasons(outcome) -> list[tuple[str | None, str]]:
    return [(e.field, e.reason) for e in outcome.errors]


class TestCreate:
    def test_valid_payload(self, builder):
        outcome = builder.validate("work_order", "create", {"title": "Fix pump"})
        assert outcome.valid
        assert outcome.value == {"title": "Fix pump"}
        assert outcome.errors == []

    def test_missing_required_field(self, builder):
        outcome = builder.validate("work_order", "create", {})
        assert reasons(outcome) == [("title", Reason.REQUIRED)]

    @pytest.mark.parametrize("blank", [None, "", "   "])
    def test_blank_required_field(self, builder, blank):
        outcome = builder.validate("work_order", "create", {"title": blank})
        assert reasons(outcome) == [("title", Reason.REQUIRED)]

    def test_system_managed_fields_are_stripped(self, builder):
        outcome = builder.validate("work_order", "create", {"id": 9999, "title": "x"})
        assert outcome.valid
        assert outcome.value == {"title": "x"}
        assert "id" not in outcome.value

    def test_system_managed_stripped_even_when_malformed(self, builder):
        outcome = builder.validate(
            "work_order", "create", {"title": "x", "created_at": "not a date"}
        )
        assert outcome.valid
        assert "created_at" not in outcome.value

    def test_unknown_field_rejected(self, builder):
        outcome = builder.validate("work_order", "create", {"title": "x", "colour": "red"})
        assert reasons(outcome) == [("colour", Reason.UNKNOWN_FIELD)]

    def test_every_offending_field_is_listed(self, builder):
        outcome = builder.validate(
            "work_order",
            "create",
            {
                "status": "archived",
                "visits": "many",
                "estimated_hours": "-1",
                "zzz": 1,
                "aaa": 2,
            },
        )
        assert reasons(outcome) == [
            ("title", Reason.REQUIRED),
            ("status", Reason.INVALID_ENUM),
            ("estimated_hours", Reason.BELOW_MIN),
            ("visits", Reason.INVALID_TYPE),
            ("zzz", Reason.UNKNOWN_FIELD),
            ("aaa", Reason.UNKNOWN_FIELD),
        ]

    def test_enum_error_lists_valid_set(self, builder):
        outcome = builder.validate("work_order", "create", {"title": "x", "status": "nope"})
        error = outcome.errors[0].to_dict()
        assert error["field"] == "status"
        assert error["reason"] == "invalid_enum"
        assert error["allowed"] == ["pending", "assigned", "completed"]

    def test_coerces_typed_values(self, builder):
        outcome = builder.validate(
            "work_order",
            "create",
            {
                "title": "Fix pump",
                "customer_id": CUSTOMER_ID.upper(),
                "estimated_hours": "2.50",
                "visits": "3",
                "billable": "true",
                "scheduled_start": "2024-05-01T08:30:00Z",
            },
        )
        assert outcome.valid, outcome.to_dict()
        assert outcome.value == {
            "title": "Fix pump",
            "customer_id": CUSTOMER_ID,
            "estimated_hours": Decimal("2.50"),
            "visits": 3,
            "billable": True,
            "scheduled_start": datetime(2024, 5, 1, 8, 30, tzinfo=timezone.utc),
        }

    def test_null_optional_field_passes(self, builder):
        outcome = builder.validate("work_order", "create", {"title": "x", "status": None})
        assert outcome.valid
        assert outcome.value == {"title": "x", "status": None}

    def test_bounds(self, builder):
        outcome = builder.validate("work_order", "create", {"title": "x" * 21})
        assert reasons(outcome) == [("title", Reason.TOO_LONG)]


class TestUpdate:
    def test_fields_are_optional(self, builder):
        outcome = builder.validate("work_order", "update", {"status": "assigned"})
        assert outcome.valid
        assert outcome.value == {"status": "assigned"}

    def test_immutable_field_rejected(self, builder):
        outcome = builder.validate("work_order", "update", {"customer_id": CUSTOMER_ID})
        assert reasons(outcome) == [("customer_id", Reason.IMMUTABLE)]

    def test_immutable_field_allowed_on_create(self, builder):
        outcome = builder.validate(
            "work_order", "create", {"title": "x", "customer_id": CUSTOMER_ID}
        )
        assert outcome.valid

    def test_clearing_required_field_rejected(self, builder):
        outcome = builder.validate("work_order", "update", {"title": ""})
        assert reasons(outcome) == [("title", Reason.REQUIRED)]

    def test_system_managed_stripped(self, builder):
        outcome = builder.validate("work_order", "update", {"id": CUSTOMER_ID, "visits": 2})
        assert outcome.value == {"visits": 2}


class TestDefaults:
    @pytest.fixture
    def schema(self):
        fields = make_work_order().fields | {
            "status": FieldSpec("status", "enum", enum=("pending", "done"), default="pending"),
            "visits": FieldSpec("visits", "integer", min=0, default="1"),
        }
        return SchemaBuilder(EntityRegistry([make_work_order(fields=fields)]).freeze())

    def test_applied_on_create(self, schema):
        outcome = schema.validate("work_order", "create", {"title": "Fix pump"})
        assert outcome.value == {"title": "Fix pump", "status": "pending", "visits": 1}

    def test_supplied_value_wins(self, schema):
        outcome = schema.validate("work_order", "create", {"title": "x", "status": "done"})
        assert outcome.value["status"] == "done"

    def test_not_applied_on_update(self, schema):
        outcome = schema.validate("work_order", "update", {"title": "x"})
        assert outcome.value == {"title": "x"}

    @pytest.mark.parametrize("default", ["lost", 7])
    def test_invalid_default_fails_compilation(self, default):
        fields = make_work_order().fields | {
            "status": FieldSpec("status", "enum", enum=("pending",), default=default),
        }
        builder = SchemaBuilder(EntityRegistry([make_work_order(fields=fields)]).freeze())
        with pytest.raises(ConfigurationError, match="Invalid defaults for 'work_order'"):
            builder.build("work_order")


class TestPattern:
    @pytest.fixture
    def schema(self):
        fields = make_work_order().fields | {
            "title": FieldSpec("title", "string", required=True, pattern="[A-Z]+"),
        }
        return SchemaBuilder(EntityRegistry([make_work_order(fields=fields)]).freeze())

    def test_whole_value_must_match(self, schema):
        outcome = schema.validate("work_order", "create", {"title": "ABc"})
        assert reasons(outcome) == [("title", Reason.PATTERN_MISMATCH)]

    def test_match(self, schema):
        assert schema.validate("work_order", "create", {"title": "ABC"}).valid


class TestReadAndDelete:
    @pytest.mark.parametrize("operation", ["read", "delete"])
    def test_all_fields_optional(self, builder, operation):
        outcome = builder.validate("work_order", operation, {})
        assert outcome.valid

    def test_system_managed_fields_usable_as_filters(self, builder):
        outcome = builder.validate("work_order", "delete", {"id": CUSTOMER_ID})
        assert outcome.valid
        assert outcome.value == {"id": CUSTOMER_ID}

    def test_query_strings_are_coerced(self, builder):
        outcome = builder.validate("work_order", "read", {"visits": "4", "billable": "0"})
        assert outcome.value == {"visits": 4, "billable": False}

    def test_closed_field_set(self, builder):
        outcome = builder.validate("work_order", "read", {"owner": "me"})
        assert reasons(outcome) == [("owner", Reason.UNKNOWN_FIELD)]


class TestMalformedInput:
    @pytest.mark.parametrize("payload", [None, [], "title=x", 42])
    def test_non_object_payload(self, builder, payload):
        outcome = builder.validate("work_order", "create", payload)
        assert reasons(outcome) == [(None, Reason.INVALID_PAYLOAD)]

    @pytest.mark.parametrize("visits", ["9" * 5000, Decimal("Infinity"), Decimal("NaN")])
    def test_oversized_or_non_finite_integer(self, builder, visits):
        outcome = builder.validate("work_order", "create", {"title": "x", "visits": visits})
        assert reasons(outcome) == [("visits", Reason.INVALID_TYPE)]

    def test_unknown_operation(self, builder):
        outcome = builder.validate("work_order", "publish", {"title": "x"})
        assert reasons(outcome) == [(None, Reason.INVALID_OPERATION)]

    def test_unknown_entity(self, builder):
        with pytest.raises(EntityNotFoundError):
            builder.validate("invoice", "create", {})


class TestIdempotency:
    @pytest.mark.parametrize(
        "operation,payload",
        [
            (Operation.CREATE, {"title": "Fix pump", "estimated_hours": 1.5, "visits": "2"}),
            (Operation.UPDATE, {"billable": "yes", "scheduled_start": "2024-05-01T08:30:00"}),
            (Operation.READ, {"id": CUSTOMER_ID.upper()}),
        ],
    )
    def test_revalidating_output_is_stable(self, builder, operation, payload):
        first = builder.validate("work_order", operation, payload)
        assert first.valid
        second = builder.validate("work_order", operation, first.value)
        assert second.valid
        assert second.value == first.value

    def test_schemas_are_cached(self, builder):
        assert builder.build("work_order") is builder.build("work_order")
