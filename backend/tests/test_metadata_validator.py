"""Entity YAML lint: single files, parsed documents and directory walks."""
from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from metagate.registry.validator import (
    EntityLinter,
    ValidationIssue,
    validate_document,
    validate_metadata_dir,
    validate_yaml_file,
)

REAL_METADATA = Path(__file__).resolve().parents[2] / "metadata"


def work_order(**overrides) -> dict:
    doc = {
        "entity": "work_order",
        "tableName": "work_orders",
        "rlsResource": "work_orders",
        "displayName": "Work Order",
        "displayNamePlural": "Work Orders",
        "primaryKey": "id",
        "identityField": "title",
        "nameConstructionType": "DIRECT",
        "fields": [
            {"name": "id", "type": "uuid", "systemManaged": True},
            {"name": "title", "type": "string", "validation": {"required": True}},
        ],
    }
    doc.update(overrides)
    return doc


@pytest.fixture
def entities(tmp_path) -> Path:
    folder = tmp_path / "entities"
    folder.mkdir()
    return folder


@pytest.fixture
def lint(entities):
    """Write a document (dict or raw text) into entities/ and lint it."""

    def run(doc: dict | str, name: str = "work_order.yaml") -> list[ValidationIssue]:
        target = entities / name
        target.write_text(doc if isinstance(doc, str) else yaml.safe_dump(doc))
        return validate_yaml_file(target)

    return run


class TestEntityFile:
    def test_clean_document(self, lint):
        assert lint(work_order()) == []

    @pytest.mark.parametrize("key", ["tableName", "rlsResource", "fields"])
    def test_required_keys(self, lint, key):
        doc = work_order()
        del doc[key]
        assert any(f"'{key}' is a required property" in i.message for i in lint(doc))

    def test_typo_in_top_level_key(self, lint):
        messages = [i.message for i in lint(work_order(pluralName="Work Orders"))]
        assert any("pluralName" in m for m in messages)

    def test_field_type_outside_catalog(self, lint):
        issues = lint(work_order(fields=[{"name": "id", "type": "money"}]))
        assert issues[0].path == "fields[0].type"
        assert issues[0].severity == "error"

    def test_grant_with_unknown_operation(self, lint):
        issues = lint(work_order(access={"grants": {"viewer": ["read", "publish"]}}))
        assert [i.path for i in issues] == ["access.grants.viewer[1]"]

    def test_row_policy_outside_catalog(self, lint):
        issues = lint(work_order(rowPolicies={"viewer": ["everything"]}))
        assert any("everything" in i.message for i in issues)

    def test_yaml_syntax_error(self, lint):
        issues = lint("entity: [unclosed\n", name="broken.yaml")
        assert len(issues) == 1
        assert issues[0].message.startswith("YAML parse error")

    def test_blank_file(self, lint):
        issues = lint("\n\n", name="blank.yaml")
        assert [i.message for i in issues] == ["document is empty"]


class TestParsedDocument:
    def test_generated_prefix_must_be_upper_case(self):
        doc = work_order(nameConstructionType="GENERATED", identifierPrefix="wo")
        issues = validate_document(doc, Path("work_order.yaml"))
        assert [i.path for i in issues] == ["identifierPrefix"]

    def test_nested_location_uses_dots(self):
        doc = work_order(
            fields=[{"name": "id", "type": "uuid", "validation": {"maxLength": "ten"}}]
        )
        issues = validate_document(doc, Path("work_order.yaml"))
        assert [i.path for i in issues] == ["fields[0].validation.maxLength"]

    def test_empty_validation_block_is_allowed(self):
        doc = work_order(fields=[{"name": "id", "type": "uuid", "validation": None}])
        assert validate_document(doc, Path("work_order.yaml")) == []

    def test_field_access_with_unknown_operation(self):
        doc = work_order(fieldAccess={"title": {"publish": "manager"}})
        issues = validate_document(doc, Path("work_order.yaml"))
        assert [i.path for i in issues] == ["fieldAccess.title"]

    def test_non_yaml_source_skips_file_name_check(self):
        assert validate_document(work_order(), Path("<inline>")) == []

    def test_alternate_schema(self, tmp_path):
        schema = tmp_path / "tiny.schema.json"
        schema.write_text('{"type": "object", "required": ["entity"]}')
        issues = list(EntityLinter(schema).lint({}, Path("<inline>")))
        assert [i.message for i in issues] == ["'entity' is a required property"]


class TestIssueFormatting:
    def test_with_location(self):
        issue = ValidationIssue(file=Path("a.yaml"), message="bad", path="fields[1].type")
        assert str(issue) == "a.yaml:fields[1].type: error - bad"

    def test_without_location(self):
        issue = ValidationIssue(file=Path("a.yaml"), message="bad", severity="warning")
        assert str(issue) == "a.yaml: warning - bad"


class TestFileNameWarning:
    def test_mismatch_is_a_warning(self, lint):
        issues = lint(work_order(), name="orders.yaml")
        assert [(i.severity, i.path) for i in issues] == [("warning", "entity")]
        assert "'work_order'" in issues[0].message

    def test_errors_come_before_the_warning(self, lint):
        issues = lint(work_order(colour="red"), name="orders.yaml")
        assert [i.severity for i in issues] == ["error", "warning"]


class TestMetadataDir:
    def test_shipped_metadata_is_clean(self):
        issues = validate_metadata_dir(REAL_METADATA)
        assert issues == [], "\n".join(map(str, issues))

    def test_without_entities_folder(self, tmp_path):
        issues = validate_metadata_dir(tmp_path)
        assert len(issues) == 1
        assert issues[0].file == tmp_path / "entities"
        assert "does not exist" in issues[0].message

    def test_walks_every_file(self, entities, lint):
        lint(work_order(bogus=1), name="work_order.yaml")
        lint(work_order(entity="invoice", tableName="invoices", extra=2), name="invoice.yaml")
        (entities / "notes.txt").write_text("ignored")

        issues = validate_metadata_dir(entities.parent)
        assert sorted(i.file.name for i in issues) == ["invoice.yaml", "work_order.yaml"]
        assert all(i.severity == "error" for i in issues)
