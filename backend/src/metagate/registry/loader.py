"""Load entity descriptors from YAML files."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from metagate.core.types import CRUD_OPERATIONS, parse_operation
from metagate.errors import ConfigurationError
from metagate.registry.registry import EntityRegistry
from metagate.registry.types import (
    AccessRules,
    EntityDescriptor,
    FieldSpec,
    NO_ROLE,
    NameConstructionType,
    Relationship,
    RelationshipKind,
    RlsFilterConfig,
)

logger = logging.getLogger(__name__)


class MetadataLoader:
    """Loads entity definitions from ``<metadata_path>/entities/*.yaml``.

    The loader only translates YAML into descriptors. It never fills in a
    missing name: an absent ``tableName`` stays empty and is reported by
    the registry, rather than being guessed from the entity key.
    """

    def __init__(self, metadata_path: Path):
        self.metadata_path = Path(metadata_path)

    def load_all(self) -> list[EntityDescriptor]:
        """Load every entity file, in filename order."""
        entities_path = self.metadata_path / "entities"
        if not entities_path.is_dir():
            raise ConfigurationError(
                f"Entity metadata directory not found: {entities_path}"
            )

        descriptors = []
        for yaml_file in sorted(entities_path.glob("*.yaml")):
            descriptors.append(self.load_file(yaml_file))

        logger.info("Loaded %d entity descriptor(s) from %s", len(descriptors), entities_path)
        return descriptors

    def load_registry(self) -> EntityRegistry:
        """Load every entity file into a new, frozen registry."""
        return EntityRegistry(self.load_all()).freeze()

    def load_file(self, yaml_file: Path) -> EntityDescriptor:
        try:
            with open(yaml_file) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"YAML parse error in {yaml_file}: {exc}") from exc

        if not isinstance(data, dict) or "entity" not in data:
            raise ConfigurationError(f"{yaml_file} does not define an entity")

        try:
            return descriptor_from_dict(data)
        except ConfigurationError:
            raise
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"Malformed entity definition in {yaml_file}: {exc}",
                entity=str(data.get("entity")),
            ) from exc


def descriptor_from_dict(data: dict[str, Any]) -> EntityDescriptor:
    """Convert a parsed entity mapping into an EntityDescriptor."""
    key = str(data["entity"])

    fields: dict[str, FieldSpec] = {}
    for field_data in data.get("fields", []):
        spec = _resolve_field(field_data)
        if spec.name in fields:
            raise ConfigurationError(
                f"Invalid entity descriptor '{key}'",
                entity=key,
                problems=[f"field '{spec.name}' is declared twice"],
            )
        fields[spec.name] = spec

    raw_type = data.get("nameConstructionType", "")
    try:
        name_type = NameConstructionType(str(raw_type).upper())
    except ValueError:
        raise ConfigurationError(
            f"Invalid entity descriptor '{key}'",
            entity=key,
            problems=[f"unknown nameConstructionType '{raw_type}'"],
        ) from None

    return EntityDescriptor(
        entity_key=key,
        table_name=data.get("tableName", ""),
        rls_resource=data.get("rlsResource", ""),
        display_name=data.get("displayName", ""),
        display_name_plural=data.get("displayNamePlural", ""),
        primary_key=data.get("primaryKey", ""),
        identity_field=data.get("identityField", ""),
        name_construction_type=name_type,
        fields=fields,
        required_fields=tuple(data.get("requiredFields", [])),
        immutable_fields=tuple(data.get("immutableFields", [])),
        relationships=tuple(
            _resolve_relationship(key, r) for r in data.get("relationships", [])
        ),
        identifier_prefix=data.get("identifierPrefix"),
        display_fields=tuple(data.get("displayFields", [])),
        description=data.get("description", ""),
        access=_resolve_access(key, data.get("access")),
        row_policies={
            str(role).lower(): tuple(policies)
            for role, policies in (data.get("rowPolicies") or {}).items()
        },
        rls_filter=_resolve_rls_filter(data.get("rlsFilter")),
        field_access=_resolve_field_access(key, data.get("fieldAccess")),
    )


def _resolve_field(data: dict[str, Any]) -> FieldSpec:
    """Convert field dict to FieldSpec."""
    validation = data.get("validation") or {}
    values = data.get("values")
    return FieldSpec(
        name=data["name"],
        type=data.get("type", "string"),
        required=validation.get("required", False),
        enum=tuple(str(v) for v in values) if values is not None else None,
        min_length=validation.get("minLength"),
        max_length=validation.get("maxLength"),
        min=validation.get("min"),
        max=validation.get("max"),
        pattern=validation.get("pattern"),
        system_managed=data.get("systemManaged", False),
        description=data.get("description", ""),
        default=data.get("default"),
    )


def _resolve_relationship(entity_key: str, data: dict[str, Any]) -> Relationship:
    try:
        kind = RelationshipKind(data.get("kind", "belongs_to"))
    except ValueError:
        raise ConfigurationError(
            f"Invalid entity descriptor '{entity_key}'",
            entity=entity_key,
            problems=[f"relationship '{data.get('name')}' has unknown kind '{data.get('kind')}'"],
        ) from None
    return Relationship(
        name=data["name"],
        kind=kind,
        target=data["target"],
        foreign_key=data["foreignKey"],
        description=data.get("description", ""),
    )


def _resolve_access(entity_key: str, data: dict[str, Any] | None) -> AccessRules:
    """Parse the access block.

    Both ``grants`` and ``denies`` map a role to a list of operations.
    Denies are scoped to role + resource + operation; a role-wide deny
    (anything but a list of operations) is rejected.
    """
    if not data:
        return AccessRules()

    problems: list[str] = []

    def parse_block(block_name: str) -> dict[str, frozenset[str]]:
        result: dict[str, frozenset[str]] = {}
        for role, ops in (data.get(block_name) or {}).items():
            if not isinstance(ops, list):
                problems.append(
                    f"access.{block_name}.{role} must list operations, got {ops!r}"
                )
                continue
            parsed = set()
            for op in ops:
                operation = parse_operation(op)
                if operation is None:
                    problems.append(f"access.{block_name}.{role} has unknown operation '{op}'")
                else:
                    parsed.add(operation.value)
            result[str(role).lower()] = frozenset(parsed)
        return result

    rules = AccessRules(grants=parse_block("grants"), denies=parse_block("denies"))
    if problems:
        raise ConfigurationError(
            f"Invalid entity descriptor '{entity_key}'", entity=entity_key, problems=problems
        )
    return rules


def _resolve_rls_filter(data: dict[str, Any] | None) -> RlsFilterConfig:
    if not data:
        return RlsFilterConfig()
    defaults = RlsFilterConfig()
    return RlsFilterConfig(
        own_record_field=data.get("ownRecordField", defaults.own_record_field),
        owner_field=data.get("ownerField", defaults.owner_field),
        assigned_field=data.get("assignedField", defaults.assigned_field),
    )


def _resolve_field_access(
    entity_key: str,
    data: dict[str, Any] | None,
) -> dict[str, dict[str, str]]:
    """Parse the fieldAccess block: field -> {operation: lowest role}.

    An operation a rule leaves out is closed to every role, the same as
    naming ``none``. Role names are checked against the hierarchy when an
    epoch is built.
    """
    if not data:
        return {}

    problems: list[str] = []
    result: dict[str, dict[str, str]] = {}
    for field_name, rule in data.items():
        if not isinstance(rule, dict):
            problems.append(f"fieldAccess.{field_name} must map operations to roles")
            continue
        resolved = {op.value: NO_ROLE for op in CRUD_OPERATIONS}
        for op, role in rule.items():
            operation = parse_operation(op)
            if operation is None:
                problems.append(f"fieldAccess.{field_name} has unknown operation '{op}'")
            elif not isinstance(role, str) or not role.strip():
                problems.append(f"fieldAccess.{field_name}.{op} must name a role or '{NO_ROLE}'")
            else:
                resolved[operation.value] = role.strip().lower()
        result[str(field_name)] = resolved

    if problems:
        raise ConfigurationError(
            f"Invalid entity descriptor '{entity_key}'", entity=entity_key, problems=problems
        )
    return result
