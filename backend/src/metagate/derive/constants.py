"""Constants derived from entity metadata.

Every lookup table that routing, auditing, and reporting need is computed
here from the registered descriptors. Nothing is hand-maintained, and the
tables are rebuilt with every epoch.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping

from metagate.core.types import get_field_type
from metagate.errors import ConfigurationError
from metagate.registry.types import EntityDescriptor, FieldSpec, NameConstructionType

AUDITED_OPERATIONS = ("create", "update", "delete")


@dataclass(frozen=True)
class DerivedConstants:
    """Frozen lookup tables for one epoch."""

    category_map: Mapping[str, NameConstructionType]
    prefix_map: Mapping[str, str]
    identity_fields: Mapping[str, str]
    table_names: Mapping[str, str]
    resource_map: Mapping[str, str]
    audit_actions: Mapping[str, Mapping[str, str]]
    url_paths: Mapping[str, str]
    path_aliases: Mapping[str, str]
    display_fields: Mapping[str, tuple[str, ...]]
    field_schemas: Mapping[str, Mapping[str, Any]]

    def entities_by_category(self, category: NameConstructionType) -> list[str]:
        return [key for key, value in self.category_map.items() if value == category]

    def audit_action(self, entity_key: str, operation: str) -> str | None:
        actions = self.audit_actions.get(entity_key)
        return actions.get(operation) if actions else None

    def resolve_path(self, segment: str) -> str | None:
        """Map a URL segment (entity key, table name, or kebab variant) to an entity key."""
        if not segment:
            return None
        return self.path_aliases.get(segment.strip().lower())

    def to_dict(self) -> dict[str, Any]:
        return {
            "categories": {k: v.value for k, v in self.category_map.items()},
            "prefixes": dict(self.prefix_map),
            "identityFields": dict(self.identity_fields),
            "tableNames": dict(self.table_names),
            "resources": dict(self.resource_map),
            "auditActions": {k: dict(v) for k, v in self.audit_actions.items()},
            "urlPaths": dict(self.url_paths),
            "displayFields": {k: list(v) for k, v in self.display_fields.items()},
            "fieldSchemas": {k: dict(v) for k, v in self.field_schemas.items()},
        }


def _require(descriptor: EntityDescriptor, *attrs: str) -> None:
    missing = [a for a in attrs if not getattr(descriptor, a, None)]
    if missing:
        key = getattr(descriptor, "entity_key", None) or "<unnamed>"
        raise ConfigurationError(
            f"Cannot derive constants for entity '{key}'",
            entity=key,
            problems=[f"missing required property '{a}'" for a in missing],
        )


def build_category_map(descriptors: Iterable[EntityDescriptor]) -> dict[str, NameConstructionType]:
    result = {}
    for d in descriptors:
        _require(d, "entity_key", "name_construction_type")
        result[d.entity_key] = d.name_construction_type
    return result


def build_prefix_map(descriptors: Iterable[EntityDescriptor]) -> dict[str, str]:
    """entity -> identifier prefix, for GENERATED entities (e.g. work_order -> WO)."""
    result = {}
    for d in descriptors:
        if d.name_construction_type == NameConstructionType.GENERATED:
            _require(d, "entity_key", "identifier_prefix")
            result[d.entity_key] = d.identifier_prefix
    return result


def build_identity_fields(descriptors: Iterable[EntityDescriptor]) -> dict[str, str]:
    result = {}
    for d in descriptors:
        _require(d, "entity_key", "identity_field")
        result[d.entity_key] = d.identity_field
    return result


def build_table_names(descriptors: Iterable[EntityDescriptor]) -> dict[str, str]:
    result = {}
    for d in descriptors:
        _require(d, "entity_key", "table_name")
        result[d.entity_key] = d.table_name
    return result


def build_resource_map(descriptors: Iterable[EntityDescriptor]) -> dict[str, str]:
    """rls_resource -> entity key."""
    result = {}
    for d in descriptors:
        _require(d, "entity_key", "rls_resource")
        result[d.rls_resource] = d.entity_key
    return result


def build_audit_actions(descriptors: Iterable[EntityDescriptor]) -> dict[str, dict[str, str]]:
    """entity -> {create, update, delete} audit action names ({entity}_{op})."""
    result = {}
    for d in descriptors:
        _require(d, "entity_key")
        result[d.entity_key] = {op: f"{d.entity_key}_{op}" for op in AUDITED_OPERATIONS}
    return result


def build_url_paths(descriptors: Iterable[EntityDescriptor]) -> dict[str, str]:
    """entity -> base URL path, from the explicit table name (work_orders -> /work-orders)."""
    result = {}
    for d in descriptors:
        _require(d, "entity_key", "table_name")
        result[d.entity_key] = "/" + d.table_name.replace("_", "-")
    return result


def build_path_aliases(descriptors: Iterable[EntityDescriptor]) -> dict[str, str]:
    """Accepted URL segments -> entity key.

    Accepts the entity key, the table name, and the kebab-case form of
    both. These are spellings of explicit names, not inferred plurals.
    """
    result: dict[str, str] = {}
    for d in descriptors:
        _require(d, "entity_key", "table_name")
        for alias in (d.entity_key, d.table_name):
            for variant in (alias, alias.replace("_", "-")):
                owner = result.get(variant)
                if owner and owner != d.entity_key:
                    raise ConfigurationError(
                        f"Cannot derive constants for entity '{d.entity_key}'",
                        entity=d.entity_key,
                        problems=[f"URL alias '{variant}' is already used by '{owner}'"],
                    )
                result[variant] = d.entity_key
    return result


def build_display_fields(descriptors: Iterable[EntityDescriptor]) -> dict[str, tuple[str, ...]]:
    """entity -> display fields, falling back to the identity field."""
    result = {}
    for d in descriptors:
        _require(d, "entity_key", "identity_field")
        result[d.entity_key] = d.display_fields or (d.identity_field,)
    return result


def field_to_openapi(spec: FieldSpec) -> dict[str, Any]:
    """Map a field spec to an OpenAPI property definition."""
    field_type = get_field_type(spec.type)
    prop: dict[str, Any] = {"type": field_type.json_type}
    if field_type.json_format:
        prop["format"] = field_type.json_format
    if spec.enum:
        prop["enum"] = list(spec.enum)
    if spec.max_length is not None:
        prop["maxLength"] = spec.max_length
    if spec.min_length is not None:
        prop["minLength"] = spec.min_length
    if spec.min is not None:
        prop["minimum"] = spec.min
    if spec.max is not None:
        prop["maximum"] = spec.max
    if spec.pattern:
        prop["pattern"] = spec.pattern
    if spec.default is not None:
        prop["default"] = spec.default
    if spec.description:
        prop["description"] = spec.description
    if spec.system_managed:
        prop["readOnly"] = True
    return prop


def build_field_schemas(descriptors: Iterable[EntityDescriptor]) -> dict[str, dict[str, Any]]:
    """entity -> OpenAPI object schema, for route registration and export."""
    result = {}
    for d in descriptors:
        _require(d, "entity_key", "fields")
        required = [name for name in d.fields if d.is_required(name)]
        schema: dict[str, Any] = {
            "type": "object",
            "properties": {name: field_to_openapi(spec) for name, spec in d.fields.items()},
            "additionalProperties": False,
        }
        if required:
            schema["required"] = required
        result[d.entity_key] = schema
    return result


def _frozen(mapping: dict) -> Mapping:
    return MappingProxyType(mapping)


def derive_constants(descriptors: Iterable[EntityDescriptor]) -> DerivedConstants:
    """Derive every lookup table from the registered descriptors.

    Raises:
        ConfigurationError: A descriptor lacks a property a table needs; the
            error names the entity.
    """
    descriptors = list(descriptors)
    return DerivedConstants(
        category_map=_frozen(build_category_map(descriptors)),
        prefix_map=_frozen(build_prefix_map(descriptors)),
        identity_fields=_frozen(build_identity_fields(descriptors)),
        table_names=_frozen(build_table_names(descriptors)),
        resource_map=_frozen(build_resource_map(descriptors)),
        audit_actions=_frozen(
            {k: _frozen(v) for k, v in build_audit_actions(descriptors).items()}
        ),
        url_paths=_frozen(build_url_paths(descriptors)),
        path_aliases=_frozen(build_path_aliases(descriptors)),
        display_fields=_frozen(build_display_fields(descriptors)),
        field_schemas=_frozen(build_field_schemas(descriptors)),
    )
