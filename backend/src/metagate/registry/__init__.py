"""Entity metadata registry: descriptors, YAML loading, and schema lint."""

from metagate.registry.loader import MetadataLoader, descriptor_from_dict
from metagate.registry.registry import EntityRegistry, validate_descriptor
from metagate.registry.types import (
    AccessRules,
    EntityDescriptor,
    FieldSpec,
    NameConstructionType,
    Relationship,
    RelationshipKind,
    RlsFilterConfig,
)
from metagate.registry.validator import (
    ValidationIssue,
    validate_metadata_dir,
    validate_yaml_file,
)

__all__ = [
    "AccessRules",
    "EntityDescriptor",
    "EntityRegistry",
    "FieldSpec",
    "MetadataLoader",
    "NameConstructionType",
    "Relationship",
    "RelationshipKind",
    "RlsFilterConfig",
    "ValidationIssue",
    "descriptor_from_dict",
    "validate_descriptor",
    "validate_metadata_dir",
    "validate_yaml_file",
]
