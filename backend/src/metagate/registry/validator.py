"""Structural lint for entity YAML files.

Runs the bundled JSON Schema over each ``entities/*.yaml`` document before
any descriptor is built, so that misspelled keys and operations surface
with a file and location instead of being silently ignored by the loader.
Cross-entity checks (unknown roles, dangling references) stay with the
registry.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import cached_property
from pathlib import Path
from typing import Any, Iterator

import yaml
from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError

logger = logging.getLogger(__name__)

ENTITY_SCHEMA_PATH = Path(__file__).parent / "schemas" / "entity.schema.json"


@dataclass
class ValidationIssue:
    """One lint finding, tied to a file and an optional document location."""

    file: Path
    message: str
    path: str = ""
    severity: str = "error"

    def __str__(self) -> str:
        where = f"{self.file}:{self.path}" if self.path else str(self.file)
        return f"{where}: {self.severity} - {self.message}"


def _location(error: ValidationError) -> str:
    """Render ``fields/0/type`` as ``fields[0].type``."""
    location = ""
    for part in error.absolute_path:
        if isinstance(part, int):
            location += f"[{part}]"
        else:
            location += f".{part}" if location else str(part)
    return location


class EntityLinter:
    """Checks parsed entity documents against the entity schema."""

    def __init__(self, schema_path: Path = ENTITY_SCHEMA_PATH):
        self.schema_path = schema_path

    @cached_property
    def _validator(self) -> Draft202012Validator:
        schema = json.loads(self.schema_path.read_text(encoding="utf-8"))
        Draft202012Validator.check_schema(schema)
        return Draft202012Validator(schema)

    def lint(self, doc: Any, source: Path) -> Iterator[ValidationIssue]:
        errors = sorted(self._validator.iter_errors(doc), key=lambda e: list(map(str, e.path)))
        for error in errors:
            yield ValidationIssue(file=source, message=error.message, path=_location(error))

        if isinstance(doc, dict) and isinstance(doc.get("entity"), str):
            if source.suffix == ".yaml" and source.stem != doc["entity"]:
                yield ValidationIssue(
                    file=source,
                    message=f"file name does not match entity key '{doc['entity']}'",
                    path="entity",
                    severity="warning",
                )

    def lint_file(self, yaml_path: Path) -> list[ValidationIssue]:
        try:
            doc = yaml.safe_load(yaml_path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            return [ValidationIssue(file=yaml_path, message=f"YAML parse error: {exc}")]
        if doc is None:
            return [ValidationIssue(file=yaml_path, message="document is empty")]
        return list(self.lint(doc, yaml_path))


_default_linter = EntityLinter()


def validate_document(doc: Any, source: Path) -> list[ValidationIssue]:
    """Lint an already-parsed entity document."""
    return list(_default_linter.lint(doc, source))


def validate_yaml_file(yaml_path: Path) -> list[ValidationIssue]:
    """Lint one entity YAML file. An empty list means the file is clean."""
    return _default_linter.lint_file(yaml_path)


def validate_metadata_dir(metadata_dir: Path) -> list[ValidationIssue]:
    """Lint every entity file under ``metadata_dir/entities``."""
    entities_dir = metadata_dir / "entities"
    if not entities_dir.is_dir():
        return [ValidationIssue(file=entities_dir, message="entities directory does not exist")]

    issues = [
        issue
        for yaml_file in sorted(entities_dir.glob("*.yaml"))
        for issue in _default_linter.lint_file(yaml_file)
    ]
    errors = sum(1 for issue in issues if issue.severity == "error")
    if issues:
        logger.warning(
            "Entity lint for %s: %d error(s), %d warning(s)",
            entities_dir,
            errors,
            len(issues) - errors,
        )
    return issues
