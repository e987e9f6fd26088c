"""Validation schema builder.

Compiles an entity's field descriptors into a closed-schema validator used
at the request boundary and again before persistence.

Per-operation rules:
- create: required fields enforced, declared defaults filled in for absent
  fields, system-managed fields stripped
- update: every field optional, immutable fields rejected, system-managed
  fields stripped
- read / delete: the payload is a query filter; every declared field is
  accepted (including system-managed ones such as ``id``) and optional
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from metagate.core.types import Operation, parse_operation
from metagate.errors import ConfigurationError
from metagate.registry.registry import EntityRegistry
from metagate.registry.types import EntityDescriptor
from metagate.validation.coercion import CoercionError, coerce
from metagate.validation.constraints import FieldConstraints
from metagate.validation.types import FieldError, Reason, ValidationOutcome

logger = logging.getLogger(__name__)

WRITE_OPERATIONS = (Operation.CREATE, Operation.UPDATE)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _compile_defaults(descriptor: EntityDescriptor) -> dict[str, Any]:
    defaults: dict[str, Any] = {}
    problems: list[str] = []
    for name, spec in descriptor.fields.items():
        if spec.default is None or spec.system_managed:
            continue
        try:
            value = coerce(spec.type, spec.default)
        except CoercionError as exc:
            problems.append(f"default for '{name}' {exc}")
            continue
        errors = FieldConstraints(spec).check(value)
        if errors:
            problems.extend(f"default for '{name}': {e.message}" for e in errors)
            continue
        defaults[name] = value
    if problems:
        raise ConfigurationError(
            f"Invalid defaults for '{descriptor.entity_key}'",
            entity=descriptor.entity_key,
            problems=problems,
        )
    return defaults


@dataclass(frozen=True)
class CompiledSchema:
    """A closed-schema validator for one entity."""

    entity_key: str
    constraints: Mapping[str, FieldConstraints]
    required: frozenset[str]
    immutable: frozenset[str]
    system_managed: frozenset[str]
    defaults: Mapping[str, Any]

    @classmethod
    def compile(cls, descriptor: EntityDescriptor) -> CompiledSchema:
        """Compile a descriptor.

        Raises:
            ConfigurationError: A declared default is not a valid value for its field.
        """
        return cls(
            entity_key=descriptor.entity_key,
            constraints={
                name: FieldConstraints(spec) for name, spec in descriptor.fields.items()
            },
            required=frozenset(n for n in descriptor.fields if descriptor.is_required(n)),
            immutable=frozenset(descriptor.immutable_fields),
            system_managed=frozenset(descriptor.system_managed_fields),
            defaults=_compile_defaults(descriptor),
        )

    def validate(self, operation: Operation | str, payload: Any) -> ValidationOutcome:
        """Coerce and validate a raw payload.

        Never raises for bad input: every problem is reported as a FieldError.
        """
        op = parse_operation(operation)
        if op is None:
            return ValidationOutcome(errors=[FieldError(
                field=None,
                reason=Reason.INVALID_OPERATION,
                message=f"Unknown operation '{operation}'",
            )])

        if not isinstance(payload, Mapping):
            return ValidationOutcome(errors=[FieldError(
                field=None,
                reason=Reason.INVALID_PAYLOAD,
                message="Payload must be an object",
            )])

        is_write = op in WRITE_OPERATIONS
        value: dict[str, Any] = {}
        errors: list[FieldError] = []

        for name, constraints in self.constraints.items():
            spec = constraints.spec
            present = name in payload

            if is_write and name in self.system_managed:
                # Stripped regardless of the supplied value
                continue

            if op == Operation.UPDATE and present and name in self.immutable:
                errors.append(FieldError(
                    field=name,
                    reason=Reason.IMMUTABLE,
                    message=f"{name} cannot be changed after creation",
                ))
                continue

            if op == Operation.CREATE and not present and name in self.defaults:
                value[name] = self.defaults[name]
                continue

            raw = payload.get(name)
            required_here = name in self.required and (
                op == Operation.CREATE or (op == Operation.UPDATE and present)
            )

            if _is_blank(raw):
                if required_here:
                    errors.append(FieldError(
                        field=name,
                        reason=Reason.REQUIRED,
                        message=f"{name} is required",
                    ))
                elif present:
                    value[name] = None
                continue

            try:
                coerced = coerce(spec.type, raw)
            except CoercionError as exc:
                errors.append(FieldError(
                    field=name,
                    reason=Reason.INVALID_TYPE,
                    message=f"{name} {exc}",
                ))
                continue

            field_errors = constraints.check(coerced)
            if field_errors:
                errors.extend(field_errors)
                continue

            value[name] = coerced

        for name in payload:
            if name not in self.constraints:
                errors.append(FieldError(
                    field=str(name),
                    reason=Reason.UNKNOWN_FIELD,
                    message=f"{name} is not a field of {self.entity_key}",
                ))

        if errors:
            logger.debug(
                "Validation failed for %s.%s: %s",
                self.entity_key,
                op.value,
                ", ".join(f"{e.field}:{e.reason}" for e in errors),
            )
        return ValidationOutcome(value=value, errors=errors)


class SchemaBuilder:
    """Compiles and caches validators for every entity in a registry.

    One builder belongs to one epoch; its cache never outlives the
    registry it was built from.
    """

    def __init__(self, registry: EntityRegistry):
        self._registry = registry
        self._schemas: dict[str, CompiledSchema] = {}

    def build(self, entity_key: str) -> CompiledSchema:
        """Compile (or return the cached) validator for an entity.

        Raises:
            EntityNotFoundError: If the entity is not registered.
        """
        schema = self._schemas.get(entity_key)
        if schema is None:
            schema = CompiledSchema.compile(self._registry.get(entity_key))
            self._schemas[entity_key] = schema
        return schema

    def build_all(self) -> SchemaBuilder:
        """Compile every registered entity up front. Returns self."""
        for key in self._registry.keys():
            self.build(key)
        return self

    def validate(
        self,
        entity_key: str,
        operation: Operation | str,
        payload: Any,
    ) -> ValidationOutcome:
        return self.build(entity_key).validate(operation, payload)
