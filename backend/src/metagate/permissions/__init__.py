"""Role-based access control: precomputed matrix, evaluator and field rules."""

from metagate.permissions.evaluator import PermissionEvaluator
from metagate.permissions.fields import EntityFieldAccess, FieldAccessTable
from metagate.permissions.matrix import (
    ADMIN_RESOURCE,
    AUDIT_LOGS_RESOURCE,
    DecisionReason,
    PermissionDecision,
    PermissionMatrix,
    build_matrix,
)

__all__ = [
    "ADMIN_RESOURCE",
    "AUDIT_LOGS_RESOURCE",
    "DecisionReason",
    "EntityFieldAccess",
    "FieldAccessTable",
    "PermissionDecision",
    "PermissionEvaluator",
    "PermissionMatrix",
    "build_matrix",
]
