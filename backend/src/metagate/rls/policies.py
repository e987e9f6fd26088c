"""Named row-level policies.

Each policy is a pure function of the entity's filter configuration and
the request context. A policy that needs the caller's user ID and does
not get one matches nothing.
"""

from __future__ import annotations

from collections.abc import Callable

from metagate.core.context import RequestContext
from metagate.registry.types import RlsFilterConfig
from metagate.rls.predicates import MATCH_ALL, MATCH_NONE, FieldEquals, Predicate

PolicyFn = Callable[[RlsFilterConfig, RequestContext], Predicate]


def _equals_user(field_name: str, ctx: RequestContext) -> Predicate:
    if ctx.user_id is None or ctx.user_id == "":
        return MATCH_NONE
    return FieldEquals(field_name, ctx.user_id)


def all_records(config: RlsFilterConfig, ctx: RequestContext) -> Predicate:
    return MATCH_ALL


def public_resource(config: RlsFilterConfig, ctx: RequestContext) -> Predicate:
    return MATCH_ALL


def own_record_only(config: RlsFilterConfig, ctx: RequestContext) -> Predicate:
    """The caller's own row (e.g. a user reading their profile)."""
    return _equals_user(config.own_record_field, ctx)


def own_records(config: RlsFilterConfig, ctx: RequestContext) -> Predicate:
    """Rows the caller owns (e.g. a customer's invoices)."""
    return _equals_user(config.owner_field, ctx)


def assigned_records(config: RlsFilterConfig, ctx: RequestContext) -> Predicate:
    """Rows assigned to the caller (e.g. a technician's work orders)."""
    return _equals_user(config.assigned_field, ctx)


def deny_all(config: RlsFilterConfig, ctx: RequestContext) -> Predicate:
    return MATCH_NONE


POLICIES: dict[str, PolicyFn] = {
    "all_records": all_records,
    "public_resource": public_resource,
    "own_record_only": own_record_only,
    "own_records": own_records,
    "assigned_records": assigned_records,
    "deny_all": deny_all,
}


def is_known_policy(name: str) -> bool:
    return name in POLICIES
