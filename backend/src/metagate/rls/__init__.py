"""Row-level security: named policies compiled into filter predicates."""

from metagate.rls.engine import RowPolicyEngine
from metagate.rls.policies import POLICIES, is_known_policy
from metagate.rls.predicates import (
    MATCH_ALL,
    MATCH_NONE,
    And,
    FieldEquals,
    FieldIn,
    MatchAll,
    MatchNone,
    Predicate,
    all_of,
)

__all__ = [
    "And",
    "FieldEquals",
    "FieldIn",
    "MATCH_ALL",
    "MATCH_NONE",
    "MatchAll",
    "MatchNone",
    "POLICIES",
    "Predicate",
    "RowPolicyEngine",
    "all_of",
    "is_known_policy",
]
