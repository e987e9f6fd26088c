"""Row filter predicates.

A predicate is an opaque filter clause handed to storage. It can render
itself as a SQLAlchemy Core clause for a given table, or as the filter
dict used by the generic query layer (``{"field": {"eq": value}}``).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy import and_, false, true
from sqlalchemy.sql.elements import ColumnElement


class Predicate(ABC):
    """Base class for row filter predicates. All subclasses are immutable."""

    @abstractmethod
    def to_sql(self, table: Any) -> ColumnElement:
        """Render as a WHERE clause against a SQLAlchemy Table (or table())."""

    @abstractmethod
    def to_filter(self) -> dict[str, Any]:
        """Render as a filter dict."""

    @abstractmethod
    def matches(self, row: Mapping[str, Any]) -> bool:
        """Evaluate against an in-memory row."""


@dataclass(frozen=True)
class MatchAll(Predicate):
    def to_sql(self, table: Any) -> ColumnElement:
        return true()

    def to_filter(self) -> dict[str, Any]:
        return {}

    def matches(self, row: Mapping[str, Any]) -> bool:
        return True


@dataclass(frozen=True)
class MatchNone(Predicate):
    def to_sql(self, table: Any) -> ColumnElement:
        return false()

    def to_filter(self) -> dict[str, Any]:
        return {"matchNone": True}

    def matches(self, row: Mapping[str, Any]) -> bool:
        return False


@dataclass(frozen=True)
class FieldEquals(Predicate):
    field: str
    value: Any

    def to_sql(self, table: Any) -> ColumnElement:
        return table.c[self.field] == self.value

    def to_filter(self) -> dict[str, Any]:
        return {self.field: {"eq": self.value}}

    def matches(self, row: Mapping[str, Any]) -> bool:
        return self.field in row and row[self.field] == self.value


@dataclass(frozen=True)
class FieldIn(Predicate):
    field: str
    values: tuple[Any, ...]

    def to_sql(self, table: Any) -> ColumnElement:
        if not self.values:
            return false()
        return table.c[self.field].in_(list(self.values))

    def to_filter(self) -> dict[str, Any]:
        return {self.field: {"in": list(self.values)}}

    def matches(self, row: Mapping[str, Any]) -> bool:
        return self.field in row and row[self.field] in self.values


@dataclass(frozen=True)
class And(Predicate):
    """Intersection of predicates. Build with :func:`all_of`."""

    predicates: tuple[Predicate, ...]

    def to_sql(self, table: Any) -> ColumnElement:
        return and_(*(p.to_sql(table) for p in self.predicates))

    def to_filter(self) -> dict[str, Any]:
        return {"and": [p.to_filter() for p in self.predicates]}

    def matches(self, row: Mapping[str, Any]) -> bool:
        return all(p.matches(row) for p in self.predicates)


MATCH_ALL = MatchAll()
MATCH_NONE = MatchNone()


def all_of(predicates: Iterable[Predicate]) -> Predicate:
    """AND-compose predicates, simplifying where the result is obvious.

    Any match-none makes the whole intersection match-none; match-all
    terms are dropped. An empty input matches nothing.
    """
    terms: list[Predicate] = []
    seen_any = False
    for predicate in predicates:
        seen_any = True
        if isinstance(predicate, MatchNone):
            return MATCH_NONE
        if isinstance(predicate, MatchAll):
            continue
        if isinstance(predicate, And):
            terms.extend(predicate.predicates)
        elif predicate not in terms:
            terms.append(predicate)

    if not seen_any:
        return MATCH_NONE
    if not terms:
        return MATCH_ALL
    if len(terms) == 1:
        return terms[0]
    return And(tuple(terms))
