# Copyright 2026 Firefly Software Solutions Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Accumulated, not-yet-applied query clauses.

A :class:`ClauseStore` keeps one ordered sequence of argument tuples per
clause category, plus a handful of scalar flags. Recording methods append
without validating anything; the query engine rejects bad columns when the
clauses are finally applied.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import Any, Self

#: Marker for "argument not given", so ``None`` stays a valid comparison value.
UNSET: Any = object()

#: Clause categories in declaration order.
SEQUENCES: tuple[str, ...] = (
    "where",
    "or_where",
    "where_in",
    "where_not_in",
    "where_json",
    "or_where_json",
    "where_json_count",
    "where_json_not_in",
    "when",
    "where_between",
    "or_where_between",
    "where_not_between",
    "where_exists",
    "where_raw",
    "or_where_raw",
    "having_raw",
    "where_date",
    "where_month",
    "where_day",
    "where_time",
    "has",
    "or_has",
    "where_has",
    "doesnt_have",
    "or_doesnt_have",
    "or_where_has",
    "where_doesnt_have",
    "or_where_doesnt_have",
    "has_morph",
    "where_has_morph",
    "relations",
    "join",
    "with_count",
    "with_exists",
    "with_sum",
    "with_max",
    "with_min",
    "with_avg",
    "scopes",
    "having",
    "exclude",
    "group_by",
    "order_by",
    "criteria",
)

#: Scalar fields and their reset values.
SCALARS: Mapping[str, Any] = {
    "offset": None,
    "limit": None,
    "with_trashed": False,
    "without_global_scopes": False,
    "skip_criteria": False,
}


def split_comparison(operator: Any, value: Any) -> tuple[Any, Any]:
    """Normalise the two- and three-argument comparison forms."""
    if value is UNSET:
        if operator is UNSET:
            return None, None
        return "=", operator
    return operator, value


class ClauseRecorder:
    """Fluent recording methods shared by :class:`ClauseStore` and repositories.

    Subclasses provide the target store through :meth:`_clauses`; every
    method appends one tuple and returns ``self`` so calls can be chained.
    """

    def _clauses(self) -> ClauseStore:
        raise NotImplementedError

    def _record(self, category: str, *args: Any) -> Self:
        self._clauses().append(category, args)
        return self

    # ------------------------------------------------------------------
    # Basic filters
    # ------------------------------------------------------------------

    def where(self, column: Any, operator: Any = UNSET, value: Any = UNSET, boolean: str = "and") -> Self:
        """Add a comparison.

        ``where("name", "x")`` compares for equality. ``column`` may also be
        a mapping of equalities, a SQLAlchemy expression, or a callable that
        receives a query handle and builds a parenthesised group.
        """
        operator, value = split_comparison(operator, value)
        return self._record("where", column, operator, value, boolean)

    def or_where(self, column: Any, operator: Any = UNSET, value: Any = UNSET) -> Self:
        operator, value = split_comparison(operator, value)
        return self._record("or_where", column, operator, value)

    def where_in(self, column: Any, values: Iterable[Any], boolean: str = "and", negate: bool = False) -> Self:
        return self._record("where_in", column, list(values), boolean, negate)

    def where_not_in(self, column: Any, values: Iterable[Any], boolean: str = "and") -> Self:
        return self._record("where_not_in", column, list(values), boolean)

    def where_json_contains(self, column: Any, value: Any, boolean: str = "and", negate: bool = False) -> Self:
        return self._record("where_json", column, value, boolean, negate)

    def or_where_json_contains(self, column: Any, value: Any) -> Self:
        return self._record("or_where_json", column, value)

    def where_json_length(self, column: Any, operator: Any, value: Any = UNSET, boolean: str = "and") -> Self:
        operator, value = split_comparison(operator, value)
        return self._record("where_json_count", column, operator, value, boolean)

    def where_json_doesnt_contain(self, column: Any, value: Any, boolean: str = "and") -> Self:
        return self._record("where_json_not_in", column, value, boolean)

    def when(self, value: Any, callback: Callable[..., Any], default: Callable[..., Any] | None = None) -> Self:
        """Apply *callback* (or *default*) to the query when *value* is truthy (falsy)."""
        return self._record("when", value, callback, default)

    def where_between(self, column: Any, values: Iterable[Any], boolean: str = "and", negate: bool = False) -> Self:
        return self._record("where_between", column, list(values), boolean, negate)

    def or_where_between(self, column: Any, values: Iterable[Any]) -> Self:
        return self._record("or_where_between", column, list(values))

    def where_not_between(self, column: Any, values: Iterable[Any], boolean: str = "and") -> Self:
        return self._record("where_not_between", column, list(values), boolean)

    def where_exists(self, callback: Any, boolean: str = "and", negate: bool = False) -> Self:
        return self._record("where_exists", callback, boolean, negate)

    def where_raw(self, sql: str, bindings: Any = None, boolean: str = "and") -> Self:
        return self._record("where_raw", sql, bindings, boolean)

    def or_where_raw(self, sql: str, bindings: Any = None) -> Self:
        return self._record("or_where_raw", sql, bindings)

    def having_raw(self, sql: str, bindings: Any = None, boolean: str = "and") -> Self:
        return self._record("having_raw", sql, bindings, boolean)

    # ------------------------------------------------------------------
    # Date parts
    # ------------------------------------------------------------------

    def where_date(self, column: Any, operator: Any, value: Any = UNSET, boolean: str = "and") -> Self:
        operator, value = split_comparison(operator, value)
        return self._record("where_date", column, operator, value, boolean)

    def where_month(self, column: Any, operator: Any, value: Any = UNSET, boolean: str = "and") -> Self:
        operator, value = split_comparison(operator, value)
        return self._record("where_month", column, operator, value, boolean)

    def where_day(self, column: Any, operator: Any, value: Any = UNSET, boolean: str = "and") -> Self:
        operator, value = split_comparison(operator, value)
        return self._record("where_day", column, operator, value, boolean)

    def where_time(self, column: Any, operator: Any, value: Any = UNSET, boolean: str = "and") -> Self:
        operator, value = split_comparison(operator, value)
        return self._record("where_time", column, operator, value, boolean)

    # ------------------------------------------------------------------
    # Relation existence
    # ------------------------------------------------------------------

    def has(
        self,
        relation: str,
        operator: str = ">=",
        count: int = 1,
        boolean: str = "and",
        callback: Callable[..., Any] | None = None,
    ) -> Self:
        return self._record("has", relation, operator, count, boolean, callback)

    def or_has(self, relation: str, operator: str = ">=", count: int = 1) -> Self:
        return self._record("or_has", relation, operator, count)

    def where_has(
        self,
        relation: str,
        callback: Callable[..., Any] | None = None,
        operator: str = ">=",
        count: int = 1,
    ) -> Self:
        return self._record("where_has", relation, callback, operator, count)

    def doesnt_have(self, relation: str, boolean: str = "and", callback: Callable[..., Any] | None = None) -> Self:
        return self._record("doesnt_have", relation, boolean, callback)

    def or_doesnt_have(self, relation: str) -> Self:
        return self._record("or_doesnt_have", relation)

    def or_where_has(
        self,
        relation: str,
        callback: Callable[..., Any] | None = None,
        operator: str = ">=",
        count: int = 1,
    ) -> Self:
        return self._record("or_where_has", relation, callback, operator, count)

    def where_doesnt_have(self, relation: str, callback: Callable[..., Any] | None = None) -> Self:
        return self._record("where_doesnt_have", relation, callback)

    def or_where_doesnt_have(self, relation: str, callback: Callable[..., Any] | None = None) -> Self:
        return self._record("or_where_doesnt_have", relation, callback)

    def has_morph(
        self,
        relation: str,
        types: Iterable[Any],
        operator: str = ">=",
        count: int = 1,
        boolean: str = "and",
        callback: Callable[..., Any] | None = None,
    ) -> Self:
        return self._record("has_morph", relation, list(types), operator, count, boolean, callback)

    def where_has_morph(
        self,
        relation: str,
        types: Iterable[Any],
        callback: Callable[..., Any] | None = None,
        operator: str = ">=",
        count: int = 1,
    ) -> Self:
        return self._record("where_has_morph", relation, list(types), callback, operator, count)

    # ------------------------------------------------------------------
    # Eager loading and joins
    # ------------------------------------------------------------------

    def with_(self, *relations: str | Mapping[str, Callable[..., Any] | None]) -> Self:
        """Eager-load relations, given by name or as ``{name: constraint}``."""
        for relation in relations:
            if isinstance(relation, Mapping):
                for name, constraint in relation.items():
                    self._record("relations", name, constraint)
            else:
                self._record("relations", relation, None)
        return self

    def join(
        self,
        table: Any,
        first: Any,
        operator: Any = None,
        second: Any = None,
        type: str = "inner",
        where: bool = False,
    ) -> Self:
        return self._record("join", table, first, operator, second, type, where)

    def left_join(self, table: Any, first: Any, operator: Any = None, second: Any = None) -> Self:
        return self.join(table, first, operator, second, "left")

    # ------------------------------------------------------------------
    # Aggregate shaping
    # ------------------------------------------------------------------

    def with_count(self, *relations: str) -> Self:
        for relation in relations:
            self._record("with_count", relation)
        return self

    def with_exists(self, *relations: str) -> Self:
        for relation in relations:
            self._record("with_exists", relation)
        return self

    def with_sum(self, relation: str, column: str) -> Self:
        return self._record("with_sum", relation, column)

    def with_max(self, relation: str, column: str) -> Self:
        return self._record("with_max", relation, column)

    def with_min(self, relation: str, column: str) -> Self:
        return self._record("with_min", relation, column)

    def with_avg(self, relation: str, column: str) -> Self:
        return self._record("with_avg", relation, column)

    # ------------------------------------------------------------------
    # Scopes, having, trashed
    # ------------------------------------------------------------------

    def scope(self, name: str, *args: Any) -> Self:
        return self._record("scopes", name, args)

    def having(self, column: Any, operator: Any = UNSET, value: Any = UNSET, boolean: str = "and") -> Self:
        operator, value = split_comparison(operator, value)
        return self._record("having", column, operator, value, boolean)

    def or_having(self, column: Any, operator: Any = UNSET, value: Any = UNSET) -> Self:
        return self.having(column, operator, value, "or")

    def with_trashed(self, value: bool = True) -> Self:
        self._clauses().set("with_trashed", value)
        return self

    def without_global_scopes(self, value: bool = True) -> Self:
        self._clauses().set("without_global_scopes", value)
        return self

    def exclude(self, *columns: str) -> Self:
        """Leave *columns* out of the loaded entities."""
        for column in columns:
            self._record("exclude", column)
        return self

    # ------------------------------------------------------------------
    # Pagination and ordering
    # ------------------------------------------------------------------

    def offset(self, value: int) -> Self:
        self._clauses().set("offset", value)
        return self

    def limit(self, value: int) -> Self:
        self._clauses().set("limit", value)
        return self

    def group_by(self, *columns: Any) -> Self:
        for column in columns:
            self._record("group_by", column)
        return self

    def order_by(self, column: Any, direction: str = "asc") -> Self:
        return self._record("order_by", column, direction)

    def order_by_desc(self, column: Any) -> Self:
        return self.order_by(column, "desc")


class ClauseStore(ClauseRecorder):
    """Named sequences of clause tuples plus scalar flags.

    Only the assembler and the fingerprint engine read the store; both use
    ``store[name]`` or :meth:`snapshot`, which never expose the live lists.
    """

    def __init__(self) -> None:
        self._sequences: dict[str, list[tuple[Any, ...]]] = {name: [] for name in SEQUENCES}
        self._scalars: dict[str, Any] = dict(SCALARS)

    def _clauses(self) -> ClauseStore:
        return self

    def append(self, category: str, args: tuple[Any, ...]) -> None:
        self._sequences[category].append(args)

    def set(self, name: str, value: Any) -> None:
        if name not in SCALARS:
            raise KeyError(name)
        self._scalars[name] = value

    def pop(self, category: str) -> tuple[Any, ...] | None:
        """Remove and return the most recent tuple of *category*."""
        items = self._sequences[category]
        return items.pop() if items else None

    def clear(self, category: str) -> None:
        self._sequences[category].clear()

    def __getitem__(self, name: str) -> Any:
        if name in self._sequences:
            return tuple(self._sequences[name])
        return self._scalars[name]

    def __contains__(self, name: object) -> bool:
        return name in self._sequences or name in self._scalars

    def reset(self) -> None:
        """Clear every sequence and restore every scalar. Safe to call repeatedly."""
        for items in self._sequences.values():
            items.clear()
        self._scalars.update(SCALARS)

    def is_empty(self) -> bool:
        return not any(self._sequences.values()) and self._scalars == dict(SCALARS)

    def snapshot(self) -> dict[str, Any]:
        """Copy of all sequences (as lists of lists) and scalars, in declaration order.

        Containers are copied recursively; leaf values such as column
        expressions and callbacks are shared with the store.
        """
        snapshot: dict[str, Any] = {}
        for name in SEQUENCES:
            snapshot[name] = [list(_copy(args)) for args in self._sequences[name]]
        snapshot.update(self._scalars)
        return snapshot


def _copy(value: Any) -> Any:
    if isinstance(value, list | tuple):
        return [_copy(item) for item in value]
    if isinstance(value, Mapping):
        return {key: _copy(item) for key, item in value.items()}
    return value
