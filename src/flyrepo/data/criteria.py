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
"""Reusable query criteria that can be pushed onto a repository.

Criteria are frozen dataclasses so they fingerprint by value and a cached
read stays cacheable when criteria are pushed.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from flyrepo.data.ports.query import QueryHandle
from flyrepo.kernel.exceptions import CriteriaException


@runtime_checkable
class Criteria(Protocol):
    """Modifies a query for a repository. Returns the (possibly new) query."""

    def apply(self, query: QueryHandle, repository: Any) -> QueryHandle: ...


def ensure_criteria(value: Any) -> Criteria:
    """Return *value* if it is criteria, instantiating a criteria class if given one."""
    if isinstance(value, type):
        try:
            value = value()
        except TypeError as exc:
            raise CriteriaException(f"Cannot instantiate criteria class {value.__name__}: {exc}") from exc
    if not isinstance(value, Criteria):
        raise CriteriaException(
            f"Class {type(value).__name__} must implement apply(query, repository)",
            code="CRITERIA_CONTRACT",
        )
    return value


@dataclass(frozen=True)
class WhereCriteria:
    column: str
    value: Any
    operator: str = "="

    def apply(self, query: QueryHandle, repository: Any) -> QueryHandle:
        return query.where(self.column, self.operator, self.value)


@dataclass(frozen=True)
class OrWhereCriteria:
    column: str
    value: Any
    operator: str = "="

    def apply(self, query: QueryHandle, repository: Any) -> QueryHandle:
        return query.or_where(self.column, self.operator, self.value)


@dataclass(frozen=True)
class WhereInCriteria:
    column: str
    values: tuple[Any, ...]

    def apply(self, query: QueryHandle, repository: Any) -> QueryHandle:
        return query.where_in(self.column, list(self.values))


@dataclass(frozen=True)
class WhereBetweenCriteria:
    column: str
    start: Any
    end: Any

    def apply(self, query: QueryHandle, repository: Any) -> QueryHandle:
        return query.where_between(self.column, [self.start, self.end])


@dataclass(frozen=True)
class OrderByCriteria:
    column: str
    direction: str = "asc"

    def apply(self, query: QueryHandle, repository: Any) -> QueryHandle:
        return query.order_by(self.column, self.direction)


@dataclass(frozen=True)
class GroupByCriteria:
    """Group by one or more columns, in the given order."""

    columns: tuple[str, ...]

    def __init__(self, *columns: str) -> None:
        object.__setattr__(self, "columns", tuple(columns))

    def apply(self, query: QueryHandle, repository: Any) -> QueryHandle:
        for column in self.columns:
            query = query.group_by(column)
        return query


@dataclass(frozen=True)
class OffsetCriteria:
    offset: int

    def apply(self, query: QueryHandle, repository: Any) -> QueryHandle:
        return query.offset(self.offset)


@dataclass(frozen=True)
class LimitCriteria:
    limit: int

    def apply(self, query: QueryHandle, repository: Any) -> QueryHandle:
        return query.limit(self.limit)


@dataclass(frozen=True)
class OffsetLimitCriteria:
    offset: int
    limit: int

    def apply(self, query: QueryHandle, repository: Any) -> QueryHandle:
        return query.offset(self.offset).limit(self.limit)


@dataclass(frozen=True)
class SearchCriteria:
    """``LIKE %term%`` over several columns, OR-ed inside one group.

    Columns given as ``relation.column`` are matched through the relation.
    """

    term: str
    columns: tuple[str, ...]

    def __init__(self, term: str, *columns: str) -> None:
        object.__setattr__(self, "term", term)
        object.__setattr__(self, "columns", tuple(columns))

    def apply(self, query: QueryHandle, repository: Any) -> QueryHandle:
        pattern = f"%{self.term}%"

        def group(q: QueryHandle) -> None:
            for index, column in enumerate(self.columns):
                relation, _, name = column.rpartition(".")
                if relation:
                    constraint = _like(name, pattern)
                    if index == 0:
                        q.where_has(relation, constraint)
                    else:
                        q.or_where_has(relation, constraint)
                elif index == 0:
                    q.where(column, "like", pattern)
                else:
                    q.or_where(column, "like", pattern)

        return query.where(group)


def _like(column: str, pattern: str) -> Any:
    def constraint(q: QueryHandle) -> None:
        q.where(column, "like", pattern)

    return constraint


#: Conditions accepted in ``searchFields`` (``name:like``).
ACCEPTED_CONDITIONS: tuple[str, ...] = ("=", "like", "ilike", "in", "between")


@dataclass(frozen=True)
class ParamsCriteria:
    """Search, sort and eager-load from a flat parameter mapping.

    Recognised keys (names configurable through *names*):

    - ``search``: ``"john"`` or ``"name:john;email:john@example.com"``
    - ``searchFields``: ``"name:like;email"`` restricts and sets conditions
    - ``searchJoin``: ``"and"`` to AND the fields instead of OR-ing them
    - ``orderBy`` / ``sortedBy``: ``"name;age"`` / ``"asc;desc"``
    - ``with`` / ``withCount``: ``"posts;roles"``

    Searchable fields come from ``repository.get_fields_searchable()``, a
    list of field names or a mapping of field to condition.
    """

    params: tuple[tuple[str, Any], ...]
    names: tuple[tuple[str, str], ...] = field(default=())

    def __init__(self, params: Mapping[str, Any], names: Mapping[str, str] | None = None) -> None:
        object.__setattr__(self, "params", tuple(sorted(params.items())))
        object.__setattr__(self, "names", tuple(sorted((names or {}).items())))

    def _param(self, key: str, default: Any = None) -> Any:
        name = dict(self.names).get(key, key)
        value = dict(self.params).get(name)
        return default if value in (None, "") else value

    def apply(self, query: QueryHandle, repository: Any) -> QueryHandle:
        search = self._param("search")
        searchable = repository.get_fields_searchable() if repository is not None else []
        if search and searchable:
            query = self._apply_search(query, str(search), searchable)

        order_by = self._param("orderBy")
        if order_by:
            directions = _split(self._param("sortedBy", "asc")) or ["asc"]
            for index, column in enumerate(_split(order_by)):
                direction = directions[index] if index < len(directions) else directions[0]
                query = query.order_by(column, direction)

        with_ = self._param("with")
        if with_:
            query = query.with_([(relation, None) for relation in _split(with_)])

        with_count = self._param("withCount")
        if with_count:
            query = query.with_count(_split(with_count))
        return query

    def _apply_search(self, query: QueryHandle, search: str, searchable: Any) -> QueryHandle:
        fields = _fields_with_conditions(searchable)
        search_fields = self._param("searchFields")
        if search_fields:
            requested = search_fields if isinstance(search_fields, list) else _split(search_fields)
            fields = _restrict_fields(fields, requested)

        per_field = _search_data(search)
        plain = _search_value(search)
        force_and = str(self._param("searchJoin", "")).lower() == "and"

        def group(q: QueryHandle) -> None:
            first = True
            for name, condition in fields.items():
                value = _value_for(name, condition, per_field, plain)
                if value is None:
                    continue
                relation, _, column = name.rpartition(".")
                conjunctive = first or force_and
                if relation:
                    constraint = _condition(column, condition, value)
                    if conjunctive:
                        q.where_has(relation, constraint)
                    else:
                        q.or_where_has(relation, constraint)
                elif condition == "in":
                    q.where_in(column, value, "and" if conjunctive else "or")
                elif condition == "between":
                    q.where_between(column, value, "and" if conjunctive else "or")
                elif conjunctive:
                    q.where(column, condition, value)
                else:
                    q.or_where(column, condition, value)
                first = False

        return query.where(group)


def _split(value: Any) -> list[str]:
    return [part.strip() for part in str(value).split(";") if part.strip()]


def _fields_with_conditions(searchable: Any) -> dict[str, str]:
    if isinstance(searchable, Mapping):
        return {str(k): str(v).lower() for k, v in searchable.items()}
    return {str(name): "=" for name in searchable}


def _restrict_fields(fields: dict[str, str], requested: Sequence[str]) -> dict[str, str]:
    restricted: dict[str, str] = {}
    for item in requested:
        name, _, condition = item.partition(":")
        if name not in fields:
            continue
        restricted[name] = condition.lower() if condition in ACCEPTED_CONDITIONS else fields[name]
    if not restricted:
        raise CriteriaException(
            f"Fields {', '.join(requested)} are not accepted for search",
            code="CRITERIA_FIELDS",
        )
    return restricted


def _search_data(search: str) -> dict[str, str]:
    data: dict[str, str] = {}
    if ":" not in search:
        return data
    for row in search.split(";"):
        name, sep, value = row.partition(":")
        if sep:
            data[name] = value
    return data


def _search_value(search: str) -> str | None:
    if ";" not in search and ":" not in search:
        return search
    for part in search.split(";"):
        if ":" not in part:
            return part
    return None


def _value_for(name: str, condition: str, per_field: dict[str, str], plain: str | None) -> Any:
    if name in per_field:
        raw = per_field[name]
    elif plain is not None and condition not in ("in", "between"):
        raw = plain
    else:
        return None
    if condition in ("like", "ilike"):
        return f"%{raw}%"
    if condition == "in":
        values = [v for v in raw.split(",") if v.strip()]
        return values or None
    if condition == "between":
        values = raw.split(",")
        return values if len(values) >= 2 else None
    return raw


def _condition(column: str, condition: str, value: Any) -> Any:
    def constraint(q: QueryHandle) -> None:
        if condition == "in":
            q.where_in(column, value)
        elif condition == "between":
            q.where_between(column, value)
        else:
            q.where(column, condition, value)

    return constraint
