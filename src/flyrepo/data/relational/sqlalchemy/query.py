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
"""SQLAlchemy implementation of the query handle.

A :class:`SqlAlchemyQuery` collects filters, loader options and shaping
for one model and turns them into a ``Select`` (or bulk ``UPDATE`` /
``DELETE``) when a terminal method is awaited.
"""

from __future__ import annotations

import json
import operator as op
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import UTC, date, datetime, time
from typing import Any, Self

from sqlalchemy import (
    Date,
    Time,
    and_,
    cast,
    delete as sa_delete,
    extract,
    func,
    insert as sa_insert,
    inspect,
    literal,
    literal_column,
    not_,
    or_,
    select,
    text,
    update as sa_update,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import RelationshipProperty, defer, selectinload
from sqlalchemy.sql.expression import ClauseElement, ColumnElement, Select

from flyrepo.data.clauses import UNSET, split_comparison
from flyrepo.data.page import Page, Slice
from flyrepo.data.relational.sqlalchemy.entity import is_soft_deletable, morph_name, primary_key_name
from flyrepo.kernel.exceptions import RepositoryException

_OPERATORS: dict[str, Callable[[Any, Any], Any]] = {
    "=": op.eq,
    "==": op.eq,
    "!=": op.ne,
    "<>": op.ne,
    ">": op.gt,
    ">=": op.ge,
    "<": op.lt,
    "<=": op.le,
    "like": lambda c, v: c.like(v),
    "not like": lambda c, v: c.not_like(v),
    "ilike": lambda c, v: c.ilike(v),
    "not ilike": lambda c, v: c.not_ilike(v),
    "in": lambda c, v: c.in_(v),
    "not in": lambda c, v: c.not_in(v),
}

_QMARK = re.compile(r"\?")


def compare(column: Any, operator: Any, value: Any) -> ColumnElement[bool]:
    """Build ``column <operator> value``; ``None`` compares with IS / IS NOT."""
    name = str(operator).lower().strip()
    if value is None and name in ("=", "=="):
        return column.is_(None)
    if value is None and name in ("!=", "<>"):
        return column.is_not(None)
    try:
        build = _OPERATORS[name]
    except KeyError:
        raise RepositoryException(f"Unsupported comparison operator '{operator}'", code="QUERY_OPERATOR") from None
    return build(column, value)


def _combine(items: Sequence[tuple[str, Any]]) -> Any:
    """Fold ``(boolean, criterion)`` pairs with SQL precedence (AND binds tighter than OR)."""
    groups: list[list[Any]] = []
    for boolean, criterion in items:
        if not groups or boolean == "or":
            groups.append([criterion])
        else:
            groups[-1].append(criterion)
    if not groups:
        return None
    conjunctions = [group[0] if len(group) == 1 else and_(*group) for group in groups]
    return conjunctions[0] if len(conjunctions) == 1 else or_(*conjunctions)


def _is_expression(value: Any) -> bool:
    return isinstance(value, ClauseElement) or hasattr(value, "__clause_element__")


class SqlAlchemyQuery:
    """Mutable query over one mapped model.

    Args:
        model: Mapped class the query selects.
        session: Session used by the terminal methods. Handles created for
            nested groups and relation constraints never execute and may
            omit it.
    """

    def __init__(self, model: type, session: AsyncSession | None = None) -> None:
        self._model = model
        self._session = session
        self._wheres: list[tuple[str, Any]] = []
        self._havings: list[tuple[str, Any]] = []
        self._options: list[Any] = []
        self._joins: list[tuple[Any, Any, bool]] = []
        self._extra_columns: list[tuple[str, Any]] = []
        self._group_by: list[Any] = []
        self._order_by: list[Any] = []
        self._offset: int | None = None
        self._limit: int | None = None
        self._with_trashed = False
        self._without_global_scopes = False
        self._bind_counter = 0

    @property
    def model(self) -> type:
        return self._model

    @property
    def session(self) -> AsyncSession | None:
        return self._session

    def new(self, model: type | None = None) -> SqlAlchemyQuery:
        """Fresh handle sharing this handle's session."""
        return SqlAlchemyQuery(model or self._model, self._session)

    # ------------------------------------------------------------------
    # Resolution helpers
    # ------------------------------------------------------------------

    def column(self, column: Any) -> Any:
        """Resolve a column reference.

        Accepts expressions, attribute names, ``table.column`` strings for
        any table in the model's metadata, and falls back to a literal
        column (labels such as ``posts_count``).
        """
        if _is_expression(column):
            return column
        name = str(column)
        if "." in name:
            table, _, key = name.rpartition(".")
            tables = self._model.metadata.tables
            if table in tables and key in tables[table].c:
                return tables[table].c[key]
            return literal_column(name)
        attr = getattr(self._model, name, None)
        if attr is not None and hasattr(attr, "__clause_element__") and name not in self._relationships():
            return attr
        return literal_column(name)

    def _relationships(self) -> Mapping[str, RelationshipProperty[Any]]:
        return inspect(self._model).relationships

    def relationship(self, name: str) -> RelationshipProperty[Any]:
        try:
            return self._relationships()[name]
        except KeyError:
            raise RepositoryException(
                f"Model {self._model.__name__} has no relation '{name}'",
                code="QUERY_RELATION",
                context={"model": self._model.__name__, "relation": name},
            ) from None

    def _dialect(self) -> str:
        bind = getattr(self._session, "bind", None) if self._session is not None else None
        dialect = getattr(bind, "dialect", None)
        return dialect.name if dialect is not None else "default"

    def _add(self, boolean: str, criterion: Any) -> Self:
        self._wheres.append((boolean.lower(), criterion))
        return self

    def _raw(self, sql: str, bindings: Any) -> Any:
        clause = text(sql)
        if not bindings:
            return clause
        if isinstance(bindings, Mapping):
            return clause.bindparams(**bindings)
        params: dict[str, Any] = {}

        def number(_: re.Match[str]) -> str:
            self._bind_counter += 1
            name = f"raw_{self._bind_counter}"
            params[name] = bindings[len(params)]
            return f":{name}"

        return text(_QMARK.sub(number, sql)).bindparams(**params)

    # ------------------------------------------------------------------
    # Basic filters
    # ------------------------------------------------------------------

    def where(self, column: Any, operator: Any = UNSET, value: Any = UNSET, boolean: str = "and") -> Self:
        operator, value = split_comparison(operator, value)
        if _is_expression(column):
            criterion = column if operator is None else compare(self.column(column), operator, value)
        elif isinstance(column, Mapping):
            criterion = and_(*(compare(self.column(k), "=", v) for k, v in column.items()))
        elif callable(column):
            nested = self.new()
            column(nested)
            criterion = _combine(nested._wheres)
            if criterion is None:
                return self
        else:
            criterion = compare(self.column(column), operator, value)
        return self._add(boolean, criterion)

    def or_where(self, column: Any, operator: Any = UNSET, value: Any = UNSET) -> Self:
        return self.where(column, operator, value, "or")

    def where_in(self, column: Any, values: Iterable[Any], boolean: str = "and", negate: bool = False) -> Self:
        col = self.column(column)
        values = list(values)
        return self._add(boolean, col.not_in(values) if negate else col.in_(values))

    def where_not_in(self, column: Any, values: Iterable[Any], boolean: str = "and") -> Self:
        return self.where_in(column, values, boolean, negate=True)

    def or_where_in(self, column: Any, values: Iterable[Any]) -> Self:
        return self.where_in(column, values, "or")

    def where_null(self, column: Any, boolean: str = "and") -> Self:
        return self._add(boolean, self.column(column).is_(None))

    def where_not_null(self, column: Any, boolean: str = "and") -> Self:
        return self._add(boolean, self.column(column).is_not(None))

    def _json_contains(self, column: Any, value: Any) -> Any:
        col = self.column(column)
        dialect = self._dialect()
        if dialect == "postgresql":
            return cast(col, JSONB).contains(value)
        if dialect in ("mysql", "mariadb"):
            return func.json_contains(col, json.dumps(value)) == 1
        values = value if isinstance(value, list | tuple) else [value]
        checks = []
        for item in values:
            elements = func.json_each(col).table_valued("value")
            checks.append(select(literal(1)).select_from(elements).where(elements.c.value == item).exists())
        return and_(*checks) if len(checks) != 1 else checks[0]

    def where_json_contains(self, column: Any, value: Any, boolean: str = "and", negate: bool = False) -> Self:
        criterion = self._json_contains(column, value)
        return self._add(boolean, not_(criterion) if negate else criterion)

    def or_where_json_contains(self, column: Any, value: Any) -> Self:
        return self.where_json_contains(column, value, "or")

    def where_json_doesnt_contain(self, column: Any, value: Any, boolean: str = "and") -> Self:
        return self.where_json_contains(column, value, boolean, negate=True)

    def where_json_length(self, column: Any, operator: Any, value: Any = UNSET, boolean: str = "and") -> Self:
        operator, value = split_comparison(operator, value)
        col = self.column(column)
        dialect = self._dialect()
        if dialect == "postgresql":
            length = func.jsonb_array_length(cast(col, JSONB))
        elif dialect in ("mysql", "mariadb"):
            length = func.json_length(col)
        else:
            length = func.json_array_length(col)
        return self._add(boolean, compare(length, operator, value))

    def when(self, value: Any, callback: Callable[..., Any], default: Callable[..., Any] | None = None) -> Self:
        """Call ``callback(query, value)`` when *value* is truthy, else ``default(query, value)``."""
        if value:
            callback(self, value)
        elif default is not None:
            default(self, value)
        return self

    def where_between(self, column: Any, values: Sequence[Any], boolean: str = "and", negate: bool = False) -> Self:
        low, high = list(values)[:2]
        criterion = self.column(column).between(low, high)
        return self._add(boolean, not_(criterion) if negate else criterion)

    def or_where_between(self, column: Any, values: Sequence[Any]) -> Self:
        return self.where_between(column, values, "or")

    def where_not_between(self, column: Any, values: Sequence[Any], boolean: str = "and") -> Self:
        return self.where_between(column, values, boolean, negate=True)

    def where_exists(self, callback: Any, boolean: str = "and", negate: bool = False) -> Self:
        """Filter on ``EXISTS (subquery)``.

        *callback* is a ``Select`` or a callable returning one when given
        this handle.
        """
        subquery = callback(self) if callable(callback) and not isinstance(callback, Select) else callback
        criterion = subquery.exists()
        return self._add(boolean, not_(criterion) if negate else criterion)

    def where_raw(self, sql: str, bindings: Any = None, boolean: str = "and") -> Self:
        """Raw SQL filter; bindings are positional (``?``) or a mapping of ``:name`` values."""
        return self._add(boolean, self._raw(sql, bindings))

    def or_where_raw(self, sql: str, bindings: Any = None) -> Self:
        return self.where_raw(sql, bindings, "or")

    def having_raw(self, sql: str, bindings: Any = None, boolean: str = "and") -> Self:
        self._havings.append((boolean.lower(), self._raw(sql, bindings)))
        return self

    # ------------------------------------------------------------------
    # Date parts
    # ------------------------------------------------------------------

    def where_date(self, column: Any, operator: Any, value: Any = UNSET, boolean: str = "and") -> Self:
        operator, value = split_comparison(operator, value)
        col = self.column(column)
        if self._dialect() in ("sqlite", "default"):
            value = value.date().isoformat() if isinstance(value, datetime) else value
            value = value.isoformat() if isinstance(value, date) else value
            return self._add(boolean, compare(func.date(col), operator, value))
        value = value.date() if isinstance(value, datetime) else value
        return self._add(boolean, compare(cast(col, Date), operator, value))

    def where_time(self, column: Any, operator: Any, value: Any = UNSET, boolean: str = "and") -> Self:
        operator, value = split_comparison(operator, value)
        col = self.column(column)
        if self._dialect() in ("sqlite", "default"):
            value = value.isoformat() if isinstance(value, time) else value
            return self._add(boolean, compare(func.time(col), operator, value))
        return self._add(boolean, compare(cast(col, Time), operator, value))

    def where_month(self, column: Any, operator: Any, value: Any = UNSET, boolean: str = "and") -> Self:
        operator, value = split_comparison(operator, value)
        return self._add(boolean, compare(extract("month", self.column(column)), operator, int(value)))

    def where_day(self, column: Any, operator: Any, value: Any = UNSET, boolean: str = "and") -> Self:
        operator, value = split_comparison(operator, value)
        return self._add(boolean, compare(extract("day", self.column(column)), operator, int(value)))

    # ------------------------------------------------------------------
    # Relation existence
    # ------------------------------------------------------------------

    def _related(self, prop: RelationshipProperty[Any], callback: Callable[..., Any] | None) -> tuple[type, list[Any]]:
        """Target class and correlated conditions (join condition plus constraints) for a relation."""
        target = prop.mapper.class_
        conditions: list[Any] = [prop.primaryjoin]
        if prop.secondaryjoin is not None:
            conditions.append(prop.secondaryjoin)
        sub = self.new(target)
        if callback is not None:
            callback(sub)
        criterion = sub.criterion()
        if criterion is not None:
            conditions.append(criterion)
        return target, conditions

    def _relation_criterion(
        self,
        relation: str,
        operator: str,
        count: int,
        callback: Callable[..., Any] | None,
    ) -> Any:
        name, _, rest = relation.partition(".")
        if rest:
            inner = callback

            def nested(q: SqlAlchemyQuery) -> None:
                q.has(rest, operator, count, callback=inner)

            return self._relation_criterion(name, ">=", 1, nested)

        target, conditions = self._related(self.relationship(name), callback)
        if operator == ">=" and count == 1:
            return select(literal(1)).select_from(target).where(*conditions).exists()
        if operator == "<" and count == 1:
            return not_(select(literal(1)).select_from(target).where(*conditions).exists())
        counted = select(func.count()).select_from(target).where(*conditions).scalar_subquery()
        return compare(counted, operator, count)

    def has(
        self,
        relation: str,
        operator: str = ">=",
        count: int = 1,
        boolean: str = "and",
        callback: Callable[..., Any] | None = None,
    ) -> Self:
        """Filter on the number of related rows; dotted names walk nested relations."""
        return self._add(boolean, self._relation_criterion(relation, operator, count, callback))

    def or_has(self, relation: str, operator: str = ">=", count: int = 1) -> Self:
        return self.has(relation, operator, count, "or")

    def where_has(
        self, relation: str, callback: Callable[..., Any] | None = None, operator: str = ">=", count: int = 1
    ) -> Self:
        return self.has(relation, operator, count, "and", callback)

    def or_where_has(
        self, relation: str, callback: Callable[..., Any] | None = None, operator: str = ">=", count: int = 1
    ) -> Self:
        return self.has(relation, operator, count, "or", callback)

    def doesnt_have(self, relation: str, boolean: str = "and", callback: Callable[..., Any] | None = None) -> Self:
        return self.has(relation, "<", 1, boolean, callback)

    def or_doesnt_have(self, relation: str) -> Self:
        return self.doesnt_have(relation, "or")

    def where_doesnt_have(self, relation: str, callback: Callable[..., Any] | None = None) -> Self:
        return self.doesnt_have(relation, "and", callback)

    def or_where_doesnt_have(self, relation: str, callback: Callable[..., Any] | None = None) -> Self:
        return self.doesnt_have(relation, "or", callback)

    def has_morph(
        self,
        relation: str,
        types: Sequence[Any],
        operator: str = ">=",
        count: int = 1,
        boolean: str = "and",
        callback: Callable[..., Any] | None = None,
    ) -> Self:
        """Filter a polymorphic ``{relation}_type``/``{relation}_id`` pair.

        *types* are mapped classes; *callback* receives the constraint
        handle and the class being matched.
        """
        type_column = self.column(f"{relation}_type")
        id_column = self.column(f"{relation}_id")
        branches = []
        for target in types:
            if not isinstance(target, type):
                raise RepositoryException(
                    f"Morph types must be mapped classes, got {target!r}",
                    code="QUERY_MORPH",
                )
            sub = self.new(target)
            if callback is not None:
                callback(sub, target)
            conditions = [getattr(target, primary_key_name(target)) == id_column]
            criterion = sub.criterion()
            if criterion is not None:
                conditions.append(criterion)
            counted = select(func.count()).select_from(target).where(*conditions).scalar_subquery()
            branches.append(and_(type_column == morph_name(target), compare(counted, operator, count)))
        if not branches:
            return self
        return self._add(boolean, branches[0] if len(branches) == 1 else or_(*branches))

    def where_has_morph(
        self,
        relation: str,
        types: Sequence[Any],
        callback: Callable[..., Any] | None = None,
        operator: str = ">=",
        count: int = 1,
    ) -> Self:
        return self.has_morph(relation, types, operator, count, "and", callback)

    # ------------------------------------------------------------------
    # Loading and joins
    # ------------------------------------------------------------------

    def with_(self, relations: Sequence[tuple[str, Callable[..., Any] | None]]) -> Self:
        """Eager-load relations with ``selectinload``; dotted paths chain.

        Soft-delete and global scopes of each related model apply to the
        loaded rows; *constraint* narrows the last segment further.
        """
        for path, constraint in relations:
            model = self._model
            loader: Any = None
            segments = path.split(".")
            for index, segment in enumerate(segments):
                prop = self.new(model).relationship(segment)
                sub = self.new(prop.mapper.class_)
                if constraint is not None and index == len(segments) - 1:
                    constraint(sub)
                attr = getattr(model, segment)
                criterion = sub.criterion()
                if criterion is not None:
                    attr = attr.and_(criterion)
                loader = selectinload(attr) if loader is None else loader.selectinload(attr)
                model = prop.mapper.class_
            self._options.append(loader)
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
        """Join *table* on ``first <operator> second`` (or on *first* as an expression).

        With ``where=True`` *second* is a bound value rather than a column.
        """
        if isinstance(table, str):
            try:
                table = self._model.metadata.tables[table]
            except KeyError:
                raise RepositoryException(f"Unknown table '{table}'", code="QUERY_JOIN") from None
        if operator is None and second is None:
            onclause = first
        else:
            right = second if where else self.column(second)
            onclause = compare(self.column(first), operator, right)
        kind = type.lower()
        if kind not in ("inner", "left"):
            raise RepositoryException(f"Unsupported join type '{type}'", code="QUERY_JOIN")
        self._joins.append((table, onclause, kind == "left"))
        return self

    # ------------------------------------------------------------------
    # Aggregate shaping
    # ------------------------------------------------------------------

    def _relation_aggregate(self, relation: str, function: str, column: str | None, default_label: str) -> None:
        name, _, alias = relation.partition(" as ")
        name = name.strip()
        target, conditions = self._related(self.relationship(name), None)
        if function == "exists":
            expression: Any = select(literal(1)).select_from(target).where(*conditions).exists()
        else:
            argument = getattr(target, column) if column else literal_column("*")
            aggregate = getattr(func, function)(argument)
            expression = select(aggregate).select_from(target).where(*conditions).scalar_subquery()
        self._extra_columns.append((alias.strip() or default_label.format(relation=name), expression))

    def with_count(self, relations: Sequence[str]) -> Self:
        """Add ``{relation}_count`` (or ``relation as alias``) to each loaded entity."""
        for relation in relations:
            self._relation_aggregate(relation, "count", None, "{relation}_count")
        return self

    def with_exists(self, relations: Sequence[str]) -> Self:
        for relation in relations:
            self._relation_aggregate(relation, "exists", None, "{relation}_exists")
        return self

    def with_sum(self, relation: str, column: str) -> Self:
        self._relation_aggregate(relation, "sum", column, "{relation}_sum_" + column)
        return self

    def with_max(self, relation: str, column: str) -> Self:
        self._relation_aggregate(relation, "max", column, "{relation}_max_" + column)
        return self

    def with_min(self, relation: str, column: str) -> Self:
        self._relation_aggregate(relation, "min", column, "{relation}_min_" + column)
        return self

    def with_avg(self, relation: str, column: str) -> Self:
        self._relation_aggregate(relation, "avg", column, "{relation}_avg_" + column)
        return self

    # ------------------------------------------------------------------
    # Scopes, having, trashed
    # ------------------------------------------------------------------

    def has_named_scope(self, name: str) -> bool:
        return callable(getattr(self._model, f"scope_{name}", None))

    def call_named_scope(self, name: str, args: Sequence[Any]) -> Self:
        scope = getattr(self._model, f"scope_{name}", None)
        if not callable(scope):
            raise RepositoryException(
                f"Model {self._model.__name__} has no scope '{name}'",
                code="QUERY_SCOPE",
            )
        result = scope(self, *args)
        return result if isinstance(result, SqlAlchemyQuery) else self

    def having(self, column: Any, operator: Any = UNSET, value: Any = UNSET, boolean: str = "and") -> Self:
        operator, value = split_comparison(operator, value)
        if _is_expression(column) and operator is None:
            criterion = column
        else:
            criterion = compare(self.column(column), operator, value)
        self._havings.append((boolean.lower(), criterion))
        return self

    def with_trashed(self) -> Self:
        self._with_trashed = True
        return self

    def without_global_scopes(self) -> Self:
        self._without_global_scopes = True
        return self

    def exclude(self, columns: Sequence[str]) -> Self:
        """Do not load *columns*; reading them afterwards raises."""
        for name in columns:
            self._options.append(defer(getattr(self._model, name), raiseload=True))
        return self

    # ------------------------------------------------------------------
    # Pagination and ordering
    # ------------------------------------------------------------------

    def offset(self, value: int) -> Self:
        self._offset = value
        return self

    def limit(self, value: int) -> Self:
        self._limit = value
        return self

    def group_by(self, column: Any) -> Self:
        self._group_by.append(self.column(column))
        return self

    def order_by(self, column: Any, direction: str = "asc") -> Self:
        col = self.column(column)
        self._order_by.append(col.desc() if str(direction).lower() == "desc" else col.asc())
        return self

    # ------------------------------------------------------------------
    # Statement building
    # ------------------------------------------------------------------

    def scope_criteria(self) -> list[Any]:
        """Soft-delete and global scope conditions currently in force."""
        if self._without_global_scopes:
            return []
        criteria: list[Any] = []
        if is_soft_deletable(self._model) and not self._with_trashed:
            criteria.append(self._model.deleted_at.is_(None))  # type: ignore[attr-defined]
        for scope in getattr(self._model, "__global_scopes__", {}).values():
            criteria.append(scope(self._model))
        return criteria

    def criterion(self) -> Any:
        """The full WHERE condition, or ``None`` when unfiltered."""
        parts = []
        combined = _combine(self._wheres)
        if combined is not None:
            parts.append(combined)
        parts.extend(self.scope_criteria())
        if not parts:
            return None
        return parts[0] if len(parts) == 1 else and_(*parts)

    def _filtered(self, stmt: Select[Any]) -> Select[Any]:
        for target, onclause, outer in self._joins:
            stmt = stmt.join(target, onclause, isouter=outer)
        criterion = self.criterion()
        if criterion is not None:
            stmt = stmt.where(criterion)
        if self._group_by:
            stmt = stmt.group_by(*self._group_by)
        having = _combine(self._havings)
        if having is not None:
            stmt = stmt.having(having)
        return stmt

    def statement(self, *, paged: bool = True) -> Select[Any]:
        """``SELECT`` of the model plus any aggregate columns."""
        stmt = self._filtered(select(self._model, *(expr.label(label) for label, expr in self._extra_columns)))
        if self._order_by:
            stmt = stmt.order_by(*self._order_by)
        if paged and self._offset:
            stmt = stmt.offset(self._offset)
        if paged and self._limit:
            stmt = stmt.limit(self._limit)
        if self._options:
            stmt = stmt.options(*self._options)
        return stmt

    def _column_statement(self, *columns: Any) -> Select[Any]:
        stmt = self._filtered(select(*columns).select_from(self._model))
        if self._offset:
            stmt = stmt.offset(self._offset)
        if self._limit:
            stmt = stmt.limit(self._limit)
        return stmt

    # ------------------------------------------------------------------
    # Terminals
    # ------------------------------------------------------------------

    def _require_session(self) -> AsyncSession:
        if self._session is None:
            raise RepositoryException(f"No session bound to the {self._model.__name__} query", code="QUERY_SESSION")
        return self._session

    async def _fetch(self, stmt: Select[Any]) -> list[Any]:
        result = await self._require_session().execute(stmt)
        if not self._extra_columns:
            return list(result.scalars().all())
        entities = []
        labels = [label for label, _ in self._extra_columns]
        for row in result.all():
            entity = row[0]
            for label, value in zip(labels, row[1:], strict=True):
                setattr(entity, label, value)
            entities.append(entity)
        return entities

    async def get(self) -> list[Any]:
        return await self._fetch(self.statement())

    async def first(self) -> Any | None:
        rows = await self._fetch(self.statement().limit(1))
        return rows[0] if rows else None

    async def find(self, id: Any) -> Any | None:
        """Find by primary key; a list of keys returns a list of entities."""
        key = getattr(self._model, primary_key_name(self._model))
        if isinstance(id, list | tuple | set):
            return await self.where_in(key, list(id)).get()
        return await self.where(key, "=", id).first()

    async def count(self) -> int:
        inner = self._column_statement(literal_column("1").label("one")).subquery()
        result = await self._require_session().execute(select(func.count()).select_from(inner))
        return int(result.scalar_one())

    async def _aggregate(self, function: str, column: Any) -> Any:
        inner = self._column_statement(self.column(column).label("aggregate")).subquery()
        stmt = select(getattr(func, function)(inner.c.aggregate))
        result = await self._require_session().execute(stmt)
        return result.scalar_one()

    async def min(self, column: Any) -> Any:
        return await self._aggregate("min", column)

    async def max(self, column: Any) -> Any:
        return await self._aggregate("max", column)

    async def avg(self, column: Any) -> Any:
        return await self._aggregate("avg", column)

    async def sum(self, column: Any) -> Any:
        return await self._aggregate("sum", column)

    async def exists(self) -> bool:
        inner = self._column_statement(literal_column("1"))
        result = await self._require_session().execute(select(inner.exists()))
        return bool(result.scalar_one())

    async def paginate(self, page: int = 1, per_page: int = 15) -> Page[Any]:
        page = max(page, 1)
        total = await self.count()
        stmt = self.statement(paged=False).offset((page - 1) * per_page).limit(per_page)
        return Page(items=await self._fetch(stmt), total=total, page=page, size=per_page)

    async def simple_paginate(self, page: int = 1, per_page: int = 15) -> Slice[Any]:
        page = max(page, 1)
        stmt = self.statement(paged=False).offset((page - 1) * per_page).limit(per_page + 1)
        rows = await self._fetch(stmt)
        return Slice(items=rows[:per_page], page=page, size=per_page, has_next=len(rows) > per_page)

    async def insert(self, rows: Sequence[Mapping[str, Any]]) -> bool:
        """Bulk insert without loading entities or firing lifecycle events."""
        rows = [dict(row) for row in rows]
        if rows:
            await self._require_session().execute(sa_insert(self._model), rows)
        return True

    async def update(self, values: Mapping[str, Any]) -> int:
        """Bulk update of every matching row; returns the affected row count."""
        stmt = sa_update(self._model).values(**values).execution_options(synchronize_session="fetch")
        criterion = self.criterion()
        if criterion is not None:
            stmt = stmt.where(criterion)
        result = await self._require_session().execute(stmt)
        return int(result.rowcount)  # type: ignore[attr-defined]

    async def delete(self) -> int:
        """Delete every matching row; soft-deletable models are stamped instead."""
        if is_soft_deletable(self._model):
            return await self.update({"deleted_at": datetime.now(UTC)})
        return await self.force_delete()

    async def force_delete(self) -> int:
        stmt = sa_delete(self._model).execution_options(synchronize_session="fetch")
        criterion = self.criterion()
        if criterion is not None:
            stmt = stmt.where(criterion)
        result = await self._require_session().execute(stmt)
        return int(result.rowcount)  # type: ignore[attr-defined]
