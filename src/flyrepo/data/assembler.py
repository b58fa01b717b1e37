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
"""Replays a clause store onto a query handle in a fixed category order."""

from __future__ import annotations

from typing import Any

from flyrepo.data.clauses import ClauseStore
from flyrepo.data.ports.query import QueryHandle

# (clause category, query handle method), one handle call per recorded tuple.
_FILTERS: tuple[tuple[str, str], ...] = (
    ("where", "where"),
    ("or_where", "or_where"),
    ("where_in", "where_in"),
    ("where_not_in", "where_not_in"),
    ("where_json", "where_json_contains"),
    ("or_where_json", "or_where_json_contains"),
    ("where_json_count", "where_json_length"),
    ("where_json_not_in", "where_json_doesnt_contain"),
    ("when", "when"),
    ("where_between", "where_between"),
    ("or_where_between", "or_where_between"),
    ("where_not_between", "where_not_between"),
    ("where_exists", "where_exists"),
    ("where_raw", "where_raw"),
    ("or_where_raw", "or_where_raw"),
    ("having_raw", "having_raw"),
)

_DATE_FILTERS: tuple[tuple[str, str], ...] = (
    ("where_date", "where_date"),
    ("where_month", "where_month"),
    ("where_day", "where_day"),
    ("where_time", "where_time"),
)

_RELATION_FILTERS: tuple[tuple[str, str], ...] = (
    ("has", "has"),
    ("or_has", "or_has"),
    ("where_has", "where_has"),
    ("doesnt_have", "doesnt_have"),
    ("or_doesnt_have", "or_doesnt_have"),
    ("or_where_has", "or_where_has"),
    ("where_doesnt_have", "where_doesnt_have"),
    ("or_where_doesnt_have", "or_where_doesnt_have"),
    ("has_morph", "has_morph"),
    ("where_has_morph", "where_has_morph"),
)

_AGGREGATES: tuple[tuple[str, str], ...] = (
    ("with_sum", "with_sum"),
    ("with_max", "with_max"),
    ("with_min", "with_min"),
    ("with_avg", "with_avg"),
)


class QueryAssembler:
    """Builds a query from accumulated clauses without touching the store.

    Order:
    1. basic, JSON, conditional, range, exists and raw filters
    2. date/month/day/time filters
    3. relation existence filters, morph variants last
    4. eager loads (one call), then joins
    5. with_count and with_exists (one call each), then sum/max/min/avg
    6. scopes, having, trashed inclusion, global-scope removal, exclusions
    7. offset and limit (only when > 0), group by, order by
    8. pushed criteria, unless criteria are skipped

    Filters therefore always compose before shaping and pagination.
    """

    def assemble(self, store: ClauseStore, query: QueryHandle, repository: Any = None) -> QueryHandle:
        query = self._replay(store, query, _FILTERS)
        query = self._replay(store, query, _DATE_FILTERS)
        query = self._replay(store, query, _RELATION_FILTERS)
        query = self._apply_loading(store, query)
        query = self._apply_aggregates(store, query)
        query = self._apply_modifiers(store, query)
        query = self._apply_paging(store, query)
        return self._apply_criteria(store, query, repository)

    @staticmethod
    def _replay(store: ClauseStore, query: QueryHandle, steps: tuple[tuple[str, str], ...]) -> QueryHandle:
        for category, method in steps:
            for args in store[category]:
                query = getattr(query, method)(*args)
        return query

    @staticmethod
    def _apply_loading(store: ClauseStore, query: QueryHandle) -> QueryHandle:
        relations = store["relations"]
        if relations:
            query = query.with_(list(relations))
        for args in store["join"]:
            query = query.join(*args)
        return query

    def _apply_aggregates(self, store: ClauseStore, query: QueryHandle) -> QueryHandle:
        if store["with_count"]:
            query = query.with_count([relation for (relation,) in store["with_count"]])
        if store["with_exists"]:
            query = query.with_exists([relation for (relation,) in store["with_exists"]])
        return self._replay(store, query, _AGGREGATES)

    @staticmethod
    def _apply_modifiers(store: ClauseStore, query: QueryHandle) -> QueryHandle:
        for name, args in store["scopes"]:
            query = query.call_named_scope(name, args)
        for args in store["having"]:
            query = query.having(*args)
        if store["with_trashed"]:
            query = query.with_trashed()
        if store["without_global_scopes"]:
            query = query.without_global_scopes()
        if store["exclude"]:
            query = query.exclude([column for (column,) in store["exclude"]])
        return query

    @staticmethod
    def _apply_paging(store: ClauseStore, query: QueryHandle) -> QueryHandle:
        offset, limit = store["offset"], store["limit"]
        if offset is not None and offset > 0:
            query = query.offset(offset)
        if limit is not None and limit > 0:
            query = query.limit(limit)
        for (column,) in store["group_by"]:
            query = query.group_by(column)
        for column, direction in store["order_by"]:
            query = query.order_by(column, direction)
        return query

    @staticmethod
    def _apply_criteria(store: ClauseStore, query: QueryHandle, repository: Any) -> QueryHandle:
        if store["skip_criteria"]:
            return query
        for (criteria,) in store["criteria"]:
            query = criteria.apply(query, repository)
        return query
