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
"""Query capability consumed by the assembler and the repository."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any, Protocol, Self, runtime_checkable

from flyrepo.data.page import Page, Slice


@runtime_checkable
class QueryHandle(Protocol):
    """A mutable query under construction for one model.

    Builder methods apply one clause and return the handle. Terminal
    methods run the query and are awaitable.
    """

    # -- filters ---------------------------------------------------------
    def where(self, column: Any, operator: Any = ..., value: Any = ..., boolean: str = "and") -> Self: ...
    def or_where(self, column: Any, operator: Any = ..., value: Any = ...) -> Self: ...
    def where_in(self, column: Any, values: Sequence[Any], boolean: str = "and", negate: bool = False) -> Self: ...
    def where_not_in(self, column: Any, values: Sequence[Any], boolean: str = "and") -> Self: ...
    def where_json_contains(self, column: Any, value: Any, boolean: str = "and", negate: bool = False) -> Self: ...
    def or_where_json_contains(self, column: Any, value: Any) -> Self: ...
    def where_json_length(self, column: Any, operator: Any, value: Any = ..., boolean: str = "and") -> Self: ...
    def where_json_doesnt_contain(self, column: Any, value: Any, boolean: str = "and") -> Self: ...
    def when(self, value: Any, callback: Callable[..., Any], default: Callable[..., Any] | None = None) -> Self: ...
    def where_between(self, column: Any, values: Sequence[Any], boolean: str = "and", negate: bool = False) -> Self: ...
    def or_where_between(self, column: Any, values: Sequence[Any]) -> Self: ...
    def where_not_between(self, column: Any, values: Sequence[Any], boolean: str = "and") -> Self: ...
    def where_exists(self, callback: Any, boolean: str = "and", negate: bool = False) -> Self: ...
    def where_raw(self, sql: str, bindings: Any = None, boolean: str = "and") -> Self: ...
    def or_where_raw(self, sql: str, bindings: Any = None) -> Self: ...
    def having_raw(self, sql: str, bindings: Any = None, boolean: str = "and") -> Self: ...
    def where_date(self, column: Any, operator: Any, value: Any = ..., boolean: str = "and") -> Self: ...
    def where_month(self, column: Any, operator: Any, value: Any = ..., boolean: str = "and") -> Self: ...
    def where_day(self, column: Any, operator: Any, value: Any = ..., boolean: str = "and") -> Self: ...
    def where_time(self, column: Any, operator: Any, value: Any = ..., boolean: str = "and") -> Self: ...

    # -- relation existence ----------------------------------------------
    def has(
        self,
        relation: str,
        operator: str = ">=",
        count: int = 1,
        boolean: str = "and",
        callback: Callable[..., Any] | None = None,
    ) -> Self: ...
    def or_has(self, relation: str, operator: str = ">=", count: int = 1) -> Self: ...
    def where_has(
        self, relation: str, callback: Callable[..., Any] | None = None, operator: str = ">=", count: int = 1
    ) -> Self: ...
    def doesnt_have(self, relation: str, boolean: str = "and", callback: Callable[..., Any] | None = None) -> Self: ...
    def or_doesnt_have(self, relation: str) -> Self: ...
    def or_where_has(
        self, relation: str, callback: Callable[..., Any] | None = None, operator: str = ">=", count: int = 1
    ) -> Self: ...
    def where_doesnt_have(self, relation: str, callback: Callable[..., Any] | None = None) -> Self: ...
    def or_where_doesnt_have(self, relation: str, callback: Callable[..., Any] | None = None) -> Self: ...
    def has_morph(
        self,
        relation: str,
        types: Sequence[Any],
        operator: str = ">=",
        count: int = 1,
        boolean: str = "and",
        callback: Callable[..., Any] | None = None,
    ) -> Self: ...
    def where_has_morph(
        self,
        relation: str,
        types: Sequence[Any],
        callback: Callable[..., Any] | None = None,
        operator: str = ">=",
        count: int = 1,
    ) -> Self: ...

    # -- loading and shaping ---------------------------------------------
    def with_(self, relations: Sequence[tuple[str, Callable[..., Any] | None]]) -> Self: ...
    def join(
        self, table: Any, first: Any, operator: Any = None, second: Any = None, type: str = "inner", where: bool = False
    ) -> Self: ...
    def with_count(self, relations: Sequence[str]) -> Self: ...
    def with_exists(self, relations: Sequence[str]) -> Self: ...
    def with_sum(self, relation: str, column: str) -> Self: ...
    def with_max(self, relation: str, column: str) -> Self: ...
    def with_min(self, relation: str, column: str) -> Self: ...
    def with_avg(self, relation: str, column: str) -> Self: ...
    def has_named_scope(self, name: str) -> bool: ...
    def call_named_scope(self, name: str, args: Sequence[Any]) -> Self: ...
    def having(self, column: Any, operator: Any = ..., value: Any = ..., boolean: str = "and") -> Self: ...
    def with_trashed(self) -> Self: ...
    def without_global_scopes(self) -> Self: ...
    def exclude(self, columns: Sequence[str]) -> Self: ...
    def offset(self, value: int) -> Self: ...
    def limit(self, value: int) -> Self: ...
    def group_by(self, column: Any) -> Self: ...
    def order_by(self, column: Any, direction: str = "asc") -> Self: ...

    # -- terminals -------------------------------------------------------
    async def get(self) -> list[Any]: ...
    async def first(self) -> Any | None: ...
    async def find(self, id: Any) -> Any | None: ...
    async def count(self) -> int: ...
    async def min(self, column: Any) -> Any: ...
    async def max(self, column: Any) -> Any: ...
    async def avg(self, column: Any) -> Any: ...
    async def sum(self, column: Any) -> Any: ...
    async def exists(self) -> bool: ...
    async def paginate(self, page: int = 1, per_page: int = 15) -> Page[Any]: ...
    async def simple_paginate(self, page: int = 1, per_page: int = 15) -> Slice[Any]: ...
    async def insert(self, rows: Sequence[Mapping[str, Any]]) -> bool: ...
    async def update(self, values: Mapping[str, Any]) -> int: ...
    async def delete(self) -> int: ...
