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
"""Generic async repository built on SQLAlchemy 2.0.

The repository records fluent clauses into a :class:`ClauseStore`, builds a
query from them on every terminal call, reads through the cache and resets
the store afterwards, whatever the outcome.
"""

from __future__ import annotations

import importlib
import inspect as pyinspect
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any, Generic, Self, TypeVar, cast, get_args, get_origin

from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from flyrepo.data.assembler import QueryAssembler
from flyrepo.data.clauses import UNSET, ClauseRecorder, ClauseStore
from flyrepo.data.context import RepositoryContext
from flyrepo.data.criteria import Criteria, ensure_criteria
from flyrepo.data.page import Page, Slice
from flyrepo.data.ports.query import QueryHandle
from flyrepo.data.relational.sqlalchemy.entity import (
    fill,
    fillable_columns,
    is_soft_deletable,
    primary_key_name,
    repository_id_of,
    table_name,
)
from flyrepo.data.relational.sqlalchemy.relations import (
    RelationSyncEngine,
    SyncMode,
    extract_relations,
    strip_relations,
)
from flyrepo.data.relational.sqlalchemy.transactional import (
    TransactionScope,
    active_session,
    after_commit,
    transaction,
)
from flyrepo.eda.types import EntityEvent, RepositoryEvent
from flyrepo.kernel.exceptions import (
    EntityNotFoundException,
    RepositoryException,
    UnresolvedModelClassException,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
ID = TypeVar("ID")
R = TypeVar("R")


class Repository(ClauseRecorder, Generic[T, ID]):
    """Generic repository for SQLAlchemy entities.

    Type Parameters:
        T: The entity type (any mapped class).
        ID: The primary key type (e.g. int, UUID, str).

    The model comes from the type parameter, the ``model`` argument, the
    ``model_class`` attribute (a class or a dotted import path), or is
    guessed as ``{models_module}.{Name}`` for a ``NameRepository``.

    Usage::

        class UserRepository(Repository[User, int]):
            fields_searchable = {"name": "like", "email": "="}

        users = UserRepository(context)
        adults = await users.where("age", ">=", 18).order_by("name").find_all()
    """

    _entity_type: type | None = None
    _id_type: type | None = None

    model_class: type | str | None = None
    repository_id: str | None = None
    fields_searchable: Sequence[str] | Mapping[str, str] | None = None
    cache_lifetime: int | None = None
    cache_driver: str | None = None

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        for base in getattr(cls, "__orig_bases__", []):
            origin = get_origin(base)
            if origin is Repository:
                args = get_args(base)
                if args and not isinstance(args[0], TypeVar):
                    cls._entity_type = args[0]
                if len(args) > 1 and not isinstance(args[1], TypeVar):
                    cls._id_type = args[1]
                break

    def __init__(self, context: RepositoryContext, model: type[T] | str | None = None) -> None:
        self._context = context
        self._session = context.session
        self._store = ClauseStore()
        self._assembler = QueryAssembler()
        self._model: type[T] = self._resolve_model(model or type(self)._entity_type or type(self).model_class)
        self._repository_id = type(self).repository_id
        self._cache_clear_enabled = True
        self._scope: TransactionScope | None = None
        self._reset_overrides()

    # ------------------------------------------------------------------
    # Model and session
    # ------------------------------------------------------------------

    def _resolve_model(self, model: type | str | None) -> type[T]:
        if model is None:
            name = type(self).__name__.removesuffix("Repository")
            model = f"{self._context.properties.models_module}.{name}"
        if isinstance(model, str):
            module_name, _, attribute = model.rpartition(".")
            try:
                model = getattr(importlib.import_module(module_name), attribute)
            except (ImportError, AttributeError, ValueError) as exc:
                raise UnresolvedModelClassException(
                    f"Class {model} does not exist",
                    code="MODEL_UNRESOLVED",
                    context={"repository": type(self).__name__, "model": model},
                ) from exc
        if not isinstance(model, type) or inspect(model, raiseerr=False) is None:
            raise UnresolvedModelClassException(
                f"Class {model!r} must be a mapped SQLAlchemy model",
                code="MODEL_UNMAPPED",
                context={"repository": type(self).__name__},
            )
        return cast(type[T], model)

    def use_session(self, session: AsyncSession) -> Self:
        self._session = session
        return self

    def _current_session(self) -> AsyncSession | None:
        return self._session if self._session is not None else active_session()

    def _require_session(self) -> AsyncSession:
        """Return the bound or active session.

        Raises:
            ContainerResolutionException: neither is available.
        """
        session = self._current_session()
        if session is None:
            return cast(AsyncSession, self._context.resolve("session"))
        return session

    # ------------------------------------------------------------------
    # Clause recording
    # ------------------------------------------------------------------

    def _clauses(self) -> ClauseStore:
        return self._store

    def scope(self, name: str, *args: Any) -> Any:
        """Record the model scope *name*, or forward to a plain model attribute."""
        if self._context.query_factory(self._model, None).has_named_scope(name):
            return super().scope(name, *args)
        return getattr(self._model, name)(*args)

    def full_search(self, against: str, *columns: str) -> Self:
        """MySQL boolean-mode full text match of *against* over *columns*."""
        return self.where_raw(f"MATCH ({', '.join(columns)}) AGAINST (? IN BOOLEAN MODE)", [against])

    # ------------------------------------------------------------------
    # Criteria
    # ------------------------------------------------------------------

    def push_criteria(self, criteria: Criteria | type) -> Self:
        return self._record("criteria", ensure_criteria(criteria))

    def pop_criteria(self, criteria: Criteria | type) -> Self:
        """Remove pushed criteria equal to *criteria*, or all of a given class."""
        remaining = [
            item
            for (item,) in self._store["criteria"]
            if not (isinstance(item, criteria) if isinstance(criteria, type) else item == criteria)
        ]
        self._store.clear("criteria")
        for item in remaining:
            self._record("criteria", item)
        return self

    def get_criteria(self) -> list[Criteria]:
        return [item for (item,) in self._store["criteria"]]

    def skip_criteria(self, status: bool = True) -> Self:
        self._store.set("skip_criteria", status)
        return self

    def reset_criteria(self) -> Self:
        self._store.clear("criteria")
        return self

    # ------------------------------------------------------------------
    # Cache settings
    # ------------------------------------------------------------------

    def skip_cache(self, status: bool = True) -> Self:
        self._skip_cache = status
        return self

    def set_cache_lifetime(self, lifetime: int | None) -> Self:
        self._cache_lifetime = lifetime
        return self

    def get_cache_lifetime(self) -> int | None:
        if self._cache_lifetime is not None:
            return self._cache_lifetime
        if type(self).cache_lifetime is not None:
            return type(self).cache_lifetime
        return self._context.cache_properties.lifetime

    def set_cache_driver(self, driver: str | None) -> Self:
        self._cache_driver = driver
        return self

    def get_cache_driver(self) -> str:
        return self._cache_driver or type(self).cache_driver or self._context.cache_properties.driver

    def enable_cache_clear(self, status: bool = True) -> Self:
        self._cache_clear_enabled = status
        return self

    def is_cache_clear_enabled(self) -> bool:
        return self._cache_clear_enabled

    async def forget_cache(self) -> Self:
        """Drop every cached result of this repository and announce it."""
        orchestrator = self._context.orchestrator
        if orchestrator is None:
            return self
        await orchestrator.invalidate(self.get_repository_id(), self._repository_class())
        await self._dispatch(EntityEvent.CACHE_FLUSHED)
        return self

    def _repository_class(self) -> str:
        return f"{type(self).__module__}.{type(self).__qualname__}"

    def _reset_overrides(self) -> None:
        self._cache_lifetime: int | None = None
        self._cache_driver: str | None = None
        self._skip_cache = False

    def _reset(self) -> None:
        self._store.reset()
        self._reset_overrides()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _query(self) -> QueryHandle:
        query = self._context.query_factory(self._model, self._current_session())
        return self._assembler.assemble(self._store, query, self)

    async def _execute(
        self,
        method: str,
        args: Sequence[Any],
        terminal: Callable[[QueryHandle], Awaitable[R]],
    ) -> R:
        """Run *terminal* on the assembled query, through the cache when enabled."""
        try:

            async def producer() -> R:
                return await terminal(self._query())

            orchestrator = self._context.orchestrator
            if orchestrator is None or self._skip_cache or not self._context.cache_properties.enabled:
                return await producer()
            return await orchestrator.execute(
                repository_id=self.get_repository_id(),
                repository_class=self._repository_class(),
                method=method,
                args=args,
                lifetime=self.get_cache_lifetime(),
                driver=self.get_cache_driver(),
                model_class=self._model,
                snapshot=self._store.snapshot(),
                producer=producer,
            )
        finally:
            self._reset()

    async def _fetch_all(self) -> list[T]:
        """Uncached read of the recorded query, used by bulk writes."""
        try:
            return await self._query().get()
        finally:
            self._reset()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _event(self, kind: EntityEvent, payload: Any = None) -> RepositoryEvent:
        return RepositoryEvent(repository_id=self.get_repository_id(), kind=kind, payload=payload, repository=self)

    async def _dispatch(self, kind: EntityEvent, payload: Any = None) -> None:
        if self._context.events is not None:
            await self._context.events.publish(self._event(kind, payload))

    async def _dispatch_after_commit(self, kind: EntityEvent, payload: Any = None) -> None:
        events = self._context.events
        if events is None:
            return
        event = self._event(kind, payload)

        async def publish() -> None:
            await events.publish(event)

        await after_commit(publish)

    # ------------------------------------------------------------------
    # Cached reads
    # ------------------------------------------------------------------

    async def find(self, id: ID | Sequence[ID]) -> Any:
        """Find by primary key; a list of keys returns a list of entities."""
        return await self._execute("find", (id,), lambda q: q.find(id))

    async def find_or_fail(self, id: ID | Sequence[ID]) -> Any:
        """Like :meth:`find`, but every requested key must exist.

        Raises:
            EntityNotFoundException: the entity (or one of them) is missing.
        """
        result = await self.find(id)
        if isinstance(id, list | tuple | set):
            if len(result) == len(set(id)):
                return result
        elif result is not None:
            return result
        raise EntityNotFoundException(self._model.__name__, id)

    async def find_by(self, attribute: str, value: Any) -> T | None:
        return await self._execute("find_by", (attribute, value), lambda q: q.where(attribute, "=", value).first())

    async def find_first(self) -> T | None:
        return await self._execute("find_first", (), lambda q: q.first())

    async def find_all(self) -> list[T]:
        return await self._execute("find_all", (), lambda q: q.get())

    async def find_where(self, where: Sequence[Any]) -> list[T]:
        """``[column, operator, value, boolean]``; a two-item list compares with ``=``."""
        self.where(*where)
        return await self._execute("find_where", (list(where),), lambda q: q.get())

    async def find_where_in(self, where: Sequence[Any]) -> list[T]:
        """``[column, values, boolean, negate]``."""
        self.where_in(*where)
        return await self._execute("find_where_in", (list(where),), lambda q: q.get())

    async def find_where_not_in(self, where: Sequence[Any]) -> list[T]:
        """``[column, values, boolean]``."""
        self.where_not_in(*where)
        return await self._execute("find_where_not_in", (list(where),), lambda q: q.get())

    async def find_where_has(self, where: Sequence[Any]) -> list[T]:
        """``[relation, callback, operator, count]``."""
        self.where_has(*where)
        return await self._execute("find_where_has", (list(where),), lambda q: q.get())

    async def first_where(self, where: Sequence[Any]) -> T | None:
        self.where(*where)
        return await self._execute("first_where", (list(where),), lambda q: q.first())

    async def first_latest(self, column: str | None = None) -> T | None:
        self.order_by(column or "created_at", "desc")
        return await self._execute("first_latest", (column,), lambda q: q.first())

    async def first_oldest(self, column: str | None = None) -> T | None:
        self.order_by(column or "created_at", "asc")
        return await self._execute("first_oldest", (column,), lambda q: q.first())

    async def exists(self) -> bool:
        return await self._execute("exists", (), lambda q: q.exists())

    async def where_exists_exist(
        self, column: Any, operator: Any = UNSET, value: Any = UNSET, boolean: str = "and"
    ) -> bool:
        """Shortcut for ``where(...)`` followed by :meth:`exists`."""
        return await self.where(column, operator, value, boolean).exists()

    async def count(self) -> int:
        return await self._execute("count", (), lambda q: q.count())

    async def min(self, column: str) -> Any:
        return await self._execute("min", (column,), lambda q: q.min(column))

    async def max(self, column: str) -> Any:
        return await self._execute("max", (column,), lambda q: q.max(column))

    async def avg(self, column: str) -> Any:
        return await self._execute("avg", (column,), lambda q: q.avg(column))

    async def sum(self, column: str) -> Any:
        return await self._execute("sum", (column,), lambda q: q.sum(column))

    async def paginate(self, page: int = 1, per_page: int = 15) -> Page[T]:
        """Find entities with pagination.

        Args:
            page: Page number (1-based).
            per_page: Number of items per page.

        Returns:
            A Page[T] with the items and the total across all pages.
        """
        return await self._execute("paginate", (page, per_page), lambda q: q.paginate(page, per_page))

    async def simple_paginate(self, page: int = 1, per_page: int = 15) -> Slice[T]:
        """Like :meth:`paginate` without the count query."""
        return await self._execute("simple_paginate", (page, per_page), lambda q: q.simple_paginate(page, per_page))

    async def get_by_criteria(self, criteria: Criteria | type) -> list[T]:
        """Apply *criteria* for this call only and return the matching entities."""
        criteria = ensure_criteria(criteria)
        self.push_criteria(criteria)
        return await self._execute("get_by_criteria", (criteria,), lambda q: q.get())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _split_relations(self, entity: Any, attributes: Mapping[str, Any], sync_relations: bool) -> tuple[dict, dict]:
        if not sync_relations:
            return dict(attributes), {}
        relations = extract_relations(entity, attributes)
        return strip_relations(attributes, relations), relations

    async def _flush(self, session: AsyncSession, entity: Any) -> None:
        session.add(entity)
        await session.flush()
        await session.refresh(entity)

    async def create(self, attributes: Mapping[str, Any] | None = None, sync_relations: bool = False) -> T:
        """Create, persist and return a new entity.

        With *sync_relations*, keys naming a relationship are written
        through the :class:`RelationSyncEngine` after the entity is flushed.
        """
        try:
            session = self._require_session()
            entity = self.model()
            await self._dispatch(EntityEvent.CREATING, entity)

            values, relations = self._split_relations(entity, attributes or {}, sync_relations)
            fill(entity, values)
            await self._flush(session, entity)

            if relations:
                await RelationSyncEngine(session, self._context.events).sync(entity, relations, SyncMode.CREATE)

            await self._dispatch_after_commit(EntityEvent.CREATED, entity)
            return entity
        finally:
            self._reset()

    async def create_many(self, rows: Sequence[Mapping[str, Any]], sync_relations: bool = False) -> list[T]:
        return [await self.create(row, sync_relations) for row in rows]

    async def _entity(self, id: Any, session: AsyncSession) -> Any:
        if isinstance(id, self._model):
            return id if id in session else await session.merge(id)
        entity = await self.find(id)
        if entity is not None and entity not in session:
            entity = await session.merge(entity)
        return entity

    async def update(
        self, id: ID | T, attributes: Mapping[str, Any] | None = None, sync_relations: bool = False
    ) -> T | None:
        """Update the entity with primary key (or instance) *id*.

        Returns ``None`` when it does not exist. ``UPDATED`` fires only when
        a column changed or relations were synced.
        """
        try:
            session = self._require_session()
            entity = await self._entity(id, session)
            if entity is None:
                return None

            await self._dispatch(EntityEvent.UPDATING, entity)
            values, relations = self._split_relations(entity, attributes or {}, sync_relations)
            fill(entity, values)
            dirty = session.is_modified(entity)
            await self._flush(session, entity)

            if relations:
                dirty = await RelationSyncEngine(session, self._context.events).sync(
                    entity, relations, SyncMode.UPDATE
                ) or dirty

            if dirty:
                await self._dispatch_after_commit(EntityEvent.UPDATED, entity)
            return cast(T, entity)
        finally:
            self._reset()

    async def store(
        self, id: ID | None = None, attributes: Mapping[str, Any] | None = None, sync_relations: bool = False
    ) -> T | None:
        """Create when *id* is empty, update otherwise."""
        if not id:
            return await self.create(attributes, sync_relations)
        return await self.update(id, attributes, sync_relations)

    async def find_or_new(self, id: ID, attributes: Mapping[str, Any] | None = None, sync_relations: bool = False) -> T:
        entity = await self.find(id)
        if entity is not None:
            return cast(T, entity)
        return await self.create(attributes, sync_relations)

    def _record_where_triples(self, where: Sequence[Any]) -> list[Sequence[Any]]:
        """Record ``[column, operator, value, ...]`` triples; returns them."""
        if where and isinstance(where[0], list | tuple):
            triples = [tuple(item) for item in where]
        else:
            triples = [tuple(where[index : index + 3]) for index in range(0, len(where), 3)]
        for column, operator, value in triples:
            self.where(column, operator, value)
        return triples

    async def update_or_create(
        self, where: Sequence[Any], attributes: Mapping[str, Any], sync_relations: bool = False
    ) -> T | None:
        """Update every match of *where*, or create from the first condition plus *attributes*."""
        triples = self._record_where_triples(where)
        entities = await self.find_all()
        column, _, value = triples[0]
        merged = {column: value, **attributes}

        if len(entities) > 1:
            result = None
            for entity in entities:
                result = await self.update(entity, attributes, sync_relations)
            return result
        if len(entities) == 1:
            return await self.update(entities[0], merged, sync_relations)
        return await self.create(merged, sync_relations)

    async def update_or_insert(
        self, where: Sequence[Any], values: Mapping[str, Any], sync_relations: bool = False
    ) -> T | bool | None:
        """Update every match of *where* with *values*, or bulk-insert a new row."""
        triples = self._record_where_triples(where)
        entities = await self.find_all()
        if entities:
            result = None
            for entity in entities:
                result = await self.update(entity, values, sync_relations)
            return result
        column, _, value = triples[0]
        return await self.insert({**values, column: value})

    async def update_set(self, attributes: Mapping[str, Any], sync_relations: bool = False) -> list[T]:
        """Update every entity matching the recorded clauses; returns them."""
        entities = await self.find_all()
        return [
            updated
            for entity in entities
            if (updated := await self.update(entity, attributes, sync_relations)) is not None
        ]

    async def insert(self, values: Mapping[str, Any] | Sequence[Mapping[str, Any]]) -> bool:
        """Bulk insert rows without loading entities."""
        rows = [values] if isinstance(values, Mapping) else list(values)
        self._require_session()
        await self._dispatch(EntityEvent.CREATING, rows)
        try:
            inserted = await self._query().insert(rows)
        finally:
            self._reset()
        await self._dispatch_after_commit(EntityEvent.CREATED, rows)
        return inserted

    async def _remove(self, session: AsyncSession, entity: Any) -> None:
        await self._dispatch(EntityEvent.DELETING, entity)
        if is_soft_deletable(self._model):
            entity.deleted_at = datetime.now(UTC)
        else:
            await session.delete(entity)
        await session.flush()
        await self._dispatch_after_commit(EntityEvent.DELETED, entity)

    async def delete(self, id: ID | T) -> T | None:
        """Delete (or soft delete) one entity; returns it, or ``None`` if missing."""
        try:
            session = self._require_session()
            entity = await self._entity(id, session)
            if entity is None:
                return None
            await self._remove(session, entity)
            return cast(T, entity)
        finally:
            self._reset()

    async def deletes(self) -> bool:
        """Delete every entity matching the recorded clauses, one by one."""
        session = self._require_session()
        entities = await self._fetch_all()
        for entity in entities:
            await self._remove(session, entity)
        return bool(entities)

    async def deletes_by(self, column: str, values: Sequence[Any]) -> bool:
        """Bulk delete rows whose *column* is in *values*. No lifecycle events."""
        self._require_session()
        self.where_in(column, list(values))
        try:
            return await self._query().delete() > 0
        finally:
            self._reset()

    async def restore(self, id: ID | T) -> T | None:
        """Clear the soft-delete stamp of one entity.

        Raises:
            RepositoryException: the model is not soft deletable.
        """
        try:
            if not is_soft_deletable(self._model):
                raise RepositoryException(
                    f"Model {self._model.__name__} does not support soft deletes",
                    code="NOT_SOFT_DELETABLE",
                )
            session = self._require_session()
            if isinstance(id, self._model):
                entity: Any = id
            else:
                entity = await self.with_trashed().skip_cache().find(id)
            if entity is None:
                return None
            if entity not in session:
                entity = await session.merge(entity)

            await self._dispatch(EntityEvent.RESTORING, entity)
            entity.deleted_at = None
            await self._flush(session, entity)
            await self._dispatch_after_commit(EntityEvent.RESTORED, entity)
            return cast(T, entity)
        finally:
            self._reset()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def transaction(
        self,
        callback: Callable[[Self], Any],
        before: Callable[[], Any] | None = None,
        tries: int = 1,
    ) -> Any:
        """Run *callback(repository)* in a transaction, retrying operational errors.

        *before* runs once, outside the transaction. Sync and async
        callables are both accepted.
        """
        session = self._require_session()
        if before is not None:
            await _maybe_await(before())
        for attempt in range(1, max(tries, 1) + 1):
            try:
                async with transaction(session):
                    return await _maybe_await(callback(self))
            except OperationalError:
                if attempt >= tries:
                    raise
                logger.warning("Transaction attempt %d/%d failed, retrying", attempt, tries, exc_info=True)
        return None

    async def begin_transaction(self) -> Self:
        self._scope = await TransactionScope(self._require_session()).begin()
        return self

    async def commit(self) -> None:
        """Commit the scope opened by :meth:`begin_transaction`, or the session itself."""
        scope, self._scope = self._scope, None
        if scope is None:
            await self._require_session().commit()
        else:
            await scope.commit()

    async def rollback(self) -> None:
        scope, self._scope = self._scope, None
        if scope is None:
            await self._require_session().rollback()
        else:
            await scope.rollback()

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def get_repository_id(self) -> str:
        return self._repository_id or repository_id_of(self._model) or self._repository_class()

    def set_repository_id(self, repository_id: str) -> Self:
        self._repository_id = repository_id
        return self

    def get_model(self) -> type[T]:
        return self._model

    def set_model(self, model: type[T] | str) -> Self:
        self._model = self._resolve_model(model)
        return self

    def model(self, **attributes: Any) -> T:
        """New, unsaved entity filled with the fillable subset of *attributes*."""
        return cast(T, fill(self._model(), attributes))

    def get_fillable(self) -> list[str] | None:
        return fillable_columns(self._model) or None

    def get_key_name(self) -> str:
        return primary_key_name(self._model)

    def get_table(self) -> str:
        return table_name(self._model)

    def get_fields_searchable(self) -> Sequence[str] | Mapping[str, str]:
        if type(self).fields_searchable is not None:
            return type(self).fields_searchable  # type: ignore[return-value]
        return getattr(self._model, "__searchable__", None) or []


async def _maybe_await(value: Any) -> Any:
    if pyinspect.isawaitable(value):
        return await value
    return value
