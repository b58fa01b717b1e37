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
"""Nested writes: split attribute maps into columns and relations, then persist relations."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy import inspect, select
from sqlalchemy import update as sa_update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import RelationshipDirection, RelationshipProperty

from flyrepo.data.relational.sqlalchemy.entity import fill, fillable_columns, primary_key_name, repository_id_of
from flyrepo.data.relational.sqlalchemy.transactional import after_commit
from flyrepo.eda.ports.outbound import EventPublisher
from flyrepo.eda.types import EntityEvent, RepositoryEvent
from flyrepo.kernel.exceptions import UnsupportedRelationKindException

logger = logging.getLogger(__name__)


class RelationKind(str, Enum):
    BELONGS_TO_MANY = "BelongsToMany"
    HAS_MANY = "HasMany"
    HAS_ONE = "HasOne"
    BELONGS_TO = "BelongsTo"


class SyncMode(Enum):
    CREATE = "create"
    UPDATE = "update"


@dataclass
class RelationDescriptor:
    """Values supplied for one relation and the kind of relation they target.

    ``kind`` is a plain string for relation shapes the writer does not
    support (e.g. view-only relationships).
    """

    values: Any
    kind: RelationKind | str


def relation_kind(prop: RelationshipProperty[Any]) -> RelationKind | str:
    """Classify a relationship by direction and collection-ness."""
    if prop.viewonly:
        return f"ViewOnly:{prop.direction.name}"
    if prop.direction is RelationshipDirection.MANYTOMANY:
        return RelationKind.BELONGS_TO_MANY
    if prop.direction is RelationshipDirection.ONETOMANY:
        return RelationKind.HAS_MANY if prop.uselist else RelationKind.HAS_ONE
    if prop.direction is RelationshipDirection.MANYTOONE and not prop.uselist:
        return RelationKind.BELONGS_TO
    return prop.direction.name


def extract_relations(entity: Any, attributes: Mapping[str, Any]) -> dict[str, RelationDescriptor]:
    """Pick the attribute keys that are not fillable but name a relationship.

    Works with an entity instance or a model class.
    """
    model = entity if isinstance(entity, type) else type(entity)
    fillable = set(fillable_columns(model))
    relationships = inspect(model).relationships
    relations: dict[str, RelationDescriptor] = {}
    for key, value in attributes.items():
        if key not in fillable and key in relationships:
            relations[key] = RelationDescriptor(values=value, kind=relation_kind(relationships[key]))
    return relations


def strip_relations(attributes: Mapping[str, Any], relations: Mapping[str, RelationDescriptor]) -> dict[str, Any]:
    return {key: value for key, value in attributes.items() if key not in relations}


_Writer = Callable[[Any, RelationshipProperty[Any], Any, SyncMode, bool], Awaitable[EntityEvent | None]]


class RelationSyncEngine:
    """Persists relation values after the owning entity has been flushed.

    Every write queues a ``created``/``updated`` event for the related
    model's ``__repository_id__`` (if it declares one) until the
    surrounding transaction commits.

    Args:
        session: Session the owning entity belongs to.
        events: Bus the relation events are published on; ``None`` disables them.
    """

    def __init__(self, session: AsyncSession, events: EventPublisher | None = None) -> None:
        self._session = session
        self._events = events
        self._writers: dict[RelationKind, _Writer] = {
            RelationKind.BELONGS_TO_MANY: self._sync_belongs_to_many,
            RelationKind.HAS_MANY: self._sync_has_many,
            RelationKind.HAS_ONE: self._sync_has_one,
            RelationKind.BELONGS_TO: self._sync_belongs_to,
        }

    async def sync(
        self,
        entity: Any,
        relations: Mapping[str, RelationDescriptor],
        mode: SyncMode = SyncMode.CREATE,
        detach: bool = True,
    ) -> bool:
        """Write every relation in *relations*; returns whether anything was written.

        Raises:
            UnsupportedRelationKindException: a descriptor has an unsupported kind.
        """
        if not relations:
            return False
        relationships = inspect(type(entity)).relationships
        for name, descriptor in relations.items():
            writer = self._writers.get(descriptor.kind) if isinstance(descriptor.kind, RelationKind) else None
            if writer is None:
                raise UnsupportedRelationKindException(
                    f"Error relation type {descriptor.kind} for '{type(entity).__name__}.{name}'",
                    code="RELATION_KIND",
                    context={"relation": name, "kind": str(descriptor.kind)},
                )
            prop = relationships[name]
            await self._session.refresh(entity, attribute_names=[name])
            kind = await writer(entity, prop, descriptor.values, mode, detach)
            await self._session.flush()
            if kind is not None:
                await self._queue_event(prop.mapper.class_, kind, descriptor.values)
        return True

    async def _queue_event(self, target: type, kind: EntityEvent, values: Any) -> None:
        repository_id = repository_id_of(target)
        if repository_id is None or self._events is None:
            return
        events = self._events
        event = RepositoryEvent(repository_id=repository_id, kind=kind, payload=values)

        async def publish() -> None:
            await events.publish(event)

        await after_commit(publish)

    async def _load(self, target: type, keys: list[Any]) -> list[Any]:
        if not keys:
            return []
        pk = getattr(target, primary_key_name(target))
        result = await self._session.execute(select(target).where(pk.in_(keys)))
        by_key = {getattr(row, pk.key): row for row in result.scalars().all()}
        return [by_key[key] for key in keys if key in by_key]

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------

    async def _sync_belongs_to_many(
        self, entity: Any, prop: RelationshipProperty[Any], values: Any, mode: SyncMode, detach: bool
    ) -> EntityEvent:
        """Replace membership (``detach``) or only add missing members, by related primary key."""
        target = prop.mapper.class_
        pk_name = primary_key_name(target)
        values = values if isinstance(values, list | tuple | set) else [values]
        keys = [getattr(v, pk_name) if isinstance(v, target) else v for v in values]
        related = await self._load(target, list(keys))
        collection = getattr(entity, prop.key)
        if detach:
            setattr(entity, prop.key, related)
        else:
            present = {getattr(item, pk_name) for item in collection}
            for item in related:
                if getattr(item, pk_name) not in present:
                    collection.append(item)
        return EntityEvent.UPDATED

    async def _sync_has_many(
        self, entity: Any, prop: RelationshipProperty[Any], values: Any, mode: SyncMode, detach: bool
    ) -> EntityEvent:
        target = prop.mapper.class_
        if mode is SyncMode.UPDATE:
            # children currently linked through the foreign key
            owner_mapper = inspect(type(entity))
            conditions = [
                remote == getattr(entity, owner_mapper.get_property_by_column(local).key)
                for local, remote in prop.local_remote_pairs
            ]
            fillable = set(fillable_columns(target))
            changes = {k: v for k, v in dict(values).items() if k in fillable}
            if changes:
                stmt = (
                    sa_update(target)
                    .where(*conditions)
                    .values(**changes)
                    .execution_options(synchronize_session="fetch")
                )
                await self._session.execute(stmt)
            return EntityEvent.UPDATED

        rows = values if isinstance(values, list | tuple) else [values]
        collection = getattr(entity, prop.key)
        for row in rows:
            collection.append(fill(target(), dict(row)))
        return EntityEvent.CREATED

    async def _sync_has_one(
        self, entity: Any, prop: RelationshipProperty[Any], values: Any, mode: SyncMode, detach: bool
    ) -> EntityEvent | None:
        target = prop.mapper.class_
        current = getattr(entity, prop.key)
        if mode is SyncMode.UPDATE:
            if current is None:
                logger.debug("No %s to update on %r", prop.key, entity)
                return None
            fill(current, dict(values))
            return EntityEvent.UPDATED
        setattr(entity, prop.key, fill(target(), dict(values)))
        return EntityEvent.CREATED

    async def _sync_belongs_to(
        self, entity: Any, prop: RelationshipProperty[Any], values: Any, mode: SyncMode, detach: bool
    ) -> EntityEvent | None:
        """Attach the owner row named by its primary key, or create one and point the entity at it."""
        target = prop.mapper.class_
        values = dict(values)
        if mode is SyncMode.UPDATE:
            current = getattr(entity, prop.key)
            if current is None:
                logger.debug("No %s to update on %r", prop.key, entity)
                return None
            fill(current, values)
            return EntityEvent.UPDATED

        pk_name = primary_key_name(target)
        if values.get(pk_name) is not None:
            existing = await self._session.get(target, values[pk_name])
            if existing is not None:
                fill(existing, values)
                setattr(entity, prop.key, existing)
                return EntityEvent.UPDATED
        owner = fill(target(), values)
        if values.get(pk_name) is not None:
            setattr(owner, pk_name, values[pk_name])
        setattr(entity, prop.key, owner)
        return EntityEvent.CREATED
