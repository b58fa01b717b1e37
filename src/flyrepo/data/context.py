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
"""Collaborators and settings a repository is constructed with."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from flyrepo.cache.key_index import CacheKeyIndex
from flyrepo.cache.listener import CacheInvalidationListener
from flyrepo.cache.orchestrator import CacheOrchestrator
from flyrepo.cache.ports.outbound import CacheAdapter
from flyrepo.core.config import Config, config_properties
from flyrepo.data.ports.query import QueryHandle
from flyrepo.data.relational.sqlalchemy.query import SqlAlchemyQuery
from flyrepo.eda.ports.outbound import EventPublisher
from flyrepo.kernel.exceptions import ContainerResolutionException

QueryFactory = Callable[[type, AsyncSession | None], QueryHandle]


@config_properties(prefix="flyrepo.repository.cache")
class CacheProperties(BaseModel):
    """Read-through cache settings shared by every repository of a context.

    ``lifetime`` is in seconds; ``-1`` caches forever and ``None`` or ``0``
    disables caching.
    """

    enabled: bool = True
    lifetime: int | None = Field(default=None, ge=-1)
    driver: str = "memory"
    clear_on: list[Literal["create", "update", "delete"]] = Field(
        default_factory=lambda: ["create", "update", "delete"]
    )
    keys_file: str = ".flyrepo-cache-keys.json"


@config_properties(prefix="flyrepo.repository")
@dataclass
class RepositoryProperties:
    """``models_module`` is where model classes are guessed from repository names."""

    models_module: str = "app.models"
    connection: str = "default"


@dataclass
class RepositoryContext:
    """Everything a repository needs, passed in explicitly.

    When cache stores are given, a :class:`CacheOrchestrator` is built for
    them, and with an event bus also present a
    :class:`CacheInvalidationListener` is subscribed to it.
    """

    session: AsyncSession | None = None
    caches: Mapping[str, CacheAdapter] = field(default_factory=dict)
    events: EventPublisher | None = None
    properties: RepositoryProperties = field(default_factory=RepositoryProperties)
    cache_properties: CacheProperties = field(default_factory=CacheProperties)
    query_factory: QueryFactory = SqlAlchemyQuery
    orchestrator: CacheOrchestrator | None = None

    def __post_init__(self) -> None:
        if self.orchestrator is None and self.caches:
            self.orchestrator = CacheOrchestrator(
                self.caches,
                CacheKeyIndex(self.cache_properties.keys_file),
                default_driver=self.cache_properties.driver,
            )
        if self.orchestrator is not None and self.events is not None:
            CacheInvalidationListener(self.orchestrator, self.cache_properties.clear_on).register(self.events)

    @classmethod
    def from_config(
        cls,
        config: Config,
        *,
        session: AsyncSession | None = None,
        caches: Mapping[str, CacheAdapter] | None = None,
        events: EventPublisher | None = None,
        query_factory: QueryFactory = SqlAlchemyQuery,
    ) -> RepositoryContext:
        return cls(
            session=session,
            caches=caches or {},
            events=events,
            properties=config.bind(RepositoryProperties),
            cache_properties=config.bind(CacheProperties),
            query_factory=query_factory,
        )

    def resolve(self, name: str) -> Any:
        """Return the collaborator called *name*.

        Raises:
            ContainerResolutionException: it is missing or was never configured.
        """
        value = getattr(self, name, None)
        if value is None:
            raise ContainerResolutionException(
                f"Repository context has no '{name}' configured",
                code="CONTEXT_RESOLUTION",
                context={"name": name},
            )
        return value
