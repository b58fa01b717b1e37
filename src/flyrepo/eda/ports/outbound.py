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
"""Outbound port for lifecycle event dispatch."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

from flyrepo.eda.types import EntityEvent, RepositoryEvent

EventHandler = Callable[[RepositoryEvent], Awaitable[None]]


@runtime_checkable
class EventPublisher(Protocol):
    """Typed event bus keyed by (repository id, event kind).

    A subscription with ``repository_id=None`` receives the kind from every
    repository.
    """

    def subscribe(
        self,
        kind: EntityEvent,
        handler: EventHandler,
        repository_id: str | None = None,
    ) -> None: ...

    async def publish(self, event: RepositoryEvent) -> None: ...
