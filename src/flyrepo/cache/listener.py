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
"""Invalidate repository caches when entities change."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from flyrepo.cache.orchestrator import CacheOrchestrator
from flyrepo.eda.ports.outbound import EventPublisher
from flyrepo.eda.types import EntityEvent, RepositoryEvent

logger = logging.getLogger(__name__)

CLEAR_ACTIONS: dict[EntityEvent, str] = {
    EntityEvent.CREATED: "create",
    EntityEvent.UPDATED: "update",
    EntityEvent.DELETED: "delete",
}


class CacheInvalidationListener:
    """Clears a repository's cache after create/update/delete events.

    Only the actions named in *clear_on* trigger a clear. Events raised by
    a repository instance go through its :meth:`forget_cache`, which honours
    its own cache-clear switch. Events raised for related models (no
    repository instance) flush the tag of that repository id directly.
    """

    def __init__(self, orchestrator: CacheOrchestrator, clear_on: Iterable[str]) -> None:
        self._orchestrator = orchestrator
        self._clear_on = frozenset(clear_on)

    def register(self, bus: EventPublisher) -> None:
        for kind in CLEAR_ACTIONS:
            bus.subscribe(kind, self.on_entity_event)

    async def on_entity_event(self, event: RepositoryEvent) -> None:
        if CLEAR_ACTIONS.get(event.kind) not in self._clear_on:
            return

        repository = event.repository
        if repository is None:
            await self._orchestrator.invalidate(event.repository_id)
            return

        if repository.is_cache_clear_enabled():
            logger.debug("Clearing cache of '%s' after %s", event.repository_id, event.kind.value)
            await repository.forget_cache()
