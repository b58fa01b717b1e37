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
"""In-memory event bus for single-process applications and tests."""

from __future__ import annotations

import logging
from collections import defaultdict

from flyrepo.eda.ports.outbound import EventHandler
from flyrepo.eda.types import EntityEvent, ErrorStrategy, RepositoryEvent

logger = logging.getLogger(__name__)


class InMemoryEventBus:
    """Dispatches events to handlers registered per (repository id, kind).

    Handlers for a specific repository run before the catch-all handlers,
    each group in subscription order.
    """

    def __init__(self, error_strategy: ErrorStrategy = ErrorStrategy.FAIL_FAST) -> None:
        self._handlers: dict[tuple[str | None, EntityEvent], list[EventHandler]] = defaultdict(list)
        self._error_strategy = error_strategy

    def subscribe(
        self,
        kind: EntityEvent,
        handler: EventHandler,
        repository_id: str | None = None,
    ) -> None:
        self._handlers[(repository_id, kind)].append(handler)

    def handlers_for(self, repository_id: str, kind: EntityEvent) -> list[EventHandler]:
        return [*self._handlers.get((repository_id, kind), ()), *self._handlers.get((None, kind), ())]

    async def publish(self, event: RepositoryEvent) -> None:
        for handler in self.handlers_for(event.repository_id, event.kind):
            try:
                await handler(event)
            except Exception:
                if self._error_strategy is ErrorStrategy.FAIL_FAST:
                    raise
                logger.exception("Handler %r failed for event %s", handler, event.name)
