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
"""Lifecycle event kinds and the envelope published for them."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class EntityEvent(str, Enum):
    """Lifecycle events a repository publishes.

    The wire name of an event is ``{repository_id}.entity.{value}``.
    """

    CREATING = "creating"
    CREATED = "created"
    UPDATING = "updating"
    UPDATED = "updated"
    DELETING = "deleting"
    DELETED = "deleted"
    RESTORING = "restoring"
    RESTORED = "restored"
    CACHE_FLUSHED = "cache.flushed"

    def event_name(self, repository_id: str) -> str:
        return f"{repository_id}.entity.{self.value}"


@dataclass
class RepositoryEvent:
    """Envelope for a single lifecycle event.

    ``repository`` is the publishing repository (or ``None`` for events
    raised on behalf of a related model that has no repository instance);
    ``payload`` is usually the affected entity.
    """

    repository_id: str
    kind: EntityEvent
    payload: Any = None
    repository: Any = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def name(self) -> str:
        return self.kind.event_name(self.repository_id)


class ErrorStrategy(Enum):
    """What the bus does when a handler raises."""

    LOG_AND_CONTINUE = "LOG_AND_CONTINUE"
    FAIL_FAST = "FAIL_FAST"
