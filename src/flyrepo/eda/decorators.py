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
"""Decorator for declarative lifecycle event listeners."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any, TypeVar

from flyrepo.eda.ports.outbound import EventPublisher
from flyrepo.eda.types import EntityEvent

F = TypeVar("F", bound=Callable[..., Any])


def entity_listener(
    bus: EventPublisher,
    kinds: Iterable[EntityEvent],
    repository_id: str | None = None,
) -> Callable[[F], F]:
    """Register a coroutine function as a listener for lifecycle events.

    Args:
        bus: Event bus instance.
        kinds: Event kinds to subscribe to.
        repository_id: Restrict to one repository; ``None`` listens to all.
    """

    def decorator(func: F) -> F:
        for kind in kinds:
            bus.subscribe(kind, func, repository_id=repository_id)
        return func

    return decorator
