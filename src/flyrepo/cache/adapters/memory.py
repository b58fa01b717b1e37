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
"""In-process cache stores."""

from __future__ import annotations

import time
from datetime import timedelta
from typing import Any


class InMemoryCache:
    """In-memory cache with optional TTL support.

    Has no tag support, so repositories fall back to the key index for
    invalidation when this store is selected.
    """

    def __init__(self) -> None:
        self._store: dict[str, tuple[Any, float | None]] = {}

    def __len__(self) -> int:
        return len(self._store)

    def _live(self, key: str) -> tuple[Any, float | None] | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and time.monotonic() > expires_at:
            del self._store[key]
            return None
        return entry

    async def get(self, key: str) -> Any | None:
        """Get a value by key. Returns None if missing or expired."""
        entry = self._live(key)
        return None if entry is None else entry[0]

    async def put(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        expires_at = None if ttl is None else time.monotonic() + ttl.total_seconds()
        self._store[key] = (value, expires_at)

    async def evict(self, key: str) -> bool:
        """Remove a key. Returns True if the key existed."""
        return self._store.pop(key, None) is not None

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    async def clear(self) -> None:
        self._store.clear()


class _InMemoryTaggedView:
    def __init__(self, cache: TaggedInMemoryCache, names: tuple[str, ...]) -> None:
        self._cache = cache
        self._names = names

    async def get(self, key: str) -> Any | None:
        return await self._cache.get(key)

    async def put(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        await self._cache.put(key, value, ttl=ttl)
        for name in self._names:
            self._cache._tags.setdefault(name, set()).add(key)

    async def evict(self, key: str) -> bool:
        return await self._cache.evict(key)

    async def flush(self) -> None:
        for name in self._names:
            for key in self._cache._tags.pop(name, set()):
                await self._cache.evict(key)


class TaggedInMemoryCache(InMemoryCache):
    """In-memory cache that also supports ``tags(...).flush()``."""

    def __init__(self) -> None:
        super().__init__()
        self._tags: dict[str, set[str]] = {}

    def tags(self, *names: str) -> _InMemoryTaggedView:
        return _InMemoryTaggedView(self, names)

    def tagged_keys(self, name: str) -> set[str]:
        return set(self._tags.get(name, ()))

    async def clear(self) -> None:
        await super().clear()
        self._tags.clear()
