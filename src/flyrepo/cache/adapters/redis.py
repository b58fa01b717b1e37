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
"""Redis-backed cache store with tag support."""

from __future__ import annotations

import json
import logging
import pickle
from datetime import timedelta
from typing import Any, cast

_logger = logging.getLogger(__name__)

_TAG_SET = "flyrepo:tag:{}:keys"


class RedisCacheAdapter:
    """Cache adapter that delegates to a ``redis.asyncio.Redis``-like client.

    Values are JSON-serialized by default. Repositories that cache ORM
    entities need ``serializer="pickle"``, since entities are not JSON
    compatible. Tags are kept as Redis sets of member keys.
    """

    def __init__(self, client: Any, serializer: str = "json") -> None:
        if serializer not in ("json", "pickle"):
            raise ValueError(f"Unsupported serializer '{serializer}' (expected 'json' or 'pickle')")
        self._client = client
        self._serializer = serializer

    def _dump(self, value: Any) -> bytes:
        if self._serializer == "pickle":
            return pickle.dumps(value)
        return json.dumps(value).encode()

    def _load(self, raw: bytes | str) -> Any:
        if self._serializer == "pickle":
            return pickle.loads(raw if isinstance(raw, bytes) else raw.encode())
        return json.loads(raw)

    async def get(self, key: str) -> Any | None:
        """Retrieve and deserialize a cached value."""
        raw = await self._client.get(key)
        if raw is None:
            return None
        try:
            return self._load(raw)
        except (json.JSONDecodeError, pickle.UnpicklingError, TypeError):
            _logger.warning("Failed to deserialize cached value for key '%s'", key)
            return None

    async def put(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        ex = int(ttl.total_seconds()) if ttl is not None else None
        await self._client.set(key, self._dump(value), ex=ex)

    async def evict(self, key: str) -> bool:
        """Remove a key. Returns True if the key existed."""
        count = await self._client.delete(key)
        return cast(bool, count > 0)

    async def exists(self, key: str) -> bool:
        count = await self._client.exists(key)
        return cast(bool, count > 0)

    async def clear(self) -> None:
        """Flush the entire database."""
        await self._client.flushdb()

    def tags(self, *names: str) -> _RedisTaggedView:
        return _RedisTaggedView(self, names)

    async def start(self) -> None:
        """Validate connectivity by pinging Redis."""
        await self._client.ping()

    async def stop(self) -> None:
        await self._client.aclose()


class _RedisTaggedView:
    def __init__(self, adapter: RedisCacheAdapter, names: tuple[str, ...]) -> None:
        self._adapter = adapter
        self._names = names

    async def get(self, key: str) -> Any | None:
        return await self._adapter.get(key)

    async def put(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        await self._adapter.put(key, value, ttl=ttl)
        for name in self._names:
            await self._adapter._client.sadd(_TAG_SET.format(name), key)

    async def evict(self, key: str) -> bool:
        return await self._adapter.evict(key)

    async def flush(self) -> None:
        client = self._adapter._client
        for name in self._names:
            tag_set = _TAG_SET.format(name)
            members = await client.smembers(tag_set)
            keys = [m.decode() if isinstance(m, bytes) else m for m in members]
            if keys:
                await client.delete(*keys)
            await client.delete(tag_set)
