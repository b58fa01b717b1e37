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
"""Serve repository reads from cache or execute and store them."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from datetime import timedelta
from typing import Any, TypeVar

from flyrepo.cache.fingerprint import FingerprintEngine
from flyrepo.cache.key_index import CacheKeyIndex
from flyrepo.cache.ports.outbound import CacheAdapter, TaggableCacheAdapter
from flyrepo.kernel.exceptions import ContainerResolutionException, SerializationException

logger = logging.getLogger(__name__)

R = TypeVar("R")

FOREVER = -1


class CacheOrchestrator:
    """Decides per call whether to read through the cache.

    Stores are looked up by driver name. Tag-aware stores group every key
    under the repository id; other stores get their keys recorded in the
    :class:`CacheKeyIndex` so they can be swept later.

    Cache failures are fail-open: a store error is logged and the producer
    runs directly. A ``None`` result is never cached.
    """

    def __init__(
        self,
        caches: Mapping[str, CacheAdapter],
        key_index: CacheKeyIndex,
        default_driver: str = "memory",
        fingerprints: FingerprintEngine | None = None,
    ) -> None:
        self._caches = dict(caches)
        self._key_index = key_index
        self._default_driver = default_driver
        self._fingerprints = fingerprints or FingerprintEngine()

    @property
    def key_index(self) -> CacheKeyIndex:
        return self._key_index

    @property
    def fingerprints(self) -> FingerprintEngine:
        return self._fingerprints

    def store(self, driver: str | None = None) -> CacheAdapter:
        name = driver or self._default_driver
        try:
            return self._caches[name]
        except KeyError:
            raise ContainerResolutionException(
                f"No cache store registered for driver '{name}'",
                code="CACHE_DRIVER",
                context={"driver": name, "available": sorted(self._caches)},
            ) from None

    @staticmethod
    def ttl_for(lifetime: int) -> timedelta | None:
        return None if lifetime == FOREVER else timedelta(seconds=lifetime)

    async def execute(
        self,
        *,
        repository_id: str,
        repository_class: str,
        method: str,
        args: Sequence[Any],
        lifetime: int | None,
        driver: str | None,
        model_class: type | None,
        snapshot: Mapping[str, Any],
        producer: Callable[[], Awaitable[R]],
    ) -> R:
        """Return the cached result of *method* or run *producer* and cache it.

        Args:
            repository_id: Tag grouping this repository's entries.
            repository_class: Prefix of the cache key.
            method: Name of the terminal operation.
            args: Positional call arguments, part of the fingerprint.
            lifetime: Seconds to keep the result, ``-1`` for forever,
                ``None`` or ``0`` to bypass the cache.
            driver: Cache store name, ``None`` for the default.
            model_class: Repository model, part of the fingerprint.
            snapshot: Clause store snapshot taken before assembly.
            producer: Runs the query.
        """
        if not lifetime:
            return await producer()

        try:
            fingerprint = self._fingerprints.fingerprint(
                repository_id, model_class, driver or self._default_driver, lifetime, snapshot, args
            )
        except SerializationException as exc:
            logger.warning("Not caching %s@%s: %s", repository_class, method, exc)
            return await producer()

        key = f"{repository_class}@{method}.{fingerprint}"
        try:
            store = self.store(driver)
            if isinstance(store, TaggableCacheAdapter):
                target: Any = store.tags(repository_id)
            else:
                self._key_index.register(repository_class, method, fingerprint)
                target = store
            cached = await target.get(key)
        except Exception:
            logger.warning("Cache read failed for '%s', executing uncached", key, exc_info=True)
            return await producer()

        if cached is not None:
            logger.debug("Cache hit for '%s'", key)
            return cached  # type: ignore[no-any-return]

        logger.debug("Cache miss for '%s'", key)
        result = await producer()
        if result is not None:
            try:
                await target.put(key, result, ttl=self.ttl_for(lifetime))
            except Exception:
                logger.warning("Cache write failed for '%s'", key, exc_info=True)
        return result

    async def invalidate(self, repository_id: str, repository_class: str | None = None) -> None:
        """Flush the repository's tag everywhere and sweep its indexed keys.

        Without *repository_class* only tag-aware stores are flushed.
        """
        untagged: list[CacheAdapter] = []
        for name, store in self._caches.items():
            if isinstance(store, TaggableCacheAdapter):
                try:
                    await store.tags(repository_id).flush()
                except Exception:
                    logger.warning("Tag flush failed for '%s' on store '%s'", repository_id, name, exc_info=True)
            else:
                untagged.append(store)

        if repository_class is None:
            return

        try:
            keys = self._key_index.sweep(repository_class)
        except SerializationException:
            logger.warning("Cache key index sweep failed for '%s'", repository_class, exc_info=True)
            return

        for key in keys:
            for store in untagged:
                try:
                    await store.evict(key)
                except Exception:
                    logger.warning("Evict failed for '%s'", key, exc_info=True)
        logger.debug("Swept %d cache keys for '%s'", len(keys), repository_class)
