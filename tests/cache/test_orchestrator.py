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
"""Tests for CacheOrchestrator read-through and invalidation."""

from datetime import timedelta

import pytest

from flyrepo.cache.adapters.memory import InMemoryCache, TaggedInMemoryCache
from flyrepo.cache.key_index import CacheKeyIndex
from flyrepo.cache.orchestrator import FOREVER, CacheOrchestrator
from flyrepo.data.clauses import ClauseStore
from flyrepo.kernel.exceptions import ContainerResolutionException


class BrokenCache(InMemoryCache):
    async def get(self, key):
        raise ConnectionError("cache down")

    async def put(self, key, value, ttl=None):
        raise ConnectionError("cache down")


class Producer:
    def __init__(self, result):
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        return self.result


def _call(orchestrator, producer, *, store=None, lifetime=60, driver=None, method="find_all", args=()):
    return orchestrator.execute(
        repository_id="users",
        repository_class="app.UserRepository",
        method=method,
        args=args,
        lifetime=lifetime,
        driver=driver,
        model_class=None,
        snapshot=(store or ClauseStore()).snapshot(),
        producer=producer,
    )


@pytest.fixture
def index(tmp_path):
    return CacheKeyIndex(tmp_path / "keys.json")


class TestCacheOrchestratorExecute:
    @pytest.mark.asyncio
    async def test_second_call_is_served_from_cache(self, index):
        orchestrator = CacheOrchestrator({"memory": TaggedInMemoryCache()}, index)
        producer = Producer(["alice"])

        assert await _call(orchestrator, producer) == ["alice"]
        assert await _call(orchestrator, producer) == ["alice"]
        assert producer.calls == 1

    @pytest.mark.asyncio
    async def test_different_clauses_miss(self, index):
        orchestrator = CacheOrchestrator({"memory": TaggedInMemoryCache()}, index)
        producer = Producer(["alice"])

        await _call(orchestrator, producer, store=ClauseStore().where("name", "alice"))
        await _call(orchestrator, producer, store=ClauseStore().where("name", "bob"))
        assert producer.calls == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("lifetime", [None, 0])
    async def test_disabled_lifetime_bypasses_cache(self, index, lifetime):
        cache = TaggedInMemoryCache()
        orchestrator = CacheOrchestrator({"memory": cache}, index)
        producer = Producer(1)

        await _call(orchestrator, producer, lifetime=lifetime)
        await _call(orchestrator, producer, lifetime=lifetime)
        assert producer.calls == 2
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_none_results_are_not_cached(self, index):
        orchestrator = CacheOrchestrator({"memory": TaggedInMemoryCache()}, index)
        producer = Producer(None)

        await _call(orchestrator, producer, method="find_first")
        await _call(orchestrator, producer, method="find_first")
        assert producer.calls == 2

    @pytest.mark.asyncio
    async def test_tagged_store_groups_by_repository_id(self, index):
        cache = TaggedInMemoryCache()
        orchestrator = CacheOrchestrator({"memory": cache}, index)

        await _call(orchestrator, Producer([1]))

        [key] = cache.tagged_keys("users")
        assert key.startswith("app.UserRepository@find_all.")
        assert index.read() == {}

    @pytest.mark.asyncio
    async def test_untagged_store_registers_key_in_index(self, index):
        cache = InMemoryCache()
        orchestrator = CacheOrchestrator({"memory": cache}, index)

        await _call(orchestrator, Producer([1]))

        [key] = index.keys_for("app.UserRepository")
        assert await cache.get(key) == [1]

    def test_ttl_for(self):
        assert CacheOrchestrator.ttl_for(FOREVER) is None
        assert CacheOrchestrator.ttl_for(30) == timedelta(seconds=30)

    @pytest.mark.asyncio
    async def test_driver_selection(self, index):
        memory, other = TaggedInMemoryCache(), TaggedInMemoryCache()
        orchestrator = CacheOrchestrator({"memory": memory, "other": other}, index)

        await _call(orchestrator, Producer([1]), driver="other")
        assert len(other) == 1
        assert len(memory) == 0

    def test_unknown_driver(self, index):
        orchestrator = CacheOrchestrator({"memory": InMemoryCache()}, index)
        with pytest.raises(ContainerResolutionException) as exc_info:
            orchestrator.store("file")
        assert exc_info.value.context["available"] == ["memory"]

    @pytest.mark.asyncio
    async def test_store_errors_fail_open(self, index):
        orchestrator = CacheOrchestrator({"memory": BrokenCache()}, index)
        producer = Producer([1])

        assert await _call(orchestrator, producer) == [1]
        assert await _call(orchestrator, producer) == [1]
        assert producer.calls == 2

    @pytest.mark.asyncio
    async def test_unknown_driver_fails_open(self, index):
        orchestrator = CacheOrchestrator({"memory": InMemoryCache()}, index)
        producer = Producer([1])
        assert await _call(orchestrator, producer, driver="file") == [1]

    @pytest.mark.asyncio
    async def test_unserializable_state_runs_uncached(self, index):
        cache = TaggedInMemoryCache()
        orchestrator = CacheOrchestrator({"memory": cache}, index)
        producer = Producer([1])
        store = ClauseStore().where_has("posts", lambda q: q)

        await _call(orchestrator, producer, store=store)
        await _call(orchestrator, producer, store=store)
        assert producer.calls == 2
        assert len(cache) == 0


class TestCacheOrchestratorInvalidate:
    @pytest.mark.asyncio
    async def test_flushes_tag(self, index):
        cache = TaggedInMemoryCache()
        orchestrator = CacheOrchestrator({"memory": cache}, index)
        producer = Producer([1])

        await _call(orchestrator, producer)
        await orchestrator.invalidate("users")
        await _call(orchestrator, producer)
        assert producer.calls == 2

    @pytest.mark.asyncio
    async def test_sweeps_index_for_untagged_stores(self, index):
        cache = InMemoryCache()
        orchestrator = CacheOrchestrator({"memory": cache}, index)
        producer = Producer([1])

        await _call(orchestrator, producer)
        await _call(orchestrator, producer, method="count")
        assert len(cache) == 2

        await orchestrator.invalidate("users", "app.UserRepository")

        assert len(cache) == 0
        assert index.read() == {}

    @pytest.mark.asyncio
    async def test_without_class_leaves_untagged_stores(self, index):
        cache = InMemoryCache()
        orchestrator = CacheOrchestrator({"memory": cache}, index)

        await _call(orchestrator, Producer([1]))
        await orchestrator.invalidate("users")
        assert len(cache) == 1
