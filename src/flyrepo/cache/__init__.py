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
"""flyrepo cache: fingerprinted read-through caching with tag or index invalidation."""

from flyrepo.cache.adapters.memory import InMemoryCache, TaggedInMemoryCache
from flyrepo.cache.adapters.redis import RedisCacheAdapter
from flyrepo.cache.fingerprint import FingerprintEngine
from flyrepo.cache.key_index import CacheKeyIndex
from flyrepo.cache.listener import CacheInvalidationListener
from flyrepo.cache.orchestrator import FOREVER, CacheOrchestrator
from flyrepo.cache.ports.outbound import CacheAdapter, TaggableCacheAdapter, TaggedCache

__all__ = [
    "FOREVER",
    "CacheAdapter",
    "CacheInvalidationListener",
    "CacheKeyIndex",
    "CacheOrchestrator",
    "FingerprintEngine",
    "InMemoryCache",
    "RedisCacheAdapter",
    "TaggableCacheAdapter",
    "TaggedCache",
    "TaggedInMemoryCache",
]
