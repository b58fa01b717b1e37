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
"""Tests for the JSON cache key index."""

import json

import pytest

from flyrepo.cache.key_index import CacheKeyIndex
from flyrepo.kernel.exceptions import SerializationException


class TestCacheKeyIndex:
    def test_missing_file_reads_empty(self, tmp_path):
        assert CacheKeyIndex(tmp_path / "keys.json").read() == {}

    def test_register_returns_full_key(self, tmp_path):
        index = CacheKeyIndex(tmp_path / "keys.json")
        key = index.register("app.UserRepository", "find_all", "abc")
        assert key == "app.UserRepository@find_all.abc"
        assert json.loads((tmp_path / "keys.json").read_text()) == {"app.UserRepository": ["find_all.abc"]}

    def test_register_is_idempotent(self, tmp_path):
        index = CacheKeyIndex(tmp_path / "keys.json")
        index.register("Repo", "count", "1")
        index.register("Repo", "count", "1")
        index.register("Repo", "find", "2")
        assert index.read() == {"Repo": ["count.1", "find.2"]}

    def test_creates_parent_directories(self, tmp_path):
        index = CacheKeyIndex(tmp_path / "nested" / "dir" / "keys.json")
        index.register("Repo", "count", "1")
        assert index.path.is_file()

    def test_sweep_returns_keys_and_removes_entry(self, tmp_path):
        index = CacheKeyIndex(tmp_path / "keys.json")
        index.register("Users", "count", "1")
        index.register("Users", "find", "2")
        index.register("Posts", "count", "3")

        assert index.sweep("Users") == ["Users@count.1", "Users@find.2"]
        assert index.read() == {"Posts": ["count.3"]}
        assert index.sweep("Users") == []

    def test_keys_for(self, tmp_path):
        index = CacheKeyIndex(tmp_path / "keys.json")
        index.register("Users", "count", "1")
        assert index.keys_for("Users") == ["Users@count.1"]
        assert index.keys_for("Posts") == []

    def test_invalid_json_raises(self, tmp_path):
        path = tmp_path / "keys.json"
        path.write_text("{broken")
        with pytest.raises(SerializationException) as exc_info:
            CacheKeyIndex(path).read()
        assert exc_info.value.code == "CACHE_INDEX_DECODE"

    def test_non_object_document_raises(self, tmp_path):
        path = tmp_path / "keys.json"
        path.write_text("[1, 2]")
        with pytest.raises(SerializationException):
            CacheKeyIndex(path).register("Repo", "count", "1")
