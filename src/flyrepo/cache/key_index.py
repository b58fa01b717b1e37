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
"""JSON side index of cache keys for stores without tag support."""

from __future__ import annotations

import json
from pathlib import Path

from flyrepo.kernel.exceptions import SerializationException


class CacheKeyIndex:
    """Tracks which cache keys each repository class has written.

    The document maps a repository class name to ``method.fingerprint``
    entries, e.g. ``{"UserRepository": ["find_all.9f2c..."]}``. The full
    cache key is ``{repository_class}@{entry}``.

    Every registration and sweep is a read-modify-write of the whole file.
    There is no locking, so concurrent writers from several processes can
    lose entries.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> dict[str, list[str]]:
        if not self._path.is_file():
            return {}
        text = self._path.read_text(encoding="utf-8")
        if not text.strip():
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise SerializationException(
                f"Cache key index '{self._path}' is not valid JSON",
                code="CACHE_INDEX_DECODE",
                context={"path": str(self._path)},
            ) from exc
        if not isinstance(data, dict):
            raise SerializationException(
                f"Cache key index '{self._path}' must contain a JSON object",
                code="CACHE_INDEX_DECODE",
                context={"path": str(self._path)},
            )
        return {str(k): list(v) for k, v in data.items()}

    def write(self, data: dict[str, list[str]]) -> None:
        try:
            text = json.dumps(data, indent=2, sort_keys=True)
        except (TypeError, ValueError) as exc:
            raise SerializationException(
                "Cache key index could not be encoded",
                code="CACHE_INDEX_ENCODE",
                context={"path": str(self._path)},
            ) from exc
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(text, encoding="utf-8")

    def register(self, repository_class: str, method: str, fingerprint: str) -> str:
        """Record ``method.fingerprint`` for *repository_class*; returns the full key."""
        entry = f"{method}.{fingerprint}"
        data = self.read()
        entries = data.setdefault(repository_class, [])
        if entry not in entries:
            entries.append(entry)
            self.write(data)
        return f"{repository_class}@{entry}"

    def keys_for(self, repository_class: str) -> list[str]:
        return [f"{repository_class}@{entry}" for entry in self.read().get(repository_class, [])]

    def sweep(self, repository_class: str) -> list[str]:
        """Remove the index entry for *repository_class* and return its full keys."""
        data = self.read()
        entries = data.pop(repository_class, None)
        if entries is None:
            return []
        self.write(data)
        return [f"{repository_class}@{entry}" for entry in entries]
