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
"""Stable fingerprints of accumulated query state for cache keys."""

from __future__ import annotations

import dataclasses
import hashlib
import json
from collections.abc import Mapping, Sequence
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.sql.expression import ClauseElement

from flyrepo.kernel.exceptions import SerializationException


def _qualified_name(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


class FingerprintEngine:
    """Hashes clause snapshots and call context into a cache-key suffix.

    The encoding is canonical JSON (sorted mapping keys, no whitespace)
    hashed with SHA-256. Sequence order is significant. Values that cannot
    be encoded deterministically, callables included, raise
    :class:`SerializationException` so that nothing is ever cached under a
    degraded key.
    """

    def fingerprint(
        self,
        repository_id: str,
        model_class: type | None,
        cache_driver: str | None,
        cache_lifetime: int | None,
        snapshot: Mapping[str, Any],
        call_args: Sequence[Any] = (),
    ) -> str:
        payload = {
            "args": list(call_args),
            "repository": repository_id,
            "model": _qualified_name(model_class) if model_class is not None else None,
            "driver": cache_driver,
            "lifetime": cache_lifetime,
            "clauses": dict(snapshot),
        }
        try:
            encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=self._encode)
        except (TypeError, ValueError) as exc:
            raise SerializationException(
                f"Cannot fingerprint call for repository '{repository_id}': {exc}",
                code="FINGERPRINT",
                context={"repository_id": repository_id},
            ) from exc
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()

    def _encode(self, value: Any) -> Any:
        if isinstance(value, Enum):
            return {"enum": _qualified_name(type(value)), "value": value.value}
        if isinstance(value, type):
            return {"type": _qualified_name(value)}
        if dataclasses.is_dataclass(value):
            return {
                "dataclass": _qualified_name(type(value)),
                "fields": {f.name: getattr(value, f.name) for f in dataclasses.fields(value)},
            }
        if isinstance(value, datetime | date | time):
            return value.isoformat()
        if isinstance(value, Decimal | UUID):
            return str(value)
        if isinstance(value, set | frozenset):
            return sorted(value, key=repr)
        if hasattr(value, "__clause_element__"):
            value = value.__clause_element__()
        if isinstance(value, ClauseElement):
            compiled = value.compile()
            return {"sql": str(compiled), "params": compiled.params}
        if callable(value):
            raise SerializationException(
                f"Callable {value!r} cannot be part of a cache fingerprint",
                code="FINGERPRINT_CALLABLE",
            )
        raise SerializationException(
            f"Object of type {type(value).__name__} cannot be part of a cache fingerprint",
            code="FINGERPRINT_TYPE",
        )
