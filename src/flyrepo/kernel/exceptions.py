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
"""Unified exception hierarchy for flyrepo.

All repository errors inherit from FlyRepoException so callers can catch
the whole family in one place, or target a specific subclass.

Categories:
- RepositoryException: problems with a repository operation or its model
- InfrastructureException: serialization and collaborator wiring failures
"""

from __future__ import annotations

from typing import Any

# =============================================================================
# Base Exception
# =============================================================================


class FlyRepoException(Exception):
    """Base exception for all flyrepo errors.

    Args:
        message: Human-readable error description.
        code: Machine-readable error code (e.g. "REPOSITORY_404").
        context: Arbitrary key-value pairs for error context and debugging.
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        context: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.context: dict = context if context is not None else {}


# =============================================================================
# Repository Exceptions
# =============================================================================


class RepositoryException(FlyRepoException):
    """A repository operation could not be completed."""


class EntityNotFoundException(RepositoryException):
    """A find-or-fail lookup matched no row."""

    def __init__(self, model: type | str, id: Any) -> None:
        name = model if isinstance(model, str) else model.__name__
        super().__init__(
            f"Entity of type [{name}] with id [{id}] not found",
            code="ENTITY_NOT_FOUND",
            context={"model": name, "id": id},
        )
        self.model = name
        self.id = id


class UnresolvedModelClassException(RepositoryException):
    """The configured model does not resolve to a mapped entity class."""


class UnsupportedRelationKindException(RepositoryException):
    """A relation accessor has a kind the relation writer cannot persist."""


class CriteriaException(RepositoryException):
    """An object pushed as criteria does not implement the criteria contract."""


# =============================================================================
# Infrastructure Exceptions
# =============================================================================


class InfrastructureException(FlyRepoException):
    """Infrastructure failures: serialization, cache stores, wiring."""


class SerializationException(InfrastructureException):
    """A fingerprint input or the cache-key index could not be serialized."""


class ContainerResolutionException(InfrastructureException):
    """A required collaborator is missing from the repository context."""
