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
"""Tests for the flyrepo exception hierarchy."""

from flyrepo.kernel.exceptions import (
    ContainerResolutionException,
    CriteriaException,
    EntityNotFoundException,
    FlyRepoException,
    InfrastructureException,
    RepositoryException,
    SerializationException,
    UnresolvedModelClassException,
    UnsupportedRelationKindException,
)


class TestFlyRepoException:
    def test_basic_creation(self):
        exc = FlyRepoException("something went wrong")
        assert str(exc) == "something went wrong"
        assert exc.code is None
        assert exc.context == {}

    def test_with_code_and_context(self):
        exc = FlyRepoException("bad driver", code="CACHE_DRIVER", context={"driver": "file"})
        assert exc.code == "CACHE_DRIVER"
        assert exc.context["driver"] == "file"

    def test_context_defaults_to_empty_dict(self):
        exc = FlyRepoException("test")
        exc.context["key"] = "value"
        exc2 = FlyRepoException("test2")
        assert exc2.context == {}


class TestExceptionHierarchy:
    def test_repository_family(self):
        for cls in (
            EntityNotFoundException,
            UnresolvedModelClassException,
            UnsupportedRelationKindException,
            CriteriaException,
        ):
            assert issubclass(cls, RepositoryException)
        assert issubclass(RepositoryException, FlyRepoException)

    def test_infrastructure_family(self):
        assert issubclass(SerializationException, InfrastructureException)
        assert issubclass(ContainerResolutionException, InfrastructureException)
        assert issubclass(InfrastructureException, FlyRepoException)


class TestEntityNotFoundException:
    def test_message_names_model_and_id(self):
        class User:
            pass

        exc = EntityNotFoundException(User, 42)
        assert str(exc) == "Entity of type [User] with id [42] not found"
        assert exc.code == "ENTITY_NOT_FOUND"
        assert exc.model == "User"
        assert exc.id == 42

    def test_accepts_model_name(self):
        exc = EntityNotFoundException("Post", [1, 2])
        assert exc.context == {"model": "Post", "id": [1, 2]}
