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
"""SQLAlchemy adapter: query handle, relation sync, transactions and the repository."""

from flyrepo.data.relational.sqlalchemy.entity import Base, SoftDeleteMixin, TimestampMixin
from flyrepo.data.relational.sqlalchemy.query import SqlAlchemyQuery
from flyrepo.data.relational.sqlalchemy.relations import (
    RelationDescriptor,
    RelationKind,
    RelationSyncEngine,
    SyncMode,
    extract_relations,
)
from flyrepo.data.relational.sqlalchemy.repository import Repository
from flyrepo.data.relational.sqlalchemy.transactional import (
    CommitHooks,
    Propagation,
    TransactionScope,
    after_commit,
    transaction,
    transactional,
)

__all__ = [
    "Base",
    "CommitHooks",
    "Propagation",
    "RelationDescriptor",
    "RelationKind",
    "RelationSyncEngine",
    "Repository",
    "SoftDeleteMixin",
    "SqlAlchemyQuery",
    "SyncMode",
    "TimestampMixin",
    "TransactionScope",
    "after_commit",
    "extract_relations",
    "transaction",
    "transactional",
]
