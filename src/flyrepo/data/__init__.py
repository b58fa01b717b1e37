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
"""flyrepo data: clause recording, query assembly, criteria and repositories.

Framework-agnostic types (clause store, assembler, criteria, pages, the
query handle port) live here; the SQLAlchemy adapter provides the query
handle and the repository, re-exported for convenience.
"""

# SQLAlchemy adapter re-exports (imported first: the context module needs the query handle)
from flyrepo.data.relational.sqlalchemy import (
    Base,
    Repository,
    SoftDeleteMixin,
    SqlAlchemyQuery,
    TimestampMixin,
    transaction,
    transactional,
)

# Framework-agnostic exports
from flyrepo.data.assembler import QueryAssembler
from flyrepo.data.clauses import ClauseStore
from flyrepo.data.context import CacheProperties, RepositoryContext, RepositoryProperties
from flyrepo.data.criteria import (
    Criteria,
    GroupByCriteria,
    LimitCriteria,
    OffsetCriteria,
    OffsetLimitCriteria,
    OrderByCriteria,
    OrWhereCriteria,
    ParamsCriteria,
    SearchCriteria,
    WhereBetweenCriteria,
    WhereCriteria,
    WhereInCriteria,
)
from flyrepo.data.page import Page, Slice
from flyrepo.data.ports.query import QueryHandle

__all__ = [
    # Framework-agnostic
    "CacheProperties",
    "ClauseStore",
    "Criteria",
    "GroupByCriteria",
    "LimitCriteria",
    "OffsetCriteria",
    "OffsetLimitCriteria",
    "OrWhereCriteria",
    "OrderByCriteria",
    "Page",
    "ParamsCriteria",
    "QueryAssembler",
    "QueryHandle",
    "RepositoryContext",
    "RepositoryProperties",
    "SearchCriteria",
    "Slice",
    "WhereBetweenCriteria",
    "WhereCriteria",
    "WhereInCriteria",
    # SQLAlchemy adapter
    "Base",
    "Repository",
    "SoftDeleteMixin",
    "SqlAlchemyQuery",
    "TimestampMixin",
    "transaction",
    "transactional",
]
