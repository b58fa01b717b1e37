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
"""Declarative base, mixins and model introspection helpers.

Models describe their repository behaviour with optional class attributes:

- ``__fillable__``: attribute names accepted by mass assignment; defaults
  to every mapped column except the primary key.
- ``__repository_id__``: identifier used in event names and cache tags
  when the model is written as a relation of another model.
- ``__morph_name__``: value stored in ``{relation}_type`` morph columns;
  defaults to the class name.
- ``__global_scopes__``: ``{name: fn(model) -> criterion}`` added to every
  query unless global scopes are removed.
- ``__searchable__``: field names (or ``{field: condition}``) used by
  :class:`~flyrepo.data.criteria.ParamsCriteria`.
- ``scope_<name>(cls, query, *args)``: classmethods usable as named scopes.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import DateTime, inspect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for flyrepo models."""


class SoftDeleteMixin:
    """Adds a ``deleted_at`` timestamp.

    Queries hide rows with a ``deleted_at`` unless ``with_trashed()`` is
    used, and repository deletes only stamp the column.
    """

    __abstract__ = True

    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None, nullable=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class TimestampMixin:
    """Adds ``created_at``/``updated_at``, used by ``first_latest``/``first_oldest``."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


def is_soft_deletable(model: type) -> bool:
    return isinstance(model, type) and issubclass(model, SoftDeleteMixin)


def primary_key_name(model: type) -> str:
    """Attribute name of the (first) primary key column."""
    mapper = inspect(model)
    return mapper.get_property_by_column(mapper.primary_key[0]).key


def table_name(model: type) -> str:
    return inspect(model).local_table.name


def fillable_columns(model: type) -> list[str]:
    declared = getattr(model, "__fillable__", None)
    if declared is not None:
        return list(declared)
    mapper = inspect(model)
    primary = {mapper.get_property_by_column(column).key for column in mapper.primary_key}
    return [attr.key for attr in mapper.column_attrs if attr.key not in primary]


def morph_name(model: type) -> str:
    return getattr(model, "__morph_name__", None) or model.__name__


def repository_id_of(model: type) -> str | None:
    return getattr(model, "__repository_id__", None)


def fill(entity: Any, attributes: dict[str, Any]) -> Any:
    """Assign the fillable subset of *attributes* to *entity*; other keys are ignored."""
    fillable = set(fillable_columns(type(entity)))
    for key, value in attributes.items():
        if key in fillable:
            setattr(entity, key, value)
    return entity
