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
"""Tests for SqlAlchemyQuery against an in-memory SQLite database."""

from datetime import UTC, date, datetime

import pytest
from sqlalchemy import JSON, DateTime, ForeignKey, String
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from flyrepo.data.page import Page, Slice
from flyrepo.data.relational.sqlalchemy.entity import SoftDeleteMixin
from flyrepo.data.relational.sqlalchemy.query import SqlAlchemyQuery
from flyrepo.kernel.exceptions import RepositoryException


class _QueryBase(DeclarativeBase):
    pass


class Writer(_QueryBase):
    __tablename__ = "query_writers"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(50))
    age: Mapped[int] = mapped_column(default=0)
    born_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    tags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    articles: Mapped[list["Article"]] = relationship(back_populates="writer")

    @classmethod
    def scope_adults(cls, query):
        return query.where("age", ">=", 18)


class Article(SoftDeleteMixin, _QueryBase):
    __tablename__ = "query_articles"

    id: Mapped[int] = mapped_column(primary_key=True)
    writer_id: Mapped[int] = mapped_column(ForeignKey("query_writers.id"))
    title: Mapped[str] = mapped_column(String(100))
    views: Mapped[int] = mapped_column(default=0)
    writer: Mapped[Writer] = relationship(back_populates="articles")


@pytest.fixture
async def session():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(_QueryBase.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False)

    async with factory() as seed:
        ada = Writer(name="ada", age=36, born_at=datetime(1815, 12, 10), tags=["math", "poetry"])
        bob = Writer(name="bob", age=17, tags=["chess"])
        cy = Writer(name="cy", age=52, tags=[])
        seed.add_all([ada, bob, cy])
        await seed.flush()
        seed.add_all(
            [
                Article(writer_id=ada.id, title="Notes", views=10),
                Article(writer_id=ada.id, title="Engines", views=30),
                Article(writer_id=bob.id, title="Openings", views=5, deleted_at=datetime.now(UTC)),
            ]
        )
        await seed.commit()

    async with factory() as session:
        yield session
    await engine.dispose()


def names(rows) -> list[str]:
    return sorted(row.name for row in rows)


class TestFilters:
    @pytest.mark.asyncio
    async def test_two_argument_where_compares_equal(self, session):
        rows = await SqlAlchemyQuery(Writer, session).where("name", "ada").get()
        assert names(rows) == ["ada"]

    @pytest.mark.asyncio
    async def test_or_where_binds_looser_than_and(self, session):
        query = SqlAlchemyQuery(Writer, session).where("age", ">", 40).or_where("name", "bob")
        assert names(await query.get()) == ["bob", "cy"]

    @pytest.mark.asyncio
    async def test_nested_group(self, session):
        query = (
            SqlAlchemyQuery(Writer, session)
            .where("age", ">", 18)
            .where(lambda q: q.where("name", "ada").or_where("name", "bob"))
        )
        assert names(await query.get()) == ["ada"]

    @pytest.mark.asyncio
    async def test_none_compares_with_is_null(self, session):
        assert names(await SqlAlchemyQuery(Writer, session).where("born_at", None).get()) == ["bob", "cy"]
        assert names(await SqlAlchemyQuery(Writer, session).where("born_at", "!=", None).get()) == ["ada"]

    @pytest.mark.asyncio
    async def test_unsupported_operator(self, session):
        with pytest.raises(RepositoryException) as exc_info:
            SqlAlchemyQuery(Writer, session).where("age", "~", 1)
        assert exc_info.value.code == "QUERY_OPERATOR"

    @pytest.mark.asyncio
    async def test_in_and_between(self, session):
        assert names(await SqlAlchemyQuery(Writer, session).where_in("name", ["ada", "cy"]).get()) == ["ada", "cy"]
        assert names(await SqlAlchemyQuery(Writer, session).where_not_in("name", ["ada"]).get()) == ["bob", "cy"]
        assert names(await SqlAlchemyQuery(Writer, session).where_between("age", [30, 40]).get()) == ["ada"]
        assert names(await SqlAlchemyQuery(Writer, session).where_not_between("age", [30, 40]).get()) == ["bob", "cy"]

    @pytest.mark.asyncio
    async def test_raw_with_positional_bindings(self, session):
        rows = await SqlAlchemyQuery(Writer, session).where_raw("age > ? AND name != ?", [30, "cy"]).get()
        assert names(rows) == ["ada"]

    @pytest.mark.asyncio
    async def test_json_length(self, session):
        rows = await SqlAlchemyQuery(Writer, session).where_json_length("tags", ">", 0).get()
        assert names(rows) == ["ada", "bob"]

    @pytest.mark.asyncio
    async def test_date_parts(self, session):
        assert names(await SqlAlchemyQuery(Writer, session).where_date("born_at", date(1815, 12, 10)).get()) == ["ada"]
        assert names(await SqlAlchemyQuery(Writer, session).where_month("born_at", 12).get()) == ["ada"]
        assert names(await SqlAlchemyQuery(Writer, session).where_day("born_at", ">", 10).get()) == []

    @pytest.mark.asyncio
    async def test_when_runs_callback_for_truthy_values(self, session):
        query = SqlAlchemyQuery(Writer, session).when("bob", lambda q, value: q.where("name", value))
        assert names(await query.get()) == ["bob"]
        query = SqlAlchemyQuery(Writer, session).when("", lambda q, value: q.where("name", value))
        assert len(await query.get()) == 3


class TestRelations:
    @pytest.mark.asyncio
    async def test_has_ignores_soft_deleted_children(self, session):
        assert names(await SqlAlchemyQuery(Writer, session).has("articles").get()) == ["ada"]
        assert names(await SqlAlchemyQuery(Writer, session).doesnt_have("articles").get()) == ["bob", "cy"]

    @pytest.mark.asyncio
    async def test_has_with_count(self, session):
        assert names(await SqlAlchemyQuery(Writer, session).has("articles", ">=", 2).get()) == ["ada"]
        assert names(await SqlAlchemyQuery(Writer, session).has("articles", ">", 2).get()) == []

    @pytest.mark.asyncio
    async def test_where_has_constraint(self, session):
        query = SqlAlchemyQuery(Writer, session).where_has("articles", lambda q: q.where("views", ">", 20))
        assert names(await query.get()) == ["ada"]

    @pytest.mark.asyncio
    async def test_unknown_relation(self, session):
        with pytest.raises(RepositoryException) as exc_info:
            SqlAlchemyQuery(Writer, session).has("comments")
        assert exc_info.value.code == "QUERY_RELATION"

    @pytest.mark.asyncio
    async def test_with_count_sets_attribute(self, session):
        rows = await SqlAlchemyQuery(Writer, session).with_count(["articles"]).order_by("name").get()
        assert [row.articles_count for row in rows] == [2, 0, 0]

    @pytest.mark.asyncio
    async def test_with_sum_alias(self, session):
        rows = await SqlAlchemyQuery(Writer, session).with_sum("articles", "views").where("name", "ada").get()
        assert rows[0].articles_sum_views == 40

    @pytest.mark.asyncio
    async def test_with_eager_loads_without_trashed(self, session):
        rows = await SqlAlchemyQuery(Writer, session).with_([("articles", None)]).order_by("name").get()
        assert [len(row.articles) for row in rows] == [2, 0, 0]

    @pytest.mark.asyncio
    async def test_join_on_table_columns(self, session):
        query = (
            SqlAlchemyQuery(Writer, session)
            .join("query_articles", "query_writers.id", "=", "query_articles.writer_id")
            .where("query_articles.views", ">", 20)
        )
        assert names(await query.get()) == ["ada"]


class TestScopesAndShaping:
    @pytest.mark.asyncio
    async def test_named_scope(self, session):
        query = SqlAlchemyQuery(Writer, session)
        assert query.has_named_scope("adults")
        assert not query.has_named_scope("missing")
        assert names(await query.call_named_scope("adults", []).get()) == ["ada", "cy"]

    @pytest.mark.asyncio
    async def test_missing_named_scope(self, session):
        with pytest.raises(RepositoryException) as exc_info:
            SqlAlchemyQuery(Writer, session).call_named_scope("missing", [])
        assert exc_info.value.code == "QUERY_SCOPE"

    @pytest.mark.asyncio
    async def test_with_trashed(self, session):
        assert await SqlAlchemyQuery(Article, session).count() == 2
        assert await SqlAlchemyQuery(Article, session).with_trashed().count() == 3

    @pytest.mark.asyncio
    async def test_group_by_having(self, session):
        rows = await SqlAlchemyQuery(Writer, session).group_by("name").having("age", ">", 20).get()
        assert names(rows) == ["ada", "cy"]

    @pytest.mark.asyncio
    async def test_order_offset_limit(self, session):
        rows = await SqlAlchemyQuery(Writer, session).order_by("age", "desc").offset(1).limit(1).get()
        assert [row.name for row in rows] == ["ada"]


class TestTerminals:
    @pytest.mark.asyncio
    async def test_aggregates(self, session):
        assert await SqlAlchemyQuery(Writer, session).count() == 3
        assert await SqlAlchemyQuery(Writer, session).min("age") == 17
        assert await SqlAlchemyQuery(Writer, session).max("age") == 52
        assert await SqlAlchemyQuery(Writer, session).sum("age") == 105
        assert await SqlAlchemyQuery(Writer, session).avg("age") == pytest.approx(35.0)

    @pytest.mark.asyncio
    async def test_exists_and_first(self, session):
        assert await SqlAlchemyQuery(Writer, session).where("name", "ada").exists() is True
        assert await SqlAlchemyQuery(Writer, session).where("name", "zed").exists() is False
        assert await SqlAlchemyQuery(Writer, session).where("name", "zed").first() is None

    @pytest.mark.asyncio
    async def test_find_single_and_many(self, session):
        ada = await SqlAlchemyQuery(Writer, session).where("name", "ada").first()
        assert (await SqlAlchemyQuery(Writer, session).find(ada.id)).name == "ada"
        rows = await SqlAlchemyQuery(Writer, session).find([ada.id, 999])
        assert names(rows) == ["ada"]

    @pytest.mark.asyncio
    async def test_paginate(self, session):
        page = await SqlAlchemyQuery(Writer, session).order_by("name").paginate(1, 2)
        assert isinstance(page, Page)
        assert [row.name for row in page.items] == ["ada", "bob"]
        assert page.total == 3

    @pytest.mark.asyncio
    async def test_simple_paginate(self, session):
        first = await SqlAlchemyQuery(Writer, session).order_by("name").simple_paginate(1, 2)
        last = await SqlAlchemyQuery(Writer, session).order_by("name").simple_paginate(2, 2)
        assert isinstance(first, Slice)
        assert first.has_next is True
        assert [row.name for row in last.items] == ["cy"]
        assert last.has_next is False

    @pytest.mark.asyncio
    async def test_bulk_insert_and_update(self, session):
        assert await SqlAlchemyQuery(Writer, session).insert([{"name": "dee", "age": 40}]) is True
        assert await SqlAlchemyQuery(Writer, session).count() == 4
        assert await SqlAlchemyQuery(Writer, session).where("age", "<", 18).update({"age": 18}) == 1
        assert await SqlAlchemyQuery(Writer, session).min("age") == 18

    @pytest.mark.asyncio
    async def test_delete_soft_deletes(self, session):
        assert await SqlAlchemyQuery(Article, session).where("title", "Notes").delete() == 1
        assert await SqlAlchemyQuery(Article, session).count() == 1
        assert await SqlAlchemyQuery(Article, session).with_trashed().count() == 3

    @pytest.mark.asyncio
    async def test_terminal_without_session(self):
        with pytest.raises(RepositoryException) as exc_info:
            await SqlAlchemyQuery(Writer).get()
        assert exc_info.value.code == "QUERY_SESSION"
