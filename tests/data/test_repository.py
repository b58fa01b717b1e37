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
"""End-to-end tests for the generic repository over SQLite."""

from __future__ import annotations

import json

import pytest
from sqlalchemy import ForeignKey, String
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from flyrepo.cache.adapters.memory import InMemoryCache, TaggedInMemoryCache
from flyrepo.core.config import Config
from flyrepo.data import (
    CacheProperties,
    OrderByCriteria,
    ParamsCriteria,
    RepositoryContext,
    RepositoryProperties,
    WhereCriteria,
)
from flyrepo.data.page import Page
from flyrepo.data.relational.sqlalchemy import Repository, SoftDeleteMixin, TimestampMixin
from flyrepo.eda.adapters.memory import InMemoryEventBus
from flyrepo.eda.types import EntityEvent
from flyrepo.kernel.exceptions import (
    ContainerResolutionException,
    EntityNotFoundException,
    RepositoryException,
    UnresolvedModelClassException,
)


class _RepoBase(DeclarativeBase):
    pass


class Account(TimestampMixin, _RepoBase):
    __tablename__ = "repo_accounts"
    __searchable__ = {"name": "like"}

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(50))
    age: Mapped[int] = mapped_column(default=0)
    notes: Mapped[list[Note]] = relationship(back_populates="account")

    @classmethod
    def scope_older_than(cls, query, age):
        return query.where("age", ">", age)


class Note(SoftDeleteMixin, _RepoBase):
    __tablename__ = "repo_notes"
    __repository_id__ = "notes"

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("repo_accounts.id"))
    body: Mapped[str] = mapped_column(String(200))
    account: Mapped[Account] = relationship(back_populates="notes")


class AccountRepository(Repository[Account, int]):
    pass


class NoteRepository(Repository[Note, int]):
    pass


@pytest.fixture
async def session():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(_RepoBase.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def bus():
    return InMemoryEventBus()


@pytest.fixture
def cache():
    return TaggedInMemoryCache()


@pytest.fixture
def context(session, bus, cache, tmp_path):
    return RepositoryContext(
        session=session,
        caches={"memory": cache},
        events=bus,
        properties=RepositoryProperties(models_module=__name__),
        cache_properties=CacheProperties(lifetime=60, keys_file=str(tmp_path / "keys.json")),
    )


@pytest.fixture
def accounts(context):
    return AccountRepository(context)


@pytest.fixture
def notes(context):
    return NoteRepository(context)


def _record(bus, *kinds):
    received: list[str] = []

    async def handler(event):
        received.append(event.kind.value)

    for kind in kinds:
        bus.subscribe(kind, handler)
    return received


async def _seed(accounts) -> list[Account]:
    return [
        await accounts.create({"name": name, "age": age})
        for name, age in (("ada", 24), ("bob", 25), ("cy", 26), ("dee", 28))
    ]


class TestModelResolution:
    def test_type_parameter(self, accounts):
        assert accounts.get_model() is Account
        assert accounts.get_table() == "repo_accounts"
        assert accounts.get_key_name() == "id"

    def test_guessed_from_repository_name(self, context):
        class AccountRepository(Repository):
            pass

        assert AccountRepository(context).get_model() is Account

    def test_missing_model(self, context):
        class GhostRepository(Repository):
            pass

        with pytest.raises(UnresolvedModelClassException) as exc_info:
            GhostRepository(context)
        assert exc_info.value.code == "MODEL_UNRESOLVED"

    def test_unmapped_model(self, context):
        with pytest.raises(UnresolvedModelClassException) as exc_info:
            Repository(context, model=dict)
        assert exc_info.value.code == "MODEL_UNMAPPED"

    def test_metadata_helpers(self, accounts, notes):
        assert set(accounts.get_fillable()) == {"name", "age", "created_at", "updated_at"}
        assert accounts.get_fields_searchable() == {"name": "like"}
        assert accounts.model(name="ada", id=7).id is None
        assert notes.get_repository_id() == "notes"
        assert accounts.get_repository_id().endswith("AccountRepository")
        assert accounts.set_repository_id("accounts").get_repository_id() == "accounts"


class TestReads:
    @pytest.mark.asyncio
    async def test_aggregates(self, accounts):
        await _seed(accounts)
        assert await accounts.count() == 4
        assert await accounts.min("age") == 24
        assert await accounts.max("age") == 28
        assert await accounts.sum("age") == 103
        assert await accounts.avg("age") == pytest.approx(25.75)

    @pytest.mark.asyncio
    async def test_group_by_having(self, accounts):
        await _seed(accounts)
        rows = await accounts.group_by("name").having("age", ">", 24).find_all()
        assert len(rows) == 3

    @pytest.mark.asyncio
    async def test_clauses_reset_after_each_call(self, accounts):
        await _seed(accounts)
        assert len(await accounts.find_where_in(["name", ["ada", "bob"]])) == 2
        assert len(await accounts.find_all()) == 4

    @pytest.mark.asyncio
    async def test_clauses_reset_after_failure(self, accounts):
        await _seed(accounts)
        with pytest.raises(RepositoryException):
            await accounts.where("age", "~", 1).find_all()
        assert len(await accounts.find_all()) == 4

    @pytest.mark.asyncio
    async def test_find_variants(self, accounts):
        ada, bob, *_ = await _seed(accounts)
        assert (await accounts.find(ada.id)).name == "ada"
        assert len(await accounts.find([ada.id, bob.id])) == 2
        assert (await accounts.find_by("name", "bob")).id == bob.id
        assert (await accounts.first_where(["age", ">", 25])).name in ("cy", "dee")
        assert len(await accounts.find_where(["age", ">=", 25])) == 3
        assert len(await accounts.find_where_not_in(["name", ["ada"]])) == 3

    @pytest.mark.asyncio
    async def test_find_or_fail(self, accounts):
        ada, *_ = await _seed(accounts)
        assert (await accounts.find_or_fail(ada.id)).name == "ada"
        with pytest.raises(EntityNotFoundException):
            await accounts.find_or_fail(999)
        with pytest.raises(EntityNotFoundException):
            await accounts.find_or_fail([ada.id, 999])

    @pytest.mark.asyncio
    async def test_first_latest_and_oldest_by_column(self, accounts):
        await _seed(accounts)
        assert (await accounts.first_latest("age")).name == "dee"
        assert (await accounts.first_oldest("age")).name == "ada"

    @pytest.mark.asyncio
    async def test_exists(self, accounts):
        await _seed(accounts)
        assert await accounts.where_exists_exist("name", "cy") is True
        assert await accounts.where("name", "zed").exists() is False

    @pytest.mark.asyncio
    async def test_named_scope(self, accounts):
        await _seed(accounts)
        rows = await accounts.scope("older_than", 25).find_all()
        assert sorted(row.name for row in rows) == ["cy", "dee"]

    @pytest.mark.asyncio
    async def test_paginate(self, accounts):
        await _seed(accounts)
        page = await accounts.order_by("name").paginate(1, 3)
        assert isinstance(page, Page)
        assert [row.name for row in page.items] == ["ada", "bob", "cy"]
        assert page.total == 4
        page = await accounts.order_by("name").simple_paginate(2, 3)
        assert [row.name for row in page.items] == ["dee"]


class TestCriteria:
    @pytest.mark.asyncio
    async def test_pushed_criteria_apply_once(self, accounts):
        await _seed(accounts)
        accounts.push_criteria(WhereCriteria("age", 25, ">"))
        assert len(accounts.get_criteria()) == 1
        assert len(await accounts.find_all()) == 2
        assert accounts.get_criteria() == []
        assert len(await accounts.find_all()) == 4

    @pytest.mark.asyncio
    async def test_pop_and_skip_criteria(self, accounts):
        await _seed(accounts)
        accounts.push_criteria(WhereCriteria("age", 25, ">")).push_criteria(OrderByCriteria("age"))
        accounts.pop_criteria(WhereCriteria)
        assert accounts.get_criteria() == [OrderByCriteria("age")]

        accounts.push_criteria(WhereCriteria("age", 25, ">")).skip_criteria()
        assert len(await accounts.find_all()) == 4

    @pytest.mark.asyncio
    async def test_get_by_criteria(self, accounts):
        await _seed(accounts)
        rows = await accounts.get_by_criteria(OrderByCriteria("age", "desc"))
        assert [row.name for row in rows] == ["dee", "cy", "bob", "ada"]

    @pytest.mark.asyncio
    async def test_params_criteria_uses_searchable_fields(self, accounts):
        await _seed(accounts)
        rows = await accounts.push_criteria(ParamsCriteria({"search": "d", "orderBy": "name"})).find_all()
        assert [row.name for row in rows] == ["ada", "dee"]


class TestWrites:
    @pytest.mark.asyncio
    async def test_create_events(self, accounts, bus):
        received = _record(bus, EntityEvent.CREATING, EntityEvent.CREATED)
        account = await accounts.create({"name": "ada", "age": 24, "id": 99, "unknown": True})
        assert account.id is not None
        assert received == ["creating", "created"]

    @pytest.mark.asyncio
    async def test_update_fires_only_when_changed(self, accounts, bus):
        received = _record(bus, EntityEvent.UPDATING, EntityEvent.UPDATED)
        ada = await accounts.create({"name": "ada", "age": 24})

        updated = await accounts.update(ada.id, {"age": 30})
        assert updated.age == 30
        assert received == ["updating", "updated"]

        await accounts.update(ada.id, {"age": 30})
        assert received == ["updating", "updated", "updating"]
        assert await accounts.update(999, {"age": 1}) is None

    @pytest.mark.asyncio
    async def test_store_and_find_or_new(self, accounts):
        created = await accounts.store(None, {"name": "ada"})
        updated = await accounts.store(created.id, {"name": "ada lovelace"})
        assert updated.id == created.id
        assert updated.name == "ada lovelace"
        assert (await accounts.find_or_new(created.id)).id == created.id
        assert (await accounts.find_or_new(999, {"name": "new"})).name == "new"

    @pytest.mark.asyncio
    async def test_update_or_create(self, accounts):
        await accounts.update_or_create(["name", "=", "eve"], {"age": 40})
        await accounts.update_or_create(["name", "=", "eve"], {"age": 41})
        rows = await accounts.find_where(["name", "eve"])
        assert [(row.name, row.age) for row in rows] == [("eve", 41)]

    @pytest.mark.asyncio
    async def test_update_or_insert(self, accounts):
        assert await accounts.update_or_insert(["name", "=", "zed"], {"age": 50}) is True
        zed = await accounts.find_by("name", "zed")
        assert zed.age == 50
        updated = await accounts.update_or_insert([["name", "=", "zed"]], {"age": 51})
        assert updated.age == 51

    @pytest.mark.asyncio
    async def test_update_set(self, accounts):
        await _seed(accounts)
        updated = await accounts.where("age", "<", 26).update_set({"age": 30})
        assert sorted(row.name for row in updated) == ["ada", "bob"]
        assert await accounts.where("age", 30).count() == 2

    @pytest.mark.asyncio
    async def test_insert(self, accounts, bus):
        received = _record(bus, EntityEvent.CREATING, EntityEvent.CREATED)
        assert await accounts.insert([{"name": "a", "age": 1}, {"name": "b", "age": 2}]) is True
        assert await accounts.count() == 2
        assert received == ["creating", "created"]

    @pytest.mark.asyncio
    async def test_hard_delete(self, accounts, bus):
        received = _record(bus, EntityEvent.DELETING, EntityEvent.DELETED)
        ada = await accounts.create({"name": "ada"})
        assert await accounts.delete(ada.id) is ada
        assert await accounts.find(ada.id) is None
        assert await accounts.delete(ada.id) is None
        assert received == ["deleting", "deleted"]

    @pytest.mark.asyncio
    async def test_deletes_matching(self, accounts):
        await _seed(accounts)
        assert await accounts.where("age", ">", 25).deletes() is True
        assert await accounts.count() == 2
        assert await accounts.where("age", ">", 99).deletes() is False

    @pytest.mark.asyncio
    async def test_deletes_by(self, accounts):
        await _seed(accounts)
        assert await accounts.deletes_by("name", ["ada", "bob"]) is True
        assert await accounts.count() == 2

    @pytest.mark.asyncio
    async def test_soft_delete_and_restore(self, accounts, notes, bus):
        received = _record(bus, EntityEvent.DELETED, EntityEvent.RESTORING, EntityEvent.RESTORED)
        ada = await accounts.create({"name": "ada"})
        note = await notes.create({"account_id": ada.id, "body": "hello"})

        await notes.delete(note.id)
        assert note.deleted_at is not None
        assert await notes.find(note.id) is None
        assert (await notes.with_trashed().find(note.id)).id == note.id

        restored = await notes.restore(note.id)
        assert restored.deleted_at is None
        assert (await notes.find(note.id)).id == note.id
        assert received == ["deleted", "restoring", "restored"]

    @pytest.mark.asyncio
    async def test_restore_requires_soft_deletes(self, accounts):
        with pytest.raises(RepositoryException) as exc_info:
            await accounts.restore(1)
        assert exc_info.value.code == "NOT_SOFT_DELETABLE"

    @pytest.mark.asyncio
    async def test_create_with_relations(self, accounts, bus):
        received = []

        async def handler(event):
            received.append(event.name)

        bus.subscribe(EntityEvent.CREATED, handler, repository_id="notes")
        ada = await accounts.create({"name": "ada", "notes": [{"body": "one"}, {"body": "two"}]}, sync_relations=True)
        assert await NoteRepository(accounts._context).where("account_id", ada.id).count() == 2
        assert received == ["notes.entity.created"]

    @pytest.mark.asyncio
    async def test_writes_with_an_instance_clear_recorded_clauses(self, accounts):
        rows = await _seed(accounts)

        accounts.where("name", "nobody")
        await accounts.update(rows[0], {"age": 99})
        assert await accounts.skip_cache().count() == 4

        accounts.where("name", "nobody")
        await accounts.delete(rows[0])
        assert await accounts.skip_cache().count() == 3

        accounts.where("name", "nobody")
        await accounts.create({"name": "eve"})
        assert await accounts.skip_cache().count() == 4

    @pytest.mark.asyncio
    async def test_restore_with_an_instance_clears_recorded_clauses(self, accounts, notes):
        ada = await accounts.create({"name": "ada"})
        note = await notes.create({"account_id": ada.id, "body": "one"})
        await notes.delete(note)

        notes.where("body", "missing")
        await notes.restore(note)
        assert await notes.skip_cache().count() == 1

    @pytest.mark.asyncio
    async def test_without_session(self):
        repository = AccountRepository(RepositoryContext(properties=RepositoryProperties(models_module=__name__)))
        with pytest.raises(ContainerResolutionException) as exc_info:
            await repository.create({"name": "ada"})
        assert exc_info.value.code == "CONTEXT_RESOLUTION"
        assert exc_info.value.context == {"name": "session"}


class TestCaching:
    @pytest.mark.asyncio
    async def test_reads_are_served_from_cache(self, accounts, session, cache):
        await _seed(accounts)
        assert await accounts.count() == 4
        assert cache.tagged_keys(accounts.get_repository_id())

        session.add(Account(name="raw", age=1))
        await session.flush()
        assert await accounts.count() == 4
        assert await accounts.skip_cache().count() == 5

    @pytest.mark.asyncio
    async def test_writes_invalidate(self, accounts, cache):
        await _seed(accounts)
        assert await accounts.count() == 4
        await accounts.create({"name": "eve"})
        assert cache.tagged_keys(accounts.get_repository_id()) == set()
        assert await accounts.count() == 5

    @pytest.mark.asyncio
    async def test_writes_invalidate_reads_cached_with_a_lifetime_override(self, session, bus, cache, tmp_path):
        context = RepositoryContext(
            session=session,
            caches={"memory": cache},
            events=bus,
            properties=RepositoryProperties(models_module=__name__),
            cache_properties=CacheProperties(keys_file=str(tmp_path / "keys.json")),
        )
        accounts = AccountRepository(context)
        await _seed(accounts)
        assert await accounts.set_cache_lifetime(60).count() == 4
        assert cache.tagged_keys(accounts.get_repository_id())

        await accounts.create({"name": "eve"})
        assert cache.tagged_keys(accounts.get_repository_id()) == set()
        assert await accounts.set_cache_lifetime(60).count() == 5

    @pytest.mark.asyncio
    async def test_cache_clear_can_be_disabled(self, accounts, session):
        await _seed(accounts)
        assert await accounts.count() == 4
        accounts.enable_cache_clear(False)
        await accounts.create({"name": "eve"})
        assert await accounts.count() == 4

    @pytest.mark.asyncio
    async def test_zero_lifetime_bypasses_cache(self, accounts, cache):
        await _seed(accounts)
        assert await accounts.set_cache_lifetime(0).count() == 4
        assert cache.tagged_keys(accounts.get_repository_id()) == set()
        assert accounts.get_cache_lifetime() == 60

    @pytest.mark.asyncio
    async def test_callbacks_make_calls_uncacheable(self, accounts, cache):
        await _seed(accounts)
        rows = await accounts.where(lambda q: q.where("name", "ada")).find_all()
        assert [row.name for row in rows] == ["ada"]
        assert cache.tagged_keys(accounts.get_repository_id()) == set()

    @pytest.mark.asyncio
    async def test_forget_cache_announces_flush(self, accounts, bus, cache):
        received = _record(bus, EntityEvent.CACHE_FLUSHED)
        await accounts.count()
        await accounts.forget_cache()
        assert cache.tagged_keys(accounts.get_repository_id()) == set()
        assert received == ["cache.flushed"]

    @pytest.mark.asyncio
    async def test_key_index_for_untagged_store(self, session, bus, tmp_path):
        keys_file = tmp_path / "keys.json"
        context = RepositoryContext(
            session=session,
            caches={"memory": InMemoryCache()},
            events=bus,
            properties=RepositoryProperties(models_module=__name__),
            cache_properties=CacheProperties(lifetime=-1, keys_file=str(keys_file)),
        )
        accounts = AccountRepository(context)
        await accounts.count()
        index = json.loads(keys_file.read_text())
        [entry] = index[accounts._repository_class()]
        assert entry.startswith("count.")

        await accounts.create({"name": "eve"})
        assert accounts._repository_class() not in json.loads(keys_file.read_text())
        assert await accounts.count() == 1

    @pytest.mark.asyncio
    async def test_broken_store_falls_through(self, session):
        class BrokenCache(InMemoryCache):
            async def get(self, key):
                raise ConnectionError("down")

        context = RepositoryContext(
            session=session,
            caches={"memory": BrokenCache()},
            properties=RepositoryProperties(models_module=__name__),
            cache_properties=CacheProperties(lifetime=60),
        )
        accounts = AccountRepository(context)
        await accounts.create({"name": "ada"})
        assert await accounts.count() == 1


class TestTransactions:
    @pytest.mark.asyncio
    async def test_created_fires_after_commit(self, accounts, bus):
        received = _record(bus, EntityEvent.CREATING, EntityEvent.CREATED)

        async def work(repository):
            await repository.create({"name": "eve"})
            assert received == ["creating"]
            return "done"

        assert await accounts.transaction(work) == "done"
        assert received == ["creating", "created"]

    @pytest.mark.asyncio
    async def test_rollback_drops_pending_events(self, accounts, bus):
        received = _record(bus, EntityEvent.CREATING, EntityEvent.CREATED)
        await accounts.begin_transaction()
        await accounts.create({"name": "eve"})
        await accounts.rollback()
        assert received == ["creating"]
        assert await accounts.skip_cache().count() == 0

    @pytest.mark.asyncio
    async def test_failing_callback_rolls_back(self, accounts):
        async def work(repository):
            await repository.create({"name": "eve"})
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await accounts.transaction(work)
        assert await accounts.skip_cache().count() == 0

    @pytest.mark.asyncio
    async def test_before_callback_and_sync_callback(self, accounts):
        calls = []
        result = await accounts.transaction(
            lambda repository: calls.append("work") or "ok",
            before=lambda: calls.append("before"),
        )
        assert result == "ok"
        assert calls == ["before", "work"]


class TestContext:
    def test_from_config(self, session):
        config = Config(
            {"flyrepo": {"repository": {"models_module": "shop.models", "cache": {"lifetime": 30, "driver": "redis"}}}}
        )
        context = RepositoryContext.from_config(config, session=session)
        assert context.properties.models_module == "shop.models"
        assert context.cache_properties.lifetime == 30
        assert context.cache_properties.driver == "redis"
        assert context.orchestrator is None

    def test_resolve(self, context, bus):
        assert context.resolve("events") is bus
        with pytest.raises(ContainerResolutionException) as exc_info:
            RepositoryContext().resolve("events")
        assert exc_info.value.code == "CONTEXT_RESOLUTION"
