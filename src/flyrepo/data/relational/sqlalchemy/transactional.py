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
"""Transaction scopes with a commit-hook queue.

Work queued with :func:`after_commit` inside a transaction scope runs
only once the outermost scope commits, and is dropped when it rolls back.
Outside any scope the work runs immediately.
"""

from __future__ import annotations

import enum
import functools
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flyrepo.kernel.exceptions import RepositoryException

F = TypeVar("F", bound=Callable[..., Any])

CommitCallback = Callable[[], Awaitable[Any]]

_active_session_var: ContextVar[AsyncSession | None] = ContextVar("_active_session_var", default=None)
_commit_hooks_var: ContextVar[CommitHooks | None] = ContextVar("_commit_hooks_var", default=None)


class CommitHooks:
    """Callbacks waiting for the enclosing transaction to commit."""

    def __init__(self) -> None:
        self._callbacks: list[CommitCallback] = []

    def __len__(self) -> int:
        return len(self._callbacks)

    def add(self, callback: CommitCallback) -> None:
        self._callbacks.append(callback)

    def discard(self) -> None:
        self._callbacks.clear()

    async def run(self) -> None:
        """Run queued callbacks in order. Callbacks queued meanwhile also run."""
        while self._callbacks:
            callback = self._callbacks.pop(0)
            await callback()


def in_transaction() -> bool:
    return _commit_hooks_var.get() is not None


def active_session() -> AsyncSession | None:
    return _active_session_var.get()


async def after_commit(callback: CommitCallback) -> None:
    """Queue *callback* until the current transaction commits, or run it now."""
    hooks = _commit_hooks_var.get()
    if hooks is None:
        await callback()
    else:
        hooks.add(callback)


class TransactionScope:
    """Explicit begin/commit/rollback around a session.

    A scope begun while another one is active joins it: its commit and
    rollback are no-ops and the outer scope decides the outcome.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._hooks = CommitHooks()
        self._previous: tuple[CommitHooks | None, AsyncSession | None] | None = None
        self._joined = False

    @property
    def joined(self) -> bool:
        return self._joined

    @property
    def active(self) -> bool:
        return self._previous is not None

    async def begin(self) -> TransactionScope:
        if _commit_hooks_var.get() is not None:
            self._joined = True
            return self
        self._previous = (_commit_hooks_var.get(), _active_session_var.get())
        _commit_hooks_var.set(self._hooks)
        _active_session_var.set(self._session)
        return self

    async def commit(self) -> None:
        if self._joined:
            return
        self._require_active()
        try:
            await self._session.commit()
        except BaseException:
            self._hooks.discard()
            raise
        finally:
            self._restore()
        await self._hooks.run()

    async def rollback(self) -> None:
        if self._joined:
            return
        self._require_active()
        try:
            await self._session.rollback()
        finally:
            self._hooks.discard()
            self._restore()

    def _require_active(self) -> None:
        if self._previous is None:
            raise RepositoryException("Transaction scope was not begun or is already finished")

    def _restore(self) -> None:
        if self._previous is not None:
            hooks, session = self._previous
            _commit_hooks_var.set(hooks)
            _active_session_var.set(session)
            self._previous = None


@asynccontextmanager
async def transaction(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run a block in a transaction; commit on success, roll back on error.

    Usage:
        async with transaction(session):
            await repository.create({"name": "Ada"})
    """
    scope = await TransactionScope(session).begin()
    try:
        yield session
    except BaseException:
        await scope.rollback()
        raise
    await scope.commit()


class Propagation(enum.Enum):
    """Transaction propagation behaviour."""

    REQUIRED = "REQUIRED"
    REQUIRES_NEW = "REQUIRES_NEW"
    MANDATORY = "MANDATORY"


def _patch_repositories(self_arg: Any, session: AsyncSession) -> None:
    from flyrepo.data.relational.sqlalchemy.repository import Repository

    for value in vars(self_arg).values():
        if isinstance(value, Repository):
            value.use_session(session)


def transactional(propagation: Propagation = Propagation.REQUIRED) -> Callable[[F], F]:
    """Run a service method inside a transaction.

    The session comes from ``self._session_factory`` (an
    ``async_sessionmaker``). Repositories stored on ``self`` are switched
    to that session for the duration of the call.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            self_arg = args[0] if args else None
            existing = _active_session_var.get()

            if propagation is Propagation.MANDATORY:
                if existing is None:
                    raise RepositoryException("Propagation.MANDATORY requires an active transaction")
                return await func(*args, **kwargs)

            if propagation is Propagation.REQUIRED and existing is not None:
                return await func(*args, **kwargs)

            factory: async_sessionmaker[AsyncSession] | None = getattr(self_arg, "_session_factory", None)
            if factory is None:
                raise RepositoryException(
                    "No _session_factory available on self; inject an async_sessionmaker into the service"
                )

            async with factory() as session:
                if propagation is Propagation.REQUIRES_NEW:
                    # a new scope must not join the caller's queue
                    hooks_token = _commit_hooks_var.set(None)
                    try:
                        return await _run_in_scope(func, self_arg, session, args, kwargs)
                    finally:
                        _commit_hooks_var.reset(hooks_token)
                return await _run_in_scope(func, self_arg, session, args, kwargs)

        wrapper.__flyrepo_transactional__ = True  # type: ignore[attr-defined]
        wrapper.__flyrepo_propagation__ = propagation  # type: ignore[attr-defined]
        return wrapper  # type: ignore[return-value]

    return decorator


async def _run_in_scope(
    func: Callable[..., Awaitable[Any]],
    self_arg: Any,
    session: AsyncSession,
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
) -> Any:
    async with transaction(session):
        if self_arg is not None:
            _patch_repositories(self_arg, session)
        return await func(*args, **kwargs)
