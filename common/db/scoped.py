"""
Operation-scoped database sessions.

    # Single operation - acquires and releases immediately
    async with get_session() as session:
        result = await session.execute(query)

    # Several operations that must commit together
    async with transaction():
        await subscription_repo.compare_and_swap(...)
        await processed_event_repo.record(...)

Connections are never held across processor calls: services open a
transaction only around the database work.
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from common.core.otel_axiom_exporter import get_logger
from common.db import session as db_session
from common.db.context import (
    get_current_session,
    set_current_session,
    reset_current_session,
    is_readonly_forced,
)

logger = get_logger(__name__)


def _session_factory(readonly: bool):
    # Looked up at call time so tests can swap the factories
    if readonly:
        return db_session.AsyncSessionLocalReadonly
    return db_session.AsyncSessionLocal


@asynccontextmanager
async def transaction(readonly: bool = False) -> AsyncGenerator[AsyncSession, None]:
    """
    Explicit transaction boundary.

    All repository calls inside share one session. Commits on success
    (unless readonly), rolls back and re-raises on exception.
    """
    effective_readonly = readonly or is_readonly_forced()

    start = time.perf_counter()
    async with _session_factory(effective_readonly)() as session:
        acquire_time = time.perf_counter() - start
        logger.debug(
            f"Transaction session acquire: {acquire_time * 1000:.2f}ms, readonly={effective_readonly}"
        )

        token = set_current_session(session, readonly=effective_readonly)
        try:
            yield session
            if not effective_readonly:
                commit_start = time.perf_counter()
                await session.commit()
                commit_time = time.perf_counter() - commit_start
                logger.debug(f"Transaction commit: {commit_time * 1000:.2f}ms")
        except Exception as e:
            logger.debug(f"Transaction rollback due to: {e!r}")
            await session.rollback()
            raise
        finally:
            reset_current_session(token, readonly=effective_readonly)


@asynccontextmanager
async def get_session(readonly: bool = False) -> AsyncGenerator[AsyncSession, None]:
    """
    Session for a single operation.

    Reuses the enclosing transaction's session when there is one; otherwise
    acquires a new session, commits (unless readonly) and releases it.
    """
    effective_readonly = readonly or is_readonly_forced()
    existing = get_current_session(readonly=effective_readonly)

    if existing is not None:
        yield existing
        return

    start = time.perf_counter()
    async with _session_factory(effective_readonly)() as session:
        acquire_time = time.perf_counter() - start
        logger.debug(
            f"Operation session acquire: {acquire_time * 1000:.2f}ms, readonly={effective_readonly}"
        )

        try:
            yield session
            if not effective_readonly:
                await session.commit()
        except Exception as e:
            logger.debug(f"Operation rollback due to: {e!r}")
            await session.rollback()
            raise
