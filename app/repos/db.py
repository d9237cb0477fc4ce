"""asyncpg pool for the module store.

The pool is wrapped so that the shorthand query methods survive a
connection dropped by the server (idle reapers, restarts): the call is
retried on a fresh connection with a short backoff.
"""

import asyncio
import logging
from typing import Any

import asyncpg

from app.config import settings

logger = logging.getLogger(__name__)

# Errors that mean the connection is gone, not that the query is wrong.
_DEAD_CONNECTION = (
    asyncpg.ConnectionDoesNotExistError,
    asyncpg.InterfaceError,
    ConnectionResetError,
    OSError,
)

_MAX_RETRIES = 3


class _ResilientPool:
    """Proxy for :class:`asyncpg.Pool` that retries on dead connections.

    ``fetch``, ``fetchrow``, ``fetchval`` and ``execute`` are retried;
    everything else (``acquire``, ``close`` ...) is passed straight through.
    """

    __slots__ = ("_pool",)

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def fetch(self, query: str, *args: Any) -> list:
        return await self._retry(self._pool.fetch, query, *args)

    async def fetchrow(self, query: str, *args: Any):
        return await self._retry(self._pool.fetchrow, query, *args)

    async def fetchval(self, query: str, *args: Any):
        return await self._retry(self._pool.fetchval, query, *args)

    async def execute(self, query: str, *args: Any) -> str:
        return await self._retry(self._pool.execute, query, *args)

    @staticmethod
    async def _retry(func, *args: Any):
        for attempt in range(_MAX_RETRIES + 1):
            try:
                return await func(*args)
            except _DEAD_CONNECTION as exc:
                if attempt >= _MAX_RETRIES:
                    _reset()
                    raise
                wait = min(0.5 * (2 ** attempt), 5.0)
                logger.warning(
                    "DB connection lost (attempt %d/%d): %s, retrying in %.1fs",
                    attempt + 1, _MAX_RETRIES + 1, exc, wait,
                )
                await asyncio.sleep(wait)
        raise AssertionError("unreachable")  # pragma: no cover

    def __getattr__(self, name: str):
        return getattr(self._pool, name)


_pool: asyncpg.Pool | None = None
_pool_loop: asyncio.AbstractEventLoop | None = None
_wrapper: _ResilientPool | None = None


def _reset() -> None:
    """Forget the current pool so the next :func:`get_pool` builds a new one."""
    global _pool, _pool_loop, _wrapper
    _pool = None
    _pool_loop = None
    _wrapper = None


async def get_pool() -> _ResilientPool:
    """Return the shared pool, creating it on first use.

    A pool created on a different event loop (test suites) is discarded.
    """
    global _pool, _pool_loop, _wrapper
    loop = asyncio.get_running_loop()
    if _pool is not None and _pool_loop is not loop:
        _pool.terminate()
        _reset()
    if _pool is None:
        _pool = await asyncio.wait_for(
            asyncpg.create_pool(
                dsn=settings.DATABASE_URL,
                min_size=1,
                max_size=10,
                command_timeout=60,
                max_inactive_connection_lifetime=300.0,
                server_settings={"statement_timeout": "30000"},
            ),
            timeout=20,
        )
        _pool_loop = loop
        _wrapper = _ResilientPool(_pool)
    return _wrapper  # type: ignore[return-value]


async def close_pool() -> None:
    """Close the shared pool, if any."""
    if _pool is not None:
        await _pool.close()
    _reset()
