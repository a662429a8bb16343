"""SQLDocumentStore connection helper."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine


@asynccontextmanager
async def execute_with_connection(
    conn: AsyncConnection | AsyncEngine,
    transactional: bool = True,
) -> AsyncIterator[AsyncConnection]:
    """
    Yield a connection for one store operation.

    An engine opens a fresh connection per call: writes run inside
    ``begin()`` so they commit on exit, reads use a plain ``connect()``.
    A connection handed in by the caller is yielded as-is and its
    transaction stays under the caller's control.
    """
    if not isinstance(conn, AsyncEngine):
        yield conn
        return

    opener = conn.begin() if transactional else conn.connect()
    async with opener as connection:
        yield connection
