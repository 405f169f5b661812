"""
Reference-counted transactions on a single borrowed connection.

Nested code can call `begin` without knowing whether a caller further up
already did. Only the outermost `begin` issues `BEGIN`, and only the
matching outermost `commit` or `rollback` finalizes the transaction and
gives the connection back to the pool.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Optional,
    TypeVar,
)

from txnest.base.interface import BaseInterface, Params, Rows
from txnest.exception import StateError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransactionHandle:
    """Owns at most one connection borrowed from a pool.

    A handle is not safe for concurrent use: callers must serialize
    operations on one handle, typically by creating one per unit of work
    such as an incoming request.

    Example:

    ```python
    tx = TransactionHandle(pool)
    await tx.begin()
    await tx.query("INSERT INTO a VALUES ($1)", [1])
    await tx.commit()
    ```

    An inner `rollback` only decrements the depth. The `ROLLBACK` statement
    is deferred until the outermost call, so if the remaining depth is later
    unwound with `commit`, the whole transaction is committed. Nested
    rollback points would need savepoints, which this class does not use.
    """

    def __init__(self, pool: BaseInterface) -> None:
        self.pool = pool
        self.client: Optional[Any] = None
        self.begin_counter = 0

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__} pool={self.pool} "
            f"connected={self.connected} depth={self.begin_counter}>"
        )

    @property
    def connected(self) -> bool:
        return self.client is not None

    @property
    def in_transaction(self) -> bool:
        return self.begin_counter > 0

    async def connect(self, timeout: Optional[float] = None) -> None:
        """Borrow a connection from the pool unless one is already held

        Args:
            timeout (float, optional): Passed on to the pool.
                Defaults to `None`.
        """
        if self.client is not None:
            return
        self.client = await self.pool.acquire(timeout=timeout)
        logger.debug("Acquired connection from %s", self.pool)

    def release(self) -> Awaitable[None]:
        """Give the held connection back to the pool

        The check happens before anything is awaited, so misuse raises at
        the call site.

        Raises:
            StateError: If a transaction is running

        Returns:
            Awaitable[None]: Completes once the pool has the connection back
        """
        if self.begin_counter > 0:
            raise StateError("Transaction is running. Cannot release.")
        return self._release()

    async def _release(self) -> None:
        client, self.client = self.client, None
        if client is not None:
            await self.pool.release(client)
            logger.debug("Released connection to %s", self.pool)

    async def begin(self) -> None:
        """Open a transaction, or join the one already open"""
        if self.client is None:
            await self.connect()
        if self.begin_counter == 0:
            await self.pool.run(self.client, "BEGIN")
            logger.debug("Transaction started on %s", self.pool)
        self.begin_counter += 1

    async def commit(self) -> None:
        """Leave one level; the outermost level issues `COMMIT`

        Raises:
            StateError: If no transaction is running
        """
        await self._finish("COMMIT", "commit")

    async def rollback(self) -> None:
        """Leave one level; the outermost level issues `ROLLBACK`

        Raises:
            StateError: If no transaction is running
        """
        await self._finish("ROLLBACK", "rollback")

    async def _finish(self, statement: str, verb: str) -> None:
        if self.begin_counter == 0:
            raise StateError(f"Transaction not running. Cannot {verb}.")
        self.begin_counter -= 1
        if self.begin_counter > 0:
            logger.debug(
                "Deferred %s, %d level(s) still open",
                statement,
                self.begin_counter,
            )
            return
        try:
            await self.pool.run(self.client, statement)
            logger.debug("Executed %s on %s", statement, self.pool)
        finally:
            await self._release()

    async def abort(self) -> None:
        """Roll back at any depth and give the connection back"""
        if self.begin_counter == 0:
            await self._release()
            return
        logger.debug(
            "Aborting transaction with %d level(s) open", self.begin_counter
        )
        self.begin_counter = 0
        try:
            await self.pool.run(self.client, "ROLLBACK")
        finally:
            await self._release()

    async def query(self, statement: str, params: Params = None) -> Rows:
        """Run a statement inside the open transaction, if any

        Without a held connection the statement runs on a connection that
        is borrowed from the pool for this call only.

        Args:
            statement (str): SQL using `$1` or `$name` placeholders
            params (Sequence or Mapping, optional): Bound values.
                Defaults to `None`.

        Returns:
            List[Dict[str, Any]]: The result rows
        """
        if self.client is not None:
            return await self.pool.run(self.client, statement, params)
        return await self.pool.query(statement, params)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[TransactionHandle]:
        """Bracket a block with `begin` and `commit`, or `rollback` on error

        Whatever depth the block leaves open is unwound back to the depth
        the handle had on entry.
        """
        depth = self.begin_counter
        await self.begin()
        try:
            yield self
        except BaseException:
            await self._unwind(depth, self.rollback)
            raise
        await self._unwind(depth, self.commit)

    async def run_in_transaction(self, body: Callable[[], Awaitable[T]]) -> T:
        """Await `body` inside `transaction` and return its result"""
        async with self.transaction():
            return await body()

    async def _unwind(
        self, depth: int, finish: Callable[[], Awaitable[None]]
    ) -> None:
        while self.begin_counter > depth:
            await finish()
