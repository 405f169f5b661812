from __future__ import annotations

import logging
from typing import Any, List, Optional

from txnest.base.interface import BaseInterface, Params, Rows
from txnest.exception import TxnestError

try:
    import aiosqlite

    AIOSQLITE_ENABLED = True
except ModuleNotFoundError:
    AIOSQLITE_ENABLED = False

logger = logging.getLogger(__name__)
DSN_PREFIX = "sqlite:///"


class SQLitePool(BaseInterface):
    """Interface for connecting to a SQLite database

    Every connection is opened on the same database file in autocommit
    mode. Idle connections are kept around and reused.
    """

    scheme = "sqlite"
    POSITIONAL_SUB = "?"
    KEYWORD_SUB = ":{name}"

    def __init__(
        self,
        db_path: str = "",
        dsn: Optional[str] = None,
        min_size: int = 1,
    ):
        if dsn:
            if not dsn.startswith(DSN_PREFIX):
                raise TxnestError(
                    f"SQLite DSN must start with {DSN_PREFIX}, got {dsn}"
                )
            db_path = dsn[len(DSN_PREFIX) :]
        if not db_path:
            raise TxnestError("SQLitePool requires a database path")
        self._db_path = db_path
        self._idle: List[Any] = []
        self._opened: List[Any] = []
        super().__init__(min_size=min_size)

    def _setup_pool(self):
        if not AIOSQLITE_ENABLED:
            raise TxnestError(
                "SQLite driver not found. Try reinstalling txnest: "
                "pip install txnest[sqlite]"
            )

    def _populate_connection_args(self): ...

    def _populate_dsn(self):
        self._dsn = f"{DSN_PREFIX}{self._db_path}"
        self._full_dsn = self._dsn

    @property
    def db_path(self) -> str:
        return self._db_path

    async def open(self):
        """Open `min_size` connections to the database"""
        while len(self._opened) < self.min_size:
            self._idle.append(await self._connect())

    async def close(self):
        """Close every connection opened by this pool"""
        self._idle.clear()
        while self._opened:
            conn = self._opened.pop()
            await conn.close()

    async def acquire(self, timeout: Optional[float] = None):
        """Take an idle connection, or open a new one

        Args:
            timeout (float, optional): _Not implemented_. Defaults to `None`.

        Returns:
            aiosqlite.Connection: A connection that must be given back with
                `release`
        """
        if self._idle:
            return self._idle.pop()
        return await self._connect()

    async def release(self, connection) -> None:
        """Give a connection back to the pool"""
        if connection not in self._opened:
            raise TxnestError(f"{connection} does not belong to {self}")
        if connection.in_transaction:
            logger.warning(
                "Connection returned to %s inside a transaction, rolling back",
                self,
            )
            await connection.execute("ROLLBACK")
        self._idle.append(connection)

    async def _connect(self):
        conn = await aiosqlite.connect(self._db_path, isolation_level=None)
        conn.row_factory = aiosqlite.Row
        self._opened.append(conn)
        logger.debug("Opened connection to %s", self._db_path)
        return conn

    async def _run(
        self, connection, statement: str, params: Params = None
    ) -> Rows:
        cursor = await connection.execute(statement, params or ())
        try:
            if cursor.description is None:
                return []
            return [dict(row) for row in await cursor.fetchall()]
        finally:
            await cursor.close()

    @property
    def idle_count(self) -> int:
        return len(self._idle)
