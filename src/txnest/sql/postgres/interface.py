from typing import Optional, Set

from txnest.base.interface import BaseInterface, Params, Rows
from txnest.exception import TxnestError

try:
    from psycopg import AsyncConnection
    from psycopg.rows import dict_row
    from psycopg_pool import AsyncConnectionPool

    POSTGRES_ENABLED = True
except ModuleNotFoundError:
    POSTGRES_ENABLED = False
    AsyncConnection = type("Connection", (), {})  # type: ignore
    AsyncConnectionPool = type("Connection", (), {})  # type: ignore


class PostgresPool(BaseInterface):
    """Interface for connecting to a Postgres database

    Connections are opened in autocommit mode, so a statement issued
    outside of an explicit `BEGIN` is committed as soon as it runs.
    """

    scheme = "postgres"
    default_port = 5432

    @classmethod
    def schemes(cls) -> Set[str]:
        return {"postgres", "postgresql"}

    def _setup_pool(self):
        if not POSTGRES_ENABLED:
            raise TxnestError(
                "Postgres driver not found. Try reinstalling txnest: "
                "pip install txnest[postgres]"
            )
        self._pool = AsyncConnectionPool(
            self.full_dsn,
            min_size=self.min_size,
            max_size=self.max_size,
            kwargs={"autocommit": True},
            open=False,
        )

    async def open(self):
        """Open connections to the pool"""
        await self._pool.open()

    async def close(self):
        """Close connections to the pool"""
        await self._pool.close()

    async def acquire(
        self, timeout: Optional[float] = None
    ) -> AsyncConnection:
        """Take a connection out of the pool

        Args:
            timeout (float, optional): Time before an error is raised on
                failure to connect. Defaults to `None`.

        Returns:
            AsyncConnection: A connection that must be given back with
                `release`
        """
        return await self._pool.getconn(timeout=timeout)

    async def release(self, connection: AsyncConnection) -> None:
        """Give a connection back to the pool"""
        await self._pool.putconn(connection)

    async def _run(
        self,
        connection: AsyncConnection,
        statement: str,
        params: Params = None,
    ) -> Rows:
        cursor = await connection.execute(statement, params)
        if cursor.description is None:
            return []
        cursor.row_factory = dict_row
        return await cursor.fetchall()

    @property
    def idle_count(self) -> int:
        return self._pool.get_stats().get("pool_available", 0)
