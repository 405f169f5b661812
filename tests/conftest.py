from unittest.mock import AsyncMock, MagicMock

import pytest

from txnest import SQLitePool, TransactionHandle
from txnest.base.interface import BaseInterface
from txnest.sql.postgres import interface


class PostgresCursorMock:
    def __init__(self, rows=None):
        self.rows = rows
        self.description = None if rows is None else [("b",)]
        self.row_factory = None

    async def fetchall(self):
        return self.rows


@pytest.fixture
def connection():
    return MagicMock(name="connection")


@pytest.fixture
def pool(connection):
    pool = MagicMock(spec=BaseInterface)
    pool.acquire = AsyncMock(return_value=connection)
    pool.release = AsyncMock()
    pool.run = AsyncMock(return_value=[])
    pool.query = AsyncMock(return_value=[])
    return pool


@pytest.fixture
def tx(pool):
    return TransactionHandle(pool)


@pytest.fixture
def postgres_connection():
    connection = MagicMock(name="postgres_connection")
    connection.execute = AsyncMock(return_value=PostgresCursorMock())
    return connection


@pytest.fixture(autouse=True)
def mock_postgres_pool(monkeypatch, postgres_connection):
    pool = MagicMock()
    pool.open = AsyncMock()
    pool.close = AsyncMock()
    pool.getconn = AsyncMock(return_value=postgres_connection)
    pool.putconn = AsyncMock()
    pool.get_stats = MagicMock(return_value={"pool_available": 3})
    mock = MagicMock(return_value=pool)
    monkeypatch.setattr(interface, "AsyncConnectionPool", mock)
    return mock


@pytest.fixture
async def sqlite_pool(tmp_path):
    pool = SQLitePool(str(tmp_path / "transaction_test.db"))
    await pool.open()
    await pool.query("CREATE TABLE IF NOT EXISTS a ( b INTEGER )")
    yield pool
    await pool.close()
