from importlib.metadata import version

from .base.interface import BaseInterface
from .exception import StateError, TransactionError, TxnestError
from .sql.postgres.interface import PostgresPool
from .sql.sqlite.interface import SQLitePool
from .transaction import TransactionHandle

__version__ = version("txnest")

__all__ = (
    "BaseInterface",
    "PostgresPool",
    "SQLitePool",
    "StateError",
    "TransactionError",
    "TransactionHandle",
    "TxnestError",
)
