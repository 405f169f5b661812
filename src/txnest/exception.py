class TxnestError(Exception):
    ...


class TransactionError(TxnestError):
    """Base exception for transaction errors"""


class StateError(TransactionError):
    """Raised when a transaction handle is used out of order"""
