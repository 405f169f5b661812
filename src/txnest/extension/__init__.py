from .starlette_extension import StarletteTxnestExtension, TransactionMiddleware

__all__ = (
    "StarletteTxnestExtension",
    "TransactionMiddleware",
)
