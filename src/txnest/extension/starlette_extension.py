from __future__ import annotations

from contextlib import asynccontextmanager
from logging import getLogger
from typing import AsyncIterator, Optional

from txnest.base.interface import BaseInterface
from txnest.exception import TxnestError
from txnest.transaction import TransactionHandle

try:
    from starlette.applications import Starlette
    from starlette.types import ASGIApp, Receive, Scope, Send

    STARLETTE_INSTALLED = True
except ModuleNotFoundError:
    STARLETTE_INSTALLED = False
    Starlette = type("Starlette", (), {})  # type: ignore

logger = getLogger(__name__)


class TransactionMiddleware:
    """Give every HTTP request its own `TransactionHandle`

    The handle is available as `request.state.tx` (or whichever
    `state_key` the extension uses). Once the response has been sent, any
    transaction the handler left open is rolled back and the connection
    goes back to the pool.
    """

    def __init__(self, app: ASGIApp, extension: StarletteTxnestExtension):
        self.app = app
        self.extension = extension

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http":
            return await self.app(scope, receive, send)

        tx = TransactionHandle(self.extension.pool)
        scope.setdefault("state", {})[self.extension.state_key] = tx
        try:
            await self.app(scope, receive, send)
        except BaseException:
            try:
                await self._cleanup(tx, scope)
            except Exception:
                logger.exception(
                    "Could not clean up the transaction of a failed "
                    "request to %s",
                    scope.get("path"),
                )
            raise
        await self._cleanup(tx, scope)

    async def _cleanup(self, tx: TransactionHandle, scope: Scope) -> None:
        if tx.in_transaction:
            logger.warning(
                "Request to %s ended with %d open transaction level(s), "
                "rolling back",
                scope.get("path"),
                tx.begin_counter,
            )
        await tx.abort()


class StarletteTxnestExtension:
    def __init__(
        self,
        *,
        dsn: str = "",
        pool: Optional[BaseInterface] = None,
        app: Optional[Starlette] = None,
        state_key: str = "tx",
    ):
        if not STARLETTE_INSTALLED:
            raise TxnestError(
                "Could not locate Starlette. It must be installed to use "
                "StarletteTxnestExtension. Try: pip install starlette"
            )
        if dsn and pool:
            raise TxnestError("Cannot use both a dsn and a pool")
        if not dsn and not pool:
            raise TxnestError("Either a dsn or a pool is required")
        self.pool = pool or BaseInterface.from_dsn(dsn)
        self.state_key = state_key
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Starlette) -> None:
        app.add_middleware(TransactionMiddleware, extension=self)

    @asynccontextmanager
    async def lifespan(self, _: Starlette) -> AsyncIterator[None]:
        """Open the pool at startup and close it at shutdown

        Example:

        ```python
        extension = StarletteTxnestExtension(dsn="postgres://...")
        app = Starlette(routes=routes, lifespan=extension.lifespan)
        extension.init_app(app)
        ```
        """
        logger.info("Opening %s", self.pool)
        await self.pool.open()
        try:
            yield
        finally:
            logger.info("Closing %s", self.pool)
            await self.pool.close()
