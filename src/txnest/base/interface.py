from __future__ import annotations

from abc import ABC, abstractmethod
from collections import namedtuple
from contextlib import asynccontextmanager
from typing import (
    Any,
    AsyncIterator,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Type,
    Union,
)
from urllib.parse import urlparse

from txnest.convert import convert_sql_params
from txnest.exception import TxnestError

UrlMapping = namedtuple("UrlMapping", ("key", "cast"))
Params = Optional[Union[Sequence[Any], Mapping[str, Any]]]
Rows = List[Dict[str, Any]]


URLPARSE_MAPPING = {
    "hostname": UrlMapping("_host", str),
    "username": UrlMapping("_user", str),
    "password": UrlMapping("_password", str),
    "port": UrlMapping("_port", int),
    "path": UrlMapping("_db", lambda value: value.replace("/", "")),
    "query": UrlMapping("_query", str),
}


class BaseInterface(ABC):
    """A pool of database connections that transaction handles borrow from.

    Subclasses adapt a concrete driver. A connection obtained with
    `acquire` is exclusively owned by the caller until it is handed back
    with `release`.
    """

    scheme = "dummy"
    default_port: Optional[int] = None
    POSITIONAL_SUB: str = "%s"
    KEYWORD_SUB: str = "%({name})s"
    registered_interfaces: Set[Type[BaseInterface]] = set()

    def __init_subclass__(cls) -> None:
        BaseInterface.registered_interfaces.add(cls)

    @abstractmethod
    def _setup_pool(self): ...

    @abstractmethod
    async def open(self): ...

    @abstractmethod
    async def close(self): ...

    @abstractmethod
    async def acquire(self, timeout: Optional[float] = None) -> Any: ...

    @abstractmethod
    async def release(self, connection: Any) -> None: ...

    @abstractmethod
    async def _run(
        self, connection: Any, statement: str, params: Params = None
    ) -> Rows: ...

    @property
    @abstractmethod
    def idle_count(self) -> int: ...

    def __init__(
        self,
        dsn: Optional[str] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        db: Optional[str] = None,
        query: Optional[str] = None,
        min_size: int = 1,
        max_size: Optional[int] = None,
    ) -> None:
        """Pool initialization.

        Args:
            dsn (str, optional): DB data source name
            host (str, optional): DB address URL or IP
            port (int, optional): DB port. Defaults to 5432 for Postgres
            user (str, optional): DB user
            password (str, optional): DB password
            db (str, optional): DB name
            query (str, optional): DB query parameters. Defaults to None
            min_size (int, optional): Minimum number of connections in pool. Defaults to 1
            max_size (int, optional): Maximum number of connections in pool. Defaults to None
        """

        if dsn and host:
            raise TxnestError("Cannot connect to DB using host and dsn")

        if not dsn:
            if port and (
                not isinstance(port, int) or port not in range(0, 65536)
            ):
                raise TxnestError(
                    "port: must be an integer between 0 and 65535"
                )

            if host and (not isinstance(host, str) or not len(host) > 0):
                raise TxnestError(
                    "host: must be a string at least 1 character long"
                )

        if password is not None and (
            not isinstance(password, str) or not len(password) > 0
        ):
            raise TxnestError(
                "password: must be a string at least 1 character long"
            )

        self._dsn = dsn
        self._host = host
        self._port = port
        self._user = user
        self._password = password
        self._db = db
        self._query = query
        self._min_size = min_size
        self._max_size = max_size
        self._full_dsn: Optional[str] = None

        self._populate_connection_args()
        self._populate_dsn()
        self._setup_pool()

    def __str__(self) -> str:
        return f"<{self.__class__.__name__} {self.dsn}>"

    @classmethod
    def from_dsn(cls, dsn: str, **kwargs: Any) -> BaseInterface:
        """Create an interface matching the scheme of the DSN

        Args:
            dsn (str): DB data source name

        Returns:
            BaseInterface: An unopened pool. Postgres is used when no
                registered interface claims the scheme.
        """
        from txnest.sql.postgres.interface import PostgresPool

        scheme = urlparse(dsn).scheme
        for interface_type in BaseInterface.registered_interfaces:
            if scheme in interface_type.schemes():
                return interface_type(dsn=dsn, **kwargs)
        return PostgresPool(dsn=dsn, **kwargs)

    @classmethod
    def schemes(cls) -> Set[str]:
        return {cls.scheme}

    def _populate_connection_args(self):
        dsn = self.dsn or ""
        if dsn:
            parts = urlparse(dsn)
            defaults = {
                "port": self.default_port,
                "hostname": "localhost",
                "username": None,
                "password": None,
                "path": "/",
                "query": "",
            }
            for key, mapping in URLPARSE_MAPPING.items():
                if not getattr(self, mapping.key):
                    value = getattr(parts, key, None)
                    if value is None:
                        value = defaults.get(key)
                    if value is not None:
                        setattr(self, mapping.key, mapping.cast(value))
        if self._port is None:
            self._port = self.default_port

    def _populate_dsn(self):
        self._dsn = self._build_dsn("..." if self.password else None)
        self._full_dsn = self._build_dsn(self.password)
        self._full_dsn += f"?{self._query}" if self._query else ""

    def _build_dsn(self, password: Optional[str]) -> str:
        userinfo = self.user or ""
        if password:
            userinfo += f":{password}"
        if userinfo:
            userinfo += "@"
        netloc = self.host or ""
        if self.port is not None:
            netloc += f":{self.port}"
        path = f"/{self.db}" if self.db else ""
        return f"{self.scheme}://{userinfo}{netloc}{path}"

    @property
    def dsn(self):
        return self._dsn

    @property
    def host(self):
        return self._host

    @property
    def port(self):
        return self._port

    @property
    def user(self):
        return self._user

    @property
    def password(self):
        return self._password

    @property
    def db(self):
        return self._db

    @property
    def full_dsn(self):
        return self._full_dsn

    @property
    def min_size(self):
        return self._min_size

    @property
    def max_size(self):
        return self._max_size

    async def run(
        self, connection: Any, statement: str, params: Params = None
    ) -> Rows:
        """Execute a statement on a connection borrowed from this pool

        Args:
            connection (Any): A connection obtained from `acquire`
            statement (str): SQL using `$1` or `$name` placeholders
            params (Sequence or Mapping, optional): Bound values.
                Defaults to `None`.

        Returns:
            List[Dict[str, Any]]: The result rows, empty when the statement
                does not produce any
        """
        statement = convert_sql_params(
            statement, self.POSITIONAL_SUB, self.KEYWORD_SUB
        )
        return await self._run(connection, statement, params)

    @asynccontextmanager
    async def connection(
        self, timeout: Optional[float] = None
    ) -> AsyncIterator[Any]:
        """Borrow a connection for the duration of the block

        Args:
            timeout (float, optional): Time before an error is raised on
                failure to obtain a connection. Defaults to `None`.

        Yields:
            Any: A database connection
        """
        conn = await self.acquire(timeout=timeout)
        try:
            yield conn
        finally:
            await self.release(conn)

    async def query(self, statement: str, params: Params = None) -> Rows:
        """Execute a single statement on a short-lived borrowed connection"""
        async with self.connection() as conn:
            return await self.run(conn, statement, params)
