"""
Connection management. A ConnectionHandle owns the single live database
connection of a shell session, and knows how to replace it when the user
switches to a different database.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Self

import sqlalchemy
import structlog
from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    create_async_engine,
)

from pgshell.errors import (
    DatabaseConnectionError,
    NotConnectedError,
    QueryError,
)

DEFAULT_DRIVER = "postgresql+asyncpg"
SQLITE_DIALECT = "sqlite"

logger = structlog.get_logger(__name__)


def is_file_database(driver: str) -> bool:
    """
    True for drivers whose "database" is a local file, with no server to
    authenticate against.
    """
    return driver.split("+", 1)[0] == SQLITE_DIALECT


@dataclass(frozen=True)
class ConnectionParams:
    """
    Everything needed to open a connection. The password is kept out of the
    repr, so it never ends up in a log line or a traceback.
    """

    database: str
    user: str | None = None
    password: str | None = field(default=None, repr=False)
    host: str | None = None
    port: int | None = None
    driver: str = DEFAULT_DRIVER

    @property
    def url(self: Self) -> URL:
        """
        The SQLAlchemy URL for these parameters. SQLite URLs carry only the
        database path; the SQLite dialects reject anything else.
        """
        if is_file_database(self.driver):
            return URL.create(self.driver, database=self.database)

        return URL.create(
            self.driver,
            username=self.user,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
        )

    def with_database(self: Self, database: str) -> "ConnectionParams":
        """
        Same server and credentials, different database.
        """
        return replace(self, database=database)


@dataclass(frozen=True)
class QueryResult:
    """
    The outcome of one SQL statement. Each row is a tuple of values in column
    order; column names can repeat (e.g. "select 1, 2" on PostgreSQL). For
    statements that don't return rows (INSERT, UPDATE, DDL, ...), columns and
    rows are empty and row_count is the number of affected rows reported by
    the driver.
    """

    columns: list[str]
    rows: list[tuple[Any, ...]]
    row_count: int


class Connection:
    """
    One live connection to the server: an async engine plus the single
    connection checked out of it.
    """

    def __init__(
        self: Self,
        params: ConnectionParams,
        engine: AsyncEngine,
        connection: AsyncConnection,
    ) -> None:
        self._params = params
        self._engine = engine
        self._connection = connection

    @property
    def params(self: Self) -> ConnectionParams:
        """
        The parameters this connection was opened with.
        """
        return self._params

    @property
    def dialect_name(self: Self) -> str:
        """
        The SQLAlchemy dialect name, e.g. "postgresql" or "sqlite".
        """
        return self._engine.dialect.name

    async def query(self: Self, sql: str) -> QueryResult:
        """
        Run a SQL statement verbatim and commit. Raises QueryError, with the
        work rolled back, if the server rejects it.
        """
        try:
            result = await self._connection.exec_driver_sql(sql)
            if result.returns_rows:
                columns = list(result.keys())
                rows = [tuple(row) for row in result.all()]
                query_result = QueryResult(columns, rows, len(rows))
            else:
                query_result = QueryResult([], [], max(result.rowcount, 0))

            await self._connection.commit()
            return query_result

        except sqlalchemy.exc.SQLAlchemyError as e:
            await self._rollback()
            raise QueryError(sql, e) from e

    async def run_sync(self: Self, fn: Callable[..., Any]) -> Any:
        """
        Run a synchronous function (typically one using a SQLAlchemy
        Inspector) against this connection.
        """
        return await self._connection.run_sync(fn)

    async def end(self: Self) -> None:
        """
        Close the connection and dispose of its engine.
        """
        try:
            await self._connection.close()
        finally:
            await self._engine.dispose()

    async def _rollback(self: Self) -> None:
        try:
            await self._connection.rollback()
        except sqlalchemy.exc.SQLAlchemyError as e:
            logger.warning(
                "connection.rollback_failed",
                database=self._params.database,
                error=str(e),
            )


async def connect(params: ConnectionParams) -> Connection:
    """
    Open a new connection. Raises DatabaseConnectionError on network,
    authentication or driver failures.
    """
    log = logger.bind(
        database=params.database,
        host=params.host,
        port=params.port,
        driver=params.driver,
    )
    engine: AsyncEngine | None = None
    try:
        # Every statement commits on its own, as with the vendor client.
        # Some statements (e.g. CREATE DATABASE) refuse to run in a
        # transaction block.
        engine = create_async_engine(params.url, isolation_level="AUTOCOMMIT")
        connection = await engine.connect()
    except (sqlalchemy.exc.SQLAlchemyError, OSError) as e:
        log.debug("connection.open_failed", error=str(e))
        if engine is not None:
            await engine.dispose()
        raise DatabaseConnectionError(
            f'Unable to connect to database "{params.database}": {e}'
        ) from e

    log.info("connection.opened")
    return Connection(params, engine, connection)


Connector = Callable[[ConnectionParams], Awaitable[Connection]]


class ConnectionHandle:
    """
    Owns the session's single active connection. The connection is only
    ever replaced through switch_to(), so there is never more than one
    connection in the active slot.
    """

    def __init__(self: Self, connector: Connector = connect) -> None:
        self._connector = connector
        self._connection: Connection | None = None

    @property
    def is_open(self: Self) -> bool:
        """
        True if there is an active connection.
        """
        return self._connection is not None

    async def open(self: Self, params: ConnectionParams) -> Connection:
        """
        Open the initial connection. Any connection that is already active
        is closed first.
        """
        await self.close()
        self._connection = await self._connector(params)
        return self._connection

    async def switch_to(self: Self, database: str) -> Connection:
        """
        Replace the active connection with one to another database on the
        same server, as the same user. The new connection is opened before
        the old one is released: if it can't be opened, DatabaseConnectionError
        is raised and the old connection stays active. Callers must not hold
        on to the old connection after this returns.
        """
        old = self.current()
        new = await self._connector(old.params.with_database(database))
        self._connection = new
        await self._end_quietly(old)
        logger.info(
            "connection.switched",
            old_database=old.params.database,
            database=database,
        )
        return new

    def current(self: Self) -> Connection:
        """
        The active connection. Raises NotConnectedError if there isn't one.
        """
        if self._connection is None:
            raise NotConnectedError("Not connected to a database.")

        return self._connection

    async def close(self: Self) -> None:
        """
        Close the active connection, if any. Safe to call repeatedly.
        """
        connection, self._connection = self._connection, None
        if connection is not None:
            await self._end_quietly(connection)

    @staticmethod
    async def _end_quietly(connection: Connection) -> None:
        """
        Closing is best-effort: failures are logged, never raised.
        """
        try:
            await connection.end()
            logger.info("connection.closed", database=connection.params.database)
        # pylint: disable=broad-except
        except Exception as e:
            logger.warning(
                "connection.close_failed",
                database=connection.params.database,
                error=str(e),
            )
