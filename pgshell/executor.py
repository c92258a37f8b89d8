"""
Command execution. execute() runs one classified command against the
session's connection and returns a Result describing what to show. Errors
stop here: a failing command becomes an ExecutionError result, so the
command loop never sees an exception from a command.
"""

import shutil
from dataclasses import dataclass, field
from enum import StrEnum
from time import perf_counter
from typing import Any

import sqlalchemy
import structlog
from sqlalchemy.engine import Connection as SyncConnection

from pgshell.commands import (
    Command,
    ConnectTo,
    DescribeTable,
    Empty,
    Help,
    ListDatabases,
    ListTables,
    ListTablesWithCounts,
    Quit,
    RawQuery,
    Unrecognized,
    help_text,
)
from pgshell.connection import Connection
from pgshell.errors import PgShellException, QueryError
from pgshell.schema import describe_table
from pgshell.session import Session

HELP_FALLBACK_SIZE = (79, 24)

logger = structlog.get_logger(__name__)


class EngineName(StrEnum):
    """
    Explicitly supported SQLAlchemy dialects. Other dialects will work, but
    there's explicit, database-specific catalog SQL for these.
    """

    POSTGRES = "postgresql"
    MYSQL = "mysql"
    SQLITE = "sqlite"


class Result:
    """
    Base class for the outcome of a command.
    """


@dataclass(frozen=True)
class Rows(Result):
    """
    Rows returned by a query. row_count is the number of rows returned or,
    for statements that return none, the number of rows affected.
    """

    columns: list[str]
    rows: list[tuple[Any, ...]]
    row_count: int
    elapsed: float | None = None


@dataclass(frozen=True)
class SingleColumnSummary(Result):
    """One value per row of a single-column listing."""

    values: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class StatusMessage(Result):
    """A message to show. An empty message shows nothing."""

    text: str = ""


@dataclass(frozen=True)
class SchemaText(Result):
    """A formatted table schema."""

    text: str


@dataclass(frozen=True)
class NotFound(Result):
    """The named table doesn't exist."""

    name: str


@dataclass(frozen=True)
class ExecutionError(Result):
    """A command failed. query is what was being run when it did."""

    query: str
    error: Exception


def list_databases_sql(dialect: str) -> str | None:
    """
    Catalog query listing database names, or None if the dialect has none.
    """
    match dialect:
        case EngineName.POSTGRES:
            return "select datname from pg_database"
        case EngineName.MYSQL:
            return "show databases"
        case EngineName.SQLITE:
            return "select name from pragma_database_list"
        case _:
            return None


def list_tables_sql(dialect: str) -> str | None:
    """
    Catalog query listing the tables in the default schema, or None if the
    dialect has none.
    """
    match dialect:
        case EngineName.POSTGRES:
            return (
                "select tablename from pg_tables where schemaname = 'public'"
            )
        case EngineName.MYSQL:
            return (
                "select table_name as tablename from information_schema.tables "
                "where table_schema = database()"
            )
        case EngineName.SQLITE:
            return (
                "select name as tablename from sqlite_master "
                "where type = 'table' and name not like 'sqlite_%'"
            )
        case _:
            return None


def count_rows_sql(dialect: str, table_name: str) -> str:
    """
    The row-count query for one table.

    NOTE: The table name is interpolated into the SQL without escaping. Names
    come from the server's own catalog and this is a local operator tool, so
    that's tolerated. A name containing a quote character will produce a
    syntax error. If this is ever revisited, quote the identifier; don't turn
    it into a bind parameter.
    """
    if dialect == EngineName.MYSQL:
        return f"select count(*) as count from `{table_name}`"

    return f'select count(*) as count from "{table_name}"'


async def query_single_column(connection: Connection, sql: str) -> list[str]:
    """
    Run a query and return the first column of every row, in server order.
    """
    result = await connection.query(sql)
    if len(result.columns) == 0:
        return []

    return [str(row[0]) for row in result.rows]


async def list_databases(connection: Connection) -> list[str]:
    """
    The names of the databases on the server.
    """
    if (sql := list_databases_sql(connection.dialect_name)) is not None:
        return await query_single_column(connection, sql)

    def schema_names(sync_connection: SyncConnection) -> list[str]:
        return sqlalchemy.inspect(sync_connection).get_schema_names()

    return await connection.run_sync(schema_names)


async def list_tables(connection: Connection) -> list[str]:
    """
    The names of the tables in the default schema.
    """
    if (sql := list_tables_sql(connection.dialect_name)) is not None:
        return await query_single_column(connection, sql)

    def table_names(sync_connection: SyncConnection) -> list[str]:
        return sqlalchemy.inspect(sync_connection).get_table_names()

    return await connection.run_sync(table_names)


async def connect_to(name: str | None, session: Session) -> Result:
    """
    Switch databases if name is a different database. The confirmation is
    the same whether or not a new connection was needed.
    """
    if (name is not None) and (name != session.active_database):
        connection = await session.connection.switch_to(name)
        session.params = connection.params
        session.known_tables = []

    return StatusMessage(
        f'You are now connected to database "{session.active_database}" '
        f'as user "{session.user}".'
    )


async def count_tables(session: Session) -> Result:
    """
    Count the rows of every table, one table at a time. The first failure
    aborts the whole listing.
    """
    tables = await list_tables(session.connection.current())
    session.known_tables = tables

    start = perf_counter()
    rows: list[tuple[Any, ...]] = []
    for table_name in tables:
        # Fetch the connection for every query; never hold it across an
        # await, since the handle owns it.
        connection = session.connection.current()
        sql = count_rows_sql(connection.dialect_name, table_name)
        result = await connection.query(sql)
        rows.append((table_name, result.rows[0][0]))

    return Rows(
        columns=["tablename", "count"],
        rows=rows,
        row_count=len(rows),
        elapsed=perf_counter() - start,
    )


async def run_query(sql: str, session: Session) -> Result:
    """
    Run a SQL statement verbatim.
    """
    start = perf_counter()
    result = await session.connection.current().query(sql)
    return Rows(
        columns=result.columns,
        rows=result.rows,
        row_count=result.row_count,
        elapsed=perf_counter() - start,
    )


async def execute(command: Command, session: Session) -> Result | None:
    """
    Execute a classified command.

    :param command: the command to execute
    :param session: the shell session

    :returns: the result to display, or None for Quit
    """
    # pylint: disable=too-many-return-statements
    logger.debug("command.execute", command=type(command).__name__)
    try:
        match command:
            case Quit():
                return None

            case ConnectTo(name=name):
                return await connect_to(name, session)

            case ListDatabases():
                databases = await list_databases(session.connection.current())
                session.known_databases = databases
                return SingleColumnSummary(databases)

            case ListTablesWithCounts():
                return await count_tables(session)

            case DescribeTable(name=name):
                text = await describe_table(session.connection.current(), name)
                if text is None:
                    return NotFound(name)
                return SchemaText(text.rstrip())

            case ListTables():
                tables = await list_tables(session.connection.current())
                session.known_tables = tables
                return SingleColumnSummary(tables)

            case RawQuery(sql=sql):
                return await run_query(sql, session)

            case Help():
                return StatusMessage(help_text(
                    shutil.get_terminal_size(HELP_FALLBACK_SIZE).columns
                ))

            case Empty() | Unrecognized():
                return StatusMessage()

            case _:
                raise PgShellException(f"Unknown command type: {command!r}")

    except QueryError as e:
        return ExecutionError(query=e.sql, error=e.error)

    except (PgShellException, sqlalchemy.exc.SQLAlchemyError, OSError) as e:
        return ExecutionError(query=str(command), error=e)
