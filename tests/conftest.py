from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
import sqlalchemy

from pgshell.connection import ConnectionHandle, ConnectionParams, QueryResult
from pgshell.errors import DatabaseConnectionError, QueryError
from pgshell.session import Session

SQLITE_DRIVER = "sqlite+aiosqlite"


@pytest.fixture
def db_path(tmp_path: Path, monkeypatch) -> Path:
    """
    A SQLite database file named "app" in a temporary working directory, so
    that "\\c <name>" can switch between database files by bare name.
    """
    monkeypatch.chdir(tmp_path)
    path = tmp_path / "app"
    engine = sqlalchemy.create_engine(f"sqlite:///{path}")
    with engine.begin() as conn:
        conn.execute(sqlalchemy.text(
            "create table org (id integer primary key, "
            "name varchar(32) not null, unique (name))"
        ))
        conn.execute(sqlalchemy.text(
            "create table users (id integer primary key, name varchar(64), "
            "org_id integer references org(id))"
        ))
        conn.execute(sqlalchemy.text(
            "insert into org (id, name) values (1, 'acme'), (2, '株式会社')"
        ))
        conn.execute(sqlalchemy.text(
            "insert into users (id, name, org_id) values "
            "(1, 'alice', 1), (2, '山田太郎', 2), (3, 'bob', NULL)"
        ))
    engine.dispose()
    return path


@pytest.fixture
def sqlite_params(db_path: Path) -> ConnectionParams:
    return ConnectionParams(
        database=db_path.name, user="tester", driver=SQLITE_DRIVER
    )


@pytest_asyncio.fixture
async def session(sqlite_params: ConnectionParams):
    """A session connected to the SQLite fixture database."""
    handle = ConnectionHandle()
    await handle.open(sqlite_params)
    shell_session = Session(params=sqlite_params, connection=handle)
    yield shell_session
    await shell_session.close()


class FakeConnection:
    """
    Stands in for a server connection. results maps SQL text to either a
    QueryResult or an exception to raise.
    """

    def __init__(
        self,
        params: ConnectionParams,
        results: dict[str, Any] | None = None,
        dialect_name: str = "postgresql",
        fail_on_end: bool = False,
    ) -> None:
        self.params = params
        self.results = results if results is not None else {}
        self.dialect_name = dialect_name
        self.fail_on_end = fail_on_end
        self.queries: list[str] = []
        self.ended = False

    async def query(self, sql: str) -> QueryResult:
        self.queries.append(sql)
        match self.results.get(sql):
            case None:
                return QueryResult([], [], 0)
            case Exception() as e:
                raise QueryError(sql, e)
            case result:
                return result

    async def run_sync(self, fn):
        raise NotImplementedError("FakeConnection can't introspect")

    async def end(self) -> None:
        self.ended = True
        if self.fail_on_end:
            raise OSError("connection reset by peer")


class FakeServer:
    """
    A connector that hands out FakeConnections, refusing databases listed in
    unreachable. Every connection opened is recorded.
    """

    def __init__(
        self,
        results: dict[str, Any] | None = None,
        unreachable: tuple[str, ...] = (),
    ) -> None:
        self.results = results if results is not None else {}
        self.unreachable = unreachable
        self.opened: list[FakeConnection] = []

    async def __call__(self, params: ConnectionParams) -> FakeConnection:
        if params.database in self.unreachable:
            raise DatabaseConnectionError(
                f'Unable to connect to database "{params.database}": refused'
            )
        connection = FakeConnection(params, self.results)
        self.opened.append(connection)
        return connection


@pytest.fixture
def pg_params() -> ConnectionParams:
    return ConnectionParams(
        database="postgres",
        user="admin",
        password="s3cret",
        host="localhost",
        port=5432,
    )


@pytest.fixture
def fake_server() -> FakeServer:
    return FakeServer()


@pytest_asyncio.fixture
async def fake_session(pg_params: ConnectionParams, fake_server: FakeServer):
    """A session connected to a FakeServer."""
    handle = ConnectionHandle(fake_server)
    await handle.open(pg_params)
    shell_session = Session(params=pg_params, connection=handle)
    yield shell_session
    await shell_session.close()
