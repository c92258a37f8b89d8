import pytest

from pgshell.connection import ConnectionHandle, ConnectionParams, connect
from pgshell.errors import (
    DatabaseConnectionError,
    NotConnectedError,
    QueryError,
)

from conftest import FakeConnection, FakeServer


def test_password_is_not_in_repr(pg_params: ConnectionParams):
    assert "s3cret" not in repr(pg_params)
    assert "s3cret" not in str(pg_params.url)


def test_url_for_server_database(pg_params: ConnectionParams):
    url = pg_params.url
    assert url.drivername == "postgresql+asyncpg"
    assert url.host == "localhost"
    assert url.port == 5432
    assert url.username == "admin"
    assert url.database == "postgres"


def test_url_for_sqlite_has_only_the_database():
    params = ConnectionParams(
        database="app.db", user="u", host="localhost", port=5432,
        driver="sqlite+aiosqlite",
    )
    url = params.url
    assert url.database == "app.db"
    assert url.host is None
    assert url.username is None


def test_with_database_keeps_everything_else(pg_params: ConnectionParams):
    other = pg_params.with_database("app")
    assert other.database == "app"
    assert other.user == pg_params.user
    assert other.password == pg_params.password
    assert other.host == pg_params.host
    assert other.port == pg_params.port


def test_current_before_open_raises():
    handle = ConnectionHandle(FakeServer())
    with pytest.raises(NotConnectedError):
        handle.current()


@pytest.mark.asyncio
async def test_open_and_close(pg_params: ConnectionParams):
    server = FakeServer()
    handle = ConnectionHandle(server)
    connection = await handle.open(pg_params)
    assert handle.current() is connection
    assert handle.is_open

    await handle.close()
    assert connection.ended
    assert not handle.is_open
    with pytest.raises(NotConnectedError):
        handle.current()

    # Idempotent.
    await handle.close()


@pytest.mark.asyncio
async def test_open_failure_propagates(pg_params: ConnectionParams):
    handle = ConnectionHandle(FakeServer(unreachable=("postgres",)))
    with pytest.raises(DatabaseConnectionError):
        await handle.open(pg_params)
    assert not handle.is_open


@pytest.mark.asyncio
async def test_switch_to_replaces_the_connection(pg_params: ConnectionParams):
    server = FakeServer()
    handle = ConnectionHandle(server)
    old = await handle.open(pg_params)

    new = await handle.switch_to("app")

    assert handle.current() is new
    assert new.params.database == "app"
    assert new.params.user == "admin"
    assert new.params.password == "s3cret"
    assert old.ended
    assert not new.ended


@pytest.mark.asyncio
async def test_switch_failure_keeps_the_old_connection(
    pg_params: ConnectionParams,
):
    server = FakeServer(unreachable=("missing",))
    handle = ConnectionHandle(server)
    old = await handle.open(pg_params)

    with pytest.raises(DatabaseConnectionError):
        await handle.switch_to("missing")

    assert handle.current() is old
    assert not old.ended


@pytest.mark.asyncio
async def test_close_errors_are_not_raised(pg_params: ConnectionParams):
    async def connector(params: ConnectionParams) -> FakeConnection:
        return FakeConnection(params, fail_on_end=True)

    handle = ConnectionHandle(connector)
    await handle.open(pg_params)
    new = await handle.switch_to("app")
    assert handle.current() is new

    await handle.close()
    assert not handle.is_open


@pytest.mark.asyncio
async def test_connect_to_sqlite_and_query(sqlite_params: ConnectionParams):
    connection = await connect(sqlite_params)
    try:
        assert connection.dialect_name == "sqlite"
        result = await connection.query("select id, name from users order by id;")
        assert result.columns == ["id", "name"]
        assert result.row_count == 3
        assert result.rows[1] == (2, "山田太郎")
    finally:
        await connection.end()


@pytest.mark.asyncio
async def test_repeated_column_names_keep_every_value(
    sqlite_params: ConnectionParams,
):
    connection = await connect(sqlite_params)
    try:
        result = await connection.query("select 1 as n, 2 as n;")
        assert result.columns == ["n", "n"]
        assert result.rows == [(1, 2)]
    finally:
        await connection.end()


@pytest.mark.asyncio
async def test_statements_without_rows_report_affected_rows(
    sqlite_params: ConnectionParams,
):
    connection = await connect(sqlite_params)
    try:
        result = await connection.query("update users set org_id = 1;")
        assert result.columns == []
        assert result.rows == []
        assert result.row_count == 3

        # Committed, so a second connection sees it.
        other = await connect(sqlite_params)
        try:
            check = await other.query("select count(*) as n from users "
                                      "where org_id = 1")
            assert check.rows == [(3,)]
        finally:
            await other.end()
    finally:
        await connection.end()


@pytest.mark.asyncio
async def test_query_error_keeps_the_statement(sqlite_params: ConnectionParams):
    connection = await connect(sqlite_params)
    try:
        with pytest.raises(QueryError) as info:
            await connection.query("select nope from users;")
        assert info.value.sql == "select nope from users;"

        # The connection is still usable.
        result = await connection.query("select 1 as one")
        assert result.rows == [(1,)]
    finally:
        await connection.end()


@pytest.mark.asyncio
async def test_connect_failure_is_a_connection_error(tmp_path):
    params = ConnectionParams(
        database=str(tmp_path / "no" / "such" / "dir" / "db"),
        driver="sqlite+aiosqlite",
    )
    with pytest.raises(DatabaseConnectionError):
        await connect(params)
