from pathlib import Path

import pytest

from pgshell.config import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    ConnectionOptions,
    ProfileConfig,
    load_configuration,
    parse_port,
    resolve_connection_params,
)
from pgshell.connection import DEFAULT_DRIVER
from pgshell.errors import ConfigurationError, TooManyMatchesError

CONFIG = """
[prod]
database = "sales"
user = "$PROD_USER"
password = "${PROD_PASSWORD}"
host = "db.example.com"
port = 6543
driver = "postgresql+asyncpg"
history = "~/.sales-history"

[production-replica]
database = "sales"
host = "replica.example.com"

[staging]
database = "sales_staging"
port = "$STAGING_PORT"
"""


class Asker:
    """
    Answers prompts from a dict keyed by the start of the prompt text, and
    records what was asked.
    """

    def __init__(self, answers=None):
        self.answers = answers or {}
        self.asked: list[tuple[str, bool]] = []

    def __call__(self, text: str, hide_input: bool) -> str:
        self.asked.append((text, hide_input))
        for prefix, answer in self.answers.items():
            if text.startswith(prefix):
                return answer
        return ""


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "pgshell.cfg"
    path.write_text(CONFIG, encoding="utf-8")
    return path


@pytest.fixture
def configuration(config_file: Path):
    return load_configuration(
        config_file,
        {"PROD_USER": "reporter", "STAGING_PORT": "15432", "HOME": "/home/me"},
    )


def test_load_configuration(configuration, config_file):
    prod = configuration.profile("prod")

    assert configuration.path == config_file
    assert prod.database == "sales"
    assert prod.user == "reporter"
    assert prod.password is None
    assert prod.host == "db.example.com"
    assert prod.port == 6543
    assert prod.driver == "postgresql+asyncpg"
    assert prod.history_file == Path("~/.sales-history").expanduser()
    assert configuration.profile("staging").port == 15432


def test_profile_exact_match_wins(configuration):
    assert configuration.profile("PROD").name == "prod"


def test_profile_prefix_match(configuration):
    assert configuration.profile("stag").name == "staging"


def test_profile_ambiguous_prefix(configuration):
    with pytest.raises(TooManyMatchesError):
        configuration.profile("pro")


def test_profile_no_match(configuration):
    with pytest.raises(ConfigurationError):
        configuration.profile("dev")


def test_bad_port_in_configuration(tmp_path: Path):
    path = tmp_path / "bad.cfg"
    path.write_text('[x]\ndatabase = "a"\nport = "http"\n', encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_configuration(path, {})


def test_unparseable_configuration(tmp_path: Path):
    path = tmp_path / "bad.cfg"
    path.write_text("[x\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_configuration(path, {})


def test_parse_port():
    assert parse_port("5432", "test") == 5432
    assert parse_port(1, "test") == 1
    for bad in ("0", "65536", "abc", None):
        with pytest.raises(ConfigurationError):
            parse_port(bad, "test")


def test_everything_from_the_command_line():
    asker = Asker()
    options = ConnectionOptions(
        database="app", user="u", password="p", host="h", port=1234,
        driver="mysql+aiomysql",
    )

    params = resolve_connection_params(options, None, {}, asker)

    assert (params.database, params.user, params.password) == ("app", "u", "p")
    assert (params.host, params.port) == ("h", 1234)
    assert params.driver == "mysql+aiomysql"
    assert asker.asked == []


def test_defaults_after_empty_answers():
    asker = Asker({"database name": "app"})

    params = resolve_connection_params(ConnectionOptions(), None, {}, asker)

    assert params.database == "app"
    assert params.user == "app"
    assert params.password == "app"
    assert params.host == DEFAULT_HOST
    assert params.port == DEFAULT_PORT
    assert params.driver == DEFAULT_DRIVER
    assert [text for text, _ in asker.asked] == [
        "database name: ",
        "database user (default app): ",
        "database password (default app): ",
        f"database host (default {DEFAULT_HOST}): ",
        f"database port (default {DEFAULT_PORT}): ",
    ]


def test_password_prompt_hides_input():
    asker = Asker({"database password": "secret"})
    options = ConnectionOptions(database="app", user="u", host="h", port=1)

    params = resolve_connection_params(options, None, {}, asker)

    assert params.password == "secret"
    assert asker.asked == [("database password (default u): ", True)]


def test_missing_database_name():
    with pytest.raises(ConfigurationError):
        resolve_connection_params(ConnectionOptions(), None, {}, Asker())


def test_command_line_beats_profile_beats_environment():
    profile = ProfileConfig(name="p", database="from_profile", host="ph")
    environ = {
        "DB_NAME": "from_env",
        "DB_USER": "env_user",
        "DB_HOST": "eh",
        "DB_PORT": "7777",
        "DB_PASSWORD": "env_pw",
    }
    options = ConnectionOptions(user="cli_user")

    params = resolve_connection_params(options, profile, environ, Asker())

    assert params.database == "from_profile"
    assert params.user == "cli_user"
    assert params.host == "ph"
    assert params.port == 7777
    assert params.password == "env_pw"


def test_alternate_environment_variable_names():
    environ = {"DB_NAME": "app", "DB_USERNAME": "u", "DB_PASS": "pw",
               "DB_HOSTNAME": "h", "DB_PORT": "5433"}

    params = resolve_connection_params(
        ConnectionOptions(), None, environ, Asker()
    )

    assert (params.user, params.password, params.host, params.port) == (
        "u", "pw", "h", 5433
    )


def test_no_password_prompt():
    asker = Asker()
    options = ConnectionOptions(
        database="app", user="u", host="h", port=1, prompt_password=False
    )

    params = resolve_connection_params(options, None, {}, asker)

    assert params.password == "u"
    assert asker.asked == []


def test_forced_password_prompt_ignores_stored_password():
    asker = Asker({"database password": "typed"})
    profile = ProfileConfig(name="p", password="stored")
    options = ConnectionOptions(
        database="app", user="u", host="h", port=1, force_password_prompt=True
    )

    params = resolve_connection_params(
        options, profile, {"DB_PASSWORD": "env"}, asker
    )

    assert params.password == "typed"


def test_bad_port_answer():
    asker = Asker({"database port": "many"})
    options = ConnectionOptions(database="app", user="u", password="p",
                                host="h")
    with pytest.raises(ConfigurationError):
        resolve_connection_params(options, None, {}, asker)


def test_sqlite_asks_for_no_server_settings():
    asker = Asker({"database name": "app.db"})
    options = ConnectionOptions(driver="sqlite+aiosqlite")

    params = resolve_connection_params(options, None, {}, asker)

    assert params.database == "app.db"
    assert params.user == "app.db"
    assert (params.password, params.host, params.port) == (None, None, None)
    assert [text for text, _ in asker.asked] == [
        "database name: ",
        "database user (default app.db): ",
    ]


def test_sqlite_driver_from_profile():
    profile = ProfileConfig(name="local", database="app.db", user="me",
                            driver="sqlite+aiosqlite")
    asker = Asker()

    params = resolve_connection_params(ConnectionOptions(), profile, {}, asker)

    assert params.url.render_as_string() == "sqlite+aiosqlite:///app.db"
    assert asker.asked == []
