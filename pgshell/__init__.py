"""
A lightweight interactive SQL shell, in the spirit of psql, that works in
terminals whose own database clients garble multi-byte text. It connects to
a PostgreSQL server by default (any SQLAlchemy async dialect will do),
supports a handful of psql-style backslash commands, and runs anything else
as SQL.

Run with --help for an extended usage message.
"""

import asyncio
import os
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from termcolor import colored

from pgshell.commands import MetaCommand
from pgshell.config import (
    Configuration,
    ConnectionOptions,
    ProfileConfig,
    load_configuration,
    resolve_connection_params,
)
from pgshell.display import configure_output_encoding, error
from pgshell.errors import (
    AbortError,
    ConfigurationError,
    DatabaseConnectionError,
    TooManyMatchesError,
)
from pgshell.log import setup_logging
from pgshell.repl import run_shell

NAME = "pgshell"
VERSION = "0.1.0"
# -h is the server host, as with psql.
CLICK_CONTEXT_SETTINGS = {"help_option_names": ["--help"]}
DEFAULT_HISTORY_FILE = Path("~/.pgshell-history").expanduser()
DEFAULT_CONFIG_FILE = Path("~/.pgshell.cfg").expanduser()


def find_configuration(config: str | None) -> Configuration | None:
    """
    Load the configuration file named on the command line, or the default
    one if it exists. Returns None if there's no configuration.
    """
    if config is None:
        p_config = DEFAULT_CONFIG_FILE
        if not p_config.exists():
            return None
    else:
        p_config = Path(config).expanduser()
        if not p_config.exists():
            print(f'WARNING: Configuration file "{config}" does not exist.')
            return None

    if not p_config.is_file():
        raise AbortError(f'Configuration file "{p_config}" is not a file.')

    return load_configuration(p_config)


# pylint: disable=too-many-arguments,too-many-positional-arguments,too-many-locals
@click.command(name=NAME, context_settings=CLICK_CONTEXT_SETTINGS)
@click.option("-d", "--dbname", help="Database to connect to.")
@click.option("-U", "--username", help="Database user.")
@click.option("-h", "--host", help="Database server host.")
@click.option(
    "-P", "--port", type=click.IntRange(1, 65535), help="Database server port."
)
@click.option(
    "-W",
    "--password",
    "force_password",
    is_flag=True,
    help="Always prompt for the password, ignoring the configuration file "
    "and the environment.",
)
@click.option(
    "-w",
    "--no-password",
    is_flag=True,
    help="Never prompt for the password. If none is configured, the user "
    "name is used.",
)
@click.option(
    "--driver",
    help="SQLAlchemy driver name (e.g. postgresql+asyncpg, "
    "sqlite+aiosqlite). [default: postgresql+asyncpg]",
)
@click.option(
    "--profile",
    help="Name of a section in the configuration file to take connection "
    "settings from. A unique prefix is enough.",
)
@click.option(
    "-c",
    "--config",
    is_flag=False,
    default=None,
    type=click.Path(dir_okay=False),
    help=f"The location of the optional configuration file. [default: "
    f"{DEFAULT_CONFIG_FILE}]",
)
@click.option(
    "--history",
    is_flag=False,
    default=None,
    help="Location of the history file. This can be overridden, on a "
    f"per-profile basis, in the configuration. [default: {DEFAULT_HISTORY_FILE}]",
)
@click.option(
    "--no-wait",
    is_flag=True,
    help="Keep prompting while a query runs. Statements still run one at a "
    "time, in order.",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.version_option(VERSION)
@click.argument("database", required=False)
@click.argument("user", required=False)
def main(
    dbname: str | None,
    username: str | None,
    host: str | None,
    port: int | None,
    force_password: bool,
    no_password: bool,
    driver: str | None,
    profile: str | None,
    config: str | None,
    history: str | None,
    no_wait: bool,
    verbose: bool,
    database: str | None,
    user: str | None,
) -> None:
    """
    Connect to a database and prompt for commands and SQL statements.

    Connection settings not given on the command line come from the selected
    profile of the configuration file, then from the environment (DB_NAME,
    DB_USER or DB_USERNAME, DB_PASSWORD or DB_PASS, DB_HOST or DB_HOSTNAME,
    DB_PORT; a ".env" file in the current directory is read first), and
    finally from prompts. The user defaults to the database name, and the
    password to the user name.

    The configuration file is TOML. Each section is a profile:

    \b
        [local]
        database = "app"
        user = "app"
        password = "${APP_DB_PASSWORD}"
        host = "localhost"
        port = 5432
        history = "~/.pgshell-app-history"

    Inside the shell, type \\? for a list of commands. SQL statements must
    end with a ";" and may span multiple lines.

    Drivers other than PostgreSQL's need their own packages, for instance
    "pip install aiosqlite" for sqlite+aiosqlite.
    """
    setup_logging(verbose)
    configure_output_encoding()

    try:
        load_dotenv(dotenv_path=Path.cwd() / ".env")
        configuration = find_configuration(config)

        selected: ProfileConfig | None = None
        if profile is not None:
            if configuration is None:
                raise ConfigurationError(
                    f'No configuration file to find profile "{profile}" in.'
                )
            selected = configuration.profile(profile)

        options = ConnectionOptions(
            database=dbname or database,
            user=username or user,
            host=host,
            port=port,
            driver=driver,
            prompt_password=not no_password,
            force_password_prompt=force_password,
        )
        params = resolve_connection_params(options, selected, os.environ)

        if history is not None:
            history_file = Path(history).expanduser()
        elif (selected is not None) and (selected.history_file is not None):
            history_file = selected.history_file
        else:
            history_file = DEFAULT_HISTORY_FILE

        print(colored(f"{NAME}, version {VERSION}", "blue", attrs=["bold"]))
        print(f"Type {MetaCommand.HELP.value} for help, "
              f"{MetaCommand.QUIT.value} to quit.\n")

        asyncio.run(run_shell(params, history_file, relaxed=no_wait))

    except (
        AbortError,
        ConfigurationError,
        DatabaseConnectionError,
        TooManyMatchesError,
    ) as e:
        error(str(e))
        sys.exit(1)


if __name__ == "__main__":
    # pylint: disable=no-value-for-parameter
    main()
