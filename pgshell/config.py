"""
Configuration and credential resolution for pgshell. Separated, to reduce
code clutter in the main module.

Each connection setting is taken from the first of these that supplies it:

1. the command line
2. the selected profile in the configuration file
3. environment variables (a ".env" file in the current directory is loaded
   into the environment first)
4. an interactive prompt
5. a default
"""

import os
import textwrap
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from string import Template
from typing import Any, Callable, Mapping, Self

import click

from pgshell.connection import (
    DEFAULT_DRIVER,
    ConnectionParams,
    is_file_database,
)
from pgshell.errors import ConfigurationError, TooManyMatchesError

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 5432

ENV_DATABASE = ("DB_NAME",)
ENV_USER = ("DB_USER", "DB_USERNAME")
ENV_PASSWORD = ("DB_PASSWORD", "DB_PASS")
ENV_HOST = ("DB_HOST", "DB_HOSTNAME")
ENV_PORT = ("DB_PORT",)

PROFILE_KEYS = ("database", "user", "password", "host", "port", "driver",
                "history")

# Asks the user for a value. Arguments are the prompt text and whether to
# hide the input. An empty reply means "use the default".
Ask = Callable[[str, bool], str]


@dataclass(frozen=True)
class ProfileConfig:
    """
    A single connection profile (section) from the configuration file.
    """

    name: str
    database: str | None = None
    user: str | None = None
    password: str | None = field(default=None, repr=False)
    host: str | None = None
    port: int | None = None
    driver: str | None = None
    history_file: Path | None = None


@dataclass(frozen=True)
class ConnectionOptions:
    """
    Connection settings given on the command line. None means "not given".
    """

    database: str | None = None
    user: str | None = None
    password: str | None = field(default=None, repr=False)
    host: str | None = None
    port: int | None = None
    driver: str | None = None
    prompt_password: bool = True
    force_password_prompt: bool = False


class Configuration:
    """
    Represents the parsed configuration data.
    """

    def __init__(
        self: Self, profiles: list[ProfileConfig], path: Path
    ) -> None:
        """
        Initialize a Configuration object.
        """
        self._profiles = profiles
        self._path = path

    @property
    def path(self: Self) -> Path:
        """
        Returns the path associated with the configuration.
        """
        return self._path

    def lookup(self: Self, spec: str) -> list[ProfileConfig] | None:
        """
        Uses a string to look up a profile. Returns a list of matching
        profiles, or None if no match. An exact (case-blind) match wins over
        prefix matches.
        """
        exact = [p for p in self._profiles if p.name.lower() == spec.lower()]
        if len(exact) > 0:
            return exact

        matches = [
            p for p in self._profiles
            if p.name.lower().startswith(spec.lower())
        ]

        if len(matches) == 0:
            return None

        return matches

    def profile(self: Self, spec: str) -> ProfileConfig:
        """
        Find exactly one profile. Raises ConfigurationError if there's no
        match, and TooManyMatchesError if spec is ambiguous.
        """
        match self.lookup(spec):
            case None | []:
                raise ConfigurationError(
                    f'"{self._path}": No profile matches "{spec}".'
                )
            case [profile]:
                return profile
            case profiles:
                match_str = ", ".join([p.name for p in profiles])
                raise TooManyMatchesError(
                    textwrap.fill(
                        f'"{spec}" matches more than one section in '
                        f'"{self._path}": {match_str}'
                    )
                )


class EnvDict(dict):
    """
    For environment substitution, we want a reference to a non-existent
    variable to substitute "", rather than throw an error (as with
    Template.substitute()) or leave the reference intact (as with
    Template.safe_substitute()). To do that, we simply use a custom
    dictionary class.
    """

    def __init__(self: Self, *args, **kw) -> None:
        """Initialize the dictionary"""
        self.update(*args, **kw)

    def __getitem__(self: Self, key: Any) -> Any:
        """Get an item from the dictionary"""
        return super().get(key, "")


def parse_port(value: Any, where: str) -> int:
    """
    Convert a port setting to an int. Raises ConfigurationError if it isn't
    a valid port number.
    """
    try:
        port = int(value)
    except (TypeError, ValueError):
        # pylint: disable=raise-missing-from
        raise ConfigurationError(f'{where}: "{value}" is not a valid port.')

    if not 0 < port < 65536:
        raise ConfigurationError(f'{where}: "{value}" is not a valid port.')

    return port


def load_configuration(
    config: Path, environ: Mapping[str, str] | None = None
) -> Configuration:
    """
    Reads the configuration file. Each section is a named connection
    profile, with optional "database", "user", "password", "host", "port",
    "driver" and "history" settings. Environment variables ($VAR or ${VAR})
    are substituted in string values, and "~" is expanded in the history
    path. Raises ConfigurationError on error.

    :param config: Path to the configuration file, which must exist
    :param environ: The environment to substitute from; defaults to os.environ
    """
    assert config.exists()

    try:
        with open(config, mode="rb") as f:
            data = tomllib.load(f)
    except Exception as e:
        # pylint: disable=raise-missing-from
        raise ConfigurationError(f'Unable to read "{config}": {e}')

    env = EnvDict(**(os.environ if environ is None else environ))

    profiles: list[ProfileConfig] = []
    for key, values in data.items():
        if not isinstance(values, dict):
            raise ConfigurationError(
                f'"{config}": "{key}" is not a section.'
            )

        settings: dict[str, Any] = {}
        for name in PROFILE_KEYS:
            value = values.get(name)
            if isinstance(value, str):
                try:
                    value = Template(value).substitute(env)
                except ValueError as e:
                    # pylint: disable=raise-missing-from
                    raise ConfigurationError(
                        f'"{config}", section "{key}", "{name}": {e}'
                    )
            settings[name] = value

        port = settings["port"]
        if port not in (None, ""):
            port = parse_port(port, f'"{config}", section "{key}"')
        else:
            port = None

        history = settings["history"]
        if history:
            history = Path(history).expanduser()

        profiles.append(
            ProfileConfig(
                name=key,
                database=settings["database"] or None,
                user=settings["user"] or None,
                password=settings["password"] or None,
                host=settings["host"] or None,
                port=port,
                driver=settings["driver"] or None,
                history_file=history or None,
            )
        )

    return Configuration(profiles=profiles, path=config)


def first_env(environ: Mapping[str, str], names: tuple[str, ...]) -> str | None:
    """
    The value of the first of the named environment variables that is set
    and non-empty.
    """
    for name in names:
        if value := environ.get(name):
            return value
    return None


def click_ask(text: str, hide_input: bool) -> str:
    """
    Ask on the terminal. An empty reply is allowed.
    """
    return click.prompt(
        text,
        default="",
        show_default=False,
        hide_input=hide_input,
        prompt_suffix="",
    )


def resolve_connection_params(
    options: ConnectionOptions,
    profile: ProfileConfig | None,
    environ: Mapping[str, str],
    ask: Ask = click_ask,
) -> ConnectionParams:
    """
    Work out the connection parameters, asking the user for anything not
    otherwise supplied. The user defaults to the database name, and the
    password to the user name. SQLite has no server, so there are no host,
    port or password settings to resolve for it.

    Raises ConfigurationError if there's no database name, or if the port
    isn't a number.
    """
    profile = profile or ProfileConfig(name="")

    database = (
        options.database
        or profile.database
        or first_env(environ, ENV_DATABASE)
        or ask("database name: ", False)
    )
    if not database:
        raise ConfigurationError("Missing database name.")

    user = (
        options.user
        or profile.user
        or first_env(environ, ENV_USER)
        or ask(f"database user (default {database}): ", False)
        or database
    )

    driver = options.driver or profile.driver or DEFAULT_DRIVER
    if is_file_database(driver):
        return ConnectionParams(database=database, user=user, driver=driver)

    password = options.password
    if not (password or options.force_password_prompt):
        password = profile.password or first_env(environ, ENV_PASSWORD)
    if not password:
        if options.prompt_password or options.force_password_prompt:
            password = ask(f"database password (default {user}): ", True)
        password = password or user

    host = (
        options.host
        or profile.host
        or first_env(environ, ENV_HOST)
        or ask(f"database host (default {DEFAULT_HOST}): ", False)
        or DEFAULT_HOST
    )

    port: Any = (
        options.port
        or profile.port
        or first_env(environ, ENV_PORT)
        or ask(f"database port (default {DEFAULT_PORT}): ", False)
        or DEFAULT_PORT
    )

    return ConnectionParams(
        database=database,
        user=user,
        password=password,
        host=host,
        port=parse_port(port, "database port"),
        driver=driver,
    )
