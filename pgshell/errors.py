"""
Exceptions thrown by pgshell.
"""

from typing import Self


class PgShellException(Exception):
    """
    Base class for exceptions thrown by the shell. Also thrown explicitly
    for certain errors in the shell.
    """


class AbortError(PgShellException):
    """
    Thrown to force an abort with a non-zero exit code.
    """


class ConfigurationError(PgShellException):
    """
    Thrown to indicate a configuration error.
    """


class TooManyMatchesError(PgShellException):
    """
    Thrown to indicate that a profile name matched too many sections in the
    configuration file.
    """


class DatabaseConnectionError(PgShellException):
    """
    Thrown when a connection to the database server cannot be opened.
    """


class NotConnectedError(PgShellException):
    """
    Thrown when the active connection is requested before one has been
    opened, or after it has been closed.
    """


class QueryError(PgShellException):
    """
    Wraps an error reported by the server (or the driver) while running a
    SQL statement, remembering the statement that caused it.
    """

    def __init__(self: Self, sql: str, error: Exception) -> None:
        super().__init__(str(error))
        self.sql = sql
        self.error = error
