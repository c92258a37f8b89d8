"""
Shell session state.
"""

from dataclasses import dataclass, field
from typing import Self

from pgshell.connection import ConnectionHandle, ConnectionParams


@dataclass
class Session:
    """
    The mutable state of one shell session. There is exactly one of these
    for the lifetime of the shell, passed to whatever needs it.

    params is updated when the user switches databases, so
    params.database is always the active database. known_tables and
    known_databases hold the most recent listings, for tab completion.
    """

    params: ConnectionParams
    connection: ConnectionHandle
    pending_input: str = ""
    known_tables: list[str] = field(default_factory=list)
    known_databases: list[str] = field(default_factory=list)

    @property
    def active_database(self: Self) -> str:
        """The database the session is connected to."""
        return self.params.database

    @property
    def user(self: Self) -> str:
        """The user the session is connected as."""
        return self.params.user or ""

    async def close(self: Self) -> None:
        """
        Release the connection. Safe to call more than once.
        """
        self.pending_input = ""
        await self.connection.close()
