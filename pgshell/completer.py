"""
Tab completion for the interactive prompt.
"""

from typing import Iterable, Self

from prompt_toolkit.completion import CompleteEvent, Completer, Completion
from prompt_toolkit.document import Document

from pgshell.commands import MetaCommand
from pgshell.session import Session


class MetaCommandCompleter(Completer):
    """
    Completes backslash commands and, as a special case, table names after
    "\\d " and database names after "\\c ". Names come from the most recent
    "\\d", "\\d+" and "\\l" listings, so completion never hits the server.
    Completion for SQL statements is not available.
    """

    def __init__(self: Self, session: Session) -> None:
        self.session = session

    def get_completions(
        self: Self, document: Document, complete_event: CompleteEvent
    ) -> Iterable[Completion]:
        text = document.text_before_cursor.lstrip()
        if not text.startswith("\\"):
            return

        match text.split(" ", 1):
            case [command]:
                for cmd in MetaCommand:
                    if cmd.value.startswith(command):
                        yield Completion(cmd.value, start_position=-len(command))

            case [MetaCommand.DESCRIBE.value, prefix]:
                yield from self._complete_names(self.session.known_tables, prefix)

            case [MetaCommand.CONNECT.value, prefix]:
                yield from self._complete_names(
                    self.session.known_databases, prefix
                )

            case _:
                return

    @staticmethod
    def _complete_names(names: list[str], prefix: str) -> Iterable[Completion]:
        if " " in prefix:
            # Already fully completed
            return

        for name in names:
            if name.lower().startswith(prefix.lower()):
                yield Completion(name, start_position=-len(prefix))
