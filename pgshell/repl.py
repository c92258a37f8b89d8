"""
The read-eval-print loop.

The loop runs on a single asyncio event loop. Reading a line and running a
command are both suspension points, but only one command is ever in flight:
commands are dispatched strictly in order, and the next one isn't started
until the previous one's result has been printed.

In relaxed mode, a reader task keeps prompting for input while a command
runs, and complete commands queue up behind it. Output is written through
prompt_toolkit's patched stdout, which erases the prompt, prints, and redraws
the prompt, so results and the prompt don't garble each other.
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import suppress
from pathlib import Path
from typing import Callable, Self

import structlog
from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer
from prompt_toolkit.history import FileHistory
from prompt_toolkit.patch_stdout import patch_stdout

from pgshell.commands import (
    Command,
    MetaCommand,
    Quit,
    Unrecognized,
    classify,
    is_complete,
    is_meta_command,
)
from pgshell.completer import MetaCommandCompleter
from pgshell.connection import (
    ConnectionHandle,
    ConnectionParams,
    Connector,
    connect,
)
from pgshell.display import error, render
from pgshell.executor import ExecutionError, execute
from pgshell.session import Session

Prompt = Callable[[], str]

logger = structlog.get_logger(__name__)


class LineReader(ABC):
    """
    A source of input lines.
    """

    @abstractmethod
    async def read_line(self: Self, prompt: Prompt) -> str:
        """
        Read one line. prompt is called to get the prompt text, and may be
        called again whenever the prompt is redrawn.

        Raises EOFError at end of input, KeyboardInterrupt on Ctrl-C.
        """

    def close(self: Self) -> None:
        """
        Release the input source. Reads after this raise EOFError.
        """


class PromptLineReader(LineReader):
    """
    Reads lines with prompt_toolkit, with history and tab completion.
    """

    def __init__(
        self: Self, history_file: Path, completer: Completer | None = None
    ) -> None:
        self._closed = False
        self._prompt_session: PromptSession[str] = PromptSession(
            history=FileHistory(str(history_file)),
            completer=completer,
        )

    async def read_line(self: Self, prompt: Prompt) -> str:
        if self._closed:
            raise EOFError()

        return await self._prompt_session.prompt_async(prompt)

    def close(self: Self) -> None:
        self._closed = True


class Repl:
    """
    The command loop: AwaitingInput -> Dispatching -> (AwaitingInput or
    Terminating).
    """

    def __init__(
        self: Self, session: Session, reader: LineReader, relaxed: bool = False
    ) -> None:
        self.session = session
        self.reader = reader
        self.relaxed = relaxed

    def prompt(self: Self) -> str:
        """
        "<database>=# ", or "<database>-# " while a statement is being
        continued over several lines.
        """
        marker = "-" if self.session.pending_input else "="
        return f"{self.session.active_database}{marker}# "

    def accept_line(self: Self, line: str) -> Command | None:
        """
        Add a line of input to the pending input.

        A backslash command is always a single line: it's classified on its
        own and discards any pending input, so "\\q" always quits. Anything
        else is appended to the pending input as a new line, which is
        dispatched once it forms a complete statement. The line breaks are
        kept, so a "--" comment ends where the user ended it.

        :returns: the command to dispatch, or None if more input is needed
        """
        if is_meta_command(line):
            self.session.pending_input = ""
            return classify(line)

        if self.session.pending_input:
            text = f"{self.session.pending_input}\n{line}"
        else:
            text = line.strip()
        command = classify(text)
        if is_complete(command):
            self.session.pending_input = ""
            return command

        self.session.pending_input = text
        return None

    async def next_command(self: Self) -> Command:
        """
        Read lines until there's a complete command. End of input is Quit;
        Ctrl-C discards the pending input.
        """
        while True:
            try:
                line = await self.reader.read_line(self.prompt)
            except EOFError:
                print()
                return Quit()
            except KeyboardInterrupt:
                self.session.pending_input = ""
                continue

            if (command := self.accept_line(line)) is not None:
                return command

    async def dispatch(self: Self, command: Command) -> bool:
        """
        Execute a command and display its result.

        :returns: False if the loop should terminate, True otherwise
        """
        match command:
            case Quit():
                return False

            case Unrecognized(text=text):
                error(
                    f"Invalid command {text.split()[0]}. "
                    f"Try {MetaCommand.HELP.value} for help."
                )
                return True

        try:
            result = await execute(command, self.session)

        # pylint: disable=broad-except
        except Exception as e:
            logger.debug("command.failed", command=str(command), exc_info=True)
            result = ExecutionError(query=str(command), error=e)

        render(result)
        return True

    async def run(self: Self) -> None:
        """
        Run until the user quits or input ends, then close the input and the
        connection.
        """
        try:
            if self.relaxed:
                await self._run_relaxed()
            else:
                await self._run_serial()
        finally:
            self.reader.close()
            await self.session.close()

    async def _run_serial(self: Self) -> None:
        while await self.dispatch(await self.next_command()):
            pass

    async def _run_relaxed(self: Self) -> None:
        queue: asyncio.Queue[Command] = asyncio.Queue()

        async def read_commands() -> None:
            try:
                while True:
                    command = await self.next_command()
                    await queue.put(command)
                    if isinstance(command, Quit):
                        return
            except Exception:
                # Unblock the dispatcher; the exception surfaces when the
                # task is awaited below.
                await queue.put(Quit())
                raise

        reader = asyncio.create_task(read_commands())
        try:
            while await self.dispatch(await queue.get()):
                pass
        finally:
            reader.cancel()
            with suppress(asyncio.CancelledError):
                await reader


async def run_shell(
    params: ConnectionParams,
    history_file: Path,
    relaxed: bool = False,
    connector: Connector = connect,
) -> None:
    """
    Connect and run the command loop. A failure to open the initial
    connection raises DatabaseConnectionError, before any prompt is shown.
    """
    handle = ConnectionHandle(connector)
    await handle.open(params)
    session = Session(params=params, connection=handle)
    try:
        reader = PromptLineReader(history_file, MetaCommandCompleter(session))
        with patch_stdout(raw=True):
            await Repl(session, reader, relaxed=relaxed).run()
    finally:
        await session.close()
