"""
Meta-commands and input classification. Everything in here is pure: no I/O,
no database access.
"""

import re
import textwrap
from dataclasses import dataclass
from enum import StrEnum
from typing import Self, Tuple
from typing import Sequence as Seq

# Identifier following "\c ": letters, digits, hyphen, underscore.
CONNECT_TARGET = re.compile(r"\\c\s+([\w-]+)")
MULTI_WHITESPACE = re.compile(r"\s\s\s*")
STATEMENT_TERMINATOR = ";"
LINE_COMMENT = "--"
# $$ or $tag$, where a tag is an identifier.
DOLLAR_QUOTE = re.compile(r"\$(?:[A-Za-z_]\w*)?\$")


class MetaCommand(StrEnum):
    """
    Backslash commands the shell supports. These are prefixes: "\\list" is
    "\\l", just as it is for the vendor client.
    """

    QUIT = "\\q"
    CONNECT = "\\c"
    LIST_DATABASES = "\\l"
    LIST_TABLES_WITH_COUNTS = "\\d+"
    DESCRIBE = "\\d"
    HELP = "\\?"


class Command:
    """
    Base class for classified input. str() gives back the command as the
    user would type it.
    """


@dataclass(frozen=True)
class Quit(Command):
    """Leave the shell."""

    def __str__(self: Self) -> str:
        return MetaCommand.QUIT.value


@dataclass(frozen=True)
class ConnectTo(Command):
    """
    Switch to another database. name is None when no identifier followed
    "\\c", which just confirms the current connection.
    """

    name: str | None = None

    def __str__(self: Self) -> str:
        if self.name is None:
            return MetaCommand.CONNECT.value
        return f"{MetaCommand.CONNECT.value} {self.name}"


@dataclass(frozen=True)
class ListDatabases(Command):
    """List the databases on the server."""

    def __str__(self: Self) -> str:
        return MetaCommand.LIST_DATABASES.value


@dataclass(frozen=True)
class ListTablesWithCounts(Command):
    """List the tables in the default schema, with their row counts."""

    def __str__(self: Self) -> str:
        return MetaCommand.LIST_TABLES_WITH_COUNTS.value


@dataclass(frozen=True)
class DescribeTable(Command):
    """Show the schema of one table."""

    name: str

    def __str__(self: Self) -> str:
        return f"{MetaCommand.DESCRIBE.value} {self.name}"


@dataclass(frozen=True)
class ListTables(Command):
    """List the tables in the default schema."""

    def __str__(self: Self) -> str:
        return MetaCommand.DESCRIBE.value


@dataclass(frozen=True)
class Help(Command):
    """Show the meta-command help."""

    def __str__(self: Self) -> str:
        return MetaCommand.HELP.value


@dataclass(frozen=True)
class RawQuery(Command):
    """A SQL statement, sent to the server as-is."""

    sql: str

    def __str__(self: Self) -> str:
        return self.sql


@dataclass(frozen=True)
class Empty(Command):
    """Nothing to do."""

    def __str__(self: Self) -> str:
        return ""


@dataclass(frozen=True)
class Unrecognized(Command):
    """
    Anything else: an unknown backslash command, or a SQL statement that
    hasn't been terminated yet.
    """

    text: str

    def __str__(self: Self) -> str:
        return self.text


@dataclass(frozen=True)
class HelpTopic:
    """
    A help topic, consisting of a usage line and help text. The help text
    can be a multi-line string, for readability. The newlines will be
    removed.
    """

    command: MetaCommand
    usage: str
    help: str


HELP: Seq[HelpTopic] = (
    HelpTopic(
        command=MetaCommand.QUIT,
        usage=f"{MetaCommand.QUIT.value} or Ctrl-D",
        help="Quit the shell.",
    ),
    HelpTopic(
        command=MetaCommand.CONNECT,
        usage=f"{MetaCommand.CONNECT.value} <name>",
        help="""
Connect to database <name> on the same server, as the same user. If the new
connection can't be opened, you stay connected to the current database.
""",
    ),
    HelpTopic(
        command=MetaCommand.LIST_DATABASES,
        usage=MetaCommand.LIST_DATABASES.value,
        help="List the databases on the server, in the order the server "
        "returns them.",
    ),
    HelpTopic(
        command=MetaCommand.DESCRIBE,
        usage=MetaCommand.DESCRIBE.value,
        help="List the tables in the default schema.",
    ),
    HelpTopic(
        command=MetaCommand.LIST_TABLES_WITH_COUNTS,
        usage=MetaCommand.LIST_TABLES_WITH_COUNTS.value,
        help="""
List the tables in the default schema, with the number of rows in each. This
runs one count query per table, so it can be slow on a large database.
""",
    ),
    HelpTopic(
        command=MetaCommand.DESCRIBE,
        usage=f"{MetaCommand.DESCRIBE.value} <table>",
        help="Show the columns and foreign keys of <table>.",
    ),
    HelpTopic(
        command=MetaCommand.HELP,
        usage=MetaCommand.HELP.value,
        help="This display.",
    ),
)

HELP_EPILOG = (
    'Anything else is interpreted as SQL. SQL statements must end with a ";", '
    "and multi-line input is supported. A multi-line statement is sent to "
    "the server as typed, line breaks included. Send one statement at a "
    'time: several statements separated by ";" are rejected by the '
    "PostgreSQL driver."
)


def help_text(width: int) -> str:
    """
    Format the help topics, wrapped to fit the screen.

    :param width: the screen width
    """

    def collapse_help(text: str) -> str:
        """
        Remove leading and trailing blank lines from a help string, and
        replace all newlines with blanks. Also, collapse adjacent blanks into
        a single blank.
        """
        return MULTI_WHITESPACE.sub(" ", text.strip().replace("\n", " "))

    prefix_width = max(len(topic.usage) for topic in HELP)

    # How much room do we have left for text? Allow for separating " - ".
    separator = " - "
    text_width = width - 1 - len(separator) - prefix_width
    if text_width < 20:
        text_width = width // 2

    lines: list[str] = []
    for topic in HELP:
        padded_prefix = topic.usage.ljust(prefix_width)
        text_lines = textwrap.wrap(collapse_help(topic.help), width=text_width)
        lines.append(f"{padded_prefix}{separator}{text_lines[0]}")
        padding = " " * (prefix_width + len(separator))
        lines.extend(f"{padding}{text_line}" for text_line in text_lines[1:])

    lines.append("")
    lines.append(textwrap.fill(HELP_EPILOG, width=width))
    return "\n".join(lines)


def _is_word_char(c: str) -> bool:
    return c.isalnum() or c == "_"


def sql_statement_is_complete(s: str) -> Tuple[bool, str | None]:
    """
    Determine if a SQL statement is complete. Looks for a semicolon as the
    last thing in the string outside of quotes and comments, and no open
    quotes. Quotes inside "--" and "/* */" comments don't count, nor do
    quotes inside dollar-quoted ($$...$$ or $tag$...$tag$) bodies, and
    backslash escapes are honored in E'...' strings.

    :param s: the possibly partial SQL statement to check

    :returns: a tuple of a boolean indicating whether the statement is
        complete, and a string containing the open quote (the quote
        character, the dollar-quote tag or "/*"), if any.
    """
    # pylint: disable=too-many-branches
    in_quote: str | None = None
    escapes = False
    last = ""
    i = 0
    while i < len(s):
        c = s[i]
        match in_quote:
            case None:
                pass

            case "'" | '"':
                if escapes and c == "\\":
                    i += 2
                    continue
                if c == in_quote:
                    in_quote = None
                i += 1
                continue

            case "--":
                if c == "\n":
                    in_quote = None
                i += 1
                continue

            case "/*":
                if s.startswith("*/", i):
                    in_quote = None
                    i += 2
                else:
                    i += 1
                continue

            case tag:
                if s.startswith(tag, i):
                    in_quote = None
                    i += len(tag)
                else:
                    i += 1
                continue

        if s.startswith(LINE_COMMENT, i) or s.startswith("/*", i):
            in_quote = s[i:i + 2]
            i += 2
            continue

        prev = s[i - 1] if i > 0 else ""
        if c in ('"', "'"):
            escapes = (
                c == "'"
                and prev in ("e", "E")
                and not (i > 1 and _is_word_char(s[i - 2]))
            )
            in_quote = c
        elif (
            c == "$"
            and not _is_word_char(prev)
            and (m := DOLLAR_QUOTE.match(s, i)) is not None
        ):
            in_quote = m.group(0)
            i = m.end()
            last = c
            continue

        if not c.isspace():
            last = c
        i += 1

    if in_quote == LINE_COMMENT:
        in_quote = None

    complete = (in_quote is None) and (last == STATEMENT_TERMINATOR)
    return (complete, in_quote)


def classify(text: str) -> Command:
    """
    Classify a line (or accumulated lines) of input. The order of the checks
    matters: "\\d+" is also a "\\d" prefix.

    :param text: the input; leading and trailing whitespace is ignored
    """
    text = text.strip()

    if text == "":
        return Empty()

    if text.startswith(MetaCommand.QUIT):
        return Quit()

    if text.startswith(MetaCommand.CONNECT):
        match CONNECT_TARGET.match(text):
            case None:
                return ConnectTo()
            case m:
                return ConnectTo(m.group(1))

    if text.startswith(MetaCommand.LIST_DATABASES):
        return ListDatabases()

    if text.startswith(MetaCommand.LIST_TABLES_WITH_COUNTS):
        return ListTablesWithCounts()

    if text.startswith(MetaCommand.DESCRIBE):
        table_name = text[len(MetaCommand.DESCRIBE):].strip()
        table_name = table_name.rstrip(STATEMENT_TERMINATOR).strip()
        if table_name:
            return DescribeTable(table_name)
        return ListTables()

    if text.startswith(MetaCommand.HELP):
        return Help()

    complete, _ = sql_statement_is_complete(text)
    if complete:
        return RawQuery(text)

    return Unrecognized(text)


def is_meta_command(text: str) -> bool:
    """
    True if the input is a backslash command, which is always a single line.
    """
    return text.lstrip().startswith("\\")


def is_complete(command: Command) -> bool:
    """
    Whether accumulated input is ready to be dispatched. Only unterminated
    SQL keeps the shell collecting lines.
    """
    match command:
        case Unrecognized(text=text):
            return is_meta_command(text)
        case _:
            return True
