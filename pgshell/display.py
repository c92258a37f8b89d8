"""
Terminal output. Everything the shell shows the user goes through here.

All output is written as UTF-8, whatever the host terminal's code page says,
and tables are padded by display width rather than by character count, so
columns holding CJK (or other double-width) text still line up. Each result
is written with a single print() call, so that when prompt_toolkit is
redrawing a prompt around our output, a result is never split up.
"""

import json
import os
import sys
from datetime import date, datetime
from typing import Any, Sequence

import sqlalchemy
import structlog
from prompt_toolkit.utils import get_cwidth
from termcolor import colored

from pgshell.executor import (
    ExecutionError,
    NotFound,
    Result,
    Rows,
    SchemaText,
    SingleColumnSummary,
    StatusMessage,
)

DEFAULT_SCREEN_WIDTH = 79
NULL = "NULL"

logger = structlog.get_logger(__name__)


def screen_width() -> int:
    """
    The screen width, from the COLUMNS environment variable if it's set and
    valid.
    """
    match os.environ.get("COLUMNS"):
        case None:
            return DEFAULT_SCREEN_WIDTH
        case s_width:
            try:
                return int(s_width)
            except ValueError:
                logger.warning("display.bad_columns", columns=s_width)
                return DEFAULT_SCREEN_WIDTH


def configure_output_encoding() -> None:
    """
    Force UTF-8 on stdout and stderr. Without this, a Windows console (or a
    C locale) encodes output with a code page that can't represent most
    multi-byte text.
    """
    for stream in (sys.stdout, sys.stderr):
        reconfigure = getattr(stream, "reconfigure", None)
        if reconfigure is None:
            continue
        try:
            reconfigure(encoding="utf-8", errors="replace")
        except ValueError:
            # Some captured streams can't change encoding once written to.
            logger.debug("display.reconfigure_failed", stream=repr(stream))


def error(msg: str) -> None:
    """
    Print error messages in a consistent way.
    """
    print(f"{colored('Error:', 'red')} {msg}", file=sys.stderr)


def format_value(val: Any) -> str:
    """
    Convert a column value to a string for display. NULLs are shown as
    "NULL", JSON-ish values as (non-ASCII-escaped) JSON.
    """
    match val:
        case None:
            return NULL
        case dict() | list():
            return json.dumps(val, ensure_ascii=False, default=str)
        case datetime():
            return val.isoformat(sep=" ")
        case date():
            return val.strftime("%Y-%m-%d")
        case _:
            return str(val)


def pad(s: str, width: int) -> str:
    """
    Left-justify s in a field of the given display width.
    """
    return s + " " * max(width - get_cwidth(s), 0)


def row_count_line(total: int, elapsed: float | None = None) -> str:
    """
    The "N rows" summary shown after a query.
    """
    suffix = "" if total == 1 else "s"
    epilog = f"{total:,} row{suffix}"
    if elapsed is not None:
        epilog = f"{epilog} ({elapsed:.03f} seconds)"
    return epilog


def format_results(
    columns: list[str],
    data: list[Sequence[Any]],
    total: int,
    elapsed: float | None = None,
    no_results_message: str | None = None,
) -> str:
    """
    Format the results of a query as a table, followed by a row count.

    :param columns: the names of the columns, in order
    :param data: list of rows. Each row is a sequence of values, in column
        order
    :param total: the row count to report
    :param elapsed: the time taken by the query, or None not to display one
    :param no_results_message: the message to display if a query returning
        columns produced no rows, or None for the default message
    """

    def make_output_line(
        fields: list[str], delim: str = "|", pad_char: str = " "
    ) -> str:
        """
        Format a single output line from a result set.
        """
        return (
            f"{delim}{pad_char}"
            + f"{pad_char}{delim}{pad_char}".join(fields)
            + f"{pad_char}{delim}"
        )

    lines: list[str] = []
    if len(columns) > 0 and len(data) == 0:
        lines.append(no_results_message or "No data.")

    elif len(columns) > 0:
        cells = [[format_value(datum) for datum in row] for row in data]

        # For each column, figure out how wide to make it in the display,
        # based on the data.
        widths = [get_cwidth(col) for col in columns]
        for row_cells in cells:
            for i, datum in enumerate(row_cells):
                widths[i] = max(widths[i], get_cwidth(datum))

        sep = ["-" * width for width in widths]
        header = [pad(col, width) for col, width in zip(columns, widths)]

        lines.append(make_output_line(sep, "+", "-"))
        lines.append(make_output_line(header))
        lines.append(make_output_line(sep, "+", "-"))
        for row_cells in cells:
            fields = [pad(datum, width) for datum, width in zip(row_cells, widths)]
            lines.append(make_output_line(fields))
        lines.append(make_output_line(sep, "+", "-"))

    lines.append(row_count_line(total, elapsed))
    return "\n".join(lines)


def error_message(e: Exception) -> str:
    """
    The message for an error. For driver errors, that's the driver's own
    message, without SQLAlchemy's statement echo and documentation link.
    """
    if isinstance(e, sqlalchemy.exc.DBAPIError) and e.orig is not None:
        return str(e.orig).strip()

    return str(e)


def render(result: Result | None) -> None:
    """
    Display the result of a command.
    """
    match result:
        case None | StatusMessage(text=""):
            pass

        case StatusMessage(text=text) | SchemaText(text=text):
            print(text)

        case SingleColumnSummary(values=values):
            print(", ".join(values))

        case NotFound(name=name):
            print(f'Did not find any relation named "{name}".')

        case Rows(columns=columns, rows=rows, row_count=total, elapsed=elapsed):
            print(format_results(columns, rows, total, elapsed))

        case ExecutionError(query=query, error=e):
            print(
                f"{colored('Error:', 'red')} {error_message(e)}\n"
                f"{colored('Query:', 'yellow')} {query}",
                file=sys.stderr,
            )

        case _:
            error(f"Don't know how to display {result!r}.")
