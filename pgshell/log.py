"""
Logging setup. Diagnostics go through structlog to stderr; what the user
asked to see (results, errors from commands) is printed by pgshell.display.
"""

import logging
import sys
from typing import Any, Self

import structlog


class CurrentStderrHandler(logging.StreamHandler):
    """
    A stream handler that always writes to whatever sys.stderr is at the time
    of the call. While a prompt is active, prompt_toolkit swaps sys.stderr for
    a proxy that redraws the prompt around the output; a handler holding on
    to the original stream would write over the prompt.
    """

    def __init__(self: Self) -> None:
        super().__init__(sys.stderr)

    @property
    def stream(self: Self) -> Any:
        return sys.stderr

    @stream.setter
    def stream(self: Self, value: Any) -> None:
        pass


def setup_logging(verbose: bool) -> None:
    """
    Configures structlog for the entire application.
    - Default level: WARNING (keep the interactive session clean)
    - Verbose level: DEBUG
    - All logs are routed to stderr, to keep stdout for query results.
    """
    log_level = logging.DEBUG if verbose else logging.WARNING

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.addHandler(CurrentStderrHandler())
    root_logger.setLevel(log_level)

    # asyncio is chatty at DEBUG.
    if verbose:
        logging.getLogger("asyncio").setLevel(logging.INFO)
