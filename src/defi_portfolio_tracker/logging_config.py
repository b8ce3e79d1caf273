"""Rich console logging for the command line."""

import logging

from rich.console import Console
from rich.logging import RichHandler

NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "web3")


def configure_logging(level: str = "INFO", console: Console | None = None) -> None:
    """
    Route all log records through a single ``RichHandler`` on stderr.

    Parameters
    ----------
    level : str
        Level name; unknown names fall back to INFO
    console : Console | None
        Console to log to (default: a stderr console)

    """
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO

    logging.basicConfig(
        level=resolved,
        format="%(message)s",
        datefmt="[%Y-%m-%d %H:%M:%S]",
        handlers=[
            RichHandler(
                console=console or Console(stderr=True),
                rich_tracebacks=True,
                show_path=False,
            )
        ],
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
