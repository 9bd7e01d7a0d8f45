import sys
import logging
from pathlib import Path
from typing import Optional, Union

from rich.console import Console
from rich.errors import MarkupError
from rich.logging import RichHandler
from rich.text import Text

console = Console(
    width=None,
    legacy_windows=False,
    file=sys.stdout
)

# Configure the root logger
logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(
        console=console,
        rich_tracebacks=True,
        markup=True,
        show_path=False,
        enable_link_path=False
    )],
    force=True
)

# Get the logger instance
log = logging.getLogger("dexscript")


def set_verbosity(verbose: bool = False, debug: bool = False):
    """Adjusts the package log level from CLI flags."""
    if debug:
        log.setLevel(logging.DEBUG)
    elif verbose:
        log.setLevel(logging.INFO)
    else:
        log.setLevel(logging.WARNING)


class PlainTextFormatter(logging.Formatter):
    """Formats records for log files, dropping the rich markup used on the console."""

    def formatMessage(self, record: logging.LogRecord) -> str:
        try:
            record.message = Text.from_markup(record.message).plain
        except MarkupError:
            # Not markup after all; keep the raw text.
            pass
        return super().formatMessage(record)


def setup_file_logging(log_file_path: Union[str, Path], level: str = "DEBUG") -> logging.FileHandler:
    """
    Adds a UTF-8 file handler to the package logger and returns it.

    Missing parent directories are created. Records are written as plain
    text, one per line, with their level and logger name.
    """
    path = Path(log_file_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(path, encoding="utf-8")
    file_handler.setFormatter(PlainTextFormatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S"
    ))
    file_handler.setLevel(getattr(logging, level.upper()))
    log.addHandler(file_handler)
    return file_handler


def remove_file_logging(handler: Optional[logging.Handler]):
    if handler is None:
        return
    log.removeHandler(handler)
    handler.close()
