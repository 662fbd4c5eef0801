"""Logging configuration for hvresult."""

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-12s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ColoredFormatter(logging.Formatter):
    """Formatter with colored level names when writing to a terminal."""

    COLORS = {
        "DEBUG": "\033[36m",    # Cyan
        "INFO": "\033[32m",     # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",    # Red
        "CRITICAL": "\033[35m", # Magenta
    }
    RESET = "\033[0m"

    def format(self, record):
        if sys.stderr.isatty():
            color = self.COLORS.get(record.levelname, "")
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def setup_logging(log_level: str = "INFO") -> None:
    """Send logs to stderr so stdout stays clean for reports."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ColoredFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logging.basicConfig(level=getattr(logging, log_level.upper()), handlers=[handler], force=True)

    # GitPython logs every command it runs at DEBUG
    logging.getLogger("git").setLevel(logging.WARNING)
