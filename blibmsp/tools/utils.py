import re
import sys
import logging

from typing import Dict

from colorama import Fore, Style


LOG_FORMAT = '[%(asctime)s] %(levelname).1s | %(name)s | %(message)s'
LOG_DATE_FORMAT = '%H:%M:%S'

FIELD_COLORS = (
    (r"%\(asctime\)s", Fore.GREEN),
    (r"%\(name\).*?s", Fore.BLUE),
)

LEVEL_COLORS = {
    logging.DEBUG: Style.DIM,
    logging.INFO: Fore.GREEN,
    logging.WARNING: Fore.YELLOW + Style.BRIGHT,
    logging.ERROR: Fore.RED + Style.BRIGHT,
    logging.CRITICAL: Fore.RED + Style.BRIGHT,
}


def colorize_format(fmt: str, level_color: str = '') -> str:
    """Wrap the time, logger name and level fields of a %-style format in color codes"""
    fields = list(FIELD_COLORS)
    if level_color:
        fields.append((r"%\(levelname\).*?s", level_color))
    for field, color in fields:
        fmt = re.sub("(" + field + ")", color + r"\1" + Style.RESET_ALL, fmt)
    return fmt


class ColoringFormatter(logging.Formatter):
    """Format each record with a copy of the format whose level field matches its severity."""

    _formatters: Dict[int, logging.Formatter]

    def __init__(self, fmt: str, **kwargs):
        super().__init__(fmt, **kwargs)
        self._formatters = {
            level: logging.Formatter(colorize_format(fmt, color), **kwargs)
            for level, color in LEVEL_COLORS.items()
        }

    def format(self, record: logging.LogRecord) -> str:
        fmtr = self._formatters.get(record.levelno)
        if fmtr is None:
            return super().format(record)
        return fmtr.format(record)


def configure_logging(verbose: bool=False):
    """Send log messages to STDERR, colored by level, at INFO or with `verbose` at DEBUG"""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT)
    logging.getLogger().setLevel(level)

    fmtr = ColoringFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    for handler in logging.getLogger().handlers:
        handler.setFormatter(
            fmtr
        )
