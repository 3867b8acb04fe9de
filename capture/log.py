"""
Logger factory for the capture package.

All module loggers hang off the ``capture`` parent, which gets a single
rich console handler the first time any logger is requested.
"""
import logging
from typing import Optional

from rich.logging import RichHandler

from config.settings import LOG_LEVEL

ROOT_LOGGER = "capture"

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def _configure_root(level: str) -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if root.handlers:  # already configured
        return root

    handler = RichHandler(show_path=False, rich_tracebacks=True, markup=False)
    handler.setFormatter(logging.Formatter("%(name)s - %(message)s", datefmt="[%X]"))
    root.addHandler(handler)
    root.setLevel(_LEVELS.get(level.upper(), logging.INFO))
    return root


def get_logger(name: str) -> logging.Logger:
    """Return ``capture.<name>``, configuring the parent logger once."""
    _configure_root(LOG_LEVEL)
    if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def set_level(level: Optional[str]):
    """Change the capture log level at runtime (used by ``--debug``)."""
    if not level:
        return
    _configure_root(level).setLevel(_LEVELS.get(level.upper(), logging.INFO))
