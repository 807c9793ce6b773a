"""
Main entry point for versync.

Installs a global exception hook so unexpected errors are logged, then hands
over to the command line interface. Used as the pre-commit hook:

    python main.py sync
"""

import sys
import logging
from types import TracebackType
from typing import Type

from versync.cli import app


def handle_exception(exc_type: Type[BaseException], exc_value: BaseException, exc_traceback: TracebackType):
    """Logs unhandled exceptions from synchronous code."""
    logger = logging.getLogger()
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return
    logger.critical("Unhandled exception:", exc_info=(exc_type, exc_value, exc_traceback))


if __name__ == "__main__":
    sys.excepthook = handle_exception
    app()
