"""
Configures the application's logging setup.

This module sets up a root logger that prints hook-style messages to stderr
and can additionally write a rotating file log and feed a queue for a host UI.
"""

import sys
import queue
import logging
import logging.handlers
from datetime import datetime
from pathlib import Path
from typing import Optional

from .constants import LOG_PREFIX


def _rotate_latest_log(log_dir: Path) -> Path:
    """
    Renames an existing `latest.log` to a timestamped file and returns the
    path of the new `latest.log`.
    """
    latest_log_path = log_dir / 'latest.log'
    if latest_log_path.exists():
        try:
            mod_time = latest_log_path.stat().st_mtime
            timestamp_str = datetime.fromtimestamp(mod_time).strftime('%Y-%m-%d_%H-%M-%S')
            latest_log_path.rename(log_dir / f"{timestamp_str}.log")
        except OSError as e:
            print(f"Error rotating log file: {e}", file=sys.stderr)
    return latest_log_path


def setup_logging(log_level_str: str = 'INFO', log_dir: Optional[Path] = None,
                  ui_queue: Optional[queue.Queue] = None):
    """
    Configures the root logger.

    Args:
        log_level_str: The minimum level printed to stderr and written to file.
        log_dir: If given, `latest.log` is written there (the previous one is archived).
        ui_queue: If given, every record is also put on this queue for display.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all levels at the root

    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    log_level = getattr(logging, log_level_str.upper(), logging.INFO)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(f'{LOG_PREFIX} %(message)s'))
    root_logger.addHandler(console_handler)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(_rotate_latest_log(log_dir)), encoding='utf-8')
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(levelname)-8s - %(name)-25s - %(message)s'
        ))
        root_logger.addHandler(file_handler)

    if ui_queue is not None:
        queue_handler = logging.handlers.QueueHandler(ui_queue)
        queue_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(queue_handler)

    logging.debug(f"Log level set to: {logging.getLevelName(log_level)}")
