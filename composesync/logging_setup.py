"""Logging configuration for composesync"""

import logging
import os
import sys
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(debug: bool = False, log_file: Optional[str] = None) -> logging.Logger:
    """
    Set up logging for a run.

    Args:
        debug: Log at DEBUG level instead of INFO
        log_file: Optional file receiving a copy of the log

    Returns:
        The package logger
    """
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_dir = os.path.dirname(os.path.expanduser(log_file))
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(os.path.expanduser(log_file)))

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    # GitPython is chatty at DEBUG
    logging.getLogger("git").setLevel(logging.INFO)

    return logging.getLogger("composesync")
