"""Shared logging utilities for the lottery service.

Provides a central get_logger(name) factory that configures the console (and
optionally a file) handler once. Level and file path are controlled through
the LOG_LEVEL and LOG_FILE environment variables.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional


_configured = False

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _ensure_configured() -> None:
    global _configured
    if _configured:
        return

    log_level = os.getenv('LOG_LEVEL', 'INFO')
    log_file = os.getenv('LOG_FILE', '')

    level = getattr(logging, log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT)

    # Console handler
    ch = logging.StreamHandler()
    ch.setLevel(level)
    ch.setFormatter(formatter)
    root.addHandler(ch)

    # File handler, only when LOG_FILE is set
    if log_file:
        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(log_path, encoding='utf-8')
            fh.setLevel(level)
            fh.setFormatter(formatter)
            root.addHandler(fh)
        except OSError:
            root.exception('Failed to create file log handler for %s; continuing with console only', log_file)

    # web3 is chatty at DEBUG
    logging.getLogger('web3').setLevel(max(level, logging.INFO))
    logging.getLogger('urllib3').setLevel(max(level, logging.WARNING))

    _configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a configured logger for the given name.

    The first call configures the root logger; subsequent calls return
    regular loggers that inherit the same handlers and level.
    """
    _ensure_configured()
    return logging.getLogger(name)
