# -*- coding: utf-8 -*-
"""
Uplift: Spectral uplifting of colors through metamer mismatch volumes
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Logging Configuration
Sets up the ``uplift`` logger namespace. Modules log through
``logging.getLogger("uplift.<area>")`` and stay silent until an
application calls ``setup_logging``.
"""

import logging
import sys
from typing import Optional

LOGGER_NAMESPACE = "uplift"


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """
    Configures the logger for the 'uplift' namespace.

    Args:
        level: Logging level (e.g. logging.DEBUG, logging.INFO)
        log_file: Optional path to save logs to a file.

    Returns:
        The configured namespace logger.
    """
    logger = logging.getLogger(LOGGER_NAMESPACE)
    logger.setLevel(level)

    # Avoid duplicate output when called twice
    if logger.hasHandlers():
        logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode='w', encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.info("Logging initialized.")
    return logger
