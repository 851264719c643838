"""Logging setup utilities for deskrelay.

Configures logging for the whole application from the logging section
of the settings.
"""

from __future__ import annotations

import logging
import sys

from deskrelay.config.settings import LoggingConfig


def setup_logging(config: LoggingConfig | None = None, verbose: bool = False) -> None:
    """Configure the ``deskrelay`` logger.

    Args:
        config: Logging configuration. If None, uses defaults
                (INFO level, stderr output).
        verbose: Force DEBUG level regardless of the configured level.
    """
    if config is None:
        config = LoggingConfig()

    level_name = "DEBUG" if verbose else config.level.upper()
    root_logger = logging.getLogger("deskrelay")
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))

    # Repeated setup (e.g. agent reconnects) must not duplicate output.
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(config.format)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if config.file:
        file_handler = logging.FileHandler(config.file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    root_logger.info("Logging initialized at %s level", level_name)
