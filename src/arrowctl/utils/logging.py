"""Log handler setup for the controller and target processes.

Both roles log under the ``arrowctl`` logger hierarchy; this module
attaches its handlers once per process from the ``logging`` settings
section.
"""

from __future__ import annotations

import logging
import sys

from arrowctl.config.settings import LoggingConfig

LOGGER_NAME = "arrowctl"


def _handlers(config: LoggingConfig) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.file:
        handlers.append(logging.FileHandler(config.file))
    return handlers


def setup_logging(config: LoggingConfig | None = None, verbose: bool = False) -> logging.Logger:
    """Send ``arrowctl`` log records to stderr and, optionally, a file.

    ``verbose`` (the CLI's ``-v``) wins over the configured level. Calling
    this again replaces the handlers from the previous call.
    """
    config = config or LoggingConfig()
    level = logging.DEBUG if verbose else getattr(logging, config.level.upper(), logging.INFO)

    app_logger = logging.getLogger(LOGGER_NAME)
    app_logger.setLevel(level)
    for old in list(app_logger.handlers):
        app_logger.removeHandler(old)
        old.close()

    formatter = logging.Formatter(config.format)
    for handler in _handlers(config):
        handler.setFormatter(formatter)
        app_logger.addHandler(handler)

    app_logger.debug("Log level %s, file %s", logging.getLevelName(level), config.file or "none")
    return app_logger
