from __future__ import annotations

import logging
import os
from enum import Enum
from logging.config import dictConfig
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from loguru import Logger as LoguruLogger  # type: ignore[import-not-found]

ENV_VAR = "ELECTRUMX_CLIENT_LOGGING"


class LoggingModes(Enum):
    # don't produce logs
    NO_LOGS = 0
    # Log to stderr with a timestamped formatter
    CONSOLE = 1
    # Simple log calls (no config)
    SIMPLE = 2
    # log via the loguru module
    LOGURU = 3


class LoggingConfig:
    def __init__(self) -> None:
        self._mode: LoggingModes | None = None

    config_template = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(levelname)-8s %(asctime)s %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "default": {
                "formatter": "default",
                "class": "logging.StreamHandler",
            },
        },
        "loggers": {},
    }

    CONSOLE_LOGGERS = {
        "electrumx_client": {
            "handlers": ["default"],
            "propagate": False,
            "level": logging.INFO,
        },
    }

    def get_mode(self) -> LoggingModes:
        # if no one set the mode - set default from ENV or hardcoded default
        if self._mode is None:
            mode = LoggingModes.__members__.get(
                os.environ.get(ENV_VAR, "").upper(), LoggingModes.SIMPLE
            )
            self.set_mode(mode)
        if self._mode is None:
            raise RuntimeError("Logging mode must be set by set_mode() method")
        return self._mode

    def set_mode(
        self, mode: LoggingModes = LoggingModes.CONSOLE, level: int = logging.INFO
    ) -> None:
        """
        Configure logging. this method calls 'logging.config.dictConfig()' to enable
        quick setup of logging. Call this method before opening a session.
        For more advanced cases use 'logging.config' directly (loggers used by this
        library are all nested under "electrumx_client" logger name)

        Args:
            mode (LoggingModes, optional): The mode to set logging to. Defaults to
            LoggingModes.CONSOLE.
            level (int, optional): The logging level. Defaults to logging.INFO.
        """
        self._mode = mode
        logging_config = self.config_template.copy()
        if mode == LoggingModes.CONSOLE:
            loggers = {
                name: dict(settings) for name, settings in self.CONSOLE_LOGGERS.items()
            }
            loggers["electrumx_client"]["level"] = level
            logging_config["loggers"] = loggers
            dictConfig(logging_config)
        elif mode == LoggingModes.SIMPLE or mode == LoggingModes.LOGURU:
            pass
        # no logs
        else:
            logging_config["loggers"] = {}
            dictConfig(logging_config)
            logging.getLogger("electrumx_client").disabled = True


# Singelton for logging configuration
logging_config = LoggingConfig()


def get_logger(name: str) -> logging.Logger | LoguruLogger:
    """
    Get a logger object to log with.
    Called by inner modules for logging.

    Args:
        name (str): The name of the logger module.

    Returns:
        Logger object (either standard logging.Logger or loguru logger).
    """
    mode = logging_config.get_mode()
    # logging through loguru
    if mode == LoggingModes.LOGURU:
        from loguru import logger

        return logger
    # regular python logging
    if name.startswith("electrumx_client"):
        return logging.getLogger(name)
    return logging.getLogger(f"electrumx_client.{name}")
