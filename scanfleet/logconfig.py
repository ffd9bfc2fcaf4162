"""
scanfleet logging configuration module.

Centralizes logging setup so the API server, the fleet manager and the
provider clients all log through ``scanfleet.*`` named loggers with one
format.
"""

import logging
import sys
from typing import Any, Dict, Optional

# Store module loggers to avoid creating duplicates
_module_loggers: Dict[str, logging.Logger] = {}

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Third-party loggers that are too chatty at INFO
_QUIET_LOGGERS = ("urllib3", "requests", "uvicorn.access")


def configure_root_logger(debug: bool = False, level: Optional[int] = None) -> None:
    """Configure the root logger with basic settings.

    Args:
        debug: Whether to enable debug logging
        level: Explicit level; overrides ``debug`` when given
    """
    if level is None:
        level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )
    logging.getLogger("scanfleet").setLevel(level)

    if level > logging.DEBUG:
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_module_logger(module_name: str) -> logging.Logger:
    """Get or create a ``scanfleet.<module_name>`` logger.

    Args:
        module_name: The name of the module requesting a logger

    Returns:
        logging.Logger: Cached logger for the module
    """
    if module_name in _module_loggers:
        return _module_loggers[module_name]

    logger = logging.getLogger(f"scanfleet.{module_name}")
    _module_loggers[module_name] = logger
    return logger


def get_log_level_from_config(config: Any = None) -> int:
    """Determine the log level from an AppConfig or a flat config dict.

    Debug mode wins over the configured level name.  Unknown level names
    fall back to INFO.
    """
    if config is None:
        return logging.INFO

    if isinstance(config, dict):
        debug = config.get("_debug", False)
        name = config.get("__loglevel", "INFO")
    else:
        debug = config.core.debug
        name = config.api.log_level

    if debug:
        return logging.DEBUG

    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else logging.INFO
