"""
Logging setup for thriftcart.

All loggers live under the ``thriftcart`` namespace. The package attaches a
stdout handler to that namespace only when the host application has not
set up logging itself, so embedding the client in an app that already
configures the root logger changes nothing.

Usage:
    from thriftcart.logging import get_logger
    logger = get_logger(__name__)

    logger.info("Cart pushed")
    logger.warning(f"Remote add failed for {describe_line(product_id, size)}")
"""

import logging
import os
import sys
from functools import cache

PACKAGE_LOGGER = "thriftcart"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FORMAT_SIMPLE = "%(levelname)s - %(name)s - %(message)s"

# Control characters that could forge extra log lines (CWE-117)
_LOG_ESCAPES = str.maketrans({"\n": "\\n", "\r": "\\r", "\t": "\\t", "\x00": None})


def _level_from_env() -> int:
    level_name = os.environ.get("THRIFTCART_LOG_LEVEL") or os.environ.get("LOG_LEVEL", "INFO")
    return getattr(logging, level_name.upper(), logging.INFO)


def configure_logging(level: int | None = None, production: bool | None = None) -> logging.Logger:
    """
    Attach a stdout handler to the ``thriftcart`` logger.

    Called on import with values from the environment (THRIFTCART_LOG_LEVEL,
    THRIFTCART_ENV=production for the compact format). Hosts may call it
    again to change the level; a second handler is never added.

    Returns:
        The package logger
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level if level is not None else _level_from_env())

    if production is None:
        production = os.environ.get("THRIFTCART_ENV") == "production"

    if logging.getLogger().handlers or package_logger.handlers:
        return package_logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT_SIMPLE if production else LOG_FORMAT))
    package_logger.addHandler(handler)

    # One line per remote cart call otherwise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    return package_logger


configure_logging()


@cache
def get_logger(name: str) -> logging.Logger:
    """
    Get a logger inside the ``thriftcart`` namespace.

    Args:
        name: Logger name (typically __name__)
    """
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)


def sanitize_id_for_logging(id_value: str | None) -> str:
    """First 8 characters of a product or account id, with control chars escaped."""
    if not id_value:
        return "N/A"
    return str(id_value).translate(_LOG_ESCAPES)[:8]


def sanitize_string_for_logging(value: str | None, max_length: int = 50) -> str:
    """
    Escape and truncate free text (product names, server messages).

    Args:
        value: Text to log (can be None)
        max_length: Characters kept before "..." is appended
    """
    if not value:
        return "N/A"
    safe_value = str(value).translate(_LOG_ESCAPES)
    if len(safe_value) <= max_length:
        return safe_value
    return safe_value[:max_length] + "..."


def mask_token(token: str | None) -> str:
    """Bearer tokens are never logged; only their last 4 characters."""
    if not token:
        return "N/A"
    return "..." + str(token).translate(_LOG_ESCAPES)[-4:]


def describe_line(product_id: str | None, size: str | None) -> str:
    """Short ``product/size`` label for a cart line."""
    return f"{sanitize_id_for_logging(product_id)}/{sanitize_string_for_logging(size, max_length=12)}"


__all__ = [
    "LOG_FORMAT",
    "LOG_FORMAT_SIMPLE",
    "configure_logging",
    "describe_line",
    "get_logger",
    "mask_token",
    "sanitize_id_for_logging",
    "sanitize_string_for_logging",
]
