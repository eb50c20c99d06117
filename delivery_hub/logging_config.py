"""
Logging setup for the delivery hub.

All service modules log under the ``delivery_hub`` logger tree. Customer
addresses, order notes and agent coordinates are only ever logged at DEBUG,
so INFO and above are safe to ship to shared log storage.

Agents report their position every few seconds, which makes uvicorn's access
log and SQLAlchemy's statement log the loudest sources by far; both are held
at WARNING unless the service runs at DEBUG.

Environment variables:
    LOG_LEVEL: DEBUG, INFO, WARNING, ERROR or CRITICAL (default: INFO)
"""
import logging
import os
import sys

PACKAGE_LOGGER = "delivery_hub"
LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"
LEVEL_NAMES = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Quieted outside DEBUG
CHATTY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore")


def resolve_level(level: str = None) -> str:
    """Level name from the argument, else LOG_LEVEL. Unknown names mean INFO."""
    name = (level or os.getenv("LOG_LEVEL") or "INFO").strip().upper()
    return name if name in LEVEL_NAMES else "INFO"


def setup_logging(level: str = None) -> str:
    """
    Configure the root handler and the delivery_hub logger.

    Called once when delivery_hub.main is imported. Returns the level name
    actually applied.
    """
    name = resolve_level(level)
    numeric_level = getattr(logging, name)

    logging.basicConfig(
        level=numeric_level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )
    logging.getLogger(PACKAGE_LOGGER).setLevel(numeric_level)

    chatty_level = logging.NOTSET if name == "DEBUG" else logging.WARNING
    for logger_name in CHATTY_LOGGERS:
        logging.getLogger(logger_name).setLevel(chatty_level)

    logging.getLogger(__name__).debug("Logging configured at %s", name)
    return name
