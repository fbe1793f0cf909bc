"""Logging configuration for pulsewire."""

import logging
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVEL = logging.INFO


def setup_logging(level: int = LOG_LEVEL) -> None:
    """
    Configure root logging for ingestion processes.

    Args:
        level: Level applied to the ``pulsewire`` logger hierarchy.
    """
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Request lines from httpx leak bot tokens embedded in URLs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    logging.getLogger("pulsewire").setLevel(level)

    logger = logging.getLogger(__name__)
    logger.info("Logging configured")

