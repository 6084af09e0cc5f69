"""
Logging helpers for the dm20 rules engine.
"""

import logging

LOGGER_NAME = "dm20-rules"

logger = logging.getLogger(LOGGER_NAME)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the server process.

    Args:
        level: Level name such as ``"DEBUG"`` or ``"INFO"``. Unknown names
            fall back to INFO.
    """
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    logger.setLevel(numeric)
