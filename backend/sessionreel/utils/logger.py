"""Logging configuration for the render service."""
import logging
import sys
from sessionreel.config import settings

level = logging.DEBUG if settings.environment == "development" else logging.INFO

logger = logging.getLogger("sessionreel")
logger.setLevel(level)

handler = logging.StreamHandler(sys.stdout)
handler.setLevel(level)

formatter = logging.Formatter(
    "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
handler.setFormatter(formatter)

if not logger.handlers:
    logger.addHandler(handler)

# Prevent duplicate logs
logger.propagate = False

__all__ = ["logger"]
