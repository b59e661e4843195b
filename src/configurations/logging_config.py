"""Loguru sink configuration."""
import sys
from loguru import logger
from .config import Config


def configure_logging(level: str = None) -> None:
    """Replace the default loguru sink with one honouring Config.LOG_LEVEL."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=(level or Config.LOG_LEVEL).upper(),
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
               "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
    )
