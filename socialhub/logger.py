import sys
from loguru import logger


def setup_logger(log_level: str = "INFO", log_file: str = ""):
    """
    Configure application logger

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path pattern for a rotating file sink
    """
    # Remove default handler
    logger.remove()

    logger.add(
        sys.stdout,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=log_level,
        colorize=True,
    )

    if log_file:
        logger.add(
            log_file,
            rotation="1 day",
            retention="7 days",
            level=log_level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function} - {message}",
        )

    return logger


def mask(value: str | None, keep: int = 8) -> str:
    """Only ever log a prefix of a secret-ish value (state, token)."""
    if not value:
        return "<none>"
    return value[:keep] + "..."
