"""
Loguru configuration shared by the API, the CLI and the service layer.

Services log with structured keyword context, e.g.
``logger.info("Approval submitted", request_id=42, approved=True)``;
the context lands in ``record["extra"]`` and is rendered by the sink below.
"""

import sys
from loguru import logger
from .config import settings

PLAIN_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level> | {extra}"
)


def setup_logging(level: str | None = None, json_logs: bool | None = None):
    """
    Replace loguru's default sink with one driven by settings.

    Args:
        level: Minimum level (defaults to LOG_LEVEL)
        json_logs: Emit one JSON object per record (defaults to LOG_JSON)

    Returns:
        The configured loguru logger
    """
    level = level or settings.log_level
    json_logs = settings.log_json if json_logs is None else json_logs

    logger.remove()
    if json_logs:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=PLAIN_FORMAT)

    logger.info("Logging configured", level=level, json_logs=json_logs, app_env=settings.app_env)
    return logger
