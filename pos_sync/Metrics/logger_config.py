# logger_config.py
#
# Imports
import os
import sys
from pathlib import Path
from typing import Optional, Union
#
# 3rd-Party Imports
from loguru import logger
#
# Local Imports
from . import metrics_logger  # registers the METRIC level
#
############################################################################################################
#
# Functions:

DEFAULT_APP_LOG_PATH = '~/.local/share/pos_sync/Logs/pos_sync.log'
DEFAULT_METRICS_LOG_PATH = '~/.local/share/pos_sync/Logs/pos_sync_metrics.json'


def _ensure_log_dir_exists(file_path: Union[str, Path]) -> str:
    """Ensure the directory for the log file exists."""
    expanded_path = os.path.expanduser(str(file_path))
    log_dir = os.path.dirname(expanded_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    return expanded_path


def _only_metrics(record) -> bool:
    return record["level"].name == "METRIC"


def _without_metrics(record) -> bool:
    return record["level"].name != "METRIC"


def setup_logger(
    log_level: str = "INFO",
    console_format: str = "{time:YYYY-MM-DD HH:mm:ss} - {level} - {message}",
    app_log_path: Optional[Union[str, Path]] = DEFAULT_APP_LOG_PATH,
    metrics_log_path: Optional[Union[str, Path]] = DEFAULT_METRICS_LOG_PATH,
):
    """
    Sets up Loguru sinks for console, a standard application log, and a JSON metrics log.

    Args:
        log_level (str): The minimum log level to output (e.g., "DEBUG", "INFO").
        console_format (str): The format string for console output.
        app_log_path: Path for the standard text log file. If None, this sink is disabled.
        metrics_log_path: Path for the structured JSON metrics log. If None, this sink is disabled.

    Returns:
        The configured logger instance.
    """
    logger.remove()

    # Console: application messages only, metrics would drown them out.
    logger.add(
        sys.stderr,
        level=log_level.upper(),
        format=console_format,
        filter=_without_metrics,
    )

    if app_log_path:
        path = _ensure_log_dir_exists(app_log_path)
        logger.add(
            path,
            level=log_level.upper(),
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            filter=_without_metrics,
            rotation="10 MB",
            retention="7 days",
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )
        logger.info(f"Application logs will be written to: {path}")

    if metrics_log_path:
        path = _ensure_log_dir_exists(metrics_log_path)
        logger.add(
            path,
            level="METRIC",
            filter=_only_metrics,
            serialize=True,
            rotation="10 MB",
            retention=5,
            enqueue=True,
        )
        logger.info(f"JSON metrics logs will be written to: {path}")

    return logger

#
# End of Functions
############################################################################################################
