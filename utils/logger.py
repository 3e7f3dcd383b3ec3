"""
Logging Configuration Module

Centralized logging setup for the check-in pipeline.
Each component (pipeline, agents, memory, llm, storage) gets its own log file.
"""

import logging
import os
from datetime import datetime
from typing import Any, Dict, Optional


def setup_logger(
    name: str,
    log_file: str,
    level: int = logging.INFO,
    format_string: Optional[str] = None
) -> logging.Logger:
    """
    Setup a logger with file and console handlers.

    Args:
        name: Logger name (e.g., 'checkin_pipeline', 'agent_crisis')
        log_file: Path to log file (e.g., 'logs/checkin_pipeline.log')
        level: Logging level (default: INFO)
        format_string: Custom format string (optional)

    Returns:
        Configured logger instance
    """
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    if format_string is None:
        format_string = (
            '%(asctime)s - %(name)s - %(levelname)s - '
            '%(filename)s:%(lineno)d - %(message)s'
        )

    formatter = logging.Formatter(format_string, datefmt='%Y-%m-%d %H:%M:%S')

    # File handler - everything
    file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    # Console handler - warnings and errors only
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    return logger


def log_cycle_start(logger: logging.Logger, user_id: str, cycle_id: str):
    """Log the start of a check-in cycle"""
    logger.info("=" * 70)
    logger.info(f"CHECK-IN START - cycle: {cycle_id} user: {user_id}")
    logger.info(f"Timestamp: {datetime.now().isoformat()}")
    logger.info("=" * 70)


def log_cycle_end(logger: logging.Logger, cycle_id: str, status: str = "completed"):
    """Log the end of a check-in cycle"""
    logger.info("=" * 70)
    logger.info(f"CHECK-IN END - cycle: {cycle_id}")
    logger.info(f"Status: {status}")
    logger.info(f"Timestamp: {datetime.now().isoformat()}")
    logger.info("=" * 70)


def log_dict(logger: logging.Logger, data: Dict[str, Any], level: int = logging.DEBUG, prefix: str = ""):
    """Log a dictionary one key per line"""
    if prefix:
        logger.log(level, f"{prefix}:")

    for key, value in data.items():
        logger.log(level, f"  {key}: {value}")


def log_exception(logger: logging.Logger, exception: Exception, context: str = ""):
    """
    Log an exception with context.

    Args:
        logger: Logger instance
        exception: Exception to log
        context: Where the exception occurred (agent or stage name)
    """
    if context:
        logger.error(f"Exception in {context}: {exception}", exc_info=True)
    else:
        logger.error(f"Exception occurred: {exception}", exc_info=True)


def log_performance(
    logger: logging.Logger,
    operation: str,
    duration: float,
    additional_info: Optional[Dict[str, Any]] = None
):
    """Log how long an operation took"""
    msg = f"Performance - {operation}: {duration:.3f}s"

    if additional_info:
        metrics = ", ".join(f"{k}={v}" for k, v in additional_info.items())
        msg += f" ({metrics})"

    logger.info(msg)
