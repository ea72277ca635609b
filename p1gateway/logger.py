"""
Structured Logging Setup
Provides consistent logging across the gateway.
"""

import logging
import sys
from pathlib import Path
from typing import Optional
import structlog
from logging.handlers import RotatingFileHandler

from p1gateway.config import LoggingConfig

TEXT_FORMAT = '%(asctime)s [%(levelname)8s] %(name)s - %(message)s'


def _file_handler(path: str, config: LoggingConfig, level: int,
                  formatter: logging.Formatter) -> RotatingFileHandler:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path,
        maxBytes=config.max_size_mb * 1024 * 1024,
        backupCount=config.backup_count,
        encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(config: LoggingConfig) -> structlog.BoundLogger:
    """
    Setup structured logging based on configuration.

    Args:
        config: Logging configuration

    Returns:
        Configured structlog logger
    """
    log_level = getattr(logging, config.level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    if config.format == "json":
        # JSONRenderer already emits the whole record
        formatter = logging.Formatter("%(message)s")
    else:
        formatter = logging.Formatter(TEXT_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    # Console handler (always enabled)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if config.file:
        root_logger.addHandler(_file_handler(config.file, config, log_level, formatter))

    if config.error_file:
        root_logger.addHandler(_file_handler(config.error_file, config, logging.ERROR, formatter))

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if config.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logger = structlog.get_logger()
    logger.info("logging_initialized", level=config.level, format=config.format)

    return logger


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """
    Get a logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger
    """
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()
