"""Logger setup for the installer service.

Every service module logs through a child of one package logger
(``pkginstaller.download``, ``pkginstaller.reconciler``, ...). That logger
writes to a size-rotated file and to the console, both with ISO 8601
timestamps.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Union

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
ISO_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"


def _parse_level(level: Union[int, str]) -> int:
    """Resolve a level given as number or name (any case, WARN accepted)."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


def _file_handler(logger: logging.Logger) -> Union[RotatingFileHandler, None]:
    for handler in logger.handlers:
        if isinstance(handler, RotatingFileHandler):
            return handler
    return None


def _attach(logger: logging.Logger, handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=ISO_DATEFMT))
    logger.addHandler(handler)


def setup_logger(
    name: str = "pkginstaller",
    log_file: Union[str, Path] = "./logs/pkginstaller.log",
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 3,
    level: Union[int, str] = logging.INFO,
) -> logging.Logger:
    """Configure the package logger, or reconfigure it on a repeated call.

    A repeated call applies the new level to the existing handlers and
    moves the file handler if ``log_file`` changed. It never adds a
    second console handler.

    Args:
        name: Logger name
        log_file: Path to log file (parent directory created if missing)
        max_bytes: Max size before rotation
        backup_count: Number of rotated files to keep
        level: Logging level, as int or name ("DEBUG", "info", "WARN", ...)

    Returns:
        Configured logger instance

    Raises:
        ValueError: If ``level`` is not a known level name
    """
    level = _parse_level(level)
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    # Handlers live here; the root logger must not print records twice
    logger.propagate = False

    current = _file_handler(logger)
    if current is not None and current.baseFilename != os.path.abspath(log_path):
        logger.removeHandler(current)
        current.close()
        current = None

    for handler in logger.handlers:
        handler.setLevel(level)

    if current is None:
        _attach(
            logger,
            RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"),
            level,
        )
    if not any(type(h) is logging.StreamHandler for h in logger.handlers):
        _attach(logger, logging.StreamHandler(), level)

    return logger
