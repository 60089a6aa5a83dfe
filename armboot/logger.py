"""Loguru logger configuration for the boot manager."""

import sys
from pathlib import Path

from loguru import logger


def setup_logger(log_dir: Path | None = None, level: str = "INFO") -> None:
    """Configure loguru with console and file sinks.

    Parameters
    ----------
    log_dir : Path, optional
        Directory for log files.  Defaults to ``{data_dir}/logs``.
    level : str
        Minimum level for the console sink.  The file sink always logs DEBUG.
    """
    # Remove default handler
    logger.remove()

    logger.add(
        sys.stderr,
        level=level,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        ),
        colorize=True,
    )

    if log_dir is None:
        from armboot.config import Config
        log_dir = Config().data_dir / "logs"
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        # Read-only boot partition: keep console logging only.
        logger.warning("Log directory {} not writable ({}), file logging disabled", log_dir, e)
        return
    log_file = log_dir / "armboot.log"

    logger.add(
        str(log_file),
        level="DEBUG",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {module}:{function}:{line} | {message}",
        rotation="10 MB",
        retention="7 days",
        encoding="utf-8",
        enqueue=True,  # thread-safe
    )

    logger.info("Logger initialized, file output: {}", log_file)
