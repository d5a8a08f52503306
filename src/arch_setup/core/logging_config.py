import logging
import os
from pathlib import Path
from typing import Optional, Union

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "arch_setup"
FILE_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    log_file: Optional[Union[str, Path]] = None,
    log_level: str = "INFO",
    console: Optional[Console] = None,
) -> logging.Logger:
    """
    Configure the application logger.

    Console output goes through RichHandler at ``log_level``; the log file,
    when it can be opened, always receives DEBUG records.

    Args:
        log_file: Path of the log file, or None for console-only logging.
        log_level: Minimum level shown on the console (e.g. "INFO", "DEBUG").
        console: Rich console to render into.

    Returns:
        The configured ``arch_setup`` logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)

    # Remove existing handlers to avoid duplication if re-run
    for h in logger.handlers[:]:
        logger.removeHandler(h)
        h.close()

    console_handler = RichHandler(console=console, rich_tracebacks=True, show_path=False)
    console_handler.setLevel(log_level.upper())
    logger.addHandler(console_handler)

    if log_file is None:
        return logger

    log_file = Path(log_file)
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
    except OSError as e:
        logger.warning(f"Could not open log file {log_file}: {e}. Logging to console only.")
        return logger

    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, DATE_FORMAT))
    logger.addHandler(file_handler)

    try:
        os.chmod(log_file, 0o600)
    except OSError as e:
        logger.warning(f"Could not set permissions on log file {log_file}: {e}")

    return logger
