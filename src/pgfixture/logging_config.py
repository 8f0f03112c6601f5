"""
Logging configuration for pgfixture

Console (and optional file) logging for the command line, plus a dedicated
logger for container runtime invocations. Database passwords never reach a
handler: every handler installed here masks them first.
"""

import logging
import logging.handlers
import os
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_DSN_PASSWORD = re.compile(r"(postgres(?:ql)?://[^:/\s]+):([^@\s]+)@")
_ENV_PASSWORD = re.compile(r"POSTGRES_PASSWORD=[^\s]+")
_PARAM_PASSWORD = re.compile(r"(?<![A-Z_])password=[^\s]+", re.IGNORECASE)


def mask_sensitive_data(message: str) -> str:
    """
    Hide database passwords in a message.

    Covers connection URLs, the ``POSTGRES_PASSWORD`` container variable and
    libpq style ``password=...`` parameters.
    """
    message = _DSN_PASSWORD.sub(r"\1:***@", message)
    message = _ENV_PASSWORD.sub("POSTGRES_PASSWORD=***", message)
    return _PARAM_PASSWORD.sub("password=***", message)


class PasswordMaskingFilter(logging.Filter):
    """Rewrites each record's message with passwords masked."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = mask_sensitive_data(record.getMessage())
        record.args = None
        return True


def _level_for(verbose: bool, log_level: Optional[str]) -> int:
    if log_level:
        return getattr(logging, log_level.upper(), logging.INFO)
    return logging.DEBUG if verbose else logging.INFO


def setup_logging(
    log_dir: Optional[Union[str, Path]] = None,
    verbose: bool = False,
    log_level: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the root logger for command-line use.

    Args:
        log_dir: Directory for a rotating log file, console only if unset
        verbose: Log at DEBUG unless ``log_level`` says otherwise
        log_level: Explicit level name (DEBUG, INFO, WARNING, ERROR)

    Returns:
        The ``pgfixture`` logger
    """
    level = _level_for(verbose, log_level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    masking = PasswordMaskingFilter()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(masking)
    root_logger.addHandler(console_handler)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        started = datetime.now().strftime("%Y%m%d_%H%M%S")

        # File keeps everything, 10MB x 5
        file_handler = logging.handlers.RotatingFileHandler(
            log_path / f"pgfixture_{started}.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(masking)
        root_logger.addHandler(file_handler)

    logger = logging.getLogger("pgfixture")
    logger.debug(f"Logging ready at {logging.getLevelName(level)}")
    return logger


class SubprocessLogHandler:
    """
    Logs container runtime invocations: the command, its output and how it
    finished. With a log directory each operation also gets its own file
    under ``<log_dir>/containers``.
    """

    def __init__(self, operation: str, log_dir: Optional[Union[str, Path]] = None):
        self.operation = operation
        self.log_file: Optional[Path] = None
        self.logger = logging.getLogger(f"pgfixture.subprocess.{operation}")

        if not log_dir:
            return

        # One file per operation and directory, shared by later instances
        container_dir = Path(os.path.abspath(Path(log_dir) / "containers"))
        for existing in self.logger.handlers:
            if (
                isinstance(existing, logging.FileHandler)
                and Path(existing.baseFilename).parent == container_dir
            ):
                self.log_file = Path(existing.baseFilename)
                return

        started = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.log_file = container_dir / f"{operation}_{started}.log"
        container_dir.mkdir(parents=True, exist_ok=True)

        handler = logging.FileHandler(self.log_file)
        handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(message)s", DATE_FORMAT))
        handler.addFilter(PasswordMaskingFilter())
        self.logger.addHandler(handler)
        self.logger.setLevel(logging.DEBUG)

    def log_command(self, command: List[str]) -> None:
        shown = " ".join(mask_sensitive_data(arg) for arg in command)
        self.logger.info(f"$ {shown}")

    def log_output(self, output: str, level: int = logging.DEBUG) -> None:
        if output and output.strip():
            self.logger.log(level, mask_sensitive_data(output.strip()))

    def log_completion(self, return_code: int, elapsed_time: float) -> None:
        if return_code:
            self.logger.warning(
                f"✗ {self.operation} exited with {return_code} after {elapsed_time:.2f}s"
            )
        else:
            self.logger.debug(f"✓ {self.operation} finished in {elapsed_time:.2f}s")


# psycopg2 is chatty at DEBUG
logging.getLogger("psycopg2").setLevel(logging.WARNING)
