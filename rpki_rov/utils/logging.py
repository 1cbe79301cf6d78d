#!/usr/bin/env python3
"""
Logging setup for RPKI ROV

- Console output on stderr, so JSON tool results on stdout stay clean
- Optional rotating log file
- systemd journal when running as a service
- Timing of decode and snapshot operations via LoggingTimer, whose
  duration is rendered by the formatter rather than baked into messages
"""

import logging
import logging.handlers
import os
import sys
import time
from pathlib import Path
from typing import Dict, Optional


# Libraries that log every request at INFO
NOISY_LOGGERS = ("urllib3", "uvicorn.access", "uvicorn.error", "multipart")


class RPKIFormatter(logging.Formatter):
    """Formatter that appends operation timing and colours the console"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True, include_module: bool = True):
        self.use_colors = use_colors and sys.stderr.isatty()
        name_part = "%(name)s - " if include_module else ""
        super().__init__(fmt=f"%(asctime)s - {name_part}%(levelname)s - %(message)s",
                         datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record):
        formatted = super().format(record)

        duration = getattr(record, "duration", None)
        if duration is not None:
            formatted = f"{formatted} [took {duration:.3f}s]"

        if self.use_colors and record.levelname in self.COLORS:
            formatted = f"{self.COLORS[record.levelname]}{formatted}{self.RESET}"
        return formatted


def _file_handler(log_file: str, level: int) -> logging.Handler:
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        log_path,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5,
    )
    handler.setLevel(level)
    handler.setFormatter(RPKIFormatter(use_colors=False))
    return handler


def _journal_handler(level: int) -> Optional[logging.Handler]:
    """JournalHandler when systemd started us and python-systemd is installed"""
    if os.getenv("INVOCATION_ID") is None and os.getenv("JOURNAL_STREAM") is None:
        return None
    try:
        from systemd import journal
    except ImportError:
        return None
    handler = journal.JournalHandler(SYSLOG_IDENTIFIER="rpki-rov")
    handler.setLevel(level)
    handler.setFormatter(RPKIFormatter(use_colors=False))
    return handler


def setup_logging(
    config=None,
    level: str = None,
    log_to_file: bool = None,
    log_file: str = None,
    console_colors: bool = True,
    include_modules: bool = True,
) -> Dict[str, logging.Handler]:
    """
    Configure the root logger.

    Explicit arguments win over the `logging` section of `config`.
    Returns the installed handlers by name ("console", "file", "journal").
    """
    section = getattr(config, "logging", None)
    if level is None:
        level = section.level if section else "INFO"
    if log_to_file is None:
        log_to_file = section.log_to_file if section else False
    if log_file is None:
        log_file = section.log_file if section else None

    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(
        RPKIFormatter(use_colors=console_colors, include_module=include_modules)
    )
    handlers = {"console": console_handler}

    if log_to_file and log_file:
        handlers["file"] = _file_handler(log_file, numeric_level)

    journal_handler = _journal_handler(numeric_level)
    if journal_handler is not None:
        handlers["journal"] = journal_handler

    for handler in handlers.values():
        root_logger.addHandler(handler)

    if numeric_level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("rpki-rov.logging").debug(
        f"Logging configured: level={level}, handlers={sorted(handlers)}"
    )
    return handlers


class LoggingTimer:
    """
    Time a block and log its start and outcome.

    The completion record carries `duration` as an attribute, which
    RPKIFormatter renders after the message. A block that raises is
    logged at `failure_level`.
    """

    def __init__(self, logger: logging.Logger, operation: str, level: int = logging.INFO,
                 failure_level: int = logging.ERROR):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.failure_level = failure_level
        self.duration = None
        self._started = None

    def __enter__(self):
        self._started = time.perf_counter()
        self.logger.log(self.level, f"Starting {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.perf_counter() - self._started
        extra = {"duration": self.duration}
        if exc_type is None:
            self.logger.log(self.level, f"Completed {self.operation}", extra=extra)
        else:
            self.logger.log(self.failure_level, f"Failed {self.operation}: {exc_val}", extra=extra)
        return False
