"""Logging setup for Inkling sessions."""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

__all__ = ["setup_logging", "get_log_path"]

LOG_FILENAME = "inkling.log"
_DEFAULT_LOG_DIR = Path.home() / ".inkling" / "logs"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_CONFIGURED = False
_LOG_PATH: Path | None = None


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Configure root logging with a rotating file handler and optional console output.

    Repeated calls are no-ops unless ``force`` is set. Returns the log file path.
    """

    global _CONFIGURED, _LOG_PATH
    if _CONFIGURED and not force and _LOG_PATH is not None:
        return _LOG_PATH

    target_dir = _resolve_log_dir(log_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / LOG_FILENAME

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handlers: list[logging.Handler] = []
    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    handlers.append(file_handler)

    if console:
        # Console stays quieter than the file so CLI output remains readable.
        console_handler = logging.StreamHandler()
        console_handler.setLevel(max(level, logging.WARNING))
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    _tune_external_loggers(level)

    _CONFIGURED = True
    _LOG_PATH = log_path
    return log_path


def get_log_path() -> Path | None:
    """Return the currently configured log file if available."""

    return _LOG_PATH


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    env_override = os.environ.get("INKLING_LOG_DIR")
    return Path(log_dir or env_override or _DEFAULT_LOG_DIR).expanduser()


def _tune_external_loggers(root_level: int) -> None:
    quiet_level = logging.WARNING if root_level < logging.WARNING else root_level
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)
