"""
Per-component loggers for the Recurve relayer.

Every component gets its own rotating file under ``logs/<Module_Folder>/``
and, unless disabled in ``config/app.json``, shares one stdout handler. The
file format is either the pipe-separated text layout or one JSON object per
line (``logging.format: "json"``) for log shippers.

Usage:
    from bot_logging.logger_manager import setup_module_logger

    logger = setup_module_logger("retry_scheduler", "retry_scheduler.log", module_folder="Retry_Logs")
    logger.info("Retry #%d for %s scheduled", 2, short_id(sub_id), extra={"sub_id": sub_id})
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

from config.loader import get_config

_PROJECT_ROOT = Path(__file__).parent.parent

_logging_config = get_config().get_app_config().get("logging", {})

# RELAYER_LOG_DIR wins over config so tests and containers can redirect output
_LOG_DIR = Path(os.getenv("RELAYER_LOG_DIR") or _PROJECT_ROOT / _logging_config.get("log_dir", "logs"))
_LOG_FORMAT: str = _logging_config.get("format", "text")
_LOG_LEVEL: int = logging.getLevelName(str(_logging_config.get("level", "INFO")).upper())
_CONSOLE_ENABLED: bool = _logging_config.get("console", True)
_MAX_BYTES: int = int(_logging_config.get("max_bytes", 10 * 1024 * 1024))
_BACKUP_COUNT: int = int(_logging_config.get("backup_count", 5))

# Record attributes copied into JSON lines when passed via ``extra=``
_EXTRA_FIELDS = ("sub_id", "block_number", "tx_hash", "endpoint", "fail_count")


# ============================================================================
# FORMATTERS
# ============================================================================


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        for key in _EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-18s | %(message)s"
    DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

    def __init__(self) -> None:
        super().__init__(fmt=self.FORMAT, datefmt=self.DATE_FORMAT)


def _file_formatter(use_json: bool | None) -> logging.Formatter:
    if use_json is None:
        use_json = _LOG_FORMAT == "json"
    return JSONFormatter() if use_json else HumanReadableFormatter()


# ============================================================================
# LOGGER FACTORY
# ============================================================================

_loggers: dict[str, logging.Logger] = {}
_console_handler: logging.Handler | None = None


def _shared_console_handler() -> logging.Handler:
    global _console_handler
    if _console_handler is None:
        _console_handler = logging.StreamHandler(sys.stdout)
        _console_handler.setFormatter(HumanReadableFormatter())
    return _console_handler


def log_path_for(log_file: str, module_folder: str | None = None) -> Path:
    """Absolute path a component's log file is written to."""
    folder = _LOG_DIR / module_folder if module_folder else _LOG_DIR
    return folder / log_file


def setup_module_logger(
    name: str,
    log_file: str,
    level: int | None = None,
    module_folder: str | None = None,
    use_json_formatter: bool | None = None,
    console: bool | None = None,
) -> logging.Logger:
    """
    Return the logger for one component, creating its handlers on first use.

    Args:
        name: Logger name, unique per component.
        log_file: File name inside ``module_folder`` (or the log root).
        level: Overrides ``logging.level`` from config.
        module_folder: Sub-folder of the log root, e.g. ``"Relayer_Logs"``.
        use_json_formatter: Overrides ``logging.format`` from config.
        console: Overrides ``logging.console`` from config.
    """
    if name in _loggers:
        return _loggers[name]

    logger = logging.getLogger(name)
    logger.setLevel(level if level is not None else _LOG_LEVEL)
    logger.propagate = False

    if not logger.handlers:
        path = log_path_for(log_file, module_folder)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT, encoding="utf-8"
        )
        file_handler.setFormatter(_file_formatter(use_json_formatter))
        logger.addHandler(file_handler)

        if _CONSOLE_ENABLED if console is None else console:
            logger.addHandler(_shared_console_handler())

    _loggers[name] = logger
    return logger
