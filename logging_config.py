"""Logging configuration for the worktree polling backend.

Records carry the worktree and session they concern (``worktree_id``,
``session_id``, ``pid`` passed through ``extra``). Process-control loggers
additionally write to ``process.log`` so every kill can be audited on its own.
"""

import json
import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional
from datetime import datetime

from config import _config_dir

# Loggers whose records also go to process.log
PROCESS_LOGGERS = ("process_registry", "process_utils", "agent_process")

CONTEXT_FIELDS = ("worktree_id", "session_id", "pid")


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'line': f"{record.module}:{record.lineno}",
            'thread': record.threadName,
            'host_pid': getattr(record, 'host_pid', os.getpid()),
        }

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value not in (None, "-"):
                log_entry[field] = value

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_data'):
            log_entry['extra'] = record.extra_data

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ContextFilter(logging.Filter):
    """Add host pid and default worktree/session context to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add context to log record."""
        record.host_pid = os.getpid()
        for field in CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, "-")
        return True


class ProcessLogFilter(logging.Filter):
    """Pass only records from the process-control loggers."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.name.split(".")[0] in PROCESS_LOGGERS


def _rotating_handler(path: Path, level: int, formatter: logging.Formatter,
                      max_file_size: int, backup_count: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=max_file_size,
        backupCount=backup_count,
        encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())
    return handler


def setup_logging(
    level: str = "INFO",
    log_to_file: bool = True,
    log_to_console: bool = True,
    json_format: bool = False,
    max_file_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
    log_dir: Optional[Path] = None,
) -> logging.Logger:
    """
    Setup logging for the backend process.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_to_file: Whether to log to rotating files
        log_to_console: Whether to log to stdout
        json_format: Whether to use JSON formatting
        max_file_size: Maximum log file size in bytes
        backup_count: Number of backup files to keep
        log_dir: Directory for log files, defaults to <config dir>/logs

    Returns:
        Configured root logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] '
            '[wt=%(worktree_id)s session=%(session_id)s pid=%(pid)s] %(module)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(formatter)
        console_handler.addFilter(ContextFilter())
        root_logger.addHandler(console_handler)

    if log_to_file:
        log_dir = log_dir or (_config_dir() / "logs")
        log_dir.mkdir(parents=True, exist_ok=True)

        root_logger.addHandler(_rotating_handler(
            log_dir / "worktree_poller.log", logging.DEBUG, formatter, max_file_size, backup_count))

        # Separate error log file
        root_logger.addHandler(_rotating_handler(
            log_dir / "errors.log", logging.ERROR, formatter, max_file_size, backup_count))

        # Kills, cancellations and agent exits
        process_handler = _rotating_handler(
            log_dir / "process.log", logging.DEBUG, formatter, max_file_size, backup_count)
        process_handler.addFilter(ProcessLogFilter())
        root_logger.addHandler(process_handler)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for a specific module."""
    return logging.getLogger(name)


def log_poll_result(logger: logging.Logger, kind: str, worktree_id: str, duration: float,
                    success: bool, **kwargs):
    """Log the outcome and duration of one local or remote status check."""
    extra_data = {
        'kind': kind,
        'duration_ms': round(duration * 1000, 2),
        'success': success,
        **kwargs
    }
    outcome = "succeeded" if success else "failed"
    logger.debug(
        f"{kind} poll {outcome} in {duration:.3f}s",
        extra={'worktree_id': worktree_id, 'extra_data': extra_data}
    )


def log_process_action(logger: logging.Logger, message: str, session_id: str, pid: Optional[int] = None,
                       level: int = logging.INFO, worktree_id: Optional[str] = None, **kwargs):
    """Log an action taken on an agent process, tagged with its session and pid."""
    extra = {'session_id': session_id, 'pid': pid if pid is not None else "-"}
    if worktree_id:
        extra['worktree_id'] = worktree_id
    if kwargs:
        extra['extra_data'] = kwargs
    logger.log(level, message, extra=extra)


def configure_qt_logging():
    """Route Qt's own diagnostics into the Python logging tree."""
    from PySide6.QtCore import qInstallMessageHandler, QtMsgType

    def qt_message_handler(msg_type: QtMsgType, context, message: str):
        """Handle Qt log messages."""
        qt_logger = get_logger('qt')

        if msg_type == QtMsgType.QtDebugMsg:
            qt_logger.debug(f"Qt: {message}")
        elif msg_type == QtMsgType.QtInfoMsg:
            qt_logger.info(f"Qt: {message}")
        elif msg_type == QtMsgType.QtWarningMsg:
            qt_logger.warning(f"Qt: {message}")
        elif msg_type == QtMsgType.QtCriticalMsg:
            qt_logger.error(f"Qt: {message}")
        elif msg_type == QtMsgType.QtFatalMsg:
            qt_logger.critical(f"Qt: {message}")

    qInstallMessageHandler(qt_message_handler)


logger = get_logger(__name__)
