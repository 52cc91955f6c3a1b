"""Error taxonomy and centralized error handling for background infrastructure."""

import traceback
from enum import Enum
from typing import Optional, Dict, Any, Callable
from dataclasses import dataclass

from logging_config import get_logger
from metrics import record_error

logger = get_logger(__name__)


class ProcessControlError(RuntimeError):
    """A liveness check or kill primitive failed."""


class DangerousPidError(ProcessControlError):
    """Refused to signal a pid that could hit the host group or init."""

    def __init__(self, pid: int):
        super().__init__(f"Invalid PID: {pid}")
        self.pid = pid


class StatusCheckError(RuntimeError):
    """A local git status or remote PR status check failed."""


class SessionStoreError(RuntimeError):
    """Session index or run manifest could not be read or updated."""


class ErrorSeverity(Enum):
    """Error severity levels."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors raised by the backend."""
    POLLING = "polling"
    PROCESS_CONTROL = "process_control"
    SESSION_STORE = "session_store"
    EVENT_DELIVERY = "event_delivery"
    CONFIGURATION = "configuration"
    STARTUP = "startup"
    UNKNOWN = "unknown"


@dataclass
class ErrorInfo:
    """Structured error information."""
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    user_message: str
    context: Optional[Dict[str, Any]] = None
    exception: Optional[Exception] = None
    traceback_str: Optional[str] = None


class ErrorHandler:
    """Centralized error logging, metrics and optional notification."""

    def __init__(self):
        self.notification_callback: Optional[Callable[[ErrorInfo], None]] = None

    def set_notification_callback(self, callback: Optional[Callable[[ErrorInfo], None]]):
        """Set callback function for error notifications."""
        self.notification_callback = callback
        logger.debug("Error notification callback registered")

    def handle_error(
        self,
        exception: Exception,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        user_message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> ErrorInfo:
        """Handle an error with logging, metrics and notification."""
        traceback_str = None
        if exception is not None and exception.__traceback__ is not None:
            traceback_str = "".join(
                traceback.format_exception(type(exception), exception, exception.__traceback__)
            )

        error_info = ErrorInfo(
            category=category,
            severity=severity,
            message=str(exception),
            user_message=user_message or self._generate_user_message(exception, category),
            context=context or {},
            exception=exception,
            traceback_str=traceback_str
        )

        self._log_error(error_info)
        self._record_error_metrics(error_info)

        if self.notification_callback:
            try:
                self.notification_callback(error_info)
            except Exception as e:
                logger.error(f"Error in notification callback: {e}")

        return error_info

    def handle_poll_error(
        self,
        exception: Exception,
        kind: str,
        worktree_id: str,
    ) -> ErrorInfo:
        """Handle a failed local or remote status check.

        Check failures are transient: the next timer boundary retries them.
        """
        return self.handle_error(
            exception=exception,
            category=ErrorCategory.POLLING,
            severity=ErrorSeverity.WARNING,
            user_message=f"Failed to get {kind} status for {worktree_id}: {exception}",
            context={"kind": kind, "worktree_id": worktree_id}
        )

    def handle_process_error(
        self,
        exception: Exception,
        operation: str,
        pid: Optional[int] = None,
        severity: ErrorSeverity = ErrorSeverity.ERROR
    ) -> ErrorInfo:
        """Handle a process-control failure (liveness check, kill, tree kill)."""
        return self.handle_error(
            exception=exception,
            category=ErrorCategory.PROCESS_CONTROL,
            severity=severity,
            user_message=f"Process operation '{operation}' failed: {exception}",
            context={"operation": operation, "pid": pid}
        )

    def handle_configuration_error(
        self,
        exception: Exception,
        config_key: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.WARNING
    ) -> ErrorInfo:
        """Handle configuration-related errors."""
        key_info = f" for setting '{config_key}'" if config_key else ""
        return self.handle_error(
            exception=exception,
            category=ErrorCategory.CONFIGURATION,
            severity=severity,
            user_message=f"Configuration error{key_info}: {exception}",
            context={"config_key": config_key}
        )

    def _log_error(self, error_info: ErrorInfo):
        """Log error information appropriately based on severity."""
        log_message = f"[{error_info.category.value}] {error_info.user_message}"

        if error_info.context:
            log_message += f" | Context: {error_info.context}"

        if error_info.severity == ErrorSeverity.CRITICAL:
            logger.critical(log_message, exc_info=error_info.exception)
        elif error_info.severity == ErrorSeverity.ERROR:
            logger.error(log_message, exc_info=error_info.exception)
        elif error_info.severity == ErrorSeverity.WARNING:
            logger.warning(log_message)
        else:
            logger.info(log_message)

    def _record_error_metrics(self, error_info: ErrorInfo):
        """Record error metrics for analysis."""
        try:
            record_error(
                error_type=f"{error_info.category.value}_{type(error_info.exception).__name__}",
                error_message=error_info.message,
                context={
                    "severity": error_info.severity.value,
                    "category": error_info.category.value,
                    **error_info.context
                }
            )
        except Exception as e:
            logger.debug(f"Failed to record error metrics: {e}")

    def _generate_user_message(self, exception: Exception, category: ErrorCategory) -> str:
        """Generate a readable error message."""
        if category == ErrorCategory.POLLING:
            return f"Status check failed: {exception}"
        elif category == ErrorCategory.PROCESS_CONTROL:
            return f"Process control error: {exception}"
        elif category == ErrorCategory.SESSION_STORE:
            return f"Session store error: {exception}"
        elif category == ErrorCategory.EVENT_DELIVERY:
            return f"Event delivery failed: {exception}"
        elif category == ErrorCategory.CONFIGURATION:
            return f"Configuration error: {exception}"
        elif category == ErrorCategory.STARTUP:
            return f"Backend startup error: {exception}"
        else:
            return f"An unexpected error occurred: {exception}"


# Global error handler instance
_error_handler = ErrorHandler()


def get_error_handler() -> ErrorHandler:
    """Get the global error handler instance."""
    return _error_handler


def handle_error(
    exception: Exception,
    category: ErrorCategory = ErrorCategory.UNKNOWN,
    severity: ErrorSeverity = ErrorSeverity.ERROR,
    user_message: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None
) -> ErrorInfo:
    """Convenience function to handle errors using the global handler."""
    return _error_handler.handle_error(exception, category, severity, user_message, context)


def handle_poll_error(exception: Exception, kind: str, worktree_id: str) -> ErrorInfo:
    """Convenience function to handle status check failures."""
    return _error_handler.handle_poll_error(exception, kind, worktree_id)


def handle_process_error(
    exception: Exception,
    operation: str,
    pid: Optional[int] = None,
    severity: ErrorSeverity = ErrorSeverity.ERROR
) -> ErrorInfo:
    """Convenience function to handle process-control failures."""
    return _error_handler.handle_process_error(exception, operation, pid, severity)


def handle_configuration_error(
    exception: Exception,
    config_key: Optional[str] = None,
    severity: ErrorSeverity = ErrorSeverity.WARNING
) -> ErrorInfo:
    """Convenience function to handle configuration errors."""
    return _error_handler.handle_configuration_error(exception, config_key, severity)
