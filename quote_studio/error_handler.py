"""
Centralized error handling framework for Quote Studio.

Provides error classification, recovery strategies, and user-friendly
error reporting with contextual information and recovery suggestions.
"""

from enum import Enum
from typing import Optional, Dict, Any, List, Union
from dataclasses import dataclass
from datetime import datetime, timezone
import traceback
import sys

from .logging_conf import get_logger

logger = get_logger(__name__)


class ErrorSeverity(Enum):
    """Error severity levels."""
    CRITICAL = "critical"  # System-level failures, app cannot continue
    ERROR = "error"       # Operation failures, user action needed
    WARNING = "warning"   # Potential issues, degraded functionality
    INFO = "info"         # Informational messages, no action needed


class RecoveryStrategy(Enum):
    """Error recovery strategies."""
    RETRY = "retry"           # Automatically retry the operation
    FALLBACK = "fallback"     # Use alternative approach/service
    MANUAL = "manual"         # Requires user intervention
    ABORT = "abort"           # Operation cannot be completed
    DEGRADE = "degrade"       # Continue with reduced functionality


@dataclass
class ErrorContext:
    """Additional context information for errors."""
    quote_id: Optional[str] = None
    quote_no: Optional[str] = None
    operation: Optional[str] = None
    path: Optional[str] = None
    provider: Optional[str] = None
    user_data: Optional[Dict[str, Any]] = None


class BaseApplicationError(Exception):
    """
    Base class for all application errors with enhanced context and recovery information.
    """

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        recovery_strategy: RecoveryStrategy = RecoveryStrategy.MANUAL,
        user_message: Optional[str] = None,
        suggestion: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        error_code: Optional[str] = None,
        cause: Optional[Exception] = None
    ):
        """
        Initialize application error.

        Args:
            message: Technical error message for logging
            severity: Error severity level
            recovery_strategy: How the error can be recovered from
            user_message: User-friendly error message
            suggestion: Recovery suggestion for the user
            context: Additional context information
            error_code: Unique error code for documentation lookup
            cause: Underlying exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.severity = severity
        self.recovery_strategy = recovery_strategy
        self.user_message = user_message or self._generate_user_message()
        self.suggestion = suggestion
        self.context = context or ErrorContext()
        self.error_code = error_code
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)
        self.traceback = traceback.format_exc() if sys.exc_info()[0] else None

    def _generate_user_message(self) -> str:
        """Generate a user-friendly message from the technical message."""
        return f"An error occurred: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "severity": self.severity.value,
            "recovery_strategy": self.recovery_strategy.value,
            "user_message": self.user_message,
            "suggestion": self.suggestion,
            "timestamp": self.timestamp.isoformat(),
            "context": {
                "quote_id": self.context.quote_id,
                "quote_no": self.context.quote_no,
                "operation": self.context.operation,
                "path": self.context.path,
                "provider": self.context.provider
            }
        }


class RetryableError(BaseApplicationError):
    """Error that can be automatically retried."""

    def __init__(self, message: str, max_retries: int = 3, **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.WARNING)
        kwargs.setdefault('recovery_strategy', RecoveryStrategy.RETRY)
        self.max_retries = max_retries
        super().__init__(message, **kwargs)


class NotFoundError(BaseApplicationError):
    """A referenced quote or counter record does not exist."""

    def __init__(self, resource: str, identifier: str, **kwargs):
        self.resource = resource
        self.identifier = identifier
        message = f"{resource} not found: {identifier}"
        kwargs.setdefault('severity', ErrorSeverity.WARNING)
        kwargs.setdefault('recovery_strategy', RecoveryStrategy.ABORT)
        kwargs.setdefault('error_code', 'NOT_FOUND')
        kwargs.pop('user_message', None)
        super().__init__(
            message=message,
            user_message=f"The requested {resource} does not exist",
            **kwargs
        )


class ValidationError(BaseApplicationError):
    """Input validation failures."""

    def __init__(self, field: str, value: Any, constraint: str, **kwargs):
        self.field = field
        self.value = value
        self.constraint = constraint
        message = f"Validation failed for {field}: {constraint}"
        user_message = f"Invalid {field}: {constraint}"
        kwargs.setdefault('severity', ErrorSeverity.WARNING)
        kwargs.setdefault('recovery_strategy', RecoveryStrategy.MANUAL)
        kwargs.setdefault('error_code', 'VALIDATION_ERROR')
        # Remove user_message from kwargs if it exists to avoid duplicate
        kwargs.pop('user_message', None)
        super().__init__(
            message=message,
            user_message=user_message,
            **kwargs
        )


class PatchError(ValidationError):
    """A patch operation could not be resolved or applied."""

    def __init__(self, op_index: int, op: str, path: str, reason: str, **kwargs):
        self.op_index = op_index
        self.op = op
        self.path = path
        self.reason = reason
        if 'context' not in kwargs:
            kwargs['context'] = ErrorContext()
        kwargs['context'].path = path
        kwargs['context'].operation = f"patch[{op_index}] {op}"
        kwargs.setdefault('error_code', 'PATCH_REJECTED')
        super().__init__(
            field=path,
            value=op,
            constraint=f"operation {op_index} ({op}) rejected: {reason}",
            **kwargs
        )


class ConflictError(RetryableError):
    """An atomic counter or revision transaction lost its race."""

    def __init__(self, resource: str, reason: str = "concurrent update", **kwargs):
        self.resource = resource
        kwargs.setdefault('error_code', 'CONFLICT')
        kwargs.setdefault('suggestion', "Retry the request")
        super().__init__(f"Conflict on {resource}: {reason}", **kwargs)


class CollaboratorError(BaseApplicationError):
    """A rendering, embedding or structuring collaborator failed or timed out."""

    def __init__(self, service: str, reason: str, timed_out: bool = False, **kwargs):
        self.service = service
        self.reason = reason
        self.timed_out = timed_out
        message = f"Collaborator {service} failed: {reason}"
        if timed_out:
            user_message = f"The {service} result is not yet available"
        else:
            user_message = f"The {service} service is currently unavailable"
        kwargs.setdefault('severity', ErrorSeverity.WARNING)
        kwargs.setdefault('recovery_strategy', RecoveryStrategy.RETRY)
        kwargs.setdefault('error_code', f'COLLABORATOR_{service.upper()}')
        kwargs.setdefault('suggestion', "Please try again in a moment")
        if 'context' not in kwargs:
            kwargs['context'] = ErrorContext()
        kwargs['context'].provider = service
        kwargs.pop('user_message', None)
        super().__init__(
            message=message,
            user_message=user_message,
            **kwargs
        )


class ConfigurationError(BaseApplicationError):
    """Configuration and setup errors."""

    def __init__(self, component: str, issue: str, **kwargs):
        self.component = component
        self.issue = issue
        message = f"Configuration error in {component}: {issue}"
        user_message = f"Setup issue with {component}: {issue}"
        kwargs.setdefault('severity', ErrorSeverity.ERROR)
        kwargs.setdefault('recovery_strategy', RecoveryStrategy.MANUAL)
        kwargs.setdefault('error_code', f'CONFIG_{component.upper()}')
        kwargs.pop('user_message', None)
        super().__init__(
            message=message,
            user_message=user_message,
            **kwargs
        )


class ErrorHandler:
    """
    Centralized error handler for the application.
    """

    def __init__(self):
        self.error_counts: Dict[str, int] = {}
        self.recent_errors: List[BaseApplicationError] = []
        self.max_recent_errors = 100

    def handle_error(
        self,
        error: Union[BaseApplicationError, Exception],
        context: Optional[ErrorContext] = None
    ) -> BaseApplicationError:
        """
        Handle an error with logging and counting.

        Args:
            error: The error to handle
            context: Additional context information

        Returns:
            BaseApplicationError instance (converted if needed)
        """
        if not isinstance(error, BaseApplicationError):
            app_error = self._convert_exception(error, context)
        else:
            app_error = error
            if context is not None:
                for attr in ('quote_id', 'quote_no', 'operation', 'path', 'provider'):
                    if getattr(context, attr) and not getattr(app_error.context, attr):
                        setattr(app_error.context, attr, getattr(context, attr))

        self._log_error(app_error)
        self._track_error(app_error)
        self._store_recent_error(app_error)

        return app_error

    def _convert_exception(
        self,
        exc: Exception,
        context: Optional[ErrorContext] = None
    ) -> BaseApplicationError:
        """Convert a standard exception to BaseApplicationError."""
        if isinstance(exc, (ConnectionError, TimeoutError)):
            return CollaboratorError(
                service=(context.provider if context and context.provider else "network"),
                reason=str(exc) or type(exc).__name__,
                timed_out=isinstance(exc, TimeoutError),
                cause=exc,
                context=context
            )
        elif isinstance(exc, ValueError):
            return ValidationError(
                field="input",
                value=str(exc),
                constraint="Invalid value format",
                cause=exc,
                context=context
            )
        else:
            return BaseApplicationError(
                message=str(exc),
                user_message=f"An unexpected error occurred: {type(exc).__name__}",
                suggestion="Please try again or contact support if the problem persists",
                severity=ErrorSeverity.ERROR,
                recovery_strategy=RecoveryStrategy.MANUAL,
                cause=exc,
                context=context
            )

    def _log_error(self, error: BaseApplicationError):
        """Log error with appropriate level and context."""
        log_data = {
            "error_code": error.error_code,
            "severity": error.severity.value,
            "recovery_strategy": error.recovery_strategy.value,
            "user_message": error.user_message,
            "quote_id": error.context.quote_id,
            "operation": error.context.operation,
            "path": error.context.path,
            "provider": error.context.provider
        }

        if error.cause:
            log_data["cause"] = str(error.cause)
            log_data["cause_type"] = type(error.cause).__name__

        if error.severity == ErrorSeverity.CRITICAL:
            logger.critical(error.message, **log_data)
        elif error.severity == ErrorSeverity.ERROR:
            logger.error(error.message, **log_data)
        elif error.severity == ErrorSeverity.WARNING:
            logger.warning(error.message, **log_data)
        else:
            logger.info(error.message, **log_data)

    def _track_error(self, error: BaseApplicationError):
        """Track error statistics."""
        error_key = error.error_code or type(error).__name__
        self.error_counts[error_key] = self.error_counts.get(error_key, 0) + 1

    def _store_recent_error(self, error: BaseApplicationError):
        """Store error in recent errors list."""
        self.recent_errors.append(error)
        if len(self.recent_errors) > self.max_recent_errors:
            self.recent_errors = self.recent_errors[-self.max_recent_errors:]

    def get_error_stats(self) -> Dict[str, Any]:
        """Get error statistics."""
        return {
            "error_counts": self.error_counts.copy(),
            "recent_error_count": len(self.recent_errors),
            "recent_errors": [error.to_dict() for error in self.recent_errors[-10:]]
        }

    def clear_stats(self):
        """Clear error statistics."""
        self.error_counts.clear()
        self.recent_errors.clear()


# Global error handler instance
error_handler = ErrorHandler()


def handle_error(
    error: Union[BaseApplicationError, Exception],
    context: Optional[ErrorContext] = None
) -> BaseApplicationError:
    """
    Convenience function to handle errors using the global error handler.
    """
    return error_handler.handle_error(error, context)


def create_context(
    quote_id: str = None,
    quote_no: str = None,
    operation: str = None,
    path: str = None,
    provider: str = None,
    **kwargs
) -> ErrorContext:
    """
    Convenience function to create error context.
    """
    return ErrorContext(
        quote_id=quote_id,
        quote_no=quote_no,
        operation=operation,
        path=path,
        provider=provider,
        user_data=kwargs if kwargs else None
    )
