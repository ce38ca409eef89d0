"""
Error Handling Utilities for the HDAS open monitor

The classification pipeline itself has no error paths; these helpers are
for the outer layers that touch the world (BCC compilation, perf polling,
config files, package-manager queries, collector callbacks):

1. Detailed error logging with context
2. Error categorization and severity levels
3. Stack trace preservation
4. Error aggregation with de-duplication

USAGE:
    from hdas.utils.error_handling import (
        handle_error,
        ErrorCategory,
        safe_execute,
    )

    # Context manager usage
    with safe_execute("attributing record", ErrorCategory.ATTRIBUTION):
        ...

    # Direct error handling
    try:
        risky_operation()
    except Exception as e:
        handle_error(e, "operation_name", ErrorCategory.SYSTEM)
"""

import logging
import sys
import threading
import time
import traceback
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Categories of errors for proper handling and reporting."""
    # Kernel probe compile/attach/poll
    PROBE = "probe"

    # Configuration errors
    CONFIG = "configuration"

    # Process-tree and package ownership lookups
    ATTRIBUTION = "attribution"

    # Collector callbacks
    COLLECTOR = "collector"

    # File system errors
    FILESYSTEM = "filesystem"

    # Process/system errors
    SYSTEM = "system"

    # Unknown/uncategorized
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    # Informational - operation can continue
    INFO = "info"

    # Warning - something unexpected but not critical
    WARNING = "warning"

    # Error - operation failed but monitor stable
    ERROR = "error"

    # Critical - monitoring is not happening
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    """Detailed context information for an error."""
    error: Exception
    category: ErrorCategory
    severity: ErrorSeverity
    operation: str
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    thread_name: str = field(default_factory=lambda: threading.current_thread().name)
    stack_trace: str = ""
    additional_context: Dict[str, Any] = field(default_factory=dict)
    platform: str = field(default_factory=lambda: sys.platform)

    def __post_init__(self):
        if not self.stack_trace:
            self.stack_trace = traceback.format_exc()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            'error_type': type(self.error).__name__,
            'error_message': str(self.error),
            'category': self.category.value,
            'severity': self.severity.value,
            'operation': self.operation,
            'timestamp': self.timestamp,
            'thread_name': self.thread_name,
            'stack_trace': self.stack_trace,
            'additional_context': self.additional_context,
            'platform': self.platform,
        }

    def format_log_message(self) -> str:
        """Format a detailed log message."""
        lines = [
            f"ERROR [{self.severity.value.upper()}] in {self.operation}",
            f"  Category: {self.category.value}",
            f"  Type: {type(self.error).__name__}",
            f"  Message: {self.error}",
            f"  Thread: {self.thread_name}",
        ]

        if self.additional_context:
            lines.append("  Context:")
            for key, value in self.additional_context.items():
                lines.append(f"    {key}: {value}")

        trace_lines = [l for l in self.stack_trace.split('\n') if l.strip()]
        if trace_lines and trace_lines[0] != 'NoneType: None':
            lines.append("  Stack Trace:")
            for line in trace_lines:
                lines.append(f"    {line}")

        return '\n'.join(lines)


class ErrorAggregator:
    """
    Aggregates and tracks errors for reporting and analysis.

    Thread-safe error collection with de-duplication: a repeat of the same
    category/type/operation inside the window is counted, not stored.
    """

    def __init__(self, max_errors: int = 1000, dedup_window_seconds: int = 60):
        self._errors: List[ErrorContext] = []
        self._lock = threading.Lock()
        self._max_errors = max_errors
        self._dedup_window = dedup_window_seconds
        self._error_counts: Dict[str, int] = {}
        self._last_error_times: Dict[str, float] = {}

    def add_error(self, context: ErrorContext) -> bool:
        """
        Add an error to the aggregator.

        Returns True if error was added, False if deduplicated.
        """
        error_key = f"{context.category.value}:{type(context.error).__name__}:{context.operation}"
        current_time = time.time()

        with self._lock:
            last_time = self._last_error_times.get(error_key)
            if last_time is not None and current_time - last_time < self._dedup_window:
                self._error_counts[error_key] = self._error_counts.get(error_key, 0) + 1
                return False

            self._errors.append(context)
            self._last_error_times[error_key] = current_time
            self._error_counts[error_key] = 1

            if len(self._errors) > self._max_errors:
                self._errors = self._errors[-self._max_errors:]

            return True

    def get_error_summary(self) -> Dict[str, Any]:
        """Get a summary of aggregated errors."""
        with self._lock:
            by_category: Dict[str, int] = {}
            by_severity: Dict[str, int] = {}

            for ctx in self._errors:
                cat = ctx.category.value
                sev = ctx.severity.value
                by_category[cat] = by_category.get(cat, 0) + 1
                by_severity[sev] = by_severity.get(sev, 0) + 1

            return {
                'total_errors': len(self._errors),
                'by_category': by_category,
                'by_severity': by_severity,
                'deduplicated_counts': dict(self._error_counts),
            }

    def get_recent_errors(self, count: int = 10) -> List[Dict[str, Any]]:
        """Get the most recent errors."""
        with self._lock:
            return [e.to_dict() for e in self._errors[-count:]]

    def clear(self):
        """Clear all aggregated errors."""
        with self._lock:
            self._errors.clear()
            self._error_counts.clear()
            self._last_error_times.clear()


# Global error aggregator
_global_aggregator = ErrorAggregator()


def get_error_aggregator() -> ErrorAggregator:
    """Get the global error aggregator instance."""
    return _global_aggregator


def determine_severity(error: Exception, category: ErrorCategory) -> ErrorSeverity:
    """
    Determine the severity level for an error based on type and category.
    """
    # A probe that cannot load means nothing is being observed
    if category == ErrorCategory.PROBE:
        return ErrorSeverity.CRITICAL

    if isinstance(error, PermissionError):
        return ErrorSeverity.ERROR

    # Processes exit between the event and the lookup all the time
    if category == ErrorCategory.ATTRIBUTION:
        return ErrorSeverity.WARNING

    if isinstance(error, FileNotFoundError):
        return ErrorSeverity.WARNING

    if 'timeout' in type(error).__name__.lower() or 'timed out' in str(error).lower():
        return ErrorSeverity.WARNING

    return ErrorSeverity.ERROR


def handle_error(
    error: Exception,
    operation: str,
    category: ErrorCategory = ErrorCategory.UNKNOWN,
    severity: Optional[ErrorSeverity] = None,
    additional_context: Optional[Dict[str, Any]] = None,
    reraise: bool = False,
) -> ErrorContext:
    """
    Handle an error with logging and tracking.

    Args:
        error: The exception that occurred
        operation: Name of the operation that failed
        category: Category of the error
        severity: Severity level (auto-determined if not provided)
        additional_context: Additional context information
        reraise: Whether to re-raise the exception after handling

    Returns:
        ErrorContext with full error details
    """
    if severity is None:
        severity = determine_severity(error, category)

    context = ErrorContext(
        error=error,
        category=category,
        severity=severity,
        operation=operation,
        additional_context=additional_context or {},
    )

    was_added = _global_aggregator.add_error(context)

    log_level = {
        ErrorSeverity.INFO: logging.INFO,
        ErrorSeverity.WARNING: logging.WARNING,
        ErrorSeverity.ERROR: logging.ERROR,
        ErrorSeverity.CRITICAL: logging.CRITICAL,
    }.get(severity, logging.ERROR)

    if was_added:
        logger.log(log_level, context.format_log_message())
    else:
        logger.log(
            log_level,
            f"[DEDUPLICATED] {operation}: {type(error).__name__}: {error}"
        )

    if reraise:
        raise error

    return context


@contextmanager
def safe_execute(
    operation: str,
    category: ErrorCategory = ErrorCategory.UNKNOWN,
    default_return: Any = None,
    reraise: bool = False,
    additional_context: Optional[Dict[str, Any]] = None,
):
    """
    Context manager for safe execution with error handling.

    Usage:
        with safe_execute("loading config", ErrorCategory.CONFIG) as result:
            result.value = load_config()

    Args:
        operation: Name of the operation
        category: Error category
        default_return: Default value to return on error
        reraise: Whether to re-raise exceptions
        additional_context: Additional context information
    """
    class Result:
        def __init__(self):
            self.value = default_return
            self.error: Optional[ErrorContext] = None
            self.success = True

    result = Result()

    try:
        yield result
    except Exception as e:
        result.success = False
        result.value = default_return
        result.error = handle_error(
            e,
            operation,
            category=category,
            additional_context=additional_context,
            reraise=reraise,
        )


__all__ = [
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'ErrorAggregator',
    'get_error_aggregator',
    'determine_severity',
    'handle_error',
    'safe_execute',
]
