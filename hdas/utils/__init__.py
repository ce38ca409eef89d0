"""
HDAS Utilities
"""

from .error_handling import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    ErrorAggregator,
    get_error_aggregator,
    handle_error,
    safe_execute,
)

__all__ = [
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'ErrorAggregator',
    'get_error_aggregator',
    'handle_error',
    'safe_execute',
]
