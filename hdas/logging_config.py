"""
Logging Configuration for the HDAS open monitor.

Provides centralized logging configuration with verbose mode toggle,
feature-aware logger names, and text or JSON formatting.

Usage:
    from hdas.logging_config import setup_logging, get_logger, set_verbose

    # Setup at startup
    setup_logging(verbose=True)

    # Get feature-specific logger
    logger = get_logger('hdas.monitor')
    logger.notice("Attributed", extra={'extra_data': {'package': 'firefox'}})

    # Toggle verbose mode at runtime
    set_verbose(True)
"""

import os
import sys
import json
import logging
import threading
from datetime import datetime
from enum import Enum, auto
from pathlib import Path
from typing import Optional, Dict, Any, Set
from dataclasses import dataclass, field


# =============================================================================
# LOGGING LEVELS AND FEATURES
# =============================================================================

TRACE = 5
VERBOSE = 15
NOTICE = 25


class FeatureArea(Enum):
    """Feature areas for targeted logging."""
    CORE = auto()           # Package-level operations
    CLASSIFIER = auto()     # Rule matching
    PROBE = auto()          # BPF program and perf ring
    CONFIG = auto()         # Configuration loading/linting
    ATTRIBUTION = auto()    # Process tree / package ownership
    MONITOR = auto()        # Collector loop
    STORE = auto()          # Attribution database
    CLI = auto()            # hdasctl


logging.addLevelName(TRACE, 'TRACE')
logging.addLevelName(VERBOSE, 'VERBOSE')
logging.addLevelName(NOTICE, 'NOTICE')


# =============================================================================
# THREAD-SAFE CONFIGURATION STATE
# =============================================================================

@dataclass
class LoggingState:
    """Thread-safe logging configuration state."""
    verbose: bool = False
    trace: bool = False
    log_file: Optional[str] = None
    console_enabled: bool = True
    json_format: bool = False
    enabled_features: Set[FeatureArea] = field(default_factory=lambda: set(FeatureArea))
    initialized: bool = False
    _lock: threading.RLock = field(default_factory=threading.RLock)


_state = LoggingState()


# =============================================================================
# CUSTOM FORMATTER
# =============================================================================

class HdasFormatter(logging.Formatter):
    """Formatter with color support and structured output."""

    COLORS = {
        'TRACE': '\033[90m',      # Gray
        'DEBUG': '\033[36m',      # Cyan
        'VERBOSE': '\033[94m',    # Light blue
        'INFO': '\033[32m',       # Green
        'NOTICE': '\033[33m',     # Yellow
        'WARNING': '\033[33;1m',  # Bold yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[31;1m', # Bold red
        'RESET': '\033[0m',
    }

    def __init__(self, use_colors: bool = True, json_format: bool = False):
        self.use_colors = use_colors and sys.stderr.isatty()
        self.json_format = json_format
        super().__init__()

    def format(self, record: logging.LogRecord) -> str:
        if self.json_format:
            return self._format_json(record)
        return self._format_text(record)

    def _format_text(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
        level_name = record.levelname

        if self.use_colors:
            color = self.COLORS.get(level_name, '')
            reset = self.COLORS['RESET']
            level_str = f"{color}{level_name:8}{reset}"
        else:
            level_str = f"{level_name:8}"

        feature = feature_for(record.name).name.lower()
        msg = record.getMessage()

        extra_str = ""
        extra_data = getattr(record, 'extra_data', None)
        if extra_data:
            extra_items = [f"{k}={v}" for k, v in extra_data.items()]
            extra_str = f" | {', '.join(extra_items)}"

        text = f"{timestamp} {level_str} [{feature}] {msg}{extra_str}"
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text

    def _format_json(self, record: logging.LogRecord) -> str:
        data = {
            'timestamp': datetime.now().isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'feature': feature_for(record.name).name.lower(),
        }

        extra_data = getattr(record, 'extra_data', None)
        if extra_data:
            data['extra'] = extra_data

        if record.exc_info:
            data['exception'] = self.formatException(record.exc_info)

        return json.dumps(data, default=str)


def feature_for(logger_name: str) -> FeatureArea:
    """Map a module logger name onto its feature area."""
    feature_map = {
        'classifier': FeatureArea.CLASSIFIER,
        'ebpf': FeatureArea.PROBE,
        'probe': FeatureArea.PROBE,
        'config': FeatureArea.CONFIG,
        'attribution': FeatureArea.ATTRIBUTION,
        'tracking': FeatureArea.ATTRIBUTION,
        'monitor': FeatureArea.MONITOR,
        'store': FeatureArea.STORE,
        'cli': FeatureArea.CLI,
    }
    name_lower = logger_name.lower()
    for key, feature in feature_map.items():
        if key in name_lower:
            return feature
    return FeatureArea.CORE


# =============================================================================
# CUSTOM LOGGER CLASS
# =============================================================================

class HdasLogger(logging.Logger):
    """Logger with the extra TRACE/VERBOSE/NOTICE levels."""

    def trace(self, msg: str, *args, **kwargs):
        """Log at TRACE level (ultra-verbose)."""
        if self.isEnabledFor(TRACE):
            self._log(TRACE, msg, args, **kwargs)

    def verbose(self, msg: str, *args, **kwargs):
        """Log at VERBOSE level."""
        if self.isEnabledFor(VERBOSE):
            self._log(VERBOSE, msg, args, **kwargs)

    def notice(self, msg: str, *args, **kwargs):
        """Log at NOTICE level."""
        if self.isEnabledFor(NOTICE):
            self._log(NOTICE, msg, args, **kwargs)

    def log_with_data(self, level: int, msg: str, data: Dict[str, Any], **kwargs):
        """Log with structured extra data."""
        extra = kwargs.get('extra', {})
        extra['extra_data'] = data
        kwargs['extra'] = extra
        if self.isEnabledFor(level):
            self._log(level, msg, (), **kwargs)


# Set our custom logger class
logging.setLoggerClass(HdasLogger)


# =============================================================================
# SETUP AND CONFIGURATION
# =============================================================================

def setup_logging(
    verbose: bool = False,
    trace: bool = False,
    log_file: Optional[str] = None,
    console: bool = True,
    json_format: bool = False,
    features: Optional[Set[FeatureArea]] = None,
) -> None:
    """
    Initialize the logging system.

    Args:
        verbose: Enable verbose logging (VERBOSE level)
        trace: Enable trace logging (TRACE level, implies verbose)
        log_file: Optional file path for log output
        console: Enable console output (stderr)
        json_format: Use JSON format for logs
        features: Features logged at the base level; others log warnings+
    """
    with _state._lock:
        _state.verbose = verbose or trace
        _state.trace = trace
        _state.log_file = log_file
        _state.console_enabled = console
        _state.json_format = json_format
        _state.enabled_features = set(features) if features is not None else set(FeatureArea)

        if trace:
            base_level = TRACE
        elif verbose:
            base_level = VERBOSE
        else:
            base_level = logging.INFO

        root = logging.getLogger()
        root.setLevel(base_level)

        for handler in root.handlers[:]:
            root.removeHandler(handler)

        if console:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setLevel(base_level)
            console_handler.setFormatter(HdasFormatter(
                use_colors=True,
                json_format=json_format
            ))
            root.addHandler(console_handler)

        if log_file:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(base_level)
            file_handler.setFormatter(HdasFormatter(
                use_colors=False,
                json_format=json_format
            ))
            root.addHandler(file_handler)

        _apply_feature_levels(base_level)

        _state.initialized = True


_FEATURE_LOGGERS = (
    'hdas.classifier', 'hdas.ebpf', 'hdas.config', 'hdas.attribution',
    'hdas.tracking', 'hdas.monitor', 'hdas.store', 'hdas.cli',
)


def _apply_feature_levels(base_level: int) -> None:
    """Set each hdas.* logger to ``base_level``, or WARNING if its feature is off."""
    for name in _FEATURE_LOGGERS:
        feature_level = base_level if feature_for(name) in _state.enabled_features else logging.WARNING
        logging.getLogger(name).setLevel(feature_level)


def get_logger(name: str) -> HdasLogger:
    """
    Get a logger with the extra level methods.

    Args:
        name: Logger name (e.g., 'hdas.monitor')

    Returns:
        HdasLogger instance
    """
    logger = logging.getLogger(name)
    if not isinstance(logger, HdasLogger):
        logging.setLoggerClass(HdasLogger)
        logger = logging.getLogger(name)
    return logger


def set_verbose(enabled: bool) -> None:
    """Toggle verbose mode at runtime."""
    with _state._lock:
        _state.verbose = enabled
        level = VERBOSE if enabled else logging.INFO

        root = logging.getLogger()
        root.setLevel(level)

        for handler in root.handlers:
            handler.setLevel(level)

        _apply_feature_levels(level)


def is_verbose() -> bool:
    """Check if verbose mode is enabled."""
    return _state.verbose


def get_logging_state() -> Dict[str, Any]:
    """Get current logging configuration state."""
    with _state._lock:
        return {
            'verbose': _state.verbose,
            'trace': _state.trace,
            'log_file': _state.log_file,
            'console_enabled': _state.console_enabled,
            'json_format': _state.json_format,
            'enabled_features': sorted(f.name for f in _state.enabled_features),
            'initialized': _state.initialized,
        }


# =============================================================================
# ENVIRONMENT VARIABLE CONFIGURATION
# =============================================================================

def _env_flag(name: str) -> bool:
    return os.environ.get(name, '').lower() in ('1', 'true', 'yes')


def configure_from_environment(verbose: bool = False) -> None:
    """Configure logging from HDAS_* environment variables."""
    enabled_features = set(FeatureArea)
    disabled = os.environ.get('HDAS_LOG_DISABLE_FEATURES', '')
    if disabled:
        for feature_name in disabled.split(','):
            try:
                enabled_features.discard(FeatureArea[feature_name.strip().upper()])
            except KeyError:
                continue

    setup_logging(
        verbose=verbose or _env_flag('HDAS_VERBOSE'),
        trace=_env_flag('HDAS_TRACE'),
        log_file=os.environ.get('HDAS_LOG_FILE'),
        console=not _env_flag('HDAS_LOG_NO_CONSOLE'),
        json_format=_env_flag('HDAS_LOG_JSON'),
        features=enabled_features,
    )


__all__ = [
    'TRACE',
    'VERBOSE',
    'NOTICE',
    'FeatureArea',
    'feature_for',
    'setup_logging',
    'configure_from_environment',
    'get_logger',
    'set_verbose',
    'is_verbose',
    'get_logging_state',
    'HdasLogger',
    'HdasFormatter',
]
