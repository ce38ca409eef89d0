"""
Configuration Linter - Validate HDAS monitor configuration

Catches configurations that would compile into a useless or unsafe
kernel program (empty patterns, out-of-range scan bounds) as well as
likely mistakes (duplicates, missing directories, huge depths).

Usage:
    hdasctl config validate

Severity Levels:
    ERROR    - The monitor will refuse to start
    WARNING  - Probably not what was intended
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from hdas.classifier import ExclusionPolicy
from hdas.constants import BufferSizes, Defaults, ScanBounds
from hdas.config.monitor_config import MonitorConfig, get_user_home

logger = logging.getLogger(__name__)


class LintSeverity(Enum):
    """Severity levels for lint findings."""
    ERROR = "error"
    WARNING = "warning"


@dataclass
class LintFinding:
    """A single lint finding."""
    severity: LintSeverity
    key: str
    message: str
    suggestion: Optional[str] = None

    def __str__(self) -> str:
        text = f"{self.severity.value}: [{self.key}] {self.message}"
        if self.suggestion:
            text += f" ({self.suggestion})"
        return text


@dataclass
class LintResult:
    """Result of linting operation."""
    findings: List[LintFinding] = field(default_factory=list)
    config_path: str = ""

    @property
    def errors(self) -> List[LintFinding]:
        return [f for f in self.findings if f.severity == LintSeverity.ERROR]

    @property
    def warnings(self) -> List[LintFinding]:
        return [f for f in self.findings if f.severity == LintSeverity.WARNING]

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add(self, severity: LintSeverity, key: str, message: str,
            suggestion: Optional[str] = None) -> None:
        self.findings.append(LintFinding(severity, key, message, suggestion))

    def summary(self) -> str:
        """Generate summary string."""
        if not self.findings:
            return "Configuration is valid."
        if self.is_valid:
            return "Configuration is valid (with warnings)."
        return "Configuration has errors."

    def to_dict(self) -> Dict[str, Any]:
        return {
            'config_path': self.config_path,
            'valid': self.is_valid,
            'errors': [f.message for f in self.errors],
            'warnings': [f.message for f in self.warnings],
        }


class ConfigLinter:
    """
    Validates a MonitorConfig.

    Checks for:
    - Unusable rule patterns
    - Scan bounds outside the path buffer
    - Duplicate or missing monitored directories
    - Suspicious ignored-process names and tracking depths
    """

    def __init__(self, home: Optional[Path] = None):
        self.home = home

    def lint(self, config: MonitorConfig, config_path: str = "") -> LintResult:
        """Run every check against ``config``."""
        result = LintResult(config_path=config_path)
        home = self.home if self.home is not None else get_user_home()

        self._check_monitored_dirs(config, result, home)
        self._check_exclusions(config, result)
        self._check_scan_bounds(config, result)
        self._check_ignored_processes(config, result)
        self._check_depths(config, result)
        self._check_channel(config, result)

        logger.debug(f"Lint found {len(result.errors)} errors, {len(result.warnings)} warnings")
        return result

    def _check_monitored_dirs(self, config: MonitorConfig, result: LintResult, home: Path):
        if not config.monitored_dirs:
            result.add(LintSeverity.WARNING, 'monitored_dirs',
                       "No monitored directories; nothing will be reported")

        seen = set()
        for d in config.monitored_dirs:
            if d.path in seen:
                result.add(LintSeverity.ERROR, 'monitored_dirs',
                           f"Duplicate monitored directory: {d.path}")
            seen.add(d.path)

            if d.is_absolute:
                if not d.path.endswith('/'):
                    result.add(LintSeverity.WARNING, 'monitored_dirs',
                               f"Absolute prefix '{d.path}' has no trailing '/'",
                               f"'{d.path}' also matches '{d.path}-other'; use '{d.path}/'")
                full_path = Path(d.path)
            else:
                if not d.name:
                    result.add(LintSeverity.ERROR, 'monitored_dirs',
                               f"Empty directory name: '{d.path}'")
                    continue
                if '/' in d.name:
                    result.add(LintSeverity.ERROR, 'monitored_dirs',
                               f"Directory name '{d.path}' contains '/'",
                               "dot-directories are single path components")
                    continue
                full_path = home / d.component

            if not full_path.exists():
                result.add(LintSeverity.WARNING, 'monitored_dirs',
                           f"Monitored directory does not exist: {full_path}")

    def _check_exclusions(self, config: MonitorConfig, result: LintResult):
        try:
            policy = ExclusionPolicy.from_string(config.exclusion_policy)
        except ValueError as e:
            result.add(LintSeverity.ERROR, 'exclusion_policy', str(e))
            policy = ExclusionPolicy.BOUNDARY

        for name in config.exclusions:
            if not name:
                result.add(LintSeverity.ERROR, 'exclusions', "Empty exclusion name")
            elif policy is ExclusionPolicy.BOUNDARY and '/' in name:
                result.add(LintSeverity.WARNING, 'exclusions',
                           f"Exclusion '{name}' contains '/' and can only match "
                           f"across components",
                           "use exclusion_policy: substring for multi-component names")

    def _check_scan_bounds(self, config: MonitorConfig, result: LintResult):
        for key in ('scan_bound', 'exclusion_scan_bound'):
            value = getattr(config, key)
            if value < ScanBounds.MINIMUM or value >= BufferSizes.PATH:
                result.add(LintSeverity.ERROR, key,
                           f"{key}={value} outside 1..{BufferSizes.PATH - 1}")

        longest = max(
            [len(d.component) for d in config.monitored_dirs if not d.is_absolute] + [0]
        )
        if config.scan_bound + longest > BufferSizes.PATH:
            result.add(LintSeverity.WARNING, 'scan_bound',
                       f"scan_bound={config.scan_bound} will be clamped to "
                       f"{BufferSizes.PATH - longest} for the longest directory name")

    def _check_ignored_processes(self, config: MonitorConfig, result: LintResult):
        seen = set()
        for proc in config.ignored_processes:
            if proc in seen:
                result.add(LintSeverity.WARNING, 'ignored_processes',
                           f"Duplicate ignored process: {proc}")
            seen.add(proc)

            if '/' in proc or ' ' in proc:
                result.add(LintSeverity.WARNING, 'ignored_processes',
                           f"Ignored process '{proc}' looks like a path or contains "
                           f"spaces - should be a binary name")
            elif len(proc.encode('utf-8')) >= BufferSizes.COMM:
                result.add(LintSeverity.WARNING, 'ignored_processes',
                           f"Ignored process '{proc}' is longer than the kernel "
                           f"command name ({BufferSizes.COMM - 1} bytes) and may never match")

    def _check_depths(self, config: MonitorConfig, result: LintResult):
        if config.tracking_depth < 0:
            result.add(LintSeverity.ERROR, 'tracking_depth',
                       f"tracking_depth={config.tracking_depth} must not be negative")
        elif config.tracking_depth > Defaults.MAX_SANE_DEPTH:
            result.add(LintSeverity.WARNING, 'tracking_depth',
                       f"Global tracking_depth={config.tracking_depth} is unusually high "
                       f"(most users want 1-3)")

        for d in config.monitored_dirs:
            if d.depth is not None and d.depth < 0:
                result.add(LintSeverity.ERROR, 'monitored_dirs',
                           f"Per-directory depth={d.depth} for '{d.path}' must not be negative")
            elif d.depth is not None and d.depth > Defaults.MAX_SANE_DEPTH:
                result.add(LintSeverity.WARNING, 'monitored_dirs',
                           f"Per-directory depth={d.depth} for '{d.path}' is unusually high")

    def _check_channel(self, config: MonitorConfig, result: LintResult):
        if config.channel_capacity < 1:
            result.add(LintSeverity.ERROR, 'channel_capacity',
                       f"channel_capacity={config.channel_capacity} must be at least 1")
        page_count = config.perf_page_count
        if page_count < 1 or page_count & (page_count - 1):
            result.add(LintSeverity.ERROR, 'perf_page_count',
                       f"perf_page_count={page_count} must be a power of two")


def validate_config(
    config: MonitorConfig,
    home: Optional[Path] = None,
    config_path: str = "",
) -> LintResult:
    """Convenience wrapper around ConfigLinter."""
    return ConfigLinter(home=home).lint(config, config_path=config_path)
