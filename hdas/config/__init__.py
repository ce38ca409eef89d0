"""
Configuration module for the HDAS open monitor.

Provides:
- YAML configuration loading and saving
- Compilation of monitored directories into a classifier RuleSet
- Configuration validation
"""

from .monitor_config import (
    ConfigError,
    MonitoredDir,
    MonitorConfig,
    DEFAULT_CONFIG_CONTENT,
    default_config_path,
    get_user_home,
    get_user_info,
    load_config,
    save_config,
    write_default_config,
)

from .linter import (
    LintSeverity,
    LintFinding,
    LintResult,
    ConfigLinter,
    validate_config,
)

__all__ = [
    'ConfigError',
    'MonitoredDir',
    'MonitorConfig',
    'DEFAULT_CONFIG_CONTENT',
    'default_config_path',
    'get_user_home',
    'get_user_info',
    'load_config',
    'save_config',
    'write_default_config',
    'LintSeverity',
    'LintFinding',
    'LintResult',
    'ConfigLinter',
    'validate_config',
]
