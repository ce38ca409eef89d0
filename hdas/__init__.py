"""
HDAS - Home Directory Attribution System, open monitor

Watches openat() from a kernel tracepoint and reports which packages
touch configuration and cache directories:

- classifier: bounded, rule-driven path matching shared by kernel and user space
- ebpf: BPF program generation, event records, perf ring delivery
- config: YAML configuration and linting
- tracking / attribution: tracked-path reduction and package ownership
- store: the SQLite catalogue of tracked paths and their creators
- monitor: the collector
"""

__version__ = "0.3.0"

from .classifier import RuleSet, MatchRule, AnchorMode, ExclusionPolicy, evaluate
from .config import MonitorConfig, ConfigError, load_config

__all__ = [
    '__version__',
    'RuleSet',
    'MatchRule',
    'AnchorMode',
    'ExclusionPolicy',
    'evaluate',
    'MonitorConfig',
    'ConfigError',
    'load_config',
]
