"""
Centralized Constants Module for the HDAS open monitor.

Consolidates the fixed capacities, scan bounds and configuration defaults
shared by the kernel program generator, the user-space classifier and the
collector, so that both renditions of the pipeline agree on every limit.

Usage:
    from hdas.constants import BufferSizes, ScanBounds

    if len(raw) < BufferSizes.EVENT_RECORD:
        return None
"""

import os
from typing import FrozenSet, Tuple


# =============================================================================
# FIXED CAPACITIES
# =============================================================================

class BufferSizes:
    """
    Fixed-capacity buffers of the event record.

    These mirror the kernel-side struct and must never change independently
    of the generated BPF program.
    """
    COMM: int = 16                      # TASK_COMM_LEN
    PATH: int = 256                     # Path snapshot, NUL included
    PID: int = 4                        # u32, little-endian
    EVENT_RECORD: int = PID + COMM + PATH

    # Output channel
    CHANNEL_DEFAULT: int = 4096         # Records buffered for the collector
    PERF_PAGES_DEFAULT: int = 64        # Per-CPU perf ring pages


class ScanBounds:
    """
    Compile-time trip counts for the bounded path sweeps.

    A sweep never runs past its bound, and the bound is clamped so that the
    longest pattern plus its trailing boundary byte stays inside the path
    buffer.
    """
    CLASSIFY: int = 200
    EXCLUSION: int = 240
    MINIMUM: int = 1


# =============================================================================
# PATH BYTES
# =============================================================================

SEPARATOR: int = 0x2F                   # '/'
TERMINATOR: int = 0x00                  # NUL
DOT: int = 0x2E                         # '.'


# =============================================================================
# CONFIGURATION DEFAULTS
# =============================================================================

class Defaults:
    """Defaults for a freshly initialised configuration."""
    MONITORED_DIRS: Tuple[str, ...] = ('.cache', '.local', '.config', '/etc/')
    EXCLUSIONS: Tuple[str, ...] = ('hdas',)
    EXCLUSION_POLICY: str = 'boundary'
    TRACKING_DEPTH: int = 1
    MAX_SANE_DEPTH: int = 5

    IGNORED_PROCESSES: Tuple[str, ...] = (
        'nvim', 'vim', 'vi', 'nano', 'emacs', 'code', 'subl', 'hx', 'kate', 'gedit',
        'cat', 'bat', 'less', 'more', 'head', 'tail',
        'ls', 'find', 'fd', 'rg', 'grep', 'ag', 'file', 'stat', 'wc', 'du', 'tree',
        'bash', 'zsh', 'fish',
    )

    # ~/.local/<x> is a second namespace level, so these add one to the depth
    NESTED_LOCAL_DIRS: FrozenSet[str] = frozenset({'share', 'state', 'lib'})


class Paths:
    """Well-known locations."""
    CONFIG_ENV: str = 'HDAS_CONFIG'
    CONFIG_RELATIVE: str = os.path.join('.config', 'hdas', 'config.yaml')
    FALLBACK_HOME: str = '/tmp'
    DB_ENV: str = 'HDAS_DB'
    DB_RELATIVE: str = os.path.join('.local', 'share', 'hdas', 'attributions.db')


class Attribution:
    """Process-tree walk limits."""
    MAX_TREE_DEPTH: int = 10
    OWNER_QUERY_TIMEOUT: float = 5.0
    UNKNOWN_PACKAGE: str = 'unknown'
    UNKNOWN_PROCESS: str = 'unknown'


class Timeouts:
    """Polling intervals in milliseconds / seconds."""
    PERF_POLL_MS: int = 100
    COLLECTOR_POLL: float = 0.1
    PROBE_STOP_JOIN: float = 2.0
