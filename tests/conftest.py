"""
Pytest configuration and shared fixtures for HDAS tests.

This module provides common fixtures for testing the open monitor components.
"""

import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock

import pytest

# Add the parent directory to the path for imports
import sys
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from hdas.classifier import ExclusionPolicy, RuleSet
from hdas.config import MonitorConfig, MonitoredDir
from hdas.ebpf import OutputChannel
from hdas.store import AttributionStore


# ===========================================================================
# Temporary Directory Fixtures
# ===========================================================================

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that is cleaned up after the test."""
    tmpdir = tempfile.mkdtemp(prefix="hdas_test_")
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def home(temp_dir: Path) -> Path:
    """Provide a fake home directory with the default dot-directories."""
    home_dir = temp_dir / "home" / "alice"
    for name in ('.cache', '.local', '.config'):
        (home_dir / name).mkdir(parents=True)
    return home_dir


@pytest.fixture
def config_file(temp_dir: Path, monkeypatch) -> Path:
    """Point HDAS_CONFIG at a (not yet existing) file in the temp dir."""
    path = temp_dir / "config" / "config.yaml"
    monkeypatch.setenv('HDAS_CONFIG', str(path))
    monkeypatch.delenv('SUDO_USER', raising=False)
    return path


@pytest.fixture
def db_file(temp_dir: Path, monkeypatch) -> Path:
    """Point HDAS_DB at a (not yet existing) database in the temp dir."""
    path = temp_dir / "data" / "attributions.db"
    monkeypatch.setenv('HDAS_DB', str(path))
    monkeypatch.delenv('SUDO_USER', raising=False)
    return path


@pytest.fixture
def store(db_file: Path) -> Generator[AttributionStore, None, None]:
    """Provide an attribution store backed by a temp database."""
    with AttributionStore(db_file) as s:
        yield s


# ===========================================================================
# Rule Fixtures
# ===========================================================================

@pytest.fixture
def default_rules() -> RuleSet:
    """Provide the default rule set: dot-dirs, /etc/ and the 'hdas' exclusion."""
    return RuleSet.build(
        prefixes=['/etc/'],
        components=['.cache', '.local', '.config'],
        exclusions=['hdas'],
    )


@pytest.fixture
def substring_rules() -> RuleSet:
    """Provide the default rule set with substring exclusion matching."""
    return RuleSet.build(
        prefixes=['/etc/'],
        components=['.cache', '.local', '.config'],
        exclusions=['hdas'],
        exclusion_policy=ExclusionPolicy.SUBSTRING,
    )


@pytest.fixture
def channel() -> OutputChannel:
    """Provide a small output channel."""
    return OutputChannel(capacity=8)


# ===========================================================================
# Config Fixtures
# ===========================================================================

@pytest.fixture
def monitor_config() -> MonitorConfig:
    """Provide a config with a per-directory depth override."""
    return MonitorConfig(
        monitored_dirs=[
            MonitoredDir('.cache'),
            MonitoredDir('.local'),
            MonitoredDir('.config', depth=2),
            MonitoredDir('/etc/'),
        ],
        ignored_processes=['vim', 'bash'],
        ignored_packages=['pacman'],
    )


# ===========================================================================
# BCC Fixtures
# ===========================================================================

@pytest.fixture
def mock_bpf():
    """Provide a mock BPF object and a factory returning it."""
    bpf = MagicMock()
    bpf.perf_buffer_poll.side_effect = lambda timeout=None: time.sleep(0.005)
    factory = MagicMock(return_value=bpf)
    return factory, bpf


# ===========================================================================
# Markers
# ===========================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests (>1s)")
    config.addinivalue_line("markers", "requires_root: Tests requiring root and BCC")
