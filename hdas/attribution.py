"""
Package Attribution

Works out which installed package is responsible for a file open by
walking the opening process's ancestry with psutil and asking the package
manager who owns each executable:

    pid (exe owned?) -> parent (exe owned?) -> ... up to 10 levels, pid 1 excluded

A hit on the opening process itself is direct; a hit on an ancestor is
reported ``via_parent`` together with that ancestor's name.

The package manager is detected from the binaries on ``PATH``, checked in
this order: pacman, dpkg, rpm, xbps, apk.
"""

import logging
import shutil
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

import psutil

from hdas.constants import Attribution
from hdas.utils.error_handling import ErrorCategory, handle_error

logger = logging.getLogger(__name__)

OwnerLookup = Callable[[str], Optional[str]]


@dataclass(frozen=True)
class PackageInfo:
    """Attribution result for one event."""
    package: str
    process: str
    via_parent: bool = False

    @property
    def is_unknown(self) -> bool:
        return self.package == Attribution.UNKNOWN_PACKAGE


def get_exe_path(pid: int) -> Optional[str]:
    """Executable of ``pid``; None if the process is gone or unreadable."""
    try:
        exe = psutil.Process(pid).exe()
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return None
    if not exe:
        return None
    if exe.endswith(' (deleted)'):
        exe = exe[:-len(' (deleted)')]
    return exe


def get_ppid(pid: int) -> Optional[int]:
    try:
        return psutil.Process(pid).ppid()
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return None


def get_comm(pid: int) -> Optional[str]:
    try:
        return psutil.Process(pid).name()
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return None


def get_cwd(pid: int) -> Optional[str]:
    """Working directory of ``pid``, used to resolve relative opens."""
    try:
        return psutil.Process(pid).cwd() or None
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return None


# =============================================================================
# PACKAGE MANAGERS
# =============================================================================

def _strip_version(pkg_ver: str) -> str:
    """``name-1.2-r0`` -> ``name``: cut at the first '-' followed by a digit."""
    for i, char in enumerate(pkg_ver[:-1]):
        if char == '-' and pkg_ver[i + 1].isdigit():
            return pkg_ver[:i]
    return pkg_ver


def _strip_last_dash(pkg_ver: str) -> Optional[str]:
    """``name-1.2_1`` -> ``name``: cut at the last '-'."""
    name, dash, _ = pkg_ver.rpartition('-')
    return name if dash and name else None


def _first_field(text: str) -> str:
    lines = text.splitlines()
    return lines[0].split(':', 1)[0].strip() if lines else ''


def _parse_pacman_owner(text: str) -> Optional[str]:
    # /usr/bin/foo is owned by foo 1.2-1
    tokens = text.split()
    return tokens[4] if len(tokens) > 4 else None


def _parse_dpkg_owner(text: str) -> Optional[str]:
    # foo: /usr/bin/foo  or  libfoo:amd64: /usr/lib/libfoo.so
    return _first_field(text) or None


def _parse_rpm_owner(text: str) -> Optional[str]:
    name = text.strip()
    if not name or 'not owned' in name:
        return None
    return name


def _parse_xbps_owner(text: str) -> Optional[str]:
    # foo-1.2_1: /usr/bin/foo
    pkg_ver = _first_field(text)
    return _strip_last_dash(pkg_ver) if pkg_ver else None


def _parse_apk_owner(text: str) -> Optional[str]:
    # /usr/bin/foo is owned by foo-1.2-r0
    marker = 'is owned by '
    start = text.find(marker)
    if start < 0:
        return None
    rest = text[start + len(marker):].strip().split()
    return _strip_version(rest[0]) if rest else None


def _parse_lines(text: str) -> Set[str]:
    return {line.strip() for line in text.splitlines() if line.strip()}


def _parse_xbps_installed(text: str) -> Set[str]:
    # ii foo-1.2_1  Description
    names = set()
    for line in text.splitlines():
        fields = line.split()
        if len(fields) > 1:
            name = _strip_last_dash(fields[1])
            if name:
                names.add(name)
    return names


def _parse_apk_installed(text: str) -> Set[str]:
    return {_strip_version(line.strip()) for line in text.splitlines() if line.strip()}


class PackageManager(Enum):
    """Supported system package managers, in detection order."""
    PACMAN = 'pacman'
    DPKG = 'dpkg'
    RPM = 'rpm'
    XBPS = 'xbps'
    APK = 'apk'

    @classmethod
    def detect(cls) -> Optional['PackageManager']:
        """First package manager whose binary is on ``PATH``."""
        for manager in cls:
            if shutil.which(_DETECT_BINARIES[manager]) is not None:
                logger.debug(f"Detected package manager: {manager.value}")
                return manager
        return None

    def owner_command(self, path: str) -> List[str]:
        return _OWNER_COMMANDS[self] + [path]

    def list_command(self) -> List[str]:
        return list(_LIST_COMMANDS[self])

    def parse_owner(self, output: str) -> Optional[str]:
        return _OWNER_PARSERS[self](output)

    def parse_installed(self, output: str) -> Set[str]:
        return _INSTALLED_PARSERS[self](output)

    def query_owner(self, path: str) -> Optional[str]:
        """Package owning ``path``; None if unowned or the query failed."""
        result = _run(self.owner_command(path), f"query_owner_{self.value}", path)
        if result is None or result.returncode != 0:
            return None
        return self.parse_owner(result.stdout)

    def list_installed(self) -> Optional[Set[str]]:
        """Names of every installed package; None if the query failed."""
        result = _run(self.list_command(), f"list_installed_{self.value}")
        if result is None or result.returncode != 0:
            return None
        return self.parse_installed(result.stdout)


_DETECT_BINARIES: Dict[PackageManager, str] = {
    PackageManager.PACMAN: 'pacman',
    PackageManager.DPKG: 'dpkg',
    PackageManager.RPM: 'rpm',
    PackageManager.XBPS: 'xbps-query',
    PackageManager.APK: 'apk',
}

_OWNER_COMMANDS: Dict[PackageManager, List[str]] = {
    PackageManager.PACMAN: ['pacman', '-Qo'],
    PackageManager.DPKG: ['dpkg', '-S'],
    PackageManager.RPM: ['rpm', '-qf', '--qf', '%{NAME}'],
    PackageManager.XBPS: ['xbps-query', '-o'],
    PackageManager.APK: ['apk', 'info', '--who-owns'],
}

_LIST_COMMANDS: Dict[PackageManager, List[str]] = {
    PackageManager.PACMAN: ['pacman', '-Qq'],
    PackageManager.DPKG: ['dpkg-query', '-W', '-f', '${Package}\\n'],
    PackageManager.RPM: ['rpm', '-qa', '--qf', '%{NAME}\\n'],
    PackageManager.XBPS: ['xbps-query', '-l'],
    PackageManager.APK: ['apk', 'list', '--installed', '-q'],
}

_OWNER_PARSERS: Dict[PackageManager, Callable[[str], Optional[str]]] = {
    PackageManager.PACMAN: _parse_pacman_owner,
    PackageManager.DPKG: _parse_dpkg_owner,
    PackageManager.RPM: _parse_rpm_owner,
    PackageManager.XBPS: _parse_xbps_owner,
    PackageManager.APK: _parse_apk_owner,
}

_INSTALLED_PARSERS: Dict[PackageManager, Callable[[str], Set[str]]] = {
    PackageManager.PACMAN: _parse_lines,
    PackageManager.DPKG: _parse_lines,
    PackageManager.RPM: _parse_lines,
    PackageManager.XBPS: _parse_xbps_installed,
    PackageManager.APK: _parse_apk_installed,
}


def _run(command: List[str], operation: str,
         path: Optional[str] = None) -> Optional[subprocess.CompletedProcess]:
    try:
        return subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=Attribution.OWNER_QUERY_TIMEOUT,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        handle_error(e, operation, category=ErrorCategory.ATTRIBUTION,
                     additional_context={'command': command[0], 'path': path})
        return None


def _no_owner(path: str) -> Optional[str]:
    return None


# =============================================================================
# RESOLVER
# =============================================================================

class PackageResolver:
    """
    Resolves pids to owning packages.

    Owner lookups are cached per executable for the lifetime of the
    resolver, since a monitoring session sees the same binaries over and
    over. Without an explicit ``owner_lookup`` the system package manager
    is detected; if none is found every open is attributed to ``unknown``.
    """

    def __init__(self, owner_lookup: Optional[OwnerLookup] = None,
                 max_depth: int = Attribution.MAX_TREE_DEPTH,
                 manager: Optional[PackageManager] = None):
        self.manager = manager
        if owner_lookup is None:
            if self.manager is None:
                self.manager = PackageManager.detect()
            if self.manager is None:
                logger.warning("No supported package manager found; "
                               "opens will be attributed to 'unknown'")
                owner_lookup = _no_owner
            else:
                owner_lookup = self.manager.query_owner
        self._owner_lookup = owner_lookup
        self._max_depth = max_depth
        self._owner_cache: Dict[str, Optional[str]] = {}

    def owner_of(self, exe: str) -> Optional[str]:
        if exe not in self._owner_cache:
            self._owner_cache[exe] = self._owner_lookup(exe)
        return self._owner_cache[exe]

    def _owner_of_pid(self, pid: int) -> Optional[str]:
        exe = get_exe_path(pid)
        if exe is None:
            return None
        return self.owner_of(exe)

    def resolve(self, pid: int, comm: str) -> PackageInfo:
        """Attribute ``pid`` (named ``comm``) to a package."""
        package = self._owner_of_pid(pid)
        if package:
            return PackageInfo(package=package, process=comm)

        visited: Dict[int, Optional[str]] = {}
        current = pid
        for _ in range(self._max_depth):
            ppid = get_ppid(current)
            if ppid is None or ppid <= 1 or ppid in visited:
                break

            package = self._owner_of_pid(ppid)
            visited[ppid] = package
            if package:
                parent_comm = get_comm(ppid) or Attribution.UNKNOWN_PROCESS
                return PackageInfo(package=package, process=parent_comm, via_parent=True)
            current = ppid

        return PackageInfo(package=Attribution.UNKNOWN_PACKAGE, process=comm)

    def clear_cache(self) -> None:
        self._owner_cache.clear()
