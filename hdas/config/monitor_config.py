"""
YAML Configuration for the HDAS open monitor

Configuration Structure:
    monitored_dirs:
      - .cache                 # dot-directory, matched as a whole component
      - .local
      - path: .config
        depth: 2               # per-directory tracking depth
      - /etc/                  # absolute prefix, matched at offset 0
    exclusions:
      - hdas
    exclusion_policy: boundary # or "substring"
    scan_bound: 200
    exclusion_scan_bound: 240
    ignored_processes: [vim, less, bash]
    ignored_packages: []
    tracking_depth: 1
    channel_capacity: 4096
    perf_page_count: 64

Usage:
    from hdas.config import load_config

    config = load_config()               # $HDAS_CONFIG or ~/.config/hdas/config.yaml
    rules = config.to_rule_set()
"""

import logging
import os
import pwd
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from hdas.classifier import ExclusionPolicy, RuleSet
from hdas.constants import BufferSizes, Defaults, Paths, ScanBounds

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when a configuration file cannot be used."""


# =============================================================================
# INVOKING USER
# =============================================================================

def get_user_info() -> Tuple[Path, Optional[int], Optional[int]]:
    """
    Home directory, uid and gid of the user the monitor works for.

    Under sudo this is the invoking user, not root, so configuration and
    tracked paths refer to the real user's home.
    """
    sudo_user = os.environ.get('SUDO_USER')
    if sudo_user:
        try:
            entry = pwd.getpwnam(sudo_user)
            return Path(entry.pw_dir), entry.pw_uid, entry.pw_gid
        except KeyError:
            logger.warning(f"SUDO_USER '{sudo_user}' not found in passwd database")

    try:
        return Path.home(), None, None
    except RuntimeError:
        logger.warning(f"Could not determine home directory, using {Paths.FALLBACK_HOME}")
        return Path(Paths.FALLBACK_HOME), None, None


def get_user_home() -> Path:
    return get_user_info()[0]


def default_config_path() -> Path:
    """``$HDAS_CONFIG`` if set, else the user's ``~/.config/hdas/config.yaml``."""
    override = os.environ.get(Paths.CONFIG_ENV)
    if override:
        return Path(override).expanduser()
    return get_user_home() / Paths.CONFIG_RELATIVE


# =============================================================================
# CONFIG MODEL
# =============================================================================

@dataclass
class MonitoredDir:
    """A monitored directory and its optional tracking depth."""
    path: str
    depth: Optional[int] = None

    @classmethod
    def from_value(cls, value: Union[str, Dict[str, Any]]) -> 'MonitoredDir':
        """Accept either a bare string or a ``{path, depth}`` mapping."""
        if isinstance(value, str):
            return cls(path=value)
        if isinstance(value, dict) and isinstance(value.get('path'), str):
            depth = value.get('depth')
            if depth is not None and (isinstance(depth, bool) or not isinstance(depth, int) or depth < 0):
                raise ConfigError(f"Invalid depth for monitored dir '{value['path']}': {depth!r}")
            return cls(path=value['path'], depth=depth)
        raise ConfigError(f"Invalid monitored_dirs entry: {value!r}")

    def to_value(self) -> Union[str, Dict[str, Any]]:
        if self.depth is None:
            return self.path
        return {'path': self.path, 'depth': self.depth}

    @property
    def is_absolute(self) -> bool:
        return self.path.startswith('/')

    @property
    def name(self) -> str:
        """Directory name without its leading dot (``cache`` for ``.cache``)."""
        return self.path.lstrip('.')

    @property
    def component(self) -> str:
        """The dot-directory pattern matched at a path boundary."""
        return '.' + self.name


def _string_list(data: Dict[str, Any], key: str, default) -> List[str]:
    value = data.get(key, list(default))
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"'{key}' must be a list of strings")
    return list(value)


def _int_value(data: Dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"'{key}' must be an integer, got {value!r}")
    return value


@dataclass
class MonitorConfig:
    """Complete monitor configuration."""
    monitored_dirs: List[MonitoredDir] = field(
        default_factory=lambda: [MonitoredDir(p) for p in Defaults.MONITORED_DIRS]
    )
    exclusions: List[str] = field(default_factory=lambda: list(Defaults.EXCLUSIONS))
    exclusion_policy: str = Defaults.EXCLUSION_POLICY
    scan_bound: int = ScanBounds.CLASSIFY
    exclusion_scan_bound: int = ScanBounds.EXCLUSION
    ignored_processes: List[str] = field(
        default_factory=lambda: list(Defaults.IGNORED_PROCESSES)
    )
    ignored_packages: List[str] = field(default_factory=list)
    tracking_depth: int = Defaults.TRACKING_DEPTH
    channel_capacity: int = BufferSizes.CHANNEL_DEFAULT
    perf_page_count: int = BufferSizes.PERF_PAGES_DEFAULT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MonitorConfig':
        """Create from a parsed YAML mapping; missing keys take defaults."""
        if not isinstance(data, dict):
            raise ConfigError("Configuration must be a mapping")

        defaults = cls()

        dirs_data = data.get('monitored_dirs')
        if dirs_data is None:
            monitored_dirs = defaults.monitored_dirs
        elif isinstance(dirs_data, list):
            monitored_dirs = [MonitoredDir.from_value(v) for v in dirs_data]
        else:
            raise ConfigError("'monitored_dirs' must be a list")

        policy = data.get('exclusion_policy', defaults.exclusion_policy)
        if not isinstance(policy, str):
            raise ConfigError(f"'exclusion_policy' must be a string, got {policy!r}")
        try:
            ExclusionPolicy.from_string(policy)
        except ValueError as e:
            raise ConfigError(str(e)) from None

        return cls(
            monitored_dirs=monitored_dirs,
            exclusions=_string_list(data, 'exclusions', defaults.exclusions),
            exclusion_policy=policy.strip().lower(),
            scan_bound=_int_value(data, 'scan_bound', defaults.scan_bound),
            exclusion_scan_bound=_int_value(data, 'exclusion_scan_bound', defaults.exclusion_scan_bound),
            ignored_processes=_string_list(data, 'ignored_processes', defaults.ignored_processes),
            ignored_packages=_string_list(data, 'ignored_packages', defaults.ignored_packages),
            tracking_depth=_int_value(data, 'tracking_depth', defaults.tracking_depth),
            channel_capacity=_int_value(data, 'channel_capacity', defaults.channel_capacity),
            perf_page_count=_int_value(data, 'perf_page_count', defaults.perf_page_count),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'monitored_dirs': [d.to_value() for d in self.monitored_dirs],
            'exclusions': list(self.exclusions),
            'exclusion_policy': self.exclusion_policy,
            'scan_bound': self.scan_bound,
            'exclusion_scan_bound': self.exclusion_scan_bound,
            'ignored_processes': list(self.ignored_processes),
            'ignored_packages': list(self.ignored_packages),
            'tracking_depth': self.tracking_depth,
            'channel_capacity': self.channel_capacity,
            'perf_page_count': self.perf_page_count,
        }

    @property
    def policy(self) -> ExclusionPolicy:
        return ExclusionPolicy.from_string(self.exclusion_policy)

    def depth_for(self, monitored: MonitoredDir) -> int:
        return self.tracking_depth if monitored.depth is None else monitored.depth

    def to_rule_set(self) -> RuleSet:
        """Compile the monitored dirs and exclusions into a RuleSet."""
        prefixes = [d.path for d in self.monitored_dirs if d.is_absolute]
        components = [d.component for d in self.monitored_dirs if not d.is_absolute]
        try:
            return RuleSet.build(
                prefixes=prefixes,
                components=components,
                exclusions=self.exclusions,
                exclusion_policy=self.policy,
                classify_scan_bound=self.scan_bound,
                exclusion_scan_bound=self.exclusion_scan_bound,
            )
        except ValueError as e:
            raise ConfigError(str(e)) from e


# =============================================================================
# LOAD / SAVE
# =============================================================================

DEFAULT_CONFIG_CONTENT = """\
# HDAS Configuration File

# Directories to monitor.
# Entries starting with "/" are absolute prefixes matched at the start of
# the opened path; other entries are dot-directories matched as a whole
# path component anywhere in the path (".cache" matches "/home/a/.cache/x"
# but not "/home/a/.cachex").
#
# depth controls how much of the path is kept after the monitored dir:
#   depth=1: ~/.cache/mozilla/firefox/... -> ~/.cache/mozilla
#   depth=2: ~/.cache/mozilla/firefox/... -> ~/.cache/mozilla/firefox
#   depth=0: full path, no truncation
#
# Use `hdasctl explain <path>` to see how a path would be tracked.
monitored_dirs:
  - .cache
  - .local
  - .config
  - /etc/

# Paths containing these names are never reported.
# exclusion_policy "boundary" matches whole path components only;
# "substring" matches any occurrence.
exclusions:
  - hdas
exclusion_policy: boundary

# Bytes of the path swept by the kernel matchers.
scan_bound: 200
exclusion_scan_bound: 240

# Opens by these processes are recorded but marked as incidental.
ignored_processes: [{ignored}]

# Packages to skip entirely (noisy apps like browsers)
ignored_packages: []

# Default depth for monitored dirs without explicit depth.
# ~/.local/share, ~/.local/state and ~/.local/lib add one level.
tracking_depth: 1

channel_capacity: 4096
perf_page_count: 64
""".format(ignored=", ".join(Defaults.IGNORED_PROCESSES))


def load_config(path: Optional[Union[str, Path]] = None) -> MonitorConfig:
    """
    Load configuration from ``path`` (default location if omitted).

    A missing or empty file yields the defaults; an unreadable or
    malformed one raises ConfigError.
    """
    path = Path(path) if path is not None else default_config_path()

    if not path.exists():
        logger.info(f"No config file at {path}, using defaults")
        return MonitorConfig()

    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    if not data:
        logger.warning(f"Empty config file: {path}")
        return MonitorConfig()

    config = MonitorConfig.from_dict(data)
    logger.info(f"Loaded configuration from {path}")
    return config


def chown_to_user(path: Path) -> None:
    _, uid, gid = get_user_info()
    if uid is None or gid is None:
        return
    try:
        os.chown(path, uid, gid)
    except OSError as e:
        logger.warning(f"Failed to chown {path}: {e}")


def ensure_parent_dir(path: Path) -> None:
    """Create the missing parents of ``path``, owned by the invoking user."""
    missing = []
    parent = path.parent
    while not parent.exists():
        missing.append(parent)
        parent = parent.parent
    for directory in reversed(missing):
        directory.mkdir()
        chown_to_user(directory)


def save_config(config: MonitorConfig, path: Optional[Union[str, Path]] = None) -> Path:
    """Write ``config`` as YAML, owned by the invoking user."""
    path = Path(path) if path is not None else default_config_path()
    ensure_parent_dir(path)
    with open(path, 'w') as f:
        f.write("# HDAS Configuration File\n")
        yaml.safe_dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)
    chown_to_user(path)
    logger.info(f"Wrote configuration to {path}")
    return path


def write_default_config(
    path: Optional[Union[str, Path]] = None,
    overwrite: bool = False,
) -> Tuple[Path, bool]:
    """
    Create the commented default configuration file.

    Returns the path and whether a file was written.
    """
    path = Path(path) if path is not None else default_config_path()
    if path.exists() and not overwrite:
        return path, False

    ensure_parent_dir(path)
    with open(path, 'w') as f:
        f.write(DEFAULT_CONFIG_CONTENT)
    chown_to_user(path)
    logger.info(f"Wrote default configuration to {path}")
    return path, True
