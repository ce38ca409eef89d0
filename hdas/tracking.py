"""
Tracked Paths

Reduces an opened path to the path that is recorded for attribution:
only the first ``depth`` components below a monitored directory are
kept, so ``~/.cache/mozilla/firefox/abc/cache2/entries/X`` is tracked as
``~/.cache/mozilla`` at depth 1.

- absolute monitored dirs are matched first, then home-relative
  dot-directories
- depth 0 keeps the full path
- ``~/.local/share``, ``~/.local/state`` and ``~/.local/lib`` add one
  level, since the application directory sits one level deeper there
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

from hdas.config.monitor_config import MonitorConfig, MonitoredDir
from hdas.constants import Defaults


def expand_path(path: str, home: Union[str, Path], cwd: Optional[str] = None) -> str:
    """
    Absolute form of ``path``.

    ``~`` and ``~/x`` expand against ``home``; other relative paths are
    joined to ``cwd`` when known, else to ``home``. The result is
    normalised, so ``./`` and ``../`` segments never hide a monitored dir.
    """
    home = str(home)
    if path.startswith('/'):
        expanded = path
    elif path == '~':
        expanded = home
    elif path.startswith('~/'):
        expanded = os.path.join(home, path[2:])
    else:
        expanded = os.path.join(cwd or home, path)
    return os.path.normpath(expanded)


def _components(rest: str) -> List[str]:
    return [p for p in rest.split('/') if p]


def _effective_depth(monitored: MonitoredDir, parts: List[str], depth: int) -> int:
    if depth > 0 and monitored.name == 'local' and parts and parts[0] in Defaults.NESTED_LOCAL_DIRS:
        return depth + 1
    return depth


def find_matching_dir(
    expanded: str,
    home: Union[str, Path],
    config: MonitorConfig,
) -> Tuple[Optional[MonitoredDir], Optional[int], List[str]]:
    """
    Monitored dir covering ``expanded``, its depth, and the components
    below it. Returns ``(None, None, [])`` when nothing matches.
    """
    for monitored in config.monitored_dirs:
        if not monitored.is_absolute:
            continue
        base = monitored.path.rstrip('/') or '/'
        if expanded == base or expanded.startswith(base.rstrip('/') + '/'):
            parts = _components(expanded[len(base):])
            return monitored, config.depth_for(monitored), parts

    home = str(home).rstrip('/')
    if not expanded.startswith(home + '/'):
        return None, None, []
    relative = expanded[len(home) + 1:].lstrip('/')
    first, _, rest = relative.partition('/')

    for monitored in config.monitored_dirs:
        if monitored.is_absolute or not monitored.name:
            continue
        if first == monitored.component:
            parts = _components(rest)
            depth = _effective_depth(monitored, parts, config.depth_for(monitored))
            return monitored, depth, parts

    return None, None, []


def get_tracked_path(
    full_path: str,
    home: Union[str, Path],
    config: MonitorConfig,
) -> Optional[str]:
    """Depth-truncated path to record, or None if not under a monitored dir."""
    monitored, depth, parts = find_matching_dir(full_path, home, config)
    if monitored is None:
        return None

    if depth == 0:
        return full_path.rstrip('/') or '/'

    if monitored.is_absolute:
        base = monitored.path.rstrip('/')
    else:
        base = os.path.join(str(home).rstrip('/'), monitored.component)

    kept = parts[:depth]
    if not kept:
        return base or '/'
    return '/'.join([base] + kept)


@dataclass
class ExplainResult:
    """How a path would be tracked."""
    input_path: str
    expanded_path: str
    tracked_path: Optional[str]
    matched_dir: Optional[str]
    depth_used: Optional[int]

    @property
    def monitored(self) -> bool:
        return self.tracked_path is not None

    def to_dict(self) -> dict:
        return {
            'input_path': self.input_path,
            'expanded_path': self.expanded_path,
            'tracked_path': self.tracked_path,
            'monitored': self.monitored,
            'matched_dir': self.matched_dir,
            'depth_used': self.depth_used,
        }


def explain_path(path: str, config: MonitorConfig, home: Union[str, Path]) -> ExplainResult:
    """Explain how ``path`` (absolute, ``~/``-relative or home-relative) is tracked."""
    expanded = expand_path(path, home)
    monitored, depth, _ = find_matching_dir(expanded, home, config)
    return ExplainResult(
        input_path=path,
        expanded_path=expanded,
        tracked_path=get_tracked_path(expanded, home, config),
        matched_dir=monitored.path if monitored else None,
        depth_used=depth,
    )
