"""
HDAS Monitor - collector side of the open monitor

Wires the pieces together:

    config -> RuleSet -> OpenatProbe (kernel) -> OutputChannel -> collector

For every record the kernel delivers the collector re-checks the
user-space classifier, reduces the path to its tracked form, attributes
the open to a package and logs one line per newly seen tracked path:

    [+] firefox (firefox) -> /home/alice/.cache/mozilla
    [^] python (pip) via python -> /home/alice/.cache/pip
    [~] vim (vim) -> /home/alice/.config/nvim

``+`` direct attribution, ``^`` attributed through an ancestor process,
``~`` opened by an ignored (incidental) process.

Recorded paths go to the AttributionStore, so a path already claimed by
a package is not reported again, in this session or a later one.
"""

import os
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from hdas.attribution import PackageResolver, get_cwd
from hdas.config import ConfigError, MonitorConfig, get_user_home, load_config, validate_config
from hdas.constants import Timeouts
from hdas.ebpf import EventRecord, OpenatProbe, OpenMonitorPipeline, OutputChannel, ProbeConfig
from hdas.logging_config import NOTICE, configure_from_environment, get_logger
from hdas.store import MEMORY, AttributionStore, StoreError
from hdas.tracking import expand_path, get_tracked_path
from hdas.utils.error_handling import ErrorCategory, safe_execute

logger = get_logger(__name__)


def check_config(config: MonitorConfig, home: Optional[Path] = None) -> None:
    """Refuse a config with lint errors; log its warnings."""
    result = validate_config(config, home=home)
    for finding in result.warnings:
        logger.warning(str(finding))
    if not result.is_valid:
        for finding in result.errors:
            logger.error(str(finding))
        raise ConfigError("; ".join(finding.message for finding in result.errors))


@dataclass(frozen=True)
class AttributedAccess:
    """A tracked path and who is responsible for it."""
    tracked_path: str
    package: str
    process: str
    comm: str
    pid: int
    via_parent: bool = False
    incidental: bool = False

    @property
    def marker(self) -> str:
        if self.incidental:
            return "~"
        if self.via_parent:
            return "^"
        return "+"

    def format_line(self) -> str:
        via = f" via {self.process}" if self.via_parent else ""
        return f"[{self.marker}] {self.package} ({self.comm}){via} -> {self.tracked_path}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tracked_path': self.tracked_path,
            'package': self.package,
            'process': self.process,
            'comm': self.comm,
            'pid': self.pid,
            'via_parent': self.via_parent,
            'incidental': self.incidental,
        }


class HdasMonitor:
    """
    Runs the probe and attributes what it reports.

    Usage:
        with AttributionStore() as store:
            monitor = HdasMonitor(load_config(), store=store)
            monitor.run()          # blocks until Ctrl+C or stop()

    Without a store the monitor keeps its records in memory for the
    session only. A config with lint errors raises ConfigError.
    """

    def __init__(
        self,
        config: MonitorConfig,
        home: Optional[Path] = None,
        resolver: Optional[PackageResolver] = None,
        bpf_factory: Optional[Callable[..., Any]] = None,
        cwd_lookup: Callable[[int], Optional[str]] = get_cwd,
        store: Optional[AttributionStore] = None,
    ):
        self.config = config
        self.home = Path(home) if home is not None else get_user_home()
        check_config(config, home=self.home)
        self.rules = config.to_rule_set()
        self.store = store if store is not None else AttributionStore(MEMORY)
        self.channel = OutputChannel(capacity=config.channel_capacity)
        self.pipeline = OpenMonitorPipeline(self.rules, self.channel)
        self.resolver = resolver or PackageResolver()
        self.probe = OpenatProbe(
            self.rules,
            self.channel,
            config=ProbeConfig(perf_page_count=config.perf_page_count),
            bpf_factory=bpf_factory,
        )
        self._cwd_lookup = cwd_lookup
        self._ignored_processes: Set[str] = set(config.ignored_processes)
        self._ignored_packages: Set[str] = set(config.ignored_packages)
        self._stop_event = threading.Event()
        self._stats = {
            'received': 0,
            'rejected': 0,
            'untracked': 0,
            'duplicate': 0,
            'ignored_package': 0,
            'recorded': 0,
            'failed': 0,
        }

    # ------------------------------------------------------------------
    # Per-record processing
    # ------------------------------------------------------------------

    def handle_record(self, record: EventRecord) -> Optional[AttributedAccess]:
        """Attribute one delivered record; None if it is not recorded."""
        self._stats['received'] += 1

        if not self.pipeline.accepts(record):
            self._stats['rejected'] += 1
            return None

        full_path = expand_path(record.path_text, self.home, cwd=self._cwd_lookup(record.pid))
        tracked = get_tracked_path(full_path, self.home, self.config)
        if tracked is None:
            self._stats['untracked'] += 1
            logger.trace(f"Untracked open {full_path}")
            return None

        if self.store.has_known_creator(tracked):
            self._stats['duplicate'] += 1
            return None

        info = self.resolver.resolve(record.pid, record.comm_text)
        if info.package in self._ignored_packages:
            self._stats['ignored_package'] += 1
            return None

        # Only a known, non-incidental package may claim an already stored path
        incidental = info.process in self._ignored_processes
        if (incidental or info.is_unknown) and self.store.has_path(tracked):
            self._stats['duplicate'] += 1
            return None

        access = AttributedAccess(
            tracked_path=tracked,
            package=info.package,
            process=info.process,
            comm=record.comm_text,
            pid=record.pid,
            via_parent=info.via_parent,
            incidental=incidental,
        )
        self.store.record_access(tracked, info.package, info.process, incidental=incidental)
        self._stats['recorded'] += 1
        logger.log_with_data(NOTICE, access.format_line(), {'pid': access.pid})
        return access

    def _process_safely(self, record: EventRecord) -> Optional[AttributedAccess]:
        with safe_execute(
            "collector_handle_record",
            ErrorCategory.COLLECTOR,
            additional_context={'pid': record.pid, 'path': record.path_text},
        ) as result:
            result.value = self.handle_record(record)
        if not result.success:
            self._stats['failed'] += 1
        return result.value

    def process_pending(self, max_records: Optional[int] = None) -> List[AttributedAccess]:
        """Drain the channel and attribute everything in it."""
        recorded = []
        for record in self.channel.drain(max_records):
            access = self._process_safely(record)
            if access is not None:
                recorded.append(access)
        return recorded

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> bool:
        logger.info(f"Monitored directories: {[d.path for d in self.config.monitored_dirs]}")
        logger.info(f"Exclusions: {self.config.exclusions} ({self.config.exclusion_policy})")
        logger.info(f"Ignored processes: {len(self._ignored_processes)} configured")
        logger.info(f"Ignored packages: {len(self._ignored_packages)} configured")
        logger.info(f"Tracking depth: {self.config.tracking_depth}")
        self._stop_event.clear()
        return self.probe.start()

    def run(self) -> int:
        """Start the probe and collect until stopped. Returns an exit code."""
        if not self.start():
            logger.error("Failed to start the openat probe")
            return 1

        logger.info("Monitor running. Press Ctrl+C to stop.")
        try:
            while not self._stop_event.is_set():
                record = self.channel.get(timeout=Timeouts.COLLECTOR_POLL)
                if record is not None:
                    self._process_safely(record)
        except KeyboardInterrupt:
            logger.info("Interrupted")
        finally:
            self.shutdown()
        return 0

    def stop(self) -> None:
        """Ask a running :meth:`run` loop to finish."""
        self._stop_event.set()

    def shutdown(self) -> None:
        self.probe.stop()
        self.process_pending()
        stats = self.get_stats()
        logger.info(
            f"Monitor stopped: {stats['recorded']} recorded, "
            f"{stats['channel']['dropped']} dropped"
        )

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = dict(self._stats)
        stats['channel'] = self.channel.get_stats()
        stats['tracked_paths'] = self.store.count()
        return stats


def main() -> int:
    """Entry point for ``hdas-monitor``."""
    configure_from_environment()

    if os.geteuid() != 0:
        print("Monitor requires root privileges. Run with sudo.", file=sys.stderr)
        return 1

    try:
        config = load_config()
        store = AttributionStore()
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 2
    except StoreError as e:
        logger.error(f"Database error: {e}")
        return 2

    with store:
        try:
            monitor = HdasMonitor(config, store=store)
        except ConfigError as e:
            logger.error(f"Configuration error: {e}")
            return 2
        return monitor.run()


if __name__ == '__main__':
    sys.exit(main())
