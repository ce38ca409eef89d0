"""
openat Probe

Loads the generated BPF program through BCC, attaches it to the
``syscalls:sys_enter_openat`` tracepoint and drains the perf ring into an
OutputChannel on a background polling thread.

The probe only observes: it never blocks, denies, or alters an open.
"""

import ctypes
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from hdas.classifier import RuleSet
from hdas.constants import BufferSizes, Timeouts
from hdas.ebpf.bpf_program import render_program
from hdas.ebpf.channel import OutputChannel
from hdas.ebpf.event import EventRecord
from hdas.utils.error_handling import ErrorCategory, handle_error

logger = logging.getLogger(__name__)

# Try to import BCC
try:
    from bcc import BPF
    BCC_AVAILABLE = True
except ImportError:
    BPF = None
    BCC_AVAILABLE = False


@dataclass
class ProbeConfig:
    """Configuration for the openat probe."""
    name: str = "openat_probe"
    target: str = "syscalls/sys_enter_openat"
    perf_page_count: int = BufferSizes.PERF_PAGES_DEFAULT
    poll_timeout_ms: int = Timeouts.PERF_POLL_MS


class OpenatProbe:
    """
    Kernel-side capture of interesting file opens.

    Usage:
        channel = OutputChannel()
        probe = OpenatProbe(rules, channel)
        if probe.start():
            ...
            probe.stop()
    """

    def __init__(
        self,
        rules: RuleSet,
        channel: OutputChannel,
        config: Optional[ProbeConfig] = None,
        bpf_factory: Optional[Callable[..., Any]] = None,
    ):
        self.rules = rules
        self.channel = channel
        self.config = config or ProbeConfig()
        self._bpf_factory = bpf_factory
        self._bpf = None
        self._running = False
        self._poll_thread: Optional[threading.Thread] = None
        self._event_count = 0
        self._malformed_count = 0
        self._lock = threading.Lock()

    @property
    def available(self) -> bool:
        return self._bpf_factory is not None or BCC_AVAILABLE

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> bool:
        """Compile, attach and start polling. Returns False on failure."""
        if not self.available:
            logger.warning("BCC not available - openat probe disabled")
            return False

        factory = self._bpf_factory or BPF
        source = render_program(self.rules)

        try:
            self._bpf = factory(text=source)
            self._bpf["events"].open_perf_buffer(
                self._handle_event,
                page_cnt=self.config.perf_page_count,
                lost_cb=self._handle_lost,
            )
        except Exception as e:
            handle_error(
                e,
                "openat_probe_start",
                category=ErrorCategory.PROBE,
                additional_context={'target': self.config.target},
            )
            self._cleanup()
            return False

        self._running = True
        self._poll_thread = threading.Thread(
            target=self._poll_loop, name=self.config.name, daemon=True
        )
        self._poll_thread.start()

        logger.info(f"openat probe started ({len(self.rules.classify_rules)} rules, "
                    f"{len(self.rules.exclusion_rules)} exclusions)")
        return True

    def _handle_event(self, cpu: int, data: Any, size: int) -> None:
        """Perf callback: decode one sample and hand it to the channel."""
        record = EventRecord.decode(ctypes.string_at(data, size))
        if record is None:
            with self._lock:
                self._malformed_count += 1
            self.channel.record_lost(1)
            return

        with self._lock:
            self._event_count += 1
        self.channel.offer(record)

    def _handle_lost(self, lost: int) -> None:
        self.channel.record_lost(lost)

    def _poll_loop(self) -> None:
        """Poll the perf ring until stopped."""
        while self._running:
            try:
                self._bpf.perf_buffer_poll(timeout=self.config.poll_timeout_ms)
            except Exception as e:
                if not self._running:
                    break
                handle_error(e, "openat_probe_poll", category=ErrorCategory.PROBE)

    def stop(self) -> None:
        """Stop polling and detach the probe."""
        was_running = self._running
        self._running = False
        if self._poll_thread is not None:
            self._poll_thread.join(timeout=Timeouts.PROBE_STOP_JOIN)
            self._poll_thread = None
        self._cleanup()
        if was_running:
            logger.info("openat probe stopped")

    def _cleanup(self) -> None:
        if self._bpf is not None:
            try:
                self._bpf.cleanup()
            except Exception as e:
                handle_error(e, "openat_probe_cleanup", category=ErrorCategory.PROBE)
            self._bpf = None

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'name': self.config.name,
                'running': self._running,
                'events': self._event_count,
                'malformed': self._malformed_count,
                'channel': self.channel.get_stats(),
            }
