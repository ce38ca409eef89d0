"""
Capture -> Classify -> Filter -> Emit

User-space rendition of the per-open pipeline compiled into the probe.
Used to replay recorded opens, by ``hdasctl classify``, and by the
collector to re-check records delivered from the kernel.
"""

import logging
from typing import Union

from hdas.classifier import ExclusionFilter, PathClassifier, RuleSet
from hdas.ebpf.channel import OutputChannel
from hdas.ebpf.event import EventRecord

logger = logging.getLogger(__name__)


class OpenMonitorPipeline:
    """
    Runs one file-open through the monitor's decision and emits it.

    The pipeline holds no per-event state; any number of threads may call
    :meth:`process` concurrently against the same instance.
    """

    def __init__(self, rules: RuleSet, channel: OutputChannel):
        self.rules = rules
        self.channel = channel
        self.classifier = PathClassifier(rules)
        self.exclusion = ExclusionFilter(rules)

    def accepts(self, record: EventRecord) -> bool:
        """Whether a captured record passes classifier and filter."""
        if not self.classifier.classify(record.path):
            return False
        return not self.exclusion.is_excluded(record.path)

    def process(
        self,
        pid: int,
        comm: Union[str, bytes],
        path: Union[str, bytes, bytearray],
    ) -> bool:
        """
        Handle one open request. Returns True only if a record was emitted.

        Uninteresting, excluded and dropped opens all return False; nothing
        is raised back to the caller.
        """
        record = EventRecord.capture(pid, comm, path)
        if not self.accepts(record):
            return False
        return self.channel.offer(record)
