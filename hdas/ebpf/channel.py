"""
Output Channel

Bounded, lossy, multi-producer/single-consumer hand-off between the
capture pipeline and the collector. Producers never block: when the
channel is full the record is dropped and counted. Losses reported by the
kernel perf ring are folded into the same counter.
"""

import logging
import queue
import threading
from typing import Any, Dict, List, Optional

from hdas.constants import BufferSizes
from hdas.ebpf.event import EventRecord

logger = logging.getLogger(__name__)


class OutputChannel:
    """
    Bounded queue of EventRecords.

    Usage:
        channel = OutputChannel(capacity=1024)
        channel.offer(record)          # producer, never blocks
        for record in channel.drain():  # consumer
            ...
    """

    def __init__(self, capacity: int = BufferSizes.CHANNEL_DEFAULT):
        if capacity < 1:
            raise ValueError("Channel capacity must be at least 1")
        self.capacity = capacity
        self._queue: "queue.Queue[EventRecord]" = queue.Queue(maxsize=capacity)
        self._lock = threading.Lock()
        self._offered = 0
        self._delivered = 0
        self._dropped = 0
        self._lost_in_kernel = 0

    def offer(self, record: EventRecord) -> bool:
        """Enqueue a record; returns False if it was dropped."""
        try:
            self._queue.put_nowait(record)
        except queue.Full:
            with self._lock:
                self._offered += 1
                self._dropped += 1
            return False

        with self._lock:
            self._offered += 1
        return True

    def record_lost(self, count: int) -> None:
        """Account for records the kernel ring could not hold."""
        if count <= 0:
            return
        with self._lock:
            self._lost_in_kernel += count
            self._dropped += count
        logger.debug(f"Perf ring lost {count} records")

    def get(self, timeout: Optional[float] = None) -> Optional[EventRecord]:
        """Take one record, waiting up to ``timeout`` seconds."""
        try:
            record = self._queue.get(timeout=timeout) if timeout else self._queue.get_nowait()
        except queue.Empty:
            return None
        with self._lock:
            self._delivered += 1
        return record

    def drain(self, max_records: Optional[int] = None) -> List[EventRecord]:
        """Take every pending record (or up to ``max_records``)."""
        records = []
        while max_records is None or len(records) < max_records:
            record = self.get()
            if record is None:
                break
            records.append(record)
        return records

    @property
    def dropped(self) -> int:
        with self._lock:
            return self._dropped

    def __len__(self) -> int:
        return self._queue.qsize()

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'capacity': self.capacity,
                'pending': self._queue.qsize(),
                'offered': self._offered,
                'delivered': self._delivered,
                'dropped': self._dropped,
                'lost_in_kernel': self._lost_in_kernel,
            }
