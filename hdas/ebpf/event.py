"""
Event Record

The unit of output crossing the kernel/user boundary:

    offset  size  field
    0       4     pid   (u32, little-endian)
    4       16    comm  (not necessarily NUL-terminated)
    20      256   path  (raw bytes, possibly truncated)

Records are immutable; a record that cannot be decoded whole is dropped.
"""

import struct
from dataclasses import dataclass
from typing import Optional, Union

from hdas.constants import BufferSizes

EVENT_FORMAT = f"<I{BufferSizes.COMM}s{BufferSizes.PATH}s"
EVENT_STRUCT = struct.Struct(EVENT_FORMAT)

assert EVENT_STRUCT.size == BufferSizes.EVENT_RECORD

_PID_MASK = 0xFFFFFFFF


def _cstring(raw: bytes) -> bytes:
    """Bytes up to the first NUL, or all of them when none is present."""
    end = raw.find(b'\x00')
    return raw if end < 0 else raw[:end]


def _truncate(value: Union[str, bytes, bytearray], capacity: int) -> bytes:
    if isinstance(value, str):
        value = value.encode('utf-8', errors='surrogateescape')
    return bytes(value[:capacity])


@dataclass(frozen=True)
class EventRecord:
    """A captured file-open: who opened what."""
    pid: int
    comm: bytes
    path: bytes

    @classmethod
    def capture(
        cls,
        pid: int,
        comm: Union[str, bytes],
        path: Union[str, bytes, bytearray],
    ) -> 'EventRecord':
        """
        Build a record from trigger context, copying into bounded fields.

        Overlong values are silently truncated and anything after an
        embedded NUL is discarded, as a string read from user memory
        would be; the pid is reduced to u32.
        """
        return cls(
            pid=int(pid) & _PID_MASK,
            comm=_cstring(_truncate(comm, BufferSizes.COMM)),
            path=_cstring(_truncate(path, BufferSizes.PATH)),
        )

    @property
    def comm_text(self) -> str:
        return _cstring(self.comm).decode('utf-8', errors='replace')

    @property
    def path_text(self) -> str:
        return _cstring(self.path).decode('utf-8', errors='replace')

    def encode(self) -> bytes:
        """Pack into the fixed wire layout (NUL padded)."""
        return EVENT_STRUCT.pack(self.pid, self.comm, self.path)

    @classmethod
    def decode(cls, raw: Union[bytes, bytearray, memoryview]) -> Optional['EventRecord']:
        """
        Unpack one record from the wire layout.

        Returns None for short buffers; trailing bytes beyond the record
        (perf samples may be padded) are ignored.
        """
        if raw is None or len(raw) < EVENT_STRUCT.size:
            return None
        pid, comm, path = EVENT_STRUCT.unpack_from(bytes(raw[:EVENT_STRUCT.size]))
        return cls(pid=pid, comm=_cstring(comm), path=_cstring(path))

    def to_dict(self) -> dict:
        return {
            'pid': self.pid,
            'comm': self.comm_text,
            'path': self.path_text,
        }
