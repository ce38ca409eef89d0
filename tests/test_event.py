"""
Tests for the EventRecord wire format.
"""

import os
import struct
import sys

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from hdas.ebpf import EVENT_FORMAT, EVENT_STRUCT, EventRecord


class TestLayout:
    """Tests for the fixed record layout."""

    def test_record_size(self):
        """pid(4) + comm(16) + path(256) with no padding."""
        assert EVENT_STRUCT.size == 276
        assert struct.calcsize(EVENT_FORMAT) == 276

    def test_field_offsets(self):
        """Fields are little-endian at offsets 0, 4 and 20."""
        raw = EventRecord.capture(0x01020304, 'bash', '/etc/hosts').encode()
        assert raw[0:4] == b'\x04\x03\x02\x01'
        assert raw[4:8] == b'bash'
        assert raw[20:30] == b'/etc/hosts'
        assert raw[30] == 0


class TestCapture:
    """Tests for EventRecord.capture."""

    def test_basic(self):
        """Text fields are stored as bytes."""
        record = EventRecord.capture(42, 'firefox', '/home/a/.cache/mozilla')
        assert record.pid == 42
        assert record.comm == b'firefox'
        assert record.path_text == '/home/a/.cache/mozilla'

    def test_truncates_silently(self):
        """Overlong comm and path are cut to capacity."""
        record = EventRecord.capture(1, 'c' * 40, b'/' + b'p' * 400)
        assert len(record.comm) == 16
        assert len(record.path) == 256

    def test_cuts_at_embedded_nul(self):
        """Anything after an embedded NUL is discarded."""
        record = EventRecord.capture(1, b'ab\x00cd', b'/etc\x00/shadow')
        assert record.comm == b'ab'
        assert record.path == b'/etc'

    def test_pid_reduced_to_u32(self):
        """Pids wider than 32 bits keep their low half."""
        assert EventRecord.capture((7 << 32) | 99, 'x', '/').pid == 99

    def test_immutable(self):
        """Records cannot be modified after capture."""
        record = EventRecord.capture(1, 'x', '/etc/x')
        with pytest.raises(Exception):
            record.pid = 2


class TestDecode:
    """Tests for EventRecord.decode."""

    def test_decode_full_width_fields(self):
        """A comm filling its field without NUL decodes whole."""
        raw = EVENT_STRUCT.pack(7, b'a' * 16, b'/' + b'b' * 255)
        record = EventRecord.decode(raw)
        assert record.comm == b'a' * 16
        assert len(record.path) == 256

    def test_decode_ignores_trailing_bytes(self):
        """Perf padding after the record is ignored."""
        raw = EventRecord.capture(5, 'vim', '/etc/vimrc').encode() + b'\x00' * 4
        record = EventRecord.decode(raw)
        assert record == EventRecord.capture(5, 'vim', '/etc/vimrc')

    def test_short_buffer_dropped(self):
        """Buffers shorter than a record decode to None."""
        assert EventRecord.decode(b'\x00' * 275) is None
        assert EventRecord.decode(b'') is None

    def test_decode_memoryview(self):
        """Any buffer-protocol object is accepted."""
        raw = EventRecord.capture(3, 'ls', '/etc/').encode()
        assert EventRecord.decode(memoryview(raw)).path == b'/etc/'

    def test_to_dict(self):
        """to_dict exposes text fields."""
        record = EventRecord.capture(9, 'pip', '/home/a/.cache/pip/x')
        assert record.to_dict() == {'pid': 9, 'comm': 'pip', 'path': '/home/a/.cache/pip/x'}
