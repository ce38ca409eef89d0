"""
Bounded Path Matchers

Primitive, allocation-free matchers over a fixed-capacity path snapshot.
They follow the same discipline as the generated kernel code:

- every sweep is a fixed-trip-count loop with an early exit on NUL
- a read at or beyond the buffer capacity (or the retained length of a
  truncated snapshot) yields NUL, never an exception
- no function recurses or allocates per byte

Buffers are ``bytes``/``bytearray``/``memoryview`` values; indexing yields
ints, so comparisons are byte-exact and independent of text encoding.
"""

from typing import Sequence, Union

from hdas.classifier.rules import AnchorMode, MatchRule
from hdas.constants import BufferSizes, SEPARATOR, TERMINATOR

PathBuffer = Union[bytes, bytearray, memoryview]


def to_path_buffer(path: Union[str, PathBuffer]) -> bytes:
    """
    Copy a path into a snapshot truncated to the path capacity.

    Text is encoded as the kernel would see it (UTF-8, undecodable
    characters passed through via surrogateescape).
    """
    if isinstance(path, str):
        path = path.encode('utf-8', errors='surrogateescape')
    return bytes(path[:BufferSizes.PATH])


def byte_at(buf: PathBuffer, index: int) -> int:
    """Byte at ``index``, or NUL when outside the retained snapshot."""
    if index < 0 or index >= BufferSizes.PATH or index >= len(buf):
        return TERMINATOR
    return buf[index]


def is_empty(buf: PathBuffer) -> bool:
    return byte_at(buf, 0) == TERMINATOR


def boundary_before(buf: PathBuffer, index: int) -> bool:
    """Start of string, or a separator right before ``index``."""
    return index == 0 or byte_at(buf, index - 1) == SEPARATOR


def boundary_after(buf: PathBuffer, index: int) -> bool:
    """A separator or the end of the (possibly truncated) string at ``index``."""
    b = byte_at(buf, index)
    return b == SEPARATOR or b == TERMINATOR


def literal_at(buf: PathBuffer, index: int, pattern: bytes) -> bool:
    """Whether ``pattern`` occurs at ``index``.

    Patterns never contain NUL, so a terminator inside the window is a
    mismatch and the comparison stops there.
    """
    for k in range(len(pattern)):
        if byte_at(buf, index + k) != pattern[k]:
            return False
    return True


def rule_matches_at(buf: PathBuffer, index: int, rule: MatchRule) -> bool:
    """Test a single rule anchored at ``index``."""
    if rule.anchor is AnchorMode.ABSOLUTE_PREFIX:
        return index == 0 and literal_at(buf, 0, rule.pattern)

    if rule.anchor is AnchorMode.DIRECTORY_BOUNDARY:
        return (
            boundary_before(buf, index)
            and literal_at(buf, index, rule.pattern)
            and boundary_after(buf, index + len(rule.pattern))
        )

    return literal_at(buf, index, rule.pattern)


def match_prefix(buf: PathBuffer, rules: Sequence[MatchRule]) -> bool:
    """Check absolute-prefix rules once, at offset 0."""
    for rule in rules:
        if literal_at(buf, 0, rule.pattern):
            return True
    return False


def sweep(buf: PathBuffer, rules: Sequence[MatchRule], bound: int) -> bool:
    """
    Single-cursor sweep over ``buf`` testing every rule at every position.

    Runs at most ``bound`` iterations (itself capped at the path capacity),
    stopping at the first NUL or the first match.
    """
    if not rules:
        return False

    for i in range(min(bound, BufferSizes.PATH)):
        if byte_at(buf, i) == TERMINATOR:
            break
        for rule in rules:
            if rule_matches_at(buf, i, rule):
                return True
    return False
