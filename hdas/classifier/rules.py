"""
Match Rules and Rule Sets

Declarative description of what makes an opened path interesting:

- ABSOLUTE_PREFIX      pattern must start at offset 0 (e.g. "/etc/")
- DIRECTORY_BOUNDARY   pattern must be a whole path component
                       (e.g. ".cache" in "/home/a/.cache/x", not ".cachex")
- SUBSTRING            pattern may occur anywhere

A RuleSet is built once at startup, never mutated, and shared by every
pipeline invocation (user-space and the generated kernel program alike).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Tuple

from hdas.constants import BufferSizes, ScanBounds


class AnchorMode(Enum):
    """Where a rule's pattern may occur in the path."""
    ABSOLUTE_PREFIX = "absolute_prefix"
    DIRECTORY_BOUNDARY = "directory_boundary"
    SUBSTRING = "substring"


class ExclusionPolicy(Enum):
    """How strictly exclusion names are matched."""
    BOUNDARY = "boundary"    # whole path component only
    SUBSTRING = "substring"  # any occurrence, opt-in

    @classmethod
    def from_string(cls, value: str) -> 'ExclusionPolicy':
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown exclusion policy '{value}' "
                f"(expected one of: {', '.join(p.value for p in cls)})"
            ) from None

    @property
    def anchor(self) -> AnchorMode:
        if self is ExclusionPolicy.SUBSTRING:
            return AnchorMode.SUBSTRING
        return AnchorMode.DIRECTORY_BOUNDARY


@dataclass(frozen=True)
class MatchRule:
    """A fixed literal and the anchoring it must satisfy."""
    pattern: bytes
    anchor: AnchorMode

    def __post_init__(self):
        if isinstance(self.pattern, str):
            object.__setattr__(self, 'pattern', self.pattern.encode('utf-8'))
        if not self.pattern:
            raise ValueError("Match rule pattern must not be empty")
        if b'\x00' in self.pattern:
            raise ValueError("Match rule pattern must not contain NUL")
        if len(self.pattern) >= BufferSizes.PATH:
            raise ValueError(
                f"Match rule pattern longer than the path buffer: {self.pattern!r}"
            )

    @classmethod
    def prefix(cls, pattern) -> 'MatchRule':
        return cls(pattern, AnchorMode.ABSOLUTE_PREFIX)

    @classmethod
    def component(cls, pattern) -> 'MatchRule':
        return cls(pattern, AnchorMode.DIRECTORY_BOUNDARY)

    @classmethod
    def substring(cls, pattern) -> 'MatchRule':
        return cls(pattern, AnchorMode.SUBSTRING)

    @property
    def text(self) -> str:
        return self.pattern.decode('utf-8', errors='replace')


def clamp_scan_bound(requested: int, rules: Iterable[MatchRule]) -> int:
    """
    Clamp a sweep bound so no probe of the buffer falls outside it.

    At position ``i`` a rule inspects ``buf[i - 1]`` through
    ``buf[i + len(pattern)]``; the last start position must therefore
    satisfy ``i + len(pattern) <= PATH - 1``.
    """
    longest = max((len(r.pattern) for r in rules), default=0)
    ceiling = BufferSizes.PATH - longest
    return max(ScanBounds.MINIMUM, min(int(requested), ceiling))


@dataclass(frozen=True)
class RuleSet:
    """
    Immutable rule configuration for the classifier and exclusion filter.

    Construct through :meth:`build` so the scan bounds are clamped against
    the patterns they will sweep.
    """
    classify_rules: Tuple[MatchRule, ...] = field(default_factory=tuple)
    exclusion_rules: Tuple[MatchRule, ...] = field(default_factory=tuple)
    classify_scan_bound: int = ScanBounds.CLASSIFY
    exclusion_scan_bound: int = ScanBounds.EXCLUSION

    @classmethod
    def build(
        cls,
        prefixes: Iterable = (),
        components: Iterable = (),
        exclusions: Iterable = (),
        exclusion_policy: ExclusionPolicy = ExclusionPolicy.BOUNDARY,
        classify_scan_bound: int = ScanBounds.CLASSIFY,
        exclusion_scan_bound: int = ScanBounds.EXCLUSION,
    ) -> 'RuleSet':
        """Build a rule set from plain literals."""
        classify = tuple(
            [MatchRule.prefix(p) for p in prefixes] +
            [MatchRule.component(c) for c in components]
        )
        excluded = tuple(MatchRule(e, exclusion_policy.anchor) for e in exclusions)
        return cls(
            classify_rules=classify,
            exclusion_rules=excluded,
            classify_scan_bound=clamp_scan_bound(classify_scan_bound, classify),
            exclusion_scan_bound=clamp_scan_bound(exclusion_scan_bound, excluded),
        )

    def rules_for(self, anchor: AnchorMode) -> Tuple[MatchRule, ...]:
        """Classification rules with the given anchoring."""
        return tuple(r for r in self.classify_rules if r.anchor is anchor)

    @property
    def prefix_rules(self) -> Tuple[MatchRule, ...]:
        return self.rules_for(AnchorMode.ABSOLUTE_PREFIX)

    @property
    def sweep_rules(self) -> Tuple[MatchRule, ...]:
        """Classification rules that need the positional sweep."""
        return tuple(
            r for r in self.classify_rules
            if r.anchor is not AnchorMode.ABSOLUTE_PREFIX
        )

    def describe(self) -> dict:
        """Plain-data summary for logs and the CLI."""
        return {
            'prefixes': [r.text for r in self.prefix_rules],
            'components': [r.text for r in self.rules_for(AnchorMode.DIRECTORY_BOUNDARY)],
            'substrings': [r.text for r in self.rules_for(AnchorMode.SUBSTRING)],
            'exclusions': [
                {'pattern': r.text, 'anchor': r.anchor.value}
                for r in self.exclusion_rules
            ],
            'classify_scan_bound': self.classify_scan_bound,
            'exclusion_scan_bound': self.exclusion_scan_bound,
        }
