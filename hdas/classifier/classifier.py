"""
Path Classifier and Exclusion Filter

User-space rendition of the probe's decision:

    interesting = prefix rule at offset 0  OR  sweep(component rules)
    excluded    = sweep(exclusion rules)            (only if interesting)
    emit        = interesting AND NOT excluded

Both objects are stateless apart from the shared, read-only RuleSet, so
classifying the same buffer twice always yields the same answer.
"""

from dataclasses import dataclass
from typing import Union

from hdas.classifier.matchers import (
    PathBuffer,
    is_empty,
    match_prefix,
    sweep,
    to_path_buffer,
)
from hdas.classifier.rules import RuleSet


class PathClassifier:
    """Decides whether an opened path is interesting."""

    def __init__(self, rules: RuleSet):
        self.rules = rules
        self._prefix_rules = rules.prefix_rules
        self._sweep_rules = rules.sweep_rules

    def classify(self, path: Union[str, PathBuffer]) -> bool:
        buf = to_path_buffer(path)
        if is_empty(buf):
            return False

        # Cheap check first; a hit skips the sweep entirely.
        if match_prefix(buf, self._prefix_rules):
            return True

        return sweep(buf, self._sweep_rules, self.rules.classify_scan_bound)

    __call__ = classify


class ExclusionFilter:
    """Suppresses interesting paths under exempted sub-trees."""

    def __init__(self, rules: RuleSet):
        self.rules = rules

    def is_excluded(self, path: Union[str, PathBuffer]) -> bool:
        buf = to_path_buffer(path)
        return sweep(buf, self.rules.exclusion_rules, self.rules.exclusion_scan_bound)

    __call__ = is_excluded


@dataclass(frozen=True)
class Decision:
    """Outcome of running one path through classifier and filter."""
    interesting: bool
    excluded: bool

    @property
    def emit(self) -> bool:
        return self.interesting and not self.excluded

    def to_dict(self) -> dict:
        return {
            'interesting': self.interesting,
            'excluded': self.excluded,
            'emit': self.emit,
        }


def evaluate(path: Union[str, PathBuffer], rules: RuleSet) -> Decision:
    """Run the full decision for ``path`` without emitting anything."""
    buf = to_path_buffer(path)
    interesting = PathClassifier(rules).classify(buf)
    excluded = ExclusionFilter(rules).is_excluded(buf) if interesting else False
    return Decision(interesting=interesting, excluded=excluded)
