"""
Path Classification Engine

Rule-table-driven, bounded matchers deciding which opened paths are
reported. The same RuleSet is rendered into the kernel probe by
``hdas.ebpf.bpf_program``.
"""

from .rules import (
    AnchorMode,
    ExclusionPolicy,
    MatchRule,
    RuleSet,
    clamp_scan_bound,
)

from .matchers import (
    to_path_buffer,
    rule_matches_at,
    match_prefix,
    sweep,
)

from .classifier import (
    PathClassifier,
    ExclusionFilter,
    Decision,
    evaluate,
)

__all__ = [
    # Rules
    'AnchorMode',
    'ExclusionPolicy',
    'MatchRule',
    'RuleSet',
    'clamp_scan_bound',

    # Matchers
    'to_path_buffer',
    'rule_matches_at',
    'match_prefix',
    'sweep',

    # Decision
    'PathClassifier',
    'ExclusionFilter',
    'Decision',
    'evaluate',
]
