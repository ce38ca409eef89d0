"""
Tests for the Path Classification Engine.

Covers rule construction, the bounded matchers, the classifier and the
exclusion filter, including truncation and anchoring edge cases.
"""

import os
import sys

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from hdas.classifier import (
    AnchorMode,
    Decision,
    ExclusionFilter,
    ExclusionPolicy,
    MatchRule,
    PathClassifier,
    RuleSet,
    clamp_scan_bound,
    evaluate,
    match_prefix,
    rule_matches_at,
    sweep,
    to_path_buffer,
)
from hdas.classifier.matchers import boundary_after, boundary_before, byte_at


# ===========================================================================
# MatchRule / RuleSet Tests
# ===========================================================================

class TestMatchRule:
    """Tests for MatchRule construction."""

    def test_text_pattern_is_encoded(self):
        """String patterns should be stored as bytes."""
        rule = MatchRule.component('.cache')
        assert rule.pattern == b'.cache'
        assert rule.anchor == AnchorMode.DIRECTORY_BOUNDARY
        assert rule.text == '.cache'

    def test_constructors_set_anchor(self):
        """Each constructor should set its anchoring mode."""
        assert MatchRule.prefix('/etc/').anchor == AnchorMode.ABSOLUTE_PREFIX
        assert MatchRule.substring('hdas').anchor == AnchorMode.SUBSTRING

    def test_empty_pattern_rejected(self):
        """An empty pattern would match everywhere."""
        with pytest.raises(ValueError):
            MatchRule.component('')

    def test_nul_in_pattern_rejected(self):
        """Patterns cannot contain the terminator."""
        with pytest.raises(ValueError):
            MatchRule.substring(b'ab\x00cd')

    def test_pattern_must_fit_buffer(self):
        """Patterns as long as the path buffer are rejected."""
        with pytest.raises(ValueError):
            MatchRule.prefix('/' * 256)
        assert len(MatchRule.prefix('/' * 255).pattern) == 255

    def test_rule_is_immutable(self):
        """Rules are frozen."""
        rule = MatchRule.component('.cache')
        with pytest.raises(Exception):
            rule.pattern = b'.config'


class TestExclusionPolicy:
    """Tests for ExclusionPolicy parsing."""

    def test_from_string(self):
        """Policy names are case and whitespace insensitive."""
        assert ExclusionPolicy.from_string('boundary') == ExclusionPolicy.BOUNDARY
        assert ExclusionPolicy.from_string(' SUBSTRING ') == ExclusionPolicy.SUBSTRING

    def test_unknown_policy(self):
        """Unknown names raise ValueError listing the valid ones."""
        with pytest.raises(ValueError, match="boundary"):
            ExclusionPolicy.from_string('fuzzy')

    def test_anchor_mapping(self):
        """Boundary maps to directory-boundary, substring to substring."""
        assert ExclusionPolicy.BOUNDARY.anchor == AnchorMode.DIRECTORY_BOUNDARY
        assert ExclusionPolicy.SUBSTRING.anchor == AnchorMode.SUBSTRING


class TestRuleSet:
    """Tests for RuleSet.build and scan bound clamping."""

    def test_build_groups_rules(self, default_rules):
        """Prefixes and components should be split for the classifier."""
        assert [r.text for r in default_rules.prefix_rules] == ['/etc/']
        assert [r.text for r in default_rules.sweep_rules] == ['.cache', '.local', '.config']
        assert default_rules.exclusion_rules[0].anchor == AnchorMode.DIRECTORY_BOUNDARY

    def test_default_bounds(self, default_rules):
        """Default bounds fit the default patterns unchanged."""
        assert default_rules.classify_scan_bound == 200
        assert default_rules.exclusion_scan_bound == 240

    def test_bound_clamped_to_longest_pattern(self):
        """A bound that would read past the buffer is clamped."""
        rules = RuleSet.build(components=['.cache'], classify_scan_bound=1000)
        assert rules.classify_scan_bound == 256 - len('.cache')

    def test_clamp_minimum(self):
        """Bounds never drop below one position."""
        assert clamp_scan_bound(0, [MatchRule.component('.x')]) == 1
        assert clamp_scan_bound(-5, []) == 1

    def test_substring_policy_exclusions(self, substring_rules):
        """Substring policy produces unanchored exclusion rules."""
        assert substring_rules.exclusion_rules[0].anchor == AnchorMode.SUBSTRING

    def test_describe(self, default_rules):
        """describe() should list rules as plain data."""
        summary = default_rules.describe()
        assert summary['prefixes'] == ['/etc/']
        assert '.config' in summary['components']
        assert summary['exclusions'] == [{'pattern': 'hdas', 'anchor': 'directory_boundary'}]


# ===========================================================================
# Matcher Tests
# ===========================================================================

class TestMatchers:
    """Tests for the bounded matcher primitives."""

    def test_to_path_buffer_truncates(self):
        """Snapshots are capped at the path capacity."""
        assert len(to_path_buffer('a' * 1000)) == 256
        assert to_path_buffer('/etc/x') == b'/etc/x'

    def test_byte_at_outside_buffer_is_nul(self):
        """Reads outside the retained snapshot yield NUL."""
        buf = b'/etc'
        assert byte_at(buf, 0) == ord('/')
        assert byte_at(buf, 4) == 0
        assert byte_at(buf, -1) == 0
        assert byte_at(b'x' * 300, 256) == 0

    def test_boundaries(self):
        """Boundary helpers look at the neighbouring bytes."""
        buf = b'/a/.cache/b'
        assert boundary_before(buf, 0)
        assert boundary_before(buf, 3)
        assert not boundary_before(buf, 4)
        assert boundary_after(buf, 9)
        assert boundary_after(buf, len(buf))
        assert not boundary_after(buf, 8)

    def test_component_at_end_of_retained_buffer(self):
        """The end of a truncated snapshot counts as a boundary."""
        buf = to_path_buffer(b'x' * 249 + b'/' + b'.cache' + b'tail')
        assert len(buf) == 256
        assert rule_matches_at(buf, 250, MatchRule.component('.cache'))

    def test_prefix_only_at_offset_zero(self):
        """Absolute-prefix rules never match mid-path."""
        rule = MatchRule.prefix('/etc/')
        buf = b'/x/etc/passwd'
        assert not rule_matches_at(buf, 2, rule)
        assert match_prefix(b'/etc/passwd', [rule])
        assert not match_prefix(buf, [rule])

    def test_sweep_stops_at_nul(self):
        """Nothing after the first NUL is examined."""
        rules = [MatchRule.component('.cache')]
        assert not sweep(b'/tmp\x00/.cache/x', rules, 200)

    def test_sweep_respects_bound(self):
        """Positions at or past the bound are never tested."""
        rules = [MatchRule.component('.cache')]
        path = b'/' + b'a' * 20 + b'/.cache'
        assert sweep(path, rules, 30)
        assert not sweep(path, rules, 22)

    def test_sweep_without_rules(self):
        """An empty rule list never matches."""
        assert not sweep(b'/home/a/.cache', [], 200)


# ===========================================================================
# Classifier Tests
# ===========================================================================

class TestPathClassifier:
    """Tests for PathClassifier."""

    @pytest.mark.parametrize("path", [
        '/home/alice/.config/app.toml',
        '/home/alice/.cache',
        '/home/alice/.local/share/x',
        '.cache/relative',
        '/etc/passwd',
        '/etc/',
    ])
    def test_interesting(self, default_rules, path):
        """Prefixed and boundary-correct dot-directory paths are interesting."""
        assert PathClassifier(default_rules).classify(path)

    @pytest.mark.parametrize("path", [
        '/home/alice/.configbackup',
        '/home/alice/.cachex/y',
        '/home/alice/my.cache/y',
        '/etcetera/x',
        '/etc',
        '/x/etc/passwd',
        '/usr/lib/libc.so',
        '',
    ])
    def test_not_interesting(self, default_rules, path):
        """Unbounded names, wrong prefixes and empty paths are ignored."""
        assert not PathClassifier(default_rules).classify(path)

    def test_empty_buffer(self, default_rules):
        """An immediately terminated buffer is not interesting."""
        assert not PathClassifier(default_rules).classify(b'\x00/etc/passwd')

    def test_raw_bytes(self, default_rules):
        """Non-UTF-8 bytes are matched byte-exactly."""
        assert PathClassifier(default_rules).classify(b'/home/a/.cache/\xff\xfe')

    def test_idempotent(self, default_rules):
        """Classifying the same buffer twice gives the same answer."""
        classifier = PathClassifier(default_rules)
        buf = to_path_buffer('/home/alice/.config/app.toml')
        assert classifier(buf) == classifier(buf)
        assert classifier(b'/home/a/.configx') == classifier(b'/home/a/.configx')

    def test_truncation_uses_retained_prefix(self, default_rules):
        """Long paths are decided by their first 256 bytes, without error."""
        classifier = PathClassifier(default_rules)
        early = '/home/a/.cache/' + 'x' * 5000
        late = '/' + 'a' * 300 + '/.cache/x'
        assert classifier.classify(early)
        assert not classifier.classify(late)

    def test_component_beyond_bound_ignored(self, default_rules):
        """A dot-directory starting past the scan bound is not seen."""
        path = '/' + 'a' * 210 + '/.cache'
        assert len(path) < 256
        assert not PathClassifier(default_rules).classify(path)


# ===========================================================================
# Exclusion Filter Tests
# ===========================================================================

class TestExclusionFilter:
    """Tests for ExclusionFilter under both policies."""

    def test_boundary_excludes_component(self, default_rules):
        """The exclusion name as a whole component is excluded."""
        f = ExclusionFilter(default_rules)
        assert f.is_excluded('/var/lib/hdas/.cache/x')
        assert f.is_excluded('/home/a/.config/hdas')
        assert f.is_excluded('hdas/.cache')

    def test_boundary_keeps_longer_names(self, default_rules):
        """Names merely containing the exclusion are kept by default."""
        f = ExclusionFilter(default_rules)
        assert not f.is_excluded('/home/a/.cache/myhdas-stuff/x')
        assert not f.is_excluded('/home/a/.config/hdasx')

    def test_substring_excludes_any_occurrence(self, substring_rules):
        """The opt-in substring policy excludes any occurrence."""
        f = ExclusionFilter(substring_rules)
        assert f.is_excluded('/home/a/.cache/myhdas-stuff/x')
        assert f.is_excluded('/var/lib/hdas/.cache/x')

    def test_no_exclusions(self):
        """A rule set without exclusions excludes nothing."""
        rules = RuleSet.build(components=['.cache'])
        assert not ExclusionFilter(rules).is_excluded('/hdas/.cache')


# ===========================================================================
# Decision Tests
# ===========================================================================

class TestEvaluate:
    """End-to-end decisions for the reference scenarios."""

    @pytest.mark.parametrize("path,interesting,excluded,emit", [
        ('/home/alice/.config/app.toml', True, False, True),
        ('/home/alice/.configbackup', False, False, False),
        ('/etc/passwd', True, False, True),
        ('/var/lib/hdas/.cache/x', True, True, False),
        ('', False, False, False),
    ])
    def test_scenarios(self, default_rules, path, interesting, excluded, emit):
        """Each reference path gets the expected decision."""
        decision = evaluate(path, default_rules)
        assert decision.interesting is interesting
        assert decision.excluded is excluded
        assert decision.emit is emit

    def test_filter_skipped_when_uninteresting(self, default_rules):
        """Exclusion is only evaluated for interesting paths."""
        decision = evaluate('/var/lib/hdas/data', default_rules)
        assert decision == Decision(interesting=False, excluded=False)

    def test_to_dict(self, default_rules):
        """to_dict includes the final emit flag."""
        assert evaluate('/etc/hosts', default_rules).to_dict() == {
            'interesting': True,
            'excluded': False,
            'emit': True,
        }
