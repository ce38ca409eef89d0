"""
BPF Program Generator

Renders a RuleSet into the BCC C source loaded by the openat probe.
Every rule becomes an unrolled chain of byte comparisons against the path
read as ``unsigned char``, so bytes >= 0x80 compare equal to their
``0xNN`` literals the way they do in user space. Every sweep is a
``#pragma unroll`` loop with a compile-time trip count and an early
exit on NUL, so the verifier can bound it statically.

The generated matchers implement exactly the semantics of
``hdas.classifier.matchers``; the two must be changed together.
"""

from typing import Iterable, List, Sequence

from hdas.classifier.rules import AnchorMode, MatchRule, RuleSet
from hdas.constants import BufferSizes, SEPARATOR, TERMINATOR

_HEADER = """\
#include <uapi/linux/ptrace.h>

#define COMM_LEN {comm_len}
#define PATH_LEN {path_len}
#define CLASSIFY_SCAN_BOUND {classify_bound}
#define EXCLUSION_SCAN_BOUND {exclusion_bound}

struct event_t {{
    u32 pid;
    char comm[COMM_LEN];
    char path[PATH_LEN];
}};

BPF_PERF_OUTPUT(events);
"""

_PROBE = """\
TRACEPOINT_PROBE(syscalls, sys_enter_openat) {
    struct event_t event = {};

    event.pid = bpf_get_current_pid_tgid() >> 32;
    bpf_get_current_comm(&event.comm, sizeof(event.comm));
    bpf_probe_read_user_str(&event.path, sizeof(event.path), args->filename);

    const unsigned char *path = (const unsigned char *)event.path;
    if (is_interesting(path) && !is_excluded(path))
        events.perf_submit(args, &event, sizeof(event));

    return 0;
}
"""


def _comment(rule: MatchRule) -> str:
    text = rule.text.replace('*/', '*\\/')
    return f"/* {text} ({rule.anchor.value}) */"


def _index(base: str, offset: int) -> str:
    if base == "0":
        return str(offset)
    return base if offset == 0 else f"{base} + {offset}"


def _literal_terms(pattern: bytes, base: str) -> List[str]:
    """``p[base + k] == 0xNN`` for every byte of the pattern."""
    return [
        f"p[{_index(base, k)}] == 0x{value:02x}"
        for k, value in enumerate(pattern)
    ]


def rule_condition(rule: MatchRule) -> str:
    """C boolean expression for a rule, anchored at ``i`` (or 0 for prefixes)."""
    if rule.anchor is AnchorMode.ABSOLUTE_PREFIX:
        return " && ".join(_literal_terms(rule.pattern, "0"))

    terms = _literal_terms(rule.pattern, "i")
    if rule.anchor is AnchorMode.DIRECTORY_BOUNDARY:
        after = _index("i", len(rule.pattern))
        terms.insert(0, f"(i == 0 || p[i - 1] == 0x{SEPARATOR:02x})")
        terms.append(
            f"(p[{after}] == 0x{SEPARATOR:02x} || p[{after}] == 0x{TERMINATOR:02x})"
        )
    return " && ".join(terms)


def _render_prefix_function(name: str, rules: Sequence[MatchRule]) -> str:
    lines = [f"static __always_inline int {name}(const unsigned char *p) {{"]
    for rule in rules:
        lines.append(f"    {_comment(rule)}")
        lines.append(f"    if ({rule_condition(rule)})")
        lines.append("        return 1;")
    lines.append("    return 0;")
    lines.append("}")
    return "\n".join(lines) + "\n"


def _render_sweep_function(name: str, rules: Sequence[MatchRule], bound_macro: str) -> str:
    lines = [f"static __always_inline int {name}(const unsigned char *p) {{"]
    if rules:
        lines.append("    #pragma unroll")
        lines.append(f"    for (int i = 0; i < {bound_macro}; i++) {{")
        lines.append(f"        if (p[i] == 0x{TERMINATOR:02x})")
        lines.append("            break;")
        for rule in rules:
            lines.append(f"        {_comment(rule)}")
            lines.append(f"        if ({rule_condition(rule)})")
            lines.append("            return 1;")
        lines.append("    }")
    lines.append("    return 0;")
    lines.append("}")
    return "\n".join(lines) + "\n"


def _render_classifier() -> str:
    return (
        "static __always_inline int is_interesting(const unsigned char *p) {\n"
        "    if (match_prefix(p))\n"
        "        return 1;\n"
        "    return match_component(p);\n"
        "}\n"
    )


def highest_index(rules: RuleSet) -> int:
    """Largest path offset the generated program can read."""
    highest = 0
    for rule in rules.prefix_rules:
        highest = max(highest, len(rule.pattern) - 1)
    for rule in rules.sweep_rules:
        highest = max(highest, rules.classify_scan_bound - 1 + len(rule.pattern))
    for rule in rules.exclusion_rules:
        highest = max(highest, rules.exclusion_scan_bound - 1 + len(rule.pattern))
    return highest


def render_program(rules: RuleSet) -> str:
    """Full BCC source for the openat probe."""
    if highest_index(rules) >= BufferSizes.PATH:
        raise ValueError(
            "Scan bounds reach past the path buffer; build the RuleSet with "
            "RuleSet.build() so they are clamped"
        )

    parts: Iterable[str] = (
        _HEADER.format(
            comm_len=BufferSizes.COMM,
            path_len=BufferSizes.PATH,
            classify_bound=rules.classify_scan_bound,
            exclusion_bound=rules.exclusion_scan_bound,
        ),
        _render_prefix_function("match_prefix", rules.prefix_rules),
        _render_sweep_function("match_component", rules.sweep_rules, "CLASSIFY_SCAN_BOUND"),
        _render_classifier(),
        _render_sweep_function("is_excluded", rules.exclusion_rules, "EXCLUSION_SCAN_BOUND"),
        _PROBE,
    )
    return "\n".join(parts)
