"""
eBPF Capture Layer for the HDAS open monitor

Provides kernel-level visibility of file opens WITHOUT a kernel driver:
- openat tracepoint probe generated from the classifier's RuleSet
- fixed-layout event records delivered over a perf ring
- bounded, lossy output channel towards the collector

Requirements:
- Linux kernel with tracepoint BPF support
- bcc installed (python3-bpfcc / bcc distribution package)
- CAP_SYS_ADMIN or CAP_BPF capability
"""

from .event import (
    EventRecord,
    EVENT_FORMAT,
    EVENT_STRUCT,
)

from .channel import OutputChannel

from .pipeline import OpenMonitorPipeline

from .bpf_program import (
    render_program,
    rule_condition,
    highest_index,
)

from .probe import (
    BCC_AVAILABLE,
    ProbeConfig,
    OpenatProbe,
)

__all__ = [
    # Records
    'EventRecord',
    'EVENT_FORMAT',
    'EVENT_STRUCT',

    # Delivery
    'OutputChannel',
    'OpenMonitorPipeline',

    # Kernel program
    'render_program',
    'rule_condition',
    'highest_index',

    # Probe
    'BCC_AVAILABLE',
    'ProbeConfig',
    'OpenatProbe',
]
