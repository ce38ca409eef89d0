#!/usr/bin/env python3
"""
HDAS Monitor Entry Point

Runs the monitor straight from a source checkout:

    sudo ./run_monitor.py
"""

import os
import sys


def setup_path():
    """Put the checkout on sys.path so ``hdas`` imports without installing."""
    base_path = os.path.dirname(os.path.abspath(__file__))
    if base_path not in sys.path:
        sys.path.insert(0, base_path)


def main():
    """Main entry point."""
    setup_path()

    from hdas.monitor import main as monitor_main
    return monitor_main()


if __name__ == '__main__':
    sys.exit(main())
