#!/usr/bin/env python3
"""
ntfy-monitor CLI entry point.

Runs ntfy-monitor from a source checkout (e.g. from cron) without
installing the package.
"""

import sys
from pathlib import Path

src_dir = Path(__file__).resolve().parent
if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))

from ntfy_monitor.cli import main

if __name__ == "__main__":
    main()
