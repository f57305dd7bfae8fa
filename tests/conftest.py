"""
Shared fixtures: a scripted executor standing in for the Proxmox node.
"""

import sys
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from ntfy_monitor.executor import CommandResult


def guest_argv(argv):
    """Command run inside the guest (everything after ``--``)."""
    if "--" in argv:
        return argv[argv.index("--") + 1:]
    return argv


class FakeExecutor:
    """Records commands and answers them through ``handler(argv)``."""

    def __init__(self, handler=None, tools=("pvesh", "qm", "pct")):
        self.handler = handler or (lambda argv: None)
        self.tools = set(tools)
        self.calls = []
        self.closed = False

    def run(self, argv, timeout=None):
        self.calls.append(list(argv))
        result = self.handler(list(argv))
        return result if result is not None else CommandResult(0, "", "")

    def which(self, tool):
        return tool in self.tools

    def describe(self):
        return "fake"

    def close(self):
        self.closed = True


@pytest.fixture
def make_executor():
    return FakeExecutor


@pytest.fixture
def check_settings():
    return {
        'ping_targets': ['8.8.8.8', '1.1.1.1'],
        'ping_timeout': 5,
        'ping_retry_count': 2,
        'nslookup_target': 'google.com',
        'log_interval_hours': 1,
        'log_files': ['/var/log/syslog', '/var/log/messages'],
        'error_patterns': 'error|failed|failure|crash|critical|panic',
    }
