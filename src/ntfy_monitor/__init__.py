"""
ntfy-monitor - Proxmox guest network and log monitor

Checks running VMs and containers of a Proxmox VE cluster from the inside
(ping, DNS, syslog errors) and pushes alerts to an ntfy server.
"""

__version__ = "1.0.0"

from .exceptions import (
    NtfyMonitorError,
    ConfigurationError,
    DependencyError,
    LockError,
    ClusterQueryError,
    NotificationError,
)
from .config import Config
from .notifier import NtfyNotifier

__all__ = [
    "__version__",
    "NtfyMonitorError",
    "ConfigurationError",
    "DependencyError",
    "LockError",
    "ClusterQueryError",
    "NotificationError",
    "Config",
    "NtfyNotifier",
]
