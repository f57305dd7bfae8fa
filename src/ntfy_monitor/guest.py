"""
Command execution inside guests.

VMs go through the QEMU guest agent (``qm guest exec``), containers through
``pct exec``. Both are normalized to a :class:`CommandResult` carrying the
exit code of the command run inside the guest.
"""

import json
import shlex
import logging
from typing import List, Optional

from .cluster import Guest, ClusterClient
from .executor import CommandResult, EXIT_TIMEOUT

logger = logging.getLogger("ntfy_monitor.guest")


WINDOWS_BANNER = "Microsoft Windows"


def decode_agent_output(result: CommandResult) -> CommandResult:
    """
    Unwrap the JSON status printed by ``qm guest exec``.

    ``{"exitcode": 0, "exited": 1, "out-data": "..."}`` becomes a result with
    the in-guest exit code. Output that is not such a document is returned
    unchanged.
    """
    try:
        data = json.loads(result.stdout)
    except (json.JSONDecodeError, TypeError):
        return result
    if not isinstance(data, dict) or ('exited' not in data and 'exitcode' not in data):
        return result

    stdout = data.get('out-data', '') or ''
    stderr = data.get('err-data', '') or ''
    if not data.get('exited', 1):
        return CommandResult(EXIT_TIMEOUT, stdout, stderr or "Guest command did not finish")
    return CommandResult(int(data.get('exitcode', 0)), stdout, stderr)


class GuestShell:
    """Runs commands inside guests through the node's tool chain."""

    def __init__(self, executor, timeout: int = 30):
        """
        Args:
            executor: Local or SSH executor for the Proxmox node.
            timeout: Per-command timeout in seconds.
        """
        self.executor = executor
        self.timeout = timeout

    def run(self, guest: Guest, argv: List[str], timeout: Optional[int] = None) -> CommandResult:
        """Run ``argv`` inside ``guest``."""
        timeout = timeout or self.timeout

        if guest.is_vm:
            cmd = ["qm", "guest", "exec", str(guest.vmid),
                   "--timeout", str(timeout), "--", *argv]
            # qm itself needs a little longer than the in-guest timeout
            result = self.executor.run(cmd, timeout=timeout + 5)
            if not result.ok:
                return result
            return decode_agent_output(result)

        cmd = ["pct", "exec", str(guest.vmid), "--", *argv]
        return self.executor.run(cmd, timeout=timeout)

    def agent_ping(self, guest: Guest) -> bool:
        """Whether the guest agent answers (always True for containers)."""
        if not guest.is_vm:
            return True
        result = self.executor.run(["qm", "agent", str(guest.vmid), "ping"],
                                   timeout=self.timeout)
        return result.ok

    def has_tool(self, guest: Guest, tool: str) -> bool:
        result = self.run(guest, ["sh", "-c", f"command -v {shlex.quote(tool)}"])
        return result.ok and bool(result.stdout.strip())

    def file_exists(self, guest: Guest, path: str) -> bool:
        return self.run(guest, ["test", "-f", path]).ok

    def detect_windows(self, guest: Guest, cluster: Optional[ClusterClient] = None) -> bool:
        """
        Windows detection for VMs.

        The configured ``ostype`` (``win10``, ``win11``, ...) decides when
        available; otherwise ``cmd /c ver`` is tried through the agent.
        """
        if not guest.is_vm:
            return False

        if cluster is not None and guest.node:
            vm_config = cluster.get_vm_config(guest.node, guest.vmid)
            ostype = (vm_config or {}).get('ostype')
            if ostype:
                return str(ostype).lower().startswith('win')

        if not guest.agent_available:
            return False

        result = self.run(guest, ["cmd", "/c", "ver"])
        return WINDOWS_BANNER in result.stdout
