"""
Proxmox cluster queries.

Enumerates guests through ``pvesh`` on the node the executor points at.
"""

import json
import logging
from typing import Optional, List, Dict, Any

from .exceptions import ClusterQueryError
from .utils import safe_int, clean_string

logger = logging.getLogger("ntfy_monitor.cluster")


GUEST_TYPES = {
    'qemu': 'vm',
    'lxc': 'ct',
}


class Guest:
    """A running VM or container selected for checks."""

    def __init__(self, vmid: int, node: str, name: str, guest_type: str,
                 is_windows: bool = False, agent_available: bool = True):
        self.vmid = vmid
        self.node = node
        self.name = name
        self.type = guest_type
        self.is_windows = is_windows
        self.agent_available = agent_available

    @property
    def is_vm(self) -> bool:
        return self.type == 'vm'

    @property
    def label(self) -> str:
        """Human label used in notification titles, e.g. ``vm 101``."""
        return f"{self.type} {self.vmid}"

    @property
    def tags(self) -> str:
        """Notification tags suffix: ``<type>,<name>``."""
        return f"{self.type},{self.name}"

    def __repr__(self) -> str:
        return f"Guest({self.label}, name={self.name!r}, node={self.node!r})"


class ClusterClient:
    """Thin wrapper around ``pvesh get``."""

    def __init__(self, executor, timeout: int = 30):
        self.executor = executor
        self.timeout = timeout

    def run_pvesh(self, endpoint: str, **params) -> Any:
        """
        Run ``pvesh get`` and return the decoded JSON.

        Raises:
            ClusterQueryError: On a non-zero exit or undecodable output.
        """
        cmd = ["pvesh", "get", endpoint]
        for k, v in params.items():
            cmd.extend([f"--{k.replace('_', '-')}", str(v)])
        cmd.extend(["--output-format", "json"])

        result = self.executor.run(cmd, timeout=self.timeout)
        if not result.ok:
            raise ClusterQueryError(
                f"pvesh get {endpoint} failed (exit {result.exit_code})",
                details=result.stderr.strip() or None,
            )
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ClusterQueryError(
                f"Invalid JSON from pvesh get {endpoint}", details=str(e)
            )

    def get_cluster_resources(self) -> List[Dict[str, Any]]:
        """Return VM/CT entries of ``/cluster/resources``."""
        data = self.run_pvesh("/cluster/resources", type="vm")
        # Older tooling wraps the list in {"data": [...]}
        if isinstance(data, dict):
            data = data.get('data')
        if not isinstance(data, list):
            raise ClusterQueryError("Unexpected /cluster/resources payload")
        return data

    def get_running_guests(self) -> List[Guest]:
        """
        Running, non-template guests: VMs first, then containers.
        """
        resources = self.get_cluster_resources()
        guests: Dict[str, List[Guest]] = {'vm': [], 'ct': []}

        for entry in resources:
            guest_type = GUEST_TYPES.get(entry.get('type'))
            if guest_type is None:
                continue
            if entry.get('status') != 'running':
                continue
            if safe_int(entry.get('template')) == 1:
                continue

            vmid = safe_int(entry.get('vmid'))
            if not vmid:
                continue

            default_name = f"{'VM' if guest_type == 'vm' else 'CT'}-{vmid}"
            guests[guest_type].append(Guest(
                vmid=vmid,
                node=clean_string(entry.get('node')),
                name=clean_string(entry.get('name'), default_name),
                guest_type=guest_type,
            ))

        logger.info(
            f"Found {len(guests['vm'])} running VMs and "
            f"{len(guests['ct'])} running CTs"
        )
        return guests['vm'] + guests['ct']

    def get_vm_config(self, node: str, vmid: int) -> Optional[Dict[str, Any]]:
        """VM configuration, or None when it cannot be read."""
        try:
            data = self.run_pvesh(f"/nodes/{node}/qemu/{vmid}/config")
        except ClusterQueryError as e:
            logger.debug(f"Cannot read config of vm {vmid}: {e}")
            return None
        return data if isinstance(data, dict) else None
