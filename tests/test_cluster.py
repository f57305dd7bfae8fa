"""
Tests for Proxmox cluster queries.
"""

import pytest
import json
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from conftest import FakeExecutor
from ntfy_monitor.cluster import ClusterClient, Guest
from ntfy_monitor.exceptions import ClusterQueryError
from ntfy_monitor.executor import CommandResult


RESOURCES = [
    {"type": "lxc", "vmid": 200, "node": "pve1", "name": "web", "status": "running"},
    {"type": "qemu", "vmid": 101, "node": "pve1", "name": "db", "status": "running"},
    {"type": "qemu", "vmid": 102, "node": "pve2", "name": "old", "status": "stopped"},
    {"type": "qemu", "vmid": 9000, "node": "pve1", "name": "tmpl", "status": "running", "template": 1},
    {"type": "qemu", "vmid": 103, "node": "pve2", "status": "running"},
    {"type": "lxc", "vmid": 201, "node": "pve2", "status": "running", "template": 0},
    {"type": "storage", "id": "storage/pve1/local", "node": "pve1", "status": "available"},
]


def client_for(payload, exit_code=0, stderr=""):
    executor = FakeExecutor(lambda argv: CommandResult(exit_code, json.dumps(payload), stderr))
    return ClusterClient(executor), executor


class TestGuest:

    def test_labels(self):
        guest = Guest(101, "pve1", "db", "vm")
        assert guest.is_vm is True
        assert guest.label == "vm 101"
        assert guest.tags == "vm,db"
        assert Guest(200, "pve1", "web", "ct").is_vm is False


class TestClusterClient:
    """Tests for ClusterClient."""

    def test_resources_command(self):
        client, executor = client_for([])

        client.get_cluster_resources()

        assert executor.calls == [[
            "pvesh", "get", "/cluster/resources", "--type", "vm", "--output-format", "json"
        ]]

    def test_running_guests_filtered_and_ordered(self):
        client, _ = client_for(RESOURCES)

        guests = client.get_running_guests()

        assert [g.label for g in guests] == ["vm 101", "vm 103", "ct 200", "ct 201"]
        assert [g.name for g in guests] == ["db", "VM-103", "web", "CT-201"]
        assert guests[0].node == "pve1"

    def test_data_wrapper(self):
        client, _ = client_for({"data": RESOURCES[:2]})
        assert len(client.get_running_guests()) == 2

    def test_unexpected_payload(self):
        client, _ = client_for({"errors": "nope"})
        with pytest.raises(ClusterQueryError):
            client.get_cluster_resources()

    def test_pvesh_failure(self):
        client, _ = client_for([], exit_code=255, stderr="ipcc_send_rec failed")

        with pytest.raises(ClusterQueryError) as exc_info:
            client.get_running_guests()

        assert "ipcc_send_rec failed" in str(exc_info.value)

    def test_invalid_json(self):
        executor = FakeExecutor(lambda argv: CommandResult(0, "garbage"))
        with pytest.raises(ClusterQueryError):
            ClusterClient(executor).get_cluster_resources()

    def test_vm_config(self):
        client, executor = client_for({"ostype": "win10"})

        assert client.get_vm_config("pve1", 101) == {"ostype": "win10"}
        assert executor.calls[0][:3] == ["pvesh", "get", "/nodes/pve1/qemu/101/config"]

    def test_vm_config_unreadable(self):
        client, _ = client_for({}, exit_code=2)
        assert client.get_vm_config("pve1", 101) is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
