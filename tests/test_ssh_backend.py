from __future__ import annotations

import json

import pytest

from kubeward.api.backend import SecurityRule
from kubeward.api.model import NodeRequest, NodeRole
from kubeward.backends.ssh import SSH
from kubeward.backends.ssh.backend import CLAIM_PATH, SSHBackend, node_id_for
from kubeward.constants import NodeState, ResourceClass
from kubeward.core.exceptions import (
    CommandError,
    QuotaExceededError,
    ResourceCreationError,
    ResourceNotFoundError,
    TransientNetworkError,
    ValidationError,
)
from kubeward.tags import cluster_tags

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


class Hosts:
    """Stands in for SSH: answers claim reads and records every command."""

    def __init__(self, claims: dict[str, dict] | None = None) -> None:
        self.claims = claims or {}
        self.commands: list[tuple[str, str]] = []
        self.unreachable: set[str] = set()

    async def __call__(self, host: str, command: str, timeout: float | None = None) -> str:
        self.commands.append((host, command))
        if host in self.unreachable:
            raise TransientNetworkError(f"{host} unreachable")
        if command == f"sudo cat {CLAIM_PATH}":
            if host not in self.claims:
                raise CommandError(command, 1, "No such file or directory")
            return json.dumps(self.claims[host])
        return ""


def request(name: str, role: NodeRole = NodeRole.WORKER, cluster: str = "dev") -> NodeRequest:
    group = "" if role is NodeRole.CONTROL_PLANE else "default"
    return NodeRequest(
        name=name,
        role=role,
        machine_class="bare-metal",
        network_id="net-dev-vpc",
        subnet_id=None,
        security_group_ids=(),
        user_data="#!/bin/bash\necho hi\n",
        tags=cluster_tags(cluster, name, role=role, node_group=group),
        node_group=group,
    )


@pytest.fixture
def hosts() -> Hosts:
    return Hosts()


@pytest.fixture
def ssh_backend(hosts: Hosts, monkeypatch: pytest.MonkeyPatch) -> SSHBackend:
    backend = SSH(hosts=["10.0.0.1", "10.0.0.2"], username="ops").create_backend()
    monkeypatch.setattr(backend, "_exec", hosts)
    return backend


class TestConfig:
    def test_hosts_become_tuple(self):
        assert SSH(hosts=["a", "b"]).hosts == ("a", "b")

    def test_needs_hosts(self):
        with pytest.raises(ValidationError):
            SSH().create_backend()

    def test_identity(self, ssh_backend: SSHBackend):
        assert ssh_backend.name == "ssh"
        assert ssh_backend.region == "local"


class TestLogicalResources:
    async def test_network_lifecycle(self, ssh_backend: SSHBackend, hosts: Hosts):
        net = await ssh_backend.create_network("dev-vpc", cluster_tags("dev", "dev-vpc"))
        assert net == "net-dev-vpc"
        info = await ssh_backend.describe_network(net)
        assert info is not None and info.available

        await ssh_backend.delete_network(net)
        assert await ssh_backend.describe_network(net) is None
        with pytest.raises(ResourceNotFoundError):
            await ssh_backend.delete_network(net)
        assert hosts.commands == []

    async def test_subnet_needs_network(self, ssh_backend: SSHBackend):
        with pytest.raises(ResourceNotFoundError):
            await ssh_backend.create_subnet("net-missing", "dev-subnet", {})

    async def test_duplicate_name_rejected(self, ssh_backend: SSHBackend):
        await ssh_backend.create_network("dev-vpc", {})
        with pytest.raises(ResourceCreationError):
            await ssh_backend.create_network("dev-vpc", {})

    async def test_security_group_rules(self, ssh_backend: SSHBackend):
        net = await ssh_backend.create_network("dev-vpc", {})
        sg = await ssh_backend.create_security_group(net, "dev-sg", {"Name": "dev-sg"})
        await ssh_backend.authorize_ingress(sg, [SecurityRule("tcp", 22, 22, "0.0.0.0/0")])
        await ssh_backend.revoke_rules(sg)

        info = await ssh_backend.describe_security_group(sg)
        assert info is not None
        assert info.name == "dev-sg"
        assert not info.is_default

    async def test_find_by_tags(self, ssh_backend: SSHBackend):
        net = await ssh_backend.create_network("dev-vpc", cluster_tags("dev", "dev-vpc"))
        await ssh_backend.create_network("prod-vpc", cluster_tags("prod", "prod-vpc"))

        found = await ssh_backend.find_resources(
            ResourceClass.NETWORK, {"kubeward.io/cluster-name": ["dev"]},
        )
        assert found == [net]

    async def test_volumes_unsupported(self, ssh_backend: SSHBackend):
        with pytest.raises(ValidationError):
            await ssh_backend.create_volume("data", 10, {})
        with pytest.raises(ResourceNotFoundError):
            await ssh_backend.delete_volume("vol-1")


class TestNodes:
    async def test_create_claims_first_free_host(self, ssh_backend: SSHBackend, hosts: Hosts):
        node = await ssh_backend.create_node(request("dev-cp-1", NodeRole.CONTROL_PLANE))

        assert node.id == node_id_for("10.0.0.1")
        assert node.private_ip == "10.0.0.1"
        assert node.credential is not None and node.credential.username == "ops"
        written = [c for h, c in hosts.commands if h == "10.0.0.1"]
        assert any(CLAIM_PATH in c and "sudo tee" in c for c in written)
        assert any("setsid nohup bash" in c for c in written)
        assert await ssh_backend.describe_node_state(node.id) is NodeState.RUNNING

    async def test_inventory_exhausted(self, ssh_backend: SSHBackend):
        await ssh_backend.create_node(request("dev-cp-1", NodeRole.CONTROL_PLANE))
        await ssh_backend.create_node(request("dev-default-1"))
        with pytest.raises(QuotaExceededError):
            await ssh_backend.create_node(request("dev-default-2"))

    async def test_failed_start_reports_node_id(self, ssh_backend: SSHBackend, hosts: Hosts):
        hosts.unreachable.add("10.0.0.1")
        with pytest.raises(ResourceCreationError) as exc_info:
            await ssh_backend.create_node(request("dev-cp-1", NodeRole.CONTROL_PLANE))
        assert exc_info.value.resource_id == node_id_for("10.0.0.1")

    async def test_terminate_returns_host(self, ssh_backend: SSHBackend, hosts: Hosts):
        node = await ssh_backend.create_node(request("dev-cp-1", NodeRole.CONTROL_PLANE))

        await ssh_backend.terminate_node(node.id)

        assert any("kubeadm reset" in c for _, c in hosts.commands)
        assert await ssh_backend.describe_node_state(node.id) is NodeState.TERMINATED
        again = await ssh_backend.create_node(request("dev-cp-1", NodeRole.CONTROL_PLANE))
        assert again.id == node.id

    async def test_terminate_unreachable_keeps_claim(self, ssh_backend: SSHBackend, hosts: Hosts):
        node = await ssh_backend.create_node(request("dev-cp-1", NodeRole.CONTROL_PLANE))
        hosts.unreachable.add("10.0.0.1")

        with pytest.raises(TransientNetworkError):
            await ssh_backend.terminate_node(node.id)
        assert await ssh_backend.describe_node_state(node.id) is NodeState.RUNNING

    async def test_unknown_node(self, ssh_backend: SSHBackend):
        with pytest.raises(ResourceNotFoundError):
            await ssh_backend.describe_node_state("host-192.0.2.1")
        with pytest.raises(ResourceNotFoundError):
            await ssh_backend.terminate_node("host-192.0.2.1")

    async def test_claims_rediscovered_by_new_process(self, monkeypatch: pytest.MonkeyPatch):
        hosts = Hosts({
            "10.0.0.2": {
                "name": "dev-cp-1",
                "role": "control-plane",
                "tags": cluster_tags("dev", "dev-cp-1", role=NodeRole.CONTROL_PLANE),
            },
            "10.0.0.1": {
                "name": "dev-default-1",
                "role": "worker",
                "node_group": "default",
                "tags": cluster_tags("dev", "dev-default-1", role=NodeRole.WORKER),
            },
        })
        backend = SSH(hosts=("10.0.0.1", "10.0.0.2", "10.0.0.3")).create_backend()
        monkeypatch.setattr(backend, "_exec", hosts)

        nodes = await backend.list_nodes("dev")

        assert [(n.private_ip, n.role) for n in nodes] == [
            ("10.0.0.2", NodeRole.CONTROL_PLANE),
            ("10.0.0.1", NodeRole.WORKER),
        ]
        found = await backend.find_resources(ResourceClass.NODE, {"Cluster": ["dev"]})
        assert sorted(found) == [node_id_for("10.0.0.1"), node_id_for("10.0.0.2")]

        fresh = await backend.create_node(request("dev-default-2"))
        assert fresh.private_ip == "10.0.0.3"

    async def test_list_orders_by_name_index(self, ssh_backend: SSHBackend):
        cp = await ssh_backend.create_node(request("dev-cp-1", NodeRole.CONTROL_PLANE))
        worker = await ssh_backend.create_node(request("dev-default-1"))
        assert [n.id for n in await ssh_backend.list_nodes("dev")] == [cp.id, worker.id]
        assert await ssh_backend.list_nodes("prod") == []

    async def test_run_command_uses_node_address(self, ssh_backend: SSHBackend, hosts: Hosts):
        node = await ssh_backend.create_node(request("dev-cp-1", NodeRole.CONTROL_PLANE))
        await ssh_backend.run_command(node, "uptime", 5.0)
        assert hosts.commands[-1] == ("10.0.0.1", "uptime")
