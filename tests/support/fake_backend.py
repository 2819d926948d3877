"""In-memory backend for unit tests.

Every capability call is appended to ``calls`` as ``(method, first_arg)``
so tests can assert ordering. Failures are scripted per method with
``fail`` and per remote command with ``fail_command``. Remote commands
are answered from the simulated cluster state.
"""

from __future__ import annotations

import itertools
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Final

from kubeward.api.backend import (
    InterfaceInfo,
    NetworkInfo,
    RouteTableInfo,
    SecurityGroupInfo,
    SecurityRule,
    TagFilters,
    Tags,
)
from kubeward.api.model import NodeCredential, NodeInfo, NodeRequest
from kubeward.bootstrap import scripts
from kubeward.constants import NodeState, ResourceClass
from kubeward.core.exceptions import CommandError, ResourceNotFoundError

_PREFIX: Final = {
    ResourceClass.NETWORK: "vpc",
    ResourceClass.SUBNET: "subnet",
    ResourceClass.GATEWAY: "igw",
    ResourceClass.NAT_GATEWAY: "nat",
    ResourceClass.ROUTE_TABLE: "rtb",
    ResourceClass.SECURITY_GROUP: "sg",
    ResourceClass.NODE: "i",
    ResourceClass.ADDRESS: "eipalloc",
    ResourceClass.INTERFACE: "eni",
    ResourceClass.VOLUME: "vol",
    ResourceClass.LOAD_BALANCER: "lb",
}

ADMIN_CONF: Final = """\
apiVersion: v1
kind: Config
clusters:
- name: kubernetes
  cluster:
    certificate-authority-data: Q0EtREFUQQ==
    server: https://10.0.0.1:6443
users:
- name: kubernetes-admin
  user:
    client-certificate-data: Q0VSVA==
    client-key-data: S0VZ
contexts:
- name: kubernetes-admin@kubernetes
  context:
    cluster: kubernetes
    user: kubernetes-admin
current-context: kubernetes-admin@kubernetes
"""


@dataclass
class FakeResource:
    id: str
    resource_class: ResourceClass
    tags: dict[str, str]
    rules: list[SecurityRule] = field(default_factory=list)
    is_default: bool = False
    is_main: bool = False
    attached_node_id: str | None = None


@dataclass
class FakeNode:
    info: NodeInfo
    name: str
    state: NodeState = NodeState.RUNNING
    tags: dict[str, str] = field(default_factory=dict)


class FakeBackend:
    """Backend double with scriptable failures."""

    def __init__(self, name: str = "fake", region: str = "test-1") -> None:
        self._name = name
        self._region = region
        self.calls: list[tuple[str, str]] = []
        self.commands: list[tuple[str, str]] = []
        self.resources: dict[str, FakeResource] = {}
        self.nodes: dict[str, FakeNode] = {}
        self.requests: list[NodeRequest] = []
        self._ids = itertools.count(1)
        self._failures: dict[str, list[tuple[BaseException, int | None]]] = {}
        self._command_failures: list[list[object]] = []

        # Simulated cluster behavior
        self.marker_output = "complete"
        self.nodes_ready = True
        self.admin_conf = ADMIN_CONF
        self.stuck_nodes: set[str] = set()

    @property
    def name(self) -> str:
        return self._name

    @property
    def region(self) -> str:
        return self._region

    # -------------------------------------------------------------------------
    # Scripting
    # -------------------------------------------------------------------------

    def fail(self, method: str, error: BaseException, times: int | None = 1) -> None:
        """Raise ``error`` from ``method`` the next ``times`` calls (None: always)."""
        self._failures.setdefault(method, []).append((error, times))

    def fail_command(self, fragment: str, error: BaseException, times: int | None = None) -> None:
        """Raise ``error`` from ``run_command`` for commands containing ``fragment``."""
        self._command_failures.append([fragment, error, times])

    def seed(
        self,
        resource_class: ResourceClass,
        tags: Tags,
        **attrs: object,
    ) -> str:
        """Create a resource directly, bypassing the call log."""
        rid = self._new_id(resource_class)
        self.resources[rid] = FakeResource(rid, resource_class, dict(tags), **attrs)  # type: ignore[arg-type]
        return rid

    def called(self, method: str) -> list[str]:
        return [arg for m, arg in self.calls if m == method]

    def live(self, resource_class: ResourceClass) -> list[str]:
        if resource_class is ResourceClass.NODE:
            return [n for n, node in self.nodes.items() if node.state is not NodeState.TERMINATED]
        return [r.id for r in self.resources.values() if r.resource_class is resource_class]

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _record(self, method: str, arg: object = "") -> None:
        self.calls.append((method, str(arg)))
        queue = self._failures.get(method)
        if not queue:
            return
        error, times = queue[0]
        if times is not None:
            if times <= 1:
                queue.pop(0)
            else:
                queue[0] = (error, times - 1)
        raise error

    def _new_id(self, resource_class: ResourceClass) -> str:
        return f"{_PREFIX[resource_class]}-{next(self._ids):04d}"

    def _create(self, resource_class: ResourceClass, tags: Tags) -> str:
        rid = self._new_id(resource_class)
        self.resources[rid] = FakeResource(rid, resource_class, dict(tags))
        return rid

    def _get(self, resource_class: ResourceClass, rid: str) -> FakeResource:
        res = self.resources.get(rid)
        if res is None or res.resource_class is not resource_class:
            raise ResourceNotFoundError(resource_class, rid)
        return res

    def _delete(self, resource_class: ResourceClass, rid: str) -> None:
        self._get(resource_class, rid)
        del self.resources[rid]

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    async def authenticate(self) -> None:
        self._record("authenticate")

    async def validate_permissions(self) -> None:
        self._record("validate_permissions")

    # -------------------------------------------------------------------------
    # Network
    # -------------------------------------------------------------------------

    async def create_network(self, name: str, tags: Tags) -> str:
        self._record("create_network", name)
        return self._create(ResourceClass.NETWORK, tags)

    async def describe_network(self, network_id: str) -> NetworkInfo | None:
        self._record("describe_network", network_id)
        if network_id not in self.resources:
            return None
        return NetworkInfo(id=network_id, cidr="10.0.0.0/16", available=True)

    async def delete_network(self, network_id: str) -> None:
        self._record("delete_network", network_id)
        self._delete(ResourceClass.NETWORK, network_id)

    async def create_subnet(self, network_id: str, name: str, tags: Tags) -> str:
        self._record("create_subnet", name)
        return self._create(ResourceClass.SUBNET, tags)

    async def delete_subnet(self, subnet_id: str) -> None:
        self._record("delete_subnet", subnet_id)
        self._delete(ResourceClass.SUBNET, subnet_id)

    async def create_gateway(self, network_id: str, name: str, tags: Tags) -> str:
        self._record("create_gateway", name)
        return self._create(ResourceClass.GATEWAY, tags)

    async def detach_gateway(self, gateway_id: str) -> None:
        self._record("detach_gateway", gateway_id)
        self._get(ResourceClass.GATEWAY, gateway_id)

    async def delete_gateway(self, gateway_id: str) -> None:
        self._record("delete_gateway", gateway_id)
        self._delete(ResourceClass.GATEWAY, gateway_id)

    async def delete_nat_gateway(self, nat_gateway_id: str) -> None:
        self._record("delete_nat_gateway", nat_gateway_id)
        self._delete(ResourceClass.NAT_GATEWAY, nat_gateway_id)

    async def describe_route_table(self, route_table_id: str) -> RouteTableInfo | None:
        self._record("describe_route_table", route_table_id)
        res = self.resources.get(route_table_id)
        return RouteTableInfo(route_table_id, res.is_main) if res is not None else None

    async def delete_route_table(self, route_table_id: str) -> None:
        self._record("delete_route_table", route_table_id)
        self._delete(ResourceClass.ROUTE_TABLE, route_table_id)

    # -------------------------------------------------------------------------
    # Security
    # -------------------------------------------------------------------------

    async def create_security_group(self, network_id: str, name: str, tags: Tags) -> str:
        self._record("create_security_group", name)
        return self._create(ResourceClass.SECURITY_GROUP, tags)

    async def describe_security_group(self, group_id: str) -> SecurityGroupInfo | None:
        self._record("describe_security_group", group_id)
        res = self.resources.get(group_id)
        if res is None:
            return None
        return SecurityGroupInfo(group_id, res.tags.get("Name", ""), res.is_default)

    async def authorize_ingress(self, group_id: str, rules: Sequence[SecurityRule]) -> None:
        self._record("authorize_ingress", group_id)
        self._get(ResourceClass.SECURITY_GROUP, group_id).rules.extend(rules)

    async def revoke_rules(self, group_id: str) -> None:
        self._record("revoke_rules", group_id)
        self._get(ResourceClass.SECURITY_GROUP, group_id).rules.clear()

    async def delete_security_group(self, group_id: str) -> None:
        self._record("delete_security_group", group_id)
        self._delete(ResourceClass.SECURITY_GROUP, group_id)

    # -------------------------------------------------------------------------
    # Compute
    # -------------------------------------------------------------------------

    async def create_node(self, request: NodeRequest) -> NodeInfo:
        self._record("create_node", request.name)
        self.requests.append(request)
        node_id = self._new_id(ResourceClass.NODE)
        n = len(self.requests)
        info = NodeInfo(
            id=node_id,
            role=request.role,
            machine_class=request.machine_class,
            node_group=request.node_group,
            private_ip=f"10.0.1.{n}",
            public_ip=f"203.0.113.{n}",
            credential=NodeCredential(username="ubuntu", key_path="/dev/null"),
        )
        self.nodes[node_id] = FakeNode(info=info, name=request.name, tags=dict(request.tags))
        return info

    async def describe_node(self, node_id: str) -> NodeInfo | None:
        self._record("describe_node", node_id)
        node = self.nodes.get(node_id)
        return node.info if node is not None else None

    async def describe_node_state(self, node_id: str) -> NodeState:
        self._record("describe_node_state", node_id)
        node = self.nodes.get(node_id)
        if node is None:
            raise ResourceNotFoundError(ResourceClass.NODE, node_id)
        return node.state

    async def terminate_node(self, node_id: str) -> None:
        self._record("terminate_node", node_id)
        node = self.nodes.get(node_id)
        if node is None:
            raise ResourceNotFoundError(ResourceClass.NODE, node_id)
        node.state = (
            NodeState.SHUTTING_DOWN if node_id in self.stuck_nodes else NodeState.TERMINATED
        )

    async def list_nodes(self, cluster_name: str) -> list[NodeInfo]:
        self._record("list_nodes", cluster_name)
        return [
            n.info for n in self.nodes.values()
            if n.state is not NodeState.TERMINATED
            and n.tags.get("kubeward.io/cluster-name") == cluster_name
        ]

    # -------------------------------------------------------------------------
    # Addressing
    # -------------------------------------------------------------------------

    async def allocate_address(self, tags: Tags) -> str:
        self._record("allocate_address")
        return self._create(ResourceClass.ADDRESS, tags)

    async def release_address(self, address_id: str) -> None:
        self._record("release_address", address_id)
        self._delete(ResourceClass.ADDRESS, address_id)

    async def describe_interface(self, interface_id: str) -> InterfaceInfo | None:
        self._record("describe_interface", interface_id)
        res = self.resources.get(interface_id)
        return InterfaceInfo(interface_id, res.attached_node_id) if res is not None else None

    async def delete_interface(self, interface_id: str) -> None:
        self._record("delete_interface", interface_id)
        self._delete(ResourceClass.INTERFACE, interface_id)

    # -------------------------------------------------------------------------
    # Remote execution
    # -------------------------------------------------------------------------

    def _live_nodes(self) -> list[FakeNode]:
        return [n for n in self.nodes.values() if n.state is NodeState.RUNNING]

    async def run_command(self, node: NodeInfo, command: str, timeout: float) -> str:
        self.commands.append((node.id, command))
        for entry in self._command_failures:
            fragment, error, times = entry
            if fragment in command and times != 0:
                if times is not None:
                    entry[2] = times - 1  # type: ignore[operator]
                raise error  # type: ignore[misc]

        if command == scripts.marker_check_command():
            return self.marker_output + "\n"
        if command == scripts.token_create_command():
            return "abcdef.0123456789abcdef\n"
        if command == scripts.certificate_key_command():
            return "c3d4e5f6\n"
        if command == scripts.ca_hash_command():
            return "deadbeef\n"
        if command == scripts.node_status_command():
            ready = "True" if self.nodes_ready else "False"
            return "".join(f"{n.name} {ready}\n" for n in self._live_nodes())
        if command == scripts.node_addresses_command():
            return "".join(f"{n.name} {n.info.private_ip}\n" for n in self._live_nodes())
        if command == scripts.component_status_command():
            return "coredns-1 Running\nkube-apiserver Running\n"
        if command == scripts.read_admin_kubeconfig_command():
            return self.admin_conf
        if command == scripts.node_metrics_command():
            return "500 2000 1024 4096\n"
        if "false" == command.strip():
            raise CommandError(command, 1, "")
        return ""

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    async def find_resources(
        self, resource_class: ResourceClass, filters: TagFilters,
    ) -> list[str]:
        self._record("find_resources", resource_class)
        if resource_class is ResourceClass.NODE:
            return [
                nid for nid, n in self.nodes.items()
                if n.state is not NodeState.TERMINATED
                and all(n.tags.get(k) in v for k, v in filters.items())
            ]
        return [
            r.id for r in self.resources.values()
            if r.resource_class is resource_class
            and all(r.tags.get(k) in v for k, v in filters.items())
        ]

    # -------------------------------------------------------------------------
    # Capacity
    # -------------------------------------------------------------------------

    async def create_load_balancer(
        self, name: str, subnet_ids: Sequence[str], tags: Tags,
    ) -> str:
        self._record("create_load_balancer", name)
        return self._create(ResourceClass.LOAD_BALANCER, tags)

    async def delete_load_balancer(self, load_balancer_id: str) -> None:
        self._record("delete_load_balancer", load_balancer_id)
        self._delete(ResourceClass.LOAD_BALANCER, load_balancer_id)

    async def create_volume(self, name: str, size_gb: int, tags: Tags) -> str:
        self._record("create_volume", name)
        return self._create(ResourceClass.VOLUME, tags)

    async def delete_volume(self, volume_id: str) -> None:
        self._record("delete_volume", volume_id)
        self._delete(ResourceClass.VOLUME, volume_id)

    async def snapshot_volume(self, volume_id: str, description: str, tags: Tags) -> str:
        self._record("snapshot_volume", volume_id)
        self._get(ResourceClass.VOLUME, volume_id)
        return f"snap-{next(self._ids):04d}"
