"""SSH backend: clusters on a fixed inventory of existing machines.

Networks, subnets, gateways, security groups and the other network
resources are logical here. They get deterministic ids and tags so the
tracker, discovery and teardown treat them like any other backend's
resources, but creating or deleting them touches no machine.

Nodes are real: ``create_node`` claims a free host, writes a claim file
with the node's tags and starts the user-data script in the background.
``terminate_node`` resets the host and returns it to the inventory.
Claim files let a fresh process rediscover which hosts belong to which
cluster.
"""

from __future__ import annotations

import asyncio
import json
import shlex
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Final

from loguru import logger

from kubeward.api.backend import (
    InterfaceInfo,
    NetworkInfo,
    RouteTableInfo,
    SecurityGroupInfo,
    SecurityRule,
    TagFilters,
    Tags,
)
from kubeward.api.model import NodeCredential, NodeInfo, NodeRequest, NodeRole
from kubeward.bootstrap import scripts
from kubeward.constants import KUBEWARD_DIR, ClusterTag, NodeState, ResourceClass
from kubeward.core.exceptions import (
    CommandError,
    KubewardError,
    QuotaExceededError,
    ResourceCreationError,
    ResourceNotFoundError,
    TransientNetworkError,
    ValidationError,
)
from kubeward.transport.ssh import SSHTransport

from .config import SSH

CLAIM_PATH: Final = f"{KUBEWARD_DIR}/claim.json"
USER_DATA_PATH: Final = "/tmp/kubeward-user-data.sh"
_PROBE_TIMEOUT: Final = 30.0

_ID_PREFIX: Final = {
    ResourceClass.NETWORK: "net",
    ResourceClass.SUBNET: "subnet",
    ResourceClass.GATEWAY: "gw",
    ResourceClass.NAT_GATEWAY: "nat",
    ResourceClass.ROUTE_TABLE: "rt",
    ResourceClass.SECURITY_GROUP: "sg",
    ResourceClass.ADDRESS: "addr",
    ResourceClass.INTERFACE: "eni",
    ResourceClass.LOAD_BALANCER: "lb",
}


@dataclass
class _Logical:
    resource_class: ResourceClass
    tags: dict[str, str]
    rules: list[SecurityRule] = field(default_factory=list)


@dataclass
class _Claim:
    host: str
    name: str
    role: NodeRole
    node_group: str
    machine_class: str
    tags: dict[str, str]


def node_id_for(host: str) -> str:
    return f"host-{host}"


def _name_index(name: str) -> int:
    _, _, suffix = name.rpartition("-")
    return int(suffix) if suffix.isdigit() else 0


def _matches(tags: Tags, filters: TagFilters) -> bool:
    return all(tags.get(k) in v for k, v in filters.items())


class SSHBackend:
    """Backend over a fixed set of SSH-reachable hosts."""

    def __init__(self, config: SSH) -> None:
        if not config.hosts:
            raise ValidationError("SSH backend needs at least one host")
        self.config = config
        self._logical: dict[str, _Logical] = {}
        self._claims: dict[str, _Claim] = {}
        self._lock = asyncio.Lock()
        self._inspected = False

    @property
    def name(self) -> str:
        return "ssh"

    @property
    def region(self) -> str:
        return self.config.region

    def _credential(self) -> NodeCredential:
        return NodeCredential(
            username=self.config.username,
            key_path=self.config.key_path,
            port=self.config.port,
        )

    async def _exec(self, host: str, command: str, timeout: float | None = None) -> str:
        async with SSHTransport(
            host=host,
            user=self.config.username,
            key_path=self.config.key_path,
            port=self.config.port,
            connect_timeout=self.config.connect_timeout,
        ) as ssh:
            return await ssh.run(command, timeout=timeout)

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    async def authenticate(self) -> None:
        await self._exec(self.config.hosts[0], "true", _PROBE_TIMEOUT)

    async def validate_permissions(self) -> None:
        """Every host must accept the key and allow passwordless sudo."""
        results = await asyncio.gather(
            *(self._exec(h, "sudo -n true", _PROBE_TIMEOUT) for h in self.config.hosts),
            return_exceptions=True,
        )
        failed = [h for h, r in zip(self.config.hosts, results, strict=True) if isinstance(r, BaseException)]
        if failed:
            raise ValidationError(f"Hosts without SSH access or passwordless sudo: {', '.join(failed)}")

    # -------------------------------------------------------------------------
    # Logical resources
    # -------------------------------------------------------------------------

    def _create_logical(self, resource_class: ResourceClass, name: str, tags: Tags) -> str:
        resource_id = f"{_ID_PREFIX[resource_class]}-{name}"
        if resource_id in self._logical:
            raise ResourceCreationError(resource_class, name, "already exists")
        self._logical[resource_id] = _Logical(resource_class, dict(tags))
        return resource_id

    def _get_logical(self, resource_class: ResourceClass, resource_id: str) -> _Logical:
        entry = self._logical.get(resource_id)
        if entry is None or entry.resource_class is not resource_class:
            raise ResourceNotFoundError(resource_class, resource_id)
        return entry

    def _delete_logical(self, resource_class: ResourceClass, resource_id: str) -> None:
        self._get_logical(resource_class, resource_id)
        del self._logical[resource_id]

    async def create_network(self, name: str, tags: Tags) -> str:
        return self._create_logical(ResourceClass.NETWORK, name, tags)

    async def describe_network(self, network_id: str) -> NetworkInfo | None:
        try:
            self._get_logical(ResourceClass.NETWORK, network_id)
        except ResourceNotFoundError:
            return None
        return NetworkInfo(id=network_id, available=True)

    async def delete_network(self, network_id: str) -> None:
        self._delete_logical(ResourceClass.NETWORK, network_id)

    async def create_subnet(self, network_id: str, name: str, tags: Tags) -> str:
        self._get_logical(ResourceClass.NETWORK, network_id)
        return self._create_logical(ResourceClass.SUBNET, name, tags)

    async def delete_subnet(self, subnet_id: str) -> None:
        self._delete_logical(ResourceClass.SUBNET, subnet_id)

    async def create_gateway(self, network_id: str, name: str, tags: Tags) -> str:
        self._get_logical(ResourceClass.NETWORK, network_id)
        return self._create_logical(ResourceClass.GATEWAY, name, tags)

    async def detach_gateway(self, gateway_id: str) -> None:
        self._get_logical(ResourceClass.GATEWAY, gateway_id)

    async def delete_gateway(self, gateway_id: str) -> None:
        self._delete_logical(ResourceClass.GATEWAY, gateway_id)

    async def delete_nat_gateway(self, nat_gateway_id: str) -> None:
        self._delete_logical(ResourceClass.NAT_GATEWAY, nat_gateway_id)

    async def describe_route_table(self, route_table_id: str) -> RouteTableInfo | None:
        try:
            self._get_logical(ResourceClass.ROUTE_TABLE, route_table_id)
        except ResourceNotFoundError:
            return None
        return RouteTableInfo(id=route_table_id)

    async def delete_route_table(self, route_table_id: str) -> None:
        self._delete_logical(ResourceClass.ROUTE_TABLE, route_table_id)

    async def create_security_group(self, network_id: str, name: str, tags: Tags) -> str:
        self._get_logical(ResourceClass.NETWORK, network_id)
        return self._create_logical(ResourceClass.SECURITY_GROUP, name, tags)

    async def describe_security_group(self, group_id: str) -> SecurityGroupInfo | None:
        try:
            entry = self._get_logical(ResourceClass.SECURITY_GROUP, group_id)
        except ResourceNotFoundError:
            return None
        return SecurityGroupInfo(id=group_id, name=entry.tags.get("Name", group_id))

    async def authorize_ingress(self, group_id: str, rules: Sequence[SecurityRule]) -> None:
        self._get_logical(ResourceClass.SECURITY_GROUP, group_id).rules.extend(rules)

    async def revoke_rules(self, group_id: str) -> None:
        self._get_logical(ResourceClass.SECURITY_GROUP, group_id).rules.clear()

    async def delete_security_group(self, group_id: str) -> None:
        self._delete_logical(ResourceClass.SECURITY_GROUP, group_id)

    async def allocate_address(self, tags: Tags) -> str:
        return self._create_logical(ResourceClass.ADDRESS, tags.get("Name", "address"), tags)

    async def release_address(self, address_id: str) -> None:
        self._delete_logical(ResourceClass.ADDRESS, address_id)

    async def describe_interface(self, interface_id: str) -> InterfaceInfo | None:
        try:
            self._get_logical(ResourceClass.INTERFACE, interface_id)
        except ResourceNotFoundError:
            return None
        return InterfaceInfo(id=interface_id)

    async def delete_interface(self, interface_id: str) -> None:
        self._delete_logical(ResourceClass.INTERFACE, interface_id)

    async def create_load_balancer(
        self, name: str, subnet_ids: Sequence[str], tags: Tags,
    ) -> str:
        return self._create_logical(ResourceClass.LOAD_BALANCER, name, tags)

    async def delete_load_balancer(self, load_balancer_id: str) -> None:
        self._delete_logical(ResourceClass.LOAD_BALANCER, load_balancer_id)

    async def create_volume(self, name: str, size_gb: int, tags: Tags) -> str:
        raise ValidationError("The ssh backend has no block volumes")

    async def delete_volume(self, volume_id: str) -> None:
        raise ResourceNotFoundError(ResourceClass.VOLUME, volume_id)

    async def snapshot_volume(self, volume_id: str, description: str, tags: Tags) -> str:
        raise ResourceNotFoundError(ResourceClass.VOLUME, volume_id)

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    def _node_info(self, node_id: str, claim: _Claim) -> NodeInfo:
        return NodeInfo(
            id=node_id,
            role=claim.role,
            machine_class=claim.machine_class,
            node_group=claim.node_group,
            private_ip=claim.host,
            credential=self._credential(),
        )

    async def _inspect_hosts(self) -> None:
        """Rebuild claims from the claim files left on hosts."""
        if self._inspected:
            return
        self._inspected = True

        async def read(host: str) -> tuple[str, str | None]:
            try:
                return host, await self._exec(host, f"sudo cat {CLAIM_PATH}", _PROBE_TIMEOUT)
            except CommandError:
                return host, None
            except (KubewardError, OSError) as e:
                logger.bind(backend=self.name).warning(f"Could not inspect host {host}: {e}")
                return host, None

        for host, raw in await asyncio.gather(*(read(h) for h in self.config.hosts)):
            node_id = node_id_for(host)
            if raw is None or node_id in self._claims:
                continue
            try:
                data = json.loads(raw)
                self._claims[node_id] = _Claim(
                    host=host,
                    name=data["name"],
                    role=NodeRole(data["role"]),
                    node_group=data.get("node_group", ""),
                    machine_class=data.get("machine_class", ""),
                    tags=dict(data.get("tags", {})),
                )
            except (ValueError, KeyError) as e:
                logger.bind(backend=self.name).warning(f"Ignoring unreadable claim on {host}: {e}")

    async def create_node(self, request: NodeRequest) -> NodeInfo:
        async with self._lock:
            await self._inspect_hosts()
            claimed = {c.host for c in self._claims.values()}
            free = [h for h in self.config.hosts if h not in claimed]
            if not free:
                raise QuotaExceededError(
                    f"No free host for {request.name}: all {len(self.config.hosts)} hosts are claimed"
                )
            host = free[0]
            node_id = node_id_for(host)
            claim = _Claim(
                host=host,
                name=request.name,
                role=request.role,
                node_group=request.node_group,
                machine_class=request.machine_class,
                tags=dict(request.tags),
            )
            self._claims[node_id] = claim

        payload = json.dumps({
            "name": claim.name,
            "role": str(claim.role),
            "node_group": claim.node_group,
            "machine_class": claim.machine_class,
            "tags": claim.tags,
        })
        try:
            await self._exec(host, scripts.write_file_command(CLAIM_PATH, payload))
            await self._exec(host, scripts.write_file_command(USER_DATA_PATH, request.user_data))
            await self._exec(
                host,
                f"sudo setsid nohup bash {shlex.quote(USER_DATA_PATH)} > /dev/null 2>&1 < /dev/null &",
            )
        except (KubewardError, OSError) as e:
            raise ResourceCreationError(ResourceClass.NODE, request.name, str(e), node_id) from e

        logger.bind(backend=self.name, node_id=node_id).info(f"Claimed host {host} for {request.name}")
        return self._node_info(node_id, claim)

    async def describe_node(self, node_id: str) -> NodeInfo | None:
        claim = self._claims.get(node_id)
        return self._node_info(node_id, claim) if claim is not None else None

    async def describe_node_state(self, node_id: str) -> NodeState:
        if node_id in self._claims:
            return NodeState.RUNNING
        if node_id in {node_id_for(h) for h in self.config.hosts}:
            return NodeState.TERMINATED
        raise ResourceNotFoundError(ResourceClass.NODE, node_id)

    async def terminate_node(self, node_id: str) -> None:
        claim = self._claims.get(node_id)
        if claim is None:
            raise ResourceNotFoundError(ResourceClass.NODE, node_id)
        try:
            await self._exec(
                claim.host,
                f"{scripts.reset_command()}; sudo rm -rf {KUBEWARD_DIR} {USER_DATA_PATH}",
            )
        except CommandError as e:
            logger.bind(backend=self.name, node_id=node_id).warning(f"Reset incomplete: {e}")
        except (OSError, TransientNetworkError) as e:
            # Keep the claim so a later teardown retries the reset.
            raise TransientNetworkError(f"Cannot reach {claim.host} to reset it: {e}") from e
        del self._claims[node_id]

    async def list_nodes(self, cluster_name: str) -> list[NodeInfo]:
        await self._inspect_hosts()
        order = {node_id_for(h): i for i, h in enumerate(self.config.hosts)}
        nodes = [
            self._node_info(node_id, claim)
            for node_id, claim in self._claims.items()
            if claim.tags.get(ClusterTag.CLUSTER_NAME) == cluster_name
        ]
        # Primary first: control-plane nodes ordered by their name index.
        return sorted(nodes, key=lambda n: (
            n.role is not NodeRole.CONTROL_PLANE,
            _name_index(self._claims[n.id].name),
            order.get(n.id, 0),
        ))

    async def run_command(self, node: NodeInfo, command: str, timeout: float) -> str:
        host = node.address
        if host is None:
            raise TransientNetworkError(f"Node {node.id} has no address")
        return await self._exec(host, command, timeout)

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    async def find_resources(
        self, resource_class: ResourceClass, filters: TagFilters,
    ) -> list[str]:
        if resource_class is ResourceClass.NODE:
            await self._inspect_hosts()
            return [
                node_id for node_id, claim in self._claims.items()
                if _matches(claim.tags, filters)
            ]
        return [
            rid for rid, entry in self._logical.items()
            if entry.resource_class is resource_class and _matches(entry.tags, filters)
        ]
