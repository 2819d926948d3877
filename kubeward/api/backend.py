"""Backend capability interface.

The orchestration core talks to infrastructure only through this
protocol. A backend maps each capability onto its own API (EC2, a
fleet of SSH hosts, ...) and translates native failures into the
exceptions in ``kubeward.core.exceptions``:

- a resource that does not exist -> ResourceNotFoundError
- a resource still referenced elsewhere -> DependencyViolationError
- throttling, resets, 5xx -> TransientNetworkError
- rejected credentials -> AuthenticationError
- capacity limits -> QuotaExceededError
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from kubeward.api.model import NodeInfo, NodeRequest
from kubeward.constants import NodeState, ResourceClass

type Tags = Mapping[str, str]
type TagFilters = Mapping[str, Sequence[str]]


# =============================================================================
# Descriptions returned by backends
# =============================================================================


@dataclass(frozen=True, slots=True)
class NetworkInfo:
    id: str
    cidr: str = ""
    available: bool = True


@dataclass(frozen=True, slots=True)
class SecurityRule:
    """Ingress rule. ``source`` is a CIDR or a security group id."""

    protocol: str
    from_port: int
    to_port: int
    source: str
    description: str = ""


@dataclass(frozen=True, slots=True)
class SecurityGroupInfo:
    id: str
    name: str
    is_default: bool = False


@dataclass(frozen=True, slots=True)
class RouteTableInfo:
    id: str
    is_main: bool = False


@dataclass(frozen=True, slots=True)
class InterfaceInfo:
    id: str
    attached_node_id: str | None = None


# =============================================================================
# Protocol
# =============================================================================


@runtime_checkable
class Backend(Protocol):
    """Everything the provisioning pipeline and teardown need from a backend.

    All operations are coroutines. Create operations return the new
    resource id; delete operations return nothing and raise
    ResourceNotFoundError when the id is already gone.
    """

    @property
    def name(self) -> str: ...

    @property
    def region(self) -> str: ...

    # -- identity -------------------------------------------------------------

    async def authenticate(self) -> None: ...

    async def validate_permissions(self) -> None: ...

    # -- network --------------------------------------------------------------

    async def create_network(self, name: str, tags: Tags) -> str: ...

    async def describe_network(self, network_id: str) -> NetworkInfo | None: ...

    async def delete_network(self, network_id: str) -> None: ...

    async def create_subnet(self, network_id: str, name: str, tags: Tags) -> str: ...

    async def delete_subnet(self, subnet_id: str) -> None: ...

    async def create_gateway(self, network_id: str, name: str, tags: Tags) -> str: ...

    async def detach_gateway(self, gateway_id: str) -> None: ...

    async def delete_gateway(self, gateway_id: str) -> None: ...

    async def delete_nat_gateway(self, nat_gateway_id: str) -> None: ...

    async def describe_route_table(self, route_table_id: str) -> RouteTableInfo | None: ...

    async def delete_route_table(self, route_table_id: str) -> None: ...

    # -- security boundary ----------------------------------------------------

    async def create_security_group(self, network_id: str, name: str, tags: Tags) -> str: ...

    async def describe_security_group(self, group_id: str) -> SecurityGroupInfo | None: ...

    async def authorize_ingress(self, group_id: str, rules: Sequence[SecurityRule]) -> None: ...

    async def revoke_rules(self, group_id: str) -> None: ...

    async def delete_security_group(self, group_id: str) -> None: ...

    # -- compute --------------------------------------------------------------

    async def create_node(self, request: NodeRequest) -> NodeInfo: ...

    async def describe_node(self, node_id: str) -> NodeInfo | None: ...

    async def describe_node_state(self, node_id: str) -> NodeState: ...

    async def terminate_node(self, node_id: str) -> None: ...

    async def list_nodes(self, cluster_name: str) -> list[NodeInfo]: ...

    # -- addressing -----------------------------------------------------------

    async def allocate_address(self, tags: Tags) -> str: ...

    async def release_address(self, address_id: str) -> None: ...

    async def describe_interface(self, interface_id: str) -> InterfaceInfo | None: ...

    async def delete_interface(self, interface_id: str) -> None: ...

    # -- remote execution -----------------------------------------------------

    async def run_command(self, node: NodeInfo, command: str, timeout: float) -> str:
        """Run a shell command on a node and return its stdout.

        Raises:
            CommandError: If the command exits non-zero.
        """
        ...

    # -- discovery ------------------------------------------------------------

    async def find_resources(
        self, resource_class: ResourceClass, filters: TagFilters,
    ) -> list[str]:
        """Ids of ``resource_class`` resources whose tags match every filter.

        Each filter maps a tag key to the accepted values.
        """
        ...

    # -- capacity -------------------------------------------------------------

    async def create_load_balancer(
        self, name: str, subnet_ids: Sequence[str], tags: Tags,
    ) -> str: ...

    async def delete_load_balancer(self, load_balancer_id: str) -> None: ...

    async def create_volume(self, name: str, size_gb: int, tags: Tags) -> str: ...

    async def delete_volume(self, volume_id: str) -> None: ...

    async def snapshot_volume(self, volume_id: str, description: str, tags: Tags) -> str: ...
