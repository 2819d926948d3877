"""Tag and resource naming conventions shared by the pipeline and discovery."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Final

from kubeward.api.model import NodeRole
from kubeward.constants import MANAGED_BY_VALUE, ClusterTag, LegacyTag, ResourceClass

# Suffix of the deterministic Name tag for singleton resources.
NAME_SUFFIX: Final[Mapping[ResourceClass, str]] = {
    ResourceClass.NETWORK: "vpc",
    ResourceClass.SUBNET: "subnet",
    ResourceClass.GATEWAY: "igw",
    ResourceClass.NAT_GATEWAY: "nat",
    ResourceClass.ROUTE_TABLE: "rt",
    ResourceClass.SECURITY_GROUP: "sg",
    ResourceClass.LOAD_BALANCER: "lb",
}


def resource_name(cluster_name: str, resource_class: ResourceClass) -> str:
    return f"{cluster_name}-{NAME_SUFFIX[resource_class]}"


def node_name(cluster_name: str, role: NodeRole, index: int, node_group: str = "") -> str:
    if role is NodeRole.CONTROL_PLANE:
        return f"{cluster_name}-cp-{index}"
    return f"{cluster_name}-{node_group or 'worker'}-{index}"


def cluster_tags(
    cluster_name: str,
    name: str,
    *,
    extra: Mapping[str, str] | None = None,
    role: NodeRole | None = None,
    node_group: str = "",
) -> dict[str, str]:
    """Tags for a resource owned by ``cluster_name``.

    Writes both the current keys and the legacy ``Cluster`` key so older
    tooling keeps finding the resources. User tags never override the
    ownership keys.
    """
    tags = dict(extra or {})
    tags.update({
        ClusterTag.MANAGED_BY: MANAGED_BY_VALUE,
        ClusterTag.CLUSTER_NAME: cluster_name,
        LegacyTag.CLUSTER: cluster_name,
        LegacyTag.NAME: name,
    })
    if role is not None:
        tags[ClusterTag.ROLE] = role
        tags[LegacyTag.ROLE] = "master" if role is NodeRole.CONTROL_PLANE else "worker"
        tags[LegacyTag.KUBERNETES_CLUSTER] = cluster_name
    if node_group:
        tags[ClusterTag.NODE_GROUP] = node_group
    return {str(k): str(v) for k, v in tags.items()}
