"""Centralized constants and enums for kubeward.

Tag keys, remote paths, ports and default timeouts live here so the
pipeline, teardown and backends agree on them.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# Resource Tags
# =============================================================================


class ClusterTag(StrEnum):
    """Tag keys stamped on every resource kubeward creates."""

    MANAGED_BY = "kubeward.io/managed-by"
    CLUSTER_NAME = "kubeward.io/cluster-name"
    ROLE = "kubeward.io/role"
    NODE_GROUP = "kubeward.io/node-group"


class LegacyTag(StrEnum):
    """Tag keys written by older releases, still honored by discovery."""

    CLUSTER = "Cluster"
    NAME = "Name"
    ROLE = "Role"
    KUBERNETES_CLUSTER = "KubernetesCluster"


MANAGED_BY_VALUE: Final = "kubeward"


# =============================================================================
# Resource Classes
# =============================================================================


class ResourceClass(StrEnum):
    """Kinds of backend resources the tracker records."""

    NETWORK = "network"
    SUBNET = "subnet"
    GATEWAY = "gateway"
    NAT_GATEWAY = "nat_gateway"
    ROUTE_TABLE = "route_table"
    SECURITY_GROUP = "security_group"
    NODE = "node"
    ADDRESS = "address"
    INTERFACE = "interface"
    VOLUME = "volume"
    LOAD_BALANCER = "load_balancer"


# =============================================================================
# Backend Node States
# =============================================================================


class NodeState(StrEnum):
    """Normalized node lifecycle states reported by backends."""

    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"
    UNKNOWN = "unknown"


# =============================================================================
# Kubernetes
# =============================================================================

API_SERVER_PORT: Final = 6443
DEFAULT_KUBERNETES_VERSION: Final = "1.30"
DEFAULT_POD_CIDR: Final = "10.244.0.0/16"
DEFAULT_SERVICE_CIDR: Final = "10.96.0.0/12"
DEFAULT_CNI: Final = "calico"

ADMIN_KUBECONFIG_PATH: Final = "/etc/kubernetes/admin.conf"


# =============================================================================
# Bootstrap Markers
# =============================================================================

KUBEWARD_DIR: Final = "/var/lib/kubeward"
BOOTSTRAP_COMPLETE_MARKER: Final = f"{KUBEWARD_DIR}/bootstrap-complete"
BOOTSTRAP_ERROR_MARKER: Final = f"{KUBEWARD_DIR}/bootstrap-error"
BOOTSTRAP_LOG: Final = "/var/log/kubeward-bootstrap.log"


# =============================================================================
# Timeouts (in seconds)
# =============================================================================

INFRA_READY_TIMEOUT: Final = 120.0
INFRA_POLL_INTERVAL: Final = 5.0
BOOTSTRAP_TIMEOUT: Final = 900.0
BOOTSTRAP_POLL_INTERVAL: Final = 10.0
NODE_TERMINATION_TIMEOUT: Final = 600.0
NODE_TERMINATION_POLL_INTERVAL: Final = 10.0
NETWORK_AVAILABLE_TIMEOUT: Final = 300.0
HEALTH_TIMEOUT: Final = 600.0
HEALTH_POLL_INTERVAL: Final = 15.0
SECURITY_GROUP_PROPAGATION_DELAY: Final = 10.0
COMMAND_TIMEOUT: Final = 300.0


# =============================================================================
# Teardown Retry Policy
# =============================================================================

SECURITY_GROUP_DELETE_ATTEMPTS: Final = 8
SECURITY_GROUP_DELETE_BASE_DELAY: Final = 5.0
NETWORK_DELETE_ATTEMPTS: Final = 5
NETWORK_DELETE_BASE_DELAY: Final = 2.0


# =============================================================================
# Local State
# =============================================================================

STATE_DIR_NAME: Final = ".kubeward"
