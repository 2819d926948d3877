"""kubeward - provision and operate Kubernetes clusters on pluggable backends.

Example:

    from kubeward import AWS, ClusterManager, ClusterSpec, NodeGroupSpec

    backend = AWS(region="us-east-1", ami="ami-0abc", key_name="ops").create_backend()
    manager = ClusterManager({"aws": backend})

    spec = ClusterSpec(
        name="web",
        backend="aws",
        node_groups=(NodeGroupSpec(name="default", replicas=2),),
    )
    cluster = await manager.create(spec)
    kubeconfig = await manager.kubeconfig(str(cluster.id))
"""

from loguru import logger

# Backends
from kubeward.backends import AWS, SSH, create_backend

# Backend interface
from kubeward.api.backend import Backend

# Specs and domain model
from kubeward.api.model import (
    Addon,
    Backup,
    Cluster,
    ClusterId,
    ClusterInfrastructure,
    ClusterStatus,
    HealthStatus,
    Metrics,
    NodeInfo,
    NodeRole,
)
from kubeward.api.spec import (
    ClusterSpec,
    ControlPlaneSpec,
    DomainConfig,
    NetworkingSpec,
    NodeGroupSpec,
)

# Configuration
from kubeward.config import load_backends, load_timeouts, resolve_cluster
from kubeward.timeouts import TimeoutConfig

# Errors
from kubeward.core.exceptions import (
    ClusterNotFoundError,
    ConfigurationError,
    HealthCheckError,
    KubewardError,
    ProvisioningError,
)

# Orchestration
from kubeward.manager import ClusterManager
from kubeward.pipeline import ProvisioningPipeline
from kubeward.teardown import TeardownOrchestrator
from kubeward.tracker import ResourceTracker, TrackerStore

# Logging
from kubeward.observability import LogConfig, setup_logging, teardown_logging

# Library behavior: silent until setup_logging is called
logger.disable("kubeward")

__all__ = [
    # Backends
    "AWS",
    "SSH",
    "Backend",
    "create_backend",
    # Specs and model
    "Addon",
    "Backup",
    "Cluster",
    "ClusterId",
    "ClusterInfrastructure",
    "ClusterSpec",
    "ClusterStatus",
    "ControlPlaneSpec",
    "DomainConfig",
    "HealthStatus",
    "Metrics",
    "NetworkingSpec",
    "NodeGroupSpec",
    "NodeInfo",
    "NodeRole",
    # Configuration
    "TimeoutConfig",
    "load_backends",
    "load_timeouts",
    "resolve_cluster",
    # Errors
    "ClusterNotFoundError",
    "ConfigurationError",
    "HealthCheckError",
    "KubewardError",
    "ProvisioningError",
    # Orchestration
    "ClusterManager",
    "ProvisioningPipeline",
    "ResourceTracker",
    "TeardownOrchestrator",
    "TrackerStore",
    # Logging
    "LogConfig",
    "setup_logging",
    "teardown_logging",
]
