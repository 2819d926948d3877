"""Custom exception hierarchy for kubeward.

All kubeward-specific exceptions inherit from KubewardError, enabling
callers to catch every orchestration failure with a single except clause.
Backends translate their native errors into these classes so the core
never inspects provider error codes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kubeward.api.model import Cluster


class KubewardError(Exception):
    """Base exception for all kubeward errors."""


# =============================================================================
# Lookup
# =============================================================================


class NotFoundError(KubewardError):
    """Raised when a requested object does not exist."""


class ClusterNotFoundError(NotFoundError):
    """Raised when a cluster id is unknown to the registry and the backend."""

    def __init__(self, cluster_id: str) -> None:
        self.cluster_id = cluster_id
        super().__init__(f"Cluster {cluster_id} not found")


class ResourceNotFoundError(NotFoundError):
    """Raised by backends when a resource id no longer exists."""

    def __init__(self, resource_class: str, resource_id: str) -> None:
        self.resource_class = resource_class
        self.resource_id = resource_id
        super().__init__(f"{resource_class} {resource_id} not found")


# =============================================================================
# Backend failures
# =============================================================================


class AuthenticationError(KubewardError):
    """Raised when backend credentials are missing or rejected."""


class ResourceCreationError(KubewardError):
    """Raised when a backend fails to create a resource.

    ``resource_id`` is set when the backend got as far as allocating an
    id before failing, so the caller can still clean it up.
    """

    def __init__(
        self,
        resource_class: str,
        name: str,
        reason: str = "",
        resource_id: str | None = None,
    ) -> None:
        self.resource_class = resource_class
        self.name = name
        self.reason = reason
        self.resource_id = resource_id
        super().__init__(f"Failed to create {resource_class} {name}: {reason}")


class ResourceDeletionError(KubewardError):
    """A resource that could not be removed during teardown.

    Teardown collects these instead of raising them.
    """

    def __init__(self, resource_class: str, resource_id: str, reason: str = "") -> None:
        self.resource_class = resource_class
        self.resource_id = resource_id
        self.reason = reason
        super().__init__(f"Failed to delete {resource_class} {resource_id}: {reason}")


class QuotaExceededError(KubewardError):
    """Raised when the backend refuses a request for capacity reasons."""


class TransientNetworkError(KubewardError):
    """Raised for throttling, resets and other failures worth retrying."""


class DependencyViolationError(KubewardError):
    """Raised when a resource is still referenced by another one."""

    def __init__(self, resource_id: str, reason: str = "") -> None:
        self.resource_id = resource_id
        self.reason = reason
        super().__init__(f"{resource_id} has dependent objects: {reason}")


# =============================================================================
# Input
# =============================================================================


class ConfigurationError(KubewardError):
    """Raised for invalid configuration or missing required settings."""


class ValidationError(KubewardError):
    """Raised when a backend rejects a request as malformed."""


# =============================================================================
# Orchestration
# =============================================================================


class TimeoutError(KubewardError):  # noqa: A001
    """Raised when an operation exceeds its time bound."""

    def __init__(self, operation: str, duration: float) -> None:
        self.operation = operation
        self.duration = duration
        super().__init__(f"Timeout waiting for {operation} after {duration:.1f}s")


class InvalidTransitionError(KubewardError):
    """Raised on an illegal cluster or bootstrap state transition."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition from {current} to {target}")


class BootstrapFailedError(KubewardError):
    """Raised when a node reported a bootstrap failure."""

    def __init__(self, node_id: str, error_msg: str) -> None:
        self.node_id = node_id
        self.error_msg = error_msg
        super().__init__(f"Bootstrap failed on {node_id}: {error_msg}")


class CommandError(KubewardError):
    """Raised when a remote command exits non-zero."""

    def __init__(self, command: str, exit_code: int, stderr: str = "") -> None:
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(f"Command failed ({exit_code}): {command}: {stderr.strip()}")


class ProvisioningError(KubewardError):
    """Raised when cluster creation fails and the cluster was rolled back.

    Attributes:
        cluster: The cluster record, left in the ``error`` status.
        step: Name of the pipeline step that failed.
        teardown_errors: Resources the rollback could not remove.
    """

    def __init__(
        self,
        cluster: Cluster,
        step: str,
        teardown_errors: list[ResourceDeletionError] | None = None,
    ) -> None:
        self.cluster = cluster
        self.step = step
        self.teardown_errors = list(teardown_errors or ())
        msg = f"Provisioning of {cluster.name} failed at {step}"
        if self.teardown_errors:
            msg += f" ({len(self.teardown_errors)} resources left behind)"
        super().__init__(msg)


class HealthCheckError(KubewardError):
    """Raised when nodes joined but the cluster never reported healthy.

    Infrastructure is kept. ``cluster`` stays in ``creating`` so a later
    health check can promote it.
    """

    def __init__(self, cluster: Cluster, reason: str = "") -> None:
        self.cluster = cluster
        self.reason = reason
        super().__init__(f"Cluster {cluster.name} is not healthy: {reason}")


class AddonError(KubewardError):
    """Raised when an addon operation fails."""


class ClusterNotReadyError(KubewardError):
    """Raised when an operation needs a running cluster."""

    def __init__(self, cluster_id: str, status: str) -> None:
        self.cluster_id = cluster_id
        self.status = status
        super().__init__(f"Cluster {cluster_id} is {status}, not running")
