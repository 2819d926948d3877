from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Final, Literal

from kubeward.core.exceptions import InvalidTransitionError


def _now() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# Identity
# =============================================================================


@dataclass(frozen=True, slots=True)
class ClusterId:
    """Structured cluster identifier: the backend plus the cluster name.

    Renders as ``<backend>-<name>``. Parsing resolves the backend by
    matching known backend names, so cluster names may contain dashes.
    """

    backend: str
    name: str

    def __str__(self) -> str:
        return f"{self.backend}-{self.name}"

    @classmethod
    def parse(cls, text: str, backends: Iterable[str]) -> ClusterId:
        # Longest backend name first so "aws-gov" wins over "aws".
        for backend in sorted(backends, key=len, reverse=True):
            prefix = f"{backend}-"
            if text.startswith(prefix) and len(text) > len(prefix):
                return cls(backend=backend, name=text[len(prefix):])
        raise ValueError(f"'{text}' does not start with a known backend name")


# =============================================================================
# Cluster status
# =============================================================================


class ClusterStatus(StrEnum):
    CREATING = "creating"
    RUNNING = "running"
    UPDATING = "updating"
    ERROR = "error"
    DELETED = "deleted"


_TRANSITIONS: Final[Mapping[ClusterStatus, frozenset[ClusterStatus]]] = {
    ClusterStatus.CREATING: frozenset({ClusterStatus.RUNNING, ClusterStatus.ERROR}),
    ClusterStatus.RUNNING: frozenset({ClusterStatus.UPDATING, ClusterStatus.ERROR}),
    ClusterStatus.UPDATING: frozenset({ClusterStatus.RUNNING, ClusterStatus.ERROR}),
    ClusterStatus.ERROR: frozenset({ClusterStatus.CREATING}),
    ClusterStatus.DELETED: frozenset(),
}


def can_transition(current: ClusterStatus, target: ClusterStatus) -> bool:
    """Whether ``current -> target`` is a legal cluster transition.

    Any live status may move to ``deleted``.
    """
    if target is ClusterStatus.DELETED:
        return current is not ClusterStatus.DELETED
    return target in _TRANSITIONS[current]


# =============================================================================
# Nodes
# =============================================================================


class NodeRole(StrEnum):
    CONTROL_PLANE = "control-plane"
    WORKER = "worker"


@dataclass(frozen=True, slots=True)
class NodeCredential:
    """Transient access credential for a node. Never persisted."""

    username: str
    key_path: str
    port: int = 22


@dataclass(frozen=True, slots=True)
class NodeInfo:
    id: str
    role: NodeRole
    machine_class: str = ""
    node_group: str = ""
    private_ip: str | None = None
    public_ip: str | None = None
    credential: NodeCredential | None = field(default=None, repr=False, compare=False)

    @property
    def address(self) -> str | None:
        """Public address if assigned, else the private one."""
        return self.public_ip or self.private_ip

    @property
    def has_address(self) -> bool:
        return self.address is not None


@dataclass(frozen=True, slots=True)
class NodeRequest:
    """What the pipeline asks a backend to create for one node."""

    name: str
    role: NodeRole
    machine_class: str
    network_id: str
    subnet_id: str | None
    security_group_ids: tuple[str, ...]
    user_data: str
    tags: Mapping[str, str]
    node_group: str = ""


@dataclass(frozen=True, slots=True)
class JoinCredentials:
    """Material a node needs to join an initialized control plane."""

    endpoint: str
    token: str
    ca_cert_hash: str
    certificate_key: str = ""


@dataclass
class ClusterInfrastructure:
    network_id: str | None = None
    subnet_ids: list[str] = field(default_factory=list)
    security_group_ids: list[str] = field(default_factory=list)
    control_plane: list[NodeInfo] = field(default_factory=list)
    workers: list[NodeInfo] = field(default_factory=list)
    join: JoinCredentials | None = field(default=None, repr=False)

    @property
    def primary(self) -> NodeInfo | None:
        return self.control_plane[0] if self.control_plane else None

    @property
    def nodes(self) -> list[NodeInfo]:
        return [*self.control_plane, *self.workers]

    def workers_in(self, group: str) -> list[NodeInfo]:
        return [n for n in self.workers if n.node_group == group]


# =============================================================================
# Cluster
# =============================================================================


@dataclass
class Cluster:
    """Runtime record of a provisioned (or provisioning) cluster.

    Status changes go through ``transition`` so illegal moves such as
    ``creating -> updating`` are rejected.
    """

    id: ClusterId
    region: str
    version: str
    status: ClusterStatus = ClusterStatus.CREATING
    endpoint: str = ""
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    tags: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.id.name

    @property
    def backend(self) -> str:
        return self.id.backend

    def transition(self, target: ClusterStatus) -> None:
        if not can_transition(self.status, target):
            raise InvalidTransitionError(self.status, target)
        self.status = target
        self.updated_at = _now()


# =============================================================================
# Lifecycle results
# =============================================================================


type HealthState = Literal["healthy", "degraded", "unhealthy", "unknown"]
type BackupStatus = Literal["in_progress", "completed", "failed"]


@dataclass(frozen=True, slots=True)
class ComponentHealth:
    status: HealthState
    message: str = ""


@dataclass(frozen=True, slots=True)
class HealthStatus:
    status: HealthState
    components: Mapping[str, ComponentHealth] = field(default_factory=dict)
    last_check: datetime = field(default_factory=_now)

    @property
    def healthy(self) -> bool:
        return self.status == "healthy"


@dataclass(frozen=True, slots=True)
class MetricValue:
    usage: float
    capacity: float

    @property
    def percent(self) -> float:
        return (self.usage / self.capacity * 100.0) if self.capacity else 0.0


@dataclass(frozen=True, slots=True)
class Metrics:
    nodes_total: int
    nodes_ready: int
    cpu: MetricValue | None = None
    memory: MetricValue | None = None
    collected_at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class Backup:
    id: str
    cluster_id: ClusterId
    status: BackupStatus
    created_at: datetime = field(default_factory=_now)
    etcd_snapshot: str = ""
    snapshot_ids: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Addon:
    """A Helm release installed on a cluster."""

    name: str
    chart: str
    namespace: str = "default"
    repo: str = ""
    version: str = ""
    values: Mapping[str, Any] = field(default_factory=dict)
    installed_at: datetime = field(default_factory=_now)
