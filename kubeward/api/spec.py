"""Declarative cluster specification.

A ClusterSpec is what the caller asks for: how many control-plane
replicas, which node groups, which network ranges. It is immutable;
scaling produces a new spec through ``with_replicas``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Literal

from kubeward.constants import (
    DEFAULT_CNI,
    DEFAULT_KUBERNETES_VERSION,
    DEFAULT_POD_CIDR,
    DEFAULT_SERVICE_CIDR,
)
from kubeward.core.exceptions import ConfigurationError

type CertificateType = Literal["letsencrypt", "self-signed", "custom"]

_DNS_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?$")


@dataclass(frozen=True, slots=True)
class ControlPlaneSpec:
    replicas: int = 1
    machine_class: str = "t3.medium"

    @property
    def high_availability(self) -> bool:
        return self.replicas > 1


@dataclass(frozen=True, slots=True)
class NodeGroupSpec:
    """A homogeneous group of worker nodes.

    A group with zero replicas is valid and produces no nodes.
    """

    name: str
    replicas: int = 1
    machine_class: str = "t3.medium"
    labels: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class NetworkingSpec:
    cni: str = DEFAULT_CNI
    pod_cidr: str = DEFAULT_POD_CIDR
    service_cidr: str = DEFAULT_SERVICE_CIDR


@dataclass(frozen=True, slots=True)
class DomainConfig:
    """Optional public domain and ingress for the cluster.

    Args:
        base_domain: Domain under which the cluster is exposed.
        certificate_type: How TLS certificates are issued.
        dns_provider: DNS provider managing ``base_domain``.
        ingress_provider: Ingress controller to install.
    """

    base_domain: str
    certificate_type: CertificateType = "letsencrypt"
    dns_provider: str = "route53"
    ingress_provider: str = "nginx"

    def host_for(self, cluster_name: str) -> str:
        return f"{cluster_name}.{self.base_domain}"


@dataclass(frozen=True, slots=True)
class ClusterSpec:
    """Desired state of a Kubernetes cluster.

    Example:
        >>> spec = ClusterSpec(
        ...     name="dev",
        ...     backend="aws",
        ...     control_plane=ControlPlaneSpec(replicas=1),
        ...     node_groups=(NodeGroupSpec(name="default", replicas=2),),
        ... )
        >>> spec.validate()
        >>> spec.total_nodes
        3

    Args:
        name: Cluster name, used in tags and resource names. Must be DNS safe.
        backend: Name of the backend that hosts the cluster.
        region: Backend region. Empty means the backend default.
        version: Kubernetes minor version.
        control_plane: Control-plane sizing.
        node_groups: Worker groups.
        networking: CNI and CIDR ranges.
        domain: Optional ingress domain.
        tags: Extra tags stamped on every resource.
    """

    name: str
    backend: str
    region: str = ""
    version: str = DEFAULT_KUBERNETES_VERSION
    control_plane: ControlPlaneSpec = field(default_factory=ControlPlaneSpec)
    node_groups: tuple[NodeGroupSpec, ...] = ()
    networking: NetworkingSpec = field(default_factory=NetworkingSpec)
    domain: DomainConfig | None = None
    tags: Mapping[str, str] = field(default_factory=dict)

    @property
    def total_workers(self) -> int:
        return sum(g.replicas for g in self.node_groups)

    @property
    def total_nodes(self) -> int:
        return self.control_plane.replicas + self.total_workers

    def validate(self) -> None:
        """Check the spec for values no backend can satisfy.

        Raises:
            ConfigurationError: On the first invalid field.
        """
        if not self.name:
            raise ConfigurationError("Cluster name must not be empty")
        if not _DNS_LABEL.match(self.name):
            raise ConfigurationError(
                f"Cluster name '{self.name}' must be a lowercase DNS label"
            )
        if not self.backend:
            raise ConfigurationError(f"Cluster '{self.name}' has no backend")
        if self.control_plane.replicas < 1:
            raise ConfigurationError(
                f"control_plane.replicas must be at least 1, got {self.control_plane.replicas}"
            )

        seen: set[str] = set()
        for group in self.node_groups:
            if not group.name:
                raise ConfigurationError("Node group name must not be empty")
            if group.name in seen:
                raise ConfigurationError(f"Duplicate node group '{group.name}'")
            if group.replicas < 0:
                raise ConfigurationError(
                    f"Node group '{group.name}' replicas must be >= 0, got {group.replicas}"
                )
            seen.add(group.name)

    def node_group(self, name: str) -> NodeGroupSpec | None:
        return next((g for g in self.node_groups if g.name == name), None)

    def with_replicas(
        self,
        *,
        control_plane: int | None = None,
        node_groups: Mapping[str, int] | None = None,
    ) -> ClusterSpec:
        """Return a copy with new replica counts.

        Node groups not named in ``node_groups`` keep their count.
        """
        cp = self.control_plane
        if control_plane is not None:
            cp = replace(cp, replicas=control_plane)

        groups = self.node_groups
        if node_groups:
            groups = tuple(
                replace(g, replicas=node_groups[g.name]) if g.name in node_groups else g
                for g in groups
            )

        return replace(self, control_plane=cp, node_groups=groups)

    @classmethod
    def from_dict(cls, name: str, raw: Mapping[str, Any]) -> ClusterSpec:
        """Build a spec from a parsed TOML table."""
        data = dict(raw)
        try:
            cp = ControlPlaneSpec(**data.pop("control_plane", {}))
            groups = tuple(NodeGroupSpec(**g) for g in data.pop("node_groups", ()))
            networking = NetworkingSpec(**data.pop("networking", {}))
            raw_domain = data.pop("domain", None)
            domain = DomainConfig(**raw_domain) if raw_domain else None
            return cls(
                name=name,
                control_plane=cp,
                node_groups=groups,
                networking=networking,
                domain=domain,
                **data,
            )
        except TypeError as e:
            raise ConfigurationError(f"Invalid cluster '{name}': {e}") from e
