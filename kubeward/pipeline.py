"""Provisioning pipeline: turns a ClusterSpec into a running cluster.

Steps run strictly in order and every id a backend returns is recorded
in the ResourceTracker before the next call, so a failure leaves the
tracker holding exactly what exists:

     1. network (+ subnet, gateway)
     2. security group scoped to the network
     3. primary control-plane node
     4. primary bootstrap (address, then completion marker)
     5. control-plane init and join credentials
     6. additional control-plane nodes (skipped for a single replica)
     7. workers for every node group
     8. CNI on the primary
     9. health verification
    10. domain and ingress metadata (best effort)

A failure in steps 1-8 marks the cluster ``error``, tears down whatever
the tracker holds and raises ProvisioningError chained to the cause.
A failure in step 9 raises HealthCheckError and keeps the
infrastructure. Step 10 failures are logged.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum

from loguru import logger

from kubeward.api.backend import Backend, SecurityRule
from kubeward.api.model import (
    Cluster,
    ClusterId,
    ClusterInfrastructure,
    ClusterStatus,
    NodeInfo,
    NodeRequest,
    NodeRole,
)
from kubeward.api.spec import ClusterSpec, NodeGroupSpec
from kubeward.bootstrap import scripts
from kubeward.bootstrap.node import NodeBootstrapper
from kubeward.bootstrap.state import BootstrapState, NodeBootstrap
from kubeward.constants import API_SERVER_PORT, ResourceClass
from kubeward.core.exceptions import (
    HealthCheckError,
    ProvisioningError,
    ResourceCreationError,
    ResourceDeletionError,
)
from kubeward.kubeconfig import build_kubeconfig
from kubeward.tags import cluster_tags, node_name, resource_name
from kubeward.teardown import TeardownOrchestrator
from kubeward.timeouts import TimeoutConfig
from kubeward.tracker import ResourceTracker, TrackerStore
from kubeward.wait import wait_for_ready


class Step(StrEnum):
    NETWORK = "network"
    SECURITY_GROUP = "security_group"
    CONTROL_PLANE_NODE = "control_plane_node"
    PRIMARY_BOOTSTRAP = "primary_bootstrap"
    PRIMARY_INIT = "primary_init"
    CONTROL_PLANE_JOIN = "control_plane_join"
    WORKER_JOIN = "worker_join"
    CNI = "cni"
    HEALTH = "health"
    DOMAIN = "domain"


def cluster_rules(security_group_id: str, spec: ClusterSpec) -> list[SecurityRule]:
    """Ingress rules every cluster needs."""
    rules = [
        SecurityRule("tcp", 22, 22, "0.0.0.0/0", "ssh"),
        SecurityRule("tcp", API_SERVER_PORT, API_SERVER_PORT, "0.0.0.0/0", "kubernetes api"),
        SecurityRule("-1", 0, 65535, security_group_id, "intra-cluster"),
        SecurityRule("-1", 0, 65535, spec.networking.pod_cidr, "pod network"),
    ]
    if spec.domain is not None:
        rules += [
            SecurityRule("tcp", 80, 80, "0.0.0.0/0", "http ingress"),
            SecurityRule("tcp", 443, 443, "0.0.0.0/0", "https ingress"),
        ]
    return rules


@dataclass
class ProvisionContext:
    """Everything one pipeline run (or a later scale operation) acts on."""

    spec: ClusterSpec
    cluster: Cluster
    tracker: ResourceTracker
    infrastructure: ClusterInfrastructure = field(default_factory=ClusterInfrastructure)
    bootstraps: dict[str, NodeBootstrap] = field(default_factory=dict)

    @property
    def primary(self) -> NodeInfo:
        primary = self.infrastructure.primary
        if primary is None:
            raise RuntimeError(f"Cluster {self.cluster.name} has no control-plane node")
        return primary


@dataclass
class ProvisionResult:
    cluster: Cluster
    infrastructure: ClusterInfrastructure
    tracker: ResourceTracker
    kubeconfig: str


class ProvisioningPipeline:
    """Runs the ten provisioning steps against one backend.

    Args:
        backend: Backend that owns every resource created.
        timeouts: Bounds for node waits and the rollback teardown.
        store: Where the tracker is persisted after every record. When
            None the tracker lives only in memory.
    """

    def __init__(
        self,
        backend: Backend,
        *,
        timeouts: TimeoutConfig | None = None,
        store: TrackerStore | None = None,
    ) -> None:
        self.backend = backend
        self.timeouts = timeouts or TimeoutConfig()
        self.store = store
        self.bootstrapper = NodeBootstrapper(backend, self.timeouts)
        self.teardown = TeardownOrchestrator(backend, self.timeouts)

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    async def provision(
        self,
        spec: ClusterSpec,
        cluster: Cluster | None = None,
        tracker: ResourceTracker | None = None,
        infrastructure: ClusterInfrastructure | None = None,
    ) -> ProvisionResult:
        """Create the cluster described by ``spec``.

        Args:
            spec: Validated before any backend call.
            cluster: Record to drive. It must be in ``creating``. A new one
                is created when omitted.
            tracker: Tracker to record into, so the caller can observe
                progress. A new one is created when omitted.
            infrastructure: Topology view to fill in, shared with the caller
                for the same reason.

        Raises:
            ConfigurationError: If the spec is invalid.
            ProvisioningError: If steps 1-8 failed. The cluster is ``error``
                and its resources were torn down.
            HealthCheckError: If the cluster did not become healthy. The
                cluster stays ``creating`` with its infrastructure intact.
        """
        spec.validate()
        region = spec.region or self.backend.region
        if cluster is None:
            cluster = Cluster(
                id=ClusterId(self.backend.name, spec.name),
                region=region,
                version=spec.version,
                tags=dict(spec.tags),
            )
        ctx = ProvisionContext(
            spec=spec,
            cluster=cluster,
            tracker=tracker if tracker is not None else ResourceTracker(spec.name, region),
            infrastructure=(
                infrastructure if infrastructure is not None else ClusterInfrastructure()
            ),
        )
        log = logger.bind(cluster=spec.name, backend=self.backend.name)
        log.info(f"Provisioning {spec.total_nodes} nodes")

        steps: Sequence[tuple[Step, Callable[[ProvisionContext], Awaitable[None]]]] = (
            (Step.NETWORK, self._create_network),
            (Step.SECURITY_GROUP, self._create_security_group),
            (Step.CONTROL_PLANE_NODE, self._create_primary),
            (Step.PRIMARY_BOOTSTRAP, self._bootstrap_primary),
            (Step.PRIMARY_INIT, self._initialize_primary),
            (Step.CONTROL_PLANE_JOIN, self._join_control_plane),
            (Step.WORKER_JOIN, self._join_workers),
            (Step.CNI, self._install_cni),
        )

        step = Step.NETWORK
        try:
            for step, run in steps:
                log.info(f"Step {step}")
                await run(ctx)
        except asyncio.CancelledError:
            cluster.transition(ClusterStatus.ERROR)
            log.warning(
                f"Provisioning cancelled at {step}; {ctx.tracker.summary()} left for a later delete"
            )
            raise
        except Exception as e:
            log.error(f"Step {step} failed: {e}")
            cluster.transition(ClusterStatus.ERROR)
            errors = await self._rollback(ctx)
            raise ProvisioningError(cluster, step, errors) from e

        log.info(f"Step {Step.HEALTH}")
        try:
            await self.bootstrapper.verify_health(ctx.primary, len(ctx.infrastructure.nodes))
        except Exception as e:
            log.error(f"Health verification failed: {e}")
            raise HealthCheckError(cluster, str(e)) from e

        cluster.endpoint = f"https://{ctx.primary.address}:{API_SERVER_PORT}"
        cluster.transition(ClusterStatus.RUNNING)

        if spec.domain is not None:
            log.info(f"Step {Step.DOMAIN}")
            try:
                await self._record_domain(ctx)
            except Exception as e:
                log.warning(f"Domain configuration failed, continuing: {e}")

        kubeconfig = await self.fetch_kubeconfig(ctx)
        log.info(f"Cluster running at {cluster.endpoint}")
        return ProvisionResult(cluster, ctx.infrastructure, ctx.tracker, kubeconfig)

    # -------------------------------------------------------------------------
    # Tracking
    # -------------------------------------------------------------------------

    def _record(self, ctx: ProvisionContext, resource_class: ResourceClass, resource_id: str) -> None:
        if ctx.tracker.record(resource_class, resource_id) and self.store is not None:
            self.store.save(str(ctx.cluster.id), ctx.tracker)

    async def _rollback(self, ctx: ProvisionContext) -> list[ResourceDeletionError]:
        log = logger.bind(cluster=ctx.cluster.name)
        log.warning(f"Rolling back {ctx.tracker.summary() or 'nothing'}")
        try:
            errors = await self.teardown.teardown(ctx.tracker)
        except Exception as e:
            log.error(f"Rollback aborted: {e}")
            return [ResourceDeletionError("cluster", str(ctx.cluster.id), str(e))]
        for err in errors:
            log.error(f"Rollback left {err.resource_class} {err.resource_id}: {err.reason}")
        if not errors and self.store is not None:
            self.store.discard(str(ctx.cluster.id))
        return errors

    # -------------------------------------------------------------------------
    # Steps 1-2: network and security boundary
    # -------------------------------------------------------------------------

    def _tags(
        self,
        ctx: ProvisionContext,
        name: str,
        role: NodeRole | None = None,
        node_group: str = "",
    ) -> dict[str, str]:
        return cluster_tags(
            ctx.spec.name, name, extra=ctx.spec.tags, role=role, node_group=node_group,
        )

    async def _create_network(self, ctx: ProvisionContext) -> None:
        name = resource_name(ctx.spec.name, ResourceClass.NETWORK)
        network_id = await self.backend.create_network(name, self._tags(ctx, name))
        self._record(ctx, ResourceClass.NETWORK, network_id)
        ctx.infrastructure.network_id = network_id
        ctx.cluster.metadata["network_id"] = network_id

        await wait_for_ready(
            lambda: self.backend.describe_network(network_id),
            lambda n: n.available,
            timeout=self.timeouts.network_available,
            interval=self.timeouts.infra_poll_interval,
            description=f"network {network_id}",
        )

        subnet = resource_name(ctx.spec.name, ResourceClass.SUBNET)
        subnet_id = await self.backend.create_subnet(network_id, subnet, self._tags(ctx, subnet))
        self._record(ctx, ResourceClass.SUBNET, subnet_id)
        ctx.infrastructure.subnet_ids.append(subnet_id)

        gateway = resource_name(ctx.spec.name, ResourceClass.GATEWAY)
        gateway_id = await self.backend.create_gateway(network_id, gateway, self._tags(ctx, gateway))
        self._record(ctx, ResourceClass.GATEWAY, gateway_id)

    async def _create_security_group(self, ctx: ProvisionContext) -> None:
        network_id = ctx.infrastructure.network_id
        assert network_id is not None
        name = resource_name(ctx.spec.name, ResourceClass.SECURITY_GROUP)
        sg_id = await self.backend.create_security_group(network_id, name, self._tags(ctx, name))
        self._record(ctx, ResourceClass.SECURITY_GROUP, sg_id)
        ctx.infrastructure.security_group_ids.append(sg_id)
        await self.backend.authorize_ingress(sg_id, cluster_rules(sg_id, ctx.spec))

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    async def create_node(
        self,
        ctx: ProvisionContext,
        role: NodeRole,
        index: int,
        group: NodeGroupSpec | None = None,
    ) -> NodeInfo:
        """Create one node and record it. Used by provisioning and scale-up."""
        network_id = ctx.infrastructure.network_id
        if network_id is None:
            raise RuntimeError(f"Cluster {ctx.cluster.name} has no network")

        group_name = group.name if group is not None else ""
        name = node_name(ctx.spec.name, role, index, group_name)
        machine_class = (
            group.machine_class if group is not None else ctx.spec.control_plane.machine_class
        )
        request = NodeRequest(
            name=name,
            role=role,
            machine_class=machine_class,
            network_id=network_id,
            subnet_id=ctx.infrastructure.subnet_ids[0] if ctx.infrastructure.subnet_ids else None,
            security_group_ids=tuple(ctx.infrastructure.security_group_ids),
            user_data=scripts.generate_user_data(ctx.spec.version, role),
            tags=self._tags(ctx, name, role=role, node_group=group_name),
            node_group=group_name,
        )
        try:
            node = await self.backend.create_node(request)
        except ResourceCreationError as e:
            if e.resource_id:
                self._record(ctx, ResourceClass.NODE, e.resource_id)
            raise
        self._record(ctx, ResourceClass.NODE, node.id)
        logger.bind(cluster=ctx.spec.name, node_id=node.id).info(f"Created {role} node {name}")
        return node

    async def _bootstrap(self, ctx: ProvisionContext, node: NodeInfo) -> NodeBootstrap:
        state = NodeBootstrap(node)
        ctx.bootstraps[node.id] = state
        return await self.bootstrapper.bootstrap(state)

    async def add_control_plane(self, ctx: ProvisionContext, index: int) -> NodeInfo:
        """Create, bootstrap and join one additional control-plane node."""
        assert ctx.infrastructure.join is not None
        node = await self.create_node(ctx, NodeRole.CONTROL_PLANE, index)
        state = await self._bootstrap(ctx, node)
        await self.bootstrapper.join_control_plane(state, ctx.infrastructure.join)
        ctx.infrastructure.control_plane.append(state.node)
        return state.node

    async def add_workers(self, ctx: ProvisionContext, group: NodeGroupSpec, indexes: Sequence[int]) -> list[NodeInfo]:
        """Create every worker first, then bootstrap and join them one by one."""
        assert ctx.infrastructure.join is not None
        created = [await self.create_node(ctx, NodeRole.WORKER, i, group) for i in indexes]
        joined: list[NodeInfo] = []
        for node in created:
            state = await self._bootstrap(ctx, node)
            await self.bootstrapper.join_worker(state, ctx.infrastructure.join)
            ctx.infrastructure.workers.append(state.node)
            joined.append(state.node)
        return joined

    # -------------------------------------------------------------------------
    # Steps 3-8
    # -------------------------------------------------------------------------

    async def _create_primary(self, ctx: ProvisionContext) -> None:
        node = await self.create_node(ctx, NodeRole.CONTROL_PLANE, 1)
        ctx.infrastructure.control_plane.append(node)

    async def _bootstrap_primary(self, ctx: ProvisionContext) -> None:
        state = await self._bootstrap(ctx, ctx.primary)
        ctx.infrastructure.control_plane[0] = state.node

    async def _initialize_primary(self, ctx: ProvisionContext) -> None:
        ctx.infrastructure.join = await self.bootstrapper.initialize_primary(ctx.primary, ctx.spec)
        ctx.bootstraps[ctx.primary.id].advance(BootstrapState.ROLE_READY)

    async def _join_control_plane(self, ctx: ProvisionContext) -> None:
        for index in range(2, ctx.spec.control_plane.replicas + 1):
            await self.add_control_plane(ctx, index)

    async def _join_workers(self, ctx: ProvisionContext) -> None:
        for group in ctx.spec.node_groups:
            if group.replicas == 0:
                logger.bind(cluster=ctx.spec.name).debug(f"Skipping empty node group {group.name}")
                continue
            await self.add_workers(ctx, group, range(1, group.replicas + 1))

    async def _install_cni(self, ctx: ProvisionContext) -> None:
        await self.bootstrapper.install_cni(ctx.primary, ctx.spec.networking)

    # -------------------------------------------------------------------------
    # Step 10 and post-steps
    # -------------------------------------------------------------------------

    async def _record_domain(self, ctx: ProvisionContext) -> None:
        domain = ctx.spec.domain
        assert domain is not None
        ctx.cluster.metadata["domain"] = {
            "host": domain.host_for(ctx.spec.name),
            "base_domain": domain.base_domain,
            "certificate_type": domain.certificate_type,
            "dns_provider": domain.dns_provider,
            "ingress_provider": domain.ingress_provider,
        }
        await self.backend.run_command(
            ctx.primary,
            scripts.ingress_command(domain.ingress_provider),
            self.timeouts.command,
        )
        ctx.cluster.metadata["domain"]["ingress_installed"] = True

    async def fetch_kubeconfig(self, ctx: ProvisionContext) -> str:
        """Kubeconfig with real credentials when the primary hands them over."""
        admin_conf: str | None = None
        try:
            admin_conf = await self.bootstrapper.fetch_admin_kubeconfig(ctx.primary)
        except Exception as e:
            logger.bind(cluster=ctx.spec.name).warning(f"Could not fetch admin kubeconfig: {e}")
        return build_kubeconfig(ctx.cluster, admin_conf)
