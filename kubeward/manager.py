"""Cluster lifecycle operations.

ClusterManager is the surface callers use: create, delete, update,
get, list, health, metrics, backup, restore, addons and kubeconfig.
Clusters are addressed by ``<backend>-<name>`` ids. Clusters this
process did not create are adopted on first use by rebuilding their
topology from backend tags.

Example:
    >>> manager = ClusterManager({"aws": aws_backend})
    >>> cluster = await manager.create(spec)
    >>> await manager.update(str(cluster.id), spec.with_replicas(node_groups={"default": 4}))
    >>> warnings = await manager.delete(str(cluster.id))
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Mapping
from typing import Any

import yaml
from loguru import logger

from kubeward.api.backend import Backend
from kubeward.api.model import (
    Addon,
    Backup,
    Cluster,
    ClusterId,
    ClusterInfrastructure,
    ClusterStatus,
    ComponentHealth,
    HealthState,
    HealthStatus,
    MetricValue,
    Metrics,
    NodeInfo,
    NodeRole,
)
from kubeward.api.spec import ClusterSpec, ControlPlaneSpec, NodeGroupSpec
from kubeward.bootstrap import scripts
from kubeward.bootstrap.node import parse_columns
from kubeward.constants import API_SERVER_PORT, KUBEWARD_DIR, ResourceClass
from kubeward.core.exceptions import (
    AddonError,
    ClusterNotFoundError,
    ClusterNotReadyError,
    ConfigurationError,
    KubewardError,
    NotFoundError,
)
from kubeward.discovery import discover
from kubeward.kubeconfig import merge_admin_kubeconfig, needs_manual_auth
from kubeward.pipeline import ProvisionContext, ProvisioningPipeline
from kubeward.registry import ClusterRecord, ClusterRegistry
from kubeward.tags import cluster_tags
from kubeward.teardown import TeardownOrchestrator
from kubeward.timeouts import TimeoutConfig
from kubeward.tracker import ResourceTracker, TrackerStore

BACKUP_DIR = f"{KUBEWARD_DIR}/backups"
ADDON_DIR = f"{KUBEWARD_DIR}/addons"


def _worse(a: HealthState, b: HealthState) -> HealthState:
    order: tuple[HealthState, ...] = ("healthy", "unknown", "degraded", "unhealthy")
    return a if order.index(a) >= order.index(b) else b


class ClusterManager:
    """Lifecycle operations over a set of named backends.

    Args:
        backends: Backend instances keyed by backend name. The name is the
            first component of every cluster id.
        timeouts: Bounds for every wait.
        store: Tracker persistence. Defaults to ``~/.kubeward/trackers``.
        registry: In-process cluster registry. One is created if omitted.
    """

    def __init__(
        self,
        backends: Mapping[str, Backend],
        *,
        timeouts: TimeoutConfig | None = None,
        store: TrackerStore | None = None,
        registry: ClusterRegistry | None = None,
    ) -> None:
        if not backends:
            raise ConfigurationError("ClusterManager needs at least one backend")
        self.backends = dict(backends)
        self.timeouts = timeouts or TimeoutConfig()
        self.store = store if store is not None else TrackerStore()
        self.registry = registry if registry is not None else ClusterRegistry()

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def backend(self, name: str) -> Backend:
        try:
            return self.backends[name]
        except KeyError:
            raise ConfigurationError(
                f"Unknown backend '{name}'. Available: {', '.join(self.backends)}"
            ) from None

    def resolve_id(self, cluster_id: str | ClusterId) -> ClusterId:
        if isinstance(cluster_id, ClusterId):
            return cluster_id
        try:
            return ClusterId.parse(cluster_id, self.backends)
        except ValueError:
            raise ClusterNotFoundError(cluster_id) from None

    def pipeline(self, backend: Backend) -> ProvisioningPipeline:
        return ProvisioningPipeline(backend, timeouts=self.timeouts, store=self.store)

    def _context(self, record: ClusterRecord, spec: ClusterSpec | None = None) -> ProvisionContext:
        return ProvisionContext(
            spec=spec or record.spec,
            cluster=record.cluster,
            tracker=record.tracker,
            infrastructure=record.infrastructure,
        )

    async def _require(self, cluster_id: ClusterId) -> ClusterRecord:
        record = self.registry.get(cluster_id)
        if record is None:
            record = await self._adopt(cluster_id)
        return record

    @staticmethod
    def _require_running(record: ClusterRecord) -> NodeInfo:
        primary = record.infrastructure.primary
        if record.cluster.status is not ClusterStatus.RUNNING or primary is None:
            raise ClusterNotReadyError(str(record.id), record.cluster.status)
        return primary

    async def _adopt(self, cluster_id: ClusterId) -> ClusterRecord:
        """Rebuild a record for a cluster this process did not create."""
        backend = self.backend(cluster_id.backend)
        tracker = self.store.load(str(cluster_id))
        if tracker is None:
            tracker = await discover(backend, cluster_id.name)
        nodes = await backend.list_nodes(cluster_id.name)
        if not nodes and tracker.is_empty:
            raise ClusterNotFoundError(str(cluster_id))

        for node in nodes:
            if node.id not in tracker:
                tracker.record(ResourceClass.NODE, node.id)

        control_plane = [n for n in nodes if n.role is NodeRole.CONTROL_PLANE]
        workers = [n for n in nodes if n.role is NodeRole.WORKER]
        networks = tracker.ids(ResourceClass.NETWORK)
        infra = ClusterInfrastructure(
            network_id=networks[0] if networks else None,
            subnet_ids=list(tracker.ids(ResourceClass.SUBNET)),
            security_group_ids=list(tracker.ids(ResourceClass.SECURITY_GROUP)),
            control_plane=control_plane,
            workers=workers,
        )

        groups: dict[str, list[NodeInfo]] = {}
        for w in workers:
            groups.setdefault(w.node_group or "default", []).append(w)
        spec = ClusterSpec(
            name=cluster_id.name,
            backend=cluster_id.backend,
            region=backend.region,
            version="",
            control_plane=ControlPlaneSpec(
                replicas=max(len(control_plane), 1),
                machine_class=control_plane[0].machine_class if control_plane else "",
            ),
            node_groups=tuple(
                NodeGroupSpec(name=g, replicas=len(ns), machine_class=ns[0].machine_class)
                for g, ns in groups.items()
            ),
        )

        primary = infra.primary
        cluster = Cluster(
            id=cluster_id,
            region=backend.region,
            version="",
            status=ClusterStatus.RUNNING if primary is not None else ClusterStatus.ERROR,
            endpoint=f"https://{primary.address}:{API_SERVER_PORT}" if primary else "",
            metadata={"adopted": True, "network_id": infra.network_id},
        )
        record = ClusterRecord(cluster=cluster, spec=spec, tracker=tracker, infrastructure=infra)
        self.registry.put(record)
        logger.bind(cluster_id=str(cluster_id)).info(
            f"Adopted cluster with {len(nodes)} nodes ({cluster.status})"
        )
        return record

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    async def _register(self, spec: ClusterSpec) -> ClusterRecord:
        spec.validate()
        backend = self.backend(spec.backend)
        cluster_id = ClusterId(spec.backend, spec.name)

        async with self.registry.lock(cluster_id):
            existing = self.registry.get(cluster_id)
            if existing is not None and existing.cluster.status is not ClusterStatus.ERROR:
                raise ConfigurationError(
                    f"Cluster {cluster_id} already exists ({existing.cluster.status})"
                )

            if existing is not None:
                # A clean rollback discards the persisted tracker; whatever is
                # still on disk is what the failed attempt could not remove.
                tracker = ResourceTracker(spec.name, existing.cluster.region)
                leftover = self.store.load(str(cluster_id))
                if leftover is not None:
                    tracker.merge(leftover)
                existing.cluster.transition(ClusterStatus.CREATING)
                existing.spec = spec
                existing.tracker = tracker
                existing.infrastructure = ClusterInfrastructure()
                existing.kubeconfig = ""
                existing.error = None
                return existing

            cluster = Cluster(
                id=cluster_id,
                region=spec.region or backend.region,
                version=spec.version,
                tags=dict(spec.tags),
            )
            tracker = ResourceTracker(spec.name, cluster.region)
            record = ClusterRecord(cluster=cluster, spec=spec, tracker=tracker)
            self.registry.put(record)
            return record

    async def _provision(self, record: ClusterRecord) -> Cluster:
        async with self.registry.lock(record.id):
            if self.registry.get(record.id) is not record:
                raise ClusterNotFoundError(str(record.id))
            backend = self.backend(record.id.backend)
            result = await self.pipeline(backend).provision(
                record.spec,
                record.cluster,
                record.tracker,
                record.infrastructure,
            )
            record.kubeconfig = result.kubeconfig
            record.cluster.metadata["nodes"] = len(result.infrastructure.nodes)
            return result.cluster

    async def create(self, spec: ClusterSpec) -> Cluster:
        """Provision a cluster and wait for it to be running.

        Raises:
            ConfigurationError: If the spec is invalid or the cluster exists.
            ProvisioningError: If provisioning failed and was rolled back.
            HealthCheckError: If the cluster came up but never became healthy.
        """
        record = await self._register(spec)
        return await self._provision(record)

    async def create_in_background(self, spec: ClusterSpec) -> asyncio.Task[Cluster]:
        """Register the cluster and provision it in a supervised task.

        The cluster is visible through ``get`` in ``creating`` as soon as
        this returns. Cancelling the task stops provisioning and leaves
        the cluster ``error`` with its tracker persisted for ``delete``.
        """
        record = await self._register(spec)
        task = self.registry.supervise(record.id, self._provision(record))
        record.task = task
        return task

    # -------------------------------------------------------------------------
    # Delete
    # -------------------------------------------------------------------------

    async def delete(self, cluster_id: str | ClusterId) -> list[KubewardError]:
        """Tear down every resource of a cluster.

        Returns:
            Resources that could not be removed. The cluster is considered
            deleted even when this list is non-empty.

        Raises:
            ClusterNotFoundError: If nothing is known about the cluster.
        """
        cid = self.resolve_id(cluster_id)
        backend = self.backend(cid.backend)
        log = logger.bind(cluster_id=str(cid))

        record = self.registry.get(cid)
        if record is not None and record.busy:
            assert record.task is not None
            log.info("Cancelling in-flight operation before delete")
            record.task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await record.task

        async with self.registry.lock(cid):
            record = self.registry.get(cid)
            tracker = record.tracker if record is not None else self.store.load(str(cid))
            if tracker is None or tracker.is_empty:
                discovered = await discover(backend, cid.name)
                if tracker is None:
                    tracker = discovered
                else:
                    tracker.merge(discovered)
            if tracker.is_empty and record is None:
                raise ClusterNotFoundError(str(cid))

            errors = await TeardownOrchestrator(backend, self.timeouts).teardown(tracker)

            if record is not None:
                record.cluster.transition(ClusterStatus.DELETED)
            self.registry.remove(cid)
            if errors:
                self.store.save(str(cid), tracker)
                log.warning(f"Deleted with {len(errors)} warnings")
            else:
                self.store.discard(str(cid))
                log.info("Deleted")
            return list(errors)

    # -------------------------------------------------------------------------
    # Update
    # -------------------------------------------------------------------------

    async def update(self, cluster_id: str | ClusterId, spec: ClusterSpec) -> Cluster:
        """Scale control-plane and node-group replica counts to ``spec``.

        Scale-down removes the newest nodes first. The primary control-plane
        node is never removed.

        Raises:
            ConfigurationError: If ``spec`` renames the cluster or is invalid.
            ClusterNotReadyError: If the cluster is not running.
        """
        cid = self.resolve_id(cluster_id)
        if spec.name != cid.name or spec.backend != cid.backend:
            raise ConfigurationError(f"Spec {spec.backend}-{spec.name} does not match {cid}")
        spec.validate()

        async with self.registry.lock(cid):
            record = await self._require(cid)
            self._require_running(record)
            cluster = record.cluster
            cluster.transition(ClusterStatus.UPDATING)
            try:
                await self._scale(record, spec)
            except Exception as e:
                logger.bind(cluster_id=str(cid)).error(f"Update failed: {e}")
                cluster.transition(ClusterStatus.ERROR)
                raise
            record.spec = spec
            cluster.metadata["nodes"] = len(record.infrastructure.nodes)
            cluster.transition(ClusterStatus.RUNNING)
            return cluster

    async def _scale(self, record: ClusterRecord, spec: ClusterSpec) -> None:
        backend = self.backend(record.id.backend)
        pipeline = self.pipeline(backend)
        ctx = self._context(record, spec)
        infra = record.infrastructure
        primary = ctx.primary
        log = logger.bind(cluster_id=str(record.id))

        removals: list[NodeInfo] = list(infra.control_plane[spec.control_plane.replicas:])
        existing_groups = {w.node_group for w in infra.workers}
        for group_name in sorted(existing_groups | {g.name for g in spec.node_groups}):
            group = spec.node_group(group_name)
            desired = group.replicas if group is not None else 0
            removals += infra.workers_in(group_name)[desired:]

        cp_to_add = range(len(infra.control_plane) + 1, spec.control_plane.replicas + 1)
        workers_to_add = {
            g.name: range(len(infra.workers_in(g.name)) + 1, g.replicas + 1)
            for g in spec.node_groups
        }
        adding = len(cp_to_add) + sum(len(r) for r in workers_to_add.values())
        log.info(f"Scaling: +{adding} / -{len(removals)} nodes")

        if adding:
            infra.join = await pipeline.bootstrapper.join_credentials(primary)
        for index in cp_to_add:
            await pipeline.add_control_plane(ctx, index)
        for group in spec.node_groups:
            if workers_to_add[group.name]:
                await pipeline.add_workers(ctx, group, workers_to_add[group.name])

        if removals:
            await self._remove_nodes(pipeline, ctx, list(reversed(removals)))

        await pipeline.bootstrapper.verify_health(primary, len(infra.nodes))

    async def _remove_nodes(
        self,
        pipeline: ProvisioningPipeline,
        ctx: ProvisionContext,
        nodes: list[NodeInfo],
    ) -> None:
        infra = ctx.infrastructure
        primary = ctx.primary
        if any(n.id == primary.id for n in nodes):
            raise ConfigurationError("Refusing to remove the primary control-plane node")

        names: dict[str, str] = {}
        try:
            output = await pipeline.backend.run_command(
                primary, scripts.node_addresses_command(), self.timeouts.command,
            )
            names = {ip: name for name, ip in parse_columns(output).items()}
        except KubewardError as e:
            logger.warning(f"Could not map node addresses, skipping drain: {e}")

        for node in nodes:
            name = names.get(node.private_ip or "")
            if name:
                try:
                    await pipeline.backend.run_command(
                        primary, scripts.drain_command(name), self.timeouts.command,
                    )
                except KubewardError as e:
                    logger.warning(f"Drain of {name} failed, terminating anyway: {e}")
            if node.role is NodeRole.CONTROL_PLANE:
                await pipeline.bootstrapper.reset([node])

            await pipeline.backend.terminate_node(node.id)
            if node in infra.control_plane:
                infra.control_plane.remove(node)
            if node in infra.workers:
                infra.workers.remove(node)

        await asyncio.gather(*(pipeline.teardown.wait_terminated(n.id) for n in nodes))

    # -------------------------------------------------------------------------
    # Read
    # -------------------------------------------------------------------------

    async def get(self, cluster_id: str | ClusterId) -> Cluster:
        return (await self._require(self.resolve_id(cluster_id))).cluster

    async def list(self) -> list[Cluster]:
        """Registered clusters plus any persisted by an earlier process."""
        for raw_id in self.store.list_ids():
            try:
                cid = ClusterId.parse(raw_id, self.backends)
            except ValueError:
                continue
            if cid in self.registry:
                continue
            try:
                await self._adopt(cid)
            except KubewardError as e:
                logger.warning(f"Skipping unreadable cluster {raw_id}: {e}")
        return [r.cluster for r in self.registry.records()]

    # -------------------------------------------------------------------------
    # Health and metrics
    # -------------------------------------------------------------------------

    async def health(self, cluster_id: str | ClusterId) -> HealthStatus:
        """Check API server, node readiness and kube-system pods.

        A cluster left in ``creating`` by a failed health verification is
        promoted to ``running`` once this reports healthy.
        """
        cid = self.resolve_id(cluster_id)
        record = await self._require(cid)
        if record.busy:
            return HealthStatus(
                "unknown", {"cluster": ComponentHealth("unknown", "operation in progress")},
            )

        primary = record.infrastructure.primary
        if primary is None:
            return HealthStatus(
                "unhealthy", {"control-plane": ComponentHealth("unhealthy", "no control-plane node")},
            )

        backend = self.backend(cid.backend)
        bootstrapper = self.pipeline(backend).bootstrapper
        components: dict[str, ComponentHealth] = {}

        try:
            nodes = await bootstrapper.node_status(primary)
        except KubewardError as e:
            components["api-server"] = ComponentHealth("unhealthy", str(e))
            return HealthStatus("unhealthy", components)
        components["api-server"] = ComponentHealth("healthy")

        expected = len(record.infrastructure.nodes)
        ready = sum(nodes.values())
        if ready >= expected and all(nodes.values()):
            components["nodes"] = ComponentHealth("healthy", f"{ready}/{expected} ready")
        elif ready:
            components["nodes"] = ComponentHealth("degraded", f"{ready}/{expected} ready")
        else:
            components["nodes"] = ComponentHealth("unhealthy", f"0/{expected} ready")

        try:
            pods = parse_columns(
                await backend.run_command(
                    primary, scripts.component_status_command(), self.timeouts.command,
                )
            )
            failing = sorted(n for n, phase in pods.items() if phase not in ("Running", "Succeeded"))
            components["system-pods"] = (
                ComponentHealth("degraded", f"not running: {', '.join(failing)}")
                if failing else ComponentHealth("healthy", f"{len(pods)} running")
            )
        except KubewardError as e:
            components["system-pods"] = ComponentHealth("unknown", str(e))

        overall: HealthState = "healthy"
        for component in components.values():
            overall = _worse(overall, component.status)
        if overall == "unknown":
            overall = "degraded"
        status = HealthStatus(overall, components)

        if status.healthy and record.cluster.status is ClusterStatus.CREATING:
            await self._promote(record)
        return status

    async def _promote(self, record: ClusterRecord) -> None:
        async with self.registry.lock(record.id):
            if record.cluster.status is not ClusterStatus.CREATING:
                return
            primary = record.infrastructure.primary
            assert primary is not None
            record.cluster.endpoint = f"https://{primary.address}:{API_SERVER_PORT}"
            record.cluster.transition(ClusterStatus.RUNNING)
            pipeline = self.pipeline(self.backend(record.id.backend))
            record.kubeconfig = await pipeline.fetch_kubeconfig(self._context(record))
            logger.bind(cluster_id=str(record.id)).info("Cluster became healthy, now running")

    async def metrics(self, cluster_id: str | ClusterId) -> Metrics:
        cid = self.resolve_id(cluster_id)
        record = await self._require(cid)
        primary = self._require_running(record)
        backend = self.backend(cid.backend)

        nodes = await self.pipeline(backend).bootstrapper.node_status(primary)

        cpu_used = cpu_cap = mem_used = mem_cap = 0.0
        sampled = 0
        for node in record.infrastructure.nodes:
            try:
                output = await backend.run_command(
                    node, scripts.node_metrics_command(), self.timeouts.command,
                )
                c_used, c_cap, m_used, m_cap = (float(v) for v in output.split()[:4])
            except (KubewardError, ValueError) as e:
                logger.bind(node_id=node.id).debug(f"Metrics query failed: {e}")
                continue
            cpu_used += c_used
            cpu_cap += c_cap
            mem_used += m_used
            mem_cap += m_cap
            sampled += 1

        return Metrics(
            nodes_total=len(nodes),
            nodes_ready=sum(nodes.values()),
            cpu=MetricValue(cpu_used, cpu_cap) if sampled else None,
            memory=MetricValue(mem_used, mem_cap) if sampled else None,
        )

    # -------------------------------------------------------------------------
    # Backup and restore
    # -------------------------------------------------------------------------

    async def backup(self, cluster_id: str | ClusterId) -> Backup:
        """Snapshot etcd on the primary and every tracked volume."""
        cid = self.resolve_id(cluster_id)
        backend = self.backend(cid.backend)
        async with self.registry.lock(cid):
            record = await self._require(cid)
            primary = self._require_running(record)

            backup_id = f"backup-{cid.name}-{int(time.time())}"
            path = f"{BACKUP_DIR}/{backup_id}.db"
            log = logger.bind(cluster_id=str(cid))
            log.info(f"Creating backup {backup_id}")

            await backend.run_command(
                primary,
                f"sudo mkdir -p {BACKUP_DIR} && {scripts.etcd_snapshot_command(path)}",
                self.timeouts.command,
            )
            tags = cluster_tags(cid.name, backup_id, extra=record.spec.tags)
            snapshot_ids = tuple([
                await backend.snapshot_volume(volume_id, f"{backup_id} {volume_id}", tags)
                for volume_id in record.tracker.ids(ResourceClass.VOLUME)
            ])

            backup = Backup(
                id=backup_id,
                cluster_id=cid,
                status="completed",
                etcd_snapshot=path,
                snapshot_ids=snapshot_ids,
            )
            record.backups[backup_id] = backup
            record.cluster.metadata.setdefault("backups", []).append(backup_id)
            return backup

    async def restore(self, backup_id: str, target: str | ClusterId | None = None) -> Cluster:
        """Restore etcd from a backup taken on the same cluster.

        Raises:
            NotFoundError: If the backup is unknown.
            ConfigurationError: If ``target`` is a different cluster.
        """
        found = self.registry.find_backup(backup_id)
        if found is None:
            raise NotFoundError(f"Backup {backup_id} not found")
        _, backup = found
        cid = self.resolve_id(target) if target is not None else backup.cluster_id
        if cid != backup.cluster_id:
            raise ConfigurationError(
                f"Backup {backup_id} belongs to {backup.cluster_id}; cross-cluster restore "
                "needs the snapshot copied to the target first"
            )

        backend = self.backend(cid.backend)
        async with self.registry.lock(cid):
            record = await self._require(cid)
            primary = self._require_running(record)
            cluster = record.cluster
            cluster.transition(ClusterStatus.UPDATING)
            try:
                await backend.run_command(
                    primary, scripts.etcd_restore_command(backup.etcd_snapshot), self.timeouts.command,
                )
                await self.pipeline(backend).bootstrapper.verify_health(
                    primary, len(record.infrastructure.nodes),
                )
            except Exception:
                cluster.transition(ClusterStatus.ERROR)
                raise
            cluster.metadata["restored_from"] = backup_id
            cluster.transition(ClusterStatus.RUNNING)
            return cluster

    # -------------------------------------------------------------------------
    # Addons
    # -------------------------------------------------------------------------

    async def install_addon(
        self,
        cluster_id: str | ClusterId,
        name: str,
        chart: str,
        *,
        namespace: str = "default",
        repo: str = "",
        version: str = "",
        values: Mapping[str, Any] | None = None,
    ) -> Addon:
        """Install or upgrade a Helm release on the cluster."""
        cid = self.resolve_id(cluster_id)
        backend = self.backend(cid.backend)
        async with self.registry.lock(cid):
            record = await self._require(cid)
            primary = self._require_running(record)

            values_file = ""
            try:
                if values:
                    values_file = f"{ADDON_DIR}/{name}-values.yaml"
                    await backend.run_command(
                        primary,
                        scripts.write_file_command(values_file, yaml.safe_dump(dict(values))),
                        self.timeouts.command,
                    )
                await backend.run_command(
                    primary,
                    scripts.helm_install_command(
                        name, chart, namespace=namespace, repo=repo,
                        version=version, values_file=values_file,
                    ),
                    self.timeouts.command,
                )
            except KubewardError as e:
                raise AddonError(f"Failed to install addon {name}: {e}") from e

            addon = Addon(
                name=name, chart=chart, namespace=namespace,
                repo=repo, version=version, values=dict(values or {}),
            )
            record.addons[name] = addon
            record.cluster.metadata["addons"] = sorted(record.addons)
            logger.bind(cluster_id=str(cid)).info(f"Installed addon {name} ({chart})")
            return addon

    async def uninstall_addon(self, cluster_id: str | ClusterId, name: str) -> None:
        cid = self.resolve_id(cluster_id)
        backend = self.backend(cid.backend)
        async with self.registry.lock(cid):
            record = await self._require(cid)
            primary = self._require_running(record)
            addon = record.addons.get(name)
            if addon is None:
                raise NotFoundError(f"Addon {name} is not installed on {cid}")
            try:
                await backend.run_command(
                    primary, scripts.helm_uninstall_command(name, addon.namespace), self.timeouts.command,
                )
            except KubewardError as e:
                raise AddonError(f"Failed to uninstall addon {name}: {e}") from e
            del record.addons[name]
            record.cluster.metadata["addons"] = sorted(record.addons)

    async def list_addons(self, cluster_id: str | ClusterId) -> list[Addon]:
        record = await self._require(self.resolve_id(cluster_id))
        return sorted(record.addons.values(), key=lambda a: a.name)

    # -------------------------------------------------------------------------
    # Access
    # -------------------------------------------------------------------------

    async def kubeconfig(self, cluster_id: str | ClusterId, *, admin: bool = False) -> str:
        """Client kubeconfig for the cluster.

        Args:
            cluster_id: Cluster to describe.
            admin: Return the primary's own ``admin.conf`` with its API
                server pointed at the cluster endpoint instead of the
                generated kubeconfig.
        """
        cid = self.resolve_id(cluster_id)
        record = await self._require(cid)
        if admin:
            primary = self._require_running(record)
            bootstrapper = self.pipeline(self.backend(cid.backend)).bootstrapper
            admin_conf = await bootstrapper.fetch_admin_kubeconfig(primary)
            try:
                return merge_admin_kubeconfig(admin_conf, record.cluster.endpoint)
            except ValueError as e:
                raise ConfigurationError(f"Primary of {cid} returned an invalid admin.conf: {e}") from e

        if not record.kubeconfig:
            self._require_running(record)
            pipeline = self.pipeline(self.backend(cid.backend))
            record.kubeconfig = await pipeline.fetch_kubeconfig(self._context(record))
        if needs_manual_auth(record.kubeconfig):
            logger.bind(cluster_id=str(cid)).warning(
                "Kubeconfig has no credentials; authenticate manually"
            )
        return record.kubeconfig

    async def wait_idle(self) -> None:
        """Wait for every background operation to finish."""
        await self.registry.drain()
