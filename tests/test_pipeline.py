from __future__ import annotations

import asyncio

import pytest
import yaml
from support.fake_backend import FakeBackend

from kubeward.api.model import Cluster, ClusterId, ClusterStatus, NodeRole
from kubeward.api.spec import ClusterSpec, ControlPlaneSpec, DomainConfig, NodeGroupSpec
from kubeward.bootstrap import scripts
from kubeward.constants import ResourceClass
from kubeward.core.exceptions import (
    CommandError,
    ConfigurationError,
    HealthCheckError,
    ProvisioningError,
    QuotaExceededError,
    ResourceCreationError,
)
from kubeward.pipeline import ProvisioningPipeline, Step, cluster_rules
from kubeward.tracker import ResourceTracker, TrackerStore

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


@pytest.fixture
def pipeline(backend: FakeBackend, timeouts, store: TrackerStore) -> ProvisioningPipeline:
    return ProvisioningPipeline(backend, timeouts=timeouts, store=store)


def creates(backend: FakeBackend) -> list[str]:
    return [m for m, _ in backend.calls if m.startswith("create_")]


class TestHappyPath:
    async def test_single_control_plane_two_workers(self, backend, pipeline, spec):
        result = await pipeline.provision(spec)

        assert result.cluster.status is ClusterStatus.RUNNING
        assert result.cluster.id == ClusterId("fake", "dev")
        assert len(result.infrastructure.nodes) == 3
        assert len(result.infrastructure.control_plane) == 1
        assert [w.node_group for w in result.infrastructure.workers] == ["default", "default"]

        primary = result.infrastructure.primary
        assert primary is not None
        assert result.cluster.endpoint == f"https://{primary.public_ip}:6443"
        assert result.tracker.summary() == {
            "network": 1, "subnet": 1, "gateway": 1, "security_group": 1, "node": 3,
        }

    async def test_step_order(self, backend, pipeline, spec):
        await pipeline.provision(spec)
        assert creates(backend) == [
            "create_network",
            "create_subnet",
            "create_gateway",
            "create_security_group",
            "create_node",
            "create_node",
            "create_node",
        ]
        assert backend.called("create_node") == ["dev-cp-1", "dev-default-1", "dev-default-2"]

    async def test_commands_on_primary(self, backend, pipeline, spec):
        result = await pipeline.provision(spec)
        primary = result.infrastructure.primary
        assert primary is not None

        on_primary = [c for node_id, c in backend.commands if node_id == primary.id]
        init = next(i for i, c in enumerate(on_primary) if c.startswith("sudo kubeadm init"))
        cni = on_primary.index(scripts.cni_command(spec.networking))
        assert on_primary.index(scripts.marker_check_command()) < init < cni

        worker_cmds = [c for node_id, c in backend.commands if node_id != primary.id]
        joins = [c for c in worker_cmds if c.startswith("sudo kubeadm join")]
        assert len(joins) == 2
        assert all("--control-plane" not in c for c in joins)

    async def test_high_availability_joins_control_plane(self, backend, pipeline):
        spec = ClusterSpec(name="ha", backend="fake", control_plane=ControlPlaneSpec(replicas=3))
        result = await pipeline.provision(spec)

        assert [n.role for n in result.infrastructure.nodes] == [NodeRole.CONTROL_PLANE] * 3
        joins = [c for _, c in backend.commands if c.startswith("sudo kubeadm join")]
        assert len(joins) == 2
        assert all("--control-plane" in c for c in joins)

    async def test_zero_replica_group_skipped(self, backend, pipeline):
        spec = ClusterSpec(
            name="dev",
            backend="fake",
            node_groups=(
                NodeGroupSpec(name="gpu", replicas=0),
                NodeGroupSpec(name="default", replicas=1),
            ),
        )
        result = await pipeline.provision(spec)

        assert backend.called("create_node") == ["dev-cp-1", "dev-default-1"]
        assert result.infrastructure.workers_in("gpu") == []

    async def test_tags_on_every_resource(self, backend, pipeline):
        spec = ClusterSpec(name="dev", backend="fake", tags={"team": "infra"})
        await pipeline.provision(spec)

        for res in backend.resources.values():
            assert res.tags["kubeward.io/cluster-name"] == "dev"
            assert res.tags["team"] == "infra"
        node = next(iter(backend.nodes.values()))
        assert node.tags["kubeward.io/role"] == "control-plane"
        assert node.tags["Role"] == "master"

    async def test_kubeconfig_carries_admin_credentials(self, pipeline, spec):
        result = await pipeline.provision(spec)
        doc = yaml.safe_load(result.kubeconfig)
        assert doc["clusters"][0]["cluster"]["server"] == result.cluster.endpoint
        assert doc["users"][0]["user"]["client-key-data"] == "S0VZ"

    async def test_kubeconfig_falls_back_without_credentials(self, backend, pipeline, spec):
        backend.fail_command(
            scripts.read_admin_kubeconfig_command(), CommandError("cat", 1, "permission denied"),
        )
        result = await pipeline.provision(spec)
        doc = yaml.safe_load(result.kubeconfig)
        assert result.cluster.status is ClusterStatus.RUNNING
        assert doc["users"][0]["user"]["client-certificate-data"] == ""

    async def test_tracker_persisted_while_running(self, backend, pipeline, spec, store):
        await pipeline.provision(spec)
        saved = store.load("fake-dev")
        assert saved is not None
        assert len(saved.ids(ResourceClass.NODE)) == 3

    async def test_caller_tracker_is_filled(self, pipeline, spec):
        tracker = ResourceTracker("dev")
        await pipeline.provision(spec, tracker=tracker)
        assert len(tracker) == 7


class TestRollback:
    async def test_security_group_failure_rolls_back_network(self, backend, pipeline, spec, store):
        backend.fail("create_security_group", QuotaExceededError("too many groups"))

        with pytest.raises(ProvisioningError) as exc_info:
            await pipeline.provision(spec)

        err = exc_info.value
        assert err.step == Step.SECURITY_GROUP
        assert err.cluster.status is ClusterStatus.ERROR
        assert err.teardown_errors == []
        assert isinstance(err.__cause__, QuotaExceededError)
        assert backend.resources == {}
        assert backend.live(ResourceClass.NODE) == []
        assert store.load("fake-dev") is None

    async def test_rollback_sees_exactly_what_was_created(self, backend, pipeline, spec, monkeypatch):
        backend.fail("create_security_group", QuotaExceededError("too many groups"))
        seen: list[ResourceTracker] = []
        original = pipeline.teardown.teardown

        async def spy(tracker: ResourceTracker):
            seen.append(tracker.snapshot())
            return await original(tracker)

        monkeypatch.setattr(pipeline.teardown, "teardown", spy)

        with pytest.raises(ProvisioningError):
            await pipeline.provision(spec)

        assert len(seen) == 1
        assert len(seen[0].ids(ResourceClass.NETWORK)) == 1
        assert seen[0].ids(ResourceClass.NODE) == ()

    async def test_worker_failure_terminates_created_nodes(self, backend, pipeline, spec):
        backend.fail_command("sudo kubeadm join", CommandError("kubeadm join", 1, "boom"))

        with pytest.raises(ProvisioningError) as exc_info:
            await pipeline.provision(spec)

        assert exc_info.value.step == Step.WORKER_JOIN
        assert backend.live(ResourceClass.NODE) == []
        assert backend.resources == {}

    async def test_partially_created_node_is_cleaned_up(self, backend, pipeline, spec):
        backend.fail(
            "create_node",
            ResourceCreationError("node", "dev-cp-1", "boot failed", resource_id="i-orphan"),
        )

        with pytest.raises(ProvisioningError):
            await pipeline.provision(spec)

        assert "i-orphan" in backend.called("terminate_node")

    async def test_bootstrap_error_marker(self, backend, pipeline, spec):
        backend.marker_output = "error\napt-get failed"

        with pytest.raises(ProvisioningError) as exc_info:
            await pipeline.provision(spec)

        assert exc_info.value.step == Step.PRIMARY_BOOTSTRAP
        assert "apt-get failed" in str(exc_info.value.__cause__)

    async def test_invalid_spec_creates_nothing(self, backend, pipeline):
        with pytest.raises(ConfigurationError):
            await pipeline.provision(ClusterSpec(name="Bad_Name", backend="fake"))
        assert backend.calls == []


class TestHealthAndDomain:
    async def test_health_failure_keeps_infrastructure(self, backend, pipeline, spec):
        backend.nodes_ready = False

        with pytest.raises(HealthCheckError) as exc_info:
            await pipeline.provision(spec)

        assert exc_info.value.cluster.status is ClusterStatus.CREATING
        assert backend.called("terminate_node") == []
        assert len(backend.live(ResourceClass.NODE)) == 3

    async def test_domain_recorded(self, backend, pipeline):
        spec = ClusterSpec(name="web", backend="fake", domain=DomainConfig(base_domain="example.com"))
        result = await pipeline.provision(spec)

        domain = result.cluster.metadata["domain"]
        assert domain["host"] == "web.example.com"
        assert domain["ingress_installed"] is True
        assert any(c == scripts.ingress_command("nginx") for _, c in backend.commands)

    async def test_domain_failure_is_swallowed(self, backend, pipeline):
        backend.fail_command("ingress-nginx", CommandError("kubectl apply", 1, "unreachable"))
        spec = ClusterSpec(name="web", backend="fake", domain=DomainConfig(base_domain="example.com"))

        result = await pipeline.provision(spec)

        assert result.cluster.status is ClusterStatus.RUNNING
        assert "ingress_installed" not in result.cluster.metadata["domain"]

    async def test_domain_opens_http_ports(self):
        spec = ClusterSpec(name="web", backend="fake", domain=DomainConfig(base_domain="example.com"))
        ports = {r.from_port for r in cluster_rules("sg-1", spec)}
        assert {22, 6443, 80, 443} <= ports


class TestCancellation:
    async def test_cancel_marks_error_without_teardown(self, backend, timeouts, store, spec):
        backend.marker_output = "running"
        pipeline = ProvisioningPipeline(backend, timeouts=timeouts, store=store)
        cluster = Cluster(id=ClusterId("fake", "dev"), region="test-1", version=spec.version)
        tracker = ResourceTracker("dev")

        task = asyncio.create_task(pipeline.provision(spec, cluster, tracker))
        while not backend.commands:
            await asyncio.sleep(0.005)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert cluster.status is ClusterStatus.ERROR
        assert backend.called("terminate_node") == []
        assert len(tracker.ids(ResourceClass.NODE)) == 1
        assert store.load("fake-dev") is not None
