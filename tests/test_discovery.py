from __future__ import annotations

import pytest
from support.fake_backend import FakeBackend

from kubeward.api.model import NodeRole
from kubeward.constants import ResourceClass
from kubeward.core.exceptions import TransientNetworkError
from kubeward.discovery import discover, discover_class
from kubeward.pipeline import ProvisioningPipeline
from kubeward.tags import cluster_tags

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


class TestDiscoverClass:
    async def test_ownership_tags_first(self, backend: FakeBackend):
        owned = backend.seed(ResourceClass.NETWORK, cluster_tags("dev", "dev-vpc"))
        backend.seed(ResourceClass.NETWORK, cluster_tags("other", "other-vpc"))
        assert await discover_class(backend, "dev", ResourceClass.NETWORK) == [owned]

    async def test_falls_back_to_legacy_cluster_tag(self, backend: FakeBackend):
        legacy = backend.seed(ResourceClass.SUBNET, {"Cluster": "dev"})
        assert await discover_class(backend, "dev", ResourceClass.SUBNET) == [legacy]

    async def test_falls_back_to_name_tag(self, backend: FakeBackend):
        named = backend.seed(ResourceClass.SECURITY_GROUP, {"Name": "dev-sg"})
        backend.seed(ResourceClass.SECURITY_GROUP, {"Name": "dev-sg-extra"})
        assert await discover_class(backend, "dev", ResourceClass.SECURITY_GROUP) == [named]

    async def test_name_tag_only_for_singletons(self, backend: FakeBackend):
        backend.seed(ResourceClass.VOLUME, {"Name": "dev-data"})
        assert await discover_class(backend, "dev", ResourceClass.VOLUME) == []

    async def test_failed_strategy_moves_on(self, backend: FakeBackend):
        legacy = backend.seed(ResourceClass.NETWORK, {"Cluster": "dev"})
        backend.fail("find_resources", TransientNetworkError("throttled"))
        assert await discover_class(backend, "dev", ResourceClass.NETWORK) == [legacy]


class TestDiscover:
    async def test_builds_tracker(self, backend: FakeBackend):
        vpc = backend.seed(ResourceClass.NETWORK, cluster_tags("dev", "dev-vpc"))
        sg = backend.seed(ResourceClass.SECURITY_GROUP, {"Cluster": "dev", "Name": "dev-sg"})
        lb = backend.seed(ResourceClass.LOAD_BALANCER, {"Name": "dev-lb"})

        tracker = await discover(backend, "dev")

        assert tracker.cluster_name == "dev"
        assert tracker.region == "test-1"
        assert tracker.ids(ResourceClass.NETWORK) == (vpc,)
        assert tracker.ids(ResourceClass.SECURITY_GROUP) == (sg,)
        assert tracker.ids(ResourceClass.LOAD_BALANCER) == (lb,)

    async def test_finds_nodes_by_tags(self, backend: FakeBackend, spec, timeouts):
        result = await ProvisioningPipeline(backend, timeouts=timeouts).provision(spec)
        tracker = await discover(backend, "dev")

        assert set(tracker.ids(ResourceClass.NODE)) == set(result.tracker.ids(ResourceClass.NODE))
        roles = {backend.nodes[n].tags["kubeward.io/role"] for n in tracker.ids(ResourceClass.NODE)}
        assert roles == {NodeRole.CONTROL_PLANE, NodeRole.WORKER}

    async def test_nothing_found(self, backend: FakeBackend):
        tracker = await discover(backend, "ghost")
        assert tracker.is_empty
