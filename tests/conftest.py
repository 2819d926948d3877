from __future__ import annotations

from pathlib import Path

import pytest
from support.fake_backend import FakeBackend

from kubeward.api.spec import ClusterSpec, NodeGroupSpec
from kubeward.manager import ClusterManager
from kubeward.timeouts import TimeoutConfig
from kubeward.tracker import TrackerStore

FAST_TIMEOUTS = TimeoutConfig(
    infra_ready=1.0,
    infra_poll_interval=0.01,
    bootstrap=1.0,
    bootstrap_poll_interval=0.01,
    node_termination=0.2,
    node_termination_poll_interval=0.01,
    network_available=0.5,
    health=0.1,
    health_poll_interval=0.01,
    command=1.0,
    security_group_propagation=0.0,
    security_group_delete_attempts=3,
    security_group_delete_base_delay=0.001,
    network_delete_attempts=2,
    network_delete_base_delay=0.001,
)


@pytest.fixture
def timeouts() -> TimeoutConfig:
    return FAST_TIMEOUTS


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def store(tmp_path: Path) -> TrackerStore:
    return TrackerStore(tmp_path / "trackers")


@pytest.fixture
def spec() -> ClusterSpec:
    return ClusterSpec(
        name="dev",
        backend="fake",
        node_groups=(NodeGroupSpec(name="default", replicas=2),),
    )


@pytest.fixture
def manager(backend: FakeBackend, timeouts: TimeoutConfig, store: TrackerStore) -> ClusterManager:
    return ClusterManager({"fake": backend}, timeouts=timeouts, store=store)
