from __future__ import annotations

import pytest

from kubeward.api.model import (
    Cluster,
    ClusterId,
    ClusterStatus,
    NodeInfo,
    NodeRole,
    can_transition,
)
from kubeward.bootstrap.state import BootstrapState, NodeBootstrap
from kubeward.core.exceptions import InvalidTransitionError

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


def make_cluster(status: ClusterStatus = ClusterStatus.CREATING) -> Cluster:
    return Cluster(id=ClusterId("aws", "dev"), region="us-east-1", version="1.30", status=status)


class TestClusterTransitions:
    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (ClusterStatus.CREATING, ClusterStatus.RUNNING),
            (ClusterStatus.CREATING, ClusterStatus.ERROR),
            (ClusterStatus.RUNNING, ClusterStatus.UPDATING),
            (ClusterStatus.UPDATING, ClusterStatus.RUNNING),
            (ClusterStatus.UPDATING, ClusterStatus.ERROR),
            (ClusterStatus.ERROR, ClusterStatus.CREATING),
            (ClusterStatus.RUNNING, ClusterStatus.DELETED),
            (ClusterStatus.ERROR, ClusterStatus.DELETED),
        ],
    )
    def test_legal(self, current: ClusterStatus, target: ClusterStatus):
        cluster = make_cluster(current)
        before = cluster.updated_at
        cluster.transition(target)
        assert cluster.status is target
        assert cluster.updated_at >= before

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (ClusterStatus.CREATING, ClusterStatus.UPDATING),
            (ClusterStatus.RUNNING, ClusterStatus.CREATING),
            (ClusterStatus.ERROR, ClusterStatus.RUNNING),
            (ClusterStatus.DELETED, ClusterStatus.CREATING),
            (ClusterStatus.DELETED, ClusterStatus.DELETED),
        ],
    )
    def test_illegal(self, current: ClusterStatus, target: ClusterStatus):
        cluster = make_cluster(current)
        with pytest.raises(InvalidTransitionError):
            cluster.transition(target)
        assert cluster.status is current

    def test_every_live_status_can_be_deleted(self):
        for status in ClusterStatus:
            assert can_transition(status, ClusterStatus.DELETED) is (status is not ClusterStatus.DELETED)


class TestClusterId:
    def test_renders_backend_and_name(self):
        assert str(ClusterId("aws", "web-prod")) == "aws-web-prod"

    def test_parse_allows_dashed_names(self):
        assert ClusterId.parse("aws-web-prod", ["aws", "ssh"]) == ClusterId("aws", "web-prod")

    def test_parse_prefers_longest_backend(self):
        assert ClusterId.parse("aws-gov-dev", ["aws", "aws-gov"]) == ClusterId("aws-gov", "dev")

    @pytest.mark.parametrize("text", ["gcp-dev", "aws-", "aws"])
    def test_parse_rejects(self, text: str):
        with pytest.raises(ValueError):
            ClusterId.parse(text, ["aws"])


class TestNodeBootstrap:
    @pytest.fixture
    def state(self) -> NodeBootstrap:
        return NodeBootstrap(NodeInfo(id="i-1", role=NodeRole.WORKER))

    def test_forward_path(self, state: NodeBootstrap):
        state.advance(BootstrapState.INFRASTRUCTURE_READY)
        state.advance(BootstrapState.BOOTSTRAP_COMPLETE)
        state.advance(BootstrapState.ROLE_READY)
        assert state.is_terminal
        assert [s for s, _ in state.history] == [
            BootstrapState.INFRASTRUCTURE_READY,
            BootstrapState.BOOTSTRAP_COMPLETE,
            BootstrapState.ROLE_READY,
        ]

    def test_cannot_skip(self, state: NodeBootstrap):
        with pytest.raises(InvalidTransitionError):
            state.advance(BootstrapState.BOOTSTRAP_COMPLETE)
        assert state.state is BootstrapState.PROVISIONED

    def test_cannot_go_back(self, state: NodeBootstrap):
        state.advance(BootstrapState.INFRASTRUCTURE_READY)
        with pytest.raises(InvalidTransitionError):
            state.advance(BootstrapState.PROVISIONED)

    def test_advance_refreshes_node(self, state: NodeBootstrap):
        ready = NodeInfo(id="i-1", role=NodeRole.WORKER, private_ip="10.0.0.5")
        state.advance(BootstrapState.INFRASTRUCTURE_READY, ready)
        assert state.node.private_ip == "10.0.0.5"

    def test_fail_from_any_non_final_state(self, state: NodeBootstrap):
        state.advance(BootstrapState.INFRASTRUCTURE_READY)
        state.fail("no marker")
        assert state.state is BootstrapState.FAILED
        assert state.error == "no marker"

    def test_terminal_states_are_final(self, state: NodeBootstrap):
        state.fail("boom")
        with pytest.raises(InvalidTransitionError):
            state.fail("again")
        with pytest.raises(InvalidTransitionError):
            state.advance(BootstrapState.INFRASTRUCTURE_READY)

    def test_failed_is_not_reachable_through_advance(self, state: NodeBootstrap):
        with pytest.raises(InvalidTransitionError):
            state.advance(BootstrapState.FAILED)
