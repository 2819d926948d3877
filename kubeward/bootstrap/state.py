"""Per-node bootstrap state machine.

A node moves strictly forward:

    provisioned -> infrastructure_ready -> bootstrap_complete -> role_ready

and may drop to ``failed`` from any non-final state. Skipping a state or
moving backwards is an InvalidTransitionError.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from kubeward.api.model import NodeInfo, NodeRole
from kubeward.core.exceptions import InvalidTransitionError


class BootstrapState(StrEnum):
    PROVISIONED = "provisioned"
    INFRASTRUCTURE_READY = "infrastructure_ready"
    BOOTSTRAP_COMPLETE = "bootstrap_complete"
    ROLE_READY = "role_ready"
    FAILED = "failed"


_ORDER: tuple[BootstrapState, ...] = (
    BootstrapState.PROVISIONED,
    BootstrapState.INFRASTRUCTURE_READY,
    BootstrapState.BOOTSTRAP_COMPLETE,
    BootstrapState.ROLE_READY,
)


@dataclass
class NodeBootstrap:
    """Tracks where one node is in its bootstrap."""

    node: NodeInfo
    state: BootstrapState = BootstrapState.PROVISIONED
    error: str | None = None
    history: list[tuple[BootstrapState, datetime]] = field(default_factory=list)

    @property
    def role(self) -> NodeRole:
        return self.node.role

    @property
    def is_terminal(self) -> bool:
        return self.state in (BootstrapState.ROLE_READY, BootstrapState.FAILED)

    def advance(self, target: BootstrapState, node: NodeInfo | None = None) -> None:
        """Move to the next state, optionally refreshing the node description."""
        if self.is_terminal or target is BootstrapState.FAILED:
            raise InvalidTransitionError(self.state, target)
        expected = _ORDER[_ORDER.index(self.state) + 1]
        if target is not expected:
            raise InvalidTransitionError(self.state, target)
        if node is not None:
            self.node = node
        self._enter(target)

    def fail(self, error: str) -> None:
        if self.is_terminal:
            raise InvalidTransitionError(self.state, BootstrapState.FAILED)
        self.error = error
        self._enter(BootstrapState.FAILED)

    def _enter(self, state: BootstrapState) -> None:
        self.history.append((state, datetime.now(UTC)))
        self.state = state
