from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any

from kubeward.constants import (
    BOOTSTRAP_POLL_INTERVAL,
    BOOTSTRAP_TIMEOUT,
    COMMAND_TIMEOUT,
    HEALTH_POLL_INTERVAL,
    HEALTH_TIMEOUT,
    INFRA_POLL_INTERVAL,
    INFRA_READY_TIMEOUT,
    NETWORK_AVAILABLE_TIMEOUT,
    NETWORK_DELETE_ATTEMPTS,
    NETWORK_DELETE_BASE_DELAY,
    NODE_TERMINATION_POLL_INTERVAL,
    NODE_TERMINATION_TIMEOUT,
    SECURITY_GROUP_DELETE_ATTEMPTS,
    SECURITY_GROUP_DELETE_BASE_DELAY,
    SECURITY_GROUP_PROPAGATION_DELAY,
)
from kubeward.core.exceptions import ConfigurationError


@dataclass(frozen=True, slots=True)
class TimeoutConfig:
    """Time bounds and retry policy for every wait in kubeward.

    All durations are in seconds. Tests shrink these to milliseconds.
    """

    infra_ready: float = INFRA_READY_TIMEOUT
    infra_poll_interval: float = INFRA_POLL_INTERVAL
    bootstrap: float = BOOTSTRAP_TIMEOUT
    bootstrap_poll_interval: float = BOOTSTRAP_POLL_INTERVAL
    node_termination: float = NODE_TERMINATION_TIMEOUT
    node_termination_poll_interval: float = NODE_TERMINATION_POLL_INTERVAL
    network_available: float = NETWORK_AVAILABLE_TIMEOUT
    health: float = HEALTH_TIMEOUT
    health_poll_interval: float = HEALTH_POLL_INTERVAL
    command: float = COMMAND_TIMEOUT
    security_group_propagation: float = SECURITY_GROUP_PROPAGATION_DELAY
    security_group_delete_attempts: int = SECURITY_GROUP_DELETE_ATTEMPTS
    security_group_delete_base_delay: float = SECURITY_GROUP_DELETE_BASE_DELAY
    network_delete_attempts: int = NETWORK_DELETE_ATTEMPTS
    network_delete_base_delay: float = NETWORK_DELETE_BASE_DELAY

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TimeoutConfig:
        known = {f.name for f in fields(cls)}
        unknown = set(raw) - known
        if unknown:
            raise ConfigurationError(f"Unknown timeout keys: {', '.join(sorted(unknown))}")
        return cls(**raw)
