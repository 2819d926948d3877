"""Node bootstrap: first-boot payloads, state machine and cluster formation."""

from .node import NodeBootstrapper, parse_node_status
from .scripts import generate_user_data
from .state import BootstrapState, NodeBootstrap

__all__ = [
    "BootstrapState",
    "NodeBootstrap",
    "NodeBootstrapper",
    "generate_user_data",
    "parse_node_status",
]
