"""SSH backend configuration.

Clusters built on machines that already exist and are reachable over
SSH. The host list is the whole inventory: nodes are claimed from it
and returned to it on termination.
"""

from __future__ import annotations

import typing
from dataclasses import dataclass

if typing.TYPE_CHECKING:
    from kubeward.backends.ssh.backend import SSHBackend


@dataclass(frozen=True, slots=True)
class SSH:
    """SSH backend configuration.

    Example:
        >>> from kubeward.backends.ssh import SSH
        >>> backend = SSH(hosts=("10.0.0.11", "10.0.0.12"), username="ops").create_backend()

    Args:
        hosts: Addresses of the machines nodes may be placed on.
        username: SSH login user. Needs passwordless sudo.
        key_path: Private key used for every host.
        port: SSH port of every host.
        region: Label reported as the backend region.
        connect_timeout: Connect timeout in seconds.
    """

    hosts: tuple[str, ...] = ()
    username: str = "ubuntu"
    key_path: str = "~/.ssh/id_rsa"
    port: int = 22
    region: str = "local"
    connect_timeout: float = 30.0

    def __post_init__(self) -> None:
        # TOML arrays arrive as lists
        object.__setattr__(self, "hosts", tuple(self.hosts))

    @property
    def type(self) -> str: return "ssh"

    def create_backend(self) -> SSHBackend:
        from kubeward.backends.ssh.backend import SSHBackend
        return SSHBackend(self)
