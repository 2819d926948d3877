"""SSH host-inventory backend for kubeward.

Example:
    from kubeward.backends.ssh import SSH

    backend = SSH(hosts=("10.0.0.11", "10.0.0.12", "10.0.0.13")).create_backend()
"""

from kubeward.backends.ssh.config import SSH

__all__ = ["SSH"]
