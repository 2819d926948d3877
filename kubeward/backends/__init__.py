"""Backend implementations of the capability interface."""

from kubeward.backends.aws import AWS
from kubeward.backends.registry import BACKENDS, BackendConfig, create_backend
from kubeward.backends.ssh import SSH

__all__ = ["AWS", "BACKENDS", "SSH", "BackendConfig", "create_backend"]
