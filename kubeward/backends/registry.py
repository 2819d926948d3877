"""Backend registry.

Maps the ``type`` field of a ``[backends.<name>]`` config table to its
config class, and builds backends from configs. Backend modules are
imported lazily so only the SDKs in use get loaded.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Final

from kubeward.backends.aws.config import AWS
from kubeward.backends.ssh.config import SSH
from kubeward.core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from kubeward.api.backend import Backend

type BackendConfig = AWS | SSH

BACKENDS: Final[dict[str, type[AWS] | type[SSH]]] = {
    "aws": AWS,
    "ssh": SSH,
}


def create_backend(config: BackendConfig) -> Backend:
    match config:
        case AWS() | SSH():
            return config.create_backend()
        case _:
            raise ConfigurationError(
                f"Unknown backend config: {type(config).__name__}. "
                f"Valid: {', '.join(BACKENDS)}"
            )
