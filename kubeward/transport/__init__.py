from .ssh import SSHTransport

__all__ = ["SSHTransport"]
