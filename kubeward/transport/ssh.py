"""Remote command execution on cluster nodes over asyncssh.

Both backends reach their nodes the same way: one short-lived SSH
session per command batch, opened with the node credential.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field

import asyncssh
from loguru import logger

from kubeward.core.exceptions import CommandError, TimeoutError, TransientNetworkError
from kubeward.retry import with_retry


@dataclass
class SSHTransport:
    """One SSH session to one node.

    Connection attempts are retried at a fixed interval, since freshly
    created nodes refuse connections until sshd is up.

    Example:
        >>> async with SSHTransport(host="10.0.0.1", user="ubuntu", key_path="~/.ssh/id_rsa") as t:
        ...     out = await t.run("kubectl get nodes")
    """

    host: str
    user: str
    key_path: str
    port: int = 22
    connect_timeout: float = 30.0
    retry_max_attempts: int = 5
    retry_delay: float = 2.0

    _conn: asyncssh.SSHClientConnection | None = field(default=None, repr=False)

    async def connect(self) -> None:
        if self._conn is not None:
            return

        async def do_connect() -> asyncssh.SSHClientConnection:
            try:
                return await asyncssh.connect(
                    self.host,
                    port=self.port,
                    username=self.user,
                    client_keys=[self.key_path],
                    known_hosts=None,
                    connect_timeout=self.connect_timeout,
                )
            except (OSError, asyncssh.Error, asyncio.TimeoutError) as e:
                raise TransientNetworkError(f"SSH to {self.host}:{self.port} failed: {e}") from e

        self._conn = await with_retry(
            do_connect,
            max_attempts=self.retry_max_attempts,
            is_retryable=lambda e: isinstance(e, TransientNetworkError),
            base_delay=self.retry_delay,
            max_delay=self.retry_delay,
            operation=f"connect {self.host}",
        )

    async def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._conn.wait_closed(), timeout=5.0)
            self._conn = None

    async def __aenter__(self) -> SSHTransport:
        await self.connect()
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    def _require_connection(self) -> asyncssh.SSHClientConnection:
        if self._conn is None:
            raise RuntimeError("Not connected. Call connect() first.")
        return self._conn

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def run(self, command: str, timeout: float | None = None) -> str:
        """Execute ``command`` through the remote shell and return stdout.

        Raises:
            CommandError: If the command exits non-zero.
            TimeoutError: If it runs longer than ``timeout``.
        """
        conn = self._require_connection()
        try:
            result = await conn.run(command, timeout=timeout, check=False)
        except asyncssh.TimeoutError as e:
            raise TimeoutError(f"command on {self.host}", timeout or 0.0) from e
        except asyncssh.Error as e:
            raise TransientNetworkError(f"SSH session to {self.host} failed: {e}") from e

        code = result.exit_status or 0
        stdout = str(result.stdout or "")
        stderr = str(result.stderr or "")
        if code != 0:
            logger.debug(f"{self.host}: exit {code}: {command[:80]}")
            raise CommandError(command, code, stderr)
        return stdout
