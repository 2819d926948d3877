from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import asyncssh
import pytest

from kubeward.core.exceptions import CommandError, TransientNetworkError
from kubeward.transport.ssh import SSHTransport

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


class FakeConnection:
    def __init__(self, result: Any = None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.commands: list[str] = []

    async def run(self, command: str, **_: Any) -> Any:
        self.commands.append(command)
        if self.error is not None:
            raise self.error
        return self.result


def transport(conn: FakeConnection) -> SSHTransport:
    t = SSHTransport(host="10.0.0.1", user="ubuntu", key_path="/dev/null")
    t._conn = conn  # type: ignore[assignment]
    return t


class TestRun:
    async def test_returns_stdout(self):
        conn = FakeConnection(SimpleNamespace(exit_status=0, stdout="ok\n", stderr=""))
        assert await transport(conn).run("true") == "ok\n"
        assert conn.commands == ["true"]

    async def test_non_zero_exit(self):
        conn = FakeConnection(SimpleNamespace(exit_status=2, stdout="", stderr="nope"))
        with pytest.raises(CommandError):
            await transport(conn).run("false")

    async def test_dropped_session_is_transient(self):
        conn = FakeConnection(error=asyncssh.ConnectionLost("reset"))
        with pytest.raises(TransientNetworkError, match="10.0.0.1") as exc_info:
            await transport(conn).run("kubectl get nodes")
        assert isinstance(exc_info.value.__cause__, asyncssh.ConnectionLost)

    async def test_requires_connection(self):
        with pytest.raises(RuntimeError):
            await SSHTransport(host="10.0.0.1", user="ubuntu", key_path="/dev/null").run("true")
