from __future__ import annotations

import asyncio

import pytest

from kubeward.core.exceptions import TimeoutError
from kubeward.wait import TerminalStateError, wait_for_ready

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


def sequence(*values):
    it = iter(values)

    async def poll():
        return next(it)

    return poll


class TestWaitForReady:
    async def test_returns_first_ready_value(self):
        result = await wait_for_ready(
            sequence("pending", "pending", "running"),
            lambda s: s == "running",
            timeout=1.0,
            interval=0.001,
        )
        assert result == "running"

    async def test_none_means_not_visible_yet(self):
        result = await wait_for_ready(
            sequence(None, None, {"available": True}),
            lambda n: n["available"],
            timeout=1.0,
            interval=0.001,
        )
        assert result == {"available": True}

    async def test_terminal_state_raises(self):
        with pytest.raises(TerminalStateError, match="terminated"):
            await wait_for_ready(
                sequence("pending", "terminated"),
                lambda s: s == "running",
                terminal_check=lambda s: s == "terminated",
                timeout=1.0,
                interval=0.001,
                description="node i-1",
            )

    async def test_timeout(self):
        async def never():
            return "pending"

        with pytest.raises(TimeoutError) as exc_info:
            await wait_for_ready(
                never, lambda s: s == "running", timeout=0.05, interval=0.01, description="node i-1",
            )
        assert exc_info.value.operation == "node i-1"
        assert exc_info.value.duration == 0.05

    async def test_cancellation_stops_polling(self):
        polls = 0

        async def poll():
            nonlocal polls
            polls += 1
            return "pending"

        task = asyncio.create_task(
            wait_for_ready(poll, lambda s: s == "running", timeout=60.0, interval=0.01)
        )
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        seen = polls
        await asyncio.sleep(0.05)
        assert polls == seen
