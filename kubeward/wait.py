"""Fixed-interval polling used by every wait in the pipeline and teardown."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from kubeward.core.exceptions import TimeoutError


class TerminalStateError(RuntimeError):
    """The polled object reached a state it will never leave for the better."""


async def wait_for_ready[T](
    poll_fn: Callable[[], Awaitable[T | None]],
    ready_check: Callable[[T], bool],
    *,
    terminal_check: Callable[[T], bool] | None = None,
    timeout: float = 300.0,
    interval: float = 5.0,
    description: str = "resource",
) -> T:
    """Poll a backend object until it is ready and return its last state.

    ``poll_fn`` returning None means the object is not visible yet
    (eventual consistency right after creation), which is not an error.
    The last sleep is clipped to the deadline, so a wait never overshoots
    ``timeout`` by more than one poll. Cancelling the caller stops the
    loop at its next await.

    Raises:
        TimeoutError: Carrying ``description`` and ``timeout``.
        TerminalStateError: If ``terminal_check`` matched a polled state.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    while True:
        state = await poll_fn()
        if state is not None:
            if ready_check(state):
                return state
            if terminal_check is not None and terminal_check(state):
                raise TerminalStateError(f"{description} reached terminal state: {state}")

        remaining = deadline - loop.time()
        if remaining <= 0:
            raise TimeoutError(description, timeout)
        await asyncio.sleep(min(interval, remaining))
