"""Run-scoped cooperative cancellation."""

import asyncio


class CancellationToken:
    """
    Shared cancellation signal for one run.

    The scheduler checks it between scheduling steps; executors are handed
    the same token and should check it at their own suspension points
    (e.g. between streamed chunks). Cancelling is idempotent.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "Cancelled by user") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()
