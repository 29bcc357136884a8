"""
Cancellation primitives for termagent.
"""

import asyncio


class CancellationToken:
    """A cancellation flag that coroutines can poll or await."""

    def __init__(self) -> None:
        self._event: asyncio.Event | None = None
        self._cancelled = False

    def cancel(self) -> None:
        """Request cancellation."""
        self._cancelled = True
        if self._event is not None:
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        """Check if cancellation has been requested."""
        return self._cancelled

    async def wait(self) -> None:
        """Wait until cancellation is requested."""
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        await self._event.wait()


class Generation:
    """Monotonic counter identifying the current unit of asynchronous work.

    Work captures ``current`` when it starts and checks ``is_current`` when
    it resolves; any ``advance()`` in between marks its result as stale.
    """

    def __init__(self) -> None:
        self._value = 0

    @property
    def current(self) -> int:
        return self._value

    def advance(self) -> int:
        self._value += 1
        return self._value

    def is_current(self, value: int) -> bool:
        return value == self._value
