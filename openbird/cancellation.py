"""Per-run cooperative cancellation token."""

import asyncio
from typing import Callable

from openbird.exceptions import CancellationRequested
from openbird.logging import get_logger

log = get_logger(__name__)


class CancellationToken:
    """Signal shared by one run and every suspending call it makes.

    Listeners are one-shot: each fires at most once, on the first
    ``cancel()``. Registering on an already cancelled token fires the
    listener immediately.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._listeners: list[Callable[[], None]] = []
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Agent aborted") -> None:
        """Signal cancellation and fire pending listeners."""
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            try:
                listener()
            except Exception as e:
                log.warning("Cancellation listener failed", error=str(e))

    def add_listener(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Register a one-shot listener; returns a function that removes it."""
        if self._event.is_set():
            listener()
            return lambda: None
        self._listeners.append(listener)

        def remove() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return remove

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationRequested(self.reason or "Agent aborted")
