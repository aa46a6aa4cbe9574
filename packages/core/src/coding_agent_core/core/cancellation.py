import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class CancelSignal:
    """A wrapper around asyncio.Event for cancellation.

    Listeners registered with `add_listener` are called synchronously, in
    registration order, the first time the signal is set.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._listeners: list[Callable[[], None]] = []
        self.reason: str | None = None

    def set(self, reason: str | None = None):
        """Signal that cancellation has been requested."""
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Cancel listener raised")
        self._listeners.clear()

    def is_set(self) -> bool:
        """Check if cancellation has been signaled."""
        return self._event.is_set()

    async def wait(self):
        """Wait until the cancellation is signaled."""
        await self._event.wait()

    def add_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)
