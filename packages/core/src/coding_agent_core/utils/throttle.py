import asyncio
from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")

DEFAULT_OUTPUT_UPDATE_INTERVAL = 0.15

_UNSET = object()


class OutputThrottle(Generic[T]):
    """Trailing-edge throttle for live output updates.

    A burst of `push` calls within one interval produces a single callback
    with the most recent value. `close` delivers whatever is still pending,
    so the final value is never lost.
    """

    def __init__(
        self,
        callback: Callable[[T], None],
        interval: float = DEFAULT_OUTPUT_UPDATE_INTERVAL,
    ):
        self._callback = callback
        self._interval = interval
        self._pending: object = _UNSET
        self._timer: asyncio.TimerHandle | None = None
        self._closed = False

    def push(self, value: T) -> None:
        if self._closed:
            return
        self._pending = value
        if self._timer is None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self._interval, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self.flush()

    def flush(self) -> None:
        """Delivers the pending value immediately, if there is one."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._pending is _UNSET:
            return
        value, self._pending = self._pending, _UNSET
        self._callback(value)

    def close(self) -> None:
        self.flush()
        self._closed = True
