"""
Output lifecycle tracking and cooperative cancellation.

Pipeline outputs report ``start`` / ``stop`` / ``deactivate`` from
whatever thread they like.  :class:`OutputMonitor` forwards each signal
as a message into an ``asyncio.Queue`` owned by the probe's event loop
and folds it into a small state machine::

    IDLE -> STARTING -> CONNECTED -> COMPLETING -> STOPPED | FAILED

Waits are level-triggered: the condition is re-checked after every
message, so a signal that arrives before the wait begins is never lost.
"""
from __future__ import annotations

import asyncio
import enum
import itertools
import logging
import threading
from typing import Callable, Dict, Optional, Tuple

from .pipeline import Output

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

class CancelToken:
    """Thread-safe cancellation flag that also wakes registered waiters."""

    def __init__(self) -> None:
        self._flag = threading.Event()
        self._lock = threading.Lock()
        self._wakers: Dict[int, Callable[[], None]] = {}
        self._ids = itertools.count()

    @property
    def cancelled(self) -> bool:
        return self._flag.is_set()

    def cancel(self) -> None:
        self._flag.set()
        with self._lock:
            wakers = list(self._wakers.values())
        for wake in wakers:
            wake()

    def reset(self) -> None:
        self._flag.clear()

    def add_waker(self, wake: Callable[[], None]) -> int:
        with self._lock:
            handle = next(self._ids)
            self._wakers[handle] = wake
        return handle

    def remove_waker(self, handle: int) -> None:
        with self._lock:
            self._wakers.pop(handle, None)


# ---------------------------------------------------------------------------
# Signals and phases
# ---------------------------------------------------------------------------

class OutputSignal(enum.Enum):
    START = "start"
    STOP = "stop"
    STOP_ERROR = "stop_error"
    DEACTIVATE = "deactivate"
    WAKE = "wake"            # posted by the cancel token


class OutputPhase(enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    CONNECTED = "connected"
    COMPLETING = "completing"
    STOPPED = "stopped"
    FAILED = "failed"


_Message = Tuple[OutputSignal, Optional[str]]


class OutputMonitor:
    """
    Subscribe to one output's signals and expose awaitable phase changes.

    Must be constructed inside the coroutine that will wait on it.
    Call :meth:`close` when done so the cancel token drops its waker.
    """

    def __init__(self, output: Output, cancel: CancelToken) -> None:
        self._output = output
        self._cancel = cancel
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue()

        self.phase = OutputPhase.IDLE
        self.deactivated = False
        self.stop_error: Optional[str] = None

        output.connect_signal("start", self._on_start)
        output.connect_signal("stop", self._on_stop)
        output.connect_signal("deactivate", self._on_deactivate)
        self._waker = cancel.add_waker(lambda: self._post(OutputSignal.WAKE))

    # -- Signal callbacks (any thread) --------------------------------------

    def _on_start(self) -> None:
        self._post(OutputSignal.START)

    def _on_stop(self) -> None:
        error = self._output.last_error()
        if error:
            self._post(OutputSignal.STOP_ERROR, error)
        else:
            self._post(OutputSignal.STOP)

    def _on_deactivate(self) -> None:
        self._post(OutputSignal.DEACTIVATE)

    def _post(self, signal: OutputSignal, detail: Optional[str] = None) -> None:
        message: _Message = (signal, detail)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self._queue.put_nowait(message)
        elif not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._queue.put_nowait, message)

    # -- State machine ------------------------------------------------------

    def _apply(self, message: _Message) -> None:
        signal, detail = message
        if signal is OutputSignal.START:
            self.phase = OutputPhase.CONNECTED
        elif signal is OutputSignal.STOP:
            self.phase = OutputPhase.STOPPED
        elif signal is OutputSignal.STOP_ERROR:
            self.phase = OutputPhase.FAILED
            self.stop_error = detail
        elif signal is OutputSignal.DEACTIVATE:
            self.deactivated = True
        logger.debug("output signal %s -> phase %s", signal.value, self.phase.value)

    def pump(self) -> None:
        """Apply every queued message without waiting."""
        while True:
            try:
                message = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._apply(message)

    def begin_start(self) -> None:
        """Forget anything left over from a previous run and enter STARTING."""
        while not self._queue.empty():
            self._queue.get_nowait()
        self.phase = OutputPhase.STARTING
        self.deactivated = False
        self.stop_error = None

    def begin_stop(self) -> None:
        self.pump()
        if self.phase is OutputPhase.CONNECTED:
            self.phase = OutputPhase.COMPLETING

    @property
    def finished(self) -> bool:
        return self.phase in (OutputPhase.STOPPED, OutputPhase.FAILED)

    # -- Waiting ------------------------------------------------------------

    async def wait_until(
        self,
        condition: Callable[[], bool],
        timeout: float,
        cancellable: bool = True,
    ) -> bool:
        """
        Consume signals until *condition* holds.

        Returns False on timeout, or when the cancel token fires first
        unless *cancellable* is False.
        """
        self.pump()
        if condition():
            return True

        deadline = self._loop.time() + timeout
        while not (cancellable and self._cancel.cancelled):
            remaining = deadline - self._loop.time()
            if remaining <= 0:
                return False
            try:
                message = await asyncio.wait_for(self._queue.get(), timeout=remaining)
            except asyncio.TimeoutError:
                return False
            self._apply(message)
            if condition():
                return True
        return False

    async def wait_connected(self, timeout: float) -> bool:
        await self.wait_until(
            lambda: self.phase is not OutputPhase.STARTING, timeout
        )
        return self.phase is OutputPhase.CONNECTED

    async def wait_finished(self, timeout: float) -> bool:
        return await self.wait_until(lambda: self.finished, timeout)

    async def wait_deactivated(self, timeout: float, cancellable: bool = True) -> bool:
        return await self.wait_until(lambda: self.deactivated, timeout, cancellable)

    def close(self) -> None:
        self._cancel.remove_waker(self._waker)
