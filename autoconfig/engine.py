"""
Test orchestrator.

:class:`AutoConfigEngine` owns the configuration state, the event queue,
the cancel token, and one asyncio event loop running in a daemon thread.
Each ``run_*`` call submits a probe to that loop and returns at once; the
caller follows progress by polling :meth:`AutoConfigEngine.query`.

At most one probe per :class:`ProbeKind` may be outstanding.  Starting a
probe whose slot is still busy is rejected: ``run_*`` returns False and
nothing is queued.

Usage::

    engine = AutoConfigEngine(pipeline)
    engine.initialize()
    engine.run_bandwidth_test()
    while True:
        event = engine.query()
        ...
    engine.shutdown()
"""
from __future__ import annotations

import asyncio
import concurrent.futures
import enum
import logging
import threading
import time
from typing import Awaitable, Callable, Dict, Optional, Tuple

from .capability import host_cores
from .constants import (
    AUTO_SERVER,
    AUTO_SERVER_NAME,
    ERROR_INTERNAL,
    PENDING_POLL_INTERVAL,
    Timings,
)
from .errors import AutoConfigError
from .events import EventQueue, ProgressEvent
from .lifecycle import CancelToken
from .pipeline import MediaPipeline
from .probes import (
    ProbeContext,
    bandwidth_probe,
    check_settings_probe,
    default_settings_probe,
    recording_encoder_probe,
    save_settings_probe,
    save_stream_settings_probe,
    stream_encoder_probe,
)
from .state import ConfigState, ServiceKind
from .store import ConfigStore

logger = logging.getLogger(__name__)

Probe = Callable[[ProbeContext], Awaitable[bool]]


class ProbeKind(enum.Enum):
    BANDWIDTH = "bandwidth"
    STREAM_ENCODER = "stream_encoder"
    RECORDING_ENCODER = "recording_encoder"
    CHECK_SETTINGS = "check_settings"
    DEFAULT_SETTINGS = "default_settings"
    SAVE_STREAM_SETTINGS = "save_stream_settings"
    SAVE_SETTINGS = "save_settings"


class AutoConfigEngine:
    """Schedules probes and exposes the polled caller surface."""

    def __init__(
        self,
        pipeline: MediaPipeline,
        store: Optional[ConfigStore] = None,
        state: Optional[ConfigState] = None,
        timings: Optional[Timings] = None,
        cores: Optional[Tuple[int, int]] = None,
    ) -> None:
        self.pipeline = pipeline
        self.state = state or ConfigState()
        self.store = store if store is not None else ConfigStore()
        self.timings = timings or Timings()
        self.cores = cores or host_cores()
        self.events = EventQueue()
        self.cancel_token = CancelToken()

        self._slots: Dict[ProbeKind, concurrent.futures.Future] = {}
        self._lock = threading.Lock()
        self._closed = False

        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run_loop, name="autoconfig-engine", daemon=True
        )
        self._thread.start()

    def __enter__(self) -> AutoConfigEngine:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        self.shutdown()

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    @property
    def context(self) -> ProbeContext:
        return ProbeContext(
            state=self.state,
            pipeline=self.pipeline,
            events=self.events,
            cancel=self.cancel_token,
            timings=self.timings,
            store=self.store,
            cores=self.cores,
        )

    # -- Scheduling ---------------------------------------------------------

    async def _guarded(self, kind: ProbeKind, probe: Probe) -> bool:
        logger.info("%s probe started", kind.value)
        try:
            result = await probe(self.context)
        except AutoConfigError as exc:
            logger.warning("%s probe failed: %s", kind.value, exc)
            self.events.error(exc.label)
            return False
        except Exception:
            logger.exception("%s probe crashed", kind.value)
            self.events.error(ERROR_INTERNAL)
            return False
        logger.info("%s probe finished (%s)", kind.value, result)
        return result

    def _launch(self, kind: ProbeKind, probe: Probe) -> Optional[concurrent.futures.Future]:
        with self._lock:
            if self._closed:
                logger.warning("engine is shut down; %s probe not started", kind.value)
                return None
            pending = self._slots.get(kind)
            if pending is not None and not pending.done():
                logger.warning("%s probe already running; start rejected", kind.value)
                return None
            future = asyncio.run_coroutine_threadsafe(self._guarded(kind, probe), self._loop)
            self._slots[kind] = future
        return future

    def busy(self, kind: Optional[ProbeKind] = None) -> bool:
        """True while *kind* (or any probe, if None) is outstanding."""
        with self._lock:
            if kind is not None:
                future = self._slots.get(kind)
                return future is not None and not future.done()
            return any(not f.done() for f in self._slots.values())

    # -- Caller surface -----------------------------------------------------

    def initialize(self, service_hint: str = "", server_hint: str = "") -> None:
        """Reset the server choice and pick up the current video settings."""
        state = self.state
        state.server_address = AUTO_SERVER
        state.server_display_name = AUTO_SERVER_NAME
        state.software_tested = False

        if service_hint:
            state.service_name = service_hint
            if not state.custom_server:
                state.service_kind = ServiceKind.from_service_name(service_hint)
        if server_hint:
            state.server_address = server_hint
            state.server_display_name = server_hint

        info = self.pipeline.video_info()
        if info is not None:
            state.base_resolution = (info.base_width, info.base_height)

        self.reset()
        logger.debug("initialized: service=%r server=%r", state.service_name, state.server_address)

    def run_bandwidth_test(self) -> bool:
        return self._launch(ProbeKind.BANDWIDTH, bandwidth_probe) is not None

    def run_stream_encoder_test(self) -> bool:
        return self._launch(ProbeKind.STREAM_ENCODER, stream_encoder_probe) is not None

    def run_recording_encoder_test(self) -> bool:
        return self._launch(ProbeKind.RECORDING_ENCODER, recording_encoder_probe) is not None

    def run_default_settings(self) -> bool:
        return self._launch(ProbeKind.DEFAULT_SETTINGS, default_settings_probe) is not None

    def run_save_stream_settings(self) -> bool:
        return self._launch(ProbeKind.SAVE_STREAM_SETTINGS, save_stream_settings_probe) is not None

    def run_save_settings(self) -> bool:
        self.reset()
        return self._launch(ProbeKind.SAVE_SETTINGS, save_settings_probe) is not None

    def run_check_settings(self, timeout: Optional[float] = None) -> bool:
        """Blocking: stream the decided settings briefly and report success."""
        future = self._launch(ProbeKind.CHECK_SETTINGS, check_settings_probe)
        if future is None:
            return False
        return bool(future.result(timeout))

    def cancel(self) -> None:
        logger.info("cancellation requested")
        self.cancel_token.cancel()

    terminate = cancel

    def reset(self) -> None:
        self.cancel_token.reset()

    def query(self) -> Optional[ProgressEvent]:
        return self.events.pop()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every slot is finished; False if *timeout* ran out first."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while self.busy():
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(PENDING_POLL_INTERVAL)
        return True

    def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel outstanding probes, wait for them briefly, and stop the loop."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

        if self.busy():
            self.cancel()
            if not self.wait_idle(timeout):
                logger.warning("probes still running at shutdown")

        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout)
        if not self._thread.is_alive():
            self._loop.close()
