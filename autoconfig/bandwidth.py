"""
Bandwidth evaluation against live ingest servers.

Each candidate server gets one real streaming session: connect, hold a
timed transfer window, stop, then turn total bytes / elapsed time into a
bitrate verdict.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from .constants import PENALTY_PERCENT, SUSTAINED_RATIO, Timings
from .lifecycle import CancelToken, OutputMonitor, OutputPhase
from .pipeline import Output, Service, Settings
from .servers import ServerInfo

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Verdict helpers
# ---------------------------------------------------------------------------

def measured_bitrate(total_bytes: int, elapsed_seconds: float) -> int:
    """Throughput in kbps; 0 when no time elapsed."""
    if elapsed_seconds <= 0:
        return 0
    return int(total_bytes * 8 / elapsed_seconds / 1000)


def bandwidth_verdict(measured_kbps: int, probe_kbps: int, dropped_frames: int) -> int:
    """
    Usable bitrate for a server.

    A server that dropped frames, or delivered less than
    ``SUSTAINED_RATIO`` of the probe rate, is penalised to
    ``PENALTY_PERCENT`` of what it measured.  Otherwise the probe rate was
    sustained and is reported unchanged.
    """
    if dropped_frames or measured_kbps < probe_kbps * SUSTAINED_RATIO:
        return max(0, measured_kbps * PENALTY_PERCENT // 100)
    return probe_kbps


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------

class BandwidthEvaluator:
    """
    Runs one streaming session per server on a shared output.

    The output, service, and monitor are owned by the caller; the
    evaluator only drives them and records results on each
    :class:`~autoconfig.servers.ServerInfo`.
    """

    def __init__(
        self,
        output: Output,
        service: Service,
        service_settings: Settings,
        monitor: OutputMonitor,
        cancel: CancelToken,
        timings: Timings,
        probe_bitrate: int,
    ) -> None:
        self.output = output
        self.service = service
        self.service_settings = service_settings
        self.monitor = monitor
        self.cancel = cancel
        self.timings = timings
        self.probe_bitrate = probe_bitrate

    async def _settle(self, server: ServerInfo) -> None:
        # The next server's run must not see this run's stop/deactivate.
        if not await self.monitor.wait_deactivated(self.timings.deactivate, cancellable=False):
            logger.warning("output for %s never reported deactivate", server.name)

    async def _abort(self, server: ServerInfo, reason: str) -> bool:
        logger.warning("bandwidth test against %s failed: %s", server.name, reason)
        self.output.force_stop()
        await self._settle(server)
        return False

    async def evaluate_server(self, server: ServerInfo) -> bool:
        """Measure *server*; returns False if no verdict could be reached."""
        t = self.timings
        monitor = self.monitor

        self.service_settings["server"] = server.address
        self.service.update(self.service_settings)

        monitor.begin_start()
        if not self.output.start():
            logger.warning("output refused to start for %s", server.name)
            return False

        # -- Connect ---------------------------------------------------------
        if self.cancel.cancelled:
            return await self._abort(server, "cancelled")
        connected = await monitor.wait_connected(t.connect)
        if self.cancel.cancelled:
            return await self._abort(server, "cancelled")
        if not connected:
            return await self._abort(server, f"no connection ({monitor.phase.value})")

        t_start = time.perf_counter()

        # -- Transfer window -------------------------------------------------
        ended_early = await monitor.wait_until(
            lambda: monitor.finished or monitor.deactivated, t.transfer_window
        )
        if self.cancel.cancelled:
            return await self._abort(server, "cancelled")
        if ended_early:
            return await self._abort(server, "output stopped during transfer window")

        # -- Stop and wait for the output to go inactive ----------------------
        monitor.begin_stop()
        self.output.stop()

        for _ in range(t.stop_poll_attempts):
            monitor.pump()
            if monitor.phase is OutputPhase.FAILED:
                return await self._abort(server, f"stop error: {monitor.stop_error}")
            if self.cancel.cancelled:
                return await self._abort(server, "cancelled")
            if not self.output.active():
                break
            await asyncio.sleep(t.stop_poll_interval)
        else:
            return await self._abort(server, "output did not become inactive")

        if not await monitor.wait_finished(t.stop_confirm):
            return await self._abort(server, "no stop confirmation")
        if monitor.phase is OutputPhase.FAILED:
            return await self._abort(server, f"stop error: {monitor.stop_error}")

        # -- Verdict -------------------------------------------------------
        elapsed = time.perf_counter() - t_start
        measured = measured_bitrate(self.output.total_bytes(), elapsed)
        dropped = self.output.dropped_frames()

        server.bitrate_kbps = bandwidth_verdict(measured, self.probe_bitrate, dropped)
        server.round_trip_ms = self.output.connect_time_ms()
        server.evaluated = True

        logger.info(
            "server %s: measured %d kbps, dropped %d, usable %d kbps, rtt %d ms",
            server.name, measured, dropped, server.bitrate_kbps, server.round_trip_ms,
        )

        await self._settle(server)
        return True
