"""Tests for autoconfig.bandwidth -- verdict math and per-server evaluation."""

import time
import unittest
from concurrent.futures import ThreadPoolExecutor

from autoconfig.bandwidth import BandwidthEvaluator, bandwidth_verdict, measured_bitrate
from autoconfig.constants import RTMP_OUTPUT_ID, RTMP_SERVICE_ID, Timings
from autoconfig.lifecycle import CancelToken, OutputMonitor
from autoconfig.servers import ServerInfo, select_best_server
from autoconfig.simulated import ServerProfile, SimulatedOutput, SimulatedPipeline


class ThreadedSignalOutput(SimulatedOutput):
    """Emits every signal 50 ms late from a worker thread, in order."""

    def __init__(self, pipeline, hanging=()):
        super().__init__(pipeline, RTMP_OUTPUT_ID, "test_stream")
        self.hanging = set(hanging)
        self.worker = ThreadPoolExecutor(max_workers=1)

    def start(self):
        address = self._service.url()
        if address not in self.hanging:
            return super().start()
        # active, but never reports a connection
        self.starts += 1
        self._active = True
        self._started_at = time.perf_counter()
        self._stopped_at = None
        return True

    def _emit(self, name):
        def later():
            time.sleep(0.05)
            SimulatedOutput._emit(self, name)
        self.worker.submit(later)

FAST = Timings(
    connect=0.5,
    transfer_window=0.1,
    stop_poll_interval=0.01,
    stop_poll_attempts=5,
    stop_confirm=0.5,
    deactivate=0.5,
)


class TestVerdict(unittest.TestCase):
    def test_sustained_probe_rate(self):
        self.assertEqual(bandwidth_verdict(7500, 10000, 0), 10000)
        self.assertEqual(bandwidth_verdict(25000, 10000, 0), 10000)

    def test_below_sustained_ratio_penalised(self):
        self.assertEqual(bandwidth_verdict(7499, 10000, 0), 7499 * 70 // 100)

    def test_dropped_frames_penalised(self):
        self.assertEqual(bandwidth_verdict(20000, 10000, 3), 14000)

    def test_nothing_measured(self):
        self.assertEqual(bandwidth_verdict(0, 10000, 0), 0)

    def test_measured_bitrate(self):
        self.assertEqual(measured_bitrate(1_250_000, 1.0), 10000)
        self.assertEqual(measured_bitrate(1_250_000, 2.0), 5000)

    def test_measured_bitrate_zero_elapsed(self):
        self.assertEqual(measured_bitrate(100, 0), 0)


class TestEvaluator(unittest.IsolatedAsyncioTestCase):
    def _rig(self, profile):
        pipeline = SimulatedPipeline(profiles={"rtmp://probe": profile})
        output = pipeline.create_output(RTMP_OUTPUT_ID, "test_stream")
        service = pipeline.create_service(RTMP_SERVICE_ID, "test_service")
        output.set_service(service)
        cancel = CancelToken()
        monitor = OutputMonitor(output, cancel)
        self.addCleanup(monitor.close)
        evaluator = BandwidthEvaluator(
            output, service, {"key": "k"}, monitor, cancel, FAST, 10000
        )
        return evaluator, output, cancel

    def _server(self):
        return ServerInfo(name="Probe", address="rtmp://probe")

    async def test_fast_server_keeps_probe_rate(self):
        evaluator, output, _ = self._rig(ServerProfile(throughput_kbps=20000, connect_ms=35))
        server = self._server()
        self.assertTrue(await evaluator.evaluate_server(server))
        self.assertTrue(server.evaluated)
        self.assertEqual(server.bitrate_kbps, 10000)
        self.assertEqual(server.round_trip_ms, 35)
        self.assertFalse(output.active())

    async def test_slow_server_penalised(self):
        evaluator, _, _ = self._rig(ServerProfile(throughput_kbps=4000))
        server = self._server()
        self.assertTrue(await evaluator.evaluate_server(server))
        self.assertGreater(server.bitrate_kbps, 2000)
        self.assertLessEqual(server.bitrate_kbps, 3000)

    async def test_dropped_frames_penalised(self):
        evaluator, _, _ = self._rig(ServerProfile(throughput_kbps=20000, dropped_frames=5))
        server = self._server()
        self.assertTrue(await evaluator.evaluate_server(server))
        self.assertGreater(server.bitrate_kbps, 10000)
        self.assertLess(server.bitrate_kbps, 16000)

    async def test_service_receives_server_address(self):
        evaluator, _, _ = self._rig(ServerProfile())
        await evaluator.evaluate_server(self._server())
        self.assertEqual(evaluator.service.settings()["server"], "rtmp://probe")
        self.assertEqual(evaluator.service.settings()["key"], "k")

    async def test_connect_failure(self):
        evaluator, output, _ = self._rig(ServerProfile(connects=False))
        server = self._server()
        self.assertFalse(await evaluator.evaluate_server(server))
        self.assertFalse(server.evaluated)
        self.assertFalse(output.active())

    async def test_output_refuses_to_start(self):
        evaluator, _, _ = self._rig(ServerProfile(fails_to_start=True))
        server = self._server()
        self.assertFalse(await evaluator.evaluate_server(server))
        self.assertFalse(server.evaluated)

    async def test_stop_error(self):
        evaluator, _, _ = self._rig(ServerProfile(stop_error="connection reset"))
        server = self._server()
        self.assertFalse(await evaluator.evaluate_server(server))
        self.assertFalse(server.evaluated)

    async def test_cancelled_aborts_and_stops_output(self):
        evaluator, output, cancel = self._rig(ServerProfile())
        cancel.cancel()
        server = self._server()
        self.assertFalse(await evaluator.evaluate_server(server))
        self.assertFalse(server.evaluated)
        self.assertFalse(output.active())
        self.assertEqual(output.starts, 1)

    async def test_output_reused_across_servers(self):
        evaluator, output, _ = self._rig(ServerProfile())
        first, second = self._server(), ServerInfo(name="Other", address="rtmp://other")
        self.assertTrue(await evaluator.evaluate_server(first))
        self.assertTrue(await evaluator.evaluate_server(second))
        self.assertEqual(output.starts, 2)
        self.assertTrue(second.evaluated)


class TestEvaluatorThreadedSignals(unittest.IsolatedAsyncioTestCase):
    TIMINGS = Timings(
        connect=0.2,
        transfer_window=0.1,
        stop_poll_interval=0.01,
        stop_poll_attempts=20,
        stop_confirm=1.0,
        deactivate=1.0,
    )

    async def test_failed_server_does_not_spill_into_the_next(self):
        pipeline = SimulatedPipeline(profiles={"rtmp://b": ServerProfile(connect_ms=30)})
        output = ThreadedSignalOutput(pipeline, hanging={"rtmp://a"})
        self.addCleanup(output.worker.shutdown)
        service = pipeline.create_service(RTMP_SERVICE_ID, "test_service")
        output.set_service(service)
        cancel = CancelToken()
        monitor = OutputMonitor(output, cancel)
        self.addCleanup(monitor.close)
        evaluator = BandwidthEvaluator(
            output, service, {"key": "k"}, monitor, cancel, self.TIMINGS, 10000
        )

        servers = [
            ServerInfo(name="NA: a", address="rtmp://a"),
            ServerInfo(name="NA: b", address="rtmp://b"),
            ServerInfo(name="NA: c", address="rtmp://c"),
        ]
        results = [await evaluator.evaluate_server(server) for server in servers]

        self.assertEqual(results, [False, True, True])
        self.assertEqual(select_best_server(servers).name, "NA: b")
        self.assertFalse(output.active())


if __name__ == "__main__":
    unittest.main()
