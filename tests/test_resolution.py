"""Tests for autoconfig.resolution -- analytic and live resolution search."""

import unittest

from autoconfig.constants import Timings
from autoconfig.errors import EncoderTestFailed, InvalidVideoSettings, ProbeCancelled
from autoconfig.estimate import Candidate, upper_bitrate_cap
from autoconfig.lifecycle import CancelToken
from autoconfig.resolution import ResolutionFinder, clamp_to_upper_bitrate, x264_probe_settings
from autoconfig.simulated import ServerProfile, SimulatedPipeline
from autoconfig.state import ConfigState, Encoder, Purpose

FAST = Timings(encode_window=0.01, deactivate=0.5)


def _finder(state, pipeline=None, cores=(8, 16)):
    pipeline = pipeline or SimulatedPipeline()
    return ResolutionFinder(state, pipeline, CancelToken(), FAST, cores), pipeline


class TestHardwareSearch(unittest.IsolatedAsyncioTestCase):
    async def test_generous_bitrate_picks_base_resolution(self):
        state = ConfigState(ideal_bitrate=10000)
        finder, _ = _finder(state)
        best = await finder.find_ideal_resolution(hardware_only=True)
        self.assertEqual(best, Candidate(1920, 1080, 60))
        self.assertEqual(state.ideal_resolution, (1280, 720))
        self.assertEqual(state.ideal_fps, (60, 1))

    async def test_default_bitrate_settles_on_720p30(self):
        state = ConfigState(ideal_bitrate=2500)
        finder, _ = _finder(state)
        best = await finder.find_ideal_resolution(hardware_only=True)
        self.assertEqual(best, Candidate(1280, 720, 30))
        self.assertEqual(state.ideal_fps, (30, 1))

    async def test_high_fps_preference_applied(self):
        state = ConfigState(ideal_bitrate=2100)
        finder, _ = _finder(state)
        best = await finder.find_ideal_resolution(hardware_only=True)
        self.assertEqual(best, Candidate(960, 540, 60))
        self.assertEqual(state.ideal_resolution, (960, 540))

    async def test_recording_accepts_every_step(self):
        state = ConfigState(ideal_bitrate=100, purpose=Purpose.RECORDING)
        finder, _ = _finder(state)
        best = await finder.find_ideal_resolution(hardware_only=True)
        self.assertEqual(best, Candidate(1920, 1080, 60))

    async def test_few_cores_limit_data_rate(self):
        state = ConfigState(ideal_bitrate=10000)
        finder, _ = _finder(state, cores=(2, 2))
        best = await finder.find_ideal_resolution(hardware_only=True)
        self.assertEqual(best, Candidate(1280, 720, 30))

    async def test_tiny_bitrate_falls_back_to_last_step(self):
        state = ConfigState(ideal_bitrate=1)
        finder, _ = _finder(state)
        best = await finder.find_ideal_resolution(hardware_only=True)
        self.assertEqual(best, Candidate(853, 480, 30))

    async def test_fixed_fps(self):
        state = ConfigState(ideal_bitrate=10000, specific_fps=(24, 1))
        finder, _ = _finder(state)
        best = await finder.find_ideal_resolution(hardware_only=True)
        self.assertEqual(best.fps_num, 24)
        self.assertEqual(state.ideal_fps, (24, 1))


class TestSoftwareSearch(unittest.IsolatedAsyncioTestCase):
    async def test_capable_machine(self):
        state = ConfigState(ideal_bitrate=10000)
        finder, pipeline = _finder(state)
        best = await finder.find_ideal_resolution(hardware_only=False)
        self.assertEqual(best, Candidate(1920, 1080, 60))
        self.assertEqual(state.ideal_resolution, (1280, 720))
        self.assertTrue(state.software_tested)
        self.assertEqual(pipeline.outputs()[0].starts, 3)
        self.assertEqual(pipeline.leaked(), [])

    async def test_overloaded_encoder_rejects_steps(self):
        state = ConfigState(ideal_bitrate=10000)
        pipeline = SimulatedPipeline(encode_capacity=1280 * 720 * 30)
        finder, _ = _finder(state, pipeline)
        best = await finder.find_ideal_resolution(hardware_only=False)
        self.assertEqual(best, Candidate(1280, 720, 30))
        self.assertEqual(state.ideal_fps, (30, 1))

    async def test_low_bitrate_only_runs_forced_step(self):
        state = ConfigState(ideal_bitrate=1000)
        finder, pipeline = _finder(state)
        percents = []
        finder.on_progress = percents.append
        best = await finder.find_ideal_resolution(hardware_only=False)
        self.assertEqual(best, Candidate(853, 480, 30))
        self.assertEqual(pipeline.outputs()[0].starts, 1)
        self.assertEqual(len(percents), 10)
        self.assertEqual(percents[-1], 100.0)

    async def test_encoder_settings_follow_purpose(self):
        state = ConfigState(ideal_bitrate=10000)
        finder, pipeline = _finder(state)
        await finder.find_ideal_resolution(hardware_only=False)
        encoder = next(h for h in pipeline.created if h.name == "test_x264")
        self.assertEqual(encoder.settings()["bitrate"], 10000)
        self.assertEqual(encoder.settings()["rate_control"], "CBR")

    async def test_cancelled_search(self):
        state = ConfigState(ideal_bitrate=10000)
        finder, pipeline = _finder(state)
        finder.cancel.cancel()
        with self.assertRaises(ProbeCancelled):
            await finder.find_ideal_resolution(hardware_only=False)
        self.assertFalse(state.software_tested)
        self.assertEqual(pipeline.leaked(), [])

    async def test_video_apply_failure(self):
        state = ConfigState(ideal_bitrate=10000)
        pipeline = SimulatedPipeline()
        pipeline.fail_video = True
        finder, _ = _finder(state, pipeline)
        with self.assertRaises(InvalidVideoSettings):
            await finder.find_ideal_resolution(hardware_only=False)
        self.assertEqual(pipeline.leaked(), [])

    async def test_output_refuses_to_start(self):
        state = ConfigState(ideal_bitrate=10000)
        pipeline = SimulatedPipeline(default_profile=ServerProfile(fails_to_start=True))
        finder, _ = _finder(state, pipeline)
        with self.assertRaises(EncoderTestFailed):
            await finder.find_ideal_resolution(hardware_only=False)
        self.assertEqual(pipeline.leaked(), [])


class TestProbeSettings(unittest.TestCase):
    def test_streaming_settings(self):
        settings = x264_probe_settings(ConfigState(ideal_bitrate=4000))
        self.assertEqual(settings["bitrate"], 4000)
        self.assertEqual(settings["profile"], "main")
        self.assertEqual(settings["keyint_sec"], 2)

    def test_recording_settings(self):
        settings = x264_probe_settings(ConfigState(purpose=Purpose.RECORDING))
        self.assertEqual(settings["crf"], 20)
        self.assertEqual(settings["rate_control"], "CRF")
        self.assertNotIn("bitrate", settings)


class TestClampToUpperBitrate(unittest.TestCase):
    def test_software_encoder_clamped(self):
        c = Candidate(1920, 1080, 60)
        state = ConfigState(ideal_bitrate=20000, streaming_encoder=Encoder.X264)
        self.assertEqual(clamp_to_upper_bitrate(state, c), upper_bitrate_cap(c, True))
        self.assertEqual(state.ideal_bitrate, upper_bitrate_cap(c, True))

    def test_hardware_encoder_gets_margin(self):
        c = Candidate(1920, 1080, 60)
        state = ConfigState(ideal_bitrate=20000, streaming_encoder=Encoder.NVENC)
        clamp_to_upper_bitrate(state, c)
        self.assertEqual(state.ideal_bitrate, upper_bitrate_cap(c, False))

    def test_lower_bitrate_untouched(self):
        state = ConfigState(ideal_bitrate=1000)
        self.assertEqual(clamp_to_upper_bitrate(state, Candidate(1280, 720, 30)), 1000)


if __name__ == "__main__":
    unittest.main()
