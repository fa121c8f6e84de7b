"""Tests for autoconfig.settings -- encoder decisions and persisted keys."""

import json
import os
import tempfile
import unittest

from autoconfig.capability import detect_hardware_encoders, encoder_display_name, encoder_id
from autoconfig.constants import (
    ENCODER_JIM_NVENC,
    ENCODER_NVENC,
    ENCODER_QSV,
    ENCODER_X264,
    KEY_FPS_COMMON,
    KEY_FPS_TYPE,
    KEY_OUTPUT_CX,
    KEY_OUTPUT_MODE,
    KEY_RECORD_ENCODER,
    KEY_RECORD_QUALITY,
    KEY_STREAM_ENCODER,
    KEY_USE_ADVANCED,
    KEY_VIDEO_BITRATE,
)
from autoconfig.errors import InvalidService
from autoconfig.settings import (
    apply_defaults,
    decide_recording_encoder,
    decide_streaming_encoder,
    save_settings,
    save_stream_settings,
    service_settings,
)
from autoconfig.simulated import SimulatedPipeline
from autoconfig.state import ConfigState, Encoder, FpsType, Purpose, Quality
from autoconfig.store import ConfigStore


def _with_encoders(*ids, **kwargs):
    state = ConfigState(**kwargs)
    detect_hardware_encoders(ids, state)
    return state


class TestCapability(unittest.TestCase):
    def test_detects_hardware_families(self):
        state = _with_encoders(ENCODER_X264, ENCODER_QSV)
        self.assertTrue(state.hardware_encoding_available)
        self.assertTrue(state.qsv_available)
        self.assertFalse(state.nvenc_available)

    def test_software_only(self):
        state = _with_encoders(ENCODER_X264, None, "")
        self.assertFalse(state.hardware_encoding_available)

    def test_jim_nvenc_id_preferred(self):
        state = _with_encoders(ENCODER_NVENC, ENCODER_JIM_NVENC)
        self.assertEqual(encoder_id(Encoder.NVENC, state), ENCODER_JIM_NVENC)
        self.assertEqual(encoder_id(Encoder.X264, state), ENCODER_X264)

    def test_display_names(self):
        self.assertEqual(encoder_display_name(Encoder.X264), "x264")
        self.assertEqual(encoder_display_name(Encoder.NVENC), "nvenc")
        self.assertEqual(encoder_display_name(Encoder.QSV), "qsv")


class TestStreamingEncoderDecision(unittest.TestCase):
    def test_nvenc_first(self):
        state = _with_encoders(ENCODER_QSV, ENCODER_NVENC)
        self.assertIs(decide_streaming_encoder(state), Encoder.NVENC)

    def test_qsv_then_amd(self):
        self.assertIs(decide_streaming_encoder(_with_encoders(ENCODER_QSV)), Encoder.QSV)
        self.assertIs(decide_streaming_encoder(_with_encoders("amd_amf_h264")), Encoder.AMD)

    def test_software_preference(self):
        state = _with_encoders(ENCODER_NVENC, prefer_hardware=False)
        self.assertIs(decide_streaming_encoder(state), Encoder.X264)

    def test_software_tested_forces_x264(self):
        state = _with_encoders(ENCODER_NVENC, software_tested=True)
        self.assertIs(decide_streaming_encoder(state), Encoder.X264)

    def test_apple_never_chosen(self):
        state = _with_encoders("com.apple.videotoolbox.videoencoder.ave.avc")
        self.assertTrue(state.apple_hw_available)
        self.assertIs(decide_streaming_encoder(state), Encoder.X264)


class TestRecordingEncoderDecision(unittest.TestCase):
    def test_nvenc_records_separately(self):
        state = _with_encoders(ENCODER_NVENC)
        self.assertIs(decide_recording_encoder(state), Encoder.NVENC)
        self.assertIs(state.recording_quality, Quality.HIGH)

    def test_qsv_shares_stream_encoder(self):
        state = _with_encoders(ENCODER_QSV)
        self.assertIs(decide_recording_encoder(state), Encoder.STREAM)
        self.assertIs(state.recording_quality, Quality.STREAM)

    def test_qsv_recording_only(self):
        state = _with_encoders(ENCODER_QSV, purpose=Purpose.RECORDING)
        self.assertIs(decide_recording_encoder(state), Encoder.QSV)
        self.assertIs(state.recording_quality, Quality.HIGH)

    def test_software_streaming(self):
        state = _with_encoders(ENCODER_X264)
        self.assertIs(decide_recording_encoder(state), Encoder.STREAM)

    def test_software_recording_only(self):
        state = _with_encoders(ENCODER_X264, purpose=Purpose.RECORDING)
        self.assertIs(decide_recording_encoder(state), Encoder.X264)
        self.assertIs(state.recording_quality, Quality.HIGH)


class TestDefaults(unittest.TestCase):
    def test_apply_defaults(self):
        state = ConfigState(ideal_bitrate=9000, ideal_resolution=(1920, 1080),
                            streaming_encoder=Encoder.NVENC)
        apply_defaults(state)
        self.assertEqual(state.ideal_bitrate, 2500)
        self.assertEqual(state.ideal_resolution, (1280, 720))
        self.assertEqual(state.ideal_fps, (30, 1))
        self.assertIs(state.streaming_encoder, Encoder.X264)
        self.assertIs(state.recording_encoder, Encoder.STREAM)
        self.assertIs(state.recording_quality, Quality.HIGH)


class TestPersistence(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.path = os.path.join(self._tmp.name, "basic.json")
        self.store = ConfigStore(self.path)

    def _read(self):
        with open(self.path, encoding="utf-8") as fh:
            return json.load(fh)

    def test_service_settings_custom_server(self):
        state = ConfigState(custom_server=True, server_address="rtmp://me/app", stream_key="k")
        self.assertNotIn("service", service_settings(state))
        state = ConfigState(service_name="Twitch", server_address="rtmp://x", stream_key="k")
        self.assertEqual(service_settings(state)["service"], "Twitch")

    def test_save_stream_settings(self):
        pipeline = SimulatedPipeline()
        state = ConfigState(service_name="Twitch", server_address="rtmp://dfw",
                            stream_key="live_1", ideal_bitrate=6000,
                            streaming_encoder=Encoder.NVENC)
        self.store.set(KEY_USE_ADVANCED, True)

        path = save_stream_settings(state, pipeline, self.store)

        self.assertEqual(path, self.path)
        data = self._read()
        self.assertEqual(data["SimpleOutput"]["VBitrate"], 6000)
        self.assertEqual(data["SimpleOutput"]["StreamEncoder"], "nvenc")
        self.assertNotIn("UseAdvanced", data["SimpleOutput"])
        self.assertEqual(pipeline.saved_services, 1)
        self.assertEqual(pipeline.current_service().url(), "rtmp://dfw")
        self.assertEqual(pipeline.current_service().key(), "live_1")
        self.assertEqual(pipeline.leaked(), [])

    def test_save_stream_settings_refused(self):
        pipeline = SimulatedPipeline()
        pipeline.refuse_services = True
        with self.assertRaises(InvalidService):
            save_stream_settings(ConfigState(service_name="Twitch"), pipeline, self.store)
        self.assertFalse(os.path.exists(self.path))

    def test_save_settings(self):
        state = ConfigState(ideal_resolution=(960, 540), ideal_fps=(60, 1),
                            recording_encoder=Encoder.NVENC, recording_quality=Quality.HIGH)
        save_settings(state, self.store)

        self.assertEqual(self.store.get(KEY_OUTPUT_MODE), "Simple")
        self.assertEqual(self.store.get(KEY_RECORD_ENCODER), "nvenc")
        self.assertEqual(self.store.get(KEY_RECORD_QUALITY), "Small")
        self.assertEqual(self.store.get(KEY_OUTPUT_CX), 960)
        self.assertEqual(self.store.get(KEY_FPS_TYPE), 0)
        self.assertEqual(self.store.get(KEY_FPS_COMMON), "60")
        data = self._read()
        self.assertFalse(data["Output"]["DynamicBitrate"])
        self.assertEqual(data["Video"]["OutputCY"], 540)

    def test_save_settings_shared_encoder(self):
        state = ConfigState(recording_encoder=Encoder.STREAM, recording_quality=Quality.STREAM)
        save_settings(state, self.store)
        self.assertNotIn(KEY_RECORD_ENCODER, self.store)
        self.assertEqual(self.store.get(KEY_RECORD_QUALITY), "Stream")

    def test_use_current_fps_left_alone(self):
        state = ConfigState(fps_type=FpsType.USE_CURRENT)
        save_settings(state, self.store)
        self.assertNotIn(KEY_FPS_TYPE, self.store)
        self.assertNotIn(KEY_FPS_COMMON, self.store)

    def test_stream_encoder_key_untouched_by_save_settings(self):
        save_settings(ConfigState(), self.store)
        self.assertNotIn(KEY_STREAM_ENCODER, self.store)
        self.assertNotIn(KEY_VIDEO_BITRATE, self.store)


if __name__ == "__main__":
    unittest.main()
