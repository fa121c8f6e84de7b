"""
Shared constants used across all autoconfig modules.

Centralises magic numbers, step labels, and tunables so they live in
exactly one place.
"""
from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Bandwidth test
# ---------------------------------------------------------------------------

PROBE_BITRATE = 10_000           # kbps requested from every test server
PROBE_AUDIO_BITRATE = 32         # kbps
SUSTAINED_RATIO = 0.75           # measured / probe needed to keep probe rate
PENALTY_PERCENT = 70             # usable share of measured rate when penalised
CLOSE_BITRATE_MARGIN = 400       # kbps; closer than this defers to latency
MIN_MULTI_SERVER_CANDIDATES = 3  # fewer candidates -> test only the first

PROBE_BASE_RESOLUTION = (1280, 720)
BANDWIDTH_OUTPUT_RESOLUTION = (128, 128)

AUTO_SERVER = "auto"
AUTO_SERVER_NAME = "Auto (Recommended)"
YOUTUBE_SERVER_NAME = "Stream URL"
TWITCH_BANDWIDTH_SUFFIX = "?bandwidthtest"

# ---------------------------------------------------------------------------
# Resolution / bitrate estimation
# ---------------------------------------------------------------------------

MAX_IDEAL_RESOLUTION = (1280, 720)
HIGH_FPS_MIN_AREA = 960 * 540
MAX_CANDIDATES = 3
MAX_SKIPPED_FRAMES = 10

MIN_BITRATE_REFERENCE_FPS = 60
MIN_BITRATE_REFERENCE_KBPS = 5800.0
UPPER_BITRATE_REFERENCE = (1280, 720, 30)
UPPER_BITRATE_REFERENCE_KBPS = 3000.0
BITRATE_ROUNDING = 50
HARDWARE_BITRATE_MARGIN = 114    # percent

# (divisor, fps) in search order; fps 0 means "use the fixed fps"
RESOLUTION_DIVISORS = (1.0, 1.5, 1.0 / 0.6, 2.0, 2.25)
SEARCH_FPS = (60, 30)

# ---------------------------------------------------------------------------
# Defaults applied by "set default settings"
# ---------------------------------------------------------------------------

DEFAULT_BITRATE = 2500
DEFAULT_RESOLUTION = (1280, 720)
DEFAULT_FPS = 30
DEFAULT_BASE_RESOLUTION = (1920, 1080)

# ---------------------------------------------------------------------------
# Pipeline implementation identifiers
# ---------------------------------------------------------------------------

RTMP_SERVICE_ID = "rtmp_common"
RTMP_OUTPUT_ID = "rtmp_output"
NULL_OUTPUT_ID = "null_output"
AUDIO_ENCODER_ID = "ffmpeg_aac"

ENCODER_X264 = "obs_x264"
ENCODER_NVENC = "ffmpeg_nvenc"
ENCODER_JIM_NVENC = "jim_nvenc"
ENCODER_QSV = "obs_qsv11"
ENCODER_AMD = "amd_amf_h264"
ENCODER_APPLE = "com.apple.videotoolbox.videoencoder.h264.gva"
ENCODER_APPLE_M1 = "com.apple.videotoolbox.videoencoder.ave.avc"

# ---------------------------------------------------------------------------
# Progress labels
# ---------------------------------------------------------------------------

STEP_BANDWIDTH = "bandwidth_test"
STEP_STREAM_ENCODER = "streamingEncoder_test"
STEP_RECORDING_ENCODER = "recordingEncoder_test"
STEP_DEFAULT_SETTINGS = "setting_default_settings"
STEP_SAVE_SERVICE = "saving_service"
STEP_SAVE_SETTINGS = "saving_settings"

ERROR_INVALID_STREAM_SETTINGS = "invalid_stream_settings"
ERROR_INVALID_VIDEO_SETTINGS = "invalid_video_settings"
ERROR_INVALID_SERVICE = "invalid_service"
ERROR_CANCELLED = "cancelled"
ERROR_ENCODER_TEST = "encoder_test_failed"
ERROR_INTERNAL = "internal_error"

# ---------------------------------------------------------------------------
# Persisted settings (section, key)
# ---------------------------------------------------------------------------

KEY_OUTPUT_MODE = ("Output", "Mode")
KEY_DYNAMIC_BITRATE = ("Output", "DynamicBitrate")
KEY_BIND_IP = ("Output", "BindIP")
KEY_VIDEO_BITRATE = ("SimpleOutput", "VBitrate")
KEY_STREAM_ENCODER = ("SimpleOutput", "StreamEncoder")
KEY_RECORD_ENCODER = ("SimpleOutput", "RecEncoder")
KEY_RECORD_QUALITY = ("SimpleOutput", "RecQuality")
KEY_USE_ADVANCED = ("SimpleOutput", "UseAdvanced")
KEY_OUTPUT_CX = ("Video", "OutputCX")
KEY_OUTPUT_CY = ("Video", "OutputCY")
KEY_FPS_TYPE = ("Video", "FPSType")
KEY_FPS_COMMON = ("Video", "FPSCommon")

OUTPUT_MODE_SIMPLE = "Simple"
QUALITY_HIGH_NAME = "Small"
QUALITY_STREAM_NAME = "Stream"
BIND_IP_DEFAULT = "default"

# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------

PENDING_POLL_INTERVAL = 0.05     # seconds between wait_idle() checks


@dataclass
class Timings:
    """Timeouts (seconds) for every blocking wait a probe performs."""

    connect: float = 10.0
    transfer_window: float = 10.0
    stop_poll_interval: float = 0.5
    stop_poll_attempts: int = 20
    stop_confirm: float = 10.0
    deactivate: float = 10.0
    encode_window: float = 5.0
    check_window: float = 4.0
