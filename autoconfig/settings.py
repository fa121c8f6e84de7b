"""
Settings decision and persistence.

Turns capability flags and probe results into encoder choices, and writes
the decided configuration to the settings store.
"""
from __future__ import annotations

import logging

from .capability import encoder_display_name, preferred_hardware_encoder
from .constants import (
    DEFAULT_BITRATE,
    DEFAULT_FPS,
    DEFAULT_RESOLUTION,
    KEY_DYNAMIC_BITRATE,
    KEY_FPS_COMMON,
    KEY_FPS_TYPE,
    KEY_OUTPUT_CX,
    KEY_OUTPUT_CY,
    KEY_OUTPUT_MODE,
    KEY_RECORD_ENCODER,
    KEY_RECORD_QUALITY,
    KEY_STREAM_ENCODER,
    KEY_USE_ADVANCED,
    KEY_VIDEO_BITRATE,
    OUTPUT_MODE_SIMPLE,
    QUALITY_HIGH_NAME,
    QUALITY_STREAM_NAME,
    RTMP_SERVICE_ID,
)
from .errors import InvalidService
from .pipeline import MediaPipeline, Settings
from .state import ConfigState, Encoder, FpsType, Quality
from .store import ConfigStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------

def decide_streaming_encoder(state: ConfigState) -> Encoder:
    choice = None
    if state.prefer_hardware and state.hardware_encoding_available and not state.software_tested:
        choice = preferred_hardware_encoder(state)
    state.streaming_encoder = choice or Encoder.X264
    logger.info("streaming encoder: %s", state.streaming_encoder.value)
    return state.streaming_encoder


def decide_recording_encoder(state: ConfigState) -> Encoder:
    """
    Pick the recording encoder.  Only NVENC is trusted to run a second
    session next to the streaming encoder; anything else records from
    the stream encoder unless the machine is used for recording only.
    """
    state.recording_quality = Quality.HIGH

    choice = None
    if state.hardware_encoding_available:
        choice = preferred_hardware_encoder(state)
    state.recording_encoder = choice or Encoder.X264

    if state.recording_encoder is not Encoder.NVENC and not state.recording_only:
        state.recording_encoder = Encoder.STREAM
        state.recording_quality = Quality.STREAM

    logger.info(
        "recording encoder: %s (%s quality)",
        state.recording_encoder.value, state.recording_quality.value,
    )
    return state.recording_encoder


def apply_defaults(state: ConfigState) -> None:
    state.ideal_resolution = DEFAULT_RESOLUTION
    state.ideal_fps = (DEFAULT_FPS, 1)
    state.recording_quality = Quality.HIGH
    state.ideal_bitrate = DEFAULT_BITRATE
    state.streaming_encoder = Encoder.X264
    state.recording_encoder = Encoder.STREAM


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def service_settings(state: ConfigState) -> Settings:
    settings: Settings = {}
    if not state.custom_server:
        settings["service"] = state.service_name
    settings["server"] = state.server_address
    settings["key"] = state.stream_key
    return settings


def save_stream_settings(state: ConfigState, pipeline: MediaPipeline, store: ConfigStore) -> str:
    """Install the chosen service and persist bitrate / encoder."""
    service = pipeline.create_service(RTMP_SERVICE_ID, "default_service", service_settings(state))
    if service is None:
        raise InvalidService(f"could not create service for {state.service_name or 'custom server'}")

    pipeline.set_current_service(service)
    pipeline.save_service()

    store.set(KEY_VIDEO_BITRATE, state.ideal_bitrate)
    store.set(KEY_STREAM_ENCODER, encoder_display_name(state.streaming_encoder))
    store.remove(KEY_USE_ADVANCED)
    return store.save_safe()


def save_settings(state: ConfigState, store: ConfigStore) -> str:
    if state.recording_encoder is not Encoder.STREAM:
        store.set(KEY_RECORD_ENCODER, encoder_display_name(state.recording_encoder))

    quality = QUALITY_HIGH_NAME if state.recording_quality is Quality.HIGH else QUALITY_STREAM_NAME

    store.set(KEY_OUTPUT_MODE, OUTPUT_MODE_SIMPLE)
    store.set(KEY_RECORD_QUALITY, quality)
    store.set(KEY_OUTPUT_CX, state.ideal_resolution[0])
    store.set(KEY_OUTPUT_CY, state.ideal_resolution[1])
    store.set(KEY_DYNAMIC_BITRATE, False)

    if state.fps_type is not FpsType.USE_CURRENT:
        store.set(KEY_FPS_TYPE, 0)
        store.set(KEY_FPS_COMMON, str(state.ideal_fps[0]))

    return store.save_safe()
