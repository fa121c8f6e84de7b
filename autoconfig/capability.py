"""
Encoder capability detection and encoder naming.

Hardware families are recognised by their pipeline implementation ids.
Core counts (used to pick a data-rate ceiling) come from ``psutil``.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional, Tuple

import psutil

from .constants import (
    ENCODER_AMD,
    ENCODER_APPLE,
    ENCODER_APPLE_M1,
    ENCODER_JIM_NVENC,
    ENCODER_NVENC,
    ENCODER_QSV,
    ENCODER_X264,
)
from .state import ConfigState, Encoder

logger = logging.getLogger(__name__)

_DISPLAY_NAMES = {
    Encoder.NVENC: "nvenc",
    Encoder.QSV: "qsv",
    Encoder.AMD: "amd",
    Encoder.APPLE_HW: ENCODER_APPLE,
    Encoder.APPLE_HW_M1: ENCODER_APPLE_M1,
}


def detect_hardware_encoders(encoder_ids: Iterable[Optional[str]], state: ConfigState) -> bool:
    """Set the per-family capability flags on *state*; return availability."""
    for encoder_id in encoder_ids:
        if not encoder_id:
            continue
        if encoder_id == ENCODER_NVENC:
            state.nvenc_available = True
        elif encoder_id == ENCODER_JIM_NVENC:
            state.jim_nvenc_available = True
        elif encoder_id == ENCODER_QSV:
            state.qsv_available = True
        elif encoder_id == ENCODER_AMD:
            state.amd_available = True
        elif encoder_id in (ENCODER_APPLE, ENCODER_APPLE_M1):
            state.apple_hw_available = True
        else:
            continue
        state.hardware_encoding_available = True
        logger.info("hardware encoder available: %s", encoder_id)

    return state.hardware_encoding_available


def preferred_hardware_encoder(state: ConfigState) -> Optional[Encoder]:
    """NVENC > QSV > AMD.  Apple hardware is detected but never chosen."""
    if state.nvenc_available or state.jim_nvenc_available:
        return Encoder.NVENC
    if state.qsv_available:
        return Encoder.QSV
    if state.amd_available:
        return Encoder.AMD
    return None


def encoder_id(encoder: Encoder, state: ConfigState) -> str:
    """Pipeline implementation id for *encoder*."""
    nvenc = ENCODER_JIM_NVENC if state.jim_nvenc_available else ENCODER_NVENC
    if encoder is Encoder.QSV:
        return ENCODER_QSV
    if encoder is Encoder.AMD:
        return ENCODER_AMD
    if encoder is Encoder.APPLE_HW:
        return ENCODER_APPLE
    if encoder is Encoder.APPLE_HW_M1:
        return ENCODER_APPLE_M1
    if encoder is Encoder.X264:
        return ENCODER_X264
    return nvenc


def encoder_display_name(encoder: Encoder) -> str:
    """Name written to the simple-output encoder settings."""
    return _DISPLAY_NAMES.get(encoder, "x264")


def host_cores() -> Tuple[int, int]:
    """(physical, logical) core counts; psutil may report None for either."""
    logical = psutil.cpu_count(logical=True) or 1
    physical = psutil.cpu_count(logical=False) or logical
    return physical, logical
