"""
Shared configuration state.

A single mutable record written by probes and read by the caller and by
later probes.  It is owned by one :class:`~autoconfig.engine.AutoConfigEngine`
and passed explicitly to every probe; there is no module-level state.
Last writer wins.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set, Tuple

from .constants import (
    AUTO_SERVER,
    AUTO_SERVER_NAME,
    DEFAULT_BASE_RESOLUTION,
    DEFAULT_BITRATE,
    DEFAULT_RESOLUTION,
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ServiceKind(enum.Enum):
    TWITCH = "twitch"
    HITBOX = "hitbox"
    BEAM = "beam"
    YOUTUBE = "youtube"
    OTHER = "other"

    @classmethod
    def from_service_name(cls, name: str) -> ServiceKind:
        if name == "Twitch":
            return cls.TWITCH
        if name == "hitbox.tv":
            return cls.HITBOX
        if name == "beam.pro":
            return cls.BEAM
        if "YouTube" in name:
            return cls.YOUTUBE
        return cls.OTHER


class Region(enum.Enum):
    NA = "na"
    SA = "sa"
    EU = "eu"
    AS = "as"
    OC = "oc"


class Encoder(enum.Enum):
    X264 = "x264"
    NVENC = "nvenc"
    QSV = "qsv"
    AMD = "amd"
    STREAM = "stream"        # recording reuses the streaming encoder
    APPLE_HW = "apple_hw"
    APPLE_HW_M1 = "apple_hw_m1"


class Quality(enum.Enum):
    STREAM = "stream"
    HIGH = "high"


class Purpose(enum.Enum):
    STREAMING = "streaming"
    RECORDING = "recording"


class FpsType(enum.Enum):
    PREFER_HIGH_FPS = "prefer_high_fps"
    PREFER_HIGH_RES = "prefer_high_res"
    USE_CURRENT = "use_current"
    FPS_30 = "fps30"
    FPS_60 = "fps60"


ALL_REGIONS = frozenset(Region)


# ---------------------------------------------------------------------------
# State record
# ---------------------------------------------------------------------------

@dataclass
class ConfigState:
    """In-progress inputs, capability flags, and decided settings."""

    # -- Inputs -------------------------------------------------------------
    service_kind: ServiceKind = ServiceKind.OTHER
    service_name: str = ""
    stream_key: str = ""
    server_address: str = AUTO_SERVER
    server_display_name: str = AUTO_SERVER_NAME
    custom_server: bool = False

    regions: Set[Region] = field(default_factory=lambda: set(ALL_REGIONS))
    test_regions: bool = True
    bandwidth_test: bool = True

    prefer_high_fps: bool = True
    prefer_hardware: bool = True
    specific_fps: Optional[Tuple[int, int]] = None
    fps_type: FpsType = FpsType.PREFER_HIGH_FPS
    purpose: Purpose = Purpose.STREAMING

    base_resolution: Tuple[int, int] = DEFAULT_BASE_RESOLUTION

    # -- Derived results ----------------------------------------------------
    ideal_bitrate: int = DEFAULT_BITRATE
    ideal_resolution: Tuple[int, int] = DEFAULT_RESOLUTION
    ideal_fps: Tuple[int, int] = (60, 1)
    streaming_encoder: Encoder = Encoder.X264
    recording_encoder: Encoder = Encoder.STREAM
    recording_quality: Quality = Quality.STREAM

    # -- Capability flags ---------------------------------------------------
    hardware_encoding_available: bool = False
    nvenc_available: bool = False
    jim_nvenc_available: bool = False
    qsv_available: bool = False
    amd_available: bool = False
    apple_hw_available: bool = False

    software_tested: bool = False

    @property
    def recording_only(self) -> bool:
        return self.purpose is Purpose.RECORDING

    @property
    def fixed_fps(self) -> bool:
        return bool(self.specific_fps and self.specific_fps[0] and self.specific_fps[1])

    def region_enabled(self, region: Region) -> bool:
        return region in self.regions

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service": self.service_name,
            "service_kind": self.service_kind.value,
            "server": self.server_address,
            "server_name": self.server_display_name,
            "bitrate": self.ideal_bitrate,
            "resolution": {
                "width": self.ideal_resolution[0],
                "height": self.ideal_resolution[1],
            },
            "fps": {"num": self.ideal_fps[0], "den": self.ideal_fps[1]},
            "streaming_encoder": self.streaming_encoder.value,
            "recording_encoder": self.recording_encoder.value,
            "recording_quality": self.recording_quality.value,
            "hardware_encoding_available": self.hardware_encoding_available,
        }
