"""
Capability contract consumed from the media pipeline.

The engine never encodes or transports frames itself; it drives objects
that satisfy these protocols.  :mod:`autoconfig.simulated` ships an
in-process implementation used by the CLI and the test-suite.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

Settings = Dict[str, Any]


@dataclass
class VideoInfo:
    """Video mix parameters applied to a probe video context."""

    base_width: int = 1920
    base_height: int = 1080
    output_width: int = 1280
    output_height: int = 720
    fps_num: int = 60
    fps_den: int = 1
    output_format: str = "NV12"

    def copy(self, **changes: Any) -> VideoInfo:
        return replace(self, **changes)


class VideoContext(Protocol):
    def apply(self, info: VideoInfo) -> bool: ...

    def skipped_frames(self) -> int: ...

    def release(self) -> None: ...


class Encoder(Protocol):
    def update(self, settings: Settings) -> None: ...

    def set_video_context(self, context: VideoContext) -> None: ...

    def settings(self) -> Settings: ...

    def release(self) -> None: ...


class Service(Protocol):
    def update(self, settings: Settings) -> None: ...

    def apply_encoder_settings(self, video: Settings, audio: Optional[Settings]) -> None: ...

    def settings(self) -> Settings: ...

    def key(self) -> str: ...

    def url(self) -> str: ...

    def release(self) -> None: ...


class Output(Protocol):
    def set_video_encoder(self, encoder: Encoder) -> None: ...

    def set_audio_encoder(self, encoder: Encoder) -> None: ...

    def set_service(self, service: Service) -> None: ...

    def update(self, settings: Settings) -> None: ...

    def start(self) -> bool: ...

    def stop(self) -> None: ...

    def force_stop(self) -> None: ...

    def active(self) -> bool: ...

    def total_bytes(self) -> int: ...

    def connect_time_ms(self) -> int: ...

    def dropped_frames(self) -> int: ...

    def last_error(self) -> Optional[str]: ...

    def connect_signal(self, name: str, callback: Callable[[], None]) -> None: ...

    def release(self) -> None: ...


class MediaPipeline(Protocol):
    def create_video_encoder(self, encoder_id: str, name: str, settings: Optional[Settings] = None) -> Encoder: ...

    def create_audio_encoder(self, encoder_id: str, name: str, settings: Optional[Settings] = None) -> Encoder: ...

    def create_service(self, service_id: str, name: str, settings: Optional[Settings] = None) -> Optional[Service]: ...

    def create_output(self, output_id: str, name: str) -> Output: ...

    def create_video_context(self) -> VideoContext: ...

    def video_info(self) -> Optional[VideoInfo]: ...

    def encoder_types(self) -> Iterable[str]: ...

    def list_servers(self, service_name: str) -> List[Tuple[str, str]]: ...

    def current_service(self) -> Optional[Service]: ...

    def set_current_service(self, service: Service) -> None: ...

    def save_service(self) -> None: ...
