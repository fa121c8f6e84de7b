"""
In-process media pipeline.

Implements the :mod:`autoconfig.pipeline` protocols without encoding a
single frame.  Outputs emit their signals synchronously from ``start()``
and ``stop()``; transferred bytes are derived from a per-server
throughput and the wall-clock time the output was active.  Every object
handed out is remembered so tests can check that probes released it.
"""
from __future__ import annotations

import logging
import random
import time
import zlib
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .catalog import ServiceCatalog
from .constants import ENCODER_X264
from .pipeline import Settings, VideoInfo

logger = logging.getLogger(__name__)

OVERLOAD_SKIPPED_FRAMES = 60


@dataclass
class ServerProfile:
    """How a simulated ingest server behaves."""

    throughput_kbps: int = 20_000
    connect_ms: int = 40
    dropped_frames: int = 0
    connects: bool = True
    fails_to_start: bool = False
    stop_error: Optional[str] = None

    @classmethod
    def seeded(cls, address: str) -> ServerProfile:
        """Stable pseudo-random profile for *address*."""
        rng = random.Random(zlib.crc32(address.encode("utf-8")))
        return cls(
            throughput_kbps=rng.randrange(3_000, 14_000, 100),
            connect_ms=rng.randrange(15, 180),
        )


class _Handle:
    def __init__(self, kind: str, type_id: str, name: str) -> None:
        self.kind = kind
        self.type_id = type_id
        self.name = name
        self.released = False

    def release(self) -> None:
        self.released = True

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.type_id}:{self.name}>"


class SimulatedVideoContext(_Handle):
    def __init__(self, pipeline: SimulatedPipeline) -> None:
        super().__init__("video", "video_context", "probe")
        self._pipeline = pipeline
        self.info: Optional[VideoInfo] = None

    def apply(self, info: VideoInfo) -> bool:
        if self._pipeline.fail_video:
            return False
        self.info = info
        return True

    def skipped_frames(self) -> int:
        if self.info is None or not self.info.fps_den:
            return 0
        info = self.info
        rate = info.output_width * info.output_height * info.fps_num / info.fps_den
        return 0 if rate <= self._pipeline.encode_capacity else OVERLOAD_SKIPPED_FRAMES


class SimulatedEncoder(_Handle):
    def __init__(self, kind: str, type_id: str, name: str, settings: Optional[Settings]) -> None:
        super().__init__(kind, type_id, name)
        self._settings: Settings = dict(settings or {})
        self.context: Optional[SimulatedVideoContext] = None

    def update(self, settings: Settings) -> None:
        self._settings.update(settings)

    def set_video_context(self, context) -> None:  # noqa: ANN001
        self.context = context

    def settings(self) -> Settings:
        return dict(self._settings)


class SimulatedService(_Handle):
    def __init__(self, type_id: str, name: str, settings: Optional[Settings], max_bitrate: int = 0) -> None:
        super().__init__("service", type_id, name)
        self._settings: Settings = dict(settings or {})
        self.max_bitrate = max_bitrate

    def update(self, settings: Settings) -> None:
        self._settings.update(settings)

    def apply_encoder_settings(self, video: Settings, audio: Optional[Settings]) -> None:
        if self.max_bitrate and video.get("bitrate", 0) > self.max_bitrate:
            video["bitrate"] = self.max_bitrate

    def settings(self) -> Settings:
        return dict(self._settings)

    def key(self) -> str:
        return self._settings.get("key", "")

    def url(self) -> str:
        return self._settings.get("server", "")


class SimulatedOutput(_Handle):
    def __init__(self, pipeline: SimulatedPipeline, type_id: str, name: str) -> None:
        super().__init__("output", type_id, name)
        self._pipeline = pipeline
        self._signals: Dict[str, List[Callable[[], None]]] = {}
        self._service: Optional[SimulatedService] = None
        self._settings: Settings = {}
        self._profile = ServerProfile()
        self._active = False
        self._started_at = 0.0
        self._stopped_at: Optional[float] = None
        self._last_error: Optional[str] = None
        self.video_encoder = None
        self.audio_encoder = None
        self.starts = 0

    # -- Wiring -------------------------------------------------------------

    def set_video_encoder(self, encoder) -> None:  # noqa: ANN001
        self.video_encoder = encoder

    def set_audio_encoder(self, encoder) -> None:  # noqa: ANN001
        self.audio_encoder = encoder

    def set_service(self, service) -> None:  # noqa: ANN001
        self._service = service

    def update(self, settings: Settings) -> None:
        self._settings.update(settings)

    def connect_signal(self, name: str, callback: Callable[[], None]) -> None:
        self._signals.setdefault(name, []).append(callback)

    def _emit(self, name: str) -> None:
        for callback in list(self._signals.get(name, ())):
            callback()

    # -- Lifecycle ----------------------------------------------------------

    def start(self) -> bool:
        address = self._service.url() if self._service else ""
        profile = self._pipeline.profile_for(address)
        self._profile = profile
        self.starts += 1

        if profile.fails_to_start:
            return False

        self._last_error = None
        self._active = True
        self._started_at = time.perf_counter()
        self._stopped_at = None

        if not profile.connects:
            self._last_error = f"could not connect to {address}"
            self._finish()
            return True

        self._emit("start")
        return True

    def _finish(self) -> None:
        self._active = False
        self._stopped_at = time.perf_counter()
        self._emit("stop")
        self._emit("deactivate")

    def stop(self) -> None:
        if not self._active:
            return
        self._last_error = self._profile.stop_error
        self._finish()

    def force_stop(self) -> None:
        if not self._active:
            return
        self._last_error = None
        self._finish()

    def active(self) -> bool:
        return self._active

    # -- Statistics ---------------------------------------------------------

    def total_bytes(self) -> int:
        if not self._started_at:
            return 0
        end = self._stopped_at if self._stopped_at is not None else time.perf_counter()
        return int(self._profile.throughput_kbps * 1000 / 8 * (end - self._started_at))

    def connect_time_ms(self) -> int:
        return self._profile.connect_ms

    def dropped_frames(self) -> int:
        return self._profile.dropped_frames

    def last_error(self) -> Optional[str]:
        return self._last_error


class SimulatedPipeline:
    """Scriptable stand-in for a real media pipeline."""

    def __init__(
        self,
        catalog: Optional[ServiceCatalog] = None,
        profiles: Optional[Dict[str, ServerProfile]] = None,
        default_profile: Optional[ServerProfile] = None,
        encoder_ids: Iterable[str] = (ENCODER_X264,),
        video: Optional[VideoInfo] = None,
        encode_capacity: float = 1920 * 1080 * 60,
        service_limits: Optional[Dict[str, int]] = None,
        seeded: bool = False,
    ) -> None:
        self.catalog = catalog or ServiceCatalog()
        self.profiles: Dict[str, ServerProfile] = dict(profiles or {})
        self.default_profile = default_profile or ServerProfile()
        self.encoder_ids = list(encoder_ids)
        self.video: Optional[VideoInfo] = video or VideoInfo()
        self.encode_capacity = encode_capacity
        self.service_limits: Dict[str, int] = dict(service_limits or {})
        self.seeded = seeded

        self.fail_video = False
        self.refuse_services = False
        self.saved_services = 0
        self.created: List[_Handle] = []
        self._current: Optional[SimulatedService] = None

    # -- Scripting helpers --------------------------------------------------

    def configure_service(self, service_name: str, key: str, server: str = "") -> SimulatedService:
        """Install a current service, as if the user had set one up earlier."""
        self._current = SimulatedService(
            "rtmp_common", "default_service",
            {"service": service_name, "key": key, "server": server},
        )
        return self._current

    def profile_for(self, address: str) -> ServerProfile:
        if address in self.profiles:
            return self.profiles[address]
        if self.seeded and address:
            return ServerProfile.seeded(address)
        return self.default_profile

    def leaked(self) -> List[_Handle]:
        return [handle for handle in self.created if not handle.released]

    def outputs(self) -> List[SimulatedOutput]:
        return [h for h in self.created if isinstance(h, SimulatedOutput)]

    def _track(self, handle):  # noqa: ANN001, ANN202
        self.created.append(handle)
        return handle

    # -- MediaPipeline ------------------------------------------------------

    def create_video_encoder(self, encoder_id: str, name: str, settings: Optional[Settings] = None) -> SimulatedEncoder:
        return self._track(SimulatedEncoder("video_encoder", encoder_id, name, settings))

    def create_audio_encoder(self, encoder_id: str, name: str, settings: Optional[Settings] = None) -> SimulatedEncoder:
        return self._track(SimulatedEncoder("audio_encoder", encoder_id, name, settings))

    def create_service(self, service_id: str, name: str, settings: Optional[Settings] = None) -> Optional[SimulatedService]:
        if self.refuse_services:
            return None
        service_name = (settings or {}).get("service", "")
        limit = self.service_limits.get(service_name, 0)
        return self._track(SimulatedService(service_id, name, settings, max_bitrate=limit))

    def create_output(self, output_id: str, name: str) -> SimulatedOutput:
        return self._track(SimulatedOutput(self, output_id, name))

    def create_video_context(self) -> SimulatedVideoContext:
        return self._track(SimulatedVideoContext(self))

    def video_info(self) -> Optional[VideoInfo]:
        return self.video.copy() if self.video is not None else None

    def encoder_types(self) -> List[str]:
        return list(self.encoder_ids)

    def list_servers(self, service_name: str) -> List[Tuple[str, str]]:
        return self.catalog.servers_for(service_name)

    def current_service(self) -> Optional[SimulatedService]:
        return self._current

    def set_current_service(self, service) -> None:  # noqa: ANN001
        self._current = service
        # ownership moves to the pipeline
        if service in self.created:
            self.created.remove(service)

    def save_service(self) -> None:
        self.saved_services += 1
        logger.debug("service saved: %s", self._current)
