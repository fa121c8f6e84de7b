"""
Probe bodies.

Each probe is a coroutine taking a :class:`ProbeContext`.  Probes push
their own ``starting_step`` / ``progress`` / ``stopping_step`` events and
raise :class:`~autoconfig.errors.AutoConfigError` subclasses on failure;
turning those into ``error`` events is the engine's job.

Every pipeline object a probe creates is released through an
``ExitStack`` callback, so early returns and raised errors clean up too.
"""
from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .bandwidth import BandwidthEvaluator
from .capability import detect_hardware_encoders, encoder_id
from .constants import (
    AUDIO_ENCODER_ID,
    AUTO_SERVER,
    BANDWIDTH_OUTPUT_RESOLUTION,
    BIND_IP_DEFAULT,
    ENCODER_X264,
    KEY_BIND_IP,
    PROBE_AUDIO_BITRATE,
    PROBE_BASE_RESOLUTION,
    PROBE_BITRATE,
    RTMP_OUTPUT_ID,
    RTMP_SERVICE_ID,
    STEP_BANDWIDTH,
    STEP_DEFAULT_SETTINGS,
    STEP_RECORDING_ENCODER,
    STEP_SAVE_SERVICE,
    STEP_SAVE_SETTINGS,
    STEP_STREAM_ENCODER,
    TWITCH_BANDWIDTH_SUFFIX,
    YOUTUBE_SERVER_NAME,
    Timings,
)
from .errors import (
    InvalidService,
    InvalidStreamSettings,
    InvalidVideoSettings,
    ProbeCancelled,
)
from .estimate import Candidate
from .events import EventQueue
from .lifecycle import CancelToken, OutputMonitor, OutputPhase
from .pipeline import MediaPipeline, Service, Settings, VideoInfo
from .resolution import ResolutionFinder, clamp_to_upper_bitrate
from .servers import (
    ServerInfo,
    collapse_candidates,
    enumerate_candidates,
    select_best_server,
)
from .settings import (
    apply_defaults,
    decide_recording_encoder,
    decide_streaming_encoder,
    save_settings,
    save_stream_settings,
)
from .state import ConfigState, ServiceKind
from .store import ConfigStore

logger = logging.getLogger(__name__)


@dataclass
class ProbeContext:
    """Everything a probe may touch."""

    state: ConfigState
    pipeline: MediaPipeline
    events: EventQueue
    cancel: CancelToken
    timings: Timings
    store: ConfigStore
    cores: Tuple[int, int]

    def resolution_finder(self, label: str) -> ResolutionFinder:
        finder = ResolutionFinder(self.state, self.pipeline, self.cancel, self.timings, self.cores)
        finder.on_progress = lambda percent: self.events.progress(label, percent)
        return finder


def _test_key(state: ConfigState) -> str:
    if state.service_kind is ServiceKind.TWITCH:
        return state.stream_key + TWITCH_BANDWIDTH_SUFFIX
    return state.stream_key


# ---------------------------------------------------------------------------
# Bandwidth
# ---------------------------------------------------------------------------

def _resolve_stream_target(ctx: ProbeContext) -> Optional[Service]:
    """Fill in service name / key from the current service; derive the kind."""
    state = ctx.state
    current = ctx.pipeline.current_service()

    if current is not None:
        if not state.service_name and not state.custom_server:
            state.service_name = current.settings().get("service", "")
        if not state.stream_key:
            state.stream_key = current.key()

    if not state.stream_key or not (state.service_name or state.custom_server):
        raise InvalidStreamSettings("no stream service or stream key configured")

    if state.custom_server:
        state.service_kind = ServiceKind.OTHER
    else:
        state.service_kind = ServiceKind.from_service_name(state.service_name)

    if state.service_kind is ServiceKind.TWITCH:
        state.stream_key = state.stream_key.rstrip()
    return current


def _probe_bitrate(ctx: ProbeContext) -> int:
    """The probe rate, clamped by whatever the service allows."""
    settings: Settings = {"bitrate": PROBE_BITRATE}
    limits = ctx.pipeline.create_service(
        RTMP_SERVICE_ID, "temp_service", {"service": ctx.state.service_name}
    )
    if limits is not None:
        limits.apply_encoder_settings(settings, None)
        limits.release()
    return int(settings.get("bitrate", PROBE_BITRATE))


def _servers_to_test(ctx: ProbeContext) -> List[ServerInfo]:
    state = ctx.state
    if state.custom_server or state.server_address not in ("", AUTO_SERVER):
        name = state.server_display_name if not state.custom_server else state.server_address
        return [ServerInfo(name=name or state.server_address, address=state.server_address)]

    catalog = ctx.pipeline.list_servers(state.service_name)
    return collapse_candidates(enumerate_candidates(state, catalog))


async def bandwidth_probe(ctx: ProbeContext) -> bool:
    state, pipeline, events = ctx.state, ctx.pipeline, ctx.events
    events.starting(STEP_BANDWIDTH)

    with contextlib.ExitStack() as stack:
        user_info = pipeline.video_info()
        base_cx, base_cy = PROBE_BASE_RESOLUTION
        out_cx, out_cy = BANDWIDTH_OUTPUT_RESOLUTION
        info = (user_info or VideoInfo(fps_num=60, fps_den=1)).copy(
            base_width=base_cx, base_height=base_cy,
            output_width=out_cx, output_height=out_cy,
        )
        context = pipeline.create_video_context()
        stack.callback(context.release)
        if not context.apply(info):
            raise InvalidVideoSettings("could not apply bandwidth probe video")

        current = _resolve_stream_target(ctx)
        if state.service_kind is ServiceKind.YOUTUBE:
            state.server_display_name = YOUTUBE_SERVER_NAME
            if current is not None:
                state.server_address = current.url()

        probe_bitrate = _probe_bitrate(ctx)
        video_settings: Settings = {
            "bitrate": probe_bitrate,
            "rate_control": "CBR",
            "preset": "veryfast",
            "keyint_sec": 2,
        }
        audio_settings: Settings = {"bitrate": PROBE_AUDIO_BITRATE}

        video_encoder = pipeline.create_video_encoder(ENCODER_X264, "test_x264")
        stack.callback(video_encoder.release)
        audio_encoder = pipeline.create_audio_encoder(AUDIO_ENCODER_ID, "test_aac")
        stack.callback(audio_encoder.release)
        service = pipeline.create_service(RTMP_SERVICE_ID, "test_service")
        if service is None:
            raise InvalidService("could not create test service")
        stack.callback(service.release)
        output = pipeline.create_output(RTMP_OUTPUT_ID, "test_stream")
        stack.callback(output.release)

        target: Settings = {"service": state.service_name, "key": _test_key(state)}
        service.update(target)
        service.apply_encoder_settings(video_settings, audio_settings)

        video_encoder.update(video_settings)
        audio_encoder.update(audio_settings)
        video_encoder.set_video_context(context)

        output.set_video_encoder(video_encoder)
        output.set_audio_encoder(audio_encoder)
        output.update({"bind_ip": ctx.store.get(KEY_BIND_IP, BIND_IP_DEFAULT)})
        output.set_service(service)

        servers = _servers_to_test(ctx)
        if not servers:
            raise InvalidStreamSettings(f"no testable servers for {state.service_name}")
        logger.info("bandwidth test: %d server(s) at %d kbps", len(servers), probe_bitrate)

        monitor = OutputMonitor(output, ctx.cancel)
        stack.callback(monitor.close)
        evaluator = BandwidthEvaluator(
            output, service, target, monitor, ctx.cancel, ctx.timings, probe_bitrate
        )

        for i, server in enumerate(servers):
            await evaluator.evaluate_server(server)
            if ctx.cancel.cancelled:
                raise ProbeCancelled()
            events.progress(STEP_BANDWIDTH, (i + 1) * 100 / len(servers))

        best = select_best_server(servers)
        if best is None:
            raise InvalidStreamSettings("no server could be evaluated")

        state.server_address = best.address
        state.server_display_name = best.name
        state.ideal_bitrate = best.bitrate_kbps

    events.stopping(STEP_BANDWIDTH)
    return True


# ---------------------------------------------------------------------------
# Encoders
# ---------------------------------------------------------------------------

async def stream_encoder_probe(ctx: ProbeContext) -> bool:
    state = ctx.state
    ctx.events.starting(STEP_STREAM_ENCODER)

    detect_hardware_encoders(ctx.pipeline.encoder_types(), state)
    finder = ctx.resolution_finder(STEP_STREAM_ENCODER)
    winner: Optional[Candidate] = None

    use_hardware = state.prefer_hardware and state.hardware_encoding_available
    if not state.software_tested:
        if use_hardware:
            winner = await finder.find_ideal_resolution(hardware_only=True)
        else:
            winner = await finder.find_ideal_resolution(hardware_only=False)

    decide_streaming_encoder(state)
    if winner is not None:
        clamp_to_upper_bitrate(state, winner)

    ctx.events.stopping(STEP_STREAM_ENCODER)
    return True


async def recording_encoder_probe(ctx: ProbeContext) -> bool:
    state = ctx.state
    ctx.events.starting(STEP_RECORDING_ENCODER)

    detect_hardware_encoders(ctx.pipeline.encoder_types(), state)
    finder = ctx.resolution_finder(STEP_RECORDING_ENCODER)
    winner: Optional[Candidate] = None

    if not state.hardware_encoding_available and not state.software_tested:
        winner = await finder.find_ideal_resolution(hardware_only=False)
    if state.recording_only and state.hardware_encoding_available:
        winner = await finder.find_ideal_resolution(hardware_only=True)

    decide_recording_encoder(state)
    if winner is not None:
        clamp_to_upper_bitrate(state, winner)

    ctx.events.stopping(STEP_RECORDING_ENCODER)
    return True


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

async def default_settings_probe(ctx: ProbeContext) -> bool:
    ctx.events.starting(STEP_DEFAULT_SETTINGS)
    apply_defaults(ctx.state)
    ctx.events.stopping(STEP_DEFAULT_SETTINGS)
    return True


async def check_settings_probe(ctx: ProbeContext) -> bool:
    """Stream the decided settings for a few seconds; True when it held up."""
    state, pipeline, t = ctx.state, ctx.pipeline, ctx.timings

    with contextlib.ExitStack() as stack:
        settings: Settings = {
            "service": state.service_name,
            "server": state.server_address,
            "key": _test_key(state),
        }
        service = pipeline.create_service(RTMP_SERVICE_ID, "serviceTest", settings)
        if service is None:
            raise InvalidService("could not create service for settings check")
        stack.callback(service.release)

        base_cx, base_cy = PROBE_BASE_RESOLUTION
        info = (pipeline.video_info() or VideoInfo()).copy(
            base_width=base_cx, base_height=base_cy,
            output_width=state.ideal_resolution[0],
            output_height=state.ideal_resolution[1],
            fps_num=state.ideal_fps[0], fps_den=1,
        )
        context = pipeline.create_video_context()
        stack.callback(context.release)
        if not context.apply(info):
            raise InvalidVideoSettings("could not apply check video")

        video_settings: Settings = {
            "bitrate": state.ideal_bitrate,
            "rate_control": "CBR",
            "preset": "veryfast",
            "keyint_sec": 2,
        }
        audio_settings: Settings = {"bitrate": PROBE_AUDIO_BITRATE}
        service.apply_encoder_settings(video_settings, audio_settings)

        video_encoder = pipeline.create_video_encoder(
            encoder_id(state.streaming_encoder, state), "test_encoder", video_settings
        )
        stack.callback(video_encoder.release)
        audio_encoder = pipeline.create_audio_encoder(AUDIO_ENCODER_ID, "test_aac", audio_settings)
        stack.callback(audio_encoder.release)
        output = pipeline.create_output(RTMP_OUTPUT_ID, "test_stream")
        stack.callback(output.release)

        video_encoder.set_video_context(context)
        output.set_video_encoder(video_encoder)
        output.set_audio_encoder(audio_encoder)
        output.update({})
        output.set_service(service)

        monitor = OutputMonitor(output, ctx.cancel)
        stack.callback(monitor.close)

        if ctx.cancel.cancelled:
            raise ProbeCancelled()

        monitor.begin_start()
        if not output.start():
            logger.warning("settings check: output refused to start")
            return False

        await monitor.wait_until(lambda: monitor.finished, t.check_window)
        monitor.begin_stop()
        output.stop()
        await monitor.wait_until(lambda: monitor.finished, t.stop_confirm, cancellable=False)
        if not await monitor.wait_deactivated(t.deactivate, cancellable=False):
            logger.warning("settings check: output never reported deactivate")

        if ctx.cancel.cancelled:
            raise ProbeCancelled()
        if monitor.phase is OutputPhase.FAILED:
            logger.warning("settings check failed: %s", monitor.stop_error)
            return False

    logger.info("settings check passed")
    return True


async def save_stream_settings_probe(ctx: ProbeContext) -> bool:
    ctx.events.starting(STEP_SAVE_SERVICE)
    path = save_stream_settings(ctx.state, ctx.pipeline, ctx.store)
    logger.info("stream settings saved to %s", path)
    ctx.events.stopping(STEP_SAVE_SERVICE)
    return True


async def save_settings_probe(ctx: ProbeContext) -> bool:
    ctx.events.starting(STEP_SAVE_SETTINGS)
    path = save_settings(ctx.state, ctx.store)
    logger.info("settings saved to %s", path)
    ctx.events.stopping(STEP_SAVE_SETTINGS)
    ctx.events.done()
    return True
