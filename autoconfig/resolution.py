"""
Resolution / frame-rate search.

Walks :func:`~autoconfig.estimate.search_plan` and collects up to
``MAX_CANDIDATES`` feasible profiles.  Two modes:

* **hardware** -- analytic only.  A step is feasible when the configured
  bitrate covers the estimated minimum plus the hardware margin.
* **software** -- live.  Each surviving step runs a short x264 session on
  a null output and is accepted when the encoder kept up (few skipped
  frames).

The last step of the plan is always accepted, so a search never comes
back empty.
"""
from __future__ import annotations

import contextlib
import logging
from typing import Callable, List, Optional, Tuple

from .constants import (
    AUDIO_ENCODER_ID,
    ENCODER_X264,
    MAX_CANDIDATES,
    MAX_SKIPPED_FRAMES,
    NULL_OUTPUT_ID,
    PROBE_AUDIO_BITRATE,
    PROBE_BASE_RESOLUTION,
    Timings,
)
from .errors import EncoderTestFailed, InvalidVideoSettings, ProbeCancelled
from .estimate import (
    Candidate,
    SearchStep,
    apply_high_fps_preference,
    cap_resolution,
    estimate_min_bitrate,
    hardware_max_data_rate,
    hardware_min_bitrate,
    scaled_resolution,
    search_plan,
    software_max_data_rate,
    upper_bitrate_cap,
)
from .lifecycle import CancelToken, OutputMonitor
from .pipeline import MediaPipeline, Settings, VideoInfo
from .state import ConfigState, Encoder, Purpose

logger = logging.getLogger(__name__)


def x264_probe_settings(state: ConfigState) -> Settings:
    """Encoder settings for a live software probe."""
    if state.purpose is Purpose.RECORDING:
        return {
            "crf": 20,
            "rate_control": "CRF",
            "profile": "high",
            "preset": "veryfast",
        }
    return {
        "keyint_sec": 2,
        "bitrate": state.ideal_bitrate,
        "rate_control": "CBR",
        "profile": "main",
        "preset": "veryfast",
    }


def clamp_to_upper_bitrate(state: ConfigState, candidate: Candidate) -> int:
    """Lower ``state.ideal_bitrate`` to what *candidate* can make use of."""
    cap = upper_bitrate_cap(candidate, baseline_encoder=state.streaming_encoder is Encoder.X264)
    if state.ideal_bitrate > cap:
        logger.info("bitrate %d kbps clamped to %d kbps", state.ideal_bitrate, cap)
        state.ideal_bitrate = cap
    return state.ideal_bitrate


class ResolutionFinder:
    """
    Finds the best output profile for the machine and connection.

    ``on_progress``, when set, receives a percentage after every step of
    a live search.
    """

    def __init__(
        self,
        state: ConfigState,
        pipeline: MediaPipeline,
        cancel: CancelToken,
        timings: Timings,
        cores: Tuple[int, int],
    ) -> None:
        self.state = state
        self.pipeline = pipeline
        self.cancel = cancel
        self.timings = timings
        self.physical_cores, self.logical_cores = cores
        self.on_progress: Optional[Callable[[float], None]] = None

    async def find_ideal_resolution(self, hardware_only: bool) -> Candidate:
        """Run the search and store the winner on the state; returns it uncapped."""
        if hardware_only:
            candidates = self._search_hardware()
        else:
            candidates = await self._search_software()
        return self._choose(candidates)

    # -- Helpers ------------------------------------------------------------

    def _step_candidate(self, step: SearchStep) -> Candidate:
        cx, cy = scaled_resolution(self.state.base_resolution, step.divisor)
        return Candidate(cx, cy, step.fps_num, step.fps_den)

    def _choose(self, candidates: List[Candidate]) -> Candidate:
        state = self.state
        ranked = apply_high_fps_preference(candidates, state.prefer_high_fps, state.fixed_fps)
        best = ranked[0]

        state.ideal_resolution = cap_resolution(best.cx, best.cy)
        state.ideal_fps = (best.fps_num, best.fps_den)
        logger.info(
            "ideal profile %dx%d @ %d/%d (from %d candidates)",
            state.ideal_resolution[0], state.ideal_resolution[1],
            best.fps_num, best.fps_den, len(candidates),
        )
        return best

    # -- Analytic search ----------------------------------------------------

    def _search_hardware(self) -> List[Candidate]:
        state = self.state
        ceiling = hardware_max_data_rate(state.base_resolution, self.physical_cores)
        results: List[Candidate] = []

        for step in search_plan(state.specific_fps):
            if len(results) >= MAX_CANDIDATES:
                break
            candidate = self._step_candidate(step)
            if not step.force and candidate.pixel_rate > ceiling:
                continue

            force = step.force or state.recording_only
            if force or state.ideal_bitrate >= hardware_min_bitrate(candidate, state.base_resolution):
                results.append(candidate)

        return results

    # -- Live search --------------------------------------------------------

    def _skip_live_step(self, step: SearchStep, candidate: Candidate, ceiling: int) -> bool:
        if step.force:
            return False
        state = self.state
        if not state.recording_only:
            est = int(estimate_min_bitrate(
                candidate.cx, candidate.cy, candidate.fps_num, candidate.fps_den,
                state.base_resolution,
            ))
            if est > state.ideal_bitrate:
                return True
        return candidate.pixel_rate > ceiling

    async def _search_software(self) -> List[Candidate]:
        state = self.state
        pipeline = self.pipeline
        t = self.timings
        ceiling = software_max_data_rate(
            state.base_resolution, self.physical_cores, self.logical_cores
        )
        plan = search_plan(state.specific_fps)
        settings = x264_probe_settings(state)
        results: List[Candidate] = []

        base_info = pipeline.video_info() or VideoInfo()
        probe_cx, probe_cy = PROBE_BASE_RESOLUTION

        with contextlib.ExitStack() as stack:
            video_encoder = pipeline.create_video_encoder(ENCODER_X264, "test_x264", settings)
            stack.callback(video_encoder.release)
            audio_encoder = pipeline.create_audio_encoder(
                AUDIO_ENCODER_ID, "test_aac", {"bitrate": PROBE_AUDIO_BITRATE}
            )
            stack.callback(audio_encoder.release)
            output = pipeline.create_output(NULL_OUTPUT_ID, "null")
            stack.callback(output.release)
            context = pipeline.create_video_context()
            stack.callback(context.release)

            output.set_video_encoder(video_encoder)
            output.set_audio_encoder(audio_encoder)

            monitor = OutputMonitor(output, self.cancel)
            stack.callback(monitor.close)

            for i, step in enumerate(plan, start=1):
                if len(results) >= MAX_CANDIDATES:
                    break

                candidate = self._step_candidate(step)
                if not self._skip_live_step(step, candidate, ceiling):
                    info = base_info.copy(
                        base_width=probe_cx,
                        base_height=probe_cy,
                        output_width=candidate.cx,
                        output_height=candidate.cy,
                        output_format="NV12",
                        fps_num=candidate.fps_num,
                        fps_den=candidate.fps_den,
                    )
                    if not context.apply(info):
                        raise InvalidVideoSettings(
                            f"could not apply {candidate.cx}x{candidate.cy} probe video"
                        )
                    video_encoder.update(settings)
                    video_encoder.set_video_context(context)

                    if self.cancel.cancelled:
                        raise ProbeCancelled()

                    skipped = await self._encode(output, monitor, context)
                    if step.force or skipped <= MAX_SKIPPED_FRAMES:
                        results.append(candidate)
                    logger.debug(
                        "live step %dx%d @ %d: skipped %d",
                        candidate.cx, candidate.cy, candidate.fps_num, skipped,
                    )

                if self.on_progress:
                    self.on_progress(i * 100 / len(plan))
                if self.cancel.cancelled:
                    raise ProbeCancelled()

        state.software_tested = True
        return results

    async def _encode(self, output, monitor: OutputMonitor, context) -> int:  # noqa: ANN001
        """One timed encode session; returns the skipped-frame count."""
        t = self.timings

        monitor.begin_start()
        if not output.start():
            raise EncoderTestFailed("null output refused to start")

        await monitor.wait_until(lambda: monitor.deactivated, t.encode_window)

        monitor.begin_stop()
        output.stop()
        if not await monitor.wait_deactivated(t.deactivate, cancellable=False):
            logger.warning("live encode output never reported deactivate")

        return context.skipped_frames()
