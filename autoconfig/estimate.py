"""
Resolution / bitrate cost model.

Pure functions and lightweight dataclasses -- no I/O, no side effects.
The bitrate model is an empirical curve, ``(w*h)^0.85 * sqrt(fps^1.1)``,
normalised against a reference resolution whose bitrate is known.
"""
from __future__ import annotations

import math
import sys
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .constants import (
    BITRATE_ROUNDING,
    HARDWARE_BITRATE_MARGIN,
    HIGH_FPS_MIN_AREA,
    MAX_IDEAL_RESOLUTION,
    MIN_BITRATE_REFERENCE_FPS,
    MIN_BITRATE_REFERENCE_KBPS,
    RESOLUTION_DIVISORS,
    SEARCH_FPS,
    UPPER_BITRATE_REFERENCE,
    UPPER_BITRATE_REFERENCE_KBPS,
)


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Candidate:
    """A feasible output resolution / frame-rate pair."""

    cx: int
    cy: int
    fps_num: int
    fps_den: int = 1

    @property
    def area(self) -> int:
        return self.cx * self.cy

    @property
    def fps(self) -> float:
        return self.fps_num / self.fps_den if self.fps_den else 0.0

    @property
    def pixel_rate(self) -> float:
        return self.cx * self.cy * self.fps


@dataclass(frozen=True)
class SearchStep:
    divisor: float
    fps_num: int
    fps_den: int
    force: bool = False


# ---------------------------------------------------------------------------
# Bitrate model
# ---------------------------------------------------------------------------

def bitrate_cost(cx: int, cy: int, fps_num: int, fps_den: int) -> float:
    """Unnormalised cost; fps is truncated to a whole number first."""
    fps = int(fps_num / fps_den) if fps_den else 0
    area_cost = float(cx * cy) ** 0.85
    return area_cost * math.sqrt(fps ** 1.1)


def _normalised(cost: float, reference_cost: float, reference_kbps: float) -> float:
    scale = reference_cost / reference_kbps
    if -sys.float_info.epsilon < scale < sys.float_info.epsilon:
        return 0.0
    return cost / scale


def estimate_min_bitrate(
    cx: int,
    cy: int,
    fps_num: int,
    fps_den: int,
    base_resolution: Tuple[int, int],
) -> float:
    """Lower bitrate bound (kbps); base resolution @60fps is ~5800 kbps."""
    base_cx, base_cy = base_resolution
    reference = bitrate_cost(base_cx, base_cy, MIN_BITRATE_REFERENCE_FPS, 1)
    return _normalised(
        bitrate_cost(cx, cy, fps_num, fps_den), reference, MIN_BITRATE_REFERENCE_KBPS
    )


def estimate_upper_bitrate(
    cx: int,
    cy: int,
    fps_num: int,
    fps_den: int,
    reference: Tuple[int, int, int] = UPPER_BITRATE_REFERENCE,
) -> float:
    """Upper bitrate bound (kbps); 1280x720 @30fps is ~3000 kbps."""
    ref_cx, ref_cy, ref_fps = reference
    return _normalised(
        bitrate_cost(cx, cy, fps_num, fps_den),
        bitrate_cost(ref_cx, ref_cy, ref_fps, 1),
        UPPER_BITRATE_REFERENCE_KBPS,
    )


def upper_bitrate_cap(candidate: Candidate, baseline_encoder: bool) -> int:
    """Round the upper bound down to 50 kbps; hardware encoders get +14%."""
    upper = estimate_upper_bitrate(
        candidate.cx, candidate.cy, candidate.fps_num, candidate.fps_den
    )
    cap = int(math.floor(upper / BITRATE_ROUNDING) * BITRATE_ROUNDING)
    if not baseline_encoder:
        cap = cap * HARDWARE_BITRATE_MARGIN // 100
    return cap


def hardware_min_bitrate(candidate: Candidate, base_resolution: Tuple[int, int]) -> int:
    """Minimum bitrate with the hardware safety margin applied."""
    est = estimate_min_bitrate(
        candidate.cx, candidate.cy, candidate.fps_num, candidate.fps_den, base_resolution
    )
    return int(est * HARDWARE_BITRATE_MARGIN / 100)


# ---------------------------------------------------------------------------
# Machine capability tiers
# ---------------------------------------------------------------------------

def hardware_max_data_rate(base_resolution: Tuple[int, int], physical_cores: int) -> int:
    base_cx, base_cy = base_resolution
    if physical_cores >= 4:
        return base_cx * base_cy * 60 + 1000
    return 1280 * 720 * 30 + 1000


def software_max_data_rate(
    base_resolution: Tuple[int, int],
    physical_cores: int,
    logical_cores: int,
) -> int:
    base_cx, base_cy = base_resolution
    if logical_cores > 8 or physical_cores > 4:
        return base_cx * base_cy * 60 + 1000      # superb
    if logical_cores > 4 and physical_cores == 4:
        return base_cx * base_cy * 60 + 1000      # great
    if physical_cores == 4:
        return base_cx * base_cy * 30 + 1000      # okay
    return 960 * 540 * 30 + 1000                  # toaster


# ---------------------------------------------------------------------------
# Search plan and candidate post-processing
# ---------------------------------------------------------------------------

def search_plan(specific_fps: Optional[Tuple[int, int]] = None) -> List[SearchStep]:
    """
    Ordered resolution/fps steps.  The very last step is force-accepted so
    the search always produces at least one candidate.
    """
    last = len(RESOLUTION_DIVISORS) - 1

    if specific_fps and specific_fps[0] and specific_fps[1]:
        num, den = specific_fps
        return [
            SearchStep(div, num, den, force=(i == last))
            for i, div in enumerate(RESOLUTION_DIVISORS)
        ]

    steps = []
    for i, div in enumerate(RESOLUTION_DIVISORS):
        for fps in SEARCH_FPS:
            steps.append(SearchStep(div, fps, 1, force=(i == last and fps == SEARCH_FPS[-1])))
    return steps


def scaled_resolution(base_resolution: Tuple[int, int], divisor: float) -> Tuple[int, int]:
    base_cx, base_cy = base_resolution
    return int(base_cx / divisor), int(base_cy / divisor)


def apply_high_fps_preference(
    candidates: Sequence[Candidate],
    prefer_high_fps: bool,
    fixed_fps: bool = False,
) -> List[Candidate]:
    """Drop a leading 30fps candidate when a large-enough 60fps one follows."""
    result = list(candidates)
    if fixed_fps or not prefer_high_fps or len(result) < 2:
        return result

    first, second = result[0], result[1]
    if first.fps_num == 30 and second.fps_num == 60 and second.area >= HIGH_FPS_MIN_AREA:
        result.pop(0)
    return result


def cap_resolution(cx: int, cy: int) -> Tuple[int, int]:
    max_cx, max_cy = MAX_IDEAL_RESOLUTION
    if cx * cy > max_cx * max_cy:
        return max_cx, max_cy
    return cx, cy
