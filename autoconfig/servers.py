"""
Ingest server candidates: region filtering, enumeration, and selection.

Region classification is table-driven.  Each service maps display-label
prefixes to a region; a label matching no prefix is always testable.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .constants import CLOSE_BITRATE_MARGIN, MIN_MULTI_SERVER_CANDIDATES
from .state import ALL_REGIONS, ConfigState, Region, ServiceKind

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass
class ServerInfo:
    """One candidate ingest endpoint and what the bandwidth test measured."""

    name: str
    address: str
    bitrate_kbps: int = 0
    round_trip_ms: Optional[int] = None   # None until measured
    evaluated: bool = False

    @property
    def latency_key(self) -> float:
        return float("inf") if self.round_trip_ms is None else float(self.round_trip_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "address": self.address,
            "bitrate_kbps": self.bitrate_kbps,
            "round_trip_ms": self.round_trip_ms,
            "evaluated": self.evaluated,
        }


# ---------------------------------------------------------------------------
# Region rules
# ---------------------------------------------------------------------------

# Labels that are always testable regardless of region filters.
_ALWAYS_TESTABLE: Dict[ServiceKind, Tuple[str, ...]] = {
    ServiceKind.HITBOX: ("Default",),
}

_REGION_PREFIXES: Dict[ServiceKind, Tuple[Tuple[str, Region], ...]] = {
    ServiceKind.TWITCH: (
        ("NA:", Region.NA),
        ("US West:", Region.NA),
        ("US East:", Region.NA),
        ("US Central:", Region.NA),
        ("South America:", Region.SA),
        ("EU:", Region.EU),
        ("Asia:", Region.AS),
        ("Australia:", Region.OC),
    ),
    ServiceKind.HITBOX: (
        ("US-West:", Region.NA),
        ("US-East:", Region.NA),
        ("South America:", Region.SA),
        ("EU-", Region.EU),
        ("South Korea:", Region.AS),
        ("Asia:", Region.AS),
        ("China:", Region.AS),
        ("Oceania:", Region.OC),
    ),
    ServiceKind.BEAM: (
        ("US:", Region.NA),
        ("Canada:", Region.NA),
        ("Mexico:", Region.NA),
        ("Brazil:", Region.SA),
        ("EU:", Region.EU),
        ("South Korea:", Region.AS),
        ("Asia:", Region.AS),
        ("India:", Region.AS),
        ("Australia:", Region.OC),
    ),
}


def classify_region(service: ServiceKind, label: str) -> Optional[Region]:
    """Return the region a server label belongs to, or None if unknown."""
    for prefix, region in _REGION_PREFIXES.get(service, ()):
        if label.startswith(prefix):
            return region
    return None


def can_test_server(label: str, state: ConfigState) -> bool:
    """True when the server labelled *label* passes the region filters."""
    if not state.test_regions or ALL_REGIONS.issubset(state.regions):
        return True

    if label in _ALWAYS_TESTABLE.get(state.service_kind, ()):
        return True

    region = classify_region(state.service_kind, label)
    if region is None:
        return True
    return state.region_enabled(region)


# ---------------------------------------------------------------------------
# Enumeration
# ---------------------------------------------------------------------------

def enumerate_candidates(
    state: ConfigState,
    catalog: Iterable[Tuple[str, str]],
) -> List[ServerInfo]:
    """Filter ``(display name, address)`` pairs through the region rules."""
    return [
        ServerInfo(name=name, address=address)
        for name, address in catalog
        if can_test_server(name, state)
    ]


def collapse_candidates(servers: Sequence[ServerInfo]) -> List[ServerInfo]:
    """A thin candidate set is not worth a multi-server test: keep the first."""
    if len(servers) < MIN_MULTI_SERVER_CANDIDATES:
        return list(servers[:1])
    return list(servers)


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------

def select_best_server(servers: Iterable[ServerInfo]) -> Optional[ServerInfo]:
    """
    Highest bitrate wins; bitrates within ``CLOSE_BITRATE_MARGIN`` of the
    current best are treated as equal and the lower round-trip time wins.
    Servers that were never evaluated are ignored.
    """
    best: Optional[ServerInfo] = None

    for server in servers:
        if not server.evaluated:
            continue
        if best is None:
            best = server
            continue

        close = abs(server.bitrate_kbps - best.bitrate_kbps) < CLOSE_BITRATE_MARGIN
        if (not close and server.bitrate_kbps > best.bitrate_kbps) or (
            close and server.latency_key < best.latency_key
        ):
            best = server

    if best is not None:
        logger.info(
            "selected server %s (%d kbps, %s ms)",
            best.name, best.bitrate_kbps, best.round_trip_ms,
        )
    return best
