"""Stream auto-configuration engine -- bandwidth, encoder, and resolution probing."""

from .catalog import CatalogClient, ServiceCatalog
from .constants import Timings
from .engine import AutoConfigEngine, ProbeKind
from .errors import (
    AutoConfigError,
    EncoderTestFailed,
    InvalidService,
    InvalidStreamSettings,
    InvalidVideoSettings,
    ProbeCancelled,
)
from .events import EventKind, EventQueue, ProgressEvent
from .servers import ServerInfo, can_test_server, select_best_server
from .simulated import ServerProfile, SimulatedPipeline
from .state import (
    ConfigState,
    Encoder,
    FpsType,
    Purpose,
    Quality,
    Region,
    ServiceKind,
)
from .store import ConfigStore

__all__ = [
    "AutoConfigEngine",
    "AutoConfigError",
    "CatalogClient",
    "ConfigState",
    "ConfigStore",
    "Encoder",
    "EncoderTestFailed",
    "EventKind",
    "EventQueue",
    "FpsType",
    "InvalidService",
    "InvalidStreamSettings",
    "InvalidVideoSettings",
    "ProbeCancelled",
    "ProbeKind",
    "ProgressEvent",
    "Purpose",
    "Quality",
    "Region",
    "ServerInfo",
    "ServerProfile",
    "ServiceCatalog",
    "ServiceKind",
    "SimulatedPipeline",
    "Timings",
    "can_test_server",
    "select_best_server",
]
