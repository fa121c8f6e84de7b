"""
User configuration file support.

Reads/writes ``~/.stream-autoconfig/config.json``: the wizard inputs the
CLI falls back to when a flag is not given.

Supported keys::

    service = "Twitch"        # service name from the catalog
    server = "auto"           # "auto" tests the catalog servers
    key = ""                  # stream key
    custom_server = false     # server is a raw RTMP URL
    regions = ["na", "eu"]    # regions to test; empty means all
    test_regions = true
    bandwidth_test = true
    prefer_high_fps = true
    prefer_hardware = true
    fps = 0                   # fixed fps; 0 lets the search choose
    purpose = "streaming"     # or "recording"
    settings_file = ""        # persisted settings path; "" = default
"""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict

from .constants import AUTO_SERVER
from .state import ALL_REGIONS, ConfigState, FpsType, Purpose, Region, ServiceKind

_CONFIG_DIR = os.path.join(Path.home(), ".stream-autoconfig")
_CONFIG_FILE = "config.json"


def _config_path() -> str:
    return os.path.join(_CONFIG_DIR, _CONFIG_FILE)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULTS: Dict[str, Any] = {
    "service": "",
    "server": AUTO_SERVER,
    "key": "",
    "custom_server": False,
    "regions": [],
    "test_regions": True,
    "bandwidth_test": True,
    "prefer_high_fps": True,
    "prefer_hardware": True,
    "fps": 0,
    "purpose": Purpose.STREAMING.value,
    "settings_file": "",
}


# ---------------------------------------------------------------------------
# Read / Write
# ---------------------------------------------------------------------------

def load_config() -> Dict[str, Any]:
    """Load config from disk, returning defaults for missing keys."""
    path = _config_path()
    config = dict(DEFAULTS)

    if not os.path.isfile(path):
        return config

    try:
        with open(path, encoding="utf-8") as fh:
            user = json.load(fh)
        if isinstance(user, dict):
            config.update(user)
    except (json.JSONDecodeError, IOError):
        pass  # corrupt file; use defaults

    return config


def save_config(config: Dict[str, Any]) -> str:
    """Write *config* to disk.  Returns the file path."""
    path = _config_path()
    os.makedirs(os.path.dirname(path), exist_ok=True)

    with open(path, "w", encoding="utf-8") as fh:
        json.dump(config, fh, indent=2, ensure_ascii=False)

    return path


def get_config_value(key: str) -> Any:
    return load_config().get(key, DEFAULTS.get(key))


def set_config_value(key: str, value: Any) -> str:
    """Set a single config value and persist.  Returns file path."""
    config = load_config()
    config[key] = value
    return save_config(config)


# ---------------------------------------------------------------------------
# Config -> state
# ---------------------------------------------------------------------------

def parse_regions(values) -> set:  # noqa: ANN001
    """Region codes (``"na"``, ``"EU"``, ...) to a set; empty means all."""
    regions = {Region(str(v).strip().lower()) for v in values or () if str(v).strip()}
    return regions or set(ALL_REGIONS)


def state_from_config(config: Dict[str, Any]) -> ConfigState:
    """Build the wizard inputs from a loaded config dict."""
    merged = dict(DEFAULTS)
    merged.update(config)

    custom = bool(merged["custom_server"])
    service = merged["service"] or ""
    fps = int(merged["fps"] or 0)

    state = ConfigState(
        service_name=service,
        service_kind=ServiceKind.OTHER if custom else ServiceKind.from_service_name(service),
        stream_key=merged["key"] or "",
        custom_server=custom,
        regions=parse_regions(merged["regions"]),
        test_regions=bool(merged["test_regions"]),
        bandwidth_test=bool(merged["bandwidth_test"]),
        prefer_high_fps=bool(merged["prefer_high_fps"]),
        prefer_hardware=bool(merged["prefer_hardware"]),
        purpose=Purpose(merged["purpose"]),
    )
    server = merged["server"] or AUTO_SERVER
    state.server_address = server
    if server != AUTO_SERVER:
        state.server_display_name = server

    if fps:
        state.specific_fps = (fps, 1)
        state.fps_type = FpsType.FPS_60 if fps >= 60 else FpsType.FPS_30
    elif not state.prefer_high_fps:
        state.fps_type = FpsType.PREFER_HIGH_RES
    return state
