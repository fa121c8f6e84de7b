"""
Output formatting -- JSON export and plain text.
"""
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from autoconfig.state import ConfigState


def create_result_json(
    state: ConfigState,
    check_passed: Optional[bool] = None,
    settings_path: str = "",
    errors: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Build a JSON-serialisable summary of the decided settings."""
    result: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "settings": state.to_dict(),
        "capabilities": {
            "hardware": state.hardware_encoding_available,
            "nvenc": state.nvenc_available or state.jim_nvenc_available,
            "qsv": state.qsv_available,
            "amd": state.amd_available,
            "apple": state.apple_hw_available,
            "software_tested": state.software_tested,
        },
        "purpose": state.purpose.value,
    }

    if check_passed is not None:
        result["check_passed"] = check_passed
    if settings_path:
        result["settings_file"] = settings_path
    if errors:
        result["errors"] = list(errors)

    return result


def save_json(result: Dict[str, Any], filepath: str) -> None:
    """Write *result* to *filepath* atomically (write-tmp then rename)."""
    dir_path = os.path.dirname(filepath) or "."
    tmp = os.path.join(dir_path, f".tmp_{os.path.basename(filepath)}")

    try:
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(result, fh, indent=2, ensure_ascii=False)
        os.replace(tmp, filepath)
    except (IOError, OSError) as exc:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise IOError(f"Failed to save JSON to {filepath}: {exc}") from exc


def format_text_result(state: ConfigState) -> str:
    sep = "=" * 50
    mid = "-" * 50
    cx, cy = state.ideal_resolution
    num, den = state.ideal_fps
    fps = f"{num}" if den == 1 else f"{num}/{den}"
    return (
        f"{sep}\n"
        f"Auto-Configuration Results\n"
        f"{sep}\n"
        f"Service: {state.service_name or 'custom'}\n"
        f"Server: {state.server_display_name} ({state.server_address})\n"
        f"{mid}\n"
        f"Resolution: {cx}x{cy} @ {fps} fps\n"
        f"Bitrate: {state.ideal_bitrate} kbps\n"
        f"Streaming encoder: {state.streaming_encoder.value}\n"
        f"Recording encoder: {state.recording_encoder.value} "
        f"({state.recording_quality.value})\n"
        f"{sep}"
    )
