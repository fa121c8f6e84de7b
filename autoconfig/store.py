"""
Sectioned key/value settings store.

Persists ``{section: {key: value}}`` as JSON, by default at
``~/.stream-autoconfig/basic.json``.  Keys are addressed as
``(section, key)`` tuples (see the ``KEY_*`` constants).
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

_STORE_DIR = os.path.join(Path.home(), ".stream-autoconfig")
_STORE_FILE = "basic.json"

Key = Tuple[str, str]


def default_store_path() -> str:
    return os.path.join(_STORE_DIR, _STORE_FILE)


class ConfigStore:
    """In-memory sections backed by one JSON file."""

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = path or default_store_path()
        self.sections: Dict[str, Dict[str, Any]] = {}
        self.reload()

    def reload(self) -> None:
        """Re-read the backing file; a missing or corrupt file reads as empty."""
        self.sections = {}
        if not os.path.isfile(self.path):
            return
        try:
            with open(self.path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (json.JSONDecodeError, IOError) as exc:
            logger.warning("ignoring unreadable settings file %s: %s", self.path, exc)
            return
        if isinstance(data, dict):
            self.sections = {
                name: dict(values) for name, values in data.items() if isinstance(values, dict)
            }

    # -- Access -------------------------------------------------------------

    def get(self, key: Key, default: Any = None) -> Any:
        section, name = key
        return self.sections.get(section, {}).get(name, default)

    def set(self, key: Key, value: Any) -> None:
        section, name = key
        self.sections.setdefault(section, {})[name] = value

    def remove(self, key: Key) -> bool:
        section, name = key
        values = self.sections.get(section)
        if not values or name not in values:
            return False
        del values[name]
        if not values:
            del self.sections[section]
        return True

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != 2:
            return False
        section, name = key
        return name in self.sections.get(section, {})

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {name: dict(values) for name, values in self.sections.items()}

    # -- Persistence --------------------------------------------------------

    def save_safe(self) -> str:
        """Write atomically (write-tmp then rename).  Returns the file path."""
        filepath = self.path
        dir_path = os.path.dirname(filepath) or "."
        os.makedirs(dir_path, exist_ok=True)
        tmp = os.path.join(dir_path, f".tmp_{os.path.basename(filepath)}")

        try:
            with open(tmp, "w", encoding="utf-8") as fh:
                json.dump(self.sections, fh, indent=2, ensure_ascii=False)
            os.replace(tmp, filepath)
        except OSError as exc:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise OSError(f"Failed to save settings to {filepath}: {exc}") from exc

        logger.debug("settings saved to %s", filepath)
        return filepath
