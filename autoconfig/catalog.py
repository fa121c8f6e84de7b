"""
Streaming service catalog.

Reads the rtmp-services ``services.json`` format::

    {"services": [{"name": "Twitch",
                   "servers": [{"name": "US East: New York, NY",
                                "url": "rtmp://jfk.contribute.live-video.net/app"}]}]}

The file can be loaded from disk or downloaded over HTTPS.  All HTTP work
goes through a single ``aiohttp.ClientSession`` managed via the
async-context-manager protocol (``async with CatalogClient() as c: ...``).
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

SERVICES_URL = (
    "https://raw.githubusercontent.com/obsproject/obs-studio/master/"
    "plugins/rtmp-services/data/services.json"
)

_HEADERS = {"Accept": "application/json"}
_TIMEOUT = aiohttp.ClientTimeout(total=30, connect=5)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class ServiceCatalog:
    """Maps service names to ``(display name, address)`` server lists."""

    def __init__(self, services: Optional[Dict[str, List[Tuple[str, str]]]] = None) -> None:
        self.services: Dict[str, List[Tuple[str, str]]] = dict(services or {})

    # -- Constructors -------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ServiceCatalog:
        services: Dict[str, List[Tuple[str, str]]] = {}
        for entry in data.get("services", []):
            name = entry.get("name", "")
            if not name:
                continue
            services[name] = [
                (srv.get("name", ""), srv.get("url", ""))
                for srv in entry.get("servers", [])
                if srv.get("url")
            ]
        return cls(services)

    @classmethod
    def load(cls, path: str) -> ServiceCatalog:
        with open(path, encoding="utf-8") as fh:
            return cls.from_dict(json.load(fh))

    @classmethod
    async def fetch(cls, url: str = SERVICES_URL) -> ServiceCatalog:
        async with CatalogClient() as client:
            return await client.fetch_catalog(url)

    # -- Queries ------------------------------------------------------------

    def servers_for(self, service_name: str) -> List[Tuple[str, str]]:
        return list(self.services.get(service_name, []))

    def service_names(self) -> List[str]:
        return sorted(self.services)

    def __contains__(self, service_name: object) -> bool:
        return service_name in self.services

    def __len__(self) -> int:
        return len(self.services)


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

class CatalogClient:
    """Async context-manager that downloads service catalogs."""

    def __init__(self) -> None:
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> CatalogClient:
        self._session = aiohttp.ClientSession(headers=_HEADERS, timeout=_TIMEOUT)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._session:
            await self._session.close()
            self._session = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError(
                "CatalogClient must be used as an async context manager "
                "(async with CatalogClient() as client: ...)"
            )
        return self._session

    async def fetch_catalog(self, url: str = SERVICES_URL) -> ServiceCatalog:
        session = self._ensure_session()

        async with session.get(url) as resp:
            resp.raise_for_status()
            # raw.githubusercontent serves text/plain
            data = await resp.json(content_type=None)

        return ServiceCatalog.from_dict(data)
