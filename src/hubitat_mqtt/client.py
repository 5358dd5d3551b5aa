"""Async client for the hub's Maker API."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol
from urllib.parse import quote

import aiohttp
from pydantic import ValidationError

from hubitat_mqtt._constants import USER_AGENT
from hubitat_mqtt.config import BridgeConfig
from hubitat_mqtt.exceptions import RemoteApiError
from hubitat_mqtt.models import Device

_logger = logging.getLogger(__name__)


class DeviceSource(Protocol):
    """Structural interface of the remote device directory.

    The sync engine and the ingestion handlers only need these three calls,
    so tests can pass a simple in-memory double instead of `HubitatClient`.
    """

    async def fetch_all(self) -> list[Device]: ...

    async def fetch_one(self, device_id: str) -> Device | None: ...

    async def send_command(self, device_id: str, command: str, value: str | None = None) -> None: ...


class HubitatClient:
    """Maker API client.

    Usage::

        async with HubitatClient(config) as hub:
            devices = await hub.fetch_all()
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session

    async def __aenter__(self) -> HubitatClient:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession(headers={"user-agent": USER_AGENT})
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    def _endpoint(self, *segments: str) -> str:
        path = "/".join(quote(segment, safe="") for segment in segments)
        return f"/apps/api/{quote(self._config.hub_app_id, safe='')}/{path}"

    async def _get(self, endpoint: str, *, allow_missing: bool = False) -> Any:
        """GET *endpoint* and decode the JSON body.

        Returns ``None`` for a 404 when *allow_missing* is set.
        """
        if self._http_session is None:
            raise RuntimeError("HubitatClient used outside of its async context")

        url = f"{self._config.hub_url}{endpoint}"
        params = {"access_token": self._config.hub_access_token}
        _logger.debug("GET %s", url)

        try:
            async with self._http_session.get(
                url,
                params=params,
                timeout=aiohttp.ClientTimeout(total=self._config.hub_timeout),
            ) as resp:
                text = await resp.text()
                if resp.status == 404 and allow_missing:
                    return None
                if not 200 <= resp.status < 300:
                    raise RemoteApiError(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except RemoteApiError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise RemoteApiError(
                f"Request to {endpoint} failed: {str(exc) or type(exc).__name__}",
                endpoint=endpoint,
            ) from exc

        if not text.strip():
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise RemoteApiError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                endpoint=endpoint,
            ) from exc

    async def fetch_all(self) -> list[Device]:
        """Fetch every device the Maker API app exposes.

        Entries that fail validation are logged and skipped.
        """
        endpoint = self._endpoint("devices", "all")
        body = await self._get(endpoint)
        if not isinstance(body, list):
            raise RemoteApiError(f"Expected a device list from {endpoint}", endpoint=endpoint)

        devices: list[Device] = []
        for item in body:
            try:
                devices.append(Device.model_validate(item))
            except ValidationError as exc:
                _logger.warning("Skipping malformed device entry from hub: %s", exc)
        _logger.debug("Fetched %d devices from hub", len(devices))
        return devices

    async def fetch_one(self, device_id: str) -> Device | None:
        """Fetch a single device with full details; ``None`` if the hub does not know it."""
        endpoint = self._endpoint("devices", device_id)
        body = await self._get(endpoint, allow_missing=True)
        if body is None:
            return None
        try:
            return Device.model_validate(body)
        except ValidationError as exc:
            raise RemoteApiError(f"Malformed device from {endpoint}: {exc}", endpoint=endpoint) from exc

    async def send_command(self, device_id: str, command: str, value: str | None = None) -> None:
        segments = ["devices", device_id, command]
        if value is not None:
            segments.append(value)
        endpoint = self._endpoint(*segments)
        await self._get(endpoint)
        _logger.debug("Sent command %s to device %s", command, device_id)
