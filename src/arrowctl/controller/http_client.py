"""HTTP client for the controller's operator API.

Used by the ``send``, ``devices`` and ``unpair`` CLI commands to talk to
a controller that is already running.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class ControllerApiError(Exception):
    """Raised when the operator API is unreachable or rejects a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ControllerApiClient:
    """Async client for a running controller's operator API."""

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8000",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> ControllerApiClient:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.disconnect()

    async def health(self) -> dict[str, Any]:
        return await self._request("GET", "/health")

    async def list_devices(self, state: str = "all") -> list[dict[str, Any]]:
        return await self._request("GET", "/devices", params={"state": state})

    async def get_device(self, device_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/devices/{device_id}")

    async def send_arrow(
        self, device_id: str, direction: str, repeat: int = 1, hold_time: int = 0
    ) -> dict[str, Any]:
        payload = {"direction": direction, "repeat": repeat, "holdTime": hold_time}
        result = await self._request("POST", f"/devices/{device_id}/arrow", json=payload)
        logger.debug("Sent %s to %s", direction, device_id)
        return result

    async def unpair(self, device_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/devices/{device_id}/unpair")

    async def cleanup(self, max_age: float | None = None) -> list[str]:
        body = {"maxAge": max_age} if max_age is not None else {}
        result = await self._request("POST", "/devices/cleanup", json=body)
        return result.get("removed", [])

    async def discovered(self) -> list[dict[str, Any]]:
        return await self._request("GET", "/discovered")

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        if self._client is None:
            raise ControllerApiError("Client is not connected")
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ControllerApiError(
                f"Controller API unreachable at {self._base_url}: {e}"
            ) from e
        if resp.is_error:
            try:
                body = resp.json()
            except ValueError:
                body = None
            detail = body.get("detail", resp.text) if isinstance(body, dict) else resp.text
            raise ControllerApiError(str(detail), status_code=resp.status_code)
        return resp.json()
