"""FastAPI operator API for a running controller.

Lets an operator (or ``arrowctl send``) list devices, send arrow
commands and revoke pairings over plain HTTP. Authentication tokens
never leave the process; the pending pairing token of an unpaired
device is shown so the operator can confirm it on the target.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Literal

from fastapi import FastAPI, HTTPException, Query
from pydantic import Field

from arrowctl import __version__
from arrowctl.controller.app import ControllerApp
from arrowctl.domain.models import (
    ConnectionStatus,
    DispatchFailure,
    RegisteredDevice,
    WireModel,
)

logger = logging.getLogger(__name__)


class DeviceView(WireModel):
    id: str
    name: str
    ip: str
    mac: str | None = None
    status: ConnectionStatus
    paired: bool
    supported_commands: list[str]
    first_seen: float
    last_seen: float
    pairing_token: str | None = None

    @classmethod
    def from_device(cls, device: RegisteredDevice) -> DeviceView:
        info = device.device_info
        return cls(
            id=info.id,
            name=info.name,
            ip=info.ip,
            mac=info.mac,
            status=device.status,
            paired=device.paired,
            supported_commands=info.supported_commands,
            first_seen=device.first_seen,
            last_seen=device.last_seen,
            pairing_token=None if device.paired else device.pairing_token,
        )


class PeerView(WireModel):
    ip: str
    id: str
    name: str
    first_seen: float
    last_seen: float


class ArrowRequest(WireModel):
    direction: Literal["left", "right"] = Field(description="Arrow key to press")
    repeat: int = Field(default=1, ge=1, description="Number of discrete presses")
    hold_time: int = Field(default=0, ge=0, description="Milliseconds to hold each press")


class ArrowResponse(WireModel):
    success: bool = True
    command_type: str


class CleanupRequest(WireModel):
    max_age: float | None = Field(default=None, gt=0, description="Seconds since last seen")


class CleanupResponse(WireModel):
    removed: list[str]


class HealthStatus(WireModel):
    status: str = "ok"
    controller_id: str
    running: bool
    version: str = __version__
    devices: int
    connections: int


_FAILURE_STATUS = {
    DispatchFailure.DEVICE_NOT_FOUND: 404,
    DispatchFailure.NOT_CONNECTED: 409,
    DispatchFailure.NOT_PAIRED: 409,
    DispatchFailure.NO_CONNECTION: 409,
    DispatchFailure.UNSUPPORTED_COMMAND: 422,
    DispatchFailure.INVALID_PARAMETERS: 422,
    DispatchFailure.SEND_FAILED: 503,
}


def create_app(controller: ControllerApp | None = None) -> FastAPI:
    """Create the operator API around ``controller``.

    The lifespan starts and stops the controller, so running the app
    under uvicorn runs the whole controller role.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        c: ControllerApp = app.state.controller
        await c.start()
        logger.info("Operator API started")
        yield
        await c.stop()
        logger.info("Operator API stopped")

    app = FastAPI(
        title="arrowctl Controller",
        description="Operator API for the arrowctl controller",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.controller = controller or ControllerApp()

    def _device_or_404(device_id: str) -> RegisteredDevice:
        device = app.state.controller.registry.get_device_by_id(device_id)
        if device is None:
            raise HTTPException(status_code=404, detail="Device not found")
        return device

    @app.get("/health")
    async def health_check() -> HealthStatus:
        c: ControllerApp = app.state.controller
        return HealthStatus(
            controller_id=c.info.id,
            running=c.is_running,
            devices=len(c.registry),
            connections=c.server.connection_count,
        )

    @app.get("/devices")
    async def list_devices(
        state: Literal["all", "connected", "paired"] = Query(default="all"),
    ) -> list[DeviceView]:
        c: ControllerApp = app.state.controller
        return [DeviceView.from_device(d) for d in c.get_devices(state)]

    @app.get("/devices/{device_id}")
    async def get_device(device_id: str) -> DeviceView:
        return DeviceView.from_device(_device_or_404(device_id))

    @app.post("/devices/{device_id}/arrow")
    async def send_arrow(device_id: str, request: ArrowRequest) -> ArrowResponse:
        c: ControllerApp = app.state.controller
        result = await c.send_arrow_command(
            device_id, request.direction, request.repeat, request.hold_time
        )
        if not result.success:
            status = _FAILURE_STATUS.get(result.failure, 500)
            raise HTTPException(status_code=status, detail=result.error)
        return ArrowResponse(command_type=result.command_type or "")

    @app.post("/devices/{device_id}/unpair")
    async def unpair(device_id: str) -> DeviceView:
        c: ControllerApp = app.state.controller
        result = await c.unpair_device(device_id)
        if not result.success or result.device is None:
            raise HTTPException(status_code=404, detail=result.error or "Device not found")
        return DeviceView.from_device(result.device)

    @app.post("/devices/cleanup")
    async def cleanup(request: CleanupRequest | None = None) -> CleanupResponse:
        c: ControllerApp = app.state.controller
        removed = c.cleanup(request.max_age if request else None)
        return CleanupResponse(removed=[d.id for d in removed])

    @app.get("/discovered")
    async def discovered() -> list[PeerView]:
        c: ControllerApp = app.state.controller
        return [
            PeerView(
                ip=p.ip,
                id=p.device_info.id,
                name=p.device_info.name,
                first_seen=p.first_seen,
                last_seen=p.last_seen,
            )
            for p in c.get_discovered_peers()
        ]

    return app
