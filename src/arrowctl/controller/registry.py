"""Authoritative registry of target devices known to the controller.

The registry owns every ``RegisteredDevice`` record: identity resolution
(by id, ip, mac or live connection id), connection status, and the
pairing/auth token lifecycle. It is only ever touched from the event
loop thread, so it holds no locks. Expected failures are reported as
structured results; nothing here raises on a bad token or unknown id.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from arrowctl.domain.events import DeviceEvent, DeviceEventKind, EventChannel
from arrowctl.domain.models import (
    ConnectionStatus,
    DeviceInfo,
    PairingResult,
    RegisteredDevice,
)
from arrowctl.protocol.constants import DEFAULT_DEVICE_MAX_AGE, PAIRING_TOKEN_TTL
from arrowctl.protocol.messages import generate_token, tokens_match

logger = logging.getLogger(__name__)

DEVICE_NOT_FOUND = "Device not found"
PAIRING_NOT_SUPPORTED = "Device does not support pairing"
INVALID_PAIRING_TOKEN = "Invalid pairing token"
PAIRING_TOKEN_EXPIRED = "Pairing token expired"


class DeviceRegistry:
    """In-memory map of registered devices and their pairing state.

    Args:
        pairing_timeout: Seconds a freshly issued pairing token stays valid.
        clock: Returns the current time in epoch seconds.
        token_factory: Produces pairing and auth tokens.
    """

    def __init__(
        self,
        pairing_timeout: float = PAIRING_TOKEN_TTL,
        clock: Callable[[], float] = time.time,
        token_factory: Callable[[], str] = generate_token,
    ) -> None:
        self._pairing_timeout = pairing_timeout
        self._clock = clock
        self._token_factory = token_factory
        self._devices: dict[str, RegisteredDevice] = {}
        self._ip_index: dict[str, str] = {}
        self._mac_index: dict[str, str] = {}
        self._events: EventChannel[DeviceEvent] = EventChannel("DeviceRegistry")

    # -------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------

    def subscribe(self, observer: Callable[[DeviceEvent], None]) -> None:
        self._events.subscribe(observer)

    def unsubscribe(self, observer: Callable[[DeviceEvent], None]) -> None:
        self._events.unsubscribe(observer)

    def _emit(
        self,
        kind: DeviceEventKind,
        device: RegisteredDevice,
        previous_id: str | None = None,
    ) -> None:
        self._events.emit(DeviceEvent(kind=kind, device=device, previous_id=previous_id))

    # -------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------

    def register_device(
        self, device_info: DeviceInfo, require_pairing: bool = True
    ) -> RegisteredDevice:
        """Insert or update the record for ``device_info``.

        Resolution order: exact id, then a record with the same ip, then
        one with the same mac. A match under a different id is migrated
        to the new id instead of creating a duplicate, which covers peers
        that regenerate their identity on restart.
        """
        now = self._clock()

        existing = self._devices.get(device_info.id)
        if existing is not None:
            self._unindex(existing)
            existing.device_info = device_info
            existing.last_seen = max(existing.last_seen, now)
            self._index(existing)
            if require_pairing:
                self._refresh_pairing_token(existing, now)
            logger.info("Updated existing device: %s (%s)", existing.name, existing.id)
            self._emit(DeviceEventKind.UPDATED, existing)
            return existing

        previous_id = None
        if device_info.ip and device_info.ip in self._ip_index:
            previous_id = self._ip_index[device_info.ip]
        elif device_info.mac and device_info.mac in self._mac_index:
            previous_id = self._mac_index[device_info.mac]

        if previous_id is not None and previous_id in self._devices:
            device = self._devices.pop(previous_id)
            self._unindex(device)
            device.device_info = device_info
            device.last_seen = max(device.last_seen, now)
            self._devices[device_info.id] = device
            self._index(device)
            if require_pairing:
                self._refresh_pairing_token(device, now)
            logger.info(
                "Migrated device %s -> %s: %s", previous_id, device.id, device.name
            )
            self._emit(DeviceEventKind.UPDATED, device, previous_id=previous_id)
            return device

        device = RegisteredDevice(
            device_info=device_info,
            status=ConnectionStatus.DISCONNECTED,
            first_seen=now,
            last_seen=now,
        )
        if require_pairing:
            self._issue_pairing_token(device, now)
        self._devices[device.id] = device
        self._index(device)
        logger.info("Registered new device: %s (%s)", device.name, device.id)
        self._emit(DeviceEventKind.REGISTERED, device)
        return device

    def _issue_pairing_token(self, device: RegisteredDevice, now: float) -> None:
        device.pairing_token = self._token_factory()
        device.pairing_expiration = now + self._pairing_timeout

    def _refresh_pairing_token(self, device: RegisteredDevice, now: float) -> None:
        """Give an unpaired device a usable token if it has none left."""
        if device.paired:
            return
        expired = (
            device.pairing_expiration is not None and device.pairing_expiration < now
        )
        if device.pairing_token is None or expired:
            self._issue_pairing_token(device, now)
            logger.debug("Issued fresh pairing token for %s", device.id)

    def _index(self, device: RegisteredDevice) -> None:
        if device.device_info.ip:
            self._ip_index[device.device_info.ip] = device.id
        if device.device_info.mac:
            self._mac_index[device.device_info.mac] = device.id

    def _unindex(self, device: RegisteredDevice) -> None:
        ip = device.device_info.ip
        if ip and self._ip_index.get(ip) == device.id:
            del self._ip_index[ip]
        mac = device.device_info.mac
        if mac and self._mac_index.get(mac) == device.id:
            del self._mac_index[mac]

    # -------------------------------------------------------------------
    # Connectivity
    # -------------------------------------------------------------------

    def connect_device(self, device_id: str, connection_id: str) -> RegisteredDevice | None:
        device = self._devices.get(device_id)
        if device is None:
            logger.warning("Cannot connect unknown device: %s", device_id)
            return None

        # A connection id is bound to at most one device.
        for other in self._devices.values():
            if other is not device and other.connection_id == connection_id:
                other.connection_id = None
                other.status = ConnectionStatus.DISCONNECTED
                logger.info("Connection %s moved away from %s", connection_id, other.id)
                self._emit(DeviceEventKind.DISCONNECTED, other)

        device.status = ConnectionStatus.PAIRED if device.paired else ConnectionStatus.CONNECTED
        device.connection_id = connection_id
        device.last_seen = max(device.last_seen, self._clock())
        logger.info("Device connected: %s (%s)", device.name, device_id)
        self._emit(DeviceEventKind.CONNECTED, device)
        return device

    def disconnect_device(self, device_id: str) -> RegisteredDevice | None:
        """Mark a device disconnected. Pairing survives; connectivity does not."""
        device = self._devices.get(device_id)
        if device is None:
            logger.warning("Cannot disconnect unknown device: %s", device_id)
            return None

        device.status = ConnectionStatus.DISCONNECTED
        device.connection_id = None
        device.last_seen = max(device.last_seen, self._clock())
        logger.info("Device disconnected: %s (%s)", device.name, device_id)
        self._emit(DeviceEventKind.DISCONNECTED, device)
        return device

    def update_last_seen(self, device_id: str) -> bool:
        device = self._devices.get(device_id)
        if device is None:
            return False
        device.last_seen = max(device.last_seen, self._clock())
        return True

    # -------------------------------------------------------------------
    # Pairing
    # -------------------------------------------------------------------

    def pair_device(self, device_id: str, pairing_token: str) -> PairingResult:
        device = self._devices.get(device_id)
        if device is None:
            logger.warning("Cannot pair unknown device: %s", device_id)
            return PairingResult(success=False, error=DEVICE_NOT_FOUND)

        if not device.pairing_token:
            logger.warning("Pairing attempted without an outstanding token: %s", device_id)
            return PairingResult(success=False, device=device, error=PAIRING_NOT_SUPPORTED)

        if not tokens_match(device.pairing_token, pairing_token):
            logger.warning("Invalid pairing token for device: %s", device_id)
            return PairingResult(success=False, device=device, error=INVALID_PAIRING_TOKEN)

        if device.pairing_expiration is not None and device.pairing_expiration < self._clock():
            logger.warning("Pairing token expired for device: %s", device_id)
            return PairingResult(success=False, device=device, error=PAIRING_TOKEN_EXPIRED)

        device.auth_token = self._token_factory()
        device.paired = True
        device.pairing_token = None
        device.pairing_expiration = None
        if device.status == ConnectionStatus.CONNECTED:
            device.status = ConnectionStatus.PAIRED

        logger.info("Device paired: %s (%s)", device.name, device_id)
        self._emit(DeviceEventKind.PAIRED, device)
        return PairingResult(success=True, device=device)

    def unpair_device(self, device_id: str) -> PairingResult:
        device = self._devices.get(device_id)
        if device is None:
            logger.warning("Cannot unpair unknown device: %s", device_id)
            return PairingResult(success=False, error=DEVICE_NOT_FOUND)

        device.paired = False
        device.auth_token = None
        self._issue_pairing_token(device, self._clock())
        if device.status == ConnectionStatus.PAIRED:
            device.status = ConnectionStatus.CONNECTED

        logger.info("Device unpaired: %s (%s)", device.name, device_id)
        self._emit(DeviceEventKind.UNPAIRED, device)
        return PairingResult(success=True, device=device)

    # -------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------

    def get_device_by_id(self, device_id: str) -> RegisteredDevice | None:
        return self._devices.get(device_id)

    def get_device_by_ip(self, ip: str) -> RegisteredDevice | None:
        device_id = self._ip_index.get(ip)
        return self._devices.get(device_id) if device_id else None

    def get_device_by_mac(self, mac: str) -> RegisteredDevice | None:
        device_id = self._mac_index.get(mac)
        return self._devices.get(device_id) if device_id else None

    def get_device_by_connection_id(self, connection_id: str) -> RegisteredDevice | None:
        for device in self._devices.values():
            if device.connection_id == connection_id:
                return device
        return None

    def get_all_devices(self) -> list[RegisteredDevice]:
        return list(self._devices.values())

    def get_connected_devices(self) -> list[RegisteredDevice]:
        return [d for d in self._devices.values() if d.is_connected]

    def get_paired_devices(self) -> list[RegisteredDevice]:
        return [
            d
            for d in self._devices.values()
            if d.paired and d.status == ConnectionStatus.PAIRED
        ]

    def __len__(self) -> int:
        return len(self._devices)

    # -------------------------------------------------------------------
    # Removal
    # -------------------------------------------------------------------

    def remove_device(self, device_id: str) -> RegisteredDevice | None:
        device = self._devices.pop(device_id, None)
        if device is None:
            return None
        self._unindex(device)
        logger.info("Device removed: %s (%s)", device.name, device_id)
        self._emit(DeviceEventKind.REMOVED, device)
        return device

    def cleanup_old_devices(
        self, max_age: float = DEFAULT_DEVICE_MAX_AGE
    ) -> list[RegisteredDevice]:
        """Remove devices not seen for more than ``max_age`` seconds."""
        cutoff = self._clock() - max_age
        stale = [d.id for d in self._devices.values() if d.last_seen < cutoff]
        removed = [d for d in (self.remove_device(i) for i in stale) if d is not None]
        if removed:
            logger.info("Cleaned up %d old devices", len(removed))
        return removed
