"""
In-process inventory with per-device write serialization.
"""
import json
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

import structlog

from ..exceptions import DeviceNotFoundError, InventoryWriteError
from ..models.common import OperatingState, ReachabilityTier
from ..models.device import Device
from ..utils.locks import KeyedLock
from .base import BaseInventory

logger = structlog.get_logger(__name__)


class InMemoryInventory(BaseInventory):
    """
    Keeps devices in a dict keyed by name. Reads never lock; writes hold a
    lock for the device name (and, on create, for the identity token too),
    so unrelated devices never wait on each other. Callers always receive
    copies.
    """

    def __init__(self, devices: Iterable[Device] = ()):
        self._devices: dict[str, Device] = {}
        self._name_locks = KeyedLock("inventory-names")
        self._identity_locks = KeyedLock("inventory-identities")
        self.logger = logger.bind(inventory="memory")
        for device in devices:
            if device.name in self._devices:
                raise InventoryWriteError(f"Duplicate device name '{device.name}'")
            self._devices[device.name] = device.model_copy(deep=True)

    @classmethod
    def from_file(cls, file_path: Path) -> "InMemoryInventory":
        """Loads a JSON list of devices."""
        with open(file_path) as f:
            raw_devices = json.load(f)
        return cls(Device.model_validate(item) for item in raw_devices)

    async def list_devices(self) -> list[Device]:
        return [device.model_copy(deep=True) for device in self._devices.values()]

    async def get_device(self, name: str) -> Device:
        try:
            return self._devices[name].model_copy(deep=True)
        except KeyError:
            raise DeviceNotFoundError(f"No device named '{name}'") from None

    async def create_device(self, device: Device) -> Device:
        identity = device.identity
        async with self._name_locks.hold(device.name):
            if identity is None:
                return self._insert(device)
            async with self._identity_locks.hold(identity):
                if any(existing.identity == identity for existing in self._devices.values()):
                    raise InventoryWriteError(f"A device with endpoint reference '{identity}' already exists")
                return self._insert(device)

    def _insert(self, device: Device) -> Device:
        if device.name in self._devices:
            raise InventoryWriteError(f"Device '{device.name}' already exists")
        self._devices[device.name] = device.model_copy(deep=True)
        self.logger.info("Device created", device=device.name, endpoint_ref=device.identity)
        return device.model_copy(deep=True)

    async def update_device(self, device: Device) -> Device:
        async with self._name_locks.hold(device.name):
            current = self._devices.get(device.name)
            if current is None:
                raise DeviceNotFoundError(f"No device named '{device.name}'")
            if current.identity and device.identity != current.identity:
                raise InventoryWriteError(
                    f"Endpoint reference of '{device.name}' cannot change "
                    f"({current.identity!r} -> {device.identity!r})"
                )
            self._devices[device.name] = device.model_copy(deep=True)
            return device.model_copy(deep=True)

    async def update_operating_state(self, name: str, state: OperatingState) -> Device:
        return await self._patch(name, operating_state=state)

    async def update_network_location(self, name: str, address: str, port: str,
                                      state: OperatingState = OperatingState.UP) -> Device:
        return await self._patch(name, address=address, port=port, operating_state=state)

    async def update_status(self, name: str, status: ReachabilityTier, seen_at: datetime | None = None) -> Device:
        changes = {"status": status}
        if seen_at is not None:
            changes["last_seen"] = seen_at
            changes["last_connected"] = seen_at
        return await self._patch(name, **changes)

    async def _patch(self, name: str, **changes) -> Device:
        # Read-modify-write under the name lock; fields not named in `changes` keep their stored value
        async with self._name_locks.hold(name):
            current = self._devices.get(name)
            if current is None:
                raise DeviceNotFoundError(f"No device named '{name}'")
            updated = current.model_copy(update=changes)
            self._devices[name] = updated
            return updated.model_copy(deep=True)
