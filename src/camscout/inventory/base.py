"""
Abstract inventory interface.
"""
import abc
from datetime import datetime

from ..models.common import OperatingState, ReachabilityTier
from ..models.device import Device


class BaseInventory(abc.ABC):
    """
    CRUD store holding the known devices, keyed by device name.

    Implementations must allow concurrent reads and serialize writes at
    least per device; the core never takes a global lock around them.
    Every method may raise InventoryError, which callers treat as non-fatal.
    """

    @abc.abstractmethod
    async def list_devices(self) -> list[Device]:
        pass

    @abc.abstractmethod
    async def get_device(self, name: str) -> Device:
        """Raises DeviceNotFoundError if no device has that name."""
        pass

    @abc.abstractmethod
    async def create_device(self, device: Device) -> Device:
        """Adds a new device. Raises InventoryWriteError if its name or identity token is taken."""
        pass

    @abc.abstractmethod
    async def update_device(self, device: Device) -> Device:
        """Replaces the stored device with the same name."""
        pass

    @abc.abstractmethod
    async def update_operating_state(self, name: str, state: OperatingState) -> Device:
        pass

    @abc.abstractmethod
    async def update_network_location(self, name: str, address: str, port: str,
                                      state: OperatingState = OperatingState.UP) -> Device:
        """Sets address, port and operating state only, leaving every other field as stored."""
        pass

    @abc.abstractmethod
    async def update_status(self, name: str, status: ReachabilityTier, seen_at: datetime | None = None) -> Device:
        """Sets the reachability tier and, when `seen_at` is given, last_seen and last_connected."""
        pass
