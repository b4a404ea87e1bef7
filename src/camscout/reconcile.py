"""
Merges discovery results into the device inventory by identity token.

Reconciliation is split into a pure step (`reconcile`), which decides what
has to change, and `apply`, which performs the writes. Writes for distinct
identities run concurrently; serializing two overlapping passes that touch
the same identity is the inventory's job (see BaseInventory).
"""
import asyncio
from collections.abc import Iterable, Sequence

import structlog
from pydantic import Field

from .exceptions import InventoryError
from .inventory.base import BaseInventory
from .models.common import BasePydanticModel, OperatingState
from .models.device import Device, DiscoveredRecord

logger = structlog.get_logger(__name__)


class ReconcileResult(BasePydanticModel):
    new_records: list[DiscoveredRecord] = Field(default_factory=list)
    updated_devices: list[Device] = Field(default_factory=list)
    rejected: int = 0 # Records dropped for lack of an identity token

    @property
    def is_empty(self) -> bool:
        return not self.new_records and not self.updated_devices


class ApplyReport(BasePydanticModel):
    created: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)


def make_device_map(devices: Iterable[Device], service_name: str | None = None) -> dict[str, Device]:
    """Creates a lookup table of existing devices keyed by endpoint reference.
    Devices without one cannot take part in matching and are skipped with a warning."""
    device_map: dict[str, Device] = {}
    for device in devices:
        if service_name and device.name == service_name:
            continue # control plane device
        if not device.identity:
            logger.warning("Registered device is missing its endpoint reference, excluding it from matching",
                           device=device.name)
            continue
        device_map[device.identity] = device
    return device_map


class DeviceReconciler:
    def __init__(self, service_name: str | None = None):
        self.service_name = service_name
        self.logger = logger.bind(component="DeviceReconciler")

    def reconcile(self, batch: Sequence[DiscoveredRecord], snapshot: Iterable[Device]) -> ReconcileResult:
        """
        Decides, in batch order, which records are new devices and which existing
        devices need their address/port or operating state refreshed.

        - records without an identity token are rejected;
        - an identity already known to the inventory is considered once per batch
          and yields an update only if its address/port changed or it is DOWN;
        - an unknown identity is accepted once; later duplicates in the batch
          (e.g. the same camera answering multicast and netscan) are dropped.
        """
        device_map = make_device_map(snapshot, self.service_name)
        result = ReconcileResult()
        seen: set[str] = set()

        for record in batch:
            identity = record.identity
            if identity is None:
                self.logger.warning("Rejecting discovered record without endpoint reference",
                                    record=record.name, address=record.address)
                result.rejected += 1
                continue
            if identity in seen:
                self.logger.debug("Dropping duplicate discovery of the same device", endpoint_ref=identity,
                                  method=record.discovery_method)
                continue
            seen.add(identity)

            existing = device_map.get(identity)
            if existing is None:
                result.new_records.append(record)
                continue

            updated = self._refresh_existing(existing, record)
            if updated is not None:
                result.updated_devices.append(updated)

        self.logger.info("Reconciled discovery batch", discovered=len(batch), new=len(result.new_records),
                         updated=len(result.updated_devices), rejected=result.rejected)
        return result

    def _refresh_existing(self, device: Device, record: DiscoveredRecord) -> Device | None:
        same_address = device.address == record.address and device.port == record.port
        if same_address and device.operating_state == OperatingState.UP:
            self.logger.debug("Re-discovered existing device at the same network address, nothing to do",
                              device=device.name)
            return None

        if not same_address:
            self.logger.info("Existing device has been discovered with a different network address",
                             device=device.name, old=device.host, discovered=f"{record.address}:{record.port}")
        return device.model_copy(update={
            "address": record.address,
            "port": record.port,
            "operating_state": OperatingState.UP,
        })

    async def apply(self, result: ReconcileResult, inventory: BaseInventory) -> ApplyReport:
        """Writes the outcome of `reconcile` through the inventory.
        A failed write is logged and does not stop the rest of the batch."""
        report = ApplyReport()

        async def _update(device: Device) -> None:
            # Only the location and operating state; status and timestamps belong to the prober
            await inventory.update_network_location(device.name, device.address, device.port, device.operating_state)
            report.updated.append(device.name)

        async def _create(record: DiscoveredRecord) -> None:
            await inventory.create_device(record.to_device())
            report.created.append(record.name)

        writes = [(device.name, _update(device)) for device in result.updated_devices]
        writes += [(record.name, _create(record)) for record in result.new_records]
        if not writes:
            return report

        outcomes = await asyncio.gather(*(coro for _, coro in writes), return_exceptions=True)
        for (name, _), outcome in zip(writes, outcomes):
            if isinstance(outcome, InventoryError):
                self.logger.warning("Inventory write failed", device=name, error=str(outcome))
                report.failed.append(name)
            elif isinstance(outcome, Exception):
                self.logger.error("Unexpected error writing to inventory", device=name,
                                  error_type=type(outcome).__name__, error=str(outcome))
                report.failed.append(name)
            elif isinstance(outcome, BaseException):
                raise outcome
        return report
