"""Tests for the in-memory inventory and the keyed lock registry."""

import asyncio
import json
from datetime import datetime, timezone

import pytest

from camscout.exceptions import DeviceNotFoundError, InventoryWriteError
from camscout.inventory.memory import InMemoryInventory
from camscout.models.common import OperatingState, ReachabilityTier
from camscout.models.device import Device
from camscout.utils.locks import KeyedLock


@pytest.fixture
def inventory():
    return InMemoryInventory([Device(name="lobby", endpoint_ref="urn:uuid:lobby", address="10.0.0.5")])


async def test_reads_return_copies(inventory):
    device = await inventory.get_device("lobby")
    device.address = "10.9.9.9"
    [listed] = await inventory.list_devices()
    listed.labels.append("mutated")

    stored = await inventory.get_device("lobby")
    assert stored.address == "10.0.0.5"
    assert stored.labels == []


async def test_get_unknown_device(inventory):
    with pytest.raises(DeviceNotFoundError):
        await inventory.get_device("garage")


async def test_create_rejects_duplicate_name_and_identity(inventory):
    with pytest.raises(InventoryWriteError):
        await inventory.create_device(Device(name="lobby"))
    with pytest.raises(InventoryWriteError):
        await inventory.create_device(Device(name="lobby-2", endpoint_ref="urn:uuid:lobby"))

    created = await inventory.create_device(Device(name="garage", endpoint_ref="urn:uuid:garage"))
    assert created.identity == "urn:uuid:garage"


async def test_concurrent_creates_of_same_identity_yield_one_device(inventory):
    outcomes = await asyncio.gather(
        inventory.create_device(Device(name="a", endpoint_ref="urn:uuid:same")),
        inventory.create_device(Device(name="b", endpoint_ref="urn:uuid:same")),
        return_exceptions=True,
    )
    assert sum(isinstance(outcome, InventoryWriteError) for outcome in outcomes) == 1
    assert [d.name for d in await inventory.list_devices() if d.identity == "urn:uuid:same"] in (["a"], ["b"])


async def test_update_device(inventory):
    device = await inventory.get_device("lobby")
    await inventory.update_device(device.model_copy(update={"status": ReachabilityTier.REACHABLE}))
    assert (await inventory.get_device("lobby")).status == ReachabilityTier.REACHABLE


async def test_update_cannot_change_identity_or_create(inventory):
    with pytest.raises(InventoryWriteError):
        await inventory.update_device(Device(name="lobby", endpoint_ref="urn:uuid:other"))
    with pytest.raises(DeviceNotFoundError):
        await inventory.update_device(Device(name="garage"))


async def test_update_operating_state(inventory):
    updated = await inventory.update_operating_state("lobby", OperatingState.DOWN)
    assert updated.operating_state == OperatingState.DOWN
    assert (await inventory.get_device("lobby")).operating_state == OperatingState.DOWN
    with pytest.raises(DeviceNotFoundError):
        await inventory.update_operating_state("garage", OperatingState.UP)


def test_duplicate_names_in_seed_are_rejected():
    with pytest.raises(InventoryWriteError):
        InMemoryInventory([Device(name="x"), Device(name="x")])


async def test_from_file(tmp_path):
    path = tmp_path / "devices.json"
    path.write_text(json.dumps([
        {"name": "lobby", "endpoint_ref": "urn:uuid:lobby", "address": "10.0.0.5", "port": "8080"},
        {"name": "static", "address": "10.0.0.6"},
    ]))

    inventory = InMemoryInventory.from_file(path)

    devices = {d.name: d for d in await inventory.list_devices()}
    assert devices["lobby"].port == "8080"
    assert devices["static"].identity is None


async def test_keyed_lock_serializes_same_key_only():
    locks = KeyedLock("test")
    order = []

    async def work(key, tag, delay):
        async with locks.hold(key):
            order.append(f"{tag}-start")
            await asyncio.sleep(delay)
            order.append(f"{tag}-end")

    await asyncio.gather(work("a", "a1", 0.03), work("a", "a2", 0.0), work("b", "b1", 0.0))

    assert order.index("a1-end") < order.index("a2-start")
    assert order.index("b1-end") < order.index("a1-end")
    assert len(locks) == 0


async def test_keyed_lock_reports_held_keys():
    locks = KeyedLock()
    async with locks.hold("cam"):
        assert locks.locked("cam")
        assert not locks.locked("other")
    assert not locks.locked("cam")


async def test_update_network_location_leaves_status_untouched(inventory):
    await inventory.update_status("lobby", ReachabilityTier.UP_WITHOUT_AUTH, seen_at=datetime(2024, 1, 1, tzinfo=timezone.utc))

    updated = await inventory.update_network_location("lobby", "10.0.0.6", "8080")

    assert (updated.address, updated.port, updated.operating_state) == ("10.0.0.6", "8080", OperatingState.UP)
    assert updated.status == ReachabilityTier.UP_WITHOUT_AUTH
    assert updated.last_seen == datetime(2024, 1, 1, tzinfo=timezone.utc)
    with pytest.raises(DeviceNotFoundError):
        await inventory.update_network_location("garage", "10.0.0.7", "80")


async def test_update_status_without_seen_at_keeps_timestamps(inventory):
    seen_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    await inventory.update_status("lobby", ReachabilityTier.UP_WITH_AUTH, seen_at=seen_at)

    updated = await inventory.update_status("lobby", ReachabilityTier.UNREACHABLE)

    assert updated.status == ReachabilityTier.UNREACHABLE
    assert updated.last_connected == seen_at
    assert updated.address == "10.0.0.5"
