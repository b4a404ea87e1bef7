"""Tests for the discovery pass (multicast + netscan + reconciliation)."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from camscout.config import Config, DiscoveryConfig
from camscout.credentials import StaticCredentialProvider
from camscout.device_client.exceptions import DeviceConnectionError
from camscout.discovery.discovery_service import DeviceDiscoveryService
from camscout.exceptions import ConfigurationError
from camscout.inventory.memory import InMemoryInventory
from camscout.models.common import DiscoveryMode, OperatingState
from camscout.models.device import Device, DiscoveredRecord, EndpointDescriptor

MODULE = "camscout.discovery.discovery_service"


def make_config(**discovery) -> Config:
    discovery.setdefault("subnets", ["10.0.0.0/30"])
    return Config(discovery=DiscoveryConfig(**discovery))


@pytest.fixture
def device_client():
    client = MagicMock()
    # Unknown cameras: device information is never available
    client.get_device_information = AsyncMock(side_effect=DeviceConnectionError("unreachable"))
    return client


@pytest.fixture
def inventory():
    return InMemoryInventory()


@pytest.fixture
def scanner():
    scanner = MagicMock()
    scanner.auto_discover = AsyncMock(return_value=[])
    return scanner


def make_service(config, inventory, device_client, scanner):
    return DeviceDiscoveryService(config, inventory, device_client, StaticCredentialProvider(), scanner=scanner)


def netscan_record(endpoint_ref, address="10.0.0.2"):
    return DiscoveredRecord(name=endpoint_ref, address=address, port="80", endpoint_ref=endpoint_ref,
                            discovery_method="netscan")


async def test_same_camera_from_both_mechanisms_is_created_once(inventory, device_client, scanner):
    scanner.auto_discover.return_value = [netscan_record("urn:uuid:cam-1")]
    service = make_service(make_config(), inventory, device_client, scanner)
    multicast = [EndpointDescriptor(endpoint_ref="urn:uuid:cam-1", xaddrs=["http://10.0.0.2/onvif/device_service"])]

    with patch(f"{MODULE}.discover_multicast", AsyncMock(return_value=multicast)):
        report = await service.discover()

    assert report.created == ["urn:uuid:cam-1"]
    [device] = await inventory.list_devices()
    assert device.identity == "urn:uuid:cam-1"
    assert device.description == "Auto discovered Onvif camera"


async def test_netscan_only_mode_skips_multicast(inventory, device_client, scanner):
    scanner.auto_discover.return_value = [netscan_record("urn:uuid:cam-2")]
    service = make_service(make_config(discovery_mode=DiscoveryMode.NETSCAN), inventory, device_client, scanner)

    with patch(f"{MODULE}.discover_multicast", AsyncMock()) as multicast:
        report = await service.discover()

    multicast.assert_not_awaited()
    assert report.created == ["urn:uuid:cam-2"]
    params = scanner.auto_discover.await_args.args[2]
    assert params.subnets == ["10.0.0.0/30"]
    assert params.ports == ["3702"]
    assert params.timeout == 2.0
    assert params.async_limit == 4000


async def test_netscan_is_skipped_without_subnets(inventory, device_client, scanner):
    service = make_service(make_config(subnets=[], discovery_mode=DiscoveryMode.NETSCAN), inventory, device_client, scanner)
    report = await service.discover()
    scanner.auto_discover.assert_not_awaited()
    assert report.created == []


async def test_subnets_can_be_inferred_from_interfaces(inventory, device_client, scanner):
    config = make_config(subnets=[], infer_subnets_from_interfaces=True, discovery_mode=DiscoveryMode.NETSCAN,
                         ethernet_interface="eth0")
    service = make_service(config, inventory, device_client, scanner)

    with patch(f"{MODULE}.infer_local_subnets", return_value=["192.168.7.0/24"]) as infer:
        await service.discover()

    infer.assert_called_once_with("eth0")
    assert scanner.auto_discover.await_args.args[2].subnets == ["192.168.7.0/24"]


async def test_invalid_scan_parameters_do_not_fail_the_pass(inventory, device_client, scanner):
    scanner.auto_discover.side_effect = ConfigurationError("Invalid subnet")
    service = make_service(make_config(discovery_mode=DiscoveryMode.NETSCAN), inventory, device_client, scanner)
    report = await service.discover()
    assert report.created == []


async def test_moved_camera_is_updated(device_client, scanner):
    inventory = InMemoryInventory([
        Device(name="lobby", endpoint_ref="urn:uuid:cam-1", address="10.0.0.1", port="80",
               operating_state=OperatingState.DOWN),
    ])
    scanner.auto_discover.return_value = [netscan_record("urn:uuid:cam-1", address="10.0.0.2")]
    service = make_service(make_config(discovery_mode=DiscoveryMode.NETSCAN), inventory, device_client, scanner)

    report = await service.discover()

    assert report.updated == ["lobby"]
    device = await inventory.get_device("lobby")
    assert device.address == "10.0.0.2"
    assert device.operating_state == OperatingState.UP


async def test_pass_is_bounded_by_max_duration(inventory, device_client, scanner):
    async def scan_until_cancelled(cancel_event, proto, params):
        await cancel_event.wait()
        return [netscan_record("urn:uuid:partial")]

    scanner.auto_discover.side_effect = scan_until_cancelled
    config = make_config(discovery_mode=DiscoveryMode.NETSCAN, max_discover_duration_seconds=1)
    service = make_service(config, inventory, device_client, scanner)

    report = await asyncio.wait_for(service.discover(), timeout=5)

    assert report.created == ["urn:uuid:partial"]


async def test_outer_cancellation_stops_the_pass(inventory, device_client, scanner):
    async def scan_until_cancelled(cancel_event, proto, params):
        await cancel_event.wait()
        return []

    scanner.auto_discover.side_effect = scan_until_cancelled
    service = make_service(make_config(discovery_mode=DiscoveryMode.NETSCAN), inventory, device_client, scanner)
    cancel_event = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, cancel_event.set)

    report = await asyncio.wait_for(service.discover(cancel_event), timeout=5)

    assert report.created == []
