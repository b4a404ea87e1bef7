"""
ONVIF flavour of discovery: unicast WS-Discovery probes over scanner
connections, multicast probes on the local segment, and conversion of
discovered endpoints into records enriched with device information.
"""
import asyncio
import socket
from typing import Any, Optional

import structlog

from ..config import CredentialsConfig
from ..credentials import BaseCredentialProvider
from ..device_client.base_client import BaseDeviceClient
from ..exceptions import CamScoutError, MissingIdentityError, ProtocolParseError
from ..models.common import AuthMode
from ..models.device import Device, DeviceInformation, DiscoveredRecord, EndpointDescriptor, ProbeResult
from .netscan import DialedConnection, ProtocolSpecificDiscovery
from .network import get_interface_ipv4
from .wsdiscovery import (
    DISCOVERY_PORT,
    MULTICAST_ADDRESS,
    build_onvif_probe,
    new_message_id,
    parse_responses,
)

logger = structlog.get_logger(__name__)

AUTO_DISCOVERY_LABEL = "auto-discovery"
UNKNOWN_CAMERA_DESCRIPTION = "Auto discovered Onvif camera"
MULTICAST_TTL = 2


async def execute_raw_probe(conn: DialedConnection, budget: float) -> list[EndpointDescriptor]:
    """
    Sends a unicast ONVIF probe over `conn` and collects every answer until
    `budget` seconds have passed. Answers correlated to another probe are dropped.
    """
    message_id = new_message_id()
    await conn.send(build_onvif_probe(message_id))

    loop = asyncio.get_running_loop()
    deadline = loop.time() + budget
    responses: list[bytes] = []
    while True:
        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        try:
            responses.append(await conn.recv(remaining))
        except TimeoutError:
            break # expected once the budget is spent
        except OSError as e:
            logger.debug("Unexpected error while reading discovery responses", remote=conn.remote_address,
                         error_type=type(e).__name__, error=str(e))
            break

    if not responses:
        return []
    logger.debug("Received discovery responses", remote=conn.remote_address, count=len(responses))
    return parse_responses(((payload, conn.host) for payload in responses), relates_to=message_id)


class DiscoveredRecordFactory:
    """Turns an EndpointDescriptor into a DiscoveredRecord, asking the camera who it is."""

    def __init__(self, device_client: BaseDeviceClient, credential_provider: BaseCredentialProvider,
                 credentials_config: CredentialsConfig):
        self.device_client = device_client
        self.credential_provider = credential_provider
        self.credentials_config = credentials_config
        self.logger = logger.bind(component="DiscoveredRecordFactory")

    async def _device_information(self, device: Device) -> DeviceInformation:
        credentials = None
        if device.auth_mode != AuthMode.NONE:
            # Temporary lookup; discovery never waits for credentials to be provisioned
            credentials = await self.credential_provider.get_credentials(device.secret_path)
        return await self.device_client.get_device_information(device, credentials)

    async def create(self, descriptor: EndpointDescriptor, method: str) -> DiscoveredRecord:
        """
        Raises:
            MissingIdentityError: the endpoint carries no endpoint reference.
        """
        endpoint_ref = descriptor.endpoint_ref
        if not endpoint_ref:
            self.logger.warning("Discovered camera has no endpoint reference, unable to add it", xaddr=descriptor.xaddr)
            raise MissingIdentityError(f"Empty endpoint reference for XAddr {descriptor.xaddr!r}", xaddr=descriptor.xaddr)

        device = Device(
            name=descriptor.xaddr or endpoint_ref, # temporary name
            endpoint_ref=endpoint_ref,
            address=descriptor.address,
            port=descriptor.port,
            auth_mode=self.credentials_config.default_auth_mode,
            secret_path=self.credentials_config.default_secret_path,
        )

        info: Optional[DeviceInformation] = None
        try:
            info = await self._device_information(device)
        except CamScoutError as first_error:
            # Cameras provisioned per device keep their secret under the endpoint reference
            self.logger.debug("Device information with default secret path failed", endpoint_ref=endpoint_ref,
                              error=str(first_error))
            device.secret_path = endpoint_ref
            try:
                info = await self._device_information(device)
            except CamScoutError as e:
                self.logger.warning("Failed to get the device information for the camera",
                                    endpoint_ref=endpoint_ref, error=str(e))

        record = DiscoveredRecord(
            name=endpoint_ref,
            address=device.address,
            port=device.port,
            endpoint_ref=endpoint_ref,
            auth_mode=device.auth_mode,
            secret_path=device.secret_path,
            description=UNKNOWN_CAMERA_DESCRIPTION,
            labels=[AUTO_DISCOVERY_LABEL],
            discovery_method=method,
        )
        if info is None:
            self.logger.debug("Discovered unknown camera", xaddr=descriptor.xaddr)
            return record

        # Spaces are not allowed in device names
        record.name = "-".join((info.manufacturer.replace(" ", "-"), info.model.replace(" ", "-"), endpoint_ref))
        record.manufacturer = info.manufacturer
        record.model = info.model
        record.firmware_version = info.firmware_version
        record.serial_number = info.serial_number
        record.hardware_id = info.hardware_id
        record.description = f"{info.manufacturer} {info.model} Camera"
        record.labels = [AUTO_DISCOVERY_LABEL, info.manufacturer, info.model]
        self.logger.debug("Discovered camera", xaddr=descriptor.xaddr, name=record.name)
        return record


class OnvifProtocolDiscovery(ProtocolSpecificDiscovery):
    """Scanner hooks for ONVIF cameras: every port is probed, nothing is filtered."""

    def __init__(self, record_factory: DiscoveredRecordFactory):
        self.record_factory = record_factory

    async def on_connection_dialed(self, host: str, port: str, conn: DialedConnection, budget: float) -> list[ProbeResult]:
        descriptors = await execute_raw_probe(conn, budget)
        return [ProbeResult(host=host, port=port, data=descriptor) for descriptor in descriptors]

    async def convert_probe_result(self, result: ProbeResult) -> DiscoveredRecord:
        if not isinstance(result.data, EndpointDescriptor):
            raise ProtocolParseError(f"Unable to use probe result data of type {type(result.data).__name__}")
        return await self.record_factory.create(result.data, "netscan")


class _MulticastCollector(asyncio.DatagramProtocol):
    def __init__(self):
        self.responses: list[tuple[bytes, Optional[str]]] = []

    def datagram_received(self, data: bytes, addr: Any) -> None:
        self.responses.append((data, addr[0] if addr else None))

    def error_received(self, exc: Exception) -> None:
        logger.debug("Error while receiving multicast responses", error=str(exc))


async def discover_multicast(
    interface: Optional[str] = None,
    listen_seconds: float = 2.0,
    cancel_event: Optional[asyncio.Event] = None,
) -> list[EndpointDescriptor]:
    """
    Sends one ONVIF probe to 239.255.255.250:3702 and parses whatever answers
    within `listen_seconds`. When `interface` is set the probe leaves from its
    IPv4 address; an interface without one falls back to the default route.
    """
    local_ip = get_interface_ipv4(interface) if interface else None
    if interface and local_ip is None:
        logger.warning("Interface has no IPv4 address, multicasting on the default route", interface=interface)

    loop = asyncio.get_running_loop()
    transport, collector = await loop.create_datagram_endpoint(
        _MulticastCollector, local_addr=(local_ip or "0.0.0.0", 0), family=socket.AF_INET,
    )
    message_id = new_message_id()
    try:
        sock = transport.get_extra_info("socket")
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, MULTICAST_TTL)
        if local_ip:
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, socket.inet_aton(local_ip))
        transport.sendto(build_onvif_probe(message_id), (MULTICAST_ADDRESS, DISCOVERY_PORT))

        if cancel_event is None:
            await asyncio.sleep(listen_seconds)
        else:
            try:
                await asyncio.wait_for(cancel_event.wait(), timeout=listen_seconds)
            except TimeoutError:
                pass
    finally:
        transport.close()

    logger.debug("Multicast listen window closed", interface=interface, responses=len(collector.responses))
    return parse_responses(collector.responses, relates_to=message_id)
