from datetime import datetime
from typing import Any
from urllib.parse import urlsplit

from pydantic import Field

from .common import (
    AuthMode,
    BasePydanticModel,
    OperatingState,
    ReachabilityTier,
)

DEFAULT_DEVICE_PORT = "80"


def address_and_port(xaddr: str) -> tuple[str, str]:
    """Splits an XAddr (usually an http URL) into host and port.
    The port defaults to 80 when the URL carries none,
    e.g. http://192.168.12.123/onvif/device_service."""
    target = xaddr if "//" in xaddr else f"//{xaddr}"
    parts = urlsplit(target)
    host = parts.hostname or ""
    try:
        port = parts.port
    except ValueError:
        port = None
    return host, str(port) if port else DEFAULT_DEVICE_PORT


class DeviceInformation(BasePydanticModel):
    """Answer to an ONVIF GetDeviceInformation request."""
    manufacturer: str = ""
    model: str = ""
    firmware_version: str = ""
    serial_number: str = ""
    hardware_id: str = ""


class Device(BasePydanticModel):
    """A camera as held by the inventory collaborator."""
    name: str
    endpoint_ref: str | None = Field(None, description="Stable, protocol-assigned identity token. The only reconciliation key.")
    address: str = ""
    port: str = DEFAULT_DEVICE_PORT
    auth_mode: AuthMode = AuthMode.USERNAME_TOKEN
    secret_path: str = ""
    status: ReachabilityTier = ReachabilityTier.UNREACHABLE
    last_seen: datetime | None = None
    last_connected: datetime | None = None
    operating_state: OperatingState = OperatingState.UP

    manufacturer: str = ""
    model: str = ""
    firmware_version: str = ""
    serial_number: str = ""
    hardware_id: str = ""
    description: str = ""
    labels: list[str] = Field(default_factory=list)

    @property
    def identity(self) -> str | None:
        return self.endpoint_ref or None

    @property
    def host(self) -> str:
        return f"{self.address}:{self.port}"

    @property
    def xaddr(self) -> str:
        return f"http://{self.address}:{self.port}/onvif/device_service"


class DiscoveredRecord(BasePydanticModel):
    """Ephemeral result of one discovery pass."""
    name: str
    address: str
    port: str = DEFAULT_DEVICE_PORT
    endpoint_ref: str | None = None
    auth_mode: AuthMode = AuthMode.USERNAME_TOKEN
    secret_path: str = ""
    manufacturer: str = ""
    model: str = ""
    firmware_version: str = ""
    serial_number: str = ""
    hardware_id: str = ""
    description: str = ""
    labels: list[str] = Field(default_factory=list)
    discovery_method: str = "manual" # "multicast", "netscan" or "manual"

    @property
    def identity(self) -> str | None:
        return self.endpoint_ref or None

    def to_device(self) -> Device:
        """Builds the inventory entry for a record accepted as a new device."""
        return Device(
            name=self.name,
            endpoint_ref=self.endpoint_ref,
            address=self.address,
            port=self.port,
            auth_mode=self.auth_mode,
            secret_path=self.secret_path,
            operating_state=OperatingState.UP,
            manufacturer=self.manufacturer,
            model=self.model,
            firmware_version=self.firmware_version,
            serial_number=self.serial_number,
            hardware_id=self.hardware_id,
            description=self.description,
            labels=list(self.labels),
        )


class EndpointDescriptor(BasePydanticModel):
    """One ProbeMatch out of a WS-Discovery response."""
    endpoint_ref: str | None = None
    xaddrs: list[str] = Field(default_factory=list)
    types: list[str] = Field(default_factory=list)
    scopes: list[str] = Field(default_factory=list)
    metadata_version: int | None = None
    responder: str | None = None # Source address the response came from
    relates_to: str | None = None

    @property
    def xaddr(self) -> str:
        return self.xaddrs[0] if self.xaddrs else ""

    @property
    def address(self) -> str:
        if self.xaddrs:
            return address_and_port(self.xaddrs[0])[0]
        return self.responder or ""

    @property
    def port(self) -> str:
        if self.xaddrs:
            return address_and_port(self.xaddrs[0])[1]
        return DEFAULT_DEVICE_PORT


class ProbeResult(BasePydanticModel):
    """Transport-level outcome of one scan attempt."""
    host: str
    port: str
    data: Any = None
