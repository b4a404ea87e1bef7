"""
Pydantic models for camscout.
"""
from .common import (
    AuthMode,
    BasePydanticModel,
    Credentials,
    DiscoveryMode,
    NetworkProtocol,
    OperatingState,
    ReachabilityTier,
)
from .device import (
    DeviceInformation,
    Device,
    DiscoveredRecord,
    EndpointDescriptor,
    ProbeResult,
    address_and_port,
)

__all__ = [
    "AuthMode",
    "BasePydanticModel",
    "Credentials",
    "Device",
    "DeviceInformation",
    "DiscoveredRecord",
    "DiscoveryMode",
    "EndpointDescriptor",
    "NetworkProtocol",
    "OperatingState",
    "ProbeResult",
    "ReachabilityTier",
    "address_and_port",
]
