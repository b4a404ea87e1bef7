"""
Camera discovery: WS-Discovery codec, concurrent subnet scanner, ONVIF
probe hooks and the discovery pass that feeds reconciliation.
"""

from .discovery_service import DeviceDiscoveryService
from .netscan import NetworkScanner, ProtocolSpecificDiscovery, ScanParams, scan
from .onvif import DiscoveredRecordFactory, OnvifProtocolDiscovery, discover_multicast

__all__ = [
    "DeviceDiscoveryService",
    "DiscoveredRecordFactory",
    "NetworkScanner",
    "OnvifProtocolDiscovery",
    "ProtocolSpecificDiscovery",
    "ScanParams",
    "discover_multicast",
    "scan",
]  # type: list[str]
