"""
Client for the application-level device protocol (ONVIF over SOAP/HTTP).

Only the handful of calls needed to classify reachability are exposed;
device control is handled elsewhere.
"""

from .base_client import BaseDeviceClient
from .exceptions import (
    DeviceAuthError,
    DeviceClientError,
    DeviceConnectionError,
    DeviceProtocolError,
    DeviceTimeoutError,
)
from .http_client import OnvifHTTPClient

__all__ = [
    "BaseDeviceClient",
    "DeviceAuthError",
    "DeviceClientError",
    "DeviceConnectionError",
    "DeviceProtocolError",
    "DeviceTimeoutError",
    "OnvifHTTPClient",
]
