"""
Custom exceptions for the device protocol client.
"""
from ..exceptions import CamScoutError, TransportError


class DeviceClientError(CamScoutError):
    """Base class for all device client errors."""
    pass

class DeviceConnectionError(DeviceClientError, TransportError):
    """Raised when the device cannot be reached over HTTP."""
    pass

class DeviceTimeoutError(DeviceConnectionError):
    """Raised when a connection or request times out."""
    pass

class DeviceProtocolError(DeviceClientError):
    """Raised for SOAP faults and responses that cannot be parsed."""
    def __init__(self, message: str, fault_code: str | None = None, fault_subcode: str | None = None):
        super().__init__(message)
        self.fault_code = fault_code
        self.fault_subcode = fault_subcode

class DeviceAuthError(DeviceProtocolError):
    """Raised when the device rejects (or demands) credentials."""
    pass
