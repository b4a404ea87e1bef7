"""
Error taxonomy shared by the scanner, prober and reconciliation engine.
"""


class CamScoutError(Exception):
    """Base class for all camscout errors."""
    pass

class TransportError(CamScoutError):
    """Raised when a device cannot be reached (refused, timed out, unreachable).
    Always recoverable: demotes a tier or yields an empty scan result."""
    pass

class ProtocolParseError(CamScoutError):
    """Raised for a malformed discovery payload. Only that payload is skipped."""
    def __init__(self, message: str, payload: bytes | None = None):
        super().__init__(message)
        self.payload = payload

class MissingIdentityError(CamScoutError):
    """Raised when a discovered endpoint carries no stable identity token."""
    def __init__(self, message: str, xaddr: str | None = None):
        super().__init__(message)
        self.xaddr = xaddr

class InventoryError(CamScoutError):
    """Base class for inventory collaborator errors."""
    pass

class DeviceNotFoundError(InventoryError):
    """Raised when the inventory holds no device for a given identity."""
    pass

class InventoryWriteError(InventoryError):
    """Raised when the inventory rejects a create or update."""
    pass

class ConfigurationError(CamScoutError, ValueError):
    """Raised for invalid scan parameters (subnet syntax, concurrency limit, ports).
    Fatal only to the call that received them."""
    pass

class CredentialsError(CamScoutError):
    """Raised when credentials for a secret path are missing or unreadable."""
    def __init__(self, message: str, secret_path: str | None = None):
        super().__init__(message)
        self.secret_path = secret_path
