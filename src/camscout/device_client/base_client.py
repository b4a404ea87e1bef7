"""
Base device client abstract class.
"""
import abc

import structlog

from ..models.common import AuthMode, Credentials
from ..models.device import Device, DeviceInformation
from . import soap


class BaseDeviceClient(abc.ABC):
    """
    Abstract base class for the application-level device protocol.
    Transports implement `call` (bytes in, bytes out) and `http_get`;
    the typed helpers on top build and parse the messages.
    """

    def __init__(self, request_timeout_seconds: float = 5.0):
        self.request_timeout_seconds = request_timeout_seconds
        self.logger = structlog.get_logger(__name__).bind(client=self.__class__.__name__)

    @abc.abstractmethod
    async def call(self, device: Device, body: bytes, credentials: Credentials | None = None) -> bytes:
        """
        Sends a request envelope to the device service of `device` and returns the raw response.
        Raises DeviceConnectionError/DeviceTimeoutError on transport failures and
        DeviceAuthError when the device rejects the credentials.
        """
        pass

    @abc.abstractmethod
    async def http_get(self, url: str) -> int:
        """Issues a single bare GET and returns the HTTP status. Raises DeviceConnectionError if no answer."""
        pass

    async def close(self) -> None:
        """Releases transport resources. No-op by default."""
        pass

    async def get_device_information(self, device: Device, credentials: Credentials | None = None) -> DeviceInformation:
        """Requests device information. Requires credentials unless the device's auth mode is 'none'."""
        token_credentials = credentials if device.auth_mode in (AuthMode.USERNAME_TOKEN, AuthMode.BOTH) else None
        payload = await self.call(device, soap.build_envelope(soap.GET_DEVICE_INFORMATION, token_credentials), credentials)
        return soap.parse_device_information(payload)

    async def get_system_date_and_time(self, device: Device) -> None:
        """Unauthenticated request every conformant device must answer."""
        payload = await self.call(device, soap.build_envelope(soap.GET_SYSTEM_DATE_AND_TIME))
        soap.parse_body(payload)
