"""
Device client implementation using SOAP over HTTP.
"""
import aiohttp
import structlog

from .. import __version__
from ..models.common import AuthMode, Credentials
from ..models.device import Device
from . import soap
from .base_client import BaseDeviceClient
from .exceptions import (
    DeviceAuthError,
    DeviceConnectionError,
    DeviceTimeoutError,
)

logger = structlog.get_logger(__name__)

SOAP_CONTENT_TYPE = "application/soap+xml; charset=utf-8"


class OnvifHTTPClient(BaseDeviceClient):
    """
    Talks to the ONVIF device service at http://<address>:<port>/onvif/device_service.
    A single aiohttp.ClientSession is shared by every request; pass one in to
    share it with other components, otherwise one is created lazily.
    """

    def __init__(self, request_timeout_seconds: float = 5.0, session: aiohttp.ClientSession | None = None):
        super().__init__(request_timeout_seconds)
        self._session = session
        self._owns_session = session is None
        self.logger = logger.bind(transport="http")

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self.logger.debug("Creating aiohttp session for device client.")
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.request_timeout_seconds, connect=self.request_timeout_seconds)

    async def call(self, device: Device, body: bytes, credentials: Credentials | None = None) -> bytes:
        session = await self._get_session()

        url = device.xaddr
        headers = {
            "Content-Type": SOAP_CONTENT_TYPE,
            "User-Agent": f"camscout/{__version__}",
        }
        request_kwargs = {}
        if credentials and device.auth_mode in (AuthMode.DIGEST, AuthMode.BOTH):
            request_kwargs["middlewares"] = (aiohttp.DigestAuthMiddleware(credentials.username, credentials.password),)

        log = self.logger.bind(device=device.name, url=url)
        log.debug("Sending SOAP request", authenticated=credentials is not None)
        try:
            async with session.post(url, data=body, headers=headers, timeout=self._timeout(), **request_kwargs) as response:
                payload = await response.read()
                log.debug("Received SOAP response", status=response.status, content_length=len(payload))

                if response.status in (401, 403):
                    raise DeviceAuthError(f"Authentication failed ({response.status}) for {url}")
                if response.status >= 300:
                    # Devices report SOAP faults with 400/500; parse_body raises the matching error
                    if payload.lstrip().startswith(b"<"):
                        soap.parse_body(payload)
                    raise DeviceConnectionError(f"HTTP error {response.status} {response.reason} from {url}")
                return payload

        except aiohttp.ClientConnectorError as e:
            log.debug("Client connector error", error=str(e))
            raise DeviceConnectionError(f"Connection failed to {url}: {e.os_error or str(e)}") from e
        except TimeoutError as e:
            log.debug("Request timed out", timeout=self.request_timeout_seconds)
            raise DeviceTimeoutError(f"Request to {url} timed out after {self.request_timeout_seconds}s.") from e
        except aiohttp.ClientError as e:
            log.debug("AIOHTTP client error", error_type=type(e).__name__, error=str(e))
            raise DeviceConnectionError(f"HTTP client error for {url}: {e}") from e

    async def http_get(self, url: str) -> int:
        session = await self._get_session()
        try:
            async with session.get(url, timeout=self._timeout(), allow_redirects=False) as response:
                return response.status
        except TimeoutError as e:
            raise DeviceTimeoutError(f"GET {url} timed out after {self.request_timeout_seconds}s.") from e
        except aiohttp.ClientError as e:
            raise DeviceConnectionError(f"GET {url} failed: {e}") from e
