"""
Classifies how reachable each camera is by walking an ordered table of
connection tests, strongest first, and records the outcome in the inventory.
"""
import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

import structlog

from ..config import HealthCheckConfig
from ..credentials import BaseCredentialProvider
from ..device_client.base_client import BaseDeviceClient
from ..exceptions import InventoryError
from ..inventory.base import BaseInventory
from ..models.common import AuthMode, BasePydanticModel, ReachabilityTier
from ..models.device import Device

logger = structlog.get_logger(__name__)

TierTest = Callable[[Device], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TierResult(BasePydanticModel):
    tier: ReachabilityTier
    timestamp: datetime


class ConnectionTierProber:
    """
    A tier test succeeds by returning and fails by raising. Stronger tiers are
    tried first; if one succeeds the weaker ones would too, so they are skipped.
    """

    def __init__(
        self,
        device_client: BaseDeviceClient,
        credential_provider: BaseCredentialProvider,
        inventory: BaseInventory,
        health_config: HealthCheckConfig,
        service_name: str | None = None,
    ):
        self.device_client = device_client
        self.credential_provider = credential_provider
        self.inventory = inventory
        self.config = health_config
        self.service_name = service_name
        self.logger = logger.bind(component="ConnectionTierProber")
        self.tier_tests: list[tuple[TierTest, ReachabilityTier]] = [
            (self.test_connection_auth, ReachabilityTier.UP_WITH_AUTH),
            (self.test_connection_no_auth, ReachabilityTier.UP_WITHOUT_AUTH),
            (self.transport_probe, ReachabilityTier.REACHABLE),
        ]

    async def test_connection_auth(self, device: Device) -> None:
        """GetDeviceInformation, which requires credentials."""
        credentials = None
        if device.auth_mode != AuthMode.NONE:
            credentials = await self.credential_provider.get_credentials(device.secret_path)
        await self.device_client.get_device_information(device, credentials)

    async def test_connection_no_auth(self, device: Device) -> None:
        """GetSystemDateAndTime, which every conformant device answers unauthenticated."""
        await self.device_client.get_system_date_and_time(device)

    async def transport_probe(self, device: Device) -> None:
        """A bare HTTP GET (any status counts) or a TCP connect."""
        if self.config.transport_probe == "tcp":
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(device.address, int(device.port)),
                timeout=self.config.request_timeout_seconds,
            )
            writer.close()
            return
        await self.device_client.http_get(f"http://{device.host}/")

    async def probe(self, device: Device) -> TierResult:
        log = self.logger.bind(device=device.name, host=device.host)
        for test, tier in self.tier_tests:
            try:
                await test(device)
            except Exception as e:
                log.debug("Connection test failed", tier=tier.value, error_type=type(e).__name__, error=str(e))
                continue
            log.debug("Connection test succeeded", tier=tier.value)
            return TierResult(tier=tier, timestamp=_utcnow())
        return TierResult(tier=ReachabilityTier.UNREACHABLE, timestamp=_utcnow())

    async def update_device_status(self, device: Device, result: TierResult) -> bool:
        """
        Writes the tier (and, unless unreachable, the last-seen timestamps) to the
        inventory. Returns False if the inventory rejected the write.
        """
        seen_at = result.timestamp if result.tier.is_up else None
        try:
            await self.inventory.update_status(device.name, result.tier, seen_at=seen_at)
        except InventoryError as e:
            self.logger.warning("Could not update device status", device=device.name, status=result.tier.value, error=str(e))
            return False
        except Exception as e:
            self.logger.error("Unexpected error writing device status", device=device.name, status=result.tier.value,
                              error_type=type(e).__name__, error=str(e))
            return False
        return True

    async def check_statuses(self, cancel_event: asyncio.Event | None = None) -> dict[str, ReachabilityTier]:
        """Probes every device once and returns the tier assigned to each device checked."""
        self.logger.debug("check_statuses has been called")
        devices = [device for device in await self.inventory.list_devices() if device.name != self.service_name]
        semaphore = asyncio.Semaphore(self.config.max_concurrent_checks)
        statuses: dict[str, ReachabilityTier] = {}

        async def check(device: Device) -> None:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return
                if not device.address:
                    self.logger.warning("Device has no network address, cannot probe it", device=device.name)
                    result = TierResult(tier=ReachabilityTier.UNREACHABLE, timestamp=_utcnow())
                else:
                    result = await self.probe(device)
                statuses[device.name] = result.tier
                await self.update_device_status(device, result)

        outcomes = await asyncio.gather(*(check(device) for device in devices), return_exceptions=True)
        for device, outcome in zip(devices, outcomes):
            if isinstance(outcome, Exception):
                self.logger.error("Unexpected error checking device", device=device.name,
                                  error_type=type(outcome).__name__, error=str(outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
        self.logger.info("Checked device statuses", checked=len(statuses), total=len(devices),
                         up=sum(1 for tier in statuses.values() if tier.is_up))
        return statuses
