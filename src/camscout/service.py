"""
Top-level service: wires the collaborators together and runs the
health-check and discovery loops until cancelled.
"""
import asyncio
import logging as py_logging
import signal

import structlog

from .config import Config, LoggingConfig
from .credentials import BaseCredentialProvider, KeyringCredentialProvider, get_credentials_with_retry
from .device_client.base_client import BaseDeviceClient
from .device_client.http_client import OnvifHTTPClient
from .discovery.discovery_service import DeviceDiscoveryService
from .exceptions import CredentialsError
from .health.prober import ConnectionTierProber
from .inventory.base import BaseInventory
from .inventory.memory import InMemoryInventory
from .models.common import ReachabilityTier
from .reconcile import ApplyReport
from .scheduler import RepeatingTask

logger = structlog.get_logger(__name__)


def setup_logging(logging_config: LoggingConfig) -> None:
    py_logging.basicConfig(
        level=getattr(py_logging, logging_config.level.upper()),
        format="%(message)s",
        force=True
    )

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.dev.ConsoleRenderer(colors=True) if logging_config.format.lower() == "console"
            else structlog.processors.JSONRenderer(sort_keys=True)
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    logger.info("Global logging configured.", logging_level=logging_config.level, logging_format=logging_config.format)


class DeviceMonitorService:
    """
    Owns the inventory, credential provider and device client, and the two
    repeating loops built on them. Collaborators can be injected; otherwise an
    in-memory inventory, the keyring provider and the HTTP client are used.
    """

    def __init__(
        self,
        app_config: Config,
        inventory: BaseInventory | None = None,
        credential_provider: BaseCredentialProvider | None = None,
        device_client: BaseDeviceClient | None = None,
        configure_logging: bool = True,
    ):
        self.app_config = app_config
        if configure_logging:
            setup_logging(app_config.logging)
        self.logger = logger.bind(service=app_config.service_name)

        self.inventory = inventory or InMemoryInventory()
        self.credential_provider = credential_provider or KeyringCredentialProvider(app_config.credentials)
        self.device_client = device_client or OnvifHTTPClient(app_config.health_check.request_timeout_seconds)

        self.prober = ConnectionTierProber(
            self.device_client,
            self.credential_provider,
            self.inventory,
            app_config.health_check,
            service_name=app_config.service_name,
        )
        self.discovery_service = DeviceDiscoveryService(
            app_config,
            self.inventory,
            self.device_client,
            self.credential_provider,
        )

        self.cancel_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    def _loops(self) -> list[RepeatingTask]:
        max_interval = self.app_config.scheduler.max_interval_seconds
        loops = []
        if self.app_config.health_check.enabled:
            loops.append(RepeatingTask("check-status", self.app_config.health_check.interval_seconds,
                                       self.check_statuses_once, max_interval))
        if self.app_config.discovery.enabled:
            loops.append(RepeatingTask("discovery", self.app_config.discovery.interval_seconds,
                                       self.discover_once, max_interval))
        return loops

    async def wait_for_default_credentials(self) -> bool:
        """Blocks until credentials for the default secret path are available or the retry window closes."""
        creds_config = self.app_config.credentials
        try:
            await get_credentials_with_retry(
                self.credential_provider,
                creds_config.default_secret_path,
                creds_config.retry_interval_seconds,
                creds_config.retry_max_wait_seconds,
            )
        except CredentialsError as e:
            self.logger.warning("Default credentials unavailable, authenticated checks will fail until provisioned",
                                secret_path=creds_config.default_secret_path, error=str(e))
            return False
        return True

    async def start(self) -> None:
        if self._tasks:
            self.logger.warning("Service already started.")
            return
        self.cancel_event.clear()
        await self.wait_for_default_credentials()
        self._tasks = [asyncio.create_task(loop.run(self.cancel_event), name=loop.name) for loop in self._loops()]
        self.logger.info("Service started.", loops=[task.get_name() for task in self._tasks])

    async def stop(self) -> None:
        self.logger.info("Service stopping...")
        self.cancel_event.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self.device_client.close()
        self.logger.info("Service stopped.")

    async def run_until_cancelled(self) -> None:
        """Starts the loops and runs until SIGINT/SIGTERM (or `cancel_event`) stops them."""
        loop = asyncio.get_running_loop()
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
                installed.append(sig)
            except NotImplementedError:
                self.logger.debug("Signal handlers not supported on this platform", signal=sig.name)

        await self.start()
        try:
            await self.cancel_event.wait()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            await self.stop()

    def _on_signal(self, sig: signal.Signals) -> None:
        self.logger.info("Received signal from OS.", signal=sig.name)
        self.cancel_event.set()

    async def discover_once(self) -> ApplyReport:
        return await self.discovery_service.discover(self.cancel_event)

    async def check_statuses_once(self) -> dict[str, ReachabilityTier]:
        return await self.prober.check_statuses(self.cancel_event)
