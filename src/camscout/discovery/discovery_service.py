"""
Service responsible for discovering cameras on the network, via WS-Discovery
multicast and/or a unicast scan of configured subnets, and merging them into
the inventory.
"""
import asyncio

import structlog

from ..config import Config, DiscoveryConfig
from ..credentials import BaseCredentialProvider
from ..device_client.base_client import BaseDeviceClient
from ..exceptions import CamScoutError, ConfigurationError
from ..inventory.base import BaseInventory
from ..models.common import NetworkProtocol
from ..models.device import DiscoveredRecord, EndpointDescriptor
from ..reconcile import ApplyReport, DeviceReconciler
from .netscan import NetworkScanner, ScanParams
from .network import infer_local_subnets
from .onvif import DiscoveredRecordFactory, OnvifProtocolDiscovery, discover_multicast
from .wsdiscovery import DISCOVERY_PORT

logger = structlog.get_logger(__name__)


class DeviceDiscoveryService:
    """
    Runs one discovery pass at a time. Multicast results come first in the
    batch, so a camera found by both mechanisms keeps its multicast record.
    """

    def __init__(
        self,
        app_config: Config,
        inventory: BaseInventory,
        device_client: BaseDeviceClient,
        credential_provider: BaseCredentialProvider,
        scanner: NetworkScanner | None = None,
        reconciler: DeviceReconciler | None = None,
    ):
        self.app_config = app_config
        self.discovery_config: DiscoveryConfig = app_config.discovery
        self.inventory = inventory
        self.record_factory = DiscoveredRecordFactory(device_client, credential_provider, app_config.credentials)
        self.protocol = OnvifProtocolDiscovery(self.record_factory)
        self.scanner = scanner or NetworkScanner()
        self.reconciler = reconciler or DeviceReconciler(app_config.service_name)
        self.logger = logger.bind(service="DeviceDiscoveryService")

    def _scan_subnets(self) -> list[str]:
        subnets = list(self.discovery_config.subnets)
        if not subnets and self.discovery_config.infer_subnets_from_interfaces:
            subnets = infer_local_subnets(self.discovery_config.ethernet_interface)
        return subnets

    def scan_params(self, subnets: list[str]) -> ScanParams:
        return ScanParams(
            subnets=subnets,
            ports=list(self.discovery_config.scan_ports) or [str(DISCOVERY_PORT)],
            timeout=self.discovery_config.probe_timeout_seconds,
            async_limit=self.discovery_config.probe_async_limit,
            network_protocol=NetworkProtocol.UDP,
        )

    async def _convert(self, descriptors: list[EndpointDescriptor], method: str) -> list[DiscoveredRecord]:
        outcomes = await asyncio.gather(
            *(self.record_factory.create(descriptor, method) for descriptor in descriptors),
            return_exceptions=True,
        )
        records = []
        for descriptor, outcome in zip(descriptors, outcomes):
            if isinstance(outcome, CamScoutError):
                self.logger.warning("Dropping discovered endpoint", xaddr=descriptor.xaddr, error=str(outcome))
            elif isinstance(outcome, Exception):
                self.logger.error("Unexpected error converting discovered endpoint", xaddr=descriptor.xaddr,
                                  error_type=type(outcome).__name__, error=str(outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                records.append(outcome)
        return records

    async def discover_multicast(self, cancel_event: asyncio.Event) -> list[DiscoveredRecord]:
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            descriptors = await discover_multicast(
                self.discovery_config.ethernet_interface,
                self.discovery_config.multicast_listen_seconds,
                cancel_event,
            )
        except OSError as e:
            self.logger.error("Multicast discovery failed", interface=self.discovery_config.ethernet_interface, error=str(e))
            return []
        records = await self._convert(descriptors, "multicast")
        self.logger.info("Discovered devices via multicast", count=len(records),
                         elapsed_seconds=round(loop.time() - started, 3))
        return records

    async def discover_netscan(self, cancel_event: asyncio.Event) -> list[DiscoveredRecord]:
        subnets = self._scan_subnets()
        if not subnets:
            self.logger.debug("Netscan discovery not performed, no subnets configured.")
            return []

        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            records = await self.scanner.auto_discover(cancel_event, self.protocol, self.scan_params(subnets))
        except ConfigurationError as e:
            self.logger.error("Invalid netscan parameters, skipping netscan", subnets=subnets, error=str(e))
            return []
        if cancel_event.is_set():
            self.logger.warning("Discover process has been cancelled!")
        self.logger.info("Discovered devices via netscan", count=len(records),
                         elapsed_seconds=round(loop.time() - started, 3))
        return records

    async def discover(self, cancel_event: asyncio.Event | None = None) -> ApplyReport:
        """
        Runs one full discovery pass and applies the reconciled result to the inventory.
        The pass stops early, keeping partial results, when `cancel_event` is set or
        `max_discover_duration_seconds` elapses.
        """
        self.logger.info("Discover was called.", mode=self.discovery_config.discovery_mode.value)
        loop = asyncio.get_running_loop()
        pass_cancel = asyncio.Event()

        deadline_handle = None
        max_seconds = self.discovery_config.max_discover_duration_seconds
        if max_seconds > 0:
            deadline_handle = loop.call_later(max_seconds, pass_cancel.set)

        async def relay_cancellation() -> None:
            await cancel_event.wait()
            pass_cancel.set()

        relay = asyncio.create_task(relay_cancellation()) if cancel_event is not None else None
        try:
            records: list[DiscoveredRecord] = []
            mode = self.discovery_config.discovery_mode
            if mode.uses_multicast and not pass_cancel.is_set():
                records.extend(await self.discover_multicast(pass_cancel))
            if mode.uses_netscan and not pass_cancel.is_set():
                records.extend(await self.discover_netscan(pass_cancel))
        finally:
            if deadline_handle is not None:
                deadline_handle.cancel()
            if relay is not None:
                relay.cancel()

        snapshot = await self.inventory.list_devices()
        result = self.reconciler.reconcile(records, snapshot)
        report = await self.reconciler.apply(result, self.inventory)
        self.logger.info("Discovery pass complete", created=len(report.created), updated=len(report.updated),
                         failed=len(report.failed))
        return report
