"""
Concurrent network scanner.

Enumerates every host:port candidate across a set of subnets lazily,
dials them with a fixed-size pool of workers and hands each live
connection to a protocol specific hook which decides whether a device
is actually on the other end.
"""
import abc
import asyncio
import ipaddress
from collections.abc import Awaitable, Callable, Iterable, Iterator
from typing import Any

import structlog

from ..exceptions import CamScoutError, ConfigurationError
from ..models.common import BasePydanticModel, NetworkProtocol
from ..models.device import DiscoveredRecord, ProbeResult

logger = structlog.get_logger(__name__)

BUF_SIZE = 8192
# Extra time granted to an on_dialed hook past the dial budget before it is abandoned
HOOK_GRACE_SECONDS = 0.25

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network
ProbeFilter = Callable[[str, list[str]], Iterable[str]]


class ScanParams(BasePydanticModel):
    subnets: list[str]
    ports: list[str]
    timeout: float = 2.0 # Seconds per dial, including the on_dialed hook
    async_limit: int = 4000
    network_protocol: NetworkProtocol = NetworkProtocol.UDP


class DialedConnection(abc.ABC):
    """A live connection to one host:port, owned by the scanner."""

    def __init__(self, host: str, port: str):
        self.host = host
        self.port = port

    @property
    def remote_address(self) -> str:
        return f"{self.host}:{self.port}"

    @abc.abstractmethod
    async def send(self, data: bytes) -> None:
        pass

    @abc.abstractmethod
    async def recv(self, timeout: float) -> bytes:
        """Returns the next chunk or datagram. Raises TimeoutError if nothing arrives in time."""
        pass

    @abc.abstractmethod
    def close(self) -> None:
        pass


class TcpConnection(DialedConnection):
    def __init__(self, host: str, port: str, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        super().__init__(host, port)
        self._reader = reader
        self._writer = writer

    async def send(self, data: bytes) -> None:
        self._writer.write(data)
        await self._writer.drain()

    async def recv(self, timeout: float) -> bytes:
        data = await asyncio.wait_for(self._reader.read(BUF_SIZE), timeout=timeout)
        if not data:
            raise ConnectionResetError(f"{self.remote_address}: connection closed by peer")
        return data

    def close(self) -> None:
        self._writer.close()


class _DatagramReceiver(asyncio.DatagramProtocol):
    def __init__(self):
        self.queue: asyncio.Queue[bytes | Exception] = asyncio.Queue()

    def datagram_received(self, data: bytes, addr: Any) -> None:
        self.queue.put_nowait(data)

    def error_received(self, exc: Exception) -> None:
        # ICMP port unreachable surfaces here as ConnectionRefusedError
        self.queue.put_nowait(exc)


class UdpConnection(DialedConnection):
    def __init__(self, host: str, port: str, transport: asyncio.DatagramTransport, protocol: _DatagramReceiver):
        super().__init__(host, port)
        self._transport = transport
        self._protocol = protocol

    async def send(self, data: bytes) -> None:
        self._transport.sendto(data)

    async def recv(self, timeout: float) -> bytes:
        item = await asyncio.wait_for(self._protocol.queue.get(), timeout=timeout)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self) -> None:
        self._transport.close()


Dialer = Callable[[str, str, NetworkProtocol, float], Awaitable[DialedConnection]]
OnDialed = Callable[[str, str, DialedConnection, float], Awaitable[list[ProbeResult] | None]]


async def open_connection(host: str, port: str, protocol: NetworkProtocol, timeout: float) -> DialedConnection:
    """Default dialer. A UDP "dial" only binds a connected socket; liveness is
    decided by whatever the hook reads back."""
    if protocol == NetworkProtocol.TCP:
        reader, writer = await asyncio.wait_for(asyncio.open_connection(host, int(port)), timeout=timeout)
        return TcpConnection(host, port, reader, writer)

    loop = asyncio.get_running_loop()
    transport, receiver = await asyncio.wait_for(
        loop.create_datagram_endpoint(_DatagramReceiver, remote_addr=(host, int(port))),
        timeout=timeout,
    )
    return UdpConnection(host, port, transport, receiver)


def parse_subnets(subnets: Iterable[str]) -> list[IPNetwork]:
    """Parses CIDR strings. Raises ConfigurationError on the first invalid entry."""
    networks = []
    for subnet in subnets:
        subnet = subnet.strip()
        if not subnet:
            continue
        try:
            networks.append(ipaddress.ip_network(subnet, strict=False))
        except ValueError as e:
            raise ConfigurationError(f"Invalid subnet {subnet!r}: {e}") from e
    return networks


def validate_ports(ports: Iterable[str]) -> list[str]:
    valid = []
    for port in ports:
        try:
            number = int(port)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid port {port!r}") from e
        if not 0 < number < 65536:
            raise ConfigurationError(f"Port {port!r} is out of range")
        valid.append(str(number))
    return valid


def _iter_hosts(network: IPNetwork) -> Iterator[str]:
    if network.num_addresses == 1:
        yield str(network.network_address)
        return
    for host in network.hosts():
        yield str(host)


def _all_ports(_host: str, ports: list[str]) -> list[str]:
    return ports


def iter_candidates(networks: Iterable[IPNetwork], ports: list[str], probe_filter: ProbeFilter = _all_ports) -> Iterator[tuple[str, str]]:
    """
    Lazily yields (host, port) for every host of every network crossed with
    the ports `probe_filter` keeps for that host. Memory use does not depend
    on the size of the networks.
    """
    for network in networks:
        for host in _iter_hosts(network):
            try:
                host_ports = list(probe_filter(host, list(ports)))
            except Exception as e:
                logger.warning("Probe filter failed, skipping host", host=host, error=str(e))
                continue
            for port in host_ports:
                yield host, port


def _candidate_upper_bound(networks: list[IPNetwork], ports: list[str]) -> int:
    return sum(network.num_addresses for network in networks) * len(ports)


class ProtocolSpecificDiscovery(abc.ABC):
    """Protocol hooks plugged into the scanner."""

    def probe_filter(self, host: str, ports: list[str]) -> list[str]:
        """Returns the ports to actually scan on `host`; empty skips the host."""
        return ports

    @abc.abstractmethod
    async def on_connection_dialed(self, host: str, port: str, conn: DialedConnection, budget: float) -> list[ProbeResult]:
        """Verifies whether there are devices at the other end of `conn`.
        Must finish within `budget` seconds."""
        pass

    @abc.abstractmethod
    async def convert_probe_result(self, result: ProbeResult) -> DiscoveredRecord:
        """Turns a raw ProbeResult into a DiscoveredRecord."""
        pass


class NetworkScanner:
    """Bounded-concurrency scanner over host:port candidates."""

    def __init__(self, dialer: Dialer | None = None):
        self._dialer = dialer or open_connection
        self.logger = logger.bind(component="NetworkScanner")

    async def scan(
        self,
        cancel_event: asyncio.Event,
        params: ScanParams,
        probe_filter: ProbeFilter | None = None,
        on_dialed: OnDialed | None = None,
    ) -> list[ProbeResult]:
        """
        Scans every host:port candidate and returns the results in completion order.

        Connection refused, timeouts and unreachable hosts are normal "no device"
        outcomes. When `cancel_event` is set the scan stops pulling candidates and
        returns what it has gathered; cancellation itself is not an error.

        Raises:
            ConfigurationError: invalid subnets/ports or a non-positive concurrency
                                limit. Nothing is dialed in that case.
        """
        if params.async_limit <= 0:
            raise ConfigurationError(f"Concurrency limit must be positive, got {params.async_limit}")
        networks = parse_subnets(params.subnets)
        ports = validate_ports(params.ports)

        upper_bound = _candidate_upper_bound(networks, ports)
        worker_count = min(params.async_limit, upper_bound)
        log = self.logger.bind(subnets=params.subnets, ports=ports, protocol=params.network_protocol.value,
                               timeout=params.timeout, workers=worker_count)
        if worker_count == 0:
            log.debug("Nothing to scan.")
            return []

        candidates = iter_candidates(networks, ports, probe_filter or _all_ports)
        results: list[ProbeResult] = []
        loop = asyncio.get_running_loop()
        started = loop.time()

        async def worker() -> None:
            while not cancel_event.is_set():
                try:
                    host, port = next(candidates)
                except StopIteration:
                    return
                results.extend(await self._probe_candidate(host, port, params, on_dialed))

        log.info("Starting network scan.", max_candidates=upper_bound)
        workers = [asyncio.create_task(worker()) for _ in range(worker_count)]
        try:
            await asyncio.gather(*workers)
        finally:
            for task in workers:
                if not task.done():
                    task.cancel()

        log.info("Network scan finished.", results=len(results), cancelled=cancel_event.is_set(),
                 elapsed_seconds=round(loop.time() - started, 3))
        return results

    async def _probe_candidate(self, host: str, port: str, params: ScanParams, on_dialed: OnDialed | None) -> list[ProbeResult]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + params.timeout
        try:
            conn = await self._dialer(host, port, params.network_protocol, params.timeout)
        except (TimeoutError, OSError) as e:
            self.logger.debug("Dial failed", host=host, port=port, error_type=type(e).__name__)
            return []

        try:
            if on_dialed is None:
                return [ProbeResult(host=host, port=port)]
            remaining = deadline - loop.time()
            if remaining <= 0:
                return []
            found = await asyncio.wait_for(on_dialed(host, port, conn, remaining), timeout=remaining + HOOK_GRACE_SECONDS)
            return list(found or [])
        except TimeoutError:
            self.logger.debug("Probe hook exceeded its budget", host=host, port=port)
            return []
        except (CamScoutError, OSError) as e:
            self.logger.debug("Probe hook failed", host=host, port=port, error_type=type(e).__name__, error=str(e))
            return []
        except Exception as e:
            self.logger.warning("Unexpected error in probe hook", host=host, port=port, error_type=type(e).__name__, error=str(e))
            return []
        finally:
            conn.close()

    async def auto_discover(
        self,
        cancel_event: asyncio.Event,
        proto: ProtocolSpecificDiscovery,
        params: ScanParams,
    ) -> list[DiscoveredRecord]:
        """Scans with `proto`'s hooks and converts every result into a DiscoveredRecord.
        Results that cannot be converted are logged and dropped."""
        results = await self.scan(cancel_event, params, proto.probe_filter, proto.on_connection_dialed)
        if not results:
            return []

        converted = await asyncio.gather(
            *(proto.convert_probe_result(result) for result in results),
            return_exceptions=True,
        )
        records = []
        for result, outcome in zip(results, converted):
            if isinstance(outcome, CamScoutError):
                self.logger.warning("Dropping probe result", host=result.host, port=result.port, error=str(outcome))
            elif isinstance(outcome, Exception):
                self.logger.error("Unexpected error converting probe result", host=result.host, port=result.port,
                                  error_type=type(outcome).__name__, error=str(outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                records.append(outcome)
        return records


async def scan(
    cancel_event: asyncio.Event,
    params: ScanParams,
    probe_filter: ProbeFilter | None = None,
    on_dialed: OnDialed | None = None,
    dialer: Dialer | None = None,
) -> list[ProbeResult]:
    """Module level shortcut for NetworkScanner(dialer).scan(...)."""
    return await NetworkScanner(dialer).scan(cancel_event, params, probe_filter, on_dialed)
