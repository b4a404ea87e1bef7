"""Network interface helpers for camscout."""

import ipaddress
from typing import List, Optional

import netifaces
import structlog

logger = structlog.get_logger(__name__)


def get_network_interfaces(skip_loopback: bool = True) -> List[str]:
    """Get list of network interfaces.

    Args:
        skip_loopback: Whether to exclude loopback interfaces.

    Returns:
        List[str]: List of interface names.
    """
    try:
        interfaces = netifaces.interfaces()
    except (OSError, ValueError) as e:
        logger.warning("netifaces interface enumeration failed", error=str(e))
        return []
    if skip_loopback:
        # 'lo' on Unix, 'Loopback ...' on Windows
        interfaces = [iface for iface in interfaces if not iface.lower().startswith(("lo", "loopback"))]
    return interfaces


def _ipv4_entries(interface: str) -> List[dict]:
    try:
        addr_info = netifaces.ifaddresses(interface)
    except (ValueError, KeyError, OSError) as e:
        logger.debug("Failed to get addresses for interface", interface=interface, error=str(e))
        return []
    return [entry for entry in addr_info.get(netifaces.AF_INET, []) if entry.get("addr")]


def get_interface_ipv4(interface: str) -> Optional[str]:
    """Returns the first IPv4 address of `interface`, or None if it has none."""
    entries = _ipv4_entries(interface)
    return entries[0]["addr"] if entries else None


def get_interface_subnets(interface: str) -> List[str]:
    """Returns the IPv4 subnets (CIDR) `interface` is attached to."""
    subnets = []
    for entry in _ipv4_entries(interface):
        netmask = entry.get("netmask")
        if not netmask:
            continue
        try:
            network = ipaddress.IPv4Network(f"{entry['addr']}/{netmask}", strict=False)
        except ValueError as e:
            logger.debug("Ignoring address with unusable netmask", interface=interface, addr=entry["addr"], error=str(e))
            continue
        if network.is_loopback or network.is_link_local:
            continue
        cidr = str(network)
        if cidr not in subnets:
            subnets.append(cidr)
    return subnets


def infer_local_subnets(interface: Optional[str] = None) -> List[str]:
    """
    Subnets to scan when none are configured: those of `interface` if given,
    otherwise of every active non-loopback interface.
    """
    interfaces = [interface] if interface else get_network_interfaces(skip_loopback=True)
    subnets: List[str] = []
    for iface in interfaces:
        for cidr in get_interface_subnets(iface):
            if cidr not in subnets:
                subnets.append(cidr)
    logger.info("Inferred local subnets", interfaces=interfaces, subnets=subnets)
    return subnets
