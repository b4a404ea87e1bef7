"""
WS-Discovery probe construction and ProbeMatches parsing.

Only the two messages camscout needs are covered: the Probe we send and
the ProbeMatches devices answer with. Both the 2005/04 draft (used by
ONVIF) and the 2009/01 standard namespaces are accepted when parsing.
"""
import uuid
import xml.etree.ElementTree as ET
from collections.abc import Iterable, Mapping
from xml.sax.saxutils import escape, quoteattr

import structlog

from ..exceptions import ProtocolParseError
from ..models.device import EndpointDescriptor

logger = structlog.get_logger(__name__)

SOAP_ENV_NS = "http://www.w3.org/2003/05/soap-envelope"
SOAP11_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
WSA_NS = "http://schemas.xmlsoap.org/ws/2004/08/addressing"
WSD_NS = "http://schemas.xmlsoap.org/ws/2005/04/discovery"
DISCOVERY_TO = "urn:schemas-xmlsoap-org:ws:2005:04:discovery"
PROBE_ACTION = "http://schemas.xmlsoap.org/ws/2005/04/discovery/Probe"

ONVIF_NETWORK_WSDL_NS = "http://www.onvif.org/ver10/network/wsdl"
ONVIF_DEVICE_TYPE = "dn:NetworkVideoTransmitter"

MULTICAST_ADDRESS = "239.255.255.250"
DISCOVERY_PORT = 3702

_ENVELOPE_TAGS = {f"{{{SOAP_ENV_NS}}}Envelope", f"{{{SOAP11_ENV_NS}}}Envelope"}


def new_message_id() -> str:
    """Returns a fresh correlation identifier for a probe."""
    return f"uuid:{uuid.uuid4()}"


def build_probe(
    message_id: str | None = None,
    types: Iterable[str] | None = None,
    scopes: Iterable[str] | None = None,
    namespaces: Mapping[str, str] | None = None,
) -> bytes:
    """
    Builds a SOAP 1.2 WS-Discovery Probe.

    Args:
        message_id: Correlation identifier; a fresh one is generated if omitted.
        types: Service type filter, e.g. ["dn:NetworkVideoTransmitter"].
        scopes: Optional scope filter.
        namespaces: Extra prefix -> namespace declarations needed by `types`,
                    e.g. {"dn": "http://www.onvif.org/ver10/network/wsdl"}.
    """
    message_id = message_id or new_message_id()
    extra_ns = "".join(
        f" xmlns:{prefix}={quoteattr(uri)}" for prefix, uri in (namespaces or {}).items()
    )
    types_xml = ""
    if types:
        types_xml = f"<d:Types>{escape(' '.join(types))}</d:Types>"
    scopes_xml = ""
    if scopes:
        scopes_xml = f"<d:Scopes>{escape(' '.join(scopes))}</d:Scopes>"

    envelope = (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<s:Envelope xmlns:s="{SOAP_ENV_NS}" xmlns:a="{WSA_NS}" xmlns:d="{WSD_NS}"{extra_ns}>'
        "<s:Header>"
        f"<a:Action s:mustUnderstand=\"1\">{PROBE_ACTION}</a:Action>"
        f"<a:MessageID>{escape(message_id)}</a:MessageID>"
        f"<a:To s:mustUnderstand=\"1\">{DISCOVERY_TO}</a:To>"
        "</s:Header>"
        "<s:Body>"
        f"<d:Probe>{types_xml}{scopes_xml}</d:Probe>"
        "</s:Body>"
        "</s:Envelope>"
    )
    return envelope.encode("utf-8")


def build_onvif_probe(message_id: str | None = None) -> bytes:
    """Probe filtered to ONVIF network video transmitters."""
    return build_probe(
        message_id,
        types=[ONVIF_DEVICE_TYPE],
        namespaces={"dn": ONVIF_NETWORK_WSDL_NS},
    )


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child(element: ET.Element, name: str) -> ET.Element | None:
    for child in element:
        if _local(child.tag) == name:
            return child
    return None


def _text(element: ET.Element | None) -> str:
    if element is None or element.text is None:
        return ""
    return element.text.strip()


def parse_response(payload: bytes, responder: str | None = None) -> list[EndpointDescriptor]:
    """
    Parses a single ProbeMatches payload into endpoint descriptors.

    Raises:
        ProtocolParseError: if the payload is not a SOAP envelope carrying ProbeMatches.
    """
    try:
        root = ET.fromstring(payload)
    except ET.ParseError as e:
        raise ProtocolParseError(f"Malformed discovery payload: {e}", payload=payload) from e

    if root.tag not in _ENVELOPE_TAGS:
        raise ProtocolParseError(f"Unexpected root element {_local(root.tag)!r}, expected SOAP Envelope", payload=payload)

    header = _child(root, "Header")
    body = _child(root, "Body")
    if body is None:
        raise ProtocolParseError("SOAP envelope has no Body", payload=payload)

    probe_matches = _child(body, "ProbeMatches")
    if probe_matches is None:
        raise ProtocolParseError("SOAP Body does not contain ProbeMatches", payload=payload)

    relates_to = _text(_child(header, "RelatesTo")) if header is not None else ""

    descriptors = []
    for match in probe_matches:
        if _local(match.tag) != "ProbeMatch":
            continue
        endpoint_reference = _child(match, "EndpointReference")
        endpoint_ref = _text(_child(endpoint_reference, "Address")) if endpoint_reference is not None else ""

        metadata_version: int | None = None
        raw_version = _text(_child(match, "MetadataVersion"))
        if raw_version:
            try:
                metadata_version = int(raw_version)
            except ValueError:
                logger.debug("Ignoring non-numeric MetadataVersion", value=raw_version, responder=responder)

        descriptors.append(EndpointDescriptor(
            endpoint_ref=endpoint_ref or None,
            xaddrs=_text(_child(match, "XAddrs")).split(),
            types=_text(_child(match, "Types")).split(),
            scopes=_text(_child(match, "Scopes")).split(),
            metadata_version=metadata_version,
            responder=responder,
            relates_to=relates_to or None,
        ))
    return descriptors


def parse_responses(
    payloads: Iterable[bytes | tuple[bytes, str | None]],
    relates_to: str | None = None,
) -> list[EndpointDescriptor]:
    """
    Parses every payload independently. A malformed payload is skipped and
    logged; it never aborts parsing of the remaining payloads.

    Args:
        payloads: Raw payloads, optionally paired with the responder address.
        relates_to: If given, responses correlated to a different probe are skipped.
    """
    descriptors: list[EndpointDescriptor] = []
    for index, item in enumerate(payloads):
        if isinstance(item, tuple):
            payload, responder = item
        else:
            payload, responder = item, None
        try:
            parsed = parse_response(payload, responder=responder)
        except ProtocolParseError as e:
            logger.warning("Skipping malformed discovery response", index=index, responder=responder, error=str(e))
            continue

        for descriptor in parsed:
            if relates_to and descriptor.relates_to and descriptor.relates_to != relates_to:
                logger.debug("Skipping response for a different probe", responder=responder,
                             expected=relates_to, received=descriptor.relates_to)
                continue
            descriptors.append(descriptor)
    return descriptors
