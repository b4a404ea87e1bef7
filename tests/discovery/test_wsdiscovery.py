"""Tests for the WS-Discovery probe builder and response parser."""

import xml.etree.ElementTree as ET

import pytest

from camscout.discovery.wsdiscovery import (
    ONVIF_DEVICE_TYPE,
    PROBE_ACTION,
    WSA_NS,
    WSD_NS,
    build_onvif_probe,
    build_probe,
    new_message_id,
    parse_response,
    parse_responses,
)
from camscout.exceptions import ProtocolParseError

PROBE_MATCHES = """<?xml version="1.0" encoding="UTF-8"?>
<SOAP-ENV:Envelope xmlns:SOAP-ENV="http://www.w3.org/2003/05/soap-envelope"
    xmlns:wsa="http://schemas.xmlsoap.org/ws/2004/08/addressing"
    xmlns:d="http://schemas.xmlsoap.org/ws/2005/04/discovery"
    xmlns:dn="http://www.onvif.org/ver10/network/wsdl">
  <SOAP-ENV:Header>
    <wsa:MessageID>uuid:reply-1</wsa:MessageID>
    <wsa:RelatesTo>{relates_to}</wsa:RelatesTo>
    <wsa:Action>http://schemas.xmlsoap.org/ws/2005/04/discovery/ProbeMatches</wsa:Action>
  </SOAP-ENV:Header>
  <SOAP-ENV:Body>
    <d:ProbeMatches>
      <d:ProbeMatch>
        <wsa:EndpointReference><wsa:Address>{endpoint_ref}</wsa:Address></wsa:EndpointReference>
        <d:Types>dn:NetworkVideoTransmitter</d:Types>
        <d:Scopes>onvif://www.onvif.org/type/video_encoder onvif://www.onvif.org/hardware/X1</d:Scopes>
        <d:XAddrs>{xaddrs}</d:XAddrs>
        <d:MetadataVersion>10</d:MetadataVersion>
      </d:ProbeMatch>
    </d:ProbeMatches>
  </SOAP-ENV:Body>
</SOAP-ENV:Envelope>"""


def probe_matches(endpoint_ref="urn:uuid:cam-1", xaddrs="http://10.0.0.2/onvif/device_service",
                  relates_to="uuid:probe-1") -> bytes:
    return PROBE_MATCHES.format(endpoint_ref=endpoint_ref, xaddrs=xaddrs, relates_to=relates_to).encode()


def test_new_message_id_is_unique_uuid_urn():
    first, second = new_message_id(), new_message_id()
    assert first.startswith("uuid:")
    assert first != second


def test_build_probe_is_well_formed_soap12():
    payload = build_probe("uuid:probe-1", types=["dn:NetworkVideoTransmitter"],
                          namespaces={"dn": "http://www.onvif.org/ver10/network/wsdl"})
    root = ET.fromstring(payload)

    assert root.tag == "{http://www.w3.org/2003/05/soap-envelope}Envelope"
    assert root.find(f".//{{{WSA_NS}}}MessageID").text == "uuid:probe-1"
    assert root.find(f".//{{{WSA_NS}}}Action").text == PROBE_ACTION
    assert root.find(f".//{{{WSD_NS}}}Types").text == "dn:NetworkVideoTransmitter"
    assert b'xmlns:dn="http://www.onvif.org/ver10/network/wsdl"' in payload


def test_build_probe_without_filters_has_empty_probe():
    root = ET.fromstring(build_probe())
    probe = root.find(f".//{{{WSD_NS}}}Probe")
    assert probe is not None
    assert len(probe) == 0


def test_build_probe_escapes_scopes():
    root = ET.fromstring(build_probe(scopes=["onvif://x?a=1&b=2"]))
    assert root.find(f".//{{{WSD_NS}}}Scopes").text == "onvif://x?a=1&b=2"


def test_build_onvif_probe_filters_network_video_transmitters():
    root = ET.fromstring(build_onvif_probe("uuid:p"))
    assert root.find(f".//{{{WSD_NS}}}Types").text == ONVIF_DEVICE_TYPE


def test_parse_response_extracts_descriptor():
    [descriptor] = parse_response(probe_matches(xaddrs="http://10.0.0.2:8080/onvif/device_service"), responder="10.0.0.2")

    assert descriptor.endpoint_ref == "urn:uuid:cam-1"
    assert descriptor.xaddrs == ["http://10.0.0.2:8080/onvif/device_service"]
    assert descriptor.types == ["dn:NetworkVideoTransmitter"]
    assert len(descriptor.scopes) == 2
    assert descriptor.metadata_version == 10
    assert descriptor.relates_to == "uuid:probe-1"
    assert descriptor.responder == "10.0.0.2"
    assert (descriptor.address, descriptor.port) == ("10.0.0.2", "8080")


def test_parse_response_defaults_port_to_80():
    [descriptor] = parse_response(probe_matches())
    assert descriptor.port == "80"


def test_parse_response_keeps_descriptor_without_identity():
    [descriptor] = parse_response(probe_matches(endpoint_ref=""))
    assert descriptor.endpoint_ref is None


@pytest.mark.parametrize("payload", [
    b"not xml at all",
    b"<html><body>hello</body></html>",
    b'<s:Envelope xmlns:s="http://www.w3.org/2003/05/soap-envelope"/>',
    b'<s:Envelope xmlns:s="http://www.w3.org/2003/05/soap-envelope"><s:Body><Other/></s:Body></s:Envelope>',
])
def test_parse_response_rejects_malformed_payloads(payload):
    with pytest.raises(ProtocolParseError):
        parse_response(payload)


def test_parse_responses_skips_only_malformed_payload():
    descriptors = parse_responses([
        probe_matches(endpoint_ref="urn:uuid:a"),
        b"<broken",
        (probe_matches(endpoint_ref="urn:uuid:b"), "10.0.0.3"),
    ])
    assert [d.endpoint_ref for d in descriptors] == ["urn:uuid:a", "urn:uuid:b"]
    assert descriptors[1].responder == "10.0.0.3"


def test_parse_responses_drops_answers_to_other_probes():
    descriptors = parse_responses(
        [probe_matches(endpoint_ref="urn:uuid:a", relates_to="uuid:mine"),
         probe_matches(endpoint_ref="urn:uuid:b", relates_to="uuid:someone-else")],
        relates_to="uuid:mine",
    )
    assert [d.endpoint_ref for d in descriptors] == ["urn:uuid:a"]
