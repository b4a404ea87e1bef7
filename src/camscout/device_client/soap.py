"""
SOAP 1.2 envelopes for the ONVIF device service, including the
WS-Security UsernameToken header used by "usernametoken" auth mode.
"""
import base64
import hashlib
import os
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from xml.sax.saxutils import escape

from ..models.common import Credentials
from ..models.device import DeviceInformation
from .exceptions import DeviceAuthError, DeviceProtocolError

SOAP_ENV_NS = "http://www.w3.org/2003/05/soap-envelope"
DEVICE_WSDL_NS = "http://www.onvif.org/ver10/device/wsdl"
WSSE_NS = "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-secext-1.0.xsd"
WSU_NS = "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-utility-1.0.xsd"
PASSWORD_DIGEST_TYPE = "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-username-token-profile-1.0#PasswordDigest"
NONCE_ENCODING = "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-soap-message-security-1.0#Base64Binary"

GET_DEVICE_INFORMATION = f'<tds:GetDeviceInformation xmlns:tds="{DEVICE_WSDL_NS}"/>'
GET_SYSTEM_DATE_AND_TIME = f'<tds:GetSystemDateAndTime xmlns:tds="{DEVICE_WSDL_NS}"/>'

_AUTH_FAULT_SUBCODES = {"NotAuthorized", "FailedAuthentication", "InvalidSecurity"}


def password_digest(nonce: bytes, created: str, password: str) -> str:
    """Base64(SHA1(nonce + created + password)) as defined by the UsernameToken profile."""
    digest = hashlib.sha1(nonce + created.encode("utf-8") + password.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


def build_username_token(credentials: Credentials, nonce: bytes | None = None, created: datetime | None = None) -> str:
    nonce = nonce if nonce is not None else os.urandom(16)
    created_at = (created or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return (
        f'<wsse:Security s:mustUnderstand="1" xmlns:wsse="{WSSE_NS}" xmlns:wsu="{WSU_NS}">'
        "<wsse:UsernameToken>"
        f"<wsse:Username>{escape(credentials.username)}</wsse:Username>"
        f'<wsse:Password Type="{PASSWORD_DIGEST_TYPE}">{password_digest(nonce, created_at, credentials.password)}</wsse:Password>'
        f'<wsse:Nonce EncodingType="{NONCE_ENCODING}">{base64.b64encode(nonce).decode("ascii")}</wsse:Nonce>'
        f"<wsu:Created>{created_at}</wsu:Created>"
        "</wsse:UsernameToken>"
        "</wsse:Security>"
    )


def build_envelope(operation_xml: str, credentials: Credentials | None = None) -> bytes:
    """Wraps an operation in a SOAP 1.2 envelope, adding a UsernameToken header if credentials are given."""
    header = f"<s:Header>{build_username_token(credentials)}</s:Header>" if credentials else ""
    envelope = (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<s:Envelope xmlns:s="{SOAP_ENV_NS}">'
        f"{header}"
        f"<s:Body>{operation_xml}</s:Body>"
        "</s:Envelope>"
    )
    return envelope.encode("utf-8")


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _find_local(element: ET.Element, name: str) -> ET.Element | None:
    for child in element.iter():
        if _local(child.tag) == name:
            return child
    return None


def parse_body(payload: bytes) -> ET.Element:
    """
    Returns the first element of the SOAP Body.

    Raises:
        DeviceAuthError: for authentication faults.
        DeviceProtocolError: for any other fault or an unparsable payload.
    """
    try:
        root = ET.fromstring(payload)
    except ET.ParseError as e:
        raise DeviceProtocolError(f"Unparsable SOAP response: {e}") from e

    body = _find_local(root, "Body")
    if body is None or len(body) == 0:
        raise DeviceProtocolError("SOAP response has an empty or missing Body")

    content = body[0]
    if _local(content.tag) == "Fault":
        raise_for_fault(content)
    return content


def raise_for_fault(fault: ET.Element) -> None:
    code = ""
    code_element = _find_local(fault, "Code")
    if code_element is not None:
        for child in code_element:
            if _local(child.tag) == "Value" and child.text:
                code = child.text.strip()
                break
    subcode_element = _find_local(fault, "Subcode")
    subcode = ""
    if subcode_element is not None:
        value = _find_local(subcode_element, "Value")
        if value is not None and value.text:
            subcode = value.text.strip().rsplit(":", 1)[-1]
    reason_element = _find_local(fault, "Text")
    reason = reason_element.text.strip() if reason_element is not None and reason_element.text else "SOAP fault"

    if subcode in _AUTH_FAULT_SUBCODES:
        raise DeviceAuthError(reason, fault_code=code or None, fault_subcode=subcode)
    raise DeviceProtocolError(reason, fault_code=code or None, fault_subcode=subcode or None)


def parse_device_information(payload: bytes) -> DeviceInformation:
    content = parse_body(payload)
    if _local(content.tag) != "GetDeviceInformationResponse":
        raise DeviceProtocolError(f"Unexpected response element {_local(content.tag)!r}")

    fields = {_local(child.tag): (child.text or "").strip() for child in content}
    return DeviceInformation(
        manufacturer=fields.get("Manufacturer", ""),
        model=fields.get("Model", ""),
        firmware_version=fields.get("FirmwareVersion", ""),
        serial_number=fields.get("SerialNumber", ""),
        hardware_id=fields.get("HardwareId", ""),
    )
