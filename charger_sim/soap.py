"""SOAP 1.2 envelopes for the OCPP 1.5 document transport.

Payload dicts map onto elements: dict keys become child elements, lists
become repeated elements and scalars become text. Parsing reverses this;
(parent, child) pairs in ``REPEATED_ELEMENTS`` always come back as lists,
since the contract declares them as sequences even when only one is present.
"""

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from defusedxml import DefusedXmlException
from defusedxml import ElementTree as SafeET

from .bridge import Fault

SOAP_NS = "http://www.w3.org/2003/05/soap-envelope"
WSA_NS = "http://www.w3.org/2005/08/addressing"
CP_NS = "urn://Ocpp/Cp/2012/06/"
CS_NS = "urn://Ocpp/Cs/2012/06/"
ANONYMOUS = "http://www.w3.org/2005/08/addressing/anonymous"

CONTENT_TYPE = "application/soap+xml; charset=utf-8"

REPEATED_ELEMENTS = {
    ("getConfigurationRequest", "key"),
    ("getConfigurationResponse", "configurationKey"),
    ("getConfigurationResponse", "unknownKey"),
    ("meterValuesRequest", "values"),
    ("values", "values"),
}

ET.register_namespace("soap", SOAP_NS)
ET.register_namespace("a", WSA_NS)


class SoapFault(Exception):
    def __init__(self, fault: Fault):
        super().__init__(f"{fault.code} {fault.subcode}: {fault.reason}")
        self.fault = fault


@dataclass
class Envelope:
    headers: Dict[str, str] = field(default_factory=dict)
    body: Dict[str, Any] = field(default_factory=dict)
    fault: Optional[Fault] = None

    @property
    def body_name(self) -> str:
        if not self.body:
            raise ValueError("SOAP envelope carries no operation")
        return next(iter(self.body))


def _q(ns: str, name: str) -> str:
    return f"{{{ns}}}{name}"


def local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def append_value(parent: ET.Element, name: str, value: Any, ns: str) -> None:
    if value is None:
        return
    if isinstance(value, (list, tuple)):
        for item in value:
            append_value(parent, name, item, ns)
        return
    child = ET.SubElement(parent, _q(ns, name))
    if isinstance(value, dict):
        for key, item in value.items():
            append_value(child, key, item, ns)
    else:
        child.text = _text(value)


def element_value(element: ET.Element) -> Any:
    children = list(element)
    if not children:
        return element.text or ""
    parent = local_name(element.tag)
    value: Dict[str, Any] = {}
    for child in children:
        name = local_name(child.tag)
        item = element_value(child)
        if name in value:
            if not isinstance(value[name], list):
                value[name] = [value[name]]
            value[name].append(item)
        elif (parent, name) in REPEATED_ELEMENTS:
            value[name] = [item]
        else:
            value[name] = item
    return value


class HeaderBuilder:
    """Accumulates SOAP header elements between two calls."""

    def __init__(self):
        self.elements: List[ET.Element] = []

    def clear(self) -> None:
        self.elements = []

    def add(self, element: ET.Element) -> None:
        self.elements.append(element)

    def add_text(self, ns: str, name: str, text: str, must_understand: bool = False) -> ET.Element:
        element = ET.Element(_q(ns, name))
        element.text = text
        if must_understand:
            element.set(_q(SOAP_NS, "mustUnderstand"), "true")
        self.add(element)
        return element

    def add_address(self, name: str, address: str) -> ET.Element:
        element = ET.Element(_q(WSA_NS, name))
        ET.SubElement(element, _q(WSA_NS, "Address")).text = address
        self.add(element)
        return element


def build_envelope(body: Dict[str, Any], ns: str, headers: Optional[List[ET.Element]] = None) -> bytes:
    envelope = ET.Element(_q(SOAP_NS, "Envelope"))
    header = ET.SubElement(envelope, _q(SOAP_NS, "Header"))
    for element in headers or []:
        header.append(element)
    body_element = ET.SubElement(envelope, _q(SOAP_NS, "Body"))
    for name, value in body.items():
        if value is None or value == {}:
            ET.SubElement(body_element, _q(ns, name))
        else:
            append_value(body_element, name, value, ns)
    return ET.tostring(envelope, encoding="utf-8", xml_declaration=True)


def build_fault(fault: Fault, headers: Optional[List[ET.Element]] = None) -> bytes:
    envelope = ET.Element(_q(SOAP_NS, "Envelope"))
    header = ET.SubElement(envelope, _q(SOAP_NS, "Header"))
    for element in headers or []:
        header.append(element)
    body = ET.SubElement(envelope, _q(SOAP_NS, "Body"))
    fault_element = ET.SubElement(body, _q(SOAP_NS, "Fault"))
    code = ET.SubElement(fault_element, _q(SOAP_NS, "Code"))
    ET.SubElement(code, _q(SOAP_NS, "Value")).text = fault.code
    subcode = ET.SubElement(code, _q(SOAP_NS, "Subcode"))
    ET.SubElement(subcode, _q(SOAP_NS, "Value")).text = fault.subcode
    reason = ET.SubElement(fault_element, _q(SOAP_NS, "Reason"))
    text = ET.SubElement(reason, _q(SOAP_NS, "Text"))
    text.set("{http://www.w3.org/XML/1998/namespace}lang", "en")
    text.text = fault.reason
    return ET.tostring(envelope, encoding="utf-8", xml_declaration=True)


def _parse_fault(element: ET.Element) -> Fault:
    def find(path: str) -> str:
        found = element.find(path, {"soap": SOAP_NS})
        return (found.text or "").strip() if found is not None else ""

    return Fault(
        code=find("soap:Code/soap:Value"),
        subcode=find("soap:Code/soap:Subcode/soap:Value"),
        reason=find("soap:Reason/soap:Text"),
    )


def _fromstring(data: bytes) -> ET.Element:
    # SOAP 1.2 forbids DTDs in envelopes
    return SafeET.fromstring(data, forbid_dtd=True)


def parse_envelope(data: bytes) -> Envelope:
    """Parse a SOAP 1.2 envelope. Raises ``ValueError`` on anything malformed."""
    try:
        root = _fromstring(data)
    except ET.ParseError as e:
        raise ValueError(f"malformed XML: {e}") from e
    except DefusedXmlException as e:
        raise ValueError(f"forbidden XML construct: {e!r}") from e
    if root.tag != _q(SOAP_NS, "Envelope"):
        raise ValueError(f"not a SOAP 1.2 envelope: {root.tag}")

    envelope = Envelope()
    header = root.find(_q(SOAP_NS, "Header"))
    if header is not None:
        for element in header:
            address = element.find(_q(WSA_NS, "Address"))
            text = address.text if address is not None else element.text
            envelope.headers[local_name(element.tag)] = (text or "").strip()

    body = root.find(_q(SOAP_NS, "Body"))
    if body is None or len(body) == 0:
        raise ValueError("SOAP envelope has no body")
    payload = body[0]
    if payload.tag == _q(SOAP_NS, "Fault"):
        envelope.fault = _parse_fault(payload)
        return envelope
    value = element_value(payload)
    envelope.body = {local_name(payload.tag): value if isinstance(value, dict) else {}}
    return envelope


def pretty(data: bytes) -> str:
    try:
        root = _fromstring(data)
    except (ET.ParseError, DefusedXmlException):
        return data.decode("utf-8", errors="replace")
    ET.indent(root)
    return "\n" + ET.tostring(root, encoding="unicode")
