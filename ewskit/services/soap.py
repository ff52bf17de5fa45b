"""SOAP envelope construction and parsing."""

import logging
from typing import Callable, Optional

from ..core.version import ExchangeVersion
from ..core.xml import NodeType, XmlNamespace, XmlReader, XmlWriter
from ..exceptions import SerializationError, ServiceRequestError
from .response import ServerVersionInfo

log = logging.getLogger(__name__)


def write_envelope(
    write_body: Callable[[XmlWriter], None],
    version: ExchangeVersion,
    time_zone=None
) -> bytes:
    """Serialize one request envelope with a RequestServerVersion header."""
    writer = XmlWriter(time_zone)
    writer.write_start_element(XmlNamespace.SOAP, "Envelope")
    writer.write_start_element(XmlNamespace.SOAP, "Header")
    writer.write_start_element(XmlNamespace.TYPES, "RequestServerVersion")
    writer.write_attribute_value("Version", version.value)
    writer.write_end_element()
    writer.write_end_element()
    writer.write_start_element(XmlNamespace.SOAP, "Body")
    write_body(writer)
    writer.write_end_element()
    writer.write_end_element()
    return writer.to_bytes()


def _read_server_version_info(reader: XmlReader) -> ServerVersionInfo:
    def number(name):
        return reader.get_attribute(name, int, default=0)

    info = ServerVersionInfo(
        major_version=number("MajorVersion"),
        minor_version=number("MinorVersion"),
        major_build_number=number("MajorBuildNumber"),
        minor_build_number=number("MinorBuildNumber"),
        version=reader.get_attribute("Version"),
    )
    reader.skip_current_element()
    return info


def _read_header(reader: XmlReader) -> Optional[ServerVersionInfo]:
    info = None
    depth = reader.depth
    while True:
        node_type = reader.read()
        if node_type is NodeType.END_ELEMENT and reader.depth == depth:
            return info
        if node_type is NodeType.END_DOCUMENT:
            raise SerializationError("Unexpected end of document inside the SOAP header")
        if node_type is NodeType.START_ELEMENT:
            if reader.local_name == "ServerVersionInfo":
                info = _read_server_version_info(reader)
            else:
                reader.skip_current_element()


def read_fault(reader: XmlReader) -> ServiceRequestError:
    """Read a SOAP Fault element into the error it represents."""
    fault_code = fault_string = response_code = message = None
    depth = reader.depth
    while True:
        node_type = reader.read()
        if node_type is NodeType.END_ELEMENT and reader.depth == depth:
            break
        if node_type is NodeType.END_DOCUMENT:
            raise SerializationError("Unexpected end of document inside a SOAP fault")
        if node_type is not NodeType.START_ELEMENT:
            continue
        name = reader.local_name
        if name == "faultcode":
            fault_code = reader.read_element_value()
        elif name == "faultstring":
            fault_string = reader.read_element_value()
        elif name == "ResponseCode":
            response_code = reader.read_element_value()
        elif name == "Message":
            message = reader.read_element_value()
        elif name != "detail":
            reader.skip_current_element()

    text = message or fault_string or "SOAP fault"
    if response_code:
        text = f"{response_code}: {text}"
    return ServiceRequestError(text, response_code=response_code, fault_code=fault_code)


def read_envelope_start(reader: XmlReader) -> Optional[ServerVersionInfo]:
    """
    Read up to the first element inside the SOAP body.

    Leaves the cursor on the start tag of the response element and returns
    the server version from the header, if any. A SOAP fault is raised as
    :class:`ServiceRequestError`.
    """
    reader.read_start_element(XmlNamespace.SOAP, "Envelope")
    info = None
    reader.read()
    if reader.is_start_element(XmlNamespace.SOAP, "Header"):
        info = _read_header(reader)
        reader.read()
    reader.ensure_current_node_is_start_element(XmlNamespace.SOAP, "Body")
    reader.read()
    if reader.is_start_element(XmlNamespace.SOAP, "Fault"):
        raise read_fault(reader)
    reader.ensure_current_node_is_start_element()
    return info


def read_envelope_end(reader: XmlReader) -> None:
    """Consume the closing Body and Envelope tags after the response element."""
    reader.read_end_element(XmlNamespace.SOAP, "Body")
    reader.read_end_element(XmlNamespace.SOAP, "Envelope")
