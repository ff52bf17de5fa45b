"""Request driver: builds one envelope, sends it and reads the results back."""

import logging
from typing import List, Optional

from ..core.version import ExchangeVersion
from ..core.xml import NodeType, XmlNamespace, XmlReader, XmlWriter
from ..exceptions import ProtocolVersionError, SerializationError, ServiceRequestError, ValidationError
from .response import ServiceErrorHandling, ServiceResponse, ServiceResponseCollection
from .soap import read_envelope_end, read_envelope_start, write_envelope

# HTTP statuses whose body is still a SOAP envelope (500 carries faults)
_SOAP_STATUSES = (200, 500)


class ServiceRequest:
    """
    Base class of one SOAP call.

    Subclasses name the request/response elements, write the request body
    and read the response element. ``service`` is the facade that supplies
    the transport, the requested server version and tracing.
    """

    XML_ELEMENT_NAME: str = None
    RESPONSE_XML_ELEMENT_NAME: str = None
    MINIMUM_VERSION = ExchangeVersion.EXCHANGE_2007_SP1

    def __init__(self, service):
        self.service = service
        self.logger = logging.getLogger(__name__)
        self.server_version_info = None

    # Validation

    def validate(self) -> None:
        """Check everything that can be checked locally. Runs before any I/O."""
        requested = self.service.requested_server_version
        if requested < self.MINIMUM_VERSION:
            raise ProtocolVersionError(
                f"The {self.XML_ELEMENT_NAME} operation is only valid for {self.MINIMUM_VERSION.value} "
                f"or later versions.",
                required_version=self.MINIMUM_VERSION,
                requested_version=requested,
            )

    # Writing

    def write_attributes_to_xml(self, writer: XmlWriter) -> None:
        pass

    def write_elements_to_xml(self, writer: XmlWriter) -> None:
        raise NotImplementedError

    def write_to_xml(self, writer: XmlWriter) -> None:
        writer.write_start_element(XmlNamespace.MESSAGES, self.XML_ELEMENT_NAME)
        self.write_attributes_to_xml(writer)
        self.write_elements_to_xml(writer)
        writer.write_end_element()

    def build_request(self) -> bytes:
        return write_envelope(self.write_to_xml, self.service.requested_server_version, self.service.time_zone)

    # Sending

    def _send(self, streaming: bool = False, timeout: Optional[float] = None):
        body = self.build_request()
        self.service.trace_request(self.XML_ELEMENT_NAME, body)
        self.logger.debug(f"Sending {self.XML_ELEMENT_NAME} request")
        response = self.service.transport.send(body, streaming=streaming, timeout=timeout)
        if response.status_code not in _SOAP_STATUSES:
            response.close()
            raise ServiceRequestError(
                f"The {self.XML_ELEMENT_NAME} request failed with HTTP status {response.status_code}"
            )
        return response

    def read_envelope(self, reader: XmlReader) -> None:
        """Parse one response envelope around :meth:`read_response`."""
        info = read_envelope_start(reader)
        if info is not None:
            self.server_version_info = info
        reader.ensure_current_node_is_start_element(XmlNamespace.MESSAGES, self.RESPONSE_XML_ELEMENT_NAME)
        self.read_response(reader)
        reader.ensure_current_node_is_end_element(XmlNamespace.MESSAGES, self.RESPONSE_XML_ELEMENT_NAME)
        read_envelope_end(reader)

    def read_response(self, reader: XmlReader) -> None:
        raise NotImplementedError

    def _execute_once(self) -> None:
        response = self._send()
        try:
            content = response.content
        finally:
            response.close()
        self.service.trace_response(self.RESPONSE_XML_ELEMENT_NAME, content, response.headers)
        self.read_envelope(XmlReader(content))


class MultiResponseServiceRequest(ServiceRequest):
    """
    A call carrying several operations of the same kind.

    The response holds exactly one response message per operation, in the
    order the operations were written. ``error_handling`` decides whether an
    error result raises (:attr:`ServiceErrorHandling.THROW_ON_ERROR`) or is
    returned with the others.
    """

    RESPONSE_MESSAGE_XML_ELEMENT_NAME: str = None

    def __init__(self, service, error_handling: ServiceErrorHandling = ServiceErrorHandling.THROW_ON_ERROR):
        super().__init__(service)
        self.error_handling = error_handling
        self.responses: Optional[ServiceResponseCollection] = None

    def expected_response_message_count(self) -> int:
        raise NotImplementedError

    def create_service_response(self, index: int) -> ServiceResponse:
        return ServiceResponse()

    def read_payload(self, response: ServiceResponse, reader: XmlReader, index: int) -> bool:
        """Read one payload element of the response at ``index``; False to skip it."""
        return False

    def execute(self) -> ServiceResponseCollection:
        self.validate()
        self._execute_once()
        responses = self.responses
        if self.error_handling is ServiceErrorHandling.THROW_ON_ERROR:
            for response in responses:
                response.throw_if_necessary()
        return responses

    def read_response(self, reader: XmlReader) -> None:
        self.responses = self.read_response_messages(reader)

    def read_response_messages(self, reader: XmlReader) -> ServiceResponseCollection:
        reader.read_start_element(XmlNamespace.MESSAGES, "ResponseMessages")
        depth = reader.depth
        expected = self.expected_response_message_count()
        responses = ServiceResponseCollection()

        while True:
            node_type = reader.read()
            if node_type is NodeType.END_ELEMENT and reader.depth == depth:
                break
            if node_type is NodeType.END_DOCUMENT:
                raise SerializationError("Unexpected end of document inside ResponseMessages")
            if node_type is not NodeType.START_ELEMENT:
                continue
            if reader.local_name != self.RESPONSE_MESSAGE_XML_ELEMENT_NAME:
                reader.skip_current_element()
                continue
            index = len(responses)
            if index >= expected:
                raise ServiceRequestError(
                    f"The {self.XML_ELEMENT_NAME} response contains more results than the {expected} expected"
                )
            response = self.create_service_response(index)
            response.load_from_xml(
                reader,
                self.RESPONSE_MESSAGE_XML_ELEMENT_NAME,
                lambda r, rd, i=index: self.read_payload(r, rd, i),
            )
            responses.add(response)

        if len(responses) != expected:
            raise ServiceRequestError(
                f"The {self.XML_ELEMENT_NAME} response contains {len(responses)} results, expected {expected}"
            )
        # Closing tag of the response element
        reader.read_end_element(XmlNamespace.MESSAGES, self.RESPONSE_XML_ELEMENT_NAME)
        return responses


def ensure_not_empty(values: List, name: str) -> None:
    if not values:
        raise ValidationError(f"{name} cannot be empty.")
