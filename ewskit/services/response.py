"""Per-operation results of a multi-response call."""

from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

from pydantic import BaseModel, Field

from ..exceptions import RemoteOperationError, SerializationError
from ..core.xml import NodeType, XmlNamespace, XmlReader


class ServiceResult(str, Enum):
    """ResponseClass of one response message."""
    SUCCESS = "Success"
    WARNING = "Warning"
    ERROR = "Error"


class ServiceErrorHandling(str, Enum):
    """What a multi-response call does with error results."""
    THROW_ON_ERROR = "ThrowOnError"  # raise for the first error result
    RETURN_ERRORS = "ReturnErrors"  # hand every result back to the caller


class ServerVersionInfo(BaseModel):
    """Server build reported in the SOAP header of every response."""

    major_version: int = Field(0, description="Major version")
    minor_version: int = Field(0, description="Minor version")
    major_build_number: int = Field(0, description="Major build number")
    minor_build_number: int = Field(0, description="Minor build number")
    version: Optional[str] = Field(None, description="Schema version name, e.g. 'Exchange2013_SP1'")


class ServiceResponse:
    """
    One response message: result class, response code and payload.

    Request classes extend reading through ``read_payload`` and keep what they
    decode in ``payload``.
    """

    def __init__(self):
        self.result = ServiceResult.SUCCESS
        self.error_code = "NoError"
        self.error_message: Optional[str] = None
        self.error_details: Dict[str, str] = {}
        self.error_properties: List[str] = []
        self.payload: Any = None

    @property
    def succeeded(self) -> bool:
        return self.result is not ServiceResult.ERROR

    def load_from_xml(
        self,
        reader: XmlReader,
        element_name: str,
        read_payload: Optional[Callable[["ServiceResponse", XmlReader], bool]] = None
    ) -> None:
        reader.ensure_current_node_is_start_element(XmlNamespace.MESSAGES, element_name)
        result = reader.get_attribute("ResponseClass", default="Success")
        try:
            self.result = ServiceResult(result)
        except ValueError as e:
            raise SerializationError(f"Unknown response class {result!r}") from e

        depth = reader.depth
        while True:
            node_type = reader.read()
            if node_type is NodeType.END_ELEMENT and reader.depth == depth:
                return
            if node_type is NodeType.END_DOCUMENT:
                raise SerializationError(f"Unexpected end of document inside {element_name}")
            if node_type is not NodeType.START_ELEMENT:
                continue

            name = reader.local_name
            if name == "ResponseCode":
                self.error_code = reader.read_element_value()
            elif name == "MessageText":
                self.error_message = reader.read_element_value()
            elif name == "DescriptiveLinkKey":
                reader.read_element_value()
            elif name == "MessageXml":
                self._load_error_details(reader)
            elif read_payload is None or not read_payload(self, reader):
                reader.skip_current_element()

    def _load_error_details(self, reader: XmlReader) -> None:
        depth = reader.depth
        while True:
            node_type = reader.read()
            if node_type is NodeType.END_ELEMENT and reader.depth == depth:
                return
            if node_type is not NodeType.START_ELEMENT:
                continue
            if reader.local_name == "Value":
                name = reader.get_attribute("Name")
                self.error_details[name] = reader.read_element_value()
            elif reader.local_name == "FieldURI":
                self.error_properties.append(reader.get_attribute("FieldURI"))
                reader.skip_current_element()
            else:
                reader.skip_current_element()

    def throw_if_necessary(self) -> None:
        if self.result is ServiceResult.ERROR:
            raise RemoteOperationError(self)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.result.value}, {self.error_code})"


class ServiceResponseCollection:
    """Results of one call, in the order of the operations that produced them."""

    def __init__(self, responses: Optional[List[ServiceResponse]] = None):
        self._responses: List[ServiceResponse] = list(responses or [])

    def add(self, response: ServiceResponse) -> None:
        self._responses.append(response)

    def __iter__(self) -> Iterator[ServiceResponse]:
        return iter(self._responses)

    def __len__(self) -> int:
        return len(self._responses)

    def __getitem__(self, index: int) -> ServiceResponse:
        return self._responses[index]

    @property
    def overall_result(self) -> ServiceResult:
        results = {r.result for r in self._responses}
        if ServiceResult.ERROR in results:
            return ServiceResult.ERROR
        if ServiceResult.WARNING in results:
            return ServiceResult.WARNING
        return ServiceResult.SUCCESS

    @property
    def errors(self) -> List[ServiceResponse]:
        return [r for r in self._responses if not r.succeeded]

    def payloads(self) -> List[Any]:
        return [r.payload for r in self._responses]
