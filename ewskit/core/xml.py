"""Forward-only XML cursor and emitter used by every serializable object.

The reader exposes a flat token stream (start tag, text, end tag) over an
``lxml`` pull parser so that large or never-ending responses can be consumed
incrementally. The writer builds an lxml tree with the EWS namespace prefixes
and serializes it once the caller is done.
"""

import base64
import datetime
import logging
from collections import deque
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Union

import pytz
from lxml import etree

from ..exceptions import SerializationError

log = logging.getLogger(__name__)


class XmlNamespace(Enum):
    """EWS namespaces as (prefix, uri) pairs."""

    SOAP = ("soap", "http://schemas.xmlsoap.org/soap/envelope/")
    TYPES = ("t", "http://schemas.microsoft.com/exchange/services/2006/types")
    MESSAGES = ("m", "http://schemas.microsoft.com/exchange/services/2006/messages")
    ERRORS = ("e", "http://schemas.microsoft.com/exchange/services/2006/errors")

    @property
    def prefix(self) -> str:
        return self.value[0]

    @property
    def uri(self) -> str:
        return self.value[1]

    def tag(self, local_name: str) -> str:
        return f"{{{self.uri}}}{local_name}"


NSMAP = {ns.prefix: ns.uri for ns in XmlNamespace}


class NodeType(Enum):
    START_ELEMENT = "start"
    END_ELEMENT = "end"
    TEXT = "text"
    END_DOCUMENT = "eof"


# Value <-> text codecs

def format_datetime(value: datetime.datetime, time_zone=None) -> str:
    """Render a datetime as UTC. Naive values are interpreted in ``time_zone`` (UTC if unset)."""
    if value.tzinfo is None:
        value = (time_zone or pytz.utc).localize(value)
    return value.astimezone(pytz.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def value_to_xml_text(value: Any, time_zone=None) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, datetime.datetime):
        return format_datetime(value, time_zone)
    if isinstance(value, datetime.date):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    return str(value)


def parse_bool(text: str) -> bool:
    return text.strip().lower() in ("true", "1")


def parse_datetime(text: str) -> datetime.datetime:
    text = text.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        value = datetime.datetime.fromisoformat(text)
    except ValueError as e:
        raise SerializationError(f"Invalid date/time value: {text!r}") from e
    if value.tzinfo is None:
        value = pytz.utc.localize(value)
    return value


def parse_date(text: str) -> datetime.date:
    try:
        return datetime.date.fromisoformat(text.strip()[:10])
    except ValueError as e:
        raise SerializationError(f"Invalid date value: {text!r}") from e


def parse_enum(enum_cls) -> Callable[[str], Enum]:
    def _parse(text: str):
        try:
            return enum_cls(text.strip())
        except ValueError as e:
            raise SerializationError(f"Invalid {enum_cls.__name__} value: {text!r}") from e
    _parse.__name__ = f"parse_{enum_cls.__name__}"
    return _parse


class XmlReader:
    """Forward-only, namespace-aware token reader.

    ``source`` may be bytes, a file-like object with ``read()`` or an iterable
    of byte chunks. Chunks are only pulled from the source when the token
    queue runs dry, so a blocking source blocks exactly one ``read()``.
    """

    CHUNK_SIZE = 4096

    def __init__(self, source: Union[bytes, str, Iterable[bytes], Any]):
        if isinstance(source, str):
            source = source.encode("utf-8")
        if isinstance(source, (bytes, bytearray)):
            self._chunks = iter([bytes(source)])
        elif hasattr(source, "read"):
            self._chunks = iter(lambda: source.read(self.CHUNK_SIZE), b"")
        else:
            self._chunks = iter(source)
        self._parser = etree.XMLPullParser(
            events=("start", "end"),
            resolve_entities=False,
            no_network=True,
        )
        self._tokens = deque()
        self._exhausted = False
        self._open = 0
        # One flag per element the parser has opened: whether a child started
        self._has_child = []
        self.node_type: Optional[NodeType] = None
        self.element = None
        self.value: Optional[str] = None
        self.depth = 0

    # Tokenizing

    def _pump(self) -> None:
        try:
            chunk = next(self._chunks)
        except StopIteration:
            self._exhausted = True
            try:
                self._parser.close()
            except etree.XMLSyntaxError as e:
                raise SerializationError(f"Malformed XML: {e}") from e
        else:
            try:
                self._parser.feed(chunk)
            except etree.XMLSyntaxError as e:
                raise SerializationError(f"Malformed XML: {e}") from e
        try:
            for event, elem in self._parser.read_events():
                if event == "start":
                    if self._has_child:
                        self._has_child[-1] = True
                    self._has_child.append(False)
                    self._tokens.append((NodeType.START_ELEMENT, elem, None))
                    continue
                # Children may already be released, so len(elem) is not reliable here
                has_child = self._has_child.pop() if self._has_child else len(elem) > 0
                if not has_child and elem.text is not None:
                    self._tokens.append((NodeType.TEXT, elem, elem.text))
                self._tokens.append((NodeType.END_ELEMENT, elem, None))
        except etree.XMLSyntaxError as e:
            raise SerializationError(f"Malformed XML: {e}") from e

    def _release(self, elem) -> None:
        # Completed subtrees are no longer needed; keeps long streams flat in memory
        parent = elem.getparent()
        elem.clear(keep_tail=True)
        if parent is not None:
            parent.remove(elem)

    def read(self) -> NodeType:
        """Advance to the next token and return its type."""
        if self.node_type is NodeType.END_ELEMENT:
            self._release(self.element)
        while not self._tokens:
            if self._exhausted:
                self.node_type = NodeType.END_DOCUMENT
                self.element = None
                self.value = None
                self.depth = 0
                return self.node_type
            self._pump()
        node_type, elem, text = self._tokens.popleft()
        self.node_type = node_type
        self.element = elem
        self.value = text
        if node_type is NodeType.START_ELEMENT:
            self._open += 1
            self.depth = self._open
        elif node_type is NodeType.TEXT:
            self.depth = self._open
        else:
            self.depth = self._open
            self._open -= 1
        return node_type

    # Inspection

    @property
    def local_name(self) -> Optional[str]:
        if self.element is None:
            return None
        return etree.QName(self.element).localname

    @property
    def namespace_uri(self) -> Optional[str]:
        if self.element is None:
            return None
        return etree.QName(self.element).namespace

    def _matches(self, namespace: Optional[XmlNamespace], local_name: Optional[str]) -> bool:
        if local_name is not None and self.local_name != local_name:
            return False
        if namespace is not None and self.namespace_uri != namespace.uri:
            return False
        return True

    def is_start_element(self, namespace: Optional[XmlNamespace] = None, local_name: Optional[str] = None) -> bool:
        return self.node_type is NodeType.START_ELEMENT and self._matches(namespace, local_name)

    def is_end_element(self, namespace: Optional[XmlNamespace] = None, local_name: Optional[str] = None) -> bool:
        return self.node_type is NodeType.END_ELEMENT and self._matches(namespace, local_name)

    def describe(self) -> str:
        if self.node_type is None:
            return "nothing"
        if self.node_type is NodeType.END_DOCUMENT:
            return "end of document"
        return f"{self.node_type.name} {self.local_name!r}"

    def ensure_current_node_is_start_element(
        self,
        namespace: Optional[XmlNamespace] = None,
        local_name: Optional[str] = None
    ) -> None:
        if not self.is_start_element(namespace, local_name):
            expected = local_name or "an element"
            raise SerializationError(f"Expected start of {expected}, found {self.describe()}")

    def ensure_current_node_is_end_element(
        self,
        namespace: Optional[XmlNamespace] = None,
        local_name: Optional[str] = None
    ) -> None:
        if not self.is_end_element(namespace, local_name):
            expected = local_name or "an element"
            raise SerializationError(f"Expected end of {expected}, found {self.describe()}")

    # Reading helpers

    def read_start_element(self, namespace: Optional[XmlNamespace] = None, local_name: Optional[str] = None) -> None:
        self.read()
        self.ensure_current_node_is_start_element(namespace, local_name)

    def read_end_element(self, namespace: Optional[XmlNamespace] = None, local_name: Optional[str] = None) -> None:
        self.read()
        self.ensure_current_node_is_end_element(namespace, local_name)

    def read_end_element_if_necessary(self, namespace: XmlNamespace, local_name: str) -> None:
        if not self.is_end_element(namespace, local_name):
            self.read_end_element(namespace, local_name)

    def get_attribute(self, name: str, converter: Optional[Callable[[str], Any]] = None, default: Any = None) -> Any:
        if self.element is None:
            return default
        text = self.element.get(name)
        if text is None:
            return default
        return converter(text) if converter else text

    def read_element_value(self, converter: Optional[Callable[[str], Any]] = None) -> Any:
        """Read the text of the current element and leave the cursor on its end tag."""
        self.ensure_current_node_is_start_element()
        depth = self.depth
        text = None
        while True:
            node_type = self.read()
            if node_type is NodeType.TEXT and self.depth == depth:
                text = self.value
            elif node_type is NodeType.START_ELEMENT:
                self.skip_current_element()
            elif node_type is NodeType.END_ELEMENT and self.depth == depth:
                break
            elif node_type is NodeType.END_DOCUMENT:
                raise SerializationError("Unexpected end of document while reading element value")
        if text is None or converter is None:
            return text
        return converter(text)

    def read_base64_element_value(self) -> bytes:
        text = self.read_element_value()
        return base64.b64decode(text or "")

    def read_element_value_by_name(
        self,
        namespace: XmlNamespace,
        local_name: str,
        converter: Optional[Callable[[str], Any]] = None
    ) -> Any:
        self.read_start_element(namespace, local_name)
        return self.read_element_value(converter)

    def skip_current_element(self) -> None:
        """Consume the current element and its whole subtree."""
        self.ensure_current_node_is_start_element()
        depth = self.depth
        while True:
            node_type = self.read()
            if node_type is NodeType.END_ELEMENT and self.depth == depth:
                return
            if node_type is NodeType.END_DOCUMENT:
                raise SerializationError("Unexpected end of document while skipping element")

    def read_to_start_element(self, namespace: XmlNamespace, local_name: str) -> bool:
        """Advance until the named start tag; False if the document ends first."""
        while True:
            node_type = self.read()
            if node_type is NodeType.END_DOCUMENT:
                return False
            if self.is_start_element(namespace, local_name):
                return True


class XmlWriter:
    """Incremental emitter mirroring :class:`XmlReader`."""

    def __init__(self, time_zone=None):
        self.time_zone = time_zone
        self.root = None
        self._stack = []

    def _current(self):
        if not self._stack:
            raise SerializationError("No open element to write into")
        return self._stack[-1]

    def write_start_element(self, namespace: XmlNamespace, local_name: str) -> None:
        tag = namespace.tag(local_name)
        if self._stack:
            elem = etree.SubElement(self._stack[-1], tag)
        elif self.root is None:
            elem = etree.Element(tag, nsmap=NSMAP)
            self.root = elem
        else:
            raise SerializationError(f"Cannot write {local_name!r}: document already has a root element")
        self._stack.append(elem)

    def write_end_element(self) -> None:
        self._current()
        self._stack.pop()

    def write_attribute_value(self, name: str, value: Any) -> None:
        if value is None:
            return
        try:
            self._current().set(name, value_to_xml_text(value, self.time_zone))
        except ValueError as e:
            raise SerializationError(f"Cannot write attribute {name!r}: {e}") from e

    def write_value(self, value: Any) -> None:
        if value is None:
            return
        elem = self._current()
        try:
            elem.text = (elem.text or "") + value_to_xml_text(value, self.time_zone)
        except ValueError as e:
            raise SerializationError(f"Cannot write value: {e}") from e

    def write_element_value(self, namespace: XmlNamespace, local_name: str, value: Any) -> None:
        if value is None:
            return
        self.write_start_element(namespace, local_name)
        self.write_value(value)
        self.write_end_element()

    def write_base64_element_value(self, namespace: XmlNamespace, local_name: str, data: bytes) -> None:
        self.write_element_value(namespace, local_name, bytes(data))

    def to_bytes(self, xml_declaration: bool = True) -> bytes:
        if self._stack:
            raise SerializationError(f"{len(self._stack)} element(s) still open")
        if self.root is None:
            raise SerializationError("Nothing was written")
        return etree.tostring(self.root, xml_declaration=xml_declaration, encoding="utf-8")
