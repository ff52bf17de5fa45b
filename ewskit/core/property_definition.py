"""Static metadata describing the properties of service objects."""

from enum import Flag, auto
from typing import Any, Callable, Optional

from .version import ExchangeVersion
from .xml import XmlNamespace, XmlReader, XmlWriter


class PropertyDefinitionFlags(Flag):
    """Capabilities of a property."""

    NONE = 0
    AUTO_INSTANTIATE_ON_READ = auto()
    REUSE_INSTANCE = auto()
    CAN_SET = auto()
    CAN_UPDATE = auto()
    CAN_DELETE = auto()
    CAN_FIND = auto()
    # Not part of the first-class property set; must be requested by name
    MUST_BE_EXPLICITLY_LOADED = auto()


class PropertyDefinition:
    """
    One named, typed field of a service object and its wire mapping.

    Instances are created once at import time and shared by every object of
    the kinds whose schema lists them. Identity (not equality) is what the
    property bag keys on.

    Args:
        name: Stable Python-side name
        xml_element_name: Element name used inside the object element
        uri: Field URI used in property paths (``item:Subject``)
        flags: Capability flags
        version: Minimum server version that knows the property
        converter: Text -> value function used when reading
        nullable: Whether the value can be assigned ``None`` (cleared)
    """

    def __init__(
        self,
        name: str,
        xml_element_name: str,
        uri: Optional[str] = None,
        flags: PropertyDefinitionFlags = PropertyDefinitionFlags.NONE,
        version: ExchangeVersion = ExchangeVersion.EXCHANGE_2007_SP1,
        converter: Callable[[str], Any] = str,
        nullable: bool = True,
        namespace: XmlNamespace = XmlNamespace.TYPES,
    ):
        self.name = name
        self.xml_element_name = xml_element_name
        self.uri = uri
        self.flags = flags
        self.version = version
        self.converter = converter
        self.nullable = nullable
        self.namespace = namespace

    def has_flag(self, flag: PropertyDefinitionFlags) -> bool:
        return (self.flags & flag) == flag

    def load_property_value_from_xml(self, reader: XmlReader, property_bag) -> None:
        property_bag.load_value(self, reader.read_element_value(self.converter))

    def write_property_value_to_xml(self, writer: XmlWriter, property_bag, is_update_operation: bool) -> None:
        value = property_bag.peek(self)
        if value is not None:
            writer.write_element_value(self.namespace, self.xml_element_name, value)

    def write_to_xml(self, writer: XmlWriter) -> None:
        """Write the property path (``<t:FieldURI FieldURI="..."/>``)."""
        writer.write_start_element(XmlNamespace.TYPES, "FieldURI")
        writer.write_attribute_value("FieldURI", self.uri)
        writer.write_end_element()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r}, uri={self.uri!r})"


class ComplexPropertyDefinition(PropertyDefinition):
    """A property whose value is a structured node of a given kind."""

    def __init__(self, name: str, xml_element_name: str, kind, **kwargs):
        kwargs.setdefault("converter", None)
        super().__init__(name, xml_element_name, **kwargs)
        self.kind = kind

    def create_property_instance(self):
        return self.kind.create()

    def load_property_value_from_xml(self, reader: XmlReader, property_bag) -> None:
        existing = property_bag.peek(self)
        if existing is not None and self.has_flag(PropertyDefinitionFlags.REUSE_INSTANCE):
            existing.update_from_xml(reader, self.xml_element_name, self.namespace)
            property_bag.load_value(self, existing)
            return
        node = self.create_property_instance()
        node.load_from_xml(reader, self.xml_element_name, self.namespace)
        property_bag.load_value(self, node)

    def write_property_value_to_xml(self, writer: XmlWriter, property_bag, is_update_operation: bool) -> None:
        node = property_bag.peek(self)
        if node is not None:
            node.write_to_xml(writer, self.xml_element_name, self.namespace)
