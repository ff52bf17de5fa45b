"""Object model: property definitions, schemas, change-tracked values and their XML mapping."""

from .version import ExchangeVersion
from .xml import XmlNamespace, XmlReader, XmlWriter
from .property_definition import ComplexPropertyDefinition, PropertyDefinition, PropertyDefinitionFlags
from .schema import ServiceObjectSchema
from .property_set import BasePropertySet, PropertySet
from .complex_property import ComplexProperty, ElementRegistry, NodeKind
from .property_bag import PropertyBag, WriteMode
from .service_object import (
    CalendarItem,
    CalendarItemSchema,
    Folder,
    FolderSchema,
    Item,
    ItemSchema,
    Message,
    MessageSchema,
    ServiceObject,
)

__all__ = [
    "ExchangeVersion",
    "XmlNamespace",
    "XmlReader",
    "XmlWriter",
    "PropertyDefinition",
    "ComplexPropertyDefinition",
    "PropertyDefinitionFlags",
    "ServiceObjectSchema",
    "BasePropertySet",
    "PropertySet",
    "ComplexProperty",
    "ElementRegistry",
    "NodeKind",
    "PropertyBag",
    "WriteMode",
    "ServiceObject",
    "Item",
    "ItemSchema",
    "Message",
    "MessageSchema",
    "CalendarItem",
    "CalendarItemSchema",
    "Folder",
    "FolderSchema",
]
