"""Requested property sets (the ItemShape / FolderShape of a request)."""

from enum import Enum
from typing import Iterable, Tuple

from ..exceptions import ValidationError
from .property_definition import PropertyDefinition
from .xml import XmlNamespace, XmlWriter


class BasePropertySet(Enum):
    ID_ONLY = "IdOnly"
    FIRST_CLASS_PROPERTIES = "AllProperties"


class PropertySet:
    """A base shape plus explicitly requested additional properties."""

    def __init__(
        self,
        base: BasePropertySet = BasePropertySet.FIRST_CLASS_PROPERTIES,
        additional_properties: Iterable[PropertyDefinition] = ()
    ):
        self.base = base
        self.additional_properties: Tuple[PropertyDefinition, ...] = tuple(additional_properties)

    @classmethod
    def id_only(cls, *additional_properties: PropertyDefinition) -> "PropertySet":
        return cls(BasePropertySet.ID_ONLY, additional_properties)

    @classmethod
    def first_class(cls, *additional_properties: PropertyDefinition) -> "PropertySet":
        return cls(BasePropertySet.FIRST_CLASS_PROPERTIES, additional_properties)

    def __contains__(self, definition: PropertyDefinition) -> bool:
        return any(d is definition for d in self.additional_properties)

    def includes(self, definition: PropertyDefinition, schema) -> bool:
        """Whether a load with this set asked the server for ``definition``."""
        if definition in self:
            return True
        if self.base is BasePropertySet.FIRST_CLASS_PROPERTIES:
            return any(d is definition for d in schema.first_class_properties)
        return False

    def validate(self) -> None:
        for definition in self.additional_properties:
            if definition is None:
                raise ValidationError("The additional property set contains an empty entry.")
            if not definition.uri:
                raise ValidationError(f"Property {definition.name!r} has no field URI and cannot be requested.")

    def write_to_xml(self, writer: XmlWriter, shape_element_name: str) -> None:
        writer.write_start_element(XmlNamespace.MESSAGES, shape_element_name)
        writer.write_element_value(XmlNamespace.TYPES, "BaseShape", self.base.value)
        if self.additional_properties:
            writer.write_start_element(XmlNamespace.TYPES, "AdditionalProperties")
            for definition in self.additional_properties:
                definition.write_to_xml(writer)
            writer.write_end_element()
        writer.write_end_element()

    def __repr__(self) -> str:
        names = ", ".join(d.name for d in self.additional_properties)
        return f"PropertySet({self.base.value}, [{names}])"
