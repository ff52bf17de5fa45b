"""Schemas: the ordered property definitions of one service object kind."""

import logging
from typing import Dict, Iterator, Optional, Tuple, Union

from .property_definition import PropertyDefinition, PropertyDefinitionFlags

log = logging.getLogger(__name__)

# Field URI -> definition, across every schema. Filled while schemas are built at import time.
_FIELD_URI_INDEX: Dict[str, PropertyDefinition] = {}


def find_property_definition(uri: str) -> Optional[PropertyDefinition]:
    """Look up a property definition by its field URI (``item:Subject``)."""
    return _FIELD_URI_INDEX.get(uri)


class ServiceObjectSchema:
    """
    Ordered, name-keyed collection of property definitions.

    A schema built with ``parent`` starts with all of the parent's
    definitions, so subclass kinds inherit their parent's properties in the
    parent's order.
    """

    def __init__(self, *definitions: PropertyDefinition, parent: Optional["ServiceObjectSchema"] = None):
        ordered = list(parent) if parent is not None else []
        ordered.extend(definitions)

        self._definitions: Tuple[PropertyDefinition, ...] = tuple(ordered)
        self._by_name: Dict[str, PropertyDefinition] = {}
        self._by_xml_element: Dict[str, PropertyDefinition] = {}

        for definition in self._definitions:
            if definition.name in self._by_name:
                raise ValueError(f"Property {definition.name!r} is a duplicate")
            if definition.xml_element_name in self._by_xml_element:
                raise ValueError(f"Element {definition.xml_element_name!r} is mapped twice")
            self._by_name[definition.name] = definition
            self._by_xml_element[definition.xml_element_name] = definition

            if definition.uri:
                existing = _FIELD_URI_INDEX.get(definition.uri)
                if existing is not None and existing is not definition:
                    raise ValueError(f"Two distinct property definitions use the URI {definition.uri!r}")
                _FIELD_URI_INDEX[definition.uri] = definition

        self._first_class = tuple(
            d for d in self._definitions
            if not d.has_flag(PropertyDefinitionFlags.MUST_BE_EXPLICITLY_LOADED)
        )

    def __iter__(self) -> Iterator[PropertyDefinition]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, item: Union[str, PropertyDefinition]) -> bool:
        if isinstance(item, str):
            return item in self._by_name
        return self._by_name.get(item.name) is item

    def __getitem__(self, name: str) -> PropertyDefinition:
        return self._by_name[name]

    @property
    def first_class_properties(self) -> Tuple[PropertyDefinition, ...]:
        return self._first_class

    def try_get_property_definition(self, xml_element_name: str) -> Optional[PropertyDefinition]:
        return self._by_xml_element.get(xml_element_name)
