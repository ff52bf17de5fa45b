"""Search filter trees (the Restriction of a FindItem request).

Filters are nodes of a kind registered in :data:`SEARCH_FILTERS`; reading
dispatches on the element name, so a filter tree of any shape can be loaded
with :func:`load_search_filter`.
"""

import logging
from enum import Enum
from typing import Any, Optional

from ..exceptions import SerializationError, ValidationError
from .complex_property import (
    AttributeField,
    ChoiceField,
    ComplexProperty,
    ElementRegistry,
    ItemSpec,
    NodeField,
    NodeKind,
    ValueAttributeElementField,
)
from .schema import find_property_definition
from .xml import NodeType, XmlNamespace, XmlReader, XmlWriter

log = logging.getLogger(__name__)


class ContainmentMode(Enum):
    FULL_STRING = "FullString"
    PREFIXED = "Prefixed"
    SUBSTRING = "Substring"
    PREFIX_ON_WORDS = "PrefixOnWords"
    EXACT_PHRASE = "ExactPhrase"


class ComparisonMode(Enum):
    EXACT = "Exact"
    IGNORE_CASE = "IgnoreCase"
    IGNORE_NON_SPACING_CHARACTERS = "IgnoreNonSpacingCharacters"
    LOOSE = "Loose"
    IGNORE_CASE_AND_NON_SPACING_CHARACTERS = "IgnoreCaseAndNonSpacingCharacters"
    LOOSE_AND_IGNORE_CASE = "LooseAndIgnoreCase"
    LOOSE_AND_IGNORE_NON_SPACE = "LooseAndIgnoreNonSpace"
    LOOSE_AND_IGNORE_CASE_AND_IGNORE_NON_SPACE = "LooseAndIgnoreCaseAndIgnoreNonSpace"


def _parse_containment_mode(text: str) -> ContainmentMode:
    try:
        return ContainmentMode(text)
    except ValueError:
        log.warning(f"Unknown containment mode {text!r}, using Substring")
        return ContainmentMode.SUBSTRING


def _parse_comparison_mode(text: str) -> ComparisonMode:
    try:
        return ComparisonMode(text)
    except ValueError:
        log.warning(f"Unknown comparison mode {text!r}, using IgnoreCaseAndNonSpacingCharacters")
        return ComparisonMode.IGNORE_CASE_AND_NON_SPACING_CHARACTERS


class PropertyPathField(NodeField):
    """The property a filter applies to, written as ``<t:FieldURI FieldURI="..."/>``."""

    def __init__(self, name="property_definition", **kwargs):
        kwargs.setdefault("required", True)
        super().__init__(name, "FieldURI", **kwargs)

    def matches(self, reader):
        return reader.local_name in ("FieldURI", "IndexedFieldURI", "ExtendedFieldURI")

    def read(self, node, reader):
        uri = reader.get_attribute("FieldURI")
        local_name = reader.local_name
        reader.skip_current_element()
        if local_name != "FieldURI":
            log.debug(f"Ignoring unsupported property path {local_name!r} in {node.kind.name}")
            return
        definition = find_property_definition(uri)
        if definition is None:
            log.debug(f"Unknown field URI {uri!r} in {node.kind.name}")
        node.load_field(self.name, definition)

    def write(self, node, writer):
        definition = node.get_field(self.name)
        if definition is not None:
            definition.write_to_xml(writer)

    def validate(self, node):
        if self.required and node.get_field(self.name) is None:
            raise ValidationError(f"The PropertyDefinition property of {node.kind.name} must be set.")


def read_constant(node, reader: XmlReader) -> Any:
    """Decode a ``Constant`` with the converter of the property it is compared with."""
    definition = node.get_field("property_definition")
    converter = getattr(definition, "converter", None)
    try:
        return reader.get_attribute("Value", converter)
    except ValueError as e:
        raise SerializationError(f"Invalid constant for {definition.name}: {e}") from e


class ConstantField(ValueAttributeElementField):
    """A ``<t:Constant Value="..."/>`` typed like the filter's property."""

    def read(self, node, reader):
        value = read_constant(node, reader)
        reader.skip_current_element()
        node.load_field(self.name, value)


class FieldURIOrConstantField(NodeField):
    """Right-hand side of a relational filter: another property or a constant."""

    def __init__(self):
        super().__init__("value", "FieldURIOrConstant")

    def read(self, node, reader: XmlReader):
        depth = reader.depth
        while True:
            node_type = reader.read()
            if node_type is NodeType.END_ELEMENT and reader.depth == depth:
                return
            if node_type is not NodeType.START_ELEMENT:
                continue
            if reader.local_name == "Constant":
                node.load_field("value", read_constant(node, reader))
            elif reader.local_name == "FieldURI":
                node.load_field("other_property_definition", find_property_definition(reader.get_attribute("FieldURI")))
            reader.skip_current_element()

    def write(self, node, writer: XmlWriter):
        other = node.get_field("other_property_definition")
        value = node.get_field("value")
        writer.write_start_element(XmlNamespace.TYPES, "FieldURIOrConstant")
        if other is not None:
            other.write_to_xml(writer)
        else:
            writer.write_start_element(XmlNamespace.TYPES, "Constant")
            writer.write_attribute_value("Value", value)
            writer.write_end_element()
        writer.write_end_element()

    def validate(self, node):
        if (node.get_field("other_property_definition") is None) == (node.get_field("value") is None):
            raise ValidationError("Either the OtherPropertyDefinition or the Value properties must be set.")


SEARCH_FILTERS = ElementRegistry("search filters")

EXISTS = SEARCH_FILTERS.register_kind(NodeKind("Exists", fields=(PropertyPathField(),)))

CONTAINS = SEARCH_FILTERS.register_kind(NodeKind(
    "Contains",
    fields=(
        AttributeField("containment_mode", "ContainmentMode", converter=_parse_containment_mode,
                       default=ContainmentMode.SUBSTRING),
        AttributeField("comparison_mode", "ContainmentComparison", converter=_parse_comparison_mode,
                       default=ComparisonMode.IGNORE_CASE),
        PropertyPathField(),
        ConstantField("value", "Constant", required=True),
    ),
))

EXCLUDES = SEARCH_FILTERS.register_kind(NodeKind(
    "Excludes",
    fields=(
        PropertyPathField(),
        ValueAttributeElementField("bitmask", "Bitmask", converter=int, required=True),
    ),
))


class HeldValueField(NodeField):
    """Storage for a value another field reads and writes."""

    def matches(self, reader):
        return False

    def write(self, node, writer):
        pass


def _relational_kind(element_name: str) -> NodeKind:
    return SEARCH_FILTERS.register_kind(NodeKind(
        element_name,
        fields=(
            PropertyPathField(),
            FieldURIOrConstantField(),
            # Carried inside FieldURIOrConstant
            HeldValueField("other_property_definition"),
        ),
    ))


IS_EQUAL_TO = _relational_kind("IsEqualTo")
IS_NOT_EQUAL_TO = _relational_kind("IsNotEqualTo")
IS_GREATER_THAN = _relational_kind("IsGreaterThan")
IS_GREATER_THAN_OR_EQUAL_TO = _relational_kind("IsGreaterThanOrEqualTo")
IS_LESS_THAN = _relational_kind("IsLessThan")
IS_LESS_THAN_OR_EQUAL_TO = _relational_kind("IsLessThanOrEqualTo")

NOT = SEARCH_FILTERS.register_kind(NodeKind(
    "Not",
    fields=(ChoiceField("search_filter", registry=SEARCH_FILTERS, required=True),),
))


def _validate_group(node):
    if not node.items:
        raise ValidationError(f"{node.kind.name} must contain at least one search filter.")


AND = SEARCH_FILTERS.register_kind(NodeKind("And", items=ItemSpec(registry=SEARCH_FILTERS), validate=_validate_group))
OR = SEARCH_FILTERS.register_kind(NodeKind("Or", items=ItemSpec(registry=SEARCH_FILTERS), validate=_validate_group))


# Construction helpers

def exists(definition) -> ComplexProperty:
    return EXISTS.create(property_definition=definition)


def contains(definition, value: str,
             containment_mode: ContainmentMode = ContainmentMode.SUBSTRING,
             comparison_mode: ComparisonMode = ComparisonMode.IGNORE_CASE) -> ComplexProperty:
    return CONTAINS.create(
        property_definition=definition,
        value=value,
        containment_mode=containment_mode,
        comparison_mode=comparison_mode,
    )


def excludes(definition, bitmask: int) -> ComplexProperty:
    return EXCLUDES.create(property_definition=definition, bitmask=bitmask)


def _relational(kind: NodeKind, definition, value: Any = None, other=None) -> ComplexProperty:
    return kind.create(property_definition=definition, value=value, other_property_definition=other)


def is_equal_to(definition, value=None, other=None):
    return _relational(IS_EQUAL_TO, definition, value, other)


def is_not_equal_to(definition, value=None, other=None):
    return _relational(IS_NOT_EQUAL_TO, definition, value, other)


def is_greater_than(definition, value=None, other=None):
    return _relational(IS_GREATER_THAN, definition, value, other)


def is_greater_than_or_equal_to(definition, value=None, other=None):
    return _relational(IS_GREATER_THAN_OR_EQUAL_TO, definition, value, other)


def is_less_than(definition, value=None, other=None):
    return _relational(IS_LESS_THAN, definition, value, other)


def is_less_than_or_equal_to(definition, value=None, other=None):
    return _relational(IS_LESS_THAN_OR_EQUAL_TO, definition, value, other)


def not_(search_filter: ComplexProperty) -> ComplexProperty:
    return NOT.create(search_filter=search_filter)


def _group(kind: NodeKind, filters) -> ComplexProperty:
    node = kind.create()
    for search_filter in filters:
        node.load_item(search_filter)
    return node


def and_(*filters: ComplexProperty) -> ComplexProperty:
    return _group(AND, filters)


def or_(*filters: ComplexProperty) -> ComplexProperty:
    return _group(OR, filters)


def load_search_filter(reader: XmlReader) -> Optional[ComplexProperty]:
    """Read the filter element under the cursor; None (subtree skipped) for unknown kinds."""
    search_filter = SEARCH_FILTERS.create(reader.local_name)
    if search_filter is None:
        log.debug(f"Skipping unknown search filter {reader.local_name!r}")
        reader.skip_current_element()
        return None
    search_filter.load_from_xml(reader, reader.local_name)
    return search_filter
