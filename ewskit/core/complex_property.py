"""Structured property values (nodes) and the field codecs that map them to XML.

A node kind is declared once as a list of fields. The fields are compiled
into a :class:`NodeBehavior`, a record of the hooks the generic read/write
loop calls. Kinds with unusual wire shapes override individual hooks instead
of subclassing :class:`ComplexProperty`.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Tuple

from ..exceptions import SerializationError, ValidationError
from .xml import NodeType, XmlNamespace, XmlReader, XmlWriter

log = logging.getLogger(__name__)


def can_set_field_value(current: Any, value: Any) -> bool:
    """Whether assigning ``value`` over ``current`` is an actual change.

    Nodes and other mutable objects compare by identity; plain values by
    equality.
    """
    if current is value:
        return False
    if current is None or value is None:
        return True
    if hasattr(current, "set_change_handler") or hasattr(value, "set_change_handler"):
        return True
    try:
        return bool(current != value)
    except TypeError:
        return True


class NodeBehavior(NamedTuple):
    """Hooks driving the generic read/write loop of one node kind."""

    read_attributes: Callable[["ComplexProperty", XmlReader], None]
    read_text: Callable[["ComplexProperty", XmlReader], None]
    try_read_element: Callable[["ComplexProperty", XmlReader], bool]
    try_read_element_to_patch: Callable[["ComplexProperty", XmlReader], bool]
    write_attributes: Callable[["ComplexProperty", XmlWriter], None]
    write_elements: Callable[["ComplexProperty", XmlWriter], None]
    validate: Callable[["ComplexProperty"], None]


class ElementRegistry:
    """Maps element local names to factories (polymorphic dispatch on read)."""

    def __init__(self, name: str):
        self.name = name
        self._factories: Dict[str, Callable[..., Any]] = {}

    def register(self, element_name: str, factory: Callable[..., Any]) -> None:
        if element_name in self._factories:
            raise ValueError(f"{element_name!r} is already registered in {self.name}")
        self._factories[element_name] = factory

    def register_kind(self, kind: "NodeKind") -> "NodeKind":
        self.register(kind.element_name, kind.create)
        return kind

    def __contains__(self, element_name: str) -> bool:
        return element_name in self._factories

    def create(self, element_name: str, *args, **kwargs) -> Optional[Any]:
        """Instantiate the kind registered for ``element_name``; None when unknown."""
        factory = self._factories.get(element_name)
        if factory is None:
            return None
        return factory(*args, **kwargs)


# Field codecs

class NodeField:
    """One declared value of a node kind."""

    is_attribute = False
    is_text = False

    def __init__(
        self,
        name: str,
        xml_name: Optional[str] = None,
        converter: Optional[Callable[[str], Any]] = None,
        namespace: XmlNamespace = XmlNamespace.TYPES,
        default: Any = None,
        required: bool = False,
        patchable: bool = True,
        read_only: bool = False,
        formatter: Optional[Callable[[Any], str]] = None,
    ):
        self.name = name
        self.xml_name = xml_name or name
        self.converter = converter
        self.namespace = namespace
        self.default = default
        self.required = required
        self.patchable = patchable
        self.read_only = read_only
        self.formatter = formatter

    def default_value(self) -> Any:
        return self.default

    def matches(self, reader: XmlReader) -> bool:
        return reader.local_name == self.xml_name

    def read(self, node: "ComplexProperty", reader: XmlReader) -> None:
        raise NotImplementedError

    def read_patch(self, node: "ComplexProperty", reader: XmlReader) -> None:
        self.read(node, reader)

    def write(self, node: "ComplexProperty", writer: XmlWriter) -> None:
        raise NotImplementedError

    def validate(self, node: "ComplexProperty") -> None:
        if self.required and node.get_field(self.name) in (None, ""):
            raise ValidationError(f"{node.kind.name}.{self.name} must be set.")

    def _format(self, value: Any) -> Any:
        if value is None or self.formatter is None:
            return value
        return self.formatter(value)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r})"


class AttributeField(NodeField):
    is_attribute = True

    def read(self, node, reader):
        value = reader.get_attribute(self.xml_name, self.converter)
        if value is not None:
            node.load_field(self.name, value)

    def write(self, node, writer):
        writer.write_attribute_value(self.xml_name, self._format(node.get_field(self.name)))


class TextField(NodeField):
    is_text = True

    def read(self, node, reader):
        text = reader.value
        node.load_field(self.name, self.converter(text) if self.converter else text)

    def write(self, node, writer):
        writer.write_value(self._format(node.get_field(self.name)))


class ElementField(NodeField):
    def read(self, node, reader):
        node.load_field(self.name, reader.read_element_value(self.converter))

    def write(self, node, writer):
        writer.write_element_value(self.namespace, self.xml_name, self._format(node.get_field(self.name)))


class Base64Field(ElementField):
    def read(self, node, reader):
        node.load_field(self.name, reader.read_base64_element_value())

    def write(self, node, writer):
        value = node.get_field(self.name)
        if value is not None:
            writer.write_base64_element_value(self.namespace, self.xml_name, value)


class ValueAttributeElementField(NodeField):
    """A value carried in the ``Value`` attribute of an empty element (``<t:Constant Value="x"/>``)."""

    def read(self, node, reader):
        value = reader.get_attribute("Value", self.converter)
        reader.skip_current_element()
        node.load_field(self.name, value)

    def write(self, node, writer):
        value = node.get_field(self.name)
        if value is None:
            return
        writer.write_start_element(self.namespace, self.xml_name)
        writer.write_attribute_value("Value", self._format(value))
        writer.write_end_element()


class NodeValueField(NodeField):
    """A nested node of a fixed kind."""

    def __init__(self, name, xml_name=None, kind: "NodeKind" = None, **kwargs):
        super().__init__(name, xml_name, **kwargs)
        self.kind = kind

    def read(self, node, reader):
        child = self.kind.create()
        child.load_from_xml(reader, self.xml_name, self.namespace)
        node.load_field(self.name, child)

    def read_patch(self, node, reader):
        existing = node.get_field(self.name)
        if existing is None:
            self.read(node, reader)
        elif existing.kind is not self.kind:
            raise SerializationError(f"{node.kind.name}.{self.name} holds a {existing.kind.name}, not a {self.kind.name}")
        else:
            existing.update_from_xml(reader, self.xml_name, self.namespace)

    def write(self, node, writer):
        child = node.get_field(self.name)
        if child is not None:
            child.write_to_xml(writer, self.xml_name, self.namespace)

    def validate(self, node):
        super().validate(node)
        child = node.get_field(self.name)
        if child is not None:
            child.validate()


class ChoiceField(NodeField):
    """A nested node whose kind is chosen by its element name."""

    def __init__(self, name, registry: ElementRegistry = None, **kwargs):
        super().__init__(name, **kwargs)
        self.registry = registry

    def matches(self, reader):
        return reader.local_name in self.registry

    def read(self, node, reader):
        child = self.registry.create(reader.local_name)
        child.load_from_xml(reader, reader.local_name)
        node.load_field(self.name, child)

    def read_patch(self, node, reader):
        existing = node.get_field(self.name)
        if existing is not None and existing.kind.element_name == reader.local_name:
            existing.update_from_xml(reader, reader.local_name)
        else:
            self.read(node, reader)

    def write(self, node, writer):
        child = node.get_field(self.name)
        if child is not None:
            child.write_to_xml(writer)

    def validate(self, node):
        super().validate(node)
        child = node.get_field(self.name)
        if child is not None:
            child.validate()


class ItemSpec(NamedTuple):
    """How the repeated children of a collection kind are recognized.

    Exactly one of ``kind``, ``registry`` or ``converter`` applies: a fixed
    node kind, a polymorphic family, or plain text values.
    """

    element_name: Optional[str] = None
    kind: Optional["NodeKind"] = None
    registry: Optional[ElementRegistry] = None
    converter: Optional[Callable[[str], Any]] = None

    def create(self, local_name: str):
        if self.registry is not None:
            return self.registry.create(local_name)
        if local_name == (self.element_name or self.kind.element_name):
            return self.kind.create()
        return None

    def accepts(self, local_name: str) -> bool:
        if self.registry is not None:
            return local_name in self.registry
        return local_name == (self.element_name or self.kind.element_name)


def field_behavior(
    fields: Iterable[NodeField],
    items: Optional[ItemSpec] = None,
    validate: Optional[Callable[["ComplexProperty"], None]] = None,
    **overrides
) -> NodeBehavior:
    """Compile declared fields (and optional repeated children) into hooks."""
    fields = tuple(fields)
    attribute_fields = [f for f in fields if f.is_attribute]
    text_fields = [f for f in fields if f.is_text]
    element_fields = [f for f in fields if not f.is_attribute and not f.is_text]

    def read_attributes(node, reader):
        for field in attribute_fields:
            field.read(node, reader)

    def read_text(node, reader):
        for field in text_fields:
            field.read(node, reader)

    def try_read_item(node, reader):
        if items.converter is not None:
            node.load_item(reader.read_element_value(items.converter))
            return True
        item = items.create(reader.local_name)
        item.load_from_xml(reader, reader.local_name)
        node.load_item(item)
        return True

    def try_read_element(node, reader):
        for field in element_fields:
            if field.matches(reader):
                field.read(node, reader)
                return True
        if items is not None and items.accepts(reader.local_name):
            return try_read_item(node, reader)
        return False

    def try_read_element_to_patch(node, reader):
        for field in element_fields:
            if field.matches(reader):
                if not field.patchable:
                    return False
                field.read_patch(node, reader)
                return True
        if items is None or not items.accepts(reader.local_name):
            return False
        # Children of an update response line up with existing items by position
        position = node.next_read_position()
        current = node.items
        if position >= len(current):
            return try_read_item(node, reader)
        existing = current[position]
        if items.converter is not None:
            node.replace_item(position, reader.read_element_value(items.converter))
            return True
        if existing.kind.element_name != reader.local_name:
            raise SerializationError(
                f"Cannot update {existing.kind.name} at position {position} of {node.kind.name} "
                f"with a {reader.local_name}"
            )
        existing.update_from_xml(reader, reader.local_name)
        return True

    def write_attributes(node, writer):
        for field in attribute_fields:
            if not field.read_only:
                field.write(node, writer)

    def write_elements(node, writer):
        for field in text_fields:
            field.write(node, writer)
        for field in element_fields:
            if not field.read_only:
                field.write(node, writer)
        if items is None:
            return
        for item in node.items:
            if items.converter is not None:
                writer.write_element_value(XmlNamespace.TYPES, items.element_name, item)
            elif items.registry is not None:
                item.write_to_xml(writer)
            else:
                item.write_to_xml(writer, items.element_name)

    def validate_node(node):
        for field in fields:
            field.validate(node)
        if items is not None and items.converter is None:
            for item in node.items:
                item.validate()
        if validate is not None:
            validate(node)

    behavior = NodeBehavior(
        read_attributes=read_attributes,
        read_text=read_text,
        try_read_element=try_read_element,
        try_read_element_to_patch=try_read_element_to_patch,
        write_attributes=write_attributes,
        write_elements=write_elements,
        validate=validate_node,
    )
    return behavior._replace(**overrides)


class NodeKind:
    """
    Declaration of one node type: its element name, fields and hooks.

    Args:
        name: Kind name, used in messages and ``repr``
        element_name: Default XML element name (defaults to ``name``)
        fields: Declared fields, written in this order
        namespace: Namespace of the node's own element
        items: Repeated children, for collection kinds
        validate: Extra node-local validation, run after field validation
        overrides: Individual :class:`NodeBehavior` hooks to replace
    """

    def __init__(
        self,
        name: str,
        element_name: Optional[str] = None,
        fields: Iterable[NodeField] = (),
        namespace: XmlNamespace = XmlNamespace.TYPES,
        items: Optional[ItemSpec] = None,
        validate: Optional[Callable[["ComplexProperty"], None]] = None,
        **overrides
    ):
        self.name = name
        self.element_name = element_name or name
        self.fields: Tuple[NodeField, ...] = tuple(fields)
        self.namespace = namespace
        self.items = items
        self.behavior = field_behavior(self.fields, items, validate, **overrides)

    @property
    def is_collection(self) -> bool:
        return self.items is not None

    def create(self, **values) -> "ComplexProperty":
        return ComplexProperty(self, **values)

    __call__ = create

    def __repr__(self) -> str:
        return f"NodeKind({self.name!r})"


class ComplexProperty:
    """
    A structured property value with change notification.

    Field values are exposed as attributes. Assigning a field notifies the
    registered change handler (normally the owning property bag) when the
    value actually changes. Values read from XML are stored without
    notification.
    """

    def __init__(self, kind: NodeKind, **values):
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "_values", {f.name: f.default_value() for f in kind.fields})
        object.__setattr__(self, "_items", [] if kind.is_collection else None)
        object.__setattr__(self, "_on_change", None)
        object.__setattr__(self, "_read_position", 0)
        for name, value in values.items():
            if name not in self._values:
                raise TypeError(f"{kind.name} has no field {name!r}")
            self.load_field(name, value)

    @property
    def namespace(self) -> XmlNamespace:
        return self.kind.namespace

    # Field access

    def __getattr__(self, name):
        values = self.__dict__.get("_values")
        if values is not None and name in values:
            return values[name]
        raise AttributeError(f"{self.__class__.__name__} has no attribute {name!r}")

    def __setattr__(self, name, value):
        if name in self._values:
            self.set_field(name, value)
        else:
            raise AttributeError(f"{self.kind.name} has no field {name!r}")

    def get_field(self, name: str) -> Any:
        return self._values[name]

    def set_field(self, name: str, value: Any) -> None:
        current = self._values[name]
        if not can_set_field_value(current, value):
            return
        self._disown(current)
        self._values[name] = value
        self._adopt(value)
        self.changed()

    def load_field(self, name: str, value: Any) -> None:
        """Store a value without raising a change notification."""
        current = self._values.get(name)
        if current is not value:
            self._disown(current)
        self._values[name] = value
        self._adopt(value)

    # Change notification

    def set_change_handler(self, handler: Optional[Callable[[Any], None]]) -> None:
        object.__setattr__(self, "_on_change", handler)

    def changed(self) -> None:
        handler = self._on_change
        if handler is not None:
            handler(self)

    def _child_changed(self, child) -> None:
        self.changed()

    def _adopt(self, value) -> None:
        if hasattr(value, "set_change_handler"):
            value.set_change_handler(self._child_changed)

    def _disown(self, value) -> None:
        if hasattr(value, "set_change_handler"):
            value.set_change_handler(None)

    def clear_change_log(self) -> None:
        children = list(self._values.values()) + list(self._items or ())
        for child in children:
            if hasattr(child, "clear_change_log"):
                child.clear_change_log()

    # Collection kinds

    def _require_collection(self) -> List[Any]:
        if self._items is None:
            raise TypeError(f"{self.kind.name} is not a collection")
        return self._items

    @property
    def items(self) -> Tuple[Any, ...]:
        return tuple(self._require_collection())

    def add(self, item: Any) -> None:
        self._require_collection().append(item)
        self._adopt(item)
        self.changed()

    def remove(self, item: Any) -> bool:
        items = self._require_collection()
        for index, existing in enumerate(items):
            if existing is item or existing == item:
                del items[index]
                self._disown(existing)
                self.changed()
                return True
        return False

    def clear_items(self) -> None:
        items = self._require_collection()
        if not items:
            return
        for item in items:
            self._disown(item)
        items.clear()
        self.changed()

    def load_item(self, item: Any) -> None:
        self._require_collection().append(item)
        self._adopt(item)

    def replace_item(self, position: int, item: Any) -> None:
        items = self._require_collection()
        self._disown(items[position])
        items[position] = item
        self._adopt(item)

    def next_read_position(self) -> int:
        """Position of the next repeated child within the element being read."""
        position = self._read_position
        object.__setattr__(self, "_read_position", position + 1)
        return position

    # XML

    def load_from_xml(self, reader: XmlReader, local_name: Optional[str] = None,
                      namespace: Optional[XmlNamespace] = None) -> None:
        """Populate this node from the element under the cursor (a fresh read)."""
        self._internal_load(reader, local_name, namespace, self.kind.behavior.try_read_element)

    def update_from_xml(self, reader: XmlReader, local_name: Optional[str] = None,
                        namespace: Optional[XmlNamespace] = None) -> None:
        """Merge a partial element (as returned by update responses) into this node."""
        self._internal_load(reader, local_name, namespace, self.kind.behavior.try_read_element_to_patch)

    def _internal_load(self, reader, local_name, namespace, try_read) -> None:
        local_name = local_name or self.kind.element_name
        reader.ensure_current_node_is_start_element(namespace or self.namespace, local_name)
        depth = reader.depth
        object.__setattr__(self, "_read_position", 0)
        behavior = self.kind.behavior
        behavior.read_attributes(self, reader)

        while True:
            node_type = reader.read()
            if node_type is NodeType.END_ELEMENT and reader.depth == depth:
                return
            if node_type is NodeType.START_ELEMENT:
                if not try_read(self, reader):
                    log.debug(f"Skipping unexpected element {reader.local_name!r} in {self.kind.name}")
                    reader.skip_current_element()
                elif not (reader.node_type is NodeType.END_ELEMENT and reader.depth == depth + 1):
                    raise SerializationError(f"{self.kind.name} stopped reading inside {reader.describe()}")
            elif node_type is NodeType.TEXT:
                behavior.read_text(self, reader)
            elif node_type is NodeType.END_DOCUMENT:
                raise SerializationError(f"Unexpected end of document inside {local_name}")

    def write_to_xml(self, writer: XmlWriter, local_name: Optional[str] = None,
                     namespace: Optional[XmlNamespace] = None) -> None:
        behavior = self.kind.behavior
        writer.write_start_element(namespace or self.namespace, local_name or self.kind.element_name)
        behavior.write_attributes(self, writer)
        behavior.write_elements(self, writer)
        writer.write_end_element()

    def validate(self) -> None:
        self.kind.behavior.validate(self)

    # Value semantics

    def __eq__(self, other):
        if not isinstance(other, ComplexProperty):
            return NotImplemented
        return self.kind is other.kind and self._values == other._values and self._items == other._items

    __hash__ = None

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v!r}" for k, v in self._values.items() if v is not None)
        if self._items is not None:
            fields = f"{fields}, items={self._items!r}" if fields else f"items={self._items!r}"
        return f"{self.kind.name}({fields})"
