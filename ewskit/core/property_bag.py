"""Per-object property storage with change tracking."""

import logging
from enum import Enum
from functools import partial
from typing import Any, Dict, List, Optional, Set, Tuple

from ..exceptions import (
    InvalidOperationError,
    PropertyNotFoundError,
    ProtocolVersionError,
    SerializationError,
)
from .complex_property import can_set_field_value
from .property_definition import ComplexPropertyDefinition, PropertyDefinition, PropertyDefinitionFlags
from .property_set import PropertySet
from .xml import NodeType, XmlNamespace, XmlReader, XmlWriter

log = logging.getLogger(__name__)


class WriteMode(Enum):
    """How a property bag serializes itself."""

    # Every settable property that has a value, for creation requests
    CREATE = "create"
    # Every updatable property that has a value, as a full object element
    UPDATE = "update"
    # Only changed properties, as set/delete instructions addressed by field URI
    PATCH = "patch"


class PropertyBag:
    """
    Holds the property values of one service object and records what changed.

    The bag knows which properties were loaded from the server, which were
    requested by the last load(s), and which were modified or deleted since
    the change log was last cleared. The owner supplies the schema, the
    requested server version and lazy loading.
    """

    def __init__(self, owner, on_change=None):
        self.owner = owner
        self._on_change = on_change
        self._properties: Dict[PropertyDefinition, Any] = {}
        self._loaded: Set[PropertyDefinition] = set()
        # Insertion-ordered sets
        self._modified: Dict[PropertyDefinition, None] = {}
        self._deleted: Dict[PropertyDefinition, Any] = {}
        self._requested: List[PropertySet] = []
        self._is_dirty = False
        self._loading = False

    @property
    def schema(self):
        return self.owner.schema

    @property
    def is_dirty(self) -> bool:
        return self._is_dirty or bool(self._modified) or bool(self._deleted)

    @property
    def is_update_call_necessary(self) -> bool:
        return any(d.has_flag(PropertyDefinitionFlags.CAN_UPDATE) for d in self._modified) or \
            any(d.has_flag(PropertyDefinitionFlags.CAN_DELETE) for d in self._deleted)

    @property
    def modified_properties(self) -> Tuple[PropertyDefinition, ...]:
        return tuple(d for d in self.schema if d in self._modified)

    @property
    def deleted_properties(self) -> Tuple[PropertyDefinition, ...]:
        return tuple(d for d in self.schema if d in self._deleted)

    def __contains__(self, definition: PropertyDefinition) -> bool:
        return definition in self._properties

    def peek(self, definition: PropertyDefinition, default: Any = None) -> Any:
        """Raw stored value; never loads and never raises."""
        return self._properties.get(definition, default)

    def is_requested_property(self, definition: PropertyDefinition) -> bool:
        return any(s.includes(definition, self.schema) for s in self._requested)

    def is_property_loaded(self, definition: PropertyDefinition) -> bool:
        return definition in self._loaded or self.is_requested_property(definition)

    def is_property_updated(self, definition: PropertyDefinition) -> bool:
        return definition in self._modified

    # Validation helpers

    def _check_in_schema(self, definition: PropertyDefinition) -> None:
        if definition not in self.schema:
            raise PropertyNotFoundError(
                f"{definition.name} is not a property of {self.owner.__class__.__name__}",
                definition
            )

    def _check_version(self, definition: PropertyDefinition) -> None:
        version = self.owner.version
        if version < definition.version:
            raise ProtocolVersionError(
                f"The property {definition.name} is valid only for {definition.version.value} or later versions.",
                required_version=definition.version,
                requested_version=version,
            )

    # Reading and writing values

    def get(self, definition: PropertyDefinition) -> Any:
        self._check_in_schema(definition)
        self._check_version(definition)

        if definition in self._properties:
            return self._properties[definition]

        if definition.has_flag(PropertyDefinitionFlags.AUTO_INSTANTIATE_ON_READ) and \
                isinstance(definition, ComplexPropertyDefinition):
            node = definition.create_property_instance()
            self._store(definition, node)
            return node

        if definition is self.owner.ID_PROPERTY or self.owner.is_new:
            return None

        if not self.is_property_loaded(definition):
            if self.owner.load_property_on_demand(definition) and definition in self._properties:
                return self._properties[definition]
            if not self.is_property_loaded(definition):
                raise PropertyNotFoundError(
                    f"You must load or assign this property before you can read its value: {definition.name}",
                    definition
                )
        return None

    def set(self, definition: PropertyDefinition, value: Any) -> None:
        self._check_in_schema(definition)
        self._check_version(definition)

        if self.owner.is_new:
            if not definition.has_flag(PropertyDefinitionFlags.CAN_SET):
                raise InvalidOperationError("This property is read-only and can't be set.", definition)
        else:
            if not definition.has_flag(PropertyDefinitionFlags.CAN_UPDATE):
                raise InvalidOperationError("This property can't be updated.", definition)
            if value is None and not definition.has_flag(PropertyDefinitionFlags.CAN_DELETE):
                raise InvalidOperationError("This property can't be deleted.", definition)
        if value is None and not definition.nullable:
            raise InvalidOperationError(f"{definition.name} can't be set to None.", definition)

        current = self._properties.get(definition)
        if not can_set_field_value(current, value):
            return

        if value is None:
            self._delete(definition)
        else:
            self._deleted.pop(definition, None)
            self._modified[definition] = None
            self._store(definition, value)
        self.changed()

    def load_value(self, definition: PropertyDefinition, value: Any) -> None:
        """Store a value read from the server. Not recorded as a change."""
        self._store(definition, value)
        self._loaded.add(definition)

    def _store(self, definition: PropertyDefinition, value: Any) -> None:
        current = self._properties.get(definition)
        if current is not None and current is not value and hasattr(current, "set_change_handler"):
            current.set_change_handler(None)
        self._properties[definition] = value
        if hasattr(value, "set_change_handler"):
            value.set_change_handler(partial(self._property_changed, definition))

    def _delete(self, definition: PropertyDefinition) -> None:
        previous = self._properties.pop(definition, None)
        self._modified.pop(definition, None)
        if hasattr(previous, "set_change_handler"):
            previous.set_change_handler(None)
        if not self.owner.is_new:
            self._deleted[definition] = previous

    def _property_changed(self, definition: PropertyDefinition, value: Any) -> None:
        """A structured value changed in place."""
        if self._loading:
            return
        flag = PropertyDefinitionFlags.CAN_SET if self.owner.is_new else PropertyDefinitionFlags.CAN_UPDATE
        if definition.has_flag(flag):
            self._modified[definition] = None
        self.changed()

    def changed(self) -> None:
        self._is_dirty = True
        if self._on_change is not None:
            self._on_change()

    # Change log

    def clear_change_log(self) -> None:
        self._modified.clear()
        self._deleted.clear()
        for value in self._properties.values():
            if hasattr(value, "clear_change_log"):
                value.clear_change_log()
        self._is_dirty = False

    def clear(self) -> None:
        for value in self._properties.values():
            if hasattr(value, "set_change_handler"):
                value.set_change_handler(None)
        self._properties.clear()
        self._loaded.clear()
        self._requested.clear()
        self._modified.clear()
        self._deleted.clear()
        self._is_dirty = False

    # XML

    def load_from_xml(self, reader: XmlReader, clear: bool,
                      requested_property_set: Optional[PropertySet] = None) -> None:
        """
        Read the object element under the cursor.

        With ``clear`` the bag is emptied first (a fresh load); otherwise
        values returned by the server are merged over the existing ones.
        Elements the schema does not know are skipped. A fresh load clears
        the change log; a merge drops only the entries of the properties the
        server just overwrote.
        """
        if clear:
            self.clear()
        if requested_property_set is not None:
            self._requested.append(requested_property_set)

        reader.ensure_current_node_is_start_element(XmlNamespace.TYPES)
        depth = reader.depth
        owner_name = reader.local_name
        read = []
        self._loading = True
        try:
            while True:
                node_type = reader.read()
                if node_type is NodeType.END_ELEMENT and reader.depth == depth:
                    break
                if node_type is NodeType.END_DOCUMENT:
                    raise SerializationError(f"Unexpected end of document inside {owner_name}")
                if node_type is not NodeType.START_ELEMENT:
                    continue
                definition = self.schema.try_get_property_definition(reader.local_name)
                if definition is None:
                    log.debug(f"Skipping unknown element {reader.local_name!r} in {owner_name}")
                    reader.skip_current_element()
                    continue
                definition.load_property_value_from_xml(reader, self)
                self._loaded.add(definition)
                read.append(definition)
        finally:
            self._loading = False

        if clear:
            self.clear_change_log()
            return
        for definition in read:
            self._modified.pop(definition, None)
            self._deleted.pop(definition, None)
        self._is_dirty = bool(self._modified or self._deleted)

    def write_to_xml(self, writer: XmlWriter, mode: WriteMode = WriteMode.CREATE) -> bool:
        """Serialize in ``mode``. Returns whether any property was written."""
        if mode is WriteMode.PATCH:
            return self._write_patch(writer)

        flag = PropertyDefinitionFlags.CAN_SET if mode is WriteMode.CREATE else PropertyDefinitionFlags.CAN_UPDATE
        version = self.owner.version
        written = 0
        writer.write_start_element(XmlNamespace.TYPES, self.owner.XML_ELEMENT_NAME)
        for definition in self.schema:
            if not definition.has_flag(flag) or version < definition.version:
                continue
            if self._properties.get(definition) is None:
                continue
            definition.write_property_value_to_xml(writer, self, False)
            written += 1
        writer.write_end_element()
        return written > 0

    def _write_patch(self, writer: XmlWriter) -> bool:
        owner = self.owner
        object_id = owner.id
        if object_id is None:
            raise SerializationError(f"Cannot write changes for a {owner.__class__.__name__} that has no id")

        written = 0
        writer.write_start_element(XmlNamespace.TYPES, owner.CHANGE_XML_ELEMENT_NAME)
        object_id.write_to_xml(writer, owner.ID_PROPERTY.xml_element_name)
        writer.write_start_element(XmlNamespace.TYPES, "Updates")
        for definition in self.schema:
            if definition in self._modified and definition.has_flag(PropertyDefinitionFlags.CAN_UPDATE):
                self._write_set_update(writer, definition)
                written += 1
            elif definition in self._deleted and definition.has_flag(PropertyDefinitionFlags.CAN_DELETE):
                self._write_delete_update(writer, definition)
                written += 1
        writer.write_end_element()
        writer.write_end_element()
        return written > 0

    def _write_set_update(self, writer: XmlWriter, definition: PropertyDefinition) -> None:
        writer.write_start_element(XmlNamespace.TYPES, self.owner.SET_FIELD_XML_ELEMENT_NAME)
        definition.write_to_xml(writer)
        writer.write_start_element(XmlNamespace.TYPES, self.owner.XML_ELEMENT_NAME)
        definition.write_property_value_to_xml(writer, self, True)
        writer.write_end_element()
        writer.write_end_element()

    def _write_delete_update(self, writer: XmlWriter, definition: PropertyDefinition) -> None:
        writer.write_start_element(XmlNamespace.TYPES, self.owner.DELETE_FIELD_XML_ELEMENT_NAME)
        definition.write_to_xml(writer)
        writer.write_end_element()
