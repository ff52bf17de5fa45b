"""Service objects: items and folders backed by a property bag."""

import logging
from typing import Callable, Optional, Union

from ..exceptions import SerializationError, ValidationError
from .complex_property import ComplexProperty, ElementRegistry, NodeField, NodeKind
from .properties import (
    ATTACHMENT_KINDS,
    ATTACHMENTS,
    ATTENDEE_COLLECTION,
    FOLDER_ID,
    INTERNET_MESSAGE_HEADERS,
    ITEM_ID,
    MAILBOX_COLLECTION,
    MESSAGE_BODY,
    SINGLE_RECIPIENT,
    STRING_LIST,
    Importance,
    attachment_fields,
)
from .property_bag import PropertyBag, WriteMode
from .property_definition import ComplexPropertyDefinition, PropertyDefinition
from .property_definition import PropertyDefinitionFlags as Flags
from .property_set import PropertySet
from .recurrence import RECURRENCE
from .schema import ServiceObjectSchema
from .version import ExchangeVersion
from .xml import XmlReader, XmlWriter, parse_bool, parse_datetime, parse_enum

log = logging.getLogger(__name__)

SETTABLE = Flags.CAN_SET | Flags.CAN_UPDATE | Flags.CAN_DELETE | Flags.CAN_FIND


class ItemSchema:
    ID = ComplexPropertyDefinition("id", "ItemId", ITEM_ID, uri="item:ItemId", flags=Flags.CAN_FIND)
    PARENT_FOLDER_ID = ComplexPropertyDefinition(
        "parent_folder_id", "ParentFolderId", FOLDER_ID, uri="item:ParentFolderId", flags=Flags.CAN_FIND
    )
    ITEM_CLASS = PropertyDefinition(
        "item_class", "ItemClass", "item:ItemClass", Flags.CAN_SET | Flags.CAN_UPDATE | Flags.CAN_FIND
    )
    SUBJECT = PropertyDefinition("subject", "Subject", "item:Subject", SETTABLE)
    BODY = ComplexPropertyDefinition(
        "body", "Body", MESSAGE_BODY, uri="item:Body", flags=Flags.CAN_SET | Flags.CAN_UPDATE | Flags.CAN_DELETE
    )
    ATTACHMENTS = ComplexPropertyDefinition(
        "attachments", "Attachments", ATTACHMENTS, uri="item:Attachments",
        flags=Flags.CAN_SET | Flags.AUTO_INSTANTIATE_ON_READ | Flags.REUSE_INSTANCE
    )
    DATETIME_RECEIVED = PropertyDefinition(
        "datetime_received", "DateTimeReceived", "item:DateTimeReceived", Flags.CAN_FIND, converter=parse_datetime,
        nullable=False
    )
    SIZE = PropertyDefinition("size", "Size", "item:Size", Flags.CAN_FIND, converter=int, nullable=False)
    CATEGORIES = ComplexPropertyDefinition(
        "categories", "Categories", STRING_LIST, uri="item:Categories",
        flags=SETTABLE | Flags.AUTO_INSTANTIATE_ON_READ
    )
    IMPORTANCE = PropertyDefinition(
        "importance", "Importance", "item:Importance", Flags.CAN_SET | Flags.CAN_UPDATE | Flags.CAN_FIND,
        converter=parse_enum(Importance), nullable=False
    )
    IS_DRAFT = PropertyDefinition(
        "is_draft", "IsDraft", "item:IsDraft", Flags.CAN_FIND, converter=parse_bool, nullable=False
    )
    INTERNET_MESSAGE_HEADERS = ComplexPropertyDefinition(
        "internet_message_headers", "InternetMessageHeaders", INTERNET_MESSAGE_HEADERS,
        uri="item:InternetMessageHeaders", flags=Flags.MUST_BE_EXPLICITLY_LOADED
    )
    LAST_MODIFIED_TIME = PropertyDefinition(
        "last_modified_time", "LastModifiedTime", "item:LastModifiedTime", Flags.CAN_FIND,
        version=ExchangeVersion.EXCHANGE_2010, converter=parse_datetime
    )

    SCHEMA = ServiceObjectSchema(
        ID, PARENT_FOLDER_ID, ITEM_CLASS, SUBJECT, BODY, ATTACHMENTS, DATETIME_RECEIVED, SIZE,
        CATEGORIES, IMPORTANCE, IS_DRAFT, INTERNET_MESSAGE_HEADERS, LAST_MODIFIED_TIME,
    )


class MessageSchema(ItemSchema):
    TO_RECIPIENTS = ComplexPropertyDefinition(
        "to_recipients", "ToRecipients", MAILBOX_COLLECTION, uri="message:ToRecipients",
        flags=Flags.CAN_SET | Flags.CAN_UPDATE | Flags.CAN_DELETE | Flags.AUTO_INSTANTIATE_ON_READ
    )
    CC_RECIPIENTS = ComplexPropertyDefinition(
        "cc_recipients", "CcRecipients", MAILBOX_COLLECTION, uri="message:CcRecipients",
        flags=Flags.CAN_SET | Flags.CAN_UPDATE | Flags.CAN_DELETE | Flags.AUTO_INSTANTIATE_ON_READ
    )
    FROM = ComplexPropertyDefinition(
        "sender", "From", SINGLE_RECIPIENT, uri="message:From",
        flags=Flags.CAN_SET | Flags.CAN_UPDATE | Flags.CAN_DELETE | Flags.CAN_FIND
    )
    INTERNET_MESSAGE_ID = PropertyDefinition(
        "internet_message_id", "InternetMessageId", "message:InternetMessageId", Flags.CAN_FIND
    )
    IS_READ = PropertyDefinition(
        "is_read", "IsRead", "message:IsRead", Flags.CAN_SET | Flags.CAN_UPDATE | Flags.CAN_FIND,
        converter=parse_bool, nullable=False
    )

    SCHEMA = ServiceObjectSchema(
        TO_RECIPIENTS, CC_RECIPIENTS, FROM, INTERNET_MESSAGE_ID, IS_READ,
        parent=ItemSchema.SCHEMA,
    )


class CalendarItemSchema(ItemSchema):
    START = PropertyDefinition(
        "start", "Start", "calendar:Start", Flags.CAN_SET | Flags.CAN_UPDATE | Flags.CAN_FIND,
        converter=parse_datetime, nullable=False
    )
    END = PropertyDefinition(
        "end", "End", "calendar:End", Flags.CAN_SET | Flags.CAN_UPDATE | Flags.CAN_FIND,
        converter=parse_datetime, nullable=False
    )
    IS_ALL_DAY_EVENT = PropertyDefinition(
        "is_all_day_event", "IsAllDayEvent", "calendar:IsAllDayEvent",
        Flags.CAN_SET | Flags.CAN_UPDATE | Flags.CAN_FIND, converter=parse_bool,
        nullable=False
    )
    LOCATION = PropertyDefinition("location", "Location", "calendar:Location", SETTABLE)
    REQUIRED_ATTENDEES = ComplexPropertyDefinition(
        "required_attendees", "RequiredAttendees", ATTENDEE_COLLECTION, uri="calendar:RequiredAttendees",
        flags=Flags.CAN_SET | Flags.CAN_UPDATE | Flags.CAN_DELETE | Flags.AUTO_INSTANTIATE_ON_READ
    )
    RECURRENCE = ComplexPropertyDefinition(
        "recurrence", "Recurrence", RECURRENCE, uri="calendar:Recurrence",
        flags=Flags.CAN_SET | Flags.CAN_UPDATE | Flags.CAN_DELETE
    )

    SCHEMA = ServiceObjectSchema(
        START, END, IS_ALL_DAY_EVENT, LOCATION, REQUIRED_ATTENDEES, RECURRENCE,
        parent=ItemSchema.SCHEMA,
    )


class FolderSchema:
    ID = ComplexPropertyDefinition("id", "FolderId", FOLDER_ID, uri="folder:FolderId", flags=Flags.CAN_FIND)
    PARENT_FOLDER_ID = ComplexPropertyDefinition(
        "parent_folder_id", "ParentFolderId", FOLDER_ID, uri="folder:ParentFolderId", flags=Flags.CAN_FIND
    )
    FOLDER_CLASS = PropertyDefinition(
        "folder_class", "FolderClass", "folder:FolderClass", Flags.CAN_SET | Flags.CAN_UPDATE | Flags.CAN_FIND
    )
    DISPLAY_NAME = PropertyDefinition(
        "display_name", "DisplayName", "folder:DisplayName", Flags.CAN_SET | Flags.CAN_UPDATE | Flags.CAN_FIND
    )
    TOTAL_COUNT = PropertyDefinition("total_count", "TotalCount", "folder:TotalCount", Flags.CAN_FIND, converter=int)
    CHILD_FOLDER_COUNT = PropertyDefinition(
        "child_folder_count", "ChildFolderCount", "folder:ChildFolderCount", Flags.CAN_FIND, converter=int
    )
    UNREAD_COUNT = PropertyDefinition(
        "unread_count", "UnreadCount", "folder:UnreadCount", Flags.CAN_FIND, converter=int
    )

    SCHEMA = ServiceObjectSchema(
        ID, PARENT_FOLDER_ID, FOLDER_CLASS, DISPLAY_NAME, TOTAL_COUNT, CHILD_FOLDER_COUNT, UNREAD_COUNT,
    )


class ServiceObject:
    """
    Base class of everything that is created, loaded and updated as a whole.

    Property values live in a :class:`PropertyBag`; subclasses only declare
    their schema and wire names. Values are accessed by definition or by
    name: ``message[MessageSchema.SUBJECT]`` or ``message["subject"]``.

    Args:
        service: Owning service facade, used for lazy loading and versioning
        on_change: Called with this object whenever one of its values changes
    """

    SCHEMA: ServiceObjectSchema = None
    ID_PROPERTY: PropertyDefinition = None
    XML_ELEMENT_NAME: str = None
    CHANGE_XML_ELEMENT_NAME: str = None
    SET_FIELD_XML_ELEMENT_NAME: str = None
    DELETE_FIELD_XML_ELEMENT_NAME: str = None

    def __init__(self, service=None, on_change: Optional[Callable[["ServiceObject"], None]] = None):
        self.service = service
        self._on_change = on_change
        self.property_bag = PropertyBag(self, on_change=self._property_bag_changed)

    @property
    def schema(self) -> ServiceObjectSchema:
        return self.SCHEMA

    @property
    def version(self) -> ExchangeVersion:
        if self.service is None:
            return max(ExchangeVersion)
        return self.service.requested_server_version

    @property
    def id(self) -> Optional[ComplexProperty]:
        return self.property_bag.peek(self.ID_PROPERTY)

    @property
    def is_new(self) -> bool:
        object_id = self.id
        return object_id is None or not object_id.id

    @property
    def is_dirty(self) -> bool:
        return self.property_bag.is_dirty

    # Value access

    def _definition(self, key: Union[str, PropertyDefinition]) -> PropertyDefinition:
        if isinstance(key, str):
            try:
                return self.SCHEMA[key]
            except KeyError:
                raise KeyError(f"{self.__class__.__name__} has no property {key!r}") from None
        return key

    def __getitem__(self, key):
        return self.property_bag.get(self._definition(key))

    def __setitem__(self, key, value):
        self.property_bag.set(self._definition(key), value)

    def __delitem__(self, key):
        self.property_bag.set(self._definition(key), None)

    def is_property_updated(self, key) -> bool:
        return self.property_bag.is_property_updated(self._definition(key))

    # Change notification

    def set_change_handler(self, handler: Optional[Callable[["ServiceObject"], None]]) -> None:
        self._on_change = handler

    def _property_bag_changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self)

    def clear_change_log(self) -> None:
        self.property_bag.clear_change_log()

    # Loading

    def load_property_on_demand(self, definition: PropertyDefinition) -> bool:
        """Fetch one missing property from the server. False when this object cannot lazy load."""
        if self.service is None or self.is_new:
            return False
        log.debug(f"Loading {definition.name} on demand for {self.__class__.__name__}")
        self.service.load_properties_for_items([self], PropertySet.id_only(definition))
        return True

    def load(self, property_set: Optional[PropertySet] = None) -> None:
        if self.service is None:
            raise ValidationError(f"This {self.__class__.__name__} is not attached to a service.")
        self.service.load_properties_for_items([self], property_set or PropertySet.first_class())

    def load_from_xml(self, reader: XmlReader, clear: bool, requested_property_set: Optional[PropertySet] = None):
        self.property_bag.load_from_xml(reader, clear, requested_property_set)

    # Writing

    def validate(self) -> None:
        """Validate every structured value before the object is written."""
        for definition in self.SCHEMA:
            value = self.property_bag.peek(definition)
            if isinstance(value, ComplexProperty):
                value.validate()

    def write_to_xml(self, writer: XmlWriter) -> None:
        self.property_bag.write_to_xml(writer, WriteMode.CREATE)

    def write_to_xml_for_update(self, writer: XmlWriter) -> bool:
        return self.property_bag.write_to_xml(writer, WriteMode.PATCH)

    def __repr__(self) -> str:
        object_id = self.id
        id_value = object_id.id if object_id is not None else None
        return f"{self.__class__.__name__}(id={id_value!r})"


class Item(ServiceObject):
    SCHEMA = ItemSchema.SCHEMA
    ID_PROPERTY = ItemSchema.ID
    XML_ELEMENT_NAME = "Item"
    CHANGE_XML_ELEMENT_NAME = "ItemChange"
    SET_FIELD_XML_ELEMENT_NAME = "SetItemField"
    DELETE_FIELD_XML_ELEMENT_NAME = "DeleteItemField"

    @property
    def attachments(self) -> ComplexProperty:
        return self[ItemSchema.ATTACHMENTS]


class Message(Item):
    SCHEMA = MessageSchema.SCHEMA
    XML_ELEMENT_NAME = "Message"


class CalendarItem(Item):
    SCHEMA = CalendarItemSchema.SCHEMA
    XML_ELEMENT_NAME = "CalendarItem"

    def validate(self) -> None:
        super().validate()
        start = self.property_bag.peek(CalendarItemSchema.START)
        end = self.property_bag.peek(CalendarItemSchema.END)
        if start is not None and end is not None and start > end:
            raise ValidationError("The start time of a calendar item cannot be after its end time.")


class Folder(ServiceObject):
    SCHEMA = FolderSchema.SCHEMA
    ID_PROPERTY = FolderSchema.ID
    XML_ELEMENT_NAME = "Folder"
    CHANGE_XML_ELEMENT_NAME = "FolderChange"
    SET_FIELD_XML_ELEMENT_NAME = "SetFolderField"
    DELETE_FIELD_XML_ELEMENT_NAME = "DeleteFolderField"


# Element name -> service object class
SERVICE_OBJECTS = ElementRegistry("service objects")
SERVICE_OBJECTS.register("Item", Item)
SERVICE_OBJECTS.register("Message", Message)
SERVICE_OBJECTS.register("CalendarItem", CalendarItem)
SERVICE_OBJECTS.register("Folder", Folder)


class EmbeddedItemField(NodeField):
    """
    The item inside an item attachment.

    The attachment observes the embedded item through its change handler and
    forwards changes to its own owner.
    """

    def __init__(self):
        super().__init__("item", "Item")

    def matches(self, reader):
        return reader.local_name in SERVICE_OBJECTS

    def read(self, node, reader):
        item = SERVICE_OBJECTS.create(reader.local_name)
        item.load_from_xml(reader, clear=True)
        node.load_field(self.name, item)

    def read_patch(self, node, reader):
        existing = node.get_field(self.name)
        if existing is None:
            self.read(node, reader)
        elif existing.XML_ELEMENT_NAME != reader.local_name:
            raise SerializationError(
                f"Cannot update the embedded {existing.XML_ELEMENT_NAME} of an item attachment with a "
                f"{reader.local_name}"
            )
        else:
            existing.load_from_xml(reader, clear=False)

    def write(self, node, writer):
        item = node.get_field(self.name)
        if item is not None:
            item.write_to_xml(writer)

    def validate(self, node):
        item = node.get_field(self.name)
        if item is not None:
            item.validate()


ITEM_ATTACHMENT = ATTACHMENT_KINDS.register_kind(NodeKind(
    "ItemAttachment",
    fields=attachment_fields() + (EmbeddedItemField(),),
))
