"""Item, folder and subscription operations."""

from enum import Enum
from typing import List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from ..core.events import EventType
from ..core.property_set import PropertySet
from ..core.service_object import SERVICE_OBJECTS, ServiceObject
from ..core.version import ExchangeVersion
from ..core.xml import NodeType, XmlNamespace, XmlReader, XmlWriter, parse_bool
from ..exceptions import ValidationError
from .request import MultiResponseServiceRequest, ensure_not_empty
from .response import ServiceErrorHandling, ServiceResponse


class MessageDisposition(str, Enum):
    SAVE_ONLY = "SaveOnly"
    SEND_ONLY = "SendOnly"
    SEND_AND_SAVE_COPY = "SendAndSaveCopy"


class SendInvitationsMode(str, Enum):
    SEND_TO_NONE = "SendToNone"
    SEND_ONLY_TO_ALL = "SendOnlyToAll"
    SEND_TO_ALL_AND_SAVE_COPY = "SendToAllAndSaveCopy"


class SendInvitationsOrCancellationsMode(str, Enum):
    SEND_TO_NONE = "SendToNone"
    SEND_ONLY_TO_ALL = "SendOnlyToAll"
    SEND_ONLY_TO_CHANGED = "SendOnlyToChanged"
    SEND_TO_ALL_AND_SAVE_COPY = "SendToAllAndSaveCopy"
    SEND_TO_CHANGED_AND_SAVE_COPY = "SendToChangedAndSaveCopy"


class SendCancellationsMode(str, Enum):
    SEND_TO_NONE = "SendToNone"
    SEND_ONLY_TO_ALL = "SendOnlyToAll"
    SEND_TO_ALL_AND_SAVE_COPY = "SendToAllAndSaveCopy"


class ConflictResolutionMode(str, Enum):
    NEVER_OVERWRITE = "NeverOverwrite"
    AUTO_RESOLVE = "AutoResolve"
    ALWAYS_OVERWRITE = "AlwaysOverwrite"


class DeleteMode(str, Enum):
    HARD_DELETE = "HardDelete"
    SOFT_DELETE = "SoftDelete"
    MOVE_TO_DELETED_ITEMS = "MoveToDeletedItems"


class AffectedTaskOccurrences(str, Enum):
    ALL_OCCURRENCES = "AllOccurrences"
    SPECIFIED_OCCURRENCE_ONLY = "SpecifiedOccurrenceOnly"


class ItemTraversal(str, Enum):
    SHALLOW = "Shallow"
    SOFT_DELETED = "SoftDeleted"
    ASSOCIATED = "Associated"


class FindItemsResults(BaseModel):
    """One page of FindItem results for one parent folder."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    items: List[ServiceObject] = Field(default_factory=list, description="Items in this page")
    total_count: int = Field(0, description="Total number of items in the view")
    more_available: bool = Field(False, description="Whether more pages follow")
    next_page_offset: Optional[int] = Field(None, description="Offset of the next page")


def _write_ids(writer: XmlWriter, element_name: str, ids: Sequence) -> None:
    writer.write_start_element(XmlNamespace.MESSAGES, element_name)
    for node in ids:
        node.write_to_xml(writer)
    writer.write_end_element()


def _read_objects(reader: XmlReader, on_object) -> None:
    """Read every service object inside the container element under the cursor."""
    depth = reader.depth
    index = 0
    while True:
        node_type = reader.read()
        if node_type is NodeType.END_ELEMENT and reader.depth == depth:
            return
        if node_type is not NodeType.START_ELEMENT:
            continue
        on_object(index, reader)
        index += 1


def _create_object(service, reader: XmlReader) -> Optional[ServiceObject]:
    obj = SERVICE_OBJECTS.create(reader.local_name, service)
    if obj is None:
        reader.skip_current_element()
    return obj


class _GetObjectsRequest(MultiResponseServiceRequest):
    """Shared body of GetItem and GetFolder."""

    SHAPE_XML_ELEMENT_NAME: str = None
    IDS_XML_ELEMENT_NAME: str = None
    CONTAINER_XML_ELEMENT_NAME: str = None

    def __init__(self, service, ids, property_set: Optional[PropertySet] = None,
                 error_handling: ServiceErrorHandling = ServiceErrorHandling.THROW_ON_ERROR):
        super().__init__(service, error_handling)
        self.ids = list(ids)
        self.property_set = property_set or PropertySet.first_class()

    def validate(self) -> None:
        super().validate()
        ensure_not_empty(self.ids, "ids")
        self.property_set.validate()
        for node in self.ids:
            node.validate()

    def expected_response_message_count(self) -> int:
        return len(self.ids)

    def write_elements_to_xml(self, writer):
        self.property_set.write_to_xml(writer, self.SHAPE_XML_ELEMENT_NAME)
        _write_ids(writer, self.IDS_XML_ELEMENT_NAME, self.ids)

    def read_payload(self, response, reader, index):
        if reader.local_name != self.CONTAINER_XML_ELEMENT_NAME:
            return False

        def load(position, rd):
            obj = _create_object(self.service, rd)
            if obj is not None:
                obj.load_from_xml(rd, clear=True, requested_property_set=self.property_set)
                response.payload = obj

        _read_objects(reader, load)
        return True


class GetItemRequest(_GetObjectsRequest):
    """Bind to items by id."""

    XML_ELEMENT_NAME = "GetItem"
    RESPONSE_XML_ELEMENT_NAME = "GetItemResponse"
    RESPONSE_MESSAGE_XML_ELEMENT_NAME = "GetItemResponseMessage"
    SHAPE_XML_ELEMENT_NAME = "ItemShape"
    IDS_XML_ELEMENT_NAME = "ItemIds"
    CONTAINER_XML_ELEMENT_NAME = "Items"


class GetFolderRequest(_GetObjectsRequest):
    """Bind to folders by id or well-known name."""

    XML_ELEMENT_NAME = "GetFolder"
    RESPONSE_XML_ELEMENT_NAME = "GetFolderResponse"
    RESPONSE_MESSAGE_XML_ELEMENT_NAME = "GetFolderResponseMessage"
    SHAPE_XML_ELEMENT_NAME = "FolderShape"
    IDS_XML_ELEMENT_NAME = "FolderIds"
    CONTAINER_XML_ELEMENT_NAME = "Folders"


class GetItemRequestForLoad(MultiResponseServiceRequest):
    """Load more properties into items that are already bound."""

    XML_ELEMENT_NAME = "GetItem"
    RESPONSE_XML_ELEMENT_NAME = "GetItemResponse"
    RESPONSE_MESSAGE_XML_ELEMENT_NAME = "GetItemResponseMessage"

    def __init__(self, service, items: Sequence[ServiceObject], property_set: PropertySet,
                 error_handling: ServiceErrorHandling = ServiceErrorHandling.THROW_ON_ERROR):
        super().__init__(service, error_handling)
        self.items = list(items)
        self.property_set = property_set

    def validate(self) -> None:
        super().validate()
        ensure_not_empty(self.items, "items")
        self.property_set.validate()
        for item in self.items:
            if item.is_new:
                raise ValidationError(f"{item!r} has no id and cannot be loaded.")

    def expected_response_message_count(self) -> int:
        return len(self.items)

    def write_elements_to_xml(self, writer):
        self.property_set.write_to_xml(writer, "ItemShape")
        _write_ids(writer, "ItemIds", [item.id for item in self.items])

    def read_payload(self, response, reader, index):
        if reader.local_name != "Items":
            return False
        item = self.items[index]

        def load(position, rd):
            item.load_from_xml(rd, clear=False, requested_property_set=self.property_set)
            response.payload = item

        _read_objects(reader, load)
        return True


class CreateItemRequest(MultiResponseServiceRequest):
    """Save new items, optionally sending them."""

    XML_ELEMENT_NAME = "CreateItem"
    RESPONSE_XML_ELEMENT_NAME = "CreateItemResponse"
    RESPONSE_MESSAGE_XML_ELEMENT_NAME = "CreateItemResponseMessage"

    def __init__(
        self,
        service,
        items: Sequence[ServiceObject],
        saved_item_folder_id=None,
        message_disposition: Optional[MessageDisposition] = None,
        send_invitations_mode: Optional[SendInvitationsMode] = None,
        error_handling: ServiceErrorHandling = ServiceErrorHandling.THROW_ON_ERROR
    ):
        super().__init__(service, error_handling)
        self.items = list(items)
        self.saved_item_folder_id = saved_item_folder_id
        self.message_disposition = message_disposition
        self.send_invitations_mode = send_invitations_mode

    def validate(self) -> None:
        super().validate()
        ensure_not_empty(self.items, "items")
        for item in self.items:
            if not item.is_new:
                raise ValidationError(f"{item!r} already has an id and cannot be created again.")
            item.validate()
        if self.saved_item_folder_id is not None:
            self.saved_item_folder_id.validate()
            if self.message_disposition is MessageDisposition.SEND_ONLY:
                raise ValidationError("A saved item folder cannot be specified when the message is only sent.")

    def expected_response_message_count(self) -> int:
        return len(self.items)

    def write_attributes_to_xml(self, writer):
        writer.write_attribute_value("MessageDisposition", self.message_disposition)
        writer.write_attribute_value("SendMeetingInvitations", self.send_invitations_mode)

    def write_elements_to_xml(self, writer):
        if self.saved_item_folder_id is not None:
            _write_ids(writer, "SavedItemFolderId", [self.saved_item_folder_id])
        writer.write_start_element(XmlNamespace.MESSAGES, "Items")
        for item in self.items:
            item.write_to_xml(writer)
        writer.write_end_element()

    def read_payload(self, response, reader, index):
        if reader.local_name != "Items":
            return False
        item = self.items[index]

        def load(position, rd):
            # The server echoes the new id (and change key) only
            item.load_from_xml(rd, clear=False)
            response.payload = item

        _read_objects(reader, load)
        item.clear_change_log()
        return True


class UpdateItemRequest(MultiResponseServiceRequest):
    """Write the changed properties of bound items."""

    XML_ELEMENT_NAME = "UpdateItem"
    RESPONSE_XML_ELEMENT_NAME = "UpdateItemResponse"
    RESPONSE_MESSAGE_XML_ELEMENT_NAME = "UpdateItemResponseMessage"

    def __init__(
        self,
        service,
        items: Sequence[ServiceObject],
        conflict_resolution: ConflictResolutionMode = ConflictResolutionMode.AUTO_RESOLVE,
        message_disposition: Optional[MessageDisposition] = None,
        saved_item_folder_id=None,
        send_invitations_or_cancellations_mode: Optional[SendInvitationsOrCancellationsMode] = None,
        error_handling: ServiceErrorHandling = ServiceErrorHandling.THROW_ON_ERROR
    ):
        super().__init__(service, error_handling)
        self.items = list(items)
        self.conflict_resolution = conflict_resolution
        self.message_disposition = message_disposition
        self.saved_item_folder_id = saved_item_folder_id
        self.send_invitations_or_cancellations_mode = send_invitations_or_cancellations_mode

    def validate(self) -> None:
        super().validate()
        ensure_not_empty(self.items, "items")
        for item in self.items:
            if item.is_new:
                raise ValidationError(f"{item!r} has no id; create it before updating it.")
            item.validate()
        if self.saved_item_folder_id is not None:
            self.saved_item_folder_id.validate()

    def expected_response_message_count(self) -> int:
        return len(self.items)

    def write_attributes_to_xml(self, writer):
        writer.write_attribute_value("ConflictResolution", self.conflict_resolution)
        writer.write_attribute_value("MessageDisposition", self.message_disposition)
        writer.write_attribute_value("SendMeetingInvitationsOrCancellations", self.send_invitations_or_cancellations_mode)

    def write_elements_to_xml(self, writer):
        if self.saved_item_folder_id is not None:
            _write_ids(writer, "SavedItemFolderId", [self.saved_item_folder_id])
        writer.write_start_element(XmlNamespace.MESSAGES, "ItemChanges")
        for item in self.items:
            item.write_to_xml_for_update(writer)
        writer.write_end_element()

    def create_service_response(self, index):
        return UpdateItemResponse()

    def read_payload(self, response, reader, index):
        item = self.items[index]
        if reader.local_name == "ConflictResults":
            response.conflict_count = reader.read_element_value_by_name(XmlNamespace.TYPES, "Count", int) or 0
            reader.read_end_element(XmlNamespace.MESSAGES, "ConflictResults")
            return True
        if reader.local_name != "Items":
            return False

        def load(position, rd):
            item.load_from_xml(rd, clear=False)
            response.payload = item

        _read_objects(reader, load)
        item.clear_change_log()
        return True


class UpdateItemResponse(ServiceResponse):
    def __init__(self):
        super().__init__()
        self.conflict_count = 0


class _DeleteRequest(MultiResponseServiceRequest):
    IDS_XML_ELEMENT_NAME: str = None

    def __init__(self, service, ids, delete_mode: DeleteMode = DeleteMode.MOVE_TO_DELETED_ITEMS,
                 error_handling: ServiceErrorHandling = ServiceErrorHandling.THROW_ON_ERROR):
        super().__init__(service, error_handling)
        self.ids = list(ids)
        self.delete_mode = delete_mode

    def validate(self) -> None:
        super().validate()
        ensure_not_empty(self.ids, "ids")
        for node in self.ids:
            node.validate()

    def expected_response_message_count(self) -> int:
        return len(self.ids)

    def write_attributes_to_xml(self, writer):
        writer.write_attribute_value("DeleteType", self.delete_mode)

    def write_elements_to_xml(self, writer):
        _write_ids(writer, self.IDS_XML_ELEMENT_NAME, self.ids)


class DeleteItemRequest(_DeleteRequest):
    XML_ELEMENT_NAME = "DeleteItem"
    RESPONSE_XML_ELEMENT_NAME = "DeleteItemResponse"
    RESPONSE_MESSAGE_XML_ELEMENT_NAME = "DeleteItemResponseMessage"
    IDS_XML_ELEMENT_NAME = "ItemIds"

    def __init__(self, service, ids, delete_mode: DeleteMode = DeleteMode.MOVE_TO_DELETED_ITEMS,
                 send_cancellations_mode: Optional[SendCancellationsMode] = None,
                 affected_task_occurrences: Optional[AffectedTaskOccurrences] = None,
                 error_handling: ServiceErrorHandling = ServiceErrorHandling.THROW_ON_ERROR):
        super().__init__(service, ids, delete_mode, error_handling)
        self.send_cancellations_mode = send_cancellations_mode
        self.affected_task_occurrences = affected_task_occurrences

    def write_attributes_to_xml(self, writer):
        super().write_attributes_to_xml(writer)
        writer.write_attribute_value("SendMeetingCancellations", self.send_cancellations_mode)
        writer.write_attribute_value("AffectedTaskOccurrences", self.affected_task_occurrences)


class DeleteFolderRequest(_DeleteRequest):
    XML_ELEMENT_NAME = "DeleteFolder"
    RESPONSE_XML_ELEMENT_NAME = "DeleteFolderResponse"
    RESPONSE_MESSAGE_XML_ELEMENT_NAME = "DeleteFolderResponseMessage"
    IDS_XML_ELEMENT_NAME = "FolderIds"


class FindItemRequest(MultiResponseServiceRequest):
    """One page of items per parent folder, optionally restricted by a search filter."""

    XML_ELEMENT_NAME = "FindItem"
    RESPONSE_XML_ELEMENT_NAME = "FindItemResponse"
    RESPONSE_MESSAGE_XML_ELEMENT_NAME = "FindItemResponseMessage"

    def __init__(
        self,
        service,
        parent_folder_ids,
        property_set: Optional[PropertySet] = None,
        restriction=None,
        max_entries: int = 100,
        offset: int = 0,
        traversal: ItemTraversal = ItemTraversal.SHALLOW,
        error_handling: ServiceErrorHandling = ServiceErrorHandling.THROW_ON_ERROR
    ):
        super().__init__(service, error_handling)
        self.parent_folder_ids = list(parent_folder_ids)
        self.property_set = property_set or PropertySet.first_class()
        self.restriction = restriction
        self.max_entries = max_entries
        self.offset = offset
        self.traversal = traversal

    def validate(self) -> None:
        super().validate()
        ensure_not_empty(self.parent_folder_ids, "parent_folder_ids")
        if self.max_entries < 1:
            raise ValidationError("max_entries must be greater than 0.")
        if self.offset < 0:
            raise ValidationError("offset must be 0 or greater.")
        self.property_set.validate()
        if self.restriction is not None:
            self.restriction.validate()

    def expected_response_message_count(self) -> int:
        return len(self.parent_folder_ids)

    def write_attributes_to_xml(self, writer):
        writer.write_attribute_value("Traversal", self.traversal)

    def write_elements_to_xml(self, writer):
        self.property_set.write_to_xml(writer, "ItemShape")
        writer.write_start_element(XmlNamespace.MESSAGES, "IndexedPageItemView")
        writer.write_attribute_value("MaxEntriesReturned", self.max_entries)
        writer.write_attribute_value("Offset", self.offset)
        writer.write_attribute_value("BasePoint", "Beginning")
        writer.write_end_element()
        if self.restriction is not None:
            writer.write_start_element(XmlNamespace.MESSAGES, "Restriction")
            self.restriction.write_to_xml(writer)
            writer.write_end_element()
        _write_ids(writer, "ParentFolderIds", self.parent_folder_ids)

    def read_payload(self, response, reader, index):
        if reader.local_name != "RootFolder":
            return False
        results = FindItemsResults(
            total_count=reader.get_attribute("TotalItemsInView", int, default=0),
            more_available=not reader.get_attribute("IncludesLastItemInRange", parse_bool, default=True),
            next_page_offset=reader.get_attribute("IndexedPagingOffset", int),
        )
        depth = reader.depth
        while True:
            node_type = reader.read()
            if node_type is NodeType.END_ELEMENT and reader.depth == depth:
                break
            if node_type is not NodeType.START_ELEMENT:
                continue
            if reader.local_name != "Items":
                reader.skip_current_element()
                continue

            def load(position, rd):
                obj = _create_object(self.service, rd)
                if obj is not None:
                    obj.load_from_xml(rd, clear=True, requested_property_set=self.property_set)
                    results.items.append(obj)

            _read_objects(reader, load)
        if not results.more_available:
            results.next_page_offset = None
        response.payload = results
        return True


class SubscribeToStreamingNotificationsRequest(MultiResponseServiceRequest):
    """Create a streaming subscription on a set of folders."""

    XML_ELEMENT_NAME = "Subscribe"
    RESPONSE_XML_ELEMENT_NAME = "SubscribeResponse"
    RESPONSE_MESSAGE_XML_ELEMENT_NAME = "SubscribeResponseMessage"
    MINIMUM_VERSION = ExchangeVersion.EXCHANGE_2010_SP1

    def __init__(self, service, folder_ids, event_types: Sequence[EventType],
                 error_handling: ServiceErrorHandling = ServiceErrorHandling.THROW_ON_ERROR):
        super().__init__(service, error_handling)
        self.folder_ids = list(folder_ids)
        self.event_types = list(event_types)

    def validate(self) -> None:
        super().validate()
        ensure_not_empty(self.folder_ids, "folder_ids")
        ensure_not_empty(self.event_types, "event_types")
        if EventType.STATUS in self.event_types:
            raise ValidationError("Status events can't be subscribed to.")
        for node in self.folder_ids:
            node.validate()

    def expected_response_message_count(self) -> int:
        return 1

    def write_elements_to_xml(self, writer):
        writer.write_start_element(XmlNamespace.MESSAGES, "StreamingSubscriptionRequest")
        writer.write_start_element(XmlNamespace.TYPES, "FolderIds")
        for node in self.folder_ids:
            node.write_to_xml(writer)
        writer.write_end_element()
        writer.write_start_element(XmlNamespace.TYPES, "EventTypes")
        for event_type in self.event_types:
            writer.write_element_value(XmlNamespace.TYPES, "EventType", event_type)
        writer.write_end_element()
        writer.write_end_element()

    def read_payload(self, response, reader, index):
        if reader.local_name != "SubscriptionId":
            return False
        response.payload = reader.read_element_value()
        return True


class UnsubscribeRequest(MultiResponseServiceRequest):
    XML_ELEMENT_NAME = "Unsubscribe"
    RESPONSE_XML_ELEMENT_NAME = "UnsubscribeResponse"
    RESPONSE_MESSAGE_XML_ELEMENT_NAME = "UnsubscribeResponseMessage"

    def __init__(self, service, subscription_id: str,
                 error_handling: ServiceErrorHandling = ServiceErrorHandling.THROW_ON_ERROR):
        super().__init__(service, error_handling)
        self.subscription_id = subscription_id

    def validate(self) -> None:
        super().validate()
        if not self.subscription_id:
            raise ValidationError("subscription_id cannot be empty.")

    def expected_response_message_count(self) -> int:
        return 1

    def write_elements_to_xml(self, writer):
        writer.write_element_value(XmlNamespace.MESSAGES, "SubscriptionId", self.subscription_id)
