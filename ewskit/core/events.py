"""Notification events delivered by streaming subscriptions."""

from enum import Enum

from .complex_property import ElementField, ElementRegistry, ItemSpec, NodeKind, NodeValueField
from .properties import FOLDER_ID, ITEM_ID
from .xml import XmlNamespace, parse_bool, parse_datetime


class EventType(Enum):
    STATUS = "StatusEvent"
    NEW_MAIL = "NewMailEvent"
    CREATED = "CreatedEvent"
    DELETED = "DeletedEvent"
    MODIFIED = "ModifiedEvent"
    MOVED = "MovedEvent"
    COPIED = "CopiedEvent"
    FREE_BUSY_CHANGED = "FreeBusyChangedEvent"


def _event_fields():
    # Item events carry ItemId/OldItemId, folder events FolderId/OldFolderId
    return (
        ElementField("watermark", "Watermark"),
        ElementField("timestamp", "TimeStamp", converter=parse_datetime),
        NodeValueField("item_id", "ItemId", kind=ITEM_ID),
        NodeValueField("folder_id", "FolderId", kind=FOLDER_ID),
        NodeValueField("parent_folder_id", "ParentFolderId", kind=FOLDER_ID),
        NodeValueField("old_item_id", "OldItemId", kind=ITEM_ID),
        NodeValueField("old_folder_id", "OldFolderId", kind=FOLDER_ID),
        NodeValueField("old_parent_folder_id", "OldParentFolderId", kind=FOLDER_ID),
        ElementField("unread_count", "UnreadCount", converter=int),
    )


EVENT_KINDS = ElementRegistry("notification events")

for _event_type in EventType:
    EVENT_KINDS.register_kind(NodeKind(_event_type.value, fields=_event_fields()))


def event_type(event) -> EventType:
    return EventType(event.kind.element_name)


def is_folder_event(event) -> bool:
    return event.folder_id is not None


NOTIFICATION = NodeKind(
    "Notification",
    namespace=XmlNamespace.MESSAGES,
    fields=(
        ElementField("subscription_id", "SubscriptionId"),
        ElementField("previous_watermark", "PreviousWatermark"),
        ElementField("more_events", "MoreEvents", converter=parse_bool),
    ),
    items=ItemSpec(registry=EVENT_KINDS),
)
