"""Node kinds shared by the sample service objects."""

from enum import Enum

from ..exceptions import ValidationError
from .complex_property import (
    AttributeField,
    Base64Field,
    ElementField,
    ElementRegistry,
    ItemSpec,
    NodeKind,
    NodeValueField,
    TextField,
)
from .xml import parse_bool, parse_datetime, parse_enum


class WellKnownFolderName(Enum):
    INBOX = "inbox"
    DRAFTS = "drafts"
    SENT_ITEMS = "sentitems"
    DELETED_ITEMS = "deleteditems"
    OUTBOX = "outbox"
    JUNK_EMAIL = "junkemail"
    CALENDAR = "calendar"
    CONTACTS = "contacts"
    TASKS = "tasks"
    NOTES = "notes"
    MSG_FOLDER_ROOT = "msgfolderroot"
    ROOT = "root"


class BodyType(Enum):
    HTML = "HTML"
    TEXT = "Text"


class Importance(Enum):
    LOW = "Low"
    NORMAL = "Normal"
    HIGH = "High"


class MailboxType(Enum):
    MAILBOX = "Mailbox"
    PUBLIC_DL = "PublicDL"
    PRIVATE_DL = "PrivateDL"
    CONTACT = "Contact"
    PUBLIC_FOLDER = "PublicFolder"
    UNKNOWN = "Unknown"
    ONE_OFF = "OneOff"


class MeetingResponseType(Enum):
    UNKNOWN = "Unknown"
    ORGANIZER = "Organizer"
    TENTATIVE = "Tentative"
    ACCEPT = "Accept"
    DECLINE = "Decline"
    NO_RESPONSE_RECEIVED = "NoResponseReceived"


def _id_fields():
    return (
        AttributeField("id", "Id", required=True),
        AttributeField("change_key", "ChangeKey"),
    )


ITEM_ID = NodeKind("ItemId", fields=_id_fields())
FOLDER_ID = NodeKind("FolderId", fields=_id_fields())

MAILBOX = NodeKind(
    "Mailbox",
    fields=(
        ElementField("name", "Name"),
        ElementField("email_address", "EmailAddress"),
        ElementField("routing_type", "RoutingType"),
        ElementField("mailbox_type", "MailboxType", converter=parse_enum(MailboxType)),
        NodeValueField("item_id", "ItemId", kind=ITEM_ID),
    ),
)

DISTINGUISHED_FOLDER_ID = NodeKind(
    "DistinguishedFolderId",
    fields=(
        AttributeField("id", "Id", converter=parse_enum(WellKnownFolderName), required=True),
        AttributeField("change_key", "ChangeKey"),
        NodeValueField("mailbox", "Mailbox", kind=MAILBOX),
    ),
)

# <t:From><t:Mailbox>...</t:Mailbox></t:From>
SINGLE_RECIPIENT = NodeKind(
    "SingleRecipient",
    fields=(NodeValueField("mailbox", "Mailbox", kind=MAILBOX, required=True),),
)

MAILBOX_COLLECTION = NodeKind(
    "ArrayOfRecipients",
    items=ItemSpec(element_name="Mailbox", kind=MAILBOX),
)

ATTENDEE = NodeKind(
    "Attendee",
    fields=(
        NodeValueField("mailbox", "Mailbox", kind=MAILBOX, required=True),
        ElementField("response_type", "ResponseType", converter=parse_enum(MeetingResponseType), read_only=True),
        ElementField("last_response_time", "LastResponseTime", converter=parse_datetime, read_only=True),
    ),
)

ATTENDEE_COLLECTION = NodeKind(
    "ArrayOfAttendees",
    items=ItemSpec(element_name="Attendee", kind=ATTENDEE),
)

MESSAGE_BODY = NodeKind(
    "Body",
    fields=(
        AttributeField("body_type", "BodyType", converter=parse_enum(BodyType), default=BodyType.HTML),
        AttributeField("is_truncated", "IsTruncated", converter=parse_bool, read_only=True),
        TextField("text"),
    ),
)

INTERNET_MESSAGE_HEADER = NodeKind(
    "InternetMessageHeader",
    fields=(
        AttributeField("name", "HeaderName", required=True),
        TextField("value"),
    ),
)

INTERNET_MESSAGE_HEADERS = NodeKind(
    "NonEmptyArrayOfInternetHeaders",
    items=ItemSpec(element_name="InternetMessageHeader", kind=INTERNET_MESSAGE_HEADER),
)

STRING_LIST = NodeKind(
    "ArrayOfStringsType",
    items=ItemSpec(element_name="String", converter=str),
)


def _validate_date_range(node):
    if node.start is not None and node.end is not None and node.start > node.end:
        raise ValidationError("Start date time cannot be bigger than end date time.")


DATE_RANGE = NodeKind(
    "DateRange",
    fields=(
        ElementField("start", "StartDateTime", converter=parse_datetime),
        ElementField("end", "EndDateTime", converter=parse_datetime),
    ),
    validate=_validate_date_range,
)

ATTACHMENT_ID = NodeKind(
    "AttachmentId",
    fields=(
        AttributeField("id", "Id", required=True),
        AttributeField("root_item_id", "RootItemId"),
        AttributeField("root_item_change_key", "RootItemChangeKey"),
    ),
)


def attachment_fields():
    """Fields common to every attachment kind, in wire order."""
    return (
        NodeValueField("attachment_id", "AttachmentId", kind=ATTACHMENT_ID, read_only=True),
        ElementField("name", "Name", required=True),
        ElementField("content_type", "ContentType"),
        ElementField("content_id", "ContentId"),
        ElementField("size", "Size", converter=int, read_only=True),
        ElementField("last_modified_time", "LastModifiedTime", converter=parse_datetime, read_only=True),
        ElementField("is_inline", "IsInline", converter=parse_bool),
    )


FILE_ATTACHMENT = NodeKind(
    "FileAttachment",
    fields=attachment_fields() + (
        ElementField("is_contact_photo", "IsContactPhoto", converter=parse_bool),
        # Update responses never carry content; keep what the caller attached
        Base64Field("content", "Content", patchable=False),
    ),
)

# Attachment kinds by element name; the item attachment kind registers itself
# next to the service objects it embeds.
ATTACHMENT_KINDS = ElementRegistry("attachments")
ATTACHMENT_KINDS.register_kind(FILE_ATTACHMENT)

ATTACHMENTS = NodeKind(
    "NonEmptyArrayOfAttachments",
    items=ItemSpec(registry=ATTACHMENT_KINDS),
)
