"""Tests for structured property values, search filters and recurrence."""

import datetime
from unittest.mock import Mock

import pytest

from ewskit.core.complex_property import ElementRegistry, NodeKind
from ewskit.core.events import EventType, NOTIFICATION, event_type, is_folder_event
from ewskit.core.properties import (
    ATTACHMENT_ID,
    ATTACHMENTS,
    ATTENDEE,
    ATTENDEE_COLLECTION,
    DATE_RANGE,
    DISTINGUISHED_FOLDER_ID,
    FILE_ATTACHMENT,
    FOLDER_ID,
    INTERNET_MESSAGE_HEADER,
    INTERNET_MESSAGE_HEADERS,
    ITEM_ID,
    MAILBOX,
    MAILBOX_COLLECTION,
    MESSAGE_BODY,
    SINGLE_RECIPIENT,
    STRING_LIST,
    BodyType,
    Importance,
    WellKnownFolderName,
)
from ewskit.core.recurrence import (
    ABSOLUTE_MONTHLY_PATTERN,
    ABSOLUTE_YEARLY_PATTERN,
    DAILY_PATTERN,
    END_DATE_RANGE,
    NO_END_RANGE,
    NUMBERED_RANGE,
    RECURRENCE,
    WEEKLY_PATTERN,
    DayOfTheWeek,
    Month,
)
from ewskit.core.search_filter import (
    AND,
    EXISTS,
    ComparisonMode,
    ContainmentMode,
    and_,
    contains,
    exists,
    is_equal_to,
    is_greater_than,
    is_less_than,
    is_not_equal_to,
    load_search_filter,
    not_,
)
from ewskit.core.service_object import ITEM_ATTACHMENT, ItemSchema, Message, MessageSchema
from ewskit.core.xml import XmlWriter
from ewskit.exceptions import SerializationError, ValidationError

from conftest import MESSAGES_NS, TYPES_NS, reader_at_root


def write(node, local_name=None) -> bytes:
    writer = XmlWriter()
    node.write_to_xml(writer, local_name)
    return writer.to_bytes()


UTC = datetime.timezone.utc


def collection(kind, *items):
    node = kind.create()
    for item in items:
        node.load_item(item)
    return node


def in_recurrence(pattern=None, recurrence_range=None):
    return RECURRENCE.create(
        pattern=pattern or DAILY_PATTERN.create(interval=1),
        range=recurrence_range or NO_END_RANGE.create(start_date=datetime.date(2024, 1, 1)),
    )


def jane():
    return MAILBOX.create(name="Jane Doe", email_address="jane.doe@company.com", routing_type="SMTP")


ROUND_TRIP_VALUES = [
    pytest.param(ITEM_ID.create(id="AAMkAD1", change_key="CQAAAB"), id="item-id"),
    pytest.param(FOLDER_ID.create(id="AQMkAD1"), id="folder-id"),
    pytest.param(ATTACHMENT_ID.create(id="ATT1", root_item_id="AAMkAD1", root_item_change_key="CQ1"),
                 id="attachment-id"),
    pytest.param(DISTINGUISHED_FOLDER_ID.create(id=WellKnownFolderName.INBOX, mailbox=jane()),
                 id="distinguished-folder-id"),
    pytest.param(ATTENDEE.create(mailbox=jane()), id="attendee"),
    pytest.param(collection(ATTENDEE_COLLECTION, ATTENDEE.create(mailbox=jane())), id="attendees"),
    pytest.param(collection(MAILBOX_COLLECTION, jane(), MAILBOX.create(email_address="john@company.com")),
                 id="recipients"),
    pytest.param(DATE_RANGE.create(start=datetime.datetime(2024, 1, 15, 9, tzinfo=UTC),
                                   end=datetime.datetime(2024, 1, 15, 17, 30, tzinfo=UTC)), id="date-range"),
    pytest.param(FILE_ATTACHMENT.create(name="report.pdf", content_type="application/pdf", content_id="cid-1",
                                        is_inline=False, is_contact_photo=False, content=b"%PDF-1.7"),
                 id="file-attachment"),
    pytest.param(collection(ATTACHMENTS, FILE_ATTACHMENT.create(name="a.txt", content=b"a")), id="attachments"),
    pytest.param(collection(INTERNET_MESSAGE_HEADERS,
                            INTERNET_MESSAGE_HEADER.create(name="X-Mailer", value="ewskit"),
                            INTERNET_MESSAGE_HEADER.create(name="Received", value="from mx1")), id="headers"),
    pytest.param(collection(STRING_LIST, "Blue", "Red category"), id="string-list"),
    pytest.param(in_recurrence(pattern=DAILY_PATTERN.create(interval=3)), id="daily"),
    pytest.param(in_recurrence(pattern=WEEKLY_PATTERN.create(
        interval=1, days_of_week=(DayOfTheWeek.TUESDAY,), first_day_of_week=DayOfTheWeek.MONDAY)), id="weekly"),
    pytest.param(in_recurrence(pattern=ABSOLUTE_MONTHLY_PATTERN.create(interval=2, day_of_month=15)),
                 id="absolute-monthly"),
    pytest.param(in_recurrence(pattern=ABSOLUTE_YEARLY_PATTERN.create(day_of_month=29, month=Month.FEBRUARY)),
                 id="absolute-yearly"),
    pytest.param(in_recurrence(recurrence_range=NO_END_RANGE.create(start_date=datetime.date(2024, 5, 1))),
                 id="no-end"),
    pytest.param(in_recurrence(recurrence_range=END_DATE_RANGE.create(
        start_date=datetime.date(2024, 5, 1), end_date=datetime.date(2024, 6, 30))), id="end-date"),
    pytest.param(in_recurrence(recurrence_range=NUMBERED_RANGE.create(
        start_date=datetime.date(2024, 5, 1), number_of_occurrences=10)), id="numbered"),
]


class TestRoundTrip:
    """Write then read back."""

    def test_mailbox(self):
        mailbox = MAILBOX.create(name="Jane Doe", email_address="jane.doe@company.com", routing_type="SMTP")

        loaded = MAILBOX.create()
        loaded.load_from_xml(reader_at_root(write(mailbox)))

        assert loaded == mailbox

    def test_recurrence(self):
        """Polymorphic children are recreated from their element names."""
        recurrence = RECURRENCE.create(
            pattern=WEEKLY_PATTERN.create(interval=2, days_of_week=(DayOfTheWeek.MONDAY, DayOfTheWeek.FRIDAY)),
            range=END_DATE_RANGE.create(start_date=datetime.date(2024, 1, 1), end_date=datetime.date(2024, 3, 1)),
        )
        xml = write(recurrence)

        loaded = RECURRENCE.create()
        loaded.load_from_xml(reader_at_root(xml))

        assert b"<t:DaysOfWeek>Monday Friday</t:DaysOfWeek>" in xml
        assert loaded.pattern.kind is WEEKLY_PATTERN
        assert loaded == recurrence

    @pytest.mark.parametrize("value", ROUND_TRIP_VALUES)
    def test_registered_kinds(self, value):
        loaded = value.kind.create()
        loaded.load_from_xml(reader_at_root(write(value)))

        assert loaded == value

    def test_message_body_attributes_and_text(self):
        xml = f'<t:Body xmlns:t="{TYPES_NS}" BodyType="Text" IsTruncated="true">Hello there</t:Body>'

        body = MESSAGE_BODY.create()
        body.load_from_xml(reader_at_root(xml.encode()))

        assert body.body_type is BodyType.TEXT
        assert body.is_truncated is True
        assert body.text == "Hello there"
        # Read-only attributes are never written back
        assert b"IsTruncated" not in write(body)


class TestReading:
    """Tolerance and dispatch on read."""

    def test_unknown_elements_are_skipped(self):
        xml = (
            f'<t:Mailbox xmlns:t="{TYPES_NS}"><t:Name>Jane</t:Name>'
            f'<t:FutureElement><t:Nested>1</t:Nested></t:FutureElement>'
            f'<t:EmailAddress>jane@example.com</t:EmailAddress></t:Mailbox>'
        )

        mailbox = MAILBOX.create()
        mailbox.load_from_xml(reader_at_root(xml.encode()))

        assert mailbox.name == "Jane"
        assert mailbox.email_address == "jane@example.com"

    def test_loading_does_not_notify(self):
        handler = Mock()
        mailbox = MAILBOX.create()
        mailbox.set_change_handler(handler)

        mailbox.load_from_xml(reader_at_root(f'<t:Mailbox xmlns:t="{TYPES_NS}"><t:Name>A</t:Name></t:Mailbox>'.encode()))

        handler.assert_not_called()

    def test_notification_events(self):
        xml = (
            f'<m:Notification xmlns:m="{MESSAGES_NS}" xmlns:t="{TYPES_NS}">'
            f'<t:SubscriptionId>sub-1</t:SubscriptionId>'
            f'<t:NewMailEvent><t:Watermark>AQAAAA==</t:Watermark><t:TimeStamp>2024-01-15T09:00:00Z</t:TimeStamp>'
            f'<t:ItemId Id="AAMk1" ChangeKey="CQ1"/><t:ParentFolderId Id="inbox-id"/></t:NewMailEvent>'
            f'<t:FolderCreatedEvent><t:Watermark>x</t:Watermark></t:FolderCreatedEvent>'
            f'<t:ModifiedEvent><t:Watermark>AgAAAA==</t:Watermark><t:FolderId Id="F1"/>'
            f'<t:UnreadCount>3</t:UnreadCount></t:ModifiedEvent>'
            f'</m:Notification>'
        )

        notification = NOTIFICATION.create()
        notification.load_from_xml(reader_at_root(xml.encode()))

        assert notification.subscription_id == "sub-1"
        new_mail, modified = notification.items
        assert event_type(new_mail) is EventType.NEW_MAIL
        assert new_mail.item_id.id == "AAMk1"
        assert not is_folder_event(new_mail)
        assert event_type(modified) is EventType.MODIFIED
        assert is_folder_event(modified)
        assert modified.unread_count == 3


class TestChangeNotification:
    """Assignments notify the owner only on actual change."""

    def test_equal_value_does_not_notify(self):
        handler = Mock()
        body = MESSAGE_BODY.create(text="Hello")
        body.set_change_handler(handler)

        body.text = "Hello"
        handler.assert_not_called()

        body.text = "Goodbye"
        handler.assert_called_once_with(body)

    def test_nested_change_is_forwarded(self):
        handler = Mock()
        sender = SINGLE_RECIPIENT.create(mailbox=MAILBOX.create(name="Jane"))
        sender.set_change_handler(handler)

        sender.mailbox.name = "John"

        handler.assert_called_once_with(sender)

    def test_replaced_child_is_detached(self):
        handler = Mock()
        old_mailbox = MAILBOX.create(name="Old")
        sender = SINGLE_RECIPIENT.create(mailbox=old_mailbox)
        sender.set_change_handler(handler)

        sender.mailbox = MAILBOX.create(name="New")
        handler.reset_mock()
        old_mailbox.name = "Changed"

        handler.assert_not_called()

    def test_collection_changes_notify(self):
        handler = Mock()
        attachments = ATTACHMENTS.create()
        attachments.set_change_handler(handler)
        attachment = FILE_ATTACHMENT.create(name="report.pdf", content=b"%PDF")

        attachments.add(attachment)
        assert attachments.remove(attachment)

        assert handler.call_count == 2
        assert attachments.items == ()

    def test_embedded_item_change_reaches_attachment_owner(self):
        handler = Mock()
        embedded = Message()
        attachment = ITEM_ATTACHMENT.create(name="Forwarded", item=embedded)
        attachment.set_change_handler(handler)

        embedded[MessageSchema.SUBJECT] = "Updated"

        handler.assert_called_once_with(attachment)

    def test_unknown_field_raises(self):
        with pytest.raises(TypeError):
            MAILBOX.create(colour="blue")
        with pytest.raises(AttributeError):
            MAILBOX.create().colour = "blue"


class TestValidation:
    """Node-local validation."""

    def test_required_attribute(self):
        with pytest.raises(ValidationError):
            ITEM_ID.create().validate()
        ITEM_ID.create(id="AAMk1").validate()

    def test_date_range_order(self):
        date_range = DATE_RANGE.create(
            start=datetime.datetime(2024, 2, 1, tzinfo=datetime.timezone.utc),
            end=datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc),
        )

        with pytest.raises(ValidationError, match="Start date time cannot be bigger than end date time."):
            date_range.validate()

    def test_recurrence_rules(self):
        with pytest.raises(ValidationError):
            DAILY_PATTERN.create(interval=0).validate()
        with pytest.raises(ValidationError):
            END_DATE_RANGE.create(
                start_date=datetime.date(2024, 3, 1), end_date=datetime.date(2024, 1, 1)
            ).validate()
        with pytest.raises(ValidationError):
            RECURRENCE.create(pattern=DAILY_PATTERN.create(interval=1)).validate()

    def test_children_are_validated(self):
        sender = SINGLE_RECIPIENT.create()
        with pytest.raises(ValidationError):
            sender.validate()


class TestCollectionPatch:
    """Update responses line up with existing collection items by position."""

    def test_update_fills_existing_item(self):
        attachment = FILE_ATTACHMENT.create(name="report.pdf", content=b"%PDF-1.7")
        attachments = ATTACHMENTS.create()
        attachments.load_item(attachment)
        xml = (
            f'<t:Attachments xmlns:t="{TYPES_NS}"><t:FileAttachment><t:AttachmentId Id="ATT1"/>'
            f'<t:Content>ignored</t:Content></t:FileAttachment></t:Attachments>'
        )

        attachments.update_from_xml(reader_at_root(xml.encode()), "Attachments")

        assert attachments.items == (attachment,)
        assert attachment.attachment_id.id == "ATT1"
        assert attachment.content == b"%PDF-1.7"

    def test_extra_items_are_appended(self):
        attachments = ATTACHMENTS.create()
        xml = (
            f'<t:Attachments xmlns:t="{TYPES_NS}">'
            f'<t:FileAttachment><t:AttachmentId Id="ATT1"/><t:Name>a.txt</t:Name></t:FileAttachment>'
            f'</t:Attachments>'
        )

        attachments.update_from_xml(reader_at_root(xml.encode()), "Attachments")

        assert len(attachments.items) == 1
        assert attachments.items[0].name == "a.txt"

    def test_kind_mismatch_raises(self):
        attachments = ATTACHMENTS.create()
        attachments.load_item(FILE_ATTACHMENT.create(name="report.pdf"))
        xml = (
            f'<t:Attachments xmlns:t="{TYPES_NS}"><t:ItemAttachment><t:AttachmentId Id="ATT1"/>'
            f'</t:ItemAttachment></t:Attachments>'
        )

        with pytest.raises(SerializationError):
            attachments.update_from_xml(reader_at_root(xml.encode()), "Attachments")


class TestSearchFilter:
    """Filter trees."""

    def test_tree_round_trip(self):
        search_filter = and_(
            is_equal_to(ItemSchema.SUBJECT, "Quarterly report"),
            not_(exists(MessageSchema.IS_READ)),
        )
        xml = write(search_filter)

        loaded = load_search_filter(reader_at_root(xml))

        assert loaded.kind is AND
        equal, negation = loaded.items
        assert equal.property_definition is ItemSchema.SUBJECT
        assert equal.value == "Quarterly report"
        assert negation.search_filter.kind is EXISTS
        assert negation.search_filter.property_definition is MessageSchema.IS_READ

    @pytest.mark.parametrize("search_filter", [
        is_greater_than(ItemSchema.SIZE, 5),
        is_less_than(ItemSchema.DATETIME_RECEIVED, datetime.datetime(2024, 1, 15, 9, tzinfo=UTC)),
        is_equal_to(MessageSchema.IS_READ, True),
        is_not_equal_to(ItemSchema.IMPORTANCE, Importance.HIGH),
        contains(ItemSchema.SUBJECT, "report", ContainmentMode.PREFIXED, ComparisonMode.EXACT),
    ], ids=lambda f: f.kind.name)
    def test_constants_keep_their_type(self, search_filter):
        loaded = load_search_filter(reader_at_root(write(search_filter)))

        assert loaded == search_filter
        assert type(loaded.value) is type(search_filter.value)

    def test_malformed_constant(self):
        xml = (
            f'<t:IsGreaterThan xmlns:t="{TYPES_NS}"><t:FieldURI FieldURI="item:Size"/>'
            f'<t:FieldURIOrConstant><t:Constant Value="large"/></t:FieldURIOrConstant></t:IsGreaterThan>'
        )

        with pytest.raises(SerializationError):
            load_search_filter(reader_at_root(xml.encode()))

    def test_contains_is_written_with_modes(self):
        xml = write(contains(ItemSchema.SUBJECT, "report")).decode()

        assert 'ContainmentMode="Substring"' in xml
        assert 'ContainmentComparison="IgnoreCase"' in xml
        assert '<t:FieldURI FieldURI="item:Subject"/>' in xml
        assert '<t:Constant Value="report"/>' in xml

    def test_unknown_filter_is_skipped(self):
        xml = f'<t:Near xmlns:t="{TYPES_NS}"><t:FieldURI FieldURI="item:Subject"/></t:Near>'

        assert load_search_filter(reader_at_root(xml.encode())) is None

    def test_relational_needs_exactly_one_operand(self):
        with pytest.raises(ValidationError):
            is_equal_to(ItemSchema.SUBJECT).validate()
        with pytest.raises(ValidationError):
            is_equal_to(ItemSchema.SUBJECT, "a", other=ItemSchema.ITEM_CLASS).validate()
        is_equal_to(ItemSchema.SUBJECT, other=ItemSchema.ITEM_CLASS).validate()

    def test_empty_group_is_invalid(self):
        with pytest.raises(ValidationError):
            and_().validate()


class TestElementRegistry:
    def test_duplicate_registration_raises(self):
        registry = ElementRegistry("test")
        registry.register_kind(NodeKind("Thing"))

        with pytest.raises(ValueError):
            registry.register_kind(NodeKind("Thing"))

    def test_unknown_name_creates_nothing(self):
        registry = ElementRegistry("test")
        kind = registry.register_kind(NodeKind("Thing"))

        assert registry.create("Thing").kind is kind
        assert registry.create("Other") is None
