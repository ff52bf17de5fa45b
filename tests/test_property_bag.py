"""Tests for service objects: loading, change tracking and patch serialization."""

import itertools
from unittest.mock import Mock

import pytest
from lxml import etree

from ewskit.core.properties import MAILBOX, MESSAGE_BODY, BodyType, Importance
from ewskit.core.property_definition import PropertyDefinition
from ewskit.core.property_set import PropertySet
from ewskit.core.schema import ServiceObjectSchema, find_property_definition
from ewskit.core.service_object import CalendarItemSchema, ItemSchema, Message, MessageSchema
from ewskit.core.version import ExchangeVersion
from ewskit.core.xml import XmlWriter
from ewskit.exceptions import (
    InvalidOperationError,
    PropertyNotFoundError,
    ProtocolVersionError,
    SerializationError,
)

from conftest import NS, TYPES_NS, parse, reader_at_root, response_envelope, success_message

LOADED_MESSAGE = (
    f'<t:Message xmlns:t="{TYPES_NS}">'
    f'<t:ItemId Id="AAMkAD1" ChangeKey="CQAAAB"/>'
    f'<t:Subject>Quarterly report</t:Subject>'
    f'<t:Importance>Normal</t:Importance>'
    f'<t:Categories><t:String>Blue</t:String></t:Categories>'
    f'<t:FutureProperty><t:Nested>1</t:Nested></t:FutureProperty>'
    f'<t:From><t:Mailbox><t:Name>Jane</t:Name><t:EmailAddress>jane@example.com</t:EmailAddress></t:Mailbox></t:From>'
    f'<t:IsRead>false</t:IsRead>'
    f'</t:Message>'
)


def load_message(service=None, on_change=None) -> Message:
    message = Message(service, on_change=on_change)
    message.load_from_xml(
        reader_at_root(LOADED_MESSAGE.encode()),
        clear=True,
        requested_property_set=PropertySet.first_class(),
    )
    return message


def patch_of(message):
    writer = XmlWriter()
    written = message.write_to_xml_for_update(writer)
    return written, parse(writer.to_bytes())


class TestLoading:
    """Loading an object from the server."""

    def test_loaded_values(self):
        message = load_message()

        assert message.id.id == "AAMkAD1"
        assert message.id.change_key == "CQAAAB"
        assert message[ItemSchema.SUBJECT] == "Quarterly report"
        assert message["importance"] is Importance.NORMAL
        assert message["categories"].items == ("Blue",)
        assert message["sender"].mailbox.email_address == "jane@example.com"
        assert message[MessageSchema.IS_READ] is False

    def test_loaded_object_is_clean(self):
        message = load_message()

        assert not message.is_new
        assert not message.is_dirty
        assert message.property_bag.modified_properties == ()

    def test_unknown_element_is_skipped(self):
        """Elements added by newer servers do not break loading."""
        message = load_message()

        assert message[MessageSchema.IS_READ] is False

    def test_requested_but_absent_property_is_none(self):
        message = load_message()

        assert message[ItemSchema.IS_DRAFT] is None

    def test_not_requested_property_raises_without_service(self):
        message = load_message()

        with pytest.raises(PropertyNotFoundError):
            message[ItemSchema.INTERNET_MESSAGE_HEADERS]

    def test_new_object_reads_none(self):
        assert Message()[ItemSchema.SUBJECT] is None


class TestChangeTracking:
    """Modified and deleted sets."""

    def test_set_records_modification(self):
        message = load_message()

        message[ItemSchema.SUBJECT] = "New subject"

        assert message.is_dirty
        assert message.is_property_updated("subject")
        assert message.property_bag.modified_properties == (ItemSchema.SUBJECT,)

    def test_set_equal_value_is_noop(self):
        message = load_message()

        message[ItemSchema.SUBJECT] = "Quarterly report"

        assert not message.is_dirty
        assert message.property_bag.modified_properties == ()

    def test_last_write_baseline(self):
        """Setting a property back to its loaded value keeps it modified."""
        message = load_message()
        message[MessageSchema.IS_READ] = True

        written, patch = patch_of(message)
        assert written
        assert [e.get("FieldURI") for e in patch.iterfind("t:Updates/t:SetItemField/t:FieldURI", NS)] == [
            "message:IsRead"
        ]

        message[MessageSchema.IS_READ] = False

        assert message.property_bag.modified_properties == (MessageSchema.IS_READ,)
        written, patch = patch_of(message)
        assert patch.findtext("t:Updates/t:SetItemField/t:Message/t:IsRead", namespaces=NS) == "false"

    def test_delete_records_deletion(self):
        message = load_message()

        del message["sender"]

        assert message.property_bag.deleted_properties == (MessageSchema.FROM,)
        assert message["sender"] is None

    def test_nested_change_marks_property_modified(self):
        message = load_message()

        message["sender"].mailbox.name = "Jane Doe"

        assert message.is_property_updated(MessageSchema.FROM)

    def test_collection_change_marks_property_modified(self):
        message = load_message()

        message["categories"].add("Red")

        assert message.is_property_updated(ItemSchema.CATEGORIES)

    def test_change_handler_receives_object(self):
        handler = Mock()
        message = load_message(on_change=handler)

        message[ItemSchema.SUBJECT] = "Changed"

        handler.assert_called_once_with(message)

    def test_clear_change_log(self):
        message = load_message()
        message[ItemSchema.SUBJECT] = "Changed"
        del message["sender"]

        message.clear_change_log()

        assert not message.is_dirty
        assert message.property_bag.deleted_properties == ()


class TestAccessRules:
    """Capability flags and schema membership."""

    def test_read_only_property_on_bound_object(self):
        message = load_message()

        with pytest.raises(InvalidOperationError):
            message[ItemSchema.SIZE] = 2048

    def test_read_only_property_on_new_object(self):
        with pytest.raises(InvalidOperationError):
            Message()[ItemSchema.IS_DRAFT] = True

    def test_property_that_cannot_be_deleted(self):
        message = load_message()

        with pytest.raises(InvalidOperationError):
            message[ItemSchema.IMPORTANCE] = None

    def test_non_nullable_property_rejects_none(self):
        with pytest.raises(InvalidOperationError, match="can't be set to None"):
            Message()[ItemSchema.IMPORTANCE] = None

        message = Message()
        message[ItemSchema.SUBJECT] = "Draft"
        message[ItemSchema.SUBJECT] = None
        assert message[ItemSchema.SUBJECT] is None

    def test_property_of_another_schema(self):
        with pytest.raises(PropertyNotFoundError):
            Message()[CalendarItemSchema.START]

    def test_unknown_property_name(self):
        with pytest.raises(KeyError):
            Message()["no_such_property"]

    def test_property_newer_than_requested_version(self):
        service = Mock(requested_server_version=ExchangeVersion.EXCHANGE_2007_SP1)
        message = Message(service)

        with pytest.raises(ProtocolVersionError) as excinfo:
            message[ItemSchema.LAST_MODIFIED_TIME]
        assert excinfo.value.required_version is ExchangeVersion.EXCHANGE_2010


class TestSerialization:
    """Create and patch modes."""

    def test_patch_contains_only_changes(self):
        message = load_message()
        message[ItemSchema.SUBJECT] = "New subject"

        written, patch = patch_of(message)

        assert written
        assert patch.tag == f"{{{TYPES_NS}}}ItemChange"
        assert patch.find("t:ItemId", NS).get("Id") == "AAMkAD1"
        updates = list(patch.find("t:Updates", NS))
        assert len(updates) == 1
        assert updates[0].tag == f"{{{TYPES_NS}}}SetItemField"
        assert updates[0].find("t:FieldURI", NS).get("FieldURI") == "item:Subject"
        assert updates[0].findtext("t:Message/t:Subject", namespaces=NS) == "New subject"

    @pytest.mark.parametrize("order", list(itertools.permutations(range(4))), ids=str)
    def test_patch_of_several_changes_in_any_order(self, order):
        changes = [
            (MessageSchema.IS_READ, True),
            ("sender", None),
            (ItemSchema.IMPORTANCE, Importance.HIGH),
            (ItemSchema.SUBJECT, "New subject"),
        ]
        message = load_message()
        for index in order:
            key, value = changes[index]
            message[key] = value

        written, patch = patch_of(message)

        assert written
        updates = [
            (etree.QName(update).localname, update.find("t:FieldURI", NS).get("FieldURI"))
            for update in patch.find("t:Updates", NS)
        ]
        assert updates == [
            ("SetItemField", "item:Subject"),
            ("SetItemField", "item:Importance"),
            ("DeleteItemField", "message:From"),
            ("SetItemField", "message:IsRead"),
        ]

    def test_patch_writes_deletions(self):
        message = load_message()
        del message["sender"]

        written, patch = patch_of(message)

        deletes = patch.findall("t:Updates/t:DeleteItemField", NS)
        assert [d.find("t:FieldURI", NS).get("FieldURI") for d in deletes] == ["message:From"]

    def test_patch_of_nested_change_writes_whole_value(self):
        message = load_message()
        message["sender"].mailbox.name = "Jane Doe"

        written, patch = patch_of(message)

        assert patch.findtext("t:Updates/t:SetItemField/t:Message/t:From/t:Mailbox/t:Name", namespaces=NS) == "Jane Doe"

    def test_clean_object_writes_no_updates(self):
        written, patch = patch_of(load_message())

        assert not written
        assert list(patch.find("t:Updates", NS)) == []

    def test_patch_without_id_raises(self):
        message = Message()
        message[ItemSchema.SUBJECT] = "Draft"

        with pytest.raises(SerializationError):
            message.write_to_xml_for_update(XmlWriter())

    def test_create_writes_settable_values(self):
        message = Message()
        message[ItemSchema.SUBJECT] = "Hello"
        message[ItemSchema.BODY] = MESSAGE_BODY.create(body_type=BodyType.TEXT, text="Hi there")
        message["to_recipients"].add(MAILBOX.create(email_address="john@example.com"))
        writer = XmlWriter()

        message.write_to_xml(writer)
        created = parse(writer.to_bytes())

        assert created.tag == f"{{{TYPES_NS}}}Message"
        assert created.find("t:ItemId", NS) is None
        assert created.findtext("t:Subject", namespaces=NS) == "Hello"
        assert created.find("t:Body", NS).get("BodyType") == "Text"
        assert created.findtext("t:ToRecipients/t:Mailbox/t:EmailAddress", namespaces=NS) == "john@example.com"


class TestLazyLoading:
    """Properties missing from a bound object are fetched on first read."""

    LOAD_RESPONSE = response_envelope("GetItem", success_message(
        "GetItem",
        '<m:Items><t:Message><t:ItemId Id="AAMkAD1" ChangeKey="CQAAAC"/>'
        '<t:InternetMessageHeaders>'
        '<t:InternetMessageHeader HeaderName="X-Mailer">Microsoft Outlook 16.0</t:InternetMessageHeader>'
        '</t:InternetMessageHeaders></t:Message></m:Items>'
    ))

    def test_missing_property_is_loaded(self, service, transport):
        transport.queue_content(self.LOAD_RESPONSE)
        message = load_message(service)

        headers = message[ItemSchema.INTERNET_MESSAGE_HEADERS]

        assert [(h.name, h.value) for h in headers.items] == [("X-Mailer", "Microsoft Outlook 16.0")]
        request = transport.last_request
        assert request.findtext(".//m:ItemShape/t:BaseShape", namespaces=NS) == "IdOnly"
        assert request.find(".//m:ItemShape/t:AdditionalProperties/t:FieldURI", NS).get("FieldURI") == \
            "item:InternetMessageHeaders"
        assert request.find(".//m:ItemIds/t:ItemId", NS).get("Id") == "AAMkAD1"

    def test_pending_changes_survive_lazy_load(self, service, transport):
        transport.queue_content(self.LOAD_RESPONSE)
        message = load_message(service)
        message[ItemSchema.SUBJECT] = "Edited before the load"

        message[ItemSchema.INTERNET_MESSAGE_HEADERS]

        assert message.is_property_updated(ItemSchema.SUBJECT)
        assert message[ItemSchema.SUBJECT] == "Edited before the load"
        assert message.id.change_key == "CQAAAC"


class TestSchema:
    """Schema composition and lookup."""

    def test_inherited_order(self):
        definitions = list(MessageSchema.SCHEMA)

        assert definitions[:len(ItemSchema.SCHEMA)] == list(ItemSchema.SCHEMA)
        assert "sender" in MessageSchema.SCHEMA
        assert MessageSchema.SCHEMA.try_get_property_definition("From") is MessageSchema.FROM

    def test_first_class_properties_exclude_explicit_ones(self):
        assert ItemSchema.INTERNET_MESSAGE_HEADERS not in ItemSchema.SCHEMA.first_class_properties
        assert ItemSchema.SUBJECT in ItemSchema.SCHEMA.first_class_properties

    def test_field_uri_lookup(self):
        assert find_property_definition("message:IsRead") is MessageSchema.IS_READ
        assert find_property_definition("item:Nope") is None

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError):
            ServiceObjectSchema(
                PropertyDefinition("title", "Title"),
                PropertyDefinition("title", "OtherTitle"),
            )
