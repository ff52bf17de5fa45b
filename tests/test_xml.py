"""Tests for the XML cursor, the emitter and the value codecs."""

import datetime

import pytest
import pytz

from ewskit.core.xml import (
    NodeType,
    XmlNamespace,
    XmlReader,
    XmlWriter,
    format_datetime,
    parse_bool,
    parse_datetime,
)
from ewskit.exceptions import SerializationError

from conftest import TYPES_NS


class TestXmlReader:
    """Token stream and cursor helpers."""

    def test_token_stream_and_depth(self):
        """Leaf elements produce a text token; depth follows nesting."""
        reader = XmlReader(f'<t:Root xmlns:t="{TYPES_NS}"><t:Name>Jane</t:Name><t:Empty/></t:Root>'.encode())

        tokens = []
        while reader.read() is not NodeType.END_DOCUMENT:
            tokens.append((reader.node_type, reader.local_name, reader.depth))

        assert tokens == [
            (NodeType.START_ELEMENT, "Root", 1),
            (NodeType.START_ELEMENT, "Name", 2),
            (NodeType.TEXT, "Name", 2),
            (NodeType.END_ELEMENT, "Name", 2),
            (NodeType.START_ELEMENT, "Empty", 2),
            (NodeType.END_ELEMENT, "Empty", 2),
            (NodeType.END_ELEMENT, "Root", 1),
        ]

    def test_namespace_checks(self):
        reader = XmlReader(f'<t:Root xmlns:t="{TYPES_NS}"/>'.encode())
        reader.read()

        assert reader.is_start_element(XmlNamespace.TYPES, "Root")
        assert not reader.is_start_element(XmlNamespace.MESSAGES, "Root")
        assert reader.namespace_uri == TYPES_NS
        with pytest.raises(SerializationError):
            reader.ensure_current_node_is_start_element(XmlNamespace.MESSAGES, "Root")

    def test_read_element_value_leaves_cursor_on_end_tag(self):
        reader = XmlReader(f'<t:Root xmlns:t="{TYPES_NS}"><t:Size>1024</t:Size><t:Next/></t:Root>'.encode())
        reader.read()
        reader.read_start_element(XmlNamespace.TYPES, "Size")

        assert reader.read_element_value(int) == 1024
        assert reader.is_end_element(XmlNamespace.TYPES, "Size")
        reader.read_start_element(XmlNamespace.TYPES, "Next")

    def test_empty_element_value_is_none(self):
        reader = XmlReader(f'<t:Subject xmlns:t="{TYPES_NS}"/>'.encode())
        reader.read()

        assert reader.read_element_value() is None

    def test_skip_current_element(self):
        """Skipping consumes the whole subtree, however deep."""
        xml = (
            f'<t:Root xmlns:t="{TYPES_NS}"><t:Skip><t:A><t:B>x</t:B></t:A><t:C/></t:Skip>'
            f'<t:Keep>1</t:Keep></t:Root>'
        )
        reader = XmlReader(xml.encode())
        reader.read()
        reader.read_start_element(XmlNamespace.TYPES, "Skip")

        reader.skip_current_element()

        assert reader.is_end_element(XmlNamespace.TYPES, "Skip")
        assert reader.read_element_value_by_name(XmlNamespace.TYPES, "Keep") == "1"

    def test_reads_from_chunks(self):
        """Input split at arbitrary byte boundaries reads the same as whole input."""
        xml = f'<t:Root xmlns:t="{TYPES_NS}" Count="3"><t:Value>abc</t:Value></t:Root>'.encode()
        chunks = [xml[i:i + 7] for i in range(0, len(xml), 7)]
        reader = XmlReader(chunks)

        reader.read()
        assert reader.get_attribute("Count", int) == 3
        assert reader.get_attribute("Missing", default="n/a") == "n/a"
        assert reader.read_element_value_by_name(XmlNamespace.TYPES, "Value") == "abc"

    def test_indentation_between_children_is_not_text(self):
        """Whitespace around child elements never surfaces as TEXT, however the input is split."""
        xml = b"<a>\n  <b>x</b>\n</a>"
        whole = []
        reader = XmlReader(xml)
        while reader.read() is not NodeType.END_DOCUMENT:
            whole.append((reader.node_type, reader.local_name, reader.value, reader.depth))

        byte_by_byte = []
        reader = XmlReader([xml[i:i + 1] for i in range(len(xml))])
        while reader.read() is not NodeType.END_DOCUMENT:
            byte_by_byte.append((reader.node_type, reader.local_name, reader.value, reader.depth))

        assert whole == [
            (NodeType.START_ELEMENT, "a", None, 1),
            (NodeType.START_ELEMENT, "b", None, 2),
            (NodeType.TEXT, "b", "x", 2),
            (NodeType.END_ELEMENT, "b", None, 2),
            (NodeType.END_ELEMENT, "a", None, 1),
        ]
        assert byte_by_byte == whole

    def test_read_to_start_element(self):
        reader = XmlReader(f'<t:Root xmlns:t="{TYPES_NS}"><t:A/><t:B><t:Target/></t:B></t:Root>'.encode())

        assert reader.read_to_start_element(XmlNamespace.TYPES, "Target")
        assert not reader.read_to_start_element(XmlNamespace.TYPES, "Missing")

    def test_malformed_xml_raises(self):
        reader = XmlReader(b"<a><b></a>")

        with pytest.raises(SerializationError):
            while reader.read() is not NodeType.END_DOCUMENT:
                pass

    def test_truncated_document_raises_when_reading_value(self):
        reader = XmlReader(f'<t:Root xmlns:t="{TYPES_NS}"><t:Value>'.encode())
        reader.read()
        reader.read_start_element(XmlNamespace.TYPES, "Value")

        with pytest.raises(SerializationError):
            reader.read_element_value()


class TestXmlWriter:
    """Emitter behavior."""

    def test_writes_prefixed_elements(self):
        writer = XmlWriter()
        writer.write_start_element(XmlNamespace.MESSAGES, "GetItem")
        writer.write_attribute_value("Traversal", "Shallow")
        writer.write_attribute_value("Skipped", None)
        writer.write_element_value(XmlNamespace.TYPES, "Subject", "Hello")
        writer.write_element_value(XmlNamespace.TYPES, "Nothing", None)
        writer.write_end_element()

        xml = writer.to_bytes().decode()

        assert "<m:GetItem" in xml
        assert 'Traversal="Shallow"' in xml
        assert "Skipped" not in xml
        assert "<t:Subject>Hello</t:Subject>" in xml
        assert "Nothing" not in xml

    def test_values_are_formatted(self):
        writer = XmlWriter()
        writer.write_start_element(XmlNamespace.TYPES, "Root")
        writer.write_element_value(XmlNamespace.TYPES, "Flag", True)
        writer.write_element_value(XmlNamespace.TYPES, "Day", datetime.date(2024, 3, 1))
        writer.write_base64_element_value(XmlNamespace.TYPES, "Content", b"hello")
        writer.write_end_element()

        xml = writer.to_bytes().decode()

        assert "<t:Flag>true</t:Flag>" in xml
        assert "<t:Day>2024-03-01</t:Day>" in xml
        assert "<t:Content>aGVsbG8=</t:Content>" in xml

    def test_unclosed_element_raises(self):
        writer = XmlWriter()
        writer.write_start_element(XmlNamespace.TYPES, "Root")

        with pytest.raises(SerializationError):
            writer.to_bytes()

    def test_second_root_raises(self):
        writer = XmlWriter()
        writer.write_start_element(XmlNamespace.TYPES, "Root")
        writer.write_end_element()

        with pytest.raises(SerializationError):
            writer.write_start_element(XmlNamespace.TYPES, "Other")


class TestValueCodecs:
    """Text <-> value conversions."""

    def test_naive_datetime_uses_time_zone(self):
        berlin = pytz.timezone("Europe/Berlin")

        assert format_datetime(datetime.datetime(2024, 1, 15, 10, 0), berlin) == "2024-01-15T09:00:00Z"
        assert format_datetime(datetime.datetime(2024, 1, 15, 10, 0)) == "2024-01-15T10:00:00Z"

    def test_parse_datetime_is_utc_aware(self):
        value = parse_datetime("2024-01-15T09:00:00Z")

        assert value == pytz.utc.localize(datetime.datetime(2024, 1, 15, 9, 0))
        assert value.utcoffset() == datetime.timedelta(0)

    def test_parse_datetime_rejects_garbage(self):
        with pytest.raises(SerializationError):
            parse_datetime("yesterday")

    @pytest.mark.parametrize("text,expected", [("true", True), ("1", True), ("false", False), ("0", False)])
    def test_parse_bool(self, text, expected):
        assert parse_bool(text) is expected
