"""Shared fixtures: a scripted transport and SOAP envelope builders."""

import queue
from collections import deque
from typing import List, NamedTuple, Optional

import pytest
from lxml import etree

from ewskit.config import Settings
from ewskit.core.xml import XmlReader
from ewskit.ews_client import ExchangeService
from ewskit.exceptions import ConnectionError
from ewskit.transport import Transport

SOAP_NS = "http://schemas.xmlsoap.org/soap/envelope/"
TYPES_NS = "http://schemas.microsoft.com/exchange/services/2006/types"
MESSAGES_NS = "http://schemas.microsoft.com/exchange/services/2006/messages"

NS = {"s": SOAP_NS, "t": TYPES_NS, "m": MESSAGES_NS}


def envelope(body: str) -> bytes:
    """Wrap a SOAP body in an envelope with a ServerVersionInfo header."""
    return (
        f'<?xml version="1.0" encoding="utf-8"?>'
        f'<s:Envelope xmlns:s="{SOAP_NS}" xmlns:m="{MESSAGES_NS}" xmlns:t="{TYPES_NS}">'
        f'<s:Header><t:ServerVersionInfo MajorVersion="15" MinorVersion="1" MajorBuildNumber="2507" '
        f'MinorBuildNumber="6" Version="V2017_07_11"/></s:Header>'
        f'<s:Body>{body}</s:Body></s:Envelope>'
    ).encode("utf-8")


def response_envelope(operation: str, *messages: str) -> bytes:
    return envelope(
        f'<m:{operation}Response><m:ResponseMessages>{"".join(messages)}</m:ResponseMessages>'
        f'</m:{operation}Response>'
    )


def success_message(operation: str, payload: str = "") -> str:
    return (
        f'<m:{operation}ResponseMessage ResponseClass="Success">'
        f'<m:ResponseCode>NoError</m:ResponseCode>{payload}'
        f'</m:{operation}ResponseMessage>'
    )


def error_message(operation: str, code: str = "ErrorItemNotFound",
                  text: str = "The specified object was not found in the store.") -> str:
    return (
        f'<m:{operation}ResponseMessage ResponseClass="Error">'
        f'<m:MessageText>{text}</m:MessageText>'
        f'<m:ResponseCode>{code}</m:ResponseCode>'
        f'<m:DescriptiveLinkKey>0</m:DescriptiveLinkKey>'
        f'</m:{operation}ResponseMessage>'
    )


def message_xml(item_id: str = "AAMkAD1", subject: str = "Quarterly report", extra: str = "") -> str:
    return (
        f'<t:Message><t:ItemId Id="{item_id}" ChangeKey="CQAAABYA"/>'
        f'<t:Subject>{subject}</t:Subject>{extra}</t:Message>'
    )


def reader_at_root(xml) -> XmlReader:
    """A reader positioned on the start tag of the document element."""
    reader = XmlReader(xml)
    reader.read()
    return reader


def parse(body: bytes):
    return etree.fromstring(body)


class FakeResponse:
    """A complete, already received HTTP response."""

    def __init__(self, content: bytes = b"", status_code: int = 200, headers: Optional[dict] = None):
        self.content = content
        self.status_code = status_code
        self.headers = headers or {"Content-Type": "text/xml; charset=utf-8"}
        self.closed = False

    def iter_chunks(self):
        yield self.content

    def close(self):
        self.closed = True


_CLOSED = object()
_EOF = object()


class StreamingResponse:
    """
    An open HTTP response fed by the test.

    ``iter_chunks`` blocks until the test pushes data; ``close`` unblocks it
    with a ConnectionError the way closing a socket does.
    """

    def __init__(self):
        self.status_code = 200
        self.headers = {"Content-Type": "text/xml; charset=utf-8", "Transfer-Encoding": "chunked"}
        self.closed = False
        self._queue = queue.Queue()

    def push(self, data: bytes) -> None:
        self._queue.put(data)

    def fail(self, error: BaseException) -> None:
        self._queue.put(error)

    def end(self) -> None:
        self._queue.put(_EOF)

    def iter_chunks(self):
        while True:
            chunk = self._queue.get()
            if chunk is _CLOSED:
                raise ConnectionError("The response was closed")
            if chunk is _EOF:
                return
            if isinstance(chunk, BaseException):
                raise chunk
            yield chunk

    def close(self):
        self.closed = True
        self._queue.put(_CLOSED)


class SentRequest(NamedTuple):
    body: bytes
    streaming: bool
    timeout: Optional[float]


class FakeTransport(Transport):
    """Returns queued responses in order and records every request sent."""

    def __init__(self):
        self.responses = deque()
        self.requests: List[SentRequest] = []
        self.closed = False

    def queue(self, response):
        self.responses.append(response)
        return response

    def queue_content(self, content: bytes, status_code: int = 200) -> FakeResponse:
        return self.queue(FakeResponse(content, status_code))

    def send(self, body, streaming=False, timeout=None):
        self.requests.append(SentRequest(body, streaming, timeout))
        if not self.responses:
            raise AssertionError("No response queued for this request")
        return self.responses.popleft()

    def close(self):
        self.closed = True

    @property
    def last_request(self):
        return parse(self.requests[-1].body)


@pytest.fixture
def settings():
    """Settings for a test mailbox; nothing is read from a real server."""
    return Settings(
        ews_server_url="mail.example.com",
        ews_email="user@example.com",
        ews_username="user@example.com",
        ews_password="secret",
        heartbeat_interval=5.0,
    )


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def service(settings, transport):
    """Service facade wired to the fake transport."""
    return ExchangeService(settings, transport=transport)
