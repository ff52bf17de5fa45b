"""Streaming notifications: the hanging GetStreamingEvents request and its connection facade.

A streaming request keeps one HTTP response open. The server writes one SOAP
envelope per batch of notifications (or per heartbeat) into it. A background
worker cuts the byte stream into envelopes, parses each with a fresh cursor
and hands the result to a response handler until the connection ends.
"""

import logging
import re
import threading
from enum import Enum
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from ..core.events import NOTIFICATION
from ..core.version import ExchangeVersion
from ..core.xml import NodeType, XmlNamespace, XmlReader
from ..exceptions import (
    ConnectionError,
    InvalidOperationError,
    RemoteOperationError,
    StreamTimeoutError,
    ValidationError,
)
from .request import MultiResponseServiceRequest, ensure_not_empty
from .response import ServiceErrorHandling, ServiceResponse, ServiceResult

log = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL = 45.0


class DisconnectReason(str, Enum):
    """Why a streaming request stopped."""
    TIMEOUT = "Timeout"  # no data within the heartbeat interval
    EXCEPTION = "Exception"  # I/O, protocol or handler error
    USER_INITIATED = "UserInitiated"  # disconnect() was called


class DisconnectEvent(BaseModel):
    """Delivered once to every observer when a streaming request disconnects."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    reason: DisconnectReason = Field(..., description="Why the connection ended")
    error: Optional[BaseException] = Field(None, description="The error that ended it, if any")


class ConnectionStatus(str, Enum):
    OK = "OK"
    CLOSED = "Closed"


class EnvelopeSplitter:
    """Cuts a byte stream of back-to-back SOAP envelopes into whole documents."""

    _ENVELOPE_END = re.compile(rb"</(?:[A-Za-z_][\w.-]*:)?Envelope\s*>")
    # How far back a closing tag split across chunks can start
    _OVERLAP = 256

    def __init__(self, chunks: Iterable[bytes]):
        self._chunks = chunks
        self._buffer = bytearray()

    def __iter__(self) -> Iterator[bytes]:
        for chunk in self._chunks:
            start = max(0, len(self._buffer) - self._OVERLAP)
            self._buffer += chunk
            while True:
                match = self._ENVELOPE_END.search(self._buffer, start)
                if match is None:
                    break
                document = bytes(self._buffer[:match.end()])
                del self._buffer[:match.end()]
                start = 0
                yield document.strip()
        if self._buffer.strip():
            log.debug(f"Discarding {len(self._buffer)} trailing bytes of an unfinished envelope")


class HangingServiceRequest(MultiResponseServiceRequest):
    """
    A request whose response stays open and keeps producing envelopes.

    The instance is single use: DISCONNECTED -> CONNECTED -> DISCONNECTED.
    ``connect()`` sends the request and starts one daemon worker;
    ``disconnect()`` closes the response from the caller's thread. Every
    disconnect observer is called exactly once, on the thread that performed
    the transition.

    Args:
        service: Service facade (transport, version, tracing)
        response_handler: Called on the worker thread with every parsed response
        heartbeat_interval: Seconds without any data before the request times out
    """

    def __init__(
        self,
        service,
        response_handler: Callable[[ServiceResponse], None],
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL
    ):
        super().__init__(service, ServiceErrorHandling.RETURN_ERRORS)
        if heartbeat_interval <= 0:
            raise ValidationError("heartbeat_interval must be positive.")
        self.response_handler = response_handler
        self.heartbeat_interval = heartbeat_interval
        self._lock = threading.RLock()
        self._connected = False
        self._used = False
        self._response = None
        self._worker: Optional[threading.Thread] = None
        self._observers: List[Callable[["HangingServiceRequest", DisconnectEvent], None]] = []

    @property
    def is_connected(self) -> bool:
        with self._lock:
            return self._connected

    def on_disconnect(self, observer: Callable[["HangingServiceRequest", DisconnectEvent], None]):
        """Register a disconnect observer. Usable as a decorator."""
        self._observers.append(observer)
        return observer

    def connect(self) -> None:
        with self._lock:
            if self._connected:
                self.logger.debug(f"{self.XML_ELEMENT_NAME} is already connected")
                return
            if self._used:
                raise InvalidOperationError(
                    f"This {self.XML_ELEMENT_NAME} request was disconnected; create a new one to reconnect."
                )
            self.validate()
            response = self._send(streaming=True, timeout=self.heartbeat_interval)
            self._response = response
            self._connected = True
            self._used = True
            self._worker = threading.Thread(
                target=self._run,
                args=(response,),
                name=f"ewskit-{self.XML_ELEMENT_NAME}",
                daemon=True,
            )
            self._worker.start()
            self.logger.info(f"{self.XML_ELEMENT_NAME} connected (heartbeat {self.heartbeat_interval}s)")

    def disconnect(self) -> None:
        self._disconnect(DisconnectReason.USER_INITIATED, None)

    def _disconnect(self, reason: DisconnectReason, error: Optional[BaseException]) -> None:
        with self._lock:
            if not self._connected:
                return
            response = self._response
            # Unblocks the worker's read; the error it gets is ignored below
            if response is not None:
                response.close()
            self._response = None
            self._connected = False

        if reason is DisconnectReason.USER_INITIATED:
            self.logger.info(f"{self.XML_ELEMENT_NAME} disconnected by the caller")
        else:
            self.logger.warning(f"{self.XML_ELEMENT_NAME} disconnected ({reason.value}): {error}")

        event = DisconnectEvent(reason=reason, error=error)
        for observer in list(self._observers):
            try:
                observer(self, event)
            except Exception:
                self.logger.exception(f"Disconnect observer {observer!r} of {self.XML_ELEMENT_NAME} failed")

    def _run(self, response) -> None:
        try:
            for document in EnvelopeSplitter(response.iter_chunks()):
                if not self.is_connected:
                    return
                self.service.trace_response(self.RESPONSE_XML_ELEMENT_NAME, document, response.headers)
                self.read_envelope(XmlReader(document))
                for parsed in self.responses:
                    self.response_handler(parsed)
            raise ConnectionError("The server closed the streaming connection.")
        except StreamTimeoutError as e:
            self._handle_worker_error(DisconnectReason.TIMEOUT, e)
        except Exception as e:
            self._handle_worker_error(DisconnectReason.EXCEPTION, e)

    def _handle_worker_error(self, reason: DisconnectReason, error: BaseException) -> None:
        if not self.is_connected:
            self.logger.debug(f"{self.XML_ELEMENT_NAME} worker stopped after disconnect: {error}")
            return
        self._disconnect(reason, error)


class GetStreamingEventsResponse(ServiceResponse):
    def __init__(self):
        super().__init__()
        self.connection_status: Optional[ConnectionStatus] = None
        self.notifications = []
        self.error_subscription_ids: List[str] = []


class GetStreamingEventsRequest(HangingServiceRequest):
    """Hanging request delivering the notifications of one or more subscriptions."""

    XML_ELEMENT_NAME = "GetStreamingEvents"
    RESPONSE_XML_ELEMENT_NAME = "GetStreamingEventsResponse"
    RESPONSE_MESSAGE_XML_ELEMENT_NAME = "GetStreamingEventsResponseMessage"
    MINIMUM_VERSION = ExchangeVersion.EXCHANGE_2010_SP1

    def __init__(
        self,
        service,
        subscription_ids: Sequence[str],
        connection_timeout: int,
        response_handler: Callable[[ServiceResponse], None],
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL
    ):
        super().__init__(service, response_handler, heartbeat_interval)
        self.subscription_ids = list(subscription_ids)
        self.connection_timeout = connection_timeout

    def validate(self) -> None:
        super().validate()
        ensure_not_empty(self.subscription_ids, "subscription_ids")
        if not 1 <= self.connection_timeout <= 30:
            raise ValidationError("connection_timeout must be between 1 and 30 minutes.")

    def expected_response_message_count(self) -> int:
        # Each envelope carries exactly one response message
        return 1

    def write_elements_to_xml(self, writer):
        writer.write_start_element(XmlNamespace.MESSAGES, "SubscriptionIds")
        for subscription_id in self.subscription_ids:
            writer.write_element_value(XmlNamespace.TYPES, "SubscriptionId", subscription_id)
        writer.write_end_element()
        writer.write_element_value(XmlNamespace.MESSAGES, "ConnectionTimeout", self.connection_timeout)

    def create_service_response(self, index):
        return GetStreamingEventsResponse()

    def read_payload(self, response, reader, index):
        name = reader.local_name
        if name == "ConnectionStatus":
            response.connection_status = ConnectionStatus(reader.read_element_value())
        elif name == "Notifications":
            self._read_list(reader, "Notification", lambda rd: response.notifications.append(self._read_notification(rd)))
        elif name == "ErrorSubscriptionIds":
            self._read_list(reader, "SubscriptionId", lambda rd: response.error_subscription_ids.append(rd.read_element_value()))
        else:
            return False
        return True

    @staticmethod
    def _read_notification(reader):
        notification = NOTIFICATION.create()
        notification.load_from_xml(reader, "Notification")
        return notification

    @staticmethod
    def _read_list(reader: XmlReader, item_name: str, read_item) -> None:
        depth = reader.depth
        while True:
            node_type = reader.read()
            if node_type is NodeType.END_ELEMENT and reader.depth == depth:
                return
            if node_type is not NodeType.START_ELEMENT:
                continue
            if reader.local_name == item_name:
                read_item(reader)
            else:
                reader.skip_current_element()


class StreamingSubscription:
    """A server-side streaming subscription, identified by its id."""

    def __init__(self, service, subscription_id: str):
        self.service = service
        self.id = subscription_id

    def unsubscribe(self) -> None:
        self.service.unsubscribe(self.id)

    def __repr__(self) -> str:
        return f"StreamingSubscription({self.id!r})"


class StreamingSubscriptionConnection:
    """
    Groups streaming subscriptions behind one hanging request.

    Every :meth:`open` starts a new :class:`GetStreamingEventsRequest`;
    reconnecting after a disconnect is simply calling :meth:`open` again.
    Notifications are routed to callbacks per subscription, error results
    naming subscriptions drop those subscriptions and are reported, and
    disconnects are forwarded to the connection's own observers.

    Args:
        service: Service facade
        lifetime: Minutes the server keeps the connection open (1-30)
        heartbeat_interval: Seconds without data before the connection times out
    """

    def __init__(self, service, subscriptions: Iterable[StreamingSubscription] = (),
                 lifetime: int = 30, heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL):
        if not 1 <= lifetime <= 30:
            raise ValidationError("lifetime must be between 1 and 30 minutes.")
        self.service = service
        self.lifetime = lifetime
        self.heartbeat_interval = heartbeat_interval
        self.logger = logging.getLogger(__name__)
        self._subscriptions: Dict[str, StreamingSubscription] = {s.id: s for s in subscriptions}
        self._request: Optional[GetStreamingEventsRequest] = None
        self._notification_handlers: List[Callable] = []
        self._error_handlers: List[Callable] = []
        self._disconnect_handlers: List[Callable] = []

    @property
    def subscriptions(self) -> List[StreamingSubscription]:
        return list(self._subscriptions.values())

    @property
    def is_open(self) -> bool:
        return self._request is not None and self._request.is_connected

    def add_subscription(self, subscription: StreamingSubscription) -> None:
        self._ensure_closed()
        self._subscriptions[subscription.id] = subscription

    def remove_subscription(self, subscription: StreamingSubscription) -> None:
        self._ensure_closed()
        self._subscriptions.pop(subscription.id, None)

    def _ensure_closed(self) -> None:
        if self.is_open:
            raise InvalidOperationError("Subscriptions cannot be changed while the connection is open.")

    def on_notification(self, handler: Callable[[StreamingSubscription, object], None]):
        """``handler(subscription, notification)`` for every notification batch."""
        self._notification_handlers.append(handler)
        return handler

    def on_subscription_error(self, handler: Callable[[Optional[StreamingSubscription], Exception], None]):
        """``handler(subscription, error)``; subscription is None for connection-wide errors."""
        self._error_handlers.append(handler)
        return handler

    def on_disconnect(self, handler: Callable[["StreamingSubscriptionConnection", DisconnectEvent], None]):
        self._disconnect_handlers.append(handler)
        return handler

    def open(self) -> None:
        if self.is_open:
            raise InvalidOperationError("The connection is already open.")
        if not self._subscriptions:
            raise InvalidOperationError("You must add at least one subscription to this connection before it can be opened.")
        request = GetStreamingEventsRequest(
            self.service,
            list(self._subscriptions),
            self.lifetime,
            self._handle_response,
            self.heartbeat_interval,
        )
        request.on_disconnect(self._handle_disconnect)
        self._request = request
        request.connect()

    def close(self) -> None:
        if self._request is not None:
            self._request.disconnect()

    def _handle_response(self, response: GetStreamingEventsResponse) -> None:
        if response.result is ServiceResult.ERROR:
            self._handle_error_response(response)
            return
        for notification in response.notifications:
            subscription = self._subscriptions.get(notification.subscription_id)
            if subscription is None:
                self.logger.debug(f"Notification for unknown subscription {notification.subscription_id}")
                continue
            for handler in list(self._notification_handlers):
                handler(subscription, notification)

    def _handle_error_response(self, response: GetStreamingEventsResponse) -> None:
        error = RemoteOperationError(response)
        if not response.error_subscription_ids:
            self.logger.error(f"Streaming connection error: {error}")
            for handler in list(self._error_handlers):
                handler(None, error)
            return
        for subscription_id in response.error_subscription_ids:
            subscription = self._subscriptions.pop(subscription_id, None)
            self.logger.warning(f"Subscription {subscription_id} failed: {error}")
            for handler in list(self._error_handlers):
                handler(subscription, error)

    def _handle_disconnect(self, request: HangingServiceRequest, event: DisconnectEvent) -> None:
        for handler in list(self._disconnect_handlers):
            handler(self, event)
