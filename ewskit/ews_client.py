"""Exchange Web Services client facade."""

import logging
from typing import Iterable, List, Optional, Sequence, Union

import pytz

from .auth import AuthHandler
from .config import Settings
from .core.complex_property import ComplexProperty
from .core.events import EventType
from .core.properties import DISTINGUISHED_FOLDER_ID, WellKnownFolderName
from .core.property_set import PropertySet
from .core.service_object import ServiceObject
from .core.version import ExchangeVersion
from .exceptions import EWSError
from .middleware.logging import TraceLogger, setup_logging
from .services.operations import (
    ConflictResolutionMode,
    CreateItemRequest,
    DeleteFolderRequest,
    DeleteItemRequest,
    DeleteMode,
    FindItemRequest,
    FindItemsResults,
    GetFolderRequest,
    GetItemRequest,
    GetItemRequestForLoad,
    MessageDisposition,
    SendInvitationsMode,
    SendInvitationsOrCancellationsMode,
    SubscribeToStreamingNotificationsRequest,
    UnsubscribeRequest,
    UpdateItemRequest,
)
from .services.response import ServiceErrorHandling, ServiceResponseCollection
from .services.streaming import (
    GetStreamingEventsRequest,
    StreamingSubscription,
    StreamingSubscriptionConnection,
)
from .transport import RequestsTransport, Transport

FolderIdLike = Union[ComplexProperty, WellKnownFolderName, str]


def folder_id(value: FolderIdLike) -> ComplexProperty:
    """A folder id node from a node, a well-known folder or its name (``"inbox"``)."""
    if isinstance(value, ComplexProperty):
        return value
    return DISTINGUISHED_FOLDER_ID.create(id=WellKnownFolderName(value))


class ExchangeService:
    """
    Entry point of the client: owns the transport and runs requests.

    Every operation builds one request object, executes it and returns its
    results. Service objects created by this facade keep a reference to it
    for lazy loading and version checks.

    Args:
        config: Client settings
        auth_handler: Builds credentials for the default transport
        transport: Replaces the default requests-based transport
    """

    def __init__(
        self,
        config: Settings,
        auth_handler: Optional[AuthHandler] = None,
        transport: Optional[Transport] = None
    ):
        if config.configure_logging:
            setup_logging(config.log_level, config.log_dir)
        self.config = config
        self.auth_handler = auth_handler or AuthHandler(config)
        self.logger = logging.getLogger(__name__)
        self._transport = transport
        self._time_zone = None
        self.tracer = TraceLogger(config.log_dir, enabled=config.trace_enabled)

    @property
    def transport(self) -> Transport:
        """Lazy create the HTTP transport."""
        if self._transport is None:
            self.logger.info(f"Connecting to {self.config.ews_server_url} for {self.config.ews_email}")
            self._transport = RequestsTransport(
                self.config.ews_server_url,
                auth=self.auth_handler.get_credentials(),
                verify_ssl=self.config.verify_ssl,
                timeout=self.config.request_timeout,
                pool_size=self.config.connection_pool_size,
            )
        return self._transport

    @property
    def requested_server_version(self) -> ExchangeVersion:
        return self.config.ews_server_version

    @property
    def time_zone(self):
        if self._time_zone is None:
            try:
                self._time_zone = pytz.timezone(self.config.timezone)
                self.logger.info(f"Using timezone: {self.config.timezone}")
            except pytz.UnknownTimeZoneError as e:
                self.logger.warning(f"Failed to load timezone {self.config.timezone}, falling back to UTC: {e}")
                self._time_zone = pytz.utc
        return self._time_zone

    # Tracing

    def trace_request(self, request_name: str, body: bytes) -> None:
        self.tracer.log_request(request_name, body)

    def trace_response(self, request_name: str, body: bytes, headers=None) -> None:
        self.tracer.log_response(request_name, body, headers)

    # Items

    def get_items(
        self,
        ids: Sequence[ComplexProperty],
        property_set: Optional[PropertySet] = None,
        error_handling: ServiceErrorHandling = ServiceErrorHandling.RETURN_ERRORS
    ) -> ServiceResponseCollection:
        """Fetch items by id. Each response's payload is the bound item."""
        return GetItemRequest(self, ids, property_set, error_handling).execute()

    def bind_items(self, ids: Sequence[ComplexProperty],
                   property_set: Optional[PropertySet] = None) -> List[ServiceObject]:
        responses = GetItemRequest(self, ids, property_set, ServiceErrorHandling.THROW_ON_ERROR).execute()
        return responses.payloads()

    def load_properties_for_items(self, items: Sequence[ServiceObject], property_set: PropertySet) -> None:
        """Merge the properties of ``property_set`` into already bound items."""
        GetItemRequestForLoad(self, items, property_set, ServiceErrorHandling.THROW_ON_ERROR).execute()

    def create_items(
        self,
        items: Sequence[ServiceObject],
        saved_item_folder_id: Optional[FolderIdLike] = None,
        message_disposition: Optional[MessageDisposition] = None,
        send_invitations_mode: Optional[SendInvitationsMode] = None,
        error_handling: ServiceErrorHandling = ServiceErrorHandling.THROW_ON_ERROR
    ) -> ServiceResponseCollection:
        for item in items:
            if item.service is None:
                item.service = self
        return CreateItemRequest(
            self,
            items,
            saved_item_folder_id=folder_id(saved_item_folder_id) if saved_item_folder_id is not None else None,
            message_disposition=message_disposition,
            send_invitations_mode=send_invitations_mode,
            error_handling=error_handling,
        ).execute()

    def update_items(
        self,
        items: Sequence[ServiceObject],
        conflict_resolution: ConflictResolutionMode = ConflictResolutionMode.AUTO_RESOLVE,
        message_disposition: Optional[MessageDisposition] = None,
        saved_item_folder_id: Optional[FolderIdLike] = None,
        send_invitations_or_cancellations_mode: Optional[SendInvitationsOrCancellationsMode] = None,
        error_handling: ServiceErrorHandling = ServiceErrorHandling.THROW_ON_ERROR
    ) -> ServiceResponseCollection:
        """Send the pending changes of ``items``. Items without updatable changes are skipped."""
        changed = [item for item in items if item.property_bag.is_update_call_necessary]
        if not changed:
            self.logger.debug("No item has pending changes; nothing to update")
            return ServiceResponseCollection()
        return UpdateItemRequest(
            self,
            changed,
            conflict_resolution=conflict_resolution,
            message_disposition=message_disposition,
            saved_item_folder_id=folder_id(saved_item_folder_id) if saved_item_folder_id is not None else None,
            send_invitations_or_cancellations_mode=send_invitations_or_cancellations_mode,
            error_handling=error_handling,
        ).execute()

    def delete_items(
        self,
        ids: Sequence[ComplexProperty],
        delete_mode: DeleteMode = DeleteMode.MOVE_TO_DELETED_ITEMS,
        error_handling: ServiceErrorHandling = ServiceErrorHandling.THROW_ON_ERROR,
        **options
    ) -> ServiceResponseCollection:
        return DeleteItemRequest(self, ids, delete_mode, error_handling=error_handling, **options).execute()

    def find_items(
        self,
        parent_folder: FolderIdLike,
        restriction=None,
        property_set: Optional[PropertySet] = None,
        max_entries: int = 100,
        offset: int = 0
    ) -> FindItemsResults:
        """One page of the items in ``parent_folder``, optionally filtered by ``restriction``."""
        responses = FindItemRequest(
            self,
            [folder_id(parent_folder)],
            property_set=property_set,
            restriction=restriction,
            max_entries=max_entries,
            offset=offset,
        ).execute()
        return responses[0].payload

    # Folders

    def get_folders(
        self,
        ids: Iterable[FolderIdLike],
        property_set: Optional[PropertySet] = None,
        error_handling: ServiceErrorHandling = ServiceErrorHandling.RETURN_ERRORS
    ) -> ServiceResponseCollection:
        return GetFolderRequest(self, [folder_id(i) for i in ids], property_set, error_handling).execute()

    def bind_folder(self, folder: FolderIdLike, property_set: Optional[PropertySet] = None):
        responses = GetFolderRequest(
            self, [folder_id(folder)], property_set, ServiceErrorHandling.THROW_ON_ERROR
        ).execute()
        return responses[0].payload

    def delete_folders(
        self,
        ids: Iterable[FolderIdLike],
        delete_mode: DeleteMode = DeleteMode.MOVE_TO_DELETED_ITEMS,
        error_handling: ServiceErrorHandling = ServiceErrorHandling.THROW_ON_ERROR
    ) -> ServiceResponseCollection:
        return DeleteFolderRequest(self, [folder_id(i) for i in ids], delete_mode, error_handling).execute()

    # Streaming notifications

    def subscribe_to_streaming_notifications(
        self,
        folders: Iterable[FolderIdLike],
        *event_types: EventType
    ) -> StreamingSubscription:
        responses = SubscribeToStreamingNotificationsRequest(
            self, [folder_id(f) for f in folders], event_types
        ).execute()
        subscription_id = responses[0].payload
        self.logger.info(f"Created streaming subscription {subscription_id}")
        return StreamingSubscription(self, subscription_id)

    def unsubscribe(self, subscription_id: str) -> None:
        UnsubscribeRequest(self, subscription_id).execute()
        self.logger.info(f"Removed streaming subscription {subscription_id}")

    def create_streaming_connection(
        self,
        subscriptions: Iterable[StreamingSubscription] = (),
        lifetime: Optional[int] = None
    ) -> StreamingSubscriptionConnection:
        return StreamingSubscriptionConnection(
            self,
            subscriptions,
            lifetime=lifetime or self.config.streaming_connection_timeout,
            heartbeat_interval=self.config.heartbeat_interval,
        )

    def create_streaming_reader(self, subscription_ids: Sequence[str], response_handler,
                                connection_timeout: Optional[int] = None) -> GetStreamingEventsRequest:
        """A bare hanging request, for callers that route responses themselves."""
        return GetStreamingEventsRequest(
            self,
            subscription_ids,
            connection_timeout or self.config.streaming_connection_timeout,
            response_handler,
            heartbeat_interval=self.config.heartbeat_interval,
        )

    # Connection management

    def test_connection(self) -> bool:
        """Test the connection with a GetFolder call on the mailbox root."""
        try:
            self.bind_folder(WellKnownFolderName.MSG_FOLDER_ROOT, PropertySet.id_only())
            self.logger.info("Connection test successful")
            return True
        except EWSError as e:
            self.logger.error(f"Connection test failed: {e}")
            return False

    def close(self) -> None:
        """Close all connections."""
        if self._transport is not None:
            self.logger.info("Closing EWS connection")
            self._transport.close()
            self._transport = None
