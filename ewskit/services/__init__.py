"""Request layer: SOAP envelopes, multi-response calls and streaming notifications."""

from .response import ServiceErrorHandling, ServiceResponse, ServiceResponseCollection, ServiceResult
from .request import MultiResponseServiceRequest, ServiceRequest
from .streaming import (
    DisconnectEvent,
    DisconnectReason,
    GetStreamingEventsRequest,
    HangingServiceRequest,
    StreamingSubscription,
    StreamingSubscriptionConnection,
)

__all__ = [
    "ServiceErrorHandling",
    "ServiceResponse",
    "ServiceResponseCollection",
    "ServiceResult",
    "ServiceRequest",
    "MultiResponseServiceRequest",
    "HangingServiceRequest",
    "GetStreamingEventsRequest",
    "DisconnectEvent",
    "DisconnectReason",
    "StreamingSubscription",
    "StreamingSubscriptionConnection",
]
