"""Exception hierarchy for ewskit."""

from typing import Any, Optional


class EWSError(Exception):
    """Base exception for all ewskit errors."""


class ValidationError(EWSError):
    """A request target failed local validation and was never sent."""


class SerializationError(EWSError):
    """Malformed markup was read, or an invalid structure was written."""


class PropertyAccessError(EWSError):
    """A property could not be read or written."""

    def __init__(self, message: str, property_definition: Any = None):
        super().__init__(message)
        self.property_definition = property_definition


class PropertyNotFoundError(PropertyAccessError):
    """The property was never loaded, requested or assigned for this object."""


class InvalidOperationError(PropertyAccessError):
    """The operation is not allowed in the current state (read-only property, terminal reader...)."""


class ProtocolVersionError(EWSError):
    """The operation or property requires a newer server version than configured."""

    def __init__(self, message: str, required_version: Any = None, requested_version: Any = None):
        super().__init__(message)
        self.required_version = required_version
        self.requested_version = requested_version


class ServiceRequestError(EWSError):
    """The call as a whole failed: SOAP fault, bad HTTP status or an unreadable envelope."""

    def __init__(self, message: str, response_code: Optional[str] = None, fault_code: Optional[str] = None):
        super().__init__(message)
        self.response_code = response_code
        self.fault_code = fault_code


class RemoteOperationError(EWSError):
    """The server returned an error result for one sub-operation."""

    def __init__(self, response: Any):
        self.response = response
        self.error_code = getattr(response, "error_code", None)
        self.error_message = getattr(response, "error_message", None)
        super().__init__(f"{self.error_code}: {self.error_message}")


class ConnectionError(EWSError):
    """Transport-level failure, including streaming disconnects."""


class StreamTimeoutError(ConnectionError):
    """No data arrived within the configured read timeout."""


class AuthenticationError(ConnectionError):
    """The server rejected the supplied credentials."""
