"""HTTP transport for SOAP calls."""

import logging
import socket
from typing import Dict, Iterator, Optional

import requests
import urllib3
from requests.adapters import HTTPAdapter

from .exceptions import AuthenticationError, ConnectionError, StreamTimeoutError

logger = logging.getLogger(__name__)

_READ_TIMEOUTS = (urllib3.exceptions.ReadTimeoutError, socket.timeout, requests.exceptions.ReadTimeout)


def _translate(error: Exception, action: str) -> ConnectionError:
    """Map requests/urllib3 failures onto ewskit connection errors."""
    cause = error.args[0] if error.args else None
    if isinstance(error, _READ_TIMEOUTS) or isinstance(cause, _READ_TIMEOUTS):
        return StreamTimeoutError(f"Timed out while {action}: {error}")
    return ConnectionError(f"Connection failed while {action}: {error}")


class TransportResponse:
    """An HTTP response that can be read whole or chunk by chunk."""

    def __init__(self, response: requests.Response):
        self._response = response
        self.status_code: int = response.status_code
        self.headers: Dict[str, str] = dict(response.headers)
        self._chunks: Optional[Iterator[bytes]] = None

    @property
    def content(self) -> bytes:
        try:
            return self._response.content
        except (requests.exceptions.RequestException, urllib3.exceptions.HTTPError, OSError) as e:
            raise _translate(e, "reading the response") from e

    def read_chunk(self) -> bytes:
        """Next chunk as it arrives on the wire; ``b""`` at the end of the stream."""
        if self._chunks is None:
            # chunk_size=None yields HTTP chunks as soon as they are received
            self._chunks = self._response.iter_content(chunk_size=None)
        try:
            return next(self._chunks)
        except StopIteration:
            return b""
        except (requests.exceptions.RequestException, urllib3.exceptions.HTTPError, OSError) as e:
            raise _translate(e, "reading the response stream") from e

    def iter_chunks(self) -> Iterator[bytes]:
        while True:
            chunk = self.read_chunk()
            if not chunk:
                return
            yield chunk

    def close(self) -> None:
        self._response.close()


class Transport:
    """Sends request envelopes. Subclass to plug in another HTTP stack."""

    def send(self, body: bytes, streaming: bool = False, timeout: Optional[float] = None) -> TransportResponse:
        raise NotImplementedError

    def close(self) -> None:
        pass


class RequestsTransport(Transport):
    """
    Transport built on :mod:`requests`.

    One-shot calls and streaming calls use separate sessions so a hanging
    response never holds a connection the other calls need.

    Args:
        url: Full EWS endpoint URL
        auth: A requests auth object
        verify_ssl: Verify TLS certificates
        timeout: Read timeout of one-shot calls, in seconds
        pool_size: Connections per session
    """

    CONNECT_TIMEOUT = 30
    USER_AGENT = "ewskit"

    def __init__(self, url: str, auth=None, verify_ssl: bool = True, timeout: float = 120, pool_size: int = 10):
        self.url = url
        self.auth = auth
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.pool_size = pool_size

        if not verify_ssl:
            # Suppress SSL warnings when certificate verification is disabled
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        self.session = self._create_session()
        self.streaming_session = self._create_session()

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.auth = self.auth
        session.verify = self.verify_ssl
        session.headers.update({
            "Content-Type": "text/xml; charset=utf-8",
            "Accept": "text/xml",
            "User-Agent": self.USER_AGENT,
        })
        adapter = HTTPAdapter(pool_connections=1, pool_maxsize=self.pool_size, max_retries=0)
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        return session

    def send(self, body: bytes, streaming: bool = False, timeout: Optional[float] = None) -> TransportResponse:
        session = self.streaming_session if streaming else self.session
        read_timeout = timeout if timeout is not None else self.timeout
        try:
            response = session.post(
                self.url,
                data=body,
                stream=streaming,
                timeout=(self.CONNECT_TIMEOUT, read_timeout),
                allow_redirects=False,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Request to {self.url} failed: {e}")
            raise _translate(e, f"sending to {self.url}") from e

        if response.status_code == 401:
            response.close()
            raise AuthenticationError(f"The server at {self.url} rejected the credentials (HTTP 401)")
        logger.debug(f"HTTP {response.status_code} from {self.url}")
        return TransportResponse(response)

    def close(self) -> None:
        self.session.close()
        self.streaming_session.close()
