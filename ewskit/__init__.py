"""ewskit: an Exchange Web Services client core.

Change-tracked service objects, multi-result SOAP calls and streaming
notification subscriptions.
"""

from .config import Settings
from .ews_client import ExchangeService
from .exceptions import EWSError

__version__ = "0.1.0"

__all__ = ["Settings", "ExchangeService", "EWSError", "__version__"]
