"""
Streamlabs realtime client module.

This module connects to the Streamlabs socket API to receive donation events
and submit test donations. It includes:

- StreamlabsClient: Realtime connection manager
- StreamlabsSession: Composition of settings, token cache, auth and client
- Data models: ConnectionState, Donation, DonationMessage

Authentication is handled by the OAuth module.
"""

from .client import DonationRequest, StreamlabsClient
from .exceptions import (
    DonationSendError,
    DonationSendRejectedError,
    StreamlabsAPIError,
    WebsocketError,
)
from .models import ConnectionState, Donation, DonationMessage
from .session import StreamlabsSession

__all__ = [
    "StreamlabsClient",
    "StreamlabsSession",
    "DonationRequest",
    "ConnectionState",
    "Donation",
    "DonationMessage",
    "StreamlabsAPIError",
    "WebsocketError",
    "DonationSendError",
    "DonationSendRejectedError",
]
