"""Exceptions for the Streamlabs realtime client."""


class StreamlabsAPIError(Exception):
    """Base exception for Streamlabs API errors."""

    pass


class WebsocketError(StreamlabsAPIError):
    """The realtime websocket failed to connect or errored while open."""

    pass


class DonationSendError(StreamlabsAPIError):
    """A donation POST failed (network or HTTP error)."""

    pass


class DonationSendRejectedError(StreamlabsAPIError):
    """
    A donation send was refused before any request was made.

    Raised internally when a send is already in flight or the client is not
    connected; send_donation() logs it and returns None.
    """

    pass


class FrameDecodeError(StreamlabsAPIError):
    """An inbound websocket frame could not be decoded."""

    pass
