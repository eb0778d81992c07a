"""
Streamlabs realtime data models.

This module defines the connection state enum and the donation event
payload delivered over the socket API. Payload models are built from the
decoded JSON with from_dict(); unknown fields are ignored.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ConnectionState(Enum):
    """
    Connection state of the realtime channel.

    Transitions per attempt: NOT_CONNECTED -> CONNECTING -> CONNECTED or
    NOT_CONNECTED; CONNECTED -> NOT_CONNECTED on close or disconnect.
    """

    NOT_CONNECTED = "not_connected"  # Not connected to server
    CONNECTING = "connecting"  # Authorization or websocket handshake in progress
    CONNECTED = "connected"  # Ready to send and receive events


def _as_float(value: Any) -> float:
    # The socket API sends amounts as numbers or as numeric strings
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _as_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


@dataclass
class DonationMessage:
    """
    One donation entry of a donation event.

    Attributes:
        id: Donation id
        name: Donor name
        amount: Donation amount
        formatted_amount: Amount formatted with currency symbol (snake_case field)
        formattedAmount: Amount formatted with currency symbol (camelCase field)
        message: Donor message
        currency: 3 letter currency code
        icon_class_name: Icon CSS class name
        from_: Display name of the donor ("from" on the wire)
        from_user_id: Donor user id
        _id: Event-level id of the entry
    """

    id: Optional[str] = None
    name: Optional[str] = None
    amount: float = 0.0
    formatted_amount: Optional[str] = None
    formattedAmount: Optional[str] = None
    message: Optional[str] = None
    currency: Optional[str] = None
    icon_class_name: Optional[str] = None
    from_: Optional[str] = None
    from_user_id: Optional[str] = None
    _id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DonationMessage":
        return cls(
            id=_as_str(data.get("id")),
            name=_as_str(data.get("name")),
            amount=_as_float(data.get("amount")),
            formatted_amount=_as_str(data.get("formatted_amount")),
            formattedAmount=_as_str(data.get("formattedAmount")),
            message=_as_str(data.get("message")),
            currency=_as_str(data.get("currency")),
            icon_class_name=_as_str(data.get("iconClassName")),
            from_=_as_str(data.get("from")),
            from_user_id=_as_str(data.get("from_user_id")),
            _id=_as_str(data.get("_id")),
        )

    @property
    def display_amount(self) -> str:
        """Best available human-readable amount."""
        return self.formattedAmount or self.formatted_amount or f"{self.amount:g}"


@dataclass
class Donation:
    """
    Donation event received from the socket API.

    Attributes:
        type: Event type ("donation" for donations)
        message: Donation entries carried by the event
        event_id: Event id
    """

    TYPE = "donation"

    type: Optional[str] = None
    message: List[DonationMessage] = field(default_factory=list)
    event_id: Optional[str] = None

    @property
    def is_donation(self) -> bool:
        return self.type == self.TYPE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Donation":
        """
        Create Donation from a decoded event object.

        Args:
            data: Event object (``{"type": ..., "message": [...], "event_id": ...}``)

        Returns:
            Donation instance
        """
        entries = data.get("message")
        if not isinstance(entries, list):
            entries = []
        return cls(
            type=_as_str(data.get("type")),
            message=[
                DonationMessage.from_dict(entry)
                for entry in entries
                if isinstance(entry, dict)
            ],
            event_id=_as_str(data.get("event_id")),
        )
