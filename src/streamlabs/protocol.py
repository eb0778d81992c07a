"""
socket.io frame decoding for the Streamlabs socket API.

Frames arrive as text. The first character is the Engine.IO packet type,
the remainder is the payload:

    0{"sid":"...","pingInterval":25000,"pingTimeout":60000}   open/handshake
    3                                                         pong
    42["event",{"type":"donation","message":[...]}]           event message

Only the handshake and event messages carry anything the client acts on.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .exceptions import FrameDecodeError

logger = logging.getLogger(__name__)

OPEN_PACKET = "0"
HEARTBEAT_MESSAGE = "2"
EVENT_PREFIX = '2["event'


@dataclass
class Frame:
    """A raw frame split into packet code and payload."""

    code: str
    payload: str

    @property
    def is_handshake(self) -> bool:
        return self.code == OPEN_PACKET

    @property
    def is_event(self) -> bool:
        return self.payload.startswith(EVENT_PREFIX)


def split_frame(data: str) -> Frame:
    """
    Split a frame into packet code and payload.

    Raises:
        FrameDecodeError: If the frame is empty
    """
    if not data:
        raise FrameDecodeError("Empty frame")
    return Frame(code=data[0], payload=data[1:])


def parse_handshake(payload: str) -> int:
    """
    Extract the heartbeat interval from a handshake payload.

    Args:
        payload: JSON body of the open packet

    Returns:
        pingTimeout in milliseconds

    Raises:
        FrameDecodeError: If the payload isn't JSON or lacks a usable pingTimeout
    """
    try:
        interval = int(json.loads(payload)["pingTimeout"])
    except (ValueError, KeyError, TypeError) as e:
        raise FrameDecodeError(f"Invalid handshake payload: {payload!r}") from e

    if interval <= 0:
        raise FrameDecodeError(f"Invalid ping timeout {interval}")
    return interval


def parse_event(payload: str) -> Optional[Dict[str, Any]]:
    """
    Extract the event object from an event message payload.

    Args:
        payload: Message payload (``2["event",{...}]``)

    Returns:
        The event object, or None if the message isn't an "event" emit

    Raises:
        FrameDecodeError: If the payload isn't a valid JSON array
    """
    try:
        packet = json.loads(payload[1:])
    except ValueError as e:
        raise FrameDecodeError(f"Invalid event payload: {payload[:200]!r}") from e

    if (
        not isinstance(packet, list)
        or len(packet) < 2
        or packet[0] != "event"
        or not isinstance(packet[1], dict)
    ):
        return None
    return packet[1]
