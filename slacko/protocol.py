"""Frame helpers for the Slack realtime protocols.

Two protocols share one session implementation:

- Socket Mode: every inbound frame is an envelope with a ``type`` and,
  except for ``hello`` and ``disconnect``, an ``envelope_id`` that must be
  acknowledged.
- RTM: inbound frames are events with a ``type``; client-originated frames
  carry an increasing ``id`` and the remote answers with ``reply_to``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import ProtocolError


class RealtimeMode(Enum):
    """Realtime protocol and the bootstrap method that opens it."""

    SOCKET_MODE = "apps.connections.open"
    RTM = "rtm.connect"

    @property
    def bootstrap_http_method(self) -> str:
        return "GET" if self is RealtimeMode.RTM else "POST"


class EnvelopeType(Enum):
    """Known frame types. Unknown types are still delivered."""

    HELLO = "hello"
    DISCONNECT = "disconnect"
    EVENTS_API = "events_api"
    INTERACTIVE = "interactive"
    SLASH_COMMANDS = "slash_commands"
    PONG = "pong"
    UNKNOWN = "unknown"

    @classmethod
    def from_frame(cls, frame_type: str) -> EnvelopeType:
        try:
            return cls(frame_type)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class RealtimeEvent:
    """Decoded inbound frame.

    Attributes:
        type: Frame type as sent by the remote (open-ended).
        payload: Event body; the envelope ``payload`` in Socket Mode, the
            whole frame in RTM.
        envelope_id: Socket Mode envelope id to acknowledge, if any.
        accepts_response_payload: Whether the ack may carry a response.
        retry_attempt: Remote redelivery counter, if any.
        retry_reason: Remote redelivery reason, if any.
        raw: The decoded frame.
    """

    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    envelope_id: str | None = None
    accepts_response_payload: bool = False
    retry_attempt: int | None = None
    retry_reason: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def kind(self) -> EnvelopeType:
        return EnvelopeType.from_frame(self.type)

    @property
    def inner_event(self) -> dict[str, Any] | None:
        """The Events API event inside a Socket Mode envelope."""
        event = self.payload.get("event")
        return event if isinstance(event, dict) else None


def parse_frame(frame: dict[str, Any], mode: RealtimeMode) -> RealtimeEvent:
    """Decode a JSON frame into a RealtimeEvent.

    Raises:
        ProtocolError: If the frame has no string ``type``.
    """
    frame_type = frame.get("type")
    if not isinstance(frame_type, str) or not frame_type:
        raise ProtocolError("Frame has no type discriminator")

    if mode is RealtimeMode.RTM:
        return RealtimeEvent(type=frame_type, payload=frame, raw=frame)

    payload = frame.get("payload")
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ProtocolError(f"Envelope payload for '{frame_type}' is not an object")

    envelope_id = frame.get("envelope_id")
    if envelope_id is not None and not isinstance(envelope_id, str):
        raise ProtocolError("envelope_id must be a string")

    return RealtimeEvent(
        type=frame_type,
        payload=payload,
        envelope_id=envelope_id,
        accepts_response_payload=bool(frame.get("accepts_response_payload", False)),
        retry_attempt=frame.get("retry_attempt"),
        retry_reason=frame.get("retry_reason"),
        raw=frame,
    )


def disconnect_reason(event: RealtimeEvent) -> str:
    """Reason given by a Socket Mode ``disconnect`` envelope."""
    reason = event.raw.get("reason") or event.payload.get("reason")
    return reason if isinstance(reason, str) else "unknown"


def build_ack(envelope_id: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
    """Construct a Socket Mode acknowledgement."""
    if not envelope_id:
        raise ValueError("envelope_id is required for acknowledgements")
    frame: dict[str, Any] = {"envelope_id": envelope_id}
    if payload is not None:
        frame["payload"] = payload
    return frame


def build_ping(seq: int) -> dict[str, Any]:
    """Construct an RTM keep-alive ping."""
    return {"id": seq, "type": "ping"}
