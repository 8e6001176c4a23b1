"""WebSocket client wrapper for the Slack realtime session."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed

from ..errors import ConnectionLost, ProtocolError
from .ws import connect_websocket

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class SlackWsMessageType(Enum):
    """Normalized WebSocket message types."""

    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class SlackWsMessage:
    """Normalized WebSocket message payload."""

    type: SlackWsMessageType
    data: str | None = None


class SlackWsClient:
    """Wrapper around the websockets library for the realtime session."""

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None

    async def connect(
        self,
        url: str,
        *,
        ping_interval: float | None = None,
        timeout: float = 15.0,
    ) -> None:
        """Connect to the realtime websocket."""
        self._ws = await connect_websocket(
            url,
            ping_interval=ping_interval,
            timeout=timeout,
        )

    async def close(self) -> None:
        """Close the websocket connection."""
        if self._ws is not None:
            await self._ws.close()

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Send a JSON payload as a text frame."""
        if self._ws is None:
            raise ConnectionLost("WebSocket is not connected")
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as err:
            raise ConnectionLost("WebSocket closed while sending") from err

    async def ping(self, timeout: float) -> bool:
        """Send a protocol ping and wait for its pong.

        Returns:
            True if the pong arrived within ``timeout``.
        """
        if self._ws is None:
            return False
        try:
            pong_waiter = await self._ws.ping()
            await asyncio.wait_for(pong_waiter, timeout=timeout)
        except (TimeoutError, ConnectionClosed):
            return False
        return True

    def __aiter__(self) -> AsyncIterator[SlackWsMessage]:
        if self._ws is None:
            raise ConnectionLost("WebSocket is not connected")
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[SlackWsMessage]:
        if self._ws is None:
            raise ConnectionLost("WebSocket is not connected")

        try:
            async for msg in self._ws:
                if isinstance(msg, bytes):
                    # Slack only sends text frames
                    continue
                yield SlackWsMessage(SlackWsMessageType.TEXT, msg)
        except ConnectionClosed:
            yield SlackWsMessage(type=SlackWsMessageType.CLOSED)
        except Exception:
            yield SlackWsMessage(type=SlackWsMessageType.ERROR)
        else:
            # Normal iteration completion means the peer closed gracefully.
            yield SlackWsMessage(type=SlackWsMessageType.CLOSED)

    @staticmethod
    def decode_json(message: SlackWsMessage) -> dict[str, Any]:
        """Decode a TEXT message payload into a JSON object."""
        if message.type is not SlackWsMessageType.TEXT:
            raise ProtocolError("Only TEXT messages can be decoded")
        if not isinstance(message.data, str):
            raise ProtocolError("Message data is not a string")
        try:
            result = json.loads(message.data)
        except ValueError as err:
            raise ProtocolError("Frame is not valid JSON") from err
        if not isinstance(result, dict):
            raise ProtocolError("Frame is not a JSON object")
        return result
