"""Opening the socket behind a Slack realtime URL.

``apps.connections.open`` and ``rtm.connect`` hand back a ``wss://`` URL that
is good for a single connection and expires within seconds. Nothing here
retries: a URL that failed once will not work again, so the caller goes back
to the bootstrap call for a fresh one.
"""

from __future__ import annotations

import asyncio

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidStatus,
    InvalidURI,
    WebSocketException,
)

from ..errors import (
    HandshakeError,
    TransportError,
)


async def connect_websocket(
    url: str,
    *,
    ping_interval: float | None = None,
    timeout: float = 15.0,
    close_timeout: float = 2.0,
) -> ClientConnection:
    """Open a connection on a one-time realtime URL.

    Frames have no size limit; a single event envelope can carry a large
    message or block payload. An already used or expired URL is refused
    by Slack during the upgrade and surfaces as ``HandshakeError``.

    Args:
        url: wss:// URL from the most recent bootstrap call
        ping_interval: Seconds between library pings, None when the session
            runs its own keep-alive
        timeout: Bound on the whole opening handshake
        close_timeout: Bound on the closing handshake
    """
    try:
        return await asyncio.wait_for(
            websockets.connect(
                url,
                ping_interval=ping_interval,
                close_timeout=close_timeout,
                max_size=None,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise TransportError("WebSocket connection timed out") from err
    except InvalidStatus as err:
        status = err.response.status_code
        raise HandshakeError(f"WebSocket handshake rejected with HTTP {status}") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise HandshakeError("WebSocket handshake failed") from err
    except (OSError, WebSocketException) as err:
        raise TransportError("WebSocket connection failed") from err
