"""Client error types for Slack API interactions.

Every error carries a ``category`` so callers can branch on the kind of
remedy instead of on concrete classes:

- ``retry_later``: the remote or the network is unhealthy, try again later
- ``fix_request``: the request itself was rejected, retrying will not help
- ``fatal``: the client cannot work as configured
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .upload import UploadSession

RETRY_LATER = "retry_later"
FIX_REQUEST = "fix_request"
FATAL = "fatal"

AUTH_ERROR_CODES = frozenset(
    {
        "invalid_auth",
        "not_authed",
        "token_revoked",
        "token_expired",
        "account_inactive",
    }
)


class SlackClientError(Exception):
    """Base error for Slack client failures."""

    category: str = FIX_REQUEST


class ConfigurationError(SlackClientError):
    """Credentials or client settings are missing or malformed."""

    category = FATAL


class TransportError(SlackClientError):
    """Network connection to the remote failed or timed out."""

    category = RETRY_LATER


class HandshakeError(TransportError):
    """WebSocket handshake failed."""


class ServiceUnavailable(TransportError):
    """Retry budget exhausted on transport failures or 5xx responses."""

    def __init__(
        self, message: str, *, status: int | None = None, attempts: int = 0
    ) -> None:
        super().__init__(message)
        self.status = status
        self.attempts = attempts


class RateLimited(SlackClientError):
    """Rate limiting persisted past the configured retry ceiling."""

    category = RETRY_LATER

    def __init__(self, retry_after: float, *, attempts: int = 0) -> None:
        super().__init__(
            f"Rate limited after {attempts} retries (retry after {retry_after:g}s)"
        )
        self.retry_after = retry_after
        self.attempts = attempts


class RequestFailed(SlackClientError):
    """HTTP response with a status the engine does not retry."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status


class ApplicationError(SlackClientError):
    """The remote answered ``ok: false``.

    The code is passed through verbatim; new codes appear over time, so it is
    kept as an open string rather than an enumeration.
    """

    def __init__(
        self,
        code: str,
        *,
        method: str | None = None,
        detail: dict[str, Any] | None = None,
    ) -> None:
        prefix = f"{method}: " if method else ""
        super().__init__(f"{prefix}{code}")
        self.code = code
        self.method = method
        self.detail = detail or {}

    @property
    def is_auth_error(self) -> bool:
        """Whether the code means the credential itself was rejected."""
        return self.code in AUTH_ERROR_CODES

    @property
    def category(self) -> str:  # type: ignore[override]
        return FATAL if self.is_auth_error else FIX_REQUEST


class UploadIncomplete(SlackClientError):
    """Three-step upload failed at a known stage.

    Stages:
        initiate: no upload URL was obtained, nothing reached the remote
        transfer: an upload URL exists but the bytes were not accepted
        commit: the bytes were uploaded but the file was never finalized
    """

    category = RETRY_LATER

    def __init__(self, stage: str, session: UploadSession | None = None) -> None:
        super().__init__(f"Upload incomplete at stage '{stage}'")
        self.stage = stage
        self.session = session

    @property
    def bytes_sent(self) -> bool:
        """True when only the commit step needs to be retried."""
        return self.stage == "commit"


class ProtocolError(SlackClientError):
    """Realtime frame was malformed or unexpected."""

    category = RETRY_LATER


class ConnectionLost(SlackClientError):
    """Realtime session closed or exhausted its reconnect attempts."""

    category = RETRY_LATER
