"""Async client core for the Slack Web API and realtime sessions."""

__version__ = "0.1.0"

from .auth import BearerToken, Credential, SessionToken, credential_from_env
from .client import SlackClient
from .config import ClientConfig
from .errors import (
    ApplicationError,
    ConfigurationError,
    ConnectionLost,
    HandshakeError,
    ProtocolError,
    RateLimited,
    RequestFailed,
    ServiceUnavailable,
    SlackClientError,
    TransportError,
    UploadIncomplete,
)
from .pagination import CursorPager, Page, cursor_extractor
from .protocol import RealtimeEvent, RealtimeMode
from .realtime import RealtimeSession, RealtimeState
from .request import ApiResult, FilePayload, RequestSpec
from .retry import BackoffPolicy, RetryConfig
from .upload import FileHandle, UploadMetadata, UploadProtocol, UploadSession

__all__ = [
    "ApiResult",
    "ApplicationError",
    "BackoffPolicy",
    "BearerToken",
    "ClientConfig",
    "ConfigurationError",
    "ConnectionLost",
    "Credential",
    "CursorPager",
    "FileHandle",
    "FilePayload",
    "HandshakeError",
    "Page",
    "ProtocolError",
    "RateLimited",
    "RealtimeEvent",
    "RealtimeMode",
    "RealtimeSession",
    "RealtimeState",
    "RequestFailed",
    "RequestSpec",
    "RetryConfig",
    "ServiceUnavailable",
    "SessionToken",
    "SlackClient",
    "SlackClientError",
    "TransportError",
    "UploadIncomplete",
    "UploadMetadata",
    "UploadProtocol",
    "UploadSession",
    "__version__",
    "credential_from_env",
    "cursor_extractor",
]
