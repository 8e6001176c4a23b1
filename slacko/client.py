"""Slack client: one credential, one connection pool, every request path."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from types import TracebackType
from typing import Any

import aiohttp

from .auth import Credential, credential_from_env
from .config import ClientConfig
from .pagination import CursorPager, Extractor, cursor_extractor
from .protocol import RealtimeMode
from .realtime import RealtimeSession
from .request import FilePayload, RequestSpec
from .transport.http import RequestEngine
from .upload import (
    DEFAULT_SINGLE_SHOT_LIMIT,
    FileHandle,
    UploadCoordinator,
    UploadMetadata,
    UploadProtocol,
    UploadSession,
)

_LOGGER = logging.getLogger(__name__)


class SlackClient:
    """Async Slack Web API and realtime client.

    The client shares a single ``aiohttp.ClientSession`` across all calls. It
    creates and owns one unless a session is passed in, in which case closing
    the session stays the caller's job.

    Usage:
        async with SlackClient(BearerToken("xoxb-...")) as client:
            await client.call("chat.postMessage", {"channel": "C1", "text": "hi"})
            channels = await client.paginate("conversations.list", "channels").collect()
    """

    def __init__(
        self,
        credential: Credential | None = None,
        config: ClientConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        single_shot_limit: int = DEFAULT_SINGLE_SHOT_LIMIT,
    ) -> None:
        self._credential = credential or credential_from_env()
        self._config = config or ClientConfig()
        self._owns_session = session is None
        self._session = session or aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(limit=self._config.connection_limit)
        )
        self._engine = RequestEngine(self._session, self._credential, self._config)
        self._uploads = UploadCoordinator(self._engine, single_shot_limit=single_shot_limit)
        self._realtime_sessions: list[RealtimeSession] = []
        _LOGGER.debug("Slack client created (%s credential)", self._credential.kind)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> SlackClient:
        """Build a client from ``SLACK_*`` and ``SLACKO_*`` environment variables."""
        return cls(credential_from_env(environ), ClientConfig.from_env(environ))

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def credential(self) -> Credential:
        return self._credential

    @property
    def engine(self) -> RequestEngine:
        return self._engine

    async def __aenter__(self) -> SlackClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Close realtime sessions opened here and the owned HTTP session."""
        sessions, self._realtime_sessions = self._realtime_sessions, []
        for realtime in sessions:
            await realtime.close()
        if self._owns_session and not self._session.closed:
            await self._session.close()

    async def execute(self, spec: RequestSpec) -> dict[str, Any]:
        """Run a prepared request and return the decoded payload."""
        return await self._engine.execute(spec)

    async def call(
        self,
        method: str,
        params: Mapping[str, Any] | None = None,
        *,
        file: FilePayload | None = None,
        http_method: str = "POST",
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Call a Web API method by name.

        Raises:
            ApplicationError: The remote answered ``ok: false``.
            RateLimited: Rate limiting outlasted the retry ceiling.
            ServiceUnavailable: The transport or 5xx retry budget ran out.
            RequestFailed: The remote answered with another HTTP error.
        """
        return await self._engine.execute(
            RequestSpec(
                method,
                params=dict(params or {}),
                file=file,
                http_method=http_method,
                timeout=timeout,
            )
        )

    def paginate(
        self,
        method: str,
        items_key: str | None = None,
        params: Mapping[str, Any] | None = None,
        *,
        extractor: Extractor | None = None,
        cursor_param: str = "cursor",
        max_pages: int | None = None,
        http_method: str = "POST",
    ) -> CursorPager:
        """Lazily page through a cursor-paginated method.

        Either ``items_key`` (the list field of each response) or a custom
        ``extractor`` must be given.
        """
        if extractor is None:
            if not items_key:
                raise ValueError("paginate() needs items_key or extractor")
            extractor = cursor_extractor(items_key)
        spec = RequestSpec(method, params=dict(params or {}), http_method=http_method)
        return CursorPager(
            self._engine.execute,
            spec,
            extractor,
            cursor_param=cursor_param,
            max_pages=max_pages,
        )

    async def upload(
        self,
        content: bytes,
        metadata: UploadMetadata,
        *,
        protocol: UploadProtocol = UploadProtocol.AUTO,
    ) -> FileHandle:
        """Upload a file; see ``UploadCoordinator.upload``."""
        return await self._uploads.upload(content, metadata, protocol=protocol)

    async def complete_upload(
        self, session: UploadSession, metadata: UploadMetadata
    ) -> FileHandle:
        """Retry only the commit step of a three-step upload."""
        return await self._uploads.complete(session, metadata)

    def realtime(
        self, mode: RealtimeMode = RealtimeMode.SOCKET_MODE, **kwargs: Any
    ) -> RealtimeSession:
        """Create a realtime session bound to this client.

        Keyword arguments are passed to ``RealtimeSession``. The session is
        closed together with the client.
        """
        realtime = RealtimeSession(self._engine, mode=mode, **kwargs)
        self._realtime_sessions.append(realtime)
        return realtime
