"""File uploads: single-shot multipart and the three-step external flow.

Three-step flow:
1. ``files.getUploadURLExternal`` returns a short-lived upload URL and file id
2. the raw bytes are PUT to that URL without credentials
3. ``files.completeUploadExternal`` finalizes the file and shares it

When step 3 fails after step 2 succeeded, the uploaded bytes are left
uncommitted on the remote, which garbage-collects them. The error says so
(``UploadIncomplete.bytes_sent``) and carries the session, so callers can
retry the commit alone with ``complete()`` or start over.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from .errors import ProtocolError, SlackClientError, UploadIncomplete
from .request import FilePayload, RequestSpec

if TYPE_CHECKING:
    from .transport.http import RequestEngine

_LOGGER = logging.getLogger(__name__)

DEFAULT_SINGLE_SHOT_LIMIT = 1024 * 1024


class UploadProtocol(Enum):
    """Which upload flow to use."""

    AUTO = "auto"
    SINGLE_SHOT = "single_shot"
    EXTERNAL = "external"


@dataclass(frozen=True)
class UploadMetadata:
    """Descriptive fields and placement of an uploaded file."""

    filename: str
    title: str | None = None
    channels: Sequence[str] = ()
    initial_comment: str | None = None
    thread_ts: str | None = None
    filetype: str | None = None
    alt_txt: str | None = None
    snippet_type: str | None = None


@dataclass(frozen=True)
class UploadSession:
    """Upload URL and file id handed out by step 1."""

    upload_url: str = field(repr=False)
    file_id: str
    length: int
    filename: str


@dataclass(frozen=True)
class FileHandle:
    """The created file as reported by the remote."""

    id: str
    name: str | None = None
    title: str | None = None
    mimetype: str | None = None
    size: int | None = None
    permalink: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> FileHandle:
        file_id = payload.get("id")
        if not isinstance(file_id, str) or not file_id:
            raise ProtocolError("File object has no id")
        return cls(
            id=file_id,
            name=payload.get("name"),
            title=payload.get("title"),
            mimetype=payload.get("mimetype"),
            size=payload.get("size"),
            permalink=payload.get("permalink"),
            raw=payload,
        )


class UploadCoordinator:
    """Runs either upload protocol on top of the request engine."""

    def __init__(
        self,
        engine: RequestEngine,
        *,
        single_shot_limit: int = DEFAULT_SINGLE_SHOT_LIMIT,
    ) -> None:
        self._engine = engine
        self._single_shot_limit = single_shot_limit

    def _choose(self, size: int, protocol: UploadProtocol) -> UploadProtocol:
        if protocol is not UploadProtocol.AUTO:
            return protocol
        if size <= self._single_shot_limit:
            return UploadProtocol.SINGLE_SHOT
        return UploadProtocol.EXTERNAL

    async def upload(
        self,
        content: bytes,
        metadata: UploadMetadata,
        *,
        protocol: UploadProtocol = UploadProtocol.AUTO,
    ) -> FileHandle:
        """Upload ``content`` and return the created file.

        Raises:
            ValueError: If ``content`` is empty.
            UploadIncomplete: A three-step upload failed; see ``stage``.
        """
        if not content:
            raise ValueError("Cannot upload an empty file")

        chosen = self._choose(len(content), protocol)
        _LOGGER.debug(
            "Uploading %s (%d bytes) via %s", metadata.filename, len(content), chosen.value
        )
        if chosen is UploadProtocol.SINGLE_SHOT:
            return await self.upload_single_shot(content, metadata)
        return await self.upload_external(content, metadata)

    async def upload_single_shot(self, content: bytes, metadata: UploadMetadata) -> FileHandle:
        """Upload with one multipart ``files.upload`` call."""
        params: dict[str, Any] = {
            "channels": ",".join(metadata.channels) if metadata.channels else None,
            "filename": metadata.filename,
            "title": metadata.title,
            "initial_comment": metadata.initial_comment,
            "thread_ts": metadata.thread_ts,
            "filetype": metadata.filetype,
        }
        data = await self._engine.execute(
            RequestSpec(
                "files.upload",
                params=params,
                file=FilePayload(content=content, filename=metadata.filename),
            )
        )
        return FileHandle.from_payload(data.get("file") or {})

    async def upload_external(self, content: bytes, metadata: UploadMetadata) -> FileHandle:
        """Upload with the three-step flow."""
        session = await self.initiate(len(content), metadata)
        await self.transfer(session, content)
        return await self.complete(session, metadata)

    async def initiate(self, length: int, metadata: UploadMetadata) -> UploadSession:
        """Step 1: obtain an upload URL and file id."""
        try:
            data = await self._engine.execute(
                RequestSpec(
                    "files.getUploadURLExternal",
                    params={
                        "filename": metadata.filename,
                        "length": length,
                        "alt_txt": metadata.alt_txt,
                        "snippet_type": metadata.snippet_type,
                    },
                )
            )
            upload_url = data.get("upload_url")
            file_id = data.get("file_id")
            if not upload_url or not file_id:
                raise ProtocolError("Upload URL response is missing upload_url or file_id")
        except SlackClientError as err:
            raise UploadIncomplete("initiate") from err

        session = UploadSession(
            upload_url=upload_url,
            file_id=file_id,
            length=length,
            filename=metadata.filename,
        )
        _LOGGER.debug("[%s] Upload session opened", session.file_id)
        return session

    async def transfer(self, session: UploadSession, content: bytes) -> None:
        """Step 2: PUT the bytes to the capability URL."""
        try:
            await self._engine.request(RequestSpec.raw_put(session.upload_url, content))
        except SlackClientError as err:
            raise UploadIncomplete("transfer", session) from err
        _LOGGER.debug("[%s] Uploaded %d bytes", session.file_id, len(content))

    async def complete(self, session: UploadSession, metadata: UploadMetadata) -> FileHandle:
        """Step 3: finalize the upload and share it.

        Can be called again on its own with the session of an
        ``UploadIncomplete`` whose stage is "commit".
        """
        params: dict[str, Any] = {
            "files": [
                {"id": session.file_id, "title": metadata.title or metadata.filename}
            ],
            "initial_comment": metadata.initial_comment,
            "thread_ts": metadata.thread_ts,
        }
        if len(metadata.channels) == 1:
            params["channel_id"] = metadata.channels[0]
        elif metadata.channels:
            params["channels"] = ",".join(metadata.channels)

        try:
            data = await self._engine.execute(
                RequestSpec("files.completeUploadExternal", params=params)
            )
            files = data.get("files") or []
            if not files:
                raise ProtocolError("Completion response has no files")
            handle = FileHandle.from_payload(files[0])
        except SlackClientError as err:
            _LOGGER.warning(
                "[%s] Upload sent but not committed: %s", session.file_id, err
            )
            raise UploadIncomplete("commit", session) from err

        _LOGGER.debug("[%s] Upload committed", session.file_id)
        return handle
