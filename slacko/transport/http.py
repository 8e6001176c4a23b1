"""HTTP request engine for Slack Web API calls.

Every API call funnels through ``RequestEngine.request``, the single place
retry policy lives:

- transport failures: small fixed budget, short fixed backoff
- HTTP 429: sleep for the remote retry-after hint and resend verbatim,
  with its own (by default unlimited) budget
- HTTP 5xx: exponential backoff, fixed budget
- anything else non-2xx: surfaced immediately
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from typing import Any

import aiohttp

from ..auth import Credential
from ..config import ClientConfig
from ..errors import (
    ApplicationError,
    RateLimited,
    RequestFailed,
    ServiceUnavailable,
    TransportError,
)
from ..request import Encoding, RawResponse, RequestSpec

_LOGGER = logging.getLogger(__name__)

# Response fields copied into ApplicationError.detail
_ERROR_DETAIL_KEYS = ("needed", "provided", "warning", "response_metadata", "errors")


def flatten_params(params: Mapping[str, Any]) -> dict[str, str]:
    """Flatten parameters into string form fields.

    None values are dropped, booleans become "true"/"false", numbers their
    decimal text, and lists or mappings are sent as JSON text.
    """
    fields: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            fields[key] = "true" if value else "false"
        elif isinstance(value, str):
            fields[key] = value
        elif isinstance(value, (int, float)):
            fields[key] = str(value)
        elif isinstance(value, (list, tuple, dict)):
            fields[key] = json.dumps(value, separators=(",", ":"))
        else:
            fields[key] = str(value)
    return fields


def parse_retry_after(value: str | None, default: float) -> float:
    """Parse a Retry-After header given in seconds."""
    if value is None:
        return default
    try:
        seconds = float(value.strip())
    except ValueError:
        return default
    return seconds if seconds >= 0 else default


class RequestEngine:
    """Builds, sends and classifies Slack Web API requests."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        credential: Credential,
        config: ClientConfig | None = None,
    ) -> None:
        self._session = session
        self._credential = credential
        self._config = config or ClientConfig()

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def credential(self) -> Credential:
        return self._credential

    def _url(self, spec: RequestSpec) -> str:
        if spec.url:
            return spec.url
        return f"{self._config.base_url}/{spec.method}"

    def _headers(self, spec: RequestSpec) -> dict[str, str]:
        headers = {"User-Agent": self._config.user_agent}
        headers.update(self._credential.headers_for(spec))
        cookies = self._credential.cookies_for(spec)
        if cookies:
            # Sent as a header so no cookie jar state leaks between calls
            headers["Cookie"] = "; ".join(f"{k}={v}" for k, v in cookies.items())
        return headers

    def _body(self, spec: RequestSpec) -> dict[str, Any]:
        """Keyword arguments describing the body; rebuilt for every attempt."""
        if spec.raw_body is not None:
            return {"data": spec.raw_body}

        if spec.http_method == "GET":
            return {"params": flatten_params(spec.params)}

        if spec.effective_encoding is Encoding.MULTIPART:
            form = aiohttp.FormData()
            for key, value in flatten_params(spec.params).items():
                form.add_field(key, value)
            if spec.file is not None:
                form.add_field(
                    spec.file.field_name,
                    spec.file.content,
                    filename=spec.file.filename,
                    content_type=spec.file.content_type,
                )
            return {"data": form}

        body = {k: v for k, v in spec.params.items() if v is not None}
        return {"json": body}

    async def _send_once(self, spec: RequestSpec) -> tuple[int, Mapping[str, str], str]:
        timeout = spec.timeout or self._config.timeout
        try:
            async with self._session.request(
                spec.http_method,
                self._url(spec),
                headers=self._headers(spec),
                timeout=aiohttp.ClientTimeout(total=timeout),
                **self._body(spec),
            ) as resp:
                text = await resp.text()
                return resp.status, resp.headers, text
        except TimeoutError as err:
            raise TransportError(f"{spec.method} timed out after {timeout:g}s") from err
        except aiohttp.ClientError as err:
            raise TransportError(f"{spec.method} request failed: {err}") from err

    async def request(self, spec: RequestSpec) -> RawResponse:
        """Send ``spec`` until it succeeds or a retry budget runs out.

        Raises:
            ServiceUnavailable: Transport or 5xx retry budget exhausted.
            RateLimited: Rate-limit retry ceiling exceeded.
            RequestFailed: Non-retryable HTTP status.
        """
        retry = self._config.retry
        transport_retries = 0
        server_retries = 0
        rate_limit_retries = 0

        while True:
            try:
                status, headers, text = await self._send_once(spec)
            except TransportError as err:
                if transport_retries >= retry.transport_retries:
                    raise ServiceUnavailable(
                        f"{spec.method}: transport failed after "
                        f"{transport_retries + 1} attempts",
                        attempts=transport_retries + 1,
                    ) from err
                transport_retries += 1
                _LOGGER.warning(
                    "[%s] %s, retrying in %.1fs (retry %d/%d)",
                    spec.method,
                    err,
                    retry.transport_backoff,
                    transport_retries,
                    retry.transport_retries,
                )
                await asyncio.sleep(retry.transport_backoff)
                continue

            if 200 <= status < 300:
                return RawResponse(status=status, headers=headers, text=text)

            if status == 429:
                retry_after = parse_retry_after(
                    headers.get("Retry-After"), retry.default_retry_after
                )
                if retry.rate_limit_exhausted(rate_limit_retries):
                    raise RateLimited(retry_after, attempts=rate_limit_retries)
                rate_limit_retries += 1
                wait = retry.rate_limit_wait(retry_after)
                _LOGGER.info(
                    "[%s] Rate limited, retrying in %.1fs (retry %d)",
                    spec.method,
                    wait,
                    rate_limit_retries,
                )
                await asyncio.sleep(wait)
                continue

            if status >= 500:
                policy = retry.server_errors
                if policy.exhausted(server_retries):
                    raise ServiceUnavailable(
                        f"{spec.method}: HTTP {status} after "
                        f"{server_retries + 1} attempts",
                        status=status,
                        attempts=server_retries + 1,
                    )
                delay = policy.delay(server_retries)
                server_retries += 1
                _LOGGER.warning(
                    "[%s] HTTP %d, retrying in %.1fs (retry %d)",
                    spec.method,
                    status,
                    delay,
                    server_retries,
                )
                await asyncio.sleep(delay)
                continue

            raise RequestFailed(status, f"{spec.method}: HTTP {status}")

    async def execute(self, spec: RequestSpec) -> dict[str, Any]:
        """Send ``spec`` and decode the ``{"ok": ...}`` envelope.

        Raises:
            ApplicationError: The remote answered ``ok: false``.
            RequestFailed: The body was not a JSON object.
        """
        response = await self.request(spec)
        try:
            data = response.json()
        except ValueError as err:
            raise RequestFailed(
                response.status, f"{spec.method}: response is not JSON"
            ) from err
        if not isinstance(data, dict):
            raise RequestFailed(response.status, f"{spec.method}: unexpected response body")

        if not data.get("ok", False):
            code = data.get("error") or "unknown_error"
            detail = {k: data[k] for k in _ERROR_DETAIL_KEYS if k in data}
            _LOGGER.debug("[%s] API error: %s", spec.method, code)
            raise ApplicationError(code, method=spec.method, detail=detail)

        if warning := data.get("warning"):
            _LOGGER.debug("[%s] API warning: %s", spec.method, warning)
        return data
