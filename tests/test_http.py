"""Tests for the HTTP request engine."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from slacko.auth import BearerToken, SessionToken
from slacko.config import ClientConfig
from slacko.errors import (
    ApplicationError,
    RateLimited,
    RequestFailed,
    ServiceUnavailable,
)
from slacko.request import FilePayload, RequestSpec
from slacko.retry import BackoffPolicy, RetryConfig
from slacko.transport.http import RequestEngine, flatten_params, parse_retry_after

from .conftest import create_mock_response

OK = {"ok": True}


def _engine(mock_session: MagicMock, config: ClientConfig, credential=None) -> RequestEngine:
    return RequestEngine(mock_session, credential or BearerToken("xoxb-test"), config)


class TestFlattenParams:
    """Tests for multipart/query flattening."""

    def test_scalar_rules(self):
        assert flatten_params(
            {"a": None, "b": True, "c": False, "d": 3, "e": 1.5, "f": "text"}
        ) == {"b": "true", "c": "false", "d": "3", "e": "1.5", "f": "text"}

    def test_structured_values_become_json(self):
        fields = flatten_params({"blocks": [{"type": "divider"}], "meta": {"k": 1}})
        assert json.loads(fields["blocks"]) == [{"type": "divider"}]
        assert fields["meta"] == '{"k":1}'


class TestParseRetryAfter:
    """Tests for Retry-After parsing."""

    def test_seconds(self):
        assert parse_retry_after("7", 60.0) == 7.0

    def test_missing_uses_default(self):
        assert parse_retry_after(None, 60.0) == 60.0

    def test_unparseable_uses_default(self):
        assert parse_retry_after("soon", 60.0) == 60.0

    def test_negative_uses_default(self):
        assert parse_retry_after("-3", 60.0) == 60.0


class TestRequestBuilding:
    """Tests for headers, URLs and bodies."""

    @pytest.mark.asyncio
    async def test_json_post_with_bearer(self, mock_session, config):
        mock_session.request.return_value = create_mock_response(200, OK)
        engine = _engine(mock_session, config)

        await engine.execute(
            RequestSpec("chat.postMessage", params={"channel": "C1", "text": None})
        )

        args, kwargs = mock_session.request.call_args
        assert args == ("POST", "https://slack.com/api/chat.postMessage")
        assert kwargs["headers"]["Authorization"] == "Bearer xoxb-test"
        assert kwargs["headers"]["User-Agent"] == config.user_agent
        assert kwargs["json"] == {"channel": "C1"}
        assert kwargs["timeout"].total == config.timeout

    @pytest.mark.asyncio
    async def test_session_token_sends_cookie_header(self, mock_session, config):
        mock_session.request.return_value = create_mock_response(200, OK)
        engine = _engine(mock_session, config, SessionToken("xoxc-abc", "cookie-val"))

        await engine.execute(RequestSpec("auth.test"))

        headers = mock_session.request.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer xoxc-abc"
        assert headers["Cookie"] == "d=cookie-val"

    @pytest.mark.asyncio
    async def test_get_sends_query_params(self, mock_session, config):
        mock_session.request.return_value = create_mock_response(200, OK)
        engine = _engine(mock_session, config)

        await engine.execute(
            RequestSpec("rtm.connect", params={"batch": True, "limit": 5}, http_method="GET")
        )

        args, kwargs = mock_session.request.call_args
        assert args[0] == "GET"
        assert kwargs["params"] == {"batch": "true", "limit": "5"}
        assert "json" not in kwargs

    @pytest.mark.asyncio
    async def test_file_forces_multipart(self, mock_session, config):
        mock_session.request.return_value = create_mock_response(200, OK)
        engine = _engine(mock_session, config)

        await engine.execute(
            RequestSpec(
                "files.upload",
                params={"channels": "C1"},
                file=FilePayload(content=b"data", filename="a.txt"),
            )
        )

        kwargs = mock_session.request.call_args.kwargs
        assert isinstance(kwargs["data"], aiohttp.FormData)
        assert "json" not in kwargs

    @pytest.mark.asyncio
    async def test_raw_put_is_unauthenticated(self, mock_session, config):
        mock_session.request.return_value = create_mock_response(200, text_data="OK")
        engine = _engine(mock_session, config)

        response = await engine.request(
            RequestSpec.raw_put("https://files.example/upload/abc?sig=1", b"bytes")
        )

        args, kwargs = mock_session.request.call_args
        assert args == ("PUT", "https://files.example/upload/abc?sig=1")
        assert "Authorization" not in kwargs["headers"]
        assert kwargs["data"] == b"bytes"
        assert response.text == "OK"

    @pytest.mark.asyncio
    async def test_per_call_timeout(self, mock_session, config):
        mock_session.request.return_value = create_mock_response(200, OK)
        engine = _engine(mock_session, config)

        await engine.execute(RequestSpec("auth.test", timeout=3.0))

        assert mock_session.request.call_args.kwargs["timeout"].total == 3.0

    @pytest.mark.asyncio
    async def test_abandoned_request_releases_response(self, mock_session, config):
        async def slow_body():
            await asyncio.sleep(10)
            return json.dumps(OK)

        response = create_mock_response(200)
        response.text.side_effect = slow_body
        mock_session.request.return_value = response
        engine = _engine(mock_session, config)

        with pytest.raises(TimeoutError):
            await asyncio.wait_for(engine.execute(RequestSpec("auth.test")), timeout=0.05)

        response.__aexit__.assert_awaited_once()
        assert mock_session.request.call_count == 1


class TestResponseClassification:
    """Tests for ok-envelope and HTTP status classification."""

    @pytest.mark.asyncio
    async def test_ok_true_returns_payload(self, mock_session, config):
        mock_session.request.return_value = create_mock_response(
            200, {"ok": True, "user_id": "U1"}
        )
        data = await _engine(mock_session, config).execute(RequestSpec("auth.test"))
        assert data["user_id"] == "U1"

    @pytest.mark.asyncio
    async def test_ok_false_raises_application_error(self, mock_session, config):
        mock_session.request.return_value = create_mock_response(
            200, {"ok": False, "error": "channel_not_found"}
        )

        with pytest.raises(ApplicationError) as exc_info:
            await _engine(mock_session, config).execute(RequestSpec("chat.postMessage"))

        assert exc_info.value.code == "channel_not_found"
        assert exc_info.value.method == "chat.postMessage"
        assert not exc_info.value.is_auth_error
        assert mock_session.request.call_count == 1

    @pytest.mark.asyncio
    async def test_auth_error_detail(self, mock_session, config):
        mock_session.request.return_value = create_mock_response(
            200,
            {"ok": False, "error": "invalid_auth", "needed": "chat:write"},
        )

        with pytest.raises(ApplicationError) as exc_info:
            await _engine(mock_session, config).execute(RequestSpec("chat.postMessage"))

        assert exc_info.value.is_auth_error
        assert exc_info.value.category == "fatal"
        assert exc_info.value.detail == {"needed": "chat:write"}

    @pytest.mark.asyncio
    async def test_non_json_body(self, mock_session, config):
        mock_session.request.return_value = create_mock_response(200, text_data="<html>")

        with pytest.raises(RequestFailed):
            await _engine(mock_session, config).execute(RequestSpec("auth.test"))

    @pytest.mark.asyncio
    async def test_client_error_status_not_retried(self, mock_session, config):
        mock_session.request.return_value = create_mock_response(404, text_data="")

        with pytest.raises(RequestFailed) as exc_info:
            await _engine(mock_session, config).execute(RequestSpec("nope.method"))

        assert exc_info.value.status == 404
        assert mock_session.request.call_count == 1


class TestRetries:
    """Tests for the three independent retry budgets."""

    @pytest.mark.asyncio
    async def test_rate_limit_waits_retry_after(self, mock_session, config):
        mock_session.request.side_effect = [
            create_mock_response(429, headers={"Retry-After": "3"}),
            create_mock_response(429, headers={"Retry-After": "5"}),
            create_mock_response(200, OK),
        ]
        sleep = AsyncMock()

        with patch("slacko.transport.http.asyncio.sleep", sleep):
            data = await _engine(mock_session, config).execute(RequestSpec("users.list"))

        assert data == OK
        assert [c.args[0] for c in sleep.await_args_list] == [3.0, 5.0]
        assert mock_session.request.call_count == 3

    @pytest.mark.asyncio
    async def test_rate_limit_wait_is_capped(self, mock_session):
        config = ClientConfig(retry=RetryConfig(max_rate_limit_wait=10.0))
        mock_session.request.side_effect = [
            create_mock_response(429, headers={"Retry-After": "120"}),
            create_mock_response(200, OK),
        ]
        sleep = AsyncMock()

        with patch("slacko.transport.http.asyncio.sleep", sleep):
            await _engine(mock_session, config).execute(RequestSpec("users.list"))

        sleep.assert_awaited_once_with(10.0)

    @pytest.mark.asyncio
    async def test_rate_limit_ceiling(self, mock_session):
        config = ClientConfig(retry=RetryConfig(rate_limit_retries=1))
        mock_session.request.side_effect = [
            create_mock_response(429, headers={"Retry-After": "2"}),
            create_mock_response(429, headers={"Retry-After": "4"}),
        ]

        with patch("slacko.transport.http.asyncio.sleep", AsyncMock()):
            with pytest.raises(RateLimited) as exc_info:
                await _engine(mock_session, config).execute(RequestSpec("users.list"))

        assert exc_info.value.retry_after == 4.0
        assert exc_info.value.attempts == 1

    @pytest.mark.asyncio
    async def test_server_errors_back_off_exponentially(self, mock_session, config):
        mock_session.request.side_effect = [
            create_mock_response(503),
            create_mock_response(502),
            create_mock_response(200, OK),
        ]
        sleep = AsyncMock()

        with patch("slacko.transport.http.asyncio.sleep", sleep):
            await _engine(mock_session, config).execute(RequestSpec("auth.test"))

        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_server_error_budget_exhausted(self, mock_session, config):
        mock_session.request.side_effect = [create_mock_response(500) for _ in range(4)]
        sleep = AsyncMock()

        with patch("slacko.transport.http.asyncio.sleep", sleep):
            with pytest.raises(ServiceUnavailable) as exc_info:
                await _engine(mock_session, config).execute(RequestSpec("auth.test"))

        assert exc_info.value.status == 500
        assert mock_session.request.call_count == 4
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_transport_failure_retried_then_succeeds(self, mock_session, config):
        mock_session.request.side_effect = [
            aiohttp.ClientConnectionError("reset"),
            create_mock_response(200, OK),
        ]
        sleep = AsyncMock()

        with patch("slacko.transport.http.asyncio.sleep", sleep):
            data = await _engine(mock_session, config).execute(RequestSpec("auth.test"))

        assert data == OK
        sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_transport_budget_exhausted(self, mock_session, config):
        mock_session.request.side_effect = TimeoutError()

        with patch("slacko.transport.http.asyncio.sleep", AsyncMock()):
            with pytest.raises(ServiceUnavailable) as exc_info:
                await _engine(mock_session, config).execute(RequestSpec("auth.test"))

        assert exc_info.value.attempts == 3
        assert exc_info.value.status is None
        assert mock_session.request.call_count == 3

    @pytest.mark.asyncio
    async def test_budgets_are_independent(self, mock_session):
        config = ClientConfig(
            retry=RetryConfig(
                transport_retries=1,
                server_errors=BackoffPolicy(base_delay=1.0, max_delay=30.0, max_retries=1),
                rate_limit_retries=1,
            )
        )
        mock_session.request.side_effect = [
            aiohttp.ClientConnectionError("reset"),
            create_mock_response(429, headers={"Retry-After": "1"}),
            create_mock_response(500),
            create_mock_response(200, OK),
        ]

        with patch("slacko.transport.http.asyncio.sleep", AsyncMock()):
            data = await _engine(mock_session, config).execute(RequestSpec("auth.test"))

        assert data == OK
        assert mock_session.request.call_count == 4

    @pytest.mark.asyncio
    async def test_multipart_body_rebuilt_per_attempt(self, mock_session, config):
        mock_session.request.side_effect = [
            create_mock_response(503),
            create_mock_response(200, OK),
        ]

        with patch("slacko.transport.http.asyncio.sleep", AsyncMock()):
            await _engine(mock_session, config).execute(
                RequestSpec("files.upload", file=FilePayload(b"x", "x.bin"))
            )

        first, second = mock_session.request.call_args_list
        assert first.kwargs["data"] is not second.kwargs["data"]
