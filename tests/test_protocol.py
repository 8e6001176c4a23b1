"""Tests for realtime frame helpers."""

from __future__ import annotations

import pytest

from slacko.errors import ProtocolError
from slacko.protocol import (
    EnvelopeType,
    RealtimeMode,
    build_ack,
    build_ping,
    disconnect_reason,
    parse_frame,
)


class TestRealtimeMode:
    def test_bootstrap_methods(self):
        assert RealtimeMode.SOCKET_MODE.value == "apps.connections.open"
        assert RealtimeMode.SOCKET_MODE.bootstrap_http_method == "POST"
        assert RealtimeMode.RTM.value == "rtm.connect"
        assert RealtimeMode.RTM.bootstrap_http_method == "GET"


class TestParseFrame:
    """Tests for parse_frame()."""

    def test_socket_mode_envelope(self):
        event = parse_frame(
            {
                "type": "events_api",
                "envelope_id": "env-1",
                "accepts_response_payload": False,
                "retry_attempt": 1,
                "retry_reason": "timeout",
                "payload": {"event": {"type": "message", "text": "hi"}},
            },
            RealtimeMode.SOCKET_MODE,
        )

        assert event.kind is EnvelopeType.EVENTS_API
        assert event.envelope_id == "env-1"
        assert event.retry_attempt == 1
        assert event.retry_reason == "timeout"
        assert event.inner_event == {"type": "message", "text": "hi"}

    def test_hello(self):
        event = parse_frame({"type": "hello", "num_connections": 1}, RealtimeMode.SOCKET_MODE)
        assert event.kind is EnvelopeType.HELLO
        assert event.envelope_id is None

    def test_unknown_type_kept(self):
        event = parse_frame({"type": "brand_new", "envelope_id": "e"}, RealtimeMode.SOCKET_MODE)
        assert event.kind is EnvelopeType.UNKNOWN
        assert event.type == "brand_new"

    def test_rtm_frame_is_payload(self):
        frame = {"type": "message", "channel": "C1", "text": "hi"}
        event = parse_frame(frame, RealtimeMode.RTM)
        assert event.payload == frame
        assert event.envelope_id is None

    def test_missing_type(self):
        with pytest.raises(ProtocolError):
            parse_frame({"envelope_id": "e"}, RealtimeMode.SOCKET_MODE)

    def test_payload_not_object(self):
        with pytest.raises(ProtocolError):
            parse_frame({"type": "events_api", "payload": []}, RealtimeMode.SOCKET_MODE)

    def test_envelope_id_not_string(self):
        with pytest.raises(ProtocolError):
            parse_frame({"type": "events_api", "envelope_id": 5}, RealtimeMode.SOCKET_MODE)


class TestFrameBuilders:
    """Tests for outbound frame builders."""

    def test_ack(self):
        assert build_ack("env-1") == {"envelope_id": "env-1"}

    def test_ack_with_payload(self):
        assert build_ack("env-1", {"text": "ok"}) == {
            "envelope_id": "env-1",
            "payload": {"text": "ok"},
        }

    def test_ack_requires_id(self):
        with pytest.raises(ValueError):
            build_ack("")

    def test_ping(self):
        assert build_ping(7) == {"id": 7, "type": "ping"}

    def test_disconnect_reason(self):
        event = parse_frame(
            {"type": "disconnect", "reason": "refresh_requested"}, RealtimeMode.SOCKET_MODE
        )
        assert disconnect_reason(event) == "refresh_requested"
