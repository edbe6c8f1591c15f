#!/usr/bin/env python3
# Copyright (c) 2025 Scott Wilcox
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Unit tests for the JSON-RPC request driver.
"""

import threading
import time
from unittest.mock import MagicMock

import pytest
import requests

from mcp_harness.errors import CallVerificationError
from mcp_harness.http.driver import RequestDriver, build_envelope
from mcp_harness.sse.stream import Session, SessionStreamReader


@pytest.fixture
def reader():
    return SessionStreamReader("http://127.0.0.1:8080/sse", session=MagicMock())


@pytest.fixture
def http():
    session = MagicMock()
    session.post.return_value = MagicMock(ok=True, status_code=202)
    return session


@pytest.fixture
def driver(reader, http):
    session = Session(token="abc123", endpoint="/message?sessionId=abc123")
    return RequestDriver("http://127.0.0.1:8080", session, reader, http=http)


def posted(http):
    return [c.kwargs["json"] for c in http.post.call_args_list]


class TestBuildEnvelope:
    """Tests for JSON-RPC envelope construction."""

    def test_request_with_params(self):
        assert build_envelope("tools/call", {"name": "group_list"}, 3) == {
            "jsonrpc": "2.0",
            "id": 3,
            "method": "tools/call",
            "params": {"name": "group_list"},
        }

    def test_params_key_omitted_when_absent(self):
        envelope = build_envelope("tools/list", request_id=2)
        assert "params" not in envelope
        assert envelope == {"jsonrpc": "2.0", "id": 2, "method": "tools/list"}

    def test_empty_params_are_kept(self):
        assert build_envelope("tools/list", {}, 2)["params"] == {}

    def test_notification_has_no_id(self):
        assert build_envelope("notifications/initialized") == {
            "jsonrpc": "2.0",
            "method": "notifications/initialized",
        }


class TestRequestDriver:
    """Tests for sending requests and awaiting their responses."""

    def test_message_url_from_relative_endpoint(self, driver):
        assert driver.message_url == "http://127.0.0.1:8080/message?sessionId=abc123"

    def test_message_url_from_absolute_endpoint(self, reader, http):
        session = Session(token="xyz", endpoint="http://10.0.0.5:9000/messages?sessionId=xyz")
        driver = RequestDriver("http://127.0.0.1:8080", session, reader, http=http)
        assert driver.message_url == "http://10.0.0.5:9000/messages?sessionId=xyz"

    def test_ids_are_sequential_from_one(self, driver, http):
        first = driver.call("initialize", {"protocolVersion": "2024-11-05"})
        driver.notify("notifications/initialized")
        second = driver.call("tools/list")
        third = driver.call("tools/call", {"name": "group_list"})

        assert [first.id, second.id, third.id] == [1, 2, 3]
        assert [body.get("id") for body in posted(http)] == [1, None, 2, 3]

    def test_post_shape(self, driver, http):
        driver.call("tools/list")

        http.post.assert_called_once_with(
            "http://127.0.0.1:8080/message?sessionId=abc123",
            json={"jsonrpc": "2.0", "id": 1, "method": "tools/list"},
            headers={"Content-Type": "application/json"},
            timeout=10.0
        )

    def test_interest_registered_before_post(self, driver, http, reader):
        def respond(url, json=None, **kwargs):
            # Response arrives on the stream before the POST returns
            reader.deliver({"jsonrpc": "2.0", "id": json["id"], "result": {"tools": []}})
            return MagicMock(ok=True, status_code=202)

        http.post.side_effect = respond
        pending = driver.call("tools/list")

        assert driver.await_response(pending, wait=0.1, recheck=0.1) == {
            "jsonrpc": "2.0", "id": 1, "result": {"tools": []}
        }

    def test_post_failure_is_not_fatal(self, driver, http):
        http.post.side_effect = requests.exceptions.ConnectionError("reset")

        pending = driver.call("tools/list")

        assert pending.id == 1
        assert not pending.future.done()

    def test_non_ok_post_is_not_fatal(self, driver, http):
        http.post.return_value = MagicMock(ok=False, status_code=400)
        driver.notify("notifications/initialized")
        assert http.post.call_count == 1

    def test_response_within_first_wait(self, driver, reader):
        pending = driver.call("initialize")
        reader.deliver({"jsonrpc": "2.0", "id": 1, "result": {"serverInfo": {"name": "x"}}})
        on_recheck = MagicMock()

        response = driver.await_response(pending, wait=0.5, recheck=0.5, on_recheck=on_recheck)

        assert response["result"]["serverInfo"]["name"] == "x"
        on_recheck.assert_not_called()

    def test_response_during_recheck(self, driver, reader):
        pending = driver.call("tools/call", {"name": "group_list"})
        on_recheck = MagicMock()
        timer = threading.Timer(
            0.15, reader.deliver, args=({"jsonrpc": "2.0", "id": "1", "result": {"content": []}},)
        )
        timer.start()
        try:
            response = driver.await_response(pending, wait=0.05, recheck=2.0, on_recheck=on_recheck)
        finally:
            timer.cancel()

        assert response["result"] == {"content": []}
        on_recheck.assert_called_once_with(pending)

    def test_single_recheck_then_soft_failure(self, driver, reader):
        pending = driver.call("tools/list")
        on_recheck = MagicMock()

        started = time.time()
        with pytest.raises(CallVerificationError) as exc_info:
            driver.await_response(pending, wait=0.1, recheck=0.1, on_recheck=on_recheck)
        elapsed = time.time() - started

        assert on_recheck.call_count == 1
        assert exc_info.value.request_id == 1
        assert exc_info.value.method == "tools/list"
        assert exc_info.value.message == "No response to tools/list (id 1) after 0.2s"
        assert elapsed < 1.0
        assert pending.future.cancelled()

    def test_late_response_after_giving_up_is_ignored(self, driver, reader):
        pending = driver.call("tools/list")
        with pytest.raises(CallVerificationError):
            driver.await_response(pending, wait=0.01, recheck=0.01)

        reader.deliver({"jsonrpc": "2.0", "id": 1, "result": {"tools": []}})
        assert pending.future.cancelled()

    def test_close_closes_http(self, driver, http):
        driver.close()
        http.close.assert_called_once()
