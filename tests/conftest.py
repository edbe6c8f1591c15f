#!/usr/bin/env python3
# Copyright (c) 2025 Scott Wilcox
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Pytest configuration for the smoke harness tests.
"""

from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from mcp_harness.config import Credentials, HarnessConfig
from mcp_harness.errors import LaunchError
from mcp_harness.http.driver import RequestDriver
from mcp_harness.sse.stream import Session, SessionStreamReader
from mcp_harness.targets.base import Target


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers",
                            "timing: mark test as depending on real wall-clock waits")


class FakeTarget(Target):
    """Target that records lifecycle calls instead of starting anything."""

    kind = "fake"

    def __init__(self, alive: bool = True, launch_error: Optional[LaunchError] = None,
                 log_lines: Optional[List[str]] = None):
        super().__init__("127.0.0.1", 8080)
        self.alive = alive
        self.launch_error = launch_error
        self.log_lines = log_lines or ["line 1", "line 2"]
        self.calls: List[str] = []

    @property
    def identity(self) -> str:
        return "fake-target"

    def cleanup_stale(self) -> None:
        self.calls.append("cleanup_stale")

    def _start(self) -> None:
        self.calls.append("start")
        if self.launch_error:
            raise self.launch_error

    def _stop(self) -> None:
        self.calls.append("stop")

    def is_alive(self) -> bool:
        return self.alive

    def logs(self, tail: int = 30) -> List[str]:
        return self.log_lines[-tail:]

    def hold(self) -> None:
        self.calls.append("hold")


class StubStreamReader(SessionStreamReader):
    """Stream reader that never connects; the session is handed over directly."""

    def __init__(self, token: str = "abc123", error: Optional[Exception] = None):
        super().__init__("http://127.0.0.1:8080/sse", session=MagicMock())
        self.token = token
        self.error = error
        self.closed = False

    def open(self, settle_delay: float = 2.0) -> Session:
        if self.error:
            raise self.error
        return Session(token=self.token, endpoint=f"/message?sessionId={self.token}")

    def close(self) -> None:
        self.closed = True
        super().close()


class FakeMessageEndpoint:
    """
    Stands in for the requests session the driver POSTs with.

    Requests whose method has a canned response get it delivered on the
    reader, as the server would push it down the SSE stream.
    """

    def __init__(self, reader: SessionStreamReader, responses: Dict[str, Dict[str, Any]]):
        self.reader = reader
        self.responses = responses
        self.posts: List[Dict[str, Any]] = []
        self.urls: List[str] = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.urls.append(url)
        self.posts.append(json)
        method = json.get("method")
        if "id" in json and method in self.responses:
            self.reader.deliver({"jsonrpc": "2.0", "id": json["id"], **self.responses[method]})
        response = MagicMock()
        response.ok = True
        response.status_code = 202
        return response

    def close(self):
        pass


INITIALIZE_RESULT = {
    "result": {
        "protocolVersion": "2024-11-05",
        "capabilities": {"tools": {}},
        "serverInfo": {"name": "Azure MCP Server", "version": "0.5.0"},
    }
}

TOOLS_LIST_RESULT = {
    "result": {
        "tools": [
            {"name": "group_list", "inputSchema": {}},
            {"name": "subscription_list", "inputSchema": {}},
            {"name": "storage_account_list", "inputSchema": {}},
        ]
    }
}

TOOL_CALL_SUCCESS = {
    "result": {
        "isError": False,
        "content": [{
            "type": "text",
            "text": '{"status":200,"message":"Success","results":{"groups":['
                    '{"name":"rg-1","id":"/subscriptions/x/resourceGroups/rg-1","location":"eastus"},'
                    '{"name":"rg-2","id":"/subscriptions/x/resourceGroups/rg-2","location":"westeurope"}]}}',
        }],
    }
}

TOOL_CALL_ERROR = {
    "result": {
        "isError": True,
        "content": [{
            "type": "text",
            "text": '{"status":401,"message":"ClientSecretCredential authentication failed."}',
        }],
    }
}


@pytest.fixture
def credentials():
    return Credentials(
        tenant_id="tenant-1234",
        client_id="client-5678",
        client_secret="s3cret",
        subscription_id="12345678-aaaa-bbbb-cccc-1234567890ab",
    )


@pytest.fixture
def config(credentials):
    """Config with short waits so exchange tests finish quickly."""
    return HarnessConfig(
        credentials=credentials,
        ready_attempts=3,
        ready_interval=0.01,
        probe_timeout=0.1,
        session_settle=0.2,
        initialize_wait=0.2,
        list_wait=0.2,
        call_wait=0.2,
        recheck_wait=0.1,
        interactive=False,
    )


@pytest.fixture
def fake_target():
    return FakeTarget()


@pytest.fixture
def make_target():
    return FakeTarget


@pytest.fixture
def stub_reader():
    return StubStreamReader()


@pytest.fixture
def make_reader():
    return StubStreamReader


@pytest.fixture
def responses():
    return {
        "initialize": INITIALIZE_RESULT,
        "tools/list": TOOLS_LIST_RESULT,
        "tools/call": TOOL_CALL_SUCCESS,
    }


@pytest.fixture
def endpoint(stub_reader, responses):
    return FakeMessageEndpoint(stub_reader, responses)


@pytest.fixture
def driver_factory(endpoint, config):
    def factory(session, reader):
        return RequestDriver(config.base_url, session, reader, http=endpoint, timeout=1.0)
    return factory


@pytest.fixture
def tool_call_error():
    return TOOL_CALL_ERROR
