# Copyright (c) 2025 Scott Wilcox
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
SSE session stream for the MCP smoke harness.

The server answers every POSTed request on a single long-lived SSE stream.
A background thread reads that stream, keeps every raw event in a
StreamBuffer for diagnostics, pulls the session ID out of the first event,
and hands JSON-RPC responses to whichever caller is waiting on that id.
"""

import json
import re
import threading
import time
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests
import sseclient
from jsonschema import Draft7Validator

from mcp_harness.errors import SessionError
from mcp_harness.utils.logging import get_logger, log_response

logger = get_logger("sse")

SESSION_ID_PATTERN = re.compile(r'sessionId=([^"&\s]+)')

JSONRPC_RESPONSE_SCHEMA = {
    "type": "object",
    "required": ["jsonrpc", "id"],
    "properties": {
        "jsonrpc": {"const": "2.0"},
        "id": {"type": ["integer", "string"]},
        "error": {
            "type": "object",
            "required": ["code", "message"],
        },
    },
    "oneOf": [
        {"required": ["result"]},
        {"required": ["error"]},
    ],
}

_response_validator = Draft7Validator(JSONRPC_RESPONSE_SCHEMA)


def is_jsonrpc_response(message: Any) -> bool:
    """Whether a decoded stream message is a JSON-RPC response (not a request or notification)."""
    return _response_validator.is_valid(message)


def _correlation_key(request_id: Any) -> Any:
    # Some servers echo integer ids back as strings
    if isinstance(request_id, str) and request_id.isdigit():
        return int(request_id)
    return request_id


class StreamBuffer:
    """Append-only, thread-safe record of raw events received on the stream."""

    def __init__(self):
        self._events: List[str] = []
        self._lock = threading.Lock()

    def append(self, raw: str) -> None:
        with self._lock:
            self._events.append(raw)

    def find_latest(self, predicate: Callable[[str], bool], window: Optional[int] = None) -> Optional[str]:
        """
        Scan from the newest event backwards for one matching the predicate.

        Args:
            predicate: Test applied to each raw event
            window: Only look at this many of the most recent events

        Returns:
            The newest matching event, or None
        """
        with self._lock:
            events = self._events if window is None else self._events[-window:]
            for raw in reversed(events):
                if predicate(raw):
                    return raw
        return None

    def dump(self) -> str:
        with self._lock:
            return "\n\n".join(self._events)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


@dataclass(frozen=True)
class Session:
    """The session a stream belongs to. Fixed once the first event arrives."""

    token: str
    endpoint: str
    created_at: float = field(default_factory=time.time)


class SessionStreamReader:
    """Reads an MCP SSE stream on a background thread and demultiplexes responses."""

    def __init__(self,
                 url: str,
                 message_path: str = "/message",
                 session: Optional[requests.Session] = None,
                 connect_timeout: float = 5.0,
                 buffer: Optional[StreamBuffer] = None):
        """
        Initialize the stream reader.

        Args:
            url: The SSE endpoint URL
            message_path: Message endpoint path used when the server does not
                advertise one in its first event
            session: Optional requests session to open the stream with
            connect_timeout: Timeout for establishing the stream connection
            buffer: Buffer to record raw events into
        """
        self.url = url
        self.message_path = message_path
        self.http = session or requests.Session()
        self._owns_http = session is None
        self.connect_timeout = connect_timeout
        self.buffer = buffer if buffer is not None else StreamBuffer()
        self._pending: Dict[Any, Future] = {}
        self._lock = threading.Lock()
        self._session_future: Future = Future()
        self._closed = threading.Event()
        self._response: Optional[requests.Response] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def session(self) -> Optional[Session]:
        if self._session_future.done() and not self._session_future.exception():
            return self._session_future.result()
        return None

    def open(self, settle_delay: float = 2.0) -> Session:
        """
        Start reading the stream and wait for the session ID.

        Args:
            settle_delay: Seconds to wait for the first event to carry a session ID

        Returns:
            The established session

        Raises:
            SessionError: If no session ID arrived in time or the stream failed
        """
        if self._thread is not None:
            raise RuntimeError("Stream already opened")

        logger.info(f"Connecting to SSE endpoint {self.url}")
        self._thread = threading.Thread(target=self._run, name="sse-stream", daemon=True)
        self._thread.start()

        try:
            session = self._session_future.result(timeout=settle_delay)
        except FutureTimeoutError:
            raise SessionError(
                f"Failed to get session ID from {self.url} within {settle_delay}s",
                buffer_dump=self.buffer.dump()
            )
        logger.info(f"Session ID: {session.token}")
        return session

    def expect(self, request_id: Any) -> Future:
        """
        Register interest in the response to a request.

        Must be called before the request is sent so a fast response is not missed.

        Returns:
            A future resolved with the decoded response message
        """
        future: Future = Future()
        with self._lock:
            self._pending[_correlation_key(request_id)] = future
        return future

    def forget(self, request_id: Any) -> None:
        with self._lock:
            future = self._pending.pop(_correlation_key(request_id), None)
        if future is not None:
            future.cancel()

    def close(self) -> None:
        """Stop reading and release the connection."""
        self._closed.set()
        if self._response is not None:
            self._response.close()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=1.0)
            if self._thread.is_alive():
                logger.debug("SSE reader thread still blocked on read; leaving it to exit with the process")
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for future in pending:
            future.cancel()
        if self._owns_http:
            self.http.close()

    def _run(self) -> None:
        try:
            response = self.http.get(
                self.url,
                stream=True,
                headers={"Accept": "text/event-stream"},
                timeout=(self.connect_timeout, None)
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            self._fail_session(f"Failed to connect to SSE endpoint {self.url}: {e}")
            return

        self._response = response
        try:
            self.consume(response)
        except Exception as e:
            if self._closed.is_set():
                logger.debug(f"SSE stream closed: {e}")
            else:
                logger.error(f"SSE stream error: {e}")
        finally:
            self._fail_session("SSE stream ended before a session ID was received")
            logger.debug("SSE stream reader stopped")

    def consume(self, event_source: Iterable[bytes]) -> None:
        """
        Read SSE events from a byte source until it ends or the reader is closed.

        Args:
            event_source: An iterable of raw bytes, such as a streamed response
        """
        client = sseclient.SSEClient(event_source)
        for event in client.events():
            if self._closed.is_set():
                break
            self._dispatch(event.event, event.data)

    def _dispatch(self, event_name: str, data: str) -> None:
        self.buffer.append(f"event: {event_name}\ndata: {data}")

        if not self._session_future.done():
            match = SESSION_ID_PATTERN.search(data)
            if match:
                self._session_future.set_result(self._make_session(match.group(1), event_name, data))
                return

        try:
            message = json.loads(data)
        except ValueError:
            logger.debug(f"Ignoring non-JSON {event_name} event: {data[:200]}")
            return
        self.deliver(message)

    def deliver(self, message: Any) -> None:
        """Resolve the pending request a response message belongs to."""
        if not is_jsonrpc_response(message):
            logger.debug(f"Ignoring non-response message: {str(message)[:200]}")
            return

        log_response(logger, message)
        key = _correlation_key(message["id"])
        with self._lock:
            future = self._pending.pop(key, None)
        if future is None:
            logger.debug(f"No pending request for response id {key}")
            return
        future.set_result(message)

    def _make_session(self, token: str, event_name: str, data: str) -> Session:
        endpoint = data.strip()
        if event_name != "endpoint" or not endpoint.startswith(("/", "http://", "https://")):
            endpoint = f"{self.message_path}?sessionId={token}"
        return Session(token=token, endpoint=endpoint)

    def _fail_session(self, message: str) -> None:
        if not self._session_future.done():
            self._session_future.set_exception(SessionError(message, buffer_dump=self.buffer.dump()))
