# Copyright (c) 2025 Scott Wilcox
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
JSON-RPC request driver for MCP over HTTP/SSE.

Requests are POSTed to the session's message endpoint. The POST reply
carries nothing useful; the real response arrives on the SSE stream and is
matched to its request by id.
"""

import itertools
import time
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional
from urllib.parse import urljoin

import requests

from mcp_harness.errors import CallVerificationError
from mcp_harness.sse.stream import Session, SessionStreamReader
from mcp_harness.utils.logging import get_logger, log_request

logger = get_logger("driver")


@dataclass
class PendingRequest:
    """A request that has been sent and is waiting for its response on the stream."""

    id: int
    method: str
    params: Optional[Dict[str, Any]]
    future: Future
    issued_at: float = field(default_factory=time.time)


def build_envelope(method: str,
                   params: Optional[Dict[str, Any]] = None,
                   request_id: Optional[int] = None) -> Dict[str, Any]:
    """
    Build a JSON-RPC 2.0 envelope.

    Args:
        method: The method name
        params: Optional parameters; the key is left out entirely when None
        request_id: The request id; None builds a notification

    Returns:
        The envelope as a dict
    """
    envelope: Dict[str, Any] = {"jsonrpc": "2.0"}
    if request_id is not None:
        envelope["id"] = request_id
    envelope["method"] = method
    if params is not None:
        envelope["params"] = params
    return envelope


class RequestDriver:
    """Sends requests on an established session and awaits their responses."""

    def __init__(self,
                 base_url: str,
                 session: Session,
                 reader: SessionStreamReader,
                 http: Optional[requests.Session] = None,
                 timeout: float = 10.0):
        """
        Initialize the driver.

        Args:
            base_url: Server base URL, e.g. http://127.0.0.1:8080
            session: The session established on the stream
            reader: The stream reader that will deliver responses
            http: Optional requests session for the POSTs
            timeout: Timeout for each POST in seconds
        """
        self.base_url = base_url
        self.session = session
        self.reader = reader
        self.http = http or requests.Session()
        self.timeout = timeout
        self._ids = itertools.count(1)

    @property
    def message_url(self) -> str:
        return urljoin(self.base_url, self.session.endpoint)

    def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> PendingRequest:
        """
        Send a request without waiting for its response.

        Args:
            method: The method name
            params: Optional parameters

        Returns:
            The pending request, whose future resolves when the response arrives
        """
        request_id = next(self._ids)
        future = self.reader.expect(request_id)
        self._post(build_envelope(method, params, request_id))
        return PendingRequest(id=request_id, method=method, params=params, future=future)

    def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Send a notification. No id is used and no response is expected."""
        self._post(build_envelope(method, params))

    def await_response(self,
                       pending: PendingRequest,
                       wait: float,
                       recheck: float,
                       on_recheck: Optional[Callable[[PendingRequest], None]] = None) -> Dict[str, Any]:
        """
        Wait for a response, allowing exactly one extra wait if it is late.

        Args:
            pending: The request to wait for
            wait: Seconds for the first wait
            recheck: Seconds for the single additional wait
            on_recheck: Called before the additional wait starts

        Returns:
            The decoded response message

        Raises:
            CallVerificationError: If no response arrived within both waits
        """
        try:
            return pending.future.result(timeout=wait)
        except FutureTimeoutError:
            pass

        logger.warning(f"Response to {pending.method} (id {pending.id}) not captured yet, waiting...")
        if on_recheck:
            on_recheck(pending)
        try:
            return pending.future.result(timeout=recheck)
        except FutureTimeoutError:
            self.reader.forget(pending.id)
            raise CallVerificationError(
                pending.id,
                pending.method,
                f"No response to {pending.method} (id {pending.id}) after {wait + recheck:g}s"
            )

    def close(self) -> None:
        self.http.close()

    def _post(self, payload: Dict[str, Any]) -> None:
        log_request(logger, payload)
        try:
            response = self.http.post(
                self.message_url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to send {payload.get('method')}: {e}")
            return
        if not response.ok:
            logger.warning(f"{payload.get('method')} POST returned HTTP {response.status_code}")
        response.close()
