# Copyright (c) 2025 Scott Wilcox
# SPDX-License-Identifier: AGPL-3.0-or-later
"""
Readiness polling

Waits for a freshly launched target to answer on its streaming endpoint.
"""

import time
from typing import Callable, Optional

import requests

from mcp_harness.errors import ReadinessTimeoutError, TargetExitedError
from mcp_harness.targets.base import Target
from mcp_harness.utils.logging import get_logger

logger = get_logger("readiness")


def probe(url: str, timeout: float = 2.0, session: Optional[requests.Session] = None) -> Optional[int]:
    """
    Issue a single liveness GET against the URL.

    The response is streamed and closed straight away so an SSE endpoint
    does not keep the probe open.

    Args:
        url: The URL to probe
        timeout: Connect/read timeout for this probe in seconds
        session: Optional requests session to use

    Returns:
        The HTTP status code, or None if the server could not be reached
    """
    http = session or requests
    try:
        response = http.get(url, timeout=timeout, stream=True)
    except requests.exceptions.RequestException as e:
        logger.debug(f"Probe of {url} failed: {e}")
        return None
    try:
        return response.status_code
    finally:
        response.close()


def wait_ready(target: Target,
               url: str,
               attempts: int = 15,
               interval: float = 1.0,
               probe_timeout: float = 2.0,
               log_tail: int = 30,
               session: Optional[requests.Session] = None,
               on_attempt: Optional[Callable[[int], None]] = None) -> int:
    """
    Poll until the target answers HTTP 200 or the attempt budget runs out.

    Args:
        target: The launched target, checked for liveness before each probe
        url: The readiness URL (the streaming endpoint)
        attempts: Maximum number of probes
        interval: Seconds to sleep between probes
        probe_timeout: Timeout for each individual probe
        log_tail: Number of target log lines attached to a failure
        session: Optional requests session to probe with
        on_attempt: Called with the attempt number after each failed probe

    Returns:
        The attempt number that succeeded

    Raises:
        TargetExitedError: If the target stops running while we wait
        ReadinessTimeoutError: If no probe succeeded within the budget
    """
    for attempt in range(1, attempts + 1):
        if not target.is_alive():
            target.mark_failed()
            raise TargetExitedError(
                f"{target.describe()} exited unexpectedly",
                logs=target.logs(log_tail)
            )

        status = probe(url, timeout=probe_timeout, session=session)
        if status == 200:
            logger.info(f"{url} ready after {attempt} attempt(s)")
            target.mark_ready()
            return attempt

        logger.debug(f"Attempt {attempt}/{attempts}: {url} returned {status}")
        if on_attempt:
            on_attempt(attempt)
        if attempt < attempts:
            time.sleep(interval)

    target.mark_failed()
    raise ReadinessTimeoutError(
        f"Timeout waiting for server at {url} after {attempts} attempts",
        logs=target.logs(log_tail)
    )
