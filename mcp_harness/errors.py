# Copyright (c) 2025 Scott Wilcox
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Error taxonomy for the smoke harness."""

from typing import List, Optional


class HarnessError(Exception):
    """Base exception for fatal harness failures."""

    exit_code = 1

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def diagnostics(self) -> List[str]:
        """Lines worth showing the operator alongside the message."""
        return []


class ConfigError(HarnessError):
    """Required configuration or credentials are missing."""

    def __init__(self, message: str, missing: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.missing = missing or []


class LaunchError(HarnessError):
    """The target could not be built or started."""

    def __init__(
        self,
        message: str,
        returncode: Optional[int] = None,
        output: Optional[str] = None
    ) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.output = output or ""

    def diagnostics(self) -> List[str]:
        return self.output.splitlines()[-30:]


class ReadinessError(HarnessError):
    """The target never became reachable."""

    def __init__(self, message: str, logs: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.logs = logs or []

    def diagnostics(self) -> List[str]:
        return self.logs


class ReadinessTimeoutError(ReadinessError):
    """The attempt budget ran out before the endpoint answered 200."""


class TargetExitedError(ReadinessError):
    """The target process or container died while we were polling it."""


class SessionError(HarnessError):
    """No session token appeared on the stream within the settle delay."""

    def __init__(self, message: str, buffer_dump: str = "") -> None:
        super().__init__(message)
        self.buffer_dump = buffer_dump

    def diagnostics(self) -> List[str]:
        return self.buffer_dump.splitlines()


class CallVerificationError(HarnessError):
    """
    The response for a request was not observed on the stream.

    This is a soft failure: the runner records it and carries on with the
    remaining calls.
    """

    def __init__(self, request_id: int, method: str, message: str) -> None:
        super().__init__(message)
        self.request_id = request_id
        self.method = method
