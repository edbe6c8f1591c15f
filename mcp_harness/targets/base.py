# Copyright (c) 2025 Scott Wilcox
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Base Target for the MCP smoke harness.

A target is the system under test: something we start, check on, read logs
from, and tear down. Local processes, Docker containers and Compose stacks
all implement this interface so the runner drives them the same way.
"""

import shlex
import subprocess
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, List, Optional, Sequence

from mcp_harness.errors import LaunchError
from mcp_harness.utils.logging import get_logger

logger = get_logger("targets")


class TargetState(Enum):
    """Lifecycle state of a target."""
    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"
    STOPPED = "stopped"


def run_command(
    args: Sequence[str],
    cwd: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None
) -> subprocess.CompletedProcess:
    """
    Run a command to completion and capture its output.

    Args:
        args: The command and its arguments
        cwd: Working directory for the command
        env: Full environment for the command (inherits ours if None)
        timeout: Optional timeout in seconds

    Returns:
        The completed process with text stdout/stderr

    Raises:
        LaunchError: If the executable cannot be found
    """
    logger.debug(f"Running: {shlex.join(args)}")
    try:
        return subprocess.run(
            list(args),
            cwd=cwd,
            env=env,
            capture_output=True,
            text=True,
            timeout=timeout
        )
    except FileNotFoundError as e:
        raise LaunchError(f"Command not found: {args[0]} ({e})")


def run_quietly(args: Sequence[str], **kwargs) -> Optional[subprocess.CompletedProcess]:
    """
    Run a best-effort cleanup command whose failure is expected and harmless.

    Returns:
        The completed process, or None if the command could not be run
    """
    try:
        result = run_command(args, **kwargs)
    except (LaunchError, subprocess.TimeoutExpired) as e:
        logger.debug(f"Ignoring failure of {shlex.join(args)}: {e}")
        return None
    if result.returncode != 0:
        logger.debug(f"{shlex.join(args)} exited with {result.returncode}: {result.stderr.strip()}")
    return result


def combined_output(result: subprocess.CompletedProcess) -> str:
    return (result.stdout or "") + (result.stderr or "")


class Target(ABC):
    """Base class for systems under test."""

    kind = "target"

    # Shown while the harness waits for the operator before tearing down
    hold_message = "Press Enter to stop and remove the target..."

    # Whether the report should include the target's recent log lines
    show_logs_in_summary = True

    def __init__(self, host: str, port: int, env: Optional[Dict[str, str]] = None):
        """
        Initialize the target.

        Args:
            host: Host the server listens on, as seen from the harness
            port: Port the server listens on, as seen from the harness
            env: Extra environment variables for the server (credentials)
        """
        self.host = host
        self.port = port
        self.env = dict(env or {})
        self.state = TargetState.STOPPED
        self._launched = False
        self._stopped = False

    @property
    @abstractmethod
    def identity(self) -> str:
        """Name identifying this target across runs (container, project, binary)."""

    @abstractmethod
    def cleanup_stale(self) -> None:
        """Remove whatever a previous run with the same identity left behind."""

    @abstractmethod
    def _start(self) -> None:
        """Build if needed and start the target. Raise LaunchError on failure."""

    @abstractmethod
    def _stop(self) -> None:
        """Stop and remove the target."""

    @abstractmethod
    def is_alive(self) -> bool:
        """Whether the target process or container is still running."""

    @abstractmethod
    def logs(self, tail: int = 30) -> List[str]:
        """Return the last `tail` lines of the target's output."""

    def status(self) -> Optional[str]:
        """A short human-readable status table, if the target has one."""
        return None

    def hold(self) -> None:
        """Block until the operator asks for teardown."""
        input()

    def start(self) -> None:
        """
        Clean up stale state, then launch the target.

        Raises:
            LaunchError: If the target could not be built or started
        """
        self.cleanup_stale()
        self._launched = True
        self._stopped = False
        self.state = TargetState.STARTING
        try:
            self._start()
        except LaunchError:
            self.state = TargetState.FAILED
            raise

    def stop(self) -> None:
        """Tear the target down. Safe to call more than once."""
        if not self._launched or self._stopped:
            return
        self._stopped = True
        try:
            self._stop()
        finally:
            self.state = TargetState.STOPPED

    def mark_ready(self) -> None:
        self.state = TargetState.READY

    def mark_failed(self) -> None:
        self.state = TargetState.FAILED

    def describe(self) -> str:
        return f"{self.kind} target {self.identity}"
