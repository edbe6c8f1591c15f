# Copyright (c) 2025 Scott Wilcox
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Local process target.

Runs the server binary directly on this machine, building it first when the
binary is missing.
"""

import os
import shlex
import subprocess
import threading
import time
from collections import deque
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set

import psutil

from mcp_harness.errors import LaunchError
from mcp_harness.targets.base import Target, combined_output, run_command
from mcp_harness.utils.logging import get_logger

logger = get_logger("targets.local")

DEFAULT_SERVER_ARGS = [
    "server", "start",
    "--transport", "http",
    "--dangerously-disable-http-incoming-auth",
    "--mode", "namespace",
]


def protected_pids() -> Set[int]:
    """The harness's own process and its ancestors, which cleanup must never touch."""
    current = psutil.Process()
    return {current.pid} | {parent.pid for parent in current.parents()}


def find_stale_processes(binary: str, port: int) -> List[int]:
    """
    Find leftover server processes from an earlier run.

    A process is stale if its command line mentions the binary or it is
    listening on the port. The harness and its ancestors are never included,
    even when their own command lines mention the binary.

    Args:
        binary: Server binary name to match in command lines
        port: TCP port the server listens on

    Returns:
        Sorted list of PIDs to kill
    """
    protected = protected_pids()
    stale: Set[int] = set()

    for proc in psutil.process_iter(['pid', 'cmdline']):
        try:
            cmdline = ' '.join(proc.info['cmdline'] or [])
            if binary in cmdline and proc.info['pid'] not in protected:
                stale.add(proc.info['pid'])
        except (psutil.NoSuchProcess, psutil.AccessDenied, TypeError):
            pass

    try:
        connections = psutil.net_connections(kind="tcp")
    except psutil.AccessDenied:
        logger.warning(f"Not permitted to list sockets; cannot free port {port}")
        connections = []
    for conn in connections:
        if (conn.status == psutil.CONN_LISTEN and conn.laddr and conn.laddr.port == port
                and conn.pid and conn.pid not in protected):
            stale.add(conn.pid)

    return sorted(stale)


def kill_process_tree(pid: int, timeout: float = 3.0) -> None:
    """SIGKILL a process and all of its children, then wait for them to go."""
    try:
        parent = psutil.Process(pid)
        procs = parent.children(recursive=True) + [parent]
    except psutil.NoSuchProcess:
        return
    for proc in procs:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
    _, alive = psutil.wait_procs(procs, timeout=timeout)
    if alive:
        logger.warning(f"Processes still running after kill: {[p.pid for p in alive]}")


class LocalProcessTarget(Target):
    """A server started as a child process of the harness."""

    kind = "local"
    hold_message = "Press Ctrl+C to stop the server..."
    show_logs_in_summary = False

    def __init__(self,
                 host: str,
                 port: int,
                 server_dir: str,
                 binary: str = "azmcp.dll",
                 runtime: Optional[str] = "dotnet",
                 runtime_root: Optional[str] = None,
                 server_args: Optional[Sequence[str]] = None,
                 build_command: Optional[str] = None,
                 build_dir: Optional[str] = None,
                 env: Optional[Dict[str, str]] = None,
                 startup_delay: float = 3.0,
                 log_lines: int = 500):
        """
        Initialize the local process target.

        Args:
            host: Host the server binds to
            port: Port the server binds to
            server_dir: Directory containing the server binary
            binary: Binary (or assembly) file name inside server_dir
            runtime: Runtime used to execute the binary, or None to exec it directly
            runtime_root: Directory holding the runtime; exported as DOTNET_ROOT
            server_args: Arguments passed to the server after the binary
            build_command: Shell-style command that builds the binary if it is missing
            build_dir: Working directory for the build command
            env: Extra environment variables for the server
            startup_delay: Seconds to wait before checking the process survived startup
            log_lines: How many lines of server output to retain
        """
        super().__init__(host, port, env)
        self.server_dir = Path(server_dir)
        self.binary = binary
        self.runtime = runtime
        self.runtime_root = runtime_root
        self.server_args = list(server_args) if server_args is not None else list(DEFAULT_SERVER_ARGS)
        self.build_command = build_command
        self.build_dir = build_dir
        self.startup_delay = startup_delay
        self.process: Optional[subprocess.Popen] = None
        self._output = deque(maxlen=log_lines)
        self._reader_thread: Optional[threading.Thread] = None

    @property
    def identity(self) -> str:
        return self.binary

    @property
    def binary_path(self) -> Path:
        return self.server_dir / self.binary

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    def cleanup_stale(self) -> None:
        logger.info(f"Cleaning up existing {self.binary} processes and port {self.port}")
        for pid in find_stale_processes(self.binary, self.port):
            logger.info(f"Killing stale process {pid}")
            kill_process_tree(pid)

    def ensure_built(self) -> None:
        """
        Build the server if its binary is missing.

        Raises:
            LaunchError: If there is no build command or the build fails
        """
        if self.binary_path.exists():
            return
        if not self.build_command:
            raise LaunchError(f"Server binary not found at {self.binary_path}")

        logger.warning(f"Server binary not found at {self.binary_path}. Building...")
        result = run_command(shlex.split(self.build_command), cwd=self.build_dir)
        if result.returncode != 0:
            raise LaunchError(
                f"Build failed with exit code {result.returncode}",
                returncode=result.returncode,
                output=combined_output(result)
            )
        if not self.binary_path.exists():
            raise LaunchError(f"Server binary still missing after build: {self.binary_path}")

    def command(self) -> List[str]:
        if self.runtime is None:
            return [str(self.binary_path)] + self.server_args
        runtime = self.runtime
        if self.runtime_root:
            runtime = os.path.join(self.runtime_root, self.runtime)
        return [runtime, self.binary] + self.server_args

    def server_env(self) -> Dict[str, str]:
        env = os.environ.copy()
        env.update(self.env)
        env["ASPNETCORE_URLS"] = f"http://{self.host}:{self.port}"
        if self.runtime_root:
            env["DOTNET_ROOT"] = self.runtime_root
        return env

    def _start(self) -> None:
        self.ensure_built()

        command = self.command()
        logger.info(f"Starting server: {shlex.join(command)}")
        try:
            self.process = subprocess.Popen(
                command,
                cwd=str(self.server_dir),
                env=self.server_env(),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1  # Line buffered
            )
        except OSError as e:
            raise LaunchError(f"Failed to start server: {e}")

        self._reader_thread = threading.Thread(
            target=self._drain_output, name="server-output", daemon=True
        )
        self._reader_thread.start()

        time.sleep(self.startup_delay)
        if not self.is_alive():
            raise LaunchError(
                "Server failed to start",
                returncode=self.process.returncode,
                output="\n".join(self._output)
            )
        logger.info(f"Server started with PID {self.process.pid}")

    def _drain_output(self) -> None:
        process = self.process
        if process is None or process.stdout is None:
            return
        for line in process.stdout:
            line = line.rstrip()
            self._output.append(line)
            logger.debug(f"[SERVER] {line}")

    def is_alive(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def _stop(self) -> None:
        if not self.process:
            return
        logger.info(f"Stopping server (PID {self.process.pid})")
        try:
            self.process.terminate()
            self.process.wait(timeout=5.0)
        except subprocess.TimeoutExpired:
            self.process.kill()
            self.process.wait()
        if self._reader_thread is not None:
            self._reader_thread.join(timeout=1.0)

    def logs(self, tail: int = 30) -> List[str]:
        lines = list(self._output)
        return lines[-tail:] if tail else lines

    def hold(self) -> None:
        if self.process is not None:
            self.process.wait()
