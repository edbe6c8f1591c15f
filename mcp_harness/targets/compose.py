# Copyright (c) 2025 Scott Wilcox
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Docker Compose stack target."""

import os
import time
from typing import Dict, List, Optional

from mcp_harness.errors import LaunchError
from mcp_harness.targets.base import Target, combined_output, run_command, run_quietly
from mcp_harness.targets.docker import check_docker_installed
from mcp_harness.utils.logging import get_logger

logger = get_logger("targets.compose")


class ComposeStackTarget(Target):
    """A server brought up declaratively with `docker compose`."""

    kind = "compose"
    hold_message = "Press Enter to stop and remove the container..."

    def __init__(self,
                 host: str,
                 port: int,
                 project: str = "azure-mcp",
                 compose_file: Optional[str] = None,
                 project_dir: Optional[str] = None,
                 env: Optional[Dict[str, str]] = None,
                 startup_delay: float = 3.0):
        """
        Initialize the Compose target.

        Args:
            host: Host the published port is reachable on
            port: Host port the stack publishes for the server
            project: Compose project name; the stack's identity across runs
            compose_file: Explicit compose file, otherwise compose's own lookup applies
            project_dir: Directory compose runs in
            env: Environment variables available for interpolation in the compose file
            startup_delay: Seconds to wait after `up -d` before polling
        """
        super().__init__(host, port, env)
        self.project = project
        self.compose_file = compose_file
        self.project_dir = project_dir
        self.startup_delay = startup_delay

    @property
    def identity(self) -> str:
        return self.project

    def compose_args(self, *args: str) -> List[str]:
        command = ["docker", "compose", "-p", self.project]
        if self.compose_file:
            command.extend(["-f", self.compose_file])
        command.extend(args)
        return command

    def _compose_env(self) -> Dict[str, str]:
        env = os.environ.copy()
        env.update(self.env)
        return env

    def _run(self, *args: str):
        return run_command(self.compose_args(*args), cwd=self.project_dir, env=self._compose_env())

    def _run_quietly(self, *args: str):
        return run_quietly(self.compose_args(*args), cwd=self.project_dir, env=self._compose_env())

    def cleanup_stale(self) -> None:
        logger.info(f"Stopping any existing containers for project {self.project}")
        self._run_quietly("down")

    def _start(self) -> None:
        if not check_docker_installed():
            raise LaunchError("Docker is not installed or not available in PATH")

        for step in (("build",), ("up", "-d")):
            logger.info(f"Running docker compose {' '.join(step)}")
            result = self._run(*step)
            if result.returncode != 0:
                raise LaunchError(
                    f"docker compose {' '.join(step)} failed with exit code {result.returncode}",
                    returncode=result.returncode,
                    output=combined_output(result)
                )

        time.sleep(self.startup_delay)

    def is_alive(self) -> bool:
        result = self._run_quietly("ps", "-q", "--status", "running")
        return result is not None and result.returncode == 0 and bool(result.stdout.strip())

    def _stop(self) -> None:
        logger.info(f"Bringing down project {self.project}")
        self._run_quietly("down")

    def logs(self, tail: int = 30) -> List[str]:
        result = self._run_quietly("logs", "--no-color", f"--tail={tail}")
        if result is None:
            return []
        return combined_output(result).splitlines()

    def status(self) -> Optional[str]:
        result = self._run_quietly("ps", "--format", "table {{.Name}}\t{{.Status}}\t{{.Ports}}")
        if result is None or result.returncode != 0:
            return None
        return result.stdout.rstrip()
