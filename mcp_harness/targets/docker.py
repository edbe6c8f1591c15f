# Copyright (c) 2025 Scott Wilcox
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Docker container target.

Builds the server image and runs it as a detached container with the
server port published on the host. All Docker interaction goes through the
docker CLI.
"""

import os
import shutil
from typing import Dict, List, Optional, Sequence

from mcp_harness.errors import LaunchError
from mcp_harness.targets.base import Target, combined_output, run_command, run_quietly
from mcp_harness.utils.logging import get_logger

logger = get_logger("targets.docker")

DEFAULT_VERIFY_COMMAND = ["dotnet", "azmcp.dll", "--help"]


def check_docker_installed() -> bool:
    """
    Check that the docker CLI is available and the daemon answers.

    Returns:
        True if Docker is usable, False otherwise
    """
    if not shutil.which("docker"):
        logger.error("Docker is not installed or not in PATH")
        return False
    result = run_quietly(["docker", "--version"], timeout=5)
    if result is None or result.returncode != 0:
        logger.error("Docker is installed but not functioning properly")
        return False
    logger.debug(f"Docker version: {result.stdout.strip()}")
    return True


class ContainerTarget(Target):
    """A server running in a standalone Docker container."""

    kind = "docker"
    hold_message = "Press Enter to stop and remove the container..."

    def __init__(self,
                 host: str,
                 port: int,
                 image: str = "azure-mcp-server-http:local",
                 container_name: str = "azure-mcp-test",
                 dockerfile: str = "Dockerfile.http",
                 context: str = ".",
                 container_port: int = 8080,
                 env: Optional[Dict[str, str]] = None,
                 rebuild: bool = True,
                 prune: bool = False,
                 verify_command: Optional[Sequence[str]] = None):
        """
        Initialize the container target.

        Args:
            host: Host the published port is reachable on
            port: Host port published for the server
            image: Image name and tag to build and run
            container_name: Fixed container name, reused across runs
            dockerfile: Dockerfile used for the build, relative to the context
            context: Docker build context directory
            container_port: Port the server listens on inside the container
            env: Environment variables passed into the container
            rebuild: Remove and rebuild the image on every run
            prune: Also prune dangling images and build cache during cleanup
            verify_command: Command run in a throwaway container to check the image;
                empty to skip verification
        """
        super().__init__(host, port, env)
        self.image = image
        self.container_name = container_name
        self.dockerfile = dockerfile
        self.context = context
        self.container_port = container_port
        self.rebuild = rebuild
        self.prune = prune
        self.verify_command = (
            list(verify_command) if verify_command is not None else list(DEFAULT_VERIFY_COMMAND)
        )

    @property
    def identity(self) -> str:
        return self.container_name

    def cleanup_stale(self) -> None:
        logger.info(f"Cleaning up existing container {self.container_name}")
        run_quietly(["docker", "stop", self.container_name])
        run_quietly(["docker", "rm", self.container_name])
        if self.rebuild:
            run_quietly(["docker", "rmi", self.image])
        if self.prune:
            run_quietly(["docker", "image", "prune", "-f"])
            run_quietly(["docker", "builder", "prune", "-f"])

    def image_exists(self) -> bool:
        result = run_quietly(["docker", "image", "inspect", self.image])
        return result is not None and result.returncode == 0

    def build(self) -> None:
        """
        Build the image.

        Raises:
            LaunchError: If the build fails or the image is missing afterwards
        """
        dockerfile = self.dockerfile
        if not os.path.isabs(dockerfile):
            dockerfile = os.path.join(self.context, dockerfile)
        logger.info(f"Building Docker image {self.image}")
        result = run_command(["docker", "build", "-f", dockerfile, "-t", self.image, self.context])
        if result.returncode != 0:
            raise LaunchError(
                f"Docker build failed with exit code {result.returncode}",
                returncode=result.returncode,
                output=combined_output(result)
            )
        if not self.image_exists():
            raise LaunchError(f"Docker image not found after build: {self.image}")

    def verify_image(self) -> bool:
        """
        Run the image's help command and look for the server subcommand.

        A failed check is only a warning; the container may still start.

        Returns:
            True if the image looks runnable
        """
        if not self.verify_command:
            return True
        result = run_quietly(["docker", "run", "--rm", self.image] + self.verify_command)
        output = combined_output(result) if result is not None else ""
        if "server" in output:
            logger.info("Docker image verified (server command available)")
            return True
        logger.warning("Image help output did not mention the server command:\n"
                       + "\n".join(output.splitlines()[:10]))
        return False

    def run_args(self) -> List[str]:
        """
        Build the `docker run` command.

        Credentials are passed by name only; their values travel through the
        docker CLI's environment so they never appear on a command line.
        """
        args = [
            "docker", "run", "-d",
            "--name", self.container_name,
            "-p", f"{self.port}:{self.container_port}",
        ]
        for key in self.env:
            args.extend(["-e", key])
        args.append(self.image)
        return args

    def _start(self) -> None:
        if not check_docker_installed():
            raise LaunchError("Docker is not installed or not available in PATH")
        if self.rebuild or not self.image_exists():
            self.build()
        self.verify_image()

        env = os.environ.copy()
        env.update(self.env)
        logger.info(f"Starting container {self.container_name} on port {self.port}")
        result = run_command(self.run_args(), env=env)
        if result.returncode != 0:
            raise LaunchError(
                f"Failed to start container {self.container_name}",
                returncode=result.returncode,
                output=combined_output(result)
            )
        logger.debug(f"Container id: {result.stdout.strip()}")

    def is_alive(self) -> bool:
        result = run_quietly([
            "docker", "ps",
            "--filter", f"name=^/{self.container_name}$",
            "--format", "{{.Names}}",
        ])
        if result is None or result.returncode != 0:
            return False
        return self.container_name in result.stdout.split()

    def _stop(self) -> None:
        logger.info(f"Stopping container {self.container_name}")
        run_quietly(["docker", "stop", self.container_name])
        run_quietly(["docker", "rm", self.container_name])

    def logs(self, tail: int = 30) -> List[str]:
        result = run_quietly(["docker", "logs", "--tail", str(tail), self.container_name])
        if result is None:
            return []
        return combined_output(result).splitlines()

    def status(self) -> Optional[str]:
        result = run_quietly([
            "docker", "ps",
            "--filter", f"name={self.container_name}",
            "--format", "table {{.Names}}\t{{.Status}}\t{{.Ports}}",
        ])
        if result is None or result.returncode != 0:
            return None
        return result.stdout.rstrip()
