#!/usr/bin/env python3
# Copyright (c) 2025 Scott Wilcox
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
MCP Smoke Harness command line interface

Starts an MCP HTTP/SSE server as a local process, a Docker container or a
Docker Compose stack, and runs the smoke-test sequence against it.
"""

import sys
from typing import Any, Callable, Dict, Optional

import click

from mcp_harness import __version__
from mcp_harness.config import HarnessConfig, load_config_from_env, load_credentials
from mcp_harness.errors import HarnessError, LaunchError, ReadinessError, SessionError
from mcp_harness.runner import HarnessRunner
from mcp_harness.targets import Target, create_target
from mcp_harness.utils.logging import configure_logging, mask_secrets
from mcp_harness.utils.reporter import ConsoleReporter

# Conventional exit status for a run stopped with Ctrl+C
INTERRUPTED_EXIT_CODE = 130

DIAGNOSTIC_TITLES = [
    (SessionError, "SSE output"),
    (ReadinessError, "Target logs"),
    (LaunchError, "Command output"),
]


def common_options(func: Callable) -> Callable:
    """Options shared by every target command."""
    options = [
        click.option("--env-file", help="Credentials file [env: MCP_ENV_FILE, default: .env]"),
        click.option("--host", help="Server host [env: MCP_HOST, default: 127.0.0.1]"),
        click.option("--port", type=int, help="Server port [env: MCP_PORT, default: 8080]"),
        click.option("--attempts", "ready_attempts", type=int,
                     help="Readiness probes before giving up [default: 15]"),
        click.option("--tool-name", help="Tool invoked with the subscription id [default: group_list]"),
        click.option("--protocol-version", help="Protocol version sent in initialize [default: 2024-11-05]"),
        click.option("--no-wait", is_flag=True,
                     help="Tear down right after the summary instead of waiting for the operator"),
        click.option("--debug", is_flag=True, help="Enable debug logging"),
        click.option("--log-file", help="Also write logs to this file"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_config(common: Dict[str, Any], **defaults: Any) -> HarnessConfig:
    """
    Combine environment settings, per-command defaults and CLI options.

    Command-line options take precedence over everything else.
    """
    config = load_config_from_env()
    config.update(**defaults)
    config.update(
        env_file=common.get("env_file"),
        host=common.get("host"),
        port=common.get("port"),
        ready_attempts=common.get("ready_attempts"),
        tool_name=common.get("tool_name"),
        protocol_version=common.get("protocol_version"),
        log_file=common.get("log_file"),
    )
    if common.get("debug"):
        config.debug = True
    if common.get("no_wait"):
        config.interactive = False
    return config


def execute(title: str, config: HarnessConfig, build_target: Callable[[HarnessConfig], Target],
            reporter: Optional[ConsoleReporter] = None) -> int:
    """
    Load credentials, build the target and run the harness.

    Returns:
        The process exit code: 0 once the run reached its report, non-zero on fatal errors
    """
    configure_logging(config.debug, config.log_file)
    reporter = reporter or ConsoleReporter()
    reporter.banner(title)

    try:
        config.credentials = load_credentials(config.env_file)
        mask_secrets(config.credentials.client_secret)
        target = build_target(config)
        HarnessRunner(target, config, reporter).run()
    except HarnessError as e:
        reporter.failure(f"Error: {e.message}")
        diagnostics = e.diagnostics()
        if diagnostics:
            heading = next(
                (label for error_type, label in DIAGNOSTIC_TITLES if isinstance(e, error_type)),
                "Diagnostics"
            )
            reporter.lines(heading, diagnostics)
        return e.exit_code
    except KeyboardInterrupt:
        reporter.failure("Interrupted")
        return INTERRUPTED_EXIT_CODE
    return 0


@click.group()
@click.version_option(version=__version__)
def cli():
    """MCP Smoke Harness - start an MCP HTTP/SSE server and smoke-test it."""
    pass


@cli.command()
@common_options
@click.option("--server-dir", default="servers/Azure.Mcp.Server/src/bin/Release/net9.0",
              show_default=True, help="Directory containing the server binary")
@click.option("--binary", default="azmcp.dll", show_default=True, help="Server binary name")
@click.option("--runtime", default="dotnet", show_default=True,
              help="Runtime executable used to run the binary")
@click.option("--dotnet-root", envvar="DOTNET_ROOT", help="Runtime installation directory [env: DOTNET_ROOT]")
@click.option("--build-command", default="dotnet build servers/Azure.Mcp.Server/src -c Release",
              show_default=True, help="Command that builds the binary when it is missing")
@click.option("--startup-delay", type=float, default=3.0, show_default=True,
              help="Seconds to wait before checking the server survived startup")
def local(server_dir, binary, runtime, dotnet_root, build_command, startup_delay, **common):
    """Run the server as a local process."""
    config = build_config(common, client_name="test-script")
    sys.exit(execute(
        "Azure MCP Server - HTTP/SSE Test",
        config,
        lambda cfg: create_target(
            "local", cfg,
            server_dir=server_dir,
            binary=binary,
            runtime=runtime,
            runtime_root=dotnet_root,
            build_command=build_command,
            startup_delay=startup_delay,
        )
    ))


@cli.command()
@common_options
@click.option("--image", default="azure-mcp-server-http:local", show_default=True, help="Image to build and run")
@click.option("--container-name", default="azure-mcp-test", show_default=True, help="Container name")
@click.option("--dockerfile", default="Dockerfile.http", show_default=True, help="Dockerfile to build")
@click.option("--context", default=".", show_default=True, help="Docker build context")
@click.option("--container-port", type=int, default=8080, show_default=True,
              help="Port the server listens on inside the container")
@click.option("--rebuild/--no-rebuild", default=True, show_default=True,
              help="Remove and rebuild the image on every run")
@click.option("--prune", is_flag=True, help="Prune dangling images and build cache during cleanup")
@click.option("--skip-verify", is_flag=True, help="Skip the image --help verification run")
def docker(image, container_name, dockerfile, context, container_port, rebuild, prune, skip_verify, **common):
    """Build and run the server in a standalone Docker container."""
    config = build_config(common, client_name="docker-test")
    sys.exit(execute(
        "Azure MCP Server - Docker HTTP/SSE Test",
        config,
        lambda cfg: create_target(
            "docker", cfg,
            image=image,
            container_name=container_name,
            dockerfile=dockerfile,
            context=context,
            container_port=container_port,
            rebuild=rebuild,
            prune=prune,
            verify_command=[] if skip_verify else None,
        )
    ))


@cli.command()
@common_options
@click.option("--project", default="azure-mcp", show_default=True, help="Compose project name")
@click.option("--compose-file", help="Compose file to use instead of compose's default lookup")
@click.option("--project-dir", help="Directory to run docker compose in")
@click.option("--startup-delay", type=float, default=3.0, show_default=True,
              help="Seconds to wait after bring-up before polling")
def compose(project, compose_file, project_dir, startup_delay, **common):
    """Build and run the server with Docker Compose."""
    config = build_config(common, client_name="compose-test", call_wait=8.0, recheck_wait=5.0)
    sys.exit(execute(
        "Azure MCP Server - Docker Compose Test",
        config,
        lambda cfg: create_target(
            "compose", cfg,
            project=project,
            compose_file=compose_file,
            project_dir=project_dir,
            startup_delay=startup_delay,
        )
    ))


def main():
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
