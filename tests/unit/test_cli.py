#!/usr/bin/env python3
# Copyright (c) 2025 Scott Wilcox
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Unit tests for the command line interface.
"""

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from mcp_harness import __version__
from mcp_harness.cli import cli
from mcp_harness.errors import LaunchError, ReadinessTimeoutError
from mcp_harness.targets import ComposeStackTarget, ContainerTarget, LocalProcessTarget


@pytest.fixture
def env_file(tmp_path):
    path = tmp_path / ".env"
    path.write_text(
        "AZURE_TENANT_ID=tenant\n"
        "AZURE_CLIENT_ID=client\n"
        "AZURE_CLIENT_SECRET=s3cret\n"
        "AZURE_SUBSCRIPTION_ID=12345678-aaaa\n"
    )
    return str(path)


@pytest.fixture
def runner():
    with patch("mcp_harness.cli.configure_logging"):
        yield CliRunner()


@pytest.fixture
def harness():
    with patch("mcp_harness.cli.HarnessRunner") as mock_runner:
        yield mock_runner


class TestCli:
    """Tests for the mcp-smoke commands."""

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_missing_env_file(self, runner, harness, tmp_path):
        result = runner.invoke(cli, ["docker", "--env-file", str(tmp_path / "missing.env"), "--no-wait"])

        assert result.exit_code == 1
        assert ".env file not found" in result.output
        assert "AZURE_CLIENT_SECRET=<your-client-secret>" in result.output
        harness.assert_not_called()

    def test_docker_success(self, runner, harness, env_file):
        result = runner.invoke(cli, [
            "docker",
            "--env-file", env_file,
            "--image", "mcp:test",
            "--container-name", "mcp-smoke",
            "--port", "18080",
            "--no-rebuild",
            "--skip-verify",
            "--no-wait",
        ])

        assert result.exit_code == 0, result.output
        assert "Azure MCP Server - Docker HTTP/SSE Test" in result.output

        target, config, _ = harness.call_args.args
        assert isinstance(target, ContainerTarget)
        assert target.image == "mcp:test"
        assert target.container_name == "mcp-smoke"
        assert target.port == 18080
        assert target.rebuild is False
        assert target.verify_command == []
        assert target.env["AZURE_CLIENT_SECRET"] == "s3cret"
        assert config.client_name == "docker-test"
        assert config.interactive is False
        assert config.credentials.subscription_id == "12345678-aaaa"
        harness.return_value.run.assert_called_once()

    def test_local_defaults(self, runner, harness, env_file):
        result = runner.invoke(cli, ["local", "--env-file", env_file, "--attempts", "5"])

        assert result.exit_code == 0, result.output
        target, config, _ = harness.call_args.args
        assert isinstance(target, LocalProcessTarget)
        assert target.binary == "azmcp.dll"
        assert config.ready_attempts == 5
        assert config.client_name == "test-script"
        assert config.interactive is True

    def test_compose_uses_longer_call_waits(self, runner, harness, env_file):
        result = runner.invoke(cli, ["compose", "--env-file", env_file, "--project", "smoke", "--no-wait"])

        assert result.exit_code == 0, result.output
        target, config, _ = harness.call_args.args
        assert isinstance(target, ComposeStackTarget)
        assert target.project == "smoke"
        assert config.call_wait == 8.0
        assert config.recheck_wait == 5.0

    def test_fatal_error_exits_nonzero_with_diagnostics(self, runner, harness, env_file):
        harness.return_value.run.side_effect = ReadinessTimeoutError(
            "Timeout waiting for server at http://127.0.0.1:8080/sse after 15 attempts",
            logs=["Unhandled exception. System.IO.IOException: address already in use"]
        )

        result = runner.invoke(cli, ["docker", "--env-file", env_file, "--no-wait"])

        assert result.exit_code == 1
        assert "Timeout waiting for server" in result.output
        assert "Target logs:" in result.output
        assert "address already in use" in result.output

    def test_launch_error_shows_command_output(self, runner, harness, env_file):
        harness.return_value.run.side_effect = LaunchError(
            "Docker build failed with exit code 1", returncode=1, output="step 3/7 failed\n"
        )

        result = runner.invoke(cli, ["docker", "--env-file", env_file, "--no-wait"])

        assert result.exit_code == 1
        assert "Command output:" in result.output
        assert "step 3/7 failed" in result.output

    def test_ctrl_c_exits_130_without_traceback(self, runner, harness, env_file):
        harness.return_value.run.side_effect = KeyboardInterrupt

        result = runner.invoke(cli, ["docker", "--env-file", env_file, "--no-wait"])

        assert result.exit_code == 130
        assert "Interrupted" in result.output
        assert "Traceback" not in result.output

    def test_client_secret_registered_for_masking(self, runner, harness, env_file):
        with patch("mcp_harness.cli.mask_secrets") as mock_mask:
            result = runner.invoke(cli, ["docker", "--env-file", env_file, "--no-wait"])

        assert result.exit_code == 0, result.output
        mock_mask.assert_called_once_with("s3cret")
