"""
Unit tests for the console reporter.
"""

import io

import pytest
from rich.console import Console

from mcp_harness.utils.report import CallOutcome, HarnessReport, StepStatus
from mcp_harness.utils.reporter import ConsoleReporter


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def reporter(output):
    return ConsoleReporter(Console(file=output, width=120, color_system=None))


@pytest.fixture
def report():
    return HarnessReport(
        target_kind="docker",
        target_identity="azure-mcp-test",
        server_url="http://127.0.0.1:8080",
        session_id="abc123",
        server_name="Azure MCP Server",
        server_version="0.5.0",
        tool_count=3,
    )


class TestConsoleReporter:
    """Tests for progress and summary output."""

    def test_status_lines(self, reporter, output):
        reporter.success("Initialize successful")
        reporter.failure("Initialize failed")
        reporter.warning("Response not captured yet, waiting...")

        printed = output.getvalue()
        assert "✓ Initialize successful" in printed
        assert "✗ Initialize failed" in printed
        assert "⚠ Response not captured yet, waiting..." in printed

    def test_markup_in_messages_is_escaped(self, reporter, output):
        reporter.detail("Error: [red]not markup[/red]")
        assert "[red]not markup[/red]" in output.getvalue()

    def test_records(self, reporter, output):
        reporter.records([
            {"name": "rg-1", "location": "eastus"},
            {"name": "rg-2", "location": "westeurope"},
        ])

        printed = output.getvalue()
        assert "• rg-1 (eastus)" in printed
        assert "• rg-2 (westeurope)" in printed
        assert "Total: 2 resource group(s)" in printed

    def test_summary_all_passed(self, reporter, output, report):
        report.add(CallOutcome("initialize", StepStatus.PASS, "Azure MCP Server 0.5.0", elapsed_time=0.25))
        report.add(CallOutcome("tools/list", StepStatus.PASS, "3 tools"))
        reporter.summary(report)

        printed = output.getvalue()
        assert "All tests completed!" in printed
        assert "MCP Smoke Test Results" in printed
        assert "0.25s" in printed
        assert "Server URL: http://127.0.0.1:8080" in printed
        assert "Server: Azure MCP Server 0.5.0" in printed
        assert "Session ID: abc123" in printed

    def test_summary_counts_issues(self, reporter, output, report):
        report.add(CallOutcome("initialize", StepStatus.PASS, "ok"))
        report.add(CallOutcome("tools/list", StepStatus.FAIL, "No response to tools/list (id 2) after 4s"))
        report.add(CallOutcome("tools/call", StepStatus.WARN, "Unrecognized response"))
        reporter.summary(report)

        printed = output.getvalue()
        assert "Tests completed with 2 issue(s)" in printed
        assert "1 pass, 1 fail, 0 skip, 1 warn" in printed
        assert "All tests completed!" not in printed

    def test_skipped_call_is_not_an_issue(self, reporter, output, report):
        report.add(CallOutcome("tools/call", StepStatus.SKIP, "AZURE_SUBSCRIPTION_ID not set"))
        reporter.summary(report)

        assert "All tests completed!" in output.getvalue()
        assert report.count(StepStatus.SKIP) == 1

    def test_summary_includes_logs(self, reporter, output, report):
        report.target_logs = ["info: Now listening on: http://0.0.0.0:8080"]
        reporter.summary(report)

        printed = output.getvalue()
        assert "Container logs (last 1 lines)" in printed
        assert "Now listening on" in printed
