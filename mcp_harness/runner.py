# Copyright (c) 2025 Scott Wilcox
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Harness runner.

Drives one smoke-test run through its fixed sequence of states:

    Init -> Launching -> WaitingReady -> SessionEstablishing -> Exchanging
         -> Reporting -> TearingDown -> Done

Fatal errors (config, launch, readiness, session) jump straight to
TearingDown and propagate to the caller. Failures while exchanging calls are
recorded in the report and the remaining calls still run.
"""

import re
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from mcp_harness.config import HarnessConfig
from mcp_harness.errors import CallVerificationError
from mcp_harness.http.driver import PendingRequest, RequestDriver
from mcp_harness.http.readiness import wait_ready
from mcp_harness.sse.stream import Session, SessionStreamReader
from mcp_harness.targets.base import Target
from mcp_harness.utils.logging import get_logger
from mcp_harness.utils.parsing import (
    RAW_PREVIEW_CHARS,
    classify_tool_call,
    count_tools,
    extract_server_info,
)
from mcp_harness.utils.report import CallOutcome, HarnessReport, StepStatus
from mcp_harness.utils.reporter import ConsoleReporter

logger = get_logger("runner")

CREDENTIAL_HINTS = [
    "Check AZURE_TENANT_ID, AZURE_CLIENT_ID, AZURE_CLIENT_SECRET are correct",
    "Verify service principal has Reader role on subscription",
    "Try: az login --service-principal -u $AZURE_CLIENT_ID -p $AZURE_CLIENT_SECRET --tenant $AZURE_TENANT_ID",
]


class RunState(Enum):
    INIT = "init"
    LAUNCHING = "launching"
    WAITING_READY = "waiting_ready"
    SESSION_ESTABLISHING = "session_establishing"
    EXCHANGING = "exchanging"
    REPORTING = "reporting"
    TEARING_DOWN = "tearing_down"
    DONE = "done"


class HarnessRunner:
    """Runs the launch, readiness, session and exchange sequence against one target."""

    def __init__(self,
                 target: Target,
                 config: HarnessConfig,
                 reporter: Optional[ConsoleReporter] = None,
                 reader_factory: Optional[Callable[[], SessionStreamReader]] = None,
                 driver_factory: Optional[Callable[[Session, SessionStreamReader], RequestDriver]] = None):
        """
        Initialize the runner.

        Args:
            target: The system under test
            config: The harness configuration
            reporter: Console reporter for progress output
            reader_factory: Builds the stream reader (defaults to the configured SSE URL)
            driver_factory: Builds the request driver for an established session
        """
        self.target = target
        self.config = config
        self.reporter = reporter or ConsoleReporter()
        self.reader_factory = reader_factory or self._default_reader
        self.driver_factory = driver_factory or self._default_driver
        self.reader: Optional[SessionStreamReader] = None
        self.driver: Optional[RequestDriver] = None
        self.state = RunState.INIT
        self.history: List[RunState] = [RunState.INIT]
        self.report = HarnessReport(
            target_kind=target.kind,
            target_identity=target.identity,
            server_url=config.base_url
        )

    def _default_reader(self) -> SessionStreamReader:
        return SessionStreamReader(self.config.sse_url, message_path=self.config.message_path)

    def _default_driver(self, session: Session, reader: SessionStreamReader) -> RequestDriver:
        return RequestDriver(self.config.base_url, session, reader, timeout=self.config.request_timeout)

    def _transition(self, state: RunState) -> None:
        logger.debug(f"{self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def run(self) -> HarnessReport:
        """
        Execute the whole run. Teardown always happens, exactly once.

        Returns:
            The report for the run

        Raises:
            HarnessError: On any fatal failure, after teardown
        """
        try:
            self.config.credentials.require()
            self._launch()
            self._wait_ready()
            session = self._establish_session()
            self._exchange(session)
            self._report()
            if self.config.interactive:
                self._hold()
        finally:
            self._teardown()
        return self.report

    def _launch(self) -> None:
        self._transition(RunState.LAUNCHING)
        self.reporter.step(f"Starting {self.target.describe()}...")
        self.target.start()
        self.reporter.success(f"Started {self.target.describe()}")

    def _wait_ready(self) -> None:
        self._transition(RunState.WAITING_READY)
        self.reporter.info("Waiting for server to start...")
        wait_ready(
            self.target,
            self.config.sse_url,
            attempts=self.config.ready_attempts,
            interval=self.config.ready_interval,
            probe_timeout=self.config.probe_timeout,
            log_tail=self.config.log_tail,
            on_attempt=lambda attempt: self.reporter.progress()
        )
        self.reporter.success("Server started and responding")

        status = self.target.status()
        if status:
            self.reporter.lines("Container Status", status.splitlines())

    def _establish_session(self) -> Session:
        self._transition(RunState.SESSION_ESTABLISHING)
        self.reporter.step("Connecting to SSE endpoint...")
        self.reader = self.reader_factory()
        session = self.reader.open(self.config.session_settle)
        self.report.session_id = session.token
        self.reporter.success(f"Session ID: {session.token}")
        return session

    def _exchange(self, session: Session) -> None:
        self._transition(RunState.EXCHANGING)
        self.driver = self.driver_factory(session, self.reader)
        self._initialize()
        self._notify_initialized()
        self._list_tools()
        self._call_tool()

    def _report(self) -> None:
        self._transition(RunState.REPORTING)
        if self.target.show_logs_in_summary:
            self.report.target_logs = self.target.logs(10)
        self.reporter.summary(self.report)

    def _hold(self) -> None:
        self.reporter.info(f"\n{self.target.hold_message}")
        try:
            self.target.hold()
        except (KeyboardInterrupt, EOFError):
            logger.debug("Operator requested teardown")

    def _teardown(self) -> None:
        self._transition(RunState.TEARING_DOWN)
        self.reporter.info("\nCleaning up...")
        try:
            if self.driver is not None:
                self.driver.close()
        finally:
            try:
                if self.reader is not None:
                    self.reader.close()
            finally:
                self.target.stop()
                self.reporter.success("Done.")
                self._transition(RunState.DONE)

    def _record(self, name: str, status: StepStatus, message: str, started: float,
                **details: Any) -> CallOutcome:
        return self.report.add(CallOutcome(
            name=name,
            status=status,
            message=message,
            details=details,
            elapsed_time=time.time() - started
        ))

    def _await(self, pending: PendingRequest, wait: float) -> Tuple[Dict[str, Any], bool]:
        rechecked = []

        def on_recheck(request: PendingRequest) -> None:
            rechecked.append(request)
            self.reporter.warning("Response not captured yet, waiting...")

        response = self.driver.await_response(pending, wait, self.config.recheck_wait, on_recheck)
        return response, bool(rechecked)

    def _initialize(self) -> None:
        self.reporter.step("Test 1: MCP Initialize")
        started = time.time()
        pending = self.driver.call("initialize", {
            "protocolVersion": self.config.protocol_version,
            "capabilities": {},
            "clientInfo": {
                "name": self.config.client_name,
                "version": self.config.client_version,
            },
        })
        try:
            response, _ = self._await(pending, self.config.initialize_wait)
        except CallVerificationError as e:
            self.reporter.failure("Initialize failed")
            self._record("initialize", StepStatus.FAIL, e.message, started)
            return

        info = extract_server_info(response)
        if info is None:
            self.reporter.failure("Initialize failed")
            self._record("initialize", StepStatus.FAIL, "Response has no serverInfo", started)
            return

        name, version = info
        self.report.server_name = name
        self.report.server_version = version
        self.reporter.success("Initialize successful")
        self.reporter.detail(f"Server: {name} {version}".rstrip())
        self._record("initialize", StepStatus.PASS, f"{name} {version}".strip(), started)

    def _notify_initialized(self) -> None:
        self.reporter.step("Test 2: Send initialized notification")
        started = time.time()
        self.driver.notify("notifications/initialized")
        self.reporter.success("Initialized notification sent")
        self._record("notifications/initialized", StepStatus.PASS, "Notification sent", started)

    def _list_tools(self) -> None:
        self.reporter.step("Test 3: List available tools")
        started = time.time()
        pending = self.driver.call("tools/list")
        try:
            response, _ = self._await(pending, self.config.list_wait)
        except CallVerificationError as e:
            self.reporter.failure("tools/list response not received")
            self._record("tools/list", StepStatus.FAIL, e.message, started)
            return

        count = count_tools(response)
        if count is None:
            message = response.get("error", {}).get("message", "Response has no tools list")
            self.reporter.failure(f"tools/list failed: {message}")
            self._record("tools/list", StepStatus.FAIL, message, started)
            return

        self.report.tool_count = count
        self.reporter.success(f"Tools available: {count}")
        self._record("tools/list", StepStatus.PASS, f"{count} tools", started, tool_count=count)

    def _call_tool(self) -> None:
        tool = self.config.tool_name
        credentials = self.config.credentials
        if not credentials.subscription_id:
            self.reporter.warning("Test 4: Skipped (AZURE_SUBSCRIPTION_ID not set)")
            self.report.add(CallOutcome(
                name="tools/call",
                status=StepStatus.SKIP,
                message="AZURE_SUBSCRIPTION_ID not set"
            ))
            return

        self.reporter.step(f"Test 4: Call {tool} tool")
        self.reporter.detail(f"Subscription: {credentials.masked_subscription()}")
        started = time.time()
        pending = self.driver.call("tools/call", {
            "name": tool,
            "arguments": {"subscription": credentials.subscription_id},
        })
        try:
            response, delayed = self._await(pending, self.config.call_wait)
        except CallVerificationError as e:
            self.reporter.failure(f"{tool} response not received")
            raw = self._find_raw_response(pending.id)
            if raw is None:
                self.reporter.detail(f"Check SSE output ({len(self.reader.buffer)} events captured)")
                self._record("tools/call", StepStatus.FAIL, e.message, started)
            else:
                # Something carrying our id arrived but was not a valid JSON-RPC response
                preview = raw[:RAW_PREVIEW_CHARS]
                self.reporter.detail(f"Raw response (first {RAW_PREVIEW_CHARS} chars): {preview}")
                self._record("tools/call", StepStatus.WARN, "Malformed response on stream", started, raw=preview)
            return

        result = classify_tool_call(response)
        if not result.recognized:
            self.reporter.warning(f"{tool} response not recognized")
            self.reporter.detail(f"Raw response (first {RAW_PREVIEW_CHARS} chars): {result.raw}")
            self._record("tools/call", StepStatus.WARN, "Unrecognized response", started, raw=result.raw)
        elif result.is_error:
            self.reporter.failure(f"{tool} returned an error")
            self.reporter.detail(f"Error: {result.error_message}")
            self.reporter.info("\nDebugging info:")
            for hint in CREDENTIAL_HINTS:
                self.reporter.detail(f"- {hint}")
            self._record("tools/call", StepStatus.FAIL, result.error_message or "Tool returned an error",
                         started, error=result.error_message)
        else:
            self.reporter.success(f"{tool} successful" + (" (delayed)" if delayed else ""))
            self.reporter.records(result.records)
            self._record("tools/call", StepStatus.PASS, f"{len(result.records)} record(s)",
                         started, records=result.records)

    def _find_raw_response(self, request_id: int) -> Optional[str]:
        """Newest raw stream event that mentions the request id, if any."""
        pattern = re.compile(rf'"id"\s*:\s*"?{request_id}(?!\d)')
        return self.reader.buffer.find_latest(lambda raw: bool(pattern.search(raw)))
