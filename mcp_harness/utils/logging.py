# Copyright (c) 2025 Scott Wilcox
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Logging utilities for the MCP smoke harness.

Diagnostic logging goes to stderr (and optionally a file). Operator-facing
progress output is handled separately by the console reporter.

Credentials loaded from the env file are registered with `mask_secrets` and
replaced in every record before any handler formats it, so a debug log of a
failing run can be shared as is.
"""

import json
import logging
import sys
from typing import Any, Dict, Optional, Set

DEFAULT_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

MASK = "****"

# Tool results can carry whole resource listings
MAX_PAYLOAD_CHARS = 2000


class SecretMaskingFilter(logging.Filter):
    """Replaces registered secret values in log records with a fixed mask."""

    def __init__(self):
        super().__init__()
        self._secrets: Set[str] = set()

    def add(self, *values: Optional[str]) -> None:
        self._secrets.update(value for value in values if value)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        message = record.getMessage()
        masked = message
        for secret in self._secrets:
            masked = masked.replace(secret, MASK)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


_secret_filter = SecretMaskingFilter()


def mask_secrets(*values: Optional[str]) -> None:
    """Register values that must never appear in log output. Empty values are ignored."""
    _secret_filter.add(*values)


def configure_logging(debug: bool = False, log_file: Optional[str] = None) -> None:
    """
    Configure the logging system.

    Without debug only warnings reach the console so they do not interleave
    with the progress output; a log file always receives INFO and above.

    Args:
        debug: Whether to enable debug logging
        log_file: Optional path to a log file
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(DEFAULT_FORMAT, DEFAULT_DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if debug else logging.WARNING)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if debug else logging.INFO)
        root_logger.addHandler(file_handler)

    for handler in root_logger.handlers:
        handler.setFormatter(formatter)
        handler.addFilter(_secret_filter)

    # urllib3 is chatty about every pooled connection
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    get_logger("config").debug(f"Logging configured: debug={debug}, log_file={log_file}")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"mcp_harness.{name}")


def _payload(data: Dict[str, Any]) -> str:
    text = json.dumps(data, default=str)
    if len(text) > MAX_PAYLOAD_CHARS:
        return f"{text[:MAX_PAYLOAD_CHARS]}... ({len(text)} chars)"
    return text


def log_request(logger: logging.Logger, data: Dict[str, Any]) -> None:
    """
    Log an outgoing JSON-RPC request or notification.

    At DEBUG the full envelope is logged (truncated past MAX_PAYLOAD_CHARS),
    otherwise one line naming the method and id.
    """
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"POST {_payload(data)}")
    elif "id" in data:
        logger.info(f"Sending {data.get('method')} (id: {data['id']})")
    else:
        logger.info(f"Sending notification {data.get('method')}")


def log_response(logger: logging.Logger, response: Dict[str, Any]) -> None:
    """
    Log a JSON-RPC response received on the stream.

    Args:
        logger: The logger to use
        response: The decoded response
    """
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"SSE response {_payload(response)}")
        return

    error = response.get("error")
    if isinstance(error, dict):
        logger.warning(f"Response {response.get('id')} is an error: {error.get('message')} "
                       f"(code: {error.get('code')})")
        return

    result = response.get("result")
    if isinstance(result, dict) and result.get("isError") is True:
        logger.warning(f"Response {response.get('id')} reports a tool error")
    else:
        logger.info(f"Received response (id: {response.get('id')})")
