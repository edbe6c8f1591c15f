# Copyright (c) 2025 Scott Wilcox
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Response parsing for the MCP smoke harness.

Tool results carry their payload as text inside the JSON-RPC response, and
that text is frequently JSON with its quotes escaped once more. These
helpers dig the interesting fields out of it.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

ESCAPED_QUOTES = ("\\u0022", '\\"')

RECORD_PATTERN = re.compile(
    r'"name"\s*:\s*"([^"]*)"\s*,\s*"id"\s*:\s*"[^"]*"\s*,\s*"location"\s*:\s*"([^"]*)"'
)
MESSAGE_PATTERN = re.compile(r'"message"\s*:\s*"([^"]*)"')

RAW_PREVIEW_CHARS = 300


def unescape_quotes(text: str) -> str:
    """Turn escaped quote sequences (\\u0022 and \\") back into plain quotes."""
    for escaped in ESCAPED_QUOTES:
        text = text.replace(escaped, '"')
    return text


def extract_server_info(response: Dict[str, Any]) -> Optional[Tuple[str, str]]:
    """
    Pull the server name and version out of an initialize response.

    Returns:
        (name, version), or None if the response has no serverInfo
    """
    result = response.get("result")
    if not isinstance(result, dict) or not isinstance(result.get("serverInfo"), dict):
        return None
    info = result["serverInfo"]
    return str(info.get("name", "")), str(info.get("version", ""))


def count_tools(response: Dict[str, Any]) -> Optional[int]:
    result = response.get("result")
    if not isinstance(result, dict) or not isinstance(result.get("tools"), list):
        return None
    return len(result["tools"])


def content_text(result: Dict[str, Any]) -> str:
    """Join the text parts of a tool result's content."""
    parts = []
    for item in result.get("content") or []:
        if isinstance(item, dict) and isinstance(item.get("text"), str):
            parts.append(item["text"])
    return "\n".join(parts)


def _walk(value: Any) -> Iterator[Dict[str, Any]]:
    if isinstance(value, dict):
        yield value
        for child in value.values():
            yield from _walk(child)
    elif isinstance(value, list):
        for child in value:
            yield from _walk(child)


def _load_json(text: str) -> Any:
    for candidate in (text, unescape_quotes(text)):
        try:
            return json.loads(candidate)
        except ValueError:
            continue
    return None


def extract_records(text: str) -> List[Dict[str, str]]:
    """
    Find named resources (name and location) in a tool payload.

    Structured JSON is walked first; when the payload does not decode, the
    unescaped text is scanned for name/id/location runs instead.

    Args:
        text: The tool result text

    Returns:
        A list of {"name": ..., "location": ...} dicts in payload order
    """
    data = _load_json(text)
    if data is not None:
        records = [
            {"name": str(item["name"]), "location": str(item["location"])}
            for item in _walk(data)
            if "name" in item and "location" in item
        ]
        if records:
            return records

    return [
        {"name": name, "location": location}
        for name, location in RECORD_PATTERN.findall(unescape_quotes(text))
    ]


def extract_message(text: str) -> Optional[str]:
    """Return the first `message` field in a payload, verbatim."""
    data = _load_json(text)
    if data is not None:
        for item in _walk(data):
            if isinstance(item.get("message"), str):
                return item["message"]
    match = MESSAGE_PATTERN.search(unescape_quotes(text))
    return match.group(1) if match else None


@dataclass
class ToolCallResult:
    """What a tools/call response says, reduced to what the report shows."""

    is_error: Optional[bool]
    records: List[Dict[str, str]] = field(default_factory=list)
    error_message: Optional[str] = None
    raw: str = ""

    @property
    def recognized(self) -> bool:
        return self.is_error is not None


def classify_tool_call(response: Dict[str, Any]) -> ToolCallResult:
    """
    Classify a tools/call response as success, error, or unrecognized.

    A result with `isError: false` is a success (a result without the flag
    but with content is too, as the flag defaults to false). `isError: true`
    and JSON-RPC error objects are errors.

    Args:
        response: The decoded JSON-RPC response

    Returns:
        The classification with extracted records or error message
    """
    raw = json.dumps(response)[:RAW_PREVIEW_CHARS]

    if isinstance(response.get("error"), dict):
        return ToolCallResult(
            is_error=True,
            error_message=str(response["error"].get("message", "")),
            raw=raw
        )

    result = response.get("result")
    if not isinstance(result, dict):
        return ToolCallResult(is_error=None, raw=raw)

    flag = result.get("isError")
    if flag is None and "content" in result:
        flag = False
    if not isinstance(flag, bool):
        return ToolCallResult(is_error=None, raw=raw)

    text = content_text(result)
    if flag:
        message = extract_message(text) or text.strip() or None
        return ToolCallResult(is_error=True, error_message=message, raw=raw)
    return ToolCallResult(is_error=False, records=extract_records(text), raw=raw)
