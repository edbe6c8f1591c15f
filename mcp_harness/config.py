# Copyright (c) 2025 Scott Wilcox
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Configuration handling for the MCP smoke harness.

Settings come from three layers, later ones winning: dataclass defaults,
environment variables, and command-line options. Credentials are read from
a dotenv file and are never exported into the harness's own environment.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from dotenv import dotenv_values

from mcp_harness.errors import ConfigError

CREDENTIAL_VARS = {
    "tenant_id": "AZURE_TENANT_ID",
    "client_id": "AZURE_CLIENT_ID",
    "client_secret": "AZURE_CLIENT_SECRET",
    "subscription_id": "AZURE_SUBSCRIPTION_ID",
}

REQUIRED_CREDENTIALS = ("tenant_id", "client_id", "client_secret")

ENV_FILE_HELP = """Please create .env with Azure credentials:
  AZURE_TENANT_ID=<your-tenant-id>
  AZURE_CLIENT_ID=<your-client-id>
  AZURE_CLIENT_SECRET=<your-client-secret>
  AZURE_SUBSCRIPTION_ID=<your-subscription-id>"""


@dataclass
class Credentials:
    """Service principal credentials handed to the server under test."""

    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    subscription_id: Optional[str] = None

    @classmethod
    def from_mapping(cls, values: Mapping[str, Optional[str]]) -> "Credentials":
        """Build credentials from a mapping keyed by environment variable name."""
        return cls(**{
            attr: values.get(var) or None
            for attr, var in CREDENTIAL_VARS.items()
        })

    def missing(self) -> List[str]:
        return [
            CREDENTIAL_VARS[attr]
            for attr in REQUIRED_CREDENTIALS
            if not getattr(self, attr)
        ]

    def require(self) -> None:
        """
        Ensure the tenant, client and secret are present.

        Raises:
            ConfigError: If any required credential is empty
        """
        missing = self.missing()
        if missing:
            raise ConfigError(
                f"Missing Azure credentials in .env file: {', '.join(missing)}",
                missing=missing
            )

    def as_env(self) -> Dict[str, str]:
        """Return the set credentials as environment variables."""
        return {
            var: getattr(self, attr)
            for attr, var in CREDENTIAL_VARS.items()
            if getattr(self, attr)
        }

    def masked_subscription(self) -> str:
        if not self.subscription_id:
            return ""
        return f"{self.subscription_id[:8]}..."


@dataclass
class HarnessConfig:
    """Configuration for one harness run."""

    # Target endpoint
    host: str = "127.0.0.1"
    port: int = 8080
    sse_path: str = "/sse"
    message_path: str = "/message"

    # Credentials
    env_file: str = ".env"
    credentials: Credentials = field(default_factory=Credentials)

    # Protocol
    protocol_version: str = "2024-11-05"
    client_name: str = "mcp-smoke-harness"
    client_version: str = "1.0"
    tool_name: str = "group_list"

    # Readiness polling
    ready_attempts: int = 15
    ready_interval: float = 1.0
    probe_timeout: float = 2.0
    log_tail: int = 30

    # Session and exchange timing, in seconds
    session_settle: float = 2.0
    request_timeout: float = 10.0
    initialize_wait: float = 1.0
    list_wait: float = 1.0
    call_wait: float = 5.0
    recheck_wait: float = 3.0

    # Behaviour
    interactive: bool = True
    debug: bool = False
    log_file: Optional[str] = None

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def sse_url(self) -> str:
        return f"{self.base_url}{self.sse_path}"

    def update(self, **overrides) -> "HarnessConfig":
        """
        Apply overrides, ignoring values that are None.

        Args:
            **overrides: Field names mapped to new values

        Returns:
            The same config object, for chaining
        """
        known = {f.name for f in fields(self)}
        for name, value in overrides.items():
            if value is None:
                continue
            if name not in known:
                raise ValueError(f"Unknown configuration option: {name}")
            setattr(self, name, value)
        return self


def load_config_from_env() -> HarnessConfig:
    """
    Load configuration from environment variables.

    Returns:
        A HarnessConfig object populated from environment variables.
    """
    return HarnessConfig(
        host=os.environ.get("MCP_HOST", "127.0.0.1"),
        port=int(os.environ.get("MCP_PORT", "8080")),
        sse_path=os.environ.get("MCP_SSE_PATH", "/sse"),
        message_path=os.environ.get("MCP_MESSAGE_PATH", "/message"),
        env_file=os.environ.get("MCP_ENV_FILE", ".env"),
        protocol_version=os.environ.get("MCP_PROTOCOL_VERSION", "2024-11-05"),
        debug=os.environ.get("MCP_DEBUG", "0").lower() in ("1", "true", "yes"),
        ready_attempts=int(os.environ.get("MCP_READY_ATTEMPTS", "15")),
    )


def load_credentials(env_file: str) -> Credentials:
    """
    Read credentials from a dotenv file.

    Values already present in the process environment are used as a
    fallback for keys the file does not set, mirroring how sourcing the
    file in a shell would behave.

    Args:
        env_file: Path to the dotenv file

    Returns:
        The loaded credentials (not yet validated)

    Raises:
        ConfigError: If the file does not exist
    """
    path = Path(env_file)
    if not path.is_file():
        raise ConfigError(f".env file not found at {path}\n{ENV_FILE_HELP}")

    values = {var: os.environ.get(var) for var in CREDENTIAL_VARS.values()}
    for key, value in dotenv_values(path).items():
        if value:
            values[key] = value
    return Credentials.from_mapping(values)
