# Copyright (c) 2025 Scott Wilcox
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Targets for the MCP smoke harness.
"""

from typing import Any, Dict, Type

from mcp_harness.config import HarnessConfig
from mcp_harness.targets.base import Target, TargetState
from mcp_harness.targets.compose import ComposeStackTarget
from mcp_harness.targets.docker import ContainerTarget
from mcp_harness.targets.local import LocalProcessTarget

TARGET_TYPES: Dict[str, Type[Target]] = {
    LocalProcessTarget.kind: LocalProcessTarget,
    ContainerTarget.kind: ContainerTarget,
    ComposeStackTarget.kind: ComposeStackTarget,
}


def create_target(kind: str, config: HarnessConfig, **options: Any) -> Target:
    """
    Create a target of the given kind for the configured host and port.

    The configured credentials are handed to the target as its environment.

    Args:
        kind: One of "local", "docker" or "compose"
        config: The harness configuration
        **options: Target-specific constructor arguments

    Returns:
        The (not yet started) target
    """
    try:
        target_type = TARGET_TYPES[kind]
    except KeyError:
        raise ValueError(f"Unknown target kind: {kind}")
    return target_type(
        host=config.host,
        port=config.port,
        env=config.credentials.as_env(),
        **options
    )


__all__ = [
    'Target',
    'TargetState',
    'LocalProcessTarget',
    'ContainerTarget',
    'ComposeStackTarget',
    'create_target',
]
