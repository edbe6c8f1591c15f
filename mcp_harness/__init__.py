# Copyright (c) 2025 Scott Wilcox
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
MCP Smoke Harness

End-to-end readiness and protocol smoke tests for MCP servers reached over
HTTP/SSE, running as a local process, a Docker container or a Compose stack.
"""

__version__ = "1.0.0"
