#!/usr/bin/env python3
"""Error taxonomy for grnctl.

Every error carries an exit code so the CLI boundary can map failures to a
process status without inspecting messages.
"""

from __future__ import annotations

from typing import Optional


class GrnctlError(Exception):
    """Base class for all grnctl failures."""

    exit_code = 1


class ConfigurationError(GrnctlError):
    """Missing or invalid file, directory, environment or node type."""

    exit_code = 2

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class ToolingError(GrnctlError):
    """Container runtime or compose tool unavailable, unreachable or timed out."""

    exit_code = 3

    def __init__(self, message: str, command: Optional[list[str]] = None) -> None:
        super().__init__(message)
        self.command = command


class DeploymentError(GrnctlError):
    """A service group's compose invocation returned non-zero."""

    exit_code = 1

    def __init__(self, message: str, group: Optional[str] = None) -> None:
        super().__init__(message)
        self.group = group


class BootstrapError(GrnctlError):
    """A step of key generation, extraction or display failed."""

    exit_code = 4

    def __init__(self, message: str, step: Optional[str] = None) -> None:
        super().__init__(message)
        self.step = step
