#!/usr/bin/env python3
"""
Blocking subprocess boundary to the Docker CLI and the compose tool.

Every external call goes through ContainerRuntime.run(); the exit code is the
only result the rest of grnctl interprets.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from typing import Optional, Sequence

from .errors import ToolingError

logger = logging.getLogger(__name__)


def format_command(cmd: Sequence[str]) -> str:
    return shlex.join(cmd)


class ContainerRuntime:
    """Build and execute docker / compose invocations."""

    def __init__(
        self,
        docker_bin: str = "docker",
        compose_cmd: Optional[list[str]] = None,
        dry_run: bool = False,
        timeout: Optional[float] = None,
    ) -> None:
        self.docker_bin = docker_bin
        self.compose_cmd = compose_cmd
        self.dry_run = dry_run
        self.timeout = timeout

    def run(
        self,
        cmd: list[str],
        *,
        capture_output: bool = True,
        mutates: bool = False,
    ) -> subprocess.CompletedProcess:
        """Run a command and return the completed process (never raises on exit code)."""
        if self.dry_run and mutates:
            logger.info(f"[dry-run] {format_command(cmd)}")
            return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

        logger.debug(f"Running: {format_command(cmd)}")
        try:
            return subprocess.run(
                cmd,
                capture_output=capture_output,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise ToolingError(f"Command not found: {cmd[0]}", command=cmd) from e
        except subprocess.TimeoutExpired as e:
            raise ToolingError(
                f"Command timed out after {self.timeout}s: {format_command(cmd)}", command=cmd
            ) from e

    def docker(self, *args: str, capture_output: bool = True, mutates: bool = False) -> subprocess.CompletedProcess:
        return self.run([self.docker_bin, *args], capture_output=capture_output, mutates=mutates)

    def compose(self, *args: str, capture_output: bool = True, mutates: bool = False) -> subprocess.CompletedProcess:
        if not self.compose_cmd:
            raise ToolingError("Docker Compose command not detected; run check_runtime_dependencies() first")
        return self.run([*self.compose_cmd, *args], capture_output=capture_output, mutates=mutates)


def describe_failure(result: subprocess.CompletedProcess, limit: int = 20) -> str:
    """First lines of a failed command's output, for operator reports."""
    output = (result.stderr or "") + (result.stdout or "")
    lines = [line for line in output.strip().splitlines() if line.strip()]
    if not lines:
        return f"exit code {result.returncode}"
    return "\n".join(lines[:limit])


def detect_compose_command(runtime: ContainerRuntime) -> list[str]:
    """
    Prefer Docker Compose v2 (docker compose), fall back to v1 (docker-compose).
    """
    try:
        result = runtime.run([runtime.docker_bin, "compose", "version"])
        if result.returncode == 0:
            logger.info("Using Docker Compose V2 (docker compose)")
            return [runtime.docker_bin, "compose"]
    except ToolingError:
        pass

    try:
        result = runtime.run(["docker-compose", "version"])
        if result.returncode == 0:
            logger.info("Using Docker Compose V1 (docker-compose)")
            return ["docker-compose"]
    except ToolingError:
        pass

    raise ToolingError(
        "Docker Compose is not installed. Install: https://docs.docker.com/compose/install/"
    )


def check_runtime_dependencies(runtime: ContainerRuntime, skip: bool = False, need_compose: bool = True) -> None:
    """
    Validate that the container runtime is installed and its daemon reachable.
    """
    if skip:
        logger.debug("Runtime dependency check skipped")
        if need_compose and not runtime.compose_cmd:
            runtime.compose_cmd = [runtime.docker_bin, "compose"]
        return

    logger.info("Validating runtime dependencies...")

    result = runtime.run([runtime.docker_bin, "--version"])
    if result.returncode != 0:
        raise ToolingError(
            "Docker Engine is required but not usable. Install: https://docs.docker.com/engine/install/",
            command=[runtime.docker_bin, "--version"],
        )

    result = runtime.run([runtime.docker_bin, "info"])
    if result.returncode != 0:
        raise ToolingError(
            "Docker daemon is not running or not accessible. "
            "Make sure Docker is running (Linux: sudo systemctl start docker)",
            command=[runtime.docker_bin, "info"],
        )

    if need_compose and not runtime.compose_cmd:
        runtime.compose_cmd = detect_compose_command(runtime)
