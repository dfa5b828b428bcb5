#!/usr/bin/env python3
"""
Drive one service group through its compose lifecycle.

Every invocation carries the group's compose file, its ordered env files
(common, role, optional local override) and its project name, so actions
on one group never touch another.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass

from .console import success
from .errors import ToolingError
from .resolver import ServiceGroup
from .runtime import ContainerRuntime, describe_failure

logger = logging.getLogger(__name__)


class DeploymentState(str, enum.Enum):
    ABSENT = "absent"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass(frozen=True)
class GroupResult:
    group: str
    action: str
    ok: bool
    returncode: int = 0
    detail: str = ""


class ServiceGroupRunner:
    """Compose lifecycle for a single ServiceGroup."""

    def __init__(self, runtime: ContainerRuntime, group: ServiceGroup, build: bool = True) -> None:
        self.runtime = runtime
        self.group = group
        self.build = build

    def base_args(self) -> list[str]:
        args = ["-f", str(self.group.compose_file)]
        for env_file in self.group.env_files:
            args += ["--env-file", str(env_file)]
        args += ["-p", self.group.project_name]
        return args

    def _compose(self, *args: str, capture_output: bool = True, mutates: bool = False):
        return self.runtime.compose(*self.base_args(), *args, capture_output=capture_output, mutates=mutates)

    def _result(self, action: str, result) -> GroupResult:
        ok = result.returncode == 0
        return GroupResult(
            group=self.group.name,
            action=action,
            ok=ok,
            returncode=result.returncode,
            detail="" if ok else describe_failure(result),
        )

    def deploy(self) -> GroupResult:
        """Tear down leftovers, then start the group detached."""
        logger.info(f"Deploying {self.group.name} services (project {self.group.project_name})...")

        down = self._compose("down", "--remove-orphans", mutates=True)
        if down.returncode != 0:
            logger.warning(f"Pre-deploy teardown of {self.group.name} failed: {describe_failure(down, limit=5)}")

        up_args = ["up", "-d"]
        if self.build:
            up_args.append("--build")
        result = self._result("deploy", self._compose(*up_args, capture_output=False, mutates=True))
        if not result.ok:
            logger.error(f"Failed to start {self.group.name} services (exit code {result.returncode})")
            return result

        success(logger, f"{self.group.name.capitalize()} services started")
        self._compose("ps", capture_output=False)
        return result

    def stop(self) -> GroupResult:
        """Remove the group's containers; volumes and the external network stay."""
        logger.info(f"Stopping {self.group.name} services...")
        result = self._result("stop", self._compose("down", "--remove-orphans", mutates=True))
        if result.ok:
            success(logger, f"{self.group.name.capitalize()} services stopped")
        else:
            logger.warning(f"Failed to stop {self.group.name} services: {result.detail}")
        return result

    def clean(self) -> GroupResult:
        """Stop, then remove containers together with their volumes."""
        self.stop()
        logger.info(f"Removing {self.group.name} containers and volumes...")
        result = self._result("clean", self._compose("down", "-v", "--remove-orphans", mutates=True))
        if result.ok:
            success(logger, f"{self.group.name.capitalize()} containers and volumes removed")
        else:
            logger.warning(f"Failed to clean {self.group.name} services: {result.detail}")
        return result

    def validate(self) -> GroupResult:
        """Check that compose accepts the file and env set; never starts anything."""
        logger.info(f"Validating {self.group.compose_file.name}...")
        result = self._result("validate", self._compose("config", "--quiet"))
        if result.ok:
            success(logger, f"{self.group.name.capitalize()} compose configuration is valid")
        else:
            logger.error(f"{self.group.name.capitalize()} compose configuration is invalid:\n{result.detail}")
        return result

    def logs(self, tail: int = 50) -> GroupResult:
        """Print the last lines of the group's logs; failures are reported, not raised."""
        print(f"\n--- {self.group.name} logs (last {tail} lines) ---")
        try:
            result = self._compose("logs", f"--tail={tail}", capture_output=False)
        except ToolingError as e:
            logger.warning(f"Could not read {self.group.name} logs: {e}")
            return GroupResult(self.group.name, "logs", ok=False, returncode=-1, detail=str(e))
        return self._result("logs", result)

    def state(self) -> DeploymentState:
        """Derive the group's state from compose ps; nothing is cached."""
        result = self._compose("ps", "--all", "--format", "json")
        if result.returncode != 0:
            raise ToolingError(
                f"Failed to query {self.group.name} state: {describe_failure(result)}",
                command=[*(self.runtime.compose_cmd or []), *self.base_args(), "ps", "--all", "--format", "json"],
            )
        containers = parse_ps_output(result.stdout or "")
        if not containers:
            return DeploymentState.ABSENT
        if any(str(c.get("State", "")).lower() == "running" for c in containers):
            return DeploymentState.RUNNING
        return DeploymentState.STOPPED


def parse_ps_output(output: str) -> list[dict]:
    """
    Parse compose ps JSON output.

    Compose v2 emits either one JSON array or one JSON object per line,
    depending on its version.
    """
    text = output.strip()
    if not text:
        return []
    if text.startswith("["):
        return [c for c in json.loads(text) if isinstance(c, dict)]
    containers = []
    for line in text.splitlines():
        line = line.strip()
        if line:
            item = json.loads(line)
            if isinstance(item, dict):
                containers.append(item)
    return containers
