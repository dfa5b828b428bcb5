#!/usr/bin/env python3
"""
Lifecycle controller.

Maps one requested action onto the resolver, the network provisioner, the
key bootstrapper and one ServiceGroupRunner per group. Groups are handled
strictly in declared order (validator before sentry) and independently:
a failing group never prevents its siblings from being attempted.

Aggregate status:
- deploy / restart fail if any group failed to start
- stop / clean always succeed in aggregate; per-group failures are warned
- validate fails if any group's compose configuration is rejected
"""

from __future__ import annotations

import enum
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional, TypedDict

from .compose import GroupResult, ServiceGroupRunner
from .config_constants import COMPOSE_PROJECT_LABEL
from .console import rule, step, success
from .errors import BootstrapError, ConfigurationError, DeploymentError, ToolingError
from .identity import InitOutcome, InitStatus, KeyBootstrapper
from .network import ensure_network, network_name_for
from .resolver import DeploymentPlan, resolve_deployment
from .runtime import ContainerRuntime, describe_failure
from .settings import Settings

logger = logging.getLogger(__name__)


class Action(str, enum.Enum):
    INIT = "init"
    DEPLOY = "deploy"
    STOP = "stop"
    RESTART = "restart"
    CLEAN = "clean"
    VALIDATE = "validate"
    SHOW_NODE_ID = "show-node-id"
    SHOW_VALIDATOR = "show-validator"

    @property
    def is_identity(self) -> bool:
        return self in (Action.INIT, Action.SHOW_NODE_ID, Action.SHOW_VALIDATOR)

    @classmethod
    def parse(cls, value: str) -> "Action":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            supported = ", ".join(a.value for a in cls)
            raise ConfigurationError(f"Unknown action: '{value}'. Supported actions: {supported}") from None


class DeploymentSummary(TypedDict):
    deployment_id: str
    duration_seconds: int
    groups_succeeded: int
    groups_failed: int


class DeploymentContext:
    """Track progress of one invocation for reporting."""

    def __init__(self) -> None:
        self.deployment_id = uuid.uuid4().hex[:8]
        self.start_time = time.time()
        self.current_group: str | None = None
        self.groups_succeeded: list[str] = []
        self.groups_failed: dict[str, str] = {}

    def set_group(self, group_name: str) -> None:
        self.current_group = group_name

    def record_success(self, group_name: str) -> None:
        if group_name not in self.groups_succeeded:
            self.groups_succeeded.append(group_name)
        self.groups_failed.pop(group_name, None)

    def record_failure(self, group_name: str, message: str) -> None:
        self.groups_failed[group_name] = message
        if group_name in self.groups_succeeded:
            self.groups_succeeded.remove(group_name)

    def record(self, result: GroupResult) -> None:
        if result.ok:
            self.record_success(result.group)
        else:
            self.record_failure(result.group, result.detail or f"exit code {result.returncode}")

    def get_summary(self) -> DeploymentSummary:
        return {
            'deployment_id': self.deployment_id,
            'duration_seconds': int(time.time() - self.start_time),
            'groups_succeeded': len(self.groups_succeeded),
            'groups_failed': len(self.groups_failed),
        }


@dataclass
class ControllerReport:
    action: Action
    ok: bool
    exit_code: int = 0
    results: list[GroupResult] = field(default_factory=list)
    init_outcome: Optional[InitOutcome] = None
    summary: Optional[DeploymentSummary] = None
    message: str = ""


class LifecycleController:
    """Run one lifecycle or identity action for a single environment."""

    def __init__(self, settings: Settings, runtime: ContainerRuntime) -> None:
        self.settings = settings
        self.runtime = runtime
        self.context = DeploymentContext()

    @property
    def network_name(self) -> str:
        return network_name_for(self.settings.environment, self.settings.network_base)

    def run(self, action: Action) -> ControllerReport:
        handlers: dict[Action, Callable[[], ControllerReport]] = {
            Action.INIT: self.init,
            Action.SHOW_NODE_ID: self.show_node_id,
            Action.SHOW_VALIDATOR: self.show_validator,
            Action.DEPLOY: self.deploy,
            Action.STOP: self.stop,
            Action.RESTART: self.restart,
            Action.CLEAN: self.clean,
            Action.VALIDATE: self.validate,
        }
        if action.is_identity and self.settings.dry_run:
            raise ConfigurationError(f"--dry-run is only supported for deployment actions, not '{action.value}'")

        self._banner(action)
        report = handlers[action]()
        if not report.ok and report.message:
            logger.error(report.message)
        return report

    def _banner(self, action: Action) -> None:
        rule(logger)
        logger.info(f"Graphene node {action.value}")
        logger.info(f"  Environment: {self.settings.environment.value}")
        if action.is_identity:
            logger.info(f"  Node type:   {self.settings.node_type.value}")
        else:
            logger.info(f"  Deployment:  {self.settings.deployment_id} ({self.context.deployment_id})")
        if self.settings.dry_run:
            logger.info("  Mode:        dry-run (no changes will be made)")
        rule(logger)

    # ------------------------------------------------------------------
    # identity path (no shared network needed)
    # ------------------------------------------------------------------

    def _bootstrapper(self) -> KeyBootstrapper:
        return KeyBootstrapper(self.settings, self.runtime)

    def init(self) -> ControllerReport:
        outcome = self._bootstrapper().initialize(force=self.settings.force)
        if outcome.status is InitStatus.CREATED:
            success(logger, f"Tendermint {self.settings.node_type.value} identity created")
            return ControllerReport(Action.INIT, ok=True, init_outcome=outcome)
        if outcome.status is InitStatus.ALREADY_INITIALIZED:
            return ControllerReport(
                Action.INIT,
                ok=False,
                exit_code=1,
                init_outcome=outcome,
                message=(
                    f"{self.settings.node_type.value} identity for '{self.settings.environment.value}' "
                    "already initialized; re-run with --force to discard it and generate a new one"
                ),
            )
        error = outcome.error or BootstrapError("Bootstrap failed")
        return ControllerReport(
            Action.INIT,
            ok=False,
            exit_code=error.exit_code,
            init_outcome=outcome,
            message=f"Identity bootstrap failed at step '{error.step}': {error}",
        )

    def show_node_id(self) -> ControllerReport:
        self._bootstrapper().show_node_id()
        return ControllerReport(Action.SHOW_NODE_ID, ok=True)

    def show_validator(self) -> ControllerReport:
        self._bootstrapper().show_validator()
        return ControllerReport(Action.SHOW_VALIDATOR, ok=True)

    # ------------------------------------------------------------------
    # deployment path
    # ------------------------------------------------------------------

    def _runners(self, plan: DeploymentPlan) -> list[ServiceGroupRunner]:
        return [ServiceGroupRunner(self.runtime, group, build=self.settings.build) for group in plan.groups]

    def _ensure_network(self) -> None:
        if self.settings.skip_network:
            logger.info("Skipping network setup (--skip-network)")
            return
        ensure_network(self.runtime, self.network_name)

    def _pull_git_lfs(self) -> None:
        """Fetch large files tracked by Git LFS; failures only warn."""
        if not self.settings.git_lfs:
            logger.info("Skipping Git LFS pull (--no-git-lfs)")
            return

        gitattributes = self.settings.repo_root / ".gitattributes"
        if not gitattributes.is_file() or "filter=lfs" not in gitattributes.read_text(encoding="utf-8"):
            logger.debug("No Git LFS tracked files, skipping pull")
            return

        logger.info("Pulling Git LFS files...")
        cmd = ["git", "-C", str(self.settings.repo_root), "lfs", "pull"]
        try:
            result = self.runtime.run(cmd, mutates=True)
        except ToolingError as e:
            logger.warning(f"Git LFS pull skipped: {e}")
            return
        if result.returncode != 0:
            logger.warning(f"Git LFS pull failed, continuing: {describe_failure(result, limit=5)}")
        else:
            success(logger, "Git LFS files up to date")

    def _for_each_group(self, runners: list[ServiceGroupRunner], operation: str) -> list[GroupResult]:
        results = []
        for runner in runners:
            self.context.set_group(runner.group.name)
            step(logger, f"{operation.upper()}: {runner.group.name}")
            result = getattr(runner, operation)()
            self.context.record(result)
            results.append(result)
        return results

    def deploy(self) -> ControllerReport:
        plan = resolve_deployment(self.settings)
        self._ensure_network()
        self._pull_git_lfs()

        runners = self._runners(plan)
        results = self._for_each_group(runners, "deploy")
        return self._finish_start(Action.DEPLOY, runners, results)

    def restart(self) -> ControllerReport:
        plan = resolve_deployment(self.settings)
        self._ensure_network()
        self._pull_git_lfs()

        runners = self._runners(plan)
        self._for_each_group(runners, "stop")
        results = self._for_each_group(runners, "deploy")
        return self._finish_start(Action.RESTART, runners, results)

    def _finish_start(
        self, action: Action, runners: list[ServiceGroupRunner], results: list[GroupResult]
    ) -> ControllerReport:
        failed = [r.group for r in results if not r.ok]
        if not failed and self.settings.show_logs:
            for runner in runners:
                runner.logs(self.settings.log_tail)

        self._print_summary(runners)
        summary = self.context.get_summary()
        if failed:
            error = DeploymentError(f"Failed to start service group(s): {', '.join(failed)}", group=failed[0])
            return ControllerReport(
                action, ok=False, exit_code=error.exit_code, results=results, summary=summary, message=str(error)
            )
        success(logger, f"{action.value.capitalize()} completed in {summary['duration_seconds']}s")
        return ControllerReport(action, ok=True, results=results, summary=summary)

    def stop(self) -> ControllerReport:
        plan = resolve_deployment(self.settings)
        results = self._for_each_group(self._runners(plan), "stop")
        return self._tolerant_report(Action.STOP, results)

    def clean(self) -> ControllerReport:
        plan = resolve_deployment(self.settings)
        results = self._for_each_group(self._runners(plan), "clean")
        return self._tolerant_report(Action.CLEAN, results)

    def _tolerant_report(self, action: Action, results: list[GroupResult]) -> ControllerReport:
        for result in results:
            if not result.ok:
                logger.warning(f"{action.value} of {result.group} reported a failure; continuing")
        success(logger, f"{action.value.capitalize()} finished")
        return ControllerReport(action, ok=True, results=results, summary=self.context.get_summary())

    def validate(self) -> ControllerReport:
        plan = resolve_deployment(self.settings)
        results = self._for_each_group(self._runners(plan), "validate")
        invalid = [r.group for r in results if not r.ok]
        if invalid:
            return ControllerReport(
                Action.VALIDATE,
                ok=False,
                exit_code=ConfigurationError.exit_code,
                results=results,
                message=f"Compose configuration invalid for: {', '.join(invalid)}",
            )
        success(logger, "All service groups validated")
        return ControllerReport(Action.VALIDATE, ok=True, results=results)

    def _print_summary(self, runners: list[ServiceGroupRunner]) -> None:
        rule(logger)
        logger.info("Deployment summary")
        logger.info(f"  Environment: {self.settings.environment.value}")
        for runner in runners:
            try:
                state = runner.state().value
            except (ToolingError, ValueError) as e:
                logger.debug(f"State query for {runner.group.name} failed: {e}")
                state = "unknown"
            logger.info(f"  {runner.group.name.capitalize()} project: {runner.group.project_name} ({state})")
        if not self.settings.skip_network:
            logger.info(f"  Network:     {self.network_name}")
        rule(logger)

        # Repeated label filters are AND-ed by docker, so list each project separately
        for runner in runners:
            try:
                self.runtime.docker(
                    "ps",
                    "--filter", f"label={COMPOSE_PROJECT_LABEL}={runner.group.project_name}",
                    "--format", "table {{.Names}}\t{{.Status}}\t{{.Ports}}",
                    capture_output=False,
                )
            except ToolingError as e:
                logger.warning(f"Could not list {runner.group.name} containers: {e}")
