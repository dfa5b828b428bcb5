#!/usr/bin/env python3
"""
Resolve and validate the per-environment file set.

Resolution is fail-fast: the first missing required file or directory raises
ConfigurationError and nothing further is checked. Probing is read-only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config_constants import (
    COMMON_ENV_FILE,
    IDENTITY_STATE_FILE,
    LOCAL_OVERRIDE_ENV_FILE,
    NODE_KEY_FILE,
    PRIV_VALIDATOR_KEY_FILE,
)
from .console import success
from .errors import ConfigurationError
from .settings import NodeType, Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceGroup:
    """Independently deployable set of containers sharing one compose file."""

    name: str
    compose_file: Path
    env_files: tuple[Path, ...]
    project_name: str


@dataclass(frozen=True)
class DeploymentPlan:
    env_config_dir: Path
    services_dir: Path
    common_env_file: Path
    local_env_file: Optional[Path]
    groups: tuple[ServiceGroup, ...]

    def group(self, name: str) -> ServiceGroup:
        for candidate in self.groups:
            if candidate.name == name:
                return candidate
        raise KeyError(name)


@dataclass(frozen=True)
class IdentityPaths:
    base_dir: Path
    config_dir: Path
    data_dir: Path
    node_key: Path
    priv_validator_key: Path
    state_file: Path
    dockerfile: Path


def validate_directory(path: Path) -> None:
    if not path.is_dir():
        raise ConfigurationError(f"Required directory not found: {path}", path=str(path))


def validate_file(path: Path) -> None:
    if not path.is_file():
        raise ConfigurationError(f"Required file not found: {path}", path=str(path))


def resolve_deployment(settings: Settings) -> DeploymentPlan:
    """
    Validate every path a deployment needs, in a fixed order, and return the plan.

    Order: env config dir, services dir, each group's compose file, the common
    env file, each group's role env file. The optional local override is
    layered last into every group when present.
    """
    env_config_dir = settings.env_config_dir
    services_dir = settings.services_dir
    group_specs = settings.groups

    logger.info(f"Validating configuration for '{settings.environment.value}' environment")

    validate_directory(env_config_dir)
    validate_directory(services_dir)

    compose_files = [services_dir / spec.compose_file for spec in group_specs]
    for compose_file in compose_files:
        validate_file(compose_file)

    common_env_file = env_config_dir / COMMON_ENV_FILE
    validate_file(common_env_file)

    role_env_files = [env_config_dir / spec.env_file for spec in group_specs]
    for role_env_file in role_env_files:
        validate_file(role_env_file)

    local_candidate = env_config_dir / LOCAL_OVERRIDE_ENV_FILE
    local_env_file = local_candidate if local_candidate.is_file() else None
    if local_env_file:
        logger.info(f"Found local override file: {local_env_file}")

    groups = []
    for spec, compose_file, role_env_file in zip(group_specs, compose_files, role_env_files):
        env_files = [common_env_file, role_env_file]
        if local_env_file:
            env_files.append(local_env_file)
        groups.append(ServiceGroup(
            name=spec.name,
            compose_file=compose_file,
            env_files=tuple(env_files),
            project_name=settings.project_name(spec.name),
        ))

    success(logger, "Configuration validated successfully")
    return DeploymentPlan(
        env_config_dir=env_config_dir,
        services_dir=services_dir,
        common_env_file=common_env_file,
        local_env_file=local_env_file,
        groups=tuple(groups),
    )


def resolve_identity_paths(settings: Settings, node_type: Optional[NodeType] = None) -> IdentityPaths:
    """Compute key material locations for an (environment, node type) pair."""
    node_type = node_type or settings.node_type
    base_dir = settings.repo_root / settings.identity_value('volumes_dir') / node_type.value
    config_dir = base_dir / "config"
    return IdentityPaths(
        base_dir=base_dir,
        config_dir=config_dir,
        data_dir=base_dir / "data",
        node_key=config_dir / NODE_KEY_FILE,
        priv_validator_key=config_dir / PRIV_VALIDATOR_KEY_FILE,
        state_file=base_dir / IDENTITY_STATE_FILE,
        dockerfile=settings.repo_root / settings.identity_value('dockerfile'),
    )
