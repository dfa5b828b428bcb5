#!/usr/bin/env python3
"""Idempotent provisioning of the shared Docker network."""

from __future__ import annotations

import logging

from .console import success
from .errors import ToolingError
from .runtime import ContainerRuntime, describe_failure
from .settings import Environment

logger = logging.getLogger(__name__)


def network_name_for(environment: Environment, base: str = "graphene-net") -> str:
    """
    Live uses the bare base name; every other environment is suffixed.

    Examples:
        >>> network_name_for(Environment.LIVE)
        'graphene-net'
        >>> network_name_for(Environment.TEST)
        'graphene-net-test'
    """
    if environment is Environment.LIVE:
        return base
    return f"{base}-{environment.value}"


def network_exists(runtime: ContainerRuntime, network_name: str) -> bool:
    return runtime.docker("network", "inspect", network_name).returncode == 0


def ensure_network(runtime: ContainerRuntime, network_name: str) -> bool:
    """
    Ensure the shared Docker network exists.

    Returns True when the network was created by this call, False when it
    already existed. A failed create is fatal.
    """
    if not network_name:
        raise ValueError("network_name is required")

    logger.info(f"Checking network: {network_name}")
    if network_exists(runtime, network_name):
        logger.info(f"Network '{network_name}' already exists")
        return False

    logger.info(f"Creating network: {network_name}")
    result = runtime.docker("network", "create", network_name, mutates=True)
    if result.returncode != 0:
        raise ToolingError(
            f"Failed to create network '{network_name}': {describe_failure(result)}",
            command=[runtime.docker_bin, "network", "create", network_name],
        )

    success(logger, f"Network '{network_name}' created")
    return True
