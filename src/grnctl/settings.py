#!/usr/bin/env python3
"""
Layered settings for grnctl.

Rendering pipeline (per invocation, executed once at the entry point):
1. Render packaged grnctl.defaults.toml.j2 with Jinja2
2. Render optional <repo_root>/grnctl.toml.j2 with the defaults in context
3. Expand $VAR / ${VAR} from the captured environment (fail-fast)
4. Parse TOML and deep merge key by key (later layer wins)

The result is frozen into a Settings instance that every component receives
explicitly. Nothing below the entry point reads os.environ.
"""

from __future__ import annotations

import enum
import logging
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from .config_constants import (
    NODE_KEY_ENV,
    PRIV_VALIDATOR_KEY_ENV,
    SETTINGS_DEFAULTS,
    SETTINGS_OVERRIDES,
    SETTINGS_RENDERED,
    role_env_file,
)
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"


class Environment(str, enum.Enum):
    LOCAL = "local"
    TEST = "test"
    LIVE = "live"

    @classmethod
    def parse(cls, value: str) -> "Environment":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            supported = ", ".join(e.value for e in cls)
            raise ConfigurationError(
                f"Unsupported environment: '{value}'. Supported environments: {supported}"
            ) from None


class NodeType(str, enum.Enum):
    VALIDATOR = "validator"
    FULL = "full"
    SEED = "seed"

    @classmethod
    def parse(cls, value: str) -> "NodeType":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            supported = ", ".join(t.value for t in cls)
            raise ConfigurationError(
                f"Not valid node type: '{value}'. You can use one of: {supported}"
            ) from None

    @property
    def has_validator_key(self) -> bool:
        return self is NodeType.VALIDATOR


ENV_VAR_PATTERN = re.compile(r"\$(\w+)|\$\{([^}]+)\}")


def expand_env_vars_or_fail(raw_text: str, source: str, environ: Mapping[str, str]) -> str:
    """
    Expand $VAR / ${VAR} using the captured environment; fail-fast on missing values.
    """
    missing = set()

    def _replace(match: re.Match) -> str:
        var_name = match.group(1) or match.group(2)
        value = environ.get(var_name)
        if value is None or value == "":
            missing.add(var_name)
            return match.group(0)
        return value

    expanded = ENV_VAR_PATTERN.sub(_replace, raw_text)

    if missing:
        missing_list = ", ".join(sorted(missing))
        raise ConfigurationError(
            f"Missing required environment values in {source}: {missing_list}",
            path=source,
        )

    return expanded


def parse_toml_string(toml_text: str, source: str) -> dict:
    """
    Parse TOML from a string with fail-fast error context.
    """
    try:
        return tomllib.loads(toml_text)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Failed to parse TOML from {source}: {e}", path=source) from e


def render_jinja2(template_path: Path, context: dict) -> str:
    """
    Render a Jinja2 template file with the given context.
    """
    from jinja2 import StrictUndefined, Template, TemplateError

    if not template_path.exists():
        raise ConfigurationError(f"Template file not found: {template_path}", path=str(template_path))

    template_content = template_path.read_text(encoding="utf-8")
    logger.debug(f"Rendering Jinja2 template: {template_path} ({len(template_content)} bytes)")

    try:
        return Template(template_content, undefined=StrictUndefined).render(**context)
    except TemplateError as e:
        raise ConfigurationError(
            f"Failed to render template {template_path}: {e}", path=str(template_path)
        ) from e


def render_toml_template(template_path: Path, context: dict, environ: Mapping[str, str]) -> dict:
    """
    Render a TOML Jinja2 template, expand env vars, and parse.
    """
    rendered = render_jinja2(template_path, context)
    expanded = expand_env_vars_or_fail(rendered, str(template_path), environ)
    return parse_toml_string(expanded, str(template_path))


def deep_merge_configs(base: dict, override: dict) -> dict:
    """
    Deep merge two configs (key-level merge, override wins).
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge_configs(result[key], value)
        else:
            if key in result:
                logger.debug(f"  Override: {key} = {value} (was: {result[key]})")
            result[key] = value

    return result


def render_settings_chain(
    repo_root: Path,
    environment: Environment,
    environ: Mapping[str, str],
    defaults_dir: Path = TEMPLATES_DIR,
) -> dict:
    """
    Render packaged defaults and the optional repository override into one dict.
    """
    merged: dict = {}
    for template_path in (defaults_dir / SETTINGS_DEFAULTS, repo_root / SETTINGS_OVERRIDES):
        if not template_path.exists():
            if template_path.name == SETTINGS_DEFAULTS:
                raise ConfigurationError(
                    f"Packaged settings defaults missing: {template_path}", path=str(template_path)
                )
            continue

        context = {**merged, "node_env": environment.value, "env": dict(environ)}
        layer = render_toml_template(template_path, context, environ)
        merged = deep_merge_configs(merged, layer)
        logger.debug(f"Settings layer applied: {template_path}")

    return merged


def write_rendered_toml(output_path: Path, config: dict) -> None:
    """
    Write rendered TOML to disk using tomli_w.
    """
    import tomli_w

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'wb') as f:
        tomli_w.dump(config, f)


def _require(config: dict, dotted_path: str) -> Any:
    cursor: Any = config
    for key in dotted_path.split('.'):
        if not isinstance(cursor, dict) or key not in cursor:
            raise ConfigurationError(f"Required setting missing: {dotted_path}")
        cursor = cursor[key]
    return cursor


@dataclass(frozen=True)
class GroupSpec:
    name: str
    compose_file: str
    env_file: str


@dataclass(frozen=True)
class Settings:
    """Explicit per-invocation configuration passed to every component."""

    repo_root: Path
    environment: Environment
    node_type: NodeType
    config: dict = field(repr=False)
    build: bool = True
    git_lfs: bool = True
    skip_network: bool = False
    show_logs: bool = False
    log_tail: int = 50
    dry_run: bool = False
    force: bool = False
    command_timeout: Optional[float] = None
    node_key_b64: Optional[str] = field(default=None, repr=False)
    priv_validator_key_b64: Optional[str] = field(default=None, repr=False)

    @property
    def log_level(self) -> str:
        return str(self.config.get('grnctl', {}).get('log_level', 'INFO'))

    @property
    def services_dir(self) -> Path:
        return self.repo_root / _require(self.config, 'deploy.services_dir')

    @property
    def env_config_dir(self) -> Path:
        return self.repo_root / _require(self.config, 'deploy.env_config_dir')

    @property
    def deployment_id(self) -> str:
        prefix = _require(self.config, 'deploy.deployment_prefix')
        return f"{prefix}_{self.environment.value}"

    @property
    def network_base(self) -> str:
        return str(_require(self.config, 'deploy.network_base'))

    def project_name(self, group_name: str) -> str:
        return f"{self.deployment_id}_{group_name}"

    @property
    def groups(self) -> list[GroupSpec]:
        """Service groups in declared order (validator before sentry by default)."""
        order = _require(self.config, 'deploy.group_order')
        definitions = _require(self.config, 'deploy.groups')
        specs = []
        for name in order:
            definition = definitions.get(name)
            if not isinstance(definition, dict):
                raise ConfigurationError(f"Group '{name}' listed in deploy.group_order has no [deploy.groups.{name}]")
            specs.append(GroupSpec(
                name=name,
                compose_file=str(definition.get('compose_file') or f"docker.compose.{name}.yml"),
                env_file=str(definition.get('env_file') or role_env_file(name)),
            ))
        return specs

    def identity_value(self, key: str) -> str:
        return str(_require(self.config, f'identity.{key}'))


def load_settings(
    repo_root: Path,
    environment: Environment,
    node_type: NodeType,
    environ: Mapping[str, str],
    *,
    no_build: bool = False,
    no_git_lfs: bool = False,
    skip_network: bool = False,
    show_logs: bool = False,
    log_tail: Optional[int] = None,
    dry_run: bool = False,
    force: bool = False,
) -> Settings:
    """Render the settings chain and freeze it together with CLI options."""
    config = render_settings_chain(repo_root, environment, environ)
    deploy = config.get('deploy', {})

    timeout = float(deploy.get('command_timeout') or 0)
    tail = log_tail if log_tail is not None else int(deploy.get('log_tail', 50))
    if tail <= 0:
        raise ConfigurationError(f"Log tail must be positive, got {tail}")

    return Settings(
        repo_root=repo_root,
        environment=environment,
        node_type=node_type,
        config=config,
        build=bool(deploy.get('build', True)) and not no_build,
        git_lfs=bool(deploy.get('git_lfs', True)) and not no_git_lfs,
        skip_network=skip_network,
        show_logs=show_logs,
        log_tail=tail,
        dry_run=dry_run,
        force=force,
        command_timeout=timeout if timeout > 0 else None,
        node_key_b64=environ.get(NODE_KEY_ENV) or None,
        priv_validator_key_b64=environ.get(PRIV_VALIDATOR_KEY_ENV) or None,
    )


def rendered_settings_path(repo_root: Path) -> Path:
    return repo_root / SETTINGS_RENDERED
