#!/usr/bin/env python3
"""
Filename and naming constants for grnctl.

This is the single source of truth for config filenames, key document names
and in-container paths. Modules import from here instead of hardcoding strings.

Naming Convention:
- *.defaults.toml.j2 = Template defaults (packaged)
- *.toml.j2 = Template overrides (repository root, optional)
- *.toml = Rendered runtime config (written by --render-toml)
"""

# ============================================================================
# TOML Configuration Filenames
# ============================================================================

SETTINGS_DEFAULTS = 'grnctl.defaults.toml.j2'
SETTINGS_OVERRIDES = 'grnctl.toml.j2'
SETTINGS_RENDERED = 'grnctl.toml'

# ============================================================================
# Per-environment env files (config/env/<env>/)
# ============================================================================

COMMON_ENV_FILE = '.env.common'
LOCAL_OVERRIDE_ENV_FILE = '.env.local'
ROLE_ENV_FILE_PATTERN = '.env.{role}'

# ============================================================================
# Key material
# ============================================================================

NODE_KEY_FILE = 'node_key.json'
PRIV_VALIDATOR_KEY_FILE = 'priv_validator_key.json'
IDENTITY_STATE_FILE = 'identity.state.toml'

# Environment variable names used to transport base64-encoded key documents
NODE_KEY_ENV = 'NODE_KEY_JSON'
PRIV_VALIDATOR_KEY_ENV = 'PRIV_VALIDATOR_KEY_JSON'

# Permission applied to extracted key documents
KEY_FILE_MODE = 0o600

# ============================================================================
# Container tool operations (arguments passed to the tool image)
# ============================================================================

OP_INIT = 'init'
OP_SHOW_NODE_ID = 'show-node-id'
OP_SHOW_VALIDATOR = 'show-validator'

# Docker Compose label used to find deployment containers
COMPOSE_PROJECT_LABEL = 'com.docker.compose.project'


def role_env_file(role: str) -> str:
    """
    Get the role-specific env filename for a service group.

    Examples:
        >>> role_env_file('validator')
        '.env.validator'
    """
    return ROLE_ENV_FILE_PATTERN.format(role=role)


def container_key_path(home: str, filename: str) -> str:
    """
    Path of a key document inside the tool container.

    Examples:
        >>> container_key_path('/tendermint', 'node_key.json')
        '/tendermint/config/node_key.json'
    """
    return f"{home.rstrip('/')}/config/{filename}"


def container_data_path(home: str) -> str:
    return f"{home.rstrip('/')}/data"
