#!/usr/bin/env python3
"""
Node identity bootstrap.

Generates Tendermint key material inside a one-shot container, copies it out,
encodes it for transport as environment values, derives the validator
address and peer id, and purges local secret copies once displayed.

Re-initialization policy: an existing identity for the (environment, node
type) pair is never overwritten implicitly. initialize() returns
ALREADY_INITIALIZED unless force=True is passed.
"""

from __future__ import annotations

import base64
import binascii
import enum
import hashlib
import json
import logging
import os
import re
import shutil
import tempfile
import tomllib
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from .config_constants import (
    KEY_FILE_MODE,
    NODE_KEY_ENV,
    NODE_KEY_FILE,
    OP_INIT,
    OP_SHOW_NODE_ID,
    OP_SHOW_VALIDATOR,
    PRIV_VALIDATOR_KEY_ENV,
    PRIV_VALIDATOR_KEY_FILE,
    container_data_path,
    container_key_path,
)
from .console import success
from .errors import BootstrapError, ConfigurationError, ToolingError
from .resolver import IdentityPaths, resolve_identity_paths
from .runtime import ContainerRuntime, describe_failure, format_command
from .settings import Settings, write_rendered_toml

logger = logging.getLogger(__name__)

ADDRESS_PATTERN = re.compile(r"^[0-9a-f]{40}$")


class InitStatus(str, enum.Enum):
    ALREADY_INITIALIZED = "already_initialized"
    CREATED = "created"
    FAILED = "failed"


def encode_key_document(raw: bytes) -> str:
    """Base64 without line breaks, suitable as an environment variable value."""
    return base64.b64encode(raw).decode("ascii")


def decode_key_document(value: str, name: str = "key document") -> bytes:
    try:
        return base64.b64decode(value.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConfigurationError(f"{name} is not valid base64: {e}") from e


def parse_key_document(raw: bytes, source: str) -> dict:
    try:
        document = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise BootstrapError(f"Key document {source} is not valid JSON: {e}", step="parse") from e
    if not isinstance(document, dict):
        raise BootstrapError(f"Key document {source} must be a JSON object", step="parse")
    return document


def derive_validator_address(document: dict) -> str:
    """
    Lowercase hex of the address field of a private validator key document.

    Examples:
        >>> derive_validator_address({"address": "AB12CD34EF56AB12CD34EF56AB12CD34EF56AB12"})
        'ab12cd34ef56ab12cd34ef56ab12cd34ef56ab12'
    """
    address = document.get("address")
    if not isinstance(address, str):
        raise BootstrapError("Validator key document has no 'address' field", step="derive-address")
    normalized = address.strip().lower()
    if normalized.startswith("0x"):
        normalized = normalized[2:]
    if not ADDRESS_PATTERN.match(normalized):
        raise BootstrapError(f"Validator address is not 20-byte hex: {address!r}", step="derive-address")
    return normalized


def validator_public_key(document: dict) -> str:
    pub_key = document.get("pub_key")
    value = pub_key.get("value") if isinstance(pub_key, dict) else None
    if not isinstance(value, str) or not value:
        raise BootstrapError("Validator key document has no 'pub_key.value' field", step="derive-pubkey")
    return value


def format_validator_address(address: str) -> str:
    return f"0x{address}"


def fingerprint(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()[:8]


@dataclass(frozen=True)
class KeyMaterial:
    node_key: bytes
    priv_validator_key: bytes

    @classmethod
    def from_files(cls, node_key_path: Path, priv_validator_key_path: Path) -> "KeyMaterial":
        return cls(
            node_key=node_key_path.read_bytes(),
            priv_validator_key=priv_validator_key_path.read_bytes(),
        )

    @property
    def node_key_b64(self) -> str:
        return encode_key_document(self.node_key)

    @property
    def priv_validator_key_b64(self) -> str:
        return encode_key_document(self.priv_validator_key)


@dataclass(frozen=True)
class InitOutcome:
    status: InitStatus
    material: Optional[KeyMaterial] = None
    node_id: Optional[str] = None
    validator_address: Optional[str] = None
    public_key: Optional[str] = None
    error: Optional[BootstrapError] = None


def restrict_permissions(path: Path) -> None:
    os.chmod(path, KEY_FILE_MODE)


@contextmanager
def one_shot_container(runtime: ContainerRuntime, name: str) -> Iterator[str]:
    """
    Scope a named one-shot container: clear a stale one on entry, always remove on exit.
    """
    try:
        runtime.docker("rm", "-f", name, mutates=True)
    except ToolingError as e:
        logger.debug(f"Stale container cleanup for {name} failed: {e}")

    try:
        yield name
    finally:
        try:
            result = runtime.docker("rm", "-f", name, mutates=True)
            if result.returncode != 0:
                logger.warning(f"Failed to remove one-shot container {name}: {describe_failure(result)}")
        except ToolingError as e:
            logger.warning(f"Failed to remove one-shot container {name}: {e}")


class KeyBootstrapper:
    """Create, display and account for node identity of one (environment, node type)."""

    def __init__(
        self,
        settings: Settings,
        runtime: ContainerRuntime,
        paths: Optional[IdentityPaths] = None,
    ) -> None:
        self.settings = settings
        self.runtime = runtime
        self.node_type = settings.node_type
        self.paths = paths or resolve_identity_paths(settings)
        self.image = settings.identity_value('image')
        self.home = settings.identity_value('home')
        self.container_prefix = settings.identity_value('container_prefix')

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def container_name(self, operation: str) -> str:
        return f"{self.container_prefix}_{self.settings.environment.value}_{self.node_type.value}_{operation}"

    def _docker_step(self, step: str, *args: str, capture_output: bool = True):
        try:
            result = self.runtime.docker(*args, capture_output=capture_output, mutates=True)
        except ToolingError as e:
            raise BootstrapError(f"{step} failed: {e}", step=step) from e
        if result.returncode != 0:
            command = format_command([self.runtime.docker_bin, *args])
            raise BootstrapError(
                f"{step} failed ({command}): {describe_failure(result)}", step=step
            )
        return result

    def is_initialized(self) -> bool:
        return (
            self.paths.state_file.exists()
            or self.paths.node_key.exists()
            or self.paths.priv_validator_key.exists()
        )

    def read_state(self) -> dict:
        if not self.paths.state_file.exists():
            return {}
        with open(self.paths.state_file, "rb") as f:
            return tomllib.load(f)

    def _write_state(self, material: KeyMaterial, node_id: str, address: Optional[str]) -> None:
        identity = {
            "environment": self.settings.environment.value,
            "node_type": self.node_type.value,
            "initialized_at": datetime.now(timezone.utc).isoformat(),
            "node_id": node_id,
            "fingerprints": {
                "node_key": fingerprint(material.node_key_b64),
                "priv_validator_key": fingerprint(material.priv_validator_key_b64),
            },
        }
        if address:
            identity["validator_address"] = format_validator_address(address)
        write_rendered_toml(self.paths.state_file, {"identity": identity})
        logger.debug(f"Identity state written: {self.paths.state_file}")

    def _purge_config_dir(self) -> None:
        if self.paths.config_dir.exists():
            shutil.rmtree(self.paths.config_dir)
            logger.info(f"Removed local key directory: {self.paths.config_dir}")

    def ensure_image(self) -> None:
        """Build the tool image only when it is not present locally."""
        if self.runtime.docker("image", "inspect", self.image).returncode == 0:
            logger.info(f"Docker image {self.image} already exists, skipping build")
            return

        if not self.paths.dockerfile.is_file():
            raise BootstrapError(
                f"Docker image {self.image} not found and Dockerfile missing: {self.paths.dockerfile}",
                step="build-image",
            )

        logger.info(f"Building Docker image {self.image}...")
        self._docker_step(
            "build-image",
            "build", "-t", self.image, "-f", str(self.paths.dockerfile), str(self.settings.repo_root),
            capture_output=False,
        )

    def _key_mounts(self, key_dir: Path) -> list[str]:
        mounts = ["-v", f"{self.paths.data_dir.resolve()}:{container_data_path(self.home)}:ro"]
        for filename in (NODE_KEY_FILE, PRIV_VALIDATOR_KEY_FILE):
            source = key_dir / filename
            if source.is_file():
                mounts += ["-v", f"{source.resolve()}:{container_key_path(self.home, filename)}:ro"]
        return mounts

    def _run_display(self, operation: str, key_dir: Path) -> str:
        """Run the tool read-only against the given key files and return its output."""
        self.paths.data_dir.mkdir(parents=True, exist_ok=True)
        with one_shot_container(self.runtime, self.container_name(operation)) as container:
            result = self._docker_step(
                operation,
                "run", "--name", container, *self._key_mounts(key_dir), self.image, operation,
            )
        lines = [line.strip() for line in (result.stdout or "").splitlines() if line.strip()]
        if not lines:
            raise BootstrapError(f"{operation} produced no output", step=operation)
        return lines[-1] if operation == OP_SHOW_NODE_ID else "\n".join(lines)

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------

    def initialize(self, force: bool = False) -> InitOutcome:
        """Create identity once; report ALREADY_INITIALIZED instead of overwriting."""
        logger.info(f"Initializing Tendermint ({self.node_type.value})...")

        if self.is_initialized():
            if not force:
                initialized_at = self.read_state().get("identity", {}).get("initialized_at", "unknown")
                logger.warning(
                    f"Identity for {self.settings.environment.value}/{self.node_type.value} already "
                    f"initialized (at {initialized_at}); refusing to overwrite"
                )
                return InitOutcome(InitStatus.ALREADY_INITIALIZED)
            logger.warning("--force: discarding existing local identity before re-initializing")
            self._purge_config_dir()
            self.paths.state_file.unlink(missing_ok=True)

        try:
            return self._create()
        except BootstrapError as e:
            logger.error(f"Bootstrap failed: {e}")
            self._purge_config_dir()
            return InitOutcome(InitStatus.FAILED, error=e)

    def _create(self) -> InitOutcome:
        self.ensure_image()

        self.paths.data_dir.mkdir(parents=True, exist_ok=True)
        self.paths.config_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(self.paths.config_dir, 0o700)

        with one_shot_container(self.runtime, self.container_name(OP_INIT)) as container:
            self._docker_step(
                OP_INIT,
                "run", "--name", container,
                "-v", f"{self.paths.data_dir.resolve()}:{container_data_path(self.home)}",
                self.image, OP_INIT, self.node_type.value,
            )
            for filename, destination in (
                (NODE_KEY_FILE, self.paths.node_key),
                (PRIV_VALIDATOR_KEY_FILE, self.paths.priv_validator_key),
            ):
                self._docker_step(
                    "extract-keys",
                    "cp", f"{container}:{container_key_path(self.home, filename)}", str(destination),
                )
                restrict_permissions(destination)

        success(logger, "Tendermint initialized")

        material = KeyMaterial.from_files(self.paths.node_key, self.paths.priv_validator_key)

        address = None
        public_key = None
        if self.node_type.has_validator_key:
            document = parse_key_document(material.priv_validator_key, PRIV_VALIDATOR_KEY_FILE)
            address = derive_validator_address(document)
            public_key = validator_public_key(document)

        node_id = self._run_display(OP_SHOW_NODE_ID, self.paths.config_dir)

        self._print_keys(material)
        if self.node_type.has_validator_key:
            self._print_validator_info(address, public_key, node_id)
            self._purge_config_dir()
            print(
                "⚠️ Provide this information to the whitelisting authority to get your validator node "
                "whitelisted on the network by adding the validator address to the seed nodes."
            )
        else:
            print(f"  Node ID: {node_id}")

        self._write_state(material, node_id, address)
        return InitOutcome(
            InitStatus.CREATED,
            material=material,
            node_id=node_id,
            validator_address=address,
            public_key=public_key,
        )

    def _print_keys(self, material: KeyMaterial) -> None:
        print()
        print("  📄 Save these keys in a safe place:")
        print()
        print(f"  🔑 Node Key ({NODE_KEY_FILE}) for your environment:")
        print(f"     {NODE_KEY_ENV}={material.node_key_b64}")
        print()
        print(f"  🔐 Private Validator Key ({PRIV_VALIDATOR_KEY_FILE}) for your environment:")
        print(f"     {PRIV_VALIDATOR_KEY_ENV}={material.priv_validator_key_b64}")
        print()

    def _print_validator_info(self, address: str, public_key: str, node_id: str) -> None:
        print(f"  🏷 Validator Address: {format_validator_address(address)}")
        print()
        print("  ⚠️ Important:")
        print("     1. Start your validator node first before submitting a stake transaction.")
        print("     2. Stake to this validator address on the Graphene chain to avoid slashing.")
        print("        Address:")
        print(f"           {format_validator_address(address)}")
        print("        Public key (base64):")
        print(f"           {public_key}")
        print("        Node ID:")
        print(f"           {node_id}")
        print()

    @contextmanager
    def materialized_keys(self) -> Iterator[Path]:
        """
        Yield a directory holding the key documents for display containers.

        Transport values (NODE_KEY_JSON / PRIV_VALIDATOR_KEY_JSON) win over the
        local config dir; they are decoded into a private temporary directory
        that is removed on exit.
        """
        if self.settings.node_key_b64:
            key_dir = Path(tempfile.mkdtemp(prefix="grnctl-keys-"))
            try:
                os.chmod(key_dir, 0o700)
                documents = {NODE_KEY_FILE: (self.settings.node_key_b64, NODE_KEY_ENV)}
                if self.settings.priv_validator_key_b64:
                    documents[PRIV_VALIDATOR_KEY_FILE] = (self.settings.priv_validator_key_b64, PRIV_VALIDATOR_KEY_ENV)
                for filename, (encoded, env_name) in documents.items():
                    target = key_dir / filename
                    target.write_bytes(decode_key_document(encoded, env_name))
                    restrict_permissions(target)
                yield key_dir
            finally:
                shutil.rmtree(key_dir, ignore_errors=True)
        elif self.paths.node_key.is_file():
            yield self.paths.config_dir
        else:
            raise ConfigurationError(
                f"No key material for {self.settings.environment.value}/{self.node_type.value}: "
                f"set {NODE_KEY_ENV} (and {PRIV_VALIDATOR_KEY_ENV}) or run init first",
                path=str(self.paths.config_dir),
            )

    def show_node_id(self) -> str:
        with self.materialized_keys() as key_dir:
            node_id = self._run_display(OP_SHOW_NODE_ID, key_dir)
        print(node_id)
        return node_id

    def show_validator(self) -> str:
        if not self.node_type.has_validator_key:
            raise ConfigurationError(f"show-validator requires node type 'validator', got '{self.node_type.value}'")

        with self.materialized_keys() as key_dir:
            priv_key = key_dir / PRIV_VALIDATOR_KEY_FILE
            if not priv_key.is_file():
                raise ConfigurationError(
                    f"Private validator key not available: set {PRIV_VALIDATOR_KEY_ENV}", path=str(priv_key)
                )
            address = derive_validator_address(parse_key_document(priv_key.read_bytes(), PRIV_VALIDATOR_KEY_FILE))
            output = self._run_display(OP_SHOW_VALIDATOR, key_dir)

        print(output)
        print(f"Validator Address: {format_validator_address(address)}")
        return output
