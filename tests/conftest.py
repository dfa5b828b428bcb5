#!/usr/bin/env python3
"""
Shared fixtures: a recording container runtime and a scratch deployment repository.
"""

from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from grnctl.runtime import ContainerRuntime  # noqa: E402
from grnctl.settings import Environment, NodeType, load_settings  # noqa: E402

VALIDATOR_ADDRESS_HEX = "5A4C3E2B1D0F9E8D7C6B5A4938271605F4E3D2C1"
VALIDATOR_PUBKEY = "bXktdGVzdC12YWxpZGF0b3ItcHVia2V5LXZhbHVlMDA="
NODE_ID = "0f3c9a7e2b14d5c6a8e90b1f2d3c4e5f6a7b8c9d"

PRIV_VALIDATOR_KEY_DOC = {
    "address": VALIDATOR_ADDRESS_HEX,
    "pub_key": {"type": "tendermint/PubKeyEd25519", "value": VALIDATOR_PUBKEY},
    "priv_key": {"type": "tendermint/PrivKeyEd25519", "value": "cHJpdmF0ZS1rZXktbWF0ZXJpYWw="},
}
NODE_KEY_DOC = {
    "priv_key": {"type": "tendermint/PrivKeyEd25519", "value": "bm9kZS1rZXktbWF0ZXJpYWw="},
}


class FakeRuntime(ContainerRuntime):
    """
    Records every command instead of executing it.

    failures: list of token tuples; a command containing all tokens returns rc 1.
    outputs: token -> stdout for commands containing the token.
    networks: names reported as existing by `network inspect`; `network create` adds to it.
    """

    def __init__(self, failures=None, outputs=None, networks=None, failure_output="", **kwargs):
        kwargs.setdefault("compose_cmd", ["docker", "compose"])
        super().__init__(**kwargs)
        self.calls: list[list[str]] = []
        self.failures = [tuple(f) for f in (failures or [])]
        self.outputs = dict(outputs or {})
        self.networks = set(networks or [])
        self.failure_output = failure_output
        self.key_documents = {
            "node_key.json": json.dumps(NODE_KEY_DOC).encode(),
            "priv_validator_key.json": json.dumps(PRIV_VALIDATOR_KEY_DOC).encode(),
        }

    def run(self, cmd, *, capture_output=True, mutates=False):
        cmd = list(cmd)
        self.calls.append(cmd)
        if self.dry_run and mutates:
            return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

        for tokens in self.failures:
            if all(token in cmd for token in tokens):
                stderr = self.failure_output or f"simulated failure: {' '.join(tokens)}"
                return subprocess.CompletedProcess(cmd, 1, stdout="", stderr=stderr)

        if cmd[1:3] == ["network", "inspect"]:
            return subprocess.CompletedProcess(cmd, 0 if cmd[3] in self.networks else 1, stdout="", stderr="")
        if cmd[1:3] == ["network", "create"]:
            self.networks.add(cmd[3])
        if len(cmd) > 3 and cmd[1] == "cp":
            filename = cmd[2].rsplit("/", 1)[-1]
            Path(cmd[3]).write_bytes(self.key_documents[filename])

        stdout = ""
        for token, output in self.outputs.items():
            if token in cmd:
                stdout = output
        return subprocess.CompletedProcess(cmd, 0, stdout=stdout, stderr="")

    def calls_with(self, *tokens: str) -> list[list[str]]:
        return [c for c in self.calls if all(t in c for t in tokens)]

    def index_of(self, *tokens: str, start: int = 0) -> int:
        for i, call in enumerate(self.calls[start:], start):
            if all(t in call for t in tokens):
                return i
        raise AssertionError(f"No call with {tokens} in {self.calls}")


def build_repo(root: Path, environment: str = "test", local_override: bool = False) -> Path:
    env_dir = root / "config" / "env" / environment
    env_dir.mkdir(parents=True)
    (env_dir / ".env.common").write_text("CHAIN_ID=graphene-test\n")
    (env_dir / ".env.validator").write_text("MONIKER=validator\n")
    (env_dir / ".env.sentry").write_text("MONIKER=sentry\n")
    if local_override:
        (env_dir / ".env.local").write_text("MONIKER=mine\n")

    services = root / "services"
    services.mkdir()
    (services / "docker.compose.validator.yml").write_text("services: {}\n")
    (services / "docker.compose.sentry.yml").write_text("services: {}\n")
    return root


def make_settings(root: Path, environment: str = "test", node_type: str = "validator", environ=None, **options):
    return load_settings(
        root,
        Environment.parse(environment),
        NodeType.parse(node_type),
        environ or {},
        **options,
    )


@pytest.fixture
def repo(tmp_path) -> Path:
    return build_repo(tmp_path)


@pytest.fixture
def settings(repo):
    return make_settings(repo)
