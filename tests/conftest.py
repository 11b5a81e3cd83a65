"""Shared fixtures: a ceremony root on tmp_path and a scriptable fake toolkit."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Callable

import pytest

from ceremony.config import CeremonyConfig
from ceremony.crypto.checksum import sha256_file, write_sidecar
from ceremony.errors import ToolkitError, ToolkitTimeout
from ceremony.persistence.chain_store import ChainStore
from ceremony.toolkit.base import VerifyOutcome


CIRCUIT = "giftcard_merkle"
KEY_SIZE = 2048
MIN_CONTRIBUTION_SIZE = 1024

VALID_MAGIC = b"FAKEZKEY"
INVALID_MAGIC = b"BADZKEY!"
SLOW_MAGIC = b"SLOWZKEY"


def key_bytes(magic: bytes = VALID_MAGIC, tag: str = "", size: int = KEY_SIZE) -> bytes:
    body = magic + tag.encode("utf-8") + b"\n"
    return body + b"\0" * max(size - len(body), 0)


class FakeToolkit:
    """In-process stand-in for snarkjs.

    A key verifies iff its content starts with VALID_MAGIC; keys starting
    with SLOW_MAGIC time out. Every call is recorded in ``calls``.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.usable = True
        self.setup_magic = VALID_MAGIC
        self.beacon_magic = VALID_MAGIC
        self.fail_export = False

    def available(self) -> tuple[bool, str]:
        return (True, "fake-snarkjs") if self.usable else (False, "fake-snarkjs not installed")

    def setup(self, constraints: Path, params: Path, output: Path, timeout: float) -> None:
        self.calls.append(("setup", output.name))
        output.write_bytes(key_bytes(self.setup_magic, "setup"))

    def contribute(
        self,
        predecessor: Path,
        output: Path,
        entropy: str,
        label: str,
        timeout: float,
    ) -> None:
        self.calls.append(("contribute", output.name))
        mix = hashlib.sha256(predecessor.read_bytes() + entropy.encode()).hexdigest()
        output.write_bytes(key_bytes(VALID_MAGIC, f"{label}:{mix}"))

    def verify(self, constraints: Path, params: Path, key: Path, timeout: float) -> VerifyOutcome:
        self.calls.append(("verify", key.name))
        head = key.read_bytes()[: len(VALID_MAGIC)]
        if head == SLOW_MAGIC:
            raise ToolkitTimeout(f"zkey verify timed out after {timeout:.0f}s: {key.name}")
        if head == VALID_MAGIC:
            return VerifyOutcome(ok=True, exit_code=0)
        return VerifyOutcome(ok=False, exit_code=1, detail="[ERROR] snarkJS: Invalid key")

    def beacon(
        self,
        predecessor: Path,
        output: Path,
        beacon_hash: str,
        iterations: int,
        timeout: float,
    ) -> None:
        self.calls.append(("beacon", output.name))
        output.write_bytes(key_bytes(self.beacon_magic, f"beacon:{beacon_hash}:{iterations}"))

    def export_verification_key(self, key: Path, output: Path, timeout: float) -> None:
        self.calls.append(("export", output.name))
        if self.fail_export:
            raise ToolkitError("zkey export verificationkey failed", exit_code=1)
        output.write_text(json.dumps({"protocol": "groth16", "source": key.name}), encoding="utf-8")

    def operations(self) -> list[str]:
        return [op for op, _ in self.calls]


def write_parameters(root: Path) -> dict[str, dict[str, object]]:
    """Create constraint system and universal parameter files; return pinned config."""
    r1cs = root / "circuits" / "build" / f"{CIRCUIT}.r1cs"
    ptau = root / "circuits" / "ptau" / "powersOfTau28_hez_final_18.ptau"
    r1cs.parent.mkdir(parents=True)
    ptau.parent.mkdir(parents=True)
    r1cs.write_bytes(b"r1cs" + bytes(range(256)) * 8)
    ptau.write_bytes(b"ptau" + bytes(range(256)) * 16)
    return {
        "constraints": {
            "path": r1cs.relative_to(root).as_posix(),
            "sha256": sha256_file(r1cs),
            "min_size": 1000,
        },
        "universal_params": {
            "path": ptau.relative_to(root).as_posix(),
            "sha256": sha256_file(ptau),
            "min_size": 4096,
        },
    }


def config_data(pinned: dict[str, dict[str, object]]) -> dict[str, object]:
    return {
        "circuit_name": CIRCUIT,
        "pinned_parameters": pinned,
        "layout": {
            "chain_dir": "ceremony/output",
            "pending_dir": "ceremony/contrib",
            "audit_dir": "ceremony/logs",
        },
        "min_contribution_size": MIN_CONTRIBUTION_SIZE,
        "timeouts": {"verify_seconds": 5, "operation_seconds": 10},
        "beacon": {
            "endpoint": "https://beacon.test/public/{round}",
            "iterations": 10,
            "retry": {"max_attempts": 3, "delay_seconds": 0.0},
        },
    }


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("CEREMONY_ROOT", "SNARKJS_BIN", "DRAND_ENDPOINT", "CEREMONY_VERIFY_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def ceremony_root(tmp_path: Path) -> Path:
    root = tmp_path / "ceremony_root"
    root.mkdir()
    return root


@pytest.fixture
def config(ceremony_root: Path) -> CeremonyConfig:
    return CeremonyConfig.from_dict(config_data(write_parameters(ceremony_root)), root=ceremony_root)


@pytest.fixture
def store(config: CeremonyConfig) -> ChainStore:
    store = ChainStore(config)
    store.ensure_layout()
    return store


@pytest.fixture
def toolkit() -> FakeToolkit:
    return FakeToolkit()


@pytest.fixture
def make_key() -> Callable[..., Path]:
    """Write a fake key file: ``make_key(path, valid=True, size=KEY_SIZE, slow=False)``."""
    def _make(path: Path, valid: bool = True, size: int = KEY_SIZE, slow: bool = False) -> Path:
        magic = SLOW_MAGIC if slow else (VALID_MAGIC if valid else INVALID_MAGIC)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(key_bytes(magic, path.name, size))
        return path
    return _make


@pytest.fixture
def seed_chain(store: ChainStore, make_key: Callable[..., Path]) -> Callable[[int], None]:
    """Create chain entries 0..n-1 with sidecars."""
    def _seed(count: int) -> None:
        for index in range(count):
            write_sidecar(make_key(store.entry_path(index)))
    return _seed
