"""Ceremony configuration — pinned parameters, layout, timeouts, beacon policy.

Static values live in ``config/ceremony.json``. A handful of operational
settings may be overridden from the environment (or a ``.env`` file at
the ceremony root):

    CEREMONY_ROOT            root directory all relative paths resolve against
    SNARKJS_BIN              toolkit executable (default: snarkjs)
    DRAND_ENDPOINT           beacon URL template containing ``{round}``
    CEREMONY_VERIFY_TIMEOUT  per-verification timeout in seconds

The reference checksums are never overridable from the environment.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from ceremony.errors import ConfigurationError


CONFIG_FILENAME = "ceremony.json"
DEFAULT_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"

_SHA256_RE = re.compile(r"^[0-9a-f]{64}$")


@dataclass(frozen=True)
class PinnedParameter:
    """An immutable ceremony input identified by a reference checksum."""
    name: str
    path: Path
    sha256: str
    min_size: int


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry for the randomness fetch.

    ``delays()`` yields the pause before each retry; the number of
    attempts is ``max_attempts`` in total, never more.
    """
    max_attempts: int = 5
    delay_seconds: float = 2.0
    backoff: float = 1.0
    connect_timeout: float = 10.0
    overall_timeout: float = 20.0

    def delays(self) -> list[float]:
        return [
            self.delay_seconds * (self.backoff ** attempt)
            for attempt in range(self.max_attempts - 1)
        ]


@dataclass(frozen=True)
class CeremonyConfig:
    """Everything a ceremony component needs to locate and judge artifacts."""
    root: Path
    circuit_name: str
    constraints: PinnedParameter
    universal_params: PinnedParameter
    chain_dir: Path
    pending_dir: Path
    audit_dir: Path
    manifest_name: str = "checksum_manifest.txt"
    min_contribution_size: int = 100_000
    verify_timeout: float = 300.0
    operation_timeout: float = 3600.0
    beacon_endpoint: str = "https://api.drand.sh/public/{round}"
    beacon_iterations: int = 10
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    snarkjs_bin: str = "snarkjs"

    @property
    def pinned_parameters(self) -> tuple[PinnedParameter, PinnedParameter]:
        return (self.constraints, self.universal_params)

    @property
    def manifest_path(self) -> Path:
        return self.chain_dir / self.manifest_name

    @classmethod
    def from_config_dir(
        cls,
        config_dir: Path = DEFAULT_CONFIG_DIR,
        root: Optional[Path] = None,
    ) -> CeremonyConfig:
        """Load ``ceremony.json`` from a config directory.

        Relative paths resolve against ``root``, then ``CEREMONY_ROOT``,
        then the parent of ``config_dir``.
        """
        path = config_dir / CONFIG_FILENAME
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        try:
            with path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Malformed config file {path}: {exc}") from exc

        if root is None:
            load_dotenv(config_dir.parent / ".env")
            env_root = os.getenv("CEREMONY_ROOT")
            root = Path(env_root) if env_root else config_dir.parent
        else:
            load_dotenv(root / ".env")
        return cls.from_dict(data, root=root.resolve())

    @classmethod
    def from_dict(cls, data: dict[str, Any], root: Path) -> CeremonyConfig:
        try:
            circuit_name = data["circuit_name"]
            pinned = data["pinned_parameters"]
            layout = data["layout"]
            constraints = _pinned("constraints", pinned["constraints"], root)
            universal = _pinned("universal_params", pinned["universal_params"], root)
        except KeyError as exc:
            raise ConfigurationError(f"Missing config key: {exc}") from exc

        if not re.fullmatch(r"[A-Za-z0-9_]+", circuit_name or ""):
            raise ConfigurationError(f"Invalid circuit name: {circuit_name!r}")

        timeouts = data.get("timeouts", {})
        beacon = data.get("beacon", {})
        retry_data = beacon.get("retry", {})

        verify_timeout = float(
            os.getenv("CEREMONY_VERIFY_TIMEOUT") or timeouts.get("verify_seconds", 300)
        )
        retry = RetryPolicy(
            max_attempts=int(retry_data.get("max_attempts", 5)),
            delay_seconds=float(retry_data.get("delay_seconds", 2.0)),
            backoff=float(retry_data.get("backoff", 1.0)),
            connect_timeout=float(retry_data.get("connect_timeout", 10.0)),
            overall_timeout=float(retry_data.get("overall_timeout", 20.0)),
        )
        endpoint = os.getenv("DRAND_ENDPOINT") or beacon.get(
            "endpoint", "https://api.drand.sh/public/{round}"
        )

        config = cls(
            root=root,
            circuit_name=circuit_name,
            constraints=constraints,
            universal_params=universal,
            chain_dir=root / layout.get("chain_dir", "ceremony/output"),
            pending_dir=root / layout.get("pending_dir", "ceremony/contrib"),
            audit_dir=root / layout.get("audit_dir", "ceremony/logs"),
            manifest_name=layout.get("manifest_name", "checksum_manifest.txt"),
            min_contribution_size=int(data.get("min_contribution_size", 100_000)),
            verify_timeout=verify_timeout,
            operation_timeout=float(timeouts.get("operation_seconds", 3600)),
            beacon_endpoint=endpoint,
            beacon_iterations=int(beacon.get("iterations", 10)),
            retry=retry,
            snarkjs_bin=os.getenv("SNARKJS_BIN") or data.get("snarkjs_bin", "snarkjs"),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Fail closed on values that would weaken the protocol."""
        errors: list[str] = []
        for param in self.pinned_parameters:
            if not _SHA256_RE.match(param.sha256):
                errors.append(f"{param.name}.sha256 must be 64 lowercase hex characters")
            if param.min_size <= 0:
                errors.append(f"{param.name}.min_size must be > 0")
        if self.min_contribution_size <= 0:
            errors.append("min_contribution_size must be > 0")
        if self.verify_timeout <= 0 or self.operation_timeout <= 0:
            errors.append("timeouts must be > 0")
        if self.beacon_iterations <= 0:
            errors.append("beacon.iterations must be > 0")
        if "{round}" not in self.beacon_endpoint:
            errors.append("beacon.endpoint must contain a {round} placeholder")
        if self.retry.max_attempts < 1:
            errors.append("beacon.retry.max_attempts must be >= 1")
        if errors:
            raise ConfigurationError("; ".join(errors))


def _pinned(name: str, data: dict[str, Any], root: Path) -> PinnedParameter:
    return PinnedParameter(
        name=name,
        path=root / data["path"],
        sha256=str(data["sha256"]).lower(),
        min_size=int(data["min_size"]),
    )
