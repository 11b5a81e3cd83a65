"""Proving-key toolkit contract.

The toolkit is the unit of cryptographic trust: the ceremony never
inspects key contents itself. Every operation is a pure function of its
inputs except ``contribute``, which mixes in caller-supplied entropy.
Implementations write their output to ``output`` and raise ToolkitError
(or ToolkitTimeout) on failure. ``verify`` reports rejection through
its return value instead of raising, except on timeout.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class VerifyOutcome:
    """Result of one cryptographic verification call."""
    ok: bool
    exit_code: Optional[int] = None
    detail: str = ""

    def __bool__(self) -> bool:
        return self.ok


@runtime_checkable
class ProvingKeyToolkit(Protocol):

    def available(self) -> tuple[bool, str]:
        """Return (usable, detail) for the environment check."""
        ...

    def setup(self, constraints: Path, params: Path, output: Path, timeout: float) -> None:
        ...

    def contribute(
        self,
        predecessor: Path,
        output: Path,
        entropy: str,
        label: str,
        timeout: float,
    ) -> None:
        ...

    def verify(self, constraints: Path, params: Path, key: Path, timeout: float) -> VerifyOutcome:
        ...

    def beacon(
        self,
        predecessor: Path,
        output: Path,
        beacon_hash: str,
        iterations: int,
        timeout: float,
    ) -> None:
        ...

    def export_verification_key(self, key: Path, output: Path, timeout: float) -> None:
        ...
