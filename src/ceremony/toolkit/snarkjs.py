"""snarkjs adapter — drives the Groth16 phase-2 commands as subprocesses.

Commands used:
    snarkjs groth16 setup <r1cs> <ptau> <out>
    snarkjs zkey contribute <in> <out> --name=<label> -e=<entropy>
    snarkjs zkey verify <r1cs> <ptau> <key>
    snarkjs zkey beacon <in> <out> <beacon hash> <iterations>
    snarkjs zkey export verificationkey <key> <out>

Every call is bounded by a timeout; an expired timeout kills the child
and raises ToolkitTimeout.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path

from ceremony.errors import ToolkitError, ToolkitTimeout
from ceremony.toolkit.base import VerifyOutcome


logger = logging.getLogger(__name__)

_DETAIL_LIMIT = 2000


class SnarkjsToolkit:
    """ProvingKeyToolkit backed by the ``snarkjs`` CLI."""

    def __init__(self, executable: str = "snarkjs") -> None:
        self._executable = executable

    def available(self) -> tuple[bool, str]:
        resolved = shutil.which(self._executable)
        if resolved is None:
            return False, f"{self._executable} not found - install with: npm install -g snarkjs"
        return True, resolved

    def setup(self, constraints: Path, params: Path, output: Path, timeout: float) -> None:
        self._run(
            ["groth16", "setup", str(constraints), str(params), str(output)],
            timeout,
            desc="groth16 setup",
        )

    def contribute(
        self,
        predecessor: Path,
        output: Path,
        entropy: str,
        label: str,
        timeout: float,
    ) -> None:
        self._run(
            [
                "zkey", "contribute", str(predecessor), str(output),
                f"--name={label}", f"-e={entropy}",
            ],
            timeout,
            desc="zkey contribute",
            redact=entropy,
        )

    def verify(self, constraints: Path, params: Path, key: Path, timeout: float) -> VerifyOutcome:
        try:
            result = self._invoke(
                ["zkey", "verify", str(constraints), str(params), str(key)],
                timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise ToolkitTimeout(
                f"zkey verify timed out after {timeout:.0f}s: {key.name}"
            ) from exc
        except OSError as exc:
            raise ToolkitError(f"zkey verify could not start: {exc}") from exc
        detail = _tail(result.stdout + result.stderr)
        # snarkjs prints "[ERROR]" and still exits 0 on some verify failures
        ok = result.returncode == 0 and "[ERROR]" not in result.stdout
        return VerifyOutcome(ok=ok, exit_code=result.returncode, detail=detail)

    def beacon(
        self,
        predecessor: Path,
        output: Path,
        beacon_hash: str,
        iterations: int,
        timeout: float,
    ) -> None:
        self._run(
            [
                "zkey", "beacon", str(predecessor), str(output),
                beacon_hash, str(iterations),
            ],
            timeout,
            desc="zkey beacon",
        )

    def export_verification_key(self, key: Path, output: Path, timeout: float) -> None:
        self._run(
            ["zkey", "export", "verificationkey", str(key), str(output)],
            timeout,
            desc="zkey export verificationkey",
        )

    def _invoke(self, args: list[str], timeout: float) -> subprocess.CompletedProcess:
        return subprocess.run(
            [self._executable, *args],
            capture_output=True,
            text=True,
            timeout=timeout,
        )

    def _run(self, args: list[str], timeout: float, desc: str, redact: str = "") -> None:
        shown = " ".join(a.replace(redact, "<redacted>") if redact else a for a in args)
        logger.info("TOOLKIT: %s %s", self._executable, shown)
        try:
            result = self._invoke(args, timeout)
        except subprocess.TimeoutExpired as exc:
            raise ToolkitTimeout(f"{desc} timed out after {timeout:.0f}s") from exc
        except OSError as exc:
            raise ToolkitError(f"{desc} could not start: {exc}") from exc
        if result.returncode != 0:
            detail = _tail(result.stdout + result.stderr)
            logger.error("TOOLKIT_ERROR: %s failed (exit code %d)", desc, result.returncode)
            raise ToolkitError(
                f"{desc} failed (exit code {result.returncode})",
                exit_code=result.returncode,
                detail=detail,
            )


def _tail(text: str) -> str:
    text = text.strip()
    return text[-_DETAIL_LIMIT:]
