"""Independent chain verifier — third-party audit of the ceremony artifacts.

Six ordered passes, each producing a pass/fail verdict with detail:

1. Environment: toolkit available, chain directory present.
2. Pinned parameter integrity, recomputed from the files on disk.
3. Constraint system basic integrity.
4. Every chain entry re-verified against the pinned parameters, in
   chain order, with sidecar checksum cross-checks; the final key and
   its finalization record when present.
5. Manifest self-checksum plus per-line comparison with the artifacts.
6. Adversarial resilience: at least one contribution beyond the base
   key (warning only).

If pass 1 or 2 fails the remaining passes are skipped: nothing
downstream can be trusted against missing tooling or altered inputs.

The verifier never writes to the chain or pending directories and takes
nothing from the aggregator's audit log on trust.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from ceremony.beacon.drand import derive_beacon_hash
from ceremony.crypto.checksum import read_sidecar, sha256_file
from ceremony.crypto.manifest import check_manifest
from ceremony.engine.params import check_parameter
from ceremony.errors import ParameterIntegrityError, ToolkitError, ToolkitTimeout
from ceremony.models.contribution import BASE_INDEX, ChainEntry
from ceremony.models.outcome import PassResult, VerificationReport
from ceremony.persistence.chain_store import ChainStore
from ceremony.persistence.event_log import EventKind, EventLog
from ceremony.toolkit.base import ProvingKeyToolkit


logger = logging.getLogger(__name__)

PASS_NAMES = (
    "Environment",
    "Pinned parameter integrity",
    "Constraint system integrity",
    "Chain entries",
    "Manifest",
    "Adversarial resilience",
)

# Passes whose failure makes every later pass meaningless.
_HALTING_PASSES = {1, 2}


class ChainVerifier:
    """Re-verifies the whole ceremony from the artifacts on disk.

    Usage:
        verifier = ChainVerifier(store, toolkit)
        report = verifier.run()
        print("\\n".join(report.summary_lines()))
    """

    def __init__(
        self,
        store: ChainStore,
        toolkit: ProvingKeyToolkit,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self._store = store
        self._config = store.config
        self._toolkit = toolkit
        self._event_log = event_log if event_log is not None else EventLog(actor_id="verify")

    def run(self) -> VerificationReport:
        checks: list[Callable[[PassResult], None]] = [
            self._check_environment,
            self._check_parameters,
            self._check_constraints,
            self._check_entries,
            self._check_manifest,
            self._check_resilience,
        ]
        report = VerificationReport()
        for number, (name, check) in enumerate(zip(PASS_NAMES, checks), start=1):
            result = PassResult(number=number, name=name)
            if report.halted:
                result.skipped = True
                result.note("not run: an earlier pass halted verification")
            else:
                logger.info("PHASE %d: %s", number, name)
                check(result)
                if not result.passed and number in _HALTING_PASSES:
                    report.halted = True
                    logger.critical("PHASE %d failed - remaining passes skipped", number)
            report.passes.append(result)
            self._record(result)

        if report.ok:
            logger.info("VERIFICATION STATUS: PASSED")
        else:
            logger.error("VERIFICATION STATUS: FAILED (%d error(s))", report.error_count)
        return report

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def _check_environment(self, result: PassResult) -> None:
        usable, detail = self._toolkit.available()
        if usable:
            result.note(f"toolkit: {detail}")
        else:
            result.fail(f"toolkit unavailable: {detail}")

        if self._store.chain_dir.is_dir():
            result.note(f"chain directory: {self._store.chain_dir}")
        else:
            result.fail(f"chain directory missing: {self._store.chain_dir}")

        for param in self._config.pinned_parameters:
            if not param.path.parent.is_dir():
                result.fail(f"parameter directory missing: {param.path.parent}")

        if not self._store.pending_dir.is_dir():
            result.warn(f"pending directory missing: {self._store.pending_dir}")

    def _check_parameters(self, result: PassResult) -> None:
        for param in self._config.pinned_parameters:
            try:
                check = check_parameter(param)
            except ParameterIntegrityError as exc:
                logger.critical("SECURITY_BREACH: %s", exc)
                result.fail(str(exc))
                continue
            result.note(f"{param.name}: {check.checksum} ({check.size} bytes)")

    def _check_constraints(self, result: PassResult) -> None:
        constraints = self._config.constraints
        if not constraints.path.is_file():
            result.fail(f"constraint system missing: {constraints.path}")
            return
        size = constraints.path.stat().st_size
        if size < constraints.min_size:
            result.fail(f"constraint system too small: {size} bytes (minimum {constraints.min_size})")
        actual = sha256_file(constraints.path)
        if actual != constraints.sha256:
            result.fail(f"constraint system checksum mismatch: expected {constraints.sha256}, got {actual}")
        if result.passed:
            result.note(f"{constraints.path.name}: {size} bytes, {actual}")

    def _check_entries(self, result: PassResult) -> None:
        entries = self._store.entries()
        if not entries:
            result.fail(f"no chain entries in {self._store.chain_dir}")
        else:
            missing = self._store.missing_indices()
            if missing:
                result.fail(f"chain is not contiguous from {BASE_INDEX:04d}: missing {missing}")

        for entry in entries:
            self._check_entry(entry, result)

        final = self._store.final_entry()
        if final is not None:
            self._check_entry(final, result)
            self._check_finalization(final, entries, result)

        vkey = self._store.verification_key_path
        if vkey.is_file():
            self._cross_check_sidecar(vkey.name, vkey, result)
        elif final is not None:
            result.fail(f"chain is finalized but {vkey.name} is missing")

        for stray in self._store.stray_keys():
            result.warn(f"unrecognised key file in chain directory: {stray.name}")

        for pending in self._store.pending_contributions():
            line = f"pending: {pending.filename} ({pending.size} bytes)"
            if pending.size < self._config.min_contribution_size:
                line += " - below minimum size"
            result.note(line)

    def _check_manifest(self, result: PassResult) -> None:
        path = self._store.manifest_path
        if not path.is_file():
            result.warn(f"manifest not found: {path}")
            return

        check = check_manifest(path.read_text(encoding="utf-8"))
        for error in check.errors:
            result.fail(error)
        if check.expected is not None and check.computed == check.expected:
            result.note(f"self-checksum: {check.computed}")

        listed: set[str] = set()
        for line in check.entries:
            listed.add(line.path)
            artifact = self._store.resolve(line.path)
            if not artifact.is_file():
                result.fail(f"{line.label} {line.path}: listed but missing on disk")
                continue
            actual = sha256_file(artifact)
            if actual != line.checksum:
                result.fail(f"{line.label} {line.path}: manifest {line.checksum} != actual {actual}")

        for line in self._store.manifest_entries():
            if line.path not in listed:
                result.fail(f"{line.label} {line.path}: present on disk but not listed in manifest")

    def _check_resilience(self, result: PassResult) -> None:
        contributions = max(len(self._store.entries()) - 1, 0)
        result.note(f"contributions beyond the base key: {contributions}")
        if contributions == 0:
            result.warn(
                "no independent contributions: the security assumption "
                "requires at least one honest participant"
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_entry(self, entry: ChainEntry, result: PassResult) -> None:
        name = entry.path.name
        size = entry.path.stat().st_size
        if size < self._config.min_contribution_size:
            result.fail(f"{name}: too small ({size} bytes)")
            return

        try:
            outcome = self._toolkit.verify(
                self._config.constraints.path,
                self._config.universal_params.path,
                entry.path,
                timeout=self._config.verify_timeout,
            )
        except ToolkitTimeout:
            result.fail(f"{name}: verification timed out after {self._config.verify_timeout:.0f}s")
            return
        except ToolkitError as exc:
            result.fail(f"{name}: verification could not run: {exc}")
            return
        if not outcome.ok:
            result.fail(f"{name}: verification failed (exit code: {outcome.exit_code})")
            return

        self._cross_check_sidecar(name, entry.path, result)

    def _cross_check_sidecar(self, name: str, path: Path, result: PassResult) -> None:
        recorded = read_sidecar(path)
        actual = sha256_file(path)
        if recorded is None:
            result.warn(f"{name}: no checksum sidecar")
            result.note(f"{name}: OK ({actual})")
        elif recorded != actual:
            result.fail(f"{name}: checksum mismatch: sidecar {recorded}, actual {actual}")
        else:
            result.note(f"{name}: OK ({actual})")

    def _check_finalization(
        self,
        final: ChainEntry,
        entries: list[ChainEntry],
        result: PassResult,
    ) -> None:
        try:
            record = self._store.finalization_record()
        except (ValueError, KeyError) as exc:
            result.fail(f"finalization record unreadable: {exc}")
            return
        if record is None:
            result.warn(f"no finalization record at {self._store.finalization_record_path.name}")
            return

        failures = 0
        recomputed = derive_beacon_hash(record.randomness)
        if recomputed != record.beacon_hash:
            failures += 1
            result.fail(
                f"beacon hash does not match round {record.round_id} randomness: "
                f"recorded {record.beacon_hash}, recomputed {recomputed}"
            )
        actual = sha256_file(final.path)
        if actual != record.final_checksum:
            failures += 1
            result.fail(f"final key checksum {actual} != finalization record {record.final_checksum}")
        if entries and record.predecessor != entries[-1].path.name:
            failures += 1
            result.fail(
                f"final key predecessor {record.predecessor} is not the chain tip {entries[-1].path.name}"
            )
        if not failures:
            result.note(f"finalized with beacon round {record.round_id} ({record.iterations} iterations)")

    def _record(self, result: PassResult) -> None:
        self._event_log.record(
            EventKind.VERIFICATION_PASS,
            number=result.number,
            name=result.name,
            passed=result.passed,
            skipped=result.skipped,
            details=list(result.details),
            warnings=list(result.warnings),
        )
