"""Chain aggregator — admits untrusted contributions into the canonical chain.

Pipeline for one run:
1. Pinned parameters are verified (fail-closed; precedes everything).
2. The base key (index 0) is synthesized and self-validated if absent,
   or re-validated if present.
3. Pending contributions are enumerated in protocol order
   (see ceremony.models.contribution.compare_contribution_ids).
4. Each is assigned the next chain index and verified independently
   against the pinned parameters, under a wall-clock timeout.
5. Accepted contributions are copied, checksummed, cross-checked,
   removed from the pool and recorded. Rejections are recorded and
   skipped; one bad contribution never blocks the rest of the batch.
6. The manifest is regenerated over the whole chain.
7. The run reports ADVANCE / NEEDS_REVIEW / NO_OP.

Transitions are fail-closed: any transition not listed is a bug and
raises TransitionError.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from ceremony.crypto.checksum import read_sidecar, sha256_file, write_sidecar
from ceremony.engine.params import verify_pinned_parameters
from ceremony.errors import (
    BaseKeyCorruptedError,
    CeremonyError,
    IntegrityError,
    ParameterIntegrityError,
    ToolkitError,
    ToolkitTimeout,
)
from ceremony.models.contribution import NameKind, PendingContribution, entry_filename
from ceremony.models.outcome import AggregationReport
from ceremony.models.states import AggregatorState
from ceremony.persistence.chain_store import ChainStore
from ceremony.persistence.event_log import EventKind, EventLog
from ceremony.toolkit.base import ProvingKeyToolkit


logger = logging.getLogger(__name__)


_TRANSITIONS: dict[AggregatorState, set[AggregatorState]] = {
    AggregatorState.INIT: {AggregatorState.PARAMS_VERIFIED},
    AggregatorState.PARAMS_VERIFIED: {AggregatorState.BASE_KEY_READY},
    AggregatorState.BASE_KEY_READY: {AggregatorState.SCANNING},
    AggregatorState.SCANNING: {
        AggregatorState.VALIDATING,
        AggregatorState.MANIFEST_REGENERATED,
    },
    AggregatorState.VALIDATING: {
        AggregatorState.VALIDATING,
        AggregatorState.INTEGRATING,
        AggregatorState.MANIFEST_REGENERATED,
    },
    AggregatorState.INTEGRATING: {
        AggregatorState.VALIDATING,
        AggregatorState.MANIFEST_REGENERATED,
    },
    AggregatorState.MANIFEST_REGENERATED: {AggregatorState.DONE},
    AggregatorState.DONE: set(),
    AggregatorState.HALTED: set(),
}

_HALTABLE = {
    s for s in AggregatorState
    if s not in (AggregatorState.DONE, AggregatorState.HALTED)
}


class TransitionError(Exception):
    """Raised when an aggregator state transition is not allowed."""


class ChainAggregator:
    """Runs one aggregation pass over the pending pool.

    Usage:
        aggregator = ChainAggregator(store, toolkit, event_log=log)
        report = aggregator.run()
        sys.exit(report.outcome.exit_code)
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
        self._event_log = event_log if event_log is not None else EventLog(actor_id="aggregate")
        self._state = AggregatorState.INIT

    @property
    def state(self) -> AggregatorState:
        return self._state

    def run(self) -> AggregationReport:
        """Execute the full pipeline.

        Raises ParameterIntegrityError, BaseKeyCorruptedError,
        IntegrityError or ToolkitError (from base key setup) on fatal
        conditions, after moving to HALTED.
        """
        report = AggregationReport(state=self._state)
        try:
            self._verify_parameters()
            self._store.ensure_layout()
            report.base_key_created = self._ensure_base_key()
            self._check_contiguity()
            self._transition(AggregatorState.BASE_KEY_READY)

            self._transition(AggregatorState.SCANNING)
            logger.info("PROCESSING: Scanning for contributions with deterministic ordering")
            report.contributions = self._store.pending_contributions()
            logger.info("SCAN_COMPLETE: Found %d potential contribution files", report.found)
            for pending in report.contributions:
                self._event_log.record(
                    EventKind.CONTRIBUTION_DISCOVERED,
                    filename=pending.filename,
                    size=pending.size,
                    name_kind=pending.name_kind.value,
                )

            for pending in report.contributions:
                self._process(pending)

            report.manifest_path = self._store.write_manifest()
            self._transition(AggregatorState.MANIFEST_REGENERATED)
            self._event_log.record(
                EventKind.MANIFEST_REGENERATED,
                path=report.manifest_path.name,
                entries=len(self._store.entries()),
            )
            logger.info("MANIFEST_SUCCESS: Generated manifest at %s", report.manifest_path)
        except CeremonyError:
            self._halt()
            report.state = self._state
            raise

        tip = self._store.tip()
        report.tip_index = tip.index if tip else None
        self._transition(AggregatorState.DONE)
        report.state = self._state
        self._event_log.record(
            EventKind.RUN_COMPLETED,
            processed=len(report.accepted),
            rejected=len(report.rejected),
            found=report.found,
            outcome=report.outcome.value,
        )
        self._log_summary(report)
        return report

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _verify_parameters(self) -> None:
        try:
            checks = verify_pinned_parameters(self._config.pinned_parameters)
        except ParameterIntegrityError as exc:
            self._event_log.record(EventKind.PARAMETERS_REJECTED, reason=str(exc))
            logger.critical(
                "CRITICAL_SECURITY: Pinned parameter integrity check failed - "
                "ceremony terminated for security"
            )
            raise
        self._event_log.record(
            EventKind.PARAMETERS_VERIFIED,
            checksums={c.parameter.name: c.checksum for c in checks},
        )
        self._transition(AggregatorState.PARAMS_VERIFIED)

    def _ensure_base_key(self) -> bool:
        """Make sure index 0 exists and is valid. Returns True if synthesized."""
        base = self._store.base_key_path
        if not base.exists():
            logger.info("SETUP: Generating initial key: %s", base.name)
            try:
                self._toolkit.setup(
                    self._config.constraints.path,
                    self._config.universal_params.path,
                    base,
                    timeout=self._config.operation_timeout,
                )
            except ToolkitError:
                self._store.remove_entry(base)
                raise
            write_sidecar(base)
            reason = self._validate_key(base, role="initial key")
            if reason is not None:
                self._store.remove_entry(base)
                self._event_log.record(EventKind.BASE_KEY_REJECTED, filename=base.name, reason=reason)
                raise BaseKeyCorruptedError(
                    f"New initial key failed validation - corrupted generation: {reason}"
                )
            checksum = read_sidecar(base)
            self._event_log.record(EventKind.BASE_KEY_CREATED, filename=base.name, checksum=checksum)
            logger.info("SETUP_SUCCESS: Initial key generated and validated: %s", base.name)
            return True

        logger.info("INIT: Validating existing initial key: %s", base.name)
        reason = self._validate_key(base, role="initial key")
        if reason is None:
            recorded = read_sidecar(base)
            if recorded is not None and recorded != sha256_file(base):
                reason = f"checksum mismatch against {base.name}.sha256"
        if reason is not None:
            self._event_log.record(EventKind.BASE_KEY_REJECTED, filename=base.name, reason=reason)
            raise BaseKeyCorruptedError(
                f"Existing initial key validation failed - corruption detected: {reason}"
            )
        self._event_log.record(EventKind.BASE_KEY_VALIDATED, filename=base.name, checksum=sha256_file(base))
        logger.info("VALIDATION_SUCCESS: Existing initial key confirmed: %s", base.name)
        return False

    def _check_contiguity(self) -> None:
        missing = self._store.missing_indices()
        if missing:
            logger.critical("CHAIN_BROKEN: Chain has gaps at indices %s - refusing to extend", missing)
            raise IntegrityError(
                f"Chain is not contiguous from index 0: missing {missing}"
            )

    def _process(self, pending: PendingContribution) -> None:
        self._transition(AggregatorState.VALIDATING)
        index = self._store.next_index()
        logger.info(
            "PROCESSING: Contribution #%d - %s (will be numbered %s)",
            index, pending.filename, entry_filename(self._config.circuit_name, index),
        )

        reason = self._validate_pending(pending)
        source_checksum: Optional[str] = None
        submitted: Optional[str] = None
        if reason is None:
            try:
                source_checksum = sha256_file(pending.path)
                submitted = read_sidecar(pending.path)
            except OSError as exc:
                reason = f"unreadable submission: {type(exc).__name__}: {exc}"
            if submitted is not None and submitted != source_checksum:
                reason = (
                    f"checksum mismatch against submitted sidecar: "
                    f"recorded {submitted}, actual {source_checksum}"
                )

        if reason is not None:
            pending.reject(reason)
            logger.warning(
                "REJECTION: Contribution #%d failed validation - skipping: %s (%d bytes): %s",
                index, pending.filename, pending.size, reason,
            )
            self._event_log.record(
                EventKind.CONTRIBUTION_REJECTED,
                filename=pending.filename,
                size=pending.size,
                candidate_index=index,
                reason=reason,
            )
            return

        self._transition(AggregatorState.INTEGRATING)
        target = self._store.integrate(pending, index, source_checksum)
        pending.accept(index, source_checksum)
        self._event_log.record(
            EventKind.CONTRIBUTION_INTEGRATED,
            source=pending.filename,
            filename=target.name,
            index=index,
            checksum=source_checksum,
        )
        logger.info(
            "INTEGRATION_SUCCESS: Contribution #%d integrated into official chain (%s)",
            index, source_checksum,
        )

    def _validate_pending(self, pending: PendingContribution) -> Optional[str]:
        """Return a rejection reason, or None if the contribution is valid."""
        circuit = self._config.circuit_name
        if pending.name_kind == NameKind.INVALID:
            return (
                f"Invalid filename pattern: {pending.filename} "
                f"(expected {circuit}_NNNN.key or {circuit}_tmp_*.key)"
            )
        if self._store.is_finalized():
            return "Chain is finalized; no contributions can be integrated beyond the final key"
        if pending.name_kind == NameKind.NUMBERED:
            logger.info("VALIDATION_INFO: Numbered file detected: %s (index is reassigned)", pending.filename)
        else:
            logger.info("VALIDATION_INFO: Temporary file detected: %s", pending.filename)
        return self._validate_key(pending.path, role="contribution")

    def _validate_key(self, path: Path, role: str) -> Optional[str]:
        """Size floor plus cryptographic verification against the pinned parameters."""
        size = path.stat().st_size
        if size < self._config.min_contribution_size:
            return f"File too small, possible corruption: {path.name} ({size} bytes)"

        logger.info("VALIDATION: Running cryptographic verification for %s %s", role, path.name)
        try:
            outcome = self._toolkit.verify(
                self._config.constraints.path,
                self._config.universal_params.path,
                path,
                timeout=self._config.verify_timeout,
            )
        except ToolkitTimeout:
            return (
                f"Cryptographic verification timed out after "
                f"{self._config.verify_timeout:.0f}s: {path.name}"
            )
        except ToolkitError as exc:
            return f"Cryptographic verification could not run: {exc}"
        if not outcome.ok:
            detail = f": {outcome.detail}" if outcome.detail else ""
            return (
                f"Cryptographic verification failed (exit code: {outcome.exit_code}){detail}"
            )
        logger.info("VALIDATION_SUCCESS: %s cryptographically verified", path.name)
        return None

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition(self, target: AggregatorState) -> None:
        allowed = _TRANSITIONS.get(self._state, set())
        if target not in allowed:
            raise TransitionError(
                f"Invalid aggregator transition: {self._state.value} → {target.value}"
            )
        self._state = target

    def _halt(self) -> None:
        if self._state in _HALTABLE:
            self._state = AggregatorState.HALTED

    def _log_summary(self, report: AggregationReport) -> None:
        logger.info("SUMMARY: Contributions processed: %d", len(report.accepted))
        logger.info("SUMMARY: Contributions rejected: %d", len(report.rejected))
        logger.info("SUMMARY: Total contributions found: %d", report.found)
        if report.rejected:
            logger.warning(
                "SECURITY_WARNING: %d contributions were rejected - review audit log for details",
                len(report.rejected),
            )
        if report.accepted and not report.rejected:
            logger.info("CI_TRIGGER: Valid contributions processed - may continue to beacon phase")
        elif not report.found:
            logger.info("CI_SKIP: No changes to process - exiting cleanly to prevent loops")
