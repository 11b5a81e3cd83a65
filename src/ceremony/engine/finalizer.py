"""Finalizer — seals the chain with a public-randomness beacon.

The beacon round is committed in advance and passed in explicitly; the
coordinator never picks it at run time, so nobody can wait for a
favourable value. The derived beacon hash is a deterministic function
of the published randomness, so any observer can recompute it.

The final key is built under a staging name and only renamed to
``<circuit>_final.key`` once it has verified and its verification key
has been exported. The presence of the final key is therefore the
commit point: it is what makes later invocations no-ops.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from ceremony.beacon.drand import BeaconStatus, DrandClient, derive_beacon_hash
from ceremony.crypto.checksum import sha256_file, write_sidecar
from ceremony.engine.params import verify_pinned_parameters
from ceremony.errors import (
    CeremonyError,
    ConfigurationError,
    FinalizationError,
    NoBaseKeyError,
    ToolkitError,
    ToolkitTimeout,
)
from ceremony.models.contribution import FinalizationRecord
from ceremony.models.outcome import FinalizationReport, FinalizationStatus
from ceremony.models.states import FinalizerState
from ceremony.persistence.chain_store import ChainStore
from ceremony.persistence.event_log import EventKind, EventLog
from ceremony.toolkit.base import ProvingKeyToolkit


logger = logging.getLogger(__name__)

STAGING_SUFFIX = ".partial"

_TRANSITIONS: dict[FinalizerState, set[FinalizerState]] = {
    FinalizerState.CHECK_IDEMPOTENT: {
        FinalizerState.LOCATE_PREDECESSOR,
        FinalizerState.DONE,
    },
    FinalizerState.LOCATE_PREDECESSOR: {FinalizerState.FETCH_RANDOMNESS},
    FinalizerState.FETCH_RANDOMNESS: {
        FinalizerState.DERIVE_BEACON,
        FinalizerState.DEFERRED,
    },
    FinalizerState.DERIVE_BEACON: {FinalizerState.APPLY_BEACON},
    FinalizerState.APPLY_BEACON: {FinalizerState.VERIFY_FINAL},
    FinalizerState.VERIFY_FINAL: {FinalizerState.EXPORT_VERIFICATION_KEY},
    FinalizerState.EXPORT_VERIFICATION_KEY: {FinalizerState.DONE},
    FinalizerState.DONE: set(),
    FinalizerState.DEFERRED: set(),
    FinalizerState.HALTED: set(),
}


class TransitionError(Exception):
    """Raised when a finalizer state transition is not allowed."""


class Finalizer:
    """Applies the terminal beacon transformation exactly once.

    Usage:
        finalizer = Finalizer(store, toolkit, DrandClient(endpoint, retry))
        report = finalizer.run(round_id=4_512_345)
    """

    def __init__(
        self,
        store: ChainStore,
        toolkit: ProvingKeyToolkit,
        beacon: DrandClient,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self._store = store
        self._config = store.config
        self._toolkit = toolkit
        self._beacon = beacon
        self._event_log = event_log if event_log is not None else EventLog(actor_id="finalize")
        self._state = FinalizerState.CHECK_IDEMPOTENT

    @property
    def state(self) -> FinalizerState:
        return self._state

    def run(self, round_id: int) -> FinalizationReport:
        # Idempotency guard: no reads beyond this check, no writes at all.
        if self._store.is_finalized():
            self._transition(FinalizerState.DONE)
            logger.info("Final key already exists at: %s", self._store.final_key_path)
            return FinalizationReport(
                status=FinalizationStatus.ALREADY_FINAL,
                state=self._state,
                final_key=self._store.final_key_path,
                message="final key already exists",
            )

        if round_id <= 0:
            raise ConfigurationError(f"Beacon round must be a positive integer, got {round_id}")

        try:
            return self._finalize(round_id)
        except CeremonyError:
            self._state = FinalizerState.HALTED
            raise

    def _finalize(self, round_id: int) -> FinalizationReport:
        verify_pinned_parameters(self._config.pinned_parameters)

        self._transition(FinalizerState.LOCATE_PREDECESSOR)
        tip = self._store.tip()
        if tip is None:
            raise NoBaseKeyError(f"No intermediate key found in {self._store.chain_dir}")
        logger.info("Using last chain key: %s", tip.path.name)

        self._transition(FinalizerState.FETCH_RANDOMNESS)
        logger.info("Fetching public randomness for round %d from %s",
                    round_id, self._beacon.url_for(round_id))
        fetch = self._beacon.get_round(round_id)
        if fetch.status != BeaconStatus.AVAILABLE:
            self._transition(FinalizerState.DEFERRED)
            self._event_log.record(
                EventKind.BEACON_DEFERRED,
                round_id=round_id,
                status=fetch.status.value,
                attempts=fetch.attempts,
                error=fetch.error_message,
            )
            logger.info("Beacon round not available yet or transient error (%s). No-op; retry later.",
                        fetch.status.value)
            return FinalizationReport(
                status=FinalizationStatus.DEFERRED,
                state=self._state,
                message=f"{fetch.status.value}: {fetch.error_message}".rstrip(": "),
            )

        self._transition(FinalizerState.DERIVE_BEACON)
        randomness = fetch.randomness or ""
        beacon_hash = derive_beacon_hash(randomness)
        logger.info("Beacon randomness (hex): %s", randomness)
        logger.info("Derived beacon hash: %s", beacon_hash)

        self._transition(FinalizerState.APPLY_BEACON)
        final_path = self._store.final_key_path
        staging = final_path.with_name(final_path.name + STAGING_SUFFIX)
        staging.unlink(missing_ok=True)
        try:
            self._toolkit.beacon(
                tip.path,
                staging,
                beacon_hash,
                self._config.beacon_iterations,
                timeout=self._config.operation_timeout,
            )
        except ToolkitError:
            staging.unlink(missing_ok=True)
            raise

        self._transition(FinalizerState.VERIFY_FINAL)
        self._verify_final(staging)

        self._transition(FinalizerState.EXPORT_VERIFICATION_KEY)
        vkey = self._store.verification_key_path
        try:
            self._toolkit.export_verification_key(
                staging, vkey, timeout=self._config.operation_timeout,
            )
        except ToolkitError:
            staging.unlink(missing_ok=True)
            raise
        vkey_checksum = write_sidecar(vkey)

        staging.replace(final_path)
        final_checksum = write_sidecar(final_path)
        record = FinalizationRecord(
            round_id=round_id,
            randomness=randomness,
            beacon_hash=beacon_hash,
            iterations=self._config.beacon_iterations,
            final_checksum=final_checksum,
            predecessor=tip.path.name,
        )
        self._store.write_finalization_record(record)
        manifest = self._store.write_manifest()

        self._event_log.record(EventKind.CHAIN_FINALIZED, **record.to_dict())
        self._event_log.record(
            EventKind.VERIFICATION_KEY_EXPORTED,
            filename=vkey.name,
            checksum=vkey_checksum,
        )
        self._event_log.record(EventKind.MANIFEST_REGENERATED, path=manifest.name)
        self._transition(FinalizerState.DONE)
        logger.info("Final beacon completed successfully: %s (%s)", final_path.name, final_checksum)

        return FinalizationReport(
            status=FinalizationStatus.FINALIZED,
            state=self._state,
            record=record,
            final_key=final_path,
            verification_key=vkey,
            message="finalized",
        )

    def _verify_final(self, staging: Path) -> None:
        try:
            outcome = self._toolkit.verify(
                self._config.constraints.path,
                self._config.universal_params.path,
                staging,
                timeout=self._config.verify_timeout,
            )
        except ToolkitTimeout as exc:
            staging.unlink(missing_ok=True)
            raise FinalizationError(f"Final key verification timed out: {exc}") from exc
        except ToolkitError as exc:
            staging.unlink(missing_ok=True)
            raise FinalizationError(f"Final key verification could not run: {exc}") from exc
        if not outcome.ok:
            staging.unlink(missing_ok=True)
            raise FinalizationError(
                f"Final key failed verification (exit code: {outcome.exit_code}): {outcome.detail}"
            )
        logger.info("Final key verified against pinned parameters (%s)", sha256_file(staging))

    def _transition(self, target: FinalizerState) -> None:
        allowed = _TRANSITIONS.get(self._state, set())
        if target not in allowed:
            raise TransitionError(
                f"Invalid finalizer transition: {self._state.value} → {target.value}"
            )
        self._state = target
