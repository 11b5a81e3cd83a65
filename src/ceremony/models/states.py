"""Aggregator and finalizer lifecycle states.

Aggregator lifecycle:
    INIT → PARAMS_VERIFIED → BASE_KEY_READY → SCANNING
         → {VALIDATING ⇄ INTEGRATING}* → MANIFEST_REGENERATED → DONE
    Any state before DONE → HALTED (pinned parameter or base key failure)

Finalizer lifecycle:
    CHECK_IDEMPOTENT → LOCATE_PREDECESSOR → FETCH_RANDOMNESS → DERIVE_BEACON
        → APPLY_BEACON → VERIFY_FINAL → EXPORT_VERIFICATION_KEY → DONE
    CHECK_IDEMPOTENT → DONE              (already finalized)
    FETCH_RANDOMNESS → DEFERRED          (round not available, retry later)
"""

from __future__ import annotations

import enum


class AggregatorState(str, enum.Enum):
    INIT = "init"
    PARAMS_VERIFIED = "params_verified"
    BASE_KEY_READY = "base_key_ready"
    SCANNING = "scanning"
    VALIDATING = "validating"
    INTEGRATING = "integrating"
    MANIFEST_REGENERATED = "manifest_regenerated"
    DONE = "done"
    HALTED = "halted"


class FinalizerState(str, enum.Enum):
    CHECK_IDEMPOTENT = "check_idempotent"
    LOCATE_PREDECESSOR = "locate_predecessor"
    FETCH_RANDOMNESS = "fetch_randomness"
    DERIVE_BEACON = "derive_beacon"
    APPLY_BEACON = "apply_beacon"
    VERIFY_FINAL = "verify_final"
    EXPORT_VERIFICATION_KEY = "export_verification_key"
    DONE = "done"
    DEFERRED = "deferred"
    HALTED = "halted"
