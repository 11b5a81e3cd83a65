"""Ceremony error taxonomy.

Four classes of failure exist, and callers must be able to tell them
apart:

1. Fatal/halting: integrity of the pinned parameters, the base key or
   the configuration is in doubt. The whole run aborts and nothing is
   retried automatically.
2. Per-item rejectable: a single contribution fails validation. These
   are NOT exceptions at the component boundary; the aggregator records
   them and moves on. ToolkitTimeout is raised by the toolkit and
   converted into a rejection by the caller.
3. Retryable/external: randomness not available yet. Reported through
   the finalizer's report status, never raised.
4. Idempotency short-circuit: finalization already complete. Success.
"""

from __future__ import annotations


class CeremonyError(Exception):
    """Base class for every ceremony failure."""


class ConfigurationError(CeremonyError):
    """Raised when the ceremony configuration is missing or malformed."""


class ParameterIntegrityError(CeremonyError):
    """Raised when a pinned parameter is missing, undersized or altered.

    This is the most severe failure class. No component may process a
    contribution once it has been raised.
    """


class NoBaseKeyError(CeremonyError):
    """Raised when the chain has no tip to build on."""


class BaseKeyCorruptedError(CeremonyError):
    """Raised when the base key (index 0) fails validation."""


class ChainFinalizedError(CeremonyError):
    """Raised when a contribution is requested against a finalized chain."""


class IntegrityError(CeremonyError):
    """Raised when an artifact's checksum changes while it is being written."""


class ToolkitError(CeremonyError):
    """Raised when a proving-key toolkit operation fails."""

    def __init__(self, message: str, exit_code: int | None = None, detail: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.detail = detail


class ToolkitTimeout(ToolkitError):
    """Raised when a toolkit operation exceeds its wall-clock timeout."""


class FinalizationError(CeremonyError):
    """Raised when the beacon-finalized key fails verification.

    Not retryable: it indicates a toolkit or logic defect rather than an
    external condition.
    """
