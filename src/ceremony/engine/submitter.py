"""Contribution submitter — one participant's step in the ceremony.

Builds on the current chain tip and writes the new key into the pending
pool under a temporary name. The submitter has no authority over the
chain: the aggregator assigns the final index when (and if) it accepts
the contribution.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from ceremony.crypto.checksum import write_sidecar
from ceremony.engine.params import verify_pinned_parameters
from ceremony.errors import ChainFinalizedError, NoBaseKeyError
from ceremony.persistence.chain_store import ChainStore
from ceremony.persistence.event_log import EventKind, EventLog
from ceremony.toolkit.base import ProvingKeyToolkit


logger = logging.getLogger(__name__)

DEFAULT_LABEL = "Anonymous"


@dataclass(frozen=True)
class SubmissionReceipt:
    """What a participant needs to submit their contribution."""
    path: Path
    checksum: str
    predecessor: Path
    label: str


def temporary_token() -> str:
    """Placeholder index: nanosecond clock tail plus a random suffix."""
    return f"{time.time_ns() % 10**8:08d}_{secrets.randbelow(10**6):06d}"


class ContributionSubmitter:
    """Produces one contribution from the current chain tip.

    Usage:
        submitter = ContributionSubmitter(store, toolkit)
        receipt = submitter.contribute(label="alice")
    """

    def __init__(
        self,
        store: ChainStore,
        toolkit: ProvingKeyToolkit,
        event_log: Optional[EventLog] = None,
        entropy_source: Callable[[], str] = lambda: secrets.token_hex(32),
        token_source: Callable[[], str] = temporary_token,
    ) -> None:
        self._store = store
        self._toolkit = toolkit
        self._event_log = event_log
        self._entropy_source = entropy_source
        self._token_source = token_source

    def contribute(self, label: Optional[str] = None) -> SubmissionReceipt:
        config = self._store.config
        label = (label or "").strip() or DEFAULT_LABEL

        verify_pinned_parameters(config.pinned_parameters)

        if self._store.is_finalized():
            raise ChainFinalizedError(
                "Chain is finalized; no further contributions are accepted"
            )
        tip = self._store.tip()
        if tip is None:
            raise NoBaseKeyError(
                f"No keys found in {self._store.chain_dir}. "
                f"The coordinator must generate and publish the base key first."
            )

        self._store.pending_dir.mkdir(parents=True, exist_ok=True)
        output = self._temporary_path()
        logger.info("Latest chain key: %s", tip.path.name)
        logger.info("Your contribution (temporary name): %s", output.name)
        logger.info("Executing contribution as %r", label)

        self._toolkit.contribute(
            tip.path,
            output,
            entropy=self._entropy_source(),
            label=label,
            timeout=config.operation_timeout,
        )
        checksum = write_sidecar(output)
        logger.info("SUCCESS: Contribution written: %s (%s)", output.name, checksum)

        if self._event_log is not None:
            self._event_log.record(
                EventKind.CONTRIBUTION_SUBMITTED,
                filename=output.name,
                predecessor=tip.path.name,
                checksum=checksum,
                label=label,
            )
        return SubmissionReceipt(path=output, checksum=checksum, predecessor=tip.path, label=label)

    def _temporary_path(self) -> Path:
        circuit = self._store.config.circuit_name
        for _ in range(100):
            candidate = self._store.pending_dir / f"{circuit}_tmp_{self._token_source()}.key"
            if not candidate.exists():
                return candidate
        raise RuntimeError(f"Could not find a free temporary name in {self._store.pending_dir}")
