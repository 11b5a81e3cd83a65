"""Run reports and process exit signalling.

External schedulers branch on ExitCode. Only FATAL means "stop and page
a human about the ceremony itself"; NO_OP means "nothing happened, do
not re-trigger"; NEEDS_REVIEW means "a contributor needs to look".
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ceremony.models.contribution import (
    ContributionStatus,
    FinalizationRecord,
    PendingContribution,
)
from ceremony.models.states import AggregatorState, FinalizerState


class ExitCode(enum.IntEnum):
    OK = 0
    NEEDS_REVIEW = 1
    NO_OP = 3
    FATAL = 4


class AggregationOutcome(str, enum.Enum):
    """Tri-state signal for the scheduler driving the aggregator."""
    ADVANCE = "advance"            # base key created or >= 1 accepted, 0 rejected
    NEEDS_REVIEW = "needs_review"  # >= 1 rejected
    NO_OP = "no_op"                # nothing pending

    @property
    def exit_code(self) -> ExitCode:
        return {
            AggregationOutcome.ADVANCE: ExitCode.OK,
            AggregationOutcome.NEEDS_REVIEW: ExitCode.NEEDS_REVIEW,
            AggregationOutcome.NO_OP: ExitCode.NO_OP,
        }[self]


@dataclass
class AggregationReport:
    """Result of one aggregator run."""
    state: AggregatorState
    contributions: list[PendingContribution] = field(default_factory=list)
    base_key_created: bool = False
    tip_index: Optional[int] = None
    manifest_path: Optional[Path] = None

    @property
    def found(self) -> int:
        return len(self.contributions)

    @property
    def accepted(self) -> list[PendingContribution]:
        return [c for c in self.contributions if c.status == ContributionStatus.ACCEPTED]

    @property
    def rejected(self) -> list[PendingContribution]:
        return [c for c in self.contributions if c.status == ContributionStatus.REJECTED]

    @property
    def outcome(self) -> AggregationOutcome:
        if self.rejected:
            return AggregationOutcome.NEEDS_REVIEW
        if self.accepted or self.base_key_created:
            return AggregationOutcome.ADVANCE
        return AggregationOutcome.NO_OP

    def summary_lines(self) -> list[str]:
        lines = [
            f"Contributions processed: {len(self.accepted)}",
            f"Contributions rejected: {len(self.rejected)}",
            f"Total contributions found: {self.found}",
        ]
        if self.tip_index is not None:
            lines.append(f"Chain tip: {self.tip_index:04d}")
        for c in self.rejected:
            lines.append(f"  rejected {c.filename}: {c.rejection_reason}")
        lines.append(f"Outcome: {self.outcome.value}")
        return lines


@dataclass
class PassResult:
    """One audit pass of the independent verifier."""
    number: int
    name: str
    passed: bool = True
    skipped: bool = False
    details: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def fail(self, message: str) -> None:
        self.passed = False
        self.details.append(message)

    def note(self, message: str) -> None:
        self.details.append(message)

    def warn(self, message: str) -> None:
        self.warnings.append(message)


@dataclass
class VerificationReport:
    """Aggregated verdict of the six audit passes.

    ``halted`` is set when an early pass (environment or pinned
    parameters) fails and the remaining passes were not run.
    """
    passes: list[PassResult] = field(default_factory=list)
    halted: bool = False

    @property
    def error_count(self) -> int:
        return sum(1 for p in self.passes if not p.passed)

    @property
    def ok(self) -> bool:
        return self.error_count == 0

    @property
    def exit_code(self) -> ExitCode:
        if self.halted:
            return ExitCode.FATAL
        return ExitCode.OK if self.ok else ExitCode.NEEDS_REVIEW

    def summary_lines(self) -> list[str]:
        lines: list[str] = []
        for p in self.passes:
            if p.skipped:
                verdict = "SKIPPED"
            else:
                verdict = "PASS" if p.passed else "FAIL"
            lines.append(f"PHASE {p.number}: {p.name}: {verdict}")
            lines.extend(f"    {d}" for d in p.details)
            lines.extend(f"    warning: {w}" for w in p.warnings)
        if self.halted:
            lines.append(f"VERIFICATION STATUS: HALTED ({self.error_count} error(s))")
        elif self.ok:
            lines.append("VERIFICATION STATUS: PASSED")
        else:
            lines.append(f"VERIFICATION STATUS: FAILED ({self.error_count} error(s))")
        return lines


class FinalizationStatus(str, enum.Enum):
    FINALIZED = "finalized"
    ALREADY_FINAL = "already_final"
    DEFERRED = "deferred"


@dataclass
class FinalizationReport:
    status: FinalizationStatus
    state: FinalizerState
    record: Optional[FinalizationRecord] = None
    final_key: Optional[Path] = None
    verification_key: Optional[Path] = None
    message: str = ""

    @property
    def exit_code(self) -> ExitCode:
        if self.status == FinalizationStatus.DEFERRED:
            return ExitCode.NO_OP
        return ExitCode.OK
