"""Ceremony data models — contributions, chain entries, states, reports."""

from ceremony.models.contribution import (
    ChainEntry,
    ContributionStatus,
    FinalizationRecord,
    NameKind,
    PendingContribution,
    compare_contribution_ids,
    contribution_order,
)
from ceremony.models.outcome import (
    AggregationOutcome,
    AggregationReport,
    ExitCode,
    FinalizationReport,
    FinalizationStatus,
    PassResult,
    VerificationReport,
)
from ceremony.models.states import AggregatorState, FinalizerState

__all__ = [
    "AggregationOutcome",
    "AggregationReport",
    "AggregatorState",
    "ChainEntry",
    "ContributionStatus",
    "ExitCode",
    "FinalizationRecord",
    "FinalizationReport",
    "FinalizationStatus",
    "FinalizerState",
    "NameKind",
    "PassResult",
    "PendingContribution",
    "VerificationReport",
    "compare_contribution_ids",
    "contribution_order",
]
