"""Ceremony engine — submitter, aggregator, verifier and finalizer."""

from ceremony.engine.aggregator import ChainAggregator
from ceremony.engine.finalizer import Finalizer
from ceremony.engine.params import check_parameter, verify_pinned_parameters
from ceremony.engine.submitter import ContributionSubmitter, SubmissionReceipt
from ceremony.engine.verifier import ChainVerifier

__all__ = [
    "ChainAggregator",
    "ChainVerifier",
    "ContributionSubmitter",
    "Finalizer",
    "SubmissionReceipt",
    "check_parameter",
    "verify_pinned_parameters",
]
