"""Proving-key toolkit — the externally supplied cryptographic capability."""

from ceremony.toolkit.base import ProvingKeyToolkit, VerifyOutcome
from ceremony.toolkit.snarkjs import SnarkjsToolkit

__all__ = ["ProvingKeyToolkit", "SnarkjsToolkit", "VerifyOutcome"]
