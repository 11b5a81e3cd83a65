"""Contribution and chain entry models.

A contribution is one participant's transformation of the chain tip.
It arrives in the pending pool under a submitter-chosen name, is judged
exactly once, and if accepted becomes an immutable chain entry under an
index assigned by the aggregator.

Filename grammar (for circuit ``C``):
    chain entry        C_NNNN.key           (NNNN = 4-digit index)
    final entry        C_final.key
    pending, numbered  C_NNNN.key           (index is advisory only)
    pending, temporary C_tmp_<digits/_>.key

Any index embedded in a pending filename is ignored: indices are
assigned at integration time. Both pending forms are equally valid.
"""

from __future__ import annotations

import enum
import functools
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


KEY_SUFFIX = ".key"
CHECKSUM_SUFFIX = ".sha256"
BASE_INDEX = 0
INDEX_WIDTH = 4


class ContributionStatus(str, enum.Enum):
    """Lifecycle of a submitted contribution. Transitions exactly once."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class NameKind(str, enum.Enum):
    NUMBERED = "numbered"
    TEMPORARY = "temporary"
    FINAL = "final"
    INVALID = "invalid"


def entry_filename(circuit_name: str, index: int) -> str:
    """Canonical chain filename for an index."""
    return f"{circuit_name}_{index:0{INDEX_WIDTH}d}{KEY_SUFFIX}"


def final_filename(circuit_name: str) -> str:
    return f"{circuit_name}_final{KEY_SUFFIX}"


def verification_key_filename(circuit_name: str) -> str:
    return f"{circuit_name}_verification_key.json"


def finalization_record_filename(circuit_name: str) -> str:
    return f"{circuit_name}_beacon.json"


def classify_name(circuit_name: str, filename: str) -> tuple[NameKind, Optional[int]]:
    """Classify a key filename. Returns (kind, embedded index or None)."""
    prefix = re.escape(circuit_name)
    numbered = re.fullmatch(rf"{prefix}_([0-9]{{{INDEX_WIDTH}}})\.key", filename)
    if numbered:
        return NameKind.NUMBERED, int(numbered.group(1))
    if re.fullmatch(rf"{prefix}_tmp_[0-9_]+\.key", filename):
        return NameKind.TEMPORARY, None
    if filename == final_filename(circuit_name):
        return NameKind.FINAL, None
    return NameKind.INVALID, None


def compare_contribution_ids(left: str, right: str) -> int:
    """Total order over pending contribution identifiers.

    Protocol invariant: pending contributions are processed in
    lexicographic order of their UTF-8 encoded filenames (byte order,
    as ``sort`` in the C locale). Filesystem enumeration order never
    influences index assignment.
    """
    a = left.encode("utf-8")
    b = right.encode("utf-8")
    return (a > b) - (a < b)


contribution_order = functools.cmp_to_key(compare_contribution_ids)


@dataclass
class PendingContribution:
    """A not-yet-integrated artifact in the pending pool."""
    path: Path
    size: int
    name_kind: NameKind
    embedded_index: Optional[int] = None
    status: ContributionStatus = ContributionStatus.PENDING
    assigned_index: Optional[int] = None
    checksum: Optional[str] = None
    rejection_reason: Optional[str] = None

    @property
    def filename(self) -> str:
        return self.path.name

    def accept(self, index: int, checksum: str) -> None:
        if self.status != ContributionStatus.PENDING:
            raise ValueError(
                f"{self.filename}: already {self.status.value}, cannot accept"
            )
        self.status = ContributionStatus.ACCEPTED
        self.assigned_index = index
        self.checksum = checksum

    def reject(self, reason: str) -> None:
        if self.status != ContributionStatus.PENDING:
            raise ValueError(
                f"{self.filename}: already {self.status.value}, cannot reject"
            )
        self.status = ContributionStatus.REJECTED
        self.rejection_reason = reason


@dataclass(frozen=True)
class ChainEntry:
    """An accepted, immutable chain entry."""
    index: int
    path: Path
    is_final: bool = False

    @property
    def sidecar_path(self) -> Path:
        return self.path.with_name(self.path.name + CHECKSUM_SUFFIX)


@dataclass(frozen=True)
class FinalizationRecord:
    """Terminal chain entry metadata: how the beacon value was obtained."""
    round_id: int
    randomness: str
    beacon_hash: str
    iterations: int
    final_checksum: str
    predecessor: str

    def to_dict(self) -> dict[str, object]:
        return {
            "round_id": self.round_id,
            "randomness": self.randomness,
            "beacon_hash": self.beacon_hash,
            "iterations": self.iterations,
            "final_checksum": self.final_checksum,
            "predecessor": self.predecessor,
        }

    @staticmethod
    def from_dict(data: dict[str, object]) -> FinalizationRecord:
        if not isinstance(data, dict):
            raise ValueError(f"finalization record must be a JSON object, got {type(data).__name__}")
        try:
            return FinalizationRecord(
                round_id=int(data["round_id"]),
                randomness=str(data["randomness"]),
                beacon_hash=str(data["beacon_hash"]),
                iterations=int(data["iterations"]),
                final_checksum=str(data["final_checksum"]),
                predecessor=str(data["predecessor"]),
            )
        except TypeError as exc:
            raise ValueError(f"finalization record has a malformed field: {exc}") from exc
