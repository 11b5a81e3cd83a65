"""Tests for contribution models — proves filename grammar and ordering are protocol-exact."""

import random
from pathlib import Path

import pytest

from ceremony.models.contribution import (
    ContributionStatus,
    FinalizationRecord,
    NameKind,
    PendingContribution,
    classify_name,
    compare_contribution_ids,
    contribution_order,
    entry_filename,
    final_filename,
)


CIRCUIT = "giftcard_merkle"


class TestFilenameGrammar:
    def test_entry_filename_is_zero_padded(self) -> None:
        assert entry_filename(CIRCUIT, 3) == "giftcard_merkle_0003.key"
        assert entry_filename(CIRCUIT, 1234) == "giftcard_merkle_1234.key"

    def test_numbered(self) -> None:
        assert classify_name(CIRCUIT, "giftcard_merkle_0007.key") == (NameKind.NUMBERED, 7)

    def test_temporary(self) -> None:
        assert classify_name(CIRCUIT, "giftcard_merkle_tmp_9981.key") == (NameKind.TEMPORARY, None)
        assert classify_name(CIRCUIT, "giftcard_merkle_tmp_1700000000_123456.key")[0] == NameKind.TEMPORARY

    def test_final(self) -> None:
        assert classify_name(CIRCUIT, final_filename(CIRCUIT)) == (NameKind.FINAL, None)

    @pytest.mark.parametrize("name", [
        "giftcard_merkle_7.key",
        "giftcard_merkle_00007.key",
        "giftcard_merkle_tmp_abc.key",
        "giftcard_merkle_tmp_.key",
        "other_circuit_0001.key",
        "giftcard_merkle_0001.zkey",
        "giftcard_merkle_0001.key.bak",
    ])
    def test_malformed_names_are_invalid(self, name: str) -> None:
        assert classify_name(CIRCUIT, name) == (NameKind.INVALID, None)

    def test_circuit_name_is_matched_literally(self) -> None:
        # A regex metacharacter in the circuit name must not widen the pattern
        assert classify_name("a.b", "axb_0001.key")[0] == NameKind.INVALID
        assert classify_name("a.b", "a.b_0001.key") == (NameKind.NUMBERED, 1)


class TestOrdering:
    def test_byte_order(self) -> None:
        assert compare_contribution_ids("a", "b") < 0
        assert compare_contribution_ids("b", "a") > 0
        assert compare_contribution_ids("a", "a") == 0

    def test_uppercase_sorts_before_lowercase(self) -> None:
        # C-locale byte order, not case-folded
        assert compare_contribution_ids("Z.key", "a.key") < 0

    def test_utf8_bytes_not_code_points(self) -> None:
        # U+FF5E encodes as EF BD 9E, above every ASCII byte
        assert compare_contribution_ids("giftcard_merkle_tmp_～.key", "giftcard_merkle_tmp_9.key") > 0

    def test_order_independent_of_input_order(self) -> None:
        names = [
            "giftcard_merkle_tmp_9982.key",
            "giftcard_merkle_0005.key",
            "giftcard_merkle_tmp_9981.key",
            "giftcard_merkle_tmp_10.key",
            "giftcard_merkle_0001.key",
        ]
        expected = sorted(names, key=contribution_order)
        rng = random.Random(7)
        for _ in range(20):
            shuffled = names[:]
            rng.shuffle(shuffled)
            assert sorted(shuffled, key=contribution_order) == expected
        assert expected[0] == "giftcard_merkle_0001.key"
        assert expected.index("giftcard_merkle_tmp_10.key") < expected.index("giftcard_merkle_tmp_9981.key")


class TestPendingContribution:
    def _pending(self) -> PendingContribution:
        return PendingContribution(
            path=Path("/pool/giftcard_merkle_tmp_1.key"),
            size=2048,
            name_kind=NameKind.TEMPORARY,
        )

    def test_accept_once(self) -> None:
        pending = self._pending()
        pending.accept(3, "ab" * 32)
        assert pending.status == ContributionStatus.ACCEPTED
        assert pending.assigned_index == 3
        with pytest.raises(ValueError):
            pending.reject("too late")

    def test_reject_once(self) -> None:
        pending = self._pending()
        pending.reject("bad")
        assert pending.status == ContributionStatus.REJECTED
        assert pending.rejection_reason == "bad"
        with pytest.raises(ValueError):
            pending.accept(1, "00" * 32)


class TestFinalizationRecord:
    def test_dict_form(self) -> None:
        record = FinalizationRecord(
            round_id=42,
            randomness="ab12",
            beacon_hash="cd" * 32,
            iterations=10,
            final_checksum="ef" * 32,
            predecessor="giftcard_merkle_0003.key",
        )
        data = record.to_dict()
        assert data["round_id"] == 42
        assert FinalizationRecord.from_dict(data) == record

    @pytest.mark.parametrize("data", [None, [], "record", {"round_id": [1]}])
    def test_malformed_input_is_value_error(self, data: object) -> None:
        with pytest.raises(ValueError, match="finalization record"):
            FinalizationRecord.from_dict(data)
