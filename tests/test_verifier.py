"""Tests for the independent verifier — proves every pass recomputes from disk."""

from pathlib import Path
from typing import Callable

import pytest

from ceremony.beacon.drand import derive_beacon_hash
from ceremony.crypto.checksum import sha256_file, write_sidecar
from ceremony.engine.verifier import ChainVerifier
from ceremony.models.contribution import FinalizationRecord
from ceremony.models.outcome import ExitCode, PassResult, VerificationReport
from ceremony.persistence.chain_store import ChainStore
from ceremony.persistence.event_log import EventKind, EventLog

from conftest import INVALID_MAGIC, FakeToolkit, key_bytes


@pytest.fixture
def healthy_chain(store: ChainStore, seed_chain: Callable[[int], None]) -> ChainStore:
    seed_chain(3)
    store.write_manifest()
    return store


def _verify(store: ChainStore, toolkit: FakeToolkit, log: EventLog | None = None) -> VerificationReport:
    return ChainVerifier(store, toolkit, event_log=log).run()


def _pass(report: VerificationReport, number: int) -> PassResult:
    return report.passes[number - 1]


def _finalize_by_hand(store: ChainStore, randomness: str = "a1b2c3") -> FinalizationRecord:
    beacon_hash = derive_beacon_hash(randomness)
    final = store.final_key_path
    final.write_bytes(key_bytes(tag=f"beacon:{beacon_hash}"))
    checksum = write_sidecar(final)
    store.verification_key_path.write_text("{}")
    write_sidecar(store.verification_key_path)
    record = FinalizationRecord(
        round_id=7,
        randomness=randomness,
        beacon_hash=beacon_hash,
        iterations=10,
        final_checksum=checksum,
        predecessor=store.tip().path.name,
    )
    store.write_finalization_record(record)
    store.write_manifest()
    return record


class TestHealthyChain:
    def test_all_passes(self, healthy_chain: ChainStore, toolkit: FakeToolkit) -> None:
        report = _verify(healthy_chain, toolkit)
        assert [p.number for p in report.passes] == [1, 2, 3, 4, 5, 6]
        assert report.ok
        assert report.exit_code == ExitCode.OK
        assert report.summary_lines()[-1] == "VERIFICATION STATUS: PASSED"

    def test_every_entry_verified_in_order(self, healthy_chain: ChainStore, toolkit: FakeToolkit) -> None:
        _verify(healthy_chain, toolkit)
        verified = [name for op, name in toolkit.calls if op == "verify"]
        assert verified == [f"giftcard_merkle_{i:04d}.key" for i in range(3)]

    def test_read_only(self, healthy_chain: ChainStore, toolkit: FakeToolkit) -> None:
        before = {p: p.read_bytes() for p in healthy_chain.chain_dir.iterdir()}
        _verify(healthy_chain, toolkit)
        after = {p: p.read_bytes() for p in healthy_chain.chain_dir.iterdir()}
        assert before == after

    def test_records_each_pass(self, healthy_chain: ChainStore, toolkit: FakeToolkit) -> None:
        log = EventLog(actor_id="verify")
        _verify(healthy_chain, toolkit, log)
        events = log.events(EventKind.VERIFICATION_PASS)
        assert [e.payload["number"] for e in events] == [1, 2, 3, 4, 5, 6]

    def test_finalized_chain(self, healthy_chain: ChainStore, toolkit: FakeToolkit) -> None:
        _finalize_by_hand(healthy_chain)
        report = _verify(healthy_chain, toolkit)
        assert report.ok, report.summary_lines()
        assert ("verify", "giftcard_merkle_final.key") in toolkit.calls


class TestEnvironment:
    def test_missing_toolkit_halts(self, healthy_chain: ChainStore, toolkit: FakeToolkit) -> None:
        toolkit.usable = False
        report = _verify(healthy_chain, toolkit)
        assert report.halted
        assert not _pass(report, 1).passed
        assert all(p.skipped for p in report.passes[1:])
        assert toolkit.calls == []


class TestParameterTampering:
    def test_single_byte_halts_before_entries(self, healthy_chain: ChainStore, toolkit: FakeToolkit) -> None:
        path = healthy_chain.config.constraints.path
        data = bytearray(path.read_bytes())
        data[-1] ^= 0x01
        path.write_bytes(bytes(data))

        report = _verify(healthy_chain, toolkit)

        assert report.halted
        assert report.exit_code == ExitCode.FATAL
        assert not _pass(report, 2).passed
        assert all(p.skipped for p in report.passes[2:])
        assert toolkit.calls == []


class TestEntries:
    def test_empty_chain_fails(self, store: ChainStore, toolkit: FakeToolkit) -> None:
        report = _verify(store, toolkit)
        assert not _pass(report, 4).passed
        assert report.exit_code == ExitCode.NEEDS_REVIEW

    def test_gap_detected(self, healthy_chain: ChainStore, toolkit: FakeToolkit) -> None:
        healthy_chain.entry_path(1).unlink()
        report = _verify(healthy_chain, toolkit)
        assert any("not contiguous" in d for d in _pass(report, 4).details)

    def test_invalid_entry(self, healthy_chain: ChainStore, toolkit: FakeToolkit) -> None:
        entry = healthy_chain.entry_path(2)
        entry.write_bytes(key_bytes(INVALID_MAGIC, "forged"))
        write_sidecar(entry)
        report = _verify(healthy_chain, toolkit)
        assert not _pass(report, 4).passed
        assert any("giftcard_merkle_0002.key: verification failed" in d for d in _pass(report, 4).details)

    def test_sidecar_mismatch(self, healthy_chain: ChainStore, toolkit: FakeToolkit) -> None:
        write_sidecar(healthy_chain.entry_path(1), "00" * 32)
        report = _verify(healthy_chain, toolkit)
        assert any("checksum mismatch" in d for d in _pass(report, 4).details)

    def test_missing_sidecar_is_warning(self, healthy_chain: ChainStore, toolkit: FakeToolkit) -> None:
        (healthy_chain.chain_dir / "giftcard_merkle_0001.key.sha256").unlink()
        report = _verify(healthy_chain, toolkit)
        assert _pass(report, 4).passed
        assert any("no checksum sidecar" in w for w in _pass(report, 4).warnings)

    def test_pending_listed_informationally(
        self, healthy_chain: ChainStore, toolkit: FakeToolkit, make_key: Callable[..., Path],
    ) -> None:
        make_key(healthy_chain.pending_dir / "giftcard_merkle_tmp_5.key", size=10)
        report = _verify(healthy_chain, toolkit)
        assert _pass(report, 4).passed
        assert any("giftcard_merkle_tmp_5.key" in d and "below minimum" in d for d in _pass(report, 4).details)

    def test_forged_beacon_record(self, healthy_chain: ChainStore, toolkit: FakeToolkit) -> None:
        record = _finalize_by_hand(healthy_chain)
        forged = FinalizationRecord(**{**record.to_dict(), "randomness": "ffff"})
        healthy_chain.write_finalization_record(forged)
        report = _verify(healthy_chain, toolkit)
        assert any("beacon hash does not match" in d for d in _pass(report, 4).details)

    def test_final_key_swapped(self, healthy_chain: ChainStore, toolkit: FakeToolkit) -> None:
        _finalize_by_hand(healthy_chain)
        final = healthy_chain.final_key_path
        final.write_bytes(key_bytes(tag="other"))
        write_sidecar(final)
        report = _verify(healthy_chain, toolkit)
        assert any("finalization record" in d for d in _pass(report, 4).details)

    @pytest.mark.parametrize("content", ["null", "[]", '{"round_id": [1]}'])
    def test_malformed_record_fails_pass(
        self, healthy_chain: ChainStore, toolkit: FakeToolkit, content: str,
    ) -> None:
        _finalize_by_hand(healthy_chain)
        healthy_chain.finalization_record_path.write_text(content)
        report = _verify(healthy_chain, toolkit)
        assert not _pass(report, 4).passed
        assert any("finalization record unreadable" in d for d in _pass(report, 4).details)
        assert not _pass(report, 5).skipped


class TestManifest:
    def test_corrupted_line_fails(self, healthy_chain: ChainStore, toolkit: FakeToolkit) -> None:
        path = healthy_chain.manifest_path
        lines = path.read_text().splitlines(keepends=True)
        lines[1] = lines[1].replace("giftcard_merkle", "giftcard_merkIe")
        path.write_text("".join(lines))
        report = _verify(healthy_chain, toolkit)
        assert not _pass(report, 5).passed
        assert report.exit_code == ExitCode.NEEDS_REVIEW

    def test_stale_manifest_fails(
        self, healthy_chain: ChainStore, toolkit: FakeToolkit, make_key: Callable[..., Path],
    ) -> None:
        write_sidecar(make_key(healthy_chain.entry_path(3)))
        report = _verify(healthy_chain, toolkit)
        assert any("not listed in manifest" in d for d in _pass(report, 5).details)

    def test_artifact_changed_after_manifest(self, healthy_chain: ChainStore, toolkit: FakeToolkit) -> None:
        entry = healthy_chain.entry_path(0)
        entry.write_bytes(key_bytes(tag="replaced"))
        write_sidecar(entry)
        report = _verify(healthy_chain, toolkit)
        details = _pass(report, 5).details
        assert any("giftcard_merkle_0000.key" in d and sha256_file(entry) in d for d in details)

    def test_missing_manifest_is_warning(self, healthy_chain: ChainStore, toolkit: FakeToolkit) -> None:
        healthy_chain.manifest_path.unlink()
        report = _verify(healthy_chain, toolkit)
        assert _pass(report, 5).passed
        assert _pass(report, 5).warnings


class TestResilience:
    def test_base_key_only_warns(self, store: ChainStore, toolkit: FakeToolkit, seed_chain: Callable[[int], None]) -> None:
        seed_chain(1)
        store.write_manifest()
        report = _verify(store, toolkit)
        assert report.ok
        assert _pass(report, 6).warnings

    def test_counts_contributions(self, healthy_chain: ChainStore, toolkit: FakeToolkit) -> None:
        report = _verify(healthy_chain, toolkit)
        assert "contributions beyond the base key: 2" in _pass(report, 6).details
        assert not _pass(report, 6).warnings
