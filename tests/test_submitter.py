"""Tests for the contribution submitter — proves submissions land in the pending pool only."""

from pathlib import Path
from typing import Callable

import pytest

from ceremony.crypto.checksum import read_sidecar, sha256_file
from ceremony.engine.submitter import DEFAULT_LABEL, ContributionSubmitter
from ceremony.errors import ChainFinalizedError, NoBaseKeyError, ParameterIntegrityError
from ceremony.models.contribution import NameKind, classify_name
from ceremony.persistence.chain_store import ChainStore
from ceremony.persistence.event_log import EventKind, EventLog

from conftest import FakeToolkit


def _submitter(store: ChainStore, toolkit: FakeToolkit, **kwargs) -> ContributionSubmitter:
    return ContributionSubmitter(store, toolkit, entropy_source=lambda: "e" * 64, **kwargs)


class TestContribute:
    def test_builds_on_tip(
        self, store: ChainStore, toolkit: FakeToolkit, seed_chain: Callable[[int], None],
    ) -> None:
        seed_chain(3)
        receipt = _submitter(store, toolkit).contribute(label="alice")

        assert receipt.predecessor == store.entry_path(2)
        assert receipt.label == "alice"
        assert receipt.path.parent == store.pending_dir
        assert classify_name("giftcard_merkle", receipt.path.name)[0] == NameKind.TEMPORARY
        assert receipt.checksum == sha256_file(receipt.path)
        assert read_sidecar(receipt.path) == receipt.checksum
        # Chain untouched
        assert [e.index for e in store.entries()] == [0, 1, 2]

    def test_default_label(
        self, store: ChainStore, toolkit: FakeToolkit, seed_chain: Callable[[int], None],
    ) -> None:
        seed_chain(1)
        assert _submitter(store, toolkit).contribute(label="  ").label == DEFAULT_LABEL

    def test_temporary_name_collision_retried(
        self, store: ChainStore, toolkit: FakeToolkit, seed_chain: Callable[[int], None],
        make_key: Callable[..., Path],
    ) -> None:
        seed_chain(1)
        make_key(store.pending_dir / "giftcard_merkle_tmp_1.key")
        tokens = iter(["1", "2"])
        receipt = _submitter(store, toolkit, token_source=lambda: next(tokens)).contribute()
        assert receipt.path.name == "giftcard_merkle_tmp_2.key"

    def test_records_submission(
        self, store: ChainStore, toolkit: FakeToolkit, seed_chain: Callable[[int], None],
    ) -> None:
        seed_chain(1)
        log = EventLog()
        receipt = _submitter(store, toolkit, event_log=log).contribute(label="bob")
        events = log.events(EventKind.CONTRIBUTION_SUBMITTED)
        assert len(events) == 1
        assert events[0].payload["filename"] == receipt.path.name
        assert events[0].payload["predecessor"] == "giftcard_merkle_0000.key"
        # Entropy is never recorded
        assert "e" * 64 not in str(events[0].payload)


class TestRefusals:
    def test_no_base_key(self, store: ChainStore, toolkit: FakeToolkit) -> None:
        with pytest.raises(NoBaseKeyError):
            _submitter(store, toolkit).contribute()
        assert toolkit.calls == []

    def test_finalized_chain(
        self, store: ChainStore, toolkit: FakeToolkit, seed_chain: Callable[[int], None],
        make_key: Callable[..., Path],
    ) -> None:
        seed_chain(2)
        make_key(store.final_key_path)
        with pytest.raises(ChainFinalizedError):
            _submitter(store, toolkit).contribute()

    def test_tampered_parameters(
        self, store: ChainStore, toolkit: FakeToolkit, seed_chain: Callable[[int], None],
    ) -> None:
        seed_chain(1)
        store.config.constraints.path.write_bytes(b"r1cs" + b"\xff" * 2048)
        with pytest.raises(ParameterIntegrityError):
            _submitter(store, toolkit).contribute()
        assert toolkit.calls == []
