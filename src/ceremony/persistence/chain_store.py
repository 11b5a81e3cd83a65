"""Chain store — explicit repository over the canonical chain directory.

All chain and pending-pool filesystem access goes through this object,
which is passed into each component rather than reached for ambiently.
Only the aggregator and finalizer call its mutating methods; the
verifier uses it strictly read-only.
"""

from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import Optional

from ceremony.config import CeremonyConfig
from ceremony.crypto.checksum import sha256_file, sidecar_path, write_sidecar
from ceremony.crypto.manifest import ManifestLine, render_manifest
from ceremony.errors import IntegrityError
from ceremony.models.contribution import (
    BASE_INDEX,
    KEY_SUFFIX,
    ChainEntry,
    FinalizationRecord,
    NameKind,
    PendingContribution,
    classify_name,
    contribution_order,
    entry_filename,
    final_filename,
    finalization_record_filename,
    verification_key_filename,
)


logger = logging.getLogger(__name__)


class ChainStore:
    """Canonical chain directory plus the pending contribution pool.

    Usage:
        store = ChainStore(config)
        tip = store.tip()
        for pending in store.pending_contributions():
            ...
        store.integrate(pending, store.next_index())
        store.write_manifest()
    """

    def __init__(self, config: CeremonyConfig) -> None:
        self._config = config
        self._circuit = config.circuit_name

    @property
    def config(self) -> CeremonyConfig:
        return self._config

    @property
    def chain_dir(self) -> Path:
        return self._config.chain_dir

    @property
    def pending_dir(self) -> Path:
        return self._config.pending_dir

    def ensure_layout(self) -> None:
        for directory in (self.chain_dir, self.pending_dir):
            if not directory.is_dir():
                directory.mkdir(parents=True, exist_ok=True)
                logger.info("INIT: Created directory: %s", directory)

    # ------------------------------------------------------------------
    # Chain (read)
    # ------------------------------------------------------------------

    def entry_path(self, index: int) -> Path:
        return self.chain_dir / entry_filename(self._circuit, index)

    @property
    def base_key_path(self) -> Path:
        return self.entry_path(BASE_INDEX)

    @property
    def final_key_path(self) -> Path:
        return self.chain_dir / final_filename(self._circuit)

    @property
    def verification_key_path(self) -> Path:
        return self.chain_dir / verification_key_filename(self._circuit)

    @property
    def finalization_record_path(self) -> Path:
        return self.chain_dir / finalization_record_filename(self._circuit)

    @property
    def manifest_path(self) -> Path:
        return self._config.manifest_path

    def entries(self) -> list[ChainEntry]:
        """Numbered chain entries in index order. The final entry is excluded."""
        if not self.chain_dir.is_dir():
            return []
        found: list[ChainEntry] = []
        for path in self.chain_dir.iterdir():
            if not path.is_file():
                continue
            kind, index = classify_name(self._circuit, path.name)
            if kind == NameKind.NUMBERED and index is not None:
                found.append(ChainEntry(index=index, path=path))
        return sorted(found, key=lambda e: e.index)

    def stray_keys(self) -> list[Path]:
        """Key files in the chain directory that are not chain entries."""
        if not self.chain_dir.is_dir():
            return []
        return sorted(
            (
                p for p in self.chain_dir.iterdir()
                if p.is_file() and p.name.endswith(KEY_SUFFIX)
                and classify_name(self._circuit, p.name)[0]
                not in (NameKind.NUMBERED, NameKind.FINAL)
            ),
            key=lambda p: contribution_order(p.name),
        )

    def tip(self) -> Optional[ChainEntry]:
        """Highest-indexed non-final entry, or None if the chain is empty."""
        entries = self.entries()
        return entries[-1] if entries else None

    def missing_indices(self) -> list[int]:
        """Indices absent below the tip. Empty when the chain is contiguous from 0."""
        present = {e.index for e in self.entries()}
        if not present:
            return []
        return sorted(set(range(BASE_INDEX, max(present) + 1)) - present)

    def next_index(self) -> int:
        tip = self.tip()
        return BASE_INDEX if tip is None else tip.index + 1

    def final_entry(self) -> Optional[ChainEntry]:
        path = self.final_key_path
        if not path.is_file():
            return None
        return ChainEntry(index=self.next_index(), path=path, is_final=True)

    def is_finalized(self) -> bool:
        return self.final_key_path.is_file()

    def finalization_record(self) -> Optional[FinalizationRecord]:
        path = self.finalization_record_path
        if not path.is_file():
            return None
        with path.open("r", encoding="utf-8") as handle:
            return FinalizationRecord.from_dict(json.load(handle))

    # ------------------------------------------------------------------
    # Pending pool
    # ------------------------------------------------------------------

    def pending_contributions(self) -> list[PendingContribution]:
        """All ``*.key`` files in the pending pool, in protocol order.

        Malformed names are returned too (as NameKind.INVALID) so the
        aggregator can reject them with a record rather than silently
        ignoring them.
        """
        if not self.pending_dir.is_dir():
            return []
        candidates = [
            p for p in self.pending_dir.iterdir()
            if p.is_file() and p.name.endswith(KEY_SUFFIX) and not p.name.startswith(".")
        ]
        candidates.sort(key=lambda p: contribution_order(p.name))
        pending: list[PendingContribution] = []
        for path in candidates:
            kind, index = classify_name(self._circuit, path.name)
            if kind == NameKind.FINAL:
                kind = NameKind.INVALID
            pending.append(
                PendingContribution(
                    path=path,
                    size=path.stat().st_size,
                    name_kind=kind,
                    embedded_index=index,
                )
            )
        return pending

    # ------------------------------------------------------------------
    # Chain (write) — aggregator and finalizer only
    # ------------------------------------------------------------------

    def integrate(self, pending: PendingContribution, index: int, source_checksum: str) -> Path:
        """Copy a validated contribution into the chain under ``index``.

        The copy is checksummed and compared with the source checksum
        before the pending artifact is removed. On mismatch the partial
        copy is deleted and IntegrityError is raised.
        """
        target = self.entry_path(index)
        if target.exists():
            raise IntegrityError(f"Chain entry already exists: {target.name}")

        shutil.copyfile(pending.path, target)
        recorded = write_sidecar(target)
        if recorded != source_checksum:
            target.unlink(missing_ok=True)
            sidecar_path(target).unlink(missing_ok=True)
            raise IntegrityError(
                f"File corruption during copy of {pending.filename}: "
                f"source {source_checksum} != copy {recorded}"
            )

        pending.path.unlink()
        sidecar_path(pending.path).unlink(missing_ok=True)
        return target

    def remove_entry(self, path: Path) -> None:
        path.unlink(missing_ok=True)
        sidecar_path(path).unlink(missing_ok=True)

    def write_finalization_record(self, record: FinalizationRecord) -> Path:
        path = self.finalization_record_path
        path.write_text(
            json.dumps(record.to_dict(), indent=2, sort_keys=True) + "\n",
            encoding="utf-8",
        )
        return path

    # ------------------------------------------------------------------
    # Manifest
    # ------------------------------------------------------------------

    def manifest_entries(self) -> list[ManifestLine]:
        """Manifest lines in canonical order: parameters, chain, final artifacts."""
        lines: list[ManifestLine] = []
        labels = {"constraints": "CONSTRAINTS", "universal_params": "PARAMS"}
        for param in self._config.pinned_parameters:
            if param.path.is_file():
                lines.append(
                    ManifestLine(labels[param.name], self._relative(param.path), sha256_file(param.path))
                )
        for entry in self.entries():
            lines.append(ManifestLine("KEY", self._relative(entry.path), sha256_file(entry.path)))
        for label, path in (
            ("FINAL", self.final_key_path),
            ("VKEY", self.verification_key_path),
        ):
            if path.is_file():
                lines.append(ManifestLine(label, self._relative(path), sha256_file(path)))
        return lines

    def write_manifest(self) -> Path:
        """Regenerate the manifest over the whole chain. Idempotent."""
        path = self.manifest_path
        text = render_manifest(
            self._circuit,
            self.manifest_entries(),
            self._relative(path),
        )
        path.write_text(text, encoding="utf-8")
        return path

    def resolve(self, relative: str) -> Path:
        """Resolve a manifest path back to the filesystem."""
        return self._config.root / relative

    def _relative(self, path: Path) -> str:
        try:
            return path.relative_to(self._config.root).as_posix()
        except ValueError:
            return path.as_posix()
