"""SHA-256 file checksums and ``.sha256`` sidecar files.

Sidecars use the coreutils ``sha256sum`` line format
(``<hex digest>  <filename>``) so participants can check artifacts
with ``sha256sum -c`` without any ceremony tooling.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Optional


_CHUNK = 1024 * 1024


def sha256_file(path: Path) -> str:
    """Hex SHA-256 of a file's raw bytes, streamed."""
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sidecar_path(artifact: Path) -> Path:
    return artifact.with_name(artifact.name + ".sha256")


def write_sidecar(artifact: Path, digest: Optional[str] = None) -> str:
    """Write ``<artifact>.sha256`` and return the digest recorded in it."""
    if digest is None:
        digest = sha256_file(artifact)
    sidecar_path(artifact).write_text(f"{digest}  {artifact.name}\n", encoding="utf-8")
    return digest


def read_sidecar(artifact: Path) -> Optional[str]:
    """Return the digest recorded next to an artifact, or None if absent/empty.

    Undecodable bytes are replaced rather than raised, so a garbled
    sidecar yields a value that never matches a real digest.
    """
    path = sidecar_path(artifact)
    if not path.exists():
        return None
    fields = path.read_bytes().decode("ascii", errors="replace").split()
    return fields[0].lower() if fields else None
