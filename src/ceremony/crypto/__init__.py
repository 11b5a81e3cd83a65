"""Hashing primitives — file checksums, sidecars, self-verifying manifest."""

from ceremony.crypto.checksum import read_sidecar, sha256_bytes, sha256_file, write_sidecar
from ceremony.crypto.manifest import ManifestLine, check_manifest, render_manifest

__all__ = [
    "ManifestLine",
    "check_manifest",
    "read_sidecar",
    "render_manifest",
    "sha256_bytes",
    "sha256_file",
    "write_sidecar",
]
