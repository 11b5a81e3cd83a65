"""Checksum manifest — a self-verifying list of artifact checksums.

Layout::

    Trusted Setup Checksum Manifest
    Circuit: giftcard_merkle
    Security Assumption: At least one honest participant

    CHECKSUMS (SHA-256):
    CONSTRAINTS: circuits/build/giftcard_merkle.r1cs:<sha256>
    PARAMS: circuits/ptau/powersOfTau28_hez_final_18.ptau:<sha256>
    KEY: ceremony/output/giftcard_merkle_0000.key:<sha256>
    ...
    MANIFEST: ceremony/output/checksum_manifest.txt:<sha256>

The last line carries the SHA-256 of every byte that precedes it
(including the newline ending the line before). Recomputing that hash
over all lines but the last must reproduce the last line's value; no
external state is needed to check it.

The manifest is a pure function of the listed artifacts, so
regenerating it over an unchanged chain yields identical bytes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from ceremony.crypto.checksum import sha256_bytes


TITLE = "Trusted Setup Checksum Manifest"
CHECKSUMS_HEADER = "CHECKSUMS (SHA-256):"
SELF_LABEL = "MANIFEST"


@dataclass(frozen=True)
class ManifestLine:
    label: str
    path: str
    checksum: str

    def render(self) -> str:
        return f"{self.label}: {self.path}:{self.checksum}"


@dataclass
class ManifestCheck:
    """Result of checking a manifest's trailing self-checksum."""
    valid: bool
    expected: Optional[str] = None
    computed: Optional[str] = None
    entries: list[ManifestLine] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def render_manifest(
    circuit_name: str,
    entries: list[ManifestLine],
    manifest_path: str,
) -> str:
    """Render the manifest text, including its trailing self-checksum line."""
    lines = [
        TITLE,
        f"Circuit: {circuit_name}",
        "Security Assumption: At least one honest participant",
        "",
        CHECKSUMS_HEADER,
    ]
    lines.extend(entry.render() for entry in entries)
    body = "\n".join(lines) + "\n"
    self_line = ManifestLine(SELF_LABEL, manifest_path, sha256_bytes(body.encode("utf-8")))
    return body + self_line.render() + "\n"


def parse_line(line: str) -> Optional[ManifestLine]:
    """Parse ``LABEL: path:checksum``. Returns None for non-entry lines."""
    label, sep, rest = line.partition(": ")
    if not sep or not label.isupper() or " " in label:
        return None
    path, sep, checksum = rest.rpartition(":")
    if not sep or not path:
        return None
    return ManifestLine(label=label, path=path, checksum=checksum.strip())


def check_manifest(text: str) -> ManifestCheck:
    """Verify the trailing self-checksum of a manifest.

    The trailing line is located as the last non-empty line; everything
    before it (byte-for-byte) is what the checksum covers.
    """
    if not text.strip():
        return ManifestCheck(valid=False, errors=["manifest is empty"])

    stripped = text.rstrip("\n")
    cut = stripped.rfind("\n")
    if cut < 0:
        return ManifestCheck(valid=False, errors=["manifest has no checksum body"])
    body = stripped[: cut + 1]
    last = parse_line(stripped[cut + 1:])

    check = ManifestCheck(valid=False)
    if last is None or last.label != SELF_LABEL:
        check.errors.append("last line is not a MANIFEST self-checksum line")
        return check

    in_checksums = False
    for raw in body.splitlines():
        if raw == CHECKSUMS_HEADER:
            in_checksums = True
            continue
        if not in_checksums:
            continue
        entry = parse_line(raw)
        if entry is None:
            check.errors.append(f"malformed manifest line: {raw!r}")
            continue
        check.entries.append(entry)

    check.expected = last.checksum
    check.computed = sha256_bytes(body.encode("utf-8"))
    if check.computed != check.expected:
        check.errors.append(
            f"self-checksum mismatch: recorded {check.expected}, computed {check.computed}"
        )
    check.valid = not check.errors
    return check
