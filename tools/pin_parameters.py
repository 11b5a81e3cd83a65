#!/usr/bin/env python3
"""Pin the ceremony parameters: record their reference SHA-256 checksums.

Run once by the coordinator before the ceremony opens, after the
constraint system has been compiled and the universal parameters
downloaded and checked against their published hash. The computed
checksums are written into config/ceremony.json; from then on every
component refuses to run if either file changes by a single byte.

Usage:
    python3 tools/pin_parameters.py
    python3 tools/pin_parameters.py --check

Honours CEREMONY_ROOT from a .env file at the project root.
"""

import argparse
import json
import os
import sys
from pathlib import Path

# Add src to path for ceremony imports
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from dotenv import load_dotenv
from ceremony.config import CONFIG_FILENAME
from ceremony.crypto.checksum import sha256_file

load_dotenv(ROOT / ".env")

CONFIG_PATH = ROOT / "config" / CONFIG_FILENAME
CEREMONY_ROOT = Path(os.getenv("CEREMONY_ROOT") or ROOT)

# Checksums published by a third party are checked, never rewritten.
PUBLISHED = {"universal_params"}


def pin(check_only: bool = False) -> int:
    if not CONFIG_PATH.exists():
        print(f"ERROR: Config not found: {CONFIG_PATH}")
        return 1

    data = json.loads(CONFIG_PATH.read_text(encoding="utf-8"))
    pinned = data["pinned_parameters"]
    changed = False

    for name, entry in pinned.items():
        path = CEREMONY_ROOT / entry["path"]
        if not path.is_file():
            print(f"ERROR: {name} file missing: {path}")
            return 1
        size = path.stat().st_size
        if size < int(entry["min_size"]):
            print(f"ERROR: {name} smaller than minimum size: {size} < {entry['min_size']}")
            return 1

        digest = sha256_file(path)
        if digest == entry["sha256"]:
            print(f"  {name}: {digest} (unchanged)")
            continue
        if name in PUBLISHED:
            print(f"ERROR: {name} does not match its published checksum: {digest}")
            return 1
        changed = True
        print(f"  {name}: {entry['sha256']} -> {digest}")
        entry["sha256"] = digest

    if check_only:
        if changed:
            print("Pinned checksums do not match the files on disk.")
            return 1
        print("Pinned checksums match.")
        return 0

    if changed:
        CONFIG_PATH.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
        print(f"Updated {CONFIG_PATH}")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Pin ceremony parameter checksums")
    parser.add_argument("--check", action="store_true", help="Compare only; do not write")
    sys.exit(pin(check_only=parser.parse_args().check))
