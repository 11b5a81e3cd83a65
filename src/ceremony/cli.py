"""Ceremony CLI — command-line entry points for coordinators and participants.

Usage:
    ceremony status
    ceremony contribute --name alice
    ceremony aggregate
    ceremony verify
    ceremony finalize 4512345

Exit codes (for schedulers): 0 ok, 1 needs review, 3 no-op / retry
later, 4 fatal. argparse usage errors exit with 2.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from ceremony.beacon.drand import DrandClient
from ceremony.config import DEFAULT_CONFIG_DIR, CeremonyConfig
from ceremony.engine.aggregator import ChainAggregator
from ceremony.engine.finalizer import Finalizer
from ceremony.engine.submitter import ContributionSubmitter
from ceremony.engine.verifier import ChainVerifier
from ceremony.errors import CeremonyError, ParameterIntegrityError
from ceremony.models.outcome import ExitCode
from ceremony.persistence.chain_store import ChainStore
from ceremony.persistence.event_log import EventLog
from ceremony.toolkit.snarkjs import SnarkjsToolkit


logger = logging.getLogger("ceremony")


def _load(args: argparse.Namespace) -> tuple[CeremonyConfig, ChainStore]:
    config = CeremonyConfig.from_config_dir(args.config, root=args.root)
    return config, ChainStore(config)


def _audit_log(config: CeremonyConfig, component: str) -> EventLog:
    return EventLog.for_run(config.audit_dir, component)


def _print_lines(lines: list[str]) -> None:
    for line in lines:
        print(line)


def cmd_status(args: argparse.Namespace) -> int:
    config, store = _load(args)
    tip = store.tip()
    record = store.finalization_record()
    status = {
        "circuit": config.circuit_name,
        "chain_dir": str(store.chain_dir),
        "entries": len(store.entries()),
        "tip": tip.path.name if tip else None,
        "pending": [p.filename for p in store.pending_contributions()],
        "finalized": store.is_finalized(),
        "beacon_round": record.round_id if record else None,
    }
    print(json.dumps(status, indent=2))
    return ExitCode.OK


def cmd_contribute(args: argparse.Namespace) -> int:
    config, store = _load(args)
    submitter = ContributionSubmitter(
        store,
        SnarkjsToolkit(config.snarkjs_bin),
        event_log=_audit_log(config, "contribute"),
    )
    receipt = submitter.contribute(label=args.name)
    print(f"Contribution written: {receipt.path}")
    print(f"Built on: {receipt.predecessor.name}")
    print(f"SHA-256: {receipt.checksum}")
    print("Submit the .key file (and its .sha256 sidecar) to the coordinator.")
    return ExitCode.OK


def cmd_aggregate(args: argparse.Namespace) -> int:
    config, store = _load(args)
    aggregator = ChainAggregator(
        store,
        SnarkjsToolkit(config.snarkjs_bin),
        event_log=_audit_log(config, "aggregate"),
    )
    report = aggregator.run()
    _print_lines(report.summary_lines())
    return report.outcome.exit_code


def cmd_verify(args: argparse.Namespace) -> int:
    config, store = _load(args)
    verifier = ChainVerifier(
        store,
        SnarkjsToolkit(config.snarkjs_bin),
        event_log=_audit_log(config, "verify"),
    )
    report = verifier.run()
    _print_lines(report.summary_lines())
    return report.exit_code


def cmd_finalize(args: argparse.Namespace) -> int:
    config, store = _load(args)
    finalizer = Finalizer(
        store,
        SnarkjsToolkit(config.snarkjs_bin),
        DrandClient(config.beacon_endpoint, config.retry),
        event_log=_audit_log(config, "finalize"),
    )
    report = finalizer.run(args.round)
    print(f"Finalization: {report.status.value}")
    if report.message:
        print(f"  {report.message}")
    if report.record is not None:
        print(f"  beacon round: {report.record.round_id}")
        print(f"  beacon hash: {report.record.beacon_hash}")
        print(f"  final key: {report.final_key}")
        print(f"  verification key: {report.verification_key}")
    return report.exit_code


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}") from exc
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer: {value!r}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ceremony",
        description="Trusted setup ceremony — contribution chain coordinator",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_DIR,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--root",
        type=Path,
        default=None,
        help="Ceremony root directory (default: $CEREMONY_ROOT or the config parent)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show chain tip, pending pool and finalization state")

    # contribute
    p_contrib = sub.add_parser("contribute", help="Add one contribution on top of the chain tip")
    p_contrib.add_argument("--name", default=None, help="Contributor label (default: Anonymous)")

    # aggregate
    sub.add_parser("aggregate", help="Validate and integrate pending contributions")

    # verify
    sub.add_parser("verify", help="Independently re-verify the whole chain")

    # finalize
    p_final = sub.add_parser("finalize", help="Apply the public randomness beacon")
    p_final.add_argument("round", type=_positive_int, help="Pre-committed drand round number")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return ExitCode.OK

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )

    commands = {
        "status": cmd_status,
        "contribute": cmd_contribute,
        "aggregate": cmd_aggregate,
        "verify": cmd_verify,
        "finalize": cmd_finalize,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return ExitCode.FATAL

    try:
        return int(handler(args))
    except ParameterIntegrityError as exc:
        print(f"CRITICAL_SECURITY: {exc}", file=sys.stderr)
        print("Ceremony halted: pinned parameters cannot be trusted.", file=sys.stderr)
        return ExitCode.FATAL
    except CeremonyError as exc:
        print(f"FATAL: {type(exc).__name__}: {exc}", file=sys.stderr)
        return ExitCode.FATAL


if __name__ == "__main__":
    raise SystemExit(main())
