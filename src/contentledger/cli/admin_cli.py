"""
Admin CLI for inspecting and maintaining the ledgers.

Usage:
    contentledger-admin stats
    contentledger-admin bucketize-rejects [--out-dir DIR]
    contentledger-admin requeue-transient [--dry-run]
    contentledger-admin unaccounted [--scope promo] [--limit N]
    contentledger-admin check-checkpoint [--fix]
"""

import sys
from pathlib import Path

from contentledger.batch.auditor import compute_domain_sets
from contentledger.batch.requeue import TransientRequeuer
from contentledger.cli.common import (
    CliArgumentParser,
    add_common_arguments,
    execute,
    load_cli_config,
    print_keys,
    print_table,
)
from contentledger.core.classification import bucketize
from contentledger.core.exceptions import ExitCode, InvariantViolationError
from contentledger.core.models.record import FailureRecord
from contentledger.observability.logger import get_logger
from contentledger.storage.atomic import atomic_write_lines
from contentledger.storage.ground_truth import load_ground_truth
from contentledger.storage.ledger import LedgerSet
from contentledger.storage.lock import PipelineLock
from contentledger.storage.state_store import load_checkpoint, save_checkpoint

logger = get_logger(__name__)


def stats_command(args) -> int:
    """Line, unique-key and duplicate counts for every ledger."""
    config = load_cli_config(args)
    ledgers = LedgerSet.from_config(config)

    print(f"\n{'=' * 60}")
    print("LEDGER STATS")
    print(f"{'=' * 60}\n")
    print(f"{'Ledger':<16} {'Lines':>8} {'Parsed':>8} {'Unique':>8} {'Dupes':>8}")
    print(f"{'-' * 60}")

    stats = {
        ledger.name: ledger.stats(config.audit_sample_size)
        for ledger in [*ledgers.canonical(), ledgers.reject_history]
    }
    for name, s in stats.items():
        print(f"{name:<16} {s.lines:>8} {s.parsed:>8} {s.unique:>8} {s.duplicate_count:>8}")

    checkpoint = load_checkpoint(config.paths.checkpoint)
    print(f"\nCheckpoint: done={len(checkpoint.done)} rejected={len(checkpoint.rejected)} "
          f"queued={len(checkpoint.queued)}")

    # Drift and history may legitimately repeat keys
    dupes_found = False
    for ledger in (ledgers.success, ledgers.reject):
        s = stats[ledger.name]
        if s.duplicate_count:
            dupes_found = True
            print_keys(f"\nDuplicate keys in {ledger.name}", s.duplicate_sample)

    print(f"\n{'=' * 60}\n")
    return ExitCode.DUPLICATE_KEYS if dupes_found else ExitCode.OK


def bucketize_rejects_command(args) -> int:
    """Group rejects by error bucket; optionally write one key list per bucket."""
    config = load_cli_config(args)
    ledgers = LedgerSet.from_config(config)
    rejects = [r for r in ledgers.reject.read_all() if isinstance(r, FailureRecord)]
    buckets = bucketize(rejects)

    print_table(
        f"REJECT BUCKETS ({len(rejects)} rejects)",
        {bucket.value: len(keys) for bucket, keys in buckets.items()},
    )

    if args.out_dir:
        out_dir = Path(args.out_dir)
        for bucket, keys in buckets.items():
            path = out_dir / f"rejects-{bucket.value.lower()}.txt"
            atomic_write_lines(path, keys)
        print(f"Bucket key lists written to {out_dir}")
    return ExitCode.OK


def requeue_transient_command(args) -> int:
    config = load_cli_config(args)
    paths = config.paths
    requeuer = TransientRequeuer(LedgerSet.from_config(config), paths.checkpoint, config.audit_sample_size)

    with PipelineLock(paths.lock, role="requeue"):
        _, result = requeuer.requeue(load_checkpoint(paths.checkpoint), dry_run=args.dry_run)

    title = "TRANSIENT REQUEUE (dry run)" if args.dry_run else "TRANSIENT REQUEUE COMPLETE"
    print_table(title, result.summary())
    if result.requeued:
        print_keys("Requeued keys", result.requeued, config.audit_sample_size)
    return ExitCode.OK


def unaccounted_command(args) -> int:
    """List keys of the population that are in no bucket yet."""
    config = load_cli_config(args)
    scope = args.scope or config.default_scope
    ground_truth = load_ground_truth(config, scope)
    checkpoint = load_checkpoint(config.paths.checkpoint)

    sets = compute_domain_sets(
        scope=scope,
        population=ground_truth.population(scope),
        manual=ground_truth.manual,
        deny=ground_truth.deny,
        done=checkpoint.done_keys(),
        rejected=checkpoint.rejected_keys(),
    )
    print_table(f"DOMAIN SETS: scope={scope}", sets.counts())
    print_keys("Unaccounted keys", sorted(sets.unaccounted), args.limit)
    if sets.population_drift:
        print_keys("\nPopulation drift", sorted(sets.population_drift), args.limit)
    return ExitCode.OK if sets.identity_holds else ExitCode.INVARIANT_VIOLATION


def check_checkpoint_command(args) -> int:
    """
    Check done ∩ rejected and queued overlap; ``--fix`` applies success-wins.
    """
    config = load_cli_config(args)
    path = config.paths.checkpoint
    sample = config.audit_sample_size

    with PipelineLock(config.paths.lock, role="check-checkpoint"):
        checkpoint = load_checkpoint(path)
        overlap = sorted(checkpoint.overlap())
        settled = checkpoint.done_keys() | checkpoint.rejected_keys()
        queued_overlap = sorted(checkpoint.queued_keys() & settled)

        print_table("CHECKPOINT CHECK", {
            "done": len(checkpoint.done),
            "rejected": len(checkpoint.rejected),
            "queued": len(checkpoint.queued),
            "done ∩ rejected": len(overlap),
            "queued ∩ (done ∪ rejected)": len(queued_overlap),
        })

        if not overlap and not queued_overlap:
            return ExitCode.OK

        if not args.fix:
            raise InvariantViolationError(
                f"Checkpoint overlap: {len(overlap)} done/rejected, {len(queued_overlap)} queued",
                offending_keys=(overlap + queued_overlap)[:sample],
            )

        rejected = {k: v for k, v in checkpoint.rejected.items() if k not in checkpoint.done}
        queued = {k: v for k, v in checkpoint.queued.items() if k not in settled}
        fixed = checkpoint.model_copy(update={"rejected": rejected, "queued": queued})
        save_checkpoint(path, fixed)
        logger.info(
            "Checkpoint overlap fixed (success wins)",
            extra={"removed_rejected": len(overlap), "removed_queued": len(queued_overlap)},
        )
        print(f"Fixed: removed {len(overlap)} rejected and {len(queued_overlap)} queued entries")
    return ExitCode.OK


def build_parser() -> CliArgumentParser:
    parser = CliArgumentParser(
        prog="contentledger-admin",
        description="Content ledger administration",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("stats", help="Ledger line/key/duplicate counts")

    bucket_parser = subparsers.add_parser("bucketize-rejects", help="Group rejects by error bucket")
    bucket_parser.add_argument("--out-dir", default=None, help="Write one key list per bucket here")

    requeue_parser = subparsers.add_parser("requeue-transient", help="Requeue transient rejects")
    requeue_parser.add_argument("--dry-run", action="store_true", help="Only report what would be requeued")

    unaccounted_parser = subparsers.add_parser("unaccounted", help="List population keys in no bucket")
    unaccounted_parser.add_argument("--scope", default=None, help="Population scope (default: from config)")
    unaccounted_parser.add_argument("--limit", type=int, default=None, help="Maximum keys to print")

    check_parser = subparsers.add_parser("check-checkpoint", help="Check checkpoint bucket overlap")
    check_parser.add_argument("--fix", action="store_true", help="Remove overlapping entries (success wins)")

    for sub in subparsers.choices.values():
        add_common_arguments(sub)

    return parser


COMMANDS = {
    "stats": stats_command,
    "bucketize-rejects": bucketize_rejects_command,
    "requeue-transient": requeue_transient_command,
    "unaccounted": unaccounted_command,
    "check-checkpoint": check_checkpoint_command,
}


def main(argv: list[str] | None = None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(ExitCode.INVALID_ARGUMENTS)

    execute(COMMANDS[args.command], args)


if __name__ == "__main__":
    main()
