"""
Command-line interface for the reconciliation pipeline.

Usage:
    contentledger-batch consolidate [--ingest-raw] [--limit N]
    contentledger-batch dedupe
    contentledger-batch promote
    contentledger-batch sync
    contentledger-batch audit [--scope promo]
    contentledger-batch recover [--scope promo]
    contentledger-batch run [--cycles N | --once] [--sleep SECONDS]
    contentledger-batch plan [--scope promo] [--limit N]

Exit codes: 0 ok, 1 invalid arguments, 2 missing files, 3 invariant violation,
5 lock held, 7 duplicate keys, 8 cross-ledger overlap.
"""

import argparse
import sys

from contentledger.batch.auditor import InvariantAuditor
from contentledger.batch.checkpoint_sync import CheckpointSync
from contentledger.batch.consolidator import Consolidator
from contentledger.batch.deduplicator import Deduplicator
from contentledger.batch.pipeline import ReconciliationPipeline
from contentledger.batch.planner import plan_next_batch, write_batch_file
from contentledger.batch.promotion import PromotionMerger
from contentledger.cli.common import (
    CliArgumentParser,
    add_common_arguments,
    execute,
    load_cli_config,
    print_keys,
    print_table,
)
from contentledger.core.exceptions import DuplicateKeysError, ExitCode
from contentledger.core.models.pipeline_state import PipelineStage, PipelineState
from contentledger.core.scoring import RecordScorer
from contentledger.observability.logger import get_logger
from contentledger.storage.ground_truth import load_ground_truth
from contentledger.storage.ledger import LedgerSet
from contentledger.storage.lock import PipelineLock
from contentledger.storage.state_store import load_checkpoint, load_manifest

logger = get_logger(__name__)


def consolidate_command(args) -> int:
    config = load_cli_config(args)
    paths = config.paths
    ledgers = LedgerSet.from_config(config)

    with PipelineLock(paths.lock, role="consolidate"):
        manifest = load_manifest(paths.manifest)
        result = Consolidator(config, ingest_raw=args.ingest_raw, limit=args.limit).run(manifest)

        # Consolidation routes repeated keys to Drift, so canonical duplicates mean corruption
        sample = config.audit_sample_size
        success_stats = ledgers.success.stats(sample)
        reject_stats = ledgers.reject.stats(sample)
        dupe_count = success_stats.duplicate_count + reject_stats.duplicate_count
        if dupe_count:
            raise DuplicateKeysError(
                f"{dupe_count} duplicate keys in Success/Reject after consolidation",
                offending_keys=sorted(
                    set(success_stats.duplicate_sample) | set(reject_stats.duplicate_sample)
                )[:sample],
            )

    print_table("CONSOLIDATION COMPLETE", result.summary())
    return ExitCode.OK


def dedupe_command(args) -> int:
    config = load_cli_config(args)
    ledgers = LedgerSet.from_config(config)
    deduplicator = Deduplicator(RecordScorer(config.content_fields, config.timestamp_fields))

    with PipelineLock(config.paths.lock, role="dedupe"):
        results = deduplicator.dedupe_all(ledgers.canonical())

    rows = {}
    for name, result in results.items():
        s = result.summary()
        rows[name] = f"{s['before']} lines -> {s['after']} records (exact -{s['exact_dropped']}, key -{s['key_dropped']})"
    print_table("DEDUPLICATION COMPLETE", rows)
    return ExitCode.OK


def promote_command(args) -> int:
    config = load_cli_config(args)
    ledgers = LedgerSet.from_config(config)
    merger = PromotionMerger(
        ledgers,
        RecordScorer(config.content_fields, config.timestamp_fields),
        config.audit_sample_size,
    )

    with PipelineLock(config.paths.lock, role="promote"):
        result = merger.promote()

    print_table("PROMOTION COMPLETE", result.summary())
    return ExitCode.OK


def sync_command(args) -> int:
    config = load_cli_config(args)
    paths = config.paths
    sync = CheckpointSync(LedgerSet.from_config(config), paths.checkpoint, config.audit_sample_size)

    with PipelineLock(paths.lock, role="sync"):
        _, result = sync.sync(load_checkpoint(paths.checkpoint))

    print_table("CHECKPOINT SYNC COMPLETE", result.summary())
    return ExitCode.OK


def audit_command(args) -> int:
    config = load_cli_config(args)
    scope = args.scope or config.default_scope
    auditor = InvariantAuditor(LedgerSet.from_config(config), config.audit_sample_size)

    with PipelineLock(config.paths.lock, role="audit"):
        ground_truth = load_ground_truth(config, scope)
        report = auditor.audit(scope, ground_truth, load_checkpoint(config.paths.checkpoint))

    counts = report.sets.counts()
    rows = {f"bucket {name}": value for name, value in counts.items()}
    rows.update({f"ledger {name}": value for name, value in report.ledger_counts.items()})
    rows["identity holds"] = report.sets.identity_holds
    rows["result"] = "PASS" if report.passed else f"FAIL (exit {int(report.exit_code)})"
    print_table(f"AUDIT: scope={scope}", rows)

    for violation in report.violations:
        print(f"[{violation.kind}] {violation.message}")
        print_keys("  offending keys", violation.offending_keys)
    if report.sets.population_drift:
        print_keys("Population drift", sorted(report.sets.population_drift), config.audit_sample_size)
    return report.exit_code


def _print_cycle(state: PipelineState) -> None:
    rows = {}
    for result in state.results:
        status = "ok" if result.ok else f"FAILED (exit {int(result.exit_code)}): {result.reason}"
        rows[result.stage.value] = status
    rows["final stage"] = state.stage.value
    print_table(f"CYCLE: scope={state.scope}", rows)

    last = state.last_result
    if state.stage == PipelineStage.FAILED and last is not None:
        if last.offending_keys:
            print_keys("Offending keys", last.offending_keys)
        hint = last.summary.get("suggested_command")
        if hint:
            print(f"Suggested next step: {hint}")


def recover_command(args) -> int:
    config = load_cli_config(args)
    pipeline = ReconciliationPipeline(config, scope=args.scope, ingest_raw=args.ingest_raw)
    state = pipeline.recover_now()
    _print_cycle(state)
    return state.exit_code


def run_loop_command(args) -> int:
    config = load_cli_config(args)
    cycles = 1 if args.once else args.cycles
    pipeline = ReconciliationPipeline(config, scope=args.scope, ingest_raw=args.ingest_raw, limit=args.limit)

    logger.info(
        "Starting reconciliation loop",
        extra={"scope": pipeline.scope, "cycles": cycles, "sleep_seconds": args.sleep},
    )
    exit_code = pipeline.run_loop(cycles=cycles, sleep_seconds=args.sleep)
    print_table("RUN FINISHED", {"scope": pipeline.scope, "exit code": int(exit_code)})
    return exit_code


def plan_command(args) -> int:
    config = load_cli_config(args)
    scope = args.scope or config.default_scope

    with PipelineLock(config.paths.lock, role="plan"):
        ground_truth = load_ground_truth(config, scope)
        checkpoint = load_checkpoint(config.paths.checkpoint)
        plan = plan_next_batch(scope, ground_truth, checkpoint, limit=args.limit)
        write_batch_file(config.paths.batch_file, plan)

    rows = plan.summary()
    rows["batch file"] = str(config.paths.batch_file)
    print_table("NEXT BATCH PLANNED", rows)
    return ExitCode.OK


def build_parser() -> argparse.ArgumentParser:
    parser = CliArgumentParser(
        prog="contentledger-batch",
        description="Content ledger reconciliation pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Fold new raw files into the master ledgers
  contentledger-batch consolidate

  # Include raw reject files, at most 10 files
  contentledger-batch consolidate --ingest-raw --limit 10

  # Audit the promo population
  contentledger-batch audit --scope promo

  # One full cycle (consolidate, dedupe, promote, sync, audit, recovery if needed)
  contentledger-batch run --once

  # Loop forever, 30 seconds between cycles
  contentledger-batch run --sleep 30
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    consolidate_parser = subparsers.add_parser("consolidate", help="Merge new raw batch files")
    consolidate_parser.add_argument(
        "--ingest-raw",
        action="store_true",
        help="Also fold in raw rejects-*.jsonl files (default: skip)",
    )
    consolidate_parser.add_argument("--limit", type=int, default=None, help="Maximum raw files to merge")

    subparsers.add_parser("dedupe", help="Exact and quality dedupe of every ledger")
    subparsers.add_parser("promote", help="Arbitrate Drift against Success/Reject")
    subparsers.add_parser("sync", help="Rebuild the checkpoint from the ledgers")

    audit_parser = subparsers.add_parser("audit", help="Check invariants and the set identity")
    audit_parser.add_argument("--scope", default=None, help="Population scope (default: from config)")

    recover_parser = subparsers.add_parser("recover", help="Run the recovery sequence once")
    recover_parser.add_argument("--scope", default=None, help="Population scope (default: from config)")
    recover_parser.add_argument("--ingest-raw", action="store_true", help="Also fold in raw reject files")

    run_parser = subparsers.add_parser("run", help="Run reconciliation cycles")
    run_parser.add_argument("--scope", default=None, help="Population scope (default: from config)")
    run_parser.add_argument("--limit", type=int, default=None, help="Maximum raw files per cycle")
    run_parser.add_argument("--ingest-raw", action="store_true", help="Also fold in raw reject files")
    run_parser.add_argument("--cycles", type=int, default=None, help="Number of cycles (default: until killed)")
    run_parser.add_argument("--once", action="store_true", help="Run exactly one cycle")
    run_parser.add_argument("--sleep", type=float, default=None, help="Seconds between cycles")

    plan_parser = subparsers.add_parser("plan", help="Write the next batch of keys for the generator")
    plan_parser.add_argument("--scope", default=None, help="Population scope (default: from config)")
    plan_parser.add_argument("--limit", type=int, default=None, help="Maximum keys in the batch")

    for sub in subparsers.choices.values():
        add_common_arguments(sub)

    return parser


COMMANDS = {
    "consolidate": consolidate_command,
    "dedupe": dedupe_command,
    "promote": promote_command,
    "sync": sync_command,
    "audit": audit_command,
    "recover": recover_command,
    "run": run_loop_command,
    "plan": plan_command,
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
