"""
Helpers shared by the batch and admin command lines.
"""

import argparse
import sys
from typing import Any, Callable

from contentledger.core.config import PipelineConfig, load_config
from contentledger.core.exceptions import ContentLedgerError, ExitCode, InvalidArgumentsError
from contentledger.observability.logger import get_logger
from contentledger.utils.validation import (
    ValidationError,
    validate_file_path,
    validate_limit,
    validate_scope,
    validate_sleep,
)

logger = get_logger(__name__)


class CliArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that exits with the invalid-arguments code (1) instead of 2."""

    def error(self, message: str):
        self.print_usage(sys.stderr)
        self.exit(int(ExitCode.INVALID_ARGUMENTS), f"{self.prog}: error: {message}\n")


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default=None,
        help="Path to pipeline YAML config (default: config/pipeline.yaml if present)",
    )


def load_cli_config(args: argparse.Namespace) -> PipelineConfig:
    """Load ``--config`` and check the scope, limit, cycles and sleep flags against it."""
    try:
        config_path = validate_file_path(args.config, "--config") if args.config else None
        config = load_config(config_path)
        if getattr(args, "scope", None):
            args.scope = validate_scope(args.scope, set(config.scopes), "--scope")
        if getattr(args, "limit", None) is not None:
            args.limit = validate_limit(args.limit, "--limit")
        if getattr(args, "cycles", None) is not None:
            args.cycles = validate_limit(args.cycles, "--cycles")
        if getattr(args, "sleep", None) is not None:
            args.sleep = validate_sleep(args.sleep, "--sleep")
    except ValidationError as e:
        raise InvalidArgumentsError(str(e)) from e
    return config


def print_table(title: str, rows: dict[str, Any], width: int = 60) -> None:
    """Print an aligned two-column summary so operators can diff runs."""
    print(f"\n{'=' * width}")
    print(title)
    print(f"{'=' * width}")
    for name, value in rows.items():
        print(f"  {name:<32} {value}")
    print(f"{'=' * width}\n")


def print_keys(title: str, keys: list[str], limit: int | None = None) -> None:
    shown = keys if limit is None else keys[:limit]
    print(f"{title} ({len(keys)}):")
    for key in shown:
        print(f"  - {key}")
    if len(shown) < len(keys):
        print(f"  ... and {len(keys) - len(shown)} more")


def execute(handler: Callable[[argparse.Namespace], int], args: argparse.Namespace) -> None:
    """
    Run a subcommand and exit with its code.

    ContentLedgerError is reported and mapped to its exit code here, at the
    edge; anything else propagates with a traceback.
    """
    try:
        code = handler(args)
    except ContentLedgerError as e:
        logger.error(
            f"{type(e).__name__}: {e.message}",
            extra={"exit_code": int(e.exit_code), "offending_keys": e.offending_keys},
        )
        print(f"\nError: {e.message}", file=sys.stderr)
        if e.offending_keys:
            print(f"Offending keys: {', '.join(e.offending_keys)}", file=sys.stderr)
        sys.exit(int(e.exit_code))
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    sys.exit(int(code or ExitCode.OK))
