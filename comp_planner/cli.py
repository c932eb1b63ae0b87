"""Command line helpers: refresh shared rates, convert amounts, merge proposal files."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Sequence

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from comp_planner import CompPlanner
from comp_planner.db import DEFAULT_SQLITE_DB_PATH
from comp_planner.exceptions import CompPlannerError, LiveSourceError, NetworkTimeout
from comp_planner.ingestion.proposal_csv import ProposalCSVParser
from comp_planner.merge.engine import CompensationMergeEngine, import_summary
from comp_planner.persistence.snapshot import SnapshotState
from comp_planner.rates.models import RateTable
from comp_planner.utils.clock import utc_now
from comp_planner.utils.logger import get_logger

LOGGER = get_logger(__name__)

__all__ = ["build_parser", "parse_args", "refresh_rates", "main"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="comp-planner", description=__doc__)
    parser.add_argument(
        "--db",
        dest="db_url",
        default=f"sqlite:///{DEFAULT_SQLITE_DB_PATH.as_posix()}",
        help="Database URL for cached rates and snapshots (defaults to the bundled SQLite file)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    refresh = subparsers.add_parser("refresh-rates", help="Fetch the shared USD rate table")
    refresh.add_argument("--attempts", type=int, default=3, help="Maximum fetch attempts")
    refresh.add_argument(
        "--min-wait", type=float, default=2.0, help="Initial back-off between attempts (seconds)"
    )

    convert = subparsers.add_parser("convert", help="Convert an amount between currencies")
    convert.add_argument("amount", type=float)
    convert.add_argument("from_currency", metavar="FROM")
    convert.add_argument("to_currency", metavar="TO", nargs="?", default="USD")
    convert.add_argument("--offline", action="store_true", help="Skip the live rate source")

    merge = subparsers.add_parser("merge-proposals", help="Apply a proposal CSV to a snapshot file")
    merge.add_argument("--snapshot", required=True, type=Path, help="Exported snapshot JSON")
    merge.add_argument("--proposals", required=True, type=Path, help="Manager proposal CSV")
    merge.add_argument("--out", type=Path, help="Where to write the merged snapshot JSON")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


async def refresh_rates(planner: CompPlanner, *, attempts: int = 3, min_wait: float = 2.0) -> RateTable:
    """Refresh the shared table, retrying transient live-source failures."""

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=30),
        retry=retry_if_exception_type((LiveSourceError, NetworkTimeout)),
        reraise=True,
    ):
        with attempt:
            number = attempt.retry_state.attempt_number
            if number > 1:
                LOGGER.info("Retrying rate refresh (attempt %s/%s)", number, attempts)
            return await planner.refresh_rates()
    raise LiveSourceError("Rate refresh did not run")  # pragma: no cover - reraise=True


def _run_refresh(args: argparse.Namespace) -> int:
    with CompPlanner(args.db_url) as planner:
        table = asyncio.run(refresh_rates(planner, attempts=args.attempts, min_wait=args.min_wait))
    print(f"Stored {len(table.rates)} {table.base} rates observed at {table.last_updated.isoformat()}")
    return 0


def _run_convert(args: argparse.Namespace) -> int:
    with CompPlanner(args.db_url, offline=args.offline) as planner:
        result = asyncio.run(planner.convert(args.amount, args.from_currency, args.to_currency))
    if not result.converted:
        print(f"No rate available for {result.original_currency} → {args.to_currency.upper()}", file=sys.stderr)
        return 1
    line = (
        f"{result.original_amount:,.2f} {result.original_currency} = "
        f"{result.converted_amount:,.2f} {result.target_currency} "
        f"(rate {result.rate:.6f}, {result.provenance.value})"
    )
    if result.degradation.degraded:
        line += " [static fallback rates in use]"
    print(line)
    return 0


def _run_merge(args: argparse.Namespace) -> int:
    state = SnapshotState.from_document(json.loads(args.snapshot.read_text(encoding="utf-8")))
    parsed = ProposalCSVParser().parse(args.proposals)
    result = CompensationMergeEngine().merge(state.record_list, parsed.rows)
    result.warnings[:0] = parsed.warnings
    print(import_summary(result))
    if args.out is not None:
        merged = SnapshotState.capture(result.updated, state.budget, utc_now())
        args.out.write_text(json.dumps(merged.to_document(), indent=2), encoding="utf-8")
        LOGGER.info("Wrote merged snapshot to %s", args.out)
    return 0 if result.success else 1


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    handlers = {
        "refresh-rates": _run_refresh,
        "convert": _run_convert,
        "merge-proposals": _run_merge,
    }
    try:
        return handlers[args.command](args)
    except (CompPlannerError, OSError, json.JSONDecodeError) as exc:
        LOGGER.error("%s failed: %s", args.command, exc)
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
