"""Command-line tool for ad-hoc recomputes and inspecting stored rows.

Examples:
    $ shop-recon recompute --tenant acme --since 2025-01-01 --until 2025-01-31
    $ shop-recon recompute --tenant acme --mode financial --connections connections.json
    $ shop-recon show --tenant acme --mode shopify --since 2025-01-01 --until 2025-01-31 --fill-gaps
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace

from shop_recon.config import ReconConfig
from shop_recon.credentials import JsonCredentialStore
from shop_recon.driver import run_job
from shop_recon.exceptions import ConfigError
from shop_recon.sales import marts
from shop_recon.sales.store import DailySalesStore
from shop_recon.utils import parse_date

logger = logging.getLogger(__name__)


def _date_arg(value: str) -> str:
    try:
        parse_date(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date '{value}', expected YYYY-MM-DD") from None
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shop-recon",
        description="Recompute and inspect daily sales aggregates.",
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="SQLAlchemy URL of the daily sales store (default: RECON_DATABASE_URL).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    recompute = sub.add_parser("recompute", help="Reconcile a tenant window and store the rows.")
    recompute.add_argument("--tenant", required=True, help="Tenant id.")
    recompute.add_argument(
        "--mode",
        choices=["shopify", "financial"],
        default=None,
        help="Mode to recompute (default: both).",
    )
    recompute.add_argument("--since", type=_date_arg, default=None, help="Start date (YYYY-MM-DD).")
    recompute.add_argument("--until", type=_date_arg, default=None, help="End date (YYYY-MM-DD).")
    recompute.add_argument(
        "--connections",
        type=str,
        default=None,
        help="Tenant connections JSON (default: RECON_CONNECTIONS_JSON, else SHOPIFY_* env).",
    )
    recompute.add_argument(
        "--json",
        action="store_true",
        help="Print run results as JSON.",
    )

    show = sub.add_parser("show", help="Print stored rows for a tenant and mode.")
    show.add_argument("--tenant", required=True, help="Tenant id.")
    show.add_argument("--mode", choices=["shopify", "financial"], required=True)
    show.add_argument("--since", type=_date_arg, required=True, help="Start date (YYYY-MM-DD).")
    show.add_argument("--until", type=_date_arg, required=True, help="End date (YYYY-MM-DD).")
    show.add_argument(
        "--fill-gaps",
        action="store_true",
        help="Add zero rows for dates without stored data.",
    )
    return parser


def _recompute(args: argparse.Namespace, config: ReconConfig) -> int:
    credentials = JsonCredentialStore(args.connections) if args.connections else None
    results = run_job(
        args.tenant,
        mode=args.mode,
        since=args.since,
        until=args.until,
        config=config,
        credentials=credentials,
    )

    if args.json:
        print(json.dumps([r.to_dict() for r in results], indent=2))
    else:
        for r in results:
            ctx = r.context
            line = f"{ctx.mode.value:<10} {ctx.since} .. {ctx.until}  {r.state.value:<7} rows={r.rows_written}"
            if r.skipped_orders:
                line += f" skipped={len(r.skipped_orders)}"
            if r.failure:
                line += f"  {r.failure.error_kind}: {r.failure.message}"
            print(line)

    return 0 if all(r.ok for r in results) else 1


def _show(args: argparse.Namespace, config: ReconConfig) -> int:
    if parse_date(args.since) > parse_date(args.until):
        raise SystemExit("ERROR: start date is after end date.")
    store = DailySalesStore(config.database_url)
    df = marts.fetch_daily(
        store,
        args.tenant,
        args.mode,
        args.since,
        args.until,
        fill_gaps=args.fill_gaps,
    )
    if df.empty:
        print("No stored rows.")
    else:
        print(df.to_string(index=False))
    return 0


def main(argv: list[str] | None = None) -> None:
    """Execute the shop-recon command-line tool.

    Exit codes: 0 when every run succeeded, 1 when any run failed,
    2 on configuration errors.

    Raises:
        SystemExit: Always, with the exit code.
    """
    args = build_parser().parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(levelname)s: %(message)s",
    )

    try:
        config = ReconConfig.from_env()
        if args.database_url:
            config = replace(config, database_url=args.database_url)

        if args.command == "recompute":
            code = _recompute(args, config)
        else:
            code = _show(args, config)
    except (ConfigError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        raise SystemExit(2) from e

    raise SystemExit(code)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        sys.exit(130)
