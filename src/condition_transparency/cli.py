"""
Operator command line.

Usage:
  condition-transparency share-maintenance [GROUP_ID] [--data-dir DIR]
  condition-transparency serve [--host HOST] [--port PORT] [--data-dir DIR]
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from .engine import build_engine
from .exceptions import NotFound
from .maintenance import MaintenanceReport

logger = logging.getLogger("condition-transparency.cli")

TABLE_HEADER = ("Group", "State", "Expires", "Quiet Hours %", "Pending Consents", "Reasons")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="condition-transparency",
        description="Condition-timer transparency operator tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Groups whose shares need attention
  condition-transparency share-maintenance --data-dir ./transparency_data

  # One group, healthy or not
  condition-transparency share-maintenance grp-123 --data-dir ./transparency_data

  # Serve the HTTP API
  condition-transparency serve --port 8080
        """,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Transparency data directory (default: CONDITION_TRANSPARENCY_DATA_DIR or in-memory)"
    )
    common.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    maintenance = subparsers.add_parser(
        "share-maintenance",
        parents=[common],
        help="Report share and consent health"
    )
    maintenance.add_argument(
        "group_id",
        nargs="?",
        help="Report a single group instead of the attention queue"
    )

    serve = subparsers.add_parser("serve", parents=[common], help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8080, help="Port (default: 8080)")

    return parser.parse_args(argv)


def _row(report: MaintenanceReport) -> tuple[str, ...]:
    return (
        report.group_name,
        report.state.value if report.state else "none",
        report.expires_at.strftime("%Y-%m-%d %H:%M") if report.expires_at else "never",
        f"{report.quiet_hour_ratio * 100:.0f}%",
        f"{report.pending_consents}/{report.total_members}",
        ", ".join(report.reasons) or "-",
    )


def format_table(reports: Sequence[MaintenanceReport]) -> str:
    """Render maintenance reports as a fixed-width table."""
    rows = [TABLE_HEADER] + [_row(r) for r in reports]
    widths = [max(len(row[i]) for row in rows) for i in range(len(TABLE_HEADER))]
    lines = []
    for index, row in enumerate(rows):
        lines.append("  ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip())
        if index == 0:
            lines.append("  ".join("-" * width for width in widths))
    return "\n".join(lines)


def share_maintenance(args: argparse.Namespace) -> int:
    overrides = {"data_dir": args.data_dir} if args.data_dir is not None else {}
    engine = build_engine(**overrides)
    try:
        if args.group_id:
            try:
                reports = [engine.maintenance.snapshot(args.group_id)]
            except NotFound:
                print(f"Group not found: {args.group_id}", file=sys.stderr)
                return 1
        else:
            reports = engine.maintenance.attention_queue()
            if not reports:
                print("No share maintenance issues detected.")
                return 0
        logger.info(f"Share maintenance report covers {len(reports)} group(s)")
        print(format_table(reports))
        return 0
    finally:
        engine.close()


def serve(args: argparse.Namespace) -> int:
    from .server import run_server

    overrides = {"data_dir": args.data_dir} if args.data_dir is not None else {}
    run_server(build_engine(**overrides), host=args.host, port=args.port)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the operator CLI."""
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.command == "share-maintenance":
        return share_maintenance(args)
    return serve(args)


if __name__ == "__main__":
    sys.exit(main())
