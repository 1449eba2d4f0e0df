"""
taxdesk.cli
===========

Command‑line helpers over the SQL‑backed engine.

Examples
--------
$ python -m taxdesk.cli init
$ python -m taxdesk.cli stats --ca 9
$ python -m taxdesk.cli deadlines --days 14
$ python -m taxdesk.cli chart --out images/status.png
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from taxdesk.db import create_all
from taxdesk.engine import FilingEngine
from taxdesk.errors import FilingError
from taxdesk.settings import configure_logging
from taxdesk.store_db import DBClientDirectory, DBFilingStore, DBProfessionalDirectory


def build_engine() -> FilingEngine:
    """Engine wired to the default database."""
    return FilingEngine(DBFilingStore(), DBClientDirectory(), DBProfessionalDirectory())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="taxdesk", description="taxdesk filing utilities")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="create database tables")

    p_stats = sub.add_parser("stats", help="filing counts per status")
    p_stats.add_argument("--client", type=int)
    p_stats.add_argument("--ca", type=int)
    p_stats.add_argument("--tax-year")

    p_dl = sub.add_parser("deadlines", help="open filings due soon")
    p_dl.add_argument("--days", type=int)
    p_dl.add_argument("--client", type=int)
    p_dl.add_argument("--ca", type=int)

    p_chart = sub.add_parser("chart", help="render status bar chart and lifecycle diagram")
    p_chart.add_argument("--out", help="path for the status chart PNG")
    p_chart.add_argument("--lifecycle-out", help="path for the lifecycle diagram PNG")
    return parser


def main(argv: Optional[List[str]] = None, engine: Optional[FilingEngine] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()

    if args.command == "init":
        create_all()
        print("✅ taxdesk schema initialised")
        return 0

    engine = engine or build_engine()
    try:
        if args.command == "stats":
            stats = engine.get_stats(client_id=args.client, ca_id=args.ca, tax_year=args.tax_year)
            for name, value in vars(stats).items():
                print(f"{name:>13}: {value}")
        elif args.command == "deadlines":
            for f in engine.upcoming_deadlines(days=args.days, ca_id=args.ca, client_id=args.client):
                print(f"{f.due_date}  #{f.id}  client={f.client_id}  {f.tax_year}  "
                      f"{f.filing_type}  {f.status}  ca={f.ca_id or '-'}")
        elif args.command == "chart":
            from taxdesk.viz import lifecycle_diagram, status_summary

            print(status_summary(engine.get_stats(), out_path=args.out))
            print(lifecycle_diagram(out_path=args.lifecycle_out))
    except FilingError as e:
        print(f"⛔ {e.kind}: {e.message}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
