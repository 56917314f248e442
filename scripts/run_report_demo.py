#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from commission_reports.access import Caller, parse_role
from commission_reports.export import export_report
from commission_reports.reporting import ReportQuery, compute_report, select_rows
from commission_reports.repository import InMemoryRepository
from commission_reports.seed import seed_repository


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run a commission report against the seed data.")
    p.add_argument("--data-dir", type=Path, default=Path("data"))
    p.add_argument("--email", default="admin@admin.com")
    p.add_argument("--role", default="admin")
    p.add_argument("--from", dest="date_from", default=None)
    p.add_argument("--to", dest="date_to", default=None)
    p.add_argument("--product", action="append", default=[])
    p.add_argument("--advisor", action="append", default=[])
    p.add_argument("--status", action="append", default=[])
    p.add_argument("--columns", default="date,product,advisor,ape,receipts,method_used,commission_base,commission_pool")
    p.add_argument("--csv", action="store_true", help="Print the export instead of the JSON report")
    p.add_argument("--output", type=Path, default=None, help="Optional path to write output")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    role = parse_role(args.role)
    if role is None:
        sys.exit(f"Unknown role: {args.role}")

    repository = InMemoryRepository()
    seed_repository(repository, args.data_dir)
    caller = Caller(email=args.email.lower(), role=role)
    query = ReportQuery(
        date_from=args.date_from,
        date_to=args.date_to,
        products=args.product,
        advisors=args.advisor,
        statuses=args.status,
        columns=tuple(c for c in args.columns.split(",") if c),
        page_size=50,
    )

    if args.csv:
        text = export_report(select_rows(query, caller, repository), query.columns, caller.role)
    else:
        text = json.dumps(compute_report(query, caller, repository).to_dict(), indent=2)

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(text, encoding="utf-8")
    else:
        print(text)


if __name__ == "__main__":
    main()
