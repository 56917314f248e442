#!/usr/bin/env python3
"""Generate a synthetic payments feed for the commission reports demo.

Creates:
- data/seed/payments.csv (overwrites the hand-written fixture unless --output differs)

Products come from the existing data/seed/products.json so every generated
row references a real, active product.
"""

from __future__ import annotations

import argparse
import csv
import json
import random
from datetime import date, timedelta
from pathlib import Path
from typing import Iterable

ADVISORS = [
    "advisor@advisor.com",
    "advisor2@advisor.com",
    "advisor3@advisor.com",
    "advisor4@advisor.com",
]
INTRODUCERS = ["referral@referral.com", "partner@referral.com"]

# Weighted so most rows land in the states reports care about
STATUS_WEIGHTS = {
    "Paid": 0.5,
    "Approved": 0.2,
    "Pending": 0.15,
    "Processing": 0.1,
    "Exception": 0.05,
}
EXCEPTION_REASONS = [
    "Provider statement missing",
    "APE does not match application",
    "Duplicate submission",
]
FIELDNAMES = [
    "id", "product_id", "advisor", "date", "ape", "receipts", "status", "provider",
    "policy_number", "client_id", "introducer", "exception_reason", "notes",
]


def write_csv(path: Path, rows: Iterable[dict], fieldnames: list[str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for row in rows:
            writer.writerow(row)


def load_products(path: Path) -> list[dict]:
    with path.open(encoding="utf-8") as f:
        return [p for p in json.load(f) if p.get("active", True)]


def generate(args: argparse.Namespace) -> None:
    rng = random.Random(args.seed)
    products = load_products(args.products)
    end = args.end or date.today()
    start = end - timedelta(days=args.days)

    rows: list[dict] = []
    for i in range(1, args.rows + 1):
        product = rng.choice(products)
        paid_on = start + timedelta(days=rng.randint(0, args.days))
        ape = round(rng.uniform(2_000.0, 40_000.0), 2)
        # Receipts usually trail APE; roughly one in five policies is topped up past it
        if rng.random() < 0.2:
            receipts = round(ape * rng.uniform(1.01, 1.25), 2)
        else:
            receipts = round(ape * rng.uniform(0.4, 1.0), 2)
        status = rng.choices(list(STATUS_WEIGHTS), weights=list(STATUS_WEIGHTS.values()))[0]

        rows.append({
            "id": f"PAY-{i:05d}",
            "product_id": product["id"],
            "advisor": rng.choice(ADVISORS),
            "date": paid_on.isoformat(),
            "ape": f"{ape:.2f}",
            "receipts": f"{receipts:.2f}",
            "status": status,
            "provider": product["provider"],
            "policy_number": f"{product['id'].upper()}-{i:05d}",
            "client_id": f"C-{rng.randint(100, 999)}",
            "introducer": rng.choice(INTRODUCERS) if rng.random() < args.introducer_rate else "",
            "exception_reason": rng.choice(EXCEPTION_REASONS) if status == "Exception" else "",
            "notes": "",
        })

    rows.sort(key=lambda r: (r["date"], r["id"]))
    write_csv(args.output, rows, FIELDNAMES)
    print(f"Generated {len(rows)} payments between {start} and {end} in {args.output}")


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Generate a synthetic payments feed.")
    p.add_argument("--seed", type=int, default=42)
    p.add_argument("--rows", type=int, default=400)
    p.add_argument("--days", type=int, default=300, help="Spread payments over this many days")
    p.add_argument("--end", type=date.fromisoformat, default=None, help="Last payment date (YYYY-MM-DD)")
    p.add_argument("--introducer-rate", type=float, default=0.3, help="0-1 fraction")
    p.add_argument("--products", type=Path, default=Path("data/seed/products.json"))
    p.add_argument("--output", type=Path, default=Path("data/seed/payments.csv"))
    return p.parse_args()


if __name__ == "__main__":
    generate(parse_args())
