from __future__ import annotations

import csv
import json
import logging
from pathlib import Path
from typing import Any

from commission_reports.models import PaymentRecord, Product
from commission_reports.repository import Repository

logger = logging.getLogger(__name__)


def _read_csv(path: Path) -> list[dict[str, str]]:
    if not path.exists():
        return []
    with path.open(newline="", encoding="utf-8") as f:
        return list(csv.DictReader(f))


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    with path.open(encoding="utf-8") as f:
        return json.load(f)


def load_seed(data_dir: Path) -> tuple[list[Product], list[PaymentRecord], dict[str, list[str]]]:
    """Products, payments and manager teams from ``data_dir/seed``.

    Missing files yield empty collections; malformed records raise.
    """
    seed_dir = data_dir / "seed"
    products = [Product.from_dict(p) for p in _read_json(seed_dir / "products.json", [])]
    payments = [PaymentRecord.from_dict(row) for row in _read_csv(seed_dir / "payments.csv")]
    teams = _read_json(seed_dir / "teams.json", {})
    return products, payments, teams


def seed_repository(repository: Repository, data_dir: Path) -> dict[str, int]:
    products, payments, teams = load_seed(data_dir)
    for product in products:
        repository.upsert_product(product)

    added = 0
    for payment in payments:
        if repository.get_payment(payment.id) is None:
            repository.add_payment(payment)
            added += 1

    for manager, advisors in teams.items():
        repository.set_team(manager, advisors)

    logger.info(f"Seeded {len(products)} products, {added} payments, {len(teams)} teams from {data_dir}")
    return {"products": len(products), "payments": added, "teams": len(teams)}
