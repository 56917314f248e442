from __future__ import annotations

import tempfile
import unittest
from datetime import date
from decimal import Decimal
from pathlib import Path

from commission_reports.errors import InvalidPaymentError
from commission_reports.models import PaymentRecord, Product
from commission_reports.persistence import (
    get_payment,
    init_db,
    list_audit_events,
    list_payments,
    list_products,
    log_audit_event,
    set_team,
    team_of,
    update_payment_status,
    upsert_payment,
    upsert_product,
)
from commission_reports.repository import InMemoryRepository, SqliteRepository


def _payment_row(pid: str, when: str, advisor: str = "a@x.com") -> dict:
    return {
        "id": pid,
        "product_id": "term",
        "advisor": advisor,
        "date": when,
        "ape": "1000.10",
        "receipts": "0",
        "status": "Pending",
    }


class PersistenceTests(unittest.TestCase):
    def test_payments_upsert_filter_and_status(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            upsert_payment(db, _payment_row("P-2", "2026-02-01"))
            upsert_payment(db, _payment_row("P-1", "2026-01-01", advisor="b@x.com"))
            upsert_payment(db, _payment_row("P-3", "2026-03-01"))

            rows = list_payments(db)
            self.assertEqual([r["id"] for r in rows], ["P-1", "P-2", "P-3"])
            self.assertEqual(rows[0]["ape"], "1000.10")
            self.assertIsNone(rows[0]["introducer"])

            window = list_payments(db, date_from="2026-01-15", date_to="2026-02-28")
            self.assertEqual([r["id"] for r in window], ["P-2"])

            self.assertTrue(update_payment_status(db, "P-2", "Exception", "Statement missing"))
            self.assertFalse(update_payment_status(db, "P-9", "Paid"))
            stored = get_payment(db, "P-2")
            self.assertEqual(stored["status"], "Exception")
            self.assertEqual(stored["exception_reason"], "Statement missing")
            self.assertIsNone(get_payment(db, "P-9"))

    def test_product_upsert_keeps_json_fields(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            product = {
                "id": "term", "name": "Term", "provider": "Royal London",
                "commission_rate": "0.03", "margin": "0.10",
                "bands": [{"threshold": "50000", "rate_adjustment": "0.005"}],
                "role_table": None, "active": True,
            }
            upsert_product(db, product)
            upsert_product(db, {**product, "margin": "0.12", "active": False})
            rows = list_products(db)
            self.assertEqual(len(rows), 1)
            self.assertEqual(rows[0]["margin"], "0.12")
            self.assertEqual(rows[0]["bands"], product["bands"])
            self.assertFalse(rows[0]["active"])

    def test_team_membership_replaces_previous(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            self.assertIsNone(team_of(db, "m@x.com"))
            set_team(db, "m@x.com", ["b@x.com", "a@x.com"])
            set_team(db, "m@x.com", ["c@x.com", "a@x.com"])
            self.assertEqual(team_of(db, "m@x.com"), ["a@x.com", "c@x.com"])

    def test_audit_events_newest_first(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            init_db(db)
            log_audit_event(db, "export", "downloaded", "export", "report.csv", "a@x.com", "3 rows")
            log_audit_event(db, "payment", "created", "payment", "P-1", "a@x.com")
            events = list_audit_events(db)
            self.assertEqual([e["event_type"] for e in events], ["payment", "export"])
            exports = list_audit_events(db, event_type="export")
            self.assertEqual(len(exports), 1)
            self.assertEqual(exports[0]["detail"], "3 rows")


class RepositoryTests(unittest.TestCase):
    product = Product.from_dict({
        "id": "term", "name": "Term", "provider": "Royal London",
        "commission_rate": "0.03", "margin": "0.10",
        "role_table": {"Advisor": "0.8", "Manager": "0.2"},
    })
    payments = [
        PaymentRecord.from_dict(_payment_row("P-2", "2026-02-01")),
        PaymentRecord.from_dict({**_payment_row("P-1", "2026-01-01"), "introducer": "r@x.com"}),
    ]

    def _exercise(self, repository) -> None:
        repository.upsert_product(self.product)
        for payment in self.payments:
            repository.add_payment(payment)
        with self.assertRaises(InvalidPaymentError):
            repository.add_payment(self.payments[0])

        self.assertEqual([p.id for p in repository.list_products()], ["term"])
        self.assertEqual(repository.get_product("term").role_table, {"Advisor": Decimal("0.8"), "Manager": Decimal("0.2")})
        self.assertIsNone(repository.get_product("ghost"))

        self.assertEqual([p.id for p in repository.list_payments()], ["P-1", "P-2"])
        self.assertEqual([p.id for p in repository.list_payments(date(2026, 1, 15))], ["P-2"])
        self.assertEqual([p.id for p in repository.list_payments(None, date(2026, 1, 15))], ["P-1"])
        self.assertEqual(repository.get_payment("P-1"), self.payments[1])

        updated = repository.update_payment_status("P-2", "Paid")
        self.assertEqual(updated.status, "Paid")
        self.assertEqual(repository.get_payment("P-2").status, "Paid")
        self.assertIsNone(repository.update_payment_status("P-9", "Paid"))
        with self.assertRaises(InvalidPaymentError):
            repository.update_payment_status("P-2", "Unknown")

        self.assertIsNone(repository.team_of("m@x.com"))
        repository.set_team("m@x.com", ["a@x.com"])
        self.assertEqual(repository.team_of("m@x.com"), frozenset({"a@x.com"}))

    def test_in_memory_repository(self) -> None:
        self._exercise(InMemoryRepository())

    def test_sqlite_repository(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            self._exercise(SqliteRepository(Path(tmp) / "demo.db"))


if __name__ == "__main__":
    unittest.main()
