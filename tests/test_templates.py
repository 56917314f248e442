from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from commission_reports.errors import InvalidQueryError, UnknownColumnError
from commission_reports.reporting import ReportQuery
from commission_reports.templates import InMemoryTemplateStore, SqliteTemplateStore, new_template


class TemplateTests(unittest.TestCase):
    query = ReportQuery(
        date_from="2026-01-01",
        date_to="2026-06-30",
        products=["term"],
        statuses=["Paid", "Approved"],
        columns=("advisor", "date", "commission_pool"),
    )

    def _exercise(self, store) -> None:
        saved = store.save(new_template(" Q1 pool ", self.query, "a@x.com"))
        other = store.save(new_template("Mine", ReportQuery(), "b@x.com"))
        self.assertEqual(saved.name, "Q1 pool")
        self.assertEqual(len(saved.id), 12)

        loaded = store.get(saved.id)
        self.assertEqual(loaded, saved)
        self.assertEqual(loaded.to_query(), self.query)
        self.assertEqual(loaded.to_query(page=3).page, 3)

        self.assertEqual([t.id for t in store.list(created_by="a@x.com")], [saved.id])
        self.assertEqual({t.id for t in store.list()}, {saved.id, other.id})

        self.assertTrue(store.delete(saved.id))
        self.assertFalse(store.delete(saved.id))
        self.assertIsNone(store.get(saved.id))

    def test_in_memory_store(self) -> None:
        self._exercise(InMemoryTemplateStore())

    def test_sqlite_store(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            self._exercise(SqliteTemplateStore(Path(tmp) / "demo.db"))

    def test_sqlite_store_survives_reopen(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db = Path(tmp) / "demo.db"
            saved = SqliteTemplateStore(db).save(new_template("Keep", self.query, "a@x.com"))
            self.assertEqual(SqliteTemplateStore(db).get(saved.id).to_query(), self.query)

    def test_template_needs_name_and_known_columns(self) -> None:
        with self.assertRaises(InvalidQueryError):
            new_template("  ", self.query, "a@x.com")
        with self.assertRaises(UnknownColumnError):
            new_template("Bad", self.query, "a@x.com", columns=["date", "shoe_size"])


if __name__ == "__main__":
    unittest.main()
