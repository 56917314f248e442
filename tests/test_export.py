from __future__ import annotations

import csv
import io
import unittest
from decimal import Decimal

from commission_reports.access import Role, can_export, can_view_reports, parse_role
from commission_reports.calculator import build_rows
from commission_reports.errors import ExportDeniedError, UnknownColumnError
from commission_reports.export import COLUMNS, export_report, project_and_serialize, resolve_columns
from commission_reports.models import PaymentRecord, Product

ROLE_TABLE = {"Advisor": "0.60", "Introducer": "0.10", "Manager": "0.20", "ExecutiveSalesManager": "0.10"}


def _rows():
    product = Product.from_dict({
        "id": "term", "name": "Term Life", "provider": "Royal London",
        "commission_rate": "0.03", "margin": "0.10",
        "bands": [{"threshold": "50000", "rate_adjustment": "0.005"}],
    })
    payments = [
        PaymentRecord(
            id="P-1", product_id="term", advisor="a@x.com", date="2026-03-01",
            ape="60000", receipts="55000", status="Paid", policy_number="POL-1", client_id="C-1",
        ),
        PaymentRecord(
            id="P-2", product_id="term", advisor="a@x.com", date="2026-03-02",
            ape="100.10", receipts="0", introducer="ref@x.com",
        ),
    ]
    return build_rows(payments, {product.id: product}, ROLE_TABLE, scope="payment")


def _parse(text: str) -> list[list[str]]:
    return list(csv.reader(io.StringIO(text)))


class ProjectAndSerializeTests(unittest.TestCase):
    def test_header_uses_labels_in_selected_order(self) -> None:
        text = project_and_serialize(_rows(), ["commission_pool", "date", "advisor_share", "executive_sales_manager_share_pct"])
        header = _parse(text)[0]
        self.assertEqual(header, ["Commission Pool", "Date", "Advisor Share", "Executive Sales Manager Share %"])

    def test_values_are_plain_two_decimal_numbers(self) -> None:
        columns = ["date", "product", "ape", "method_used", "product_rate_pct", "margin_pct", "commission_base", "advisor_share"]
        first = _parse(project_and_serialize(_rows(), columns))[1]
        self.assertEqual(first, ["2026-03-01", "Term Life", "60000.00", "APE", "3.50", "10.00", "2100.00", "1260.00"])

    def test_missing_values_are_blank(self) -> None:
        rows = _parse(project_and_serialize(_rows(), ["introducer", "introducer_share", "policy_number"]))
        self.assertEqual(rows[1], ["", "0.00", "POL-1"])
        self.assertEqual(rows[2][0], "ref@x.com")

    def test_share_columns_reconcile_to_pool(self) -> None:
        share_columns = ["advisor_share", "introducer_share", "manager_share", "executive_sales_manager_share"]
        parsed = _parse(project_and_serialize(_rows(), ["commission_pool"] + share_columns))
        for line in parsed[1:]:
            self.assertEqual(sum(Decimal(v) for v in line[1:]), Decimal(line[0]))

    def test_one_line_per_row(self) -> None:
        text = project_and_serialize(_rows(), ["date"])
        self.assertEqual(text, "Date\r\n2026-03-01\r\n2026-03-02\r\n")
        self.assertEqual(project_and_serialize([], ["date"]), "Date\r\n")

    def test_unknown_or_empty_columns_are_rejected(self) -> None:
        with self.assertRaises(UnknownColumnError):
            project_and_serialize(_rows(), ["date", "favourite_colour"])
        with self.assertRaises(UnknownColumnError):
            resolve_columns([])

    def test_catalogue_has_share_columns_for_every_role(self) -> None:
        for role in ("advisor", "introducer", "manager", "executive_sales_manager"):
            self.assertIn(f"{role}_share", COLUMNS)
            self.assertIn(f"{role}_share_pct", COLUMNS)


class ExportGateTests(unittest.TestCase):
    def test_export_roles(self) -> None:
        for role in ("advisor", "manager", "admin", Role.ADMIN, " Manager "):
            self.assertTrue(can_export(role), role)
        for role in ("referral", "client", "hr", "", None, "root"):
            self.assertFalse(can_export(role), role)

    def test_referral_can_view_but_not_export(self) -> None:
        self.assertTrue(can_view_reports("referral"))
        self.assertFalse(can_view_reports("client"))
        with self.assertRaises(ExportDeniedError) as ctx:
            export_report(_rows(), ["date"], "referral")
        self.assertEqual(ctx.exception.role, "referral")
        self.assertIsInstance(ctx.exception, PermissionError)

    def test_denied_for_enum_role_reports_its_value(self) -> None:
        with self.assertRaises(ExportDeniedError) as ctx:
            export_report(_rows(), ["date"], Role.HR)
        self.assertEqual(ctx.exception.role, "hr")

    def test_allowed_role_gets_csv(self) -> None:
        text = export_report(_rows(), ["date", "commission_base"], Role.ADVISOR)
        self.assertEqual(_parse(text)[0], ["Date", "Commission Base"])
        self.assertIsNone(parse_role("superuser"))


if __name__ == "__main__":
    unittest.main()
