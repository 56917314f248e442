from __future__ import annotations

import unittest
from decimal import Decimal

from commission_reports.calculator import build_row, build_rows, compute_commission, select_method
from commission_reports.errors import InvalidProductError, UnknownProductError
from commission_reports.models import Band, PaymentRecord, Product
from commission_reports.rates import resolve_rate

SPLIT_70_20_10 = {"Advisor": "0.70", "Manager": "0.20", "ExecutiveSalesManager": "0.10"}
DEFAULT_TABLE = {"Advisor": "0.60", "Introducer": "0.10", "Manager": "0.20", "ExecutiveSalesManager": "0.10"}


def _product(**overrides) -> Product:
    fields = {
        "id": "royal-protect",
        "name": "Term Life",
        "provider": "Royal London",
        "commission_rate": "0.03",
        "margin": "0.10",
        "bands": (Band(Decimal("50000"), Decimal("0.005")),),
    }
    fields.update(overrides)
    return Product(**fields)


def _payment(ape: str, receipts: str, **overrides) -> PaymentRecord:
    fields = {
        "id": "PAY-1",
        "product_id": "royal-protect",
        "advisor": "advisor@advisor.com",
        "date": "2026-03-01",
        "ape": ape,
        "receipts": receipts,
    }
    fields.update(overrides)
    return PaymentRecord(**fields)


class MethodSelectionTests(unittest.TestCase):
    def test_receipts_used_only_when_greater(self) -> None:
        self.assertEqual(select_method(_payment("1000", "1000.01")), "Receipts")
        self.assertEqual(select_method(_payment("1000", "999.99")), "APE")

    def test_tie_stays_on_ape(self) -> None:
        self.assertEqual(select_method(_payment("1000", "1000")), "APE")


class ComputeCommissionTests(unittest.TestCase):
    def test_worked_example(self) -> None:
        product = _product()
        payment = _payment("60000", "55000")
        rate = resolve_rate(product, Decimal("60000"))
        self.assertEqual(rate, Decimal("0.035"))

        result = compute_commission(payment, product, rate)
        self.assertEqual(result.method_used, "APE")
        self.assertEqual(result.commission_base, Decimal("2100.00"))
        self.assertEqual(result.commission_pool, Decimal("1890.00"))

        row = build_row(payment, product, Decimal("60000"), SPLIT_70_20_10)
        self.assertEqual(
            [(s.role, s.amount) for s in row.shares],
            [
                ("Advisor", Decimal("1323.00")),
                ("Manager", Decimal("378.00")),
                ("ExecutiveSalesManager", Decimal("189.00")),
            ],
        )
        self.assertEqual(row.product_rate_pct, Decimal("3.50"))
        self.assertEqual(row.margin_pct, Decimal("10.00"))

    def test_receipts_basis_when_receipts_exceed_ape(self) -> None:
        result = compute_commission(_payment("1000", "1200"), _product(), Decimal("0.03"))
        self.assertEqual(result.method_used, "Receipts")
        self.assertEqual(result.commission_base, Decimal("36.00"))
        self.assertEqual(result.commission_pool, Decimal("32.40"))

    def test_rounds_half_up_to_cents(self) -> None:
        result = compute_commission(_payment("123.45", "0"), _product(), Decimal("0.03"))
        self.assertEqual(result.commission_base, Decimal("3.70"))
        self.assertEqual(result.commission_pool, Decimal("3.33"))
        # 150.50 * 0.03 = 4.515
        result = compute_commission(_payment("150.50", "0"), _product(), Decimal("0.03"))
        self.assertEqual(result.commission_base, Decimal("4.52"))

    def test_pool_rounds_from_unrounded_base(self) -> None:
        # base 0.015 shows as 0.02, but the pool is 0.0045, not 0.02 * 0.3
        result = compute_commission(_payment("0.30", "0"), _product(margin="0.70"), Decimal("0.05"))
        self.assertEqual(result.commission_base, Decimal("0.02"))
        self.assertEqual(result.commission_pool, Decimal("0.00"))

    def test_zero_margin_keeps_whole_base(self) -> None:
        result = compute_commission(_payment("1000", "0"), _product(margin="0"), Decimal("0.05"))
        self.assertEqual(result.commission_pool, result.commission_base)

    def test_full_margin_leaves_empty_pool(self) -> None:
        result = compute_commission(_payment("1000", "0"), _product(margin="1"), Decimal("0.05"))
        self.assertEqual(result.commission_pool, Decimal("0.00"))

    def test_negative_rate_is_rejected(self) -> None:
        with self.assertRaises(InvalidProductError):
            compute_commission(_payment("1000", "0"), _product(), Decimal("-0.01"))

    def test_out_of_range_margin_override_is_rejected(self) -> None:
        with self.assertRaises(InvalidProductError):
            compute_commission(_payment("1000", "0"), _product(), Decimal("0.03"), Decimal("1.5"))


class BuildRowsTests(unittest.TestCase):
    def test_rows_follow_date_then_id_and_band_on_running_volume(self) -> None:
        product = _product()
        payments = [
            _payment("30000", "0", id="PAY-2", date="2026-02-01"),
            _payment("30000", "0", id="PAY-1", date="2026-01-01"),
        ]
        rows = build_rows(payments, {product.id: product}, DEFAULT_TABLE)
        self.assertEqual([r.payment_id for r in rows], ["PAY-1", "PAY-2"])
        self.assertEqual(rows[0].product_rate_pct, Decimal("3.00"))
        self.assertEqual(rows[1].product_rate_pct, Decimal("3.50"))
        self.assertEqual(rows[1].cumulative_volume, Decimal("60000"))

    def test_product_role_table_overrides_default(self) -> None:
        product = _product(role_table=SPLIT_70_20_10)
        row = build_rows([_payment("1000", "0")], {product.id: product}, DEFAULT_TABLE)[0]
        self.assertEqual(row.share("Advisor").pct, Decimal("70.0000"))

    def test_introducer_share_only_when_introducer_on_file(self) -> None:
        product = _product()
        with_intro = _payment("10000", "0", introducer="referral@referral.com")
        without = _payment("10000", "0", id="PAY-2")
        rows = build_rows([with_intro, without], {product.id: product}, DEFAULT_TABLE, scope="payment")
        self.assertIsNotNone(rows[0].share("Introducer"))
        self.assertIsNone(rows[1].share("Introducer"))
        for row in rows:
            self.assertEqual(sum(s.amount for s in row.shares), row.commission_pool)

    def test_missing_product_is_rejected(self) -> None:
        with self.assertRaises(UnknownProductError) as ctx:
            build_rows([_payment("1000", "0", product_id="ghost")], {}, DEFAULT_TABLE)
        self.assertEqual(ctx.exception.product_id, "ghost")

    def test_provider_falls_back_to_product(self) -> None:
        product = _product()
        row = build_rows([_payment("1000", "0")], {product.id: product}, DEFAULT_TABLE)[0]
        self.assertEqual(row.provider, "Royal London")


if __name__ == "__main__":
    unittest.main()
