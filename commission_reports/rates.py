from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal

from commission_reports.errors import InvalidProductError, InvalidQueryError
from commission_reports.models import ZERO, CommissionDetailRow, PaymentRecord, Product, money, pct

BAND_SCOPES = ("payment", "advisor_month", "advisor_ytd")


def resolve_rate(product: Product, cumulative_volume: Decimal) -> Decimal:
    """Effective commission rate for ``product`` at ``cumulative_volume``.

    Every band whose threshold has been reached adds its adjustment on top of
    the base rate, so qualifying bonuses stack.
    """
    rate = product.commission_rate
    if rate is None or rate < ZERO:
        raise InvalidProductError(f"Product {product.id} has an invalid commission rate: {rate}")
    if cumulative_volume <= ZERO:
        return rate
    for band in product.bands:
        if band.threshold > cumulative_volume:
            break
        rate += band.rate_adjustment
    return rate


def _scope_key(payment: PaymentRecord, scope: str) -> tuple:
    if scope == "advisor_month":
        return (payment.advisor, payment.product_id, payment.date.year, payment.date.month)
    return (payment.advisor, payment.product_id, payment.date.year)


def cumulative_volumes(payments: Iterable[PaymentRecord], scope: str = "advisor_ytd") -> dict[str, Decimal]:
    """Volume fed to :func:`resolve_rate` for each payment id.

    ``payment`` uses the payment's own APE. The advisor scopes use the running
    APE of the same advisor and product within the calendar month or year,
    ordered by date then id, including the payment itself.
    """
    if scope not in BAND_SCOPES:
        raise InvalidQueryError(f"Unknown band scope '{scope}', expected one of {BAND_SCOPES}")
    ordered = sorted(payments, key=lambda p: (p.date, p.id))
    if scope == "payment":
        return {p.id: p.ape for p in ordered}

    running: dict[tuple, Decimal] = {}
    volumes: dict[str, Decimal] = {}
    for p in ordered:
        key = _scope_key(p, scope)
        running[key] = running.get(key, ZERO) + p.ape
        volumes[p.id] = running[key]
    return volumes


@dataclass(frozen=True)
class BandSummary:
    product_id: str
    threshold: Decimal
    bonus_pct: Decimal
    count: int
    total_commission: Decimal


def band_breakdown(rows: Iterable[CommissionDetailRow], products: Mapping[str, Product]) -> list[BandSummary]:
    """Rows grouped by every band they qualified for."""
    groups: dict[tuple[str, Decimal], list[CommissionDetailRow]] = {}
    for row in rows:
        product = products.get(row.product_id)
        if product is None:
            continue
        for band in product.bands:
            if row.cumulative_volume <= ZERO or band.threshold > row.cumulative_volume:
                break
            groups.setdefault((product.id, band.threshold), []).append(row)

    summaries = []
    for (product_id, threshold), members in sorted(groups.items()):
        band = next(b for b in products[product_id].bands if b.threshold == threshold)
        summaries.append(
            BandSummary(
                product_id=product_id,
                threshold=threshold,
                bonus_pct=pct(band.rate_adjustment),
                count=len(members),
                total_commission=money(sum((r.commission_base for r in members), ZERO)),
            )
        )
    return summaries
