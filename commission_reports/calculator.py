from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from commission_reports.distribution import applicable_roles, distribute
from commission_reports.errors import InvalidProductError, UnknownProductError
from commission_reports.models import (
    METHOD_APE,
    METHOD_RECEIPTS,
    ONE,
    ZERO,
    CommissionDetailRow,
    PaymentRecord,
    Product,
    money,
    pct,
)
from commission_reports.rates import cumulative_volumes, resolve_rate


@dataclass(frozen=True)
class CommissionResult:
    method_used: str
    commission_base: Decimal
    commission_pool: Decimal


def select_method(payment: PaymentRecord) -> str:
    """Receipts only when they exceed APE; a tie stays on APE."""
    return METHOD_RECEIPTS if payment.receipts > payment.ape else METHOD_APE


def compute_commission(
    payment: PaymentRecord,
    product: Product,
    effective_rate: Decimal,
    margin: Decimal | None = None,
) -> CommissionResult:
    margin = product.margin if margin is None else margin
    if effective_rate is None or effective_rate < ZERO:
        raise InvalidProductError(f"Product {product.id} resolved to an invalid rate: {effective_rate}")
    if margin < ZERO or margin > ONE:
        raise InvalidProductError(f"Product {product.id} margin must be within [0, 1], got {margin}")

    method = select_method(payment)
    basis = payment.receipts if method == METHOD_RECEIPTS else payment.ape
    raw_base = basis * effective_rate
    # margin is retained by the firm; both figures are rounded once from the raw base
    pool = money(raw_base * (ONE - margin))
    return CommissionResult(method_used=method, commission_base=money(raw_base), commission_pool=pool)


def build_row(
    payment: PaymentRecord,
    product: Product,
    cumulative_volume: Decimal,
    role_table: Mapping[str, Any],
) -> CommissionDetailRow:
    rate = resolve_rate(product, cumulative_volume)
    result = compute_commission(payment, product, rate)
    shares = distribute(
        result.commission_pool,
        product.role_table or role_table,
        applicable_roles(payment),
    )
    return CommissionDetailRow(
        payment_id=payment.id,
        date=payment.date,
        provider=payment.provider or product.provider,
        product_id=product.id,
        product_name=product.name,
        advisor=payment.advisor,
        status=payment.status,
        ape=payment.ape,
        receipts=payment.receipts,
        cumulative_volume=cumulative_volume,
        method_used=result.method_used,
        product_rate_pct=pct(rate),
        margin_pct=pct(product.margin),
        commission_base=result.commission_base,
        commission_pool=result.commission_pool,
        shares=shares,
        introducer=payment.introducer,
        policy_number=payment.policy_number,
        client_id=payment.client_id,
    )


def build_rows(
    payments: Iterable[PaymentRecord],
    products: Mapping[str, Product],
    role_table: Mapping[str, Any],
    scope: str = "advisor_ytd",
) -> list[CommissionDetailRow]:
    """Derive one detail row per payment, ordered by date then payment id."""
    payments = list(payments)
    volumes = cumulative_volumes(payments, scope)
    rows = []
    for payment in sorted(payments, key=lambda p: (p.date, p.id)):
        product = products.get(payment.product_id)
        if product is None:
            raise UnknownProductError(payment.product_id)
        rows.append(build_row(payment, product, volumes[payment.id], role_table))
    return rows
