from __future__ import annotations

from collections.abc import Collection, Mapping
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from commission_reports.errors import InvalidRoleTableError
from commission_reports.models import (
    CENT,
    HUNDRED,
    INTRODUCER,
    SHARE_ROLES,
    ZERO,
    PaymentRecord,
    RoleShare,
    normalize_role_table,
)

PCT_STEP = Decimal("0.0001")


def applicable_roles(payment: PaymentRecord) -> frozenset[str]:
    roles = set(SHARE_ROLES)
    if not payment.introducer:
        roles.discard(INTRODUCER)
    return frozenset(roles)


def _allocate(total: Decimal, weights: dict[str, Decimal], step: Decimal) -> dict[str, Decimal]:
    """Split ``total`` by ``weights`` rounded half-up to ``step``; the first weighted role absorbs the remainder."""
    weight_sum = sum(weights.values(), ZERO)
    parts = {
        role: (total * w / weight_sum).quantize(step, rounding=ROUND_HALF_UP)
        for role, w in weights.items()
    }
    remainder = total - sum(parts.values(), ZERO)
    weighted = [role for role, w in weights.items() if w > ZERO]
    if remainder > ZERO:
        parts[weighted[0]] += remainder
    # rounding up overshot the total; take it back in table order without going below zero
    for role in weighted:
        if remainder >= ZERO:
            break
        taken = min(parts[role], -remainder)
        parts[role] -= taken
        remainder += taken
    return parts


def distribute(
    pool: Decimal,
    role_table: Mapping[str, Any],
    applicable: Collection[str] | None = None,
) -> tuple[RoleShare, ...]:
    """Split a commission pool into role shares.

    Roles outside ``applicable`` are dropped and their weight is spread
    proportionally over the rest. Amounts always sum exactly to ``pool`` and
    percentages to exactly 100.
    """
    table = normalize_role_table(role_table)
    if applicable is not None:
        table = {role: f for role, f in table.items() if role in applicable}
    if not any(f > ZERO for f in table.values()):
        raise InvalidRoleTableError("No applicable role carries a share of the pool")

    amounts = _allocate(pool, table, CENT)
    percentages = _allocate(HUNDRED, table, PCT_STEP)
    return tuple(RoleShare(role=role, pct=percentages[role], amount=amounts[role]) for role in table)
