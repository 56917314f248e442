"""Domain records for the commission engine.

All monetary values and rates are ``Decimal``. Rates, margins and band
adjustments are fractions (0.03 == 3%); report rows carry them as
percentages for display.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from commission_reports.errors import (
    InvalidPaymentError,
    InvalidProductError,
    InvalidRoleTableError,
)

CENT = Decimal("0.01")
ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

ADVISOR = "Advisor"
INTRODUCER = "Introducer"
MANAGER = "Manager"
EXECUTIVE_SALES_MANAGER = "ExecutiveSalesManager"
SHARE_ROLES = (ADVISOR, INTRODUCER, MANAGER, EXECUTIVE_SALES_MANAGER)

PAYMENT_STATUSES = ("Pending", "Processing", "Approved", "Paid", "Exception")
METHOD_APE = "APE"
METHOD_RECEIPTS = "Receipts"


def to_decimal(value: Any, error: type[Exception] = ValueError) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise error(f"Not a number: {value!r}")
    try:
        # str() first so 0.1 becomes Decimal("0.1"), not its binary expansion
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise error(f"Not a number: {value!r}") from exc
    if not result.is_finite():
        raise error(f"Not a finite number: {value!r}")
    return result


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def pct(fraction: Decimal) -> Decimal:
    """Fraction to a 2 dp percentage (0.035 -> 3.50)."""
    return (fraction * HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)


def normalize_role_table(table: Mapping[str, Any]) -> dict[str, Decimal]:
    """Validate an ordered role -> fraction table; fractions must sum to exactly 1."""
    if not table:
        raise InvalidRoleTableError("Role table is empty")
    normalized: dict[str, Decimal] = {}
    for role, fraction in table.items():
        if role not in SHARE_ROLES:
            raise InvalidRoleTableError(f"Unknown role '{role}'")
        value = to_decimal(fraction, InvalidRoleTableError)
        if value < ZERO or value > ONE:
            raise InvalidRoleTableError(f"Share for {role} must be within [0, 1], got {value}")
        normalized[role] = value
    total = sum(normalized.values(), ZERO)
    if total != ONE:
        raise InvalidRoleTableError(f"Role shares must sum to 1, got {total}")
    return normalized


@dataclass(frozen=True)
class Band:
    threshold: Decimal
    rate_adjustment: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "threshold", to_decimal(self.threshold, InvalidProductError))
        object.__setattr__(self, "rate_adjustment", to_decimal(self.rate_adjustment, InvalidProductError))
        if self.threshold < ZERO:
            raise InvalidProductError(f"Band threshold must not be negative, got {self.threshold}")
        if self.rate_adjustment < ZERO:
            raise InvalidProductError(f"Band adjustment must not be negative, got {self.rate_adjustment}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Band:
        return cls(
            threshold=data["threshold"],
            rate_adjustment=data.get("rate_adjustment", data.get("rateAdjustment")),
        )


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    provider: str
    commission_rate: Decimal
    margin: Decimal
    bands: tuple[Band, ...] = ()
    role_table: dict[str, Decimal] | None = field(default=None, compare=False)
    active: bool = True

    def __post_init__(self) -> None:
        if not self.id:
            raise InvalidProductError("Product id is required")
        if self.commission_rate is None:
            raise InvalidProductError(f"Product {self.id} has no commission rate")
        rate = to_decimal(self.commission_rate, InvalidProductError)
        margin = to_decimal(self.margin, InvalidProductError)
        if not ZERO <= rate <= ONE:
            raise InvalidProductError(f"Product {self.id} rate must be within [0, 1], got {rate}")
        if not ZERO <= margin <= ONE:
            raise InvalidProductError(f"Product {self.id} margin must be within [0, 1], got {margin}")
        bands = tuple(b if isinstance(b, Band) else Band.from_dict(b) for b in self.bands)
        for prev, cur in zip(bands, bands[1:]):
            if cur.threshold <= prev.threshold:
                raise InvalidProductError(
                    f"Product {self.id} band thresholds must strictly increase "
                    f"({prev.threshold} then {cur.threshold})"
                )
        object.__setattr__(self, "commission_rate", rate)
        object.__setattr__(self, "margin", margin)
        object.__setattr__(self, "bands", bands)
        if self.role_table is not None:
            try:
                table = normalize_role_table(self.role_table)
            except InvalidRoleTableError as exc:
                raise InvalidProductError(f"Product {self.id}: {exc}") from exc
            object.__setattr__(self, "role_table", table)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Product:
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            provider=data.get("provider", ""),
            commission_rate=data.get("commission_rate"),
            margin=data.get("margin", 0),
            bands=tuple(Band.from_dict(b) for b in data.get("bands", [])),
            role_table=data.get("role_table"),
            active=bool(data.get("active", True)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "provider": self.provider,
            "commission_rate": str(self.commission_rate),
            "margin": str(self.margin),
            "bands": [
                {"threshold": str(b.threshold), "rate_adjustment": str(b.rate_adjustment)}
                for b in self.bands
            ],
            "role_table": None
            if self.role_table is None
            else {role: str(v) for role, v in self.role_table.items()},
            "active": self.active,
        }


@dataclass(frozen=True)
class PaymentRecord:
    id: str
    product_id: str
    advisor: str
    date: date
    ape: Decimal
    receipts: Decimal
    status: str = "Pending"
    provider: str | None = None
    policy_number: str | None = None
    client_id: str | None = None
    introducer: str | None = None
    exception_reason: str | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        if not self.id:
            raise InvalidPaymentError("Payment id is required")
        if not self.product_id:
            raise InvalidPaymentError(f"Payment {self.id} has no product")
        if isinstance(self.date, str):
            try:
                object.__setattr__(self, "date", date.fromisoformat(self.date[:10]))
            except ValueError as exc:
                raise InvalidPaymentError(f"Payment {self.id} has invalid date {self.date!r}") from exc
        ape = to_decimal(self.ape, InvalidPaymentError)
        receipts = to_decimal(self.receipts, InvalidPaymentError)
        if ape < ZERO:
            raise InvalidPaymentError(f"Payment {self.id} APE must not be negative, got {ape}")
        if receipts < ZERO:
            raise InvalidPaymentError(f"Payment {self.id} receipts must not be negative, got {receipts}")
        for name, amount in (("APE", ape), ("receipts", receipts)):
            if amount != amount.quantize(CENT):
                raise InvalidPaymentError(f"Payment {self.id} {name} must be whole cents, got {amount}")
        if self.status not in PAYMENT_STATUSES:
            raise InvalidPaymentError(f"Payment {self.id} has unknown status '{self.status}'")
        object.__setattr__(self, "ape", ape)
        object.__setattr__(self, "receipts", receipts)

    def with_status(self, status: str, exception_reason: str | None = None) -> PaymentRecord:
        return replace(self, status=status, exception_reason=exception_reason)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PaymentRecord:
        return cls(
            id=str(data["id"]),
            product_id=data.get("product_id", ""),
            advisor=data.get("advisor", ""),
            date=data["date"],
            ape=data.get("ape", 0),
            receipts=data.get("receipts", 0),
            status=data.get("status") or "Pending",
            provider=data.get("provider") or None,
            policy_number=data.get("policy_number") or None,
            client_id=data.get("client_id") or None,
            introducer=data.get("introducer") or None,
            exception_reason=data.get("exception_reason") or None,
            notes=data.get("notes") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "advisor": self.advisor,
            "date": self.date.isoformat(),
            "ape": str(self.ape),
            "receipts": str(self.receipts),
            "status": self.status,
            "provider": self.provider,
            "policy_number": self.policy_number,
            "client_id": self.client_id,
            "introducer": self.introducer,
            "exception_reason": self.exception_reason,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class RoleShare:
    role: str
    pct: Decimal
    amount: Decimal


@dataclass(frozen=True)
class CommissionDetailRow:
    payment_id: str
    date: date
    provider: str
    product_id: str
    product_name: str
    advisor: str
    status: str
    ape: Decimal
    receipts: Decimal
    cumulative_volume: Decimal
    method_used: str
    product_rate_pct: Decimal
    margin_pct: Decimal
    commission_base: Decimal
    commission_pool: Decimal
    shares: tuple[RoleShare, ...]
    introducer: str | None = None
    policy_number: str | None = None
    client_id: str | None = None

    def share(self, role: str) -> RoleShare | None:
        for s in self.shares:
            if s.role == role:
                return s
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "date": self.date.isoformat(),
            "provider": self.provider,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "advisor": self.advisor,
            "introducer": self.introducer,
            "policy_number": self.policy_number,
            "client_id": self.client_id,
            "status": self.status,
            "ape": str(self.ape),
            "receipts": str(self.receipts),
            "cumulative_volume": str(self.cumulative_volume),
            "method_used": self.method_used,
            "product_rate_pct": str(self.product_rate_pct),
            "margin_pct": str(self.margin_pct),
            "commission_base": str(self.commission_base),
            "commission_pool": str(self.commission_pool),
            "shares": [
                {"role": s.role, "pct": str(s.pct), "amount": str(s.amount)} for s in self.shares
            ],
        }
