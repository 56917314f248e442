"""Filtering and aggregation over derived commission rows.

``compute_report`` is the entry point every report, analytics and dashboard
screen goes through, so on-screen totals and exports are computed from the
same scoped row set.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

from commission_reports import config
from commission_reports.access import Caller, Role, can_view_row
from commission_reports.calculator import build_rows
from commission_reports.errors import InvalidQueryError, ReportTooLargeError
from commission_reports.models import CENT, HUNDRED, ZERO, CommissionDetailRow, money
from commission_reports.rates import BandSummary, band_breakdown

if TYPE_CHECKING:
    from commission_reports.config import Settings
    from commission_reports.repository import Repository

METRICS: dict[str, Callable[[CommissionDetailRow], Decimal]] = {
    "commission_base": lambda r: r.commission_base,
    "commission_pool": lambda r: r.commission_pool,
    "ape": lambda r: r.ape,
    "receipts": lambda r: r.receipts,
}
DEFAULT_COLUMNS = ("date", "product", "ape", "commission_base", "status")
NAMED_PERIODS = ("this_month", "last_3_months", "last_6_months", "ytd")


def _metric(name: str) -> Callable[[CommissionDetailRow], Decimal]:
    try:
        return METRICS[name]
    except KeyError:
        raise InvalidQueryError(f"Unknown metric '{name}', expected one of {sorted(METRICS)}") from None


def _as_set(values: Iterable[str] | str | None) -> frozenset[str]:
    if values is None:
        return frozenset()
    if isinstance(values, str):
        values = [values]
    return frozenset(v for v in values if v)


def _as_date(value: date | str | None) -> date | None:
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value[:10])
    except ValueError as exc:
        raise InvalidQueryError(f"Invalid date {value!r}") from exc


@dataclass(frozen=True)
class ReportQuery:
    date_from: date | None = None
    date_to: date | None = None
    products: frozenset[str] = frozenset()
    providers: frozenset[str] = frozenset()
    advisors: frozenset[str] = frozenset()
    statuses: frozenset[str] = frozenset()
    columns: tuple[str, ...] = DEFAULT_COLUMNS
    metric: str = "commission_base"
    page: int = 1
    page_size: int | None = None
    dense: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "date_from", _as_date(self.date_from))
        object.__setattr__(self, "date_to", _as_date(self.date_to))
        for name in ("products", "providers", "advisors", "statuses"):
            object.__setattr__(self, name, _as_set(getattr(self, name)))
        object.__setattr__(self, "columns", tuple(self.columns))
        _metric(self.metric)
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise InvalidQueryError("date_from must not be after date_to")
        if self.page < 1:
            raise InvalidQueryError("page starts at 1")
        if self.page_size is not None and self.page_size < 1:
            raise InvalidQueryError("page_size must be positive")
        if self.dense and not (self.date_from and self.date_to):
            raise InvalidQueryError("A dense series needs both date_from and date_to")

    def filters(self) -> dict[str, Any]:
        return {
            "date_from": self.date_from.isoformat() if self.date_from else None,
            "date_to": self.date_to.isoformat() if self.date_to else None,
            "products": sorted(self.products),
            "providers": sorted(self.providers),
            "advisors": sorted(self.advisors),
            "statuses": sorted(self.statuses),
        }

    @classmethod
    def from_filters(cls, filters: Mapping[str, Any], columns: Sequence[str] = DEFAULT_COLUMNS) -> ReportQuery:
        return cls(
            date_from=filters.get("date_from"),
            date_to=filters.get("date_to"),
            products=filters.get("products"),
            providers=filters.get("providers"),
            advisors=filters.get("advisors"),
            statuses=filters.get("statuses"),
            columns=tuple(columns),
        )


def _matches(row: CommissionDetailRow, query: ReportQuery) -> bool:
    if query.date_from and row.date < query.date_from:
        return False
    if query.date_to and row.date > query.date_to:
        return False
    if query.products and row.product_id not in query.products:
        return False
    if query.providers and row.provider not in query.providers:
        return False
    if query.advisors and row.advisor not in query.advisors:
        return False
    if query.statuses and "all" not in query.statuses and row.status not in query.statuses:
        return False
    return True


def filter_rows(
    rows: Iterable[CommissionDetailRow],
    query: ReportQuery,
    caller: Caller | None = None,
) -> list[CommissionDetailRow]:
    return [
        r for r in rows
        if _matches(r, query) and (caller is None or can_view_row(caller, r))
    ]


@dataclass(frozen=True)
class SeriesPoint:
    period: str
    total: Decimal
    count: int


def month_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def month_range(start: date, end: date) -> list[str]:
    months = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        months.append(f"{year:04d}-{month:02d}")
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return months


def period_range(period: str, today: date) -> tuple[date, date]:
    """Date window for the named ranges the report screens offer."""
    if period == "this_month":
        return today.replace(day=1), today
    if period == "ytd":
        return date(today.year, 1, 1), today
    if period in ("last_3_months", "last_6_months"):
        back = 2 if period == "last_3_months" else 5
        year, month = today.year, today.month - back
        while month < 1:
            year, month = year - 1, month + 12
        return date(year, month, 1), today
    raise InvalidQueryError(f"Unknown period '{period}', expected one of {NAMED_PERIODS}")


def time_series(
    rows: Iterable[CommissionDetailRow],
    metric: str = "commission_base",
    months: Sequence[str] | None = None,
) -> list[SeriesPoint]:
    """Monthly totals of ``metric``.

    Months without rows are left out unless ``months`` is given, in which
    case exactly those months are returned, zero-filled where empty.
    """
    value_of = _metric(metric)
    totals: dict[str, Decimal] = {}
    counts: dict[str, int] = {}
    for row in rows:
        key = month_key(row.date)
        totals[key] = totals.get(key, ZERO) + value_of(row)
        counts[key] = counts.get(key, 0) + 1

    periods = list(months) if months is not None else sorted(totals)
    return [
        SeriesPoint(period=p, total=money(totals.get(p, ZERO)), count=counts.get(p, 0))
        for p in periods
    ]


@dataclass(frozen=True)
class MixItem:
    product_id: str
    product_name: str
    total: Decimal
    count: int
    share_pct: Decimal


def product_mix(rows: Iterable[CommissionDetailRow], metric: str = "commission_base") -> list[MixItem]:
    value_of = _metric(metric)
    totals: dict[str, Decimal] = {}
    counts: dict[str, int] = {}
    names: dict[str, str] = {}
    for row in rows:
        totals[row.product_id] = totals.get(row.product_id, ZERO) + value_of(row)
        counts[row.product_id] = counts.get(row.product_id, 0) + 1
        names.setdefault(row.product_id, row.product_name)

    grand = sum(totals.values(), ZERO)
    items = []
    for product_id, total in totals.items():
        share = ZERO if grand == ZERO else (total / grand * HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)
        items.append(
            MixItem(
                product_id=product_id,
                product_name=names[product_id],
                total=total,
                count=counts[product_id],
                share_pct=share,
            )
        )
    items.sort(key=lambda m: (-m.total, m.product_id))
    return items


def growth_rate(series: Sequence[SeriesPoint]) -> Decimal:
    """Percent change from the first to the last bucket; 0 when undefined."""
    if not series:
        return ZERO
    first, last = series[0].total, series[-1].total
    if first == ZERO:
        return ZERO
    return ((last - first) / first * HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Totals:
    count: int
    ape: Decimal
    receipts: Decimal
    commission_base: Decimal
    commission_pool: Decimal
    average_commission: Decimal


def summarize(rows: Sequence[CommissionDetailRow]) -> Totals:
    base = sum((r.commission_base for r in rows), ZERO)
    return Totals(
        count=len(rows),
        ape=money(sum((r.ape for r in rows), ZERO)),
        receipts=money(sum((r.receipts for r in rows), ZERO)),
        commission_base=money(base),
        commission_pool=money(sum((r.commission_pool for r in rows), ZERO)),
        average_commission=money(base / len(rows)) if rows else ZERO,
    )


@dataclass(frozen=True)
class Report:
    query: ReportQuery
    rows: list[CommissionDetailRow]
    total_count: int
    page: int
    page_size: int
    series: list[SeriesPoint]
    mix: list[MixItem]
    growth: Decimal
    totals: Totals
    bands: list[BandSummary] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "filters": self.query.filters(),
            "metric": self.query.metric,
            "columns": list(self.query.columns),
            "page": self.page,
            "page_size": self.page_size,
            "total_count": self.total_count,
            "rows": [r.to_dict() for r in self.rows],
            "series": [
                {"period": p.period, "total": str(p.total), "count": p.count} for p in self.series
            ],
            "mix": [
                {
                    "product_id": m.product_id,
                    "product_name": m.product_name,
                    "total": str(money(m.total)),
                    "count": m.count,
                    "share_pct": str(m.share_pct),
                }
                for m in self.mix
            ],
            "growth_pct": str(self.growth),
            "totals": {
                "count": self.totals.count,
                "ape": str(self.totals.ape),
                "receipts": str(self.totals.receipts),
                "commission_base": str(self.totals.commission_base),
                "commission_pool": str(self.totals.commission_pool),
                "average_commission": str(self.totals.average_commission),
            },
            "bands": [
                {
                    "product_id": b.product_id,
                    "threshold": str(b.threshold),
                    "bonus_pct": str(b.bonus_pct),
                    "count": b.count,
                    "total_commission": str(b.total_commission),
                }
                for b in self.bands
            ],
        }


def _fetch_from(query: ReportQuery, band_scope: str) -> date | None:
    # Banding needs the advisor's earlier volume in the same month or year
    if query.date_from is None:
        return None
    if band_scope == "advisor_ytd":
        return date(query.date_from.year, 1, 1)
    if band_scope == "advisor_month":
        return query.date_from.replace(day=1)
    return query.date_from


def _resolve_caller(caller: Caller, repository: Repository) -> Caller:
    if caller.role == Role.MANAGER and caller.team is None:
        team = repository.team_of(caller.email)
        if team is not None:
            return replace(caller, team=frozenset(team))
    return caller


def select_rows(
    query: ReportQuery,
    caller: Caller,
    repository: Repository,
    settings: Settings | None = None,
) -> list[CommissionDetailRow]:
    """All rows the caller may see that match ``query``, unpaginated."""
    settings = settings or config.settings
    products = {p.id: p for p in repository.list_products()}
    payments = repository.list_payments(_fetch_from(query, settings.BAND_SCOPE), query.date_to)
    rows = build_rows(payments, products, settings.ROLE_TABLE, settings.BAND_SCOPE)
    selected = filter_rows(rows, query, _resolve_caller(caller, repository))
    if len(selected) > settings.MAX_REPORT_ROWS:
        raise ReportTooLargeError(len(selected), settings.MAX_REPORT_ROWS)
    return selected


def compute_report(
    query: ReportQuery,
    caller: Caller,
    repository: Repository,
    settings: Settings | None = None,
) -> Report:
    settings = settings or config.settings
    rows = select_rows(query, caller, repository, settings)
    page_size = min(query.page_size or settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE)
    start = (query.page - 1) * page_size

    months = month_range(query.date_from, query.date_to) if query.dense else None
    series = time_series(rows, query.metric, months)
    products = {p.id: p for p in repository.list_products()}
    return Report(
        query=query,
        rows=rows[start:start + page_size],
        total_count=len(rows),
        page=query.page,
        page_size=page_size,
        series=series,
        mix=product_mix(rows, query.metric),
        growth=growth_rate(series),
        totals=summarize(rows),
        bands=band_breakdown(rows, products),
    )


def row_for_payment(
    payment_id: str,
    repository: Repository,
    settings: Settings | None = None,
) -> CommissionDetailRow | None:
    """Detail row for one payment, banded against the advisor's earlier volume."""
    settings = settings or config.settings
    payment = repository.get_payment(payment_id)
    if payment is None:
        return None
    window = ReportQuery(date_from=payment.date, date_to=payment.date)
    payments = repository.list_payments(_fetch_from(window, settings.BAND_SCOPE), payment.date)
    products = {p.id: p for p in repository.list_products()}
    rows = build_rows(payments, products, settings.ROLE_TABLE, settings.BAND_SCOPE)
    return next((r for r in rows if r.payment_id == payment_id), None)
