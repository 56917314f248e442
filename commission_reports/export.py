from __future__ import annotations

import csv
import io
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from commission_reports.access import Role, can_export
from commission_reports.errors import ExportDeniedError, UnknownColumnError
from commission_reports.models import CENT, SHARE_ROLES, ZERO, CommissionDetailRow


@dataclass(frozen=True)
class Column:
    id: str
    label: str
    kind: str  # text | date | currency | percentage
    value: Callable[[CommissionDetailRow], Any]


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _words(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", " ", name)


def _share_amount(role: str) -> Callable[[CommissionDetailRow], Decimal]:
    def value(row: CommissionDetailRow) -> Decimal:
        share = row.share(role)
        return ZERO if share is None else share.amount
    return value


def _share_pct(role: str) -> Callable[[CommissionDetailRow], Decimal]:
    def value(row: CommissionDetailRow) -> Decimal:
        share = row.share(role)
        return ZERO if share is None else share.pct
    return value


_BASE_COLUMNS = [
    Column("date", "Date", "date", lambda r: r.date),
    Column("provider", "Provider", "text", lambda r: r.provider),
    Column("product", "Product", "text", lambda r: r.product_name),
    Column("policy_number", "Policy Number", "text", lambda r: r.policy_number),
    Column("client", "Client", "text", lambda r: r.client_id),
    Column("advisor", "Advisor", "text", lambda r: r.advisor),
    Column("introducer", "Introducer", "text", lambda r: r.introducer),
    Column("status", "Status", "text", lambda r: r.status),
    Column("ape", "APE", "currency", lambda r: r.ape),
    Column("receipts", "Receipts", "currency", lambda r: r.receipts),
    Column("method_used", "Method Used", "text", lambda r: r.method_used),
    Column("product_rate_pct", "Product Rate %", "percentage", lambda r: r.product_rate_pct),
    Column("margin_pct", "Margin %", "percentage", lambda r: r.margin_pct),
    Column("commission_base", "Commission Base", "currency", lambda r: r.commission_base),
    Column("commission_pool", "Commission Pool", "currency", lambda r: r.commission_pool),
]
_SHARE_COLUMNS = [
    column
    for role in SHARE_ROLES
    for column in (
        Column(f"{_snake(role)}_share", f"{_words(role)} Share", "currency", _share_amount(role)),
        Column(f"{_snake(role)}_share_pct", f"{_words(role)} Share %", "percentage", _share_pct(role)),
    )
]
COLUMNS: dict[str, Column] = {c.id: c for c in _BASE_COLUMNS + _SHARE_COLUMNS}


def resolve_columns(column_ids: Sequence[str]) -> list[Column]:
    if not column_ids:
        raise UnknownColumnError("Select at least one column")
    unknown = [c for c in column_ids if c not in COLUMNS]
    if unknown:
        raise UnknownColumnError(f"Unknown columns: {', '.join(unknown)}")
    return [COLUMNS[c] for c in column_ids]


def format_value(column: Column, row: CommissionDetailRow) -> str:
    value = column.value(row)
    if value is None:
        return ""
    if column.kind in ("currency", "percentage"):
        return str(value.quantize(CENT, rounding=ROUND_HALF_UP))
    if column.kind == "date":
        return value.isoformat()
    return str(value)


def project_and_serialize(rows: Iterable[CommissionDetailRow], column_ids: Sequence[str]) -> str:
    """CSV text with the selected columns in the selected order."""
    columns = resolve_columns(column_ids)
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([c.label for c in columns])
    for row in rows:
        writer.writerow([format_value(c, row) for c in columns])
    return output.getvalue()


def export_report(
    rows: Iterable[CommissionDetailRow],
    column_ids: Sequence[str],
    role: str | Role | None,
) -> str:
    if not can_export(role):
        raise ExportDeniedError(getattr(role, "value", role) or "anonymous")
    return project_and_serialize(rows, column_ids)
