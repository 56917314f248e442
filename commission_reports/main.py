from __future__ import annotations

import datetime
import logging
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.responses import Response

from commission_reports import config
from commission_reports.access import Caller, Role, can_export, can_view_reports, parse_role
from commission_reports.config import Settings
from commission_reports.errors import (
    ExportDeniedError,
    InputValidationError,
    ReportTooLargeError,
)
from commission_reports.export import COLUMNS, export_report
from commission_reports.models import PaymentRecord, Product
from commission_reports.persistence import list_audit_events, log_audit_event
from commission_reports.reporting import (
    DEFAULT_COLUMNS,
    ReportQuery,
    compute_report,
    growth_rate,
    month_range,
    period_range,
    product_mix,
    row_for_payment,
    select_rows,
    time_series,
)
from commission_reports.repository import Repository, SqliteRepository
from commission_reports.seed import seed_repository
from commission_reports.templates import SqliteTemplateStore, TemplateStore, new_template

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = config.settings
    logging.basicConfig(level=settings.LOG_LEVEL)
    repository = SqliteRepository(settings.DB_PATH)
    if settings.SEED_ON_STARTUP and not repository.list_products():
        seed_repository(repository, settings.DATA_DIR)
    logger.info(f"{settings.APP_NAME} ready, database at {settings.DB_PATH}")
    yield


app = FastAPI(title="Commission Reports", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_settings() -> Settings:
    return config.settings


def get_repository(settings: Settings = Depends(get_settings)) -> Repository:
    return SqliteRepository(settings.DB_PATH)


def get_template_store(settings: Settings = Depends(get_settings)) -> TemplateStore:
    return SqliteTemplateStore(settings.DB_PATH)


def get_caller(
    x_user_email: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> Caller:
    """Identity forwarded by the auth layer; taken as given, never verified here."""
    role = parse_role(x_user_role)
    if not x_user_email or role is None:
        raise HTTPException(status_code=401, detail="Missing caller identity")
    return Caller(email=x_user_email.strip().lower(), role=role)


def require_reports(caller: Caller = Depends(get_caller)) -> Caller:
    if not can_view_reports(caller.role):
        raise HTTPException(status_code=403, detail="Reports are not available for your role")
    return caller


def require_admin(caller: Caller = Depends(get_caller)) -> Caller:
    if caller.role != Role.ADMIN:
        raise HTTPException(status_code=403, detail="Admin access required")
    return caller


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

@app.exception_handler(InputValidationError)
async def handle_validation_error(request: Request, exc: InputValidationError) -> JSONResponse:
    return JSONResponse({"detail": str(exc)}, status_code=422)


@app.exception_handler(ExportDeniedError)
async def handle_export_denied(request: Request, exc: ExportDeniedError) -> JSONResponse:
    return JSONResponse({"detail": str(exc), "error": "export_denied"}, status_code=403)


@app.exception_handler(ReportTooLargeError)
async def handle_too_large(request: Request, exc: ReportTooLargeError) -> JSONResponse:
    return JSONResponse(
        {"detail": str(exc), "row_count": exc.row_count, "limit": exc.limit},
        status_code=413,
    )


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class BandRequest(BaseModel):
    threshold: Decimal
    rate_adjustment: Decimal


class UpsertProductRequest(BaseModel):
    id: str
    name: str
    provider: str
    commission_rate: Decimal
    margin: Decimal = Decimal("0")
    bands: list[BandRequest] = []
    role_table: dict[str, Decimal] | None = None
    active: bool = True


class AddPaymentRequest(BaseModel):
    id: str
    product_id: str
    date: datetime.date
    ape: Decimal
    receipts: Decimal = Decimal("0")
    advisor: str | None = None
    provider: str | None = None
    policy_number: str | None = None
    client_id: str | None = None
    introducer: str | None = None
    notes: str | None = None


class UpdateStatusRequest(BaseModel):
    status: str
    exception_reason: str | None = None


class CreateTemplateRequest(BaseModel):
    name: str
    columns: list[str] = Field(default_factory=lambda: list(DEFAULT_COLUMNS))
    date_from: date | None = None
    date_to: date | None = None
    products: list[str] = []
    providers: list[str] = []
    advisors: list[str] = []
    statuses: list[str] = []


def _split(values: list[str] | None) -> list[str]:
    """Accept both repeated params and comma-joined lists."""
    out: list[str] = []
    for value in values or []:
        out.extend(v.strip() for v in value.split(",") if v.strip())
    return out


def build_query(
    date_from: date | None = None,
    date_to: date | None = None,
    period: str | None = None,
    product: list[str] | None = Query(default=None),
    provider: list[str] | None = Query(default=None),
    advisor: list[str] | None = Query(default=None),
    status: list[str] | None = Query(default=None),
    columns: list[str] | None = Query(default=None),
    metric: str = "commission_base",
    page: int = 1,
    page_size: int | None = None,
    dense: bool = False,
) -> ReportQuery:
    if period:
        date_from, date_to = period_range(period, date.today())
    return ReportQuery(
        date_from=date_from,
        date_to=date_to,
        products=_split(product),
        providers=_split(provider),
        advisors=[a.lower() for a in _split(advisor)],
        statuses=_split(status),
        columns=tuple(_split(columns)) or DEFAULT_COLUMNS,
        metric=metric,
        page=page,
        page_size=page_size,
        dense=dense,
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@app.get("/health")
def health() -> JSONResponse:
    return JSONResponse({"ok": True, "service": "commission-reports"})


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

@app.get("/api/v1/reports/commission-details")
def api_commission_details(
    query: ReportQuery = Depends(build_query),
    caller: Caller = Depends(require_reports),
    repository: Repository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    report = compute_report(query, caller, repository, settings)
    payload = report.to_dict()
    payload["can_export"] = can_export(caller.role)
    return JSONResponse(payload)


@app.get("/api/v1/reports/columns")
def api_report_columns() -> JSONResponse:
    return JSONResponse(
        {"columns": [{"id": c.id, "label": c.label, "type": c.kind} for c in COLUMNS.values()]}
    )


@app.get("/api/v1/reports/export.csv")
def api_export_report(
    query: ReportQuery = Depends(build_query),
    caller: Caller = Depends(require_reports),
    repository: Repository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> Response:
    if not can_export(caller.role):
        logger.warning(f"Export denied for {caller.email} ({caller.role.value})")
        raise ExportDeniedError(caller.role.value)
    rows = select_rows(query, caller, repository, settings)
    content = export_report(rows, query.columns, caller.role)

    log_audit_event(
        settings.DB_PATH, event_type="export", action="downloaded",
        entity_type="export", entity_id="commission-report.csv", actor=caller.email,
        detail=f"{len(rows)} rows, columns={','.join(query.columns)}",
    )
    logger.info(f"{caller.email} exported {len(rows)} commission rows")
    filename = f"commission-report-{date.today().isoformat()}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------

def _analytics_query(range_: str, advisor: list[str] | None, metric: str) -> ReportQuery:
    date_from, date_to = period_range(range_, date.today())
    return ReportQuery(
        date_from=date_from,
        date_to=date_to,
        advisors=[a.lower() for a in _split(advisor)],
        metric=metric,
    )


@app.get("/api/v1/analytics/series")
def api_analytics_series(
    range_: str = Query(default="last_6_months", alias="range"),
    advisor: list[str] | None = Query(default=None),
    metric: str = "commission_base",
    caller: Caller = Depends(require_reports),
    repository: Repository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    query = _analytics_query(range_, advisor, metric)
    rows = select_rows(query, caller, repository, settings)
    series = time_series(rows, metric, month_range(query.date_from, query.date_to))
    return JSONResponse({
        "range": range_,
        "series": [{"period": p.period, "total": str(p.total), "count": p.count} for p in series],
        "growth_pct": str(growth_rate(series)),
    })


@app.get("/api/v1/analytics/product-mix")
def api_analytics_product_mix(
    range_: str = Query(default="last_6_months", alias="range"),
    advisor: list[str] | None = Query(default=None),
    metric: str = "commission_base",
    caller: Caller = Depends(require_reports),
    repository: Repository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    query = _analytics_query(range_, advisor, metric)
    rows = select_rows(query, caller, repository, settings)
    return JSONResponse({
        "range": range_,
        "mix": [
            {
                "product_id": m.product_id,
                "product_name": m.product_name,
                "total": str(m.total),
                "count": m.count,
                "share_pct": str(m.share_pct),
            }
            for m in product_mix(rows, metric)
        ],
    })


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

@app.get("/api/v1/products")
def api_list_products(
    active: bool | None = None,
    repository: Repository = Depends(get_repository),
) -> JSONResponse:
    products = [
        p.to_dict() for p in repository.list_products()
        if active is None or p.active == active
    ]
    return JSONResponse({"rows": products, "count": len(products)})


@app.post("/api/v1/products")
def api_upsert_product(
    payload: UpsertProductRequest,
    caller: Caller = Depends(require_admin),
    repository: Repository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    product = Product.from_dict(payload.model_dump())
    repository.upsert_product(product)
    log_audit_event(
        settings.DB_PATH, event_type="product", action="upsert",
        entity_type="product", entity_id=product.id, actor=caller.email,
        detail=f"rate={product.commission_rate} margin={product.margin} bands={len(product.bands)}",
    )
    return JSONResponse({"ok": True, "product": product.to_dict()})


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------

@app.get("/api/v1/payments")
def api_list_payments(
    query: ReportQuery = Depends(build_query),
    caller: Caller = Depends(require_reports),
    repository: Repository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    visible = {r.payment_id for r in select_rows(query, caller, repository, settings)}
    payments = [
        p.to_dict() for p in repository.list_payments(query.date_from, query.date_to)
        if p.id in visible
    ]
    return JSONResponse({"rows": payments, "count": len(payments)})


@app.post("/api/v1/payments")
def api_add_payment(
    payload: AddPaymentRequest,
    caller: Caller = Depends(get_caller),
    repository: Repository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    if caller.role not in (Role.ADVISOR, Role.MANAGER, Role.ADMIN):
        raise HTTPException(status_code=403, detail="Payments cannot be recorded by your role")
    advisor = (payload.advisor or caller.email).lower()
    if caller.role == Role.ADVISOR and advisor != caller.email:
        raise HTTPException(status_code=403, detail="Advisors may only record their own payments")
    if repository.get_product(payload.product_id) is None:
        raise HTTPException(status_code=404, detail=f"Product {payload.product_id} not found")

    data = payload.model_dump()
    data["advisor"] = advisor
    payment = repository.add_payment(PaymentRecord.from_dict(data))
    row = row_for_payment(payment.id, repository, settings)
    log_audit_event(
        settings.DB_PATH, event_type="payment", action="created",
        entity_type="payment", entity_id=payment.id, actor=caller.email,
        detail=f"APE {payment.ape} receipts {payment.receipts} on {payment.product_id}",
    )
    return JSONResponse({"ok": True, "payment": payment.to_dict(), "commission": row.to_dict() if row else None})


@app.post("/api/v1/payments/{payment_id}/status")
def api_update_payment_status(
    payment_id: str,
    payload: UpdateStatusRequest,
    caller: Caller = Depends(get_caller),
    repository: Repository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    if caller.role not in (Role.MANAGER, Role.ADMIN):
        raise HTTPException(status_code=403, detail="Manager or admin access required")
    updated = repository.update_payment_status(payment_id, payload.status, payload.exception_reason)
    if updated is None:
        raise HTTPException(status_code=404, detail="Payment not found")
    log_audit_event(
        settings.DB_PATH, event_type="payment", action="status_changed",
        entity_type="payment", entity_id=payment_id, actor=caller.email,
        detail=f"{payload.status}" + (f": {payload.exception_reason}" if payload.exception_reason else ""),
    )
    return JSONResponse({"ok": True, "payment": updated.to_dict()})


# ---------------------------------------------------------------------------
# Report templates
# ---------------------------------------------------------------------------

def _owned_template(template_id: str, caller: Caller, store: TemplateStore):
    template = store.get(template_id)
    if template is None or (template.created_by != caller.email and caller.role != Role.ADMIN):
        raise HTTPException(status_code=404, detail="Template not found")
    return template


@app.get("/api/v1/report-templates")
def api_list_templates(
    caller: Caller = Depends(require_reports),
    store: TemplateStore = Depends(get_template_store),
) -> JSONResponse:
    rows = [t.to_dict() for t in store.list(created_by=caller.email)]
    return JSONResponse({"rows": rows, "count": len(rows)})


@app.post("/api/v1/report-templates")
def api_create_template(
    payload: CreateTemplateRequest,
    caller: Caller = Depends(require_reports),
    store: TemplateStore = Depends(get_template_store),
) -> JSONResponse:
    query = ReportQuery(
        date_from=payload.date_from,
        date_to=payload.date_to,
        products=payload.products,
        providers=payload.providers,
        advisors=payload.advisors,
        statuses=payload.statuses,
        columns=tuple(payload.columns),
    )
    template = store.save(new_template(payload.name, query, caller.email))
    return JSONResponse({"ok": True, "template": template.to_dict()})


@app.get("/api/v1/report-templates/{template_id}")
def api_get_template(
    template_id: str,
    caller: Caller = Depends(require_reports),
    store: TemplateStore = Depends(get_template_store),
) -> JSONResponse:
    return JSONResponse(_owned_template(template_id, caller, store).to_dict())


@app.get("/api/v1/report-templates/{template_id}/report")
def api_run_template(
    template_id: str,
    page: int = 1,
    caller: Caller = Depends(require_reports),
    store: TemplateStore = Depends(get_template_store),
    repository: Repository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    template = _owned_template(template_id, caller, store)
    report = compute_report(template.to_query(page=page), caller, repository, settings)
    return JSONResponse(report.to_dict())


@app.delete("/api/v1/report-templates/{template_id}")
def api_delete_template(
    template_id: str,
    caller: Caller = Depends(require_reports),
    store: TemplateStore = Depends(get_template_store),
) -> JSONResponse:
    _owned_template(template_id, caller, store)
    store.delete(template_id)
    return JSONResponse({"ok": True})


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------

@app.get("/api/v1/audit")
def api_audit_events(
    event_type: str | None = None,
    limit: int = 100,
    caller: Caller = Depends(require_admin),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    rows = list_audit_events(settings.DB_PATH, event_type=event_type, limit=limit)
    return JSONResponse({"rows": rows, "count": len(rows)})
