from __future__ import annotations

import json
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any


def utc_now() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


def get_conn(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: Path) -> None:
    # Money and rates are stored as TEXT so Decimal values round-trip exactly.
    with get_conn(db_path) as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS products (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                provider TEXT NOT NULL,
                commission_rate TEXT NOT NULL,
                margin TEXT NOT NULL,
                bands TEXT NOT NULL,
                role_table TEXT,
                active INTEGER NOT NULL DEFAULT 1,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS payments (
                id TEXT PRIMARY KEY,
                product_id TEXT NOT NULL,
                advisor TEXT NOT NULL,
                date TEXT NOT NULL,
                ape TEXT NOT NULL,
                receipts TEXT NOT NULL,
                status TEXT NOT NULL,
                provider TEXT,
                policy_number TEXT,
                client_id TEXT,
                introducer TEXT,
                exception_reason TEXT,
                notes TEXT,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_payments_date ON payments(date);

            CREATE TABLE IF NOT EXISTS team_members (
                manager_email TEXT NOT NULL,
                advisor_email TEXT NOT NULL,
                PRIMARY KEY (manager_email, advisor_email)
            );

            CREATE TABLE IF NOT EXISTS report_templates (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                created_by TEXT NOT NULL,
                columns TEXT NOT NULL,
                filters TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS audit_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                event_type TEXT NOT NULL,
                action TEXT NOT NULL,
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                actor TEXT NOT NULL,
                detail TEXT,
                created_at TEXT NOT NULL
            );
            """
        )


def upsert_product(db_path: Path, product: dict[str, Any]) -> None:
    with get_conn(db_path) as conn:
        conn.execute(
            """
            INSERT INTO products(
                id, name, provider, commission_rate, margin, bands, role_table, active, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name=excluded.name,
                provider=excluded.provider,
                commission_rate=excluded.commission_rate,
                margin=excluded.margin,
                bands=excluded.bands,
                role_table=excluded.role_table,
                active=excluded.active,
                updated_at=excluded.updated_at
            """,
            (
                product["id"],
                product["name"],
                product["provider"],
                product["commission_rate"],
                product["margin"],
                json.dumps(product.get("bands", [])),
                None if product.get("role_table") is None else json.dumps(product["role_table"]),
                1 if product.get("active", True) else 0,
                utc_now(),
            ),
        )


def _product_row(row: sqlite3.Row) -> dict[str, Any]:
    data = dict(row)
    data["bands"] = json.loads(data["bands"])
    data["role_table"] = None if data["role_table"] is None else json.loads(data["role_table"])
    data["active"] = bool(data["active"])
    return data


def list_products(db_path: Path) -> list[dict[str, Any]]:
    with get_conn(db_path) as conn:
        rows = conn.execute("SELECT * FROM products ORDER BY id").fetchall()
        return [_product_row(row) for row in rows]


_PAYMENT_FIELDS = (
    "id", "product_id", "advisor", "date", "ape", "receipts", "status", "provider",
    "policy_number", "client_id", "introducer", "exception_reason", "notes",
)
_PAYMENT_COLUMNS = ", ".join(_PAYMENT_FIELDS)
_UPSERT_PAYMENT_SQL = (
    f"INSERT INTO payments({_PAYMENT_COLUMNS}, updated_at) "
    f"VALUES ({', '.join('?' for _ in _PAYMENT_FIELDS)}, ?) "
    "ON CONFLICT(id) DO UPDATE SET "
    + ", ".join(f"{name}=excluded.{name}" for name in _PAYMENT_FIELDS[1:])
    + ", updated_at=excluded.updated_at"
)


def upsert_payment(db_path: Path, payment: dict[str, Any]) -> None:
    with get_conn(db_path) as conn:
        conn.execute(
            _UPSERT_PAYMENT_SQL,
            tuple(payment.get(f) for f in _PAYMENT_FIELDS) + (utc_now(),),
        )


def list_payments(
    db_path: Path,
    date_from: str | None = None,
    date_to: str | None = None,
) -> list[dict[str, Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if date_from:
        clauses.append("date >= ?")
        params.append(date_from)
    if date_to:
        clauses.append("date <= ?")
        params.append(date_to)
    sql = f"SELECT {_PAYMENT_COLUMNS} FROM payments"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY date ASC, id ASC"
    with get_conn(db_path) as conn:
        rows = conn.execute(sql, params).fetchall()
        return [dict(row) for row in rows]


def get_payment(db_path: Path, payment_id: str) -> dict[str, Any] | None:
    with get_conn(db_path) as conn:
        row = conn.execute(
            f"SELECT {_PAYMENT_COLUMNS} FROM payments WHERE id = ?",
            (payment_id,),
        ).fetchone()
        return None if row is None else dict(row)


def update_payment_status(
    db_path: Path,
    payment_id: str,
    status: str,
    exception_reason: str | None = None,
) -> bool:
    with get_conn(db_path) as conn:
        cur = conn.execute(
            """
            UPDATE payments
            SET status = ?, exception_reason = ?, updated_at = ?
            WHERE id = ?
            """,
            (status, exception_reason, utc_now(), payment_id),
        )
        return cur.rowcount > 0


def set_team(db_path: Path, manager_email: str, advisor_emails: list[str]) -> None:
    with get_conn(db_path) as conn:
        conn.execute("DELETE FROM team_members WHERE manager_email = ?", (manager_email,))
        conn.executemany(
            "INSERT INTO team_members(manager_email, advisor_email) VALUES (?, ?)",
            [(manager_email, a) for a in advisor_emails],
        )


def team_of(db_path: Path, manager_email: str) -> list[str] | None:
    with get_conn(db_path) as conn:
        rows = conn.execute(
            "SELECT advisor_email FROM team_members WHERE manager_email = ? ORDER BY advisor_email",
            (manager_email,),
        ).fetchall()
        return [str(r["advisor_email"]) for r in rows] or None


def save_template(db_path: Path, template: dict[str, Any]) -> dict[str, Any]:
    with get_conn(db_path) as conn:
        conn.execute(
            """
            INSERT INTO report_templates(id, name, created_by, columns, filters, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                template["id"],
                template["name"],
                template["created_by"],
                json.dumps(list(template["columns"])),
                json.dumps(template["filters"]),
                template["created_at"],
            ),
        )
    return template


def _template_row(row: sqlite3.Row) -> dict[str, Any]:
    data = dict(row)
    data["columns"] = json.loads(data["columns"])
    data["filters"] = json.loads(data["filters"])
    return data


def list_templates(db_path: Path, created_by: str | None = None) -> list[dict[str, Any]]:
    with get_conn(db_path) as conn:
        if created_by:
            rows = conn.execute(
                "SELECT * FROM report_templates WHERE created_by = ? ORDER BY created_at, id",
                (created_by,),
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM report_templates ORDER BY created_at, id").fetchall()
        return [_template_row(row) for row in rows]


def get_template(db_path: Path, template_id: str) -> dict[str, Any] | None:
    with get_conn(db_path) as conn:
        row = conn.execute(
            "SELECT * FROM report_templates WHERE id = ?", (template_id,)
        ).fetchone()
        return None if row is None else _template_row(row)


def delete_template(db_path: Path, template_id: str) -> bool:
    with get_conn(db_path) as conn:
        cur = conn.execute("DELETE FROM report_templates WHERE id = ?", (template_id,))
        return cur.rowcount > 0


def log_audit_event(
    db_path: Path,
    event_type: str,
    action: str,
    entity_type: str,
    entity_id: str,
    actor: str,
    detail: str | None = None,
) -> None:
    with get_conn(db_path) as conn:
        conn.execute(
            """
            INSERT INTO audit_events(event_type, action, entity_type, entity_id, actor, detail, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (event_type, action, entity_type, entity_id, actor, detail, utc_now()),
        )


def list_audit_events(
    db_path: Path, event_type: str | None = None, limit: int = 100
) -> list[dict[str, Any]]:
    with get_conn(db_path) as conn:
        if event_type:
            rows = conn.execute(
                """
                SELECT * FROM audit_events
                WHERE event_type = ?
                ORDER BY id DESC
                LIMIT ?
                """,
                (event_type, limit),
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM audit_events ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [dict(row) for row in rows]
