"""Payments feed, product catalog and team directory behind one interface.

The reporting engine only reads through :class:`Repository`; the HTTP layer
uses the mutation helpers. Backends are interchangeable.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import date
from pathlib import Path

from commission_reports import persistence
from commission_reports.errors import InvalidPaymentError
from commission_reports.models import PaymentRecord, Product


class Repository(ABC):
    @abstractmethod
    def list_products(self) -> list[Product]:
        """All products, active or not, ordered by id."""

    @abstractmethod
    def get_product(self, product_id: str) -> Product | None:
        pass

    @abstractmethod
    def upsert_product(self, product: Product) -> Product:
        pass

    @abstractmethod
    def list_payments(self, date_from: date | None = None, date_to: date | None = None) -> list[PaymentRecord]:
        """Payments in the inclusive window, ordered by date then id."""

    @abstractmethod
    def get_payment(self, payment_id: str) -> PaymentRecord | None:
        pass

    @abstractmethod
    def add_payment(self, payment: PaymentRecord) -> PaymentRecord:
        """Store a new payment; an existing id raises InvalidPaymentError."""

    @abstractmethod
    def update_payment_status(
        self, payment_id: str, status: str, exception_reason: str | None = None
    ) -> PaymentRecord | None:
        """Replace the payment's status; None when the id is unknown."""

    @abstractmethod
    def team_of(self, manager_email: str) -> frozenset[str] | None:
        """Advisors managed by ``manager_email``; None when no team is on file."""

    @abstractmethod
    def set_team(self, manager_email: str, advisor_emails: Iterable[str]) -> None:
        pass


def _in_window(payment: PaymentRecord, date_from: date | None, date_to: date | None) -> bool:
    if date_from and payment.date < date_from:
        return False
    if date_to and payment.date > date_to:
        return False
    return True


class InMemoryRepository(Repository):
    def __init__(
        self,
        products: Iterable[Product] = (),
        payments: Iterable[PaymentRecord] = (),
        teams: dict[str, Iterable[str]] | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._products = {p.id: p for p in products}
        self._payments = {p.id: p for p in payments}
        self._teams = {m: frozenset(a) for m, a in (teams or {}).items()}

    def list_products(self) -> list[Product]:
        return sorted(self._products.values(), key=lambda p: p.id)

    def get_product(self, product_id: str) -> Product | None:
        return self._products.get(product_id)

    def upsert_product(self, product: Product) -> Product:
        with self._lock:
            self._products[product.id] = product
        return product

    def list_payments(self, date_from: date | None = None, date_to: date | None = None) -> list[PaymentRecord]:
        return sorted(
            (p for p in self._payments.values() if _in_window(p, date_from, date_to)),
            key=lambda p: (p.date, p.id),
        )

    def get_payment(self, payment_id: str) -> PaymentRecord | None:
        return self._payments.get(payment_id)

    def add_payment(self, payment: PaymentRecord) -> PaymentRecord:
        with self._lock:
            if payment.id in self._payments:
                raise InvalidPaymentError(f"Payment {payment.id} already exists")
            self._payments[payment.id] = payment
        return payment

    def update_payment_status(
        self, payment_id: str, status: str, exception_reason: str | None = None
    ) -> PaymentRecord | None:
        with self._lock:
            current = self._payments.get(payment_id)
            if current is None:
                return None
            updated = current.with_status(status, exception_reason)
            self._payments[payment_id] = updated
        return updated

    def team_of(self, manager_email: str) -> frozenset[str] | None:
        return self._teams.get(manager_email)

    def set_team(self, manager_email: str, advisor_emails: Iterable[str]) -> None:
        with self._lock:
            self._teams[manager_email] = frozenset(advisor_emails)


class SqliteRepository(Repository):
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        persistence.init_db(db_path)

    def list_products(self) -> list[Product]:
        return [Product.from_dict(row) for row in persistence.list_products(self.db_path)]

    def get_product(self, product_id: str) -> Product | None:
        return next((p for p in self.list_products() if p.id == product_id), None)

    def upsert_product(self, product: Product) -> Product:
        persistence.upsert_product(self.db_path, product.to_dict())
        return product

    def list_payments(self, date_from: date | None = None, date_to: date | None = None) -> list[PaymentRecord]:
        rows = persistence.list_payments(
            self.db_path,
            date_from=date_from.isoformat() if date_from else None,
            date_to=date_to.isoformat() if date_to else None,
        )
        return [PaymentRecord.from_dict(row) for row in rows]

    def get_payment(self, payment_id: str) -> PaymentRecord | None:
        row = persistence.get_payment(self.db_path, payment_id)
        return None if row is None else PaymentRecord.from_dict(row)

    def add_payment(self, payment: PaymentRecord) -> PaymentRecord:
        if persistence.get_payment(self.db_path, payment.id) is not None:
            raise InvalidPaymentError(f"Payment {payment.id} already exists")
        persistence.upsert_payment(self.db_path, payment.to_dict())
        return payment

    def update_payment_status(
        self, payment_id: str, status: str, exception_reason: str | None = None
    ) -> PaymentRecord | None:
        current = self.get_payment(payment_id)
        if current is None:
            return None
        # validates the new status before it is written
        updated = current.with_status(status, exception_reason)
        persistence.update_payment_status(self.db_path, payment_id, updated.status, updated.exception_reason)
        return updated

    def team_of(self, manager_email: str) -> frozenset[str] | None:
        team = persistence.team_of(self.db_path, manager_email)
        return None if team is None else frozenset(team)

    def set_team(self, manager_email: str, advisor_emails: Iterable[str]) -> None:
        persistence.set_team(self.db_path, manager_email, list(advisor_emails))
