from __future__ import annotations

import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from commission_reports import persistence
from commission_reports.errors import InvalidQueryError
from commission_reports.export import resolve_columns
from commission_reports.reporting import ReportQuery


@dataclass(frozen=True)
class ReportTemplate:
    id: str
    name: str
    columns: tuple[str, ...]
    filters: dict[str, Any]
    created_by: str
    created_at: str

    def to_query(self, **overrides: Any) -> ReportQuery:
        query = ReportQuery.from_filters(self.filters, self.columns)
        return replace(query, **overrides) if overrides else query

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "columns": list(self.columns),
            "filters": self.filters,
            "created_by": self.created_by,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReportTemplate:
        return cls(
            id=data["id"],
            name=data["name"],
            columns=tuple(data["columns"]),
            filters=dict(data["filters"]),
            created_by=data["created_by"],
            created_at=data["created_at"],
        )


def new_template(name: str, query: ReportQuery, created_by: str, columns: Sequence[str] | None = None) -> ReportTemplate:
    if not name or not name.strip():
        raise InvalidQueryError("Template name is required")
    columns = tuple(columns if columns is not None else query.columns)
    resolve_columns(columns)
    return ReportTemplate(
        id=uuid.uuid4().hex[:12],
        name=name.strip(),
        columns=columns,
        filters=query.filters(),
        created_by=created_by,
        created_at=persistence.utc_now(),
    )


class TemplateStore(ABC):
    @abstractmethod
    def save(self, template: ReportTemplate) -> ReportTemplate:
        pass

    @abstractmethod
    def list(self, created_by: str | None = None) -> list[ReportTemplate]:
        """Templates, optionally only those created by one caller."""

    @abstractmethod
    def get(self, template_id: str) -> ReportTemplate | None:
        pass

    @abstractmethod
    def delete(self, template_id: str) -> bool:
        pass


class InMemoryTemplateStore(TemplateStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._templates: dict[str, ReportTemplate] = {}

    def save(self, template: ReportTemplate) -> ReportTemplate:
        with self._lock:
            self._templates[template.id] = template
        return template

    def list(self, created_by: str | None = None) -> list[ReportTemplate]:
        with self._lock:
            templates = list(self._templates.values())
        return [t for t in templates if created_by is None or t.created_by == created_by]

    def get(self, template_id: str) -> ReportTemplate | None:
        return self._templates.get(template_id)

    def delete(self, template_id: str) -> bool:
        with self._lock:
            return self._templates.pop(template_id, None) is not None


class SqliteTemplateStore(TemplateStore):
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        persistence.init_db(db_path)

    def save(self, template: ReportTemplate) -> ReportTemplate:
        persistence.save_template(self.db_path, template.to_dict())
        return template

    def list(self, created_by: str | None = None) -> list[ReportTemplate]:
        return [ReportTemplate.from_dict(row) for row in persistence.list_templates(self.db_path, created_by)]

    def get(self, template_id: str) -> ReportTemplate | None:
        row = persistence.get_template(self.db_path, template_id)
        return None if row is None else ReportTemplate.from_dict(row)

    def delete(self, template_id: str) -> bool:
        return persistence.delete_template(self.db_path, template_id)
