"""Role policy shared by route guards, report scoping and exports."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from commission_reports.models import CommissionDetailRow


class Role(str, enum.Enum):
    ADVISOR = "advisor"
    MANAGER = "manager"
    REFERRAL = "referral"
    ADMIN = "admin"
    CLIENT = "client"
    HR = "hr"


EXPORT_ROLES = frozenset({Role.ADVISOR, Role.MANAGER, Role.ADMIN})
REPORT_ROLES = frozenset({Role.ADVISOR, Role.MANAGER, Role.REFERRAL, Role.ADMIN})


def parse_role(value: str | Role | None) -> Role | None:
    if isinstance(value, Role):
        return value
    try:
        return Role((value or "").strip().lower())
    except ValueError:
        return None


@dataclass(frozen=True)
class Caller:
    email: str
    role: Role
    # None means the team directory has no team on file for this caller
    team: frozenset[str] | None = field(default=None)


def can_export(role: str | Role | None) -> bool:
    return parse_role(role) in EXPORT_ROLES


def can_view_reports(role: str | Role | None) -> bool:
    return parse_role(role) in REPORT_ROLES


def can_view_row(caller: Caller, row: CommissionDetailRow) -> bool:
    if caller.role == Role.ADMIN:
        return True
    if caller.role == Role.MANAGER:
        if caller.team is None:
            return True
        return row.advisor == caller.email or row.advisor in caller.team
    if caller.role == Role.ADVISOR:
        return row.advisor == caller.email
    if caller.role == Role.REFERRAL:
        return row.introducer is not None and row.introducer == caller.email
    return False
