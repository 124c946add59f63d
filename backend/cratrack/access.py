"""Authorization checks for reports and entries.

Read access: the report owner, or any principal belonging to a company
attached to one of the report's missions. Write access: the owner only.
Reports the principal cannot see at all are reported as missing so their
existence does not leak.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from .models import ActivityReport, Mission, MissionCompany, ReportMission, UserCompany
from .results import Failure, forbidden, not_found


READER_ROLES = ("independent", "client")


@dataclass(frozen=True)
class Principal:
    user_id: str
    company_ids: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def of(cls, user_id: str, company_ids: Iterable[str] = ()) -> "Principal":
        return cls(user_id=str(user_id), company_ids=frozenset(str(value) for value in company_ids))


def principal_for_user(db: Session, user_id: str) -> Principal:
    """Build a principal from the stored company memberships of ``user_id``."""
    company_ids = db.scalars(
        select(UserCompany.company_id).where(
            UserCompany.user_id == user_id,
            UserCompany.role.in_(READER_ROLES),
        )
    ).all()
    return Principal.of(user_id, company_ids)


def is_owner(principal: Principal, report: ActivityReport) -> bool:
    return report.user_id == principal.user_id


def _report_company_ids(db: Session, report: ActivityReport) -> set[str]:
    rows = db.scalars(
        select(MissionCompany.company_id)
        .join(ReportMission, ReportMission.mission_id == MissionCompany.mission_id)
        .where(
            ReportMission.report_id == report.id,
            MissionCompany.role.in_(READER_ROLES),
        )
    ).all()
    return set(rows)


def can_read_report(db: Session, principal: Principal, report: ActivityReport) -> bool:
    if is_owner(principal, report):
        return True
    if not principal.company_ids:
        return False
    return bool(_report_company_ids(db, report) & principal.company_ids)


def check_read(db: Session, principal: Principal, report: Optional[ActivityReport]) -> Optional[Failure]:
    if report is None or report.is_deleted or not can_read_report(db, principal, report):
        return not_found("Report")
    return None


def check_write(db: Session, principal: Principal, report: Optional[ActivityReport]) -> Optional[Failure]:
    invisible = check_read(db, principal, report)
    if invisible is not None:
        return invisible
    if not is_owner(principal, report):
        return forbidden()
    return None


def mission_visible(principal: Principal, mission: Optional[Mission]) -> bool:
    if mission is None:
        return False
    return bool(mission.company_ids & principal.company_ids)


def readable_reports_clause(principal: Principal):
    """SQL filter matching every report ``principal`` may read."""
    owned = ActivityReport.user_id == principal.user_id
    if not principal.company_ids:
        return owned
    via_missions = (
        select(ReportMission.report_id)
        .join(MissionCompany, MissionCompany.mission_id == ReportMission.mission_id)
        .where(
            MissionCompany.company_id.in_(sorted(principal.company_ids)),
            MissionCompany.role.in_(READER_ROLES),
        )
    )
    return or_(owned, ActivityReport.id.in_(via_missions))
