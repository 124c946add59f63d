from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import declarative_base, relationship

from .totals import line_total

Base = declarative_base()


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class ReportStatus:
    DRAFT = "draft"
    SUBMITTED = "submitted"
    LOCKED = "locked"

    ALL = (DRAFT, SUBMITTED, LOCKED)


class Company(Base):
    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class UserCompany(Base):
    __tablename__ = "user_companies"
    __table_args__ = (UniqueConstraint("user_id", "company_id", name="uq_user_companies_user_company"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    role = Column(String(20), nullable=False, default="independent")


class Mission(Base):
    __tablename__ = "missions"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    currency = Column(String(3), nullable=False, default="EUR")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    companies = relationship("MissionCompany", back_populates="mission", cascade="all, delete-orphan")

    @property
    def company_ids(self) -> set[str]:
        return {link.company_id for link in self.companies}


class MissionCompany(Base):
    __tablename__ = "mission_companies"
    __table_args__ = (UniqueConstraint("mission_id", "company_id", name="uq_mission_companies_mission_company"),)

    id = Column(Integer, primary_key=True)
    mission_id = Column(String(36), ForeignKey("missions.id"), nullable=False, index=True)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    role = Column(String(20), nullable=False, default="independent")

    mission = relationship("Mission", back_populates="companies")


class ActivityReport(Base):
    __tablename__ = "activity_reports"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, index=True)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="EUR")
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=ReportStatus.DRAFT, index=True)
    total_days = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_amount = Column(Integer, nullable=False, default=0)  # minor currency units
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    locked_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    entries = relationship(
        "ActivityEntry",
        back_populates="report",
        order_by="ActivityEntry.date",
    )
    mission_links = relationship("ReportMission", back_populates="report")

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def active_entries(self) -> list["ActivityEntry"]:
        return [entry for entry in self.entries if entry.deleted_at is None]

    @property
    def mission_ids(self) -> list[str]:
        return sorted(link.mission_id for link in self.mission_links)


Index(
    "uq_activity_reports_user_period",
    ActivityReport.user_id,
    ActivityReport.month,
    ActivityReport.year,
    unique=True,
    sqlite_where=ActivityReport.deleted_at.is_(None),
    postgresql_where=ActivityReport.deleted_at.is_(None),
)


class ActivityEntry(Base):
    __tablename__ = "activity_entries"

    id = Column(String(36), primary_key=True, default=new_id)
    report_id = Column(String(36), ForeignKey("activity_reports.id"), nullable=False, index=True)
    mission_id = Column(String(36), ForeignKey("missions.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    quantity = Column(Numeric(10, 2), nullable=False)
    unit_price = Column(Integer, nullable=False)  # minor currency units
    description = Column(Text, nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    report = relationship("ActivityReport", back_populates="entries")
    mission = relationship("Mission")

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def line_total(self) -> int:
        return line_total(self.quantity, self.unit_price)


Index(
    "uq_activity_entries_report_mission_date",
    ActivityEntry.report_id,
    ActivityEntry.mission_id,
    ActivityEntry.date,
    unique=True,
    sqlite_where=ActivityEntry.deleted_at.is_(None),
    postgresql_where=ActivityEntry.deleted_at.is_(None),
)


class ReportMission(Base):
    __tablename__ = "report_missions"
    __table_args__ = (UniqueConstraint("report_id", "mission_id", name="uq_report_missions_report_mission"),)

    id = Column(Integer, primary_key=True)
    report_id = Column(String(36), ForeignKey("activity_reports.id"), nullable=False, index=True)
    mission_id = Column(String(36), ForeignKey("missions.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    report = relationship("ActivityReport", back_populates="mission_links")
    mission = relationship("Mission")


GENESIS_REFERENCE = "0" * 64


class LedgerCommit(Base):
    __tablename__ = "ledger_commits"

    id = Column(Integer, primary_key=True)
    report_id = Column(String(36), ForeignKey("activity_reports.id"), nullable=False, unique=True)
    snapshot_reference = Column(String(64), nullable=False, unique=True)
    # The first commit points at GENESIS_REFERENCE, so two chain heads can never share a parent.
    parent_reference = Column(String(64), nullable=False, unique=True)
    payload = Column(Text, nullable=False)
    committed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class LedgerImmutableError(RuntimeError):
    pass


@event.listens_for(LedgerCommit, "before_update")
def _reject_ledger_update(mapper, connection, target) -> None:
    raise LedgerImmutableError(f"Ledger commit {target.id} cannot be modified")


@event.listens_for(LedgerCommit, "before_delete")
def _reject_ledger_delete(mapper, connection, target) -> None:
    raise LedgerImmutableError(f"Ledger commit {target.id} cannot be deleted")
