from __future__ import annotations

import datetime as dt
import functools
import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import access, exports, ledger, lifecycle
from .access import Principal
from .config import settings
from .models import ActivityEntry, ActivityReport, LedgerCommit, Mission, ReportMission, ReportStatus
from .results import (
    ErrorKind,
    Failure,
    Result,
    Success,
    duplicate_entry,
    duplicate_report,
    internal_error,
    invalid_transition,
    not_found,
    validation_error,
)
from .totals import Totals, compute_totals
from .utils import decimal_places, normalize_currency, normalize_text, parse_date, parse_quantity

logger = logging.getLogger(__name__)

T = TypeVar("T")

ENTRY_MUTABLE_FIELDS = {"date", "quantity", "unit_price", "description"}
ENTRY_LINK_FIELDS = {"report_id", "mission_id"}
REPORT_MUTABLE_FIELDS = {"description", "currency"}
MAX_QUANTITY = Decimal("100000000")


@dataclass
class Page(Generic[T]):
    items: List[T]
    total: int
    page: int
    per_page: int

    @property
    def pages(self) -> int:
        if self.total == 0:
            return 0
        return math.ceil(self.total / self.per_page)


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _transactional(action: str, on_integrity_error: Optional[Callable[..., Result[Any]]] = None):
    """Run a write operation as one transaction.

    A returned ``Failure`` rolls the session back; a ``Success`` is committed.
    Unique-constraint violations are rolled back and handed to
    ``on_integrity_error``, which returns the final result (usually a failure,
    or the outcome of a retry). Anything unexpected becomes ``internal_error``.
    """

    def decorator(func_: Callable[..., Result[Any]]) -> Callable[..., Result[Any]]:
        @functools.wraps(func_)
        def wrapper(db: Session, *args: Any, **kwargs: Any) -> Result[Any]:
            try:
                result = func_(db, *args, **kwargs)
                if isinstance(result, Failure):
                    db.rollback()
                    logger.info("%s rejected (%s): %s", action, result.kind.value, result.message)
                    return result
                db.commit()
                return result
            except IntegrityError:
                db.rollback()
                if on_integrity_error is None:
                    logger.exception("%s hit an unexpected constraint violation", action)
                    return internal_error()
                outcome = on_integrity_error(db, *args, **kwargs)
                if isinstance(outcome, Failure):
                    logger.info("%s rejected by constraint (%s): %s", action, outcome.kind.value, outcome.message)
                return outcome
            except Exception:
                db.rollback()
                logger.exception("%s failed", action)
                return internal_error()

        return wrapper

    return decorator


def _reading(action: str):
    def decorator(func_: Callable[..., Result[Any]]) -> Callable[..., Result[Any]]:
        @functools.wraps(func_)
        def wrapper(db: Session, *args: Any, **kwargs: Any) -> Result[Any]:
            try:
                return func_(db, *args, **kwargs)
            except Exception:
                db.rollback()
                logger.exception("%s failed", action)
                return internal_error()

        return wrapper

    return decorator


# -- lookups -----------------------------------------------------------------


def _load_report(db: Session, report_id: str, *, for_update: bool = False) -> Optional[ActivityReport]:
    stmt = select(ActivityReport).where(
        ActivityReport.id == report_id,
        ActivityReport.deleted_at.is_(None),
    )
    if for_update:
        stmt = stmt.with_for_update()
    return db.scalars(stmt).first()


def _load_entry(db: Session, entry_id: str) -> Optional[ActivityEntry]:
    return db.scalars(
        select(ActivityEntry).where(
            ActivityEntry.id == entry_id,
            ActivityEntry.deleted_at.is_(None),
        )
    ).first()


def _active_entries(db: Session, report_id: str) -> List[ActivityEntry]:
    return list(
        db.scalars(
            select(ActivityEntry)
            .where(ActivityEntry.report_id == report_id, ActivityEntry.deleted_at.is_(None))
            .order_by(ActivityEntry.date.asc(), ActivityEntry.created_at.asc())
        ).all()
    )


def _find_duplicate_report(db: Session, user_id: str, month: int, year: int) -> Optional[ActivityReport]:
    return db.scalars(
        select(ActivityReport).where(
            ActivityReport.user_id == user_id,
            ActivityReport.month == month,
            ActivityReport.year == year,
            ActivityReport.deleted_at.is_(None),
        )
    ).first()


def _find_duplicate_entry(
    db: Session,
    report_id: str,
    mission_id: str,
    day: dt.date,
    exclude_id: Optional[str] = None,
) -> Optional[ActivityEntry]:
    stmt = select(ActivityEntry).where(
        ActivityEntry.report_id == report_id,
        ActivityEntry.mission_id == mission_id,
        ActivityEntry.date == day,
        ActivityEntry.deleted_at.is_(None),
    )
    if exclude_id is not None:
        stmt = stmt.where(ActivityEntry.id != exclude_id)
    return db.scalars(stmt).first()


def _entry_guard(db: Session, entry_id: str, principal: Principal, operation: str):
    """Resolve an entry for mutation, returning ``(entry, report, failure)``."""
    entry = _load_entry(db, entry_id)
    report = _load_report(db, entry.report_id, for_update=True) if entry else None
    denied = access.check_write(db, principal, report)
    if denied is not None:
        if denied.kind == ErrorKind.NOT_FOUND:
            return None, None, not_found("Entry")
        return None, None, denied
    blocked = lifecycle.check_operation(report, operation)
    if blocked is not None:
        return None, None, blocked
    return entry, report, None


# -- totals and mission links ------------------------------------------------


def _recompute_totals(db: Session, report: ActivityReport) -> Totals:
    db.flush()
    totals = compute_totals(_active_entries(db, report.id))
    report.total_days = totals.total_days
    report.total_amount = totals.total_amount
    report.updated_at = _now()
    db.flush()
    return totals


def _link_mission(db: Session, report: ActivityReport, mission_id: str) -> None:
    existing = db.scalars(
        select(ReportMission).where(
            ReportMission.report_id == report.id,
            ReportMission.mission_id == mission_id,
        )
    ).first()
    if existing is None:
        db.add(ReportMission(report_id=report.id, mission_id=mission_id))
        logger.info("Linked mission %s to report %s", mission_id, report.id)


def _unlink_mission_if_unused(db: Session, report: ActivityReport, mission_id: str) -> None:
    db.flush()
    remaining = db.scalar(
        select(func.count(ActivityEntry.id)).where(
            ActivityEntry.report_id == report.id,
            ActivityEntry.mission_id == mission_id,
            ActivityEntry.deleted_at.is_(None),
        )
    )
    if remaining:
        return
    link = db.scalars(
        select(ReportMission).where(
            ReportMission.report_id == report.id,
            ReportMission.mission_id == mission_id,
        )
    ).first()
    if link is not None:
        db.delete(link)
        logger.info("Unlinked mission %s from report %s", mission_id, report.id)


# -- field validation --------------------------------------------------------


def _validate_quantity(value: Any) -> Decimal | Failure:
    quantity = parse_quantity(value)
    if quantity is None:
        return validation_error("Quantity must be a number")
    if quantity < 0:
        return validation_error("Quantity must be greater than or equal to 0")
    if decimal_places(quantity) > 2:
        return validation_error("Quantity supports at most two decimal places")
    if quantity >= MAX_QUANTITY:
        return validation_error("Quantity is too large")
    return quantity


def _validate_unit_price(value: Any) -> int | Failure:
    if isinstance(value, bool) or not isinstance(value, int):
        return validation_error("Unit price must be an integer amount in minor units")
    if value < 0:
        return validation_error("Unit price must be greater than or equal to 0")
    return value


def _validate_entry_date(value: Any, report: ActivityReport) -> dt.date | Failure:
    day = parse_date(value)
    if day is None:
        return validation_error("Date must be a valid ISO date")
    if (day.year, day.month) != (report.year, report.month):
        return validation_error(f"Date must fall within {report.year}-{report.month:02d}")
    return day


def _validate_description(value: Any, limit: int) -> Optional[str] | Failure:
    description = normalize_text(value)
    if description is not None and len(description) > limit:
        return validation_error(f"Description cannot exceed {limit} characters")
    return description


def _validate_currency(value: Any) -> str | Failure:
    currency = normalize_currency(value)
    if currency is None or currency not in settings.currencies:
        return validation_error(f"Unknown currency code: {value!r}")
    return currency


def _validate_pagination(page: int, per_page: int, limit: int) -> tuple[int, int] | Failure:
    if page < 1:
        return validation_error("Page must be greater than or equal to 1")
    if per_page < 1:
        return validation_error("Per page must be greater than or equal to 1")
    return page, min(per_page, limit)


# -- entry manager -----------------------------------------------------------


@_transactional("create_entry", on_integrity_error=lambda *args, **kwargs: duplicate_entry())
def create_entry(
    db: Session,
    report_id: str,
    mission_id: str,
    date: Any,
    quantity: Any,
    unit_price: Any,
    description: Optional[str],
    principal: Principal,
) -> Result[ActivityEntry]:
    report = _load_report(db, report_id, for_update=True)
    denied = access.check_write(db, principal, report)
    if denied is not None:
        return denied
    blocked = lifecycle.check_operation(report, lifecycle.CREATE_ENTRY)
    if blocked is not None:
        return blocked

    mission = db.get(Mission, mission_id) if mission_id else None
    if not access.mission_visible(principal, mission):
        return not_found("Mission")

    day = _validate_entry_date(date, report)
    if isinstance(day, Failure):
        return day
    parsed_quantity = _validate_quantity(quantity)
    if isinstance(parsed_quantity, Failure):
        return parsed_quantity
    parsed_price = _validate_unit_price(unit_price)
    if isinstance(parsed_price, Failure):
        return parsed_price
    parsed_description = _validate_description(description, settings.max_entry_description)
    if isinstance(parsed_description, Failure):
        return parsed_description

    if _find_duplicate_entry(db, report.id, mission.id, day) is not None:
        return duplicate_entry()

    entry = ActivityEntry(
        report_id=report.id,
        mission_id=mission.id,
        date=day,
        quantity=parsed_quantity,
        unit_price=parsed_price,
        description=parsed_description,
    )
    db.add(entry)
    _link_mission(db, report, mission.id)
    totals = _recompute_totals(db, report)
    logger.info(
        "Created entry %s on report %s (total_days=%s, total_amount=%s)",
        entry.id,
        report.id,
        totals.total_days,
        totals.total_amount,
    )
    return Success(entry)


@_transactional("update_entry", on_integrity_error=lambda *args, **kwargs: duplicate_entry())
def update_entry(
    db: Session,
    entry_id: str,
    changes: Dict[str, Any],
    principal: Principal,
) -> Result[ActivityEntry]:
    entry, report, failure = _entry_guard(db, entry_id, principal, lifecycle.UPDATE_ENTRY)
    if failure is not None:
        return failure

    linked = ENTRY_LINK_FIELDS & set(changes)
    if linked:
        return validation_error(f"Entry links cannot be changed: {', '.join(sorted(linked))}")
    unknown = set(changes) - ENTRY_MUTABLE_FIELDS
    if unknown:
        return validation_error(f"Unsupported entry fields: {', '.join(sorted(unknown))}")

    if "date" in changes:
        day = _validate_entry_date(changes["date"], report)
        if isinstance(day, Failure):
            return day
    else:
        day = entry.date
    if "quantity" in changes:
        parsed_quantity = _validate_quantity(changes["quantity"])
        if isinstance(parsed_quantity, Failure):
            return parsed_quantity
        entry.quantity = parsed_quantity
    if "unit_price" in changes:
        parsed_price = _validate_unit_price(changes["unit_price"])
        if isinstance(parsed_price, Failure):
            return parsed_price
        entry.unit_price = parsed_price
    if "description" in changes:
        parsed_description = _validate_description(changes["description"], settings.max_entry_description)
        if isinstance(parsed_description, Failure):
            return parsed_description
        entry.description = parsed_description

    if day != entry.date:
        if _find_duplicate_entry(db, report.id, entry.mission_id, day, exclude_id=entry.id) is not None:
            return duplicate_entry()
        entry.date = day

    entry.updated_at = _now()
    _recompute_totals(db, report)
    logger.info("Updated entry %s on report %s", entry.id, report.id)
    return Success(entry)


@_transactional("delete_entry")
def delete_entry(db: Session, entry_id: str, principal: Principal) -> Result[ActivityEntry]:
    entry, report, failure = _entry_guard(db, entry_id, principal, lifecycle.DELETE_ENTRY)
    if failure is not None:
        return failure
    entry.deleted_at = _now()
    _unlink_mission_if_unused(db, report, entry.mission_id)
    _recompute_totals(db, report)
    logger.info("Deleted entry %s from report %s", entry.id, report.id)
    return Success(entry)


@_reading("get_entry")
def get_entry(db: Session, entry_id: str, principal: Principal) -> Result[ActivityEntry]:
    entry = _load_entry(db, entry_id)
    report = _load_report(db, entry.report_id) if entry else None
    if access.check_read(db, principal, report) is not None:
        return not_found("Entry")
    return Success(entry)


@_reading("list_entries")
def list_entries(
    db: Session,
    report_id: str,
    principal: Principal,
    page: int = 1,
    per_page: int = 10,
    date_from: Optional[dt.date] = None,
    date_to: Optional[dt.date] = None,
    mission_id: Optional[str] = None,
) -> Result[Page[ActivityEntry]]:
    report = _load_report(db, report_id)
    denied = access.check_read(db, principal, report)
    if denied is not None:
        return denied
    bounds = _validate_pagination(page, per_page, settings.max_entries_per_page)
    if isinstance(bounds, Failure):
        return bounds
    page, per_page = bounds
    if date_from and date_to and date_from > date_to:
        return validation_error("date_from must be on or before date_to")

    conditions = [ActivityEntry.report_id == report.id, ActivityEntry.deleted_at.is_(None)]
    if date_from:
        conditions.append(ActivityEntry.date >= date_from)
    if date_to:
        conditions.append(ActivityEntry.date <= date_to)
    if mission_id:
        conditions.append(ActivityEntry.mission_id == mission_id)

    total = db.scalar(select(func.count(ActivityEntry.id)).where(*conditions)) or 0
    items = db.scalars(
        select(ActivityEntry)
        .where(*conditions)
        .order_by(ActivityEntry.date.asc(), ActivityEntry.created_at.asc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    ).all()
    return Success(Page(items=list(items), total=total, page=page, per_page=per_page))


# -- report manager ----------------------------------------------------------


@_transactional("create_report", on_integrity_error=lambda *args, **kwargs: duplicate_report())
def create_report(
    db: Session,
    principal: Principal,
    month: Any,
    year: Any,
    currency: Any = "EUR",
    description: Optional[str] = None,
) -> Result[ActivityReport]:
    if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
        return validation_error("Month must be between 1 and 12")
    if isinstance(year, bool) or not isinstance(year, int) or not settings.min_year <= year <= settings.max_year:
        return validation_error(f"Year must be between {settings.min_year} and {settings.max_year}")
    parsed_currency = _validate_currency(currency)
    if isinstance(parsed_currency, Failure):
        return parsed_currency
    parsed_description = _validate_description(description, settings.max_report_description)
    if isinstance(parsed_description, Failure):
        return parsed_description

    if _find_duplicate_report(db, principal.user_id, month, year) is not None:
        return duplicate_report()

    report = ActivityReport(
        user_id=principal.user_id,
        month=month,
        year=year,
        currency=parsed_currency,
        description=parsed_description,
        status=ReportStatus.DRAFT,
        total_days=Decimal("0.00"),
        total_amount=0,
    )
    db.add(report)
    db.flush()
    logger.info("Created report %s for user %s (%04d-%02d)", report.id, report.user_id, year, month)
    return Success(report)


@_reading("get_report")
def get_report(db: Session, report_id: str, principal: Principal) -> Result[ActivityReport]:
    report = _load_report(db, report_id)
    denied = access.check_read(db, principal, report)
    if denied is not None:
        return denied
    return Success(report)


@_transactional("update_report")
def update_report(
    db: Session,
    report_id: str,
    changes: Dict[str, Any],
    principal: Principal,
) -> Result[ActivityReport]:
    report = _load_report(db, report_id, for_update=True)
    denied = access.check_write(db, principal, report)
    if denied is not None:
        return denied
    blocked = lifecycle.check_operation(report, lifecycle.UPDATE_REPORT)
    if blocked is not None:
        return blocked

    unknown = set(changes) - REPORT_MUTABLE_FIELDS
    if unknown:
        return validation_error(f"Fields cannot be changed: {', '.join(sorted(unknown))}")
    if "currency" in changes:
        parsed_currency = _validate_currency(changes["currency"])
        if isinstance(parsed_currency, Failure):
            return parsed_currency
        report.currency = parsed_currency
    if "description" in changes:
        parsed_description = _validate_description(changes["description"], settings.max_report_description)
        if isinstance(parsed_description, Failure):
            return parsed_description
        report.description = parsed_description

    report.updated_at = _now()
    db.flush()
    logger.info("Updated report %s", report.id)
    return Success(report)


@_transactional("delete_report")
def delete_report(db: Session, report_id: str, principal: Principal) -> Result[ActivityReport]:
    report = _load_report(db, report_id, for_update=True)
    denied = access.check_write(db, principal, report)
    if denied is not None:
        return denied
    blocked = lifecycle.check_operation(report, lifecycle.DELETE_REPORT)
    if blocked is not None:
        return blocked

    now = _now()
    entries = _active_entries(db, report.id)
    for entry in entries:
        entry.deleted_at = now
    for link in list(report.mission_links):
        db.delete(link)
    _recompute_totals(db, report)
    report.deleted_at = now
    logger.info("Deleted report %s with %d entries", report.id, len(entries))
    return Success(report)


@_transactional("submit_report")
def submit_report(db: Session, report_id: str, principal: Principal) -> Result[ActivityReport]:
    report = _load_report(db, report_id, for_update=True)
    denied = access.check_write(db, principal, report)
    if denied is not None:
        return denied
    blocked = lifecycle.check_operation(report, lifecycle.SUBMIT)
    if blocked is not None:
        return blocked

    _recompute_totals(db, report)
    report.status = ReportStatus.SUBMITTED
    report.submitted_at = _now()
    db.flush()
    logger.info("Submitted report %s", report.id)
    return Success(report)


LOCK_ATTEMPTS = 3


def _lock_conflict(db: Session, report_id: str, principal: Principal, *, attempt: int = 1) -> Result[ActivityReport]:
    report = _load_report(db, report_id)
    if report is not None and report.status == ReportStatus.LOCKED:
        return invalid_transition(ReportStatus.LOCKED, ReportStatus.LOCKED)
    if report is not None and report.status == ReportStatus.SUBMITTED and attempt < LOCK_ATTEMPTS:
        # Another lock moved the ledger head between our read and our insert.
        logger.warning("Ledger head moved while locking report %s, retrying (attempt %d)", report_id, attempt + 1)
        return lock_report(db, report_id, principal, attempt=attempt + 1)
    return internal_error()


@_transactional("lock_report", on_integrity_error=_lock_conflict)
def lock_report(db: Session, report_id: str, principal: Principal, *, attempt: int = 1) -> Result[ActivityReport]:
    report = _load_report(db, report_id, for_update=True)
    denied = access.check_write(db, principal, report)
    if denied is not None:
        return denied
    blocked = lifecycle.check_operation(report, lifecycle.LOCK)
    if blocked is not None:
        return blocked

    report.status = ReportStatus.LOCKED
    report.locked_at = _now()
    db.flush()
    committed = ledger.commit_lock(db, report)
    if isinstance(committed, Failure):
        return committed
    logger.info("Locked report %s (ledger %s)", report.id, committed.value.snapshot_reference)
    return Success(report)


@_reading("list_reports")
def list_reports(
    db: Session,
    principal: Principal,
    year: Optional[int] = None,
    month: Optional[int] = None,
    status: Optional[str] = None,
    page: int = 1,
    per_page: int = 20,
) -> Result[Page[ActivityReport]]:
    if month is not None and not 1 <= month <= 12:
        return validation_error("Month must be between 1 and 12")
    if status is not None and status not in ReportStatus.ALL:
        return validation_error(f"Status must be one of: {', '.join(ReportStatus.ALL)}")
    bounds = _validate_pagination(page, per_page, settings.max_reports_per_page)
    if isinstance(bounds, Failure):
        return bounds
    page, per_page = bounds

    conditions = [ActivityReport.deleted_at.is_(None), access.readable_reports_clause(principal)]
    if year is not None:
        conditions.append(ActivityReport.year == year)
    if month is not None:
        conditions.append(ActivityReport.month == month)
    if status is not None:
        conditions.append(ActivityReport.status == status)

    total = db.scalar(select(func.count(ActivityReport.id)).where(*conditions)) or 0
    items = db.scalars(
        select(ActivityReport)
        .where(*conditions)
        .order_by(ActivityReport.year.desc(), ActivityReport.month.desc(), ActivityReport.created_at.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    ).all()
    return Success(Page(items=list(items), total=total, page=page, per_page=per_page))


@_reading("export_report")
def export_report(
    db: Session,
    report_id: str,
    principal: Principal,
    export_format: str = "csv",
    include_entries: bool = True,
) -> Result[exports.ExportFile]:
    report = _load_report(db, report_id)
    denied = access.check_read(db, principal, report)
    if denied is not None:
        return denied
    normalized = (export_format or "").strip().lower()
    if normalized not in exports.SUPPORTED_FORMATS:
        return validation_error(f"Format must be one of: {', '.join(exports.SUPPORTED_FORMATS)}")
    entries = _active_entries(db, report.id) if include_entries else []
    return Success(exports.render(report, entries, normalized, include_entries))


@_reading("report_ledger")
def report_ledger(db: Session, report_id: str, principal: Principal) -> Result[List[LedgerCommit]]:
    report = _load_report(db, report_id)
    denied = access.check_read(db, principal, report)
    if denied is not None:
        return denied
    return Success(ledger.commits_for_report(db, report.id))
