"""Append-only ledger of locked reports.

Each commit stores the canonical JSON snapshot of a report at lock time and
a SHA-256 reference chained to the previous commit, so rewriting any stored
payload breaks every later reference.
"""

from __future__ import annotations

import datetime as dt
import hashlib
import json
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import GENESIS_REFERENCE, ActivityEntry, ActivityReport, LedgerCommit, ReportStatus
from .results import Result, Success, invalid_transition
from .totals import to_decimal

logger = logging.getLogger(__name__)


def _iso(value: Optional[dt.datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc).isoformat()


def build_payload(report: ActivityReport, entries: Iterable[ActivityEntry]) -> Dict[str, Any]:
    active = sorted(
        (entry for entry in entries if entry.deleted_at is None),
        key=lambda entry: (entry.date.isoformat(), entry.id),
    )
    return {
        "report_id": report.id,
        "user_id": report.user_id,
        "month": report.month,
        "year": report.year,
        "currency": report.currency,
        "description": report.description,
        "status": report.status,
        "missions": sorted({entry.mission_id for entry in active}),
        "entries": [
            {
                "id": entry.id,
                "date": entry.date.isoformat(),
                "mission_id": entry.mission_id,
                "quantity": str(to_decimal(entry.quantity)),
                "unit_price": entry.unit_price,
                "line_total": entry.line_total,
                "description": entry.description,
            }
            for entry in active
        ],
        "totals": {
            "total_days": str(to_decimal(report.total_days)),
            "total_amount": report.total_amount,
        },
        "locked_at": _iso(report.locked_at),
    }


def canonical_json(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def snapshot_reference(parent_reference: str, payload_json: str) -> str:
    digest = hashlib.sha256()
    digest.update(parent_reference.encode("utf-8"))
    digest.update(b"\n")
    digest.update(payload_json.encode("utf-8"))
    return digest.hexdigest()


def latest_commit(db: Session, *, for_update: bool = False) -> Optional[LedgerCommit]:
    """Current chain head. ``for_update`` holds its row until the caller's transaction ends."""
    stmt = select(LedgerCommit).order_by(LedgerCommit.id.desc()).limit(1)
    if for_update:
        stmt = stmt.with_for_update()
    return db.scalars(stmt).first()


def commits_for_report(db: Session, report_id: str) -> List[LedgerCommit]:
    return list(
        db.scalars(
            select(LedgerCommit).where(LedgerCommit.report_id == report_id).order_by(LedgerCommit.id.asc())
        ).all()
    )


def commit_lock(db: Session, report: ActivityReport) -> Result[LedgerCommit]:
    """Stage the lock commit for ``report``; the caller owns the transaction."""
    if report.status != ReportStatus.LOCKED:
        return invalid_transition(report.status, ReportStatus.LOCKED)
    if commits_for_report(db, report.id):
        logger.warning("Report %s already has a ledger commit", report.id)
        return invalid_transition(ReportStatus.LOCKED, ReportStatus.LOCKED)

    parent = latest_commit(db, for_update=True)
    parent_reference = parent.snapshot_reference if parent else GENESIS_REFERENCE
    payload_json = canonical_json(build_payload(report, report.entries))
    commit = LedgerCommit(
        report_id=report.id,
        parent_reference=parent_reference,
        snapshot_reference=snapshot_reference(parent_reference, payload_json),
        payload=payload_json,
    )
    db.add(commit)
    db.flush()
    logger.info("Staged ledger commit %s for report %s", commit.snapshot_reference, report.id)
    return Success(commit)


def verify_chain(db: Session) -> bool:
    expected_parent = GENESIS_REFERENCE
    for commit in db.scalars(select(LedgerCommit).order_by(LedgerCommit.id.asc())):
        if commit.parent_reference != expected_parent:
            logger.error("Ledger commit %s has a broken parent link", commit.id)
            return False
        if snapshot_reference(commit.parent_reference, commit.payload) != commit.snapshot_reference:
            logger.error("Ledger commit %s does not match its payload", commit.id)
            return False
        expected_parent = commit.snapshot_reference
    return True
