from __future__ import annotations

from typing import Dict, Optional, Set

from .models import ActivityReport, ReportStatus
from .results import Failure, invalid_transition, report_locked, report_submitted


TRANSITIONS: Dict[str, Set[str]] = {
    ReportStatus.DRAFT: {ReportStatus.SUBMITTED},
    ReportStatus.SUBMITTED: {ReportStatus.LOCKED},
    ReportStatus.LOCKED: set(),
}

CREATE_ENTRY = "create_entry"
UPDATE_ENTRY = "update_entry"
DELETE_ENTRY = "delete_entry"
UPDATE_REPORT = "update_report"
DELETE_REPORT = "delete_report"
SUBMIT = "submit"
LOCK = "lock"

# Operations that mutate the report or its entries; draft only.
EDIT_OPERATIONS = frozenset({CREATE_ENTRY, UPDATE_ENTRY, DELETE_ENTRY, UPDATE_REPORT, DELETE_REPORT})

TRANSITION_TARGETS: Dict[str, str] = {
    SUBMIT: ReportStatus.SUBMITTED,
    LOCK: ReportStatus.LOCKED,
}


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in TRANSITIONS.get(from_status, set())


def check_transition(report: ActivityReport, to_status: str) -> Optional[Failure]:
    if can_transition(report.status, to_status):
        return None
    return invalid_transition(report.status, to_status)


def check_operation(report: ActivityReport, operation: str) -> Optional[Failure]:
    """Return the failure blocking ``operation`` in the report's current state, if any."""
    if operation in TRANSITION_TARGETS:
        return check_transition(report, TRANSITION_TARGETS[operation])
    if operation not in EDIT_OPERATIONS:
        raise ValueError(f"Unknown report operation: {operation}")
    if report.status == ReportStatus.DRAFT:
        return None
    if report.status == ReportStatus.SUBMITTED:
        return report_submitted()
    return report_locked()


def allowed_operations(status: str) -> list[str]:
    allowed: list[str] = []
    if status == ReportStatus.DRAFT:
        allowed.extend(sorted(EDIT_OPERATIONS))
    for operation, target in TRANSITION_TARGETS.items():
        if can_transition(status, target):
            allowed.append(operation)
    return allowed
