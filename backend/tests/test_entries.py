from __future__ import annotations

import datetime as dt
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from cratrack import services
from cratrack.access import Principal
from cratrack.models import ActivityEntry, ReportMission
from cratrack.results import ErrorKind
from cratrack.totals import compute_totals


def _create(session: Session, report_id: str, mission_id: str, day: dt.date, quantity="1", unit_price=50000, principal=None):
    return services.create_entry(session, report_id, mission_id, day, Decimal(quantity), unit_price, None, principal)


def _assert_totals_match(session: Session, report_id: str, principal: Principal):
    report = services.get_report(session, report_id, principal).value
    expected = compute_totals(report.active_entries)
    assert report.total_days == expected.total_days
    assert report.total_amount == expected.total_amount
    return report


def test_fractional_entries_sum_into_report_totals(session: Session, owner: Principal, draft_report, mission):
    assert _create(session, draft_report.id, mission.id, dt.date(2026, 3, 2), "1.5", principal=owner).ok
    assert _create(session, draft_report.id, mission.id, dt.date(2026, 3, 3), "0.5", principal=owner).ok

    report = _assert_totals_match(session, draft_report.id, owner)
    assert report.total_days == Decimal("2.00")
    assert report.total_amount == 100000


def test_duplicate_entry_is_rejected(session: Session, owner: Principal, draft_report, mission, second_mission):
    day = dt.date(2026, 3, 2)
    assert _create(session, draft_report.id, mission.id, day, principal=owner).ok
    duplicate = _create(session, draft_report.id, mission.id, day, "0.5", principal=owner)
    assert duplicate.kind == ErrorKind.DUPLICATE
    assert _create(session, draft_report.id, second_mission.id, day, "0.5", principal=owner).ok

    report = _assert_totals_match(session, draft_report.id, owner)
    assert report.total_days == Decimal("1.50")


def test_database_constraint_catches_missed_duplicate(session: Session, owner: Principal, draft_report, mission, monkeypatch):
    monkeypatch.setattr(services, "_find_duplicate_entry", lambda *args, **kwargs: None)
    day = dt.date(2026, 3, 9)

    first = _create(session, draft_report.id, mission.id, day, principal=owner)
    second = _create(session, draft_report.id, mission.id, day, principal=owner)

    assert first.ok
    assert second.kind == ErrorKind.DUPLICATE
    count = session.scalar(select(func.count(ActivityEntry.id)).where(ActivityEntry.report_id == draft_report.id))
    assert count == 1
    report = _assert_totals_match(session, draft_report.id, owner)
    assert report.total_amount == 50000


def test_deleted_entry_frees_its_slot(session: Session, owner: Principal, draft_report, mission):
    day = dt.date(2026, 3, 4)
    entry = _create(session, draft_report.id, mission.id, day, principal=owner).value
    assert services.delete_entry(session, entry.id, owner).ok
    assert _create(session, draft_report.id, mission.id, day, "0.5", principal=owner).ok
    report = _assert_totals_match(session, draft_report.id, owner)
    assert report.total_days == Decimal("0.50")


def test_report_amount_matches_exact_sum_of_products(session: Session, owner: Principal, draft_report, mission, second_mission):
    assert _create(session, draft_report.id, mission.id, dt.date(2026, 3, 2), "0.5", 1, owner).ok
    assert _create(session, draft_report.id, second_mission.id, dt.date(2026, 3, 2), "0.5", 1, owner).ok

    report = services.get_report(session, draft_report.id, owner).value
    exact = sum(entry.quantity * entry.unit_price for entry in report.active_entries)
    assert exact == Decimal("1.0")
    assert report.total_amount == 1
    assert [entry.line_total for entry in report.active_entries] == [1, 1]


def test_zero_quantity_and_zero_price_are_accepted(session: Session, owner: Principal, draft_report, mission):
    assert _create(session, draft_report.id, mission.id, dt.date(2026, 3, 5), "0", 50000, owner).ok
    assert _create(session, draft_report.id, mission.id, dt.date(2026, 3, 6), "2", 0, owner).ok
    report = _assert_totals_match(session, draft_report.id, owner)
    assert report.total_days == Decimal("2.00")
    assert report.total_amount == 0


def test_entry_validation(session: Session, owner: Principal, draft_report, mission):
    day = dt.date(2026, 3, 2)
    assert _create(session, draft_report.id, mission.id, day, "-1", principal=owner).kind == ErrorKind.VALIDATION_FAILED
    assert _create(session, draft_report.id, mission.id, day, "0.125", principal=owner).kind == ErrorKind.VALIDATION_FAILED
    assert _create(session, draft_report.id, mission.id, day, "1", -5, owner).kind == ErrorKind.VALIDATION_FAILED
    assert _create(session, draft_report.id, mission.id, dt.date(2026, 4, 1), principal=owner).kind == ErrorKind.VALIDATION_FAILED
    not_a_day = services.create_entry(session, draft_report.id, mission.id, "2026-03-32", "1", 100, None, owner)
    assert not_a_day.kind == ErrorKind.VALIDATION_FAILED
    assert session.scalar(select(func.count(ActivityEntry.id))) == 0


def test_unknown_or_foreign_mission_is_not_found(session: Session, owner: Principal, draft_report, foreign_mission):
    day = dt.date(2026, 3, 2)
    missing = _create(session, draft_report.id, "no-such-mission", day, principal=owner)
    assert missing.kind == ErrorKind.NOT_FOUND
    foreign = _create(session, draft_report.id, foreign_mission.id, day, principal=owner)
    assert foreign.kind == ErrorKind.NOT_FOUND


def test_entry_on_missing_report_is_not_found(session: Session, owner: Principal, mission):
    result = _create(session, "no-such-report", mission.id, dt.date(2026, 3, 2), principal=owner)
    assert result.kind == ErrorKind.NOT_FOUND


def test_update_entry_recomputes_totals(session: Session, owner: Principal, draft_report, mission):
    entry = _create(session, draft_report.id, mission.id, dt.date(2026, 3, 2), "1", principal=owner).value
    result = services.update_entry(
        session,
        entry.id,
        {"quantity": "0.75", "unit_price": 60000, "description": " onsite ", "date": "2026-03-10"},
        owner,
    )
    assert result.ok
    updated = result.value
    assert updated.quantity == Decimal("0.75")
    assert updated.date == dt.date(2026, 3, 10)
    assert updated.description == "onsite"
    assert updated.line_total == 45000

    report = _assert_totals_match(session, draft_report.id, owner)
    assert report.total_amount == 45000


def test_update_entry_rejects_relinking(session: Session, owner: Principal, draft_report, mission, second_mission):
    entry = _create(session, draft_report.id, mission.id, dt.date(2026, 3, 2), principal=owner).value
    assert services.update_entry(session, entry.id, {"mission_id": second_mission.id}, owner).kind == ErrorKind.VALIDATION_FAILED
    assert services.update_entry(session, entry.id, {"report_id": "other"}, owner).kind == ErrorKind.VALIDATION_FAILED
    assert services.update_entry(session, entry.id, {"colour": "red"}, owner).kind == ErrorKind.VALIDATION_FAILED


def test_update_entry_date_collision_is_duplicate(session: Session, owner: Principal, draft_report, mission):
    _create(session, draft_report.id, mission.id, dt.date(2026, 3, 2), principal=owner)
    second = _create(session, draft_report.id, mission.id, dt.date(2026, 3, 3), principal=owner).value
    result = services.update_entry(session, second.id, {"date": "2026-03-02"}, owner)
    assert result.kind == ErrorKind.DUPLICATE
    stored = services.get_entry(session, second.id, owner).value
    assert stored.date == dt.date(2026, 3, 3)


def test_delete_entry_unlinks_unused_mission(session: Session, owner: Principal, draft_report, mission):
    first = _create(session, draft_report.id, mission.id, dt.date(2026, 3, 2), principal=owner).value
    second = _create(session, draft_report.id, mission.id, dt.date(2026, 3, 3), principal=owner).value

    def links() -> int:
        return session.scalar(select(func.count(ReportMission.id)).where(ReportMission.report_id == draft_report.id))

    assert links() == 1
    services.delete_entry(session, first.id, owner)
    assert links() == 1
    services.delete_entry(session, second.id, owner)
    assert links() == 0
    report = _assert_totals_match(session, draft_report.id, owner)
    assert report.total_amount == 0
    assert services.delete_entry(session, second.id, owner).kind == ErrorKind.NOT_FOUND


def test_entry_access(session: Session, owner: Principal, outsider: Principal, client_reader: Principal, draft_report, mission):
    entry = _create(session, draft_report.id, mission.id, dt.date(2026, 3, 2), principal=owner).value
    assert services.get_entry(session, entry.id, outsider).kind == ErrorKind.NOT_FOUND
    assert services.update_entry(session, entry.id, {"quantity": "2"}, outsider).kind == ErrorKind.NOT_FOUND
    assert services.get_entry(session, entry.id, client_reader).ok
    assert services.delete_entry(session, entry.id, client_reader).kind == ErrorKind.FORBIDDEN
    create = _create(session, draft_report.id, mission.id, dt.date(2026, 3, 5), principal=client_reader)
    assert create.kind == ErrorKind.FORBIDDEN


def test_list_entries_pagination_and_filters(session: Session, owner: Principal, draft_report, mission, second_mission):
    for day in range(1, 13):
        _create(session, draft_report.id, mission.id, dt.date(2026, 3, day), principal=owner)
    _create(session, draft_report.id, second_mission.id, dt.date(2026, 3, 20), principal=owner)

    first_page = services.list_entries(session, draft_report.id, owner).value
    assert first_page.total == 13
    assert len(first_page.items) == 10
    assert first_page.pages == 2
    assert [e.date.day for e in first_page.items] == list(range(1, 11))

    clamped = services.list_entries(session, draft_report.id, owner, page=1, per_page=500).value
    assert clamped.per_page == 10

    second_page = services.list_entries(session, draft_report.id, owner, page=2).value
    assert len(second_page.items) == 3

    ranged = services.list_entries(
        session, draft_report.id, owner, date_from=dt.date(2026, 3, 5), date_to=dt.date(2026, 3, 7)
    ).value
    assert [e.date.day for e in ranged.items] == [5, 6, 7]

    by_mission = services.list_entries(session, draft_report.id, owner, mission_id=second_mission.id).value
    assert by_mission.total == 1

    inverted = services.list_entries(
        session, draft_report.id, owner, date_from=dt.date(2026, 3, 7), date_to=dt.date(2026, 3, 5)
    )
    assert inverted.kind == ErrorKind.VALIDATION_FAILED
