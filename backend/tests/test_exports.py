from __future__ import annotations

import datetime as dt
import io
from decimal import Decimal

from openpyxl import load_workbook
from sqlalchemy.orm import Session

from cratrack import services
from cratrack.access import Principal
from cratrack.results import ErrorKind


def _fill(session: Session, report, mission, principal: Principal) -> None:
    services.create_entry(session, report.id, mission.id, dt.date(2026, 3, 3), Decimal("0.5"), 50000, None, principal)
    services.create_entry(session, report.id, mission.id, dt.date(2026, 3, 2), Decimal("1.5"), 50000, "Kickoff, planning", principal)


def test_csv_export(session: Session, owner: Principal, draft_report, mission):
    _fill(session, draft_report, mission, owner)
    result = services.export_report(session, draft_report.id, owner, "csv")
    assert result.ok
    export = result.value
    assert export.filename == "cra_2026_03.csv"
    assert export.content_type == "text/csv"
    assert export.content.decode("utf-8").splitlines() == [
        "date,mission,quantity,unit_price,line_total,description",
        '2026-03-02,Backend rewrite,1.50,50000,75000,"Kickoff, planning"',
        "2026-03-03,Backend rewrite,0.50,50000,25000,",
        "TOTAL,,2.00,,100000,",
    ]


def test_csv_export_of_empty_report(session: Session, owner: Principal, draft_report):
    export = services.export_report(session, draft_report.id, owner).value
    assert export.content.decode("utf-8").splitlines() == [
        "date,mission,quantity,unit_price,line_total,description",
        "TOTAL,,0.00,,0,",
    ]


def test_xlsx_export(session: Session, owner: Principal, draft_report, mission):
    _fill(session, draft_report, mission, owner)
    export = services.export_report(session, draft_report.id, owner, "xlsx").value
    assert export.filename.endswith(".xlsx")
    ws = load_workbook(io.BytesIO(export.content)).active
    rows = list(ws.iter_rows(values_only=True))
    assert rows[0] == ("date", "mission", "quantity", "unit_price", "line_total", "description")
    assert rows[-1][0] == "TOTAL"
    assert rows[-1][4] == 100000


def test_pdf_export(session: Session, owner: Principal, draft_report, mission):
    _fill(session, draft_report, mission, owner)
    export = services.export_report(session, draft_report.id, owner, "PDF").value
    assert export.content_type == "application/pdf"
    assert export.content.startswith(b"%PDF")


def test_export_rejects_unknown_format(session: Session, owner: Principal, draft_report):
    assert services.export_report(session, draft_report.id, owner, "docx").kind == ErrorKind.VALIDATION_FAILED


def test_export_requires_read_access(session: Session, outsider: Principal, draft_report):
    assert services.export_report(session, draft_report.id, outsider).kind == ErrorKind.NOT_FOUND


def test_totals_only_csv_export(session: Session, owner: Principal, draft_report, mission):
    _fill(session, draft_report, mission, owner)
    export = services.export_report(session, draft_report.id, owner, "csv", include_entries=False).value
    assert export.content.decode("utf-8").splitlines() == [
        "date,mission,quantity,unit_price,line_total,description",
        "TOTAL,,2.00,,100000,",
    ]
