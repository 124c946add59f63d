from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

from openpyxl import Workbook
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import cm
from reportlab.pdfgen import canvas

from .models import ActivityEntry, ActivityReport
from .utils import format_decimal


SUPPORTED_FORMATS: Tuple[str, ...] = ("csv", "xlsx", "pdf")

HEADERS = ["date", "mission", "quantity", "unit_price", "line_total", "description"]

CONTENT_TYPES = {
    "csv": "text/csv",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "pdf": "application/pdf",
}


@dataclass(frozen=True)
class ExportFile:
    filename: str
    content_type: str
    content: bytes


def export_rows(report: ActivityReport, entries: Iterable[ActivityEntry]) -> List[List[str]]:
    """Entry rows followed by the TOTAL row, every cell as plain text."""
    rows: List[List[str]] = []
    for entry in entries:
        if entry.deleted_at is not None:
            continue
        rows.append(
            [
                entry.date.isoformat(),
                entry.mission.name if entry.mission is not None else entry.mission_id,
                format_decimal(entry.quantity),
                str(entry.unit_price),
                str(entry.line_total),
                entry.description or "",
            ]
        )
    rows.append(["TOTAL", "", format_decimal(report.total_days), "", str(report.total_amount), ""])
    return rows


def filename_for(report: ActivityReport, export_format: str) -> str:
    return f"cra_{report.year}_{report.month:02d}.{export_format}"


def _write_csv(rows: Sequence[Sequence[str]]) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(HEADERS)
    writer.writerows(rows)
    return buffer.getvalue().encode("utf-8")


def _write_xlsx(report: ActivityReport, rows: Sequence[Sequence[str]]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = f"CRA {report.year}-{report.month:02d}"
    ws.append(HEADERS)
    for row in rows:
        date_cell, mission, quantity, unit_price, line_total, description = row
        ws.append(
            [
                date_cell,
                mission,
                float(quantity),
                int(unit_price) if unit_price else None,
                int(line_total),
                description,
            ]
        )
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def _write_pdf(report: ActivityReport, rows: Sequence[Sequence[str]]) -> bytes:
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    width, height = A4
    title = f"CRA {report.year}-{report.month:02d} ({report.status}, {report.currency})"
    y = height - 2 * cm
    pdf.setTitle(title)
    pdf.setFont("Helvetica-Bold", 16)
    pdf.drawString(2 * cm, y, title)
    y -= 1.2 * cm
    pdf.setFont("Helvetica", 10)
    for row in [HEADERS, *rows]:
        date_cell, mission, quantity, unit_price, line_total, description = row
        pdf.drawString(2 * cm, y, date_cell)
        pdf.drawString(4.5 * cm, y, mission[:30])
        pdf.drawRightString(11 * cm, y, quantity)
        pdf.drawRightString(13.5 * cm, y, unit_price)
        pdf.drawRightString(16 * cm, y, line_total)
        pdf.drawString(16.5 * cm, y, description[:20])
        y -= 0.7 * cm
        if y < 2 * cm:
            pdf.showPage()
            y = height - 2 * cm
            pdf.setFont("Helvetica", 10)
    pdf.save()
    return buffer.getvalue()


def render(
    report: ActivityReport,
    entries: Iterable[ActivityEntry],
    export_format: str = "csv",
    include_entries: bool = True,
) -> ExportFile:
    """Render one report; without ``include_entries`` only the header and TOTAL row are written."""
    if export_format not in SUPPORTED_FORMATS:
        raise ValueError(f"Unsupported export format: {export_format}")
    rows = export_rows(report, entries if include_entries else [])
    if export_format == "csv":
        content = _write_csv(rows)
    elif export_format == "xlsx":
        content = _write_xlsx(report, rows)
    else:
        content = _write_pdf(report, rows)
    return ExportFile(
        filename=filename_for(report, export_format),
        content_type=CONTENT_TYPES[export_format],
        content=content,
    )
