"""
CSV and PDF rendering for ticket, outgate and SAD reports.
"""

from __future__ import annotations

import csv
import io
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .reconciliation import classify_discrepancy, ticket_net_weight
from .utils import REGIMES, to_number

COMPANY_NAME = "NICK TC-SCAN (GAMBIA) LTD"

TICKET_COLUMNS = {
    "Ticket No": "ticket_no",
    "Truck": "truck_no",
    "SAD No": "sad_no",
    "Container": "container_no",
    "Driver": "driver",
    "Gross (KG)": "gross",
    "Tare (KG)": "tare",
    "Net (KG)": "net",
    "Status": "status",
    "Entry Date": "date",
}

OUTGATE_COLUMNS = {
    "Ticket No": "ticket_no",
    "Truck": "vehicle_number",
    "SAD No": "sad_no",
    "Container": "container_id",
    "Driver": "driver",
    "Gross (KG)": "gross",
    "Tare (KG)": "tare",
    "Net (KG)": "net",
    "Entry Date": "date",
    "Exit Date": "created_at",
}


def format_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def rows_to_csv(rows: Sequence[Dict[str, Any]], headers: Optional[Sequence[str]] = None) -> str:
    """Render dict rows as CSV text.

    Fields containing a comma, quote or line break are quoted and embedded
    quotes are doubled; everything else is written bare.
    """
    if not rows and not headers:
        return ""
    columns = list(headers or rows[0].keys())
    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow([format_cell(row.get(column)) for column in columns])
    return output.getvalue()


def project_rows(records: Iterable[Any], columns: Dict[str, str]) -> List[Dict[str, Any]]:
    """Map ORM rows to ordered dicts keyed by the display column names."""
    return [{label: getattr(record, attr, None) for label, attr in columns.items()} for record in records]


def _table(header: Sequence[str], body: Sequence[Sequence[str]], col_widths=None) -> Table:
    table = Table([list(header), *[list(row) for row in body]], repeatRows=1, colWidths=col_widths)
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#6D28D9")),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 8),
                ("GRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#BBBBBB")),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#F4F4F8")]),
                ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
            ]
        )
    )
    return table


def _render(story: list, pagesize=A4) -> bytes:
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=pagesize,
        leftMargin=15 * mm,
        rightMargin=15 * mm,
        topMargin=15 * mm,
        bottomMargin=15 * mm,
    )
    doc.build(story)
    return buffer.getvalue()


def build_table_pdf(
    title: str,
    rows: Sequence[Dict[str, Any]],
    meta_lines: Sequence[str] = (),
    headers: Optional[Sequence[str]] = None,
) -> bytes:
    """Generic landscape report: title, meta lines, then one table of *rows*."""
    styles = getSampleStyleSheet()
    story: list = [
        Paragraph(COMPANY_NAME, styles["Title"]),
        Paragraph(escape(title), styles["Heading2"]),
    ]
    for line in meta_lines:
        story.append(Paragraph(escape(line), styles["Normal"]))
    story.append(Spacer(1, 6 * mm))

    columns = list(headers or (rows[0].keys() if rows else []))
    if rows:
        story.append(_table(columns, [[format_cell(row.get(c)) for c in columns] for row in rows]))
    else:
        story.append(Paragraph("No records found for the selected filters.", styles["Italic"]))

    story.append(Spacer(1, 4 * mm))
    story.append(Paragraph(f"Generated {datetime.utcnow():%Y-%m-%d %H:%M} UTC", styles["Normal"]))
    return _render(story, pagesize=landscape(A4))


def build_sad_report_pdf(sad: Any, tickets: Sequence[Any]) -> bytes:
    """Single SAD report: declaration summary, discrepancy line and its tickets."""
    styles = getSampleStyleSheet()
    declared = to_number(sad.declared_weight)
    recorded = sum(ticket_net_weight(ticket) for ticket in tickets)
    regime = f"{REGIMES[sad.regime]} ({sad.regime})" if sad.regime in REGIMES else (sad.regime or "-")
    docs = ", ".join(doc.get("name") or doc.get("path", "") for doc in (sad.docs or []))

    story: list = [
        Paragraph(COMPANY_NAME, styles["Title"]),
        Paragraph(f"SAD Report: {escape(str(sad.sad_no))}", styles["Heading2"]),
        Paragraph(f"<b>Regime:</b> {escape(regime)}", styles["Normal"]),
        Paragraph(f"<b>Declared weight:</b> {declared:,.0f} kg", styles["Normal"]),
        Paragraph(f"<b>Discharged weight:</b> {recorded:,.0f} kg", styles["Normal"]),
        Paragraph(escape(classify_discrepancy(declared, recorded).message), styles["Normal"]),
        Paragraph(
            f"Status: {escape(sad.status or '-')} | Created: {format_cell(sad.created_at) or '-'}",
            styles["Normal"],
        ),
    ]
    if docs:
        story.append(Paragraph(f"Documents: {escape(docs)}", styles["Normal"]))
    story.append(Spacer(1, 6 * mm))
    story.append(Paragraph("Tickets", styles["Heading3"]))

    if tickets:
        body = [
            [
                ticket.ticket_no or "",
                ticket.truck_no or "",
                f"{ticket_net_weight(ticket):,.0f}",
                format_cell(ticket.date),
            ]
            for ticket in tickets
        ]
        story.append(_table(["Ticket", "Truck", "Net (kg)", "Date"], body))
    else:
        story.append(Paragraph("No tickets recorded.", styles["Italic"]))

    return _render(story)


__all__ = [
    "OUTGATE_COLUMNS",
    "TICKET_COLUMNS",
    "build_sad_report_pdf",
    "build_table_pdf",
    "format_cell",
    "project_rows",
    "rows_to_csv",
]
