import io
from typing import Any, Dict, List
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle


ACCENT = colors.HexColor("#4F46E5")
GREEN = colors.HexColor("#059669")
RED = colors.HexColor("#DC2626")
GREY = colors.HexColor("#9CA3AF")


def _styles():
    styles = getSampleStyleSheet()
    return {
        "title": ParagraphStyle("InvoiceTitle", parent=styles["Title"], fontName="Helvetica-Bold", fontSize=22,
                                textColor=ACCENT, alignment=0, spaceAfter=4),
        "h": ParagraphStyle("InvoiceHeading", parent=styles["Heading4"], fontName="Helvetica-Bold", fontSize=10,
                            spaceBefore=6, spaceAfter=2),
        "body": ParagraphStyle("InvoiceBody", parent=styles["Normal"], fontName="Helvetica", fontSize=9, leading=12),
        "small": ParagraphStyle("InvoiceSmall", parent=styles["Normal"], fontName="Helvetica", fontSize=8,
                                textColor=colors.HexColor("#666666"), alignment=1),
    }


def _money(currency: str, amount: float, negative: bool = False) -> str:
    sign = "-" if negative else ""
    return f"{sign}{currency}{amount:,.2f}"


def _header(data: Dict[str, Any], st) -> List:
    company = data["company"]
    driver = data["driver"]
    company_lines = [f"<b>{escape(company['name'])}</b>"]
    if company.get("address"):
        company_lines.append(escape(company["address"]).replace("\n", "<br/>"))
    driver_lines = [f"<b>{escape(driver['name'])}</b>", f"Driver ID: {escape(driver['personal_id'])}"]
    if driver.get("email"):
        driver_lines.append(f"Email: {escape(driver['email'])}")
    if driver.get("phone"):
        driver_lines.append(f"Phone: {escape(driver['phone'])}")
    meta = [
        f"Invoice #: {data['invoice_number']}",
        f"Date: {data['issued_on']}",
        f"Period: {data['period']}",
    ]

    top = Table(
        [[Paragraph("INVOICE", st["title"]), Paragraph("<br/>".join(meta), st["body"])]],
        colWidths=[95 * mm, 80 * mm],
    )
    top.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP"), ("ALIGN", (1, 0), (1, 0), "RIGHT")]))
    parties = Table(
        [
            [Paragraph("FROM", st["h"]), Paragraph("BILL TO", st["h"])],
            [Paragraph("<br/>".join(driver_lines), st["body"]), Paragraph("<br/>".join(company_lines), st["body"])],
        ],
        colWidths=[95 * mm, 80 * mm],
    )
    parties.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP")]))
    return [top, Spacer(1, 6 * mm), parties, Spacer(1, 8 * mm)]


def _day_table(data: Dict[str, Any], st) -> Table:
    currency = data["currency"]
    rows = [["Day", "Date", "Route/Task", "Status", "Amount"]]
    for line in data["lines"]:
        description = line["description"]
        if len(description) > 40:
            description = description[:40] + "..."
        rows.append([
            line["day"],
            line["date"],
            Paragraph(escape(description), st["body"]),
            line["status"],
            _money(currency, line["amount"]),
        ])
    table = Table(rows, colWidths=[25 * mm, 25 * mm, 70 * mm, 25 * mm, 30 * mm], repeatRows=1)
    style = [
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("LINEBELOW", (0, 0), (-1, 0), 1.5, ACCENT),
        ("ALIGN", (-1, 0), (-1, -1), "RIGHT"),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
    ]
    for idx, line in enumerate(data["lines"], start=1):
        if line["type"] != "WORKED":
            style.append(("TEXTCOLOR", (0, idx), (-1, idx), GREY))
        elif line["amount"] > 0:
            style.append(("TEXTCOLOR", (-1, idx), (-1, idx), GREEN))
    table.setStyle(TableStyle(style))
    return table


def _totals_table(data: Dict[str, Any]) -> Table:
    currency = data["currency"]
    rows = [["GROSS EARNINGS:", _money(currency, data["gross"])]]
    style = [
        ("FONTNAME", (0, 0), (-1, -1), "Helvetica"),
        ("FONTNAME", (0, 0), (0, 0), "Helvetica-Bold"),
        ("TEXTCOLOR", (1, 0), (1, 0), GREEN),
        ("ALIGN", (1, 0), (1, -1), "RIGHT"),
        ("LINEABOVE", (0, 0), (-1, 0), 1, colors.black),
    ]
    if data["deductions"]:
        rows.append(["DEDUCTIONS:", ""])
        style.append(("FONTNAME", (0, len(rows) - 1), (0, len(rows) - 1), "Helvetica-Bold"))
        for deduction in data["deductions"]:
            rows.append([f"  {deduction['description']}", _money(currency, deduction["amount"], negative=True)])
            style.append(("TEXTCOLOR", (1, len(rows) - 1), (1, len(rows) - 1), RED))
        rows.append(["Total Deductions:", _money(currency, data["total_deductions"], negative=True)])
        last = len(rows) - 1
        style += [
            ("FONTNAME", (0, last), (0, last), "Helvetica-Bold"),
            ("TEXTCOLOR", (1, last), (1, last), RED),
            ("LINEBELOW", (0, last), (-1, last), 0.5, colors.HexColor("#CCCCCC")),
        ]
    net = data["net"]
    rows.append(["NET PAY:", _money(currency, abs(net), negative=net < 0)])
    last = len(rows) - 1
    style += [
        ("FONTNAME", (0, last), (-1, last), "Helvetica-Bold"),
        ("FONTSIZE", (0, last), (-1, last), 13),
        ("TEXTCOLOR", (1, last), (1, last), GREEN if net >= 0 else RED),
        ("TOPPADDING", (0, last), (-1, last), 6),
    ]
    table = Table(rows, colWidths=[55 * mm, 35 * mm], hAlign="RIGHT")
    table.setStyle(TableStyle(style))
    return table


def build_invoice_pdf(data: Dict[str, Any]) -> bytes:
    """Render a weekly driver invoice and return the PDF bytes."""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=18 * mm,
        rightMargin=18 * mm,
        topMargin=18 * mm,
        bottomMargin=18 * mm,
        title=f"Invoice {data['invoice_number']}",
        author=data["brand"],
    )
    st = _styles()

    story: List = _header(data, st)
    story.append(_day_table(data, st))
    story.append(Spacer(1, 6 * mm))
    story.append(_totals_table(data))
    story.append(Spacer(1, 8 * mm))
    story.append(Paragraph(
        f"Days Worked: {data['days_worked']} &nbsp;&nbsp; Days Off: {data['days_off']} "
        f"&nbsp;&nbsp; Idle Days: {data['days_idle']}",
        st["body"],
    ))
    story.append(Spacer(1, 4 * mm))
    story.append(Paragraph(f"Payment Terms: Net {data['payment_terms_days']} days", st["body"]))
    story.append(Paragraph(f"Due Date: {data['due_date']}", st["body"]))
    story.append(Spacer(1, 12 * mm))
    story.append(Paragraph("Thank you for your service!", st["small"]))
    story.append(Paragraph(f"{data['brand']} - Efficient Fleet Management", st["small"]))

    doc.build(story)
    return buffer.getvalue()
