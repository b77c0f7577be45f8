from __future__ import annotations

from io import BytesIO
from typing import Dict, List

from reportlab.lib import colors
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .models import CheckoutItem, DeliveryNote, User


def generate_delivery_note_pdf(note: DeliveryNote, user: User, items: List[CheckoutItem]) -> bytes:
    """Printable delivery note: borrower, one row per cart line, signature lines."""
    buf = BytesIO()
    doc = SimpleDocTemplate(buf)
    styles = getSampleStyleSheet()
    elems = []

    elems.append(Paragraph(f"Equipment delivery note {note.number}", styles["Title"]))
    elems.append(Paragraph(f"Issued: {note.issue_date:%d.%m.%Y}", styles["Normal"]))
    borrower = user.full_name + (f" | {user.department}" if user.department else "")
    elems.append(Paragraph(f"Borrower: {borrower}", styles["Normal"]))
    contact = " • ".join(x for x in (user.email, user.phone) if x)
    if contact:
        elems.append(Paragraph(contact, styles["Normal"]))
    elems.append(Spacer(1, 8))

    data = [["#", "Equipment", "Reference", "Qty", "Due back"]]
    for i, item in enumerate(items, start=1):
        data.append([
            str(i),
            item.equipment.name,
            item.equipment.serial_number,
            str(item.quantity),
            f"{note.due_date:%d.%m.%Y}",
        ])
    data.append(["", "", "Total units", str(sum(it.quantity for it in items)), ""])

    t = Table(data, hAlign="LEFT")
    t.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.grey),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
        ("ALIGN", (3, 0), (3, -1), "RIGHT"),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.black),
        ("BOTTOMPADDING", (0, 0), (-1, 0), 6),
        ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
    ]))
    elems.append(t)

    if note.notes:
        elems.append(Spacer(1, 8))
        elems.append(Paragraph(f"Notes: {note.notes}", styles["Normal"]))

    elems.append(Spacer(1, 12))
    elems.append(Paragraph(
        "Keep this note and present it when returning the equipment. "
        "Report loss or damage immediately.", styles["Italic"]))
    elems.append(Spacer(1, 36))
    elems.append(Paragraph("Borrower signature: ____________________", styles["Normal"]))
    elems.append(Spacer(1, 18))
    elems.append(Paragraph("Issued by: ____________________", styles["Normal"]))

    doc.build(elems)
    pdf = buf.getvalue()
    buf.close()
    return pdf


def summarize_items(items: List[CheckoutItem]) -> List[Dict]:
    return [{"equipment": it.equipment.name, "reference": it.equipment.serial_number, "qty": it.quantity}
            for it in items]
