"""
PDF receipt rendering with reportlab.

Consumes an ExportView; never touches the record itself.
"""

import io
from datetime import datetime, timezone
from typing import Any, BinaryIO, Optional, Union

from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

from .export import ExportView
from .record import GeoLocation

MARGIN = 56
LINE = 15
IMAGE_BOX = 140


def format_value(value: Any) -> str:
    """Human-readable rendering of an exported value."""
    if value is None:
        return "-"
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    if isinstance(value, GeoLocation):
        text = f"{value.latitude:.6f}, {value.longitude:.6f}"
        if value.accuracy is not None:
            text += f" (±{value.accuracy:.0f} m)"
        return text
    if isinstance(value, bool):
        return "yes" if value else "no"
    return str(value)


class _Page:
    """Tracks the write cursor and breaks pages when it runs out."""

    def __init__(self, c: canvas.Canvas):
        self.c = c
        self.width, self.height = A4
        self.y = self.height - MARGIN

    def need(self, amount: float) -> None:
        if self.y - amount < MARGIN:
            self.c.showPage()
            self.y = self.height - MARGIN

    def text(self, s: str, font: str = "Helvetica", size: int = 10, x: float = MARGIN) -> None:
        max_width = self.width - x - MARGIN
        for line in simpleSplit(s, font, size, max_width) or [""]:
            self.need(LINE)
            self.c.setFont(font, size)
            self.c.drawString(x, self.y, line)
            self.y -= LINE


def render_pdf(view: ExportView, out: Optional[Union[str, BinaryIO]] = None) -> Optional[bytes]:
    """
    Render a receipt.

    Args:
        view: Export view of a committed record
        out: File path or binary stream; when None the PDF bytes are returned

    Returns:
        PDF bytes when out is None, else None
    """
    buffer = io.BytesIO() if out is None else None
    c = canvas.Canvas(buffer if buffer is not None else out, pagesize=A4)
    c.setTitle(f"{view.title} {view.record_id}")
    page = _Page(c)

    page.text(view.title, font="Helvetica-Bold", size=16)
    page.y -= LINE / 2

    for label, value in view.fields:
        page.need(LINE)
        c.setFont("Helvetica-Bold", 10)
        c.drawString(MARGIN, page.y, f"{label}:")
        page.text(format_value(value), x=MARGIN + 130)

    images = [e for e in view.evidence if e.media_type.startswith("image/")]
    if images:
        page.y -= LINE
        page.need(IMAGE_BOX + LINE)
        x = MARGIN
        for ev in images:
            if x + IMAGE_BOX > page.width - MARGIN:
                page.y -= IMAGE_BOX + 2 * LINE
                page.need(IMAGE_BOX + LINE)
                x = MARGIN
            c.setFont("Helvetica", 9)
            c.drawString(x, page.y, ev.kind)
            c.drawImage(
                ImageReader(io.BytesIO(ev.data)),
                x, page.y - IMAGE_BOX - 4, width=IMAGE_BOX, height=IMAGE_BOX,
                preserveAspectRatio=True, anchor="sw", mask="auto",
            )
            x += IMAGE_BOX + 20
        page.y -= IMAGE_BOX + 2 * LINE

    page.y -= LINE
    page.text(f"{view.algorithm_label}: {view.digest_algorithm}", font="Courier", size=8)
    page.text(f"{view.digest_label}: {view.digest}", font="Courier", size=8)
    page.text(f"{format_value(view.committed_at)}", font="Courier", size=8)

    c.showPage()
    c.save()
    return buffer.getvalue() if buffer is not None else None
