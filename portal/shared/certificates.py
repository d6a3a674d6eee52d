from __future__ import annotations

import re
from datetime import date, datetime
from io import BytesIO
from typing import NamedTuple

from PyPDF2 import PdfReader, PdfWriter
from PyPDF2.errors import PdfReadError
from reportlab.pdfgen import canvas

from .certificates_layout import CertificateLayout, parse_hex_color
from .errors import TemplateError
from .time import fmt_long_date

CERTIFICATE_FONT = "Helvetica-Bold"


class OverlayText(NamedTuple):
    field: str
    text: str
    x: float
    y: float
    font_size: int
    color: tuple[float, float, float]


def overlay_texts(
    layout: CertificateLayout,
    page_height: float,
    student_name: str,
    event_title: str,
    event_end_date: date | datetime | None,
) -> list[OverlayText]:
    """Text runs to stamp, in PDF coordinates (origin bottom-left).

    Placements are stored from the top edge, so ``y`` flips to
    ``page_height - y``. Unplaced fields are skipped.
    """
    values = {
        "name": student_name or "",
        "eventName": event_title or "",
        "date": fmt_long_date(event_end_date),
    }
    runs: list[OverlayText] = []
    for key, placement in layout.placed_fields():
        runs.append(
            OverlayText(
                field=key,
                text=values[key],
                x=float(placement.x),
                y=page_height - float(placement.y),
                font_size=placement.font_size,
                color=parse_hex_color(placement.color),
            )
        )
    return runs


def load_template(template_bytes: bytes) -> PdfReader:
    """Parse a template PDF; raises :class:`TemplateError` when unusable."""
    if not template_bytes:
        raise TemplateError("Certificate template is empty")
    try:
        reader = PdfReader(BytesIO(template_bytes))
        pages = reader.pages
        if len(pages) == 0:
            raise TemplateError("Certificate template has no pages")
    except TemplateError:
        raise
    except (PdfReadError, ValueError, KeyError, TypeError) as exc:
        raise TemplateError(f"Certificate template could not be read: {exc}") from exc
    return reader


def render_certificate(
    template_bytes: bytes,
    layout: CertificateLayout,
    student_name: str,
    event_title: str,
    event_end_date: date | datetime | None,
) -> bytes:
    """Stamp the student's name, event title and date onto page 1."""
    reader = load_template(template_bytes)
    base_page = reader.pages[0]
    w = float(base_page.mediabox.width)
    h = float(base_page.mediabox.height)

    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=(w, h))
    for run in overlay_texts(layout, h, student_name, event_title, event_end_date):
        c.setFont(CERTIFICATE_FONT, run.font_size)
        c.setFillColorRGB(*run.color)
        c.drawString(run.x, run.y, run.text)
    c.save()
    buffer.seek(0)
    overlay_page = PdfReader(buffer).pages[0]
    base_page.merge_page(overlay_page)

    writer = PdfWriter()
    writer.add_page(base_page)
    for page in reader.pages[1:]:
        writer.add_page(page)
    out_buf = BytesIO()
    writer.write(out_buf)
    return out_buf.getvalue()


def _filename_part(value: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9 _-]+", "", value or "")
    return re.sub(r"\s+", "_", cleaned.strip()) or "Certificate"


def certificate_filename(student_name: str, event_title: str) -> str:
    return f"Certificate_{_filename_part(student_name)}_{_filename_part(event_title)}.pdf"
