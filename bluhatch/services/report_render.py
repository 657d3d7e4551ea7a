"""Render a laid-out ReportDocument to PDF (reportlab) or HTML bytes."""

from __future__ import annotations

import base64
import html
import io

from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from bluhatch.services.report_layout import (
    PAGE_HEIGHT,
    PAGE_WIDTH,
    BarElement,
    ImageElement,
    ReportDocument,
    RuleElement,
    TextElement,
)

CONTENT_TYPES = {
    "pdf": "application/pdf",
    "html": "text/html; charset=utf-8",
}


def render_pdf(document: ReportDocument) -> bytes:
    """Draw every page onto a reportlab canvas.

    ``invariant=1`` pins the creation date and document id, so the same
    document always renders to the same bytes.
    """
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4, invariant=1)
    c.setTitle(document.title)
    c.setAuthor(document.issuer)
    c.setSubject(document.report_id)
    c.setCreator(document.brand)

    for page in document.pages:
        for el in page.elements:
            # reportlab's origin is bottom-left
            if isinstance(el, TextElement):
                c.setFillColorRGB(*el.color)
                c.setFont(el.font, el.size)
                c.drawString(el.x, PAGE_HEIGHT - el.y - el.size, el.text)
            elif isinstance(el, RuleElement):
                c.setStrokeColorRGB(*el.color)
                c.setLineWidth(el.height)
                c.line(el.x, PAGE_HEIGHT - el.y, el.x + el.width, PAGE_HEIGHT - el.y)
            elif isinstance(el, BarElement):
                c.setFillColorRGB(*el.color)
                c.rect(el.x, PAGE_HEIGHT - el.y - el.height, el.width, el.height, stroke=0, fill=1)
            elif isinstance(el, ImageElement):
                c.drawImage(
                    ImageReader(io.BytesIO(el.data)),
                    el.x,
                    PAGE_HEIGHT - el.y - el.height,
                    width=el.width,
                    height=el.height,
                )
        c.showPage()

    c.save()
    return buf.getvalue()


def _rgb(color) -> str:
    r, g, b = (round(channel * 255) for channel in color)
    return f"rgb({r},{g},{b})"


def render_html(document: ReportDocument) -> bytes:
    """Absolutely-positioned HTML mirroring the PDF page geometry."""
    parts = [
        "<!DOCTYPE html>",
        '<html lang="en"><head><meta charset="utf-8">',
        f"<title>{html.escape(document.title)} {html.escape(document.report_id)}</title>",
        "<style>",
        "body{margin:0;background:#f3f4f6;font-family:Helvetica,Arial,sans-serif}",
        f".page{{position:relative;width:{PAGE_WIDTH:.2f}pt;height:{PAGE_HEIGHT:.2f}pt;"
        "margin:12pt auto;background:#fff;overflow:hidden}",
        ".page>*{position:absolute;margin:0;white-space:pre}",
        "@media print{body{background:none}.page{margin:0;page-break-after:always}}",
        "</style></head><body>",
    ]
    for page in document.pages:
        parts.append(f'<section class="page" id="page-{page.number}">')
        for el in page.elements:
            box = f"left:{el.x:.2f}pt;top:{el.y:.2f}pt;"
            if isinstance(el, TextElement):
                weight = "bold" if el.font.endswith("Bold") else "normal"
                family = "Courier,monospace" if el.font.startswith("Courier") else "inherit"
                parts.append(
                    f'<p class="{el.role}" style="{box}font-size:{el.size:g}pt;'
                    f"font-weight:{weight};font-family:{family};color:{_rgb(el.color)}\">"
                    f"{html.escape(el.text)}</p>"
                )
            elif isinstance(el, RuleElement):
                parts.append(
                    f'<div style="{box}width:{el.width:.2f}pt;height:{el.height:g}pt;'
                    f'background:{_rgb(el.color)}"></div>'
                )
            elif isinstance(el, BarElement):
                parts.append(
                    f'<div class="bar" title="{html.escape(el.label)}" style="{box}'
                    f"width:{el.width:.2f}pt;height:{el.height:g}pt;"
                    f'background:{_rgb(el.color)}"></div>'
                )
            elif isinstance(el, ImageElement):
                encoded = base64.b64encode(el.data).decode("ascii")
                parts.append(
                    f'<img alt="evidence" style="{box}width:{el.width:.2f}pt;'
                    f'height:{el.height:.2f}pt" src="data:{el.mime_type};base64,{encoded}">'
                )
        parts.append("</section>")
    parts.append("</body></html>")
    return "\n".join(parts).encode("utf-8")
