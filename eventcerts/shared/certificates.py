from __future__ import annotations

import os
from dataclasses import dataclass
from io import BytesIO

from flask import current_app
from PIL import Image, ImageColor, ImageDraw, ImageFont
from PyPDF2 import PdfReader, PdfWriter
from reportlab.lib.colors import HexColor
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from .certificates_layout import ELEMENT_ORDER, sanitize_certificate_config
from .time import parse_iso_date

PNG_SCALE = 2.0
SIDE_MARGIN_RATIO = 0.08
MIN_SHRINK_RATIO = 0.5

_FONT_PATHS = {
    "Helvetica": "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "Helvetica-Bold": "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "Helvetica-Oblique": "/usr/share/fonts/truetype/dejavu/DejaVuSans-Oblique.ttf",
    "Helvetica-BoldOblique": "/usr/share/fonts/truetype/dejavu/DejaVuSans-BoldOblique.ttf",
    "Times-Roman": "/usr/share/fonts/truetype/dejavu/DejaVuSerif.ttf",
    "Times-Bold": "/usr/share/fonts/truetype/dejavu/DejaVuSerif-Bold.ttf",
    "Times-Italic": "/usr/share/fonts/truetype/dejavu/DejaVuSerif-Italic.ttf",
    "Times-BoldItalic": "/usr/share/fonts/truetype/dejavu/DejaVuSerif-BoldItalic.ttf",
    "Courier": "/usr/share/fonts/truetype/dejavu/DejaVuSansMono.ttf",
    "Courier-Bold": "/usr/share/fonts/truetype/dejavu/DejaVuSansMono-Bold.ttf",
    "Courier-Oblique": "/usr/share/fonts/truetype/dejavu/DejaVuSansMono-Oblique.ttf",
    "Courier-BoldOblique": "/usr/share/fonts/truetype/dejavu/DejaVuSansMono-BoldOblique.ttf",
}
_DEFAULT_FONT_PATH = "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"


@dataclass(frozen=True)
class CertificateData:
    participant_name: str
    event_title: str
    completion_date: str
    venue: str = ""


def format_completion_date(value: str | None, fmt: str = "long") -> str:
    """Render an ISO completion date; anything unparsable is shown verbatim."""
    parsed = parse_iso_date(value)
    if not parsed:
        return (value or "").strip()
    if fmt == "short":
        return parsed.strftime("%m/%d/%Y")
    if fmt == "iso":
        return parsed.isoformat()
    return f"{parsed.strftime('%B')} {parsed.day}, {parsed.year}"


def _substitutions(layout: dict, certificate_number: str, data: CertificateData) -> dict:
    return {
        "name": data.participant_name or "",
        "event_title": data.event_title or "",
        "date": format_completion_date(data.completion_date, layout["date_format"]),
        "venue": data.venue or "",
        "certificate_number": certificate_number or "",
    }


def _fill_template(text: str, values: dict) -> str:
    for key, value in values.items():
        text = text.replace("{" + key + "}", value)
    return text


def _layout_lines(layout: dict, certificate_number: str, data: CertificateData):
    """Yield ``(element, text)`` for every element with something to draw."""
    values = _substitutions(layout, certificate_number, data)
    for name in ELEMENT_ORDER:
        element = layout["elements"][name]
        if not element.get("enabled", True):
            continue
        text = _fill_template(element["text"], values).strip()
        if text:
            yield element, text


def _template_page(template_pdf: str | None):
    """First page of a background template stored under ``SITE_ROOT/templates``."""
    if not template_pdf:
        return None
    templates_dir = os.path.realpath(
        os.path.join(current_app.config.get("SITE_ROOT", "/srv"), "templates")
    )
    resolved = os.path.realpath(os.path.join(templates_dir, template_pdf))
    if not resolved.startswith(f"{templates_dir}{os.sep}"):
        raise ValueError(f"Template path outside templates directory: {template_pdf!r}")
    if not os.path.isfile(resolved):
        raise FileNotFoundError(f"Certificate template {template_pdf} is missing")
    return PdfReader(resolved).pages[0]


def generate_pdf_certificate(
    config: dict | None, certificate_number: str, data: CertificateData
) -> bytes:
    layout = sanitize_certificate_config(config)
    base_page = _template_page(layout["template_pdf"])
    if base_page is not None:
        w = float(base_page.mediabox.width)
        h = float(base_page.mediabox.height)
    else:
        w, h = layout["width"], layout["height"]

    def fit_text(text: str, font_name: str, max_pt: float, max_width: float) -> float:
        pt = max_pt
        min_pt = max_pt * MIN_SHRINK_RATIO
        while pt > min_pt and stringWidth(text, font_name, pt) > max_width:
            pt -= 1
        return max(pt, min_pt)

    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=(w, h))
    c.setTitle(f"Certificate {certificate_number}")

    if base_page is None:
        c.setFillColor(HexColor(layout["background_color"]))
        c.rect(0, 0, w, h, stroke=0, fill=1)
        border = layout["border_width"]
        if border > 0:
            c.setStrokeColor(HexColor(layout["border_color"]))
            c.setLineWidth(border)
            inset = border / 2.0 + 12
            c.rect(inset, inset, w - 2 * inset, h - 2 * inset, stroke=1, fill=0)

    max_width = w * (1 - 2 * SIDE_MARGIN_RATIO)
    for element, text in _layout_lines(layout, certificate_number, data):
        pt = fit_text(text, element["font"], element["size"], max_width)
        x = w * element["x"] / 100.0
        # Positions are measured from the top; shift the baseline so the
        # text is vertically centred on the point.
        y = h - (h * element["y"] / 100.0) - pt * 0.35
        c.setFont(element["font"], pt)
        c.setFillColor(HexColor(element["color"]))
        c.drawCentredString(x, y, text)

    c.showPage()
    c.save()
    buffer.seek(0)

    if base_page is None:
        return buffer.getvalue()

    overlay_page = PdfReader(buffer).pages[0]
    base_page.merge_page(overlay_page)
    writer = PdfWriter()
    writer.add_page(base_page)
    out_buf = BytesIO()
    writer.write(out_buf)
    return out_buf.getvalue()


def _load_font(pdf_font: str, size_px: int):
    path = _FONT_PATHS.get(pdf_font) or _DEFAULT_FONT_PATH
    try:
        return ImageFont.truetype(path, max(size_px, 1))
    except OSError:
        try:
            return ImageFont.truetype(_DEFAULT_FONT_PATH, max(size_px, 1))
        except OSError:
            return ImageFont.load_default(size=max(size_px, 1))


def _fit_font(text: str, pdf_font: str, max_pt: float, max_width_px: float):
    min_pt = max_pt * MIN_SHRINK_RATIO
    pt = max_pt
    while True:
        font = _load_font(pdf_font, int(round(pt * PNG_SCALE)))
        bbox = font.getbbox(text)
        if bbox[2] - bbox[0] <= max_width_px or pt - 1 < min_pt:
            return font, bbox
        pt -= 1


def generate_png_certificate(
    config: dict | None, certificate_number: str, data: CertificateData
) -> bytes:
    layout = sanitize_certificate_config(config)
    width_px = int(round(layout["width"] * PNG_SCALE))
    height_px = int(round(layout["height"] * PNG_SCALE))
    image = Image.new(
        "RGB", (width_px, height_px), ImageColor.getrgb(layout["background_color"])
    )
    draw = ImageDraw.Draw(image)

    border_px = int(round(layout["border_width"] * PNG_SCALE))
    if border_px > 0:
        inset = int(round((layout["border_width"] / 2.0 + 12) * PNG_SCALE))
        draw.rectangle(
            [inset, inset, width_px - inset, height_px - inset],
            outline=ImageColor.getrgb(layout["border_color"]),
            width=border_px,
        )

    max_width_px = width_px * (1 - 2 * SIDE_MARGIN_RATIO)
    for element, text in _layout_lines(layout, certificate_number, data):
        font, bbox = _fit_font(text, element["font"], element["size"], max_width_px)
        center_x = width_px * element["x"] / 100.0
        center_y = height_px * element["y"] / 100.0
        text_w = bbox[2] - bbox[0]
        text_h = bbox[3] - bbox[1]
        x_px = int(round(center_x - text_w / 2 - bbox[0]))
        y_px = int(round(center_y - text_h / 2 - bbox[1]))
        draw.text((x_px, y_px), text, font=font, fill=ImageColor.getrgb(element["color"]))

    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()
