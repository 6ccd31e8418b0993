from __future__ import annotations

import re
from copy import deepcopy

PDF_FONT_CHOICES: list[tuple[str, str]] = [
    ("Helvetica", "Helvetica"),
    ("Helvetica-Bold", "Helvetica Bold"),
    ("Helvetica-Oblique", "Helvetica Oblique"),
    ("Helvetica-BoldOblique", "Helvetica Bold Oblique"),
    ("Times-Roman", "Times Roman"),
    ("Times-Bold", "Times Bold"),
    ("Times-Italic", "Times Italic"),
    ("Times-BoldItalic", "Times Bold Italic"),
    ("Courier", "Courier"),
    ("Courier-Bold", "Courier Bold"),
    ("Courier-Oblique", "Courier Oblique"),
    ("Courier-BoldOblique", "Courier Bold Oblique"),
]

PDF_FONT_CODES: set[str] = {code for code, _ in PDF_FONT_CHOICES}

SAFE_FALLBACK_FONT = "Helvetica"

# A4 landscape in points.
DEFAULT_PAGE_WIDTH = 842.0
DEFAULT_PAGE_HEIGHT = 595.0
MIN_PAGE_SIDE = 100.0
MAX_PAGE_SIDE = 5000.0

DATE_FORMATS = ("long", "short", "iso")

_FAMILY_ALIASES = {
    "helvetica": "Helvetica",
    "arial": "Helvetica",
    "sans-serif": "Helvetica",
    "inter": "Helvetica",
    "times": "Times",
    "times new roman": "Times",
    "georgia": "Times",
    "serif": "Times",
    "courier": "Courier",
    "courier new": "Courier",
    "monospace": "Courier",
}

_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")

# Render order matters only for overlapping elements.
ELEMENT_ORDER: tuple[str, ...] = (
    "title",
    "subtitle",
    "given_to",
    "name",
    "participation",
    "event_title",
    "date",
    "venue",
    "certificate_number",
)

_DEFAULT_ELEMENTS: dict[str, dict] = {
    "title": {
        "text": "CERTIFICATE",
        "font": "Times-Bold",
        "size": 44.0,
        "color": "#1f2937",
        "x": 50.0,
        "y": 16.0,
    },
    "subtitle": {
        "text": "OF PARTICIPATION",
        "font": "Helvetica",
        "size": 18.0,
        "color": "#4b5563",
        "x": 50.0,
        "y": 25.0,
    },
    "given_to": {
        "text": "This certificate is proudly presented to",
        "font": "Helvetica-Oblique",
        "size": 14.0,
        "color": "#4b5563",
        "x": 50.0,
        "y": 36.0,
    },
    "name": {
        "text": "{name}",
        "font": "Times-BoldItalic",
        "size": 40.0,
        "color": "#111827",
        "x": 50.0,
        "y": 48.0,
    },
    "participation": {
        "text": "for participating in",
        "font": "Helvetica",
        "size": 14.0,
        "color": "#4b5563",
        "x": 50.0,
        "y": 58.0,
    },
    "event_title": {
        "text": "{event_title}",
        "font": "Helvetica-Bold",
        "size": 22.0,
        "color": "#1f2937",
        "x": 50.0,
        "y": 66.0,
    },
    "date": {
        "text": "{date}",
        "font": "Helvetica",
        "size": 14.0,
        "color": "#4b5563",
        "x": 50.0,
        "y": 76.0,
    },
    "venue": {
        "text": "{venue}",
        "font": "Helvetica",
        "size": 12.0,
        "color": "#6b7280",
        "x": 50.0,
        "y": 82.0,
    },
    "certificate_number": {
        "text": "Certificate No. {certificate_number}",
        "font": "Courier",
        "size": 10.0,
        "color": "#6b7280",
        "x": 84.0,
        "y": 94.0,
    },
}

# Keys of the stored configuration that feed each element.
_ELEMENT_SOURCES: dict[str, str] = {
    "given_to": "is_given_to_config",
    "name": "name_config",
    "participation": "participation_text_config",
    "event_title": "event_title_config",
    "date": "date_config",
    "venue": "venue_config",
    "certificate_number": "cert_number_config",
}


def normalize_color(value, default: str) -> str:
    raw = str(value or "").strip()
    match = _HEX_RE.match(raw)
    if not match:
        return default
    digits = match.group(1)
    if len(digits) == 3:
        digits = "".join(ch * 2 for ch in digits)
    return f"#{digits.lower()}"


def resolve_font_code(source: dict, default: str) -> str:
    """Map ``font``/``font_family``/``font_weight``/``font_style`` to a PDF font."""
    explicit = source.get("font")
    if isinstance(explicit, str) and explicit in PDF_FONT_CODES:
        return explicit
    family_raw = source.get("font_family")
    if not isinstance(family_raw, str) or not family_raw.strip():
        if "font_weight" not in source and "font_style" not in source:
            return default
        family = default.split("-")[0]
    else:
        first = family_raw.split(",")[0].strip().strip("'\"").lower()
        family = _FAMILY_ALIASES.get(first, SAFE_FALLBACK_FONT)
    bold = str(source.get("font_weight", "")).lower() == "bold"
    italic = str(source.get("font_style", "")).lower() in {"italic", "oblique"}
    if family == "Times":
        if bold and italic:
            return "Times-BoldItalic"
        if bold:
            return "Times-Bold"
        if italic:
            return "Times-Italic"
        return "Times-Roman"
    suffix = ""
    if bold and italic:
        suffix = "-BoldOblique"
    elif bold:
        suffix = "-Bold"
    elif italic:
        suffix = "-Oblique"
    return f"{family}{suffix}"


def _float_in_range(value, default: float, low: float, high: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return max(low, min(number, high))


def _sanitize_position(raw, base: dict) -> None:
    if not isinstance(raw, dict):
        return
    base["x"] = _float_in_range(raw.get("x"), base["x"], 0.0, 100.0)
    base["y"] = _float_in_range(raw.get("y"), base["y"], 0.0, 100.0)


def _sanitize_element(name: str, raw) -> dict:
    base = deepcopy(_DEFAULT_ELEMENTS[name])
    base["enabled"] = True
    if not isinstance(raw, dict):
        return base
    if raw.get("enabled") is False:
        base["enabled"] = False
    text = raw.get("text_template", raw.get("text"))
    if isinstance(text, str):
        base["text"] = text
    base["font"] = resolve_font_code(raw, base["font"])
    base["size"] = _float_in_range(raw.get("font_size"), base["size"], 4.0, 200.0)
    base["color"] = normalize_color(raw.get("color"), base["color"])
    _sanitize_position(raw.get("position"), base)
    return base


def sanitize_certificate_config(config: dict | None) -> dict:
    """Return a complete render layout built from a stored configuration.

    Unknown keys are ignored and every missing or invalid value falls back to
    the default layout, so rendering never has to validate its input.
    """
    if not isinstance(config, dict):
        config = {}

    elements = {}
    title = deepcopy(_DEFAULT_ELEMENTS["title"])
    title["enabled"] = True
    if isinstance(config.get("title_text"), str):
        title["text"] = config["title_text"]
    title["size"] = _float_in_range(
        config.get("title_font_size"), title["size"], 4.0, 200.0
    )
    title["color"] = normalize_color(config.get("title_color"), title["color"])
    _sanitize_position(config.get("title_position"), title)
    elements["title"] = title

    subtitle = deepcopy(_DEFAULT_ELEMENTS["subtitle"])
    subtitle["enabled"] = True
    if isinstance(config.get("title_subtitle"), str):
        subtitle["text"] = config["title_subtitle"]
    subtitle["color"] = normalize_color(config.get("title_color"), subtitle["color"])
    elements["subtitle"] = subtitle

    for name, source_key in _ELEMENT_SOURCES.items():
        elements[name] = _sanitize_element(name, config.get(source_key))

    date_cfg = config.get("date_config") if isinstance(config.get("date_config"), dict) else {}
    date_format = str(date_cfg.get("date_format") or "long").lower()
    if date_format not in DATE_FORMATS:
        date_format = "long"

    prefix = config.get("cert_id_prefix")
    prefix = str(prefix).strip() if prefix else ""
    prefix = prefix or None

    template_pdf = config.get("template_pdf")
    template_pdf = template_pdf.strip() if isinstance(template_pdf, str) and template_pdf.strip() else None

    return {
        "width": _float_in_range(
            config.get("width"), DEFAULT_PAGE_WIDTH, MIN_PAGE_SIDE, MAX_PAGE_SIDE
        ),
        "height": _float_in_range(
            config.get("height"), DEFAULT_PAGE_HEIGHT, MIN_PAGE_SIDE, MAX_PAGE_SIDE
        ),
        "background_color": normalize_color(config.get("background_color"), "#ffffff"),
        "border_color": normalize_color(config.get("border_color"), "#1f2937"),
        "border_width": _float_in_range(config.get("border_width"), 8.0, 0.0, 60.0),
        "cert_id_prefix": prefix,
        "template_pdf": template_pdf,
        "date_format": date_format,
        "elements": elements,
    }
