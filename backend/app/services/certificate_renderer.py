"""Certificate rendering: a PNG drawn with Pillow, and a one-page PDF wrapping it.

Both functions are synchronous and CPU-bound; callers run them in a thread.
"""
import io
import logging
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Optional

from PIL import Image, ImageDraw, ImageFont
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CertificateLayout:
    width: int
    height: int
    title: str = "Certificate of Participation"
    text_color: str = "#1f2937"
    accent_color: str = "#1d4ed8"
    background_path: Optional[str] = None


@dataclass(frozen=True)
class CertificateContent:
    participant_name: str
    event_title: str
    completion_date: date
    certificate_number: str


def _font(size: int):
    return ImageFont.load_default(size=size)


def _draw_centered(draw: ImageDraw.ImageDraw, width: int, y: int, text: str, font, fill: str) -> None:
    left, _, right, _ = draw.textbbox((0, 0), text, font=font)
    draw.text(((width - (right - left)) / 2, y), text, font=font, fill=fill)


def _canvas_image(layout: CertificateLayout) -> Image.Image:
    if layout.background_path and Path(layout.background_path).is_file():
        background = Image.open(layout.background_path)
        if background.mode != "RGB":
            background = background.convert("RGB")
        return background.resize((layout.width, layout.height), Image.LANCZOS)
    if layout.background_path:
        logger.warning(f"Certificate background {layout.background_path} not found; using plain layout")

    img = Image.new("RGB", (layout.width, layout.height), "white")
    draw = ImageDraw.Draw(img)
    margin = max(min(layout.width, layout.height) // 30, 8)
    draw.rectangle(
        (margin, margin, layout.width - margin, layout.height - margin),
        outline=layout.accent_color,
        width=max(margin // 3, 2),
    )
    return img


def render_certificate_png(layout: CertificateLayout, content: CertificateContent) -> bytes:
    img = _canvas_image(layout)
    draw = ImageDraw.Draw(img)
    w, h = layout.width, layout.height
    unit = max(h // 20, 10)

    _draw_centered(draw, w, int(h * 0.16), layout.title, _font(unit * 2), layout.accent_color)
    _draw_centered(draw, w, int(h * 0.34), "This certifies that", _font(unit), layout.text_color)
    _draw_centered(draw, w, int(h * 0.43), content.participant_name, _font(int(unit * 1.8)), layout.text_color)
    _draw_centered(draw, w, int(h * 0.58), "has participated in", _font(unit), layout.text_color)
    _draw_centered(draw, w, int(h * 0.66), content.event_title, _font(int(unit * 1.3)), layout.accent_color)
    _draw_centered(
        draw, w, int(h * 0.80),
        f"Completed on {content.completion_date.strftime('%d %B %Y')}",
        _font(int(unit * 0.8)), layout.text_color,
    )
    _draw_centered(
        draw, w, int(h * 0.88),
        f"Certificate No. {content.certificate_number}",
        _font(int(unit * 0.7)), layout.text_color,
    )

    out = io.BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()


def render_certificate_pdf(png_bytes: bytes, layout: CertificateLayout, content: CertificateContent) -> bytes:
    """Single page the size of the certificate, with the PNG drawn edge to edge."""
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=(layout.width, layout.height))
    pdf.setTitle(f"{layout.title} - {content.participant_name}")
    pdf.setSubject(content.event_title)
    pdf.setKeywords([content.certificate_number])
    pdf.drawImage(ImageReader(io.BytesIO(png_bytes)), 0, 0, width=layout.width, height=layout.height)
    pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def render_certificate(layout: CertificateLayout, content: CertificateContent) -> tuple[bytes, bytes]:
    """Returns (png_bytes, pdf_bytes)."""
    png_bytes = render_certificate_png(layout, content)
    return png_bytes, render_certificate_pdf(png_bytes, layout, content)
