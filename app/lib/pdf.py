# app/lib/pdf.py
import io
from typing import List

from PIL import Image
from reportlab.lib.pagesizes import letter
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from app import logger

log = logger.get_logger(__name__)

PAGE_MARGIN = 36  # points (0.5in)

def make_pdf(images: List[bytes], title: str = "Coloring Book") -> bytes:
    """
    One image per US Letter page, scaled to fit inside the margins and centered.
    """
    if not images:
        raise ValueError("no images to assemble")
    log.info(f"Combining {len(images)} pages into PDF: {title}")
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    c.setTitle(title)
    w, h = letter
    box_w, box_h = w - 2 * PAGE_MARGIN, h - 2 * PAGE_MARGIN
    for data in images:
        img = Image.open(io.BytesIO(data))
        if img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        scale = min(box_w / img.width, box_h / img.height)
        iw, ih = img.width * scale, img.height * scale
        x = (w - iw) / 2
        y = (h - ih) / 2
        c.drawImage(ImageReader(img), x, y, iw, ih)
        c.showPage()
    c.save()
    out = buf.getvalue()
    log.debug(f"PDF {title}: {len(out)} bytes")
    return out
