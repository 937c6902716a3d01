from __future__ import annotations

import io

from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas as pdf_canvas

from exporter.compose import RasterArtifact


def page_placement(
    img_w: int, img_h: int, page_w: float, page_h: float
) -> tuple[float, float, float, float]:
    """(x, y, w, h) that fits the image on the page keeping aspect ratio, centered."""
    ratio_img = img_w / img_h
    ratio_page = page_w / page_h
    if ratio_img > ratio_page:
        w, h = page_w, page_w / ratio_img
    else:
        w, h = page_h * ratio_img, page_h
    return (page_w - w) / 2.0, (page_h - h) / 2.0, w, h


def render_pdf(artifact: RasterArtifact, *, jpeg_quality: int = 85) -> bytes:
    """
    Single A4 page holding the raster, landscape when the raster is wider than tall.

    The raster is embedded as JPEG to keep the document small.
    """
    pagesize = landscape(A4) if artifact.width > artifact.height else A4
    page_w, page_h = pagesize

    buf = io.BytesIO()
    c = pdf_canvas.Canvas(buf, pagesize=pagesize, pageCompression=1)
    c.setTitle(artifact.title)
    c.setCreator("OpenFireMap")

    x, y, w, h = page_placement(artifact.width, artifact.height, page_w, page_h)
    jpeg = ImageReader(io.BytesIO(artifact.to_jpeg(quality=jpeg_quality)))
    c.drawImage(jpeg, x, y, width=w, height=h)
    c.showPage()
    c.save()
    return buf.getvalue()
