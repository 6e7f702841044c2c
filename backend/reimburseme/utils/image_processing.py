"""Image preprocessing utilities.

Preprocessing receipt images improves model performance and keeps
request payloads small. The functions in this module apply EXIF
orientation, convert to grayscale and resize to a bounded edge length.
Pillow is used as the imaging backend and PyMuPDF rasterises the first
page of PDF receipts.
"""

from __future__ import annotations

import base64
from io import BytesIO

import fitz  # PyMuPDF for PDF rasterization
from PIL import Image, ImageOps, UnidentifiedImageError


def render_pdf_first_page(data: bytes) -> bytes:
    """Rasterise the first page of a PDF into PNG bytes.

    Raises ``ValueError`` when the document is empty or unreadable.
    """
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        raise ValueError(f"unreadable PDF: {exc}") from exc
    try:
        if doc.page_count < 1:
            raise ValueError("PDF has no pages")
        pix = doc.load_page(0).get_pixmap()
        return pix.tobytes("png")
    finally:
        doc.close()


def preprocess_image(image_data: bytes, max_size: int = 1600) -> bytes:
    """Preprocess an image for receipt extraction.

    Applies EXIF orientation (e.g. phone photos taken upright), converts
    to grayscale and resizes the longest edge to ``max_size`` pixels while
    maintaining aspect ratio.

    :param image_data: Raw image bytes
    :param max_size: Maximum size of the longest edge in pixels
    :returns: Processed image bytes in JPEG format
    :raises ValueError: when the bytes are not a decodable image
    """
    try:
        with Image.open(BytesIO(image_data)) as img:
            img = ImageOps.exif_transpose(img)
            # Convert to grayscale for OCR consistency
            img = img.convert("L")
            width, height = img.size
            max_dim = max(width, height)
            if max_dim > max_size:
                scale = max_size / float(max_dim)
                img = img.resize((int(width * scale), int(height * scale)))
            buf = BytesIO()
            img.save(buf, format="JPEG", quality=90)
            return buf.getvalue()
    except (UnidentifiedImageError, OSError) as exc:
        raise ValueError(f"not a decodable image: {exc}") from exc


def to_data_url(jpeg_bytes: bytes) -> str:
    return "data:image/jpeg;base64," + base64.b64encode(jpeg_bytes).decode("utf-8")
