"""
PDF access through PyMuPDF: loading from a byte buffer, text-layer
extraction into TextElements, and page rendering for OCR.
"""

import logging
from typing import List

import numpy as np
import cv2
import fitz  # PyMuPDF

from .documentModels import TextElement, BoundingBox, FontInfo, SOURCE_TEXT_LAYER


logger = logging.getLogger(__name__)

# PyMuPDF span flag bits
FLAG_ITALIC = 2
FLAG_BOLD = 16


def load_pdf_document(file_bytes: bytes) -> fitz.Document:
    """Open a PDF from memory. Raises ValueError for empty or non-PDF input."""
    if not file_bytes:
        raise ValueError("PDF buffer is empty")
    try:
        return fitz.open(stream=file_bytes, filetype="pdf")
    except (RuntimeError, ValueError) as e:
        raise ValueError(f"Unable to open PDF: {e}")


def page_text(page) -> str:
    """Plain text of a page as laid out by the text layer."""
    return page.get_text("text")


def count_text_words(page) -> int:
    return sum(1 for word in page.get_text("words") if word[4].strip())


def extract_text_elements(page, page_number: int) -> List[TextElement]:
    """
    Text-layer spans of one page as TextElements.

    Args:
        page: PyMuPDF page
        page_number: 1-based page number stamped on the elements
    """
    elements = []
    content = page.get_text("dict")

    for block in content.get("blocks", []):
        # image blocks carry no lines
        for line in block.get("lines", []):
            for span in line.get("spans", []):
                text = span.get("text", "")
                if not text.strip():
                    continue

                x0, y0, x1, y1 = span["bbox"]
                flags = span.get("flags", 0)
                font_name = span.get("font", "")
                elements.append(TextElement(
                    text=text,
                    bounding_box=BoundingBox(x=x0, y=y0, width=x1 - x0, height=y1 - y0),
                    page_number=page_number,
                    confidence=1.0,
                    source=SOURCE_TEXT_LAYER,
                    font_info=FontInfo(
                        font_name=font_name,
                        font_size=float(span.get("size", 0.0)),
                        is_bold=bool(flags & FLAG_BOLD) or 'bold' in font_name.lower(),
                        is_italic=bool(flags & FLAG_ITALIC) or 'italic' in font_name.lower()
                    )
                ))

    return elements


def render_page(page, scale: float = 3.0) -> np.ndarray:
    """Render a page to a BGR image at the given zoom factor."""
    matrix = fitz.Matrix(scale, scale)
    pix = page.get_pixmap(matrix=matrix)
    img_data = pix.tobytes("png")

    nparr = np.frombuffer(img_data, np.uint8)
    image = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError(f"Failed to decode rendered page {page.number + 1}")

    logger.debug(f"Rendered page {page.number + 1} at {scale}x: {image.shape[1]}x{image.shape[0]}")
    return image
