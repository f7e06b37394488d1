"""
Page Classifier

Decides once per document whether OCR is needed. Only page 1 is read: more
than `text_threshold` characters of trimmed text means the document has a
usable text layer and OCR is never run on any of its pages.
"""

import time
import logging
from enum import Enum
from dataclasses import dataclass

from .pdfDocument import page_text, count_text_words
from .pipelineErrors import ProcessingError, PDF_PROCESSING_ERROR


logger = logging.getLogger(__name__)

DEFAULT_TEXT_THRESHOLD = 200
DEFAULT_SCANNED_PAGE_MIN_WORDS = 10


class PdfType(Enum):
    TEXT_BASED = "text_based"
    SCANNED = "scanned"


@dataclass
class PdfAnalysisResult:
    pdf_type: PdfType
    text_length: int
    page_count: int
    analysis_time_ms: float


def classify_text_length(text_length: int, threshold: int = DEFAULT_TEXT_THRESHOLD) -> PdfType:
    return PdfType.TEXT_BASED if text_length > threshold else PdfType.SCANNED


def classify_document(document, threshold: int = DEFAULT_TEXT_THRESHOLD) -> PdfAnalysisResult:
    """
    Classify a loaded document from its first page.

    Args:
        document: PyMuPDF document (anything with page_count and load_page)
        threshold: Character count that page 1 must exceed to be TEXT_BASED

    Raises:
        ProcessingError: PDF_PROCESSING_ERROR when page 1 cannot be read
    """
    start_time = time.time()

    try:
        first_page_text = page_text(document.load_page(0))
    except Exception as e:
        raise ProcessingError(
            f"Failed to read first page: {e}",
            PDF_PROCESSING_ERROR,
            recoverable=False
        ) from e

    text_length = len(first_page_text.strip())
    pdf_type = classify_text_length(text_length, threshold)

    result = PdfAnalysisResult(
        pdf_type=pdf_type,
        text_length=text_length,
        page_count=document.page_count,
        analysis_time_ms=(time.time() - start_time) * 1000
    )
    logger.info(f"Classified document as {pdf_type.name} ({text_length} characters on page 1)")
    return result


def is_scanned_page(page, min_words: int = DEFAULT_SCANNED_PAGE_MIN_WORDS) -> bool:
    """A page of a SCANNED document needs OCR when its text layer has fewer than min_words words."""
    return count_text_words(page) < min_words
