#!/usr/bin/env python3
"""
Document Models

Shared data structures passed between the pipeline stages: text elements
produced by the text layer or OCR, and the parsed transactions/documents
returned by the extraction collaborator.
"""

import copy
from typing import List, Dict, Optional, Any, Callable
from dataclasses import dataclass, field


SOURCE_TEXT_LAYER = "text-layer"
SOURCE_OCR = "ocr"

STATUS_VALID = "valid"
STATUS_WARNING = "warning"
STATUS_ERROR = "error"


@dataclass(frozen=True)
class BoundingBox:
    """Element position in page coordinates (origin top-left)"""
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class FontInfo:
    """Font attributes reported by the text layer"""
    font_name: str
    font_size: float
    is_bold: bool = False
    is_italic: bool = False


@dataclass(frozen=True)
class TextElement:
    """A positioned piece of text from the text layer or from OCR"""
    text: str
    bounding_box: BoundingBox
    page_number: int
    confidence: float
    source: str = SOURCE_TEXT_LAYER
    font_info: Optional[FontInfo] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'text': self.text,
            'bounding_box': {
                'x': self.bounding_box.x,
                'y': self.bounding_box.y,
                'width': self.bounding_box.width,
                'height': self.bounding_box.height
            },
            'page_number': self.page_number,
            'confidence': self.confidence,
            'source': self.source
        }
        if self.font_info is not None:
            result['font_info'] = {
                'font_name': self.font_info.font_name,
                'font_size': self.font_info.font_size,
                'is_bold': self.font_info.is_bold,
                'is_italic': self.font_info.is_italic
            }
        return result


@dataclass
class ParsedTransaction:
    """
    One statement row as typed by the extraction collaborator.

    Exactly one of debit/credit is set. source_file_name and file_index are
    only filled in when the transaction passes through a merge.
    """
    date: str
    description: str
    debit: Optional[float] = None
    credit: Optional[float] = None
    balance: Optional[float] = None
    row_index: int = 0
    validation_status: str = STATUS_VALID
    validation_message: Optional[str] = None
    notes: List[str] = field(default_factory=list)
    source_file_name: Optional[str] = None
    file_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': self.date,
            'description': self.description,
            'debit': self.debit,
            'credit': self.credit,
            'balance': self.balance,
            'row_index': self.row_index,
            'validation_status': self.validation_status,
            'validation_message': self.validation_message,
            'notes': list(self.notes),
            'source_file_name': self.source_file_name,
            'file_index': self.file_index
        }


@dataclass
class StatementPeriod:
    start: str
    end: str


@dataclass
class DocumentSegment:
    """A contiguous run of transactions between an opening and a closing balance"""
    segment_index: int
    start_page: int
    end_page: int
    opening_balance: Optional[float] = None
    closing_balance: Optional[float] = None
    statement_period: Optional[StatementPeriod] = None
    transactions: List[ParsedTransaction] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'segment_index': self.segment_index,
            'start_page': self.start_page,
            'end_page': self.end_page,
            'opening_balance': self.opening_balance,
            'closing_balance': self.closing_balance,
            'statement_period': (
                {'start': self.statement_period.start, 'end': self.statement_period.end}
                if self.statement_period else None
            ),
            'transactions': [t.to_dict() for t in self.transactions]
        }


@dataclass
class ParsedDocument:
    """Extraction output for one file, or the synthetic result of a merge"""
    file_name: str
    total_pages: int
    detected_locale: str
    segments: List[DocumentSegment] = field(default_factory=list)
    total_transactions: int = 0
    valid_transactions: int = 0
    error_transactions: int = 0
    warning_transactions: int = 0
    overall_validation: str = STATUS_VALID

    @property
    def transactions(self) -> List[ParsedTransaction]:
        """All transactions across segments, in segment order"""
        return [t for segment in self.segments for t in segment.transactions]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'file_name': self.file_name,
            'total_pages': self.total_pages,
            'detected_locale': self.detected_locale,
            'segments': [s.to_dict() for s in self.segments],
            'total_transactions': self.total_transactions,
            'valid_transactions': self.valid_transactions,
            'error_transactions': self.error_transactions,
            'warning_transactions': self.warning_transactions,
            'overall_validation': self.overall_validation
        }


@dataclass
class ExtractionOptions:
    """Options handed to the transaction extraction collaborator"""
    locale_detection: str = "auto"
    confidence_threshold: float = 0.6
    bank_profile: Optional[Any] = None


@dataclass
class ExtractionOutcome:
    """Return contract of the extraction collaborator (errors are returned, never raised)"""
    success: bool
    document: Optional[ParsedDocument] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


# (file_name, elements, options) -> ExtractionOutcome
TransactionExtractor = Callable[[str, List[TextElement], ExtractionOptions], ExtractionOutcome]


def get_transaction_amount(transaction: ParsedTransaction) -> float:
    """Signed amount: negative for a debit, positive for a credit."""
    if transaction.debit is not None and transaction.debit > 0:
        return -transaction.debit
    if transaction.credit is not None and transaction.credit > 0:
        return transaction.credit
    return 0.0


def copy_transaction(transaction: ParsedTransaction) -> ParsedTransaction:
    """Shallow copy with its own notes list, so flags never leak into the source."""
    duplicate = copy.copy(transaction)
    duplicate.notes = list(transaction.notes)
    return duplicate


def summarize_validation(transactions: List[ParsedTransaction]) -> Dict[str, Any]:
    """Count statuses and derive the overall validation of a transaction set."""
    valid = sum(1 for t in transactions if t.validation_status == STATUS_VALID)
    errors = sum(1 for t in transactions if t.validation_status == STATUS_ERROR)
    warnings = sum(1 for t in transactions if t.validation_status == STATUS_WARNING)

    if errors > 0:
        overall = STATUS_ERROR
    elif warnings > 0:
        overall = STATUS_WARNING
    else:
        overall = STATUS_VALID

    return {
        'total': len(transactions),
        'valid': valid,
        'errors': errors,
        'warnings': warnings,
        'overall': overall
    }
