#!/usr/bin/env python3
"""
Document Merger

Combines the parsed documents of several statement files into one synthetic
document: transactions are flattened and tagged with their source file,
sorted by date, checked for gaps between statement periods, flagged for
cross-file duplicates, re-indexed and re-counted. Input documents are never
modified.
"""

import logging
from functools import cmp_to_key
from typing import List, Dict, Optional, Any
from dataclasses import dataclass, field

from .documentModels import (
    ParsedDocument, DocumentSegment, ParsedTransaction, StatementPeriod,
    copy_transaction, summarize_validation
)
from .dateParsing import parse_statement_date, format_iso_date
from .duplicateDetector import (
    DuplicateDetector, DuplicateDetectionOptions, DuplicateDetectionResult,
    flag_duplicates_in_transactions
)


GAP_HANDLING = ('warn', 'flag', 'ignore')


@dataclass
class MergeOptions:
    sort_by_date: bool = True
    add_source_column: bool = True
    validate_continuity: bool = False
    handle_gaps: str = 'warn'  # 'warn', 'flag', 'ignore'
    duplicate_detection: DuplicateDetectionOptions = field(default_factory=DuplicateDetectionOptions)

    @classmethod
    def from_config(cls, merge_config: Dict[str, Any],
                    duplicate_config: Optional[Dict[str, Any]] = None) -> 'MergeOptions':
        known = {k: v for k, v in merge_config.items()
                 if k in cls.__dataclass_fields__ and k != 'duplicate_detection'}
        return cls(
            duplicate_detection=DuplicateDetectionOptions.from_config(duplicate_config or {}),
            **known
        )


@dataclass
class DateGap:
    after_file: str
    before_file: str
    gap_days: int
    start_date: str
    end_date: str
    after_index: Optional[int] = None
    before_index: Optional[int] = None


@dataclass
class MergeResult:
    document: ParsedDocument
    warnings: List[str] = field(default_factory=list)
    source_files: List[str] = field(default_factory=list)
    date_range: Optional[Dict[str, str]] = None  # {'earliest': ..., 'latest': ...}
    gaps: List[DateGap] = field(default_factory=list)
    duplicates: DuplicateDetectionResult = field(default_factory=DuplicateDetectionResult)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'document': self.document.to_dict(),
            'warnings': list(self.warnings),
            'source_files': list(self.source_files),
            'date_range': self.date_range,
            'gaps': [gap.__dict__ for gap in self.gaps],
            'duplicate_groups': [g.to_dict() for g in self.duplicates.duplicate_groups]
        }


def compare_transaction_dates(first: ParsedTransaction, second: ParsedTransaction) -> int:
    """Ascending by date; pairs with an unparseable side compare equal."""
    date_a = parse_statement_date(first.date)
    date_b = parse_statement_date(second.date)
    if date_a is None or date_b is None:
        return 0
    return (date_a > date_b) - (date_a < date_b)


def empty_document() -> ParsedDocument:
    return ParsedDocument(file_name='empty.pdf', total_pages=0, detected_locale='en-US')


class DocumentMerger:
    """
    Multi-document merge with gap detection and duplicate flagging.
    """

    def __init__(self, options: Optional[MergeOptions] = None, debug: bool = False):
        """
        Initialize the Document Merger.

        Args:
            options: Merge behaviour (defaults when None)
            debug: Enable debug logging
        """
        self.options = options or MergeOptions()
        if self.options.handle_gaps not in GAP_HANDLING:
            raise ValueError(f"handle_gaps must be one of {GAP_HANDLING}, got '{self.options.handle_gaps}'")
        self.debug = debug
        self.logger = self._setup_logger()

    def _setup_logger(self) -> logging.Logger:
        """Set up logger with consistent formatting"""
        logger = logging.getLogger(f"{__name__}.DocumentMerger")

        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        logger.setLevel(logging.DEBUG if self.debug else logging.INFO)
        return logger

    def merge_documents(self, documents: List[ParsedDocument],
                        file_names: Optional[List[str]] = None) -> MergeResult:
        """
        Merge parsed documents in file order.

        Args:
            documents: Parsed documents, one per file
            file_names: Source names (defaults to each document's file_name)

        Returns:
            MergeResult; an empty placeholder for no documents and the
            document itself, untouched, for exactly one
        """
        if file_names is None:
            file_names = [doc.file_name for doc in documents]
        if len(file_names) != len(documents):
            raise ValueError("file_names must match documents one to one")

        if not documents:
            return MergeResult(document=empty_document(), warnings=["No documents to merge"])

        if len(documents) == 1:
            document = documents[0]
            return MergeResult(
                document=document,
                source_files=list(file_names),
                date_range=self._date_range(document.transactions)
            )

        warnings: List[str] = []
        merged: List[ParsedTransaction] = []
        for file_index, (document, file_name) in enumerate(zip(documents, file_names)):
            for transaction in document.transactions:
                tagged = copy_transaction(transaction)
                tagged.source_file_name = file_name if self.options.add_source_column else None
                tagged.file_index = file_index
                merged.append(tagged)

        if self.options.sort_by_date:
            merged = sorted(merged, key=cmp_to_key(compare_transaction_dates))

        gaps: List[DateGap] = []
        if self.options.validate_continuity:
            gaps = self.detect_gaps(documents, file_names)
            for gap in gaps:
                message = f'{gap.gap_days} day gap detected between "{gap.after_file}" and "{gap.before_file}"'
                if self.options.handle_gaps in ('warn', 'flag'):
                    warnings.append(message)
                if self.options.handle_gaps == 'flag':
                    self._flag_gap(merged, gap)

        detector = DuplicateDetector(self.options.duplicate_detection, debug=self.debug)
        duplicates = detector.detect_duplicates(merged)
        if duplicates.duplicate_groups:
            flag_duplicates_in_transactions(merged, duplicates)
            warnings.extend(duplicates.warnings)

        for position, transaction in enumerate(merged):
            transaction.row_index = position

        summary = summarize_validation(merged)
        total_pages = sum(doc.total_pages for doc in documents)

        first_segments = documents[0].segments
        last_segments = documents[-1].segments
        segment = DocumentSegment(
            segment_index=0,
            start_page=1,
            end_page=total_pages,
            opening_balance=first_segments[0].opening_balance if first_segments else None,
            closing_balance=last_segments[-1].closing_balance if last_segments else None,
            statement_period=self._merge_periods(documents),
            transactions=merged
        )

        merged_document = ParsedDocument(
            file_name=f"merged_{len(documents)}_files.pdf",
            total_pages=total_pages,
            detected_locale=documents[0].detected_locale,
            segments=[segment],
            total_transactions=summary['total'],
            valid_transactions=summary['valid'],
            error_transactions=summary['errors'],
            warning_transactions=summary['warnings'],
            overall_validation=summary['overall']
        )

        self.logger.info(
            f"Merged {len(documents)} documents into {summary['total']} transactions "
            f"({len(duplicates.duplicate_groups)} duplicate groups, {len(gaps)} gaps)"
        )

        return MergeResult(
            document=merged_document,
            warnings=warnings,
            source_files=list(file_names),
            date_range=self._date_range(merged),
            gaps=gaps,
            duplicates=duplicates
        )

    def detect_gaps(self, documents: List[ParsedDocument], file_names: List[str]) -> List[DateGap]:
        """Gaps of more than one day between consecutive files' date ranges."""
        ranges = []
        for file_index, (document, file_name) in enumerate(zip(documents, file_names)):
            dates = [d for d in (parse_statement_date(t.date) for t in document.transactions) if d]
            if dates:
                ranges.append((min(dates), max(dates), file_name, file_index))

        ranges.sort(key=lambda r: r[0])

        gaps = []
        for current, following in zip(ranges, ranges[1:]):
            gap_days = (following[0] - current[1]).days
            if gap_days > 1:
                gaps.append(DateGap(
                    after_file=current[2],
                    before_file=following[2],
                    gap_days=gap_days,
                    start_date=format_iso_date(current[1]),
                    end_date=format_iso_date(following[0]),
                    after_index=current[3],
                    before_index=following[3]
                ))
                self.logger.debug(f"{gap_days} day gap between {current[2]} and {following[2]}")
        return gaps

    def _flag_gap(self, transactions: List[ParsedTransaction], gap: DateGap) -> None:
        for transaction in transactions:
            if transaction.file_index == gap.before_index:
                transaction.notes.append(f"Follows a {gap.gap_days} day gap after {gap.after_file}")
                return

    def _merge_periods(self, documents: List[ParsedDocument]) -> Optional[StatementPeriod]:
        starts, ends = [], []
        for document in documents:
            if not document.segments or document.segments[0].statement_period is None:
                continue
            period = document.segments[0].statement_period
            start, end = parse_statement_date(period.start), parse_statement_date(period.end)
            if start:
                starts.append(start)
            if end:
                ends.append(end)

        if not starts or not ends:
            return None
        return StatementPeriod(start=format_iso_date(min(starts)), end=format_iso_date(max(ends)))

    def _date_range(self, transactions: List[ParsedTransaction]) -> Optional[Dict[str, str]]:
        dates = [d for d in (parse_statement_date(t.date) for t in transactions) if d]
        if not dates:
            return None
        return {'earliest': format_iso_date(min(dates)), 'latest': format_iso_date(max(dates))}


def merge_documents(documents: List[ParsedDocument], file_names: Optional[List[str]] = None,
                    options: Optional[MergeOptions] = None) -> MergeResult:
    """Convenience wrapper around DocumentMerger.merge_documents."""
    return DocumentMerger(options).merge_documents(documents, file_names)
