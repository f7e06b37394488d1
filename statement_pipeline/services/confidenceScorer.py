#!/usr/bin/env python3
"""
Confidence Scorer

Aggregates per-stage success ratios into one weighted 0-100 score and a
letter grade. The result is diagnostic only; it never decides whether a run
succeeded.
"""

import math
import logging
from typing import List, Dict, Optional, Any
from dataclasses import dataclass, field

from .documentModels import ParsedDocument


logger = logging.getLogger(__name__)

STAGE_WEIGHTS = {
    'bank_detection': 0.1,
    'column_detection': 0.2,
    'date_extraction': 0.15,
    'amount_extraction': 0.25,
    'balance_validation': 0.3,
}
OCR_BLEND = 0.1

# date, description, debit, credit, balance
EXPECTED_COLUMNS = 5

GRADE_THRESHOLDS = [(95, 'A'), (85, 'B'), (70, 'C'), (50, 'D')]

BALANCE_REVIEW_RATIO = 0.1
LOW_OCR_CONFIDENCE = 0.8


def calculate_grade(score: float) -> str:
    """Letter grade of an unrounded 0-100 score; each lower bound is inclusive."""
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return 'F'


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass
class StageConfidence:
    stage: str
    score: float  # 0-100
    successes: int
    total: int
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'stage': self.stage,
            'score': round(self.score, 2),
            'successes': self.successes,
            'total': self.total,
            'notes': self.notes
        }


@dataclass(frozen=True)
class PipelineConfidence:
    overall: int
    grade: str
    stages: List[StageConfidence]
    metrics: Dict[str, Optional[int]]
    flags: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'overall': self.overall,
            'grade': self.grade,
            'stages': [s.to_dict() for s in self.stages],
            'metrics': dict(self.metrics),
            'flags': list(self.flags),
            'recommendations': list(self.recommendations)
        }


class ConfidenceBuilder:
    """
    Accumulates stage results; build() finalizes them into a PipelineConfidence.

    Setters return the builder so calls can be chained.
    """

    def __init__(self):
        self.stages: List[StageConfidence] = []
        self.flags: List[str] = []
        self.recommendations: List[str] = []
        self.scores: Dict[str, float] = {name: 0.0 for name in STAGE_WEIGHTS}
        self.ocr_quality_score: Optional[float] = None

    def set_bank_detection(self, confidence: float, match_type: str) -> 'ConfidenceBuilder':
        score = confidence * 100
        self.scores['bank_detection'] = score

        if match_type == 'fallback':
            self.flags.append('Unknown bank - using generic parsing rules')
            self.recommendations.append('Consider adding a bank profile for better accuracy')
        elif match_type == 'fuzzy':
            self.flags.append('Bank detected with medium confidence')

        self.stages.append(StageConfidence(
            stage='Bank Detection',
            score=score,
            successes=0 if match_type == 'fallback' else 1,
            total=1,
            notes=f"Match type: {match_type}"
        ))
        return self

    def set_column_detection(self, columns_found: int, expected_columns: int = EXPECTED_COLUMNS,
                             method: str = 'headers') -> 'ConfidenceBuilder':
        score = min(columns_found / expected_columns * 100, 100.0) if expected_columns > 0 else 0.0
        self.scores['column_detection'] = score

        if columns_found < expected_columns:
            self.flags.append(f"Only {columns_found} of {expected_columns} columns detected")
            self.recommendations.append('Check if document has clear column headers')
        if method == 'fallback':
            self.flags.append('Used fallback column detection')
            self.recommendations.append('Headers may be unclear - review column assignments')

        self.stages.append(StageConfidence(
            stage='Column Detection',
            score=score,
            successes=columns_found,
            total=expected_columns,
            notes=f"Method: {method}"
        ))
        return self

    def set_date_extraction(self, parsed: int, total: int) -> 'ConfidenceBuilder':
        score = parsed / total * 100 if total > 0 else 0.0
        self.scores['date_extraction'] = score

        if score < 90:
            self.flags.append(f"{total - parsed} dates could not be parsed")
            self.recommendations.append('Check date format compatibility')

        self.stages.append(StageConfidence('Date Extraction', score, parsed, total))
        return self

    def set_amount_extraction(self, parsed: int, total: int) -> 'ConfidenceBuilder':
        score = parsed / total * 100 if total > 0 else 0.0
        self.scores['amount_extraction'] = score

        if score < 95:
            self.flags.append(f"{total - parsed} amounts could not be parsed")
            self.recommendations.append('Review number format settings')

        self.stages.append(StageConfidence('Amount Extraction', score, parsed, total))
        return self

    def set_balance_validation(self, valid: int, errors: int, warnings: int) -> 'ConfidenceBuilder':
        total = valid + errors + warnings
        score = valid / total * 100 if total > 0 else 0.0
        self.scores['balance_validation'] = score

        if errors > 0:
            self.flags.append(f"{errors} balance validation errors detected")
            self.recommendations.append('Review transactions with balance mismatches')
            if errors / total > BALANCE_REVIEW_RATIO:
                self.recommendations.append('Manual review recommended: more than 10% of balances do not reconcile')
        if warnings > 0:
            self.flags.append(f"{warnings} balance warnings (possible debit/credit swaps)")

        self.stages.append(StageConfidence(
            stage='Balance Validation',
            score=score,
            successes=valid,
            total=total,
            notes=f"{errors} errors, {warnings} warnings" if errors > 0 else None
        ))
        return self

    def set_ocr_quality(self, average_confidence: float, low_confidence_count: int = 0) -> 'ConfidenceBuilder':
        self.ocr_quality_score = average_confidence * 100

        if average_confidence < LOW_OCR_CONFIDENCE:
            self.flags.append('Low OCR confidence detected')
            self.recommendations.append('Consider using a higher quality scan')
        if low_confidence_count > 0:
            self.flags.append(f"{low_confidence_count} low-confidence text regions")

        self.stages.append(StageConfidence(
            stage='OCR Quality',
            score=self.ocr_quality_score,
            successes=_round_half_up(average_confidence * 100),
            total=100,
            notes=f"{low_confidence_count} low-confidence regions"
        ))
        return self

    def add_flag(self, flag: str) -> 'ConfidenceBuilder':
        self.flags.append(flag)
        return self

    def add_recommendation(self, recommendation: str) -> 'ConfidenceBuilder':
        self.recommendations.append(recommendation)
        return self

    def weighted_score(self) -> float:
        """Unrounded overall score, blended with OCR quality when OCR was used."""
        overall = sum(self.scores[name] * weight for name, weight in STAGE_WEIGHTS.items())
        if self.ocr_quality_score is not None:
            overall = overall * (1 - OCR_BLEND) + self.ocr_quality_score * OCR_BLEND
        return overall

    def build(self) -> PipelineConfidence:
        overall = self.weighted_score()
        grade = calculate_grade(overall)

        metrics = {name: _round_half_up(score) for name, score in self.scores.items()}
        metrics['ocr_quality'] = (
            _round_half_up(self.ocr_quality_score) if self.ocr_quality_score is not None else None
        )

        logger.debug(f"Pipeline confidence {overall:.2f} ({grade})")

        return PipelineConfidence(
            overall=_round_half_up(overall),
            grade=grade,
            stages=list(self.stages),
            metrics=metrics,
            flags=list(dict.fromkeys(self.flags)),
            recommendations=list(dict.fromkeys(self.recommendations))
        )


def estimate_columns_found(document: ParsedDocument) -> int:
    """Count which of the expected columns carry data in at least one row."""
    transactions = document.transactions
    if not transactions:
        return 0

    checks = [
        any(t.date for t in transactions),
        any(t.description for t in transactions),
        any(t.debit is not None for t in transactions),
        any(t.credit is not None for t in transactions),
        any(t.balance is not None for t in transactions),
    ]
    return sum(checks)


def calculate_document_confidence(document: ParsedDocument, match_type: str = 'fallback',
                                  bank_confidence: float = 0.0, column_method: str = 'headers',
                                  ocr_confidence: Optional[float] = None,
                                  low_confidence_regions: int = 0) -> PipelineConfidence:
    """
    Score a parsed document.

    Args:
        document: Extraction output
        match_type: Bank detection match type
        bank_confidence: Bank detection score (0-1)
        column_method: How columns were located ('headers' or 'fallback')
        ocr_confidence: Average OCR word confidence (0-1) when OCR was used
        low_confidence_regions: OCR words dropped below the threshold
    """
    builder = ConfidenceBuilder()
    builder.set_bank_detection(bank_confidence, match_type)
    builder.set_column_detection(estimate_columns_found(document), EXPECTED_COLUMNS, column_method)

    transactions = document.transactions
    total = len(transactions)
    builder.set_date_extraction(sum(1 for t in transactions if t.date), total)
    builder.set_amount_extraction(
        sum(1 for t in transactions if t.debit is not None or t.credit is not None), total
    )
    builder.set_balance_validation(
        document.valid_transactions,
        document.error_transactions,
        document.warning_transactions
    )

    if ocr_confidence is not None:
        builder.set_ocr_quality(ocr_confidence, low_confidence_regions)

    return builder.build()
