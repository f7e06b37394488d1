#!/usr/bin/env python3
"""
Duplicate Detector

Finds transactions that appear in more than one source file, for example
when two overlapping statements are merged. Every cross-file pair is compared
(statements are small enough for O(n^2)); a pair is a duplicate when its dates
are within the tolerance, its amounts match and its descriptions are similar
enough. Matching pairs are consolidated into groups with a union-find so that
a transaction matched to several others ends up in exactly one group.

Flagging is advisory: duplicates are marked with a warning and a note, never
removed.
"""

import re
import logging
from typing import List, Dict, Optional, Any, Tuple
from dataclasses import dataclass, field

from .documentModels import (
    ParsedTransaction, get_transaction_amount, STATUS_ERROR, STATUS_WARNING
)
from .dateParsing import parse_statement_date, days_between
from .textSimilarity import levenshtein_similarity


logger = logging.getLogger(__name__)

DATE_WEIGHT = 0.3
AMOUNT_WEIGHT = 0.4
DESCRIPTION_WEIGHT = 0.3

# Trailing legal-form tokens that do not distinguish merchants
CORPORATE_SUFFIXES = {'inc', 'ltd', 'llc', 'co', 'corp', 'plc', 'pvt', 'gmbh'}

_NON_ALPHANUMERIC = re.compile(r'[^a-z0-9\s]')
_WHITESPACE = re.compile(r'\s+')


@dataclass
class DuplicateDetectionOptions:
    enabled: bool = True
    date_tolerance: int = 1  # days
    description_similarity_threshold: float = 0.7
    require_exact_amount: bool = True
    amount_tolerance: float = 0.01  # fraction of the larger magnitude

    @classmethod
    def from_config(cls, duplicate_config: Dict[str, Any]) -> 'DuplicateDetectionOptions':
        known = {k: v for k, v in duplicate_config.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class DuplicateMatch:
    """Comparison of one transaction pair that passed every check"""
    confidence: float
    reason: str
    days_apart: int
    amount_confidence: float
    description_similarity: float


@dataclass
class DuplicateGroup:
    transaction_indices: List[int]
    confidence: float
    reason: str
    source_files: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'transaction_indices': list(self.transaction_indices),
            'confidence': round(self.confidence, 4),
            'reason': self.reason,
            'source_files': list(self.source_files)
        }


@dataclass
class DuplicateDetectionResult:
    duplicate_groups: List[DuplicateGroup] = field(default_factory=list)
    total_flagged: int = 0
    warnings: List[str] = field(default_factory=list)


class DisjointSet:
    """Union-find over transaction indices with path compression"""

    def __init__(self):
        self._parent: Dict[int, int] = {}

    def find(self, item: int) -> int:
        parent = self._parent.setdefault(item, item)
        if parent != item:
            parent = self.find(parent)
            self._parent[item] = parent
        return parent

    def union(self, first: int, second: int) -> None:
        root_a, root_b = self.find(first), self.find(second)
        if root_a == root_b:
            return
        # Smaller index becomes the root so group order is stable
        if root_a < root_b:
            self._parent[root_b] = root_a
        else:
            self._parent[root_a] = root_b

    def groups(self) -> List[List[int]]:
        members: Dict[int, List[int]] = {}
        for item in self._parent:
            members.setdefault(self.find(item), []).append(item)
        return sorted((sorted(m) for m in members.values() if len(m) > 1), key=lambda m: m[0])


def normalize_description(description: Optional[str]) -> str:
    """Lower-case, strip punctuation, collapse whitespace, drop trailing legal suffixes."""
    if not description:
        return ''
    text = _NON_ALPHANUMERIC.sub('', description.lower())
    words = _WHITESPACE.sub(' ', text).strip().split(' ')
    while len(words) > 1 and words[-1] in CORPORATE_SUFFIXES:
        words.pop()
    return ' '.join(w for w in words if w)


def description_similarity(first: Optional[str], second: Optional[str]) -> float:
    """
    Similarity of two descriptions in [0, 1].

    Jaccard index over words longer than two characters when both sides
    have any; otherwise normalized Levenshtein similarity.
    """
    norm_a = normalize_description(first)
    norm_b = normalize_description(second)

    if not norm_a or not norm_b:
        return 0.0
    if norm_a == norm_b:
        return 1.0

    words_a = {w for w in norm_a.split(' ') if len(w) > 2}
    words_b = {w for w in norm_b.split(' ') if len(w) > 2}

    if words_a and words_b:
        return len(words_a & words_b) / len(words_a | words_b)

    return levenshtein_similarity(norm_a, norm_b)


def format_amount(amount: float) -> str:
    sign = '-' if amount < 0 else '+'
    return f"{sign}${abs(amount):.2f}"


class DuplicateDetector:
    """
    Cross-file duplicate transaction detection.
    """

    def __init__(self, options: Optional[DuplicateDetectionOptions] = None, debug: bool = False):
        """
        Initialize the Duplicate Detector.

        Args:
            options: Tolerances and thresholds (defaults when None)
            debug: Enable debug logging
        """
        self.options = options or DuplicateDetectionOptions()
        self.debug = debug
        self.logger = self._setup_logger()

    def _setup_logger(self) -> logging.Logger:
        """Set up logger with consistent formatting"""
        logger = logging.getLogger(f"{__name__}.DuplicateDetector")

        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        logger.setLevel(logging.DEBUG if self.debug else logging.INFO)
        return logger

    def compare(self, first: ParsedTransaction, second: ParsedTransaction) -> Optional[DuplicateMatch]:
        """
        Compare two transactions.

        Returns:
            DuplicateMatch when the pair is a duplicate, else None. The result
            does not depend on argument order (apart from the amount shown in
            the reason text).
        """
        options = self.options

        date_a = parse_statement_date(first.date)
        date_b = parse_statement_date(second.date)
        if date_a is None or date_b is None:
            return None

        days_apart = days_between(date_a, date_b)
        if days_apart > options.date_tolerance:
            return None

        amount_a = get_transaction_amount(first)
        amount_b = get_transaction_amount(second)
        if options.require_exact_amount:
            if amount_a != amount_b:
                return None
            amount_confidence = 1.0
        else:
            largest = max(abs(amount_a), abs(amount_b))
            difference = abs(amount_a - amount_b) / largest if largest > 0 else 0.0
            if difference > options.amount_tolerance:
                return None
            amount_confidence = 1.0 - difference

        similarity = description_similarity(first.description, second.description)
        if similarity < options.description_similarity_threshold:
            return None

        date_confidence = 1.0 - days_apart / (options.date_tolerance + 1)
        confidence = (DATE_WEIGHT * date_confidence +
                      AMOUNT_WEIGHT * amount_confidence +
                      DESCRIPTION_WEIGHT * similarity)

        if days_apart == 0:
            date_reason = "same date"
        else:
            date_reason = f"{days_apart} day{'s' if days_apart != 1 else ''} apart"
        reason = (f"{date_reason}, amount: {format_amount(amount_a)}, "
                  f"{round(similarity * 100)}% description match")

        return DuplicateMatch(
            confidence=confidence,
            reason=reason,
            days_apart=days_apart,
            amount_confidence=amount_confidence,
            description_similarity=similarity
        )

    @staticmethod
    def _file_set(transaction: ParsedTransaction) -> set:
        return {transaction.file_index} if transaction.file_index is not None else set()

    def detect_duplicates(self, transactions: List[ParsedTransaction]) -> DuplicateDetectionResult:
        """
        Detect duplicate groups in a flat, file-tagged transaction list.

        Pairs whose file_index is equal are never compared.
        """
        if not self.options.enabled or len(transactions) < 2:
            return DuplicateDetectionResult()

        disjoint_set = DisjointSet()
        pair_matches: List[Tuple[int, int, DuplicateMatch]] = []

        for i in range(len(transactions)):
            for j in range(i + 1, len(transactions)):
                first, second = transactions[i], transactions[j]
                if (first.file_index is not None and
                        first.file_index == second.file_index):
                    continue

                match = self.compare(first, second)
                if match is None:
                    continue

                pair_matches.append((i, j, match))
                self.logger.debug(
                    f"Duplicate pair ({i}, {j}) confidence {match.confidence:.2f}: {match.reason}"
                )

        # Strongest pairs first; a union that would put two rows of the same
        # file into one group is skipped.
        pair_matches.sort(key=lambda p: (-p[2].confidence, p[0], p[1]))
        group_files: Dict[int, set] = {}
        accepted: List[Tuple[int, DuplicateMatch]] = []

        for i, j, match in pair_matches:
            root_i, root_j = disjoint_set.find(i), disjoint_set.find(j)
            if root_i != root_j:
                files_i = group_files.get(root_i, self._file_set(transactions[i]))
                files_j = group_files.get(root_j, self._file_set(transactions[j]))
                if files_i & files_j:
                    self.logger.debug(f"Skipping pair ({i}, {j}): would group rows of the same file")
                    continue
                disjoint_set.union(i, j)
                group_files[disjoint_set.find(i)] = files_i | files_j
            accepted.append((i, match))

        groups = []
        for indices in disjoint_set.groups():
            root = indices[0]
            best = max(
                (m for i, m in accepted if disjoint_set.find(i) == root),
                key=lambda m: m.confidence
            )
            source_files = []
            for index in indices:
                name = transactions[index].source_file_name
                if name and name not in source_files:
                    source_files.append(name)

            groups.append(DuplicateGroup(
                transaction_indices=indices,
                confidence=best.confidence,
                reason=best.reason,
                source_files=source_files
            ))

        total_flagged = sum(len(g.transaction_indices) for g in groups)
        warnings = []
        if groups:
            warnings.append(
                f"Found {len(groups)} potential duplicate group(s) affecting {total_flagged} transactions"
            )
            self.logger.info(warnings[0])

        return DuplicateDetectionResult(
            duplicate_groups=groups,
            total_flagged=total_flagged,
            warnings=warnings
        )


def flag_duplicates_in_transactions(transactions: List[ParsedTransaction],
                                    result: DuplicateDetectionResult) -> List[ParsedTransaction]:
    """
    Mark every grouped transaction in place and return the same list.

    Status becomes 'warning' unless it is already 'error'; the confidence
    goes into the validation message and the group number into the notes.
    """
    for group_number, group in enumerate(result.duplicate_groups, start=1):
        percent = round(group.confidence * 100)
        message = f"Potential duplicate ({percent}% confidence)"

        for index in group.transaction_indices:
            transaction = transactions[index]
            if transaction.validation_status != STATUS_ERROR:
                transaction.validation_status = STATUS_WARNING

            if transaction.validation_message:
                transaction.validation_message = f"{transaction.validation_message}; {message}"
            else:
                transaction.validation_message = message

            transaction.notes.append(f"Duplicate group #{group_number} ({percent}% confidence)")

    return transactions
