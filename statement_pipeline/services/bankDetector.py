#!/usr/bin/env python3
"""
Bank Detector

Scores a document's text against every registered bank profile and picks the
best fit. Scoring is additive and capped at 1.0 so every point of the score
maps to a named, loggable reason:

    +0.40 per distinct logo/brand keyword found
    +0.30 per unique identifier (SWIFT code, routing label ...)
    +0.15 per account-number regex that matches
    +0.10 when the profile's currency symbol appears

Logo keywords of up to four ASCII characters (ING, TD) count only as a
whole word.

A profile is a candidate only when its score reaches its own confidence
threshold. The highest score wins; equal scores go to the lexicographically
smallest profile id.

The row predicates at the bottom apply a profile's regex lists to one row of
text for the extraction stage.
"""

import re
import logging
from typing import List, Dict, Optional, Any, Iterable
from dataclasses import dataclass, field

from .bankProfiles import BankProfile, ProfileRegistry, RulePattern


LOGO_WEIGHT = 0.4
IDENTIFIER_WEIGHT = 0.3
ACCOUNT_PATTERN_WEIGHT = 0.15
CURRENCY_WEIGHT = 0.1
EXACT_MATCH_THRESHOLD = 0.8
SHORT_KEYWORD_LENGTH = 4

MATCH_EXACT = 'exact'
MATCH_FUZZY = 'fuzzy'
MATCH_FALLBACK = 'fallback'


@dataclass
class ProfileScore:
    """Score of one profile with the reasons that produced it"""
    profile_id: str
    score: float
    matched_patterns: List[str] = field(default_factory=list)


@dataclass
class BankDetectionResult:
    """Outcome of bank detection"""
    profile: BankProfile
    confidence: float
    matched_patterns: List[str]
    match_type: str  # 'exact', 'fuzzy', 'fallback'
    scores: List[ProfileScore] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'profile_id': self.profile.id,
            'profile_name': self.profile.name,
            'confidence': round(self.confidence, 4),
            'matched_patterns': list(self.matched_patterns),
            'match_type': self.match_type
        }


class BankDetector:
    """
    Bank format detection over a profile registry.
    """

    def __init__(self, registry: ProfileRegistry, exact_match_threshold: float = EXACT_MATCH_THRESHOLD,
                 debug: bool = False):
        """
        Initialize the Bank Detector.

        Args:
            registry: Profile registry to score against
            exact_match_threshold: Winning score at or above which the match is 'exact'
            debug: Enable debug logging
        """
        self.registry = registry
        self.exact_match_threshold = exact_match_threshold
        self.debug = debug
        self.logger = self._setup_logger()

    def _setup_logger(self) -> logging.Logger:
        """Set up logger with consistent formatting"""
        logger = logging.getLogger(f"{__name__}.BankDetector")

        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        logger.setLevel(logging.DEBUG if self.debug else logging.INFO)
        return logger

    def score_profile(self, profile: BankProfile, haystack: str) -> ProfileScore:
        """
        Score one profile against lower-cased document text.

        Args:
            profile: Profile to score
            haystack: Lower-cased page text plus file name
        """
        ident = profile.identification
        score = 0.0
        matched: List[str] = []

        seen_logos = set()
        for logo in ident.logo_patterns:
            key = logo.lower()
            if key in seen_logos:
                continue
            seen_logos.add(key)
            if contains_keyword(haystack, key):
                score += LOGO_WEIGHT
                matched.append(f"logo:{logo}")

        for identifier in ident.unique_identifiers:
            if identifier.lower() in haystack:
                score += IDENTIFIER_WEIGHT
                matched.append(f"identifier:{identifier}")

        for pattern in ident.account_patterns:
            if pattern.search(haystack):
                score += ACCOUNT_PATTERN_WEIGHT
                matched.append(f"account:{pattern.source}")

        symbol = profile.currency_symbol
        if symbol and symbol in haystack:
            score += CURRENCY_WEIGHT
            matched.append(f"currency:{symbol}")

        for reason in matched:
            self.logger.debug(f"{profile.id}: matched {reason}")

        return ProfileScore(profile_id=profile.id, score=min(round(score, 6), 1.0), matched_patterns=matched)

    def detect_bank(self, text_content: Iterable[str], file_name: Optional[str] = None) -> BankDetectionResult:
        """
        Detect the bank that produced a statement.

        Args:
            text_content: Page texts (or any text chunks) of the document
            file_name: Original file name, searched together with the text

        Returns:
            BankDetectionResult; the generic profile with confidence 0 and
            match type 'fallback' when no profile clears its threshold
        """
        haystack = ' '.join(text_content).lower()
        if file_name:
            haystack = f"{haystack} {file_name.lower()}"

        scores = []
        best: Optional[ProfileScore] = None
        best_profile: Optional[BankProfile] = None

        for profile in self.registry.scored_profiles():
            result = self.score_profile(profile, haystack)
            scores.append(result)

            if result.score < profile.identification.confidence_threshold:
                continue

            if (best is None or result.score > best.score or
                    (result.score == best.score and profile.id < best.profile_id)):
                best = result
                best_profile = profile

        if best is None:
            self.logger.info("No bank profile matched, using generic profile")
            return BankDetectionResult(
                profile=self.registry.get_generic(),
                confidence=0.0,
                matched_patterns=[],
                match_type=MATCH_FALLBACK,
                scores=scores
            )

        match_type = MATCH_EXACT if best.score >= self.exact_match_threshold else MATCH_FUZZY
        self.logger.info(
            f"Detected bank '{best_profile.name}' ({best.score:.2f}, {match_type}): "
            f"{', '.join(best.matched_patterns)}"
        )
        return BankDetectionResult(
            profile=best_profile,
            confidence=best.score,
            matched_patterns=best.matched_patterns,
            match_type=match_type,
            scores=scores
        )

    def get_best_profile(self, text_content: Iterable[str], file_name: Optional[str] = None,
                         preferred_profile_id: Optional[str] = None) -> BankProfile:
        """Preferred profile when registered, otherwise the detected one."""
        if preferred_profile_id:
            preferred = self.registry.get_by_id(preferred_profile_id)
            if preferred is not None:
                return preferred
            self.logger.warning(f"Preferred profile '{preferred_profile_id}' not registered, detecting")
        return self.detect_bank(text_content, file_name).profile


def contains_keyword(haystack: str, keyword: str) -> bool:
    """Substring test, except short ASCII keywords must not sit inside a longer word."""
    if len(keyword) > SHORT_KEYWORD_LENGTH or not keyword.isascii():
        return keyword in haystack
    return re.search(rf"(?<![a-z0-9]){re.escape(keyword)}(?![a-z0-9])", haystack) is not None


def _normalize_row(row_text: str) -> str:
    return row_text.lower().strip()


def _any_match(patterns: Iterable[RulePattern], row_text: str) -> bool:
    normalized = _normalize_row(row_text)
    return any(p.search(normalized) for p in patterns)


def is_page_header(row_text: str, profile: BankProfile) -> bool:
    return _any_match(profile.special_rules.page_header_patterns, row_text)


def is_page_footer(row_text: str, profile: BankProfile) -> bool:
    return _any_match(profile.special_rules.page_footer_patterns, row_text)


def should_skip_row(row_text: str, profile: BankProfile) -> bool:
    """True for summary lines, page headers and page footers."""
    rules = profile.special_rules
    return (_any_match(rules.skip_patterns, row_text) or
            is_page_header(row_text, profile) or
            is_page_footer(row_text, profile))


def is_opening_balance_by_profile(row_text: str, profile: BankProfile) -> bool:
    return _any_match(profile.special_rules.opening_balance_patterns, row_text)


def is_closing_balance_by_profile(row_text: str, profile: BankProfile) -> bool:
    return _any_match(profile.special_rules.closing_balance_patterns, row_text)


def is_continuation_line(row_text: str, profile: BankProfile) -> bool:
    """Rows that extend the previous transaction's description."""
    return _any_match(profile.special_rules.continuation_patterns, row_text)
