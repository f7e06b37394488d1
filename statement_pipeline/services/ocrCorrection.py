"""
OCR result correction.

Fixes the character confusions Tesseract typically makes on bank statements
(O/0, l/1, S/5 ...) in dates, amounts and column header words. Only elements
that came from OCR are touched; text-layer elements pass through as-is.
"""

import re
import logging
from dataclasses import replace
from typing import Dict, List, Pattern

from .documentModels import TextElement, SOURCE_OCR
from .textSimilarity import levenshtein_distance


logger = logging.getLogger(__name__)


DATE_CORRECTIONS: Dict[str, str] = {
    'O': '0', 'o': '0',
    'l': '1', 'I': '1', '|': '1',
    'Z': '2',
    'S': '5',
    'B': '8',
    'g': '9', 'q': '9',
}

NUMERIC_CORRECTIONS: Dict[str, str] = {
    'O': '0', 'o': '0', 'Q': '0', 'D': '0',
    'l': '1', 'I': '1', 'i': '1', '|': '1', '!': '1', 'L': '1',
    'Z': '2', 'z': '2',
    'E': '3',
    'A': '4',
    'S': '5', 's': '5',
    'G': '6', 'b': '6',
    'T': '7',
    'B': '8',
    'g': '9', 'q': '9',
}

# Multi-character tokens first so 'RS' is not half-rewritten
CURRENCY_CORRECTIONS = [
    ('INR', '₹'),
    ('Rs', '₹'),
    ('RS', '₹'),
    ('EUR', '€'),
    ('GBP', '£'),
    ('USD', '$'),
    ('＄', '$'),
    ('﹩', '$'),
]

WORD_CORRECTIONS: Dict[str, str] = {
    'DEB1T': 'DEBIT', 'DEB!T': 'DEBIT',
    'CRED1T': 'CREDIT', 'CRED!T': 'CREDIT',
    'BA1ANCE': 'BALANCE', 'BALANGE': 'BALANCE',
    'OATE': 'DATE',
    'DESCR1PT1ON': 'DESCRIPTION',
    'PART1CULARS': 'PARTICULARS',
    'W1THDRAWAL': 'WITHDRAWAL',
    'DEPOS1T': 'DEPOSIT',
    'OPEN1NG': 'OPENING',
    'CLOS1NG': 'CLOSING',
    'TRANSF3R': 'TRANSFER',
    'PAYM3NT': 'PAYMENT',
}

STATEMENT_VOCABULARY = sorted(set(WORD_CORRECTIONS.values()))

_DATE_SEPARATORS = re.compile(r'[/\-.]')
_NUMBER_NOISE = re.compile(r'[\s,.$€£¥₹\-+()]')
_LEADING_DOLLAR_S = re.compile(r'^S(?=\d)')
_DATE_KEEP = re.compile(r'[\d/\-.\s]')
_NUMBER_KEEP = re.compile(r'[0-9.,\-+\s()]')


def is_likely_date(text: str) -> bool:
    return bool(_DATE_SEPARATORS.search(text)) and 6 <= len(text) <= 12


def is_likely_number(text: str) -> bool:
    cleaned = _NUMBER_NOISE.sub('', text)
    if not cleaned:
        return False
    digits = sum(1 for c in cleaned if c.isdigit())
    letters = sum(1 for c in cleaned if c.isascii() and c.isalpha())
    return digits >= letters


def _map_characters(text: str, table: Dict[str, str], keep: Pattern) -> str:
    return ''.join(c if keep.match(c) else table.get(c, c) for c in text)


def correct_ocr_date(raw: str) -> str:
    """'O1/l5/2O24' -> '01/15/2024'; strings that don't look like dates are returned as-is."""
    if not is_likely_date(raw):
        return raw

    result = _map_characters(raw, DATE_CORRECTIONS, _DATE_KEEP)
    if result != raw:
        logger.debug(f"OCR date correction: '{raw}' -> '{result}'")
    return result


def correct_ocr_number(raw: str) -> str:
    if not is_likely_number(raw):
        return raw
    return _map_characters(raw, NUMERIC_CORRECTIONS, _NUMBER_KEEP)


def correct_currency_symbol(raw: str) -> str:
    result = _LEADING_DOLLAR_S.sub('$', raw)
    for wrong, right in CURRENCY_CORRECTIONS:
        if wrong in result:
            result = result.replace(wrong, right)
    return result


def _match_case(template: str, word: str) -> str:
    if template == template.lower():
        return word.lower()
    if template == template.upper():
        return word
    return word[0] + word[1:].lower()


def correct_ocr_word(raw: str) -> str:
    """
    Repair common statement header words.

    Exact lookups keep the caller's casing; otherwise a digit-free word of
    five or more characters within edit distance 2 of a known statement word
    is replaced.
    """
    upper = raw.upper()

    if upper in WORD_CORRECTIONS:
        return _match_case(raw, WORD_CORRECTIONS[upper])

    if len(upper) < 5 or upper in STATEMENT_VOCABULARY or any(c.isdigit() for c in upper):
        return raw

    for word in STATEMENT_VOCABULARY:
        if levenshtein_distance(upper, word) <= 2:
            logger.debug(f"OCR word correction: '{raw}' -> '{word}'")
            return _match_case(raw, word)

    return raw


def correct_text_element(element: TextElement) -> TextElement:
    """Return a corrected copy of an OCR element."""
    text = element.text

    if len(text) <= 15:
        text = correct_ocr_word(text)

    if is_likely_date(text) and len(_DATE_SEPARATORS.findall(text)) >= 2:
        text = correct_ocr_date(text)

    if is_likely_number(text):
        text = correct_currency_symbol(text)
        text = correct_ocr_number(text)

    if text == element.text:
        return element
    return replace(element, text=text)


def correct_ocr_elements(elements: List[TextElement]) -> List[TextElement]:
    return [correct_text_element(e) if e.source == SOURCE_OCR else e for e in elements]
