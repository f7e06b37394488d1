"""
Date helpers shared by duplicate detection and document merging.

Statement dates arrive as free-form strings. A few unambiguous layouts are
matched with regexes first; anything else goes through pandas' parser.
"""

import re
import logging
import warnings
from datetime import date
from typing import Optional

import pandas as pd


logger = logging.getLogger(__name__)

_ISO_DATE = re.compile(r'^(\d{4})-(\d{1,2})-(\d{1,2})')
_SLASH_DMY = re.compile(r'^(\d{1,2})/(\d{1,2})/(\d{4})$')
_DASH_DMY = re.compile(r'^(\d{1,2})-(\d{1,2})-(\d{4})$')


def _build_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_statement_date(value: Optional[str]) -> Optional[date]:
    """
    Parse a statement date string.

    Args:
        value: Raw date text (e.g. '2024-01-05', '05/01/2024', 'Jan 5, 2024')

    Returns:
        The calendar date, or None when the text cannot be parsed
    """
    if not value:
        return None

    text = str(value).strip()
    if not text:
        return None

    match = _ISO_DATE.match(text)
    if match:
        return _build_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))

    match = _SLASH_DMY.match(text)
    if match:
        return _build_date(int(match.group(3)), int(match.group(2)), int(match.group(1)))

    match = _DASH_DMY.match(text)
    if match:
        return _build_date(int(match.group(3)), int(match.group(2)), int(match.group(1)))

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        try:
            parsed = pd.to_datetime(text, errors='coerce')
        except (ValueError, TypeError, OverflowError) as e:
            logger.debug(f"Unparseable date '{text}': {e}")
            return None

    if parsed is None or pd.isna(parsed):
        return None
    return parsed.date()


def days_between(first: date, second: date) -> int:
    """Absolute difference in calendar days."""
    return abs((first - second).days)


def format_iso_date(value: date) -> str:
    return value.isoformat()
