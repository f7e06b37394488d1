#!/usr/bin/env python3
"""
Bank Profiles

Immutable bank profile value types and the versioned profile registry.

A profile bundles how to recognise a bank's statements (logo keywords, unique
identifiers, account number regexes) with the parsing rules the extraction
stage applies to its rows. Profiles are data: they are loaded from JSON at
startup and never change afterwards. Adding a profile produces a new registry
version instead of mutating the existing one.
"""

import json
import re
import logging
from typing import List, Dict, Optional, Any, Iterable, Tuple, Pattern
from dataclasses import dataclass, field
from pathlib import Path


logger = logging.getLogger(__name__)

GENERIC_PROFILE_ID = "generic"
GLOBAL_REGION = "GLOBAL"

DEFAULT_PROFILES_PATH = Path(__file__).resolve().parent.parent / "profiles" / "bank_profiles.json"

COLUMN_ORDERS = (
    'date-desc-debit-credit-balance',
    'date-desc-amount-balance',
    'date-desc-credit-debit-balance',
    'date-ref-desc-debit-credit-balance',
    'custom',
)


class ProfileValidationError(ValueError):
    """Raised when a profile definition is malformed"""


@dataclass(frozen=True)
class RulePattern:
    """A case-insensitive regex that remembers its source text"""
    source: str
    regex: Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        try:
            compiled = re.compile(self.source, re.IGNORECASE)
        except re.error as e:
            raise ProfileValidationError(f"Invalid pattern '{self.source}': {e}")
        object.__setattr__(self, 'regex', compiled)

    def search(self, text: str) -> bool:
        return self.regex.search(text) is not None

    def __str__(self) -> str:
        return self.source


@dataclass(frozen=True)
class BankIdentification:
    logo_patterns: Tuple[str, ...] = ()
    account_patterns: Tuple[RulePattern, ...] = ()
    unique_identifiers: Tuple[str, ...] = ()
    confidence_threshold: float = 0.7


@dataclass(frozen=True)
class ColumnConfiguration:
    column_order: str = 'date-desc-debit-credit-balance'
    merged_debit_credit: bool = False
    balance_position: str = 'right'
    debit_indicators: Tuple[str, ...] = ()
    credit_indicators: Tuple[str, ...] = ()
    has_reference_column: bool = False
    custom_order: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AmountFormatting:
    currency_symbol: Optional[str] = None
    symbol_position: str = 'prefix'
    negative_format: str = 'minus'
    decimal_separator: str = '.'
    thousands_separator: str = ','


@dataclass(frozen=True)
class DateFormatting:
    date_formats: Tuple[str, ...] = ()
    date_separator: Optional[str] = None
    year_format: str = 'both'


@dataclass(frozen=True)
class SpecialRules:
    date_formatting: DateFormatting = DateFormatting()
    amount_formatting: AmountFormatting = AmountFormatting()
    skip_patterns: Tuple[RulePattern, ...] = ()
    opening_balance_patterns: Tuple[RulePattern, ...] = ()
    closing_balance_patterns: Tuple[RulePattern, ...] = ()
    continuation_patterns: Tuple[RulePattern, ...] = ()
    page_header_patterns: Tuple[RulePattern, ...] = ()
    page_footer_patterns: Tuple[RulePattern, ...] = ()
    multi_line_descriptions: bool = False
    max_description_lines: int = 1


@dataclass(frozen=True)
class BankProfile:
    """One bank's detection signatures and parsing rules"""
    id: str
    name: str
    region: str
    default_locale: str
    identification: BankIdentification
    column_config: ColumnConfiguration
    special_rules: SpecialRules
    version: str = "1.0.0"
    last_updated: str = ""

    @property
    def is_generic(self) -> bool:
        return self.id == GENERIC_PROFILE_ID

    @property
    def currency_symbol(self) -> Optional[str]:
        return self.special_rules.amount_formatting.currency_symbol

    def to_dict(self) -> Dict[str, Any]:
        rules = self.special_rules

        def sources(patterns):
            return [p.source for p in patterns]

        return {
            'id': self.id,
            'name': self.name,
            'region': self.region,
            'default_locale': self.default_locale,
            'version': self.version,
            'last_updated': self.last_updated,
            'identification': {
                'logo_patterns': list(self.identification.logo_patterns),
                'account_patterns': sources(self.identification.account_patterns),
                'unique_identifiers': list(self.identification.unique_identifiers),
                'confidence_threshold': self.identification.confidence_threshold
            },
            'column_config': {
                'column_order': self.column_config.column_order,
                'merged_debit_credit': self.column_config.merged_debit_credit,
                'balance_position': self.column_config.balance_position,
                'debit_indicators': list(self.column_config.debit_indicators),
                'credit_indicators': list(self.column_config.credit_indicators),
                'has_reference_column': self.column_config.has_reference_column,
                'custom_order': list(self.column_config.custom_order)
            },
            'special_rules': {
                'date_formatting': {
                    'date_formats': list(rules.date_formatting.date_formats),
                    'date_separator': rules.date_formatting.date_separator,
                    'year_format': rules.date_formatting.year_format
                },
                'amount_formatting': {
                    'currency_symbol': rules.amount_formatting.currency_symbol,
                    'symbol_position': rules.amount_formatting.symbol_position,
                    'negative_format': rules.amount_formatting.negative_format,
                    'decimal_separator': rules.amount_formatting.decimal_separator,
                    'thousands_separator': rules.amount_formatting.thousands_separator
                },
                'skip_patterns': sources(rules.skip_patterns),
                'opening_balance_patterns': sources(rules.opening_balance_patterns),
                'closing_balance_patterns': sources(rules.closing_balance_patterns),
                'continuation_patterns': sources(rules.continuation_patterns),
                'page_header_patterns': sources(rules.page_header_patterns),
                'page_footer_patterns': sources(rules.page_footer_patterns),
                'multi_line_descriptions': rules.multi_line_descriptions,
                'max_description_lines': rules.max_description_lines
            }
        }


def _patterns(values: Optional[Iterable[str]]) -> Tuple[RulePattern, ...]:
    return tuple(RulePattern(v) for v in (values or []))


def profile_from_dict(data: Dict[str, Any]) -> BankProfile:
    """
    Build and validate a profile from its JSON form.

    Raises:
        ProfileValidationError: Missing identity fields, bad regexes, an
            unknown column order or a threshold outside [0, 1]
    """
    for key in ('id', 'name', 'region'):
        if not data.get(key):
            raise ProfileValidationError(f"Profile is missing required field '{key}'")

    profile_id = data['id']
    ident = data.get('identification', {})
    columns = data.get('column_config', {})
    rules = data.get('special_rules', {})
    dates = rules.get('date_formatting', {})
    amounts = rules.get('amount_formatting', {})

    threshold = float(ident.get('confidence_threshold', 0.7))
    if not 0.0 <= threshold <= 1.0:
        raise ProfileValidationError(
            f"Profile '{profile_id}': confidence_threshold must be within [0, 1], got {threshold}"
        )

    column_order = columns.get('column_order', 'date-desc-debit-credit-balance')
    if column_order not in COLUMN_ORDERS:
        raise ProfileValidationError(f"Profile '{profile_id}': unknown column_order '{column_order}'")

    try:
        return BankProfile(
            id=profile_id,
            name=data['name'],
            region=data['region'],
            default_locale=data.get('default_locale', 'en-US'),
            version=data.get('version', '1.0.0'),
            last_updated=data.get('last_updated', ''),
            identification=BankIdentification(
                logo_patterns=tuple(ident.get('logo_patterns', [])),
                account_patterns=_patterns(ident.get('account_patterns')),
                unique_identifiers=tuple(ident.get('unique_identifiers', [])),
                confidence_threshold=threshold
            ),
            column_config=ColumnConfiguration(
                column_order=column_order,
                merged_debit_credit=bool(columns.get('merged_debit_credit', False)),
                balance_position=columns.get('balance_position', 'right'),
                debit_indicators=tuple(columns.get('debit_indicators', [])),
                credit_indicators=tuple(columns.get('credit_indicators', [])),
                has_reference_column=bool(columns.get('has_reference_column', False)),
                custom_order=tuple(columns.get('custom_order', []))
            ),
            special_rules=SpecialRules(
                date_formatting=DateFormatting(
                    date_formats=tuple(dates.get('date_formats', [])),
                    date_separator=dates.get('date_separator'),
                    year_format=dates.get('year_format', 'both')
                ),
                amount_formatting=AmountFormatting(
                    currency_symbol=amounts.get('currency_symbol'),
                    symbol_position=amounts.get('symbol_position', 'prefix'),
                    negative_format=amounts.get('negative_format', 'minus'),
                    decimal_separator=amounts.get('decimal_separator', '.'),
                    thousands_separator=amounts.get('thousands_separator', ',')
                ),
                skip_patterns=_patterns(rules.get('skip_patterns')),
                opening_balance_patterns=_patterns(rules.get('opening_balance_patterns')),
                closing_balance_patterns=_patterns(rules.get('closing_balance_patterns')),
                continuation_patterns=_patterns(rules.get('continuation_patterns')),
                page_header_patterns=_patterns(rules.get('page_header_patterns')),
                page_footer_patterns=_patterns(rules.get('page_footer_patterns')),
                multi_line_descriptions=bool(rules.get('multi_line_descriptions', False)),
                max_description_lines=int(rules.get('max_description_lines', 1))
            )
        )
    except ProfileValidationError as e:
        raise ProfileValidationError(f"Profile '{profile_id}': {e}")


def load_profiles_from_json(path) -> List[BankProfile]:
    """Load profiles from a JSON file holding a list or {"profiles": [...]}."""
    path = Path(path)
    with open(path, 'r', encoding='utf-8') as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ProfileValidationError(f"Invalid JSON in profile file {path}: {e}")

    entries = data.get('profiles', []) if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise ProfileValidationError(f"Profile file {path} must contain a list of profiles")

    profiles = [profile_from_dict(entry) for entry in entries]
    logger.debug(f"Loaded {len(profiles)} profiles from {path}")
    return profiles


class ProfileRegistry:
    """
    Immutable lookup of bank profiles keyed by id.

    Holds the profiles in registration order plus an id -> index map, and
    exactly one generic fallback profile. register() returns a new registry
    with the version bumped; the receiver never changes.
    """

    def __init__(self, profiles: Iterable[BankProfile], version: int = 1):
        arena: List[BankProfile] = []
        index: Dict[str, int] = {}
        for profile in profiles:
            if profile.id in index:
                arena[index[profile.id]] = profile
            else:
                index[profile.id] = len(arena)
                arena.append(profile)

        if GENERIC_PROFILE_ID not in index:
            raise ProfileValidationError("Registry requires a 'generic' fallback profile")

        self._profiles: Tuple[BankProfile, ...] = tuple(arena)
        self._index = index
        self.version = version

    def __len__(self) -> int:
        return len(self._profiles)

    def __contains__(self, profile_id: str) -> bool:
        return profile_id in self._index

    def get_all(self) -> List[BankProfile]:
        return list(self._profiles)

    def get_by_id(self, profile_id: str) -> Optional[BankProfile]:
        position = self._index.get(profile_id)
        return self._profiles[position] if position is not None else None

    def get_by_region(self, region: str) -> List[BankProfile]:
        """Profiles for a region, plus the GLOBAL ones."""
        return [p for p in self._profiles if p.region == region or p.region == GLOBAL_REGION]

    def get_generic(self) -> BankProfile:
        return self._profiles[self._index[GENERIC_PROFILE_ID]]

    def scored_profiles(self) -> List[BankProfile]:
        """Every profile that takes part in scored detection (all but generic)."""
        return [p for p in self._profiles if not p.is_generic]

    def register(self, profile: BankProfile) -> 'ProfileRegistry':
        """Return a new registry version containing profile (replacing a same-id entry)."""
        logger.info(f"Registering bank profile '{profile.id}' (registry v{self.version + 1})")
        return ProfileRegistry(self._profiles + (profile,), version=self.version + 1)


def load_default_registry(extra_paths: Optional[Iterable] = None) -> ProfileRegistry:
    """
    Build the registry from the packaged profiles plus optional extra files.

    Profiles in extra files override packaged ones with the same id.
    """
    profiles = load_profiles_from_json(DEFAULT_PROFILES_PATH)
    for path in extra_paths or []:
        profiles.extend(load_profiles_from_json(path))

    registry = ProfileRegistry(profiles)
    logger.debug(f"Profile registry ready with {len(registry)} profiles")
    return registry
