#!/usr/bin/env python3
"""
Tests for the bank profile registry, bank detection and the row predicates.
"""

import json
import os
import tempfile
import unittest

from statement_pipeline.services.bankProfiles import (
    DEFAULT_PROFILES_PATH, ProfileRegistry, ProfileValidationError, load_default_registry,
    load_profiles_from_json, profile_from_dict
)
from statement_pipeline.services.bankDetector import (
    BankDetector, contains_keyword, should_skip_row, is_opening_balance_by_profile,
    is_closing_balance_by_profile, is_page_header, is_continuation_line
)


def custom_profile(profile_id: str, logos, threshold: float = 0.3, **extra):
    data = {
        'id': profile_id,
        'name': profile_id.title(),
        'region': 'US',
        'identification': {'logo_patterns': logos, 'confidence_threshold': threshold},
    }
    data.update(extra)
    return profile_from_dict(data)


class TestProfileRegistry(unittest.TestCase):
    """Test cases for ProfileRegistry"""

    def setUp(self):
        self.registry = load_default_registry()

    def test_builtin_profiles(self):
        self.assertIn('generic', self.registry)
        self.assertIn('chase-us', self.registry)
        self.assertNotIn('generic', [p.id for p in self.registry.scored_profiles()])
        self.assertEqual(self.registry.get_by_id('hdfc-india').currency_symbol, '₹')
        self.assertEqual(len(self.registry.get_all()), len(self.registry))

    def test_packaged_profile_set_loads(self):
        profiles = load_profiles_from_json(DEFAULT_PROFILES_PATH)
        ids = [p.id for p in profiles]

        self.assertGreaterEqual(len(profiles), 130)
        self.assertEqual(len(ids), len(set(ids)))
        for profile_id in ('abc-china', 'abnamro-nl', 'absa-za', 'amex-us', 'anz-australia',
                           'axis-india', 'bbva-es', 'zenith-ng', 'zions-us'):
            self.assertIn(profile_id, ids)
        self.assertEqual(self.registry.get_by_id('abnamro-nl').currency_symbol, '€')
        self.assertEqual(self.registry.get_by_id('abnamro-nl').special_rules.amount_formatting.decimal_separator, ',')

    def test_every_packaged_pattern_compiles(self):
        for profile in self.registry.get_all():
            rules = profile.special_rules
            pattern_lists = (
                profile.identification.account_patterns, rules.skip_patterns,
                rules.opening_balance_patterns, rules.closing_balance_patterns,
                rules.continuation_patterns, rules.page_header_patterns, rules.page_footer_patterns
            )
            for patterns in pattern_lists:
                for pattern in patterns:
                    self.assertIsNotNone(pattern.regex, f"{profile.id}: {pattern.source}")
            self.assertTrue(0.0 <= profile.identification.confidence_threshold <= 1.0, profile.id)

    def test_region_lookup_includes_global(self):
        ids = {p.id for p in self.registry.get_by_region('UK')}
        self.assertIn('barclays-uk', ids)
        self.assertIn('generic', ids)
        self.assertNotIn('chase-us', ids)

    def test_register_returns_new_version(self):
        added = custom_profile('alpha-bank', ['Alpha Trust'])
        updated = self.registry.register(added)

        self.assertEqual(updated.version, self.registry.version + 1)
        self.assertIn('alpha-bank', updated)
        self.assertNotIn('alpha-bank', self.registry)

    def test_register_replaces_same_id(self):
        replacement = custom_profile('chase-us', ['Chase Replacement'])
        updated = self.registry.register(replacement)

        self.assertEqual(len(updated), len(self.registry))
        self.assertEqual(updated.get_by_id('chase-us').identification.logo_patterns, ('Chase Replacement',))

    def test_registry_requires_generic(self):
        with self.assertRaises(ProfileValidationError):
            ProfileRegistry([custom_profile('alpha-bank', ['Alpha'])])

    def test_invalid_profiles_rejected(self):
        with self.assertRaises(ProfileValidationError):
            profile_from_dict({'id': 'x', 'name': 'X'})
        with self.assertRaises(ProfileValidationError):
            custom_profile('x', ['X'], threshold=1.5)
        with self.assertRaises(ProfileValidationError):
            custom_profile('x', ['X'], special_rules={'skip_patterns': ['([']})

    def test_profiles_from_json_file(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, 'extra.json')
            with open(path, 'w', encoding='utf-8') as f:
                json.dump([{'id': 'beta-bank', 'name': 'Beta', 'region': 'EU'}], f)

            profiles = load_profiles_from_json(path)
            registry = load_default_registry([path])

        self.assertEqual([p.id for p in profiles], ['beta-bank'])
        self.assertIn('beta-bank', registry)

    def test_profile_serializes_pattern_sources(self):
        data = self.registry.get_by_id('chase-us').to_dict()
        self.assertIn('\\b\\d{4}\\s*\\d{4}\\s*\\d{4}\\b', data['identification']['account_patterns'])


class TestBankDetector(unittest.TestCase):
    """Test cases for BankDetector"""

    def setUp(self):
        self.registry = load_default_registry()
        self.detector = BankDetector(self.registry)

    def test_detects_chase(self):
        result = self.detector.detect_bank(
            ["JPMorgan Chase Bank, N.A.", "Account 1234 5678 9012", "Balance $1,200.00"]
        )

        self.assertEqual(result.profile.id, 'chase-us')
        self.assertEqual(result.match_type, 'exact')
        self.assertEqual(result.confidence, 1.0)
        self.assertIn('logo:CHASE', result.matched_patterns)

    def test_detects_european_bank(self):
        result = self.detector.detect_bank(["ABN AMRO Bank N.V.", "BIC ABNANL2A", "Eindsaldo € 1.234,56"])

        self.assertEqual(result.profile.id, 'abnamro-nl')
        self.assertEqual(result.match_type, 'exact')
        self.assertIn('identifier:ABNANL2A', result.matched_patterns)
        self.assertIn('currency:€', result.matched_patterns)

    def test_file_name_is_searched(self):
        texts = ["Statement of account", "Sort code 20-00-00 Account 12345678", "Balance £10.00"]
        without_name = self.detector.detect_bank(texts)
        with_name = self.detector.detect_bank(texts, file_name="barclays_march.pdf")

        self.assertEqual(without_name.match_type, 'fallback')
        self.assertEqual(with_name.profile.id, 'barclays-uk')
        self.assertAlmostEqual(with_name.confidence, 0.8)

    def test_fallback_to_generic(self):
        result = self.detector.detect_bank(["Credit Union of Nowhere", "Balance 10.00"])

        self.assertEqual(result.profile.id, 'generic')
        self.assertEqual(result.confidence, 0.0)
        self.assertEqual(result.match_type, 'fallback')

    def test_profile_below_own_threshold_is_not_candidate(self):
        # currency ($) alone scores 0.1, under every bank threshold
        result = self.detector.detect_bank(["Total $500.00"])
        self.assertEqual(result.match_type, 'fallback')

    def test_fuzzy_match(self):
        registry = self.registry.register(custom_profile('alpha-bank', ['Alpha Trust'], threshold=0.3))
        result = BankDetector(registry).detect_bank(["Alpha Trust statement"])

        self.assertEqual(result.profile.id, 'alpha-bank')
        self.assertEqual(result.match_type, 'fuzzy')
        self.assertAlmostEqual(result.confidence, 0.4)

    def test_adding_logo_never_lowers_score(self):
        profile = self.registry.get_by_id('hsbc-uk')
        base_text = "statement 12-34-56 £10.00"
        before = self.detector.score_profile(profile, base_text.lower())
        after = self.detector.score_profile(profile, (base_text + " HSBC UK").lower())

        self.assertGreaterEqual(after.score, before.score)
        self.assertLessEqual(after.score, 1.0)

    def test_short_keywords_match_whole_words_only(self):
        self.assertFalse(contains_keyword("trading account", "ing"))
        self.assertTrue(contains_keyword("ing direct savings", "ing"))
        self.assertTrue(contains_keyword("statement td_may.pdf", "td"))
        self.assertTrue(contains_keyword("jpmorgan chase bank", "chase bank"))

        result = self.detector.detect_bank(["TD Canada Trust statement", "Account 1234567"])
        self.assertEqual(result.profile.id, 'td-canada')
        self.assertIn('logo:TD', result.matched_patterns)

    def test_common_words_do_not_trigger_short_keywords(self):
        result = self.detector.detect_bank([
            "2024-01-01  Card purchase at store number 1  -25.00",
            "Opening balance carried forward, banking with us is trading"
        ])
        self.assertEqual(result.match_type, 'fallback')

    def test_equal_scores_go_to_smallest_id(self):
        registry = (self.registry
                    .register(custom_profile('zeta-bank', ['Shared Brand']))
                    .register(custom_profile('eta-bank', ['Shared Brand'])))
        result = BankDetector(registry).detect_bank(["Shared Brand statement"])

        self.assertEqual(result.profile.id, 'eta-bank')

    def test_preferred_profile(self):
        profile = self.detector.get_best_profile(["JPMorgan Chase"], preferred_profile_id='sbi-india')
        self.assertEqual(profile.id, 'sbi-india')

        profile = self.detector.get_best_profile(["JPMorgan Chase"], preferred_profile_id='missing')
        self.assertEqual(profile.id, 'chase-us')


class TestRowPredicates(unittest.TestCase):
    """Test cases for the profile row predicates"""

    def setUp(self):
        self.generic = load_default_registry().get_generic()

    def test_skip_rows(self):
        self.assertTrue(should_skip_row("Page 2", self.generic))
        self.assertTrue(should_skip_row("Statement of Account", self.generic))
        self.assertTrue(should_skip_row("Thank you for banking with us", self.generic))
        self.assertFalse(should_skip_row("2024-01-05 Coffee Shop 4.50", self.generic))

    def test_balance_rows(self):
        self.assertTrue(is_opening_balance_by_profile("  Opening Balance 1,000.00", self.generic))
        self.assertTrue(is_closing_balance_by_profile("Closing balance 850.00", self.generic))
        self.assertFalse(is_opening_balance_by_profile("Closing balance 850.00", self.generic))

    def test_header_and_continuation(self):
        self.assertTrue(is_page_header("Transaction History", self.generic))
        profile = custom_profile('gamma-bank', ['Gamma'], special_rules={'continuation_patterns': ['^ref:']})
        self.assertTrue(is_continuation_line("REF: 12345", profile))
        self.assertFalse(is_continuation_line("2024-01-05 Coffee", profile))


if __name__ == '__main__':
    unittest.main()
