#!/usr/bin/env python3
"""
Tests for merging parsed documents from several statement files.
"""

import unittest

from statement_pipeline.services.documentModels import StatementPeriod, STATUS_WARNING
from statement_pipeline.services.documentMerger import (
    DocumentMerger, MergeOptions, merge_documents, compare_transaction_dates
)
from statement_pipeline.services.duplicateDetector import DuplicateDetectionOptions

from builders import make_transaction, make_document


class TestDocumentMerger(unittest.TestCase):
    """Test cases for DocumentMerger"""

    def setUp(self):
        self.january = make_document('january.pdf', [
            make_transaction('2024-01-05', 'Coffee Shop', debit=50),
            make_transaction('2024-01-02', 'Salary', credit=2000),
        ], total_pages=2, opening_balance=100.0, closing_balance=2050.0,
            period=StatementPeriod(start='2024-01-01', end='2024-01-31'))
        self.overlap = make_document('overlap.pdf', [
            make_transaction('2024-01-06', 'Coffee Shop Inc', debit=50),
            make_transaction('2024-02-03', 'Rent', debit=900),
        ], total_pages=3, opening_balance=2050.0, closing_balance=1100.0,
            period=StatementPeriod(start='2024-01-06', end='2024-02-05'))

    def test_no_documents(self):
        result = merge_documents([])

        self.assertEqual(result.document.file_name, 'empty.pdf')
        self.assertEqual(result.document.total_transactions, 0)
        self.assertEqual(result.warnings, ["No documents to merge"])

    def test_single_document_passes_through(self):
        result = merge_documents([self.january])

        self.assertIs(result.document, self.january)
        self.assertEqual(result.date_range, {'earliest': '2024-01-02', 'latest': '2024-01-05'})
        self.assertIsNone(self.january.transactions[0].source_file_name)

    def test_merge_sorts_tags_and_reindexes(self):
        result = merge_documents([self.january, self.overlap])
        document = result.document
        transactions = document.transactions

        self.assertEqual(document.file_name, 'merged_2_files.pdf')
        self.assertEqual(document.total_pages, 5)
        self.assertEqual([t.date for t in transactions],
                         ['2024-01-02', '2024-01-05', '2024-01-06', '2024-02-03'])
        self.assertEqual([t.row_index for t in transactions], [0, 1, 2, 3])
        self.assertEqual(transactions[0].source_file_name, 'january.pdf')
        self.assertEqual(transactions[3].file_index, 1)
        self.assertEqual(result.source_files, ['january.pdf', 'overlap.pdf'])
        self.assertEqual(result.date_range, {'earliest': '2024-01-02', 'latest': '2024-02-03'})

    def test_segment_balances_and_period(self):
        segment = merge_documents([self.january, self.overlap]).document.segments[0]

        self.assertEqual((segment.start_page, segment.end_page), (1, 5))
        self.assertEqual(segment.opening_balance, 100.0)
        self.assertEqual(segment.closing_balance, 1100.0)
        self.assertEqual(segment.statement_period, StatementPeriod(start='2024-01-01', end='2024-02-05'))

    def test_duplicates_flagged_and_counts_recomputed(self):
        result = merge_documents([self.january, self.overlap])
        document = result.document

        self.assertEqual(len(result.duplicates.duplicate_groups), 1)
        self.assertIn("Found 1 potential duplicate group(s) affecting 2 transactions", result.warnings)
        self.assertEqual(document.warning_transactions, 2)
        self.assertEqual(document.valid_transactions, 2)
        self.assertEqual(document.overall_validation, STATUS_WARNING)
        self.assertEqual(
            sum(1 for t in document.transactions if t.validation_status == STATUS_WARNING), 2
        )

    def test_inputs_are_not_modified(self):
        merge_documents([self.january, self.overlap])

        for document in (self.january, self.overlap):
            for transaction in document.transactions:
                self.assertIsNone(transaction.source_file_name)
                self.assertIsNone(transaction.file_index)
                self.assertEqual(transaction.notes, [])
                self.assertEqual(transaction.validation_status, 'valid')
        self.assertEqual(self.january.transactions[0].date, '2024-01-05')

    def test_without_source_column(self):
        result = merge_documents([self.january, self.overlap], options=MergeOptions(add_source_column=False))
        self.assertTrue(all(t.source_file_name is None for t in result.document.transactions))

    def test_duplicate_detection_disabled(self):
        options = MergeOptions(duplicate_detection=DuplicateDetectionOptions(enabled=False))
        result = merge_documents([self.january, self.overlap], options=options)

        self.assertEqual(result.duplicates.duplicate_groups, [])
        self.assertEqual(result.document.overall_validation, 'valid')

    def test_unparseable_dates_compare_equal(self):
        first = make_transaction('garbled', 'A', debit=1)
        second = make_transaction('2024-01-01', 'B', debit=1)
        self.assertEqual(compare_transaction_dates(first, second), 0)


class TestGapHandling(unittest.TestCase):
    """Test cases for continuity checks between files"""

    def setUp(self):
        self.march = make_document('march.pdf', [
            make_transaction('2024-03-01', 'Groceries', debit=40),
            make_transaction('2024-03-10', 'Fuel', debit=60),
        ])
        self.april = make_document('april.pdf', [
            make_transaction('2024-04-20', 'Insurance', debit=80),
        ])

    def merge(self, handle_gaps: str):
        options = MergeOptions(validate_continuity=True, handle_gaps=handle_gaps)
        return DocumentMerger(options).merge_documents([self.march, self.april])

    def test_warn(self):
        result = self.merge('warn')

        self.assertEqual(len(result.gaps), 1)
        self.assertEqual(result.gaps[0].gap_days, 41)
        self.assertEqual(result.warnings, ['41 day gap detected between "march.pdf" and "april.pdf"'])
        self.assertTrue(all(t.notes == [] for t in result.document.transactions))

    def test_flag(self):
        result = self.merge('flag')
        insurance = result.document.transactions[-1]

        self.assertEqual(len(result.warnings), 1)
        self.assertEqual(insurance.notes, ["Follows a 41 day gap after march.pdf"])

    def test_flag_without_source_column(self):
        options = MergeOptions(validate_continuity=True, handle_gaps='flag', add_source_column=False)
        result = DocumentMerger(options).merge_documents([self.march, self.april])
        insurance = result.document.transactions[-1]

        self.assertIsNone(insurance.source_file_name)
        self.assertEqual(insurance.notes, ["Follows a 41 day gap after march.pdf"])
        self.assertEqual((result.gaps[0].after_index, result.gaps[0].before_index), (0, 1))
        self.assertTrue(all(t.notes == [] for t in result.document.transactions[:-1]))

    def test_ignore(self):
        result = self.merge('ignore')

        self.assertEqual(len(result.gaps), 1)
        self.assertEqual(result.warnings, [])

    def test_continuity_off_by_default(self):
        result = merge_documents([self.march, self.april])
        self.assertEqual(result.gaps, [])

    def test_adjacent_files_have_no_gap(self):
        follow_on = make_document('follow.pdf', [make_transaction('2024-03-11', 'Fuel', debit=60)])
        gaps = DocumentMerger().detect_gaps([self.march, follow_on], ['march.pdf', 'follow.pdf'])
        self.assertEqual(gaps, [])

    def test_invalid_gap_mode(self):
        with self.assertRaises(ValueError):
            DocumentMerger(MergeOptions(handle_gaps='drop'))


if __name__ == '__main__':
    unittest.main()
