#!/usr/bin/env python3
"""
Tests for batch processing of several statements.
"""

import unittest

from statement_pipeline.services.batchProcessor import (
    BatchFile, BatchProcessingOptions, process_batch_pdfs, validate_batch_files,
    estimate_batch_time, NO_SUCCESS_ERROR
)
from statement_pipeline.services.ocrEngine import OCREngine
from statement_pipeline.services.pdfPipeline import StatementPipeline, ProcessingOptions, OCR_USED_WARNING
from statement_pipeline.services.resourceManager import OCRWorkerManager

from builders import FakeWorkerFactory, ScriptedExtractor, build_pdf, make_transaction, text_page


STATEMENT_ROWS = {
    'january.pdf': lambda: [
        make_transaction('2024-01-02', 'Salary', credit=2000),
        make_transaction('2024-01-05', 'Coffee Shop', debit=50),
    ],
    'overlap.pdf': lambda: [
        make_transaction('2024-01-06', 'Coffee Shop Inc', debit=50),
        make_transaction('2024-01-20', 'Rent', debit=900),
    ],
    'scan.pdf': lambda: [
        make_transaction('2024-02-01', 'Groceries', debit=35),
    ],
}


def rows_for(file_name, elements):
    return STATEMENT_ROWS.get(file_name, lambda: [])()


class TestBatchProcessing(unittest.TestCase):
    """Test cases for process_batch_pdfs"""

    def setUp(self):
        self.extractor = ScriptedExtractor(rows_for)
        self.pipeline = StatementPipeline(
            self.extractor,
            ocr_engine=OCREngine(worker_manager=OCRWorkerManager(FakeWorkerFactory()))
        )
        self.options = BatchProcessingOptions(processing=ProcessingOptions(preprocess_ocr=False))
        self.text_pdf = build_pdf([text_page()])

    def test_merges_successful_files(self):
        files = [BatchFile('january.pdf', self.text_pdf), BatchFile('overlap.pdf', self.text_pdf)]
        result = process_batch_pdfs(files, self.options, pipeline=self.pipeline)

        self.assertTrue(result.success)
        self.assertEqual(result.merged_document.file_name, 'merged_2_files.pdf')
        self.assertEqual(result.total_transactions, 4)
        self.assertEqual(result.total_pages, 2)
        self.assertEqual(len(result.duplicate_groups), 1)
        self.assertEqual(result.duplicate_groups[0].source_files, ['january.pdf', 'overlap.pdf'])
        self.assertEqual([s.status for s in result.file_results], ['complete', 'complete'])
        self.assertEqual([s.transaction_count for s in result.file_results], [2, 2])

    def test_failed_file_does_not_stop_batch(self):
        errors = []
        completed = []
        options = BatchProcessingOptions(
            processing=ProcessingOptions(preprocess_ocr=False),
            on_file_complete=lambda index, name, result: completed.append(name),
            on_file_error=lambda index, name, error: errors.append((index, error.error_code))
        )
        files = [BatchFile('broken.pdf', b'%PDF-garbage'), BatchFile('january.pdf', self.text_pdf)]
        result = process_batch_pdfs(files, options, pipeline=self.pipeline)

        self.assertTrue(result.success)
        self.assertEqual(completed, ['january.pdf'])
        self.assertEqual(errors, [(0, 'PDF_PROCESSING_ERROR')])
        self.assertEqual(result.file_results[0].status, 'error')
        self.assertTrue(result.errors[0].startswith('broken.pdf: '))
        self.assertEqual(result.merged_document.file_name, 'january.pdf')

    def test_no_successful_files(self):
        files = [BatchFile('a.pdf', b''), BatchFile('b.pdf', b'not a pdf')]
        result = process_batch_pdfs(files, self.options, pipeline=self.pipeline)

        self.assertFalse(result.success)
        self.assertEqual(result.errors[-1], NO_SUCCESS_ERROR)
        self.assertEqual(len(result.errors), 3)
        self.assertEqual(result.merged_document.file_name, 'empty.pdf')
        self.assertEqual(len(result.individual_results), 2)
        self.assertEqual(result.total_transactions, 0)

    def test_warnings_are_prefixed_with_file_name(self):
        files = [BatchFile('scan.pdf', build_pdf([[]])), BatchFile('january.pdf', self.text_pdf)]
        result = process_batch_pdfs(files, self.options, pipeline=self.pipeline)

        self.assertIn(f"scan.pdf: {OCR_USED_WARNING}", result.warnings)

    def test_progress_callback(self):
        updates = []
        options = BatchProcessingOptions(
            processing=ProcessingOptions(preprocess_ocr=False),
            on_file_progress=lambda index, name, progress, stage: updates.append((index, progress, stage))
        )
        result = process_batch_pdfs([BatchFile('january.pdf', self.text_pdf)], options, pipeline=self.pipeline)

        self.assertEqual(updates[0], (0, 0, 'Starting...'))
        self.assertEqual(updates[-1], (0, 100, 'complete'))
        self.assertEqual(result.file_results[0].progress, 100)

    def test_raising_callbacks_do_not_abort_batch(self):
        def explode(*args):
            raise RuntimeError("listener went away")

        options = BatchProcessingOptions(
            processing=ProcessingOptions(preprocess_ocr=False),
            on_file_progress=explode,
            on_file_complete=explode,
            on_file_error=explode
        )
        files = [BatchFile('broken.pdf', b'%PDF-garbage'), BatchFile('january.pdf', self.text_pdf),
                 BatchFile('overlap.pdf', self.text_pdf)]

        with self.assertLogs('statement_pipeline.services.batchProcessor', level='WARNING') as logs:
            result = process_batch_pdfs(files, options, pipeline=self.pipeline)

        self.assertTrue(result.success)
        self.assertEqual([s.status for s in result.file_results], ['error', 'complete', 'complete'])
        self.assertEqual(result.total_transactions, 4)
        self.assertTrue(any('listener went away' in line for line in logs.output))

    def test_single_file_is_not_renamed(self):
        result = process_batch_pdfs([BatchFile('january.pdf', self.text_pdf)], self.options, pipeline=self.pipeline)

        self.assertIs(result.merged_document, result.individual_results[0].document)
        self.assertEqual(result.to_dict()['merged_document']['file_name'], 'january.pdf')

    def test_requires_pipeline_or_extractor(self):
        with self.assertRaises(ValueError):
            process_batch_pdfs([])


class TestBatchValidation(unittest.TestCase):

    def test_valid_files(self):
        valid, errors = validate_batch_files([BatchFile('a.pdf', b'%PDF-1.7 ...')])
        self.assertTrue(valid)
        self.assertEqual(errors, [])

    def test_problems_are_listed(self):
        files = [BatchFile('a.pdf', b'%PDF'), BatchFile('notes.txt', b'hello'), BatchFile('c.pdf', b'%PDF')]
        valid, errors = validate_batch_files(files, max_files=2)

        self.assertFalse(valid)
        self.assertIn("Maximum 2 files allowed. You selected 3.", errors)
        self.assertIn("File 2 (notes.txt) is not a PDF", errors)

    def test_oversized_file(self):
        big = BatchFile('big.pdf', b'%PDF' + b'0' * (2 * 1024 * 1024))
        valid, errors = validate_batch_files([big], max_file_size_mb=1)

        self.assertFalse(valid)
        self.assertEqual(errors, ["File 1 (big.pdf) is 2MB. Maximum is 1MB."])

    def test_no_files(self):
        self.assertEqual(validate_batch_files([]), (False, ['No files selected']))

    def test_estimate_batch_time(self):
        small = [BatchFile('a.pdf', b'%PDF'), BatchFile('b.pdf', b'%PDF')]
        self.assertEqual(estimate_batch_time(small), {'min_seconds': 10, 'max_seconds': 20})

        large = [BatchFile('big.pdf', b'0' * (10 * 1024 * 1024))]
        self.assertEqual(estimate_batch_time(large), {'min_seconds': 20, 'max_seconds': 50})


if __name__ == '__main__':
    unittest.main()
