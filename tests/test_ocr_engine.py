#!/usr/bin/env python3
"""
Tests for the OCR engine and the OCR worker lifecycle.

Workers are fakes so the tests do not need a Tesseract binary.
"""

import unittest
import numpy as np

from statement_pipeline.services.documentModels import SOURCE_OCR
from statement_pipeline.services.ocrEngine import OCREngine, OCROptions, OCRWord, get_ocr_languages
from statement_pipeline.services.resourceManager import OCRWorkerManager, language_key, get_memory_usage

from builders import FakeWorker, FakeWorkerFactory


class TestLanguageMapping(unittest.TestCase):

    def test_locale_mapping(self):
        self.assertEqual(get_ocr_languages('en-GB'), ['eng'])
        self.assertEqual(get_ocr_languages('en-NZ'), ['eng'])
        self.assertEqual(get_ocr_languages('hi'), ['hin', 'eng'])
        self.assertEqual(get_ocr_languages('zh-CN'), ['chi_sim'])
        self.assertEqual(get_ocr_languages('xx-YY'), ['eng'])
        self.assertEqual(get_ocr_languages(None), ['eng'])

    def test_language_key_is_sorted_and_unique(self):
        self.assertEqual(language_key(['spa', 'eng', 'eng']), 'eng+spa')
        with self.assertRaises(ValueError):
            language_key([])


class TestOCRWorkerManager(unittest.TestCase):
    """Test cases for the worker lifecycle"""

    def setUp(self):
        self.factory = FakeWorkerFactory()
        self.manager = OCRWorkerManager(self.factory)

    def test_worker_reused_for_same_languages(self):
        first = self.manager.get_worker(['eng'])
        second = self.manager.get_worker(['eng'])

        self.assertIs(first, second)
        self.assertEqual(self.manager.workers_created, 1)

    def test_language_change_replaces_worker(self):
        first = self.manager.get_worker(['eng'])
        second = self.manager.get_worker(['spa', 'eng'])

        self.assertIsNot(first, second)
        self.assertTrue(first.terminated)
        self.assertEqual(self.manager.active_key, 'eng+spa')

    def test_session_releases_worker_on_error(self):
        with self.assertRaises(RuntimeError):
            with self.manager.session():
                self.manager.get_worker(['eng'])
                raise RuntimeError("page failed")

        self.assertFalse(self.manager.has_worker)
        self.assertTrue(self.factory.workers[0].terminated)

    def test_failed_termination_does_not_fail_session(self):
        class StuckWorker(FakeWorker):
            def terminate(self):
                raise OSError("worker process already gone")

        manager = OCRWorkerManager(lambda key: StuckWorker(key, []))
        with self.assertLogs('statement_pipeline.services.resourceManager.OCRWorkerManager', level='ERROR') as logs:
            with manager.session():
                manager.get_worker(['eng'])

        self.assertFalse(manager.has_worker)
        self.assertEqual(manager.workers_terminated, 1)
        self.assertIn('worker process already gone', logs.output[0])

    def test_terminate_without_worker_is_noop(self):
        self.manager.terminate_worker()
        self.assertEqual(self.manager.workers_terminated, 0)

    def test_memory_usage(self):
        stats = get_memory_usage()
        self.assertGreater(stats.process_memory, 0)


class TestOCREngine(unittest.TestCase):
    """Test cases for OCREngine.recognize"""

    def setUp(self):
        self.factory = FakeWorkerFactory([
            OCRWord(text='Opening', x=20, y=40, width=60, height=10, confidence=0.95),
            OCRWord(text='Balance', x=90, y=40, width=60, height=10, confidence=0.6),
            OCRWord(text='~~', x=200, y=40, width=10, height=10, confidence=0.2),
        ])
        self.engine = OCREngine(worker_manager=OCRWorkerManager(self.factory))
        self.image = np.ones((200, 300, 3), dtype=np.uint8) * 255

    def test_words_below_threshold_are_dropped(self):
        result = self.engine.recognize(
            self.image, ['eng'], OCROptions(confidence_threshold=0.6, preprocess=False)
        )

        self.assertEqual([e.text for e in result.text_elements], ['Opening', 'Balance'])
        self.assertEqual(result.words_dropped, 1)
        self.assertTrue(all(e.confidence >= 0.6 for e in result.text_elements))
        self.assertTrue(all(e.source == SOURCE_OCR for e in result.text_elements))
        self.assertAlmostEqual(result.overall_confidence, 0.775)

    def test_coordinates_are_scaled_to_page_units(self):
        result = self.engine.recognize(
            self.image, ['eng'],
            OCROptions(confidence_threshold=0.9, preprocess=False, coordinate_scale=2.0),
            page_number=3
        )
        box = result.text_elements[0].bounding_box

        self.assertEqual((box.x, box.y, box.width, box.height), (10.0, 20.0, 30.0, 5.0))
        self.assertEqual(result.text_elements[0].page_number, 3)

    def test_no_words_kept_gives_zero_confidence(self):
        result = self.engine.recognize(
            self.image, ['eng'], OCROptions(confidence_threshold=0.99, preprocess=False)
        )
        self.assertEqual(result.text_elements, [])
        self.assertEqual(result.overall_confidence, 0.0)

    def test_preprocessing_reports_transformations(self):
        result = self.engine.recognize(
            self.image, ['eng'], OCROptions(preprocess=True, page_width_points=150)
        )
        self.assertIn('grayscale', result.transformations)
        self.assertIsNotNone(result.scan_quality)

    def test_session_terminates_worker(self):
        with self.engine.session():
            self.engine.recognize(self.image, ['eng'], OCROptions(preprocess=False))
        self.assertTrue(self.factory.workers[0].terminated)
        self.assertIsNone(self.engine.get_engine_info()['active_languages'])
        self.assertEqual(self.engine.get_engine_info()['preprocessing']['pipeline'][-1], 'otsu')


if __name__ == '__main__':
    unittest.main()
