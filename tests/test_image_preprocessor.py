#!/usr/bin/env python3
"""
Unit tests for ImagePreprocessor

Covers the fixed OCR preprocessing order, Otsu thresholding, skew detection
and the scan-quality report on synthetic OpenCV images.
"""

import unittest
import numpy as np
import cv2

from statement_pipeline.services.imagePreprocessor import ImagePreprocessor


class TestImagePreprocessor(unittest.TestCase):
    """Test cases for ImagePreprocessor"""

    def setUp(self):
        """Set up test fixtures"""
        self.preprocessor = ImagePreprocessor()
        self.text_image = self._create_text_image()

    def _create_text_image(self) -> np.ndarray:
        """White page with dark text-line bars"""
        image = np.ones((600, 800, 3), dtype=np.uint8) * 255
        for row in range(10):
            y = 60 + row * 50
            cv2.rectangle(image, (60, y), (740, y + 6), (0, 0, 0), -1)
        return image

    def _rotate(self, image: np.ndarray, angle: float) -> np.ndarray:
        height, width = image.shape[:2]
        matrix = cv2.getRotationMatrix2D((width / 2.0, height / 2.0), angle, 1.0)
        return cv2.warpAffine(image, matrix, (width, height), borderValue=(255, 255, 255))

    def test_empty_image_rejected(self):
        with self.assertRaises(ValueError):
            self.preprocessor.preprocess(np.zeros((0, 0), dtype=np.uint8))

    def test_pipeline_produces_binary_image(self):
        result = self.preprocessor.preprocess(self.text_image)

        self.assertEqual(result.processed_image.ndim, 2)
        self.assertTrue(set(np.unique(result.processed_image)).issubset({0, 255}))
        self.assertIn('grayscale', result.transformations_applied)
        self.assertIn('median_denoise', result.transformations_applied)
        self.assertNotIn('dark_background_inversion', result.transformations_applied)

    def test_transform_order(self):
        result = self.preprocessor.preprocess(self.text_image)
        names = [t.split('_')[0] for t in result.transformations_applied]

        self.assertEqual(names[-5:], ['grayscale', 'contrast', 'sharpen', 'median', 'otsu'])

    def test_dark_background_is_inverted(self):
        dark = cv2.bitwise_not(self.text_image)
        self.assertTrue(self.preprocessor.is_dark_background(dark))

        result = self.preprocessor.preprocess(dark)
        self.assertIn('dark_background_inversion', result.transformations_applied)

    def test_otsu_splits_two_levels(self):
        gray = np.full((100, 100), 50, dtype=np.uint8)
        gray[:, 50:] = 200

        threshold = self.preprocessor.calculate_otsu_threshold(gray)
        self.assertGreaterEqual(threshold, 50)
        self.assertLess(threshold, 200)

        binary = self.preprocessor.binarize(gray, threshold)
        self.assertTrue(np.all(binary[:, :50] == 0))
        self.assertTrue(np.all(binary[:, 50:] == 255))

    def test_otsu_uniform_image(self):
        gray = np.full((40, 40), 180, dtype=np.uint8)
        self.assertEqual(self.preprocessor.calculate_otsu_threshold(gray), 0)

    def test_grayscale_uses_luminosity_weights(self):
        pixel = np.zeros((1, 1, 3), dtype=np.uint8)
        pixel[0, 0] = (0, 0, 255)  # pure red in BGR
        gray = self.preprocessor.to_grayscale(pixel)
        self.assertAlmostEqual(int(gray[0, 0]), 76, delta=1)

    def test_level_text_has_no_skew(self):
        self.assertEqual(self.preprocessor.detect_skew(self.text_image), 0.0)

    def test_detects_rotated_text(self):
        rotated = self._rotate(self.text_image, 5.0)
        angle = self.preprocessor.detect_skew(rotated)
        self.assertAlmostEqual(angle, -5.0, delta=0.5)

    def test_small_skew_is_not_corrected(self):
        rotated = self._rotate(self.text_image, 0.3)
        result = self.preprocessor.preprocess(rotated)
        self.assertFalse(any(t.startswith('deskew') for t in result.transformations_applied))

    def test_deskew_expands_canvas(self):
        rotated = self.preprocessor.deskew(self.text_image, 10.0)
        self.assertGreater(rotated.shape[0], self.text_image.shape[0])
        self.assertGreater(rotated.shape[1], self.text_image.shape[1])

    def test_scan_quality_good(self):
        image = np.zeros((2200, 1700), dtype=np.uint8)
        image[:, 850:] = 255
        report = self.preprocessor.assess_scan_quality(image, page_width_points=612, skew_angle=0.0)

        self.assertAlmostEqual(report.estimated_dpi, 200.0, places=1)
        self.assertEqual(report.quality_label, 'good')

    def test_scan_quality_poor_resolution(self):
        report = self.preprocessor.assess_scan_quality(self.text_image, page_width_points=612, skew_angle=0.0)
        self.assertEqual(report.quality_label, 'poor')

    def test_enhance_for_ocr_falls_back_to_raw(self):
        empty = np.zeros((0, 0), dtype=np.uint8)
        self.assertIs(self.preprocessor.enhance_for_ocr(empty), empty)


if __name__ == '__main__':
    unittest.main()
