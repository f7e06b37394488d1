#!/usr/bin/env python3
"""
Image Preprocessor using OpenCV

This module prepares rendered statement pages for OCR with a fixed, ordered
pipeline: deskew, dark-background inversion, grayscale, contrast adjustment,
sharpening, median denoising and Otsu binarization. It also produces an
advisory scan-quality report (DPI estimate, skew, contrast).
"""

import logging
import time
import math
from typing import List, Dict, Optional, Any, Union
from dataclasses import dataclass, field
import numpy as np
import cv2


@dataclass
class PreprocessingResult:
    """Result of image preprocessing operation"""
    processed_image: np.ndarray
    original_image: np.ndarray
    transformations_applied: List[str]
    skew_angle: float
    otsu_threshold: int
    processing_time: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ScanQualityReport:
    """Advisory quality metadata for a scanned page (never gates processing)"""
    estimated_dpi: float
    skew_angle: float
    contrast_score: float  # 0-1, grayscale standard deviation relative to 128
    quality_label: str     # 'good', 'fair', 'poor'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'estimated_dpi': round(self.estimated_dpi, 1),
            'skew_angle': self.skew_angle,
            'contrast_score': round(self.contrast_score, 3),
            'quality_label': self.quality_label
        }


SHARPEN_KERNEL = np.array([[0, -1, 0],
                           [-1, 5, -1],
                           [0, -1, 0]], dtype=np.float32)


class ImagePreprocessor:
    """
    OpenCV image preprocessor for scanned statement pages.

    Every step works on numpy arrays in OpenCV channel order (BGR for
    colour input). The pipeline order is fixed; only the skew correction is
    conditional on the detected angle.
    """

    def __init__(self, settings: Optional[Dict[str, Any]] = None, debug: bool = False):
        """
        Initialize the Image Preprocessor.

        Args:
            settings: Overrides for the default preprocessing settings
            debug: Enable debug logging
        """
        self.debug = debug
        self.logger = self._setup_logger()

        self.settings = {
            'skew_detection_threshold': 0.5,  # Minimum angle for skew correction
            'skew_search_range': 10.0,        # Candidate angles -range..+range
            'skew_search_step': 0.5,
            'max_skew_samples': 20000,        # Bounds projection work per angle
            'dark_background_threshold': 128,
            'max_luminosity_samples': 10000,
            'contrast_factor': 1.4,
            'sharpen_amount': 0.3,
            'median_radius': 1
        }
        if settings:
            self.settings.update(settings)

        self.logger.debug(f"ImagePreprocessor initialized with settings: {self.settings}")

    def _setup_logger(self) -> logging.Logger:
        """Set up logger with consistent formatting"""
        logger = logging.getLogger(f"{__name__}.ImagePreprocessor")

        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        logger.setLevel(logging.DEBUG if self.debug else logging.INFO)
        return logger

    def preprocess(self, image: np.ndarray) -> PreprocessingResult:
        """
        Run the full OCR preprocessing pipeline.

        Args:
            image: Rendered page as numpy array (grayscale, BGR or BGRA)

        Returns:
            PreprocessingResult with the binarized page
        """
        if image is None or image.size == 0:
            raise ValueError("Cannot preprocess an empty image")

        start_time = time.time()
        transformations = []
        working = image

        skew_angle = self.detect_skew(working)
        if abs(skew_angle) > self.settings['skew_detection_threshold']:
            working = self.deskew(working, skew_angle)
            transformations.append(f"deskew_{skew_angle:.1f}deg")

        inverted = self.is_dark_background(working)
        if inverted:
            working = cv2.bitwise_not(working)
            transformations.append("dark_background_inversion")

        working = self.to_grayscale(working)
        transformations.append("grayscale")

        working = self.adjust_contrast(working, self.settings['contrast_factor'])
        transformations.append("contrast")

        working = self.sharpen(working, self.settings['sharpen_amount'])
        transformations.append("sharpen")

        working = self.denoise(working, self.settings['median_radius'])
        transformations.append("median_denoise")

        threshold = self.calculate_otsu_threshold(working)
        working = self.binarize(working, threshold)
        transformations.append(f"otsu_binarization_{threshold}")

        processing_time = time.time() - start_time
        self.logger.debug(
            f"Preprocessing completed in {processing_time:.2f}s: {', '.join(transformations)}"
        )

        return PreprocessingResult(
            processed_image=working,
            original_image=image,
            transformations_applied=transformations,
            skew_angle=skew_angle,
            otsu_threshold=threshold,
            processing_time=processing_time,
            metadata={'inverted': inverted, 'shape': working.shape}
        )

    def enhance_for_ocr(self, image: np.ndarray) -> np.ndarray:
        """
        Apply the preprocessing pipeline and return only the processed image.

        Falls back to the untouched image when preprocessing fails, so OCR can
        still run on the raw render.
        """
        try:
            return self.preprocess(image).processed_image
        except (ValueError, cv2.error) as e:
            self.logger.error(f"OCR preprocessing failed, using raw image: {e}", exc_info=True)
            return image

    def detect_skew(self, image: np.ndarray) -> float:
        """
        Estimate text skew by projection-profile variance.

        Dark pixels are sampled on a stride grid, projected onto the vertical
        axis for each candidate angle, and the angle whose row histogram has
        the largest variance wins. Returned angle follows OpenCV's rotation
        convention: rotating the image by it levels the text lines.
        """
        gray = self.to_grayscale(image)
        height, width = gray.shape[:2]

        stride = max(1, int(math.ceil(math.sqrt((height * width) / self.settings['max_skew_samples']))))
        sampled = gray[::stride, ::stride]
        ys, xs = np.nonzero(sampled < 128)
        if len(xs) < 2:
            return 0.0

        xs = xs.astype(np.float64) * stride - width / 2.0
        ys = ys.astype(np.float64) * stride - height / 2.0

        search_range = self.settings['skew_search_range']
        step = self.settings['skew_search_step']
        candidates = np.arange(-search_range, search_range + step / 2.0, step)
        # Nearest-to-zero first so flat profiles keep the smallest correction
        candidates = sorted(candidates, key=lambda a: (abs(a), a))

        best_angle = 0.0
        best_variance = -1.0
        for angle in candidates:
            theta = math.radians(angle)
            projected = ys * math.cos(theta) - xs * math.sin(theta)
            bins = np.floor((projected - projected.min()) / stride).astype(np.int64)
            variance = float(np.bincount(bins).var())
            if variance > best_variance:
                best_variance = variance
                best_angle = float(angle)

        self.logger.debug(f"Detected skew {best_angle:.1f}deg from {len(xs)} sampled pixels")
        return best_angle

    def deskew(self, image: np.ndarray, angle: float) -> np.ndarray:
        """Rotate by angle degrees, growing the canvas so no content is cropped"""
        height, width = image.shape[:2]
        center = (width / 2.0, height / 2.0)

        rotation_matrix = cv2.getRotationMatrix2D(center, angle, 1.0)

        cos_angle = abs(rotation_matrix[0, 0])
        sin_angle = abs(rotation_matrix[0, 1])
        new_width = int((height * sin_angle) + (width * cos_angle))
        new_height = int((height * cos_angle) + (width * sin_angle))

        rotation_matrix[0, 2] += (new_width / 2.0) - center[0]
        rotation_matrix[1, 2] += (new_height / 2.0) - center[1]

        return cv2.warpAffine(image, rotation_matrix, (new_width, new_height),
                              flags=cv2.INTER_LINEAR, borderMode=cv2.BORDER_CONSTANT,
                              borderValue=self._background_value(image))

    def _background_value(self, image: np.ndarray) -> Union[int, tuple]:
        if image.ndim == 2:
            return int(np.median(image[::4, ::4]))
        channels = image.shape[2]
        pixels = image.reshape(-1, channels)[::16]
        return tuple(int(v) for v in np.median(pixels, axis=0))

    def mean_luminosity(self, image: np.ndarray) -> float:
        """Mean luminosity over a bounded pixel sample"""
        gray = self.to_grayscale(image).ravel()
        step = max(1, gray.size // self.settings['max_luminosity_samples'])
        return float(gray[::step].mean())

    def is_dark_background(self, image: np.ndarray) -> bool:
        return self.mean_luminosity(image) < self.settings['dark_background_threshold']

    def to_grayscale(self, image: np.ndarray) -> np.ndarray:
        """Luminosity-weighted grayscale: 0.299R + 0.587G + 0.114B"""
        if image.ndim == 2:
            return image
        if image.shape[2] == 4:
            return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)

    def adjust_contrast(self, gray: np.ndarray, factor: float) -> np.ndarray:
        """Scale around mid-grey: v * factor + 128 * (1 - factor)"""
        adjusted = gray.astype(np.float32) * factor + 128.0 * (1.0 - factor)
        return np.clip(adjusted, 0, 255).astype(np.uint8)

    def sharpen(self, gray: np.ndarray, amount: float) -> np.ndarray:
        """3x3 sharpening kernel blended with the source by amount"""
        source = gray.astype(np.float32)
        sharpened = cv2.filter2D(source, -1, SHARPEN_KERNEL)
        blended = source * (1.0 - amount) + sharpened * amount
        return np.clip(blended, 0, 255).astype(np.uint8)

    def denoise(self, gray: np.ndarray, radius: int = 1) -> np.ndarray:
        return cv2.medianBlur(gray, 2 * radius + 1)

    def calculate_otsu_threshold(self, gray: np.ndarray) -> int:
        """
        Otsu's threshold over a 256-bin histogram.

        Returns the intensity t that maximizes between-class variance for the
        split (<= t, > t). A single-intensity image has no valid split and
        yields 0.
        """
        hist = np.bincount(gray.ravel(), minlength=256).astype(np.float64)
        total = float(gray.size)
        levels = np.arange(256, dtype=np.float64)

        weight_background = np.cumsum(hist)
        weight_foreground = total - weight_background
        sum_background = np.cumsum(hist * levels)
        sum_total = sum_background[-1]

        valid = (weight_background > 0) & (weight_foreground > 0)
        if not valid.any():
            return 0

        between = np.full(256, -1.0)
        mean_background = sum_background[valid] / weight_background[valid]
        mean_foreground = (sum_total - sum_background[valid]) / weight_foreground[valid]
        between[valid] = (weight_background[valid] * weight_foreground[valid] *
                          (mean_background - mean_foreground) ** 2)

        return int(np.argmax(between))

    def binarize(self, gray: np.ndarray, threshold: Optional[int] = None) -> np.ndarray:
        if threshold is None:
            threshold = self.calculate_otsu_threshold(gray)
        return np.where(gray > threshold, 255, 0).astype(np.uint8)

    def assess_scan_quality(self, image: np.ndarray, page_width_points: float,
                            skew_angle: Optional[float] = None) -> ScanQualityReport:
        """
        Build the advisory scan-quality report for a rendered page.

        Args:
            image: Rendered page
            page_width_points: Physical page width in PDF points (1/72 inch)
            skew_angle: Previously detected skew, detected here when omitted
        """
        width_px = image.shape[1]
        estimated_dpi = width_px / (page_width_points / 72.0) if page_width_points > 0 else 0.0

        if skew_angle is None:
            skew_angle = self.detect_skew(image)

        gray = self.to_grayscale(image)
        contrast_score = min(float(np.std(gray)) / 128.0, 1.0)

        if estimated_dpi < 150 or contrast_score < 0.2:
            label = 'poor'
        elif estimated_dpi >= 200 and contrast_score >= 0.35 and abs(skew_angle) <= 2.0:
            label = 'good'
        else:
            label = 'fair'

        return ScanQualityReport(
            estimated_dpi=estimated_dpi,
            skew_angle=skew_angle,
            contrast_score=contrast_score,
            quality_label=label
        )

    def get_preprocessing_info(self) -> Dict[str, Any]:
        return {
            'opencv_version': cv2.__version__,
            'settings': dict(self.settings),
            'pipeline': ['deskew', 'invert', 'grayscale', 'contrast', 'sharpen', 'median', 'otsu']
        }
