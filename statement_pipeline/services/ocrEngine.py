#!/usr/bin/env python3
"""
OCR Engine

Converts a rendered page image into confidence-scored text elements. The
recognition worker is Tesseract (through pytesseract) configured for a uniform
block of text with preserved inter-word spacing, so column gaps in statement
tables survive as runs of spaces. EasyOCR is available as the configured
fallback engine.

Words below the confidence threshold are dropped from the output entirely.
"""

import logging
import time
from typing import List, Dict, Optional, Any, Callable
from dataclasses import dataclass, field
import numpy as np
import cv2
import pytesseract
from PIL import Image

from .documentModels import TextElement, BoundingBox, SOURCE_OCR
from .imagePreprocessor import ImagePreprocessor, ScanQualityReport
from .resourceManager import OCRWorkerManager


# Locale -> Tesseract language codes
LOCALE_LANGUAGE_MAP: Dict[str, List[str]] = {
    'en-US': ['eng'],
    'en-GB': ['eng'],
    'en-IN': ['eng'],
    'en-AU': ['eng'],
    'en-CA': ['eng'],
    'es': ['spa'],
    'fr': ['fra'],
    'de': ['deu'],
    'ar': ['ara', 'eng'],
    'hi': ['hin', 'eng'],
    'zh-CN': ['chi_sim'],
    'ja': ['jpn'],
    'auto': ['eng'],
}

# Tesseract -> EasyOCR language codes
EASYOCR_LANGUAGE_MAP: Dict[str, str] = {
    'eng': 'en',
    'spa': 'es',
    'fra': 'fr',
    'deu': 'de',
    'ara': 'ar',
    'hin': 'hi',
    'chi_sim': 'ch_sim',
    'jpn': 'ja',
}


def get_ocr_languages(locale: Optional[str]) -> List[str]:
    """Map a statement locale to Tesseract language codes (English when unknown)."""
    if not locale:
        return ['eng']
    if locale in LOCALE_LANGUAGE_MAP:
        return list(LOCALE_LANGUAGE_MAP[locale])
    if locale.startswith('en'):
        return ['eng']
    base = locale.split('-')[0]
    return list(LOCALE_LANGUAGE_MAP.get(base, ['eng']))


@dataclass
class OCRWord:
    """A recognized word in image pixel coordinates"""
    text: str
    x: float
    y: float
    width: float
    height: float
    confidence: float  # 0-1


@dataclass
class OCROptions:
    """Per-call recognition options"""
    confidence_threshold: float = 0.6
    preprocess: bool = True
    coordinate_scale: float = 1.0  # pixels per page unit of the rendered image
    page_width_points: Optional[float] = None


@dataclass
class OCRPageResult:
    """Recognition result for one page"""
    page_number: int
    text_elements: List[TextElement]
    overall_confidence: float  # average confidence of kept words, 0 when none
    processing_time: float     # milliseconds
    words_recognized: int = 0
    words_dropped: int = 0
    scan_quality: Optional[ScanQualityReport] = None
    transformations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'page_number': self.page_number,
            'text_elements': len(self.text_elements),
            'overall_confidence': self.overall_confidence,
            'processing_time': self.processing_time,
            'words_recognized': self.words_recognized,
            'words_dropped': self.words_dropped,
            'scan_quality': self.scan_quality.to_dict() if self.scan_quality else None,
            'transformations': self.transformations
        }


class TesseractWorker:
    """Tesseract recognition worker bound to one language key"""

    def __init__(self, language_key: str, page_segmentation_mode: int = 6,
                 preserve_interword_spaces: bool = True):
        self.language_key = language_key
        self.config = f'--oem 3 --psm {page_segmentation_mode}'
        if preserve_interword_spaces:
            self.config += ' -c preserve_interword_spaces=1'
        self.terminated = False

    def read_words(self, image: np.ndarray) -> List[OCRWord]:
        if self.terminated:
            raise RuntimeError(f"OCR worker '{self.language_key}' has been terminated")

        if image.ndim == 3:
            pil_image = Image.fromarray(cv2.cvtColor(image, cv2.COLOR_BGR2RGB))
        else:
            pil_image = Image.fromarray(image)

        data = pytesseract.image_to_data(
            pil_image,
            lang=self.language_key,
            config=self.config,
            output_type=pytesseract.Output.DICT
        )

        words = []
        for i, text in enumerate(data['text']):
            text = (text or '').strip()
            confidence = float(data['conf'][i])
            if not text or confidence < 0:
                continue
            words.append(OCRWord(
                text=text,
                x=float(data['left'][i]),
                y=float(data['top'][i]),
                width=float(data['width'][i]),
                height=float(data['height'][i]),
                confidence=confidence / 100.0
            ))
        return words

    def terminate(self) -> None:
        self.terminated = True


class EasyOCRWorker:
    """EasyOCR recognition worker bound to one language key"""

    def __init__(self, language_key: str, gpu: bool = False):
        import easyocr

        self.language_key = language_key
        languages = [EASYOCR_LANGUAGE_MAP.get(code, code) for code in language_key.split('+')]
        self.reader = easyocr.Reader(languages, gpu=gpu, verbose=False)

    def read_words(self, image: np.ndarray) -> List[OCRWord]:
        if self.reader is None:
            raise RuntimeError(f"OCR worker '{self.language_key}' has been terminated")

        words = []
        for bbox, text, confidence in self.reader.readtext(image):
            text = text.strip()
            if not text:
                continue
            xs = [point[0] for point in bbox]
            ys = [point[1] for point in bbox]
            words.append(OCRWord(
                text=text,
                x=float(min(xs)),
                y=float(min(ys)),
                width=float(max(xs) - min(xs)),
                height=float(max(ys) - min(ys)),
                confidence=float(confidence)
            ))
        return words

    def terminate(self) -> None:
        self.reader = None


def create_worker_factory(engine: str = 'tesseract',
                          ocr_config: Optional[Dict[str, Any]] = None) -> Callable[[str], Any]:
    """
    Build the worker factory handed to OCRWorkerManager.

    Args:
        engine: 'tesseract' or 'easyocr'
        ocr_config: The ocr_config section of the pipeline configuration
    """
    ocr_config = ocr_config or {}

    if engine == 'tesseract':
        return lambda key: TesseractWorker(
            key,
            page_segmentation_mode=ocr_config.get('page_segmentation_mode', 6),
            preserve_interword_spaces=ocr_config.get('preserve_interword_spaces', True)
        )
    if engine == 'easyocr':
        return lambda key: EasyOCRWorker(key, gpu=ocr_config.get('gpu', False))

    raise ValueError(f"Unsupported OCR engine: {engine}")


class OCREngine:
    """
    Page recognition on top of the managed OCR worker.

    The engine never keeps a worker of its own; every recognize() call asks the
    manager, which reuses the worker while the language set is unchanged.
    """

    def __init__(self, worker_manager: Optional[OCRWorkerManager] = None,
                 preprocessor: Optional[ImagePreprocessor] = None,
                 engine: str = 'tesseract', ocr_config: Optional[Dict[str, Any]] = None,
                 debug: bool = False):
        """
        Initialize the OCR Engine.

        Args:
            worker_manager: Worker lifecycle owner (built from engine when None)
            preprocessor: Image preprocessor applied before recognition
            engine: OCR engine name used when no manager is given
            ocr_config: The ocr_config section of the pipeline configuration
            debug: Enable debug logging
        """
        self.debug = debug
        self.logger = self._setup_logger()
        self.ocr_config = ocr_config or {}
        self.worker_manager = worker_manager or OCRWorkerManager(
            create_worker_factory(engine, self.ocr_config), debug=debug
        )
        self.preprocessor = preprocessor or ImagePreprocessor(debug=debug)

    def _setup_logger(self) -> logging.Logger:
        """Set up logger with consistent formatting"""
        logger = logging.getLogger(f"{__name__}.OCREngine")

        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        logger.setLevel(logging.DEBUG if self.debug else logging.INFO)
        return logger

    def recognize(self, image: np.ndarray, languages: List[str],
                  options: Optional[OCROptions] = None, page_number: int = 1) -> OCRPageResult:
        """
        Recognize one rendered page.

        Args:
            image: Rendered page (grayscale or BGR)
            languages: Tesseract language codes
            options: Threshold, preprocessing and coordinate scaling
            page_number: 1-based page number stamped on the elements

        Returns:
            OCRPageResult containing only words at or above the threshold
        """
        options = options or OCROptions(
            confidence_threshold=self.ocr_config.get('confidence_threshold', 0.6)
        )
        start_time = time.time()

        scan_quality = None
        transformations: List[str] = []
        prepared = image
        if options.preprocess:
            preprocessing = self.preprocessor.preprocess(image)
            prepared = preprocessing.processed_image
            transformations = preprocessing.transformations_applied
            if options.page_width_points:
                scan_quality = self.preprocessor.assess_scan_quality(
                    image, options.page_width_points, skew_angle=preprocessing.skew_angle
                )

        worker = self.worker_manager.get_worker(languages)
        words = worker.read_words(prepared)

        scale = options.coordinate_scale or 1.0
        elements = []
        confidences = []
        for word in words:
            if word.confidence < options.confidence_threshold:
                continue
            confidences.append(word.confidence)
            elements.append(TextElement(
                text=word.text,
                bounding_box=BoundingBox(
                    x=word.x / scale,
                    y=word.y / scale,
                    width=word.width / scale,
                    height=word.height / scale
                ),
                page_number=page_number,
                confidence=word.confidence,
                source=SOURCE_OCR
            ))

        overall_confidence = sum(confidences) / len(confidences) if confidences else 0.0
        processing_time = (time.time() - start_time) * 1000

        self.logger.debug(
            f"Page {page_number}: kept {len(elements)}/{len(words)} words, "
            f"confidence {overall_confidence:.2f}, {processing_time:.0f}ms"
        )

        return OCRPageResult(
            page_number=page_number,
            text_elements=elements,
            overall_confidence=overall_confidence,
            processing_time=processing_time,
            words_recognized=len(words),
            words_dropped=len(words) - len(elements),
            scan_quality=scan_quality,
            transformations=transformations
        )

    def session(self):
        """Scope a processing run; see OCRWorkerManager.session."""
        return self.worker_manager.session()

    def terminate_worker(self) -> None:
        self.worker_manager.terminate_worker()

    def get_engine_info(self) -> Dict[str, Any]:
        return {
            'active_languages': self.worker_manager.active_key,
            'workers_created': self.worker_manager.workers_created,
            'workers_terminated': self.worker_manager.workers_terminated,
            'confidence_threshold': self.ocr_config.get('confidence_threshold', 0.6),
            'preprocessing': self.preprocessor.get_preprocessing_info()
        }
