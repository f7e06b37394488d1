#!/usr/bin/env python3
"""
Statement PDF Pipeline

Single-file orchestration: load -> classify page 1 -> text layer or
render+OCR+correct per page -> bank detection -> transaction extraction ->
confidence scoring.

Page 1 decides for the whole document whether OCR is needed. The one
exception is the OCR fallback: when a run that used the text layer produces
no transactions, every extracted element is discarded and the document is
read again with OCR forced, once.

The OCR worker is released on every exit path of a run.
"""

import os
import math
import sys
import json
import time
import logging
import threading
import importlib
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import List, Dict, Optional, Any, Callable, Tuple
from dataclasses import dataclass, field

from ..config import ConfigManager, get_config_manager
from .documentModels import (
    TextElement, ParsedDocument, ParsedTransaction, ExtractionOptions,
    ExtractionOutcome, TransactionExtractor
)
from .pdfDocument import load_pdf_document, extract_text_elements, render_page
from .pageClassifier import PdfType, classify_document, is_scanned_page
from .ocrEngine import OCREngine, OCROptions, OCRPageResult, get_ocr_languages
from .ocrCorrection import correct_ocr_elements
from .imagePreprocessor import ImagePreprocessor
from .bankProfiles import ProfileRegistry, load_default_registry
from .bankDetector import BankDetector, BankDetectionResult
from .confidenceScorer import PipelineConfidence, calculate_document_confidence
from .progressChannel import ProgressChannel, ProgressEvent, print_progress
from .pipelineErrors import (
    ProcessingError, ProcessingTimeoutError, ErrorDetail,
    PDF_PROCESSING_ERROR, OCR_PAGE_LIMIT, INVALID_INPUT
)


OCR_FALLBACK_WARNING = "Text extraction returned no transactions. Used OCR fallback."
OCR_USED_WARNING = "Document was processed using OCR (scanned/image-based PDF detected)"


@dataclass
class ProcessingOptions:
    """Per-run options; None means the configured default"""
    force_ocr: bool = False
    ocr_languages: Optional[List[str]] = None
    preprocess_ocr: Optional[bool] = None
    max_pages: Optional[int] = None  # 0 = all pages
    locale: Optional[str] = None
    confidence_threshold: Optional[float] = None
    bank_profile_id: Optional[str] = None
    on_progress: Optional[Callable[[ProgressEvent], None]] = None


@dataclass
class ProcessingResult:
    """Result of processing one PDF"""
    success: bool
    document: Optional[ParsedDocument] = None
    transactions: List[ParsedTransaction] = field(default_factory=list)
    total_transactions: int = 0
    errors: List[ErrorDetail] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    processing_time_ms: float = 0.0
    stages: List[ProgressEvent] = field(default_factory=list)
    pdf_type: Optional[PdfType] = None
    bank_detection: Optional[BankDetectionResult] = None
    confidence: Optional[PipelineConfidence] = None
    ocr_used: bool = False
    ocr_fallback_used: bool = False
    page_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'document': self.document.to_dict() if self.document else None,
            'total_transactions': self.total_transactions,
            'errors': [e.to_dict() for e in self.errors],
            'warnings': list(self.warnings),
            'processing_time_ms': round(self.processing_time_ms, 2),
            'stages': [s.to_dict() for s in self.stages],
            'pdf_type': self.pdf_type.value if self.pdf_type else None,
            'bank_detection': self.bank_detection.to_dict() if self.bank_detection else None,
            'confidence': self.confidence.to_dict() if self.confidence else None,
            'ocr_used': self.ocr_used,
            'ocr_fallback_used': self.ocr_fallback_used,
            'page_count': self.page_count
        }


@dataclass
class _PageReadout:
    """Elements of a read pass plus the OCR page results it produced"""
    elements: List[TextElement]
    ocr_pages: List[OCRPageResult]
    text_layer_pages: int


class StatementPipeline:
    """
    Single-file statement processing pipeline.

    Pages are read strictly in order, one at a time; the OCR worker is never
    shared between two in-flight pages.
    """

    def __init__(self, extractor: TransactionExtractor, config_manager: Optional[ConfigManager] = None,
                 ocr_engine: Optional[OCREngine] = None, registry: Optional[ProfileRegistry] = None,
                 debug: bool = False):
        """
        Initialize the Statement Pipeline.

        Args:
            extractor: Transaction extraction collaborator
            config_manager: Configuration source (packaged defaults when None)
            ocr_engine: OCR engine (built from configuration when None)
            registry: Bank profile registry (built-in profiles when None)
            debug: Enable debug logging
        """
        self.extractor = extractor
        self.debug = debug
        self.logger = self._setup_logger()

        self.config_manager = config_manager or get_config_manager()
        self.config = self.config_manager.get_config()

        if ocr_engine is None:
            preprocessor = ImagePreprocessor(self.config.preprocessing_config, debug=debug)
            ocr_engine = OCREngine(
                preprocessor=preprocessor,
                engine=self.config.primary_tools.get('ocr_engine', 'tesseract'),
                ocr_config=self.config.ocr_config,
                debug=debug
            )
        self.ocr_engine = ocr_engine

        if registry is None:
            registry = load_default_registry(self.config.detection_config.get('extra_profile_paths'))
        self.registry = registry
        self.bank_detector = BankDetector(
            registry,
            exact_match_threshold=self.config.detection_config.get('exact_match_threshold', 0.8),
            debug=debug
        )

    def _setup_logger(self) -> logging.Logger:
        """Set up logger with consistent formatting"""
        logger = logging.getLogger(f"{__name__}.StatementPipeline")

        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        logger.setLevel(logging.DEBUG if self.debug else logging.INFO)
        return logger

    def process_pdf(self, file_bytes: bytes, options: Optional[ProcessingOptions] = None,
                    file_name: str = "document.pdf",
                    cancel_event: Optional[threading.Event] = None) -> ProcessingResult:
        """
        Process one statement PDF.

        Args:
            file_bytes: Validated PDF content
            options: Run options
            file_name: Original file name, used for bank detection and reporting
            cancel_event: When set, the run stops at its next page or extraction step

        Returns:
            ProcessingResult; failures are reported in errors, never raised
        """
        options = options or ProcessingOptions()
        start_time = time.time()
        channel = ProgressChannel()
        if options.on_progress:
            channel.subscribe(options.on_progress)

        try:
            with self.ocr_engine.session():
                result = self._process(file_bytes, options, file_name, channel, cancel_event)
        except ProcessingError as e:
            self.logger.error(f"Processing failed for {file_name}: {e}")
            channel.emit('complete', status='error', progress=100, message=str(e))
            result = ProcessingResult(success=False, errors=[ErrorDetail.from_exception(e)])
        except Exception as e:
            self.logger.error(f"Unexpected error processing {file_name}: {e}", exc_info=True)
            channel.emit('complete', status='error', progress=100, message=str(e))
            result = ProcessingResult(
                success=False,
                errors=[ErrorDetail(code=PDF_PROCESSING_ERROR, message=str(e), recoverable=False)]
            )

        result.stages = list(channel.events)
        result.processing_time_ms = (time.time() - start_time) * 1000
        return result

    def _process(self, file_bytes: bytes, options: ProcessingOptions, file_name: str,
                 channel: ProgressChannel, cancel_event: Optional[threading.Event] = None) -> ProcessingResult:
        if not file_bytes:
            raise ProcessingError("PDF buffer is empty", INVALID_INPUT, recoverable=False)

        processing = self.config.processing
        threshold = self._option(options.confidence_threshold, self.config.ocr_config, 'confidence_threshold')
        locale = options.locale or processing.get('locale', 'auto')
        languages = options.ocr_languages or get_ocr_languages(locale)

        channel.emit('upload', progress=0, message='Loading PDF...')
        try:
            document = load_pdf_document(file_bytes)
        except ValueError as e:
            raise ProcessingError(str(e), PDF_PROCESSING_ERROR, recoverable=False) from e
        channel.emit('upload', status='complete', message='PDF loaded')

        try:
            channel.emit('upload', message='Analyzing PDF type...')
            analysis = classify_document(
                document, self.config.classification.get('text_threshold', 200)
            )

            max_pages = self._option(options.max_pages, processing, 'max_pages')
            total_pages = document.page_count
            pages_to_process = min(max_pages, total_pages) if max_pages else total_pages

            force_ocr = options.force_ocr
            readout = self._read_pages(document, pages_to_process, analysis.pdf_type, force_ocr,
                                       languages, options, threshold, channel, cancel_event)
            outcome, detection = self._extract(readout.elements, file_name, locale, threshold,
                                               options, channel, cancel_event)

            warnings: List[str] = []
            ocr_fallback_used = False
            if (self._transaction_count(outcome) == 0 and readout.text_layer_pages > 0
                    and not force_ocr):
                if self._ocr_page_budget_exceeded(pages_to_process):
                    warnings.append(
                        f"Text extraction returned no transactions; OCR fallback skipped "
                        f"({pages_to_process} pages exceed the OCR page limit)"
                    )
                else:
                    self._check_cancelled(cancel_event)
                    self.logger.info(f"{file_name}: 0 transactions from text extraction, running OCR fallback")
                    channel.emit('extract', message='Text extraction failed, trying OCR fallback...')
                    readout = self._read_pages(document, pages_to_process, analysis.pdf_type, True,
                                               languages, options, threshold, channel, cancel_event)
                    outcome, detection = self._extract(readout.elements, file_name, locale, threshold,
                                                       options, channel, cancel_event)
                    ocr_fallback_used = True
                    warnings.append(OCR_FALLBACK_WARNING)
        finally:
            document.close()

        ocr_used = bool(readout.ocr_pages)
        warnings = list(outcome.warnings) + warnings
        if ocr_used and outcome.document is not None:
            warnings.append(OCR_USED_WARNING)
        for page in readout.ocr_pages:
            if page.scan_quality is not None and page.scan_quality.quality_label == 'poor':
                warnings.append(
                    f"Page {page.page_number}: poor scan quality "
                    f"(~{page.scan_quality.estimated_dpi:.0f} DPI, contrast {page.scan_quality.contrast_score:.2f})"
                )

        parsed = outcome.document
        confidence = None
        if parsed is not None:
            confidence = calculate_document_confidence(
                parsed,
                match_type=detection.match_type,
                bank_confidence=detection.confidence,
                ocr_confidence=self._ocr_confidence(readout.ocr_pages) if ocr_used else None,
                low_confidence_regions=sum(p.words_dropped for p in readout.ocr_pages)
            )

        transactions = parsed.transactions if parsed is not None else []
        channel.emit('complete', status='complete' if outcome.success else 'error',
                     message=f"Extracted {len(transactions)} transactions")

        return ProcessingResult(
            success=outcome.success,
            document=parsed,
            transactions=transactions,
            total_transactions=parsed.total_transactions if parsed is not None else 0,
            errors=[ErrorDetail(code=PDF_PROCESSING_ERROR, message=m) for m in outcome.errors],
            warnings=warnings,
            pdf_type=analysis.pdf_type,
            bank_detection=detection,
            confidence=confidence,
            ocr_used=ocr_used,
            ocr_fallback_used=ocr_fallback_used,
            page_count=total_pages
        )

    def _read_pages(self, document, pages_to_process: int, pdf_type: PdfType, force_ocr: bool,
                    languages: List[str], options: ProcessingOptions, threshold: float,
                    channel: ProgressChannel, cancel_event: Optional[threading.Event] = None) -> _PageReadout:
        """
        Read every page in order through the text layer or OCR.

        TEXT_BASED documents never touch OCR unless forced. In SCANNED
        documents only pages whose text layer is too thin are OCR'd.
        """
        min_words = self.config.classification.get('scanned_page_min_words', 10)
        render_scale = self.config.processing.get('render_scale', 3.0)
        preprocess = self._option(options.preprocess_ocr, self.config.processing, 'preprocess_ocr')

        pages = [document.load_page(i) for i in range(pages_to_process)]
        if force_ocr:
            ocr_flags = [True] * len(pages)
        elif pdf_type == PdfType.TEXT_BASED:
            ocr_flags = [False] * len(pages)
        else:
            ocr_flags = [is_scanned_page(page, min_words) for page in pages]

        ocr_count = sum(ocr_flags)
        if ocr_count and self._ocr_page_budget_exceeded(ocr_count):
            limit = self.config.processing.get('max_ocr_pages', 0)
            raise ProcessingError(
                f"Scanned PDF has {ocr_count} pages needing OCR. Maximum {limit} pages supported "
                f"for OCR. Please upload a digital PDF.",
                OCR_PAGE_LIMIT,
                recoverable=False,
                details={'ocr_pages': ocr_count, 'max_ocr_pages': limit}
            )

        elements: List[TextElement] = []
        ocr_pages: List[OCRPageResult] = []
        for index, (page, needs_ocr) in enumerate(zip(pages, ocr_flags)):
            self._check_cancelled(cancel_event)
            page_number = index + 1
            if needs_ocr:
                try:
                    image = render_page(page, render_scale)
                except Exception as e:
                    raise ProcessingError(
                        f"Failed to render page {page_number}: {e}", PDF_PROCESSING_ERROR, recoverable=False
                    ) from e

                ocr_result = self.ocr_engine.recognize(
                    image,
                    languages,
                    OCROptions(
                        confidence_threshold=threshold,
                        preprocess=preprocess,
                        coordinate_scale=render_scale,
                        page_width_points=page.rect.width
                    ),
                    page_number=page_number
                )
                ocr_pages.append(ocr_result)
                elements.extend(correct_ocr_elements(ocr_result.text_elements))
                message = f"OCR processing page {page_number}/{pages_to_process}..."
            else:
                elements.extend(extract_text_elements(page, page_number))
                message = f"Extracting text from page {page_number}/{pages_to_process}..."

            channel.emit('extract', progress=10 + round(page_number / pages_to_process * 40), message=message)

        self.logger.info(
            f"Read {pages_to_process} pages ({len(ocr_pages)} via OCR), {len(elements)} text elements"
        )
        return _PageReadout(
            elements=elements,
            ocr_pages=ocr_pages,
            text_layer_pages=pages_to_process - len(ocr_pages)
        )

    def _extract(self, elements: List[TextElement], file_name: str, locale: str, threshold: float,
                 options: ProcessingOptions, channel: ProgressChannel,
                 cancel_event: Optional[threading.Event] = None) -> Tuple[ExtractionOutcome, BankDetectionResult]:
        page_texts = self._page_texts(elements)
        if options.bank_profile_id and options.bank_profile_id in self.registry:
            detection = BankDetectionResult(
                profile=self.registry.get_by_id(options.bank_profile_id),
                confidence=1.0,
                matched_patterns=[f"preferred:{options.bank_profile_id}"],
                match_type='exact'
            )
        else:
            detection = self.bank_detector.detect_bank(page_texts, file_name)

        self._check_cancelled(cancel_event)
        channel.emit('validate', message=f"Extracting transactions ({detection.profile.name})...")
        outcome = self.extractor(
            file_name,
            elements,
            ExtractionOptions(
                locale_detection=locale,
                confidence_threshold=threshold,
                bank_profile=detection.profile
            )
        )
        self.logger.debug(f"Extractor returned {self._transaction_count(outcome)} transactions")
        return outcome, detection

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise ProcessingTimeoutError("Processing was cancelled after exceeding its time budget")

    def _ocr_page_budget_exceeded(self, ocr_pages: int) -> bool:
        limit = self.config.processing.get('max_ocr_pages', 0)
        return bool(limit) and ocr_pages > limit

    @staticmethod
    def _page_texts(elements: List[TextElement]) -> List[str]:
        by_page: Dict[int, List[str]] = {}
        for element in elements:
            by_page.setdefault(element.page_number, []).append(element.text)
        return [' '.join(by_page[number]) for number in sorted(by_page)]

    @staticmethod
    def _transaction_count(outcome: ExtractionOutcome) -> int:
        return len(outcome.document.transactions) if outcome.document is not None else 0

    @staticmethod
    def _ocr_confidence(ocr_pages: List[OCRPageResult]) -> float:
        scored = [p.overall_confidence for p in ocr_pages if p.text_elements]
        return sum(scored) / len(scored) if scored else 0.0

    @staticmethod
    def _option(value, section: Dict[str, Any], key: str):
        return section.get(key) if value is None else value

    def detect_scanned_pages(self, file_bytes: bytes) -> Dict[str, Any]:
        """Split the page numbers of a PDF into scanned and digital pages."""
        min_words = self.config.classification.get('scanned_page_min_words', 10)
        document = load_pdf_document(file_bytes)
        try:
            scanned, digital = [], []
            for index in range(document.page_count):
                target = scanned if is_scanned_page(document.load_page(index), min_words) else digital
                target.append(index + 1)
            return {'total_pages': document.page_count, 'scanned_pages': scanned, 'digital_pages': digital}
        finally:
            document.close()


def estimate_processing_time(total_pages: int, scanned_pages: int) -> Dict[str, int]:
    """Rough bounds in seconds: ~0.2 s per digital page, 2-5 s per scanned page."""
    digital_time = (total_pages - scanned_pages) * 0.2
    return {
        'min_seconds': math.ceil(digital_time + scanned_pages * 2),
        'max_seconds': math.ceil(digital_time + scanned_pages * 5)
    }


def run_with_timeout(pipeline: StatementPipeline, file_bytes: bytes,
                     options: Optional[ProcessingOptions] = None, timeout_seconds: Optional[float] = None,
                     file_name: str = "document.pdf") -> ProcessingResult:
    """
    Race a run against a timeout.

    On timeout the abandoned run is cancelled, so it stops at its next page
    or extraction step without creating another OCR worker.

    Raises:
        ProcessingTimeoutError: after the OCR worker has been released
    """
    if timeout_seconds is None:
        timeout_seconds = pipeline.config.processing.get('timeout_seconds', 120)

    cancel_event = threading.Event()
    executor = ThreadPoolExecutor(max_workers=1)
    try:
        future = executor.submit(pipeline.process_pdf, file_bytes, options, file_name, cancel_event)
        try:
            return future.result(timeout=timeout_seconds)
        except FutureTimeoutError:
            pipeline.logger.error(f"Processing {file_name} exceeded {timeout_seconds}s, releasing OCR worker")
            cancel_event.set()
            pipeline.ocr_engine.terminate_worker()
            raise ProcessingTimeoutError(
                f"Processing timed out after {timeout_seconds} seconds",
                details={'file_name': file_name, 'timeout_seconds': timeout_seconds}
            )
    finally:
        executor.shutdown(wait=False)


def load_extractor(reference: str) -> TransactionExtractor:
    """Resolve a 'module:function' reference to the extraction collaborator."""
    module_name, _, attribute = reference.partition(':')
    if not module_name or not attribute:
        raise ValueError(f"Extractor must be given as module:function, got '{reference}'")
    return getattr(importlib.import_module(module_name), attribute)


def process_pdf(file_bytes: bytes, extractor: TransactionExtractor,
                options: Optional[ProcessingOptions] = None, file_name: str = "document.pdf",
                debug: bool = False) -> ProcessingResult:
    """Convenience wrapper: build a pipeline and process one PDF."""
    return StatementPipeline(extractor, debug=debug).process_pdf(file_bytes, options, file_name)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Bank Statement PDF Pipeline")
    parser.add_argument('files', nargs='+', help='PDF files to process (several files are merged)')
    parser.add_argument('--extractor', required=True, help='Transaction extractor as module:function')
    parser.add_argument('--config', type=str, help='Path to configuration file')
    parser.add_argument('--force-ocr', action='store_true', help='OCR every page')
    parser.add_argument('--languages', nargs='+', help='OCR languages, e.g. eng spa')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')

    args = parser.parse_args()

    try:
        config_manager = ConfigManager(args.config) if args.config else None
        pipeline = StatementPipeline(load_extractor(args.extractor), config_manager, debug=args.debug)
        run_options = ProcessingOptions(
            force_ocr=args.force_ocr,
            ocr_languages=args.languages,
            on_progress=print_progress
        )

        if len(args.files) == 1:
            with open(args.files[0], 'rb') as f:
                result = run_with_timeout(pipeline, f.read(), run_options,
                                          file_name=os.path.basename(args.files[0]))
            output = result.to_dict()
        else:
            from .batchProcessor import BatchFile, BatchProcessingOptions, process_batch_pdfs

            batch_files = []
            for path in args.files:
                with open(path, 'rb') as f:
                    batch_files.append(BatchFile(name=os.path.basename(path), content=f.read()))
            output = process_batch_pdfs(
                batch_files,
                BatchProcessingOptions(processing=run_options),
                pipeline=pipeline
            ).to_dict()

        print("___RESULT_START___")
        print(json.dumps(output, ensure_ascii=False, indent=2))
        print("___RESULT_END___")

    except Exception as e:
        error_result = {
            "success": False,
            "errors": [{"code": getattr(e, 'error_code', PDF_PROCESSING_ERROR), "message": str(e)}],
            "transactions": [],
            "warnings": []
        }
        print("___RESULT_START___")
        print(json.dumps(error_result, ensure_ascii=False, indent=2))
        print("___RESULT_END___")
        sys.exit(1)
