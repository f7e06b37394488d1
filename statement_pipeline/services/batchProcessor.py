#!/usr/bin/env python3
"""
Batch Processor

Runs the single-file pipeline over several statements one file at a time,
keeps a status record per file and merges every successful document. A bad
file never stops the batch, and a batch with no successful file still returns
a complete (empty) result.
"""

import time
import logging
from typing import List, Dict, Optional, Any, Callable, Tuple
from dataclasses import dataclass, field

from .documentModels import ParsedDocument, TransactionExtractor
from .documentMerger import DocumentMerger, MergeOptions, MergeResult
from .duplicateDetector import DuplicateGroup
from .pdfPipeline import StatementPipeline, ProcessingOptions, ProcessingResult
from .pipelineErrors import ProcessingError, ErrorDetail, PDF_PROCESSING_ERROR
from .progressChannel import ProgressEvent, get_stage_progress
from .resourceManager import get_memory_usage


logger = logging.getLogger(__name__)

PDF_MAGIC = b'%PDF'
NO_SUCCESS_ERROR = 'No files were successfully processed'


@dataclass
class BatchFile:
    name: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class BatchFileStatus:
    file_name: str
    status: str = 'pending'  # 'pending', 'processing', 'complete', 'error'
    progress: int = 0
    page_count: int = 0
    transaction_count: int = 0
    error: Optional[str] = None
    processing_time_ms: float = 0.0
    memory_mb: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class BatchProcessingOptions:
    processing: ProcessingOptions = field(default_factory=ProcessingOptions)
    merge: Optional[MergeOptions] = None  # configured merge options when None
    on_file_progress: Optional[Callable[[int, str, int, str], None]] = None
    on_file_complete: Optional[Callable[[int, str, ProcessingResult], None]] = None
    on_file_error: Optional[Callable[[int, str, Exception], None]] = None


@dataclass
class BatchProcessingResult:
    success: bool
    merged_document: Optional[ParsedDocument]
    file_results: List[BatchFileStatus]
    individual_results: List[ProcessingResult]
    total_transactions: int = 0
    total_pages: int = 0
    duplicate_groups: List[DuplicateGroup] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    processing_time_ms: float = 0.0
    merge_result: Optional[MergeResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'merged_document': self.merged_document.to_dict() if self.merged_document else None,
            'file_results': [s.to_dict() for s in self.file_results],
            'individual_results': [r.to_dict() for r in self.individual_results],
            'total_transactions': self.total_transactions,
            'total_pages': self.total_pages,
            'duplicate_groups': [g.to_dict() for g in self.duplicate_groups],
            'warnings': list(self.warnings),
            'errors': list(self.errors),
            'processing_time_ms': round(self.processing_time_ms, 2)
        }


def _file_options(base: ProcessingOptions, on_progress: Callable[[ProgressEvent], None]) -> ProcessingOptions:
    return ProcessingOptions(
        force_ocr=base.force_ocr,
        ocr_languages=base.ocr_languages,
        preprocess_ocr=base.preprocess_ocr,
        max_pages=base.max_pages,
        locale=base.locale,
        confidence_threshold=base.confidence_threshold,
        bank_profile_id=base.bank_profile_id,
        on_progress=on_progress
    )


def _notify(callback: Optional[Callable[..., None]], *args) -> None:
    if callback is None:
        return
    try:
        callback(*args)
    except Exception as e:
        # A failing listener must not abort the remaining files
        logger.warning(f"Batch callback failed: {e}")


def process_batch_pdfs(files: List[BatchFile], options: Optional[BatchProcessingOptions] = None,
                       pipeline: Optional[StatementPipeline] = None,
                       extractor: Optional[TransactionExtractor] = None) -> BatchProcessingResult:
    """
    Process statements sequentially and merge the successful ones.

    Args:
        files: Statements in upload order
        options: Per-file processing options, merge options and callbacks
        pipeline: Pipeline to run each file through
        extractor: Transaction extractor, used to build a pipeline when none is given

    Returns:
        BatchProcessingResult
    """
    if pipeline is None:
        if extractor is None:
            raise ValueError("process_batch_pdfs needs a pipeline or an extractor")
        pipeline = StatementPipeline(extractor)

    options = options or BatchProcessingOptions()
    start_time = time.time()

    statuses = [BatchFileStatus(file_name=f.name) for f in files]
    results: List[ProcessingResult] = []
    warnings: List[str] = []
    errors: List[str] = []

    for index, batch_file in enumerate(files):
        status = statuses[index]
        file_start = time.time()
        status.status = 'processing'
        _notify(options.on_file_progress, index, batch_file.name, 0, 'Starting...')

        def on_progress(event: ProgressEvent, index=index, status=status, name=batch_file.name):
            status.progress = get_stage_progress(event.stage)
            _notify(options.on_file_progress, index, name, status.progress, event.stage)

        try:
            result = pipeline.process_pdf(
                batch_file.content,
                _file_options(options.processing, on_progress),
                batch_file.name
            )
        except Exception as e:
            logger.error(f"{batch_file.name}: unexpected failure: {e}", exc_info=True)
            result = ProcessingResult(
                success=False,
                errors=[ErrorDetail(code=PDF_PROCESSING_ERROR, message=str(e))]
            )

        status.processing_time_ms = (time.time() - file_start) * 1000
        status.memory_mb = get_memory_usage().process_memory
        results.append(result)

        for warning in result.warnings:
            warnings.append(f"{batch_file.name}: {warning}")

        if result.success and result.document is not None:
            status.status = 'complete'
            status.progress = 100
            status.page_count = result.document.total_pages
            status.transaction_count = result.document.total_transactions
            logger.info(f"{batch_file.name}: {status.transaction_count} transactions")
            _notify(options.on_file_complete, index, batch_file.name, result)
        else:
            message = '; '.join(e.message for e in result.errors) or 'Unknown error'
            status.status = 'error'
            status.error = message
            errors.append(f"{batch_file.name}: {message}")
            logger.warning(f"{batch_file.name}: {message}")
            code = result.errors[0].code if result.errors else PDF_PROCESSING_ERROR
            _notify(options.on_file_error, index, batch_file.name, ProcessingError(message, code))

    merge_options = options.merge or MergeOptions.from_config(
        pipeline.config.merge_config, pipeline.config.duplicate_config
    )
    merger = DocumentMerger(merge_options, debug=pipeline.debug)

    successful = [(f.name, r.document) for f, r in zip(files, results) if r.success and r.document is not None]
    if not successful:
        errors.append(NO_SUCCESS_ERROR)
        merge_result = merger.merge_documents([], [])
        return BatchProcessingResult(
            success=False,
            merged_document=merge_result.document,
            file_results=statuses,
            individual_results=results,
            warnings=warnings,
            errors=errors,
            processing_time_ms=(time.time() - start_time) * 1000,
            merge_result=merge_result
        )

    merge_result = merger.merge_documents(
        [document for _, document in successful],
        [name for name, _ in successful]
    )
    warnings.extend(merge_result.warnings)
    merged = merge_result.document

    return BatchProcessingResult(
        success=True,
        merged_document=merged,
        file_results=statuses,
        individual_results=results,
        total_transactions=merged.total_transactions,
        total_pages=merged.total_pages,
        duplicate_groups=merge_result.duplicates.duplicate_groups,
        warnings=warnings,
        errors=errors,
        processing_time_ms=(time.time() - start_time) * 1000,
        merge_result=merge_result
    )


def validate_batch_files(files: List[BatchFile], max_files: int = 20,
                         max_file_size_mb: float = 50) -> Tuple[bool, List[str]]:
    """Check file count, PDF signature and per-file size before a batch starts."""
    errors = []

    if not files:
        errors.append('No files selected')
    if len(files) > max_files:
        errors.append(f"Maximum {max_files} files allowed. You selected {len(files)}.")

    max_bytes = max_file_size_mb * 1024 * 1024
    for number, batch_file in enumerate(files, start=1):
        if not batch_file.content.startswith(PDF_MAGIC):
            errors.append(f"File {number} ({batch_file.name}) is not a PDF")
        if batch_file.size > max_bytes:
            size_mb = round(batch_file.size / (1024 * 1024))
            errors.append(f"File {number} ({batch_file.name}) is {size_mb}MB. Maximum is {max_file_size_mb:g}MB.")

    return not errors, errors


def estimate_batch_time(files: List[BatchFile]) -> Dict[str, int]:
    """Seconds: 2-5 s per MB, with at least 5 (min) / 10 (max) seconds per file."""
    size_mb = sum(f.size for f in files) / (1024 * 1024)
    return {
        'min_seconds': max(5 * len(files), round(size_mb * 2)),
        'max_seconds': max(10 * len(files), round(size_mb * 5))
    }
