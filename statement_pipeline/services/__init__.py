"""
Pipeline services for statement processing.
"""

from .pdfPipeline import StatementPipeline, ProcessingOptions, ProcessingResult, process_pdf
from .batchProcessor import BatchFile, BatchProcessingOptions, BatchProcessingResult, process_batch_pdfs
from .documentMerger import MergeOptions, MergeResult, merge_documents
from .bankDetector import BankDetector, BankDetectionResult
from .bankProfiles import ProfileRegistry, load_default_registry

__all__ = [
    'StatementPipeline',
    'ProcessingOptions',
    'ProcessingResult',
    'process_pdf',
    'BatchFile',
    'BatchProcessingOptions',
    'BatchProcessingResult',
    'process_batch_pdfs',
    'MergeOptions',
    'MergeResult',
    'merge_documents',
    'BankDetector',
    'BankDetectionResult',
    'ProfileRegistry',
    'load_default_registry'
]
