"""
Exceptions and error records shared across the pipeline.
"""

import time
from typing import Dict, Any
from dataclasses import dataclass


PDF_PROCESSING_ERROR = "PDF_PROCESSING_ERROR"
OCR_PAGE_LIMIT = "OCR_PAGE_LIMIT"
INVALID_INPUT = "INVALID_INPUT"
PROCESSING_TIMEOUT = "PROCESSING_TIMEOUT"


class ProcessingError(Exception):
    """Custom exception for processing errors"""

    def __init__(self, message: str, error_code: str = PDF_PROCESSING_ERROR,
                 recoverable: bool = False, details: Dict[str, Any] = None):
        super().__init__(message)
        self.error_code = error_code
        self.recoverable = recoverable
        self.details = details or {}
        self.timestamp = time.time()


class ProcessingTimeoutError(ProcessingError):
    """Raised after a run exceeded its time budget and the OCR worker was released"""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(message, PROCESSING_TIMEOUT, recoverable=True, details=details)


@dataclass
class ErrorDetail:
    """Serializable error entry of a ProcessingResult"""
    code: str
    message: str
    recoverable: bool = False

    @classmethod
    def from_exception(cls, error: ProcessingError) -> 'ErrorDetail':
        return cls(code=error.error_code, message=str(error), recoverable=error.recoverable)

    def to_dict(self) -> Dict[str, Any]:
        return {'code': self.code, 'message': self.message, 'recoverable': self.recoverable}
