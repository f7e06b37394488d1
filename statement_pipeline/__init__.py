"""
Bank statement PDF pipeline: classification, OCR, bank detection,
duplicate detection, multi-file merge and confidence scoring.
"""

__version__ = "0.1.0"
