"""
Proof-of-subscription verification.

Reads a submitted screenshot with OCR and decides whether it shows the
expected channel handle next to the word "subscribed".
"""

from .engine import (
    VerificationEngine,
    VerificationResult,
    TextExtractor,
    check,
    extract_handle,
    is_channel_link,
    normalize,
    tokenize,
)
from .ocr import TesseractExtractor

__all__ = [
    "VerificationEngine",
    "VerificationResult",
    "TextExtractor",
    "TesseractExtractor",
    "check",
    "extract_handle",
    "is_channel_link",
    "normalize",
    "tokenize",
]
