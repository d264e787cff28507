"""
USSD screenshot analysis package.

OCR port, Tesseract adapter and the heuristics that read a Mobile Money
profile screenshot.
"""

from .analyzer import UssdScreenshotAnalyzer
from .models import CertificationDecision, NameMatchCheck, UssdScreenshotResult
from .ocr import OcrEngine, OcrResult, TesseractOcrEngine

__all__ = [
    "CertificationDecision",
    "NameMatchCheck",
    "OcrEngine",
    "OcrResult",
    "TesseractOcrEngine",
    "UssdScreenshotAnalyzer",
    "UssdScreenshotResult",
]
