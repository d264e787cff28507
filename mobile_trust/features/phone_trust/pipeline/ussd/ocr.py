"""
OCR port and its Tesseract adapter.

The analyzer only needs (text, confidence) back from an image; anything
that can provide that implements OcrEngine.
"""

from __future__ import annotations

import asyncio
import functools
import io
from abc import ABC, abstractmethod
from dataclasses import dataclass

import pytesseract
from PIL import Image, UnidentifiedImageError

from mobile_trust.config import settings
from mobile_trust.infrastructure.observability.logging import get_logger

from ...errors import InvalidEvidenceError, OcrUnavailableError

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class OcrResult:
    text: str
    confidence: float  # 0-100


class OcrEngine(ABC):
    @abstractmethod
    async def recognize(self, image: bytes, language_hints: str) -> OcrResult:
        """Return recognized text and a 0-100 mean confidence."""


class TesseractOcrEngine(OcrEngine):
    """Runs pytesseract in the default executor so the event loop stays free."""

    def __init__(self, tesseract_cmd: str | None = None):
        tesseract_cmd = tesseract_cmd or settings.TESSERACT_CMD
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    async def recognize(self, image: bytes, language_hints: str) -> OcrResult:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                None, functools.partial(self._recognize_sync, image, language_hints)
            )
        except UnidentifiedImageError as e:
            raise InvalidEvidenceError("Screenshot is not a readable image") from e
        except Image.DecompressionBombError as e:
            logger.warning("Screenshot rejected as decompression bomb", error=str(e))
            raise InvalidEvidenceError("Screenshot dimensions are too large") from e
        except pytesseract.TesseractNotFoundError as e:
            logger.error("Tesseract binary not found", error=str(e))
            raise OcrUnavailableError("OCR engine is not installed", recoverable=False) from e
        except pytesseract.TesseractError as e:
            logger.error("Tesseract failed", status=e.status, error=e.message)
            raise OcrUnavailableError(f"OCR engine failed: {e.message}", recoverable=False) from e

    @staticmethod
    def _recognize_sync(image: bytes, language_hints: str) -> OcrResult:
        with Image.open(io.BytesIO(image)) as picture:
            picture.load()
            data = pytesseract.image_to_data(
                picture.convert("RGB"),
                lang=language_hints,
                output_type=pytesseract.Output.DICT,
            )
        return ocr_result_from_data(data)


def ocr_result_from_data(data: dict[str, list]) -> OcrResult:
    """Rebuild line-broken text and the mean word confidence from image_to_data output."""
    lines: dict[tuple[int, int, int], list[str]] = {}
    confidences: list[float] = []

    for index, word in enumerate(data.get("text", [])):
        word = (word or "").strip()
        if not word:
            continue
        key = (data["block_num"][index], data["par_num"][index], data["line_num"][index])
        lines.setdefault(key, []).append(word)

        confidence = float(data["conf"][index])
        if confidence >= 0:
            confidences.append(confidence)

    text = "\n".join(" ".join(words) for _, words in sorted(lines.items()))
    mean_confidence = sum(confidences) / len(confidences) if confidences else 0.0
    return OcrResult(text=text, confidence=round(mean_confidence, 2))
