"""
Fingerprinting and masking helpers for evidence that must not be stored
or logged in clear.

Screenshots are never persisted; only a digest of their leading bytes is
kept so repeated uploads of the same file can be spotted.
"""

from __future__ import annotations

import hashlib
import re

from mobile_trust.config import settings

__all__ = [
    "fingerprint_image",
    "mask_phone_number",
]

_NON_DIGIT = re.compile(r"\D")


def fingerprint_image(image: bytes, *, prefix_bytes: int | None = None) -> str:
    """
    SHA-256 hex digest (64 chars) of the first ``prefix_bytes`` of an image.

    Args:
        image: Raw uploaded bytes.
        prefix_bytes: How many leading bytes to digest. Defaults to
            settings.IMAGE_HASH_PREFIX_BYTES.
    """
    if prefix_bytes is None:
        prefix_bytes = settings.IMAGE_HASH_PREFIX_BYTES
    return hashlib.sha256(bytes(image[:prefix_bytes])).hexdigest()


def mask_phone_number(phone_number: str | None) -> str:
    """Keep only the last four digits, e.g. +2250708091011 -> *********1011."""
    digits = _NON_DIGIT.sub("", phone_number or "")
    if len(digits) <= 4:
        return "*" * len(digits)
    return "*" * (len(digits) - 4) + digits[-4:]
