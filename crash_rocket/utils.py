# utils.py
"""
Utility functions for the Crash Rocket game

Includes:
- Cryptographic seed & hashing helpers
- base64url decoding for issuance tokens
- Player input parsing (Decimal based)
- Number formatting
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import secrets
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Optional, Union

logger = logging.getLogger("crash_rocket.utils")

NumberType = Union[float, Decimal, int, str]

CENTS = Decimal("0.01")

# =========================
# RANDOM & HASHING
# =========================

def generate_seed(length: int = 16) -> str:
    """
    Generate a cryptographically secure round seed (hex).
    16 bytes -> 32 hex characters.
    """
    return secrets.token_hex(length)


def sha256_digest(value: str) -> bytes:
    """SHA-256 of a UTF-8 encoded string, raw bytes."""
    return hashlib.sha256(value.encode("utf-8")).digest()


def b64url_to_bytes(segment: str) -> bytes:
    """
    Decode a base64url segment, restoring any stripped '=' padding.

    Raises:
        ValueError: if the segment is not valid base64url.
    """
    pad = "" if len(segment) % 4 == 0 else "=" * (4 - len(segment) % 4)
    try:
        return base64.urlsafe_b64decode(segment + pad)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"invalid base64url segment: {e}") from e


# =========================
# INPUT PARSING
# =========================

def parse_money_like(value: Optional[NumberType]) -> Optional[Decimal]:
    """
    Parse a user supplied amount ("10", " 2,5 ", 3.25).

    Returns None for blank or non-numeric input, and for non-finite values.
    """
    if value is None:
        return None
    text = str(value).strip().replace(",", ".", 1)
    if not text:
        return None
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        logger.debug(f"Unparseable amount input: {value!r}")
        return None
    if not parsed.is_finite():
        return None
    return parsed


# =========================
# FORMATTING
# =========================

def format_multiplier(mult: NumberType) -> str:
    """
    Format multiplier with 2 decimals (e.g., '2.00×').
    Truncates to hundredths; a displayed multiplier never rounds up.
    """
    try:
        val = Decimal(str(mult)).quantize(CENTS, rounding=ROUND_DOWN)
        return f"{val}×"
    except (ValueError, TypeError, InvalidOperation):
        return "1.00×"


# =========================
# MISC HELPERS
# =========================

def clamp(value: int, min_value: int, max_value: int) -> int:
    """Clamp an integer between min and max."""
    return max(min_value, min(value, max_value))
