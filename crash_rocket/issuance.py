# issuance.py
"""
Round-issuance tokens.

Format: ``<base64url(json payload)>.<signature>``. Only the payload segment
is read here; the signature belongs to the issuer and is passed through
untouched in the outcome report.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Optional, Union

from pydantic import BaseModel, Field, StrictFloat, StrictInt, field_validator
from pydantic import ValidationError as PydanticValidationError

from crash_rocket.errors import DecodeError, ValidationError
from crash_rocket.utils import b64url_to_bytes

logger = logging.getLogger("crash_rocket.issuance")

DEFAULT_VOLATILITY = 0.6


class TokenPayload(BaseModel):
    seed: str = Field(..., min_length=1)
    vol: Union[StrictFloat, StrictInt] = DEFAULT_VOLATILITY

    @field_validator("vol")
    @classmethod
    def vol_must_be_finite(cls, v: Union[float, int]) -> Union[float, int]:
        if isinstance(v, float) and not math.isfinite(v):
            raise ValueError("bad volatility")
        return v


def read_token(raw: Optional[str]) -> Optional[str]:
    """Normalize an incoming token; anything without a '.' is treated as absent."""
    if not raw:
        return None
    raw = raw.strip()
    if "." not in raw:
        return None
    return raw


def decode_token(token: str) -> TokenPayload:
    """
    Decode the payload segment of a token.

    Raises:
        DecodeError: segment is not base64url, or not a JSON object.
        ValidationError: payload is missing a seed or carries a bad volatility.
    """
    segment = token.split(".", 1)[0]
    try:
        raw = b64url_to_bytes(segment)
        data = json.loads(raw.decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        logger.warning(f"Token payload decode failed: {e}")
        raise DecodeError("Token payload is not valid base64url JSON") from e

    if not isinstance(data, dict):
        raise DecodeError("Token payload must be a JSON object")

    try:
        return TokenPayload.model_validate(data)
    except PydanticValidationError as e:
        logger.warning(f"Token payload rejected: {e.errors()}")
        raise ValidationError(f"Invalid token payload: {e.errors()[0]['msg']}") from e
