"""Wire encoding for binary key, nonce and ciphertext material.

Every binary field that crosses JSON (API bodies, the local key store,
exported key files) is standard padded Base64.
"""

from __future__ import annotations

import base64
import binascii

from .errors import MalformedEncoding


def encode_bytes(data: bytes) -> str:
    """Return the padded Base64 text for ``data``."""

    return base64.b64encode(bytes(data)).decode("ascii")


def decode_bytes(text: str) -> bytes:
    """Inverse of :func:`encode_bytes`.

    Only canonical output of :func:`encode_bytes` is accepted. Anything else
    raises :class:`MalformedEncoding`.
    """

    if not isinstance(text, str):
        raise MalformedEncoding(f"expected text, got {type(text).__name__}")
    try:
        raw = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedEncoding("not valid base64 text") from exc
    if encode_bytes(raw) != text:
        raise MalformedEncoding("non-canonical base64 text")
    return raw


__all__ = ["encode_bytes", "decode_bytes"]
