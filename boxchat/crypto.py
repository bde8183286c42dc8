"""Cryptographic primitives for the boxchat end-to-end encrypted messenger.

This module centralises every cryptographic building block used by the project.
Message payloads are protected with the NaCl ``crypto_box`` construction
(Curve25519 key agreement, XSalsa20 stream cipher, Poly1305 authenticator).
The relay server only needs the password and session token helpers at the
bottom of the file; it never sees a private key after account creation.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from Crypto.Random import get_random_bytes
from nacl.exceptions import CryptoError
from nacl.public import Box, PrivateKey, PublicKey

from .codec import encode_bytes
from .errors import AuthenticationFailed, InvalidKeyMaterial

# ---------------------------------------------------------------------------
# Key pairs
# ---------------------------------------------------------------------------

KEY_SIZE = PublicKey.SIZE  # 32 bytes for both halves
NONCE_SIZE = Box.NONCE_SIZE  # 24 bytes
MAC_SIZE = 16  # Poly1305 tag carried by every ciphertext


@dataclass(frozen=True)
class KeyPair:
    """Raw Curve25519 key pair owned by a single identity."""

    public_key: bytes
    private_key: bytes

    def encoded(self) -> Dict[str, str]:
        return {
            "public_key": encode_bytes(self.public_key),
            "private_key": encode_bytes(self.private_key),
        }

    def __repr__(self) -> str:
        return f"KeyPair(public_key={encode_bytes(self.public_key)!r}, private_key=<hidden>)"


def generate_keypair() -> KeyPair:
    """Generate a fresh Curve25519 key pair from the operating system CSPRNG."""

    private_key = PrivateKey.generate()
    return KeyPair(public_key=bytes(private_key.public_key), private_key=bytes(private_key))


def public_key_for(private_key: bytes) -> bytes:
    """Derive the public half belonging to ``private_key``."""

    _check_length(private_key, KEY_SIZE, "private key")
    return bytes(PrivateKey(private_key).public_key)


# ---------------------------------------------------------------------------
# Nonces
# ---------------------------------------------------------------------------


def generate_nonce() -> bytes:
    """Return 24 random bytes for a single message.

    Nonces are never derived from a counter and never reused.
    """

    return get_random_bytes(NONCE_SIZE)


# ---------------------------------------------------------------------------
# Authenticated public-key encryption (NaCl box)
# ---------------------------------------------------------------------------


def _check_length(value: bytes, size: int, label: str) -> None:
    if not isinstance(value, (bytes, bytearray)):
        raise InvalidKeyMaterial(f"{label} must be bytes, got {type(value).__name__}")
    if len(value) != size:
        raise InvalidKeyMaterial(f"{label} must be {size} bytes, got {len(value)}")


def _box(public_key: bytes, private_key: bytes, nonce: bytes) -> Box:
    _check_length(public_key, KEY_SIZE, "public key")
    _check_length(private_key, KEY_SIZE, "private key")
    _check_length(nonce, NONCE_SIZE, "nonce")
    return Box(PrivateKey(bytes(private_key)), PublicKey(bytes(public_key)))


def encrypt(
    payload: bytes,
    nonce: bytes,
    recipient_public_key: bytes,
    sender_private_key: bytes,
) -> bytes:
    """Encrypt ``payload`` for the holder of ``recipient_public_key``.

    The result is the bare ciphertext (nonce not prepended) and is exactly
    ``len(payload) + MAC_SIZE`` bytes long. Identical inputs always give an
    identical ciphertext.
    """

    box = _box(recipient_public_key, sender_private_key, nonce)
    return box.encrypt(bytes(payload), bytes(nonce)).ciphertext


def decrypt(
    ciphertext: bytes,
    nonce: bytes,
    sender_public_key: bytes,
    recipient_private_key: bytes,
) -> bytes:
    """Open a ciphertext produced by :func:`encrypt`.

    The box is symmetric in its key pairing: the peer's public key combined
    with the local private key opens messages in both directions. Every
    failure, malformed inputs included, raises a bare
    :class:`AuthenticationFailed`.
    """

    try:
        box = _box(sender_public_key, recipient_private_key, nonce)
    except InvalidKeyMaterial:
        raise AuthenticationFailed() from None

    if not isinstance(ciphertext, (bytes, bytearray)) or len(ciphertext) < MAC_SIZE:
        raise AuthenticationFailed()

    try:
        return box.decrypt(bytes(ciphertext), bytes(nonce))
    except CryptoError:
        raise AuthenticationFailed() from None


# ---------------------------------------------------------------------------
# Password authentication (HMAC-SHA256), relay side only
# ---------------------------------------------------------------------------

PASSWORD_MAC_ALGO = hashlib.sha256


def hash_password(password: str, secret: bytes) -> str:
    """Produce an HMAC-SHA256 digest for ``password`` using ``secret``."""

    mac = hmac.new(secret, password.encode("utf-8"), PASSWORD_MAC_ALGO).digest()
    return base64.urlsafe_b64encode(mac).decode("utf-8")


def verify_password(password: str, digest_b64: str, secret: bytes) -> bool:
    expected = base64.urlsafe_b64decode(digest_b64)
    candidate = hmac.new(secret, password.encode("utf-8"), PASSWORD_MAC_ALGO).digest()
    return hmac.compare_digest(candidate, expected)


# ---------------------------------------------------------------------------
# Session tokens (HMAC-SHA256 protected JSON)
# ---------------------------------------------------------------------------

SESSION_TOKEN_TTL = 60 * 60  # 1 hour
_TOKEN_HEADER = base64.urlsafe_b64encode(b"BOXCHAT-HMAC").decode("utf-8")


def _sign(session_data: dict, secret: bytes) -> Tuple[str, bytes]:
    payload = json.dumps(session_data, separators=(",", ":"), sort_keys=True).encode("utf-8")
    mac = hmac.new(secret, payload, hashlib.sha256).digest()
    return base64.urlsafe_b64encode(mac).decode("utf-8"), payload


def create_session_token(identity_id: str, secret: bytes, ttl: int = SESSION_TOKEN_TTL) -> str:
    """Create a ``header.payload.signature`` token bound to ``identity_id``."""

    issued_at = int(time.time())
    session_data = {"sub": identity_id, "iat": issued_at, "exp": issued_at + ttl}
    signature, payload = _sign(session_data, secret)
    return ".".join([
        _TOKEN_HEADER,
        base64.urlsafe_b64encode(payload).decode("utf-8"),
        signature,
    ])


def verify_session_token(token: str, secret: bytes) -> Optional[dict]:
    """Return the session claims, or ``None`` when the token is forged or expired."""

    try:
        header_b64, payload_b64, signature = token.split(".")
        if header_b64 != _TOKEN_HEADER:
            return None
        payload = base64.urlsafe_b64decode(payload_b64)
        expected_sig = hmac.new(secret, payload, hashlib.sha256).digest()
        if not hmac.compare_digest(base64.urlsafe_b64decode(signature), expected_sig):
            return None
        session_data = json.loads(payload.decode("utf-8"))
        if session_data.get("exp", 0) < time.time():
            return None
        return session_data
    except (ValueError, json.JSONDecodeError, binascii.Error):
        return None


__all__ = [
    "KEY_SIZE",
    "NONCE_SIZE",
    "MAC_SIZE",
    "KeyPair",
    "generate_keypair",
    "public_key_for",
    "generate_nonce",
    "encrypt",
    "decrypt",
    "hash_password",
    "verify_password",
    "create_session_token",
    "verify_session_token",
]
