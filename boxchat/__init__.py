"""End-to-end encrypted messaging core built on the NaCl box construction."""

from .crypto import KeyPair, decrypt, encrypt, generate_keypair, generate_nonce
from .errors import (
    AuthenticationFailed,
    E2EEError,
    InvalidKeyFile,
    InvalidKeyMaterial,
    KeyNotStored,
    KeysUnavailable,
    MalformedEncoding,
    NoKeyFound,
)

__all__ = [
    "KeyPair",
    "decrypt",
    "encrypt",
    "generate_keypair",
    "generate_nonce",
    "AuthenticationFailed",
    "E2EEError",
    "InvalidKeyFile",
    "InvalidKeyMaterial",
    "KeyNotStored",
    "KeysUnavailable",
    "MalformedEncoding",
    "NoKeyFound",
]
