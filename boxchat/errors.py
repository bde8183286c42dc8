"""Exception hierarchy shared by the encryption core and its collaborators."""

from __future__ import annotations


class E2EEError(Exception):
    """Base class for every error raised by the encryption core."""


class MalformedEncoding(E2EEError, ValueError):
    """Text could not have been produced by :func:`boxchat.codec.encode_bytes`."""


class InvalidKeyMaterial(E2EEError, ValueError):
    """A key or nonce does not have the length the box construction needs."""


class AuthenticationFailed(E2EEError):
    """The ciphertext did not verify.

    Carries no detail on purpose: wrong key, tampered bytes and malformed
    inputs all look the same to the caller.
    """

    def __init__(self) -> None:
        super().__init__("authentication failed")


class NoKeyFound(E2EEError, LookupError):
    """No private key is stored for the requested identity."""


class InvalidKeyFile(E2EEError, ValueError):
    """An imported key file is not a UTF-8 encoded private key."""


class KeysUnavailable(E2EEError):
    """The local private key, the peer public key or the nonce is missing."""


class KeyNotStored(KeysUnavailable):
    """A freshly issued private key could not be written to the local store.

    The relay hands the private key out only once, so the encoded key is kept
    on the exception for the caller to back up by hand.
    """

    def __init__(self, identity_id: str, encoded_private_key: str) -> None:
        super().__init__(f"private key for {identity_id} could not be stored locally")
        self.identity_id = identity_id
        self.encoded_private_key = encoded_private_key


__all__ = [
    "E2EEError",
    "MalformedEncoding",
    "InvalidKeyMaterial",
    "AuthenticationFailed",
    "NoKeyFound",
    "InvalidKeyFile",
    "KeysUnavailable",
    "KeyNotStored",
]
