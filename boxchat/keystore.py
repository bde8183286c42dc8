"""Client-side custody of the local private key.

The private key never leaves the device except through an explicit export.
It is kept in a small key-value store, namespaced per identity, and is not
removed on logout: losing it makes every past message unreadable.
"""

from __future__ import annotations

import io
import json
import logging
import os
import re
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import BinaryIO, Dict, Iterator, Optional, Union

from . import crypto
from .codec import decode_bytes, encode_bytes
from .config import KEYSTORE_PATH, PRIVATE_KEY_PREFIX
from .errors import InvalidKeyFile, InvalidKeyMaterial, MalformedEncoding, NoKeyFound

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Key-value stores
# ---------------------------------------------------------------------------


class MemoryKeyValueStore:
    """Process-local store, used by tests and short-lived sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None, available: bool = True) -> None:
        self._data: Dict[str, str] = dict(initial or {})
        self._available = available

    def is_available(self) -> bool:
        return self._available

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileKeyValueStore:
    """Synchronised key-value store backed by a single JSON file."""

    def __init__(self, path: Path = KEYSTORE_PATH) -> None:
        self.path = Path(path)
        self._lock = Lock()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        return json.loads(self.path.read_text(encoding="utf-8"))

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, sort_keys=True)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def is_available(self) -> bool:
        """Check that the backing file can be read and written, without touching it."""

        if self.path.exists():
            if not self.path.is_file() or not os.access(self.path, os.R_OK | os.W_OK):
                return False
            try:
                with self._lock:
                    self._read()
            except (OSError, ValueError):
                return False
            return True

        parent = self.path.parent
        while not parent.exists():
            parent = parent.parent
        return parent.is_dir() and os.access(parent, os.W_OK | os.X_OK)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)


# ---------------------------------------------------------------------------
# Key manager
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KeyFile:
    """An exported private key, ready to be written or downloaded."""

    filename: str
    content: bytes

    def stream(self) -> BinaryIO:
        return io.BytesIO(self.content)

    def write_to(self, directory: Path) -> Path:
        target = Path(directory) / self.filename
        target.write_bytes(self.content)
        return target


class KeyManager:
    """Generate key pairs and manage the stored private key of local identities."""

    def __init__(self, store=None) -> None:
        self.store = store if store is not None else JsonFileKeyValueStore()

    @staticmethod
    def generate_keypair() -> crypto.KeyPair:
        return crypto.generate_keypair()

    @staticmethod
    def _storage_key(identity_id: str) -> str:
        return f"{PRIVATE_KEY_PREFIX}{identity_id}"

    @contextmanager
    def _acquire(self) -> Iterator[Optional[object]]:
        """Yield the backing store, or ``None`` when it cannot be used."""

        if not self.store.is_available():
            logger.warning("private key storage is not available")
            yield None
            return
        yield self.store

    def save(self, identity_id: str, private_key: Union[bytes, str]) -> bool:
        """Store ``private_key`` for ``identity_id``, replacing any previous key.

        Text is assumed to already be in wire encoding and is validated as
        such. Returns ``False`` when the store is unavailable.
        """

        if isinstance(private_key, str):
            encoded = private_key.strip()
            crypto_key = decode_bytes(encoded)
        else:
            crypto_key = bytes(private_key)
            encoded = encode_bytes(crypto_key)
        if len(crypto_key) != crypto.KEY_SIZE:
            raise InvalidKeyMaterial(
                f"private key must be {crypto.KEY_SIZE} bytes, got {len(crypto_key)}"
            )

        with self._acquire() as store:
            if store is None:
                return False
            store.set(self._storage_key(identity_id), encoded)
        logger.info("stored private key for %s", identity_id)
        return True

    def load_encoded(self, identity_id: str) -> Optional[str]:
        with self._acquire() as store:
            if store is None:
                return None
            return store.get(self._storage_key(identity_id))

    def load(self, identity_id: str) -> Optional[bytes]:
        """Return the stored private key, or ``None`` if there is none.

        A stored value that is not valid wire encoding means corrupted local
        state and raises :class:`MalformedEncoding`; one that decodes to the
        wrong length raises :class:`InvalidKeyMaterial`.
        """

        encoded = self.load_encoded(identity_id)
        if encoded is None:
            return None
        raw = decode_bytes(encoded)
        if len(raw) != crypto.KEY_SIZE:
            raise InvalidKeyMaterial(
                f"stored private key for {identity_id} is {len(raw)} bytes, expected {crypto.KEY_SIZE}"
            )
        return raw

    def remove(self, identity_id: str) -> None:
        with self._acquire() as store:
            if store is not None:
                store.delete(self._storage_key(identity_id))
                logger.info("removed private key for %s", identity_id)

    def exists(self, identity_id: str) -> bool:
        try:
            return self.load(identity_id) is not None
        except (MalformedEncoding, InvalidKeyMaterial):
            logger.warning("stored private key for %s is corrupted", identity_id)
            return False

    def export_to_file(self, identity_id: str, suggested_name: str) -> KeyFile:
        """Export the stored key text exactly as kept, for offline backup."""

        encoded = self.load_encoded(identity_id)
        if not encoded:
            raise NoKeyFound(f"no private key stored for {identity_id}")
        stem = _WHITESPACE.sub("_", suggested_name.strip()) or identity_id
        filename = f"{stem}_private_key.txt"
        return KeyFile(filename=filename, content=encoded.encode("utf-8"))

    def import_key(self, file_contents: Union[bytes, BinaryIO], identity_id: str) -> bool:
        """Replace the stored key of ``identity_id`` with the key in ``file_contents``.

        No confirmation is asked; callers must warn the user that an existing
        key will be overwritten.
        """

        raw = file_contents.read() if hasattr(file_contents, "read") else file_contents
        try:
            text = bytes(raw).decode("utf-8")
        except (UnicodeDecodeError, TypeError) as exc:
            raise InvalidKeyFile("key file is not UTF-8 text") from exc

        try:
            return self.save(identity_id, text)
        except (MalformedEncoding, InvalidKeyMaterial) as exc:
            raise InvalidKeyFile("key file does not contain a private key") from exc


__all__ = [
    "MemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyFile",
    "KeyManager",
]
