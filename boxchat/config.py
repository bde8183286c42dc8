"""Central configuration helpers for the boxchat relay and client."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from Crypto.Random import get_random_bytes

BASE_DIR = Path(__file__).resolve().parent
DB_PATH = Path(os.environ.get("BOXCHAT_DB_PATH", BASE_DIR / "chat.db"))
SESSION_SECRET_FILE = BASE_DIR / ".session_secret"
PASSWORD_SECRET_FILE = BASE_DIR / ".password_secret"

API_BASE = os.environ.get("BOXCHAT_API_BASE", "http://127.0.0.1:5000")
KEYSTORE_PATH = Path(os.environ.get("BOXCHAT_KEYSTORE", Path.home() / ".boxchat" / "keys.json"))
REQUEST_TIMEOUT = float(os.environ.get("BOXCHAT_TIMEOUT", "10"))

PRIVATE_KEY_PREFIX = "e2ee_private_key_"
UNDECRYPTABLE_PLACEHOLDER = "[unable to decrypt message]"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _load_secret(env_var: str, path: Path) -> bytes:
    if env_var in os.environ:
        return os.environ[env_var].encode("utf-8")

    if path.exists():
        return path.read_bytes()

    secret = get_random_bytes(32)
    path.write_bytes(secret)
    return secret


def load_session_secret() -> bytes:
    """Return a stable HMAC secret for session tokens, generating it on first use."""

    return _load_secret("BOXCHAT_SESSION_SECRET", SESSION_SECRET_FILE)


def load_password_secret() -> bytes:
    """Return the symmetric key used for HMAC-based password digests."""

    return _load_secret("BOXCHAT_PASSWORD_SECRET", PASSWORD_SECRET_FILE)


def configure_logging(level: Optional[str] = None) -> None:
    level_name = (level or os.environ.get("BOXCHAT_LOG_LEVEL", "WARNING")).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.WARNING), format=LOG_FORMAT)
