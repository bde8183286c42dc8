"""Public-key directory lookups.

A failed lookup is never fatal for the caller: unknown identities, network
errors and undecodable keys all come back as ``None`` and the orchestrator
treats the message as "keys unavailable".
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Mapping, Optional
from urllib.parse import quote

import requests

from .codec import decode_bytes
from .config import API_BASE, REQUEST_TIMEOUT
from .crypto import KEY_SIZE
from .errors import MalformedEncoding

logger = logging.getLogger(__name__)


class StaticDirectory:
    """Directory backed by an in-memory mapping of identity id to public key."""

    def __init__(self, entries: Optional[Mapping[str, bytes]] = None) -> None:
        self._entries: Dict[str, bytes] = dict(entries or {})

    def publish(self, identity_id: str, public_key: bytes) -> None:
        self._entries[identity_id] = bytes(public_key)

    def public_key(self, identity_id: str) -> Optional[bytes]:
        return self._entries.get(identity_id)


class HttpDirectory:
    """Directory served by the relay at ``GET /api/users/<id>/public-key``."""

    def __init__(
        self,
        base_url: str = API_BASE,
        http=None,
        timeout: float = REQUEST_TIMEOUT,
        headers: Optional[Callable[[], Dict[str, str]]] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http = http if http is not None else requests.Session()
        self._headers = headers or dict

    def public_key(self, identity_id: str) -> Optional[bytes]:
        url = f"{self.base_url}/api/users/{quote(identity_id, safe='')}/public-key"
        try:
            response = self._http.get(url, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("public key lookup for %s failed: %s", identity_id, exc)
            return None

        if response.status_code == 404:
            logger.info("no public key published for %s", identity_id)
            return None
        if response.status_code != 200:
            logger.warning(
                "public key lookup for %s returned %s", identity_id, response.status_code
            )
            return None

        try:
            body = response.json()
        except ValueError:
            logger.warning("directory returned a non-JSON body for %s", identity_id)
            return None
        if not isinstance(body, dict):
            logger.warning("directory returned an unexpected body for %s", identity_id)
            return None

        encoded = body.get("public_key")
        try:
            key = decode_bytes(encoded)
        except MalformedEncoding:
            logger.warning("directory returned a malformed public key for %s", identity_id)
            return None
        if len(key) != KEY_SIZE:
            logger.warning("directory returned a %d byte public key for %s", len(key), identity_id)
            return None
        return key

