"""High-level client for the boxchat relay API."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union
from urllib.parse import quote

import requests

from .config import API_BASE, REQUEST_TIMEOUT
from .directory import HttpDirectory
from .errors import KeyNotStored
from .keystore import KeyFile, KeyManager
from .models import DisplayMessage, Message
from .orchestrator import Content, DecryptionOrchestrator
from .session import SessionContext

logger = logging.getLogger(__name__)


class APIError(RuntimeError):
    """Raised when the remote API returns an unexpected result."""


class ChatClient:
    """Keeps the local private key and talks to the relay on behalf of one user."""

    def __init__(
        self,
        base_url: str = API_BASE,
        key_manager: Optional[KeyManager] = None,
        timeout: float = REQUEST_TIMEOUT,
        http=None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.key_manager = key_manager or KeyManager()
        self.session: Optional[SessionContext] = None
        self._http = http if http is not None else requests.Session()
        self.directory = HttpDirectory(
            self.base_url, http=self._http, timeout=timeout, headers=self._auth_headers
        )

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------
    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _auth_headers(self) -> Dict[str, str]:
        return self.session.auth_headers() if self.session else {}

    def _require_session(self) -> SessionContext:
        if self.session is None or not self.session.active:
            raise APIError("This client is not logged in. Call login() first.")
        return self.session

    def _orchestrator(self) -> DecryptionOrchestrator:
        return DecryptionOrchestrator(self._require_session(), self.key_manager, self.directory)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    def register(self, identifier: str, display_name: str, password: str) -> Dict[str, object]:
        """Create an account and take custody of its private key.

        The relay returns the private key only in this response, so it is
        written to the local key store before anything else happens. If the
        store refuses it, :class:`KeyNotStored` carries the key instead.
        """

        response = self._http.post(
            self._url("/api/register"),
            json={"identifier": identifier, "display_name": display_name, "password": password},
            timeout=self.timeout,
        )
        if response.status_code != 201:
            raise APIError(f"Registration failed: {response.text}")

        data = dict(response.json())
        private_key = data.pop("private_key")
        if not self.key_manager.save(data["identifier"], private_key):
            logger.error("private key for %s could not be stored locally", identifier)
            raise KeyNotStored(data["identifier"], private_key)
        return data

    def login(self, identifier: str, password: str) -> SessionContext:
        response = self._http.post(
            self._url("/api/login"),
            json={"identifier": identifier, "password": password},
            timeout=self.timeout,
        )
        if response.status_code != 200:
            raise APIError(f"Login failed: {response.text}")

        data = response.json()
        user = data["user"]
        self.session = SessionContext(
            identity_id=user["identifier"],
            display_name=user.get("display_name", ""),
            token=data["token"],
        )
        if not self.key_manager.exists(self.session.identity_id):
            logger.warning(
                "no private key stored for %s; encrypted messages will be unreadable",
                self.session.identity_id,
            )
        return self.session

    def logout(self) -> None:
        if self.session is not None:
            self.session.close()
        self.session = None

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------
    def send_message(
        self,
        receiver_id: str,
        text: Optional[Content] = None,
        image: Optional[Content] = None,
        require_encryption: bool = False,
    ) -> DisplayMessage:
        outgoing = self._orchestrator().seal_message(
            receiver_id, text=text, image=image, allow_plaintext=not require_encryption
        )
        response = self._http.post(
            self._url(f"/api/messages/{quote(receiver_id, safe='')}"),
            json=outgoing.body(),
            headers=self._auth_headers(),
            timeout=self.timeout,
        )
        if response.status_code != 201:
            raise APIError(f"Message delivery failed: {response.text}")

        return outgoing.display(Message.from_dict(response.json()))

    def fetch_conversation(self, peer_id: str) -> List[DisplayMessage]:
        orchestrator = self._orchestrator()
        response = self._http.get(
            self._url(f"/api/messages/{quote(peer_id, safe='')}"),
            headers=self._auth_headers(),
            timeout=self.timeout,
        )
        if response.status_code != 200:
            raise APIError(f"Unable to retrieve messages: {response.text}")

        messages = [Message.from_dict(item) for item in response.json().get("messages", [])]
        return orchestrator.open_messages(messages)

    # ------------------------------------------------------------------
    # Key custody
    # ------------------------------------------------------------------
    def has_key(self, identity_id: Optional[str] = None) -> bool:
        return self.key_manager.exists(identity_id or self._require_session().identity_id)

    def export_key(self, directory: Union[str, Path], identity_id: Optional[str] = None) -> Path:
        session = self.session
        identity_id = identity_id or self._require_session().identity_id
        name = session.display_name if session and session.identity_id == identity_id else ""
        key_file: KeyFile = self.key_manager.export_to_file(identity_id, name or identity_id)
        return key_file.write_to(Path(directory))

    def import_key(self, path: Union[str, Path], identity_id: Optional[str] = None) -> bool:
        identity_id = identity_id or self._require_session().identity_id
        with open(path, "rb") as handle:
            return self.key_manager.import_key(handle, identity_id)
