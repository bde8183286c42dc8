"""Choose the right key pairing for each message and reveal what can be read.

Whether the local actor sent or received a message, the box is opened with
the local private key and the *other* party's public key. The same pairing
seals outgoing messages, so a sender can always re-read its own history.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from . import crypto
from .codec import decode_bytes
from .errors import AuthenticationFailed, KeysUnavailable, MalformedEncoding
from .keystore import KeyManager
from .models import (
    DisplayMessage,
    FieldResult,
    Message,
    PlainPayload,
    SealedPayload,
)
from .session import SessionContext

logger = logging.getLogger(__name__)

Content = Union[str, bytes]
KeyLookup = Callable[[str], Tuple[Optional[bytes], Optional[bytes]]]


def _as_bytes(value: Content) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


def _as_text(value: Content) -> str:
    return value if isinstance(value, str) else value.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class OutgoingMessage:
    """A message ready for the relay, plus what the sender typed."""

    message: Message
    text: Optional[str] = None
    image: Optional[str] = None

    @property
    def encrypted(self) -> bool:
        return self.message.is_encrypted

    def body(self) -> Dict[str, str]:
        """Request body for ``POST /api/messages/<receiver>``."""

        fields = self.message.payload.to_dict()
        fields.pop("is_encrypted")
        return {key: value for key, value in fields.items() if value is not None}

    def display(self, stored: Optional[Message] = None) -> DisplayMessage:
        """Render the sent message from the local plaintext, not the relay copy."""

        local = FieldResult.decrypted if self.encrypted else FieldResult.plain
        return DisplayMessage(
            message=stored or self.message,
            outgoing=True,
            text=local(self.text) if self.text is not None else FieldResult.absent(),
            image=local(self.image) if self.image is not None else FieldResult.absent(),
        )


class DecryptionOrchestrator:
    """Reveal stored messages and seal new ones for one local identity."""

    def __init__(self, session: SessionContext, key_manager: KeyManager, directory) -> None:
        self.session = session
        self.key_manager = key_manager
        self.directory = directory

    @property
    def identity_id(self) -> str:
        return self.session.identity_id

    def _key_material(self, counterpart_id: str) -> Tuple[Optional[bytes], Optional[bytes]]:
        peer_public_key = self.directory.public_key(counterpart_id)
        private_key = self.key_manager.load(self.identity_id)
        return peer_public_key, private_key

    def _batch_key_material(self, messages: List[Message]) -> KeyLookup:
        """Resolve every counterpart key once, before any message is opened."""

        sealed = [message for message in messages if message.is_encrypted]
        if not sealed:
            return self._key_material
        private_key = self.key_manager.load(self.identity_id)
        counterparts = sorted({message.counterpart_of(self.identity_id) for message in sealed})
        public_keys = {peer: self.directory.public_key(peer) for peer in counterparts}
        return lambda counterpart_id: (public_keys.get(counterpart_id), private_key)

    # ------------------------------------------------------------------
    # Receiving
    # ------------------------------------------------------------------
    def open_message(
        self, message: Message, key_material: Optional[KeyLookup] = None
    ) -> DisplayMessage:
        outgoing = message.sender_id == self.identity_id
        payload = message.payload

        if isinstance(payload, PlainPayload):
            return DisplayMessage(
                message=message,
                outgoing=outgoing,
                text=FieldResult.plain(payload.text),
                image=FieldResult.plain(payload.image),
            )

        try:
            peer_public_key, private_key, nonce = self._opening_material(
                message, payload, key_material or self._key_material
            )
        except KeysUnavailable as exc:
            logger.info("message %s left sealed: %s", message.id, exc)
            missing = FieldResult.unavailable()
            return DisplayMessage(
                message=message,
                outgoing=outgoing,
                text=missing if payload.encrypted_text else FieldResult.absent(),
                image=missing if payload.encrypted_image else FieldResult.absent(),
            )

        return DisplayMessage(
            message=message,
            outgoing=outgoing,
            text=self._open_field(payload.encrypted_text, nonce, peer_public_key, private_key),
            image=self._open_field(payload.encrypted_image, nonce, peer_public_key, private_key),
        )

    def open_messages(
        self, messages: Iterable[Message], max_workers: Optional[int] = None
    ) -> List[DisplayMessage]:
        """Reveal a batch; messages are independent so they may run concurrently."""

        messages = list(messages)
        key_material = self._batch_key_material(messages)
        if len(messages) < 2 or max_workers == 1:
            return [self.open_message(message, key_material) for message in messages]
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            return list(pool.map(lambda message: self.open_message(message, key_material), messages))

    def _opening_material(
        self, message: Message, payload: SealedPayload, key_material: KeyLookup
    ) -> Tuple[bytes, bytes, bytes]:
        peer_public_key, private_key = key_material(message.counterpart_of(self.identity_id))
        if private_key is None:
            raise KeysUnavailable(f"no private key stored for {self.identity_id}")
        if peer_public_key is None:
            raise KeysUnavailable("counterpart public key not found")
        try:
            nonce = payload.nonce_bytes()
        except MalformedEncoding:
            nonce = None
        if nonce is None:
            raise KeysUnavailable("message carries no usable nonce")
        return peer_public_key, private_key, nonce

    @staticmethod
    def _open_field(
        encoded: Optional[str], nonce: bytes, peer_public_key: bytes, private_key: bytes
    ) -> FieldResult:
        if not encoded:
            return FieldResult.absent()
        try:
            ciphertext = decode_bytes(encoded)
            plaintext = crypto.decrypt(ciphertext, nonce, peer_public_key, private_key)
        except (AuthenticationFailed, MalformedEncoding):
            return FieldResult.failed()
        return FieldResult.decrypted(_as_text(plaintext))

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------
    def seal_message(
        self,
        receiver_id: str,
        text: Optional[Content] = None,
        image: Optional[Content] = None,
        allow_plaintext: bool = True,
    ) -> OutgoingMessage:
        """Encrypt ``text`` and ``image`` for ``receiver_id`` under one fresh nonce.

        When either key is missing the message is sent as a legacy plaintext
        payload instead, unless ``allow_plaintext`` is false, in which case
        :class:`KeysUnavailable` is raised.
        """

        if text is None and image is None:
            raise ValueError("a message needs text or an image")

        typed_text = _as_text(text) if text is not None else None
        typed_image = _as_text(image) if image is not None else None

        recipient_public_key, private_key = self._key_material(receiver_id)
        if recipient_public_key is None or private_key is None:
            reason = (
                "no local private key" if private_key is None else "recipient has no public key"
            )
            if not allow_plaintext:
                raise KeysUnavailable(reason)
            logger.warning("sending unencrypted message to %s: %s", receiver_id, reason)
            payload = PlainPayload(text=typed_text, image=typed_image)
        else:
            nonce = crypto.generate_nonce()
            payload = SealedPayload.from_components(
                nonce,
                encrypted_text=(
                    crypto.encrypt(_as_bytes(text), nonce, recipient_public_key, private_key)
                    if text is not None
                    else None
                ),
                encrypted_image=(
                    crypto.encrypt(_as_bytes(image), nonce, recipient_public_key, private_key)
                    if image is not None
                    else None
                ),
            )

        message = Message(sender_id=self.identity_id, receiver_id=receiver_id, payload=payload)
        return OutgoingMessage(message=message, text=typed_text, image=typed_image)


__all__ = ["DecryptionOrchestrator", "OutgoingMessage"]
