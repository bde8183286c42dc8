"""Message records exchanged with the relay and their locally decrypted views."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from .codec import decode_bytes, encode_bytes
from .config import UNDECRYPTABLE_PLACEHOLDER


@dataclass(frozen=True)
class PlainPayload:
    """Legacy, unencrypted message body kept for backward compatibility."""

    text: Optional[str] = None
    image: Optional[str] = None

    is_encrypted = False

    def is_empty(self) -> bool:
        return not self.text and not self.image

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "image": self.image, "is_encrypted": False}


@dataclass(frozen=True)
class SealedPayload:
    """Encrypted message body.

    Both sub-fields were sealed in the same call with the same nonce. All
    three values are kept in their wire encoding, exactly as the relay stores
    them.
    """

    nonce: Optional[str]
    encrypted_text: Optional[str] = None
    encrypted_image: Optional[str] = None

    is_encrypted = True

    @classmethod
    def from_components(
        cls,
        nonce: bytes,
        encrypted_text: Optional[bytes] = None,
        encrypted_image: Optional[bytes] = None,
    ) -> "SealedPayload":
        return cls(
            nonce=encode_bytes(nonce),
            encrypted_text=encode_bytes(encrypted_text) if encrypted_text is not None else None,
            encrypted_image=encode_bytes(encrypted_image) if encrypted_image is not None else None,
        )

    def nonce_bytes(self) -> Optional[bytes]:
        return decode_bytes(self.nonce) if self.nonce else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nonce": self.nonce,
            "encrypted_text": self.encrypted_text,
            "encrypted_image": self.encrypted_image,
            "is_encrypted": True,
        }


Payload = Union[PlainPayload, SealedPayload]


@dataclass(frozen=True)
class Message:
    sender_id: str
    receiver_id: str
    payload: Payload
    timestamp: Optional[int] = None
    id: Optional[int] = None

    @property
    def is_encrypted(self) -> bool:
        return self.payload.is_encrypted

    def counterpart_of(self, identity_id: str) -> str:
        """Return the other party of the conversation as seen by ``identity_id``."""

        return self.receiver_id if self.sender_id == identity_id else self.sender_id

    def to_dict(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "id": self.id,
            "sender_id": self.sender_id,
            "receiver_id": self.receiver_id,
            "timestamp": self.timestamp,
            "text": None,
            "image": None,
            "nonce": None,
            "encrypted_text": None,
            "encrypted_image": None,
        }
        record.update(self.payload.to_dict())
        return record

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        payload: Payload
        if data.get("is_encrypted"):
            # plaintext fields are ignored on an encrypted record
            payload = SealedPayload(
                nonce=data.get("nonce"),
                encrypted_text=data.get("encrypted_text"),
                encrypted_image=data.get("encrypted_image"),
            )
        else:
            payload = PlainPayload(text=data.get("text"), image=data.get("image"))
        return cls(
            sender_id=data["sender_id"],
            receiver_id=data["receiver_id"],
            payload=payload,
            timestamp=data.get("timestamp"),
            id=data.get("id"),
        )


class FieldStatus(enum.Enum):
    PLAIN = "plain"
    ABSENT = "absent"
    UNAVAILABLE = "unavailable"
    DECRYPTED = "decrypted"
    FAILED = "failed"


@dataclass(frozen=True)
class FieldResult:
    """Outcome of revealing one display field of a message.

    ``ABSENT`` means the message never carried the field. ``UNAVAILABLE``
    means decryption was never attempted because key material was missing,
    and ``FAILED`` means it was attempted and the authenticator rejected it.
    """

    status: FieldStatus
    value: Optional[str] = None

    @classmethod
    def absent(cls) -> "FieldResult":
        return cls(FieldStatus.ABSENT)

    @classmethod
    def plain(cls, value: Optional[str]) -> "FieldResult":
        if value is None:
            return cls.absent()
        return cls(FieldStatus.PLAIN, value)

    @classmethod
    def unavailable(cls) -> "FieldResult":
        return cls(FieldStatus.UNAVAILABLE)

    @classmethod
    def decrypted(cls, value: str) -> "FieldResult":
        return cls(FieldStatus.DECRYPTED, value)

    @classmethod
    def failed(cls) -> "FieldResult":
        return cls(FieldStatus.FAILED, UNDECRYPTABLE_PLACEHOLDER)

    @property
    def ok(self) -> bool:
        return self.status in (FieldStatus.PLAIN, FieldStatus.DECRYPTED)


@dataclass(frozen=True)
class DisplayMessage:
    """A stored message together with what the local actor can read of it."""

    message: Message
    outgoing: bool
    text: FieldResult = field(default_factory=FieldResult.absent)
    image: FieldResult = field(default_factory=FieldResult.absent)

    @property
    def is_encrypted(self) -> bool:
        return self.message.is_encrypted

    @property
    def readable(self) -> bool:
        fields = [f for f in (self.text, self.image) if f.status is not FieldStatus.ABSENT]
        return bool(fields) and all(f.ok for f in fields)


__all__ = [
    "PlainPayload",
    "SealedPayload",
    "Payload",
    "Message",
    "FieldStatus",
    "FieldResult",
    "DisplayMessage",
]
