"""Flask relay API for boxchat.

The relay stores and forwards message records. It publishes each user's
public key and hands the matching private key to the client exactly once, at
registration; it can never decrypt a sealed message.
"""

from __future__ import annotations

import functools
import logging
import sqlite3
from typing import Callable, Optional

from flask import Flask, jsonify, request

from . import crypto
from .codec import encode_bytes
from .config import load_password_secret, load_session_secret
from .database import Database, row_to_message
from .errors import MalformedEncoding
from .models import Message, PlainPayload, SealedPayload

logger = logging.getLogger(__name__)


def create_app(database: Optional[Database] = None) -> Flask:
    app = Flask(__name__)

    db = database or Database()
    session_secret = load_session_secret()
    password_secret = load_password_secret()

    def _json_body() -> dict:
        payload = request.get_json(silent=True)
        return payload if isinstance(payload, dict) else {}

    def _text(payload: dict, key: str) -> str:
        value = payload.get(key)
        return value if isinstance(value, str) else ""

    def _auth_header_token() -> Optional[str]:
        header = request.headers.get("Authorization", "")
        if header.lower().startswith("bearer "):
            return header.split(" ", 1)[1].strip()
        return None

    def _require_auth() -> tuple:
        token = _auth_header_token()
        if not token:
            return None, ("Missing bearer token", 401)

        session_data = crypto.verify_session_token(token, session_secret)
        if not session_data:
            return None, ("Invalid or expired session", 401)

        user = db.get_user_by_identifier(session_data["sub"])
        if not user:
            return None, ("Unknown session user", 401)

        return user, None

    def login_required(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            user, error = _require_auth()
            if error:
                message, status = error
                return jsonify({"error": message}), status
            return func(*args, user=user, **kwargs)

        return wrapper

    # ---------------------------------------------------------------
    # Health check
    # ---------------------------------------------------------------

    @app.get("/healthz")
    def healthcheck():
        return jsonify({"status": "ok"})

    # ---------------------------------------------------------------
    # Accounts
    # ---------------------------------------------------------------

    @app.post("/api/register")
    def register():
        payload = _json_body()

        identifier = _text(payload, "identifier").strip()
        display_name = _text(payload, "display_name").strip()
        password = _text(payload, "password")

        if not identifier or not display_name or not password:
            return (
                jsonify({"error": "identifier, display_name and password are required"}),
                400,
            )

        if db.get_user_by_identifier(identifier) is not None:
            return jsonify({"error": "identifier already registered"}), 409

        keypair = crypto.generate_keypair()
        password_hash = crypto.hash_password(password, password_secret)
        try:
            user_id = db.create_user(
                identifier, display_name, password_hash, encode_bytes(keypair.public_key)
            )
        except sqlite3.IntegrityError:
            return jsonify({"error": "identifier already registered"}), 409

        logger.info("registered %s", identifier)
        # The private half is returned once and never stored server side.
        return (
            jsonify(
                {
                    "id": user_id,
                    "identifier": identifier,
                    "display_name": display_name,
                    **keypair.encoded(),
                }
            ),
            201,
        )

    @app.post("/api/login")
    def login():
        payload = _json_body()

        identifier = _text(payload, "identifier").strip()
        password = _text(payload, "password")

        if not identifier or not password:
            return jsonify({"error": "identifier and password are required"}), 400

        user = db.get_user_by_identifier(identifier)
        if not user or not crypto.verify_password(password, user["password_hash"], password_secret):
            return jsonify({"error": "invalid credentials"}), 401

        token = crypto.create_session_token(user["identifier"], session_secret)
        return jsonify(
            {
                "token": token,
                "user": {
                    "id": user["id"],
                    "identifier": user["identifier"],
                    "display_name": user["display_name"],
                    "public_key": user["public_key"],
                },
            }
        )

    # ---------------------------------------------------------------
    # Directory
    # ---------------------------------------------------------------

    @app.get("/api/users/<identifier>/public-key")
    @login_required
    def public_key(identifier: str, **_):
        row = db.get_user_by_identifier(identifier)
        if not row or not row["public_key"]:
            return jsonify({"error": "user public key not found"}), 404
        return jsonify({"identifier": row["identifier"], "public_key": row["public_key"]})

    # ---------------------------------------------------------------
    # Messaging
    # ---------------------------------------------------------------

    def _build_message(sender_row, receiver_row, payload: dict) -> Optional[Message]:
        fields = {}
        for key in ("text", "image", "encrypted_text", "encrypted_image", "nonce"):
            value = payload.get(key)
            if value is not None and not isinstance(value, str):
                return None
            fields[key] = value or None

        if fields["encrypted_text"] or fields["encrypted_image"]:
            if fields["nonce"] is None:
                return None
            body = SealedPayload(
                nonce=fields["nonce"],
                encrypted_text=fields["encrypted_text"],
                encrypted_image=fields["encrypted_image"],
            )
            try:
                body.nonce_bytes()
            except MalformedEncoding:
                return None
        else:
            body = PlainPayload(text=fields["text"], image=fields["image"])
            if body.is_empty():
                return None

        return Message(
            sender_id=sender_row["identifier"],
            receiver_id=receiver_row["identifier"],
            payload=body,
        )

    @app.post("/api/messages/<receiver>")
    @login_required
    def send_message(receiver: str, *, user, **_):
        receiver_row = db.get_user_by_identifier(receiver)
        if not receiver_row:
            return jsonify({"error": "receiver not found"}), 404

        message = _build_message(user, receiver_row, _json_body())
        if message is None:
            return jsonify({"error": "invalid message payload"}), 400

        message_id = db.store_message(user["id"], receiver_row["id"], message)
        if not message.is_encrypted:
            logger.info("stored unencrypted message %s", message_id)
        stored = row_to_message(db.get_message(message_id))
        return jsonify(stored.to_dict()), 201

    @app.get("/api/messages/<peer>")
    @login_required
    def conversation(peer: str, *, user, **_):
        peer_row = db.get_user_by_identifier(peer)
        if not peer_row:
            return jsonify({"error": "user not found"}), 404

        records = db.fetch_conversation(user["id"], peer_row["id"])
        return jsonify({"messages": [row_to_message(row).to_dict() for row in records]})

    return app


if __name__ == "__main__":
    api = create_app()
    api.run(host="127.0.0.1", port=5000, debug=False)
