"""Command-line client and relay launcher for boxchat."""

from __future__ import annotations

import argparse
import sys
import textwrap
from datetime import datetime
from pathlib import Path
from typing import Optional

from .client import APIError, ChatClient
from .config import API_BASE, KEYSTORE_PATH, configure_logging
from .errors import (
    InvalidKeyFile,
    InvalidKeyMaterial,
    KeyNotStored,
    KeysUnavailable,
    MalformedEncoding,
    NoKeyFound,
)
from .keystore import JsonFileKeyValueStore, KeyManager
from .models import FieldStatus


def _client(args: argparse.Namespace) -> ChatClient:
    key_manager = KeyManager(JsonFileKeyValueStore(Path(args.keystore)))
    return ChatClient(base_url=args.api, key_manager=key_manager)


def _logged_in(args: argparse.Namespace) -> ChatClient:
    client = _client(args)
    client.login(args.identifier, args.password)
    return client


# ---------------------------------------------------------------------------
# CLI actions
# ---------------------------------------------------------------------------


def cmd_serve(args: argparse.Namespace) -> None:
    from .server import create_app

    print(f"boxchat relay listening on http://{args.host}:{args.port}")  # noqa: T201
    create_app().run(host=args.host, port=args.port, debug=False)


def cmd_register(args: argparse.Namespace) -> None:
    client = _client(args)
    try:
        account = client.register(args.identifier, args.display_name, args.password)
    except KeyNotStored as exc:
        print(f"Registered {exc.identity_id}, but the key store at {args.keystore} is not writable.")  # noqa: T201
        print("Save this private key now; the relay cannot issue it again:")  # noqa: T201
        print(exc.encoded_private_key)  # noqa: T201
        raise SystemExit("Private key was not stored locally.")
    print(f"Registered {account['identifier']}.")  # noqa: T201
    print(f"Private key stored in {args.keystore}. Export it with 'export-key' as a backup.")  # noqa: T201


def cmd_send(args: argparse.Namespace) -> None:
    client = _logged_in(args)
    image = Path(args.image).read_text(encoding="utf-8").strip() if args.image else None
    if args.message is None and image is None:
        raise SystemExit("Provide message text or --image.")
    sent = client.send_message(
        args.receiver, text=args.message, image=image, require_encryption=args.require_encryption
    )
    if sent.is_encrypted:
        print(f"Encrypted message {sent.message.id} sent to {args.receiver}.")  # noqa: T201
    else:
        print(  # noqa: T201
            f"WARNING: message {sent.message.id} was sent UNENCRYPTED "
            f"(missing key material for {args.receiver})."
        )


def _describe(field) -> Optional[str]:
    if field.status is FieldStatus.ABSENT:
        return None
    if field.status is FieldStatus.UNAVAILABLE:
        return "[encrypted - keys unavailable]"
    return field.value


def cmd_history(args: argparse.Namespace) -> None:
    client = _logged_in(args)
    conversation = client.fetch_conversation(args.peer)
    if not conversation:
        print("No messages yet.")  # noqa: T201
        return

    for entry in conversation:
        message = entry.message
        ts = datetime.fromtimestamp(message.timestamp).isoformat() if message.timestamp else ""
        arrow = "->" if entry.outgoing else "<-"
        lock = "sealed" if entry.is_encrypted else "plain"
        print("-" * 60)  # noqa: T201
        print(f"#{message.id} {arrow} {message.counterpart_of(args.identifier)} at {ts} [{lock}]")  # noqa: T201
        for label, field in (("text", entry.text), ("image", entry.image)):
            shown = _describe(field)
            if shown is not None:
                print(f"  {label}:")  # noqa: T201
                print(textwrap.indent(shown, "    "))  # noqa: T201


def cmd_key_status(args: argparse.Namespace) -> None:
    key_manager = KeyManager(JsonFileKeyValueStore(Path(args.keystore)))
    if key_manager.exists(args.identifier):
        print(f"Private key found for {args.identifier}.")  # noqa: T201
    else:
        print(  # noqa: T201
            f"No private key found for {args.identifier}. Import a backup to read "
            "encrypted messages."
        )


def cmd_export_key(args: argparse.Namespace) -> None:
    key_manager = KeyManager(JsonFileKeyValueStore(Path(args.keystore)))
    key_file = key_manager.export_to_file(args.identifier, args.name or args.identifier)
    target = key_file.write_to(Path(args.directory))
    print(f"Private key exported to {target}. Keep it secret.")  # noqa: T201


def cmd_import_key(args: argparse.Namespace) -> None:
    key_manager = KeyManager(JsonFileKeyValueStore(Path(args.keystore)))
    if key_manager.exists(args.identifier) and not args.force:
        raise SystemExit(
            f"A private key is already stored for {args.identifier}; "
            "re-run with --force to overwrite it."
        )
    with open(args.path, "rb") as handle:
        stored = key_manager.import_key(handle, args.identifier)
    if not stored:
        raise SystemExit("Key storage is not available; nothing was imported.")
    print(f"Private key imported for {args.identifier}.")  # noqa: T201


# ---------------------------------------------------------------------------
# CLI bootstrap
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--api", default=API_BASE, help=f"Relay base URL (default: {API_BASE})")
    parser.add_argument("--keystore", default=str(KEYSTORE_PATH), help="Local key store file")
    parser.add_argument("--log-level", default=None, help="Logging level, e.g. INFO")
    sub = parser.add_subparsers(dest="command")

    p_serve = sub.add_parser("serve", help="Run the relay API")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", default=5000, type=int)
    p_serve.set_defaults(func=cmd_serve)

    p_register = sub.add_parser("register", help="Register a new account")
    p_register.add_argument("identifier", help="Unique account identifier")
    p_register.add_argument("display_name", help="Human readable name")
    p_register.add_argument("password", help="Account password")
    p_register.set_defaults(func=cmd_register)

    p_send = sub.add_parser("send", help="Send a message, encrypted when keys allow")
    p_send.add_argument("identifier", help="Sender identifier")
    p_send.add_argument("password", help="Sender password")
    p_send.add_argument("receiver", help="Receiver identifier")
    p_send.add_argument("message", nargs="?", default=None, help="Message text")
    p_send.add_argument("--image", help="File holding an image data URL to attach")
    p_send.add_argument(
        "--require-encryption",
        action="store_true",
        help="Refuse to send when the message cannot be encrypted",
    )
    p_send.set_defaults(func=cmd_send)

    p_history = sub.add_parser("history", help="Show and decrypt a conversation")
    p_history.add_argument("identifier", help="Registered identifier")
    p_history.add_argument("password", help="Account password")
    p_history.add_argument("peer", help="Other party of the conversation")
    p_history.set_defaults(func=cmd_history)

    p_status = sub.add_parser("key-status", help="Check whether a private key is stored")
    p_status.add_argument("identifier", help="Registered identifier")
    p_status.set_defaults(func=cmd_key_status)

    p_export = sub.add_parser("export-key", help="Write the private key to a backup file")
    p_export.add_argument("identifier", help="Registered identifier")
    p_export.add_argument("directory", nargs="?", default=".", help="Target directory")
    p_export.add_argument("--name", help="Name used for the backup file")
    p_export.set_defaults(func=cmd_export_key)

    p_import = sub.add_parser("import-key", help="Restore the private key from a backup file")
    p_import.add_argument("identifier", help="Registered identifier")
    p_import.add_argument("path", help="Backup file produced by export-key")
    p_import.add_argument("--force", action="store_true", help="Overwrite an existing key")
    p_import.set_defaults(func=cmd_import_key)

    return parser


def main(argv: Optional[list] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "command", None):
        parser.print_help()
        return
    configure_logging(args.log_level)

    try:
        args.func(args)
    except NoKeyFound as exc:
        raise SystemExit(f"No private key: {exc}")
    except InvalidKeyFile as exc:
        raise SystemExit(f"Invalid key file: {exc}")
    except MalformedEncoding as exc:
        raise SystemExit(f"Stored key data is corrupted: {exc}")
    except InvalidKeyMaterial as exc:
        raise SystemExit(f"Invalid key material: {exc}")
    except KeysUnavailable as exc:
        raise SystemExit(f"Message not sent, encryption unavailable: {exc}")
    except APIError as exc:
        raise SystemExit(f"API error: {exc}")


if __name__ == "__main__":
    main(sys.argv[1:])
