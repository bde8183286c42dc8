import pytest

from boxchat import crypto
from boxchat.client import APIError
from boxchat.codec import decode_bytes
from boxchat.errors import KeyNotStored, KeysUnavailable
from boxchat.keystore import KeyManager, MemoryKeyValueStore
from boxchat.models import FieldStatus


def register_and_login(chat_client, identifier, display_name, password):
    account = chat_client.register(identifier, display_name, password)
    assert "private_key" not in account
    chat_client.login(identifier, password)
    return account


def bearer(chat_client):
    return {"Authorization": f"Bearer {chat_client.session.token}"}


def test_full_message_roundtrip(client, make_chat_client):
    alice = make_chat_client()
    bob = make_chat_client()
    register_and_login(alice, "alice@example.com", "Alice", "StrongPass!123")
    register_and_login(bob, "bob@example.com", "Bob", "OtherPass!456")

    sent = alice.send_message("bob@example.com", text="Hi Bob, sealed from pytest!")
    assert sent.is_encrypted
    assert sent.outgoing
    assert sent.text.value == "Hi Bob, sealed from pytest!"
    assert sent.message.id is not None

    stored = client.get("/api/messages/alice@example.com", headers=bearer(bob)).get_json()["messages"]
    assert len(stored) == 1
    assert stored[0]["text"] is None
    assert stored[0]["nonce"]
    assert "Hi Bob" not in str(stored[0])

    inbox = bob.fetch_conversation("alice@example.com")
    assert len(inbox) == 1
    assert not inbox[0].outgoing
    assert inbox[0].text.status is FieldStatus.DECRYPTED
    assert inbox[0].text.value == "Hi Bob, sealed from pytest!"

    outbox = alice.fetch_conversation("bob@example.com")
    assert outbox[0].outgoing
    assert outbox[0].text.value == "Hi Bob, sealed from pytest!"


def test_conversation_is_ordered_and_symmetric(make_chat_client):
    alice = make_chat_client()
    bob = make_chat_client()
    register_and_login(alice, "alice", "Alice", "pw-alice")
    register_and_login(bob, "bob", "Bob", "pw-bob")

    alice.send_message("bob", text="ping")
    bob.send_message("alice", text="pong", image="data:image/png;base64,iVBORw0KGgo=")
    alice.send_message("bob", text="done")

    for viewer, peer in ((alice, "bob"), (bob, "alice")):
        conversation = viewer.fetch_conversation(peer)
        assert [entry.text.value for entry in conversation] == ["ping", "pong", "done"]
        assert conversation[1].image.value == "data:image/png;base64,iVBORw0KGgo="
        assert all(entry.readable for entry in conversation)


def test_new_device_needs_key_import(tmp_path, make_chat_client):
    alice = make_chat_client()
    first_device = make_chat_client()
    register_and_login(alice, "alice", "Alice", "pw-alice")
    register_and_login(first_device, "bob", "Bob Builder", "pw-bob")
    backup = first_device.export_key(tmp_path)
    assert backup.name == "Bob_Builder_private_key.txt"

    alice.send_message("bob", text="secret", image="picture")

    second_device = make_chat_client()
    second_device.login("bob", "pw-bob")
    assert not second_device.has_key()

    locked = second_device.fetch_conversation("alice")[0]
    assert locked.is_encrypted
    assert locked.text.status is FieldStatus.UNAVAILABLE
    assert locked.image.status is FieldStatus.UNAVAILABLE

    assert second_device.import_key(backup)
    unlocked = second_device.fetch_conversation("alice")[0]
    assert unlocked.text.value == "secret"
    assert unlocked.image.value == "picture"


def test_sender_without_key_falls_back_to_plaintext(client, make_chat_client):
    register_and_login(make_chat_client(), "alice", "Alice", "pw-alice")
    bob = make_chat_client()
    register_and_login(bob, "bob", "Bob", "pw-bob")

    keyless_alice = make_chat_client()
    keyless_alice.login("alice", "pw-alice")

    with pytest.raises(KeysUnavailable):
        keyless_alice.send_message("bob", text="strict", require_encryption=True)

    sent = keyless_alice.send_message("bob", text="in the clear")
    assert not sent.is_encrypted
    assert sent.text.status is FieldStatus.PLAIN

    record = client.get("/api/messages/alice", headers=bearer(bob)).get_json()["messages"][0]
    assert record["is_encrypted"] is False
    assert record["text"] == "in the clear"

    shown = bob.fetch_conversation("alice")
    assert len(shown) == 1
    assert shown[0].text.status is FieldStatus.PLAIN


def test_legacy_plaintext_messages_are_shown(client, make_chat_client):
    alice = make_chat_client()
    bob = make_chat_client()
    register_and_login(alice, "alice", "Alice", "pw-alice")
    register_and_login(bob, "bob", "Bob", "pw-bob")

    response = client.post("/api/messages/bob", headers=bearer(alice), json={"text": "old style"})
    assert response.status_code == 201
    assert response.get_json()["is_encrypted"] is False

    shown = bob.fetch_conversation("alice")[0]
    assert shown.text.value == "old style"
    assert shown.image.status is FieldStatus.ABSENT


def test_send_requires_authentication(client):
    response = client.post("/api/messages/nobody", json={"text": "hi"})
    assert response.status_code == 401
    assert "Missing bearer token" in response.get_json()["error"]

    response = client.get(
        "/api/users/nobody/public-key", headers={"Authorization": "Bearer forged.token.value"}
    )
    assert response.status_code == 401


def test_duplicate_registration_is_rejected(make_chat_client):
    register_and_login(make_chat_client(), "alice", "Alice", "pw-alice")
    with pytest.raises(APIError):
        make_chat_client().register("alice", "Impostor", "pw")


def test_login_rejects_bad_password(make_chat_client):
    chat_client = make_chat_client()
    chat_client.register("alice", "Alice", "pw-alice")
    with pytest.raises(APIError):
        chat_client.login("alice", "wrong")
    assert chat_client.session is None


def test_public_key_lookup(client, make_chat_client):
    alice = make_chat_client()
    account = register_and_login(alice, "alice", "Alice", "pw-alice")

    found = client.get("/api/users/alice/public-key", headers=bearer(alice))
    assert found.status_code == 200
    assert found.get_json()["public_key"] == account["public_key"]

    missing = client.get("/api/users/ghost/public-key", headers=bearer(alice))
    assert missing.status_code == 404
    assert alice.directory.public_key("ghost") is None


@pytest.mark.parametrize(
    "body",
    [
        {"encrypted_text": "AAAA"},
        {"encrypted_text": "AAAA", "nonce": "not base64"},
        {},
        {"text": ""},
        {"text": ["not", "text"]},
        {"encrypted_text": 42, "nonce": "AAAA"},
        ["text", "hi"],
    ],
)
def test_invalid_message_payloads(client, make_chat_client, body):
    alice = make_chat_client()
    register_and_login(alice, "alice", "Alice", "pw-alice")
    register_and_login(make_chat_client(), "bob", "Bob", "pw-bob")

    response = client.post("/api/messages/bob", headers=bearer(alice), json=body)
    assert response.status_code == 400


def test_unknown_receiver(make_chat_client):
    alice = make_chat_client()
    register_and_login(alice, "alice", "Alice", "pw-alice")
    with pytest.raises(APIError):
        alice.fetch_conversation("ghost")


def test_logout_keeps_private_key(make_chat_client):
    key_manager = KeyManager(MemoryKeyValueStore())
    alice = make_chat_client(key_manager)
    register_and_login(alice, "alice", "Alice", "pw-alice")
    session = alice.session

    alice.logout()

    assert not session.active
    assert session.token is None
    assert key_manager.exists("alice")
    with pytest.raises(APIError):
        alice.fetch_conversation("alice")

    alice.login("alice", "pw-alice")
    assert alice.has_key()


def test_healthcheck(client):
    assert client.get("/healthz").get_json() == {"status": "ok"}


def test_register_hands_back_key_when_store_is_unavailable(make_chat_client):
    alice = make_chat_client(KeyManager(MemoryKeyValueStore(available=False)))

    with pytest.raises(KeyNotStored) as excinfo:
        alice.register("alice", "Alice", "pw-alice")

    assert excinfo.value.identity_id == "alice"
    private_key = decode_bytes(excinfo.value.encoded_private_key)
    assert alice.key_manager.load("alice") is None

    reader = make_chat_client()
    reader.login("alice", "pw-alice")
    assert reader.directory.public_key("alice") == crypto.public_key_for(private_key)

    assert reader.key_manager.import_key(excinfo.value.encoded_private_key.encode("utf-8"), "alice")
    assert reader.has_key()


@pytest.mark.parametrize(
    "body",
    [
        ["alice", "Alice", "pw"],
        {"identifier": ["alice"], "display_name": "Alice", "password": "pw"},
        {"identifier": "alice", "display_name": "Alice", "password": 1234},
    ],
)
def test_register_rejects_malformed_bodies(client, body):
    response = client.post("/api/register", json=body)
    assert response.status_code == 400
    assert "required" in response.get_json()["error"]


def test_login_rejects_malformed_bodies(client, make_chat_client):
    make_chat_client().register("alice", "Alice", "pw-alice")
    assert client.post("/api/login", json=["alice", "pw-alice"]).status_code == 400
    assert client.post("/api/login", json={"identifier": "alice", "password": 7}).status_code == 400
