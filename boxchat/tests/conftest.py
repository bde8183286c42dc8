import threading
from urllib.parse import urlsplit

import pytest

from boxchat import crypto
from boxchat.client import ChatClient
from boxchat.database import Database
from boxchat.directory import StaticDirectory
from boxchat.keystore import KeyManager, MemoryKeyValueStore
from boxchat.server import create_app


class _FlaskResponse:
    """Expose the parts of ``requests.Response`` the client relies on."""

    def __init__(self, response):
        self.status_code = response.status_code
        self.text = response.get_data(as_text=True)
        self._response = response

    def json(self):
        return self._response.get_json()


class FlaskHttp:
    """Route ``requests.Session`` style calls into a Flask test client.

    Calls are serialized so worker threads never share the test client.
    """

    def __init__(self, test_client):
        self._client = test_client
        self._lock = threading.Lock()

    @staticmethod
    def _path(url):
        parts = urlsplit(url)
        return parts.path + (f"?{parts.query}" if parts.query else "")

    def get(self, url, params=None, headers=None, timeout=None):
        with self._lock:
            return _FlaskResponse(
                self._client.get(self._path(url), query_string=params, headers=headers or {})
            )

    def post(self, url, json=None, headers=None, timeout=None):
        with self._lock:
            return _FlaskResponse(
                self._client.post(self._path(url), json=json, headers=headers or {})
            )


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("BOXCHAT_SESSION_SECRET", "tests_session_secret_key")
    monkeypatch.setenv("BOXCHAT_PASSWORD_SECRET", "tests_password_secret_key")

    database = Database(db_path=tmp_path / "test.db")
    flask_app = create_app(database=database)
    flask_app.config.update(TESTING=True)
    return flask_app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def make_chat_client(client):
    def factory(key_manager=None):
        return ChatClient(
            base_url="http://relay.test",
            key_manager=key_manager or KeyManager(MemoryKeyValueStore()),
            http=FlaskHttp(client),
        )

    return factory


@pytest.fixture()
def alice_keys():
    return crypto.generate_keypair()


@pytest.fixture()
def bob_keys():
    return crypto.generate_keypair()


@pytest.fixture()
def directory(alice_keys, bob_keys):
    return StaticDirectory({"alice": alice_keys.public_key, "bob": bob_keys.public_key})


@pytest.fixture()
def key_manager():
    return KeyManager(MemoryKeyValueStore())
