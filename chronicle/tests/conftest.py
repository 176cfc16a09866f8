"""
Shared fixtures: client and server keys, a static directory, and signed requests.
"""
import json

import pytest

from chronicle.core.config import Settings
from chronicle.core.signing.keys import generate_keypair
from chronicle.core.signing.registry import ClientRecord, StaticClientRegistry
from chronicle.core.signing.request import SignedRequest
from chronicle.core.signing.server_keys import ServerKeyring, set_server_keyring
from chronicle.core.signing.verify import sign_request

CLIENT_HEADER = "Chronicle-Client-Key-ID"


class Party:
    """A client identity with its private key, for signing test requests."""

    def __init__(self, client_id, private_key):
        self.client_id = client_id
        self.private_key = private_key
        self.public_key = private_key.public_key()

    def headers(self, method, path, body=b"", **kwargs):
        headers = sign_request(self.private_key, method, path, body, **kwargs)
        headers[CLIENT_HEADER] = self.client_id
        return headers

    def request(self, method="POST", path="/chronicle/client/whoami", body=b"", extra_headers=(), **kwargs):
        """Build a SignedRequest exactly as the ASGI adapter would."""
        headers = list(self.headers(method, path, body, **kwargs).items()) + list(extra_headers)
        return SignedRequest(method=method, path=path, headers=tuple(headers), body=body)


@pytest.fixture
def server_keyring():
    """Install a fresh server keyring for the duration of a test."""
    keyring = ServerKeyring.generate()
    set_server_keyring(keyring)
    yield keyring
    set_server_keyring(None)


@pytest.fixture
def client_party():
    private_key, _ = generate_keypair()
    return Party("replica-1", private_key)


@pytest.fixture
def admin_party():
    private_key, _ = generate_keypair()
    return Party("admin-1", private_key)


@pytest.fixture
def impostor_party(server_keyring):
    """A registered client whose key is the server's own signing key."""
    return Party("impostor", server_keyring._private_key)


@pytest.fixture
def directory(client_party, admin_party, impostor_party):
    return StaticClientRegistry([
        ClientRecord(client_id=client_party.client_id, public_key=client_party.public_key),
        ClientRecord(client_id=admin_party.client_id, public_key=admin_party.public_key, is_admin=True),
        ClientRecord(client_id=impostor_party.client_id, public_key=impostor_party.public_key, is_admin=True),
    ])


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        server_signing_key_path=str(tmp_path / "server.key"),
        clients_config_path=str(tmp_path / "clients.yaml"),
        database_url=None,
    )


def envelope(response):
    """Decode an error envelope from a Starlette response."""
    return json.loads(response.body)
