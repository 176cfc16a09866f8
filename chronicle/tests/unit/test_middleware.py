"""
Tests for the ASGI adapter, driven against a bare downstream app.
"""
import pytest
from starlette.testclient import TestClient

from chronicle.api.errors import build_error_response
from chronicle.api.gate import ClientSignatureGate
from chronicle.api.middleware import ClientSignatureMiddleware, RequestBodyTooLarge, read_body

PATH = "/chronicle/client/records"


class SilentApp:
    """Downstream app that records what it saw and never responds."""

    def __init__(self):
        self.calls = []

    async def __call__(self, scope, receive, send):
        message = await receive()
        self.calls.append((scope, message.get("body", b"")))


@pytest.fixture
def downstream():
    return SilentApp()


def _client(downstream, directory, **kwargs):
    middleware = ClientSignatureMiddleware(
        downstream,
        gate=ClientSignatureGate(directory, build_error_response),
        path_prefix="/chronicle/client",
        **kwargs,
    )
    return TestClient(middleware)


class TestClientSignatureMiddleware:

    def test_seed_response_when_downstream_sends_nothing(self, server_keyring, downstream, directory, client_party):
        payload = b'{"record": 1}'
        client = _client(downstream, directory)

        response = client.post(PATH, content=payload, headers=client_party.headers("POST", PATH, payload))

        assert response.status_code == 204
        assert response.content == b""
        scope, body = downstream.calls[0]
        assert body == payload
        assert scope["state"]["authenticated"] is True

    def test_rejection_never_reaches_downstream(self, server_keyring, downstream, directory):
        response = _client(downstream, directory).get(PATH)

        assert response.status_code == 403
        assert downstream.calls == []

    def test_oversized_body_refused(self, server_keyring, downstream, directory, client_party):
        payload = b"x" * 64
        client = _client(downstream, directory, max_body_bytes=16)

        response = client.post(PATH, content=payload, headers=client_party.headers("POST", PATH, payload))

        assert response.status_code == 413
        assert response.json()["message"] == "Request body too large"
        assert downstream.calls == []

    def test_body_at_limit_accepted(self, server_keyring, downstream, directory, client_party):
        payload = b"x" * 16
        client = _client(downstream, directory, max_body_bytes=16)

        response = client.post(PATH, content=payload, headers=client_party.headers("POST", PATH, payload))

        assert response.status_code == 204


class TestReadBody:

    def _receive(self, *chunks):
        messages = [
            {"type": "http.request", "body": chunk, "more_body": i < len(chunks) - 1}
            for i, chunk in enumerate(chunks)
        ]

        async def receive():
            return messages.pop(0)

        return receive

    @pytest.mark.asyncio
    async def test_joins_chunks(self):
        assert await read_body(self._receive(b"ab", b"cd", b"e")) == b"abcde"

    @pytest.mark.asyncio
    async def test_limit_counts_across_chunks(self):
        with pytest.raises(RequestBodyTooLarge):
            await read_body(self._receive(b"abc", b"def"), max_bytes=5)

    @pytest.mark.asyncio
    async def test_stops_on_disconnect(self):
        async def receive():
            return {"type": "http.disconnect"}

        assert await read_body(receive, max_bytes=5) == b""
