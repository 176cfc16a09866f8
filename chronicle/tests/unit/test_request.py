"""
Tests for the immutable request value and its ASGI conversions.
"""
import dataclasses

import pytest

from chronicle.core.signing.request import SignedRequest


def _scope(**overrides):
    scope = {
        "type": "http",
        "method": "post",
        "path": "/chronicle/client/whoami",
        "query_string": b"",
        "headers": [(b"x-nonce", b"abc"), (b"X-Signature", b"one"), (b"x-signature", b"two")],
    }
    scope.update(overrides)
    return scope


class TestSignedRequest:

    def test_normalises_method_and_header_names(self):
        request = SignedRequest("post", "/", headers=(("X-Nonce", "Value"),))
        assert request.method == "POST"
        assert request.headers == (("x-nonce", "Value"),)

    def test_get_header_returns_all_values_in_order(self):
        request = SignedRequest.from_asgi(_scope())
        assert request.get_header("X-Signature") == ["one", "two"]
        assert request.get_header("missing") == []

    def test_with_attribute_returns_new_request(self):
        request = SignedRequest("GET", "/")
        child = request.with_attribute("authenticated", True)

        assert child is not request
        assert child.get_attribute("authenticated") is True
        assert request.get_attribute("authenticated") is None

    def test_is_frozen(self):
        request = SignedRequest("GET", "/")
        with pytest.raises(dataclasses.FrozenInstanceError):
            request.path = "/other"
        with pytest.raises(TypeError):
            request.attributes["authenticated"] = True

    def test_attributes_detached_from_caller_dict(self):
        source = {"a": 1}
        request = SignedRequest("GET", "/", attributes=source)
        source["a"] = 2
        assert request.get_attribute("a") == 1


class TestAsgi:

    def test_from_asgi_appends_query_string(self):
        request = SignedRequest.from_asgi(_scope(query_string=b"limit=10&x=%20"), b"body")
        assert request.path == "/chronicle/client/whoami?limit=10&x=%20"
        assert request.body == b"body"

    def test_from_asgi_uses_undecoded_path(self):
        scope = _scope(
            path="/chronicle/client/who ami-x",
            raw_path=b"/chronicle/client/who%20ami%2Dx",
            query_string=b"q=%2F",
        )
        assert SignedRequest.from_asgi(scope).path == "/chronicle/client/who%20ami%2Dx?q=%2F"

    def test_from_asgi_ignores_query_on_raw_path(self):
        scope = _scope(raw_path=b"/chronicle/client/whoami?x=1", query_string=b"x=1")
        assert SignedRequest.from_asgi(scope).path == "/chronicle/client/whoami?x=1"

    def test_from_asgi_falls_back_to_path(self):
        assert SignedRequest.from_asgi(_scope(raw_path=None)).path == "/chronicle/client/whoami"

    def test_from_asgi_keeps_header_bytes(self):
        request = SignedRequest.from_asgi(_scope(headers=[(b"x-label", "café".encode("latin-1"))]))
        assert request.get_header("x-label") == ["café"]

    def test_to_asgi_scope_leaves_original_untouched(self):
        scope = _scope(state={"existing": 1})
        request = SignedRequest.from_asgi(scope).with_attribute("authenticated", True)

        child = request.to_asgi_scope(scope)

        assert child["state"] == {"existing": 1, "authenticated": True}
        assert scope["state"] == {"existing": 1}
        assert child["path"] == scope["path"]

    def test_to_asgi_scope_without_state(self):
        scope = _scope()
        child = SignedRequest("GET", "/").with_attribute("k", "v").to_asgi_scope(scope)
        assert child["state"] == {"k": "v"}
        assert "state" not in scope
