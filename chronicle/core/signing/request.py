"""
Signed Request Value

Transport-neutral, immutable view of an inbound HTTP request.

The gate never mutates a request: attaching a verified attribute returns a
new SignedRequest, so two concurrent requests built from the same ASGI scope
can never see each other's identity.
"""

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, List, Mapping, MutableMapping, Optional, Tuple


def _freeze(attributes: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(attributes or {}))


@dataclass(frozen=True)
class SignedRequest:
    """
    An HTTP request as seen by the signature gate.

    Attributes:
        method: HTTP method (uppercase)
        path: Request path including query string (e.g., /chronicle/client/whoami?x=1)
        headers: (name, value) pairs in arrival order, names lowercased
        body: Raw request body
        attributes: Request-scoped values attached after verification
    """
    method: str
    path: str
    headers: Tuple[Tuple[str, str], ...] = ()
    body: bytes = b""
    attributes: Mapping[str, Any] = field(default_factory=lambda: _freeze(None))

    def __post_init__(self):
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(
            self,
            "headers",
            tuple((name.lower(), value) for name, value in self.headers),
        )
        object.__setattr__(self, "attributes", _freeze(self.attributes))

    def get_header(self, name: str) -> List[str]:
        """Return every value of a header, in arrival order. Values are not trimmed."""
        name = name.lower()
        return [value for key, value in self.headers if key == name]

    def get_attribute(self, name: str, default: Any = None) -> Any:
        return self.attributes.get(name, default)

    def with_attribute(self, name: str, value: Any) -> "SignedRequest":
        """Return a copy of this request with one more attribute set."""
        attributes = dict(self.attributes)
        attributes[name] = value
        return replace(self, attributes=attributes)

    @classmethod
    def from_asgi(cls, scope: MutableMapping[str, Any], body: bytes = b"") -> "SignedRequest":
        """
        Build a request from an ASGI HTTP scope and its fully-read body.

        Header bytes are decoded as latin-1 so values survive byte-exact.
        The path comes from raw_path when the server provides it, since
        "path" is already percent-decoded and clients sign what they sent.
        """
        raw_path = scope.get("raw_path")
        if raw_path:
            # Some servers leave the query string on raw_path
            path = raw_path.split(b"?", 1)[0].decode("latin-1")
        else:
            path = scope.get("path", "/")
        query = scope.get("query_string", b"")
        if query:
            path = f"{path}?{query.decode('latin-1')}"
        headers = tuple(
            (name.decode("latin-1"), value.decode("latin-1"))
            for name, value in scope.get("headers", [])
        )
        return cls(
            method=scope.get("method", "GET"),
            path=path,
            headers=headers,
            body=body,
        )

    def to_asgi_scope(self, scope: MutableMapping[str, Any]) -> dict:
        """
        Return a copy of `scope` whose "state" carries this request's attributes.

        Starlette exposes scope["state"] as request.state downstream.
        The passed scope and its state dict are left untouched.
        """
        child = dict(scope)
        state = dict(scope.get("state") or {})
        state.update(self.attributes)
        child["state"] = state
        return child
