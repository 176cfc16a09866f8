"""
ASGI adapter for the client signature gate.

Starlette's BaseHTTPMiddleware always hands the *original* scope to the
downstream app, so verified attributes could only be passed by mutating it.
This adapter is plain ASGI instead: the downstream app receives a copied
scope whose "state" holds the attributes (visible as request.state).
"""
import logging
from typing import Any, Awaitable, Callable, Dict, List, MutableMapping, Optional

from starlette.responses import Response

from chronicle.api.gate import ClientSignatureGate
from chronicle.core.signing.request import SignedRequest

logger = logging.getLogger(__name__)

Scope = MutableMapping[str, Any]
Message = MutableMapping[str, Any]
Receive = Callable[[], Awaitable[Message]]
Send = Callable[[Message], Awaitable[None]]
ASGIApp = Callable[[Scope, Receive, Send], Awaitable[None]]


# Bodies are buffered whole so they can be hashed and replayed downstream
MAX_BODY_BYTES = 10 * 1024 * 1024

REQUEST_TOO_LARGE_STATUS = 413


class RequestBodyTooLarge(Exception):
    pass


async def read_body(receive: Receive, max_bytes: Optional[int] = None) -> bytes:
    """
    Drain the request body from `receive`.

    Raises:
        RequestBodyTooLarge: As soon as more than `max_bytes` have arrived
    """
    chunks: List[bytes] = []
    size = 0
    while True:
        message = await receive()
        if message["type"] == "http.disconnect":
            break
        chunk = message.get("body", b"")
        size += len(chunk)
        if max_bytes is not None and size > max_bytes:
            raise RequestBodyTooLarge(f"Request body exceeds {max_bytes} bytes")
        chunks.append(chunk)
        if not message.get("more_body", False):
            break
    return b"".join(chunks)


def replay_receive(body: bytes, receive: Receive) -> Receive:
    """A receive callable that yields `body` once, then defers to the real one."""
    sent = False

    async def _receive() -> Message:
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return _receive


async def collect_response(app: ASGIApp, scope: Scope, receive: Receive) -> Optional[Response]:
    """
    Run `app` and buffer what it sends into a Response.

    Returns:
        None if the app never started a response
    """
    start: Dict[str, Any] = {}
    chunks: List[bytes] = []

    async def _send(message: Message) -> None:
        if message["type"] == "http.response.start":
            start.update(message)
        elif message["type"] == "http.response.body":
            chunks.append(message.get("body", b""))

    await app(scope, receive, _send)

    if not start:
        return None

    response = Response(content=b"".join(chunks), status_code=start["status"])
    response.raw_headers = list(start.get("headers", []))
    return response


class ClientSignatureMiddleware:
    """
    Guard every HTTP path under `path_prefix` with a ClientSignatureGate.

    Other paths and non-HTTP scopes pass straight through.
    """

    def __init__(
        self,
        app: ASGIApp,
        gate: ClientSignatureGate,
        path_prefix: str = "/",
        max_body_bytes: Optional[int] = MAX_BODY_BYTES,
    ):
        self.app = app
        self.gate = gate
        self.path_prefix = "/" + path_prefix.strip("/")
        self.max_body_bytes = max_body_bytes

    def applies_to(self, path: str) -> bool:
        if self.path_prefix == "/":
            return True
        return path == self.path_prefix or path.startswith(self.path_prefix + "/")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self.applies_to(scope.get("path", "")):
            await self.app(scope, receive, send)
            return

        seed = Response(status_code=204)
        try:
            body = await read_body(receive, self.max_body_bytes)
        except RequestBodyTooLarge as e:
            logger.warning(f"Rejected {scope.get('method')} {scope.get('path')}: {e}")
            response = self.gate.build_error(seed, "Request body too large", REQUEST_TOO_LARGE_STATUS)
            await response(scope, receive, send)
            return

        request = SignedRequest.from_asgi(scope, body)

        async def call_next(verified: SignedRequest, response: Response) -> Optional[Response]:
            return await collect_response(
                self.app,
                verified.to_asgi_scope(scope),
                replay_receive(body, receive),
            )

        response = await self.gate(request, seed, call_next)
        await response(scope, receive, send)
