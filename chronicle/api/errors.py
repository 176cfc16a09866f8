"""
Error response envelope.

Rejections are JSON documents signed by the server key, so a client can
tell a genuine refusal from one injected on the way.
"""
import base64
import json
import logging
from datetime import datetime, timezone
from typing import Optional

from starlette.responses import JSONResponse, Response

from chronicle.core.config import get_settings
from chronicle.core.signing.server_keys import ServerKeyring, get_server_keyring

logger = logging.getLogger(__name__)

HEADER_BODY_SIGNATURE = "Body-Signature-Ed25519"

# Headers that describe the seed body and must not leak onto the envelope
_BODY_HEADERS = {"content-length", "content-type", "content-encoding", HEADER_BODY_SIGNATURE.lower()}


class SignedJSONResponse(JSONResponse):
    """JSONResponse whose body carries a detached server signature header."""

    def __init__(self, content, status_code: int = 200, headers: Optional[dict] = None,
                 keyring: Optional[ServerKeyring] = None, **kwargs):
        super().__init__(content, status_code=status_code, headers=headers, **kwargs)
        if keyring is not None:
            signature = keyring.sign(self.body)
            self.headers[HEADER_BODY_SIGNATURE] = base64.b64encode(signature).decode("ascii")

    def render(self, content) -> bytes:
        # Stable encoding: the signature is over exactly these bytes
        return json.dumps(content, ensure_ascii=False, separators=(",", ":"), sort_keys=True).encode("utf-8")


def _current_keyring() -> Optional[ServerKeyring]:
    try:
        return get_server_keyring()
    except RuntimeError:
        logger.warning("Server signing key not initialized - sending unsigned error response")
        return None


def build_error_response(response: Response, message: str, status_code: int) -> Response:
    """
    Build the error envelope for a rejected request.

    Args:
        response: The response the pipeline started with; its non-body headers are kept
        message: Human-readable reason
        status_code: HTTP status

    Returns:
        A new response; `response` itself is left untouched
    """
    headers = {
        key: value
        for key, value in response.headers.items()
        if key.lower() not in _BODY_HEADERS
    }
    content = {
        "version": get_settings().api_version,
        "datetime": datetime.now(timezone.utc).isoformat(),
        "status": "ERROR",
        "message": message,
    }
    return SignedJSONResponse(
        content,
        status_code=status_code,
        headers=headers,
        keyring=_current_keyring(),
    )
