"""
Authentication context for route handlers.

The signature middleware leaves `authenticated` and `public_key` on
request.state. Handlers depend on get_auth_context() instead of reading
request.state themselves, so a route that is accidentally mounted outside
a gated prefix fails closed.

Example:
    @router.get("/chronicle/client/whoami")
    async def whoami(auth: AuthContext = Depends(get_auth_context)):
        ...
"""

import logging
from dataclasses import dataclass

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from fastapi import HTTPException, Request, status

from chronicle.api.gate import ATTR_AUTHENTICATED, ATTR_PUBLIC_KEY
from chronicle.core.signing.keys import public_key_to_base64

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthContext:
    """
    Authentication context for a verified request.

    Attributes:
        client_id: Identifier from the client header
        public_key: Key the request signature verified against
    """
    client_id: str
    public_key: Ed25519PublicKey

    @property
    def public_key_b64(self) -> str:
        return public_key_to_base64(self.public_key)


def get_auth_context(request: Request) -> AuthContext:
    """
    FastAPI dependency returning the verified identity.

    Raises:
        HTTPException: 403 if the request did not pass a signature gate
    """
    authenticated = getattr(request.state, ATTR_AUTHENTICATED, False)
    public_key = getattr(request.state, ATTR_PUBLIC_KEY, None)

    if authenticated is not True or not isinstance(public_key, Ed25519PublicKey):
        logger.warning(f"Unauthenticated request reached {request.url.path}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Request is not authenticated",
        )

    client_id = request.headers.get(request.app.state.settings.client_header_name, "")
    return AuthContext(client_id=client_id, public_key=public_key)
