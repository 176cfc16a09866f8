"""
Client endpoints (behind the client signature gate).
"""
import logging

from fastapi import APIRouter, Depends

from chronicle.api.signed_auth import AuthContext, get_auth_context

logger = logging.getLogger(__name__)

router = APIRouter(tags=["client"])


@router.api_route("/whoami", methods=["GET", "POST"])
async def whoami(auth: AuthContext = Depends(get_auth_context)):
    """Echo the identity the request was verified as."""
    return {
        "status": "OK",
        "client_id": auth.client_id,
        "public_key": auth.public_key_b64,
    }
