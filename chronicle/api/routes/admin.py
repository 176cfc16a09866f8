"""
Admin endpoints (behind the admin signature gate).
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request

from chronicle.api.signed_auth import AuthContext, get_auth_context

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"])


@router.get("/clients")
def list_clients(
    request: Request,
    instance: Optional[str] = None,
    auth: AuthContext = Depends(get_auth_context),
):
    """List registered client identifiers of the default directory, or of `instance`."""
    # Unconfigured names fall back to the default directory, as in the gate
    directory = request.app.state.instances.get(instance, request.app.state.directory)
    clients = directory.list_clients()
    logger.info(f"Admin '{auth.client_id}' listed {len(clients)} clients")
    return {"status": "OK", "clients": clients}
